"""Tests for the HTTP API."""
import io
import uuid
import zipfile

import pytest
from fastapi.testclient import TestClient

from conftest import ScriptedAdvisor, make_image_bytes, no_sleep, unavailable
from converter.advisor import get_advisor
from converter.api.routes import get_orchestrator
from converter.batch import BatchOrchestrator
from converter.exceptions import AdvisorError, ValidationError
from converter.main import app
from converter.pipeline import ConversionPipeline
from converter.retry import linear_backoff


@pytest.fixture
def advisor():
    return ScriptedAdvisor()


@pytest.fixture
def client(advisor):
    """Test client with a scripted advisor and a fresh session id."""
    orchestrator = BatchOrchestrator(ConversionPipeline(advisor, attempts=3, delay=linear_backoff(1.0), sleep=no_sleep))
    app.dependency_overrides[get_advisor] = lambda: advisor
    app.dependency_overrides[get_orchestrator] = lambda: orchestrator
    c = TestClient(app, raise_server_exceptions=False)
    c.headers["X-Session-ID"] = str(uuid.uuid4())
    yield c
    app.dependency_overrides.clear()


OPTIMIZE_BODY = {
    "targetFormat": "WEBP", "lossless": False, "compressionSpeed": 5,
    "stripMetadata": True, "maxFileSizeKB": 1024,
}


def upload(client, *files):
    return client.post("/api/files", files=[("files", f) for f in files])


def png(name="photo.png"):
    return (name, make_image_bytes("PNG"), "image/png")


class TestOptimize:
    def test_returns_advice(self, client):
        resp = client.post("/api/optimize", json={
            "targetFormat": "JPEG", "lossless": False, "compressionSpeed": 4,
            "stripMetadata": True, "maxFileSizeKB": 500,
        })
        assert resp.status_code == 200
        body = resp.json()
        assert body["adjustedCompressionSpeed"] == 4
        assert body["adjustedLossless"] is False
        assert body["optimizationRationale"]

    def test_out_of_range_rejected_before_advisor(self, client, advisor):
        resp = client.post("/api/optimize", json={**OPTIMIZE_BODY, "compressionSpeed": 11})
        assert resp.status_code == 422
        assert advisor.calls == []

    @pytest.mark.parametrize("missing", ["targetFormat", "lossless", "compressionSpeed", "maxFileSizeKB"])
    def test_required_fields(self, client, advisor, missing):
        body = {k: v for k, v in OPTIMIZE_BODY.items() if k != missing}
        assert client.post("/api/optimize", json=body).status_code == 422
        assert advisor.calls == []

    def test_empty_body_rejected(self, client, advisor):
        assert client.post("/api/optimize", json={}).status_code == 422
        assert advisor.calls == []

    def test_strip_metadata_optional(self, client):
        body = {k: v for k, v in OPTIMIZE_BODY.items() if k != "stripMetadata"}
        assert client.post("/api/optimize", json=body).status_code == 200

    def test_service_unavailable(self, client, advisor):
        advisor.outcomes = unavailable(1)
        resp = client.post("/api/optimize", json=OPTIMIZE_BODY)
        assert resp.status_code == 503
        assert "Service Unavailable" in resp.json()["detail"]

    def test_bad_advice(self, client, advisor):
        advisor.outcomes = [ValidationError("unexpected shape")]
        assert client.post("/api/optimize", json=OPTIMIZE_BODY).status_code == 502

    def test_advisor_failure(self, client, advisor):
        advisor.outcomes = [AdvisorError("quota exceeded")]
        assert client.post("/api/optimize", json=OPTIMIZE_BODY).status_code == 502


class TestIntake:
    def test_session_header_issued(self, advisor):
        app.dependency_overrides[get_advisor] = lambda: advisor
        try:
            resp = TestClient(app).get("/api/session")
        finally:
            app.dependency_overrides.clear()
        assert resp.status_code == 200
        assert resp.headers["X-Session-ID"] == resp.json()["session_id"]

    def test_upload_filters_non_images(self, client):
        resp = upload(client, png("a.png"), ("notes.txt", b"hello", "text/plain"))
        assert resp.status_code == 200
        body = resp.json()
        assert [f["filename"] for f in body["files"]] == ["a.png"]
        assert body["files"][0]["status"] == "pending"
        assert body["rejected"] == [{"filename": "notes.txt", "error": 'File "notes.txt" is not a valid image.'}]
        state = client.get("/api/session").json()
        assert state["pending_count"] == 1
        assert state["notices"][0]["title"] == "Error: Invalid File Type"
        assert client.get("/api/session").json()["notices"] == []

    def test_preview_and_remove(self, client):
        file_id = upload(client, png()).json()["files"][0]["id"]
        preview = client.get(f"/api/files/{file_id}/preview")
        assert preview.status_code == 200
        assert preview.headers["content-type"] == "image/png"
        assert client.delete(f"/api/files/{file_id}").status_code == 200
        assert client.get(f"/api/files/{file_id}/preview").status_code == 404
        assert client.delete(f"/api/files/{file_id}").status_code == 404

    def test_settings_apply_to_all(self, client):
        upload(client, png("a.png"), png("b.png"))
        resp = client.put("/api/settings?apply_to_all=true", json={"targetFormat": "PNG", "compressionSpeed": 2})
        assert resp.status_code == 200
        assert resp.json()["applied"] == 2
        files = client.get("/api/session").json()["files"]
        assert {f["settings"]["targetFormat"] for f in files} == {"PNG"}

    def test_settings_validation(self, client):
        assert client.put("/api/settings", json={"maxFileSizeKB": 5}).status_code == 422

    def test_per_file_settings(self, client):
        file_id = upload(client, png()).json()["files"][0]["id"]
        resp = client.put(f"/api/files/{file_id}/settings", json={"targetFormat": "JPEG"})
        assert resp.status_code == 200
        assert resp.json()["settings"]["targetFormat"] == "JPEG"
        assert client.put("/api/files/nope/settings", json={}).status_code == 404


class TestConvert:
    def test_convert_and_download(self, client):
        upload(client, png("photo.png"), ("broken.png", b"junk", "image/png"))
        resp = client.post("/api/convert")
        assert resp.status_code == 200
        state = client.get("/api/session").json()
        assert state["all_finished"] is True
        assert state["overall_progress"] == 100.0
        by_name = {f["filename"]: f for f in state["files"]}
        assert by_name["broken.png"]["status"] == "error"
        done = by_name["photo.png"]
        assert done["status"] == "done"
        assert done["result"]["filename"] == "photo.webp"
        assert any(n["title"] == "Conversion Failed for broken.png" for n in state["notices"])

        single = client.get(done["result"]["download_url"])
        assert single.status_code == 200
        assert single.headers["content-type"] == "image/webp"
        assert 'filename="photo.webp"' in single.headers["content-disposition"]

        archive = client.get("/api/archive")
        assert archive.status_code == 200
        assert 'filename="converted_images.zip"' in archive.headers["content-disposition"]
        with zipfile.ZipFile(io.BytesIO(archive.content)) as zf:
            assert zf.namelist() == ["photo.webp"]
            assert zf.read("photo.webp") == single.content
        notices = client.get("/api/session").json()["notices"]
        assert [n["title"] for n in notices] == ["Download started"]

    def test_download_non_ascii_filename(self, client):
        upload(client, png("фото.png"))
        client.post("/api/convert")
        done = client.get("/api/session").json()["files"][0]
        assert done["result"]["filename"] == "фото.webp"
        resp = client.get(done["result"]["download_url"])
        assert resp.status_code == 200
        assert resp.headers["content-disposition"] == "attachment; filename*=utf-8''%D1%84%D0%BE%D1%82%D0%BE.webp"

    def test_convert_retries_transient_failures(self, client, advisor):
        advisor.outcomes = unavailable(2)
        upload(client, png())
        client.post("/api/convert")
        assert client.get("/api/session").json()["files"][0]["status"] == "done"
        assert len(advisor.calls) == 3

    def test_convert_without_files(self, client):
        assert client.post("/api/convert").status_code == 400

    def test_archive_before_finished(self, client):
        upload(client, png())
        assert client.get("/api/archive").status_code == 409

    def test_archive_with_no_successes(self, client):
        upload(client, ("broken.png", b"junk", "image/png"))
        client.post("/api/convert")
        assert client.get("/api/archive").status_code == 409

    def test_download_before_conversion(self, client):
        file_id = upload(client, png()).json()["files"][0]["id"]
        assert client.get(f"/api/files/{file_id}/download").status_code == 409

    def test_reset(self, client):
        upload(client, png())
        assert client.delete("/api/session").status_code == 200
        assert client.get("/api/session").json()["files"] == []


class TestMetadata:
    def test_tags(self, client, jpeg_with_exif):
        resp = client.post("/api/metadata", files={"file": ("cam.jpg", jpeg_with_exif, "image/jpeg")})
        assert resp.status_code == 200
        tags = {t["tag"]: t["value"] for t in resp.json()["tags"]}
        assert tags["Make"] == "TestCam"

    def test_no_metadata(self, client):
        resp = client.post("/api/metadata", files={"file": png()})
        assert resp.json()["message"] == "No EXIF metadata found in this image."

    def test_rejects_non_image(self, client):
        resp = client.post("/api/metadata", files={"file": ("a.txt", b"x", "text/plain")})
        assert resp.status_code == 415


def test_health_and_formats(client):
    assert client.get("/api/health").json() == {"status": "ok"}
    formats = client.get("/api/formats").json()
    assert formats["output_image"] == ["WEBP", "PNG", "JPEG", "AVIF"]
    assert formats["compression_speed"] == {"min": 1, "max": 10}
