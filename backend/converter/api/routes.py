"""API routes: settings advisor, file intake, batch conversion and downloads."""
import logging
import uuid
from pathlib import PurePath
from typing import Optional
from urllib.parse import quote

from fastapi import APIRouter, BackgroundTasks, Depends, File, Form, HTTPException, Query, Request, Response, UploadFile

from converter.advisor import SettingsAdvisor, get_advisor
from converter.batch import BatchOrchestrator
from converter.config import (
    ARCHIVE_NAME,
    MAX_COMPRESSION_SPEED,
    MAX_FILE_SIZE_KB,
    MAX_IMAGE_SIZE_BYTES,
    MAX_IMAGES_PER_UPLOAD,
    MIN_COMPRESSION_SPEED,
    MIN_FILE_SIZE_KB,
)
from converter.conversion.models import ConversionSettings, FileRecord, FileStatus, OptimizeRequest, TargetFormat
from converter.exceptions import (
    AdvisorError,
    ArchiveFailure,
    FileNotFound,
    ServiceUnavailable,
    ValidationError,
)
from converter.intake import IncomingFile, accept_files
from converter.metadata import read_metadata
from converter.packager import build_archive
from converter.pipeline import ConversionPipeline
from converter.session import ConversionSession, get_session_store

logger = logging.getLogger("converter.api")
router = APIRouter(prefix="/api", tags=["converter"])


def get_or_create_session_id(request: Request) -> str:
    """Use X-Session-ID header or generate and attach to request for response header."""
    sid = (request.headers.get("X-Session-ID") or "").strip()
    if sid:
        return sid
    sid = str(uuid.uuid4())
    request.state.session_id = sid
    return sid


def get_session(session_id: str = Depends(get_or_create_session_id)) -> ConversionSession:
    return get_session_store().get_or_create(session_id)


_orchestrator: Optional[BatchOrchestrator] = None


def get_orchestrator() -> BatchOrchestrator:
    global _orchestrator
    if _orchestrator is None:
        _orchestrator = BatchOrchestrator(ConversionPipeline(get_advisor()))
    return _orchestrator


def _require(session: ConversionSession, file_id: str) -> FileRecord:
    try:
        return session.require(file_id)
    except FileNotFound as e:
        raise HTTPException(404, e.message)


def _attachment(filename: str) -> str:
    """Content-Disposition for a download, RFC 5987-encoded when the name is not plain ASCII."""
    quoted = quote(filename)
    if quoted != filename:
        return f"attachment; filename*=utf-8''{quoted}"
    return f'attachment; filename="{filename}"'


def _record_to_dict(r: FileRecord) -> dict:
    out = {
        "id": r.file_id,
        "filename": r.filename,
        "content_type": r.content_type,
        "preview_url": r.preview_url,
        "status": r.status.value,
        "progress": r.progress,
        "error": r.error,
        "settings": r.settings.to_wire(),
        "result": None,
    }
    if r.result is not None:
        out["result"] = {
            "filename": r.result.filename,
            "mime_type": r.result.mime_type,
            "rationale": r.result.rationale,
            "adjusted_settings": r.result.advice.to_wire(),
            "input_size": r.result.input_size,
            "output_size": r.result.output_size,
            "download_url": f"/api/files/{r.file_id}/download",
        }
    return out


def _session_to_dict(session: ConversionSession) -> dict:
    records = session.records()
    return {
        "session_id": session.session_id,
        "settings": session.settings.to_wire(),
        "files": [_record_to_dict(r) for r in records],
        "pending_count": sum(1 for r in records if r.status == FileStatus.PENDING),
        "is_converting": session.is_converting,
        "overall_progress": session.overall_progress,
        "all_finished": session.all_finished,
        "notices": [
            {"title": n.title, "description": n.description, "variant": n.variant}
            for n in session.drain_notices()
        ],
    }


@router.get("/health")
def health():
    return {"status": "ok"}


@router.get("/formats")
def get_formats():
    return {
        "output_image": [f.value for f in TargetFormat],
        "defaults": ConversionSettings().to_wire(),
        "compression_speed": {"min": MIN_COMPRESSION_SPEED, "max": MAX_COMPRESSION_SPEED},
        "max_file_size_kb": {"min": MIN_FILE_SIZE_KB, "max": MAX_FILE_SIZE_KB},
        "max_images_per_upload": MAX_IMAGES_PER_UPLOAD,
        "max_image_size_bytes": MAX_IMAGE_SIZE_BYTES,
    }


@router.post("/optimize")
async def optimize(settings: OptimizeRequest, advisor: SettingsAdvisor = Depends(get_advisor)):
    """Ask the settings advisor to adjust lossless/speed for the max file size."""
    try:
        advice = await advisor.advise(settings)
    except ServiceUnavailable as e:
        logger.warning("Advisor unavailable: %s", e.message)
        raise HTTPException(503, e.message)
    except ValidationError as e:
        logger.error("Advisor response invalid: %s", e.message)
        raise HTTPException(502, e.message)
    except AdvisorError as e:
        logger.error("Advisor failed: %s", e.message)
        raise HTTPException(502, e.message)
    return advice.to_wire()


@router.get("/session")
def session_state(session: ConversionSession = Depends(get_session)):
    """Current files, progress and pending notices (notices are returned once)."""
    return _session_to_dict(session)


@router.delete("/session")
def session_reset(session: ConversionSession = Depends(get_session)):
    """Clear all files and restore default settings."""
    session.reset()
    return {"ok": True}


@router.get("/settings")
def get_settings(session: ConversionSession = Depends(get_session)):
    return session.settings.to_wire()


@router.put("/settings")
def put_settings(
    settings: ConversionSettings,
    apply_to_all: bool = Query(False, description="Copy to every pending file"),
    session: ConversionSession = Depends(get_session),
):
    applied = session.update_settings(settings, apply_to_all=apply_to_all)
    return {"settings": session.settings.to_wire(), "applied": applied}


async def _read_limited(file: UploadFile) -> bytes:
    # stop one byte past the limit; intake rejects the oversized file
    chunks, total = [], 0
    while chunk := await file.read(1024 * 1024):
        chunks.append(chunk)
        total += len(chunk)
        if total > MAX_IMAGE_SIZE_BYTES:
            break
    return b"".join(chunks)


@router.post("/files")
async def upload_files(
    files: list[UploadFile] = File(...),
    last_modified: Optional[list[int]] = Form(None),
    session: ConversionSession = Depends(get_session),
):
    """Queue images on the session; non-images are rejected individually."""
    if len(files) > MAX_IMAGES_PER_UPLOAD:
        raise HTTPException(400, f"Max {MAX_IMAGES_PER_UPLOAD} images per upload")
    incoming = []
    for i, file in enumerate(files):
        modified = last_modified[i] if last_modified and i < len(last_modified) else 0
        incoming.append(IncomingFile(
            filename=PurePath(file.filename or "image").name,
            content_type=file.content_type or "",
            data=await _read_limited(file),
            last_modified=modified,
        ))
    accepted, rejected = accept_files(session, incoming)
    return {
        "files": [_record_to_dict(r) for r in accepted],
        "rejected": [{"filename": e.filename, "error": e.message} for e in rejected],
    }


@router.put("/files/{file_id}/settings")
def put_file_settings(file_id: str, settings: ConversionSettings, session: ConversionSession = Depends(get_session)):
    try:
        record = session.update_file_settings(file_id, settings)
    except FileNotFound as e:
        raise HTTPException(404, e.message)
    except ValidationError as e:
        raise HTTPException(409, e.message)
    return _record_to_dict(record)


@router.delete("/files/{file_id}")
def remove_file(file_id: str, session: ConversionSession = Depends(get_session)):
    if not session.remove(file_id):
        raise HTTPException(404, "File not found")
    return {"ok": True}


@router.get("/files/{file_id}/preview")
def file_preview(file_id: str, session: ConversionSession = Depends(get_session)):
    record = _require(session, file_id)
    return Response(content=record.data, media_type=record.content_type)


@router.get("/files/{file_id}/download")
def download_file(file_id: str, session: ConversionSession = Depends(get_session)):
    """Download one converted image."""
    record = _require(session, file_id)
    if record.status != FileStatus.DONE or record.result is None:
        raise HTTPException(409, "File has not been converted")
    return Response(
        content=record.result.data,
        media_type=record.result.mime_type,
        headers={"Content-Disposition": _attachment(record.result.filename)},
    )


@router.post("/convert")
async def convert(
    background_tasks: BackgroundTasks,
    session: ConversionSession = Depends(get_session),
    orchestrator: BatchOrchestrator = Depends(get_orchestrator),
):
    """Start converting every pending file. Poll /api/session for progress."""
    if not session.records():
        raise HTTPException(400, "No files selected. Please upload images to convert.")
    if session.is_converting:
        raise HTTPException(409, "A conversion is already running")
    pending = session.pending()
    if not pending:
        raise HTTPException(400, "No pending files to convert")
    session.is_converting = True
    session.overall_progress = 0.0
    background_tasks.add_task(orchestrator.run, session)
    return {
        "status": "converting",
        "file_ids": [r.file_id for r in pending],
        "message": "Conversion started. Poll /api/session for status.",
    }


@router.get("/archive")
def download_archive(session: ConversionSession = Depends(get_session)):
    """Zip of every converted file, once all files have finished."""
    if not session.all_finished:
        raise HTTPException(409, "Conversion has not finished")
    try:
        content = build_archive(session.records())
    except ArchiveFailure as e:
        session.notify("Zipping Failed", e.message, variant="destructive")
        has_done = any(r.status == FileStatus.DONE for r in session.records())
        raise HTTPException(500 if has_done else 409, e.message)
    done = sum(1 for r in session.records() if r.status == FileStatus.DONE)
    session.notify("Download started", f"Zipped {done} converted image(s) into {ARCHIVE_NAME}.")
    return Response(
        content=content,
        media_type="application/zip",
        headers={"Content-Disposition": _attachment(ARCHIVE_NAME)},
    )


@router.post("/metadata")
async def inspect_metadata(file: UploadFile = File(...)):
    """EXIF tags of one image, without the embedded thumbnail."""
    if not (file.content_type or "").startswith("image/"):
        raise HTTPException(415, f'File "{file.filename}" is not a valid image.')
    data = await _read_limited(file)
    report = read_metadata(data)
    return {
        "filename": file.filename,
        "tags": [{"tag": name, "value": value} for name, value in report.tags],
        "message": report.message,
    }
