"""Bundle converted outputs into a single zip for bulk download."""
import io
import logging
import zipfile
from pathlib import PurePath

from converter.conversion.models import FileRecord, FileStatus
from converter.exceptions import ArchiveFailure

logger = logging.getLogger("converter.packager")


def _unique_name(name: str, used: set[str]) -> str:
    if name not in used:
        return name
    path = PurePath(name)
    n = 1
    while True:
        candidate = f"{path.stem} ({n}){path.suffix}"
        if candidate not in used:
            return candidate
        n += 1


def build_archive(records: list[FileRecord]) -> bytes:
    """Zip every done record's output under its output filename.

    Raises ArchiveFailure when no record qualifies or the zip cannot be written.
    """
    converted = [r for r in records if r.status == FileStatus.DONE and r.result is not None]
    if not converted:
        raise ArchiveFailure("There are no successfully converted images to download.")
    buf = io.BytesIO()
    used: set[str] = set()
    try:
        with zipfile.ZipFile(buf, "w", zipfile.ZIP_DEFLATED) as zf:
            for record in converted:
                arcname = _unique_name(record.result.filename, used)
                used.add(arcname)
                zf.writestr(arcname, record.result.data)
    except (zipfile.BadZipFile, OSError, ValueError) as e:
        logger.exception("Zipping failed: %s", e)
        raise ArchiveFailure(f"Could not create the zip file: {e}") from e
    logger.info("Created archive with %s file(s)", len(converted))
    return buf.getvalue()
