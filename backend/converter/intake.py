"""File intake: turn selected files into pending FileRecords, rejecting non-images."""
import logging
from dataclasses import dataclass
from typing import Optional

from converter.config import MAX_IMAGE_SIZE_BYTES, MAX_IMAGE_SIZE_MB
from converter.conversion.models import ConversionSettings, FileRecord
from converter.exceptions import ConverterError, InvalidFileType, ValidationError
from converter.session import ConversionSession

logger = logging.getLogger("converter.intake")


@dataclass
class IncomingFile:
    filename: str
    content_type: str
    data: bytes
    last_modified: int = 0


def preview_url(file_id: str) -> str:
    return f"/api/files/{file_id}/preview"


def make_file_id(incoming: IncomingFile, index: int, taken) -> str:
    """``{name}-{lastModified}-{index}``, suffixed when already used in the session."""
    base = f"{incoming.filename}-{incoming.last_modified}-{index}"
    file_id, n = base, 1
    while taken(file_id):
        file_id = f"{base}-{n}"
        n += 1
    return file_id


def check_file(incoming: IncomingFile) -> None:
    if not (incoming.content_type or "").lower().startswith("image/"):
        raise InvalidFileType(f'File "{incoming.filename}" is not a valid image.', filename=incoming.filename)
    if len(incoming.data) > MAX_IMAGE_SIZE_BYTES:
        raise ValidationError(
            f'File "{incoming.filename}" is too large (max {MAX_IMAGE_SIZE_MB} MB).',
            filename=incoming.filename,
        )


def accept_files(
    session: ConversionSession,
    files: list[IncomingFile],
    settings: Optional[ConversionSettings] = None,
) -> tuple[list[FileRecord], list[ConverterError]]:
    """Queue every image in ``files`` on ``session``; others are rejected one by one.

    Each accepted record gets a copy of ``settings`` (the session's current form
    values by default). Rejections raise a destructive notice but never stop the rest.
    """
    settings = settings or session.settings
    accepted: list[FileRecord] = []
    rejected: list[ConverterError] = []
    for index, incoming in enumerate(files):
        try:
            check_file(incoming)
        except InvalidFileType as e:
            logger.warning("Rejected %s (%s)", incoming.filename, incoming.content_type)
            session.notify("Error: Invalid File Type", e.message, variant="destructive")
            rejected.append(e)
            continue
        except ValidationError as e:
            logger.warning("Rejected %s: %s", incoming.filename, e.message)
            session.notify("Error: File Too Large", e.message, variant="destructive")
            rejected.append(e)
            continue
        file_id = make_file_id(incoming, index, session.id_taken)
        record = FileRecord(
            file_id=file_id,
            filename=incoming.filename,
            content_type=incoming.content_type,
            data=incoming.data,
            settings=settings,
            preview_url=preview_url(file_id),
        )
        session.add(record)
        accepted.append(record)
    logger.info("Queued %s file(s), rejected %s", len(accepted), len(rejected))
    return accepted, rejected
