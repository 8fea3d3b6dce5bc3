"""Read embedded EXIF tags for display. Independent of the conversion pipeline."""
import io
import logging
from dataclasses import dataclass, field
from typing import Optional

from PIL import ExifTags, Image, UnidentifiedImageError

logger = logging.getLogger("converter.metadata")

NO_METADATA = "No EXIF metadata found in this image."
UNREADABLE = "Could not read metadata from this file. It might be corrupted or not a supported image format."

# thumbnail payload lives in IFD1 (never read); these point at it from IFD0 in some files
_THUMBNAIL_TAG_IDS = {0x0201, 0x0202}  # JpegIFOffset, JpegIFByteCount
_MAX_VALUE_LEN = 256


@dataclass
class MetadataReport:
    tags: list[tuple[str, str]] = field(default_factory=list)
    message: Optional[str] = None


def _describe(value) -> str:
    if isinstance(value, bytes):
        try:
            text = value.decode("ascii").strip("\x00 ")
        except UnicodeDecodeError:
            return f"<{len(value)} bytes>"
        return text if text.isprintable() else f"<{len(value)} bytes>"
    if isinstance(value, tuple):
        return ", ".join(_describe(v) for v in value)
    text = str(value)
    return text if len(text) <= _MAX_VALUE_LEN else text[:_MAX_VALUE_LEN] + "..."


def _tag_name(tag_id: int, table: dict) -> str:
    return table.get(tag_id) or ExifTags.TAGS.get(tag_id) or f"Tag 0x{tag_id:04x}"


def read_metadata(data: bytes) -> MetadataReport:
    try:
        with Image.open(io.BytesIO(data)) as img:
            exif = img.getexif()
            rows: list[tuple[str, str]] = []
            for tag_id, value in exif.items():
                if tag_id in (ExifTags.IFD.Exif, ExifTags.IFD.GPSInfo) or tag_id in _THUMBNAIL_TAG_IDS:
                    continue
                rows.append((_tag_name(tag_id, ExifTags.TAGS), _describe(value)))
            for tag_id, value in exif.get_ifd(ExifTags.IFD.Exif).items():
                rows.append((_tag_name(tag_id, ExifTags.TAGS), _describe(value)))
            for tag_id, value in exif.get_ifd(ExifTags.IFD.GPSInfo).items():
                rows.append((_tag_name(tag_id, ExifTags.GPSTAGS), _describe(value)))
    except (UnidentifiedImageError, OSError, ValueError, SyntaxError) as e:
        logger.info("Could not read metadata: %s", e)
        return MetadataReport(message=UNREADABLE)
    if not rows:
        return MetadataReport(message=NO_METADATA)
    return MetadataReport(tags=rows)
