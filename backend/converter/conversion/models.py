"""Conversion settings, advisor response and per-file state."""
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from converter.config import (
    DEFAULT_COMPRESSION_SPEED,
    DEFAULT_LOSSLESS,
    DEFAULT_MAX_FILE_SIZE_KB,
    DEFAULT_STRIP_METADATA,
    DEFAULT_TARGET_FORMAT,
    MAX_COMPRESSION_SPEED,
    MAX_FILE_SIZE_KB,
    MIN_COMPRESSION_SPEED,
    MIN_FILE_SIZE_KB,
)
from converter.exceptions import ValidationError


class TargetFormat(str, Enum):
    WEBP = "WEBP"
    PNG = "PNG"
    JPEG = "JPEG"
    AVIF = "AVIF"

    @property
    def extension(self) -> str:
        return self.value.lower()

    @property
    def mime_type(self) -> str:
        return f"image/{self.extension}"


class FileStatus(str, Enum):
    PENDING = "pending"
    CONVERTING = "converting"
    DONE = "done"
    ERROR = "error"

    @property
    def is_terminal(self) -> bool:
        return self in (FileStatus.DONE, FileStatus.ERROR)


class ConversionSettings(BaseModel):
    """Settings form values. Field names on the wire are camelCase."""

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    target_format: TargetFormat = Field(TargetFormat(DEFAULT_TARGET_FORMAT), alias="targetFormat")
    lossless: bool = DEFAULT_LOSSLESS
    compression_speed: int = Field(
        DEFAULT_COMPRESSION_SPEED,
        alias="compressionSpeed",
        ge=MIN_COMPRESSION_SPEED,
        le=MAX_COMPRESSION_SPEED,
    )
    strip_metadata: bool = Field(DEFAULT_STRIP_METADATA, alias="stripMetadata")
    max_file_size_kb: int = Field(
        DEFAULT_MAX_FILE_SIZE_KB,
        alias="maxFileSizeKB",
        ge=MIN_FILE_SIZE_KB,
        le=MAX_FILE_SIZE_KB,
    )

    @classmethod
    def parse(cls, data: dict) -> "ConversionSettings":
        """Validate raw form values, raising the converter's ValidationError."""
        try:
            return cls.model_validate(data)
        except PydanticValidationError as e:
            raise ValidationError(_summarize(e)) from e

    def to_wire(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)


class OptimizeRequest(ConversionSettings):
    """Body of an advisor request: everything but stripMetadata must be sent."""

    target_format: TargetFormat = Field(alias="targetFormat")
    lossless: bool
    compression_speed: int = Field(alias="compressionSpeed", ge=MIN_COMPRESSION_SPEED, le=MAX_COMPRESSION_SPEED)
    max_file_size_kb: int = Field(alias="maxFileSizeKB", ge=MIN_FILE_SIZE_KB, le=MAX_FILE_SIZE_KB)


class AdvisorResponse(BaseModel):
    """Adjusted settings proposed by the settings advisor."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    adjusted_lossless: bool = Field(alias="adjustedLossless")
    adjusted_compression_speed: int = Field(
        alias="adjustedCompressionSpeed",
        ge=MIN_COMPRESSION_SPEED,
        le=MAX_COMPRESSION_SPEED,
    )
    optimization_rationale: str = Field(alias="optimizationRationale")

    def to_wire(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)


def _summarize(error: PydanticValidationError) -> str:
    parts = []
    for err in error.errors():
        loc = ".".join(str(p) for p in err.get("loc", ())) or "settings"
        parts.append(f"{loc}: {err.get('msg')}")
    return "; ".join(parts)


@dataclass(frozen=True)
class ConversionResult:
    data: bytes
    filename: str
    mime_type: str
    rationale: str
    advice: AdvisorResponse
    input_size: int
    output_size: int


class FileRecord:
    """In-memory state of one selected image for the lifetime of a session."""

    def __init__(
        self,
        file_id: str,
        filename: str,
        content_type: str,
        data: bytes,
        settings: ConversionSettings,
        preview_url: Optional[str] = None,
    ):
        self.file_id = file_id
        self.filename = filename
        self.content_type = content_type
        self.data = data
        self.settings = settings
        self.preview_url = preview_url
        self.status = FileStatus.PENDING
        self.progress: float = 0.0
        self.result: Optional[ConversionResult] = None
        self.error: Optional[str] = None

    def release(self) -> None:
        """Drop the preview handle and payloads once the record leaves the session."""
        self.preview_url = None
        self.data = b""
        self.result = None
