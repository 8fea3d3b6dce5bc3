"""Error kinds raised by intake, the advisor, the encoder and the packager."""
from typing import Optional


class ConverterError(Exception):
    """Base class for converter errors."""

    def __init__(self, message: str, filename: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.filename = filename


class InvalidFileType(ConverterError):
    """A selected file is not an image."""


class ValidationError(ConverterError):
    """Settings or an advisor response do not match the expected shape."""


class AdvisorError(ConverterError):
    """The settings advisor failed in a way that is not worth retrying."""


class ServiceUnavailable(AdvisorError):
    """The settings advisor is temporarily overloaded; safe to retry."""


class ConversionFailure(ConverterError):
    """Decoding or re-encoding an image failed."""


class ArchiveFailure(ConverterError):
    """The bulk download archive could not be produced."""


class FileNotFound(ConverterError):
    """No file record with the given id exists in the session."""
