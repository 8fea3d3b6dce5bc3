from .encoder import encode_image, output_filename, quality_for_speed
from .models import AdvisorResponse, ConversionResult, ConversionSettings, FileRecord, FileStatus, TargetFormat

__all__ = [
    "AdvisorResponse",
    "ConversionResult",
    "ConversionSettings",
    "FileRecord",
    "FileStatus",
    "TargetFormat",
    "encode_image",
    "output_filename",
    "quality_for_speed",
]
