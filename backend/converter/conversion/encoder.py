"""Re-encode an image into the target format using the advisor's adjusted settings."""
import io
import logging
from pathlib import PurePath

from PIL import Image, UnidentifiedImageError

from converter.config import MAX_COMPRESSION_SPEED, MIN_COMPRESSION_SPEED
from converter.conversion.models import AdvisorResponse, ConversionSettings, TargetFormat
from converter.exceptions import ConversionFailure

logger = logging.getLogger("converter.encoder")


def quality_for_speed(speed: int) -> float:
    """Map compression speed (1 slowest .. 10 fastest) to a 0-1 quality: (11 - speed) / 10."""
    if not MIN_COMPRESSION_SPEED <= speed <= MAX_COMPRESSION_SPEED:
        raise ValueError(f"compression speed out of range: {speed}")
    return (11 - speed) / 10


def output_filename(filename: str, target_format: TargetFormat) -> str:
    """Replace only the final extension with the lowercase target format."""
    name = PurePath(filename).name
    stem, dot, _ = name.rpartition(".")
    base = stem if dot and stem else name
    return f"{base}.{target_format.extension}"


def _webp_method(speed: int) -> int:
    # Pillow method: 0 fastest .. 6 slowest
    return round((MAX_COMPRESSION_SPEED - speed) * 6 / (MAX_COMPRESSION_SPEED - MIN_COMPRESSION_SPEED))


def _png_compress_level(speed: int) -> int:
    return max(1, min(9, MAX_COMPRESSION_SPEED - speed))


def _save_kwargs(target: TargetFormat, quality: int, speed: int, lossless: bool) -> dict:
    if target is TargetFormat.WEBP:
        return {"format": "WEBP", "quality": quality, "method": _webp_method(speed), "lossless": lossless}
    if target is TargetFormat.JPEG:
        return {"format": "JPEG", "quality": quality, "optimize": True}
    if target is TargetFormat.PNG:
        return {"format": "PNG", "compress_level": _png_compress_level(speed)}
    if target is TargetFormat.AVIF:
        kw = {"format": "AVIF", "quality": 100 if lossless else quality, "speed": speed}
        if lossless:
            kw["subsampling"] = "4:4:4"
        return kw
    raise ConversionFailure(f"Unsupported target format: {target}")


def encode_image(data: bytes, settings: ConversionSettings, advice: AdvisorResponse) -> bytes:
    """Decode ``data`` and encode it as ``settings.target_format``.

    Quality comes from the advisor's adjusted compression speed; lossless applies
    to WEBP and AVIF. EXIF and ICC profile are carried over unless metadata is stripped.
    """
    target = settings.target_format
    speed = advice.adjusted_compression_speed
    quality = round(quality_for_speed(speed) * 100)
    save_kw = _save_kwargs(target, quality, speed, advice.adjusted_lossless)
    try:
        with Image.open(io.BytesIO(data)) as img:
            img.load()
            exif = img.info.get("exif")
            icc = img.info.get("icc_profile")
            if target is TargetFormat.JPEG and img.mode not in ("RGB", "L"):
                work = img.convert("RGB")
            elif img.mode not in ("RGB", "RGBA", "L", "LA"):
                work = img.convert("RGBA" if "transparency" in img.info or img.mode == "PA" else "RGB")
            else:
                work = img
            if not settings.strip_metadata:
                if exif:
                    save_kw["exif"] = exif
                if icc:
                    save_kw["icc_profile"] = icc
            out = io.BytesIO()
            work.save(out, **save_kw)
    except (UnidentifiedImageError, OSError, ValueError, KeyError) as e:
        logger.warning("Encoding to %s failed: %s", target.value, e)
        raise ConversionFailure(f"Could not convert image to {target.value}: {e}") from e
    encoded = out.getvalue()
    logger.debug("Encoded %s bytes -> %s bytes as %s (quality=%s)", len(data), len(encoded), target.value, quality)
    return encoded
