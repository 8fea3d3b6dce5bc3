"""Shared fixtures: in-memory images and a scripted settings advisor."""
import io

import pytest
from PIL import Image

from converter.advisor import SettingsAdvisor
from converter.conversion.models import AdvisorResponse, ConversionSettings
from converter.exceptions import ServiceUnavailable


class ScriptedAdvisor(SettingsAdvisor):
    """Replays a list of outcomes; exceptions are raised, anything else echoes the settings."""

    name = "scripted"

    def __init__(self, outcomes=None, speed=None, hook=None):
        self.outcomes = list(outcomes or [])
        self.speed = speed
        self.hook = hook
        self.calls: list[ConversionSettings] = []

    async def advise(self, settings: ConversionSettings) -> AdvisorResponse:
        self.calls.append(settings)
        if self.hook is not None:
            await self.hook(settings)
        outcome = self.outcomes.pop(0) if self.outcomes else None
        if isinstance(outcome, BaseException):
            raise outcome
        if isinstance(outcome, AdvisorResponse):
            return outcome
        return AdvisorResponse(
            adjusted_lossless=settings.lossless,
            adjusted_compression_speed=self.speed or settings.compression_speed,
            optimization_rationale="Settings already meet the size target.",
        )


def unavailable(n: int) -> list[ServiceUnavailable]:
    return [ServiceUnavailable("503 Service Unavailable") for _ in range(n)]


async def no_sleep(_seconds: float) -> None:
    return None


def make_image_bytes(fmt: str = "PNG", size=(32, 24), mode: str = "RGBA", exif=None) -> bytes:
    color = (200, 40, 90, 255) if mode == "RGBA" else (200, 40, 90)
    img = Image.new(mode, size, color)
    buf = io.BytesIO()
    kwargs = {"exif": exif} if exif is not None else {}
    img.save(buf, format=fmt, **kwargs)
    return buf.getvalue()


@pytest.fixture
def png_bytes():
    return make_image_bytes("PNG")


@pytest.fixture
def jpeg_with_exif():
    exif = Image.Exif()
    exif[0x010F] = "TestCam"  # Make
    exif[0x0110] = "Model X"  # Model
    return make_image_bytes("JPEG", mode="RGB", exif=exif.tobytes())


@pytest.fixture
def settings():
    return ConversionSettings()
