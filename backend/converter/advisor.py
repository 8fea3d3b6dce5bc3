"""Settings advisor: asks a hosted model to adjust lossless/speed for a file size target.

The trade-off between size, quality and speed is left to the model. Callers
only see ``advise(settings) -> AdvisorResponse`` and two error kinds:
``ServiceUnavailable`` (transient, retry) and ``ValidationError`` (bad response).
"""
import json
import logging
from abc import ABC, abstractmethod
from typing import Optional

import httpx
from google import genai
from google.genai import errors as genai_errors
from google.genai import types
from pydantic import ValidationError as PydanticValidationError

from converter.config import ADVISOR_MODEL, ADVISOR_TIMEOUT, ADVISOR_URL, GEMINI_API_KEY
from converter.conversion.models import AdvisorResponse, ConversionSettings
from converter.exceptions import AdvisorError, ServiceUnavailable, ValidationError

logger = logging.getLogger("converter.advisor")

PROMPT_TEMPLATE = """You are an expert image compression optimizer. Given the user's desired image format, lossless setting, compression speed, and maximum file size, you will determine the optimal lossless and compression speed settings to meet the file size constraint while maintaining the best possible image quality.

Here's the information:

Desired Format: {target_format}
Initial Lossless Setting: {lossless}
Initial Compression Speed: {compression_speed}
Maximum File Size (KB): {max_file_size_kb}

Based on this information, provide the adjusted lossless and compression speed settings, along with a clear explanation of your reasoning. If the initial settings are likely to meet the file size constraint, keep them as they are. Otherwise, adjust them strategically, prioritizing image quality as much as possible.

Output the adjusted settings and the rationale in a JSON format.
"""

RESPONSE_SCHEMA = {
    "type": "OBJECT",
    "properties": {
        "adjustedLossless": {
            "type": "BOOLEAN",
            "description": "The adjusted lossless setting based on the file size constraint.",
        },
        "adjustedCompressionSpeed": {
            "type": "INTEGER",
            "description": "The adjusted compression speed from 1 (slowest) to 10 (fastest).",
        },
        "optimizationRationale": {
            "type": "STRING",
            "description": "Explanation of why and how the settings were adjusted.",
        },
    },
    "required": ["adjustedLossless", "adjustedCompressionSpeed", "optimizationRationale"],
}


def build_prompt(settings: ConversionSettings) -> str:
    return PROMPT_TEMPLATE.format(
        target_format=settings.target_format.value,
        lossless=str(settings.lossless).lower(),
        compression_speed=settings.compression_speed,
        max_file_size_kb=settings.max_file_size_kb,
    )


def parse_advice(payload) -> AdvisorResponse:
    """Validate a JSON string or dict into an AdvisorResponse."""
    try:
        if isinstance(payload, (str, bytes)):
            return AdvisorResponse.model_validate_json(payload)
        return AdvisorResponse.model_validate(payload)
    except PydanticValidationError as e:
        raise ValidationError(f"Advisor response has unexpected shape: {e.error_count()} error(s)") from e


class SettingsAdvisor(ABC):
    """Narrow interface the conversion pipeline depends on."""

    name = "advisor"

    @abstractmethod
    async def advise(self, settings: ConversionSettings) -> AdvisorResponse:
        ...


class GeminiAdvisor(SettingsAdvisor):
    """Advisor backed by a hosted Gemini model through google-genai."""

    name = "gemini"

    def __init__(self, api_key: str, model: str = ADVISOR_MODEL, timeout: float = ADVISOR_TIMEOUT, client=None):
        self.model = model
        self._client = client or genai.Client(
            api_key=api_key,
            http_options=types.HttpOptions(timeout=int(timeout * 1000)),
        )
        self._config = types.GenerateContentConfig(
            response_mime_type="application/json",
            response_schema=RESPONSE_SCHEMA,
            temperature=0.2,
        )

    async def advise(self, settings: ConversionSettings) -> AdvisorResponse:
        try:
            response = await self._client.aio.models.generate_content(
                model=self.model,
                contents=build_prompt(settings),
                config=self._config,
            )
        except genai_errors.APIError as e:
            if e.code == 503:
                raise ServiceUnavailable(f"503 Service Unavailable: {e.message or e}") from e
            raise AdvisorError(f"Advisor request failed ({e.code}): {e.message or e}") from e
        except httpx.TimeoutException as e:
            raise ServiceUnavailable("Advisor request timed out") from e
        text = response.text
        if not text:
            raise ValidationError("Advisor returned an empty response")
        advice = parse_advice(text)
        logger.info(
            "Advisor (%s) adjusted %s: lossless=%s speed=%s",
            self.model, settings.target_format.value,
            advice.adjusted_lossless, advice.adjusted_compression_speed,
        )
        return advice


class RemoteAdvisor(SettingsAdvisor):
    """Advisor reached through another instance's POST /api/optimize."""

    name = "remote"

    def __init__(self, url: str, timeout: float = ADVISOR_TIMEOUT, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.url = url
        self._timeout = timeout
        self._transport = transport

    async def advise(self, settings: ConversionSettings) -> AdvisorResponse:
        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                resp = await client.post(self.url, json=settings.to_wire())
        except httpx.TimeoutException as e:
            raise ServiceUnavailable("Advisor request timed out") from e
        except httpx.HTTPError as e:
            raise AdvisorError(f"Advisor request failed: {e}") from e
        if resp.status_code == 503:
            raise ServiceUnavailable(f"503 Service Unavailable - {_detail(resp)}")
        if resp.status_code == 422:
            raise ValidationError(_detail(resp))
        if resp.status_code >= 400:
            raise AdvisorError(f"API Error: {resp.status_code} - {_detail(resp)}")
        try:
            payload = resp.json()
        except json.JSONDecodeError as e:
            raise ValidationError("Advisor returned invalid JSON") from e
        return parse_advice(payload)


def _detail(resp: httpx.Response) -> str:
    try:
        body = resp.json()
    except json.JSONDecodeError:
        return resp.text
    if isinstance(body, dict) and "detail" in body:
        return str(body["detail"])
    return resp.text


class StaticAdvisor(SettingsAdvisor):
    """Keeps the requested settings. Used when no hosted model is configured."""

    name = "static"

    async def advise(self, settings: ConversionSettings) -> AdvisorResponse:
        return AdvisorResponse(
            adjusted_lossless=settings.lossless,
            adjusted_compression_speed=settings.compression_speed,
            optimization_rationale="No optimization service configured; the requested settings were kept.",
        )


# Singleton
_advisor: Optional[SettingsAdvisor] = None


def get_advisor() -> SettingsAdvisor:
    global _advisor
    if _advisor is None:
        if ADVISOR_URL:
            _advisor = RemoteAdvisor(ADVISOR_URL)
        elif GEMINI_API_KEY:
            _advisor = GeminiAdvisor(GEMINI_API_KEY)
        else:
            logger.warning("GEMINI_API_KEY not set; settings will not be optimized")
            _advisor = StaticAdvisor()
        logger.info("Settings advisor: %s", _advisor.name)
    return _advisor
