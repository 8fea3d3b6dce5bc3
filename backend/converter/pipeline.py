"""Per-file conversion: ask the advisor, re-encode, attach the result."""
import asyncio
import logging
from typing import Callable, Optional

from converter.advisor import SettingsAdvisor
from converter.config import ADVISOR_RETRY_ATTEMPTS, ADVISOR_RETRY_DELAY
from converter.conversion.encoder import encode_image, output_filename
from converter.conversion.models import ConversionResult, FileStatus
from converter.exceptions import ConverterError, ServiceUnavailable
from converter.retry import DelayFn, linear_backoff, retry_async
from converter.session import ConversionSession

logger = logging.getLogger("converter.pipeline")

ProgressFn = Callable[[str, float], None]


class ConversionPipeline:
    """Runs one FileRecord from pending to done or error.

    Updates go through ``session.merge`` so a record removed mid-flight is
    left alone. Only ServiceUnavailable from the advisor is retried.
    """

    def __init__(
        self,
        advisor: SettingsAdvisor,
        attempts: int = ADVISOR_RETRY_ATTEMPTS,
        delay: Optional[DelayFn] = None,
        sleep=asyncio.sleep,
    ):
        self.advisor = advisor
        self.attempts = attempts
        self.delay = delay or linear_backoff(ADVISOR_RETRY_DELAY)
        self._sleep = sleep

    async def run(self, session: ConversionSession, file_id: str, on_progress: Optional[ProgressFn] = None) -> bool:
        """Convert one record. Returns True when it ends in status done."""
        record = session.get(file_id)
        if record is None or record.status != FileStatus.PENDING:
            return False
        filename, data, settings = record.filename, record.data, record.settings

        def update(progress: float, **changes) -> None:
            if session.merge(file_id, progress=progress, **changes) and on_progress:
                on_progress(file_id, progress)

        def start_attempt() -> None:
            update(0.0, status=FileStatus.CONVERTING)
            update(10.0)

        def on_retry(attempt: int, exc: BaseException) -> None:
            logger.warning("Retrying conversion for %s... (%s retries left)", filename, self.attempts - attempt)

        async def advise():
            start_attempt()
            return await self.advisor.advise(settings)

        try:
            advice = await retry_async(
                advise,
                attempts=self.attempts,
                delay=self.delay,
                retry_on=ServiceUnavailable,
                on_retry=on_retry,
                sleep=self._sleep,
            )
            update(30.0)
            new_name = output_filename(filename, settings.target_format)
            update(60.0)
            encoded = await asyncio.to_thread(encode_image, data, settings, advice)
            result = ConversionResult(
                data=encoded,
                filename=new_name,
                mime_type=settings.target_format.mime_type,
                rationale=advice.optimization_rationale,
                advice=advice,
                input_size=len(data),
                output_size=len(encoded),
            )
        except ConverterError as e:
            return self._fail(session, file_id, filename, e.message, on_progress)
        except Exception as e:
            logger.exception("Unexpected failure converting %s", filename)
            return self._fail(session, file_id, filename, str(e) or type(e).__name__, on_progress)

        if session.merge(file_id, status=FileStatus.DONE, progress=100.0, result=result, error=None):
            logger.info("Converted %s -> %s (%s -> %s bytes)", filename, new_name, len(data), len(encoded))
            if on_progress:
                on_progress(file_id, 100.0)
            return True
        logger.info("Discarding result for removed file %s", filename)
        return False

    @staticmethod
    def _fail(session: ConversionSession, file_id: str, filename: str, message: str, on_progress) -> bool:
        logger.error("Conversion failed for %s: %s", filename, message)
        if session.merge(file_id, status=FileStatus.ERROR, progress=0.0, error=message):
            session.notify(f"Conversion Failed for {filename}", message, variant="destructive")
            if on_progress:
                on_progress(file_id, 100.0)
        return False
