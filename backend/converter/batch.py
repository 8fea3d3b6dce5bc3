"""Batch orchestration: convert every pending record of a session concurrently."""
import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Optional

from converter.conversion.models import FileStatus
from converter.pipeline import ConversionPipeline
from converter.session import ConversionSession

logger = logging.getLogger("converter.batch")


@dataclass
class BatchRun:
    file_ids: list[str]
    started_at: float = field(default_factory=time.time)
    finished_at: Optional[float] = None
    done: int = 0
    failed: int = 0


def aggregate_progress(session: ConversionSession, file_ids: list[str]) -> float:
    """Mean progress over ``file_ids``; terminal or removed records count as complete."""
    if not file_ids:
        return 100.0
    total = 0.0
    for file_id in file_ids:
        record = session.get(file_id)
        if record is None or record.status.is_terminal:
            total += 100.0
        elif record.status == FileStatus.CONVERTING:
            total += record.progress
        # pending contributes 0
    return total / len(file_ids)


class BatchOrchestrator:
    """Drives all pending records of a session through the pipeline at once.

    A failed file never stops its siblings; retries happen inside the pipeline.
    """

    def __init__(self, pipeline: ConversionPipeline):
        self.pipeline = pipeline

    async def run(self, session: ConversionSession) -> BatchRun:
        file_ids = [r.file_id for r in session.pending()]
        batch = BatchRun(file_ids=file_ids)
        session.active_batch = batch
        if not file_ids:
            session.is_converting = False
            return batch
        session.is_converting = True
        session.overall_progress = 0.0
        logger.info("Converting %s file(s) in session %s", len(file_ids), session.session_id[:8])

        def current() -> bool:
            # a reset or a newer batch owns the session-wide flags now
            return session.active_batch is batch

        def on_progress(_file_id: str, _progress: float) -> None:
            if not current():
                return
            # never move the bar backwards, e.g. when a retry restarts a file
            session.overall_progress = max(session.overall_progress, aggregate_progress(session, file_ids))

        try:
            outcomes = await asyncio.gather(
                *(self.pipeline.run(session, file_id, on_progress) for file_id in file_ids),
                return_exceptions=True,
            )
        finally:
            if current():
                session.is_converting = False
        for file_id, outcome in zip(file_ids, outcomes):
            if outcome is True:
                batch.done += 1
            else:
                batch.failed += 1
                if isinstance(outcome, BaseException):
                    logger.error("Pipeline crashed for %s: %s", file_id, outcome)
                    session.merge(file_id, status=FileStatus.ERROR, progress=0.0, error=str(outcome))
        if current():
            session.overall_progress = 100.0
            session.active_batch = None
        batch.finished_at = time.time()
        logger.info(
            "Batch finished in %.1fs: %s done, %s failed or removed",
            batch.finished_at - batch.started_at, batch.done, batch.failed,
        )
        return batch
