"""Bounded retry with backoff for coroutine functions."""
import asyncio
import logging
from typing import Awaitable, Callable, Optional, TypeVar, Union

logger = logging.getLogger("converter.retry")

T = TypeVar("T")
DelayFn = Callable[[int], float]
ExcTypes = Union[type[BaseException], tuple[type[BaseException], ...]]


def linear_backoff(base: float) -> DelayFn:
    """Delay ``n * base`` seconds before retry ``n`` (1-based)."""
    return lambda n: n * base


def exponential_backoff(base: float, factor: float = 2.0) -> DelayFn:
    return lambda n: base * factor ** (n - 1)


async def retry_async(
    fn: Callable[[], Awaitable[T]],
    *,
    attempts: int,
    delay: DelayFn,
    retry_on: ExcTypes,
    on_retry: Optional[Callable[[int, BaseException], None]] = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """Call ``fn`` up to ``attempts`` times, retrying only on ``retry_on``.

    ``on_retry(n, exc)`` runs before the n-th retry's backoff. The last
    exception propagates once attempts are exhausted.
    """
    if attempts < 1:
        raise ValueError("attempts must be >= 1")
    attempt = 1
    while True:
        try:
            return await fn()
        except retry_on as e:
            if attempt >= attempts:
                logger.warning("Giving up after %s attempts: %s", attempt, e)
                raise
            if on_retry:
                on_retry(attempt, e)
            wait = delay(attempt)
            logger.warning("Attempt %s/%s failed (%s); retrying in %.1fs", attempt, attempts, e, wait)
            await sleep(wait)
            attempt += 1
