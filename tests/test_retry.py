"""Tests for the bounded retry helper."""
import pytest

from converter.exceptions import ServiceUnavailable, ValidationError
from converter.retry import exponential_backoff, linear_backoff, retry_async


class Flaky:
    def __init__(self, failures, exc=ServiceUnavailable):
        self.failures = failures
        self.exc = exc
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        if self.calls <= self.failures:
            raise self.exc("boom")
        return "ok"


class Sleeps:
    def __init__(self):
        self.delays = []

    async def __call__(self, seconds):
        self.delays.append(seconds)


@pytest.mark.asyncio
async def test_succeeds_after_transient_failures():
    fn, sleep = Flaky(2), Sleeps()
    result = await retry_async(fn, attempts=3, delay=linear_backoff(1.0), retry_on=ServiceUnavailable, sleep=sleep)
    assert result == "ok"
    assert fn.calls == 3
    assert sleep.delays == [1.0, 2.0]


@pytest.mark.asyncio
async def test_gives_up_after_attempts():
    fn, sleep = Flaky(5), Sleeps()
    with pytest.raises(ServiceUnavailable):
        await retry_async(fn, attempts=3, delay=linear_backoff(1.0), retry_on=ServiceUnavailable, sleep=sleep)
    assert fn.calls == 3
    assert len(sleep.delays) == 2


@pytest.mark.asyncio
async def test_other_errors_not_retried():
    fn, sleep = Flaky(1, exc=ValidationError), Sleeps()
    with pytest.raises(ValidationError):
        await retry_async(fn, attempts=3, delay=linear_backoff(1.0), retry_on=ServiceUnavailable, sleep=sleep)
    assert fn.calls == 1
    assert sleep.delays == []


@pytest.mark.asyncio
async def test_on_retry_called_per_retry():
    seen = []
    await retry_async(
        Flaky(2), attempts=3, delay=linear_backoff(0.5), retry_on=ServiceUnavailable,
        on_retry=lambda n, e: seen.append(n), sleep=Sleeps(),
    )
    assert seen == [1, 2]


@pytest.mark.asyncio
async def test_attempts_must_be_positive():
    with pytest.raises(ValueError):
        await retry_async(Flaky(0), attempts=0, delay=linear_backoff(1), retry_on=ServiceUnavailable)


def test_backoff_functions():
    assert [linear_backoff(1.0)(n) for n in (1, 2, 3)] == [1.0, 2.0, 3.0]
    assert [exponential_backoff(0.5)(n) for n in (1, 2, 3)] == [0.5, 1.0, 2.0]
