import pytest

from fastcomm.services import retry
from fastcomm.services.retry import exponential_delays, fixed_delays, retry_async


@pytest.fixture
def sleeps(monkeypatch):
    recorded = []

    async def fake_sleep(delay):
        recorded.append(delay)

    monkeypatch.setattr(retry.asyncio, "sleep", fake_sleep)
    return recorded


class Flaky:
    def __init__(self, failures, exc=RuntimeError):
        self.failures = failures
        self.exc = exc
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        if self.calls <= self.failures:
            raise self.exc(f"failure {self.calls}")
        return "ok"


def test_delay_schedules():
    assert exponential_delays() == (2.0, 4.0, 8.0)
    assert fixed_delays() == (1.0, 1.0, 1.0)


@pytest.mark.asyncio
async def test_succeeds_after_transient_failures(sleeps):
    op = Flaky(failures=2)

    result = await retry_async(op, attempts=3, delays=exponential_delays(), retry_if=lambda e: True)

    assert result == "ok"
    assert op.calls == 3
    assert sleeps == [2.0, 4.0]


@pytest.mark.asyncio
async def test_exhaustion_reraises_last_error(sleeps):
    op = Flaky(failures=5)

    with pytest.raises(RuntimeError, match="failure 3"):
        await retry_async(op, attempts=3, delays=(1.0,), retry_if=lambda e: True)

    assert op.calls == 3
    assert sleeps == [1.0, 1.0]


@pytest.mark.asyncio
async def test_non_retryable_error_is_raised_immediately(sleeps):
    op = Flaky(failures=1, exc=KeyError)

    with pytest.raises(KeyError):
        await retry_async(op, attempts=3, delays=(1.0,), retry_if=lambda e: isinstance(e, RuntimeError))

    assert op.calls == 1
    assert sleeps == []


@pytest.mark.asyncio
async def test_attempts_must_be_positive():
    with pytest.raises(ValueError):
        await retry_async(Flaky(0), attempts=0, delays=(), retry_if=lambda e: True)
