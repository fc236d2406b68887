"""
fastcomm/services/retry.py

Reusable retry-with-backoff helper for async external calls.

Used by:
- Jotform form creation (exponential: 2s, 4s, 8s)
- GitHub repository writes (fixed 1s on sha conflicts)
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Sequence, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


def exponential_delays(base: float = 2.0, factor: float = 2.0, count: int = 3) -> tuple[float, ...]:
    """Return a delay schedule such as (2.0, 4.0, 8.0)."""
    return tuple(base * (factor ** i) for i in range(count))


def fixed_delays(delay: float = 1.0, count: int = 3) -> tuple[float, ...]:
    """Return a constant delay schedule such as (1.0, 1.0, 1.0)."""
    return tuple(delay for _ in range(count))


async def retry_async(
    operation: Callable[[], Awaitable[T]],
    *,
    attempts: int,
    delays: Sequence[float],
    retry_if: Callable[[BaseException], bool],
    label: str = "operation",
) -> T:
    """
    Run `operation` up to `attempts` times.

    After a failed attempt the error is passed to `retry_if`; when it
    returns False, or no attempts remain, the error is re-raised.
    Between attempts the helper sleeps delays[attempt_number - 1]
    (the last delay is reused if the schedule is shorter).

    Attempts run sequentially, never in parallel.
    """
    if attempts < 1:
        raise ValueError("attempts must be >= 1")

    for attempt in range(1, attempts + 1):
        try:
            return await operation()
        except Exception as exc:
            if attempt >= attempts or not retry_if(exc):
                raise

            delay = delays[min(attempt - 1, len(delays) - 1)] if delays else 0.0
            logger.warning(
                "🔁 %s failed (attempt %d/%d): %s, retrying in %.1fs",
                label, attempt, attempts, exc, delay,
            )
            await asyncio.sleep(delay)

    # unreachable: the loop either returns or raises
    raise RuntimeError(f"{label} exhausted without result")
