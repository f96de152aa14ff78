"""Generic poll engine: observe until a predicate holds, else time out.

Every wait in the harness goes through :func:`poll`. Policies supply an
``observe`` coroutine and a predicate; the engine owns the timing.

Timing policy:
    - The first observation happens immediately. If it satisfies the
      predicate the engine returns without sleeping.
    - Between observations the engine sleeps ``interval``, clamped to the
      time remaining before ``timeout``, so the deadline is never overshot
      by a sleep.
    - When the deadline is reached one last observation is made, so a value
      that became true exactly at the boundary is not discarded.
    - At least one observation always happens, even if ``timeout`` is
      shorter than ``interval``.

Cancellation (``asyncio.CancelledError``) propagates from the sleep or the
observation unchanged.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, Union

from .fields import FieldValue

logger = logging.getLogger("pglifecycle.poll")

Predicate = Callable[[FieldValue], bool]
Observer = Callable[[], Awaitable[FieldValue]]


@dataclass(frozen=True)
class PollSpec:
    """Interval, timeout and predicate for one wait.

    Attributes:
        interval: Seconds between observations. Must be positive.
        timeout: Wall-clock ceiling in seconds. Must be positive.
        predicate: Returns True once the observed value has converged.
    """

    interval: float
    timeout: float
    predicate: Predicate

    def __post_init__(self) -> None:
        if self.interval <= 0:
            raise ValueError(f"Poll interval must be positive, got {self.interval}")
        if self.timeout <= 0:
            raise ValueError(f"Poll timeout must be positive, got {self.timeout}")


@dataclass(frozen=True)
class PollProgress:
    """One non-converged observation, reported to progress callbacks."""

    value: FieldValue
    elapsed: float
    attempt: int


@dataclass(frozen=True)
class Converged:
    value: FieldValue
    elapsed: float
    attempts: int

    converged = True


@dataclass(frozen=True)
class TimedOut:
    value: FieldValue
    elapsed: float
    attempts: int

    converged = False


PollOutcome = Union[Converged, TimedOut]
ProgressCallback = Callable[[PollProgress], None]


async def poll(
    spec: PollSpec,
    observe: Observer,
    on_progress: Optional[ProgressCallback] = None,
    *,
    clock: Callable[[], float] = time.monotonic,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> PollOutcome:
    """Observe until ``spec.predicate`` holds or ``spec.timeout`` elapses.

    Args:
        spec: Interval, timeout and predicate.
        observe: Coroutine function returning the latest value. Exceptions it
            raises are treated as non-recoverable and propagate.
        on_progress: Called with each non-converged observation. Its errors
            are logged and otherwise ignored.
        clock: Monotonic clock, injectable for tests.
        sleep: Async sleep, injectable for tests.

    Returns:
        ``Converged`` with the first value satisfying the predicate, or
        ``TimedOut`` with the last value observed.
    """
    start = clock()
    attempts = 0

    while True:
        value = await observe()
        attempts += 1
        elapsed = clock() - start

        if spec.predicate(value):
            return Converged(value=value, elapsed=elapsed, attempts=attempts)

        remaining = spec.timeout - elapsed
        if remaining <= 0:
            # Deadline passed while observing: this was the boundary check.
            return TimedOut(value=value, elapsed=elapsed, attempts=attempts)

        _report(on_progress, PollProgress(value, elapsed, attempts))
        await sleep(min(spec.interval, remaining))


def _report(callback: Optional[ProgressCallback], progress: PollProgress) -> None:
    if callback is None:
        return
    try:
        callback(progress)
    except Exception:
        logger.warning("Progress callback failed", exc_info=True)


__all__ = [
    "PollSpec",
    "PollProgress",
    "PollOutcome",
    "Converged",
    "TimedOut",
    "poll",
]
