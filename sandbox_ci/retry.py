"""Bounded retry loop shared by readiness polling and package installation."""

from dataclasses import dataclass, field
from typing import Callable, List, Optional

from .clock import Clock, SystemClock


@dataclass
class RetryOutcome:
    """What happened during a retry loop."""

    ok: bool
    attempts: int
    delays: List[float] = field(default_factory=list)


def linear_delay(step: float) -> Callable[[int], float]:
    """Delay that grows with the attempt number: attempt * step."""
    return lambda attempt: float(attempt) * float(step)


def constant_delay(seconds: float) -> Callable[[int], float]:
    return lambda attempt: float(seconds)


def retry(
    predicate: Callable[[int], bool],
    max_attempts: int,
    delay_fn: Callable[[int], float],
    *,
    clock: Optional[Clock] = None,
    on_failure: Optional[Callable[[int, float], None]] = None,
) -> RetryOutcome:
    """Call ``predicate`` until it returns True or ``max_attempts`` is reached.

    Args:
        predicate: Called with the 1-based attempt number.
        max_attempts: Hard cap on the number of calls.
        delay_fn: Maps the failed attempt number to the sleep before the next one.
        clock: Source of ``sleep``; defaults to the system clock.
        on_failure: Optional hook called with (attempt, delay) after each
            failed attempt that will be retried.

    Returns:
        RetryOutcome. No sleep happens after the final failed attempt.
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be at least 1")
    clock = clock or SystemClock()
    delays: List[float] = []
    for attempt in range(1, max_attempts + 1):
        if predicate(attempt):
            return RetryOutcome(ok=True, attempts=attempt, delays=delays)
        if attempt == max_attempts:
            break
        delay = delay_fn(attempt)
        if on_failure is not None:
            on_failure(attempt, delay)
        delays.append(delay)
        clock.sleep(delay)
    return RetryOutcome(ok=False, attempts=max_attempts, delays=delays)
