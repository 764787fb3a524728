"""
Retry with exponential backoff for errors marked retryable (conflicts).

Delays: 50 ms, 100 ms, 200 ms ... capped at 1 s; at most 5 attempts.
"""
import logging
import time
from typing import Callable, Optional, TypeVar

from .errors import KanbanError

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_ATTEMPTS = 5
DEFAULT_INITIAL_DELAY = 0.05
DEFAULT_MAX_DELAY = 1.0


def backoff_delays(attempts: int = DEFAULT_ATTEMPTS,
                   initial_delay: float = DEFAULT_INITIAL_DELAY,
                   max_delay: float = DEFAULT_MAX_DELAY):
    """The sleeps taken between attempts (one fewer than attempts)."""
    delay = initial_delay
    for _ in range(max(attempts - 1, 0)):
        yield delay
        delay = min(delay * 2, max_delay)


def retry_on_conflict(fn: Callable[[], T],
                      attempts: int = DEFAULT_ATTEMPTS,
                      initial_delay: float = DEFAULT_INITIAL_DELAY,
                      max_delay: float = DEFAULT_MAX_DELAY,
                      is_retryable: Optional[Callable[[Exception], bool]] = None,
                      sleep: Callable[[float], None] = time.sleep) -> T:
    """Call fn, retrying while it raises a retryable error."""
    if attempts <= 0:
        raise ValueError(f"attempts must be positive, got {attempts}")
    check = is_retryable or (lambda e: isinstance(e, KanbanError) and e.retryable)
    delays = backoff_delays(attempts, initial_delay, max_delay)
    attempt = 0
    while True:
        attempt += 1
        try:
            return fn()
        except Exception as e:
            if not check(e) or attempt >= attempts:
                raise
            delay = next(delays)
            logger.warning(
                f"Attempt {attempt}/{attempts} failed: {e}. Retrying after {int(delay * 1000)}ms..."
            )
            sleep(delay)
