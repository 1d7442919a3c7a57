"""Exponential backoff for transient object store failures.

Schedule: base 500 ms, doubling, capped at 30 s, at most 5 attempts.
Only StoreUnavailable is retried; access-denied and validation errors
surface immediately.
"""

import time
from collections.abc import Callable
from typing import TypeVar

from coursecast.logging import get_logger
from coursecast.storage.client import StoreUnavailable

logger = get_logger(__name__)

T = TypeVar("T")

BACKOFF_BASE_S = 0.5
BACKOFF_FACTOR = 2.0
BACKOFF_CAP_S = 30.0
MAX_ATTEMPTS = 5


def backoff_delays(
    attempts: int = MAX_ATTEMPTS,
    base: float = BACKOFF_BASE_S,
    factor: float = BACKOFF_FACTOR,
    cap: float = BACKOFF_CAP_S,
) -> list[float]:
    """Delays slept between attempts (one fewer than attempts)."""
    return [min(base * factor**i, cap) for i in range(max(attempts - 1, 0))]


def with_store_retry(
    operation: Callable[[], T],
    *,
    action: str,
    attempts: int = MAX_ATTEMPTS,
    sleep: Callable[[float], None] | None = None,
) -> T:
    """Run a store operation, retrying StoreUnavailable with backoff.

    Raises:
        StoreUnavailable: After the last attempt fails.
        StorageError: Any non-transient failure, immediately.
    """
    sleep = sleep or time.sleep
    delays = backoff_delays(attempts)
    for attempt in range(1, attempts + 1):
        try:
            return operation()
        except StoreUnavailable as e:
            if attempt == attempts:
                logger.error("store_retry_exhausted", action=action, attempts=attempt)
                raise
            delay = delays[attempt - 1]
            logger.warning(
                "store_retry", action=action, attempt=attempt, delay_s=delay, error=e.message
            )
            sleep(delay)
    raise AssertionError("unreachable")
