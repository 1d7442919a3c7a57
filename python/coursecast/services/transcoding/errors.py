"""Transcoding provider error classification.

Adapters raise raw httpx errors; classify_provider_error() turns them into a
ProviderError carrying a transient flag. Transient errors (timeouts, network
failures, 429, 5xx) are retried by call_provider(); everything else is terminal.
"""

import time
from collections.abc import Callable
from typing import TypeVar

import httpx

from coursecast.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")

PROVIDER_MAX_ATTEMPTS = 3
PROVIDER_BACKOFF_BASE_S = 0.5
PROVIDER_BACKOFF_CAP_S = 30.0


class ProviderError(Exception):
    """Exception for transcoding provider failures.

    Attributes:
        message: Human-readable error message
        transient: Whether retrying may succeed
        status_code: Provider HTTP status, if any
    """

    def __init__(self, message: str, *, transient: bool, status_code: int | None = None):
        self.message = message
        self.transient = transient
        self.status_code = status_code
        super().__init__(message)


class ProviderNotConfigured(ProviderError):
    """No provider credentials; direct upload and submit are unavailable."""

    def __init__(self):
        super().__init__("Transcoding provider is not configured", transient=False)


def classify_provider_error(exc: Exception) -> ProviderError:
    """Map an adapter exception to a ProviderError."""
    if isinstance(exc, ProviderError):
        return exc
    if isinstance(exc, httpx.TimeoutException):
        return ProviderError("Provider request timed out", transient=True)
    if isinstance(exc, httpx.TransportError):
        return ProviderError(f"Provider network error: {exc}", transient=True)
    if isinstance(exc, httpx.HTTPStatusError):
        status = exc.response.status_code
        transient = status == 429 or status >= 500
        return ProviderError(
            f"Provider returned {status}", transient=transient, status_code=status
        )
    return ProviderError(f"Unexpected provider error: {type(exc).__name__}", transient=False)


def call_provider(
    operation: Callable[[], T],
    *,
    action: str,
    attempts: int = PROVIDER_MAX_ATTEMPTS,
    sleep: Callable[[float], None] | None = None,
) -> T:
    """Run a provider call, retrying transient failures with backoff.

    Raises:
        ProviderError: Terminal failure, or transient failure after the last attempt.
    """
    sleep = sleep or time.sleep
    for attempt in range(1, attempts + 1):
        try:
            return operation()
        except (ProviderError, httpx.HTTPError) as e:
            error = classify_provider_error(e)
            if not error.transient or attempt == attempts:
                logger.warning(
                    "provider_call_failed",
                    action=action,
                    attempt=attempt,
                    transient=error.transient,
                    status_code=error.status_code,
                    error=error.message,
                )
                raise error from e
            delay = min(PROVIDER_BACKOFF_BASE_S * 2 ** (attempt - 1), PROVIDER_BACKOFF_CAP_S)
            logger.info("provider_call_retry", action=action, attempt=attempt, delay_s=delay)
            sleep(delay)
    raise AssertionError("unreachable")
