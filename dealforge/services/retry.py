"""
Retry/backoff executor for calls to the generative provider.

Attempt 1 runs immediately; retry 1 waits 2-4s and retry 2 waits 6-10s.
Client-error statuses are never retried.
"""
import random
import time
from typing import Any, Callable, Optional, TypeVar

import structlog

from dealforge.exceptions import NonRetryableProviderError, TransientProviderError

logger = structlog.get_logger(__name__)

T = TypeVar("T")

MAX_RETRIES = 2
NON_RETRYABLE_STATUSES = frozenset({400, 401, 403, 404, 413, 422})

# (base seconds, jitter seconds) per retry number
BACKOFF_SCHEDULE = {
    1: (2.0, 2.0),
    2: (6.0, 4.0),
}


def extract_status(error: BaseException) -> Optional[int]:
    """Read an HTTP-like status from an exception, if it carries one."""
    for attr in ("status", "status_code"):
        value = getattr(error, attr, None)
        if isinstance(value, int):
            return value
    response = getattr(error, "response", None)
    if response is not None:
        value = getattr(response, "status_code", None)
        if isinstance(value, int):
            return value
    return None


def backoff_delay(retry_number: int, rand: Callable[[], float] = random.random) -> float:
    """Delay in seconds before the given retry (1-based)."""
    base, jitter = BACKOFF_SCHEDULE.get(retry_number, BACKOFF_SCHEDULE[max(BACKOFF_SCHEDULE)])
    return base + rand() * jitter


def call_with_retry(
    fn: Callable[[], T],
    *,
    label: str,
    max_retries: int = MAX_RETRIES,
    sleep: Callable[[float], Any] = time.sleep,
    rand: Callable[[], float] = random.random,
) -> T:
    """
    Call fn, retrying transient failures.

    Args:
        fn: Zero-argument callable to invoke.
        label: Name used in logs and errors.
        max_retries: Additional attempts after the first.
        sleep: Injected for tests.
        rand: Jitter source in [0, 1).

    Returns:
        Whatever fn returns.

    Raises:
        NonRetryableProviderError: fn failed with a client-error status.
        TransientProviderError: every attempt failed.
    """
    attempts = max_retries + 1
    for attempt in range(1, attempts + 1):
        try:
            return fn()
        except Exception as e:
            status = extract_status(e)
            if status in NON_RETRYABLE_STATUSES:
                logger.warning("provider_call_rejected", label=label, status=status, error=str(e))
                raise NonRetryableProviderError(label, status) from e

            if attempt >= attempts:
                logger.error("provider_call_exhausted", label=label, attempts=attempts, error=str(e))
                raise TransientProviderError(label, attempts) from e

            delay = backoff_delay(attempt, rand)
            logger.warning(
                "provider_call_retrying",
                label=label,
                attempt=attempt,
                max_attempts=attempts,
                delay_seconds=round(delay, 2),
                error=str(e),
                status=status,
            )
            sleep(delay)

    raise TransientProviderError(label, attempts)
