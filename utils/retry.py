"""
Retry with exponential backoff for transient errors.

Used for Google API calls (Drive, Gmail) and for the AI classifier, which can
all fail temporarily with rate limits, 5xx responses or network hiccups.
Delays double after each failed attempt (capped at max_delay) and are
multiplied by a random jitter factor in [0.5, 1.5) so concurrent clients do
not retry in lockstep.

Usage:
    from utils.retry import retry_on_transient_error

    @retry_on_transient_error(is_retryable=lambda e: isinstance(e, TimeoutError),
                              max_retries=3)
    def call_api():
        return api.do_something()
"""

import random
import time
from functools import wraps
from typing import Callable, Optional


# HTTP status codes that indicate a transient server-side condition
TRANSIENT_HTTP_STATUS_CODES = {
    429,  # Too Many Requests
    500,  # Internal Server Error
    502,  # Bad Gateway
    503,  # Service Unavailable
    504,  # Gateway Timeout
}

# Exception types that are usually transient network failures
TRANSIENT_NETWORK_EXCEPTIONS = (
    ConnectionError,
    TimeoutError,
    OSError,
)


def backoff_delay(attempt: int, base_delay: float, max_delay: float) -> float:
    """Delay before retry number ``attempt`` (0-based), with jitter applied."""
    delay = min(base_delay * (2 ** attempt), max_delay)
    return delay * (0.5 + random.random())


def retry_on_transient_error(
    is_retryable: Callable[[Exception], bool],
    max_retries: int = 5,
    base_delay: float = 1.0,
    max_delay: float = 60.0,
    on_retry: Optional[Callable[[Exception, int, float], None]] = None,
    sleep: Callable[[float], None] = time.sleep,
):
    """Decorator that retries a function on transient errors.

    Args:
        is_retryable: Returns True if an exception should be retried.
            Anything else propagates immediately.
        max_retries: Retries after the first attempt (total attempts =
            max_retries + 1).
        base_delay: Delay in seconds before the first retry.
        max_delay: Upper bound for a single delay before jitter.
        on_retry: Called as on_retry(exc, attempt, delay) before sleeping;
            attempt is 1-based.
        sleep: Sleep function, replaceable in tests.

    Raises:
        The last retryable exception once all attempts are exhausted.
    """

    def decorator(func: Callable) -> Callable:
        @wraps(func)
        def wrapper(*args, **kwargs):
            for attempt in range(max_retries + 1):
                try:
                    return func(*args, **kwargs)
                except Exception as exc:
                    if not is_retryable(exc) or attempt == max_retries:
                        raise
                    delay = backoff_delay(attempt, base_delay, max_delay)
                    if on_retry:
                        on_retry(exc, attempt + 1, delay)
                    sleep(delay)
        return wrapper
    return decorator


def is_transient_network_error(exc: Exception) -> bool:
    """Check if an exception looks like a transient network error."""
    return isinstance(exc, TRANSIENT_NETWORK_EXCEPTIONS)
