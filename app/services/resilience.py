"""
Resilience patterns for store access.

One shared retry-with-backoff utility for calls to external dependencies
(the database today). Call sites pass their own attempt count and base
delay; nothing retries ad hoc.
"""

import logging
import time
from collections.abc import Callable
from typing import Any, TypeVar

from sqlalchemy.exc import DisconnectionError, OperationalError

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Store errors worth retrying (connection drops, lock timeouts, serialization failures)
TRANSIENT_STORE_ERRORS: tuple[type[Exception], ...] = (OperationalError, DisconnectionError)


def backoff_delay(attempt: int, base_delay: float, max_wait: float) -> float:
    """Exponential backoff: base, 2*base, 4*base, ... capped at max_wait."""
    return min(base_delay * (2 ** (attempt - 1)), max_wait)


def call_with_retry(
    func: Callable[..., T],
    *args: Any,
    max_attempts: int = 3,
    base_delay: float = 1.0,
    max_wait: float = 30.0,
    retry_exceptions: tuple[type[Exception], ...] = (Exception,),
    **kwargs: Any,
) -> T:
    """
    Call a sync function, retrying on the given exceptions with exponential backoff.

    Args:
        func: Function to call
        max_attempts: Maximum number of attempts (>= 1)
        base_delay: Wait before the second attempt (seconds); doubles each retry
        max_wait: Maximum wait time between retries (seconds)
        retry_exceptions: Tuple of exception types to retry on

    Raises:
        The last exception once attempts are exhausted, or any exception
        not listed in retry_exceptions immediately.
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be >= 1")

    name = getattr(func, "__name__", repr(func))

    for attempt in range(1, max_attempts + 1):
        try:
            return func(*args, **kwargs)
        except retry_exceptions as e:
            if attempt == max_attempts:
                logger.error(f"{name} failed after {max_attempts} attempts: {e}")
                raise

            wait_time = backoff_delay(attempt, base_delay, max_wait)
            logger.warning(f"{name} attempt {attempt} failed: {e}. Retrying in {wait_time:.1f}s...")
            if wait_time > 0:
                time.sleep(wait_time)

    raise RuntimeError(f"{name} failed without exception")


def store_retry(func: Callable[..., T], *args: Any, **kwargs: Any) -> T:
    """
    Run a store operation with the configured retry policy.

    Attempts and base delay come from settings (STORE_RETRY_ATTEMPTS,
    STORE_RETRY_BASE_DELAY); only transient store errors are retried.
    The callable must leave the session usable on failure (roll back).
    """
    from app.config import get_settings

    settings = get_settings()
    return call_with_retry(
        func,
        *args,
        max_attempts=settings.STORE_RETRY_ATTEMPTS,
        base_delay=settings.STORE_RETRY_BASE_DELAY,
        retry_exceptions=TRANSIENT_STORE_ERRORS,
        **kwargs,
    )
