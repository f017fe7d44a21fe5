"""Retry utilities for handling transient failures."""

from __future__ import annotations

import logging
import time
from functools import wraps
from typing import Any, Callable, Optional, Tuple, Type

logger = logging.getLogger(__name__)


class NonRetryableError(Exception):
    """Exception that indicates an operation should not be retried."""
    pass


def backoff_delay(attempt: int, delay: float = 1.0, backoff: float = 2.0) -> float:
    """Delay before the given (1-based) retry attempt with exponential backoff."""
    if delay <= 0:
        return 0.0
    return delay * (backoff ** max(attempt - 1, 0))


def retry(
    max_attempts: int = 3,
    delay: float = 1.0,
    backoff: float = 2.0,
    exceptions: Tuple[Type[BaseException], ...] = (Exception,),
    on_retry: Optional[Callable[[BaseException, int], None]] = None
):
    """Retry decorator with exponential backoff.

    Args:
        max_attempts: Maximum number of attempts
        delay: Initial delay between retries in seconds
        backoff: Multiplier for delay after each retry
        exceptions: Tuple of exceptions to catch and retry
        on_retry: Optional callback function called on each retry (exception, attempt_number)

    Example:
        @retry(max_attempts=3, delay=1.0, backoff=2.0)
        def connect():
            ...
    """
    def decorator(func: Callable) -> Callable:
        @wraps(func)
        def wrapper(*args, **kwargs) -> Any:
            for attempt in range(1, max_attempts + 1):
                try:
                    return func(*args, **kwargs)
                except exceptions as e:
                    if isinstance(e, NonRetryableError):
                        logger.error(f"Non-retryable error in {func.__name__}: {e}")
                        raise

                    if attempt >= max_attempts:
                        logger.error(f"All {max_attempts} attempts failed for {func.__name__}: {e}")
                        raise

                    current_delay = backoff_delay(attempt, delay, backoff)
                    logger.warning(
                        f"Attempt {attempt}/{max_attempts} failed for {func.__name__}: {e}. "
                        f"Retrying in {current_delay:.2f} seconds..."
                    )
                    if on_retry:
                        on_retry(e, attempt)
                    if current_delay:
                        time.sleep(current_delay)
            raise RuntimeError(f"Unexpected exit from retry wrapper for {func.__name__}")

        return wrapper
    return decorator


def call_with_retry(
    func: Callable[[], Any],
    exceptions: Tuple[Type[BaseException], ...],
    max_attempts: int = 3,
    delay: float = 1.0,
    backoff: float = 2.0
) -> Any:
    """Call ``func`` retrying on the given exceptions.

    Used where the set of retryable exceptions is only known at runtime, such as the
    driver-specific connection errors of a connector.
    """
    return retry(
        max_attempts=max_attempts,
        delay=delay,
        backoff=backoff,
        exceptions=exceptions
    )(func)()
