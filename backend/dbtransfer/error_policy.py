"""Batch failure policies.

When a batch cannot be written (or a row cannot be transformed) the consumer asks its
policy what to do. A policy is any callable ``policy(error) -> Disposition``; the attempt
number of the failing operation is available as ``error.attempt``.
"""

from __future__ import annotations

import logging
import time
from enum import Enum
from typing import Callable, Union

from dbtransfer.exceptions import ConfigurationError
from dbtransfer.retry import backoff_delay

logger = logging.getLogger(__name__)


class Disposition(str, Enum):
    """Outcome of a failed batch."""
    STOP = "stop"
    RETRY = "retry"
    IGNORE = "ignore"
    IGNORE_ALL = "ignore-all"


ErrorPolicy = Callable[[Exception], Disposition]


class StopPolicy:
    """Abort the transfer on the first failure (default)."""

    def __call__(self, error: Exception) -> Disposition:
        return Disposition.STOP

    def __repr__(self) -> str:
        return "StopPolicy()"


class IgnorePolicy:
    """Drop the failed batch and continue."""

    def __call__(self, error: Exception) -> Disposition:
        logger.warning(f"Ignoring failed batch: {error}")
        return Disposition.IGNORE

    def __repr__(self) -> str:
        return "IgnorePolicy()"


class IgnoreAllPolicy:
    """Drop the failed batch and every later failed batch without asking again."""

    def __call__(self, error: Exception) -> Disposition:
        logger.warning(f"Ignoring failed batch and all further failures: {error}")
        return Disposition.IGNORE_ALL

    def __repr__(self) -> str:
        return "IgnoreAllPolicy()"


class RetryPolicy:
    """Re-attempt a failed batch up to ``max_retries`` times, then apply ``then``.

    Args:
        max_retries: Retries after the first failed attempt
        delay: Seconds to wait before the first retry (0 for none)
        backoff: Multiplier applied to the delay on each further retry
        then: Disposition once retries are exhausted
    """

    def __init__(
        self,
        max_retries: int = 3,
        delay: float = 0.0,
        backoff: float = 2.0,
        then: Disposition = Disposition.STOP
    ):
        if max_retries < 1:
            raise ConfigurationError("Retry policy needs at least one retry", option="error_policy")
        self.max_retries = max_retries
        self.delay = delay
        self.backoff = backoff
        self.then = Disposition(then)

    def __call__(self, error: Exception) -> Disposition:
        attempt = getattr(error, "attempt", 1)
        if attempt > self.max_retries:
            logger.error(f"Giving up after {attempt} attempts: {error}")
            return self.then
        wait = backoff_delay(attempt, self.delay, self.backoff)
        logger.warning(
            f"Attempt {attempt}/{self.max_retries + 1} failed: {error}. "
            f"Retrying in {wait:.2f} seconds..."
        )
        if wait:
            time.sleep(wait)
        return Disposition.RETRY

    def __repr__(self) -> str:
        return f"RetryPolicy(max_retries={self.max_retries}, delay={self.delay})"


def make_error_policy(policy: Union[str, ErrorPolicy, None], retry_delay: float = 0.0) -> ErrorPolicy:
    """Build a policy from its configuration form.

    Accepted forms: ``stop``, ``ignore``, ``ignore-all``, ``retry`` (3 retries) and
    ``retry-N``. A callable is returned unchanged.

    Raises:
        ConfigurationError: For an unknown policy name
    """
    if policy is None:
        return StopPolicy()
    if callable(policy):
        return policy
    name = str(policy).strip().lower()
    if name == Disposition.STOP.value:
        return StopPolicy()
    if name == Disposition.IGNORE.value:
        return IgnorePolicy()
    if name == Disposition.IGNORE_ALL.value:
        return IgnoreAllPolicy()
    if name == Disposition.RETRY.value:
        return RetryPolicy(delay=retry_delay)
    if name.startswith("retry-"):
        count = name[len("retry-"):]
        if count.isdigit() and int(count) > 0:
            return RetryPolicy(max_retries=int(count), delay=retry_delay)
    raise ConfigurationError(f"Unknown error policy: {policy}", option="error_policy")
