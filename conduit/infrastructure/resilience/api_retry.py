"""Retry with exponential backoff and jitter.

Retries transient failures (network errors, timeouts, 5xx, 429) a bounded
number of times. The final failure is re-raised unchanged so callers see
the same ApiError the last attempt produced.
"""

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, TypeVar

from conduit.domain.models.errors import ApiError, TRANSPORT_ERROR_CODES

logger = logging.getLogger(__name__)

T = TypeVar("T")

OnRetry = Callable[[int, BaseException, float], None]
Sleep = Callable[[float], Awaitable[Any]]


def is_retryable_error(error: BaseException) -> bool:
    """Default retry predicate: network failures, timeouts, 5xx and 429."""
    if not isinstance(error, ApiError):
        return False
    if error.code in TRANSPORT_ERROR_CODES:
        return True
    status = error.status
    return status is not None and (status >= 500 or status == 429)


@dataclass
class RetryConfig:
    max_attempts: int = 3
    initial_delay: float = 1.0       # Seconds before the first retry
    max_delay: float = 30.0
    backoff_multiplier: float = 2.0
    jitter_factor: float = 0.1       # Fraction of the delay, applied symmetrically
    retryable_errors: Callable[[BaseException], bool] = is_retryable_error

    def base_delay(self, attempt: int) -> float:
        """Backoff before the retry that follows ``attempt`` (1-based), without jitter."""
        return min(self.max_delay, self.initial_delay * self.backoff_multiplier ** (attempt - 1))


async def with_retry(
    fn: Callable[[], Awaitable[T]],
    config: Optional[RetryConfig] = None,
    on_retry: Optional[OnRetry] = None,
    sleep: Sleep = asyncio.sleep,
) -> T:
    """Executes ``fn`` with up to ``config.max_attempts`` attempts.

    Args:
        fn: The async operation to execute. Called with no arguments.
        config: Retry configuration (defaults to RetryConfig()).
        on_retry: Observer called as ``on_retry(attempt, error, delay)``
            before each backoff sleep.
        sleep: Awaitable sleep, injectable for tests.

    Returns:
        The result of the first successful attempt.

    Raises:
        Exception: The error of the last attempt, or of the first
            non-retryable attempt, unchanged.
    """
    config = config or RetryConfig()

    for attempt in range(1, config.max_attempts + 1):
        try:
            return await fn()
        except Exception as e:
            if attempt >= config.max_attempts or not config.retryable_errors(e):
                if attempt > 1:
                    logger.error(f"Giving up after attempt {attempt}/{config.max_attempts}: {e}")
                raise

            base = config.base_delay(attempt)
            jitter = base * config.jitter_factor * random.uniform(-1.0, 1.0)
            delay = max(0.0, base + jitter)
            logger.warning(
                f"Retryable error on attempt {attempt}/{config.max_attempts}: {type(e).__name__}: {e}. "
                f"Waiting {delay:.2f}s..."
            )
            if on_retry:
                on_retry(attempt, e, delay)
            await sleep(delay)

    # max_attempts < 1 never enters the loop
    raise ValueError("RetryConfig.max_attempts must be at least 1")


class RetryPolicy:
    """A retry configuration bound to its observer, reused across calls."""

    def __init__(self, config: Optional[RetryConfig] = None, sleep: Sleep = asyncio.sleep):
        self.config = config or RetryConfig()
        self._sleep = sleep

    async def execute(self, fn: Callable[[], Awaitable[T]], on_retry: Optional[OnRetry] = None) -> T:
        return await with_retry(fn, self.config, on_retry=on_retry, sleep=self._sleep)
