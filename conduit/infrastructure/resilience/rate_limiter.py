"""Implementation of a per-key token bucket rate limiter.

Controls the frequency of outgoing requests to prevent hitting provider
rate limits. Each (provider, key) pair gets its own bucket; callers that
find the bucket empty wait in FIFO order until tokens have accumulated.
"""

import asyncio
import logging
import math
import time
from collections import deque
from dataclasses import dataclass
from typing import Callable, Deque, Dict, Mapping, Optional

from conduit.domain.models.common import BucketKey, BucketStatus, make_bucket_key

logger = logging.getLogger(__name__)

# Floor for the queue timer so a near-full bucket does not spin the loop
MIN_SCHEDULE_DELAY_SECONDS = 0.01


@dataclass
class RateLimitConfig:
    """Per-provider limit: ``max_requests`` per ``window_seconds``.

    ``max_burst`` caps how many tokens may accumulate; it defaults to
    ``max_requests``.
    """
    max_requests: int
    window_seconds: float
    max_burst: Optional[int] = None

    def __post_init__(self) -> None:
        if self.max_requests <= 0 or self.window_seconds <= 0:
            raise ValueError("Max requests and window must be positive.")


@dataclass
class TokenBucket:
    tokens: float
    last_refill: float
    max_tokens: float
    refill_rate: float  # Tokens per second

    @classmethod
    def from_config(cls, config: RateLimitConfig, now: float) -> "TokenBucket":
        max_tokens = float(config.max_burst or config.max_requests)
        return cls(
            tokens=max_tokens,
            last_refill=now,
            max_tokens=max_tokens,
            refill_rate=config.max_requests / config.window_seconds,
        )

    def refill(self, now: float) -> None:
        """Adds tokens for the time elapsed since the last refill."""
        elapsed = max(0.0, now - self.last_refill)
        self.tokens = min(self.max_tokens, self.tokens + elapsed * self.refill_rate)
        self.last_refill = now

    def try_consume(self) -> bool:
        if self.tokens >= 1:
            self.tokens -= 1
            return True
        return False

    def tokens_at(self, now: float) -> float:
        """Token count at ``now`` without refilling the bucket."""
        elapsed = max(0.0, now - self.last_refill)
        return min(self.max_tokens, self.tokens + elapsed * self.refill_rate)

    def time_until(self, needed: float = 1.0) -> float:
        """Seconds until ``needed`` tokens are available."""
        return max(0.0, (needed - self.tokens) / self.refill_rate)


class RateLimiter:
    """Token bucket rate limiter keyed by (provider, key)."""

    def __init__(
        self,
        configs: Mapping[str, RateLimitConfig],
        clock: Callable[[], float] = time.monotonic,
    ):
        """Initializes the rate limiter.

        Args:
            configs: Rate limit configuration per provider name.
            clock: Monotonic clock in seconds, injectable for tests.
        """
        self._configs: Dict[str, RateLimitConfig] = dict(configs)
        self._clock = clock
        self._buckets: Dict[BucketKey, TokenBucket] = {}
        self._queues: Dict[BucketKey, Deque[asyncio.Future]] = {}
        self._timers: Dict[BucketKey, asyncio.TimerHandle] = {}
        logger.info(f"RateLimiter initialized for providers: {sorted(self._configs)}")

    def configure(self, provider: str, config: RateLimitConfig) -> None:
        """Adds or replaces a provider's limit. Existing buckets keep their state."""
        self._configs[provider] = config

    def is_configured(self, provider: str) -> bool:
        return provider in self._configs

    def _get_config(self, provider: str) -> RateLimitConfig:
        config = self._configs.get(provider)
        if config is None:
            raise ValueError(f"No rate limit configuration for provider: {provider}")
        return config

    def _get_bucket(self, bucket_key: BucketKey, config: RateLimitConfig) -> TokenBucket:
        """Returns the bucket for a key, creating it lazily, refilled to now."""
        now = self._clock()
        bucket = self._buckets.get(bucket_key)
        if bucket is None:
            bucket = TokenBucket.from_config(config, now)
            self._buckets[bucket_key] = bucket
            logger.debug(f"Created token bucket {bucket_key} (max={bucket.max_tokens}, rate={bucket.refill_rate:.3f}/s)")
        else:
            bucket.refill(now)
        return bucket

    async def acquire(self, provider: str, key: Optional[str] = None) -> None:
        """Waits until one token is available for (provider, key), then consumes it.

        Waiters are released strictly in arrival order. A waiter cannot be
        withdrawn: if the awaiting task is cancelled, the slot it is released
        into is still consumed.

        Raises:
            ValueError: If the provider has no rate limit configuration.
        """
        config = self._get_config(provider)
        bucket_key = make_bucket_key(provider, key)
        bucket = self._get_bucket(bucket_key, config)

        # Newcomers may only take a token directly when nobody is queued ahead
        if not self._queues.get(bucket_key) and bucket.try_consume():
            return

        waiter = asyncio.get_running_loop().create_future()
        queue = self._queues.setdefault(bucket_key, deque())
        queue.append(waiter)
        logger.debug(f"Rate limit reached for {bucket_key}. Queued at position {len(queue)}.")
        self._schedule(bucket_key, bucket)
        await waiter

    def _schedule(self, bucket_key: BucketKey, bucket: TokenBucket) -> None:
        if bucket_key in self._timers:
            return
        delay = max(bucket.time_until(1.0), MIN_SCHEDULE_DELAY_SECONDS)
        loop = asyncio.get_running_loop()
        self._timers[bucket_key] = loop.call_later(delay, self._process_queue, bucket_key)

    def _process_queue(self, bucket_key: BucketKey) -> None:
        """Timer callback: releases queued waiters while tokens are available."""
        self._timers.pop(bucket_key, None)
        queue = self._queues.get(bucket_key)
        if not queue:
            self._queues.pop(bucket_key, None)
            return

        bucket = self._buckets[bucket_key]
        bucket.refill(self._clock())
        # Another timer may have drained the bucket; re-validate before each release
        while queue and bucket.try_consume():
            waiter = queue.popleft()
            if waiter.done():
                logger.debug(f"Abandoned waiter on {bucket_key} consumed a slot.")
                continue
            waiter.set_result(None)

        if queue:
            self._schedule(bucket_key, bucket)
        else:
            del self._queues[bucket_key]

    async def get_wait_time(self, provider: str, key: Optional[str] = None) -> float:
        """Estimates how long a call made now would wait for admission."""
        config = self._get_config(provider)
        bucket_key = make_bucket_key(provider, key)
        bucket = self._get_bucket(bucket_key, config)
        queued = len(self._queues.get(bucket_key, ()))
        if not queued and bucket.tokens >= 1:
            return 0.0
        return bucket.time_until(queued + 1.0)

    def get_status(self, provider: str, key: Optional[str] = None) -> Optional[BucketStatus]:
        """Monitoring snapshot of one bucket, or None for unconfigured providers.

        Read-only: a bucket that does not exist yet reports full capacity and
        is not created.
        """
        config = self._configs.get(provider)
        if config is None:
            return None
        bucket_key = make_bucket_key(provider, key)
        bucket = self._buckets.get(bucket_key)
        if bucket is None:
            tokens = float(config.max_burst or config.max_requests)
        else:
            tokens = bucket.tokens_at(self._clock())
        return BucketStatus(
            available_tokens=math.floor(tokens),
            queue_length=len(self._queues.get(bucket_key, ())),
        )

    def get_all_status(self) -> Dict[str, Dict[str, BucketStatus]]:
        """Snapshots of every live bucket, grouped by provider."""
        status: Dict[str, Dict[str, BucketStatus]] = {}
        for bucket_key in list(self._buckets):
            provider, _, key = bucket_key.partition(":")
            snapshot = self.get_status(provider, key)
            if snapshot is not None:
                status.setdefault(provider, {})[bucket_key] = snapshot
        return status
