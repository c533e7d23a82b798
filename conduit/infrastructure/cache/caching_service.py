"""Concrete implementation of the in-memory response cache.

Each provider gets its own TTL + LRU cache. Entries disappear when their
TTL passes (checked lazily on access and by a periodic sweep), when they
are invalidated, or when they are the least recently used entry of a full
cache.
"""

import asyncio
import json
import logging
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Callable, Dict, Mapping, Optional

from conduit.domain.interfaces.cache import CacheService
from conduit.domain.models.common import CacheKey

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 5 * 60
DEFAULT_MAX_SIZE = 1000
DEFAULT_SWEEP_INTERVAL_SECONDS = 60


@dataclass
class CacheConfig:
    ttl_seconds: float = DEFAULT_TTL_SECONDS
    max_size: int = DEFAULT_MAX_SIZE
    key_prefix: str = ""


@dataclass
class CacheEntry:
    """Internal representation of a cache entry with expiry."""
    value: Any
    expires_at: float  # Clock reading after which the entry is gone
    key: str


class ResponseCache(CacheService):
    """TTL + LRU cache for one provider."""

    def __init__(self, config: Optional[CacheConfig] = None, clock: Callable[[], float] = time.monotonic):
        self.config = config or CacheConfig()
        self._clock = clock
        # Ordered oldest-access first
        self._entries: "OrderedDict[str, CacheEntry]" = OrderedDict()
        logger.debug(f"ResponseCache initialized: {self.config}")

    def _full_key(self, key: str) -> str:
        return f"{self.config.key_prefix}{key}"

    def get(self, key: CacheKey) -> Optional[Any]:
        full_key = self._full_key(key)
        entry = self._entries.get(full_key)
        if entry is None:
            return None

        if self._clock() > entry.expires_at:
            del self._entries[full_key]
            logger.debug(f"Cache entry expired: {full_key}")
            return None

        self._entries.move_to_end(full_key)
        return entry.value

    def set(self, key: CacheKey, value: Any, ttl_seconds: Optional[float] = None) -> None:
        full_key = self._full_key(key)
        ttl = ttl_seconds if ttl_seconds is not None else self.config.ttl_seconds

        if full_key in self._entries:
            del self._entries[full_key]
        elif len(self._entries) >= self.config.max_size:
            evicted_key, _ = self._entries.popitem(last=False)
            logger.debug(f"Evicted least recently used cache entry: {evicted_key}")

        self._entries[full_key] = CacheEntry(value=value, expires_at=self._clock() + ttl, key=full_key)

    def delete(self, key: CacheKey) -> bool:
        return self._entries.pop(self._full_key(key), None) is not None

    def clear(self) -> None:
        self._entries.clear()

    def has(self, key: CacheKey) -> bool:
        return self.get(key) is not None

    def size(self) -> int:
        return len(self._entries)

    def cleanup(self) -> int:
        now = self._clock()
        expired = [k for k, entry in self._entries.items() if now > entry.expires_at]
        for k in expired:
            del self._entries[k]
        return len(expired)


class CacheKeyBuilder:
    """Derives canonical cache keys from request parts."""

    @staticmethod
    def build(parts: Mapping[str, Any]) -> CacheKey:
        """Joins ``name:value`` pairs sorted by name, skipping None values.

        Mapping and list values are JSON-encoded with sorted keys so that
        caller-supplied ordering never changes the key.
        """
        segments = []
        for name in sorted(parts):
            value = parts[name]
            if value is None:
                continue
            if isinstance(value, (dict, list, tuple)):
                value = json.dumps(value, sort_keys=True, separators=(",", ":"), default=str)
            segments.append(f"{name}:{value}")
        return CacheKey(":".join(segments))


class CacheManager:
    """Holds one ResponseCache per provider and sweeps expired entries."""

    def __init__(
        self,
        provider_configs: Optional[Mapping[str, CacheConfig]] = None,
        sweep_interval: float = DEFAULT_SWEEP_INTERVAL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._provider_configs: Dict[str, CacheConfig] = dict(provider_configs or {})
        self._caches: Dict[str, ResponseCache] = {}
        self._sweep_interval = sweep_interval
        self._clock = clock
        self._sweeper: Optional["asyncio.Task[None]"] = None

    def get_cache(self, provider: str) -> ResponseCache:
        cache = self._caches.get(provider)
        if cache is None:
            config = self._provider_configs.get(provider) or CacheConfig(key_prefix=f"{provider}:")
            cache = ResponseCache(config, clock=self._clock)
            self._caches[provider] = cache
        return cache

    def invalidate(self, provider: str, key: CacheKey) -> bool:
        cache = self._caches.get(provider)
        return cache.delete(key) if cache else False

    def clear(self, provider: str) -> None:
        cache = self._caches.get(provider)
        if cache:
            cache.clear()
            logger.info(f"Cleared response cache for {provider}.")

    def clear_all(self) -> None:
        for cache in self._caches.values():
            cache.clear()
        logger.info("Cleared all response caches.")

    def sweep(self) -> int:
        """Removes expired entries from every cache."""
        removed = sum(cache.cleanup() for cache in self._caches.values())
        if removed:
            logger.debug(f"Cache sweep removed {removed} expired entries.")
        return removed

    def start_sweeper(self) -> None:
        """Starts the periodic sweep on the running event loop."""
        if self._sweeper is None or self._sweeper.done():
            self._sweeper = asyncio.get_running_loop().create_task(self._sweep_loop())

    async def stop_sweeper(self) -> None:
        if self._sweeper is None:
            return
        self._sweeper.cancel()
        try:
            await self._sweeper
        except asyncio.CancelledError:
            pass
        self._sweeper = None

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self._sweep_interval)
            self.sweep()

    def get_status(self) -> Dict[str, int]:
        return {provider: cache.size() for provider, cache in self._caches.items()}
