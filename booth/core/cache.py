"""
Short-lived key/value cache for the rate limiter and webhook dedupe.
Redis OR in-process map. Controlled by FF_USE_REDIS flag.

Callers only see the Cache interface, so a multi-instance deployment flips the
flag instead of touching call sites.
"""

import logging
import math
import time
from abc import ABC, abstractmethod
from typing import Callable, Optional

from .config import get_settings
from .flags import get_flags

logger = logging.getLogger(__name__)

# Sweep expired entries once the in-process map grows past this
_SWEEP_THRESHOLD = 10_000


class Cache(ABC):
    @abstractmethod
    async def incr_window(self, key: str, window_seconds: int) -> tuple[int, float]:
        """
        Increment a fixed-window counter.
        Returns (count including this hit, window reset time as epoch seconds).
        """
        ...

    @abstractmethod
    async def add(self, key: str, ttl_seconds: float) -> bool:
        """Store key only if absent. Returns False when it was already present."""
        ...

    @abstractmethod
    async def discard(self, key: str) -> None:
        """Forget a key stored by add()."""
        ...

    async def close(self) -> None:
        return None


class MemoryCache(Cache):
    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock
        self._counters: dict[str, tuple[int, float]] = {}
        self._keys: dict[str, float] = {}

    def _sweep(self, now: float) -> None:
        if len(self._counters) > _SWEEP_THRESHOLD:
            self._counters = {k: v for k, v in self._counters.items() if v[1] > now}
        if len(self._keys) > _SWEEP_THRESHOLD:
            self._keys = {k: v for k, v in self._keys.items() if v > now}

    async def incr_window(self, key: str, window_seconds: int) -> tuple[int, float]:
        now = self._clock()
        self._sweep(now)

        existing = self._counters.get(key)
        if existing is None or existing[1] <= now:
            entry = (1, now + window_seconds)
        else:
            entry = (existing[0] + 1, existing[1])
        self._counters[key] = entry
        return entry

    async def add(self, key: str, ttl_seconds: float) -> bool:
        now = self._clock()
        self._sweep(now)

        expires_at = self._keys.get(key)
        if expires_at is not None and expires_at > now:
            return False
        self._keys[key] = now + ttl_seconds
        return True

    async def discard(self, key: str) -> None:
        self._keys.pop(key, None)


class RedisCache(Cache):
    def __init__(self, url: str):
        self._url = url
        self._client = None

    def _get_client(self):
        if self._client is None:
            import redis.asyncio as aioredis

            self._client = aioredis.from_url(
                self._url,
                decode_responses=True,
                socket_connect_timeout=5,
            )
        return self._client

    async def incr_window(self, key: str, window_seconds: int) -> tuple[int, float]:
        client = self._get_client()
        name = f"ratelimit:{key}"
        async with client.pipeline(transaction=True) as pipe:
            pipe.incr(name)
            pipe.expire(name, window_seconds, nx=True)
            pipe.pttl(name)
            count, _, pttl = await pipe.execute()

        ttl_ms = pttl if pttl and pttl > 0 else window_seconds * 1000
        return int(count), time.time() + ttl_ms / 1000

    async def add(self, key: str, ttl_seconds: float) -> bool:
        client = self._get_client()
        ttl_ms = max(int(math.ceil(ttl_seconds * 1000)), 1)
        stored = await client.set(f"dedupe:{key}", "1", px=ttl_ms, nx=True)
        return bool(stored)

    async def discard(self, key: str) -> None:
        await self._get_client().delete(f"dedupe:{key}")

    async def close(self) -> None:
        if self._client:
            await self._client.close()
            self._client = None
            logger.info("Redis connection closed")


_cache: Optional[Cache] = None


def get_cache() -> Cache:
    """Return the active cache backend based on feature flags."""
    global _cache
    if _cache is None:
        if get_flags().use_redis:
            _cache = RedisCache(get_settings().redis_url)
        else:
            _cache = MemoryCache()
    return _cache


async def close_cache() -> None:
    global _cache
    if _cache is not None:
        await _cache.close()
        _cache = None
