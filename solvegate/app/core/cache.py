"""Ephemeral counter cache for the gateway.

Backs short-lived counters (per-user daily provider calls) that may be lost
without affecting correctness of the primary quota. Three implementations
share one interface: in-memory (single process), Redis (shared across
workers) and a no-op used when the cache is deliberately disabled.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
import asyncio
import time

import redis.asyncio as aioredis

from solvegate.app.core.logging import get_logger

logger = get_logger(__name__)


@dataclass
class _CacheEntry:
    """Internal cache entry with TTL tracking."""

    value: bytes
    expires_at: float | None = None

    def is_expired(self) -> bool:
        if self.expires_at is None:
            return False
        return time.time() > self.expires_at


class CacheBackend(ABC):
    """Abstract base class for cache backends.

    Implementations may raise on transport failures; callers that treat the
    cache as advisory are expected to catch and degrade.
    """

    name: str = "abstract"

    @abstractmethod
    async def get(self, key: str) -> bytes | None:
        """Retrieve a value from the cache.

        Args:
            key: The cache key to look up.

        Returns:
            The cached value as bytes, or None if not found or expired.
        """

    @abstractmethod
    async def incr(self, key: str, amount: int = 1, ttl: int | None = None) -> int:
        """Atomically increment an integer counter.

        A missing key starts from zero. The TTL is applied only when the
        key is created, so a counter keeps the expiry of its first write.

        Args:
            key: The counter key.
            amount: Increment, may be negative.
            ttl: Expiry in seconds for a newly created key.

        Returns:
            The counter value after the increment.
        """

    async def ping(self) -> bool:
        """Report whether the backend is reachable."""
        return True

    async def close(self) -> None:
        """Release any held connections."""


class InMemoryCache(CacheBackend):
    """In-memory cache implementation with TTL support.

    Not shared between processes; data is lost on restart.
    """

    name = "memory"

    def __init__(self) -> None:
        self._data: dict[str, _CacheEntry] = {}
        self._lock = asyncio.Lock()

    def _live_entry(self, key: str) -> _CacheEntry | None:
        entry = self._data.get(key)
        if entry is None:
            return None
        if entry.is_expired():
            del self._data[key]
            return None
        return entry

    async def get(self, key: str) -> bytes | None:
        async with self._lock:
            entry = self._live_entry(key)
            return entry.value if entry else None

    async def incr(self, key: str, amount: int = 1, ttl: int | None = None) -> int:
        async with self._lock:
            entry = self._live_entry(key)
            if entry is None:
                self._purge_expired()
                expires_at = time.time() + ttl if ttl else None
                entry = _CacheEntry(value=b"0", expires_at=expires_at)
                self._data[key] = entry
            try:
                current = int(entry.value)
            except ValueError as e:
                raise ValueError(f"Cache value at {key!r} is not an integer") from e
            current += amount
            entry.value = str(current).encode()
            return current

    def _purge_expired(self) -> int:
        """Drop expired entries; called with the lock held.

        Counters for past days are never read again, so expiry alone would
        not free them.
        """
        expired_keys = [key for key, entry in self._data.items() if entry.is_expired()]
        for key in expired_keys:
            del self._data[key]
        return len(expired_keys)


class RedisCache(CacheBackend):
    """Redis-based cache implementation.

    Example:
        >>> cache = RedisCache("redis://localhost:6379/0")
        >>> await cache.incr("usage:calls:7:2026-03-01", ttl=86400)
    """

    name = "redis"

    def __init__(self, redis_url: str) -> None:
        self._redis_url = redis_url
        self._redis: aioredis.Redis | None = None

    async def _get_client(self) -> aioredis.Redis:
        if self._redis is None:
            self._redis = aioredis.from_url(self._redis_url)
        return self._redis

    async def get(self, key: str) -> bytes | None:
        client = await self._get_client()
        return await client.get(key)

    async def incr(self, key: str, amount: int = 1, ttl: int | None = None) -> int:
        client = await self._get_client()
        async with client.pipeline(transaction=True) as pipe:
            pipe.incrby(key, amount)
            if ttl:
                # NX keeps the expiry set by the first increment of the day
                pipe.expire(key, ttl, nx=True)
            results = await pipe.execute()
        return int(results[0])

    async def ping(self) -> bool:
        try:
            client = await self._get_client()
            return bool(await client.ping())
        except aioredis.RedisError as e:
            logger.warning("Redis ping failed", extra={"error": str(e)})
            return False

    async def close(self) -> None:
        if self._redis is not None:
            await self._redis.aclose()
            self._redis = None


class NullCache(CacheBackend):
    """Cache that stores nothing.

    Every counter reads as absent, so callers fall back to their
    "no secondary limit" behaviour.
    """

    name = "disabled"

    async def get(self, key: str) -> bytes | None:
        return None

    async def incr(self, key: str, amount: int = 1, ttl: int | None = None) -> int:
        return 0


# Global cache instance (singleton pattern)
_cache_instance: CacheBackend | None = None


def get_cache(
    backend: str | None = None,
    redis_url: str | None = None,
    force_new: bool = False,
) -> CacheBackend:
    """Get or create the global cache instance.

    Args:
        backend: 'memory', 'redis', 'none', or None to follow
            settings.redis_enabled.
        redis_url: Redis connection URL. Defaults to settings.redis_url.
        force_new: If True, create a new instance even if one exists.

    Returns:
        A CacheBackend instance.
    """
    global _cache_instance

    if _cache_instance is not None and not force_new:
        return _cache_instance

    # Import settings here to avoid circular imports
    from solvegate.app.core.config import settings

    if backend is None:
        backend = "redis" if settings.redis_enabled else "memory"

    if backend == "redis":
        _cache_instance = RedisCache(redis_url or settings.redis_url)
    elif backend == "none":
        _cache_instance = NullCache()
    elif backend == "memory":
        _cache_instance = InMemoryCache()
    else:
        raise ValueError(f"Unknown cache backend: {backend}")

    return _cache_instance


def reset_cache() -> None:
    """Reset the global cache instance.

    This is primarily useful for testing.
    """
    global _cache_instance
    _cache_instance = None
