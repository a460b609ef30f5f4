"""Cache-backed per-user daily provider call counter.

Secondary, advisory limit on top of the store-backed daily quota. The
counter lives only in the ephemeral cache: if the cache is unreachable or
disabled, the counter reads as unknown and no secondary limit is applied.
"""

from datetime import date
from typing import Optional

from redis.exceptions import RedisError

from solvegate.app.core.cache import CacheBackend, get_cache
from solvegate.app.core.logging import get_logger

logger = get_logger(__name__)

# Transport and decoding failures that degrade to "unknown"
CACHE_ERRORS = (RedisError, OSError, ValueError)


class DailyCallCounter:
    """Count provider calls per user per quota day.

    Cache key format: usage:calls:{user_id}:{YYYY-MM-DD}
    """

    CACHE_KEY_PREFIX = "usage:calls"
    CACHE_TTL_SECONDS = 86400

    def __init__(self, cache: Optional[CacheBackend] = None) -> None:
        """Initialize the counter.

        Args:
            cache: Cache backend. Uses the global cache if not provided.
        """
        self._cache = cache

    @property
    def cache(self) -> CacheBackend:
        if self._cache is None:
            self._cache = get_cache()
        return self._cache

    def _make_key(self, user_id: int, day: date) -> str:
        return f"{self.CACHE_KEY_PREFIX}:{user_id}:{day.isoformat()}"

    async def current(self, user_id: int, day: date) -> Optional[int]:
        """Read today's call count.

        Returns:
            The count, 0 if no calls were recorded, or None if the cache
            could not be read.
        """
        try:
            raw = await self.cache.get(self._make_key(user_id, day))
            return int(raw) if raw is not None else 0
        except CACHE_ERRORS as e:
            logger.warning(
                "Usage counter unavailable; secondary limit not enforced",
                extra={"user_id": user_id, "error": str(e)},
            )
            return None

    async def increment(self, user_id: int, day: date) -> Optional[int]:
        """Count one call. Failures are logged and swallowed.

        Returns:
            The new count, or None if the cache could not be updated.
        """
        try:
            return await self.cache.incr(
                self._make_key(user_id, day), 1, ttl=self.CACHE_TTL_SECONDS
            )
        except CACHE_ERRORS as e:
            logger.warning(
                "Failed to increment usage counter",
                extra={"user_id": user_id, "error": str(e)},
            )
            return None
