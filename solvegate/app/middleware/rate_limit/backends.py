"""Rate limit storage backends.

In-memory backends suit single-instance deployments. The Redis backend
shares counters across instances using a sorted-set sliding window.
"""

import asyncio
import time
import uuid
from abc import ABC, abstractmethod
from collections import OrderedDict
from typing import Optional

import redis.asyncio as aioredis
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import RedisError
from redis.exceptions import TimeoutError as RedisTimeoutError

from solvegate.app.core.config import settings
from solvegate.app.core.logging import get_logger
from solvegate.app.middleware.rate_limit.models import (
    RateLimitEntry,
    RateLimitResult,
    TokenBucket,
)

logger = get_logger(__name__)


class RateLimitBackend(ABC):
    """Abstract base class for rate limit backends."""

    def __init__(self, limit: int, window_seconds: int) -> None:
        """Initialize the backend.

        Args:
            limit: Maximum requests per window
            window_seconds: Window length in seconds
        """
        self.limit = limit
        self.window_seconds = window_seconds

    @abstractmethod
    async def is_allowed(self, key: str, tokens: int = 1) -> RateLimitResult:
        """Check if request is allowed for the given key.

        Args:
            key: Rate limit key
            tokens: Number of tokens to consume

        Returns:
            RateLimitResult with allowed status and metadata
        """

    @abstractmethod
    async def cleanup(self) -> None:
        """Clean up expired entries."""


class InMemoryRateLimiter(RateLimitBackend):
    """In-memory rate limiter with configurable algorithm.

    Memory optimization:
    - Uses OrderedDict for LRU cache behavior
    - Limits max entries to prevent unbounded memory growth
    """

    DEFAULT_MAX_ENTRIES = 10000

    def __init__(
        self,
        limit: int = 100,
        window_seconds: int = 900,
        algorithm: str = "sliding_window",
        max_entries: int = DEFAULT_MAX_ENTRIES,
    ):
        """Initialize rate limiter.

        Args:
            limit: Maximum requests per window
            window_seconds: Time window in seconds
            algorithm: Rate limiting algorithm (sliding_window or token_bucket)
            max_entries: Maximum number of keys to track (LRU eviction)
        """
        super().__init__(limit, window_seconds)
        self.algorithm = algorithm
        self._max_entries = max_entries
        self._window_storage: OrderedDict[str, RateLimitEntry] = OrderedDict()
        self._bucket_storage: OrderedDict[str, TokenBucket] = OrderedDict()
        self._lock = asyncio.Lock()

    async def is_allowed(self, key: str, tokens: int = 1) -> RateLimitResult:
        if self.algorithm == "token_bucket":
            return await self._check_token_bucket(key, tokens)
        return await self._check_sliding_window(key)

    def _enforce_lru_limit(self) -> None:
        """Evict the oldest 20% of keys when over capacity."""
        for storage in (self._window_storage, self._bucket_storage):
            if len(storage) > self._max_entries:
                for _ in range(max(1, int(self._max_entries * 0.2))):
                    storage.popitem(last=False)

    async def _check_sliding_window(self, key: str) -> RateLimitResult:
        async with self._lock:
            now = time.time()
            self._enforce_lru_limit()

            entry = self._window_storage.get(key)
            if entry is None:
                entry = RateLimitEntry()
                self._window_storage[key] = entry
            else:
                self._window_storage.move_to_end(key)

            cutoff = now - self.window_seconds
            while entry.hits and entry.hits[0] <= cutoff:
                entry.hits.popleft()

            if len(entry.hits) >= self.limit:
                oldest = entry.hits[0]
                reset_time = int(oldest + self.window_seconds)
                return RateLimitResult(
                    allowed=False,
                    limit=self.limit,
                    remaining=0,
                    reset_time=reset_time,
                    retry_after=max(1, int(oldest + self.window_seconds - now) + 1),
                )

            entry.hits.append(now)
            return RateLimitResult(
                allowed=True,
                limit=self.limit,
                remaining=self.limit - len(entry.hits),
                reset_time=int(entry.hits[0] + self.window_seconds),
            )

    async def _check_token_bucket(self, key: str, tokens: int = 1) -> RateLimitResult:
        async with self._lock:
            now = time.time()
            self._enforce_lru_limit()

            bucket = self._bucket_storage.get(key)
            if bucket is None:
                bucket = TokenBucket(tokens=float(self.limit), last_update=now)
                self._bucket_storage[key] = bucket
            else:
                self._bucket_storage.move_to_end(key)

            refill_rate = self.limit / self.window_seconds
            bucket.tokens = min(
                float(self.limit), bucket.tokens + (now - bucket.last_update) * refill_rate
            )
            bucket.last_update = now

            if bucket.tokens >= tokens:
                bucket.tokens -= tokens
                return RateLimitResult(
                    allowed=True,
                    limit=self.limit,
                    remaining=int(bucket.tokens),
                    reset_time=int(now + (self.limit - bucket.tokens) / refill_rate),
                )

            retry_after = max(1, int((tokens - bucket.tokens) / refill_rate) + 1)
            return RateLimitResult(
                allowed=False,
                limit=self.limit,
                remaining=0,
                reset_time=int(now + retry_after),
                retry_after=retry_after,
            )

    async def cleanup(self) -> None:
        async with self._lock:
            now = time.time()
            cutoff = now - self.window_seconds

            expired_windows = [
                key for key, entry in self._window_storage.items()
                if not entry.hits or entry.hits[-1] <= cutoff
            ]
            for key in expired_windows:
                del self._window_storage[key]

            # Buckets idle for a full window are back to capacity
            expired_buckets = [
                key for key, bucket in self._bucket_storage.items()
                if now - bucket.last_update > self.window_seconds
            ]
            for key in expired_buckets:
                del self._bucket_storage[key]


class RedisRateLimiter(RateLimitBackend):
    """Redis-based distributed rate limiter.

    Implements a sliding window using one sorted set per key, scored by
    request timestamp.
    """

    def __init__(
        self,
        limit: int = 100,
        window_seconds: int = 900,
        redis_client: Optional[aioredis.Redis] = None,
        redis_url: Optional[str] = None,
        fail_closed: Optional[bool] = None,
    ):
        """Initialize Redis rate limiter.

        Args:
            limit: Maximum requests per window
            window_seconds: Time window in seconds
            redis_client: Optional Redis client instance
            redis_url: Redis connection URL
            fail_closed: Deny requests when Redis is unavailable. Defaults to
                settings.rate_limit_fail_closed.
        """
        super().__init__(limit, window_seconds)
        self._redis_url = redis_url or settings.redis_url
        self._redis = redis_client
        self.fail_closed = settings.rate_limit_fail_closed if fail_closed is None else fail_closed

    async def _get_redis(self) -> aioredis.Redis:
        if self._redis is None:
            self._redis = aioredis.from_url(self._redis_url)
        return self._redis

    async def is_allowed(self, key: str, tokens: int = 1) -> RateLimitResult:
        try:
            redis_client = await self._get_redis()
            now = time.time()
            member = f"{now}:{uuid.uuid4().hex[:8]}"

            pipe = redis_client.pipeline()
            pipe.zremrangebyscore(key, 0, now - self.window_seconds)
            pipe.zcard(key)
            pipe.zadd(key, {member: now})
            pipe.expire(key, self.window_seconds)
            results = await pipe.execute()
            current_count = results[1]  # before this request

            if current_count >= self.limit:
                await redis_client.zrem(key, member)
                return RateLimitResult(
                    allowed=False,
                    limit=self.limit,
                    remaining=0,
                    reset_time=int(now + self.window_seconds),
                    retry_after=self.window_seconds,
                )

            return RateLimitResult(
                allowed=True,
                limit=self.limit,
                remaining=max(0, self.limit - current_count - 1),
                reset_time=int(now + self.window_seconds),
            )

        except RedisConnectionError as e:
            logger.error(f"Redis connection failed: {e}")
            return self._handle_redis_failure("connection_error")
        except RedisTimeoutError as e:
            logger.warning(f"Redis timeout: {e}")
            return self._handle_redis_failure("timeout")
        except (RedisError, OSError) as e:
            logger.error(f"Redis error: {e}")
            return self._handle_redis_failure("redis_error")

    def _handle_redis_failure(self, error_type: str) -> RateLimitResult:
        """Apply the fail-open/fail-closed policy.

        Args:
            error_type: Type of error for logging purposes
        """
        if self.fail_closed:
            logger.warning(
                f"Rate limiting fail-closed triggered due to {error_type}. Request denied."
            )
            return RateLimitResult(
                allowed=False,
                limit=self.limit,
                remaining=0,
                reset_time=int(time.time() + self.window_seconds),
                retry_after=self.window_seconds,
            )

        logger.warning(
            f"Rate limiting fail-open triggered due to {error_type}. "
            "Request allowed without rate limit check."
        )
        return RateLimitResult(
            allowed=True,
            limit=self.limit,
            remaining=self.limit,
            reset_time=int(time.time() + self.window_seconds),
        )

    async def cleanup(self) -> None:
        """No-op for Redis (keys expire automatically)."""
