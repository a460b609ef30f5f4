"""Rate limiting middleware for the gateway.

Per-client-address throttling with independently configured tiers:

- general: every path
- auth: session issuance and login
- solve: paid completion requests

A request must pass every tier that matches its path.
"""

import asyncio
import hashlib
from typing import Iterable, List, Optional

from fastapi import Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from solvegate.app.core.config import Settings, settings
from solvegate.app.core.logging import get_logger

# Re-export models
from solvegate.app.middleware.rate_limit.models import (
    RateLimitEntry,
    RateLimitResult,
    RateLimitRule,
    TokenBucket,
)

# Re-export backends
from solvegate.app.middleware.rate_limit.backends import (
    InMemoryRateLimiter,
    RateLimitBackend,
    RedisRateLimiter,
)

logger = get_logger(__name__)

__all__ = [
    # Models
    "RateLimitResult",
    "RateLimitEntry",
    "RateLimitRule",
    "TokenBucket",
    # Backends
    "RateLimitBackend",
    "InMemoryRateLimiter",
    "RedisRateLimiter",
    # Main classes
    "RateLimiter",
    "RateLimitMiddleware",
    "default_rules",
    "sweep_periodically",
]

EXEMPT_PATHS = ("/health",)


def default_rules(config: Settings = settings) -> List[RateLimitRule]:
    """Build the general, auth and solve tiers from settings."""
    return [
        RateLimitRule(
            name="general",
            limit=config.rate_limit_general_requests,
            window_seconds=config.rate_limit_general_window_seconds,
        ),
        RateLimitRule(
            name="auth",
            limit=config.rate_limit_auth_requests,
            window_seconds=config.rate_limit_auth_window_seconds,
            path_prefixes=("/auth",),
        ),
        RateLimitRule(
            name="solve",
            limit=config.rate_limit_solve_requests,
            window_seconds=config.rate_limit_solve_window_seconds,
            path_prefixes=("/solve",),
        ),
    ]


class RateLimiter:
    """Apply a set of rules, each with its own backend.

    Uses Redis backends when Redis is enabled in settings, otherwise
    in-memory backends.
    """

    def __init__(
        self,
        rules: Optional[Iterable[RateLimitRule]] = None,
        algorithm: Optional[str] = None,
        use_redis: Optional[bool] = None,
        fail_closed: Optional[bool] = None,
    ):
        """Initialize the limiter.

        Args:
            rules: Tiers to enforce. Defaults to default_rules().
            algorithm: In-memory algorithm (sliding_window or token_bucket)
            use_redis: Force Redis usage (None = auto-detect from settings)
            fail_closed: Redis failure policy (None = from settings)
        """
        self.rules = list(rules) if rules is not None else default_rules()
        algorithm = algorithm or settings.rate_limit_algorithm
        should_use_redis = use_redis if use_redis is not None else settings.redis_enabled

        self._backends: dict[str, RateLimitBackend] = {}
        for rule in self.rules:
            if should_use_redis:
                self._backends[rule.name] = RedisRateLimiter(
                    limit=rule.limit,
                    window_seconds=rule.window_seconds,
                    fail_closed=fail_closed,
                )
            else:
                self._backends[rule.name] = InMemoryRateLimiter(
                    limit=rule.limit,
                    window_seconds=rule.window_seconds,
                    algorithm=algorithm,
                )
        logger.debug(
            f"Rate limiter initialized ({'redis' if should_use_redis else 'memory'}, "
            f"tiers={[r.name for r in self.rules]})"
        )

    async def check(self, path: str, client_key: str) -> Optional[RateLimitResult]:
        """Check every tier matching ``path``.

        Returns:
            The first denial, or the allowed result with the fewest requests
            remaining; None if no tier applies
        """
        tightest: Optional[RateLimitResult] = None
        for rule in self.rules:
            if not rule.matches(path):
                continue
            result = await self._backends[rule.name].is_allowed(
                f"ratelimit:{rule.name}:{client_key}"
            )
            result.rule = rule.name
            if not result.allowed:
                return result
            if tightest is None or result.remaining < tightest.remaining:
                tightest = result
        return tightest

    async def cleanup(self) -> None:
        for backend in self._backends.values():
            await backend.cleanup()


async def sweep_periodically(limiter: RateLimiter, interval_seconds: float) -> None:
    """Drop idle in-memory windows every ``interval_seconds`` until cancelled."""
    while True:
        await asyncio.sleep(interval_seconds)
        try:
            await limiter.cleanup()
        except Exception:
            logger.exception("Rate limit cleanup failed")


def get_client_address(request: Request, trust_proxy: bool, trusted_hops: int = 1) -> str:
    """Return the caller's address.

    Behind ``trusted_hops`` proxies that each append the peer they saw to
    X-Forwarded-For, the entry ``trusted_hops`` from the right is the
    address the outermost proxy accepted the connection from. Entries to
    its left are written by the client and never used. Without a trusted
    proxy, or when the header is shorter than expected, the socket peer.
    """
    if trust_proxy:
        forwarded = request.headers.get("X-Forwarded-For", "")
        hops = [hop.strip() for hop in forwarded.split(",") if hop.strip()]
        if len(hops) >= trusted_hops:
            return hops[-trusted_hops]
    return request.client.host if request.client else "unknown"


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Middleware to enforce per-address rate limits before routing."""

    def __init__(
        self,
        app,
        limiter: Optional[RateLimiter] = None,
        trust_proxy: Optional[bool] = None,
        trusted_hops: Optional[int] = None,
        exempt_paths: Iterable[str] = EXEMPT_PATHS,
    ):
        super().__init__(app)
        self.limiter = limiter or RateLimiter()
        self.trust_proxy = settings.rate_limit_trust_proxy if trust_proxy is None else trust_proxy
        self.trusted_hops = (
            settings.rate_limit_trusted_proxy_hops if trusted_hops is None else trusted_hops
        )
        self.exempt_paths = tuple(exempt_paths)

    def _get_client_key(self, request: Request) -> str:
        """Hash the client address so raw IPs never reach storage."""
        client_ip = get_client_address(request, self.trust_proxy, self.trusted_hops)
        # 32 hex chars (128 bits) for collision resistance
        return hashlib.sha256(client_ip.encode()).hexdigest()[:32]

    async def dispatch(
        self,
        request: Request,
        call_next: RequestResponseEndpoint
    ) -> Response:
        path = request.url.path
        if path in self.exempt_paths:
            return await call_next(request)

        result = await self.limiter.check(path, self._get_client_key(request))

        if result is not None and not result.allowed:
            logger.info(
                "Rate limit exceeded",
                extra={"path": path, "rule": result.rule},
            )
            retry_after = result.retry_after or 60
            return JSONResponse(
                status_code=429,
                content={
                    "error": "rate_limit_exceeded",
                    "message": "Too many requests. Please try again later.",
                    "retry_after": retry_after,
                },
                headers={
                    "X-RateLimit-Limit": str(result.limit),
                    "X-RateLimit-Remaining": "0",
                    "X-RateLimit-Reset": str(result.reset_time),
                    "Retry-After": str(retry_after),
                },
            )

        response = await call_next(request)

        if result is not None:
            response.headers["X-RateLimit-Limit"] = str(result.limit)
            response.headers["X-RateLimit-Remaining"] = str(result.remaining)
            response.headers["X-RateLimit-Reset"] = str(result.reset_time)

        return response
