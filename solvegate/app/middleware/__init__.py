"""Middleware package for the gateway."""

from solvegate.app.middleware.auth import (
    get_bearer_token,
    require_admin,
    require_bearer_token,
    require_user,
)
from solvegate.app.middleware.rate_limit import RateLimiter, RateLimitMiddleware
from solvegate.app.middleware.request_id import RequestIdMiddleware, get_request_id
from solvegate.app.middleware.request_size import RequestSizeLimitMiddleware

__all__ = [
    "get_bearer_token",
    "require_admin",
    "require_bearer_token",
    "require_user",
    "RateLimiter",
    "RateLimitMiddleware",
    "RequestIdMiddleware",
    "RequestSizeLimitMiddleware",
    "get_request_id",
]
