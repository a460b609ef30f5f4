"""Core utilities for the gateway application."""

from solvegate.app.core.cache import (
    CacheBackend,
    InMemoryCache,
    NullCache,
    RedisCache,
    get_cache,
    reset_cache,
)
from solvegate.app.core.config import settings
from solvegate.app.core.logging import get_logger, setup_logging

__all__ = [
    "CacheBackend",
    "InMemoryCache",
    "NullCache",
    "RedisCache",
    "get_cache",
    "reset_cache",
    "settings",
    "get_logger",
    "setup_logging",
]
