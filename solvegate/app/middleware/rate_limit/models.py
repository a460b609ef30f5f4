"""Rate limiting data models.

This module contains dataclasses for rate limit rules, state and results.
"""

import time
from collections import deque
from dataclasses import dataclass, field
from typing import Deque, Optional, Tuple


@dataclass
class RateLimitResult:
    """Result of a rate limit check."""
    allowed: bool
    limit: int
    remaining: int
    reset_time: int
    retry_after: Optional[int] = None
    rule: Optional[str] = None


@dataclass
class RateLimitEntry:
    """Request timestamps inside the current window (sliding log)."""
    hits: Deque[float] = field(default_factory=deque)


@dataclass
class TokenBucket:
    """Token bucket state for token bucket algorithm."""
    tokens: float = field(default_factory=float)
    last_update: float = field(default_factory=time.time)


@dataclass(frozen=True)
class RateLimitRule:
    """A named limit applied to requests whose path matches a prefix.

    Attributes:
        name: Tier name, also used as part of the storage key
        limit: Requests allowed per window
        window_seconds: Window length
        path_prefixes: Paths the rule applies to; empty means every path
    """
    name: str
    limit: int
    window_seconds: int
    path_prefixes: Tuple[str, ...] = ()

    def matches(self, path: str) -> bool:
        if not self.path_prefixes:
            return True
        return any(
            path == prefix or path.startswith(prefix.rstrip("/") + "/")
            for prefix in self.path_prefixes
        )
