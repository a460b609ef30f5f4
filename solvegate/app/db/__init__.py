"""Database package for the gateway.

This package provides:
- Database models (User, UserSession, RequestRecord, DailyUsage)
- Asynchronous session management
- CRUD operations for all models
- FastAPI dependency injection support
"""

from solvegate.app.db.base import Base
from solvegate.app.db.models import DailyUsage, RequestRecord, User, UserSession
from solvegate.app.db.async_session import (
    close_async_engine,
    get_async_engine,
    get_async_session,
    get_async_session_maker,
    get_db,
    SessionDep,
)

__all__ = [
    # Base
    "Base",
    # Models
    "DailyUsage",
    "RequestRecord",
    "User",
    "UserSession",
    # Session (async)
    "close_async_engine",
    "get_async_engine",
    "get_async_session",
    "get_async_session_maker",
    "get_db",
    # FastAPI Dependencies
    "SessionDep",
]
