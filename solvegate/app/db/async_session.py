"""Engine and session factory for the account store.

PostgreSQL through asyncpg in production; SQLite through aiosqlite for
local runs and tests.
"""

from contextlib import asynccontextmanager
from functools import lru_cache
from typing import Any, AsyncGenerator

from fastapi import Depends
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from typing_extensions import Annotated

from solvegate.app.core.config import settings
from solvegate.app.core.logging import get_logger

logger = get_logger(__name__)

_session_maker: async_sessionmaker[AsyncSession] | None = None


def _engine_options(url: str) -> dict[str, Any]:
    if url.startswith("sqlite"):
        return {}
    return {
        "pool_size": settings.db_pool_size,
        "max_overflow": settings.db_max_overflow,
        "pool_timeout": settings.db_pool_timeout,
        "pool_recycle": settings.db_pool_recycle,
        "pool_pre_ping": settings.db_pool_pre_ping,
        "connect_args": {"command_timeout": settings.db_command_timeout},
    }


@lru_cache(maxsize=1)
def get_async_engine(database_url: str | None = None) -> AsyncEngine:
    """Return the process-wide engine, creating it on first use.

    Args:
        database_url: Optional database URL. Uses settings if not provided.
    """
    url = database_url or settings.database_url
    options = _engine_options(url)
    engine = create_async_engine(url, echo=False, **options)
    logger.info(
        "Created async engine",
        extra={"dialect": engine.dialect.name, "pool_size": options.get("pool_size")},
    )
    return engine


def get_async_session_maker() -> async_sessionmaker[AsyncSession]:
    """Session factory bound to the shared engine.

    Objects stay usable after commit so services can hand users and
    records back to the API layer.
    """
    global _session_maker
    if _session_maker is None:
        _session_maker = async_sessionmaker(
            bind=get_async_engine(),
            class_=AsyncSession,
            expire_on_commit=False,
            autoflush=False,
        )
    return _session_maker


@asynccontextmanager
async def get_async_session() -> AsyncGenerator[AsyncSession, None]:
    async with get_async_session_maker()() as session:
        yield session


async def close_async_engine() -> None:
    """Dispose the engine on shutdown and forget the cached factory."""
    global _session_maker

    try:
        await get_async_engine().dispose()
    except RuntimeError:
        # Pool was bound to a loop that is already closed
        logger.debug("Engine dispose skipped: event loop mismatch")

    get_async_engine.cache_clear()
    _session_maker = None


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Request-scoped session: commit on success, roll back on error."""
    async with get_async_session() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


SessionDep = Annotated[AsyncSession, Depends(get_db)]
