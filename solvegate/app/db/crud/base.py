"""Dialect helpers shared by the CRUD modules."""

from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession


def dialect_insert(session: AsyncSession, model):
    """Return an ``INSERT`` construct that supports ``ON CONFLICT``.

    PostgreSQL and SQLite both implement ``on_conflict_do_nothing`` and
    ``on_conflict_do_update`` with the same signature.

    Args:
        session: Session whose bound engine decides the dialect
        model: Mapped class to insert into

    Raises:
        NotImplementedError: For dialects without ON CONFLICT support
    """
    dialect = session.get_bind().dialect.name
    if dialect == "postgresql":
        return postgresql.insert(model)
    if dialect == "sqlite":
        return sqlite.insert(model)
    raise NotImplementedError(f"Upserts are not supported on dialect {dialect!r}")
