"""Session CRUD operations."""
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from solvegate.app.db.models import User, UserSession


async def create_session(
    session: AsyncSession,
    user_id: int,
    token_hash: str,
    expires_at: datetime,
    device_info: Optional[dict[str, Any]] = None,
    auto_commit: bool = True,
) -> UserSession:
    """Persist a newly issued session.

    Args:
        session: Database session
        user_id: Owner of the session
        token_hash: SHA256 digest of the bearer token
        expires_at: Absolute expiry (UTC)
        device_info: Optional client-reported device metadata
        auto_commit: Whether to commit the transaction

    Returns:
        The saved UserSession object
    """
    record = UserSession(
        user_id=user_id,
        token_hash=token_hash,
        device_info=device_info,
        expires_at=expires_at,
    )
    session.add(record)
    if auto_commit:
        await session.commit()
    else:
        await session.flush()
    return record


async def get_active_session_user(
    session: AsyncSession,
    token_hash: str,
    now: datetime,
) -> Optional[User]:
    """Load the user behind a session that has not expired.

    Expiry is compared in SQL against the stored value, so a token whose
    signature is still valid is rejected once its row has expired.

    Returns:
        User object if the session exists and is live, None otherwise
    """
    result = await session.execute(
        select(User)
        .join(UserSession, UserSession.user_id == User.id)
        .where(UserSession.token_hash == token_hash, UserSession.expires_at > now)
    )
    return result.scalar_one_or_none()


async def delete_session(
    session: AsyncSession,
    token_hash: str,
    auto_commit: bool = True,
) -> bool:
    """Delete a session by token digest.

    Returns:
        True if a session was deleted
    """
    result = await session.execute(
        delete(UserSession).where(UserSession.token_hash == token_hash)
    )
    if auto_commit:
        await session.commit()
    return result.rowcount > 0


async def delete_expired_sessions(
    session: AsyncSession,
    now: datetime,
    user_id: Optional[int] = None,
    auto_commit: bool = True,
) -> int:
    """Delete sessions that have expired, optionally for one user only.

    Returns:
        Number of sessions removed
    """
    stmt = delete(UserSession).where(UserSession.expires_at <= now)
    if user_id is not None:
        stmt = stmt.where(UserSession.user_id == user_id)
    result = await session.execute(stmt, execution_options={"synchronize_session": False})
    if auto_commit:
        await session.commit()
    return result.rowcount
