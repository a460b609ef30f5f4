"""User CRUD operations."""
from datetime import date
from typing import Optional

from sqlalchemy import case, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from solvegate.app.db.crud.base import dialect_insert
from solvegate.app.db.models import TIER_PREMIUM, TIERS, User


async def get_user_by_id(session: AsyncSession, user_id: int) -> Optional[User]:
    """Get a user by primary key.

    Args:
        session: Database session
        user_id: The user ID

    Returns:
        User object if found, None otherwise
    """
    result = await session.execute(select(User).where(User.id == user_id))
    return result.scalar_one_or_none()


async def get_user_by_device_id(session: AsyncSession, device_id: str) -> Optional[User]:
    result = await session.execute(select(User).where(User.device_id == device_id))
    return result.scalar_one_or_none()


async def get_user_by_email(session: AsyncSession, email: str) -> Optional[User]:
    result = await session.execute(select(User).where(User.email == email.lower()))
    return result.scalar_one_or_none()


async def get_or_create_user_by_device(
    session: AsyncSession,
    device_id: str,
    today: date,
    auto_commit: bool = True,
) -> tuple[User, bool]:
    """Find the user owning a device id, creating it if absent.

    Uses INSERT ... ON CONFLICT DO NOTHING so two concurrent first-time
    authentications for the same device resolve to the same row.

    Args:
        session: Database session
        device_id: Stable client device identifier
        today: Current quota day, stored as the initial reset date
        auto_commit: Whether to commit the transaction

    Returns:
        Tuple of (user, created)
    """
    user = await get_user_by_device_id(session, device_id)
    if user is not None:
        return user, False

    stmt = (
        dialect_insert(session, User)
        .values(device_id=device_id, last_reset_date=today)
        .on_conflict_do_nothing(index_elements=["device_id"])
        .returning(User.id)
    )
    result = await session.execute(stmt)
    created = result.scalar_one_or_none() is not None

    # Another transaction may have won the race; either way the row exists now
    result = await session.execute(
        select(User)
        .where(User.device_id == device_id)
        .execution_options(populate_existing=True)
    )
    user = result.scalar_one()

    if auto_commit:
        await session.commit()
    return user, created


async def reset_daily_counter_if_stale(
    session: AsyncSession,
    user_id: int,
    today: date,
    auto_commit: bool = True,
) -> bool:
    """Zero ``requests_today`` if the user was last reset before ``today``.

    The condition lives in the WHERE clause so concurrent callers reset at
    most once per day.

    Returns:
        True if a reset happened
    """
    result = await session.execute(
        update(User)
        .where(User.id == user_id, User.last_reset_date < today)
        .values(requests_today=0, last_reset_date=today)
        .returning(User.id)
    )
    reset = result.scalar_one_or_none() is not None
    if auto_commit:
        await session.commit()
    return reset


async def increment_request_counters(
    session: AsyncSession,
    user_id: int,
    today: date,
    auto_commit: bool = True,
) -> Optional[tuple[int, int]]:
    """Atomically count one completed request against the user.

    If the user's reset date is older than ``today`` (the day rolled over
    while the request was in flight) the daily counter restarts at one.

    Args:
        session: Database session
        user_id: The user ID
        today: Quota day the request is charged to
        auto_commit: Whether to commit the transaction

    Returns:
        Tuple of (requests_today, requests_total) after the update, or None
        if the user does not exist
    """
    stale = User.last_reset_date < today
    result = await session.execute(
        update(User)
        .where(User.id == user_id)
        .values(
            requests_today=case((stale, 1), else_=User.requests_today + 1),
            requests_total=User.requests_total + 1,
            last_reset_date=case((stale, today), else_=User.last_reset_date),
        )
        .returning(User.requests_today, User.requests_total)
    )
    row = result.fetchone()
    if auto_commit:
        await session.commit()
    if row is None:
        return None
    return row[0], row[1]


async def set_user_tier(
    session: AsyncSession,
    user_id: int,
    tier: str,
    auto_commit: bool = True,
) -> Optional[User]:
    """Set a user's entitlement tier.

    Raises:
        ValueError: If tier is not a known tier
    """
    if tier not in TIERS:
        raise ValueError(f"Unknown tier: {tier}")

    result = await session.execute(
        update(User).where(User.id == user_id).values(tier=tier).returning(User.id)
    )
    if result.scalar_one_or_none() is None:
        return None
    if auto_commit:
        await session.commit()

    result = await session.execute(
        select(User).where(User.id == user_id).execution_options(populate_existing=True)
    )
    return result.scalar_one()


async def set_user_credentials(
    session: AsyncSession,
    user: User,
    email: str,
    password_hash: str,
    auto_commit: bool = True,
) -> User:
    user.email = email.lower()
    user.password_hash = password_hash
    if auto_commit:
        await session.commit()
    else:
        await session.flush()
    return user


async def set_user_age(
    session: AsyncSession,
    user: User,
    age: int,
    parental_consent: bool,
    auto_commit: bool = True,
) -> User:
    user.age = age
    user.parental_consent = parental_consent
    if auto_commit:
        await session.commit()
    else:
        await session.flush()
    return user


async def count_users(session: AsyncSession) -> tuple[int, int]:
    """Count all users and premium users.

    Returns:
        Tuple of (total_users, premium_users)
    """
    result = await session.execute(
        select(
            func.count(User.id),
            func.coalesce(func.sum(case((User.tier == TIER_PREMIUM, 1), else_=0)), 0),
        )
    )
    total, premium = result.one()
    return int(total), int(premium)
