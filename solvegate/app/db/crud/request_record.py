"""Request record CRUD operations."""

from typing import List

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from solvegate.app.db.models import RequestRecord


async def save_request_record(
    session: AsyncSession,
    user_id: int,
    question: str,
    subject: str,
    solution: str,
    tokens_used: int,
    cost_cents: int,
    auto_commit: bool = True,
) -> RequestRecord:
    """Save an audit record of a completed solve.

    Args:
        session: Database session
        user_id: The user charged for the request
        question: The question text as submitted
        subject: Subject the question was asked under
        solution: Provider output returned to the user
        tokens_used: Tokens reported by the provider
        cost_cents: Integer cost charged
        auto_commit: Whether to commit the transaction. Set to False
                     if you want to control transaction boundaries manually.

    Returns:
        The saved RequestRecord object
    """
    record = RequestRecord(
        user_id=user_id,
        question=question,
        subject=subject,
        solution=solution,
        tokens_used=tokens_used,
        cost_cents=cost_cents,
    )
    session.add(record)
    if auto_commit:
        await session.commit()
        await session.refresh(record)
    else:
        await session.flush()
    return record


async def list_request_records(
    session: AsyncSession,
    user_id: int,
    offset: int = 0,
    limit: int = 20,
) -> List[RequestRecord]:
    """Get a page of a user's records, newest first."""
    result = await session.execute(
        select(RequestRecord)
        .where(RequestRecord.user_id == user_id)
        .order_by(RequestRecord.created_at.desc(), RequestRecord.id.desc())
        .offset(offset)
        .limit(limit)
    )
    return list(result.scalars().all())


async def count_request_records(session: AsyncSession, user_id: int | None = None) -> int:
    """Count records for one user, or all records when user_id is None."""
    stmt = select(func.count(RequestRecord.id))
    if user_id is not None:
        stmt = stmt.where(RequestRecord.user_id == user_id)
    result = await session.execute(stmt)
    return int(result.scalar_one())
