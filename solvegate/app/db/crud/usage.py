"""Daily usage aggregate operations."""
from datetime import date

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from solvegate.app.db.crud.base import dialect_insert
from solvegate.app.db.models import DailyUsage


async def record_daily_usage(
    session: AsyncSession,
    usage_date: date,
    endpoint: str,
    tokens_used: int,
    cost_cents: int,
    auto_commit: bool = True,
) -> None:
    """Add one provider call to the day's aggregate.

    Uses INSERT ... ON CONFLICT DO UPDATE on (usage_date, endpoint) so
    concurrent writers never lose increments.

    Args:
        session: Database session
        usage_date: Quota day the call is charged to
        endpoint: Logical endpoint name (e.g. "solve")
        tokens_used: Tokens consumed by the call
        cost_cents: Integer cost of the call
        auto_commit: Whether to commit the transaction
    """
    table = DailyUsage.__table__
    stmt = dialect_insert(session, DailyUsage).values(
        usage_date=usage_date,
        endpoint=endpoint,
        call_count=1,
        tokens_used=tokens_used,
        cost_cents=cost_cents,
    )
    stmt = stmt.on_conflict_do_update(
        index_elements=["usage_date", "endpoint"],
        set_={
            "call_count": table.c.call_count + 1,
            "tokens_used": table.c.tokens_used + stmt.excluded.tokens_used,
            "cost_cents": table.c.cost_cents + stmt.excluded.cost_cents,
        },
    )
    await session.execute(stmt)
    if auto_commit:
        await session.commit()


async def get_daily_cost_cents(session: AsyncSession, usage_date: date) -> int:
    """Total cost charged on a day across all endpoints."""
    result = await session.execute(
        select(func.coalesce(func.sum(DailyUsage.cost_cents), 0)).where(
            DailyUsage.usage_date == usage_date
        )
    )
    return int(result.scalar_one())


async def get_daily_totals(session: AsyncSession, usage_date: date) -> dict[str, int]:
    """Aggregate calls, tokens and cost for a day.

    Returns:
        Dict with call_count, tokens_used and cost_cents
    """
    result = await session.execute(
        select(
            func.coalesce(func.sum(DailyUsage.call_count), 0),
            func.coalesce(func.sum(DailyUsage.tokens_used), 0),
            func.coalesce(func.sum(DailyUsage.cost_cents), 0),
        ).where(DailyUsage.usage_date == usage_date)
    )
    calls, tokens, cost = result.one()
    return {"call_count": int(calls), "tokens_used": int(tokens), "cost_cents": int(cost)}
