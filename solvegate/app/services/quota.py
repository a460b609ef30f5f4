"""Quota policy engine.

Decides whether a user may make another paid provider call and records
the charge once a call has completed.

Rules:
- Free tier: at most ``free_daily_limit`` completed solves per quota day.
- Premium tier: no per-day ceiling on the primary quota.
- Every tier: at most ``user_daily_call_limit`` provider calls per day as
  counted in the ephemeral cache, when the cache is available.
- System-wide: once today's recorded cost reaches ``daily_budget_cents``
  every request fails until the day rolls over.

The admission check is a read. The counters are incremented only when a
call completes, in the same transaction as its request record. Concurrent
requests from one user can therefore be admitted past the limit by at most
the number in flight.
"""

from dataclasses import dataclass
from datetime import date
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from solvegate.app.core.config import Settings, settings
from solvegate.app.core.logging import get_logger
from solvegate.app.core.utils import Clock, quota_day, utc_now
from solvegate.app.db.crud import (
    get_daily_cost_cents,
    increment_request_counters,
    record_daily_usage,
    reset_daily_counter_if_stale,
    save_request_record,
)
from solvegate.app.db.models import TIER_PREMIUM, User
from solvegate.app.exceptions import BudgetExceededError, QuotaExceededError
from solvegate.app.services.usage_counter import DailyCallCounter

logger = get_logger(__name__)


@dataclass(frozen=True)
class QuotaView:
    """Quota state as reported to clients."""

    tier: str
    requests_today: int
    requests_total: int
    daily_limit: int
    remaining: int

    def to_dict(self) -> dict:
        return {
            "tier": self.tier,
            "requests_today": self.requests_today,
            "requests_total": self.requests_total,
            "daily_limit": self.daily_limit,
            "remaining": self.remaining,
        }


@dataclass(frozen=True)
class QuotaReservation:
    """Admission granted by check_and_reserve.

    Carries the snapshot needed to charge the call later, and to report a
    best-guess quota if the charge cannot be persisted.
    """

    user_id: int
    tier: str
    quota_day: date
    requests_today: int
    requests_total: int


@dataclass(frozen=True)
class UsageCharge:
    """A completed provider call to be recorded."""

    question: str
    subject: str
    solution: str
    tokens_used: int
    cost_cents: int


@dataclass(frozen=True)
class CommitResult:
    record_id: int
    quota: QuotaView


class QuotaPolicyEngine:
    """Enforce per-user and global daily limits.

    Args:
        config: Settings to read limits from
        counter: Cache-backed secondary counter
        clock: Returns the current aware datetime; injectable for tests
        endpoint: Name under which usage is aggregated
    """

    def __init__(
        self,
        config: Settings = settings,
        counter: Optional[DailyCallCounter] = None,
        clock: Clock = utc_now,
        endpoint: str = "solve",
    ) -> None:
        self._config = config
        self._counter = counter or DailyCallCounter()
        self._clock = clock
        self.endpoint = endpoint

    def today(self) -> date:
        """Current quota day in the configured timezone."""
        return quota_day(self._clock(), self._config.quota_timezone)

    def daily_limit_for(self, tier: str) -> int:
        if tier == TIER_PREMIUM:
            return self._config.premium_display_limit
        return self._config.free_daily_limit

    def build_view(self, tier: str, requests_today: int, requests_total: int) -> QuotaView:
        limit = self.daily_limit_for(tier)
        return QuotaView(
            tier=tier,
            requests_today=requests_today,
            requests_total=requests_total,
            daily_limit=limit,
            remaining=max(0, limit - requests_today),
        )

    def view(self, user: User) -> QuotaView:
        """Quota view for a user whose counters are already current."""
        return self.build_view(user.tier, user.requests_today, user.requests_total)

    async def refresh_user(
        self,
        session: AsyncSession,
        user: User,
        auto_commit: bool = True,
    ) -> User:
        """Apply the lazy daily reset to a user.

        The first touch on a new quota day zeroes ``requests_today``. The
        in-memory object is updated to match.
        """
        today = self.today()
        if user.last_reset_date is not None and user.last_reset_date >= today:
            return user

        if await reset_daily_counter_if_stale(session, user.id, today, auto_commit=auto_commit):
            logger.debug("Daily counter reset", extra={"user_id": user.id})
        await session.refresh(user)
        return user

    async def check_and_reserve(self, session: AsyncSession, user: User) -> QuotaReservation:
        """Admit or reject a user's next provider call.

        Raises:
            QuotaExceededError: If the free-tier daily quota or the secondary
                per-user call limit is exhausted
        """
        user = await self.refresh_user(session, user)
        today = self.today()

        if not user.is_premium and user.requests_today >= self._config.free_daily_limit:
            logger.info(
                "Free-tier daily quota exhausted",
                extra={"user_id": user.id, "requests_today": user.requests_today},
            )
            raise QuotaExceededError(
                remaining=0,
                upgrade_url=self._config.upgrade_url,
                detail=(
                    f"Daily limit of {self._config.free_daily_limit} free solves reached. "
                    "Upgrade to premium for unlimited solves."
                ),
            )

        calls = await self._counter.current(user.id, today)
        if calls is not None and calls >= self._config.user_daily_call_limit:
            logger.info(
                "Per-user daily call limit reached",
                extra={"user_id": user.id, "calls_today": calls},
            )
            raise QuotaExceededError(
                remaining=0,
                upgrade_url=None if user.is_premium else self._config.upgrade_url,
                detail="Daily request limit reached. Please try again tomorrow.",
            )

        return QuotaReservation(
            user_id=user.id,
            tier=user.tier,
            quota_day=today,
            requests_today=user.requests_today,
            requests_total=user.requests_total,
        )

    async def check_budget(self, session: AsyncSession) -> int:
        """Fail closed once today's system-wide cost reaches the ceiling.

        Returns:
            Today's cost so far, in cents

        Raises:
            BudgetExceededError: If the recorded cost is at or above the ceiling
        """
        spent = await get_daily_cost_cents(session, self.today())
        if spent >= self._config.daily_budget_cents:
            logger.warning(
                "Daily cost ceiling reached; rejecting requests",
                extra={"cost_cents": spent, "budget_cents": self._config.daily_budget_cents},
            )
            raise BudgetExceededError()
        return spent

    async def commit(
        self,
        session: AsyncSession,
        reservation: QuotaReservation,
        charge: UsageCharge,
    ) -> CommitResult:
        """Record a completed call in one transaction.

        Inserts the request record, increments the user's counters and adds
        the call to the daily aggregate, then bumps the cache counter. The
        cache update is best-effort and happens after the commit.

        Raises:
            SQLAlchemyError: If the transaction fails; nothing is persisted
        """
        today = self.today()
        try:
            record = await save_request_record(
                session,
                user_id=reservation.user_id,
                question=charge.question,
                subject=charge.subject,
                solution=charge.solution,
                tokens_used=charge.tokens_used,
                cost_cents=charge.cost_cents,
                auto_commit=False,
            )
            counters = await increment_request_counters(
                session, reservation.user_id, today, auto_commit=False
            )
            if counters is None:
                raise LookupError(f"User {reservation.user_id} disappeared before commit")
            await record_daily_usage(
                session,
                usage_date=today,
                endpoint=self.endpoint,
                tokens_used=charge.tokens_used,
                cost_cents=charge.cost_cents,
                auto_commit=False,
            )
            await session.commit()
        except Exception:
            await session.rollback()
            raise

        await self._counter.increment(reservation.user_id, today)

        requests_today, requests_total = counters
        return CommitResult(
            record_id=record.id,
            quota=self.build_view(reservation.tier, requests_today, requests_total),
        )

    def estimate_after_unpersisted(self, reservation: QuotaReservation) -> QuotaView:
        """Best-guess quota when a completed call could not be recorded."""
        return self.build_view(
            reservation.tier,
            reservation.requests_today + 1,
            reservation.requests_total + 1,
        )
