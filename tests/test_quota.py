"""Tests for the quota policy engine and the counters behind it."""

from datetime import timedelta
from unittest.mock import AsyncMock

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError
from sqlalchemy import update

from solvegate.app.db.crud import (
    get_daily_totals,
    get_or_create_user_by_device,
    increment_request_counters,
    record_daily_usage,
    reset_daily_counter_if_stale,
)
from solvegate.app.db.models import TIER_PREMIUM, User
from solvegate.app.exceptions import BudgetExceededError, QuotaExceededError
from solvegate.app.services.quota import QuotaReservation, UsageCharge
from solvegate.app.services.usage_counter import DailyCallCounter


async def _make_user(db_session, quota, device_id="dev-1", **values) -> User:
    user, _ = await get_or_create_user_by_device(db_session, device_id, quota.today())
    if values:
        await db_session.execute(update(User).where(User.id == user.id).values(**values))
        await db_session.commit()
        await db_session.refresh(user)
    return user


def _charge(tokens: int = 400, cost: int = 1) -> UsageCharge:
    return UsageCharge(
        question="Solve 2x + 3 = 7",
        subject="math",
        solution="x = 2",
        tokens_used=tokens,
        cost_cents=cost,
    )


class TestDailyReset:
    """The lazy reset zeroes requests_today once per new day."""

    @pytest.mark.asyncio
    async def test_no_reset_on_same_day(self, db_session, quota):
        user = await _make_user(db_session, quota, requests_today=3)

        assert await reset_daily_counter_if_stale(db_session, user.id, quota.today()) is False

    @pytest.mark.asyncio
    async def test_reset_happens_once(self, db_session, quota):
        yesterday = quota.today() - timedelta(days=1)
        user = await _make_user(db_session, quota, requests_today=3, last_reset_date=yesterday)

        assert await reset_daily_counter_if_stale(db_session, user.id, quota.today()) is True
        assert await reset_daily_counter_if_stale(db_session, user.id, quota.today()) is False

        await db_session.refresh(user)
        assert user.requests_today == 0
        assert user.last_reset_date == quota.today()

    @pytest.mark.asyncio
    async def test_refresh_user_after_midnight(self, db_session, quota, clock):
        user = await _make_user(db_session, quota, requests_today=5, requests_total=5)
        clock.advance(days=1)

        user = await quota.refresh_user(db_session, user)

        assert user.requests_today == 0
        assert user.requests_total == 5
        assert quota.view(user).remaining == 5


class TestIncrementCounters:
    """Counters move only when a call is charged."""

    @pytest.mark.asyncio
    async def test_increments_both_counters(self, db_session, quota):
        user = await _make_user(db_session, quota, requests_today=2, requests_total=10)

        counters = await increment_request_counters(db_session, user.id, quota.today())

        assert counters == (3, 11)

    @pytest.mark.asyncio
    async def test_restarts_daily_counter_when_day_rolled_over(self, db_session, quota):
        yesterday = quota.today() - timedelta(days=1)
        user = await _make_user(
            db_session, quota, requests_today=4, requests_total=4, last_reset_date=yesterday
        )

        counters = await increment_request_counters(db_session, user.id, quota.today())

        assert counters == (1, 5)

    @pytest.mark.asyncio
    async def test_unknown_user(self, db_session, quota):
        assert await increment_request_counters(db_session, 9999, quota.today()) is None


class TestAdmission:
    """check_and_reserve decisions."""

    @pytest.mark.asyncio
    async def test_free_user_under_limit_is_admitted(self, db_session, quota):
        user = await _make_user(db_session, quota, requests_today=4, requests_total=4)

        reservation = await quota.check_and_reserve(db_session, user)

        assert reservation.user_id == user.id
        assert reservation.requests_today == 4
        assert reservation.quota_day == quota.today()

    @pytest.mark.asyncio
    async def test_free_user_at_limit_is_rejected(self, db_session, quota, config):
        user = await _make_user(db_session, quota, requests_today=5)

        with pytest.raises(QuotaExceededError) as exc_info:
            await quota.check_and_reserve(db_session, user)

        assert exc_info.value.remaining == 0
        assert exc_info.value.upgrade_url == config.upgrade_url

    @pytest.mark.asyncio
    async def test_premium_user_has_no_daily_ceiling(self, db_session, quota):
        user = await _make_user(db_session, quota, tier=TIER_PREMIUM, requests_today=40)

        reservation = await quota.check_and_reserve(db_session, user)

        assert reservation.tier == TIER_PREMIUM

    @pytest.mark.asyncio
    async def test_secondary_call_limit_applies_to_premium(self, db_session, quota, cache):
        user = await _make_user(db_session, quota, tier=TIER_PREMIUM)
        await cache.incr(f"usage:calls:{user.id}:{quota.today().isoformat()}", amount=50, ttl=60)

        with pytest.raises(QuotaExceededError) as exc_info:
            await quota.check_and_reserve(db_session, user)

        assert exc_info.value.upgrade_url is None

    @pytest.mark.asyncio
    async def test_unavailable_counter_does_not_block(self, db_session, quota, cache):
        user = await _make_user(db_session, quota)
        cache.get = AsyncMock(side_effect=RedisConnectionError("down"))

        reservation = await quota.check_and_reserve(db_session, user)

        assert reservation.user_id == user.id


class TestBudget:
    """System-wide daily cost ceiling."""

    @pytest.mark.asyncio
    async def test_under_ceiling(self, db_session, quota, config):
        await record_daily_usage(
            db_session, quota.today(), "solve", tokens_used=100, cost_cents=config.daily_budget_cents - 1
        )

        assert await quota.check_budget(db_session) == config.daily_budget_cents - 1

    @pytest.mark.asyncio
    async def test_at_ceiling(self, db_session, quota, config):
        await record_daily_usage(
            db_session, quota.today(), "solve", tokens_used=100, cost_cents=config.daily_budget_cents
        )

        with pytest.raises(BudgetExceededError):
            await quota.check_budget(db_session)

    @pytest.mark.asyncio
    async def test_yesterdays_spend_does_not_count(self, db_session, quota, config):
        await record_daily_usage(
            db_session,
            quota.today() - timedelta(days=1),
            "solve",
            tokens_used=100,
            cost_cents=config.daily_budget_cents * 2,
        )

        assert await quota.check_budget(db_session) == 0


class TestCommit:
    """Charging a completed call."""

    @pytest.mark.asyncio
    async def test_commit_records_everything(self, db_session, quota, cache):
        user = await _make_user(db_session, quota)
        reservation = await quota.check_and_reserve(db_session, user)

        result = await quota.commit(db_session, reservation, _charge(tokens=1500, cost=1))

        assert result.record_id > 0
        assert result.quota.requests_today == 1
        assert result.quota.remaining == 4
        assert await get_daily_totals(db_session, quota.today()) == {
            "call_count": 1,
            "tokens_used": 1500,
            "cost_cents": 1,
        }
        assert await DailyCallCounter(cache).current(user.id, quota.today()) == 1

    @pytest.mark.asyncio
    async def test_daily_aggregate_accumulates(self, db_session, quota):
        user = await _make_user(db_session, quota)
        for _ in range(3):
            reservation = await quota.check_and_reserve(db_session, user)
            await quota.commit(db_session, reservation, _charge(tokens=200, cost=1))
            await db_session.refresh(user)

        totals = await get_daily_totals(db_session, quota.today())
        assert totals == {"call_count": 3, "tokens_used": 600, "cost_cents": 3}

    @pytest.mark.asyncio
    async def test_premium_view_uses_display_limit(self, db_session, quota):
        user = await _make_user(db_session, quota, tier=TIER_PREMIUM, requests_today=10)
        reservation = await quota.check_and_reserve(db_session, user)

        result = await quota.commit(db_session, reservation, _charge())

        assert result.quota.daily_limit == 999
        assert result.quota.remaining == 999 - 11

    def test_estimate_after_unpersisted(self, quota):
        reservation = QuotaReservation(
            user_id=1, tier="free", quota_day=quota.today(), requests_today=2, requests_total=7
        )

        view = quota.estimate_after_unpersisted(reservation)

        assert view.requests_today == 3
        assert view.requests_total == 8
        assert view.remaining == 2


class TestDailyCallCounter:
    """Cache-backed secondary counter."""

    @pytest.mark.asyncio
    async def test_missing_key_reads_as_zero(self, cache, quota):
        assert await DailyCallCounter(cache).current(1, quota.today()) == 0

    @pytest.mark.asyncio
    async def test_increment_failure_is_swallowed(self, cache, quota):
        cache.incr = AsyncMock(side_effect=RedisConnectionError("down"))

        assert await DailyCallCounter(cache).increment(1, quota.today()) is None

    @pytest.mark.asyncio
    async def test_days_are_counted_separately(self, cache, quota):
        counter = DailyCallCounter(cache)
        today = quota.today()
        await counter.increment(1, today)
        await counter.increment(1, today)

        assert await counter.current(1, today) == 2
        assert await counter.current(1, today + timedelta(days=1)) == 0
