"""Operator endpoints, protected by ``Authorization: Bearer <ADMIN_TOKEN>``."""

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from solvegate.app.core.cache import get_cache
from solvegate.app.core.logging import get_logger
from solvegate.app.db.crud import count_request_records, count_users, get_daily_totals
from solvegate.app.db.async_session import SessionDep
from solvegate.app.db.models import TIER_PREMIUM
from solvegate.app.middleware.auth import require_admin
from solvegate.app.services.entitlement import set_entitlement
from solvegate.app.services.session_manager import get_session_manager

logger = get_logger(__name__)
router = APIRouter(prefix="/admin", tags=["admin"], dependencies=[Depends(require_admin)])


class StatsResponse(BaseModel):
    total_users: int
    premium_users: int
    total_requests: int
    daily_calls: int
    daily_cost_cents: int
    daily_tokens: int
    cache: str


class EntitlementRequest(BaseModel):
    user_id: int
    tier: str

    model_config = {"json_schema_extra": {"examples": [{"user_id": 1, "tier": TIER_PREMIUM}]}}


class EntitlementResponse(BaseModel):
    user_id: int
    tier: str


@router.get("/stats", response_model=StatsResponse)
async def get_stats(session: SessionDep) -> StatsResponse:
    """Usage totals and today's spend."""
    total_users, premium_users = await count_users(session)
    total_requests = await count_request_records(session)
    today = get_session_manager().quota.today()
    totals = await get_daily_totals(session, today)

    cache = get_cache()
    cache_status = "disabled" if cache.name == "disabled" else (
        "connected" if await cache.ping() else "disconnected"
    )

    return StatsResponse(
        total_users=total_users,
        premium_users=premium_users,
        total_requests=total_requests,
        daily_calls=totals["call_count"],
        daily_cost_cents=totals["cost_cents"],
        daily_tokens=totals["tokens_used"],
        cache=cache_status,
    )


@router.post("/entitlements", response_model=EntitlementResponse)
async def update_entitlement(data: EntitlementRequest, session: SessionDep) -> EntitlementResponse:
    """Set a user's tier after an out-of-band purchase check.

    Accepts ``free`` or ``premium``.
    """
    user = await set_entitlement(session, data.user_id, data.tier)
    return EntitlementResponse(user_id=user.id, tier=user.tier)
