"""Response models shared by the client endpoints."""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel

from solvegate.app.db.models import User
from solvegate.app.services.quota import QuotaPolicyEngine, QuotaView


class QuotaResponse(BaseModel):
    tier: str
    requests_today: int
    requests_total: int
    daily_limit: int
    remaining: int

    @classmethod
    def from_view(cls, view: QuotaView) -> "QuotaResponse":
        return cls(**view.to_dict())


class UserResponse(BaseModel):
    id: int
    tier: str
    email: Optional[str] = None
    requests_today: int
    requests_total: int
    daily_limit: int
    remaining: int
    requires_parental_consent: bool
    created_at: Optional[datetime] = None

    @classmethod
    def from_user(cls, user: User, quota: QuotaPolicyEngine) -> "UserResponse":
        view = quota.view(user)
        return cls(
            id=user.id,
            tier=user.tier,
            email=user.email,
            requests_today=view.requests_today,
            requests_total=view.requests_total,
            daily_limit=view.daily_limit,
            remaining=view.remaining,
            requires_parental_consent=user.requires_parental_consent,
            created_at=user.created_at,
        )
