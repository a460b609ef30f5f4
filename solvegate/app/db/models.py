from datetime import date, datetime
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from solvegate.app.core.utils import quota_day, utc_now
from solvegate.app.db.base import Base

TIER_FREE = "free"
TIER_PREMIUM = "premium"
TIERS = (TIER_FREE, TIER_PREMIUM)


class User(Base):
    """A caller identified by device id, optionally with email credentials.

    ``requests_today`` counts completed solves on ``last_reset_date`` and is
    zeroed lazily the first time the user is touched on a later day.
    """

    __tablename__ = "users"
    __table_args__ = (
        Index("idx_users_created", "created_at"),
        Index("idx_users_tier", "tier"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    device_id: Mapped[str] = mapped_column(String(255), unique=True)
    email: Mapped[str | None] = mapped_column(String(255), unique=True, nullable=True)
    password_hash: Mapped[str | None] = mapped_column(String(200), nullable=True)
    tier: Mapped[str] = mapped_column(String(20), default=TIER_FREE)
    requests_today: Mapped[int] = mapped_column(Integer, default=0)
    requests_total: Mapped[int] = mapped_column(Integer, default=0)
    last_reset_date: Mapped[date] = mapped_column(Date, default=lambda: quota_day())
    age: Mapped[int | None] = mapped_column(Integer, nullable=True)
    parental_consent: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now
    )

    @property
    def is_premium(self) -> bool:
        return self.tier == TIER_PREMIUM

    @property
    def requires_parental_consent(self) -> bool:
        return bool(self.age is not None and self.age < 13 and not self.parental_consent)


class UserSession(Base):
    """An issued bearer session. Only the token's SHA256 digest is stored."""

    __tablename__ = "sessions"
    __table_args__ = (
        Index("idx_sessions_user", "user_id"),
        Index("idx_sessions_expires", "expires_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"))
    token_hash: Mapped[str] = mapped_column(String(64), unique=True)
    device_info: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)


class RequestRecord(Base):
    """Audit record of one completed, charged solve. Insert-only."""

    __tablename__ = "request_records"
    __table_args__ = (
        Index("idx_request_records_user_created", "user_id", "created_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"))
    question: Mapped[str] = mapped_column(Text)
    subject: Mapped[str] = mapped_column(String(50))
    solution: Mapped[str] = mapped_column(Text)
    tokens_used: Mapped[int] = mapped_column(Integer, default=0)
    cost_cents: Mapped[int] = mapped_column(Integer, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)


class DailyUsage(Base):
    """System-wide provider usage aggregated per day and endpoint."""

    __tablename__ = "daily_usage"
    __table_args__ = (
        UniqueConstraint("usage_date", "endpoint", name="uq_daily_usage_date_endpoint"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    usage_date: Mapped[date] = mapped_column(Date)
    endpoint: Mapped[str] = mapped_column(String(100))
    call_count: Mapped[int] = mapped_column(Integer, default=0)
    tokens_used: Mapped[int] = mapped_column(Integer, default=0)
    cost_cents: Mapped[int] = mapped_column(Integer, default=0)
