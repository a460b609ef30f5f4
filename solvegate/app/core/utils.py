"""Utility functions for the gateway application."""

from datetime import date, datetime, timedelta, timezone, tzinfo
from functools import lru_cache
from typing import Callable, Optional
from zoneinfo import ZoneInfo

from solvegate.app.core.config import settings

# Injectable clock; returns an aware UTC datetime
Clock = Callable[[], datetime]


def utc_now() -> datetime:
    """Return the current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


@lru_cache(maxsize=8)
def get_quota_timezone(name: Optional[str] = None) -> tzinfo:
    """Resolve the timezone in which quota days are counted.

    Args:
        name: IANA timezone name. Defaults to settings.quota_timezone.
    """
    name = name or settings.quota_timezone
    if name.upper() == "UTC":
        return timezone.utc
    return ZoneInfo(name)


def quota_day(now: Optional[datetime] = None, tz_name: Optional[str] = None) -> date:
    """Return the calendar day a moment falls on in the quota timezone.

    Args:
        now: The moment to convert. Defaults to the current time.
        tz_name: Timezone override.

    Examples:
        >>> quota_day(datetime(2026, 3, 1, 23, 30, tzinfo=timezone.utc))
        datetime.date(2026, 3, 1)
    """
    now = now or utc_now()
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    return now.astimezone(get_quota_timezone(tz_name)).date()


def seconds_until_next_day(now: Optional[datetime] = None, tz_name: Optional[str] = None) -> int:
    """Seconds remaining until midnight in the quota timezone."""
    now = now or utc_now()
    tz = get_quota_timezone(tz_name)
    local = now.astimezone(tz)
    tomorrow = datetime.combine(local.date() + timedelta(days=1), datetime.min.time(), tz)
    return max(1, int((tomorrow - local).total_seconds()))
