"""CRUD operations package.

- user.py: User lookup, creation and counter updates
- session.py: Issued session rows
- request_record.py: Audit records of completed solves
- usage.py: System-wide daily usage aggregates
"""

# User operations
from solvegate.app.db.crud.user import (
    count_users,
    get_or_create_user_by_device,
    get_user_by_device_id,
    get_user_by_email,
    get_user_by_id,
    increment_request_counters,
    reset_daily_counter_if_stale,
    set_user_age,
    set_user_credentials,
    set_user_tier,
)

# Session operations
from solvegate.app.db.crud.session import (
    create_session,
    delete_expired_sessions,
    delete_session,
    get_active_session_user,
)

# Request record operations
from solvegate.app.db.crud.request_record import (
    count_request_records,
    list_request_records,
    save_request_record,
)

# Daily usage operations
from solvegate.app.db.crud.usage import (
    get_daily_cost_cents,
    get_daily_totals,
    record_daily_usage,
)

__all__ = [
    # User operations
    "count_users",
    "get_or_create_user_by_device",
    "get_user_by_device_id",
    "get_user_by_email",
    "get_user_by_id",
    "increment_request_counters",
    "reset_daily_counter_if_stale",
    "set_user_age",
    "set_user_credentials",
    "set_user_tier",
    # Session operations
    "create_session",
    "delete_expired_sessions",
    "delete_session",
    "get_active_session_user",
    # Request record operations
    "count_request_records",
    "list_request_records",
    "save_request_record",
    # Daily usage operations
    "get_daily_cost_cents",
    "get_daily_totals",
    "record_daily_usage",
]
