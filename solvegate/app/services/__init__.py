"""Services package for the gateway.

This package provides:
- Session issuance and resolution
- Quota policy (per-user daily quota, secondary call limit, global budget)
- Content policy gate
- Completion gateway orchestrating a full solve
- Entitlement updates
"""

from solvegate.app.services.completion_gateway import (
    SUBJECTS,
    CompletionGateway,
    FailureKind,
    SolveFailure,
    SolveOutcome,
    SolveSuccess,
    get_completion_gateway,
    reset_completion_gateway,
)
from solvegate.app.services.content_policy import (
    ContentPolicyGate,
    PolicyDecision,
    get_content_policy_gate,
)
from solvegate.app.services.entitlement import set_entitlement
from solvegate.app.services.pricing import calculate_cost_cents
from solvegate.app.services.quota import (
    QuotaPolicyEngine,
    QuotaReservation,
    QuotaView,
    UsageCharge,
)
from solvegate.app.services.session_manager import (
    IssuedSession,
    SessionManager,
    get_session_manager,
    reset_session_manager,
)
from solvegate.app.services.usage_counter import DailyCallCounter

__all__ = [
    # Completion gateway
    "SUBJECTS",
    "CompletionGateway",
    "FailureKind",
    "SolveFailure",
    "SolveOutcome",
    "SolveSuccess",
    "get_completion_gateway",
    "reset_completion_gateway",
    # Content policy
    "ContentPolicyGate",
    "PolicyDecision",
    "get_content_policy_gate",
    # Entitlement
    "set_entitlement",
    # Pricing
    "calculate_cost_cents",
    # Quota
    "DailyCallCounter",
    "QuotaPolicyEngine",
    "QuotaReservation",
    "QuotaView",
    "UsageCharge",
    # Sessions
    "IssuedSession",
    "SessionManager",
    "get_session_manager",
    "reset_session_manager",
]
