"""Completion gateway.

Orchestrates one solve, short-circuiting on the first failure:

1. Resolve the session token.
2. Evaluate the content policy (no charge on block).
3. Check the per-user quota (no charge on rejection).
4. Check the global daily budget (no charge on rejection).
5. Call the completion provider with a bounded timeout.
6. Record the charge: request record, user counters, daily aggregate,
   cache counter.
7. Return the solution and the caller's remaining quota.

Every outcome is returned as a ``SolveOutcome`` value rather than raised,
so callers handle each failure kind explicitly.
"""

import asyncio
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional, Set, Union

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from solvegate.app.core.config import Settings, settings
from solvegate.app.core.logging import get_logger
from solvegate.app.core.retry import RetryPolicy, run_with_retry
from solvegate.app.db.async_session import get_async_session_maker
from solvegate.app.exceptions import (
    AuthenticationError,
    BudgetExceededError,
    GatewayException,
    PolicyBlockedError,
    QuotaExceededError,
    StoreError,
    UpstreamError,
)
from solvegate.app.providers.base import BaseProvider
from solvegate.app.services.content_policy import ContentPolicyGate, get_content_policy_gate
from solvegate.app.services.pricing import calculate_cost_cents
from solvegate.app.services.quota import (
    QuotaPolicyEngine,
    QuotaReservation,
    QuotaView,
    UsageCharge,
)
from solvegate.app.services.session_manager import SessionManager, get_session_manager

logger = get_logger(__name__)

SUBJECTS = (
    "math",
    "physics",
    "chemistry",
    "biology",
    "english",
    "history",
    "computerScience",
    "programming",
)

SYSTEM_PROMPT_TEMPLATE = (
    "You are an expert {subject} tutor. Provide clear, educational explanations "
    "that help students learn. Do not simply give answers - explain the concepts "
    "and methodology. If you detect this might be from an exam or test, refuse to answer."
)


def build_system_prompt(subject: str) -> str:
    return SYSTEM_PROMPT_TEMPLATE.format(subject=subject)


class FailureKind(str, Enum):
    """Reasons a solve can fail. Values are the stable client error codes."""

    UNAUTHENTICATED = "unauthenticated"
    POLICY_BLOCKED = "policy_blocked"
    QUOTA_EXCEEDED = "quota_exceeded"
    BUDGET_EXCEEDED = "budget_exceeded"
    UPSTREAM_ERROR = "upstream_error"
    STORE_ERROR = "store_error"


_KIND_BY_EXCEPTION = {
    AuthenticationError: FailureKind.UNAUTHENTICATED,
    PolicyBlockedError: FailureKind.POLICY_BLOCKED,
    QuotaExceededError: FailureKind.QUOTA_EXCEEDED,
    BudgetExceededError: FailureKind.BUDGET_EXCEEDED,
    UpstreamError: FailureKind.UPSTREAM_ERROR,
    StoreError: FailureKind.STORE_ERROR,
}


@dataclass(frozen=True)
class SolveSuccess:
    """A completed solve.

    ``persisted`` is False when the provider call succeeded but the charge
    could not be recorded; the solution is still returned and the failure
    is logged for reconciliation.
    """

    solution: str
    subject: str
    tokens_used: int
    cost_cents: int
    quota: QuotaView
    record_id: Optional[int] = None
    persisted: bool = True

    ok = True

    def to_response(self) -> Dict[str, Any]:
        return {
            "solution": self.solution,
            "subject": self.subject,
            "tokens_used": self.tokens_used,
            "record_id": self.record_id,
            "remaining": self.quota.remaining,
            "quota": self.quota.to_dict(),
        }


@dataclass(frozen=True)
class SolveFailure:
    """A solve that was rejected or failed before anything was charged."""

    kind: FailureKind
    message: str
    status_code: int
    retryable: bool
    details: Optional[Dict[str, Any]] = None

    ok = False

    @classmethod
    def from_exception(cls, exc: GatewayException) -> "SolveFailure":
        kind = _KIND_BY_EXCEPTION.get(type(exc), FailureKind.STORE_ERROR)
        body = exc.to_response()
        details = {k: v for k, v in body.items() if k not in ("error", "message")}
        return cls(
            kind=kind,
            message=exc.message,
            status_code=exc.status_code,
            retryable=exc.retryable,
            details=details or None,
        )

    def to_response(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"error": self.kind.value, "message": self.message}
        if self.details:
            body.update(self.details)
        return body


SolveOutcome = Union[SolveSuccess, SolveFailure]


class CompletionGateway:
    """Run solves end to end.

    Args:
        provider: Completion provider
        session_factory: Produces database sessions; each phase opens its own
        sessions: Session manager (token resolution)
        quota: Quota policy engine; defaults to the session manager's engine
        policy: Content policy gate
        retry_policy: Retry policy for store reads before the provider call
        config: Settings
    """

    def __init__(
        self,
        provider: BaseProvider,
        session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
        sessions: Optional[SessionManager] = None,
        quota: Optional[QuotaPolicyEngine] = None,
        policy: Optional[ContentPolicyGate] = None,
        retry_policy: Optional[RetryPolicy] = None,
        config: Settings = settings,
    ) -> None:
        self.provider = provider
        self._session_factory = session_factory
        self._config = config
        self.sessions = sessions or SessionManager(quota=quota, config=config)
        self.quota = quota or self.sessions.quota
        self.policy = policy or get_content_policy_gate()
        self.retry_policy = retry_policy or RetryPolicy(
            max_retries=config.store_retry_attempts,
            base_delay=config.store_retry_base_delay,
        )
        # Strong references to in-flight charge tasks
        self._inflight: Set[asyncio.Task] = set()

    @property
    def session_factory(self) -> async_sessionmaker[AsyncSession]:
        if self._session_factory is None:
            self._session_factory = get_async_session_maker()
        return self._session_factory

    async def solve(
        self,
        token: str,
        question: str,
        subject: str,
        image: Optional[str] = None,
        request_id: Optional[str] = None,
    ) -> SolveOutcome:
        """Solve one question on behalf of the token's user.

        Args:
            token: Bearer session token
            question: Question text
            subject: One of SUBJECTS
            image: Optional base64 image
            request_id: Request ID for log correlation

        Returns:
            SolveSuccess or SolveFailure
        """
        try:
            reservation = await self._admit(token, question)
        except GatewayException as e:
            return SolveFailure.from_exception(e)

        # The charge runs as its own task so a client disconnect cancels only
        # the wait, never the provider call or the bookkeeping after it.
        task = asyncio.ensure_future(
            self._charge(reservation, question, subject, image, request_id)
        )
        self._inflight.add(task)
        task.add_done_callback(self._charge_done)

        try:
            return await asyncio.shield(task)
        except GatewayException as e:
            return SolveFailure.from_exception(e)

    def _charge_done(self, task: "asyncio.Future[SolveSuccess]") -> None:
        self._inflight.discard(task)
        if task.cancelled():
            return
        # Read the error here: after a disconnect nobody else awaits the task
        error = task.exception()
        if error is not None:
            logger.debug(
                "Charge finished with error",
                extra={"error_type": type(error).__name__},
            )

    async def _admit(self, token: str, question: str) -> QuotaReservation:
        """Run the pre-provider checks with bounded store retries.

        Raises:
            GatewayException: For any rejection; store failures become StoreError
        """
        try:
            return await run_with_retry(self.retry_policy, self._preflight, token, question)
        except GatewayException:
            raise
        except (SQLAlchemyError, OSError, asyncio.TimeoutError) as e:
            logger.error(
                "Account store unavailable before provider call",
                extra={"error": str(e), "error_type": type(e).__name__},
            )
            raise StoreError() from e

    async def _preflight(self, token: str, question: str) -> QuotaReservation:
        async with self.session_factory() as session:
            user = await self.sessions.resolve(session, token)

            decision = self.policy.evaluate(question)
            if not decision.allowed:
                raise PolicyBlockedError(rule_id=decision.rule_id, message=decision.reason)

            reservation = await self.quota.check_and_reserve(session, user)
            await self.quota.check_budget(session)
            return reservation

    async def _charge(
        self,
        reservation: QuotaReservation,
        question: str,
        subject: str,
        image: Optional[str],
        request_id: Optional[str],
    ) -> SolveSuccess:
        log_context = {"request_id": request_id, "user_id": reservation.user_id, "provider": self.provider.name}

        try:
            completion = await asyncio.wait_for(
                self.provider.complete(build_system_prompt(subject), subject, question, image),
                timeout=self._config.provider_timeout,
            )
        except asyncio.TimeoutError as e:
            logger.warning("Provider call timed out", extra=log_context)
            raise UpstreamError("The solver took too long to respond. Please try again.") from e
        except UpstreamError:
            logger.warning("Provider call failed", extra=log_context)
            raise

        cost_cents = calculate_cost_cents(completion.tokens, self._config.cost_cents_per_1k_tokens)
        charge = UsageCharge(
            question=question,
            subject=subject,
            solution=completion.text,
            tokens_used=completion.tokens,
            cost_cents=cost_cents,
        )

        try:
            async with self.session_factory() as session:
                result = await self.quota.commit(session, reservation, charge)
        except Exception as e:
            # The provider has already been paid; keep the solution and log
            # everything needed to reconcile the charge later.
            logger.error(
                "Failed to record completed solve; manual reconciliation required",
                extra={
                    **log_context,
                    "quota_day": reservation.quota_day.isoformat(),
                    "subject": subject,
                    "tokens_used": completion.tokens,
                    "cost_cents": cost_cents,
                    "error": str(e),
                    "error_type": type(e).__name__,
                },
                exc_info=True,
            )
            return SolveSuccess(
                solution=completion.text,
                subject=subject,
                tokens_used=completion.tokens,
                cost_cents=cost_cents,
                quota=self.quota.estimate_after_unpersisted(reservation),
                persisted=False,
            )

        logger.info(
            "Solve completed",
            extra={**log_context, "tokens_used": completion.tokens, "cost_cents": cost_cents},
        )
        return SolveSuccess(
            solution=completion.text,
            subject=subject,
            tokens_used=completion.tokens,
            cost_cents=cost_cents,
            quota=result.quota,
            record_id=result.record_id,
        )

    async def drain(self) -> None:
        """Wait for in-flight charges to finish (used on shutdown)."""
        if self._inflight:
            await asyncio.gather(*self._inflight, return_exceptions=True)


_gateway: Optional[CompletionGateway] = None


def get_completion_gateway() -> CompletionGateway:
    """Get the global completion gateway (singleton pattern)."""
    global _gateway
    if _gateway is None:
        from solvegate.app.providers.factory import get_provider

        _gateway = CompletionGateway(provider=get_provider(), sessions=get_session_manager())
    return _gateway


def reset_completion_gateway() -> None:
    """Reset the global gateway instance. Useful for testing."""
    global _gateway
    _gateway = None
