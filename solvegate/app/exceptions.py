"""Custom exceptions for the gateway application."""


class GatewayException(Exception):
    """Base class for gateway exceptions with HTTP status code.

    All custom exceptions inherit from this class and define their
    specific status_code and a stable error_code so clients can tell
    "try later" from "upgrade" from "rephrase".
    """
    status_code: int = 500
    error_code: str = "internal_error"
    retryable: bool = False

    def __init__(self, message: str = "Gateway error"):
        self.message = message
        super().__init__(message)

    def to_response(self) -> dict:
        return {"error": self.error_code, "message": self.message}


class AuthenticationError(GatewayException):
    """Raised when a bearer credential is missing, malformed, expired or revoked.

    Maps to HTTP 401 Unauthorized.
    """
    status_code = 401
    error_code = "unauthenticated"
    retryable = True

    def __init__(self, detail: str = "Invalid or expired session"):
        self.detail = detail
        super().__init__(detail)


class PolicyBlockedError(GatewayException):
    """Raised when a question is rejected by the content policy gate.

    Maps to HTTP 400 Bad Request.
    """
    status_code = 400
    error_code = "policy_blocked"

    def __init__(self, rule_id: str | None = None, message: str = "Content blocked by policy"):
        self.rule_id = rule_id
        super().__init__(message)

    def to_response(self) -> dict:
        return {"error": self.error_code, "message": self.message, "rule_id": self.rule_id}


class QuotaExceededError(GatewayException):
    """Raised when a user has exhausted a per-account daily limit.

    Maps to HTTP 429 Too Many Requests.
    """
    status_code = 429
    error_code = "quota_exceeded"
    retryable = True

    def __init__(
        self,
        remaining: int = 0,
        upgrade_url: str | None = None,
        detail: str | None = None,
    ):
        self.remaining = remaining
        self.upgrade_url = upgrade_url
        super().__init__(detail or "Daily limit reached")

    def to_response(self) -> dict:
        body = {
            "error": self.error_code,
            "message": self.message,
            "remaining": self.remaining,
        }
        if self.upgrade_url:
            body["upgrade_url"] = self.upgrade_url
        return body


class BudgetExceededError(GatewayException):
    """Raised when today's system-wide cost ceiling has been reached.

    Operator-side circuit breaker, not a user-caused condition.
    Maps to HTTP 503 Service Unavailable.
    """
    status_code = 503
    error_code = "budget_exceeded"
    retryable = True

    def __init__(
        self,
        message: str = "Service temporarily unavailable due to high demand. Please try again later.",
    ):
        super().__init__(message)


class UpstreamError(GatewayException):
    """Raised when the completion provider fails or times out.

    Maps to HTTP 502 Bad Gateway.
    """
    status_code = 502
    error_code = "upstream_error"
    retryable = True

    def __init__(self, message: str = "Failed to solve problem. Please try again."):
        super().__init__(message)


class StoreError(GatewayException):
    """Raised when the account store cannot be reached before the provider call.

    Maps to HTTP 503 Service Unavailable.
    """
    status_code = 503
    error_code = "store_error"
    retryable = True

    def __init__(self, message: str = "Account store unavailable. Please try again later."):
        super().__init__(message)


class InvalidRequestError(GatewayException):
    """Raised when a request is well-formed but semantically invalid.

    Maps to HTTP 400 Bad Request.
    """
    status_code = 400
    error_code = "invalid_request"


class NotFoundError(GatewayException):
    """Raised when a referenced resource does not exist.

    Maps to HTTP 404 Not Found.
    """
    status_code = 404
    error_code = "not_found"


class ConflictError(GatewayException):
    """Raised when a write would violate a uniqueness rule.

    Maps to HTTP 409 Conflict.
    """
    status_code = 409
    error_code = "conflict"
