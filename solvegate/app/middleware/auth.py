import hmac
from typing import Annotated, Optional

from fastapi import Depends, Request

from solvegate.app.core.config import settings
from solvegate.app.core.logging import get_logger
from solvegate.app.db.async_session import SessionDep
from solvegate.app.db.models import User
from solvegate.app.exceptions import AuthenticationError, InvalidRequestError
from solvegate.app.services.session_manager import get_session_manager

logger = get_logger(__name__)

# Longer bearer values are rejected before any decoding or hashing
MAX_TOKEN_LENGTH = 2048


def get_bearer_token(request: Request) -> str | None:
    """Extract Bearer token from Authorization header.

    Args:
        request: The incoming request

    Returns:
        The token string if present, None otherwise
    """
    auth = request.headers.get("Authorization", "")
    if not auth.startswith("Bearer "):
        return None
    return auth.replace("Bearer ", "", 1).strip() or None


def require_bearer_token(request: Request) -> str:
    """Return the bearer token or fail with 401.

    Raises:
        AuthenticationError: If the header is missing
        InvalidRequestError: If the token is unreasonably long
    """
    token = get_bearer_token(request)
    if not token:
        raise AuthenticationError("Missing session token")
    if len(token) > MAX_TOKEN_LENGTH:
        raise InvalidRequestError(f"Session token too long (max {MAX_TOKEN_LENGTH} characters)")
    return token


async def require_user(
    token: Annotated[str, Depends(require_bearer_token)],
    session: SessionDep,
) -> User:
    """Resolve the bearer session to its user.

    The user's daily counter is brought up to date as part of resolution.

    Raises:
        AuthenticationError: If the session is invalid, expired or revoked
    """
    return await get_session_manager().resolve(session, token)


def require_admin(request: Request) -> str:
    """Validate admin token for protected endpoints.

    Admin endpoints are disabled entirely when ADMIN_TOKEN is not set.

    Returns:
        Admin identifier if valid

    Raises:
        AuthenticationError: If admin token is missing or invalid
    """
    expected_token: Optional[str] = settings.admin_token
    if not expected_token:
        logger.warning("Admin endpoint called but ADMIN_TOKEN is not configured")
        raise AuthenticationError("Invalid or missing admin token")

    # Always compare so a missing token takes the same path as a wrong one
    token = get_bearer_token(request) or ""
    if not hmac.compare_digest(token.encode(), expected_token.encode()):
        raise AuthenticationError("Invalid or missing admin token")

    return "admin"


CurrentUser = Annotated[User, Depends(require_user)]
BearerToken = Annotated[str, Depends(require_bearer_token)]
