"""Session manager.

Issues, resolves and revokes bearer sessions. A session token is a signed
JWT; the matching row in the ``sessions`` table (keyed by the token's
SHA256 digest) is authoritative for expiry and revocation.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Optional

import jwt
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from solvegate.app.core.config import Settings, settings
from solvegate.app.core.logging import get_logger
from solvegate.app.core.security import (
    create_session_token,
    decode_session_token,
    hash_password,
    hash_token,
    verify_password,
)
from solvegate.app.core.utils import Clock, utc_now
from solvegate.app.db.crud import (
    create_session,
    delete_expired_sessions,
    delete_session,
    get_active_session_user,
    get_or_create_user_by_device,
    get_user_by_email,
    set_user_credentials,
)
from solvegate.app.db.models import User
from solvegate.app.exceptions import AuthenticationError, ConflictError
from solvegate.app.services.quota import QuotaPolicyEngine

logger = get_logger(__name__)


@dataclass(frozen=True)
class IssuedSession:
    """A freshly issued session and the user it belongs to."""

    token: str
    user: User
    expires_at: datetime
    created_user: bool = False


class SessionManager:
    """Authenticate devices and resolve bearer tokens to users.

    Args:
        quota: Engine used to apply the lazy daily reset on every touch
        config: Settings to read the session TTL from
        clock: Returns the current aware datetime; injectable for tests
    """

    def __init__(
        self,
        quota: Optional[QuotaPolicyEngine] = None,
        config: Settings = settings,
        clock: Clock = utc_now,
    ) -> None:
        self._config = config
        self._clock = clock
        self.quota = quota or QuotaPolicyEngine(config=config, clock=clock)

    async def _issue(
        self,
        session: AsyncSession,
        user: User,
        device_info: Optional[dict[str, Any]],
    ) -> tuple[str, datetime]:
        # Expired rows are never resolved again; drop them as the user signs in
        await delete_expired_sessions(session, self._clock(), user_id=user.id, auto_commit=False)
        token, expires_at = create_session_token(
            user.id,
            issued_at=self._clock(),
            ttl=timedelta(days=self._config.session_ttl_days),
        )
        await create_session(
            session,
            user_id=user.id,
            token_hash=hash_token(token),
            expires_at=expires_at,
            device_info=device_info,
        )
        return token, expires_at

    async def authenticate(
        self,
        session: AsyncSession,
        device_id: str,
        device_info: Optional[dict[str, Any]] = None,
    ) -> IssuedSession:
        """Issue a session for a device, creating the user on first contact.

        Args:
            session: Database session
            device_id: Stable device fingerprint
            device_info: Optional client metadata stored with the session

        Returns:
            IssuedSession with the token and the user's current counters
        """
        user, created = await get_or_create_user_by_device(
            session, device_id, self.quota.today()
        )
        user = await self.quota.refresh_user(session, user)
        token, expires_at = await self._issue(session, user, device_info)

        logger.info(
            "Session issued",
            extra={"user_id": user.id, "new_user": created},
        )
        return IssuedSession(token=token, user=user, expires_at=expires_at, created_user=created)

    async def login(
        self,
        session: AsyncSession,
        email: str,
        password: str,
        device_info: Optional[dict[str, Any]] = None,
    ) -> IssuedSession:
        """Issue a session for a user that has attached email credentials.

        Raises:
            AuthenticationError: If the email is unknown or the password is wrong
        """
        user = await get_user_by_email(session, email)
        if user is None or not verify_password(password, user.password_hash):
            logger.info("Login failed")
            raise AuthenticationError("Invalid email or password")

        user = await self.quota.refresh_user(session, user)
        token, expires_at = await self._issue(session, user, device_info)
        logger.info("Session issued via login", extra={"user_id": user.id})
        return IssuedSession(token=token, user=user, expires_at=expires_at)

    async def resolve(self, session: AsyncSession, token: str) -> User:
        """Resolve a bearer token to its user.

        The signature and ``exp`` claim are checked first so malformed or
        forged tokens never reach the database. The stored session row is
        then required to exist and be unexpired.

        Raises:
            AuthenticationError: If the token is missing, invalid, expired
                or revoked
        """
        if not token:
            raise AuthenticationError("Missing session token")

        try:
            claims = decode_session_token(token)
        except jwt.ExpiredSignatureError as e:
            raise AuthenticationError("Session expired") from e
        except jwt.InvalidTokenError as e:
            raise AuthenticationError("Invalid session token") from e

        user = await get_active_session_user(session, hash_token(token), self._clock())
        if user is None or str(user.id) != claims.get("sub"):
            raise AuthenticationError("Invalid or expired session")

        return await self.quota.refresh_user(session, user)

    async def revoke(self, session: AsyncSession, token: str) -> bool:
        """Delete the session for a token. Later resolves fail.

        Returns:
            True if a session was deleted
        """
        revoked = await delete_session(session, hash_token(token))
        if revoked:
            logger.info("Session revoked")
        return revoked

    async def set_credentials(
        self,
        session: AsyncSession,
        user: User,
        email: str,
        password: str,
    ) -> User:
        """Attach email and password credentials to a device user.

        Raises:
            ConflictError: If the email already belongs to another user
        """
        existing = await get_user_by_email(session, email)
        if existing is not None and existing.id != user.id:
            raise ConflictError("Email is already registered")

        try:
            return await set_user_credentials(session, user, email, hash_password(password))
        except IntegrityError as e:
            await session.rollback()
            raise ConflictError("Email is already registered") from e


_session_manager: Optional[SessionManager] = None


def get_session_manager() -> SessionManager:
    """Get the global session manager (singleton pattern)."""
    global _session_manager
    if _session_manager is None:
        _session_manager = SessionManager()
    return _session_manager


def reset_session_manager() -> None:
    """Reset the global session manager. Useful for testing."""
    global _session_manager
    _session_manager = None
