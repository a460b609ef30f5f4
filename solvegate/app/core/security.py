import hashlib
import secrets
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any

import jwt

from solvegate.app.core.config import settings
from solvegate.app.core.logging import get_logger

logger = get_logger(__name__)

PBKDF2_ITERATIONS = 100000

# Process-local fallback when SESSION_SECRET is not configured
_ephemeral_secret: str | None = None


def hash_password_with_salt(raw_password: str, salt: str | None = None) -> tuple[str, str]:
    """Hash a password using PBKDF2 with SHA256.

    Args:
        raw_password: The plain text password
        salt: Optional salt. If not provided, a random salt will be generated.

    Returns:
        A tuple of (salt, hashed_password)
    """
    if salt is None:
        salt = secrets.token_hex(16)

    hashed = hashlib.pbkdf2_hmac(
        "sha256", raw_password.encode("utf-8"), salt.encode("utf-8"), PBKDF2_ITERATIONS
    ).hex()

    return salt, hashed


def hash_password(raw_password: str) -> str:
    """Hash a password into the stored ``salt$hash`` form."""
    salt, hashed = hash_password_with_salt(raw_password)
    return f"{salt}${hashed}"


def verify_password(raw_password: str, stored: str | None) -> bool:
    """Verify a plain text password against a stored ``salt$hash`` value.

    Returns:
        True if the password matches, False otherwise (including when no
        password has been set).
    """
    if not stored or "$" not in stored:
        return False
    salt, hashed = stored.split("$", 1)
    _, computed = hash_password_with_salt(raw_password, salt)
    return secrets.compare_digest(computed, hashed)


def hash_token(raw_token: str) -> str:
    """Hash a bearer token for storage and lookup.

    Session tokens carry their own entropy, so a plain SHA256 digest is
    enough to keep the raw token out of the database.
    """
    return hashlib.sha256(raw_token.encode("utf-8")).hexdigest()


def get_session_secret() -> str:
    """Return the session signing secret.

    Falls back to a random per-process secret when SESSION_SECRET is unset.
    Sessions signed with it do not survive a restart.
    """
    global _ephemeral_secret

    if settings.session_secret:
        return settings.session_secret

    if _ephemeral_secret is None:
        _ephemeral_secret = secrets.token_urlsafe(48)
        logger.warning(
            "SESSION_SECRET is not set; using a random per-process secret. "
            "Issued sessions will be invalid after restart."
        )
    return _ephemeral_secret


def create_session_token(
    user_id: int,
    issued_at: datetime | None = None,
    ttl: timedelta | None = None,
) -> tuple[str, datetime]:
    """Create a signed session token.

    Args:
        user_id: Account the token is issued to
        issued_at: Issue time (defaults to now, UTC)
        ttl: Validity period (defaults to settings.session_ttl_days)

    Returns:
        A tuple of (token, expires_at)
    """
    issued_at = issued_at or datetime.now(timezone.utc)
    ttl = ttl or timedelta(days=settings.session_ttl_days)
    expires_at = issued_at + ttl

    claims = {
        "sub": str(user_id),
        "sid": uuid.uuid4().hex,
        "iat": int(issued_at.timestamp()),
        "exp": int(expires_at.timestamp()),
    }
    token = jwt.encode(claims, get_session_secret(), algorithm=settings.session_algorithm)
    return token, expires_at


def decode_session_token(token: str) -> dict[str, Any]:
    """Verify the signature and expiry of a session token.

    Raises:
        jwt.InvalidTokenError: If the token is malformed, forged or expired
    """
    claims = jwt.decode(
        token,
        get_session_secret(),
        algorithms=[settings.session_algorithm],
        options={"require": ["sub", "exp", "sid"]},
    )
    return claims
