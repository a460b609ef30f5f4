"""Entitlement updates.

Receipt validation is handled elsewhere; once a purchase is verified the
caller sets the user's tier here.
"""

from sqlalchemy.ext.asyncio import AsyncSession

from solvegate.app.core.logging import get_logger
from solvegate.app.db.crud import set_user_tier
from solvegate.app.db.models import TIERS, User
from solvegate.app.exceptions import InvalidRequestError, NotFoundError

logger = get_logger(__name__)


async def set_entitlement(session: AsyncSession, user_id: int, tier: str) -> User:
    """Set a user's entitlement tier.

    Args:
        session: Database session
        user_id: The user to update
        tier: "free" or "premium"

    Returns:
        The updated user

    Raises:
        InvalidRequestError: If tier is unknown
        NotFoundError: If the user does not exist
    """
    if tier not in TIERS:
        raise InvalidRequestError(f"Unknown tier '{tier}'. Expected one of: {', '.join(TIERS)}")

    user = await set_user_tier(session, user_id, tier)
    if user is None:
        raise NotFoundError(f"User {user_id} not found")

    logger.info("Entitlement updated", extra={"user_id": user_id, "tier": tier})
    return user
