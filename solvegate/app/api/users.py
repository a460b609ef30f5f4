"""Endpoints for the authenticated caller's own account."""

from typing import Optional

from fastapi import APIRouter
from pydantic import BaseModel, Field, field_validator

from solvegate.app.api.schemas import UserResponse
from solvegate.app.core.logging import get_logger
from solvegate.app.db.crud import set_user_age
from solvegate.app.db.async_session import SessionDep
from solvegate.app.exceptions import InvalidRequestError
from solvegate.app.middleware.auth import CurrentUser
from solvegate.app.services.session_manager import get_session_manager

logger = get_logger(__name__)
router = APIRouter(prefix="/me", tags=["users"])

PARENTAL_CONSENT_AGE = 13


class CredentialsRequest(BaseModel):
    email: str = Field(..., min_length=3, max_length=255)
    password: str = Field(..., min_length=8, max_length=128)

    @field_validator("email")
    @classmethod
    def normalize_email(cls, v: str) -> str:
        v = v.strip().lower()
        # Lightweight validation without adding extra dependencies.
        if "@" not in v or v.startswith("@") or v.endswith("@"):
            raise ValueError("invalid email")
        return v


class AgeVerificationRequest(BaseModel):
    age: int = Field(..., ge=1, le=120)
    parental_consent_token: Optional[str] = Field(None, max_length=512)


@router.get("", response_model=UserResponse)
async def get_me(user: CurrentUser) -> UserResponse:
    """Return the caller's tier and quota counters."""
    return UserResponse.from_user(user, get_session_manager().quota)


@router.post("/credentials", response_model=UserResponse)
async def set_credentials(
    data: CredentialsRequest,
    user: CurrentUser,
    session: SessionDep,
) -> UserResponse:
    """Attach email and password credentials to the caller's account."""
    manager = get_session_manager()
    user = await manager.set_credentials(session, user, data.email, data.password)
    return UserResponse.from_user(user, manager.quota)


@router.post("/age-verification", response_model=UserResponse)
async def verify_age(
    data: AgeVerificationRequest,
    user: CurrentUser,
    session: SessionDep,
) -> UserResponse:
    """Record the caller's age.

    Users under 13 must supply a parental consent token.
    """
    if data.age < PARENTAL_CONSENT_AGE and not data.parental_consent_token:
        raise InvalidRequestError("Parental consent required for users under 13")

    consent = data.age >= PARENTAL_CONSENT_AGE or bool(data.parental_consent_token)
    user = await set_user_age(session, user, data.age, consent)
    logger.info("Age recorded", extra={"user_id": user.id, "parental_consent": consent})
    return UserResponse.from_user(user, get_session_manager().quota)
