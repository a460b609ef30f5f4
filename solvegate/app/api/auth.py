"""Session endpoints.

Devices authenticate with a stable device id and receive a bearer session
token. Users that attached email credentials can also log in with them.
"""

from datetime import datetime
from typing import Any, Optional

from fastapi import APIRouter, status
from pydantic import BaseModel, Field, field_validator

from solvegate.app.api.schemas import UserResponse
from solvegate.app.db.async_session import SessionDep
from solvegate.app.middleware.auth import BearerToken
from solvegate.app.services.session_manager import IssuedSession, get_session_manager

router = APIRouter(prefix="/auth", tags=["auth"])


class DeviceAuthRequest(BaseModel):
    device_id: str = Field(..., min_length=1, max_length=255)
    device_model: Optional[str] = Field(None, max_length=100)
    os_version: Optional[str] = Field(None, max_length=50)
    app_version: Optional[str] = Field(None, max_length=50)

    @field_validator("device_id")
    @classmethod
    def normalize_device_id(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("device_id cannot be empty")
        return v

    def device_info(self) -> Optional[dict[str, Any]]:
        info = {
            "device_model": self.device_model,
            "os_version": self.os_version,
            "app_version": self.app_version,
        }
        info = {k: v for k, v in info.items() if v}
        return info or None


class LoginRequest(BaseModel):
    email: str = Field(..., min_length=3, max_length=255)
    password: str = Field(..., min_length=1, max_length=128)

    @field_validator("email")
    @classmethod
    def normalize_email(cls, v: str) -> str:
        return v.strip().lower()


class SessionResponse(BaseModel):
    token: str
    expires_at: datetime
    user: UserResponse


class LogoutResponse(BaseModel):
    revoked: bool


def _session_response(issued: IssuedSession) -> SessionResponse:
    return SessionResponse(
        token=issued.token,
        expires_at=issued.expires_at,
        user=UserResponse.from_user(issued.user, get_session_manager().quota),
    )


@router.post("", response_model=SessionResponse)
async def authenticate_device(data: DeviceAuthRequest, session: SessionDep) -> SessionResponse:
    """Issue a session for a device, creating the user on first contact."""
    issued = await get_session_manager().authenticate(
        session, data.device_id, data.device_info()
    )
    return _session_response(issued)


@router.post("/login", response_model=SessionResponse)
async def login(data: LoginRequest, session: SessionDep) -> SessionResponse:
    """Issue a session using email credentials."""
    issued = await get_session_manager().login(session, data.email, data.password)
    return _session_response(issued)


@router.post("/logout", response_model=LogoutResponse, status_code=status.HTTP_200_OK)
async def logout(token: BearerToken, session: SessionDep) -> LogoutResponse:
    """Revoke the caller's session. Revoking an unknown token is not an error."""
    revoked = await get_session_manager().revoke(session, token)
    return LogoutResponse(revoked=revoked)
