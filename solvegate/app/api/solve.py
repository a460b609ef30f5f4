"""Solve endpoint.

Runs one question through the completion gateway and maps the tagged
outcome onto an HTTP response.
"""

from typing import Optional

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field, field_validator

from solvegate.app.core.config import settings
from solvegate.app.core.logging import get_logger
from solvegate.app.core.utils import seconds_until_next_day
from solvegate.app.middleware.auth import BearerToken
from solvegate.app.middleware.request_id import get_request_id
from solvegate.app.services.completion_gateway import (
    SUBJECTS,
    FailureKind,
    SolveOutcome,
    get_completion_gateway,
)

logger = get_logger(__name__)
router = APIRouter(tags=["solve"])

MAX_QUESTION_LENGTH = 5000
MAX_IMAGE_BYTES = 10 * 1024 * 1024
# base64 inflates by 4/3; allow room for a data URL prefix
MAX_IMAGE_CHARS = (MAX_IMAGE_BYTES * 4) // 3 + 128


class SolveRequest(BaseModel):
    question: str = Field(..., min_length=1, max_length=MAX_QUESTION_LENGTH)
    subject: str
    image: Optional[str] = Field(None, max_length=MAX_IMAGE_CHARS)

    @field_validator("question")
    @classmethod
    def normalize_question(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("question cannot be empty")
        return v

    @field_validator("subject")
    @classmethod
    def validate_subject(cls, v: str) -> str:
        if v not in SUBJECTS:
            raise ValueError(f"subject must be one of: {', '.join(SUBJECTS)}")
        return v

    @field_validator("image")
    @classmethod
    def normalize_image(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and not v.strip():
            return None
        return v


def outcome_to_response(outcome: SolveOutcome) -> JSONResponse:
    """Map a solve outcome to its JSON response and status code."""
    if outcome.ok:
        return JSONResponse(status_code=200, content=outcome.to_response())

    headers = {}
    if outcome.kind == FailureKind.QUOTA_EXCEEDED:
        headers["Retry-After"] = str(seconds_until_next_day(tz_name=settings.quota_timezone))
    elif outcome.kind in (FailureKind.BUDGET_EXCEEDED, FailureKind.STORE_ERROR):
        headers["Retry-After"] = "60"
    return JSONResponse(
        status_code=outcome.status_code,
        content=outcome.to_response(),
        headers=headers or None,
    )


@router.post("/solve")
async def solve(data: SolveRequest, request: Request, token: BearerToken) -> JSONResponse:
    """Solve a homework question for the authenticated caller."""
    outcome = await get_completion_gateway().solve(
        token=token,
        question=data.question,
        subject=data.subject,
        image=data.image,
        request_id=get_request_id(request),
    )
    if not outcome.ok:
        logger.info(
            "Solve rejected",
            extra={"request_id": get_request_id(request), "error": outcome.kind.value},
        )
    return outcome_to_response(outcome)
