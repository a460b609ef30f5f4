"""Solve history endpoint."""

import math
from datetime import datetime

from fastapi import APIRouter, Query
from pydantic import BaseModel

from solvegate.app.db.crud import count_request_records, list_request_records
from solvegate.app.db.async_session import SessionDep
from solvegate.app.middleware.auth import CurrentUser

router = APIRouter(tags=["history"])

MAX_PAGE_SIZE = 100


class HistoryItem(BaseModel):
    id: int
    question: str
    subject: str
    solution: str
    tokens_used: int
    created_at: datetime


class Pagination(BaseModel):
    page: int
    limit: int
    total: int
    total_pages: int


class HistoryResponse(BaseModel):
    items: list[HistoryItem]
    pagination: Pagination


@router.get("/history", response_model=HistoryResponse)
async def get_history(
    user: CurrentUser,
    session: SessionDep,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=MAX_PAGE_SIZE),
) -> HistoryResponse:
    """Return the caller's completed solves, newest first."""
    records = await list_request_records(
        session, user.id, offset=(page - 1) * limit, limit=limit
    )
    total = await count_request_records(session, user.id)
    return HistoryResponse(
        items=[
            HistoryItem(
                id=r.id,
                question=r.question,
                subject=r.subject,
                solution=r.solution,
                tokens_used=r.tokens_used,
                created_at=r.created_at,
            )
            for r in records
        ],
        pagination=Pagination(
            page=page,
            limit=limit,
            total=total,
            total_pages=math.ceil(total / limit),
        ),
    )
