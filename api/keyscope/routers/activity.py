"""
Usage tracking API.

POST /activity/sessions            - Open a visitor session
POST /activity/sessions/{id}/end   - Close a visitor session
POST /activity/track               - Record one activity event
"""
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from keyscope.database import get_db
from keyscope.dependencies import check_rate_limit, get_token_claims
from keyscope.schemas import ActivityTrackRequest
from keyscope.services import usage

router = APIRouter(prefix="/activity", tags=["activity"])


# ─── Response Schemas ───
class SessionResponse(BaseModel):
    id: UUID
    is_active: bool


class TrackResponse(BaseModel):
    id: UUID
    activity_type: str


class SessionStartRequest(BaseModel):
    email: Optional[str] = None
    session_key: Optional[str] = None


@router.post("/sessions", response_model=SessionResponse, status_code=201)
async def start_session(
    request: Request,
    body: SessionStartRequest,
    claims: Optional[dict] = Depends(check_rate_limit),
    db: AsyncSession = Depends(get_db),
):
    visit = await db.run_sync(
        usage.start_session,
        claims.get("sub") if claims else None,
        body.email or (claims.get("email") if claims else None),
        body.session_key,
        request.headers.get("user-agent"),
        request.client.host if request.client else None,
    )
    return SessionResponse(id=visit.id, is_active=visit.is_active)


@router.post("/sessions/{session_id}/end", response_model=SessionResponse)
async def end_session(
    session_id: UUID,
    db: AsyncSession = Depends(get_db),
):
    visit = await db.run_sync(usage.end_session, session_id)
    if not visit:
        raise HTTPException(404, "Session not found")
    return SessionResponse(id=visit.id, is_active=visit.is_active)


@router.post("/track", response_model=TrackResponse, status_code=201)
async def track(
    body: ActivityTrackRequest,
    claims: Optional[dict] = Depends(get_token_claims),
    db: AsyncSession = Depends(get_db),
):
    activity = await db.run_sync(
        usage.track_activity,
        body.activity_type,
        body.activity_data,
        claims.get("sub") if claims else None,
        body.session_id,
    )
    return TrackResponse(id=activity.id, activity_type=activity.activity_type)
