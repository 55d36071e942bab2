"""Google Calendar connection and leave-event sync endpoints."""


import logging
import uuid
from urllib.parse import urlencode

import httpx
from fastapi import APIRouter, Depends, Query
from fastapi.responses import RedirectResponse
from sqlalchemy.ext.asyncio import AsyncSession

from backend.auth.dependencies import get_current_user
from backend.auth.models import User
from backend.calendar_sync.schemas import CalendarAuthUrlOut, CalendarEventOut, CalendarStatusOut
from backend.calendar_sync.service import CalendarSyncService, GoogleOAuthService
from backend.common.exceptions import AppException, BadRequestException
from backend.config import settings
from backend.database import get_db

logger = logging.getLogger(__name__)

router = APIRouter(prefix="", tags=["calendar"])


def _frontend_redirect(**params: str) -> RedirectResponse:
    return RedirectResponse(
        url=f"{settings.FRONTEND_URL}/settings/calendar?{urlencode(params)}",
        status_code=302,
    )


# ── OAuth ───────────────────────────────────────────────────────────

@router.get("/auth/url")
async def get_auth_url(current_user: User = Depends(get_current_user)):
    url = GoogleOAuthService.get_auth_url(current_user.id)
    return {"data": CalendarAuthUrlOut(auth_url=url).model_dump()}


@router.get("/auth/callback")
async def oauth_callback(
    code: str = Query(default=""),
    state: str = Query(default=""),
    error: str = Query(default=""),
    db: AsyncSession = Depends(get_db),
):
    """Google redirects here; the browser is sent back to the frontend."""
    if error:
        return _frontend_redirect(calendar="error", reason=error)
    if not code or not state:
        return _frontend_redirect(calendar="error", reason="missing_code")
    try:
        await GoogleOAuthService.handle_callback(db, code, state)
        await db.commit()
    except (AppException, httpx.HTTPError) as exc:
        await db.rollback()
        logger.warning("Calendar OAuth callback failed: %s", exc)
        return _frontend_redirect(calendar="error", reason="exchange_failed")
    return _frontend_redirect(calendar="connected")


# ── Connection ──────────────────────────────────────────────────────

@router.get("/status")
async def get_status(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    status_ = await GoogleOAuthService.get_status(db, current_user.id)
    return {"data": CalendarStatusOut(**status_).model_dump(mode="json")}


@router.delete("/disconnect")
async def disconnect(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    if not await GoogleOAuthService.disconnect(db, current_user.id):
        raise BadRequestException(detail="Google Calendar is not connected.")
    return {"data": {"connected": False}, "message": "Google Calendar disconnected."}


# ── Events ──────────────────────────────────────────────────────────

@router.get("/events")
async def list_events(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    events = await CalendarSyncService.list_events(db, current_user.id)
    return {"data": [CalendarEventOut.model_validate(e).model_dump(mode="json") for e in events]}


@router.post("/sync/{request_id}")
async def sync_leave_request(
    request_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    event = await CalendarSyncService.sync_leave_request(db, request_id, current_user.id)
    if event is None:
        return {"data": None, "message": "Calendar sync failed; see status for details."}
    return {
        "data": CalendarEventOut.model_validate(event).model_dump(mode="json"),
        "message": "Leave request synced to Google Calendar.",
    }
