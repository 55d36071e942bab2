"""Google OAuth and Calendar REST integration (httpx).

Calendar failures never propagate to leave workflows: every call that talks
to Google records the outcome on the token/event rows and returns ``None``
(or ``False``) on failure.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timedelta
from typing import Any, Optional, Sequence
from urllib.parse import urlencode

import httpx
from jose import JWTError, jwt
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from backend.calendar_sync.models import CalendarEvent, GoogleCalendarToken
from backend.common.constants import (
    LEAVE_TYPE_LABELS,
    CalendarSyncStatus,
    CalendarType,
    LeaveStatus,
)
from backend.common.dates import as_utc, utcnow
from backend.common.exceptions import BadRequestException, ForbiddenException, NotFoundException
from backend.config import settings
from backend.core_hr.models import Employee
from backend.leave.models import LeaveRequest

logger = logging.getLogger(__name__)

GOOGLE_AUTH_URL = "https://accounts.google.com/o/oauth2/v2/auth"
GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"
GOOGLE_REVOKE_URL = "https://oauth2.googleapis.com/revoke"
CALENDAR_API_URL = "https://www.googleapis.com/calendar/v3"
CALENDAR_SCOPES = [
    "https://www.googleapis.com/auth/calendar.events",
    "https://www.googleapis.com/auth/calendar",
]
PERSONAL_CALENDAR_ID = "primary"
_STATE_TTL_MINUTES = 15
_EXPIRY_SKEW = timedelta(seconds=60)


def _http_client() -> httpx.AsyncClient:
    return httpx.AsyncClient(timeout=15)


# ═════════════════════════════════════════════════════════════════════
# OAuth
# ═════════════════════════════════════════════════════════════════════


class GoogleOAuthService:
    """Per-user OAuth tokens for the personal Google Calendar."""

    @staticmethod
    def _encode_state(user_id: uuid.UUID) -> str:
        payload = {
            "sub": str(user_id),
            "type": "calendar_state",
            "exp": utcnow() + timedelta(minutes=_STATE_TTL_MINUTES),
        }
        return jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)

    @staticmethod
    def _decode_state(state: str) -> uuid.UUID:
        try:
            payload = jwt.decode(state, settings.JWT_SECRET, algorithms=[settings.JWT_ALGORITHM])
            if payload.get("type") != "calendar_state":
                raise BadRequestException(detail="Invalid OAuth state.")
            return uuid.UUID(payload["sub"])
        except (JWTError, KeyError, ValueError):
            raise BadRequestException(detail="Invalid OAuth state.")

    @staticmethod
    def get_auth_url(user_id: uuid.UUID) -> str:
        if not settings.GOOGLE_CLIENT_ID:
            raise BadRequestException(detail="Google Calendar integration is not configured.")
        params = {
            "client_id": settings.GOOGLE_CLIENT_ID,
            "redirect_uri": settings.GOOGLE_REDIRECT_URI,
            "response_type": "code",
            "scope": " ".join(CALENDAR_SCOPES),
            "access_type": "offline",
            "prompt": "consent",
            "state": GoogleOAuthService._encode_state(user_id),
        }
        return f"{GOOGLE_AUTH_URL}?{urlencode(params)}"

    @staticmethod
    async def get_token(db: AsyncSession, user_id: uuid.UUID) -> Optional[GoogleCalendarToken]:
        result = await db.execute(
            select(GoogleCalendarToken).where(GoogleCalendarToken.user_id == user_id)
        )
        return result.scalars().first()

    @staticmethod
    async def handle_callback(db: AsyncSession, code: str, state: str) -> GoogleCalendarToken:
        """Exchange the authorization code and upsert the user's token row."""
        user_id = GoogleOAuthService._decode_state(state)

        async with _http_client() as client:
            resp = await client.post(
                GOOGLE_TOKEN_URL,
                data={
                    "client_id": settings.GOOGLE_CLIENT_ID,
                    "client_secret": settings.GOOGLE_CLIENT_SECRET,
                    "code": code,
                    "redirect_uri": settings.GOOGLE_REDIRECT_URI,
                    "grant_type": "authorization_code",
                },
            )
        data = resp.json()
        if resp.status_code != 200 or "access_token" not in data:
            raise BadRequestException(
                detail=f"Google token exchange failed: {data.get('error_description', 'unknown error')}",
            )
        if not data.get("refresh_token"):
            raise BadRequestException(detail="Google did not return a refresh token.")

        expiry = utcnow() + timedelta(seconds=int(data.get("expires_in", 3600)))
        token = await GoogleOAuthService.get_token(db, user_id)
        if token is None:
            token = GoogleCalendarToken(user_id=user_id)
            db.add(token)
        token.access_token = data["access_token"]
        token.refresh_token = data["refresh_token"]
        token.token_expiry = expiry
        token.scope = data.get("scope", "")
        token.is_active = True
        token.last_sync_error = None
        token.updated_at = utcnow()
        await db.flush()
        logger.info("Connected Google Calendar for user %s", user_id)
        return token

    @staticmethod
    async def get_valid_access_token(db: AsyncSession, user_id: uuid.UUID) -> Optional[str]:
        """Return a usable access token, refreshing it when expired; None when unavailable."""
        token = await GoogleOAuthService.get_token(db, user_id)
        if token is None or not token.is_active:
            return None

        expiry = as_utc(token.token_expiry)
        if expiry is not None and expiry - _EXPIRY_SKEW > utcnow():
            return token.access_token

        try:
            async with _http_client() as client:
                resp = await client.post(
                    GOOGLE_TOKEN_URL,
                    data={
                        "client_id": settings.GOOGLE_CLIENT_ID,
                        "client_secret": settings.GOOGLE_CLIENT_SECRET,
                        "refresh_token": token.refresh_token,
                        "grant_type": "refresh_token",
                    },
                )
            resp.raise_for_status()
            data = resp.json()
        except (httpx.HTTPError, ValueError):
            logger.warning("Google token refresh failed for user %s", user_id, exc_info=True)
            token.last_sync_error = "Token refresh failed. Please reconnect your Google Calendar."
            await db.flush()
            return None

        token.access_token = data["access_token"]
        token.token_expiry = utcnow() + timedelta(seconds=int(data.get("expires_in", 3600)))
        token.updated_at = utcnow()
        await db.flush()
        return token.access_token

    @staticmethod
    async def disconnect(db: AsyncSession, user_id: uuid.UUID) -> bool:
        token = await GoogleOAuthService.get_token(db, user_id)
        if token is None:
            return False
        try:
            async with _http_client() as client:
                await client.post(GOOGLE_REVOKE_URL, params={"token": token.access_token})
        except httpx.HTTPError:
            logger.warning("Google token revocation failed for user %s", user_id, exc_info=True)
        await db.delete(token)
        await db.flush()
        return True

    @staticmethod
    async def get_status(db: AsyncSession, user_id: uuid.UUID) -> dict[str, Any]:
        token = await GoogleOAuthService.get_token(db, user_id)
        if token is None or not token.is_active:
            return {"connected": False, "last_sync_at": None, "last_sync_error": None}
        return {
            "connected": True,
            "last_sync_at": token.last_sync_at,
            "last_sync_error": token.last_sync_error,
        }

    @staticmethod
    async def update_sync_status(
        db: AsyncSession,
        user_id: uuid.UUID,
        error: Optional[str] = None,
    ) -> None:
        token = await GoogleOAuthService.get_token(db, user_id)
        if token is not None:
            token.last_sync_at = utcnow()
            token.last_sync_error = error
            await db.flush()


# ═════════════════════════════════════════════════════════════════════
# Calendar events
# ═════════════════════════════════════════════════════════════════════


class CalendarSyncService:
    """Create and remove leave events on the employee's primary calendar."""

    @staticmethod
    def build_event(leave_request: LeaveRequest) -> dict[str, Any]:
        label = LEAVE_TYPE_LABELS[leave_request.leave_type]
        description = f"Leave Type: {label}\nDuration: {leave_request.days_count} day(s)\n"
        if leave_request.reason:
            description += f"Reason: {leave_request.reason}\n"
        description += f"\nStatus: {leave_request.status.value}"

        event: dict[str, Any] = {
            "summary": f"On Leave - {label}",
            "description": description,
            "colorId": "11",
            "transparency": "transparent",
        }
        if leave_request.is_half_day:
            start = datetime.combine(leave_request.start_date, datetime.min.time())
            event["start"] = {"dateTime": (start + timedelta(hours=9)).isoformat(), "timeZone": "UTC"}
            event["end"] = {"dateTime": (start + timedelta(hours=13)).isoformat(), "timeZone": "UTC"}
        else:
            # All-day events use an exclusive end date
            event["start"] = {"date": leave_request.start_date.isoformat()}
            event["end"] = {"date": (leave_request.end_date + timedelta(days=1)).isoformat()}
        return event

    @staticmethod
    async def create_leave_event(
        db: AsyncSession,
        leave_request: LeaveRequest,
        user_id: uuid.UUID,
    ) -> Optional[CalendarEvent]:
        """Insert the event for an approved request. None when not connected or on failure."""
        access_token = await GoogleOAuthService.get_valid_access_token(db, user_id)
        if access_token is None:
            return None

        record = CalendarEvent(
            leave_request_id=leave_request.id,
            user_id=user_id,
            calendar_id=PERSONAL_CALENDAR_ID,
            calendar_type=CalendarType.personal,
        )
        try:
            async with _http_client() as client:
                resp = await client.post(
                    f"{CALENDAR_API_URL}/calendars/{PERSONAL_CALENDAR_ID}/events",
                    headers={"Authorization": f"Bearer {access_token}"},
                    json=CalendarSyncService.build_event(leave_request),
                )
            resp.raise_for_status()
            record.google_event_id = resp.json()["id"]
            record.sync_status = CalendarSyncStatus.synced
        except (httpx.HTTPError, KeyError, ValueError) as exc:
            logger.warning(
                "Calendar event creation failed for leave request %s", leave_request.id,
                exc_info=True,
            )
            record.sync_status = CalendarSyncStatus.failed
            record.sync_error = str(exc)[:500]

        db.add(record)
        await GoogleOAuthService.update_sync_status(db, user_id, record.sync_error)
        await db.flush()
        return record if record.sync_status == CalendarSyncStatus.synced else None

    @staticmethod
    async def delete_leave_event(db: AsyncSession, leave_request_id: uuid.UUID) -> int:
        """Remove synced events for a request. Returns how many were deleted."""
        result = await db.execute(
            select(CalendarEvent).where(
                CalendarEvent.leave_request_id == leave_request_id,
                CalendarEvent.sync_status == CalendarSyncStatus.synced,
            )
        )
        deleted = 0
        for record in result.scalars().all():
            access_token = await GoogleOAuthService.get_valid_access_token(db, record.user_id)
            if access_token is None or not record.google_event_id:
                continue
            try:
                async with _http_client() as client:
                    resp = await client.delete(
                        f"{CALENDAR_API_URL}/calendars/{record.calendar_id}/events/{record.google_event_id}",
                        headers={"Authorization": f"Bearer {access_token}"},
                    )
                # Already gone on Google's side
                if resp.status_code not in (404, 410):
                    resp.raise_for_status()
            except httpx.HTTPError as exc:
                logger.warning("Calendar event deletion failed for %s", record.google_event_id, exc_info=True)
                record.sync_error = str(exc)[:500]
                continue
            record.sync_status = CalendarSyncStatus.deleted
            record.updated_at = utcnow()
            deleted += 1

        await db.flush()
        return deleted

    @staticmethod
    async def has_synced_event(db: AsyncSession, leave_request_id: uuid.UUID) -> bool:
        result = await db.execute(
            select(CalendarEvent.id).where(
                CalendarEvent.leave_request_id == leave_request_id,
                CalendarEvent.sync_status == CalendarSyncStatus.synced,
            )
        )
        return result.first() is not None

    @staticmethod
    async def list_events(db: AsyncSession, user_id: uuid.UUID) -> Sequence[CalendarEvent]:
        result = await db.execute(
            select(CalendarEvent)
            .where(CalendarEvent.user_id == user_id)
            .order_by(CalendarEvent.created_at.desc())
        )
        return result.scalars().all()

    @staticmethod
    async def sync_leave_request(
        db: AsyncSession,
        request_id: uuid.UUID,
        user_id: uuid.UUID,
    ) -> Optional[CalendarEvent]:
        """Manually (re)create the event for one of the user's approved requests."""
        result = await db.execute(
            select(LeaveRequest, Employee.user_id)
            .join(Employee, Employee.id == LeaveRequest.employee_id)
            .where(LeaveRequest.id == request_id)
        )
        row = result.first()
        if row is None:
            raise NotFoundException("LeaveRequest", str(request_id))
        leave_request, owner_user_id = row
        if owner_user_id != user_id:
            raise ForbiddenException(detail="You can only sync your own leave requests.")
        if leave_request.status != LeaveStatus.approved:
            raise BadRequestException(detail="Only approved leave requests can be synced.")
        if not await GoogleOAuthService.get_token(db, user_id):
            raise BadRequestException(detail="Google Calendar is not connected.")

        existing = await db.execute(
            select(CalendarEvent).where(
                CalendarEvent.leave_request_id == request_id,
                CalendarEvent.sync_status == CalendarSyncStatus.synced,
            )
        )
        event = existing.scalars().first()
        if event is not None:
            return event
        return await CalendarSyncService.create_leave_event(db, leave_request, user_id)
