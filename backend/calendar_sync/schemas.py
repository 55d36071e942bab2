"""Google Calendar sync response schemas."""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict

from backend.common.constants import CalendarSyncStatus, CalendarType


class CalendarAuthUrlOut(BaseModel):
    auth_url: str


class CalendarStatusOut(BaseModel):
    connected: bool
    last_sync_at: Optional[datetime] = None
    last_sync_error: Optional[str] = None


class CalendarEventOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    leave_request_id: uuid.UUID
    google_event_id: Optional[str] = None
    calendar_id: str
    calendar_type: CalendarType
    sync_status: CalendarSyncStatus
    sync_error: Optional[str] = None
    created_at: Optional[datetime] = None
