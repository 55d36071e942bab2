"""Google Calendar ORM models: OAuth tokens and synced leave events."""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Optional

import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from backend.common.constants import CalendarSyncStatus, CalendarType
from backend.database import Base


class GoogleCalendarToken(Base):
    __tablename__ = "google_calendar_tokens"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        sa.ForeignKey("users.id", ondelete="CASCADE"),
        unique=True,
        nullable=False,
    )
    access_token: Mapped[str] = mapped_column(sa.Text, nullable=False)
    refresh_token: Mapped[str] = mapped_column(sa.Text, nullable=False)
    token_expiry: Mapped[Optional[datetime]] = mapped_column(sa.DateTime(timezone=True))
    scope: Mapped[str] = mapped_column(sa.Text, nullable=False, default="", server_default="")
    is_active: Mapped[bool] = mapped_column(
        sa.Boolean, nullable=False, default=True, server_default=sa.true()
    )
    last_sync_at: Mapped[Optional[datetime]] = mapped_column(sa.DateTime(timezone=True))
    last_sync_error: Mapped[Optional[str]] = mapped_column(sa.Text)
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), server_default=sa.func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), server_default=sa.func.now()
    )


class CalendarEvent(Base):
    """A Google Calendar event created for an approved leave request."""

    __tablename__ = "calendar_events"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    leave_request_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        sa.ForeignKey("leave_requests.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        sa.ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
    )
    google_event_id: Mapped[Optional[str]] = mapped_column(sa.String(255))
    calendar_id: Mapped[str] = mapped_column(
        sa.String(255), nullable=False, default="primary", server_default="primary"
    )
    calendar_type: Mapped[CalendarType] = mapped_column(
        sa.Enum(CalendarType, name="calendar_type"),
        nullable=False,
        default=CalendarType.personal,
    )
    sync_status: Mapped[CalendarSyncStatus] = mapped_column(
        sa.Enum(CalendarSyncStatus, name="calendar_sync_status"),
        nullable=False,
        default=CalendarSyncStatus.synced,
    )
    sync_error: Mapped[Optional[str]] = mapped_column(sa.Text)
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), server_default=sa.func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), server_default=sa.func.now()
    )
