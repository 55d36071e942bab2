"""Enums and constants for the leave-management service."""

from __future__ import annotations

import enum


# ── Auth / Roles ────────────────────────────────────────────────────

class UserRole(str, enum.Enum):
    employee = "employee"
    manager = "manager"
    admin = "admin"


class InviteStatus(str, enum.Enum):
    invited = "invited"
    active = "active"
    invite_expired = "invite_expired"


# ── Leave ───────────────────────────────────────────────────────────

class LeaveStatus(str, enum.Enum):
    pending = "pending"
    approved = "approved"
    rejected = "rejected"
    cancelled = "cancelled"


class LeaveType(str, enum.Enum):
    sick = "sick"
    casual = "casual"
    earned = "earned"
    compensation = "compensation"


# Leave types that carry a balance row per employee and year
TRACKED_LEAVE_TYPES: tuple[LeaveType, ...] = (
    LeaveType.sick,
    LeaveType.casual,
    LeaveType.earned,
)

LEAVE_TYPE_LABELS: dict[LeaveType, str] = {
    LeaveType.sick: "Sick Leave",
    LeaveType.casual: "Casual Leave",
    LeaveType.earned: "Earned Leave",
    LeaveType.compensation: "Compensation Leave",
}


# ── Calendar sync ───────────────────────────────────────────────────

class CalendarType(str, enum.Enum):
    personal = "personal"
    shared = "shared"


class CalendarSyncStatus(str, enum.Enum):
    synced = "synced"
    failed = "failed"
    deleted = "deleted"


# ── System settings keys ────────────────────────────────────────────

SETTING_AUTO_APPROVE = "auto_approve_pending_leaves"
SETTING_COMPANY_LOGO = "company_logo_url"
SETTING_COMPANY_FAVICON = "company_favicon_url"

# ── Misc constants ──────────────────────────────────────────────────

DATE_FORMAT = "%Y-%m-%d"
MAX_PAGE_SIZE = 100
DEFAULT_PAGE_SIZE = 20
PASSWORD_SPECIAL_CHARS = '!@#$%^&*(),.?":{}|<>'
