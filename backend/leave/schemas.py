"""Leave Pydantic v2 schemas: request / response validation.

Naming conventions:
  - *Create / *Request  → request bodies (write)
  - *Out                → response bodies (read)
  - *Brief              → compact embedded representations
"""

from __future__ import annotations

import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from backend.common.constants import LeaveStatus, LeaveType


# ═════════════════════════════════════════════════════════════════════
# Embedded / shared
# ═════════════════════════════════════════════════════════════════════


class EmployeeBrief(BaseModel):
    """Minimal employee info embedded in leave responses."""

    id: uuid.UUID
    employee_id: str
    full_name: str
    email: Optional[str] = None
    department_name: Optional[str] = None


# ═════════════════════════════════════════════════════════════════════
# Leave Balance
# ═════════════════════════════════════════════════════════════════════


class LeaveBalanceOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    employee_id: uuid.UUID
    year: int
    leave_type: LeaveType
    total_allocated: Decimal
    used_days: Decimal
    available_days: Decimal
    carry_forward: Decimal


class LeaveBalanceSet(BaseModel):
    """One leave type's allocation in an admin override."""

    leave_type: LeaveType
    total_allocated: Decimal = Field(..., ge=0)
    carry_forward: Optional[Decimal] = Field(None, ge=0)


class LeaveBalancesUpdate(BaseModel):
    """Payload for ``PUT /employees/{id}/leave-balances``."""

    year: Optional[int] = Field(None, ge=1970, le=2100)
    balances: list[LeaveBalanceSet] = Field(..., min_length=1)


# ═════════════════════════════════════════════════════════════════════
# Leave Request: create
# ═════════════════════════════════════════════════════════════════════


class LeaveRequestCreate(BaseModel):
    """Payload for applying a leave request."""

    leave_type: LeaveType
    start_date: date = Field(..., description="Leave start date (inclusive)")
    end_date: date = Field(..., description="Leave end date (inclusive)")
    is_half_day: bool = False
    reason: Optional[str] = Field(None, max_length=1000)

    @model_validator(mode="after")
    def validate_dates(self) -> "LeaveRequestCreate":
        if self.start_date > self.end_date:
            raise ValueError("Start date cannot be after end date.")
        if (self.end_date - self.start_date).days > 365:
            raise ValueError("Leave request cannot span more than 365 days.")
        return self


# ═════════════════════════════════════════════════════════════════════
# Leave Request: response
# ═════════════════════════════════════════════════════════════════════


class LeaveRequestOut(BaseModel):
    """Full leave request response."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    employee_id: uuid.UUID
    leave_type: LeaveType
    start_date: date
    end_date: date
    is_half_day: bool = False
    days_count: Decimal
    reason: Optional[str] = None
    status: LeaveStatus
    approved_by: Optional[uuid.UUID] = None
    approved_at: Optional[datetime] = None
    rejection_reason: Optional[str] = None
    cancelled_at: Optional[datetime] = None
    applied_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    # Enriched by service
    employee: Optional[EmployeeBrief] = None


# ═════════════════════════════════════════════════════════════════════
# Leave Reject
# ═════════════════════════════════════════════════════════════════════


class LeaveRejectRequest(BaseModel):
    """Payload for rejecting a leave request."""

    rejection_reason: str = Field(..., min_length=1, max_length=500)


# ═════════════════════════════════════════════════════════════════════
# Leave Calendar / Stats
# ═════════════════════════════════════════════════════════════════════


class LeaveCalendarOut(BaseModel):
    """Approved leave overlapping a given month."""

    month: int
    year: int
    entries: list[LeaveRequestOut]
    total_entries: int = 0


class CountByLabel(BaseModel):
    label: str
    count: int


class LeaveStatsOut(BaseModel):
    year: int
    total_requests: int
    pending_requests: int
    approved_requests: int
    rejected_requests: int
    cancelled_requests: int
    by_type: list[CountByLabel]
    by_month: list[CountByLabel]
