"""Core HR Pydantic v2 schemas: request / response validation.

Naming conventions:
  - *Create / *Update  → request bodies (write)
  - *Response / *Detail → response bodies (read)
  - *Summary / *ListItem → compact read representations
"""


import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, model_validator

from backend.common.constants import InviteStatus, LeaveType, UserRole


# ═════════════════════════════════════════════════════════════════════
# Department
# ═════════════════════════════════════════════════════════════════════


class DepartmentCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=150)
    description: Optional[str] = None
    manager_id: Optional[uuid.UUID] = None


class DepartmentUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=150)
    description: Optional[str] = None
    manager_id: Optional[uuid.UUID] = None


class DepartmentResponse(BaseModel):
    """Full department representation."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    name: str
    description: Optional[str] = None
    manager_id: Optional[uuid.UUID] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    # Enriched fields (set by service layer)
    employee_count: int = 0
    manager_name: Optional[str] = None


class DepartmentBrief(BaseModel):
    """Minimal department info embedded in other responses."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    name: str


class DepartmentDistribution(BaseModel):
    name: str
    employee_count: int


class DepartmentStats(BaseModel):
    total_departments: int
    with_managers: int
    without_managers: int
    distribution: list[DepartmentDistribution]


# ═════════════════════════════════════════════════════════════════════
# Employee: write schemas
# ═════════════════════════════════════════════════════════════════════


class EmployeeCreate(BaseModel):
    """Payload for creating a new employee (and its invited user)."""

    employee_id: str = Field(..., min_length=1, max_length=50)
    first_name: str = Field(..., min_length=1, max_length=100)
    last_name: str = Field(..., min_length=1, max_length=100)
    email: EmailStr
    phone: Optional[str] = Field(None, max_length=30)
    position: Optional[str] = Field(None, max_length=150)
    department_id: Optional[uuid.UUID] = None
    manager_id: Optional[uuid.UUID] = None
    role: UserRole = UserRole.employee
    joining_date: date
    probation_end_date: Optional[date] = None
    annual_leave_days: int = Field(21, ge=0, le=365)
    sick_leave_days: int = Field(10, ge=0, le=365)
    casual_leave_days: int = Field(6, ge=0, le=365)
    # Explicit first-year allocation instead of the pro-rata table
    use_manual_balances: bool = False
    manual_balances: Optional[dict[LeaveType, Decimal]] = None

    @model_validator(mode="after")
    def validate_dates(self) -> "EmployeeCreate":
        if self.probation_end_date and self.probation_end_date < self.joining_date:
            raise ValueError("Probation end date cannot be before joining date.")
        if self.manual_balances and any(v < 0 for v in self.manual_balances.values()):
            raise ValueError("Manual balances cannot be negative.")
        return self

    def leave_overrides(self) -> Optional[dict[LeaveType, Decimal]]:
        if self.use_manual_balances and self.manual_balances:
            return dict(self.manual_balances)
        return None


class EmployeeUpdate(BaseModel):
    """Partial update; only fields that are sent are applied."""

    employee_id: Optional[str] = Field(None, min_length=1, max_length=50)
    first_name: Optional[str] = Field(None, min_length=1, max_length=100)
    last_name: Optional[str] = Field(None, min_length=1, max_length=100)
    email: Optional[EmailStr] = None
    phone: Optional[str] = Field(None, max_length=30)
    position: Optional[str] = Field(None, max_length=150)
    department_id: Optional[uuid.UUID] = None
    manager_id: Optional[uuid.UUID] = None
    joining_date: Optional[date] = None
    probation_end_date: Optional[date] = None
    annual_leave_days: Optional[int] = Field(None, ge=0, le=365)
    sick_leave_days: Optional[int] = Field(None, ge=0, le=365)
    casual_leave_days: Optional[int] = Field(None, ge=0, le=365)


# ═════════════════════════════════════════════════════════════════════
# Employee: read schemas
# ═════════════════════════════════════════════════════════════════════


class EmployeeSummary(BaseModel):
    """Compact employee reference (manager, direct reports)."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    employee_id: str
    first_name: str
    last_name: str
    position: Optional[str] = None


class EmployeeListItem(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    employee_id: str
    first_name: str
    last_name: str
    email: Optional[str] = None
    phone: Optional[str] = None
    position: Optional[str] = None
    department_id: Optional[uuid.UUID] = None
    manager_id: Optional[uuid.UUID] = None
    joining_date: date
    role: Optional[UserRole] = None
    is_active: bool = False
    invite_status: Optional[InviteStatus] = None
    department: Optional[DepartmentBrief] = None


class EmployeeDetail(EmployeeListItem):
    probation_end_date: Optional[date] = None
    annual_leave_days: int
    sick_leave_days: int
    casual_leave_days: int
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    manager: Optional[EmployeeSummary] = None
    direct_reports_count: int = 0


class EmployeeStats(BaseModel):
    total_employees: int
    active_employees: int
    invited_employees: int
    managers: int
    joined_this_month: int
    on_probation: int
