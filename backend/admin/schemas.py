"""Admin Pydantic schemas: bulk import, reports and maintenance results."""

from __future__ import annotations

import uuid
from decimal import Decimal
from typing import Any, Optional

from pydantic import BaseModel, Field

from backend.core_hr.schemas import DepartmentStats, EmployeeStats
from backend.leave.schemas import LeaveBalanceOut, LeaveStatsOut


# ═══════════════════════════════════════════════════════════════════
# BULK IMPORT
# ═══════════════════════════════════════════════════════════════════

class ImportRowError(BaseModel):
    row: int
    data: dict[str, Any]
    error: str


class BulkImportResult(BaseModel):
    total: int = 0
    successful: int = 0
    failed: int = 0
    errors: list[ImportRowError] = Field(default_factory=list)


# ═══════════════════════════════════════════════════════════════════
# DASHBOARD / REPORTS
# ═══════════════════════════════════════════════════════════════════

class DashboardStats(BaseModel):
    employees: EmployeeStats
    departments: DepartmentStats
    leaves: LeaveStatsOut


class LeaveSummary(BaseModel):
    total_days_taken: Decimal
    average_days_per_employee: Decimal
    most_requested_leave_type: str


class LeaveSummaryReport(BaseModel):
    year: int
    stats: LeaveStatsOut
    summary: LeaveSummary


class ReportEmployee(BaseModel):
    id: uuid.UUID
    name: str
    employee_id: str
    department: Optional[str] = None


class EmployeeBalanceRow(BaseModel):
    employee: ReportEmployee
    balances: list[LeaveBalanceOut]


class EmployeeBalanceReport(BaseModel):
    year: int
    employees: list[EmployeeBalanceRow]


# ═══════════════════════════════════════════════════════════════════
# MAINTENANCE
# ═══════════════════════════════════════════════════════════════════

class YearEndRequest(BaseModel):
    year: Optional[int] = Field(None, ge=1970, le=2100)


class AutoApproveRequest(BaseModel):
    # Run even when the setting is off
    force: bool = False
