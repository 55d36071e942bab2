"""Admin service: dashboard counters and leave reports."""

from __future__ import annotations

import csv
import io
import uuid
from collections import defaultdict
from datetime import date
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from backend.admin.schemas import (
    DashboardStats,
    EmployeeBalanceReport,
    EmployeeBalanceRow,
    LeaveSummary,
    LeaveSummaryReport,
    ReportEmployee,
)
from backend.common.constants import LeaveStatus
from backend.core_hr.models import Employee
from backend.core_hr.service import DepartmentService, EmployeeService
from backend.leave.models import LeaveBalance, LeaveRequest
from backend.leave.schemas import LeaveBalanceOut
from backend.leave.service import LeaveService

BALANCE_CSV_COLUMNS = [
    "employee_id",
    "name",
    "department",
    "leave_type",
    "total_allocated",
    "carry_forward",
    "used_days",
    "available_days",
]


class AdminService:
    """Static service class for admin dashboards and reports."""

    # ── Dashboard ───────────────────────────────────────────────────

    @staticmethod
    async def get_dashboard_stats(db: AsyncSession) -> DashboardStats:
        return DashboardStats(
            employees=await EmployeeService.get_employee_stats(db),
            departments=await DepartmentService.get_department_stats(db),
            leaves=await LeaveService.get_leave_stats(db),
        )

    # ── Leave summary ───────────────────────────────────────────────

    @staticmethod
    async def get_leave_summary(
        db: AsyncSession,
        year: Optional[int] = None,
        department_id: Optional[uuid.UUID] = None,
    ) -> LeaveSummaryReport:
        year = year or date.today().year
        stats = await LeaveService.get_leave_stats(db, year)

        taken_q = (
            select(func.coalesce(func.sum(LeaveRequest.days_count), 0))
            .join(Employee, Employee.id == LeaveRequest.employee_id)
            .where(
                LeaveRequest.status == LeaveStatus.approved,
                LeaveRequest.start_date.between(date(year, 1, 1), date(year, 12, 31)),
            )
        )
        headcount_q = select(func.count(Employee.id))
        if department_id is not None:
            taken_q = taken_q.where(Employee.department_id == department_id)
            headcount_q = headcount_q.where(Employee.department_id == department_id)

        taken = Decimal(str((await db.execute(taken_q)).scalar() or 0))
        headcount = (await db.execute(headcount_q)).scalar() or 0
        average = (taken / headcount).quantize(Decimal("0.01"), ROUND_HALF_UP) if headcount else Decimal("0")
        most_requested = max(stats.by_type, key=lambda c: c.count).label if stats.by_type else "N/A"

        return LeaveSummaryReport(
            year=year,
            stats=stats,
            summary=LeaveSummary(
                total_days_taken=taken,
                average_days_per_employee=average,
                most_requested_leave_type=most_requested,
            ),
        )

    # ── Employee balances ───────────────────────────────────────────

    @staticmethod
    async def get_employee_balance_report(
        db: AsyncSession,
        year: Optional[int] = None,
        department_id: Optional[uuid.UUID] = None,
    ) -> EmployeeBalanceReport:
        year = year or date.today().year
        query = (
            select(Employee)
            .options(selectinload(Employee.department))
            .order_by(Employee.employee_id)
        )
        if department_id is not None:
            query = query.where(Employee.department_id == department_id)
        employees = (await db.execute(query)).scalars().all()

        balances_by_employee: dict[uuid.UUID, list[LeaveBalance]] = defaultdict(list)
        if employees:
            balances = await db.execute(
                select(LeaveBalance)
                .where(
                    LeaveBalance.year == year,
                    LeaveBalance.employee_id.in_([e.id for e in employees]),
                )
                .order_by(LeaveBalance.leave_type)
            )
            for balance in balances.scalars().all():
                balances_by_employee[balance.employee_id].append(balance)

        return EmployeeBalanceReport(
            year=year,
            employees=[
                EmployeeBalanceRow(
                    employee=ReportEmployee(
                        id=e.id,
                        name=e.full_name,
                        employee_id=e.employee_id,
                        department=e.department.name if e.department else None,
                    ),
                    balances=[LeaveBalanceOut.model_validate(b) for b in balances_by_employee[e.id]],
                )
                for e in employees
            ],
        )

    @staticmethod
    def balance_report_to_csv(report: EmployeeBalanceReport) -> str:
        buf = io.StringIO()
        writer = csv.writer(buf, lineterminator="\n")
        writer.writerow(BALANCE_CSV_COLUMNS)
        for row in report.employees:
            for balance in row.balances:
                writer.writerow([
                    row.employee.employee_id,
                    row.employee.name,
                    row.employee.department or "",
                    balance.leave_type.value,
                    balance.total_allocated,
                    balance.carry_forward,
                    balance.used_days,
                    balance.available_days,
                ])
        return buf.getvalue()
