"""Leave router: apply, review, cancel, balances, calendar and stats.

All endpoints require authentication. Review endpoints are limited to
managers (their direct reports) and admins.
"""


import uuid
from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from backend.auth.dependencies import get_current_employee, get_current_user, require_role
from backend.auth.models import User
from backend.common.constants import LeaveStatus, LeaveType, UserRole
from backend.common.exceptions import ForbiddenException
from backend.common.pagination import PaginationParams
from backend.core_hr.models import Employee
from backend.database import get_db
from backend.leave.calculation import LeaveCalculationService
from backend.leave.schemas import (
    LeaveBalanceOut,
    LeaveCalendarOut,
    LeaveRejectRequest,
    LeaveRequestCreate,
    LeaveRequestOut,
)
from backend.leave.service import LeaveService, serialize_request

router = APIRouter(prefix="", tags=["leave"])


def _paginated(result) -> dict:
    return {
        "data": [serialize_request(r) for r in result.data],
        "meta": result.meta.model_dump(),
    }


# ── POST /requests ──────────────────────────────────────────────────

@router.post("/requests", status_code=201)
async def apply_leave(
    body: LeaveRequestCreate,
    employee: Employee = Depends(get_current_employee),
    db: AsyncSession = Depends(get_db),
):
    """Apply for leave. Validates dates, overlap and balance."""
    leave_request = await LeaveService.create_leave_request(db, employee, body)
    return {"data": serialize_request(leave_request), "message": "Leave request submitted."}


# ── GET /requests/my ────────────────────────────────────────────────

@router.get("/requests/my")
async def my_requests(
    status: Optional[LeaveStatus] = Query(None),
    leave_type: Optional[LeaveType] = Query(None),
    year: Optional[int] = Query(None),
    pagination: PaginationParams = Depends(),
    employee: Employee = Depends(get_current_employee),
    db: AsyncSession = Depends(get_db),
):
    result = await LeaveService.list_requests(
        db, pagination, employee_id=employee.id, status=status, leave_type=leave_type, year=year,
    )
    return _paginated(result)


# ── GET /requests/team ──────────────────────────────────────────────

@router.get("/requests/team")
async def team_requests(
    status: Optional[LeaveStatus] = Query(None),
    leave_type: Optional[LeaveType] = Query(None),
    employee_id: Optional[uuid.UUID] = Query(None),
    pagination: PaginationParams = Depends(),
    user: User = Depends(require_role(UserRole.manager)),
    db: AsyncSession = Depends(get_db),
):
    """Requests of the caller's direct reports."""
    if user.employee is None:
        raise ForbiddenException(detail="No employee profile is linked to this account.")
    result = await LeaveService.list_requests(
        db,
        pagination,
        manager_id=user.employee.id,
        employee_id=employee_id,
        status=status,
        leave_type=leave_type,
    )
    return _paginated(result)


# ── GET /requests/{id} ──────────────────────────────────────────────

@router.get("/requests/{request_id}")
async def get_request(
    request_id: uuid.UUID,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    leave_request = await LeaveService.get_request_for_user(db, request_id, user)
    return {"data": serialize_request(leave_request)}


# ── PUT /requests/{id}/approve ──────────────────────────────────────

@router.put("/requests/{request_id}/approve")
async def approve_leave(
    request_id: uuid.UUID,
    user: User = Depends(require_role(UserRole.manager)),
    db: AsyncSession = Depends(get_db),
):
    """Approve a pending request and debit the balance."""
    leave_request = await LeaveService.approve_leave_request(db, request_id, user)
    return {"data": serialize_request(leave_request), "message": "Leave request approved."}


# ── PUT /requests/{id}/reject ───────────────────────────────────────

@router.put("/requests/{request_id}/reject")
async def reject_leave(
    request_id: uuid.UUID,
    body: LeaveRejectRequest,
    user: User = Depends(require_role(UserRole.manager)),
    db: AsyncSession = Depends(get_db),
):
    leave_request = await LeaveService.reject_leave_request(
        db, request_id, user, body.rejection_reason,
    )
    return {"data": serialize_request(leave_request), "message": "Leave request rejected."}


# ── PUT /requests/{id}/cancel ───────────────────────────────────────

@router.put("/requests/{request_id}/cancel")
async def cancel_leave(
    request_id: uuid.UUID,
    employee: Employee = Depends(get_current_employee),
    db: AsyncSession = Depends(get_db),
):
    """Cancel one of your own pending or approved requests."""
    leave_request = await LeaveService.cancel_leave_request(db, request_id, employee)
    return {"data": serialize_request(leave_request), "message": "Leave request cancelled."}


# ── GET /balances ───────────────────────────────────────────────────

@router.get("/balances")
async def my_balances(
    year: Optional[int] = Query(None, description="Leave year; defaults to current year"),
    employee: Employee = Depends(get_current_employee),
    db: AsyncSession = Depends(get_db),
):
    balances = await LeaveCalculationService.get_leave_balances(db, employee.id, year)
    return {"data": [LeaveBalanceOut.model_validate(b).model_dump(mode="json") for b in balances]}


@router.get("/balances/{employee_id}")
async def employee_balances(
    employee_id: uuid.UUID,
    year: Optional[int] = Query(None),
    user: User = Depends(require_role(UserRole.manager)),
    db: AsyncSession = Depends(get_db),
):
    """Balances of a direct report (managers) or anyone (admins)."""
    if user.role != UserRole.admin:
        employee = await db.get(Employee, employee_id)
        if employee is None or user.employee is None or employee.manager_id != user.employee.id:
            raise ForbiddenException(detail="You can only view balances of your direct reports.")
    balances = await LeaveCalculationService.get_leave_balances(db, employee_id, year)
    return {"data": [LeaveBalanceOut.model_validate(b).model_dump(mode="json") for b in balances]}


# ── GET /working-days ───────────────────────────────────────────────

@router.get("/working-days")
async def working_days(
    start_date: date = Query(...),
    end_date: date = Query(...),
    is_half_day: bool = Query(False),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Preview how many days a request for this range would consume."""
    days = await LeaveCalculationService.calculate_days_with_half_day(
        db, start_date, end_date, is_half_day,
    )
    return {"data": {"start_date": start_date, "end_date": end_date, "days": str(days)}}


# ── GET /calendar ───────────────────────────────────────────────────

@router.get("/calendar")
async def leave_calendar(
    month: int = Query(..., ge=1, le=12),
    year: int = Query(..., ge=1970, le=2100),
    department_id: Optional[uuid.UUID] = Query(None),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Approved leave overlapping the month."""
    entries = await LeaveService.get_leave_calendar(db, month, year, department_id)
    body = LeaveCalendarOut(
        month=month,
        year=year,
        entries=[LeaveRequestOut.model_validate(serialize_request(e)) for e in entries],
        total_entries=len(entries),
    )
    return {"data": body.model_dump(mode="json")}


# ── GET /history ────────────────────────────────────────────────────

@router.get("/history")
async def leave_history(
    year: Optional[int] = Query(None),
    employee: Employee = Depends(get_current_employee),
    db: AsyncSession = Depends(get_db),
):
    requests = await LeaveService.get_leave_history(db, employee.id, year)
    return {"data": [serialize_request(r) for r in requests]}


# ── GET /stats ──────────────────────────────────────────────────────

@router.get("/stats")
async def leave_stats(
    year: Optional[int] = Query(None),
    user: User = Depends(require_role(UserRole.admin)),
    db: AsyncSession = Depends(get_db),
):
    stats = await LeaveService.get_leave_stats(db, year)
    return {"data": stats.model_dump()}
