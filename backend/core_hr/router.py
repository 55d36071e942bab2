"""Core HR router: Employee and Department API endpoints.

Routes:
    /employees                         List, create employees (admin)
    /employees/stats                   Dashboard counters (admin)
    /employees/team                    Caller's direct reports (manager)
    /employees/{id}                    Get, update, delete employee
    /employees/{id}/resend-invite      Re-issue the invite mail (admin)
    /employees/{id}/leave-balances     Manual allocation override (admin)
    /departments                       List, create departments
    /departments/stats                 Department counters (admin)
    /departments/{id}                  Get, update, delete department
"""


import uuid
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from backend.auth.dependencies import get_current_employee, get_current_user, require_role
from backend.auth.models import User
from backend.common.constants import UserRole
from backend.common.exceptions import ForbiddenException
from backend.common.pagination import PaginationParams
from backend.core_hr.models import Employee
from backend.core_hr.schemas import (
    DepartmentCreate,
    DepartmentUpdate,
    EmployeeCreate,
    EmployeeUpdate,
)
from backend.core_hr.service import DepartmentService, EmployeeService, serialize_employee
from backend.database import get_db
from backend.leave.schemas import LeaveBalanceOut, LeaveBalancesUpdate


# ═════════════════════════════════════════════════════════════════════
# Routers
# ═════════════════════════════════════════════════════════════════════

employees_router = APIRouter(prefix="", tags=["employees"])
departments_router = APIRouter(prefix="", tags=["departments"])


# ═════════════════════════════════════════════════════════════════════
# Employee Endpoints
# ═════════════════════════════════════════════════════════════════════


# ── GET /employees: list employees ──────────────────────────────────

@employees_router.get("")
async def list_employees(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_role(UserRole.admin)),
    pagination: PaginationParams = Depends(),
    search: Optional[str] = Query(None, description="Search by name, email, or employee ID"),
    department_id: Optional[uuid.UUID] = Query(None, description="Filter by department"),
    manager_id: Optional[uuid.UUID] = Query(None, description="Filter by manager"),
):
    """List employees with pagination, search, and filtering."""
    result = await EmployeeService.list_employees(
        db,
        pagination,
        search=search,
        department_id=department_id,
        manager_id=manager_id,
    )
    return {
        "data": [serialize_employee(emp) for emp in result.data],
        "meta": result.meta.model_dump(),
    }


# ── POST /employees: create employee ────────────────────────────────

@employees_router.post("", status_code=201)
async def create_employee(
    body: EmployeeCreate,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_role(UserRole.admin)),
):
    """Create an employee, its invited user account and leave balances."""
    employee = await EmployeeService.create_employee(db, body, actor_id=current_user.id)
    return {
        "data": serialize_employee(employee, detail=True),
        "message": "Employee created successfully. An invitation has been sent.",
    }


# ── GET /employees/stats ────────────────────────────────────────────
# NOTE: static paths are declared before /employees/{employee_id}.

@employees_router.get("/stats")
async def employee_stats(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_role(UserRole.admin)),
):
    stats = await EmployeeService.get_employee_stats(db)
    return {"data": stats.model_dump()}


# ── GET /employees/team ─────────────────────────────────────────────

@employees_router.get("/team")
async def my_team(
    db: AsyncSession = Depends(get_db),
    employee: Employee = Depends(get_current_employee),
    current_user: User = Depends(require_role(UserRole.manager)),
):
    """Direct reports of the calling manager."""
    members = await EmployeeService.get_team_members(db, employee.id)
    return {"data": [serialize_employee(m) for m in members]}


# ── GET /employees/{id} ─────────────────────────────────────────────

@employees_router.get("/{employee_id}")
async def get_employee(
    employee_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """Admins see anyone; others see themselves and their direct reports."""
    employee = await EmployeeService.get_employee(db, employee_id)
    if current_user.role != UserRole.admin:
        own = current_user.employee
        if own is None or (employee.id != own.id and employee.manager_id != own.id):
            raise ForbiddenException(detail="You cannot view this employee.")
    reports = await EmployeeService.count_direct_reports(db, employee.id)
    return {"data": serialize_employee(employee, detail=True, direct_reports_count=reports)}


# ── PUT /employees/{id} ─────────────────────────────────────────────

@employees_router.put("/{employee_id}")
async def update_employee(
    employee_id: uuid.UUID,
    body: EmployeeUpdate,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_role(UserRole.admin)),
):
    employee = await EmployeeService.update_employee(
        db, employee_id, body, actor_id=current_user.id,
    )
    reports = await EmployeeService.count_direct_reports(db, employee.id)
    return {
        "data": serialize_employee(employee, detail=True, direct_reports_count=reports),
        "message": "Employee updated successfully.",
    }


# ── DELETE /employees/{id} ──────────────────────────────────────────

@employees_router.delete("/{employee_id}")
async def delete_employee(
    employee_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_role(UserRole.admin)),
):
    """Delete the employee together with its user, requests and balances."""
    if current_user.employee is not None and current_user.employee.id == employee_id:
        raise ForbiddenException(detail="You cannot delete your own employee record.")
    await EmployeeService.delete_employee(db, employee_id, actor_id=current_user.id)
    return {"data": None, "message": "Employee deleted successfully."}


# ── POST /employees/{id}/resend-invite ──────────────────────────────

@employees_router.post("/{employee_id}/resend-invite")
async def resend_invite(
    employee_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_role(UserRole.admin)),
):
    employee = await EmployeeService.resend_invite(db, employee_id)
    return {"data": serialize_employee(employee), "message": "Invitation sent."}


# ── PUT /employees/{id}/leave-balances ──────────────────────────────

@employees_router.put("/{employee_id}/leave-balances")
async def set_leave_balances(
    employee_id: uuid.UUID,
    body: LeaveBalancesUpdate,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_role(UserRole.admin)),
):
    balances = await EmployeeService.set_leave_balances(
        db, employee_id, body, actor_id=current_user.id,
    )
    return {
        "data": [LeaveBalanceOut.model_validate(b).model_dump(mode="json") for b in balances],
        "message": "Leave balances updated.",
    }


# ═════════════════════════════════════════════════════════════════════
# Department Endpoints
# ═════════════════════════════════════════════════════════════════════


@departments_router.get("")
async def list_departments(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    departments = await DepartmentService.list_departments(db)
    return {"data": [d.model_dump(mode="json") for d in departments]}


@departments_router.post("", status_code=201)
async def create_department(
    body: DepartmentCreate,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_role(UserRole.admin)),
):
    dept = await DepartmentService.create_department(db, body, actor_id=current_user.id)
    return {"data": dept.model_dump(mode="json"), "message": "Department created successfully."}


@departments_router.get("/stats")
async def department_stats(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_role(UserRole.admin)),
):
    stats = await DepartmentService.get_department_stats(db)
    return {"data": stats.model_dump()}


@departments_router.get("/{department_id}")
async def get_department(
    department_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    dept = await DepartmentService.get_department(db, department_id)
    return {"data": dept.model_dump(mode="json")}


@departments_router.put("/{department_id}")
async def update_department(
    department_id: uuid.UUID,
    body: DepartmentUpdate,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_role(UserRole.admin)),
):
    dept = await DepartmentService.update_department(
        db, department_id, body, actor_id=current_user.id,
    )
    return {"data": dept.model_dump(mode="json"), "message": "Department updated successfully."}


@departments_router.delete("/{department_id}")
async def delete_department(
    department_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_role(UserRole.admin)),
):
    await DepartmentService.delete_department(db, department_id, actor_id=current_user.id)
    return {"data": None, "message": "Department deleted successfully."}
