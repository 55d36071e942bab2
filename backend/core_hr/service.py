"""Core HR service layer: async CRUD + business logic.

Uses:
  - ``paginate()`` from backend.common.pagination
  - ``apply_filters / apply_search`` from backend.common.filters
  - ``create_audit_entry`` from backend.common.audit
  - ``NotFoundException / ConflictError`` from backend.common.exceptions

Manager bookkeeping: an employee who gains a direct report is promoted to the
``manager`` role, one who loses the last report is demoted back. Admins are
never touched and bookkeeping failures are logged, never raised.
"""

from __future__ import annotations

import logging
import uuid
from datetime import date
from typing import Any, Optional, Sequence

from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from backend.auth.models import PasswordResetToken, User
from backend.auth.service import create_invite_token, start_invite
from backend.calendar_sync.models import CalendarEvent, GoogleCalendarToken
from backend.common.audit import create_audit_entry
from backend.common.constants import InviteStatus, UserRole
from backend.common.dates import month_bounds, utcnow
from backend.common.exceptions import (
    BadRequestException,
    ConflictError,
    NotFoundException,
    ValidationException,
)
from backend.common.filters import apply_filters, apply_search
from backend.common.pagination import PaginatedResponse, PaginationParams, paginate
from backend.core_hr.models import Department, Employee
from backend.core_hr.schemas import (
    DepartmentBrief,
    DepartmentCreate,
    DepartmentDistribution,
    DepartmentResponse,
    DepartmentStats,
    DepartmentUpdate,
    EmployeeCreate,
    EmployeeDetail,
    EmployeeListItem,
    EmployeeStats,
    EmployeeSummary,
    EmployeeUpdate,
)
from backend.leave.calculation import LeaveCalculationService, entitlement_for
from backend.leave.models import LeaveBalance, LeaveBalanceHistory, LeaveRequest
from backend.leave.schemas import LeaveBalancesUpdate
from backend.mail.service import MailService

logger = logging.getLogger(__name__)


def _employee_options():
    return (
        selectinload(Employee.user),
        selectinload(Employee.department),
        selectinload(Employee.manager),
    )


def serialize_employee(employee: Employee, *, detail: bool = False, direct_reports_count: int = 0) -> dict[str, Any]:
    """Employee plus the login fields that live on its user row."""
    schema = EmployeeDetail if detail else EmployeeListItem
    item = schema.model_validate(employee)
    if employee.user is not None:
        item.email = employee.user.email
        item.role = employee.user.role
        item.is_active = employee.user.is_active
        item.invite_status = employee.user.invite_status
    if employee.department is not None:
        item.department = DepartmentBrief.model_validate(employee.department)
    if detail:
        if employee.manager is not None:
            item.manager = EmployeeSummary.model_validate(employee.manager)
        item.direct_reports_count = direct_reports_count
    return item.model_dump(mode="json")


# ═════════════════════════════════════════════════════════════════════
# EmployeeService
# ═════════════════════════════════════════════════════════════════════


class EmployeeService:
    """Async CRUD operations for employees."""

    # ── List (paginated, searchable, filterable) ────────────────────

    @staticmethod
    async def list_employees(
        db: AsyncSession,
        pagination: PaginationParams,
        *,
        search: Optional[str] = None,
        department_id: Optional[uuid.UUID] = None,
        manager_id: Optional[uuid.UUID] = None,
    ) -> PaginatedResponse:
        """Return a paginated, filtered, searchable employee list."""

        query = (
            select(Employee)
            .join(User, User.id == Employee.user_id)
            .options(*_employee_options())
            .order_by(Employee.created_at.desc())
        )
        query = apply_filters(
            query,
            Employee,
            {"department_id": department_id, "manager_id": manager_id},
        )
        # Search across name / employee code / login email
        query = apply_search(
            query,
            search,
            [Employee.first_name, Employee.last_name, Employee.employee_id, User.email],
        )
        return await paginate(db, query, pagination, model=Employee)

    # ── Get single ──────────────────────────────────────────────────

    @staticmethod
    async def get_employee(db: AsyncSession, employee_id: uuid.UUID) -> Employee:
        result = await db.execute(
            select(Employee)
            .where(Employee.id == employee_id)
            .options(*_employee_options())
            .execution_options(populate_existing=True)
        )
        employee = result.scalars().first()
        if employee is None:
            raise NotFoundException("Employee", str(employee_id))
        return employee

    @staticmethod
    async def count_direct_reports(db: AsyncSession, employee_id: uuid.UUID) -> int:
        result = await db.execute(
            select(func.count()).select_from(Employee).where(Employee.manager_id == employee_id)
        )
        return result.scalar() or 0

    @staticmethod
    async def get_team_members(db: AsyncSession, manager_id: uuid.UUID) -> Sequence[Employee]:
        """Direct reports of *manager_id*."""
        result = await db.execute(
            select(Employee)
            .where(Employee.manager_id == manager_id)
            .options(*_employee_options())
            .order_by(Employee.first_name, Employee.last_name)
        )
        return result.scalars().all()

    # ── Uniqueness / references ─────────────────────────────────────

    @staticmethod
    async def _ensure_unique(
        db: AsyncSession,
        *,
        email: Optional[str] = None,
        employee_code: Optional[str] = None,
        exclude_user_id: Optional[uuid.UUID] = None,
        exclude_employee_id: Optional[uuid.UUID] = None,
    ) -> None:
        if email is not None:
            query = select(User.id).where(func.lower(User.email) == email.lower())
            if exclude_user_id is not None:
                query = query.where(User.id != exclude_user_id)
            if (await db.execute(query)).first() is not None:
                raise ConflictError("email", email)
        if employee_code is not None:
            query = select(Employee.id).where(Employee.employee_id == employee_code)
            if exclude_employee_id is not None:
                query = query.where(Employee.id != exclude_employee_id)
            if (await db.execute(query)).first() is not None:
                raise ConflictError("employee_id", employee_code)

    @staticmethod
    async def _check_references(
        db: AsyncSession,
        department_id: Optional[uuid.UUID],
        manager_id: Optional[uuid.UUID],
    ) -> None:
        if department_id is not None and await db.get(Department, department_id) is None:
            raise NotFoundException("Department", str(department_id))
        if manager_id is not None and await db.get(Employee, manager_id) is None:
            raise NotFoundException("Employee", str(manager_id))

    # ── Manager bookkeeping ─────────────────────────────────────────

    @staticmethod
    async def _load_with_user(db: AsyncSession, employee_id: uuid.UUID) -> Optional[Employee]:
        result = await db.execute(
            select(Employee)
            .where(Employee.id == employee_id)
            .options(selectinload(Employee.user))
            .execution_options(populate_existing=True)
        )
        return result.scalars().first()

    @staticmethod
    async def auto_promote_to_manager(db: AsyncSession, manager_id: uuid.UUID) -> bool:
        """Promote an ``employee`` with at least one direct report."""
        try:
            async with db.begin_nested():
                manager = await EmployeeService._load_with_user(db, manager_id)
                if manager is None or manager.user is None:
                    logger.warning("Manager %s not found for promotion", manager_id)
                    return False
                if manager.user.role != UserRole.employee:
                    return False
                if await EmployeeService.count_direct_reports(db, manager_id) >= 1:
                    manager.user.role = UserRole.manager
                    manager.user.updated_at = utcnow()
                    await db.flush()
                    logger.info("Promoted %s to manager", manager.user.email)
                    return True
        except Exception:
            logger.exception("Auto-promotion failed for manager %s", manager_id)
        return False

    @staticmethod
    async def auto_demote_from_manager(db: AsyncSession, manager_id: uuid.UUID) -> bool:
        """Demote a ``manager`` left without direct reports."""
        try:
            async with db.begin_nested():
                manager = await EmployeeService._load_with_user(db, manager_id)
                if manager is None or manager.user is None:
                    return False
                if manager.user.role != UserRole.manager:
                    return False
                if await EmployeeService.count_direct_reports(db, manager_id) == 0:
                    manager.user.role = UserRole.employee
                    manager.user.updated_at = utcnow()
                    await db.flush()
                    logger.info("Demoted %s to employee", manager.user.email)
                    return True
        except Exception:
            logger.exception("Auto-demotion failed for manager %s", manager_id)
        return False

    # ── Create ──────────────────────────────────────────────────────

    @staticmethod
    async def create_employee(
        db: AsyncSession,
        data: EmployeeCreate,
        *,
        actor_id: Optional[uuid.UUID] = None,
        send_invite: bool = True,
    ) -> Employee:
        """Create the invited user, the employee and its leave balances, then commit.

        The welcome mail is sent after the commit and never fails the call.
        """
        email = str(data.email).lower()
        await EmployeeService._ensure_unique(db, email=email, employee_code=data.employee_id)
        await EmployeeService._check_references(db, data.department_id, data.manager_id)

        user = User(email=email, role=data.role, must_change_password=False)
        start_invite(user)
        db.add(user)

        employee = Employee(
            user=user,
            employee_id=data.employee_id,
            first_name=data.first_name,
            last_name=data.last_name,
            phone=data.phone,
            position=data.position,
            department_id=data.department_id,
            manager_id=data.manager_id,
            joining_date=data.joining_date,
            probation_end_date=data.probation_end_date,
            annual_leave_days=data.annual_leave_days,
            sick_leave_days=data.sick_leave_days,
            casual_leave_days=data.casual_leave_days,
        )
        db.add(employee)
        try:
            await db.flush()
        except IntegrityError as exc:
            await db.rollback()
            err = str(exc.orig)
            if "employee_id" in err:
                raise ConflictError("employee_id", data.employee_id)
            if "email" in err:
                raise ConflictError("email", email)
            raise

        await LeaveCalculationService.initialize_leave_balances(
            db,
            employee.id,
            data.joining_date,
            data.leave_overrides(),
            full_entitlement=entitlement_for(employee),
        )

        if data.manager_id is not None:
            await EmployeeService.auto_promote_to_manager(db, data.manager_id)

        await create_audit_entry(
            db,
            action="create",
            entity_type="employee",
            entity_id=employee.id,
            actor_id=actor_id,
            new_values=data.model_dump(mode="json", exclude={"manual_balances"}),
        )
        await db.commit()

        if send_invite:
            try:
                await MailService.send_welcome_email(
                    email,
                    employee.first_name,
                    create_invite_token(employee.id, email),
                )
            except Exception:
                logger.exception("Welcome mail failed for %s", email)

        return await EmployeeService.get_employee(db, employee.id)

    # ── Update ──────────────────────────────────────────────────────

    @staticmethod
    async def update_employee(
        db: AsyncSession,
        employee_id: uuid.UUID,
        data: EmployeeUpdate,
        *,
        actor_id: Optional[uuid.UUID] = None,
    ) -> Employee:
        """Partial-update an existing employee."""

        employee = await EmployeeService.get_employee(db, employee_id)
        changes = data.model_dump(exclude_unset=True)
        if not changes:
            return employee

        if "email" in changes and changes["email"] is not None:
            changes["email"] = str(changes["email"]).lower()
            if changes["email"] != employee.user.email:
                await EmployeeService._ensure_unique(
                    db, email=changes["email"], exclude_user_id=employee.user_id,
                )
        if changes.get("employee_id") and changes["employee_id"] != employee.employee_id:
            await EmployeeService._ensure_unique(
                db, employee_code=changes["employee_id"], exclude_employee_id=employee.id,
            )
        if "manager_id" in changes and changes["manager_id"] == employee.id:
            raise ValidationException(errors={"manager_id": ["An employee cannot manage themselves."]})
        await EmployeeService._check_references(
            db, changes.get("department_id"), changes.get("manager_id"),
        )

        previous_manager_id = employee.manager_id
        old_values: dict[str, Any] = {}
        for field, value in changes.items():
            if field == "email":
                if value is None:
                    continue
                old_values[field] = employee.user.email
                employee.user.email = value
                employee.user.updated_at = utcnow()
                continue
            old_val = getattr(employee, field, None)
            old_values[field] = str(old_val) if isinstance(old_val, (uuid.UUID, date)) else old_val
            setattr(employee, field, value)

        employee.updated_at = utcnow()
        try:
            await db.flush()
        except IntegrityError as exc:
            await db.rollback()
            err = str(exc.orig)
            if "email" in err:
                raise ConflictError("email", changes.get("email", ""))
            if "employee_id" in err:
                raise ConflictError("employee_id", changes.get("employee_id", ""))
            raise

        if "manager_id" in changes and changes["manager_id"] != previous_manager_id:
            if changes["manager_id"] is not None:
                await EmployeeService.auto_promote_to_manager(db, changes["manager_id"])
            if previous_manager_id is not None:
                await EmployeeService.auto_demote_from_manager(db, previous_manager_id)

        await create_audit_entry(
            db,
            action="update",
            entity_type="employee",
            entity_id=employee.id,
            actor_id=actor_id,
            old_values=old_values,
            new_values=data.model_dump(mode="json", exclude_unset=True),
        )
        await db.commit()
        return await EmployeeService.get_employee(db, employee_id)

    # ── Delete ──────────────────────────────────────────────────────

    @staticmethod
    async def delete_employee(
        db: AsyncSession,
        employee_id: uuid.UUID,
        *,
        actor_id: Optional[uuid.UUID] = None,
    ) -> None:
        """Delete the employee, its user and everything they own in one transaction."""
        employee = await EmployeeService.get_employee(db, employee_id)
        user_id = employee.user_id
        former_manager_id = employee.manager_id
        snapshot = {
            "employee_id": employee.employee_id,
            "name": employee.full_name,
            "email": employee.user.email if employee.user else None,
        }

        request_ids = select(LeaveRequest.id).where(LeaveRequest.employee_id == employee_id)
        try:
            await db.execute(
                update(Department).where(Department.manager_id == employee_id).values(manager_id=None)
            )
            await db.execute(
                update(Employee).where(Employee.manager_id == employee_id).values(manager_id=None)
            )
            await db.execute(
                update(LeaveRequest).where(LeaveRequest.approved_by == user_id).values(approved_by=None)
            )
            await db.execute(
                delete(CalendarEvent).where(
                    or_(
                        CalendarEvent.leave_request_id.in_(request_ids),
                        CalendarEvent.user_id == user_id,
                    )
                )
            )
            await db.execute(delete(GoogleCalendarToken).where(GoogleCalendarToken.user_id == user_id))
            await db.execute(delete(LeaveRequest).where(LeaveRequest.employee_id == employee_id))
            await db.execute(delete(LeaveBalance).where(LeaveBalance.employee_id == employee_id))
            await db.execute(
                delete(LeaveBalanceHistory).where(LeaveBalanceHistory.employee_id == employee_id)
            )
            await db.execute(delete(PasswordResetToken).where(PasswordResetToken.user_id == user_id))
            await db.execute(delete(Employee).where(Employee.id == employee_id))
            await db.execute(delete(User).where(User.id == user_id))

            await create_audit_entry(
                db,
                action="delete",
                entity_type="employee",
                entity_id=employee_id,
                actor_id=actor_id,
                old_values=snapshot,
            )
            await db.commit()
        except Exception:
            await db.rollback()
            raise

        logger.info("Deleted employee %s (%s)", snapshot["employee_id"], snapshot["email"])
        if former_manager_id is not None:
            if await EmployeeService.auto_demote_from_manager(db, former_manager_id):
                await db.commit()

    # ── Invites ─────────────────────────────────────────────────────

    @staticmethod
    async def resend_invite(db: AsyncSession, employee_id: uuid.UUID) -> Employee:
        employee = await EmployeeService.get_employee(db, employee_id)
        user = employee.user
        if user.invite_status == InviteStatus.active and user.password_hash:
            raise BadRequestException(detail="User account is already activated.")

        start_invite(user)
        user.updated_at = utcnow()
        await db.commit()

        try:
            await MailService.send_welcome_email(
                user.email,
                employee.first_name,
                create_invite_token(employee.id, user.email),
            )
        except Exception:
            logger.exception("Invite mail failed for %s", user.email)
        return employee

    # ── Balances ────────────────────────────────────────────────────

    @staticmethod
    async def set_leave_balances(
        db: AsyncSession,
        employee_id: uuid.UUID,
        data: LeaveBalancesUpdate,
        *,
        actor_id: Optional[uuid.UUID] = None,
    ) -> list[LeaveBalance]:
        """Admin override of an employee's allocations for one year."""
        await EmployeeService.get_employee(db, employee_id)
        year = data.year or date.today().year
        balances = []
        for item in data.balances:
            balances.append(
                await LeaveCalculationService.set_leave_balance(
                    db,
                    employee_id,
                    year,
                    item.leave_type,
                    item.total_allocated,
                    carry_forward=item.carry_forward,
                    actor_id=actor_id,
                )
            )
        await db.commit()
        return balances

    # ── Stats ───────────────────────────────────────────────────────

    @staticmethod
    async def get_employee_stats(db: AsyncSession, today: Optional[date] = None) -> EmployeeStats:
        today = today or date.today()
        first, last = month_bounds(today.year, today.month)

        async def _count(*conditions) -> int:
            query = select(func.count(Employee.id)).join(User, User.id == Employee.user_id)
            if conditions:
                query = query.where(*conditions)
            return (await db.execute(query)).scalar() or 0

        return EmployeeStats(
            total_employees=await _count(),
            active_employees=await _count(User.is_active.is_(True)),
            invited_employees=await _count(User.invite_status == InviteStatus.invited),
            managers=await _count(User.role == UserRole.manager),
            joined_this_month=await _count(Employee.joining_date.between(first, last)),
            on_probation=await _count(Employee.probation_end_date >= today),
        )


# ═════════════════════════════════════════════════════════════════════
# DepartmentService
# ═════════════════════════════════════════════════════════════════════


class DepartmentService:
    """Async CRUD operations for departments."""

    @staticmethod
    async def _employee_counts(db: AsyncSession) -> dict[uuid.UUID, int]:
        result = await db.execute(
            select(Employee.department_id, func.count(Employee.id).label("cnt"))
            .where(Employee.department_id.is_not(None))
            .group_by(Employee.department_id)
        )
        return {row[0]: row[1] for row in result.all()}

    @staticmethod
    def _to_response(dept: Department, employee_count: int) -> DepartmentResponse:
        resp = DepartmentResponse.model_validate(dept)
        resp.employee_count = employee_count
        if dept.manager is not None:
            resp.manager_name = dept.manager.full_name
        return resp

    @staticmethod
    async def _load(db: AsyncSession, department_id: uuid.UUID) -> Department:
        result = await db.execute(
            select(Department)
            .where(Department.id == department_id)
            .options(selectinload(Department.manager))
            .execution_options(populate_existing=True)
        )
        dept = result.scalars().first()
        if dept is None:
            raise NotFoundException("Department", str(department_id))
        return dept

    @staticmethod
    async def _ensure_unique_name(
        db: AsyncSession,
        name: str,
        exclude_id: Optional[uuid.UUID] = None,
    ) -> None:
        query = select(Department.id).where(func.lower(Department.name) == name.lower())
        if exclude_id is not None:
            query = query.where(Department.id != exclude_id)
        if (await db.execute(query)).first() is not None:
            raise ConflictError("name", name)

    @staticmethod
    async def list_departments(db: AsyncSession) -> list[DepartmentResponse]:
        """Return all departments with employee counts."""
        result = await db.execute(
            select(Department).options(selectinload(Department.manager)).order_by(Department.name)
        )
        counts = await DepartmentService._employee_counts(db)
        return [
            DepartmentService._to_response(dept, counts.get(dept.id, 0))
            for dept in result.scalars().all()
        ]

    @staticmethod
    async def get_department(db: AsyncSession, department_id: uuid.UUID) -> DepartmentResponse:
        dept = await DepartmentService._load(db, department_id)
        counts = await DepartmentService._employee_counts(db)
        return DepartmentService._to_response(dept, counts.get(dept.id, 0))

    @staticmethod
    async def find_by_name(db: AsyncSession, name: str) -> Optional[Department]:
        result = await db.execute(
            select(Department).where(func.lower(Department.name) == name.strip().lower())
        )
        return result.scalars().first()

    @staticmethod
    async def create_department(
        db: AsyncSession,
        data: DepartmentCreate,
        *,
        actor_id: Optional[uuid.UUID] = None,
    ) -> DepartmentResponse:
        await DepartmentService._ensure_unique_name(db, data.name)
        if data.manager_id is not None and await db.get(Employee, data.manager_id) is None:
            raise NotFoundException("Employee", str(data.manager_id))

        dept = Department(name=data.name.strip(), description=data.description, manager_id=data.manager_id)
        db.add(dept)
        try:
            await db.flush()
        except IntegrityError:
            await db.rollback()
            raise ConflictError("name", data.name)

        await create_audit_entry(
            db,
            action="create",
            entity_type="department",
            entity_id=dept.id,
            actor_id=actor_id,
            new_values=data.model_dump(mode="json"),
        )
        await db.commit()
        return await DepartmentService.get_department(db, dept.id)

    @staticmethod
    async def update_department(
        db: AsyncSession,
        department_id: uuid.UUID,
        data: DepartmentUpdate,
        *,
        actor_id: Optional[uuid.UUID] = None,
    ) -> DepartmentResponse:
        dept = await DepartmentService._load(db, department_id)
        changes = data.model_dump(exclude_unset=True)
        if changes.get("name"):
            await DepartmentService._ensure_unique_name(db, changes["name"], exclude_id=dept.id)
        if changes.get("manager_id") is not None and await db.get(Employee, changes["manager_id"]) is None:
            raise NotFoundException("Employee", str(changes["manager_id"]))

        old_values = {
            field: str(getattr(dept, field)) if getattr(dept, field) is not None else None
            for field in changes
        }
        for field, value in changes.items():
            setattr(dept, field, value)
        dept.updated_at = utcnow()
        try:
            await db.flush()
        except IntegrityError:
            await db.rollback()
            raise ConflictError("name", changes.get("name", ""))

        await create_audit_entry(
            db,
            action="update",
            entity_type="department",
            entity_id=dept.id,
            actor_id=actor_id,
            old_values=old_values,
            new_values=data.model_dump(mode="json", exclude_unset=True),
        )
        await db.commit()
        return await DepartmentService.get_department(db, department_id)

    @staticmethod
    async def delete_department(
        db: AsyncSession,
        department_id: uuid.UUID,
        *,
        actor_id: Optional[uuid.UUID] = None,
    ) -> None:
        dept = await DepartmentService._load(db, department_id)
        remaining = (
            await db.execute(
                select(func.count(Employee.id)).where(Employee.department_id == department_id)
            )
        ).scalar() or 0
        if remaining:
            raise ConflictError(
                "department",
                dept.name,
                detail=f"Department '{dept.name}' still has {remaining} employee(s).",
            )
        await create_audit_entry(
            db,
            action="delete",
            entity_type="department",
            entity_id=dept.id,
            actor_id=actor_id,
            old_values={"name": dept.name},
        )
        await db.execute(delete(Department).where(Department.id == department_id))
        await db.commit()

    @staticmethod
    async def get_department_stats(db: AsyncSession) -> DepartmentStats:
        departments = (
            await db.execute(select(Department).order_by(Department.name))
        ).scalars().all()
        counts = await DepartmentService._employee_counts(db)
        with_managers = sum(1 for d in departments if d.manager_id is not None)
        return DepartmentStats(
            total_departments=len(departments),
            with_managers=with_managers,
            without_managers=len(departments) - with_managers,
            distribution=[
                DepartmentDistribution(name=d.name, employee_count=counts.get(d.id, 0))
                for d in departments
            ],
        )
