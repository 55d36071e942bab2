"""Leave request workflow.

State machine::

    pending ──► approved ──► cancelled
       │
       ├──► rejected
       └──► cancelled

Each transition commits before any side effect runs. Mail and calendar
sync are best-effort: failures are logged and never undo the transition.
"""

from __future__ import annotations

import calendar as _calendar
import logging
import uuid
from collections import Counter
from datetime import date
from decimal import Decimal
from typing import Any, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from backend.auth.models import User
from backend.calendar_sync.service import CalendarSyncService
from backend.common.audit import create_audit_entry
from backend.common.constants import LeaveStatus, LeaveType, UserRole
from backend.common.dates import month_bounds, utcnow
from backend.common.exceptions import (
    BadRequestException,
    ForbiddenException,
    NotFoundException,
    ValidationException,
)
from backend.common.filters import apply_filters
from backend.common.pagination import PaginatedResponse, PaginationParams, paginate
from backend.core_hr.models import Employee
from backend.leave.calculation import LeaveCalculationService
from backend.leave.models import LeaveRequest
from backend.leave.schemas import EmployeeBrief, LeaveRequestCreate, LeaveRequestOut, LeaveStatsOut
from backend.mail.service import MailService
from backend.system_settings.service import SettingsService

logger = logging.getLogger(__name__)

_ACTIVE_STATUSES = (LeaveStatus.pending, LeaveStatus.approved)


def _with_employee():
    return selectinload(LeaveRequest.employee).options(
        selectinload(Employee.user),
        selectinload(Employee.department),
        selectinload(Employee.manager).selectinload(Employee.user),
    )


def serialize_request(leave_request: LeaveRequest) -> dict[str, Any]:
    """JSON-ready representation with an embedded employee brief."""
    out = LeaveRequestOut.model_validate(leave_request)
    employee = leave_request.employee
    if employee is not None:
        out.employee = EmployeeBrief(
            id=employee.id,
            employee_id=employee.employee_id,
            full_name=employee.full_name,
            email=employee.user.email if employee.user else None,
            department_name=employee.department.name if employee.department else None,
        )
    return out.model_dump(mode="json")


def _audit_snapshot(leave_request: LeaveRequest) -> dict[str, Any]:
    return {
        "status": leave_request.status.value,
        "leave_type": leave_request.leave_type.value,
        "start_date": leave_request.start_date.isoformat(),
        "end_date": leave_request.end_date.isoformat(),
        "days_count": str(leave_request.days_count),
    }


class LeaveService:
    """Async leave request operations."""

    # ── Lookup ──────────────────────────────────────────────────────

    @staticmethod
    async def get_request(db: AsyncSession, request_id: uuid.UUID) -> LeaveRequest:
        result = await db.execute(
            select(LeaveRequest)
            .where(LeaveRequest.id == request_id)
            .options(_with_employee())
            .execution_options(populate_existing=True)
        )
        leave_request = result.scalars().first()
        if leave_request is None:
            raise NotFoundException("LeaveRequest", str(request_id))
        return leave_request

    @staticmethod
    async def get_request_for_user(
        db: AsyncSession,
        request_id: uuid.UUID,
        user: User,
    ) -> LeaveRequest:
        """Owner, the owner's manager, or an admin may view a request."""
        leave_request = await LeaveService.get_request(db, request_id)
        if user.role == UserRole.admin:
            return leave_request
        own_employee = user.employee
        if own_employee is not None and (
            leave_request.employee_id == own_employee.id
            or leave_request.employee.manager_id == own_employee.id
        ):
            return leave_request
        raise ForbiddenException(detail="You cannot view this leave request.")

    # ── Create ──────────────────────────────────────────────────────

    @staticmethod
    async def create_leave_request(
        db: AsyncSession,
        employee: Employee,
        data: LeaveRequestCreate,
        *,
        today: Optional[date] = None,
    ) -> LeaveRequest:
        today = today or date.today()
        if data.start_date < today:
            raise ValidationException(
                errors={"start_date": ["Cannot apply for leave in the past."]},
            )

        days = await LeaveCalculationService.calculate_days_with_half_day(
            db, data.start_date, data.end_date, data.is_half_day,
        )
        if days <= 0:
            raise ValidationException(
                errors={"end_date": ["The selected range contains no working days."]},
            )

        overlap = await db.execute(
            select(LeaveRequest.id).where(
                LeaveRequest.employee_id == employee.id,
                LeaveRequest.status.in_(_ACTIVE_STATUSES),
                LeaveRequest.start_date <= data.end_date,
                LeaveRequest.end_date >= data.start_date,
            )
        )
        if overlap.first() is not None:
            raise ValidationException(
                errors={"start_date": ["Overlaps an existing pending or approved request."]},
            )

        available, balance = await LeaveCalculationService.check_leave_availability(
            db, employee.id, data.leave_type, days, data.start_date.year,
        )
        if not available:
            raise ValidationException(
                errors={
                    "balance": [
                        f"Insufficient leave balance. Available: {balance}, Requested: {days}"
                    ]
                },
            )

        leave_request = LeaveRequest(
            employee_id=employee.id,
            leave_type=data.leave_type,
            start_date=data.start_date,
            end_date=data.end_date,
            is_half_day=data.is_half_day,
            days_count=days,
            reason=data.reason,
            status=LeaveStatus.pending,
        )
        db.add(leave_request)
        await db.flush()

        await create_audit_entry(
            db,
            action="create",
            entity_type="leave_request",
            entity_id=leave_request.id,
            actor_id=employee.user_id,
            new_values=_audit_snapshot(leave_request),
        )
        await db.commit()

        leave_request = await LeaveService.get_request(db, leave_request.id)
        manager = leave_request.employee.manager
        if manager is not None and manager.user is not None:
            try:
                await MailService.send_leave_request_notification(
                    manager.user.email,
                    leave_request.employee.full_name,
                    leave_request.leave_type,
                    leave_request.start_date,
                    leave_request.end_date,
                    leave_request.reason,
                )
            except Exception:
                logger.exception("Leave request notification failed for %s", leave_request.id)

        return leave_request

    # ── Review helpers ──────────────────────────────────────────────

    @staticmethod
    def _assert_can_review(approver: User, leave_request: LeaveRequest) -> None:
        if approver.role == UserRole.admin:
            return
        reviewer = approver.employee
        if (
            approver.role == UserRole.manager
            and reviewer is not None
            and leave_request.employee.manager_id == reviewer.id
        ):
            return
        raise ForbiddenException(
            detail="Only admins or the employee's manager can review this request.",
        )

    @staticmethod
    async def _notify_status(
        leave_request: LeaveRequest,
        approver_name: Optional[str],
    ) -> None:
        employee = leave_request.employee
        if employee is None or employee.user is None:
            return
        try:
            await MailService.send_leave_status_notification(
                employee.user.email,
                leave_request.leave_type,
                leave_request.start_date,
                leave_request.end_date,
                leave_request.status.value,
                approver_name,
                leave_request.rejection_reason,
            )
        except Exception:
            logger.exception("Leave status notification failed for %s", leave_request.id)

    @staticmethod
    async def _sync_calendar_create(db: AsyncSession, leave_request: LeaveRequest) -> None:
        try:
            async with db.begin_nested():
                await CalendarSyncService.create_leave_event(
                    db, leave_request, leave_request.employee.user_id,
                )
        except Exception:
            logger.exception("Calendar sync failed for leave request %s", leave_request.id)
        await db.commit()

    @staticmethod
    async def _approve(
        db: AsyncSession,
        leave_request: LeaveRequest,
        approver: Optional[User],
    ) -> None:
        """Debit the balance and mark approved. Flushes; caller commits."""
        if leave_request.status != LeaveStatus.pending:
            raise BadRequestException(detail="Leave request is not in pending status.")

        await LeaveCalculationService.update_leave_balance(
            db,
            leave_request.employee_id,
            leave_request.start_date.year,
            leave_request.leave_type,
            leave_request.days_count,
        )
        leave_request.status = LeaveStatus.approved
        leave_request.approved_by = approver.id if approver else None
        leave_request.approved_at = utcnow()
        leave_request.updated_at = utcnow()
        await db.flush()

        await create_audit_entry(
            db,
            action="approve",
            entity_type="leave_request",
            entity_id=leave_request.id,
            actor_id=approver.id if approver else None,
            old_values={"status": LeaveStatus.pending.value},
            new_values=_audit_snapshot(leave_request),
        )

    # ── Approve ─────────────────────────────────────────────────────

    @staticmethod
    async def approve_leave_request(
        db: AsyncSession,
        request_id: uuid.UUID,
        approver: User,
    ) -> LeaveRequest:
        leave_request = await LeaveService.get_request(db, request_id)
        LeaveService._assert_can_review(approver, leave_request)

        await LeaveService._approve(db, leave_request, approver)
        await db.commit()

        approver_name = approver.employee.full_name if approver.employee else approver.email
        await LeaveService._notify_status(leave_request, approver_name)
        await LeaveService._sync_calendar_create(db, leave_request)
        return await LeaveService.get_request(db, request_id)

    # ── Reject ──────────────────────────────────────────────────────

    @staticmethod
    async def reject_leave_request(
        db: AsyncSession,
        request_id: uuid.UUID,
        approver: User,
        rejection_reason: str,
    ) -> LeaveRequest:
        leave_request = await LeaveService.get_request(db, request_id)
        LeaveService._assert_can_review(approver, leave_request)
        if leave_request.status != LeaveStatus.pending:
            raise BadRequestException(detail="Leave request is not in pending status.")

        leave_request.status = LeaveStatus.rejected
        leave_request.rejection_reason = rejection_reason
        leave_request.approved_by = approver.id
        leave_request.approved_at = utcnow()
        leave_request.updated_at = utcnow()
        await db.flush()

        await create_audit_entry(
            db,
            action="reject",
            entity_type="leave_request",
            entity_id=leave_request.id,
            actor_id=approver.id,
            old_values={"status": LeaveStatus.pending.value},
            new_values={**_audit_snapshot(leave_request), "rejection_reason": rejection_reason},
        )
        await db.commit()

        approver_name = approver.employee.full_name if approver.employee else approver.email
        await LeaveService._notify_status(leave_request, approver_name)
        return leave_request

    # ── Cancel ──────────────────────────────────────────────────────

    @staticmethod
    async def cancel_leave_request(
        db: AsyncSession,
        request_id: uuid.UUID,
        employee: Employee,
    ) -> LeaveRequest:
        leave_request = await LeaveService.get_request(db, request_id)
        if leave_request.employee_id != employee.id:
            raise ForbiddenException(detail="You can only cancel your own leave requests.")
        if leave_request.status not in _ACTIVE_STATUSES:
            raise BadRequestException(
                detail="Can only cancel pending or approved leave requests.",
            )

        was_approved = leave_request.status == LeaveStatus.approved
        old_status = leave_request.status.value
        if was_approved:
            await LeaveCalculationService.update_leave_balance(
                db,
                leave_request.employee_id,
                leave_request.start_date.year,
                leave_request.leave_type,
                -Decimal(leave_request.days_count),
            )

        leave_request.status = LeaveStatus.cancelled
        leave_request.cancelled_at = utcnow()
        leave_request.updated_at = utcnow()
        await db.flush()

        await create_audit_entry(
            db,
            action="cancel",
            entity_type="leave_request",
            entity_id=leave_request.id,
            actor_id=employee.user_id,
            old_values={"status": old_status},
            new_values=_audit_snapshot(leave_request),
        )
        await db.commit()

        if was_approved:
            try:
                async with db.begin_nested():
                    await CalendarSyncService.delete_leave_event(db, leave_request.id)
            except Exception:
                logger.exception("Calendar event removal failed for %s", leave_request.id)
            await db.commit()
        return leave_request

    # ── Listing ─────────────────────────────────────────────────────

    @staticmethod
    async def list_requests(
        db: AsyncSession,
        pagination: PaginationParams,
        *,
        employee_id: Optional[uuid.UUID] = None,
        manager_id: Optional[uuid.UUID] = None,
        department_id: Optional[uuid.UUID] = None,
        status: Optional[LeaveStatus] = None,
        leave_type: Optional[LeaveType] = None,
        year: Optional[int] = None,
    ) -> PaginatedResponse:
        query = (
            select(LeaveRequest)
            .join(Employee, Employee.id == LeaveRequest.employee_id)
            .options(_with_employee())
            .order_by(LeaveRequest.applied_at.desc(), LeaveRequest.start_date.desc())
        )
        query = apply_filters(
            query,
            LeaveRequest,
            {
                "employee_id": employee_id,
                "status": status,
                "leave_type": leave_type,
                "start_date__from": date(year, 1, 1) if year else None,
                "start_date__to": date(year, 12, 31) if year else None,
            },
        )
        if manager_id is not None:
            query = query.where(Employee.manager_id == manager_id)
        if department_id is not None:
            query = query.where(Employee.department_id == department_id)
        return await paginate(db, query, pagination, model=LeaveRequest)

    @staticmethod
    async def get_leave_history(
        db: AsyncSession,
        employee_id: uuid.UUID,
        year: Optional[int] = None,
    ) -> Sequence[LeaveRequest]:
        year = year or date.today().year
        result = await db.execute(
            select(LeaveRequest)
            .where(
                LeaveRequest.employee_id == employee_id,
                LeaveRequest.start_date.between(date(year, 1, 1), date(year, 12, 31)),
            )
            .options(_with_employee())
            .order_by(LeaveRequest.start_date.desc())
        )
        return result.scalars().all()

    @staticmethod
    async def get_leave_calendar(
        db: AsyncSession,
        month: int,
        year: int,
        department_id: Optional[uuid.UUID] = None,
    ) -> Sequence[LeaveRequest]:
        """Approved requests overlapping the month."""
        first, last = month_bounds(year, month)
        query = (
            select(LeaveRequest)
            .join(Employee, Employee.id == LeaveRequest.employee_id)
            .where(
                LeaveRequest.status == LeaveStatus.approved,
                LeaveRequest.start_date <= last,
                LeaveRequest.end_date >= first,
            )
            .options(_with_employee())
            .order_by(LeaveRequest.start_date)
        )
        if department_id is not None:
            query = query.where(Employee.department_id == department_id)
        result = await db.execute(query)
        return result.scalars().all()

    @staticmethod
    async def get_leave_stats(db: AsyncSession, year: Optional[int] = None) -> LeaveStatsOut:
        year = year or date.today().year
        result = await db.execute(
            select(LeaveRequest.status, LeaveRequest.leave_type, LeaveRequest.start_date).where(
                LeaveRequest.start_date.between(date(year, 1, 1), date(year, 12, 31))
            )
        )
        rows = result.all()
        by_status = Counter(row.status for row in rows)
        by_type = Counter(row.leave_type.value for row in rows)
        by_month = Counter(row.start_date.month for row in rows)

        return LeaveStatsOut(
            year=year,
            total_requests=len(rows),
            pending_requests=by_status[LeaveStatus.pending],
            approved_requests=by_status[LeaveStatus.approved],
            rejected_requests=by_status[LeaveStatus.rejected],
            cancelled_requests=by_status[LeaveStatus.cancelled],
            by_type=[{"label": t, "count": c} for t, c in sorted(by_type.items())],
            by_month=[
                {"label": _calendar.month_abbr[m], "count": by_month[m]}
                for m in sorted(by_month)
            ],
        )

    # ── Auto-approval job ───────────────────────────────────────────

    @staticmethod
    async def auto_approve_pending_leaves(
        db: AsyncSession,
        *,
        today: Optional[date] = None,
        force: bool = False,
    ) -> dict[str, Any]:
        """Approve pending requests whose start date has passed.

        Runs only when the ``auto_approve_pending_leaves`` setting is "true"
        (or *force* is set). Each request commits on its own; a failure is
        rolled back, logged and counted.
        """
        if not force and not await SettingsService.get_auto_approve_enabled(db):
            return {"enabled": False, "processed": 0, "approved": 0, "failed": 0}

        today = today or date.today()
        ids = (
            await db.execute(
                select(LeaveRequest.id)
                .where(
                    LeaveRequest.status == LeaveStatus.pending,
                    LeaveRequest.start_date < today,
                )
                .order_by(LeaveRequest.start_date)
            )
        ).scalars().all()

        approved = failed = 0
        for request_id in ids:
            try:
                leave_request = await LeaveService.get_request(db, request_id)
                await LeaveService._approve(db, leave_request, None)
                await db.commit()
            except Exception:
                logger.exception("Auto-approval failed for leave request %s", request_id)
                await db.rollback()
                failed += 1
                continue
            approved += 1
            await LeaveService._notify_status(leave_request, "System (auto-approval)")

        logger.info("Auto-approval processed=%d approved=%d failed=%d", len(ids), approved, failed)
        return {"enabled": True, "processed": len(ids), "approved": approved, "failed": failed}
