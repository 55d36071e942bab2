"""Leave balance arithmetic.

Pro-rata entitlement tables, working-day counting, balance debit/credit and the
year-end carry-forward. Everything that touches the database takes the caller's
``AsyncSession`` and only flushes; committing is the caller's job.
"""

from __future__ import annotations

import logging
import uuid
from datetime import date, timedelta
from decimal import Decimal
from typing import Any, Mapping, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from backend.common.audit import create_audit_entry
from backend.common.constants import TRACKED_LEAVE_TYPES, LeaveType
from backend.common.exceptions import BadRequestException, NotFoundException, ValidationException
from backend.config import settings
from backend.core_hr.models import Employee
from backend.holidays.service import get_holiday_dates
from backend.leave.models import LeaveBalance, LeaveBalanceHistory

logger = logging.getLogger(__name__)

# ── Pro-rata tables (days granted for the joining year, by joining month) ──

EARNED_LEAVE_BY_MONTH: dict[int, int] = {
    1: 12, 2: 11, 3: 10, 4: 9, 5: 8, 6: 7,
    7: 6, 8: 5, 9: 4, 10: 3, 11: 2, 12: 1,
}
SICK_LEAVE_BY_MONTH: dict[int, int] = {
    1: 8, 2: 7, 3: 7, 4: 6, 5: 6, 6: 5,
    7: 4, 8: 4, 9: 3, 10: 2, 11: 2, 12: 1,
}
CASUAL_LEAVE_BY_MONTH: dict[int, int] = dict(SICK_LEAVE_BY_MONTH)

DEFAULT_ENTITLEMENT: dict[LeaveType, int] = {
    LeaveType.earned: 21,
    LeaveType.sick: 10,
    LeaveType.casual: 6,
}

HALF_DAY = Decimal("0.5")
ZERO = Decimal("0")


def _to_decimal(value: Any) -> Decimal:
    return value if isinstance(value, Decimal) else Decimal(str(value))


def _coerce_leave_type(value: Any) -> LeaveType:
    return value if isinstance(value, LeaveType) else LeaveType(str(value))


def entitlement_for(employee: Employee) -> dict[LeaveType, int]:
    """Full-year entitlement recorded on the employee."""
    return {
        LeaveType.earned: employee.annual_leave_days,
        LeaveType.sick: employee.sick_leave_days,
        LeaveType.casual: employee.casual_leave_days,
    }


class LeaveCalculationService:
    """Pure arithmetic plus the balance-row operations built on it."""

    # ── Pro-rata ────────────────────────────────────────────────────

    @staticmethod
    def calculate_pro_rata_earned_leave(joining_date: date) -> int:
        return EARNED_LEAVE_BY_MONTH[joining_date.month]

    @staticmethod
    def calculate_pro_rata_sick_leave(joining_date: date) -> int:
        return SICK_LEAVE_BY_MONTH[joining_date.month]

    @staticmethod
    def calculate_pro_rata_casual_leave(joining_date: date) -> int:
        return CASUAL_LEAVE_BY_MONTH[joining_date.month]

    @staticmethod
    def calculate_pro_rata_leave(joining_date: date) -> dict[LeaveType, int]:
        return {
            LeaveType.earned: EARNED_LEAVE_BY_MONTH[joining_date.month],
            LeaveType.sick: SICK_LEAVE_BY_MONTH[joining_date.month],
            LeaveType.casual: CASUAL_LEAVE_BY_MONTH[joining_date.month],
        }

    # ── Working days ────────────────────────────────────────────────

    @staticmethod
    def count_working_days(start: date, end: date, holidays: set[date]) -> int:
        """Days in [start, end] that are neither Saturday/Sunday nor in *holidays*."""
        days = 0
        current = start
        while current <= end:
            if current.weekday() < 5 and current not in holidays:
                days += 1
            current += timedelta(days=1)
        return days

    @staticmethod
    async def calculate_working_days(db: AsyncSession, start: date, end: date) -> int:
        if end < start:
            return 0
        holidays = await get_holiday_dates(db, start, end)
        return LeaveCalculationService.count_working_days(start, end, holidays)

    @staticmethod
    async def calculate_days_with_half_day(
        db: AsyncSession,
        start: date,
        end: date,
        is_half_day: bool = False,
    ) -> Decimal:
        """Working days for a request; a half-day request is one day counting 0.5."""
        if is_half_day:
            if start != end:
                raise ValidationException(
                    errors={"is_half_day": ["Half-day leave must start and end on the same day."]},
                )
            working = await LeaveCalculationService.calculate_working_days(db, start, end)
            return HALF_DAY if working else ZERO
        return Decimal(await LeaveCalculationService.calculate_working_days(db, start, end))

    # ── Balance rows ────────────────────────────────────────────────

    @staticmethod
    async def initialize_leave_balances(
        db: AsyncSession,
        employee_id: uuid.UUID,
        joining_date: date,
        manual_overrides: Optional[Mapping[Any, Any]] = None,
        *,
        year: Optional[int] = None,
        full_entitlement: Optional[Mapping[LeaveType, int]] = None,
    ) -> list[LeaveBalance]:
        """Create the sick/casual/earned rows for *year* (default: this year).

        Allocation per type: a manual override when given, otherwise the
        pro-rata table for employees joining during *year*, otherwise the
        full entitlement. Compensation leave has no balance row.
        """
        year = year or date.today().year
        overrides = {
            _coerce_leave_type(k): v
            for k, v in (manual_overrides or {}).items()
            if v is not None
        }
        if joining_date.year == year:
            computed: Mapping[LeaveType, int] = LeaveCalculationService.calculate_pro_rata_leave(
                joining_date,
            )
        else:
            computed = full_entitlement or DEFAULT_ENTITLEMENT

        balances: list[LeaveBalance] = []
        for leave_type in TRACKED_LEAVE_TYPES:
            allocated = _to_decimal(overrides.get(leave_type, computed[leave_type]))
            balance = LeaveBalance(
                employee_id=employee_id,
                year=year,
                leave_type=leave_type,
                total_allocated=allocated,
                used_days=ZERO,
                carry_forward=ZERO,
            )
            balance.recompute()
            db.add(balance)
            balances.append(balance)

        await db.flush()
        return balances

    @staticmethod
    async def get_balance(
        db: AsyncSession,
        employee_id: uuid.UUID,
        year: int,
        leave_type: LeaveType,
        *,
        for_update: bool = False,
    ) -> Optional[LeaveBalance]:
        query = select(LeaveBalance).where(
            LeaveBalance.employee_id == employee_id,
            LeaveBalance.year == year,
            LeaveBalance.leave_type == leave_type,
        )
        if for_update:
            query = query.with_for_update()
        result = await db.execute(query)
        return result.scalars().first()

    @staticmethod
    async def get_leave_balances(
        db: AsyncSession,
        employee_id: uuid.UUID,
        year: Optional[int] = None,
    ) -> Sequence[LeaveBalance]:
        result = await db.execute(
            select(LeaveBalance)
            .where(
                LeaveBalance.employee_id == employee_id,
                LeaveBalance.year == (year or date.today().year),
            )
            .order_by(LeaveBalance.leave_type)
        )
        return result.scalars().all()

    @staticmethod
    async def update_leave_balance(
        db: AsyncSession,
        employee_id: uuid.UUID,
        year: int,
        leave_type: LeaveType,
        days_delta: Any,
    ) -> Optional[LeaveBalance]:
        """Add *days_delta* to ``used_days`` under a row lock.

        Positive deltas debit the balance, negative deltas credit it back.
        Compensation leave is not tracked and returns None.
        """
        leave_type = _coerce_leave_type(leave_type)
        if leave_type == LeaveType.compensation:
            return None

        balance = await LeaveCalculationService.get_balance(
            db, employee_id, year, leave_type, for_update=True,
        )
        if balance is None:
            raise NotFoundException("LeaveBalance", f"{employee_id}/{year}/{leave_type.value}")

        new_used = _to_decimal(balance.used_days) + _to_decimal(days_delta)
        new_available = (
            _to_decimal(balance.total_allocated)
            + _to_decimal(balance.carry_forward)
            - new_used
        )
        if new_available < 0:
            raise BadRequestException(
                detail=(
                    f"Insufficient {leave_type.value} leave balance: "
                    f"{balance.available_days} day(s) available."
                ),
            )

        balance.used_days = new_used
        balance.recompute()
        await db.flush()
        return balance

    @staticmethod
    async def check_leave_availability(
        db: AsyncSession,
        employee_id: uuid.UUID,
        leave_type: LeaveType,
        days: Any,
        year: Optional[int] = None,
    ) -> tuple[bool, Decimal]:
        """Return (enough balance?, available days). Compensation is always available."""
        leave_type = _coerce_leave_type(leave_type)
        if leave_type == LeaveType.compensation:
            return True, ZERO

        balance = await LeaveCalculationService.get_balance(
            db, employee_id, year or date.today().year, leave_type,
        )
        if balance is None:
            return False, ZERO
        available = _to_decimal(balance.available_days)
        return available >= _to_decimal(days), available

    @staticmethod
    async def set_leave_balance(
        db: AsyncSession,
        employee_id: uuid.UUID,
        year: int,
        leave_type: LeaveType,
        total_allocated: Any,
        *,
        carry_forward: Any = None,
        actor_id: Optional[uuid.UUID] = None,
    ) -> LeaveBalance:
        """Admin override of a balance row's allocation (row is created if missing)."""
        leave_type = _coerce_leave_type(leave_type)
        balance = await LeaveCalculationService.get_balance(
            db, employee_id, year, leave_type, for_update=True,
        )
        old_values = None
        if balance is None:
            balance = LeaveBalance(
                employee_id=employee_id,
                year=year,
                leave_type=leave_type,
                used_days=ZERO,
                carry_forward=ZERO,
            )
            db.add(balance)
        else:
            old_values = {
                "total_allocated": str(balance.total_allocated),
                "carry_forward": str(balance.carry_forward),
                "available_days": str(balance.available_days),
            }

        balance.total_allocated = _to_decimal(total_allocated)
        if carry_forward is not None:
            balance.carry_forward = _to_decimal(carry_forward)
        balance.recompute()
        if balance.available_days < 0:
            raise ValidationException(
                errors={leave_type.value: ["Allocation is lower than the days already used."]},
            )
        await db.flush()

        await create_audit_entry(
            db,
            action="update" if old_values else "create",
            entity_type="leave_balance",
            entity_id=balance.id,
            actor_id=actor_id,
            old_values=old_values,
            new_values={
                "employee_id": str(employee_id),
                "year": year,
                "leave_type": leave_type.value,
                "total_allocated": str(balance.total_allocated),
                "carry_forward": str(balance.carry_forward),
                "available_days": str(balance.available_days),
            },
        )
        return balance

    # ── Year end ────────────────────────────────────────────────────

    @staticmethod
    async def process_year_end_balances(
        db: AsyncSession,
        year: int,
        *,
        actor_id: Optional[uuid.UUID] = None,
    ) -> dict[str, int]:
        """Archive *year*'s balances and open *year* + 1.

        Earned leave carries forward up to ``CARRY_FORWARD_CAP`` days; sick and
        casual restart from the employee's entitlement with no carry-forward.
        Rows already archived or already present for the next year are skipped,
        so the run can be repeated safely.
        """
        next_year = year + 1
        cap = Decimal(settings.CARRY_FORWARD_CAP)

        rows = (
            await db.execute(
                select(LeaveBalance, Employee)
                .join(Employee, Employee.id == LeaveBalance.employee_id)
                .where(LeaveBalance.year == year)
            )
        ).all()

        archived_keys = {
            (r.employee_id, r.leave_type)
            for r in (
                await db.execute(
                    select(LeaveBalanceHistory).where(LeaveBalanceHistory.year == year)
                )
            ).scalars().all()
        }
        existing_next = {
            (r.employee_id, r.leave_type)
            for r in (
                await db.execute(select(LeaveBalance).where(LeaveBalance.year == next_year))
            ).scalars().all()
        }

        archived = created = skipped = 0
        for balance, employee in rows:
            key = (balance.employee_id, balance.leave_type)
            if key not in archived_keys:
                db.add(
                    LeaveBalanceHistory(
                        employee_id=balance.employee_id,
                        year=year,
                        leave_type=balance.leave_type,
                        total_allocated=balance.total_allocated,
                        used_days=balance.used_days,
                        available_days=balance.available_days,
                        carry_forward=balance.carry_forward,
                        archived_by=actor_id,
                    )
                )
                archived += 1

            if key in existing_next:
                skipped += 1
                continue

            if balance.leave_type == LeaveType.compensation:
                allocated, carry = ZERO, ZERO
            else:
                allocated = Decimal(entitlement_for(employee)[balance.leave_type])
                carry = ZERO
                if balance.leave_type == LeaveType.earned:
                    carry = max(ZERO, min(_to_decimal(balance.available_days), cap))

            new_balance = LeaveBalance(
                employee_id=balance.employee_id,
                year=next_year,
                leave_type=balance.leave_type,
                total_allocated=allocated,
                used_days=ZERO,
                carry_forward=carry,
            )
            new_balance.recompute()
            db.add(new_balance)
            created += 1

        await db.flush()

        summary = {
            "year": year,
            "archived": archived,
            "created": created,
            "skipped": skipped,
        }
        # One entry per rolled-over year
        await create_audit_entry(
            db,
            action="year_end",
            entity_type="leave_balance",
            entity_id=uuid.uuid5(uuid.NAMESPACE_URL, f"leave-year-end/{year}"),
            actor_id=actor_id,
            new_values=summary,
        )
        logger.info(
            "Year-end %d: archived=%d created=%d skipped=%d",
            year, archived, created, skipped,
        )
        return summary
