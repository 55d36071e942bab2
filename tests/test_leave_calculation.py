"""Leave calculation tests: pro-rata tables, working days, balance debit/credit
and the year-end rollover.

Tests run against SQLite via the shared conftest.py fixtures.
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from backend.common.constants import LeaveType
from backend.common.exceptions import (
    BadRequestException,
    NotFoundException,
    ValidationException,
)
from backend.leave.calculation import LeaveCalculationService
from backend.leave.models import LeaveBalance, LeaveBalanceHistory
from tests.conftest import load_balance, make_employee, make_holiday


# ═════════════════════════════════════════════════════════════════════
# 1. Pro-rata tables: pure logic (no DB)
# ═════════════════════════════════════════════════════════════════════


class TestProRata:

    def test_march_joiner_gets_ten_earned_days_regardless_of_day(self):
        assert LeaveCalculationService.calculate_pro_rata_earned_leave(date(2026, 3, 1)) == 10
        assert LeaveCalculationService.calculate_pro_rata_earned_leave(date(2026, 3, 15)) == 10
        assert LeaveCalculationService.calculate_pro_rata_earned_leave(date(2026, 3, 31)) == 10

    def test_table_endpoints(self):
        jan, dec = date(2026, 1, 10), date(2026, 12, 10)
        assert LeaveCalculationService.calculate_pro_rata_earned_leave(jan) == 12
        assert LeaveCalculationService.calculate_pro_rata_earned_leave(dec) == 1
        assert LeaveCalculationService.calculate_pro_rata_sick_leave(jan) == 8
        assert LeaveCalculationService.calculate_pro_rata_casual_leave(dec) == 1

    def test_combined_lookup(self):
        result = LeaveCalculationService.calculate_pro_rata_leave(date(2026, 7, 1))
        assert result == {LeaveType.earned: 6, LeaveType.sick: 4, LeaveType.casual: 4}


# ═════════════════════════════════════════════════════════════════════
# 2. Working days
# ═════════════════════════════════════════════════════════════════════


class TestWorkingDays:

    def test_full_week_excludes_weekend(self):
        # 2026-02-23 is Monday, 2026-03-01 is Sunday
        assert LeaveCalculationService.count_working_days(
            date(2026, 2, 23), date(2026, 3, 1), set(),
        ) == 5

    def test_weekend_only_range_is_zero(self):
        assert LeaveCalculationService.count_working_days(
            date(2026, 2, 28), date(2026, 3, 1), set(),
        ) == 0

    async def test_midweek_holiday_excluded(self, db: AsyncSession):
        await make_holiday(db, date(2026, 2, 25), name="Founders Day")
        days = await LeaveCalculationService.calculate_working_days(
            db, date(2026, 2, 23), date(2026, 2, 27),
        )
        assert days == 4

    async def test_inactive_holiday_ignored(self, db: AsyncSession):
        await make_holiday(db, date(2026, 2, 25), is_active=False)
        days = await LeaveCalculationService.calculate_working_days(
            db, date(2026, 2, 23), date(2026, 2, 27),
        )
        assert days == 5

    async def test_recurring_holiday_applies_in_later_years(self, db: AsyncSession):
        # Recorded in 2024, recurs on 2026-02-25 (Wednesday)
        await make_holiday(db, date(2024, 2, 25), is_recurring=True)
        days = await LeaveCalculationService.calculate_working_days(
            db, date(2026, 2, 23), date(2026, 2, 27),
        )
        assert days == 4

    async def test_reversed_range_is_zero(self, db: AsyncSession):
        days = await LeaveCalculationService.calculate_working_days(
            db, date(2026, 2, 27), date(2026, 2, 23),
        )
        assert days == 0

    async def test_half_day_counts_half(self, db: AsyncSession):
        days = await LeaveCalculationService.calculate_days_with_half_day(
            db, date(2026, 2, 23), date(2026, 2, 23), True,
        )
        assert days == Decimal("0.5")

    async def test_half_day_on_weekend_is_zero(self, db: AsyncSession):
        days = await LeaveCalculationService.calculate_days_with_half_day(
            db, date(2026, 2, 28), date(2026, 2, 28), True,
        )
        assert days == Decimal("0")

    async def test_half_day_spanning_days_rejected(self, db: AsyncSession):
        with pytest.raises(ValidationException) as exc_info:
            await LeaveCalculationService.calculate_days_with_half_day(
                db, date(2026, 2, 23), date(2026, 2, 24), True,
            )
        assert "is_half_day" in exc_info.value.errors


# ═════════════════════════════════════════════════════════════════════
# 3. Balance initialization
# ═════════════════════════════════════════════════════════════════════


class TestInitializeBalances:

    async def test_joining_year_uses_pro_rata(self, db: AsyncSession):
        emp = await make_employee(db, joining_date=date(2026, 3, 15))
        balances = await LeaveCalculationService.initialize_leave_balances(
            db, emp.id, emp.joining_date, year=2026,
        )
        by_type = {b.leave_type: b for b in balances}
        assert set(by_type) == {LeaveType.sick, LeaveType.casual, LeaveType.earned}
        assert by_type[LeaveType.earned].total_allocated == Decimal("10")
        assert by_type[LeaveType.sick].total_allocated == Decimal("7")
        assert by_type[LeaveType.earned].available_days == Decimal("10")

    async def test_later_year_uses_full_entitlement(self, db: AsyncSession):
        emp = await make_employee(db, joining_date=date(2024, 3, 15))
        balances = await LeaveCalculationService.initialize_leave_balances(
            db,
            emp.id,
            emp.joining_date,
            year=2026,
            full_entitlement={LeaveType.earned: 25, LeaveType.sick: 12, LeaveType.casual: 8},
        )
        by_type = {b.leave_type: b.total_allocated for b in balances}
        assert by_type == {
            LeaveType.sick: Decimal("12"),
            LeaveType.casual: Decimal("8"),
            LeaveType.earned: Decimal("25"),
        }

    async def test_manual_overrides_win(self, db: AsyncSession):
        emp = await make_employee(db, joining_date=date(2026, 3, 15))
        balances = await LeaveCalculationService.initialize_leave_balances(
            db,
            emp.id,
            emp.joining_date,
            {"earned": 4, LeaveType.sick: None},
            year=2026,
        )
        by_type = {b.leave_type: b.total_allocated for b in balances}
        assert by_type[LeaveType.earned] == Decimal("4")
        # None override falls back to the table
        assert by_type[LeaveType.sick] == Decimal("7")

    async def test_no_compensation_row(self, db: AsyncSession):
        emp = await make_employee(db, balance_years=(2026,))
        rows = (
            await db.execute(select(LeaveBalance).where(LeaveBalance.employee_id == emp.id))
        ).scalars().all()
        assert len(rows) == 3
        assert LeaveType.compensation not in {r.leave_type for r in rows}


# ═════════════════════════════════════════════════════════════════════
# 4. Balance debit / credit
# ═════════════════════════════════════════════════════════════════════


class TestUpdateLeaveBalance:

    async def test_debit_recomputes_available(self, db: AsyncSession):
        emp = await make_employee(db, balance_years=(2026,))
        balance = await LeaveCalculationService.update_leave_balance(
            db, emp.id, 2026, LeaveType.casual, Decimal("2"),
        )
        assert balance.used_days == Decimal("2")
        assert balance.available_days == Decimal("4")
        assert balance.available_days == (
            balance.total_allocated + balance.carry_forward - balance.used_days
        )

    async def test_debit_then_credit_restores_exactly(self, db: AsyncSession):
        emp = await make_employee(db, balance_years=(2026,))
        before = (await load_balance(db, emp.id, 2026, LeaveType.earned)).available_days

        await LeaveCalculationService.update_leave_balance(db, emp.id, 2026, LeaveType.earned, Decimal("3.5"))
        await LeaveCalculationService.update_leave_balance(db, emp.id, 2026, LeaveType.earned, Decimal("-3.5"))

        after = await load_balance(db, emp.id, 2026, LeaveType.earned)
        assert after.available_days == before
        assert after.used_days == Decimal("0")

    async def test_overdraw_rejected_and_row_untouched(self, db: AsyncSession):
        emp = await make_employee(db, balance_years=(2026,))
        with pytest.raises(BadRequestException):
            await LeaveCalculationService.update_leave_balance(
                db, emp.id, 2026, LeaveType.casual, Decimal("7"),
            )
        balance = await load_balance(db, emp.id, 2026, LeaveType.casual)
        assert balance.used_days == Decimal("0")
        assert balance.available_days == Decimal("6")

    async def test_compensation_is_noop(self, db: AsyncSession):
        emp = await make_employee(db)
        result = await LeaveCalculationService.update_leave_balance(
            db, emp.id, 2026, LeaveType.compensation, Decimal("100"),
        )
        assert result is None

    async def test_missing_row_not_found(self, db: AsyncSession):
        emp = await make_employee(db)
        with pytest.raises(NotFoundException):
            await LeaveCalculationService.update_leave_balance(
                db, emp.id, 2026, LeaveType.sick, Decimal("1"),
            )


class TestCheckAvailability:

    async def test_enough_and_not_enough(self, db: AsyncSession):
        emp = await make_employee(db, balance_years=(2026,))
        ok, available = await LeaveCalculationService.check_leave_availability(
            db, emp.id, LeaveType.casual, Decimal("6"), 2026,
        )
        assert ok is True
        assert available == Decimal("6")

        ok, _ = await LeaveCalculationService.check_leave_availability(
            db, emp.id, LeaveType.casual, Decimal("6.5"), 2026,
        )
        assert ok is False

    async def test_compensation_always_available(self, db: AsyncSession):
        emp = await make_employee(db)
        ok, _ = await LeaveCalculationService.check_leave_availability(
            db, emp.id, LeaveType.compensation, Decimal("30"), 2026,
        )
        assert ok is True

    async def test_no_row_means_unavailable(self, db: AsyncSession):
        emp = await make_employee(db)
        ok, available = await LeaveCalculationService.check_leave_availability(
            db, emp.id, LeaveType.sick, Decimal("1"), 2026,
        )
        assert ok is False
        assert available == Decimal("0")


class TestSetLeaveBalance:

    async def test_override_keeps_used_days(self, db: AsyncSession):
        emp = await make_employee(db, balance_years=(2026,))
        await LeaveCalculationService.update_leave_balance(db, emp.id, 2026, LeaveType.earned, Decimal("5"))

        balance = await LeaveCalculationService.set_leave_balance(
            db, emp.id, 2026, LeaveType.earned, Decimal("30"), carry_forward=Decimal("2"),
        )
        assert balance.used_days == Decimal("5")
        assert balance.available_days == Decimal("27")

    async def test_allocation_below_used_rejected(self, db: AsyncSession):
        emp = await make_employee(db, balance_years=(2026,))
        await LeaveCalculationService.update_leave_balance(db, emp.id, 2026, LeaveType.sick, Decimal("4"))

        with pytest.raises(ValidationException):
            await LeaveCalculationService.set_leave_balance(
                db, emp.id, 2026, LeaveType.sick, Decimal("3"),
            )

    async def test_missing_row_is_created(self, db: AsyncSession):
        emp = await make_employee(db)
        balance = await LeaveCalculationService.set_leave_balance(
            db, emp.id, 2027, LeaveType.casual, Decimal("9"),
        )
        assert balance.year == 2027
        assert balance.available_days == Decimal("9")


# ═════════════════════════════════════════════════════════════════════
# 5. Year end
# ═════════════════════════════════════════════════════════════════════


class TestYearEnd:

    async def test_earned_carry_forward_capped_at_five(self, db: AsyncSession):
        emp = await make_employee(db, balance_years=(2026,))
        await LeaveCalculationService.update_leave_balance(db, emp.id, 2026, LeaveType.earned, Decimal("3"))

        summary = await LeaveCalculationService.process_year_end_balances(db, 2026)
        await db.commit()

        assert summary["created"] == 3
        earned = await load_balance(db, emp.id, 2027, LeaveType.earned)
        # 18 days left, capped at 5
        assert earned.carry_forward == Decimal("5")
        assert earned.total_allocated == Decimal("21")
        assert earned.available_days == Decimal("26")

    async def test_small_earned_remainder_carried_in_full(self, db: AsyncSession):
        emp = await make_employee(db, balance_years=(2026,))
        await LeaveCalculationService.update_leave_balance(db, emp.id, 2026, LeaveType.earned, Decimal("19"))

        await LeaveCalculationService.process_year_end_balances(db, 2026)
        earned = await load_balance(db, emp.id, 2027, LeaveType.earned)
        assert earned.carry_forward == Decimal("2")

    async def test_sick_and_casual_reset(self, db: AsyncSession):
        emp = await make_employee(db, balance_years=(2026,))
        await LeaveCalculationService.update_leave_balance(db, emp.id, 2026, LeaveType.casual, Decimal("1"))

        await LeaveCalculationService.process_year_end_balances(db, 2026)
        casual = await load_balance(db, emp.id, 2027, LeaveType.casual)
        sick = await load_balance(db, emp.id, 2027, LeaveType.sick)
        assert casual.carry_forward == Decimal("0")
        assert casual.available_days == Decimal("6")
        assert sick.available_days == Decimal("10")

    async def test_rerun_is_idempotent(self, db: AsyncSession):
        await make_employee(db, balance_years=(2026,))

        first = await LeaveCalculationService.process_year_end_balances(db, 2026)
        await db.commit()
        second = await LeaveCalculationService.process_year_end_balances(db, 2026)
        await db.commit()

        assert first["archived"] == 3
        assert second == {"year": 2026, "archived": 0, "created": 0, "skipped": 3}
        history = (
            await db.execute(select(LeaveBalanceHistory).where(LeaveBalanceHistory.year == 2026))
        ).scalars().all()
        assert len(history) == 3
        next_rows = (
            await db.execute(select(LeaveBalance).where(LeaveBalance.year == 2027))
        ).scalars().all()
        assert len(next_rows) == 3
