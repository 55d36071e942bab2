"""Holiday CRUD and the holiday-date lookup used by working-day counting."""

from __future__ import annotations

import uuid
from datetime import date, timedelta
from typing import Optional, Sequence

from sqlalchemy import and_, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from backend.common.exceptions import NotFoundException
from backend.holidays.models import Holiday
from backend.holidays.schemas import HolidayCreate, HolidayStats, HolidayUpdate


def _project(holiday_date: date, year: int) -> date:
    """Place a recurring holiday in *year*. Feb 29 falls back to Feb 28."""
    try:
        return holiday_date.replace(year=year)
    except ValueError:
        return date(year, 2, 28)


class HolidayService:
    """Async CRUD for holidays."""

    @staticmethod
    async def list_holidays(
        db: AsyncSession,
        *,
        year: Optional[int] = None,
        is_active: Optional[bool] = None,
    ) -> Sequence[Holiday]:
        query = select(Holiday).order_by(Holiday.date)
        if year is not None:
            query = query.where(
                or_(
                    Holiday.date.between(date(year, 1, 1), date(year, 12, 31)),
                    Holiday.is_recurring.is_(True),
                )
            )
        if is_active is not None:
            query = query.where(Holiday.is_active == is_active)
        result = await db.execute(query)
        return result.scalars().all()

    @staticmethod
    async def get_holiday(db: AsyncSession, holiday_id: uuid.UUID) -> Holiday:
        holiday = await db.get(Holiday, holiday_id)
        if holiday is None:
            raise NotFoundException("Holiday", str(holiday_id))
        return holiday

    @staticmethod
    async def create_holiday(db: AsyncSession, data: HolidayCreate) -> Holiday:
        holiday = Holiday(**data.model_dump())
        db.add(holiday)
        await db.flush()
        return holiday

    @staticmethod
    async def update_holiday(
        db: AsyncSession,
        holiday_id: uuid.UUID,
        data: HolidayUpdate,
    ) -> Holiday:
        holiday = await HolidayService.get_holiday(db, holiday_id)
        for field, value in data.model_dump(exclude_unset=True).items():
            setattr(holiday, field, value)
        await db.flush()
        return holiday

    @staticmethod
    async def delete_holiday(db: AsyncSession, holiday_id: uuid.UUID) -> None:
        holiday = await HolidayService.get_holiday(db, holiday_id)
        await db.delete(holiday)
        await db.flush()

    @staticmethod
    async def upcoming_holidays(
        db: AsyncSession,
        days: int = 30,
        *,
        today: Optional[date] = None,
    ) -> list[tuple[date, Holiday]]:
        """Active holidays within the next *days* days as (occurrence date, holiday)."""
        start = today or date.today()
        end = start + timedelta(days=days)
        occurrences = await HolidayService._occurrences(db, start, end)
        return sorted(occurrences, key=lambda pair: pair[0])

    @staticmethod
    async def get_stats(db: AsyncSession, *, today: Optional[date] = None) -> HolidayStats:
        today = today or date.today()
        total = (await db.execute(select(func.count()).select_from(Holiday))).scalar() or 0
        active = (
            await db.execute(
                select(func.count()).select_from(Holiday).where(Holiday.is_active.is_(True))
            )
        ).scalar() or 0
        upcoming = await HolidayService._occurrences(db, today, date(today.year, 12, 31))
        return HolidayStats(
            total_holidays=total,
            active_holidays=active,
            upcoming_holidays=len(upcoming),
        )

    @staticmethod
    async def _occurrences(
        db: AsyncSession,
        start: date,
        end: date,
    ) -> list[tuple[date, Holiday]]:
        result = await db.execute(
            select(Holiday).where(
                Holiday.is_active.is_(True),
                or_(
                    and_(Holiday.date >= start, Holiday.date <= end),
                    Holiday.is_recurring.is_(True),
                ),
            )
        )
        pairs: list[tuple[date, Holiday]] = []
        for holiday in result.scalars().all():
            if not holiday.is_recurring:
                pairs.append((holiday.date, holiday))
                continue
            for year in range(start.year, end.year + 1):
                occurrence = _project(holiday.date, year)
                if start <= occurrence <= end and occurrence >= holiday.date:
                    pairs.append((occurrence, holiday))
        return pairs


async def get_holiday_dates(db: AsyncSession, start: date, end: date) -> set[date]:
    """Active holiday dates between *start* and *end* inclusive."""
    return {occurrence for occurrence, _ in await HolidayService._occurrences(db, start, end)}
