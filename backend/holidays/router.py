"""Holiday endpoints. Reads for any authenticated user; writes for admins."""


import uuid
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from backend.auth.dependencies import get_current_user, require_role
from backend.auth.models import User
from backend.common.constants import UserRole
from backend.database import get_db
from backend.holidays.schemas import HolidayCreate, HolidayResponse, HolidayUpdate
from backend.holidays.service import HolidayService

router = APIRouter(prefix="", tags=["holidays"])


@router.get("")
async def list_holidays(
    year: Optional[int] = Query(None, ge=1970, le=2100),
    is_active: Optional[bool] = Query(None),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    holidays = await HolidayService.list_holidays(db, year=year, is_active=is_active)
    return {
        "data": [HolidayResponse.model_validate(h).model_dump(mode="json") for h in holidays],
    }


@router.get("/upcoming")
async def upcoming_holidays(
    days: int = Query(30, ge=1, le=366),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    pairs = await HolidayService.upcoming_holidays(db, days)
    data = []
    for occurrence, holiday in pairs:
        item = HolidayResponse.model_validate(holiday).model_dump(mode="json")
        item["date"] = occurrence.isoformat()
        data.append(item)
    return {"data": data}


@router.get("/stats")
async def holiday_stats(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_role(UserRole.admin)),
):
    stats = await HolidayService.get_stats(db)
    return {"data": stats.model_dump()}


@router.get("/{holiday_id}")
async def get_holiday(
    holiday_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    holiday = await HolidayService.get_holiday(db, holiday_id)
    return {"data": HolidayResponse.model_validate(holiday).model_dump(mode="json")}


@router.post("", status_code=201)
async def create_holiday(
    body: HolidayCreate,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_role(UserRole.admin)),
):
    holiday = await HolidayService.create_holiday(db, body)
    await db.refresh(holiday)
    return {
        "data": HolidayResponse.model_validate(holiday).model_dump(mode="json"),
        "message": "Holiday created successfully.",
    }


@router.put("/{holiday_id}")
async def update_holiday(
    holiday_id: uuid.UUID,
    body: HolidayUpdate,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_role(UserRole.admin)),
):
    holiday = await HolidayService.update_holiday(db, holiday_id, body)
    await db.refresh(holiday)
    return {
        "data": HolidayResponse.model_validate(holiday).model_dump(mode="json"),
        "message": "Holiday updated successfully.",
    }


@router.delete("/{holiday_id}", status_code=204)
async def delete_holiday(
    holiday_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_role(UserRole.admin)),
):
    await HolidayService.delete_holiday(db, holiday_id)
