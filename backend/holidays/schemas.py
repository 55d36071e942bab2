"""Holiday Pydantic schemas."""


import datetime as dt
import uuid
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class HolidayCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=150)
    date: dt.date
    description: Optional[str] = None
    is_recurring: bool = False
    is_active: bool = True


class HolidayUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=150)
    date: Optional[dt.date] = None
    description: Optional[str] = None
    is_recurring: Optional[bool] = None
    is_active: Optional[bool] = None


class HolidayResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    name: str
    date: dt.date
    description: Optional[str] = None
    is_recurring: bool
    is_active: bool
    created_at: Optional[dt.datetime] = None


class HolidayStats(BaseModel):
    total_holidays: int
    active_holidays: int
    upcoming_holidays: int
