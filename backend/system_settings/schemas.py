"""System settings schemas."""


from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class SettingOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    key: str
    value: str
    description: Optional[str] = None
    updated_at: Optional[datetime] = None


class SettingUpdate(BaseModel):
    value: str = Field(..., max_length=10_000)
    description: Optional[str] = None


class AutoApproveToggle(BaseModel):
    enabled: bool


class BrandingOut(BaseModel):
    logo_url: Optional[str] = None
    favicon_url: Optional[str] = None
