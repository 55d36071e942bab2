"""System settings endpoints (admin), plus public branding lookup."""


from fastapi import APIRouter, Depends, File, UploadFile
from sqlalchemy.ext.asyncio import AsyncSession

from backend.auth.dependencies import require_role
from backend.auth.models import User
from backend.common.constants import UserRole
from backend.database import get_db
from backend.system_settings.schemas import (
    AutoApproveToggle,
    BrandingOut,
    SettingOut,
    SettingUpdate,
)
from backend.system_settings.service import SettingsService

router = APIRouter(prefix="", tags=["settings"])


# ── Public ──────────────────────────────────────────────────────────

@router.get("/branding", response_model=BrandingOut)
async def get_branding(db: AsyncSession = Depends(get_db)):
    return await SettingsService.get_branding(db)


# ── Auto-approve ────────────────────────────────────────────────────

@router.get("/auto-approve/status")
async def auto_approve_status(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_role(UserRole.admin)),
):
    enabled = await SettingsService.get_auto_approve_enabled(db)
    return {"data": {"enabled": enabled}}


@router.post("/auto-approve/toggle")
async def auto_approve_toggle(
    body: AutoApproveToggle,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_role(UserRole.admin)),
):
    await SettingsService.set_auto_approve_enabled(db, body.enabled)
    state = "enabled" if body.enabled else "disabled"
    return {"data": {"enabled": body.enabled}, "message": f"Auto-approval {state}."}


# ── Branding uploads ────────────────────────────────────────────────

@router.post("/branding/logo")
async def upload_logo(
    file: UploadFile = File(...),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_role(UserRole.admin)),
):
    url = await SettingsService.save_branding_asset(db, "logo", file)
    return {"data": {"url": url}, "message": "Logo uploaded successfully."}


@router.post("/branding/favicon")
async def upload_favicon(
    file: UploadFile = File(...),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_role(UserRole.admin)),
):
    url = await SettingsService.save_branding_asset(db, "favicon", file)
    return {"data": {"url": url}, "message": "Favicon uploaded successfully."}


# ── Generic key/value ───────────────────────────────────────────────

@router.get("")
async def list_settings(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_role(UserRole.admin)),
):
    items = await SettingsService.get_all_settings(db)
    return {"data": [SettingOut.model_validate(s).model_dump(mode="json") for s in items]}


@router.get("/{key}")
async def get_setting(
    key: str,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_role(UserRole.admin)),
):
    setting = await SettingsService.get_setting(db, key)
    return {"data": SettingOut.model_validate(setting).model_dump(mode="json")}


@router.put("/{key}")
async def update_setting(
    key: str,
    body: SettingUpdate,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_role(UserRole.admin)),
):
    setting = await SettingsService.update_setting(db, key, body.value, body.description)
    return {
        "data": SettingOut.model_validate(setting).model_dump(mode="json"),
        "message": "Setting updated successfully.",
    }
