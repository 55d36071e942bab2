"""System settings store and branding uploads."""

from __future__ import annotations

import logging
import os
import uuid
from typing import Optional, Sequence

from fastapi import UploadFile
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from backend.common.constants import (
    SETTING_AUTO_APPROVE,
    SETTING_COMPANY_FAVICON,
    SETTING_COMPANY_LOGO,
)
from backend.common.dates import utcnow
from backend.common.exceptions import BadRequestException, NotFoundException
from backend.config import settings
from backend.system_settings.models import SystemSetting

logger = logging.getLogger(__name__)

BRANDING_SUBDIR = "branding"

# kind → (settings key, allowed MIME types)
BRANDING_ASSETS: dict[str, tuple[str, set[str]]] = {
    "logo": (
        SETTING_COMPANY_LOGO,
        {"image/png", "image/jpeg", "image/gif", "image/svg+xml", "image/webp"},
    ),
    "favicon": (
        SETTING_COMPANY_FAVICON,
        {"image/x-icon", "image/vnd.microsoft.icon", "image/png", "image/svg+xml"},
    ),
}


class SettingsService:
    """Async access to the ``system_settings`` table."""

    @staticmethod
    async def find_setting(db: AsyncSession, key: str) -> Optional[SystemSetting]:
        return await db.get(SystemSetting, key)

    @staticmethod
    async def get_setting(db: AsyncSession, key: str) -> SystemSetting:
        setting = await db.get(SystemSetting, key)
        if setting is None:
            raise NotFoundException("Setting", key)
        return setting

    @staticmethod
    async def get_all_settings(db: AsyncSession) -> Sequence[SystemSetting]:
        result = await db.execute(select(SystemSetting).order_by(SystemSetting.key))
        return result.scalars().all()

    @staticmethod
    async def update_setting(
        db: AsyncSession,
        key: str,
        value: str,
        description: Optional[str] = None,
    ) -> SystemSetting:
        """Upsert a setting."""
        setting = await db.get(SystemSetting, key)
        if setting is None:
            setting = SystemSetting(key=key, value=value, description=description)
            db.add(setting)
        else:
            setting.value = value
            if description is not None:
                setting.description = description
        setting.updated_at = utcnow()
        await db.flush()
        return setting

    @staticmethod
    async def get_auto_approve_enabled(db: AsyncSession) -> bool:
        setting = await db.get(SystemSetting, SETTING_AUTO_APPROVE)
        return setting is not None and setting.value.strip().lower() == "true"

    @staticmethod
    async def set_auto_approve_enabled(db: AsyncSession, enabled: bool) -> SystemSetting:
        return await SettingsService.update_setting(
            db,
            SETTING_AUTO_APPROVE,
            "true" if enabled else "false",
            "Automatically approve pending leave requests whose start date has passed",
        )

    @staticmethod
    async def get_branding(db: AsyncSession) -> dict[str, Optional[str]]:
        logo = await db.get(SystemSetting, SETTING_COMPANY_LOGO)
        favicon = await db.get(SystemSetting, SETTING_COMPANY_FAVICON)
        return {
            "logo_url": (logo.value or None) if logo else None,
            "favicon_url": (favicon.value or None) if favicon else None,
        }

    @staticmethod
    async def save_branding_asset(db: AsyncSession, kind: str, file: UploadFile) -> str:
        """Store an uploaded logo/favicon and record its URL. Returns the URL."""
        if kind not in BRANDING_ASSETS:
            raise NotFoundException("Branding asset", kind)
        key, allowed_types = BRANDING_ASSETS[kind]

        if file.content_type not in allowed_types:
            raise BadRequestException(
                detail=f"File type '{file.content_type}' not allowed for {kind}.",
            )

        contents = await file.read()
        max_size = settings.MAX_UPLOAD_SIZE_MB * 1024 * 1024
        if not contents:
            raise BadRequestException(detail="Uploaded file is empty.")
        if len(contents) > max_size:
            raise BadRequestException(
                detail=f"File too large. Maximum size is {settings.MAX_UPLOAD_SIZE_MB} MB.",
            )

        upload_dir = os.path.join(settings.UPLOAD_DIR, BRANDING_SUBDIR)
        os.makedirs(upload_dir, exist_ok=True)

        # Generated filename; only the extension of the original is kept
        ext = os.path.splitext(file.filename or "")[1].lower()
        safe_name = f"{kind}-{uuid.uuid4().hex}{ext}"
        with open(os.path.join(upload_dir, safe_name), "wb") as f:
            f.write(contents)

        url = f"/uploads/{BRANDING_SUBDIR}/{safe_name}"
        await SettingsService.update_setting(db, key, url)
        logger.info("Stored %s upload as %s", kind, safe_name)
        return url
