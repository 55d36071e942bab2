"""System settings tests: key/value store, auto-approve flag and branding uploads."""

from __future__ import annotations

import io

import pytest
from fastapi import UploadFile
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.datastructures import Headers

from backend.common.constants import SETTING_AUTO_APPROVE
from backend.common.exceptions import BadRequestException, NotFoundException
from backend.config import settings
from backend.system_settings.service import SettingsService
from tests.conftest import auth_headers_for, make_employee

PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 32


def _upload(filename: str, content: bytes, content_type: str) -> UploadFile:
    return UploadFile(
        file=io.BytesIO(content),
        filename=filename,
        headers=Headers({"content-type": content_type}),
    )


@pytest.fixture
def upload_dir(tmp_path, monkeypatch):
    monkeypatch.setattr(settings, "UPLOAD_DIR", str(tmp_path))
    return tmp_path


class TestSettingsService:

    async def test_upsert(self, db: AsyncSession):
        created = await SettingsService.update_setting(db, "company_name", "Acme", "Shown in mails")
        await db.commit()
        assert created.value == "Acme"

        updated = await SettingsService.update_setting(db, "company_name", "Acme Ltd")
        assert updated.value == "Acme Ltd"
        assert updated.description == "Shown in mails"

    async def test_get_missing(self, db: AsyncSession):
        with pytest.raises(NotFoundException):
            await SettingsService.get_setting(db, "nope")
        assert await SettingsService.find_setting(db, "nope") is None

    async def test_auto_approve_flag(self, db: AsyncSession):
        assert await SettingsService.get_auto_approve_enabled(db) is False
        await SettingsService.set_auto_approve_enabled(db, True)
        assert await SettingsService.get_auto_approve_enabled(db) is True
        assert (await SettingsService.get_setting(db, SETTING_AUTO_APPROVE)).value == "true"

    async def test_branding_defaults(self, db: AsyncSession):
        assert await SettingsService.get_branding(db) == {"logo_url": None, "favicon_url": None}


class TestBrandingUploads:

    async def test_logo_saved_under_generated_name(self, db: AsyncSession, upload_dir):
        url = await SettingsService.save_branding_asset(
            db, "logo", _upload("../../evil name.PNG", PNG_BYTES, "image/png"),
        )
        assert url.startswith("/uploads/branding/logo-")
        assert url.endswith(".png")

        stored = list((upload_dir / "branding").iterdir())
        assert len(stored) == 1
        assert stored[0].read_bytes() == PNG_BYTES
        assert (await SettingsService.get_branding(db))["logo_url"] == url

    async def test_wrong_type_rejected(self, db: AsyncSession, upload_dir):
        with pytest.raises(BadRequestException):
            await SettingsService.save_branding_asset(
                db, "favicon", _upload("icon.jpg", PNG_BYTES, "image/jpeg"),
            )

    async def test_empty_file_rejected(self, db: AsyncSession, upload_dir):
        with pytest.raises(BadRequestException) as exc_info:
            await SettingsService.save_branding_asset(db, "logo", _upload("logo.png", b"", "image/png"))
        assert exc_info.value.detail == "Uploaded file is empty."

    async def test_too_large_rejected(self, db: AsyncSession, upload_dir, monkeypatch):
        monkeypatch.setattr(settings, "MAX_UPLOAD_SIZE_MB", 0)
        with pytest.raises(BadRequestException):
            await SettingsService.save_branding_asset(db, "logo", _upload("logo.png", PNG_BYTES, "image/png"))

    async def test_unknown_kind(self, db: AsyncSession, upload_dir):
        with pytest.raises(NotFoundException):
            await SettingsService.save_branding_asset(db, "banner", _upload("b.png", PNG_BYTES, "image/png"))


class TestSettingsAPI:

    async def test_put_then_get(self, client, admin_headers):
        resp = await client.put(
            "/api/v1/settings/company_name", json={"value": "Acme"}, headers=admin_headers,
        )
        assert resp.status_code == 200
        assert resp.json()["data"]["value"] == "Acme"

        fetched = await client.get("/api/v1/settings/company_name", headers=admin_headers)
        assert fetched.json()["data"]["value"] == "Acme"

        listed = await client.get("/api/v1/settings", headers=admin_headers)
        assert [s["key"] for s in listed.json()["data"]] == ["company_name"]

    async def test_missing_key_is_404(self, client, admin_headers):
        resp = await client.get("/api/v1/settings/nope", headers=admin_headers)
        assert resp.status_code == 404

    async def test_auto_approve_toggle(self, client, admin_headers):
        resp = await client.post(
            "/api/v1/settings/auto-approve/toggle", json={"enabled": True}, headers=admin_headers,
        )
        assert resp.status_code == 200
        assert resp.json()["message"] == "Auto-approval enabled."

        status = await client.get("/api/v1/settings/auto-approve/status", headers=admin_headers)
        assert status.json()["data"] == {"enabled": True}

    async def test_branding_is_public(self, client, admin_headers, upload_dir):
        resp = await client.post(
            "/api/v1/settings/branding/logo",
            files={"file": ("logo.png", PNG_BYTES, "image/png")},
            headers=admin_headers,
        )
        assert resp.status_code == 200, resp.text
        url = resp.json()["data"]["url"]

        branding = await client.get("/api/v1/settings/branding")
        assert branding.status_code == 200
        assert branding.json() == {"logo_url": url, "favicon_url": None}

    async def test_employee_cannot_write(self, client, db: AsyncSession):
        emp = await make_employee(db)
        resp = await client.put(
            "/api/v1/settings/company_name", json={"value": "x"}, headers=auth_headers_for(emp.user),
        )
        assert resp.status_code == 403
