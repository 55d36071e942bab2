"""CSV bulk import tests: parsing, row validation, per-row commits and the
upload endpoint."""

from __future__ import annotations

from datetime import date
from unittest.mock import AsyncMock, patch

import pytest
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from backend.admin.bulk_import import (
    CSV_COLUMNS,
    BulkImportService,
    generate_csv_template,
    parse_csv,
    validate_row,
)
from backend.common.constants import UserRole
from backend.common.exceptions import BadRequestException
from backend.core_hr.models import Department, Employee
from backend.mail.service import MailService
from tests.conftest import auth_headers_for, load_user, make_employee

HEADER = "employee_id,first_name,last_name,email,department,joining_date,manager_email,probation_months\n"


def _csv(*rows: str) -> bytes:
    return (HEADER + "".join(r + "\n" for r in rows)).encode("utf-8")


def _valid_row(**overrides) -> dict[str, str]:
    row = {
        "employee_id": "E1",
        "first_name": "Anil",
        "last_name": "Kumar",
        "email": "anil@example.com",
        "department": "IT",
        "joining_date": "2024-01-15",
    }
    row.update(overrides)
    return row


async def _employee_by_code(db: AsyncSession, code: str) -> Employee:
    return (
        await db.execute(
            select(Employee).where(Employee.employee_id == code).execution_options(populate_existing=True)
        )
    ).scalars().first()


# ═════════════════════════════════════════════════════════════════════
# 1. PARSING / ROW VALIDATION
# ═════════════════════════════════════════════════════════════════════


class TestParseCsv:

    def test_strips_values_and_skips_blank_lines(self):
        rows = parse_csv(_csv(" E1 , Anil ,Kumar,anil@example.com,IT,2024-01-15,,", ",,,,,,,"))
        assert len(rows) == 1
        assert rows[0]["employee_id"] == "E1"
        assert rows[0]["first_name"] == "Anil"

    def test_handles_utf8_bom(self):
        rows = parse_csv("\ufeff".encode("utf-8") + _csv("E1,Anil,Kumar,anil@example.com,IT,2024-01-15,,"))
        assert rows[0]["employee_id"] == "E1"

    def test_missing_required_columns(self):
        with pytest.raises(BadRequestException) as exc_info:
            parse_csv(b"employee_id,first_name\nE1,Anil\n")
        assert "department" in exc_info.value.detail
        assert "email" in exc_info.value.detail

    def test_non_utf8_rejected(self):
        with pytest.raises(BadRequestException):
            parse_csv(HEADER.encode("utf-8") + b"\xff\xfe\xfa\n")

    def test_template_round_trips_through_parser(self):
        content = generate_csv_template()
        assert content.splitlines()[0] == ",".join(CSV_COLUMNS)
        assert len(parse_csv(content.encode("utf-8"))) == 3


class TestValidateRow:

    def test_valid_row(self):
        assert validate_row(_valid_row()) == []

    def test_missing_fields(self):
        errors = validate_row(_valid_row(employee_id="", email="nope", joining_date="15/01/2024"))
        assert "Employee ID is required" in errors
        assert "Valid email is required" in errors
        assert "Valid joining date is required (YYYY-MM-DD)" in errors

    def test_impossible_date(self):
        assert validate_row(_valid_row(joining_date="2024-02-30")) == [
            "Valid joining date is required (YYYY-MM-DD)"
        ]

    def test_numeric_fields(self):
        errors = validate_row(_valid_row(sick_leave_days="-1", probation_months="three"))
        assert "Sick leave days must be a valid number" in errors
        assert "Probation months must be a valid number" in errors

    def test_bad_manager_email(self):
        assert validate_row(_valid_row(manager_email="boss")) == ["Invalid manager email format"]


# ═════════════════════════════════════════════════════════════════════
# 2. IMPORT
# ═════════════════════════════════════════════════════════════════════


class TestImportEmployees:

    async def test_mixed_file_reports_each_row(self, db: AsyncSession):
        content = _csv(
            "E1,Anil,Kumar,anil@example.com,IT,2024-01-15,,",
            "E2,Bina,Shah,ANIL@example.com,IT,2024-01-15,,",
            "E3,Chetan,Rao,not-an-email,IT,2024-01-15,,",
            "E4,Deepa,Nair,deepa@example.com,it,2024-02-01,anil@example.com,3",
        )
        result = await BulkImportService.import_employees(db, content)

        assert (result.total, result.successful, result.failed) == (4, 2, 2)
        assert [e.row for e in result.errors] == [3, 4]
        assert result.errors[0].error == "Email is duplicated in the file"
        assert result.errors[1].error == "Valid email is required"
        assert result.errors[1].data["employee_id"] == "E3"

    async def test_department_created_once_and_manager_linked(self, db: AsyncSession):
        content = _csv(
            "E1,Anil,Kumar,anil@example.com,IT,2024-01-15,,",
            "E4,Deepa,Nair,deepa@example.com,it,2024-02-01,anil@example.com,3",
        )
        await BulkImportService.import_employees(db, content)

        departments = (await db.execute(select(func.count()).select_from(Department))).scalar()
        assert departments == 1

        anil = await _employee_by_code(db, "E1")
        deepa = await _employee_by_code(db, "E4")
        assert deepa.manager_id == anil.id
        assert deepa.probation_end_date == date(2024, 5, 1)
        assert (await load_user(db, anil.user_id)).role == UserRole.manager

    async def test_existing_records_reported(self, db: AsyncSession):
        await make_employee(db, email="taken@example.com")
        existing = (await db.execute(select(Employee.employee_id))).scalar()

        result = await BulkImportService.import_employees(
            db,
            _csv(
                f"{existing},Anil,Kumar,anil@example.com,IT,2024-01-15,,",
                "E9,Bina,Shah,taken@example.com,IT,2024-01-15,,",
            ),
        )
        assert result.successful == 0
        assert [e.error for e in result.errors] == ["Employee ID already exists", "Email already exists"]

    async def test_unknown_manager_email_imports_without_manager(self, db: AsyncSession):
        result = await BulkImportService.import_employees(
            db, _csv("E1,Anil,Kumar,anil@example.com,IT,2024-01-15,ghost@example.com,"),
        )
        assert result.successful == 1
        assert (await _employee_by_code(db, "E1")).manager_id is None

    async def test_earlier_rows_survive_a_failing_row(self, db: AsyncSession):
        result = await BulkImportService.import_employees(
            db,
            _csv(
                "E1,Anil,Kumar,anil@example.com,IT,2024-01-15,,",
                "E2,Bina,Shah,bina@example.com,IT,2024-01-15,,",
                "E2,Bina,Again,bina2@example.com,IT,2024-01-15,,",
            ),
        )
        assert result.successful == 2
        assert result.errors[0].error == "Employee ID is duplicated in the file"
        count = (await db.execute(select(func.count()).select_from(Employee))).scalar()
        assert count == 2


# ═════════════════════════════════════════════════════════════════════
# 3. API
# ═════════════════════════════════════════════════════════════════════


class TestBulkImportAPI:

    async def test_upload(self, client, admin_headers):
        resp = await client.post(
            "/api/v1/admin/employees/bulk-import",
            files={"file": ("staff.csv", _csv("E1,Anil,Kumar,anil@example.com,IT,2024-01-15,,"), "text/csv")},
            headers=admin_headers,
        )
        assert resp.status_code == 200, resp.text
        body = resp.json()
        assert body["data"]["successful"] == 1
        assert body["message"] == "Imported 1 of 1 employee(s)."

    async def test_failing_row_still_returns_report(self, client, admin, admin_headers):
        too_long = "A" * 150
        report = AsyncMock(return_value=True)
        with patch.object(MailService, "send_bulk_import_report", new=report):
            resp = await client.post(
                "/api/v1/admin/employees/bulk-import",
                files={"file": ("staff.csv", _csv(
                    "E1,Anil,Kumar,anil@example.com,IT,2024-01-15,,",
                    f"E2,{too_long},Rao,bina@example.com,IT,2024-02-01,,",
                ), "text/csv")},
                headers=admin_headers,
            )

        assert resp.status_code == 200, resp.text
        data = resp.json()["data"]
        assert (data["successful"], data["failed"]) == (1, 1)
        assert data["errors"][0]["row"] == 3
        report.assert_awaited_once()
        assert report.await_args.args[0] == admin.email

    async def test_non_csv_rejected(self, client, admin_headers):
        resp = await client.post(
            "/api/v1/admin/employees/bulk-import",
            files={"file": ("photo.png", b"\x89PNG", "image/png")},
            headers=admin_headers,
        )
        assert resp.status_code == 400

    async def test_empty_file_rejected(self, client, admin_headers):
        resp = await client.post(
            "/api/v1/admin/employees/bulk-import",
            files={"file": ("staff.csv", b"", "text/csv")},
            headers=admin_headers,
        )
        assert resp.status_code == 400

    async def test_template_download(self, client, admin_headers):
        resp = await client.get("/api/v1/admin/employees/import-template", headers=admin_headers)
        assert resp.status_code == 200
        assert resp.headers["content-type"].startswith("text/csv")
        assert resp.text.startswith("employee_id,first_name,last_name,email")

    async def test_requires_admin(self, client, db: AsyncSession):
        emp = await make_employee(db)
        resp = await client.get(
            "/api/v1/admin/employees/import-template", headers=auth_headers_for(emp.user),
        )
        assert resp.status_code == 403
