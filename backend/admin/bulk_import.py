"""CSV bulk import of employees.

Each row goes through the same creation path as ``POST /employees`` and is
committed on its own, so a bad row never undoes the rows before it. Row
numbers are CSV line numbers (header = 1).
"""

from __future__ import annotations

import csv
import io
import logging
import re
import uuid
from datetime import date
from typing import Optional

from fastapi import UploadFile
from pydantic import ValidationError
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from backend.admin.schemas import BulkImportResult, ImportRowError
from backend.auth.models import User
from backend.common.dates import add_months
from backend.common.exceptions import AppException, BadRequestException, ValidationException
from backend.config import settings
from backend.core_hr.models import Department, Employee
from backend.core_hr.schemas import EmployeeCreate
from backend.core_hr.service import EmployeeService

logger = logging.getLogger(__name__)

CSV_COLUMNS = [
    "employee_id",
    "first_name",
    "last_name",
    "email",
    "phone",
    "department",
    "position",
    "manager_email",
    "joining_date",
    "annual_leave_days",
    "sick_leave_days",
    "casual_leave_days",
    "probation_months",
]
REQUIRED_COLUMNS = {"employee_id", "first_name", "last_name", "email", "department", "joining_date"}

CSV_CONTENT_TYPES = {"text/csv", "application/csv", "application/vnd.ms-excel", "text/plain"}

TEMPLATE_ROWS = [
    ["EMP001", "John", "Doe", "john.doe@company.com", "+1234567890", "IT",
     "Software Engineer", "jane.smith@company.com", "2023-01-15", "21", "10", "6", "3"],
    ["EMP002", "Jane", "Smith", "jane.smith@company.com", "+1234567891", "IT",
     "Tech Lead", "", "2022-03-01", "25", "12", "8", "0"],
    ["EMP003", "Mike", "Johnson", "mike.johnson@company.com", "+1234567892", "HR",
     "HR Manager", "", "2021-06-10", "23", "10", "7", "0"],
]

_EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")

_DEFAULT_DAYS = {"annual_leave_days": 21, "sick_leave_days": 10, "casual_leave_days": 6}
_NUMERIC_LABELS = {
    "annual_leave_days": "Annual leave days",
    "sick_leave_days": "Sick leave days",
    "casual_leave_days": "Casual leave days",
    "probation_months": "Probation months",
}


def generate_csv_template() -> str:
    buf = io.StringIO()
    writer = csv.writer(buf, lineterminator="\n")
    writer.writerow(CSV_COLUMNS)
    writer.writerows(TEMPLATE_ROWS)
    return buf.getvalue()


def parse_csv(content: bytes) -> list[dict[str, str]]:
    """Decode and parse an upload into row dicts with stripped values."""
    try:
        text = content.decode("utf-8-sig")
    except UnicodeDecodeError:
        raise BadRequestException(detail="CSV file must be UTF-8 encoded.")

    reader = csv.DictReader(io.StringIO(text))
    headers = {h.strip() for h in (reader.fieldnames or []) if h}
    missing = REQUIRED_COLUMNS - headers
    if missing:
        raise BadRequestException(
            detail=f"CSV is missing required column(s): {', '.join(sorted(missing))}.",
        )

    rows = []
    for raw in reader:
        row = {
            (k or "").strip(): (v or "").strip()
            for k, v in raw.items()
            if k is not None and not isinstance(v, list)
        }
        if any(row.values()):
            rows.append(row)
    return rows


def _parse_date(value: str) -> Optional[date]:
    if not _DATE_RE.match(value):
        return None
    try:
        return date.fromisoformat(value)
    except ValueError:
        return None


def _is_non_negative_int(value: str) -> bool:
    return value.isdigit()


def validate_row(row: dict[str, str]) -> list[str]:
    """Field-level checks that need no database."""
    errors: list[str] = []
    if not row.get("employee_id"):
        errors.append("Employee ID is required")
    if not row.get("first_name"):
        errors.append("First name is required")
    if not row.get("last_name"):
        errors.append("Last name is required")
    if not row.get("email") or not _EMAIL_RE.match(row["email"]):
        errors.append("Valid email is required")
    if not row.get("department"):
        errors.append("Department is required")
    if not row.get("joining_date") or _parse_date(row["joining_date"]) is None:
        errors.append("Valid joining date is required (YYYY-MM-DD)")
    if row.get("manager_email") and not _EMAIL_RE.match(row["manager_email"]):
        errors.append("Invalid manager email format")
    for field, label in _NUMERIC_LABELS.items():
        if row.get(field) and not _is_non_negative_int(row[field]):
            errors.append(f"{label} must be a valid number")
    return errors


class BulkImportService:
    """Row-by-row employee import with a per-row report."""

    @staticmethod
    async def read_upload(file: UploadFile) -> bytes:
        filename = (file.filename or "").lower()
        if file.content_type not in CSV_CONTENT_TYPES and not filename.endswith(".csv"):
            raise BadRequestException(detail="Only CSV files are allowed.")
        content = await file.read()
        if not content:
            raise BadRequestException(detail="CSV file is empty.")
        if len(content) > settings.MAX_UPLOAD_SIZE_MB * 1024 * 1024:
            raise BadRequestException(
                detail=f"File exceeds maximum size of {settings.MAX_UPLOAD_SIZE_MB} MB.",
            )
        return content

    @staticmethod
    async def _duplicate_errors(
        db: AsyncSession,
        row: dict[str, str],
        seen_codes: set[str],
        seen_emails: set[str],
    ) -> list[str]:
        errors: list[str] = []
        code = row.get("employee_id", "")
        email = row.get("email", "").lower()
        if code:
            if code in seen_codes:
                errors.append("Employee ID is duplicated in the file")
            elif (await db.execute(select(Employee.id).where(Employee.employee_id == code))).first():
                errors.append("Employee ID already exists")
        if email and _EMAIL_RE.match(email):
            if email in seen_emails:
                errors.append("Email is duplicated in the file")
            elif (await db.execute(select(User.id).where(func.lower(User.email) == email))).first():
                errors.append("Email already exists")
        return errors

    @staticmethod
    async def _get_or_create_department(db: AsyncSession, name: str) -> Department:
        result = await db.execute(
            select(Department).where(func.lower(Department.name) == name.lower())
        )
        department = result.scalars().first()
        if department is None:
            department = Department(name=name)
            db.add(department)
            await db.flush()
            logger.info("Bulk import created department %r", name)
        return department

    @staticmethod
    async def _find_manager_id(db: AsyncSession, email: str) -> Optional[uuid.UUID]:
        result = await db.execute(
            select(User)
            .where(func.lower(User.email) == email.lower())
            .options(selectinload(User.employee))
        )
        user = result.scalars().first()
        return user.employee.id if user is not None and user.employee is not None else None

    @staticmethod
    async def _import_row(
        db: AsyncSession,
        row: dict[str, str],
        actor_id: Optional[uuid.UUID],
    ) -> Employee:
        department = await BulkImportService._get_or_create_department(db, row["department"])
        manager_id = None
        if row.get("manager_email"):
            manager_id = await BulkImportService._find_manager_id(db, row["manager_email"])

        joining_date = _parse_date(row["joining_date"])
        probation_end = None
        if row.get("probation_months") and int(row["probation_months"]) > 0:
            probation_end = add_months(joining_date, int(row["probation_months"]))

        data = EmployeeCreate(
            employee_id=row["employee_id"],
            first_name=row["first_name"],
            last_name=row["last_name"],
            email=row["email"],
            phone=row.get("phone") or None,
            position=row.get("position") or None,
            department_id=department.id,
            manager_id=manager_id,
            joining_date=joining_date,
            probation_end_date=probation_end,
            **{
                field: int(row[field]) if row.get(field) else default
                for field, default in _DEFAULT_DAYS.items()
            },
        )
        return await EmployeeService.create_employee(db, data, actor_id=actor_id)

    @staticmethod
    async def import_employees(
        db: AsyncSession,
        content: bytes,
        *,
        actor_id: Optional[uuid.UUID] = None,
    ) -> BulkImportResult:
        rows = parse_csv(content)
        result = BulkImportResult(total=len(rows))
        seen_codes: set[str] = set()
        seen_emails: set[str] = set()

        for index, row in enumerate(rows):
            row_number = index + 2
            errors = validate_row(row)
            errors += await BulkImportService._duplicate_errors(db, row, seen_codes, seen_emails)
            if row.get("employee_id"):
                seen_codes.add(row["employee_id"])
            if row.get("email"):
                seen_emails.add(row["email"].lower())

            if errors:
                result.failed += 1
                result.errors.append(ImportRowError(row=row_number, data=row, error=", ".join(errors)))
                continue

            try:
                await BulkImportService._import_row(db, row, actor_id)
            except ValidationException as exc:
                await db.rollback()
                message = "; ".join(m for msgs in exc.errors.values() for m in msgs)
            except AppException as exc:
                await db.rollback()
                message = exc.detail
            except ValidationError as exc:
                await db.rollback()
                message = "; ".join(err["msg"] for err in exc.errors())
            except Exception as exc:
                await db.rollback()
                logger.exception("Bulk import row %d failed", row_number)
                message = str(exc) or exc.__class__.__name__
            else:
                result.successful += 1
                continue

            result.failed += 1
            result.errors.append(ImportRowError(row=row_number, data=row, error=message))

        logger.info(
            "Bulk import finished: total=%d successful=%d failed=%d",
            result.total, result.successful, result.failed,
        )
        return result
