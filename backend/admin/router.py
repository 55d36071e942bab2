"""Admin router: bulk import, dashboard, reports and maintenance jobs.

All endpoints require the admin role.
"""

import uuid
from datetime import date
from typing import Literal, Optional

from fastapi import APIRouter, Depends, File, Query, UploadFile
from fastapi.responses import Response
from sqlalchemy.ext.asyncio import AsyncSession

from backend.admin.bulk_import import BulkImportService, generate_csv_template
from backend.admin.schemas import AutoApproveRequest, YearEndRequest
from backend.admin.service import AdminService
from backend.auth.dependencies import require_role
from backend.auth.models import User
from backend.auth.service import expire_stale_invites
from backend.common.constants import LeaveStatus, LeaveType, UserRole
from backend.common.pagination import PaginationParams
from backend.database import get_db
from backend.leave.calculation import LeaveCalculationService
from backend.leave.cleanup import cleanup_cancelled_requests, cleanup_stats
from backend.leave.service import LeaveService, serialize_request
from backend.mail.service import MailService

router = APIRouter(prefix="", tags=["admin"])

_admin_dep = require_role(UserRole.admin)


# ═══════════════════════════════════════════════════════════════════
# BULK IMPORT
# ═══════════════════════════════════════════════════════════════════

@router.post("/employees/bulk-import")
async def bulk_import_employees(
    file: UploadFile = File(...),
    user: User = Depends(_admin_dep),
    db: AsyncSession = Depends(get_db),
):
    """Import employees from CSV; returns a per-row report."""
    # Failed rows roll the session back, which expires ``user``
    admin_id, admin_email = user.id, user.email
    content = await BulkImportService.read_upload(file)
    result = await BulkImportService.import_employees(db, content, actor_id=admin_id)
    await MailService.send_bulk_import_report(admin_email, result.model_dump())
    return {
        "data": result.model_dump(),
        "message": f"Imported {result.successful} of {result.total} employee(s).",
    }


@router.get("/employees/import-template")
async def download_import_template(_user: User = Depends(_admin_dep)):
    return Response(
        content=generate_csv_template(),
        media_type="text/csv",
        headers={"Content-Disposition": 'attachment; filename="employee-import-template.csv"'},
    )


# ═══════════════════════════════════════════════════════════════════
# DASHBOARD / LEAVE REQUESTS
# ═══════════════════════════════════════════════════════════════════

@router.get("/dashboard-stats")
async def dashboard_stats(
    _user: User = Depends(_admin_dep),
    db: AsyncSession = Depends(get_db),
):
    stats = await AdminService.get_dashboard_stats(db)
    return {"data": stats.model_dump(mode="json")}


@router.get("/leave-requests")
async def all_leave_requests(
    status: Optional[LeaveStatus] = Query(None),
    leave_type: Optional[LeaveType] = Query(None),
    employee_id: Optional[uuid.UUID] = Query(None),
    department_id: Optional[uuid.UUID] = Query(None),
    year: Optional[int] = Query(None),
    pagination: PaginationParams = Depends(),
    _user: User = Depends(_admin_dep),
    db: AsyncSession = Depends(get_db),
):
    result = await LeaveService.list_requests(
        db,
        pagination,
        employee_id=employee_id,
        department_id=department_id,
        status=status,
        leave_type=leave_type,
        year=year,
    )
    return {
        "data": [serialize_request(r) for r in result.data],
        "meta": result.meta.model_dump(),
    }


# ═══════════════════════════════════════════════════════════════════
# REPORTS
# ═══════════════════════════════════════════════════════════════════

@router.get("/reports/leave-summary")
async def leave_summary_report(
    year: Optional[int] = Query(None),
    department_id: Optional[uuid.UUID] = Query(None),
    _user: User = Depends(_admin_dep),
    db: AsyncSession = Depends(get_db),
):
    report = await AdminService.get_leave_summary(db, year, department_id)
    return {"data": report.model_dump(mode="json")}


@router.get("/reports/employee-leave-balance")
async def employee_leave_balance_report(
    year: Optional[int] = Query(None),
    department_id: Optional[uuid.UUID] = Query(None),
    output_format: Literal["json", "csv"] = Query("json", alias="format"),
    _user: User = Depends(_admin_dep),
    db: AsyncSession = Depends(get_db),
):
    report = await AdminService.get_employee_balance_report(db, year, department_id)
    if output_format == "csv":
        return Response(
            content=AdminService.balance_report_to_csv(report),
            media_type="text/csv",
            headers={
                "Content-Disposition": f'attachment; filename="leave-balances-{report.year}.csv"',
            },
        )
    return {"data": report.model_dump(mode="json")}


# ═══════════════════════════════════════════════════════════════════
# MAINTENANCE
# ═══════════════════════════════════════════════════════════════════

@router.post("/maintenance/cleanup")
async def run_cleanup(
    _user: User = Depends(_admin_dep),
    db: AsyncSession = Depends(get_db),
):
    """Delete cancelled requests that ended more than a month ago."""
    result = await cleanup_cancelled_requests(db)
    await db.commit()
    return {"data": result, "message": f"Deleted {result['deleted']} cancelled request(s)."}


@router.get("/maintenance/cleanup-stats")
async def get_cleanup_stats(
    _user: User = Depends(_admin_dep),
    db: AsyncSession = Depends(get_db),
):
    return {"data": await cleanup_stats(db)}


@router.post("/maintenance/year-end")
async def run_year_end(
    body: YearEndRequest,
    user: User = Depends(_admin_dep),
    db: AsyncSession = Depends(get_db),
):
    """Archive a year's balances and open the next year."""
    year = body.year or date.today().year
    summary = await LeaveCalculationService.process_year_end_balances(db, year, actor_id=user.id)
    await db.commit()
    return {"data": summary, "message": f"Year-end processing for {year} completed."}


@router.post("/maintenance/invite-expiry")
async def run_invite_expiry(
    _user: User = Depends(_admin_dep),
    db: AsyncSession = Depends(get_db),
):
    expired = await expire_stale_invites(db)
    await db.commit()
    return {"data": {"expired": expired}, "message": f"Expired {expired} invite(s)."}


@router.post("/maintenance/auto-approve")
async def run_auto_approve(
    body: AutoApproveRequest,
    _user: User = Depends(_admin_dep),
    db: AsyncSession = Depends(get_db),
):
    result = await LeaveService.auto_approve_pending_leaves(db, force=body.force)
    return {"data": result}
