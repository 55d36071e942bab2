"""Admin module tests: maintenance jobs, dashboard and reports."""

from __future__ import annotations

from datetime import date, timedelta
from decimal import Decimal

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from backend.admin.service import AdminService
from backend.common.constants import InviteStatus, LeaveStatus, LeaveType
from backend.common.dates import utcnow
from backend.leave.cleanup import cleanup_cancelled_requests, cleanup_stats
from backend.leave.models import LeaveBalanceHistory, LeaveRequest
from tests.conftest import (
    load_balance,
    load_user,
    make_department,
    make_employee,
    make_leave_request,
)

TODAY = date(2026, 3, 15)


async def _request_count(db: AsyncSession) -> int:
    return (await db.execute(select(func.count()).select_from(LeaveRequest))).scalar()


# ═════════════════════════════════════════════════════════════════════
# 1. CANCELLED REQUEST CLEANUP
# ═════════════════════════════════════════════════════════════════════


class TestCleanup:

    async def _seed(self, db: AsyncSession):
        emp = await make_employee(db)
        await make_leave_request(db, emp, start_date=date(2026, 2, 9), end_date=date(2026, 2, 10),
                                 status=LeaveStatus.cancelled)
        await make_leave_request(db, emp, start_date=date(2026, 2, 20), status=LeaveStatus.cancelled)
        await make_leave_request(db, emp, start_date=date(2026, 1, 1), status=LeaveStatus.pending)
        return emp

    async def test_stats_before_cleanup(self, db: AsyncSession):
        await self._seed(db)
        assert await cleanup_stats(db, today=TODAY) == {
            "total_cancelled": 2,
            "eligible_for_cleanup": 1,
            "cutoff_date": "2026-02-15",
        }

    async def test_deletes_only_old_cancelled(self, db: AsyncSession):
        await self._seed(db)
        result = await cleanup_cancelled_requests(db, today=TODAY)
        await db.commit()

        assert result == {"deleted": 1, "cutoff_date": "2026-02-15"}
        assert await _request_count(db) == 2

    async def test_month_end_cutoff(self, db: AsyncSession):
        stats = await cleanup_stats(db, today=date(2026, 3, 31))
        assert stats["cutoff_date"] == "2026-02-28"

    async def test_endpoint(self, client, db: AsyncSession, admin_headers):
        emp = await make_employee(db)
        await make_leave_request(db, emp, start_date=date(2020, 5, 4), status=LeaveStatus.cancelled)

        resp = await client.post("/api/v1/admin/maintenance/cleanup", headers=admin_headers)
        assert resp.status_code == 200
        assert resp.json()["data"]["deleted"] == 1
        assert await _request_count(db) == 0

        stats = await client.get("/api/v1/admin/maintenance/cleanup-stats", headers=admin_headers)
        assert stats.json()["data"]["total_cancelled"] == 0


# ═════════════════════════════════════════════════════════════════════
# 2. OTHER MAINTENANCE JOBS
# ═════════════════════════════════════════════════════════════════════


class TestMaintenanceEndpoints:

    async def test_year_end_rolls_balances_once(self, client, db: AsyncSession, admin_headers):
        emp = await make_employee(db, balance_years=(2025,))

        resp = await client.post(
            "/api/v1/admin/maintenance/year-end", json={"year": 2025}, headers=admin_headers,
        )
        assert resp.status_code == 200, resp.text
        assert resp.json()["data"] == {"year": 2025, "archived": 3, "created": 3, "skipped": 0}

        earned = await load_balance(db, emp.id, 2026, LeaveType.earned)
        assert earned.total_allocated == Decimal("21")
        assert earned.carry_forward == Decimal("5")
        sick = await load_balance(db, emp.id, 2026, LeaveType.sick)
        assert sick.carry_forward == Decimal("0")

        again = await client.post(
            "/api/v1/admin/maintenance/year-end", json={"year": 2025}, headers=admin_headers,
        )
        assert again.json()["data"] == {"year": 2025, "archived": 0, "created": 0, "skipped": 3}
        history = (
            await db.execute(select(func.count()).select_from(LeaveBalanceHistory))
        ).scalar()
        assert history == 3

    async def test_year_out_of_range_is_422(self, client, admin_headers):
        resp = await client.post(
            "/api/v1/admin/maintenance/year-end", json={"year": 1900}, headers=admin_headers,
        )
        assert resp.status_code == 422

    async def test_invite_expiry(self, client, db: AsyncSession, admin_headers):
        emp = await make_employee(db, is_active=False)
        user = await load_user(db, emp.user_id)
        user.invite_expires_at = utcnow() - timedelta(hours=2)
        await db.commit()

        resp = await client.post("/api/v1/admin/maintenance/invite-expiry", headers=admin_headers)
        assert resp.status_code == 200
        assert resp.json()["data"] == {"expired": 1}
        assert (await load_user(db, emp.user_id)).invite_status == InviteStatus.invite_expired

    async def test_auto_approve_respects_setting(self, client, db: AsyncSession, admin_headers):
        start = date.today() - timedelta(days=3)
        emp = await make_employee(db, balance_years=(start.year,))
        await make_leave_request(db, emp, start_date=start)

        resp = await client.post(
            "/api/v1/admin/maintenance/auto-approve", json={}, headers=admin_headers,
        )
        assert resp.json()["data"] == {"enabled": False, "processed": 0, "approved": 0, "failed": 0}

        forced = await client.post(
            "/api/v1/admin/maintenance/auto-approve", json={"force": True}, headers=admin_headers,
        )
        assert forced.status_code == 200
        assert forced.json()["data"] == {"enabled": True, "processed": 1, "approved": 1, "failed": 0}

        casual = await load_balance(db, emp.id, start.year, LeaveType.casual)
        assert casual.used_days == Decimal("1")


# ═════════════════════════════════════════════════════════════════════
# 3. DASHBOARD / REPORTS
# ═════════════════════════════════════════════════════════════════════


class TestReports:

    async def test_dashboard_stats(self, client, db: AsyncSession, admin_headers):
        await make_department(db, "Ops")
        await make_employee(db)
        resp = await client.get("/api/v1/admin/dashboard-stats", headers=admin_headers)
        assert resp.status_code == 200
        data = resp.json()["data"]
        assert set(data) == {"employees", "departments", "leaves"}
        assert data["employees"]["total_employees"] == 1
        assert data["departments"]["total_departments"] == 1

    async def test_leave_summary(self, db: AsyncSession):
        emp = await make_employee(db)
        other = await make_employee(db)
        await make_leave_request(db, emp, start_date=date(2026, 2, 2), status=LeaveStatus.approved,
                                 leave_type=LeaveType.sick, days_count=Decimal("2"))
        await make_leave_request(db, emp, start_date=date(2026, 4, 6), status=LeaveStatus.approved,
                                 leave_type=LeaveType.sick)
        await make_leave_request(db, other, start_date=date(2026, 5, 4), status=LeaveStatus.rejected,
                                 days_count=Decimal("4"))

        report = await AdminService.get_leave_summary(db, 2026)
        assert report.stats.total_requests == 3
        assert report.summary.total_days_taken == Decimal("3")
        assert report.summary.average_days_per_employee == Decimal("1.50")
        assert report.summary.most_requested_leave_type == "sick"

    async def test_leave_summary_without_requests(self, db: AsyncSession):
        report = await AdminService.get_leave_summary(db, 2026)
        assert report.summary.most_requested_leave_type == "N/A"
        assert report.summary.average_days_per_employee == Decimal("0")

    async def test_leave_summary_by_department(self, client, db: AsyncSession, admin_headers):
        dept = await make_department(db, "Ops")
        inside = await make_employee(db, department_id=dept.id)
        outside = await make_employee(db)
        await make_leave_request(db, inside, start_date=date(2026, 2, 2), status=LeaveStatus.approved)
        await make_leave_request(db, outside, start_date=date(2026, 2, 3), status=LeaveStatus.approved)

        resp = await client.get(
            "/api/v1/admin/reports/leave-summary",
            params={"year": 2026, "department_id": str(dept.id)},
            headers=admin_headers,
        )
        assert resp.status_code == 200
        assert float(resp.json()["data"]["summary"]["total_days_taken"]) == 1.0

    async def test_balance_report_json(self, client, db: AsyncSession, admin_headers):
        await make_employee(db, first_name="Nia", last_name="Rao", balance_years=(2026,))
        resp = await client.get(
            "/api/v1/admin/reports/employee-leave-balance", params={"year": 2026}, headers=admin_headers,
        )
        assert resp.status_code == 200
        data = resp.json()["data"]
        assert data["year"] == 2026
        (row,) = data["employees"]
        assert row["employee"]["name"] == "Nia Rao"
        assert len(row["balances"]) == 3

    async def test_balance_report_csv(self, client, db: AsyncSession, admin_headers):
        dept = await make_department(db, "Ops")
        await make_employee(db, department_id=dept.id, balance_years=(2026,))
        resp = await client.get(
            "/api/v1/admin/reports/employee-leave-balance",
            params={"year": 2026, "format": "csv"},
            headers=admin_headers,
        )
        assert resp.status_code == 200
        assert resp.headers["content-type"].startswith("text/csv")
        lines = resp.text.strip().splitlines()
        assert lines[0] == (
            "employee_id,name,department,leave_type,total_allocated,carry_forward,used_days,available_days"
        )
        assert len(lines) == 4
        assert all(",Ops," in line for line in lines[1:])

    async def test_all_leave_requests_filtered(self, client, db: AsyncSession, admin_headers):
        emp = await make_employee(db)
        await make_leave_request(db, emp, start_date=date(2026, 2, 2), status=LeaveStatus.approved)
        await make_leave_request(db, emp, start_date=date(2026, 2, 9))

        resp = await client.get(
            "/api/v1/admin/leave-requests", params={"status": "approved"}, headers=admin_headers,
        )
        assert resp.status_code == 200
        body = resp.json()
        assert body["meta"]["total"] == 1
        assert body["data"][0]["status"] == "approved"
