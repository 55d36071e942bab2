"""Security test suite: rate limiting, role enforcement and hostile input."""

from __future__ import annotations

from sqlalchemy.ext.asyncio import AsyncSession

from backend.auth.dependencies import has_role
from backend.common.constants import UserRole
from backend.common.pagination import build_params
from backend.core_hr.service import EmployeeService
from tests.conftest import DEFAULT_PASSWORD, auth_headers_for, make_employee


# ═════════════════════════════════════════════════════════════════════
# 1. RATE LIMITING: default and auth endpoint limits
# ═════════════════════════════════════════════════════════════════════


class TestRateLimiting:
    """Verify the default limit and the tighter credential-endpoint limits."""

    async def test_login_rate_limited_at_10_per_minute(self, client, db: AsyncSession):
        """POST /auth/login allows 10 requests/minute, then returns 429.

        Failed logins count toward the limit.
        """
        await make_employee(db, email="maya@example.com")
        for i in range(10):
            resp = await client.post(
                "/api/v1/auth/login",
                json={"email": "maya@example.com", "password": f"wrong-{i}"},
            )
            assert resp.status_code == 401, f"Request {i + 1} should not be rate-limited"

        resp = await client.post(
            "/api/v1/auth/login",
            json={"email": "maya@example.com", "password": DEFAULT_PASSWORD},
        )
        assert resp.status_code == 429
        assert "rate limit" in resp.text.lower()

    async def test_forgot_password_rate_limited(self, client):
        for _ in range(10):
            resp = await client.post("/api/v1/auth/forgot-password", json={"email": "a@example.com"})
            assert resp.status_code == 200

        resp = await client.post("/api/v1/auth/forgot-password", json={"email": "a@example.com"})
        assert resp.status_code == 429

    async def test_default_limit_applies_to_other_endpoints(self, client):
        for i in range(60):
            resp = await client.get("/api/v1/health")
            assert resp.status_code == 200, f"Request {i + 1} should not be rate-limited"

        resp = await client.get("/api/v1/health")
        assert resp.status_code == 429

    async def test_limits_are_per_endpoint(self, client):
        for _ in range(10):
            await client.post("/api/v1/auth/forgot-password", json={"email": "a@example.com"})

        resp = await client.post(
            "/api/v1/auth/login", json={"email": "a@example.com", "password": "x"},
        )
        assert resp.status_code == 401


# ═════════════════════════════════════════════════════════════════════
# 2. ROLE ENFORCEMENT
# ═════════════════════════════════════════════════════════════════════


class TestRoleEnforcement:

    def test_role_hierarchy(self):
        class _User:
            def __init__(self, role):
                self.role = role

        assert has_role(_User(UserRole.admin), UserRole.manager)
        assert has_role(_User(UserRole.manager), UserRole.employee)
        assert not has_role(_User(UserRole.manager), UserRole.admin)
        assert not has_role(_User(UserRole.employee), UserRole.manager)

    async def test_employee_blocked_from_admin_routes(self, client, db: AsyncSession):
        emp = await make_employee(db)
        headers = auth_headers_for(emp.user)
        for method, url in [
            ("get", "/api/v1/employees"),
            ("get", "/api/v1/admin/dashboard-stats"),
            ("post", "/api/v1/admin/maintenance/cleanup"),
            ("post", "/api/v1/settings/auto-approve/toggle"),
        ]:
            resp = await client.request(method.upper(), url, headers=headers)
            assert resp.status_code == 403, url
            assert resp.json()["title"] == "Forbidden"

    async def test_manager_blocked_from_admin_routes(self, client, db: AsyncSession):
        lead = await make_employee(db, role=UserRole.manager)
        resp = await client.get("/api/v1/employees/stats", headers=auth_headers_for(lead.user))
        assert resp.status_code == 403

    async def test_employee_blocked_from_team_routes(self, client, db: AsyncSession):
        emp = await make_employee(db)
        resp = await client.get("/api/v1/leave/requests/team", headers=auth_headers_for(emp.user))
        assert resp.status_code == 403

    async def test_role_read_from_database(self, client, db: AsyncSession):
        """A token issued before a promotion still gets the new role's access."""
        emp = await make_employee(db)
        headers = auth_headers_for(emp.user)
        emp.user.role = UserRole.admin
        await db.commit()

        resp = await client.get("/api/v1/employees", headers=headers)
        assert resp.status_code == 200

    async def test_malformed_authorization_header(self, client):
        resp = await client.get("/api/v1/auth/me", headers={"Authorization": "Token abc"})
        assert resp.status_code == 401


# ═════════════════════════════════════════════════════════════════════
# 3. HOSTILE INPUT
# ═════════════════════════════════════════════════════════════════════


class TestHostileInput:

    async def test_search_is_parameterized(self, db: AsyncSession):
        await make_employee(db)
        page = await EmployeeService.list_employees(
            db, build_params(), search="'; DROP TABLE employees; --",
        )
        assert page.meta.total == 0

        # Table still there
        page = await EmployeeService.list_employees(db, build_params())
        assert page.meta.total == 1

    async def test_non_uuid_path_is_422(self, client, admin_headers):
        resp = await client.get("/api/v1/employees/1%20OR%201=1", headers=admin_headers)
        assert resp.status_code == 422

    async def test_unknown_sort_column_ignored(self, client, db: AsyncSession, admin_headers):
        await make_employee(db)
        resp = await client.get(
            "/api/v1/employees", params={"sort": "-password_hash;drop"}, headers=admin_headers,
        )
        assert resp.status_code == 200
        assert resp.json()["meta"]["total"] == 1
