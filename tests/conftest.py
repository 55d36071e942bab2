"""Shared test fixtures: async DB, client, auth helpers, factories.

Reusable across all test modules (auth, core_hr, leave, admin, etc.).
Uses SQLite + aiosqlite for fast isolated tests without PostgreSQL.
"""

from __future__ import annotations

import os

# Set test settings before any other import touches pydantic-settings
os.environ.setdefault("JWT_SECRET", "test-secret-for-ci-do-not-use-in-production")
os.environ["SMTP_HOST"] = ""
os.environ["SCHEDULER_ENABLED"] = "false"

import uuid
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from typing import AsyncGenerator, Optional

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import event, select
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import selectinload
from sqlalchemy.pool import StaticPool

from backend.auth.service import create_access_token, hash_password
from backend.common.constants import InviteStatus, LeaveStatus, LeaveType, UserRole
from backend.database import Base, get_db
from backend.main import create_app

# Import ALL model modules so SQLAlchemy can resolve cross-module relationships
# (e.g. Employee → LeaveBalance, User → GoogleCalendarToken)
import backend.auth.models  # noqa: F401
import backend.calendar_sync.models  # noqa: F401
import backend.common.audit  # noqa: F401
import backend.core_hr.models  # noqa: F401
import backend.holidays.models  # noqa: F401
import backend.leave.models  # noqa: F401
import backend.system_settings.models  # noqa: F401

from backend.auth.models import User
from backend.core_hr.models import Department, Employee
from backend.holidays.models import Holiday
from backend.leave.calculation import LeaveCalculationService, entitlement_for
from backend.leave.models import LeaveBalance, LeaveRequest

# ── SQLite compat: compile PG-specific types to TEXT/BLOB ───────────

from sqlalchemy.dialects.postgresql import INET, JSONB, UUID as PG_UUID
from sqlalchemy.ext.compiler import compiles


@compiles(JSONB, "sqlite")
def _jsonb_sqlite(element, compiler, **kw):
    return "TEXT"


@compiles(INET, "sqlite")
def _inet_sqlite(element, compiler, **kw):
    return "TEXT"


@compiles(PG_UUID, "sqlite")
def _uuid_sqlite(element, compiler, **kw):
    return "CHAR(36)"


# ── Test database (SQLite in-memory) ────────────────────────────────

TEST_DATABASE_URL = "sqlite+aiosqlite://"

engine = create_async_engine(
    TEST_DATABASE_URL,
    echo=False,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)


# Register PG-compatible functions for SQLite
@event.listens_for(engine.sync_engine, "connect")
def _register_sqlite_functions(dbapi_conn, connection_record):
    """Register NOW() and gen_random_uuid() as SQLite custom functions."""
    dbapi_conn.create_function(
        "NOW", 0, lambda: datetime.now(timezone.utc).isoformat(),
    )
    dbapi_conn.create_function(
        "gen_random_uuid", 0, lambda: str(uuid.uuid4()),
    )

TestSessionFactory = async_sessionmaker(
    engine, class_=AsyncSession, expire_on_commit=False,
)

DEFAULT_PASSWORD = "Str0ng!Pass"
# Hashed once; bcrypt is deliberately slow
_DEFAULT_PASSWORD_HASH = hash_password(DEFAULT_PASSWORD)


@pytest.fixture(autouse=True)
async def _setup_db():
    """Create all tables before each test, drop after."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest.fixture(autouse=True)
def _reset_rate_limiter():
    """Reset rate limiter storage between tests to prevent cross-test interference."""
    from backend.common.rate_limit import limiter
    limiter.reset()
    yield


async def _override_get_db() -> AsyncGenerator[AsyncSession, None]:
    async with TestSessionFactory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


# ── FastAPI test client ─────────────────────────────────────────────

@pytest.fixture
async def app():
    """Create a fresh app instance with DB dependency overridden."""
    application = create_app()
    application.dependency_overrides[get_db] = _override_get_db
    yield application
    application.dependency_overrides.clear()


@pytest.fixture
async def client(app) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP client wired to the test app."""
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac


# ── Database session (for direct DB operations in tests) ────────────

@pytest.fixture
async def db() -> AsyncGenerator[AsyncSession, None]:
    async with TestSessionFactory() as session:
        yield session
        await session.commit()


# ── Date helpers ────────────────────────────────────────────────────

def next_weekday(weekday: int = 0, *, weeks_ahead: int = 2) -> date:
    """A future date on *weekday* (0 = Monday) at least *weeks_ahead* weeks out."""
    start = date.today() + timedelta(weeks=weeks_ahead)
    return start + timedelta(days=(weekday - start.weekday()) % 7)


# ── Model factories ─────────────────────────────────────────────────

async def make_department(db: AsyncSession, name: str = "Engineering") -> Department:
    department = Department(name=name)
    db.add(department)
    await db.commit()
    return department


async def make_admin(db: AsyncSession, email: str = "admin@example.com") -> User:
    """Admin login without an employee profile."""
    user = User(
        email=email,
        password_hash=_DEFAULT_PASSWORD_HASH,
        role=UserRole.admin,
        is_active=True,
        invite_status=InviteStatus.active,
    )
    db.add(user)
    await db.commit()
    return user


async def make_employee(
    db: AsyncSession,
    *,
    email: Optional[str] = None,
    role: UserRole = UserRole.employee,
    first_name: str = "Test",
    last_name: str = "User",
    manager_id: Optional[uuid.UUID] = None,
    department_id: Optional[uuid.UUID] = None,
    joining_date: date = date(2024, 1, 15),
    is_active: bool = True,
    balance_years: tuple[int, ...] = (),
) -> Employee:
    """Active user + employee; balances are opened for each year in *balance_years*."""
    code = uuid.uuid4().hex[:6].upper()
    user = User(
        email=email or f"user.{code.lower()}@example.com",
        password_hash=_DEFAULT_PASSWORD_HASH if is_active else "",
        role=role,
        is_active=is_active,
        invite_status=InviteStatus.active if is_active else InviteStatus.invited,
    )
    employee = Employee(
        user=user,
        employee_id=f"EMP-{code}",
        first_name=first_name,
        last_name=last_name,
        manager_id=manager_id,
        department_id=department_id,
        joining_date=joining_date,
    )
    db.add(employee)
    await db.flush()
    for year in balance_years:
        await LeaveCalculationService.initialize_leave_balances(
            db,
            employee.id,
            joining_date,
            year=year,
            full_entitlement=entitlement_for(employee),
        )
    await db.commit()
    return employee


async def make_leave_request(
    db: AsyncSession,
    employee: Employee,
    *,
    start_date: date,
    end_date: Optional[date] = None,
    leave_type: LeaveType = LeaveType.casual,
    status: LeaveStatus = LeaveStatus.pending,
    days_count: Decimal = Decimal("1"),
) -> LeaveRequest:
    leave_request = LeaveRequest(
        employee_id=employee.id,
        leave_type=leave_type,
        start_date=start_date,
        end_date=end_date or start_date,
        days_count=days_count,
        status=status,
    )
    db.add(leave_request)
    await db.commit()
    return leave_request


async def make_holiday(
    db: AsyncSession,
    holiday_date: date,
    *,
    name: str = "Holiday",
    is_recurring: bool = False,
    is_active: bool = True,
) -> Holiday:
    holiday = Holiday(
        name=name,
        date=holiday_date,
        is_recurring=is_recurring,
        is_active=is_active,
    )
    db.add(holiday)
    await db.commit()
    return holiday


async def load_balance(
    db: AsyncSession,
    employee_id: uuid.UUID,
    year: int,
    leave_type: LeaveType,
) -> Optional[LeaveBalance]:
    """Fresh read of a balance row, bypassing the identity map."""
    result = await db.execute(
        select(LeaveBalance)
        .where(
            LeaveBalance.employee_id == employee_id,
            LeaveBalance.year == year,
            LeaveBalance.leave_type == leave_type,
        )
        .execution_options(populate_existing=True)
    )
    return result.scalars().first()


async def load_user(db: AsyncSession, user_id: uuid.UUID) -> Optional[User]:
    result = await db.execute(
        select(User)
        .where(User.id == user_id)
        .options(selectinload(User.employee))
        .execution_options(populate_existing=True)
    )
    return result.scalars().first()


# ── Auth helpers ────────────────────────────────────────────────────

def auth_headers_for(user: User) -> dict[str, str]:
    """Bearer headers with a valid access token for *user*."""
    token, _ = create_access_token(user)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
async def admin(db) -> User:
    return await make_admin(db)


@pytest.fixture
async def admin_headers(admin) -> dict[str, str]:
    return auth_headers_for(admin)
