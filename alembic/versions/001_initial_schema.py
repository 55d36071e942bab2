"""001 – Initial schema: all tables, indexes, enums, seed settings.

Revision ID: 001_initial_schema
Revises:
Create Date: 2026-02-20 15:07:00.000000+00:00
"""

from alembic import op

# Revision identifiers
revision = "001_initial_schema"
down_revision = None
branch_labels = None
depends_on = None


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

ENUM_TYPES: list[tuple[str, list[str]]] = [
    ("user_role", ["employee", "manager", "admin"]),
    ("invite_status", ["invited", "active", "invite_expired"]),
    ("leave_status", ["pending", "approved", "rejected", "cancelled"]),
    ("leave_type", ["sick", "casual", "earned", "compensation"]),
    ("calendar_type", ["personal", "shared"]),
    ("calendar_sync_status", ["synced", "failed", "deleted"]),
]

SEED_SETTINGS: list[tuple[str, str, str]] = [
    ("auto_approve_pending_leaves", "false", "Automatically approve pending leave requests whose start date has passed"),
    ("company_logo_url", "", "Public URL of the company logo"),
    ("company_favicon_url", "", "Public URL of the company favicon"),
]

TABLES_IN_DROP_ORDER = [
    "audit_trail",
    "calendar_events",
    "google_calendar_tokens",
    "system_settings",
    "leave_requests",
    "leave_balance_history",
    "leave_balances",
    "holidays",
    "password_reset_tokens",
    "employees",
    "departments",
    "users",
]


def _create_enum(name: str, values: list[str]) -> None:
    vals = ", ".join(f"'{v}'" for v in values)
    op.execute(f"CREATE TYPE {name} AS ENUM ({vals})")


def _drop_enum(name: str) -> None:
    op.execute(f"DROP TYPE IF EXISTS {name}")


# ---------------------------------------------------------------------------
# UPGRADE
# ---------------------------------------------------------------------------


def upgrade() -> None:
    # ── Extensions ────────────────────────────────────────────────────────
    op.execute('CREATE EXTENSION IF NOT EXISTS "pgcrypto"')

    # ── Enum types ────────────────────────────────────────────────────────
    for name, values in ENUM_TYPES:
        _create_enum(name, values)

    # ── 1. users ──────────────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE users (
            id                    UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            email                 VARCHAR(255) NOT NULL UNIQUE,
            password_hash         VARCHAR(255) NOT NULL DEFAULT '',
            role                  user_role NOT NULL DEFAULT 'employee',
            is_active             BOOLEAN NOT NULL DEFAULT FALSE,
            must_change_password  BOOLEAN NOT NULL DEFAULT FALSE,
            invite_status         invite_status NOT NULL DEFAULT 'active',
            invited_at            TIMESTAMPTZ,
            invite_expires_at     TIMESTAMPTZ,
            last_login_at         TIMESTAMPTZ,
            created_at            TIMESTAMPTZ DEFAULT NOW(),
            updated_at            TIMESTAMPTZ DEFAULT NOW()
        )
    """)
    op.execute("CREATE INDEX idx_users_invite ON users(invite_status, invite_expires_at)")

    # ── 2. password_reset_tokens ──────────────────────────────────────────
    op.execute("""
        CREATE TABLE password_reset_tokens (
            id          UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            user_id     UUID NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            token       VARCHAR(128) NOT NULL UNIQUE,
            expires_at  TIMESTAMPTZ NOT NULL,
            is_used     BOOLEAN NOT NULL DEFAULT FALSE,
            created_at  TIMESTAMPTZ DEFAULT NOW()
        )
    """)

    # ── 3. departments ────────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE departments (
            id           UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            name         VARCHAR(150) NOT NULL UNIQUE,
            description  TEXT,
            manager_id   UUID,  -- FK added after employees table
            created_at   TIMESTAMPTZ DEFAULT NOW(),
            updated_at   TIMESTAMPTZ DEFAULT NOW()
        )
    """)

    # ── 4. employees ──────────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE employees (
            id                  UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            user_id             UUID NOT NULL UNIQUE REFERENCES users(id) ON DELETE CASCADE,
            employee_id         VARCHAR(50)  NOT NULL UNIQUE,
            first_name          VARCHAR(100) NOT NULL,
            last_name           VARCHAR(100) NOT NULL,
            phone               VARCHAR(30),
            position            VARCHAR(150),
            department_id       UUID REFERENCES departments(id) ON DELETE SET NULL,
            manager_id          UUID REFERENCES employees(id) ON DELETE SET NULL,
            joining_date        DATE NOT NULL,
            probation_end_date  DATE,
            annual_leave_days   INTEGER NOT NULL DEFAULT 21,
            sick_leave_days     INTEGER NOT NULL DEFAULT 10,
            casual_leave_days   INTEGER NOT NULL DEFAULT 6,
            created_at          TIMESTAMPTZ DEFAULT NOW(),
            updated_at          TIMESTAMPTZ DEFAULT NOW()
        )
    """)
    op.execute("CREATE INDEX idx_employees_department ON employees(department_id)")
    op.execute("CREATE INDEX idx_employees_manager    ON employees(manager_id)")

    # Deferred FK: departments.manager_id → employees.id
    op.execute("""
        ALTER TABLE departments
            ADD CONSTRAINT fk_dept_manager
            FOREIGN KEY (manager_id) REFERENCES employees(id) ON DELETE SET NULL
    """)

    # ── 5. holidays ───────────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE holidays (
            id            UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            name          VARCHAR(150) NOT NULL,
            date          DATE NOT NULL,
            description   TEXT,
            is_recurring  BOOLEAN NOT NULL DEFAULT FALSE,
            is_active     BOOLEAN NOT NULL DEFAULT TRUE,
            created_at    TIMESTAMPTZ DEFAULT NOW(),
            updated_at    TIMESTAMPTZ DEFAULT NOW()
        )
    """)
    op.execute("CREATE INDEX ix_holidays_date ON holidays(date)")

    # ── 6. leave_balances ─────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE leave_balances (
            id               UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            employee_id      UUID NOT NULL REFERENCES employees(id) ON DELETE CASCADE,
            year             INTEGER NOT NULL,
            leave_type       leave_type NOT NULL,
            total_allocated  NUMERIC(5,2) NOT NULL DEFAULT 0,
            used_days        NUMERIC(5,2) NOT NULL DEFAULT 0,
            available_days   NUMERIC(5,2) NOT NULL DEFAULT 0,
            carry_forward    NUMERIC(5,2) NOT NULL DEFAULT 0,
            created_at       TIMESTAMPTZ DEFAULT NOW(),
            updated_at       TIMESTAMPTZ DEFAULT NOW(),
            CONSTRAINT uq_leave_balance UNIQUE (employee_id, year, leave_type),
            CONSTRAINT ck_leave_balance_available CHECK (available_days >= 0)
        )
    """)

    # ── 7. leave_balance_history ──────────────────────────────────────────
    op.execute("""
        CREATE TABLE leave_balance_history (
            id               UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            employee_id      UUID NOT NULL REFERENCES employees(id) ON DELETE CASCADE,
            year             INTEGER NOT NULL,
            leave_type       leave_type NOT NULL,
            total_allocated  NUMERIC(5,2) NOT NULL DEFAULT 0,
            used_days        NUMERIC(5,2) NOT NULL DEFAULT 0,
            available_days   NUMERIC(5,2) NOT NULL DEFAULT 0,
            carry_forward    NUMERIC(5,2) NOT NULL DEFAULT 0,
            archived_at      TIMESTAMPTZ DEFAULT NOW(),
            archived_by      UUID REFERENCES users(id) ON DELETE SET NULL
        )
    """)
    op.execute("CREATE INDEX idx_balance_history_year ON leave_balance_history(year)")

    # ── 8. leave_requests ─────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE leave_requests (
            id                UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            employee_id       UUID NOT NULL REFERENCES employees(id) ON DELETE CASCADE,
            leave_type        leave_type NOT NULL,
            start_date        DATE NOT NULL,
            end_date          DATE NOT NULL,
            is_half_day       BOOLEAN NOT NULL DEFAULT FALSE,
            days_count        NUMERIC(5,2) NOT NULL,
            reason            TEXT,
            status            leave_status NOT NULL DEFAULT 'pending',
            rejection_reason  TEXT,
            approved_by       UUID REFERENCES users(id) ON DELETE SET NULL,
            approved_at       TIMESTAMPTZ,
            cancelled_at      TIMESTAMPTZ,
            applied_at        TIMESTAMPTZ DEFAULT NOW(),
            updated_at        TIMESTAMPTZ DEFAULT NOW(),
            CHECK (start_date <= end_date)
        )
    """)
    op.execute("CREATE INDEX ix_leave_requests_employee_status ON leave_requests(employee_id, status)")
    op.execute("CREATE INDEX ix_leave_requests_dates           ON leave_requests(start_date, end_date)")

    # ── 9. system_settings ────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE system_settings (
            key          VARCHAR(100) PRIMARY KEY,
            value        TEXT NOT NULL DEFAULT '',
            description  TEXT,
            updated_at   TIMESTAMPTZ DEFAULT NOW()
        )
    """)

    # ── 10. google_calendar_tokens ────────────────────────────────────────
    op.execute("""
        CREATE TABLE google_calendar_tokens (
            id               UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            user_id          UUID NOT NULL UNIQUE REFERENCES users(id) ON DELETE CASCADE,
            access_token     TEXT NOT NULL,
            refresh_token    TEXT NOT NULL,
            token_expiry     TIMESTAMPTZ,
            scope            TEXT NOT NULL DEFAULT '',
            is_active        BOOLEAN NOT NULL DEFAULT TRUE,
            last_sync_at     TIMESTAMPTZ,
            last_sync_error  TEXT,
            created_at       TIMESTAMPTZ DEFAULT NOW(),
            updated_at       TIMESTAMPTZ DEFAULT NOW()
        )
    """)

    # ── 11. calendar_events ───────────────────────────────────────────────
    op.execute("""
        CREATE TABLE calendar_events (
            id                UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            leave_request_id  UUID NOT NULL REFERENCES leave_requests(id) ON DELETE CASCADE,
            user_id           UUID NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            google_event_id   VARCHAR(255),
            calendar_id       VARCHAR(255) NOT NULL DEFAULT 'primary',
            calendar_type     calendar_type NOT NULL DEFAULT 'personal',
            sync_status       calendar_sync_status NOT NULL DEFAULT 'synced',
            sync_error        TEXT,
            created_at        TIMESTAMPTZ DEFAULT NOW(),
            updated_at        TIMESTAMPTZ DEFAULT NOW()
        )
    """)
    op.execute("CREATE INDEX ix_calendar_events_leave_request_id ON calendar_events(leave_request_id)")

    # ── 12. audit_trail ───────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE audit_trail (
            id           UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            actor_id     UUID REFERENCES users(id) ON DELETE SET NULL,
            action       VARCHAR(50) NOT NULL,
            entity_type  VARCHAR(50) NOT NULL,
            entity_id    UUID NOT NULL,
            old_values   JSONB,
            new_values   JSONB,
            ip_address   INET,
            user_agent   TEXT,
            created_at   TIMESTAMPTZ DEFAULT NOW()
        )
    """)
    op.execute("CREATE INDEX ix_audit_trail_actor_id   ON audit_trail(actor_id)")
    op.execute("CREATE INDEX ix_audit_trail_entity     ON audit_trail(entity_type, entity_id)")
    op.execute("CREATE INDEX ix_audit_trail_created_at ON audit_trail(created_at)")

    # ── Seed data ─────────────────────────────────────────────────────────
    for key, value, description in SEED_SETTINGS:
        op.execute(
            "INSERT INTO system_settings (key, value, description) "
            f"VALUES ('{key}', '{value}', '{description}') ON CONFLICT (key) DO NOTHING"
        )


# ---------------------------------------------------------------------------
# DOWNGRADE
# ---------------------------------------------------------------------------


def downgrade() -> None:
    op.execute("ALTER TABLE departments DROP CONSTRAINT IF EXISTS fk_dept_manager")
    for table in TABLES_IN_DROP_ORDER:
        op.execute(f"DROP TABLE IF EXISTS {table} CASCADE")
    for name, _ in reversed(ENUM_TYPES):
        _drop_enum(name)
