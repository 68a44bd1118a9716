"""001 – Initial schema: departments, employees, leave_requests.

Revision ID: 001_initial_schema
Revises:
Create Date: 2026-10-19 09:00:00.000000+00:00
"""

from alembic import op

# Revision identifiers
revision = "001_initial_schema"
down_revision = None
branch_labels = None
depends_on = None


LEAVE_STATUSES = ["PENDING", "PENDING_APPROVAL", "APPROVED", "REJECTED"]


# ---------------------------------------------------------------------------
# UPGRADE
# ---------------------------------------------------------------------------


def upgrade() -> None:
    # ── Extensions ────────────────────────────────────────────────────────
    op.execute('CREATE EXTENSION IF NOT EXISTS "pgcrypto"')

    # ── 1. departments ────────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE departments (
            id           UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            name         VARCHAR(100) NOT NULL UNIQUE,
            description  TEXT,
            created_at   TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            updated_at   TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)

    # ── 2. employees ──────────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE employees (
            id             UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            name           VARCHAR(100) NOT NULL,
            email          VARCHAR(255) NOT NULL UNIQUE,
            department_id  UUID NOT NULL
                           REFERENCES departments(id) ON DELETE RESTRICT,
            created_at     TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            updated_at     TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)
    op.execute(
        "CREATE INDEX ix_employees_department_id ON employees (department_id)"
    )

    # ── 3. leave_requests ─────────────────────────────────────────────────
    statuses = ", ".join(f"'{s}'" for s in LEAVE_STATUSES)
    op.execute(f"""
        CREATE TABLE leave_requests (
            id               UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            employee_id      UUID NOT NULL
                             REFERENCES employees(id) ON DELETE CASCADE,
            start_date       DATE NOT NULL,
            end_date         DATE NOT NULL,
            status           VARCHAR(20) NOT NULL DEFAULT 'PENDING'
                             CHECK (status IN ({statuses})),
            processed_at     TIMESTAMPTZ,
            idempotency_key  VARCHAR(255),
            created_at       TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            updated_at       TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT uq_leave_requests_idempotency_key UNIQUE (idempotency_key),
            CONSTRAINT ck_leave_requests_date_order CHECK (end_date >= start_date)
        )
    """)
    op.execute(
        "CREATE INDEX ix_leave_requests_employee_status_created "
        "ON leave_requests (employee_id, status, created_at)"
    )
    op.execute(
        "CREATE INDEX ix_leave_requests_dates "
        "ON leave_requests (start_date, end_date)"
    )


# ---------------------------------------------------------------------------
# DOWNGRADE
# ---------------------------------------------------------------------------


def downgrade() -> None:
    # Drop tables in reverse dependency order
    for table in ("leave_requests", "employees", "departments"):
        op.execute(f"DROP TABLE IF EXISTS {table} CASCADE")
