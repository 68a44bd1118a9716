"""Core HR ORM models: Department, Employee.

SQLAlchemy 2.0 async-compatible models with Mapped[] annotations.
Column names match the schema defined in alembic/versions/001_initial_schema.
"""

from __future__ import annotations

import uuid
from typing import TYPE_CHECKING, Optional

import sqlalchemy as sa
from sqlalchemy.orm import Mapped, mapped_column, relationship

from workforce.common.models import TimestampMixin, UUIDPrimaryKeyMixin
from workforce.database import Base

if TYPE_CHECKING:
    from workforce.leave.models import LeaveRequest


# ═════════════════════════════════════════════════════════════════════
# Department
# ═════════════════════════════════════════════════════════════════════


class Department(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    """Organisational department."""

    __tablename__ = "departments"

    name: Mapped[str] = mapped_column(sa.String(100), unique=True, nullable=False)
    description: Mapped[Optional[str]] = mapped_column(sa.Text)

    # ── Relationships ───────────────────────────────────────────────
    employees: Mapped[list[Employee]] = relationship(
        back_populates="department",
        passive_deletes="all",
    )

    def __repr__(self) -> str:
        return f"<Department {self.name!r}>"


# ═════════════════════════════════════════════════════════════════════
# Employee
# ═════════════════════════════════════════════════════════════════════


class Employee(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    """Employee record; owns leave requests."""

    __tablename__ = "employees"

    name: Mapped[str] = mapped_column(sa.String(100), nullable=False)
    email: Mapped[str] = mapped_column(
        sa.String(255), unique=True, nullable=False,
    )
    department_id: Mapped[uuid.UUID] = mapped_column(
        sa.Uuid(as_uuid=True),
        sa.ForeignKey("departments.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )

    # ── Relationships ───────────────────────────────────────────────
    department: Mapped[Department] = relationship(back_populates="employees")
    leave_requests: Mapped[list[LeaveRequest]] = relationship(
        back_populates="employee",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    def __repr__(self) -> str:
        return f"<Employee {self.email!r}>"
