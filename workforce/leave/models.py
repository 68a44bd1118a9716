"""Leave ORM model: LeaveRequest."""

from __future__ import annotations

import uuid
from datetime import date, datetime
from typing import TYPE_CHECKING, Optional

import sqlalchemy as sa
from sqlalchemy.orm import Mapped, mapped_column, relationship

from workforce.common.constants import LeaveStatus
from workforce.common.models import TimestampMixin, UUIDPrimaryKeyMixin
from workforce.database import Base

if TYPE_CHECKING:
    from workforce.core_hr.models import Employee


class LeaveRequest(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    __tablename__ = "leave_requests"
    __table_args__ = (
        sa.UniqueConstraint(
            "idempotency_key", name="uq_leave_requests_idempotency_key",
        ),
        sa.CheckConstraint(
            "end_date >= start_date", name="ck_leave_requests_date_order",
        ),
        sa.Index(
            "ix_leave_requests_employee_status_created",
            "employee_id", "status", "created_at",
        ),
        sa.Index("ix_leave_requests_dates", "start_date", "end_date"),
    )

    employee_id: Mapped[uuid.UUID] = mapped_column(
        sa.Uuid(as_uuid=True),
        sa.ForeignKey("employees.id", ondelete="CASCADE"),
        nullable=False,
    )
    start_date: Mapped[date] = mapped_column(sa.Date, nullable=False)
    end_date: Mapped[date] = mapped_column(sa.Date, nullable=False)
    status: Mapped[LeaveStatus] = mapped_column(
        sa.Enum(
            LeaveStatus,
            name="leave_status",
            native_enum=False,
            length=20,
            values_callable=lambda enum_cls: [m.value for m in enum_cls],
        ),
        nullable=False,
        default=LeaveStatus.pending,
        server_default=LeaveStatus.pending.value,
    )
    processed_at: Mapped[Optional[datetime]] = mapped_column(
        sa.DateTime(timezone=True)
    )
    idempotency_key: Mapped[Optional[str]] = mapped_column(sa.String(255))

    # Relationships
    employee: Mapped[Employee] = relationship(back_populates="leave_requests")

    def __repr__(self) -> str:
        return (
            f"<LeaveRequest {self.id} {self.start_date}..{self.end_date} "
            f"{self.status.value if self.status else None}>"
        )
