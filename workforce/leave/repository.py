"""Leave record store — every query the leave core issues lives here.

Methods take the caller's ``AsyncSession`` and never commit; transaction
boundaries belong to the service layer (or the ``get_db`` dependency).
"""

from __future__ import annotations

import logging
import uuid
from datetime import date, datetime, timezone
from typing import Iterable, Optional, Sequence

from sqlalchemy import delete, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from workforce.common.constants import ACTIVE_LEAVE_STATUSES, LeaveStatus
from workforce.common.exceptions import ConstraintViolationError
from workforce.common.filters import apply_filters
from workforce.common.models import utcnow
from workforce.common.pagination import PaginatedResponse, PaginationParams, paginate
from workforce.core_hr.models import Employee
from workforce.leave.models import LeaveRequest
from workforce.leave.rules import calculate_leave_duration
from workforce.leave.schemas import LeaveStats

logger = logging.getLogger(__name__)


def _with_employee(query):
    """Eager-load employee → department, refreshing rows already in the session."""
    return query.options(
        selectinload(LeaveRequest.employee).selectinload(Employee.department),
    ).execution_options(populate_existing=True)


class LeaveRequestRepository:
    """Async persistence operations for leave requests."""

    # ── Create ──────────────────────────────────────────────────────

    @staticmethod
    async def create(
        db: AsyncSession,
        *,
        employee_id: uuid.UUID,
        start_date: date,
        end_date: date,
        idempotency_key: Optional[str],
    ) -> LeaveRequest:
        """Insert a PENDING request.

        Raises ``ConstraintViolationError`` when the idempotency key is
        already taken; the caller must roll the session back.
        """
        leave_request = LeaveRequest(
            employee_id=employee_id,
            start_date=start_date,
            end_date=end_date,
            status=LeaveStatus.pending,
            idempotency_key=idempotency_key,
        )
        db.add(leave_request)
        try:
            await db.flush()
        except IntegrityError as exc:
            if "idempotency_key" in str(exc.orig):
                raise ConstraintViolationError("idempotency_key", idempotency_key) from exc
            raise
        return leave_request

    # ── Lookups ─────────────────────────────────────────────────────

    @staticmethod
    async def find_by_id(
        db: AsyncSession,
        request_id: uuid.UUID,
        *,
        include_employee: bool = False,
    ) -> Optional[LeaveRequest]:
        query = select(LeaveRequest).where(LeaveRequest.id == request_id)
        if include_employee:
            query = _with_employee(query)
        result = await db.execute(query)
        return result.scalars().first()

    @staticmethod
    async def find_by_idempotency_key(
        db: AsyncSession,
        idempotency_key: str,
    ) -> Optional[LeaveRequest]:
        result = await db.execute(
            select(LeaveRequest)
            .where(LeaveRequest.idempotency_key == idempotency_key)
            .execution_options(populate_existing=True)
        )
        return result.scalars().first()

    @staticmethod
    async def find_by_date_range(
        db: AsyncSession,
        start_date: date,
        end_date: date,
        *,
        employee_id: Optional[uuid.UUID] = None,
        statuses: Optional[Iterable[LeaveStatus]] = None,
        exclude_id: Optional[uuid.UUID] = None,
    ) -> Sequence[LeaveRequest]:
        """Requests whose ``[start_date, end_date]`` intersects the given range.

        Both ends are inclusive: a request ending on *start_date* matches.
        """
        query = select(LeaveRequest).where(
            LeaveRequest.start_date <= end_date,
            LeaveRequest.end_date >= start_date,
        )
        if employee_id is not None:
            query = query.where(LeaveRequest.employee_id == employee_id)
        if statuses is not None:
            query = query.where(LeaveRequest.status.in_(list(statuses)))
        if exclude_id is not None:
            query = query.where(LeaveRequest.id != exclude_id)
        result = await db.execute(query.order_by(LeaveRequest.start_date))
        return result.scalars().all()

    @staticmethod
    async def find_overlapping(
        db: AsyncSession,
        employee_id: uuid.UUID,
        start_date: date,
        end_date: date,
        *,
        exclude_id: Optional[uuid.UUID] = None,
    ) -> Sequence[LeaveRequest]:
        """Active (APPROVED / PENDING_APPROVAL) requests of the employee that overlap."""
        return await LeaveRequestRepository.find_by_date_range(
            db,
            start_date,
            end_date,
            employee_id=employee_id,
            statuses=ACTIVE_LEAVE_STATUSES,
            exclude_id=exclude_id,
        )

    @staticmethod
    async def find_all(
        db: AsyncSession,
        pagination: PaginationParams,
        *,
        employee_id: Optional[uuid.UUID] = None,
        status: Optional[LeaveStatus] = None,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
    ) -> PaginatedResponse:
        """Paginated list, newest first.

        *start_date* / *end_date* bound the request window: requests
        starting on or after *start_date* and ending on or before *end_date*.
        """
        query = _with_employee(select(LeaveRequest))
        query = apply_filters(
            query,
            LeaveRequest,
            {
                "employee_id": employee_id,
                "status": status,
                "start_date__from": start_date,
                "end_date__to": end_date,
            },
        )
        query = query.order_by(LeaveRequest.created_at.desc(), LeaveRequest.id)
        return await paginate(db, query, pagination, model=LeaveRequest)

    @staticmethod
    async def find_by_employee(
        db: AsyncSession,
        employee_id: uuid.UUID,
        pagination: PaginationParams,
        *,
        status: Optional[LeaveStatus] = None,
    ) -> PaginatedResponse:
        return await LeaveRequestRepository.find_all(
            db, pagination, employee_id=employee_id, status=status,
        )

    # ── Mutations ───────────────────────────────────────────────────

    @staticmethod
    async def update_status(
        db: AsyncSession,
        request_id: uuid.UUID,
        status: LeaveStatus,
    ) -> Optional[LeaveRequest]:
        """Set *status* and stamp ``processed_at``; ``None`` if the row is gone."""
        leave_request = await LeaveRequestRepository.find_by_id(db, request_id)
        if leave_request is None:
            return None
        leave_request.status = status
        leave_request.processed_at = utcnow()
        await db.flush()
        return leave_request

    @staticmethod
    async def delete(db: AsyncSession, request_id: uuid.UUID) -> int:
        result = await db.execute(
            delete(LeaveRequest).where(LeaveRequest.id == request_id)
        )
        return result.rowcount or 0

    @staticmethod
    async def delete_by_employee(db: AsyncSession, employee_id: uuid.UUID) -> int:
        result = await db.execute(
            delete(LeaveRequest).where(LeaveRequest.employee_id == employee_id)
        )
        return result.rowcount or 0

    # ── Aggregates ──────────────────────────────────────────────────

    @staticmethod
    async def get_employee_stats(
        db: AsyncSession,
        employee_id: uuid.UUID,
        year: int,
    ) -> LeaveStats:
        """Per-status counts of requests *created* in *year*.

        ``pending`` folds PENDING and PENDING_APPROVAL together;
        ``total_days`` sums the inclusive spans of APPROVED requests only.
        """
        window_start = datetime(year, 1, 1, tzinfo=timezone.utc)
        window_end = datetime(year + 1, 1, 1, tzinfo=timezone.utc)
        in_window = (
            LeaveRequest.employee_id == employee_id,
            LeaveRequest.created_at >= window_start,
            LeaveRequest.created_at < window_end,
        )

        count_rows = await db.execute(
            select(LeaveRequest.status, func.count())
            .where(*in_window)
            .group_by(LeaveRequest.status)
        )
        counts: dict[LeaveStatus, int] = {
            status: count for status, count in count_rows.all()
        }

        approved_rows = await db.execute(
            select(LeaveRequest.start_date, LeaveRequest.end_date).where(
                *in_window, LeaveRequest.status == LeaveStatus.approved,
            )
        )
        total_days = sum(
            calculate_leave_duration(start, end) or 0
            for start, end in approved_rows.all()
        )

        return LeaveStats(
            total=sum(counts.values()),
            approved=counts.get(LeaveStatus.approved, 0),
            pending=(
                counts.get(LeaveStatus.pending, 0)
                + counts.get(LeaveStatus.pending_approval, 0)
            ),
            rejected=counts.get(LeaveStatus.rejected, 0),
            total_days=total_days,
        )

    # ── Locking ─────────────────────────────────────────────────────

    @staticmethod
    async def lock_employee(db: AsyncSession, employee_id: uuid.UUID) -> None:
        """Serialize check-then-insert per employee until the transaction ends.

        PostgreSQL only (transaction-scoped advisory lock); a no-op elsewhere.
        """
        if db.get_bind().dialect.name != "postgresql":
            return
        await db.execute(
            select(func.pg_advisory_xact_lock(func.hashtext(str(employee_id))))
        )
