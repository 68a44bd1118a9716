"""Leave service layer — creation, status updates, cancellation, stats.

Business logic:
  - Creation validates the employee and the date window, rejects overlaps
    with active (APPROVED / PENDING_APPROVAL) leave and is idempotent on
    ``idempotency_key``: a replay returns the original record flagged as a
    duplicate, never a second row.
  - New requests are committed before the ``leave.requested`` event is
    published, so the auto-processor always finds the row. Publishing is
    best-effort: a broker failure is logged and the request still succeeds.
  - Status updates accept any recognised status (no transition graph).
  - Cancellation is a hard delete, owner-only, refused for REJECTED.
"""

from __future__ import annotations

import logging
import secrets
import uuid
from datetime import date, datetime, timezone
from typing import Any, Optional, Union

from sqlalchemy.ext.asyncio import AsyncSession

from workforce.common.constants import LeaveEvent, LeaveStatus
from workforce.common.exceptions import (
    ConflictError,
    ConstraintViolationError,
    ForbiddenException,
    InvalidStateException,
    NotFoundException,
    ValidationException,
)
from workforce.common.pagination import PaginatedResponse, PaginationParams
from workforce.core_hr.service import EmployeeService
from workforce.leave.models import LeaveRequest
from workforce.leave.repository import LeaveRequestRepository
from workforce.leave.schemas import (
    LeaveRequestCreate,
    LeaveRequestCreated,
    LeaveRequestedEvent,
    LeaveRequestOut,
    LeaveStats,
)
from workforce.messaging.broker import BrokerUnavailableError, EventPublisher

logger = logging.getLogger(__name__)


def _today() -> date:
    return datetime.now(timezone.utc).date()


def generate_idempotency_key() -> str:
    """128 random bits, hex encoded."""
    return secrets.token_hex(16)


async def publish_event(
    publisher: Optional[EventPublisher],
    event: LeaveEvent,
    payload: dict[str, Any],
) -> bool:
    """Best-effort publish; failures are logged, never raised."""
    if publisher is None:
        logger.warning(
            "No broker configured; %s event for %s not published",
            event.value, payload.get("id"),
        )
        return False
    try:
        await publisher.publish(event.value, payload)
    except BrokerUnavailableError as exc:
        logger.warning(
            "Failed to publish %s event for %s: %s", event.value, payload.get("id"), exc,
        )
        return False
    except Exception:
        logger.exception(
            "Unexpected error publishing %s event for %s", event.value, payload.get("id"),
        )
        return False
    return True


class LeaveService:
    """Leave request orchestration on top of ``LeaveRequestRepository``."""

    # ─────────────────────────────────────────────────────────────────
    # Create
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def create_leave_request(
        db: AsyncSession,
        data: LeaveRequestCreate,
        *,
        publisher: Optional[EventPublisher] = None,
    ) -> LeaveRequestCreated:
        """Validate, persist (PENDING) and announce a new leave request."""

        if not await EmployeeService.exists(db, data.employee_id):
            raise NotFoundException("Employee", str(data.employee_id))

        if data.start_date > data.end_date:
            raise ValidationException(
                {"end_date": ["End date must be on or after the start date."]}
            )
        if data.start_date < _today():
            raise ValidationException(
                {"start_date": ["Cannot create a leave request for past dates."]}
            )

        await LeaveRequestRepository.lock_employee(db, data.employee_id)

        # A replay of a caller-keyed request must not collide with itself
        # once the original has been approved.
        existing: Optional[LeaveRequest] = None
        if data.idempotency_key:
            existing = await LeaveRequestRepository.find_by_idempotency_key(
                db, data.idempotency_key,
            )

        overlapping = await LeaveRequestRepository.find_overlapping(
            db,
            data.employee_id,
            data.start_date,
            data.end_date,
            exclude_id=existing.id if existing else None,
        )
        if overlapping:
            raise ConflictError(
                "dates",
                f"{data.start_date}..{data.end_date}",
                detail=(
                    "Leave request overlaps with an existing approved or "
                    "pending-approval request."
                ),
            )

        if existing is not None:
            return await LeaveService._duplicate(db, existing)

        idempotency_key = data.idempotency_key or generate_idempotency_key()
        try:
            leave_request = await LeaveRequestRepository.create(
                db,
                employee_id=data.employee_id,
                start_date=data.start_date,
                end_date=data.end_date,
                idempotency_key=idempotency_key,
            )
        except ConstraintViolationError:
            # Lost the insert race to a concurrent request with the same key.
            await db.rollback()
            winner = await LeaveRequestRepository.find_by_idempotency_key(
                db, idempotency_key,
            )
            if winner is None:
                raise ConflictError("idempotency_key", idempotency_key) from None
            return await LeaveService._duplicate(db, winner)

        await db.commit()
        logger.info(
            "Leave request %s created for employee %s (%s → %s)",
            leave_request.id, data.employee_id, data.start_date, data.end_date,
        )

        await publish_event(
            publisher,
            LeaveEvent.requested,
            LeaveRequestedEvent(
                id=leave_request.id,
                employee_id=leave_request.employee_id,
                start_date=leave_request.start_date,
                end_date=leave_request.end_date,
                status=leave_request.status,
                idempotency_key=leave_request.idempotency_key,
                timestamp=datetime.now(timezone.utc),
            ).to_payload(),
        )

        detailed = await LeaveRequestRepository.find_by_id(
            db, leave_request.id, include_employee=True,
        )
        return LeaveRequestCreated(
            data=LeaveRequestOut.model_validate(detailed),
            is_duplicate=False,
        )

    @staticmethod
    async def _duplicate(
        db: AsyncSession,
        leave_request: LeaveRequest,
    ) -> LeaveRequestCreated:
        logger.info(
            "Duplicate leave request for idempotency key %r; returning %s",
            leave_request.idempotency_key, leave_request.id,
        )
        detailed = await LeaveRequestRepository.find_by_id(
            db, leave_request.id, include_employee=True,
        )
        return LeaveRequestCreated(
            data=LeaveRequestOut.model_validate(detailed),
            is_duplicate=True,
        )

    # ─────────────────────────────────────────────────────────────────
    # Read
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def get_leave_request(
        db: AsyncSession,
        request_id: uuid.UUID,
    ) -> LeaveRequestOut:
        leave_request = await LeaveRequestRepository.find_by_id(
            db, request_id, include_employee=True,
        )
        if leave_request is None:
            raise NotFoundException("LeaveRequest", str(request_id))
        return LeaveRequestOut.model_validate(leave_request)

    @staticmethod
    async def list_leave_requests(
        db: AsyncSession,
        pagination: PaginationParams,
        *,
        employee_id: Optional[uuid.UUID] = None,
        status: Optional[LeaveStatus] = None,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
    ) -> PaginatedResponse[LeaveRequestOut]:
        page = await LeaveRequestRepository.find_all(
            db,
            pagination,
            employee_id=employee_id,
            status=status,
            start_date=start_date,
            end_date=end_date,
        )
        return PaginatedResponse[LeaveRequestOut](
            data=[LeaveRequestOut.model_validate(r) for r in page.data],
            meta=page.meta,
        )

    # ─────────────────────────────────────────────────────────────────
    # Status update
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def update_leave_request_status(
        db: AsyncSession,
        request_id: uuid.UUID,
        status: Union[LeaveStatus, str],
    ) -> LeaveRequestOut:
        """Set any recognised status and stamp ``processed_at``."""

        if await LeaveRequestRepository.find_by_id(db, request_id) is None:
            raise NotFoundException("LeaveRequest", str(request_id))

        try:
            new_status = LeaveStatus(status)
        except ValueError:
            raise ValidationException(
                {"status": [
                    f"Invalid status '{status}'. Expected one of: "
                    + ", ".join(s.value for s in LeaveStatus)
                ]}
            ) from None

        leave_request = await LeaveRequestRepository.update_status(
            db, request_id, new_status,
        )
        if leave_request is None:
            raise NotFoundException("LeaveRequest", str(request_id))

        logger.info("Leave request %s status set to %s", request_id, new_status.value)
        detailed = await LeaveRequestRepository.find_by_id(
            db, request_id, include_employee=True,
        )
        return LeaveRequestOut.model_validate(detailed)

    # ─────────────────────────────────────────────────────────────────
    # Cancel
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def cancel_leave_request(
        db: AsyncSession,
        request_id: uuid.UUID,
        requesting_employee_id: uuid.UUID,
    ) -> None:
        """Hard-delete a request on behalf of its owner."""

        leave_request = await LeaveRequestRepository.find_by_id(db, request_id)
        if leave_request is None:
            raise NotFoundException("LeaveRequest", str(request_id))

        if leave_request.employee_id != requesting_employee_id:
            raise ForbiddenException("You can only cancel your own leave requests.")

        if leave_request.status == LeaveStatus.rejected:
            raise InvalidStateException("Cannot cancel a rejected leave request.")

        await LeaveRequestRepository.delete(db, request_id)
        logger.info(
            "Leave request %s cancelled by employee %s", request_id, requesting_employee_id,
        )

    # ─────────────────────────────────────────────────────────────────
    # Stats
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def get_employee_leave_stats(
        db: AsyncSession,
        employee_id: uuid.UUID,
        year: Optional[int] = None,
    ) -> LeaveStats:
        if not await EmployeeService.exists(db, employee_id):
            raise NotFoundException("Employee", str(employee_id))
        return await LeaveRequestRepository.get_employee_stats(
            db, employee_id, year or _today().year,
        )
