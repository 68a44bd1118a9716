"""Leave service test suite — idempotent creation, overlap conflicts, date
validation, best-effort event publishing, status updates, cancellation
and stats.
"""

from __future__ import annotations

import uuid
from datetime import date, timedelta

import pytest
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from workforce.common.constants import LeaveStatus
from workforce.common.exceptions import (
    ConflictError,
    ForbiddenException,
    InvalidStateException,
    NotFoundException,
    ValidationException,
)
from workforce.leave.models import LeaveRequest
from workforce.leave.repository import LeaveRequestRepository
from workforce.leave.schemas import LeaveRequestCreate
from workforce.leave.service import LeaveService, generate_idempotency_key
from tests.conftest import RecordingPublisher, _make_leave_request


FUTURE = date.today() + timedelta(days=30)


# ── Helpers ─────────────────────────────────────────────────────────


async def _seed_leave(db: AsyncSession, employee_id: uuid.UUID, **kwargs) -> LeaveRequest:
    leave = LeaveRequest(**_make_leave_request(employee_id=employee_id, **kwargs))
    db.add(leave)
    await db.flush()
    return leave


async def _count_leaves(db: AsyncSession) -> int:
    result = await db.execute(select(func.count()).select_from(LeaveRequest))
    return result.scalar_one()


def _payload(employee_id: uuid.UUID, **overrides) -> LeaveRequestCreate:
    data = dict(
        employee_id=employee_id,
        start_date=FUTURE,
        end_date=FUTURE + timedelta(days=1),
    )
    data.update(overrides)
    return LeaveRequestCreate(**data)


# ═════════════════════════════════════════════════════════════════════
# 1. CREATE
# ═════════════════════════════════════════════════════════════════════


class TestCreateLeaveRequest:
    """Happy path, idempotent replays and event publishing."""

    async def test_create_returns_pending_request(self, db, test_employee, publisher):
        result = await LeaveService.create_leave_request(
            db, _payload(test_employee["id"]), publisher=publisher,
        )

        assert result.is_duplicate is False
        assert result.data.status == LeaveStatus.pending
        assert result.data.processed_at is None
        assert result.data.idempotency_key
        assert result.data.employee.email == test_employee["email"]
        assert await _count_leaves(db) == 1

    async def test_create_publishes_requested_event(self, db, test_employee, publisher):
        result = await LeaveService.create_leave_request(
            db,
            _payload(test_employee["id"], idempotency_key="evt-1"),
            publisher=publisher,
        )

        assert publisher.routing_keys() == ["leave.requested"]
        _, payload = publisher.published[0]
        assert payload["id"] == str(result.data.id)
        assert payload["employeeId"] == str(test_employee["id"])
        assert payload["startDate"] == FUTURE.isoformat()
        assert payload["endDate"] == (FUTURE + timedelta(days=1)).isoformat()
        assert payload["status"] == "PENDING"
        assert payload["idempotencyKey"] == "evt-1"
        assert "timestamp" in payload

    async def test_generated_keys_are_unique(self, db, test_employee, publisher):
        first = await LeaveService.create_leave_request(
            db, _payload(test_employee["id"]), publisher=publisher,
        )
        second = await LeaveService.create_leave_request(
            db,
            _payload(
                test_employee["id"],
                start_date=FUTURE + timedelta(days=5),
                end_date=FUTURE + timedelta(days=5),
            ),
            publisher=publisher,
        )

        assert first.data.idempotency_key != second.data.idempotency_key
        assert len(generate_idempotency_key()) == 32

    async def test_same_key_returns_duplicate(self, db, test_employee, publisher):
        body = _payload(test_employee["id"], idempotency_key="replay-me")

        first = await LeaveService.create_leave_request(db, body, publisher=publisher)
        second = await LeaveService.create_leave_request(db, body, publisher=publisher)

        assert first.is_duplicate is False
        assert second.is_duplicate is True
        assert second.data.id == first.data.id
        assert await _count_leaves(db) == 1
        assert publisher.routing_keys() == ["leave.requested"]

    async def test_replay_after_approval_is_still_a_duplicate(
        self, db, test_employee, publisher,
    ):
        existing = await _seed_leave(
            db, test_employee["id"],
            start_date=FUTURE, end_date=FUTURE + timedelta(days=1),
            status=LeaveStatus.approved,
            idempotency_key="approved-key",
        )

        result = await LeaveService.create_leave_request(
            db,
            _payload(test_employee["id"], idempotency_key="approved-key"),
            publisher=publisher,
        )

        assert result.is_duplicate is True
        assert result.data.id == existing.id
        assert result.data.status == LeaveStatus.approved
        assert publisher.published == []

    async def test_lost_insert_race_returns_winner(
        self, db, test_employee, publisher, monkeypatch,
    ):
        winner = await _seed_leave(
            db, test_employee["id"],
            start_date=FUTURE, end_date=FUTURE,
            idempotency_key="racy",
        )
        await db.commit()

        real_lookup = LeaveRequestRepository.find_by_idempotency_key
        calls = []

        async def _miss_first(session, key):
            calls.append(key)
            if len(calls) == 1:
                return None
            return await real_lookup(session, key)

        monkeypatch.setattr(
            LeaveRequestRepository, "find_by_idempotency_key", staticmethod(_miss_first),
        )

        result = await LeaveService.create_leave_request(
            db,
            _payload(test_employee["id"], idempotency_key="racy"),
            publisher=publisher,
        )

        assert result.is_duplicate is True
        assert result.data.id == winner.id
        assert len(calls) == 2
        assert publisher.published == []

    async def test_publish_failure_does_not_fail_create(self, db, test_employee):
        failing = RecordingPublisher(fail=True)

        result = await LeaveService.create_leave_request(
            db, _payload(test_employee["id"]), publisher=failing,
        )

        assert result.is_duplicate is False
        assert await _count_leaves(db) == 1

    async def test_unexpected_publisher_error_does_not_fail_create(
        self, db, test_employee,
    ):
        """Any publisher error is logged; the committed request is still returned."""

        class _BrokenPublisher:
            async def publish(self, routing_key, payload):
                raise RuntimeError("serializer exploded")

        result = await LeaveService.create_leave_request(
            db, _payload(test_employee["id"]), publisher=_BrokenPublisher(),
        )

        assert result.is_duplicate is False
        assert result.data.status == LeaveStatus.pending
        assert await _count_leaves(db) == 1

    async def test_create_without_publisher(self, db, test_employee):
        result = await LeaveService.create_leave_request(db, _payload(test_employee["id"]))
        assert result.data.status == LeaveStatus.pending


# ═════════════════════════════════════════════════════════════════════
# 2. VALIDATION + CONFLICTS
# ═════════════════════════════════════════════════════════════════════


class TestCreateValidation:

    async def test_unknown_employee(self, db, publisher):
        with pytest.raises(NotFoundException):
            await LeaveService.create_leave_request(
                db, _payload(uuid.uuid4()), publisher=publisher,
            )

    async def test_start_after_end(self, db, test_employee, publisher):
        # Bypass the schema validator to reach the service check
        body = LeaveRequestCreate.model_construct(
            employee_id=test_employee["id"],
            start_date=FUTURE + timedelta(days=3),
            end_date=FUTURE,
            idempotency_key=None,
        )
        with pytest.raises(ValidationException) as exc_info:
            await LeaveService.create_leave_request(db, body, publisher=publisher)
        assert "end_date" in exc_info.value.errors

    async def test_past_start_date(self, db, test_employee, publisher):
        yesterday = date.today() - timedelta(days=2)
        with pytest.raises(ValidationException) as exc_info:
            await LeaveService.create_leave_request(
                db,
                _payload(test_employee["id"], start_date=yesterday, end_date=FUTURE),
                publisher=publisher,
            )
        assert "start_date" in exc_info.value.errors
        assert await _count_leaves(db) == 0

    @pytest.mark.parametrize(
        "status", [LeaveStatus.approved, LeaveStatus.pending_approval],
    )
    async def test_overlap_with_active_leave(self, db, test_employee, publisher, status):
        await _seed_leave(
            db, test_employee["id"],
            start_date=FUTURE + timedelta(days=1),
            end_date=FUTURE + timedelta(days=4),
            status=status,
        )

        with pytest.raises(ConflictError):
            await LeaveService.create_leave_request(
                db, _payload(test_employee["id"]), publisher=publisher,
            )
        assert publisher.published == []

    @pytest.mark.parametrize("status", [LeaveStatus.pending, LeaveStatus.rejected])
    async def test_overlap_with_inactive_leave_is_allowed(
        self, db, test_employee, publisher, status,
    ):
        await _seed_leave(
            db, test_employee["id"],
            start_date=FUTURE, end_date=FUTURE + timedelta(days=1),
            status=status,
        )

        result = await LeaveService.create_leave_request(
            db, _payload(test_employee["id"]), publisher=publisher,
        )
        assert result.is_duplicate is False
        assert await _count_leaves(db) == 2


# ═════════════════════════════════════════════════════════════════════
# 3. STATUS UPDATE
# ═════════════════════════════════════════════════════════════════════


class TestUpdateStatus:

    async def test_update_sets_processed_at(self, db, test_employee):
        leave = await _seed_leave(db, test_employee["id"])

        result = await LeaveService.update_leave_request_status(db, leave.id, "REJECTED")

        assert result.status == LeaveStatus.rejected
        assert result.processed_at is not None

    async def test_any_transition_is_allowed(self, db, test_employee):
        leave = await _seed_leave(db, test_employee["id"], status=LeaveStatus.rejected)

        result = await LeaveService.update_leave_request_status(
            db, leave.id, LeaveStatus.approved,
        )
        assert result.status == LeaveStatus.approved

    async def test_invalid_status(self, db, test_employee):
        leave = await _seed_leave(db, test_employee["id"])

        with pytest.raises(ValidationException) as exc_info:
            await LeaveService.update_leave_request_status(db, leave.id, "CANCELLED")
        assert "status" in exc_info.value.errors

    async def test_missing_request(self, db):
        with pytest.raises(NotFoundException):
            await LeaveService.update_leave_request_status(
                db, uuid.uuid4(), LeaveStatus.approved,
            )

    async def test_missing_request_is_reported_before_bad_status(self, db):
        """An unknown id fails NotFound even when the status is also invalid."""
        with pytest.raises(NotFoundException):
            await LeaveService.update_leave_request_status(db, uuid.uuid4(), "BOGUS")


# ═════════════════════════════════════════════════════════════════════
# 4. CANCEL
# ═════════════════════════════════════════════════════════════════════


class TestCancel:

    async def test_owner_can_cancel(self, db, test_employee):
        leave = await _seed_leave(db, test_employee["id"], status=LeaveStatus.approved)

        await LeaveService.cancel_leave_request(db, leave.id, test_employee["id"])

        assert await LeaveRequestRepository.find_by_id(db, leave.id) is None

    async def test_other_employee_is_forbidden(self, db, test_employee):
        leave = await _seed_leave(db, test_employee["id"])

        with pytest.raises(ForbiddenException):
            await LeaveService.cancel_leave_request(db, leave.id, uuid.uuid4())
        assert await _count_leaves(db) == 1

    async def test_rejected_cannot_be_cancelled(self, db, test_employee):
        leave = await _seed_leave(db, test_employee["id"], status=LeaveStatus.rejected)

        with pytest.raises(InvalidStateException):
            await LeaveService.cancel_leave_request(db, leave.id, test_employee["id"])

    async def test_missing_request(self, db, test_employee):
        with pytest.raises(NotFoundException):
            await LeaveService.cancel_leave_request(
                db, uuid.uuid4(), test_employee["id"],
            )


# ═════════════════════════════════════════════════════════════════════
# 5. READ + STATS
# ═════════════════════════════════════════════════════════════════════


class TestReadAndStats:

    async def test_get_leave_request(self, db, test_employee):
        leave = await _seed_leave(db, test_employee["id"])

        result = await LeaveService.get_leave_request(db, leave.id)
        assert result.id == leave.id
        assert result.employee.name == "Asha Verma"

    async def test_get_missing(self, db):
        with pytest.raises(NotFoundException):
            await LeaveService.get_leave_request(db, uuid.uuid4())

    async def test_stats_default_to_current_year(self, db, test_employee):
        await _seed_leave(
            db, test_employee["id"],
            start_date=FUTURE, end_date=FUTURE + timedelta(days=1),
            status=LeaveStatus.approved,
        )

        stats = await LeaveService.get_employee_leave_stats(db, test_employee["id"])
        assert stats.total == 1
        assert stats.approved == 1
        assert stats.total_days == 2

    async def test_stats_unknown_employee(self, db):
        with pytest.raises(NotFoundException):
            await LeaveService.get_employee_leave_stats(db, uuid.uuid4(), 2025)
