"""Leave auto-processor — consumes ``leave.requested`` events.

For every event the record is re-read (the payload may be stale), and a
request still in PENDING is classified by its inclusive duration:

    duration <= threshold → APPROVED (+ ``leave.approved`` event)
    duration >  threshold → PENDING_APPROVAL

Anything not PENDING is left alone, which makes redelivered events a
no-op once the first delivery has been processed.
"""

from __future__ import annotations

import logging
import uuid
from typing import Any, Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from workforce.common.constants import LeaveEvent, LeaveStatus
from workforce.config import settings
from workforce.leave.models import LeaveRequest
from workforce.leave.repository import LeaveRequestRepository
from workforce.leave.rules import calculate_leave_duration, classify_leave
from workforce.leave.schemas import LeaveApprovedEvent
from workforce.leave.service import publish_event
from workforce.messaging.broker import (
    EventPublisher,
    MessageMetadata,
    MessageOutcome,
    RabbitMQBroker,
)

logger = logging.getLogger(__name__)


class LeaveRequestProcessor:
    """Handler for the leave queue; one session per message."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        publisher: Optional[EventPublisher],
        *,
        threshold_days: Optional[int] = None,
    ) -> None:
        self.session_factory = session_factory
        self.publisher = publisher
        self.threshold_days = (
            settings.AUTO_APPROVE_DAYS_THRESHOLD
            if threshold_days is None
            else threshold_days
        )

    async def handle_message(
        self,
        payload: dict[str, Any],
        metadata: MessageMetadata,
    ) -> MessageOutcome:
        """Broker entry point.

        Database errors propagate so the broker applies its retry policy;
        everything else is settled here with an ack.
        """
        if metadata.routing_key != LeaveEvent.requested.value:
            logger.info("Ignoring message with routing key %r", metadata.routing_key)
            return MessageOutcome.ack

        request_id = _extract_id(payload)
        if request_id is None:
            logger.warning("leave.requested message without a usable id: %r", payload)
            return MessageOutcome.ack

        async with self.session_factory() as db:
            leave_request = await LeaveRequestRepository.find_by_id(db, request_id)
            if leave_request is None:
                logger.warning("Leave request %s no longer exists; skipping", request_id)
                return MessageOutcome.ack

            next_status = await self.auto_process(db, leave_request)
            await db.commit()

        if next_status is LeaveStatus.approved:
            await publish_event(
                self.publisher,
                LeaveEvent.approved,
                LeaveApprovedEvent(
                    id=leave_request.id,
                    employee_id=leave_request.employee_id,
                    start_date=leave_request.start_date,
                    end_date=leave_request.end_date,
                    processed_at=leave_request.processed_at,
                ).to_payload(),
            )
        return MessageOutcome.ack

    async def auto_process(
        self,
        db: AsyncSession,
        leave_request: LeaveRequest,
    ) -> Optional[LeaveStatus]:
        """Classify a PENDING request; return the new status, or ``None`` if untouched."""
        if leave_request.status != LeaveStatus.pending:
            logger.info(
                "Leave request %s already %s; nothing to do",
                leave_request.id, leave_request.status.value,
            )
            return None

        duration = calculate_leave_duration(
            leave_request.start_date, leave_request.end_date,
        )
        if duration is None:
            logger.error("Leave request %s has unparseable dates; skipping", leave_request.id)
            return None

        next_status = classify_leave(duration, self.threshold_days)
        if next_status == leave_request.status:
            return None

        await LeaveRequestRepository.update_status(db, leave_request.id, next_status)
        logger.info(
            "Leave request %s (%d day(s)) auto-processed → %s",
            leave_request.id, duration, next_status.value,
        )
        return next_status


def _extract_id(payload: dict[str, Any]) -> Optional[uuid.UUID]:
    raw = payload.get("id") if isinstance(payload, dict) else None
    if not raw:
        return None
    try:
        return uuid.UUID(str(raw))
    except ValueError:
        return None


async def start_leave_request_consumer(
    broker: RabbitMQBroker,
    session_factory: async_sessionmaker[AsyncSession],
) -> LeaveRequestProcessor:
    """Subscribe the auto-processor to the broker's queue."""
    processor = LeaveRequestProcessor(session_factory, broker)
    await broker.subscribe(processor.handle_message)
    logger.info(
        "Leave auto-processor started (threshold=%d day(s))", processor.threshold_days,
    )
    return processor
