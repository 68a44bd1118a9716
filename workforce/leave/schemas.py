"""Leave Pydantic v2 schemas — request / response validation and event payloads.

Naming conventions:
  - *Create / *Update / *Request → request bodies (write)
  - *Out                         → response bodies (read)
  - *Event                       → message payloads (camelCase on the wire)
"""

from __future__ import annotations

import uuid
from datetime import date, datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

from workforce.common.constants import LeaveStatus
from workforce.core_hr.schemas import EmployeeBrief


# ═════════════════════════════════════════════════════════════════════
# Requests
# ═════════════════════════════════════════════════════════════════════


class LeaveRequestCreate(BaseModel):
    """Payload for ``POST /leave-requests``."""

    model_config = ConfigDict(str_strip_whitespace=True)

    employee_id: uuid.UUID
    start_date: date
    end_date: date
    idempotency_key: Optional[str] = Field(None, min_length=1, max_length=255)

    @model_validator(mode="after")
    def validate_dates(self) -> "LeaveRequestCreate":
        if self.start_date > self.end_date:
            raise ValueError("start_date must be on or before end_date.")
        return self


class LeaveStatusUpdate(BaseModel):
    """Payload for ``PATCH /leave-requests/{id}/status``."""

    status: LeaveStatus


class LeaveCancelRequest(BaseModel):
    """Payload for ``DELETE /leave-requests/{id}`` — who is cancelling."""

    employee_id: uuid.UUID


# ═════════════════════════════════════════════════════════════════════
# Responses
# ═════════════════════════════════════════════════════════════════════


class LeaveRequestOut(BaseModel):
    """Full leave request representation."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    employee_id: uuid.UUID
    start_date: date
    end_date: date
    status: LeaveStatus
    processed_at: Optional[datetime] = None
    idempotency_key: Optional[str] = None
    created_at: datetime
    updated_at: datetime
    employee: Optional[EmployeeBrief] = None


class LeaveRequestCreated(BaseModel):
    """Creation result; ``is_duplicate`` marks an idempotent replay."""

    data: LeaveRequestOut
    is_duplicate: bool = False


class LeaveStats(BaseModel):
    """Per-employee yearly aggregate."""

    total: int = 0
    approved: int = 0
    pending: int = 0
    rejected: int = 0
    total_days: int = 0


# ═════════════════════════════════════════════════════════════════════
# Events
# ═════════════════════════════════════════════════════════════════════


class _EventModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_payload(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)


class LeaveRequestedEvent(_EventModel):
    """Published on ``leave.requested`` after a request is persisted."""

    id: uuid.UUID
    employee_id: uuid.UUID
    start_date: date
    end_date: date
    status: LeaveStatus
    idempotency_key: Optional[str] = None
    timestamp: datetime


class LeaveApprovedEvent(_EventModel):
    """Published on ``leave.approved`` when the auto-processor approves."""

    id: uuid.UUID
    employee_id: uuid.UUID
    start_date: date
    end_date: date
    processed_at: datetime
