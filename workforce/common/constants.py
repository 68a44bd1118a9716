"""Enums and constants shared across the workforce modules."""

from __future__ import annotations

import enum


# ── Leave ───────────────────────────────────────────────────────────

class LeaveStatus(str, enum.Enum):
    pending = "PENDING"
    pending_approval = "PENDING_APPROVAL"
    approved = "APPROVED"
    rejected = "REJECTED"


# Statuses that block an overlapping request for the same employee.
ACTIVE_LEAVE_STATUSES: tuple[LeaveStatus, ...] = (
    LeaveStatus.approved,
    LeaveStatus.pending_approval,
)


class LeaveEvent(str, enum.Enum):
    """Routing keys published on the events exchange."""

    requested = "leave.requested"
    approved = "leave.approved"


# ── Misc ────────────────────────────────────────────────────────────

DEFAULT_PAGE_SIZE = 10
MAX_PAGE_SIZE = 100
NAME_MIN_LENGTH = 2
NAME_MAX_LENGTH = 100
