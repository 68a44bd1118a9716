"""Pure leave rules: range overlap, inclusive duration, auto-approval classification.

No database or I/O here, so the auto-processor and the record store share
one definition of each rule.
"""

from __future__ import annotations

import logging
from datetime import date, datetime
from typing import Optional, Union

from workforce.common.constants import LeaveStatus

logger = logging.getLogger(__name__)

DateLike = Union[date, datetime, str]


def ranges_overlap(start_a: date, end_a: date, start_b: date, end_b: date) -> bool:
    """Inclusive-endpoint intersection: adjacent ranges sharing a day overlap."""
    return start_a <= end_b and start_b <= end_a


def parse_date(value: DateLike) -> Optional[date]:
    """Coerce *value* to a calendar date; ``None`` when it cannot be parsed."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        try:
            return date.fromisoformat(value)
        except ValueError:
            pass
        try:
            return datetime.fromisoformat(value.replace("Z", "+00:00")).date()
        except ValueError:
            return None
    return None


def calculate_leave_duration(start: DateLike, end: DateLike) -> Optional[int]:
    """Inclusive day count between two dates, never less than 1.

    ``2024-01-01 → 2024-01-01`` is 1 day, ``2024-01-01 → 2024-01-03`` is 3.
    Returns ``None`` when either date is unparseable.
    """
    start_date = parse_date(start)
    end_date = parse_date(end)
    if start_date is None or end_date is None:
        logger.warning("Cannot determine leave duration for %r → %r", start, end)
        return None
    return max(1, (end_date - start_date).days + 1)


def classify_leave(duration_days: int, threshold_days: int) -> LeaveStatus:
    """Auto-approve short leave, send the rest for manual approval."""
    if duration_days <= threshold_days:
        return LeaveStatus.approved
    return LeaveStatus.pending_approval
