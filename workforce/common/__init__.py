"""Common module — shared utilities for the workforce service."""

from workforce.common.constants import (
    ACTIVE_LEAVE_STATUSES,
    DEFAULT_PAGE_SIZE,
    MAX_PAGE_SIZE,
    LeaveEvent,
    LeaveStatus,
)
from workforce.common.exceptions import (
    AppException,
    ConflictError,
    ConstraintViolationError,
    ForbiddenException,
    InvalidStateException,
    NotFoundException,
    ValidationException,
    register_exception_handlers,
)
from workforce.common.filters import apply_filters, apply_search, apply_sorting
from workforce.common.pagination import (
    PaginatedResponse,
    PaginationMeta,
    PaginationParams,
    paginate,
)

__all__ = [
    # Constants / Enums
    "ACTIVE_LEAVE_STATUSES",
    "LeaveEvent",
    "LeaveStatus",
    "DEFAULT_PAGE_SIZE",
    "MAX_PAGE_SIZE",
    # Exceptions
    "AppException",
    "ConflictError",
    "ConstraintViolationError",
    "ForbiddenException",
    "InvalidStateException",
    "NotFoundException",
    "ValidationException",
    "register_exception_handlers",
    # Filters
    "apply_filters",
    "apply_search",
    "apply_sorting",
    # Pagination
    "PaginatedResponse",
    "PaginationMeta",
    "PaginationParams",
    "paginate",
]
