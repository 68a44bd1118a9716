"""Leave router — create, list, read, status update, cancel, stats.

Routes:
    /leave-requests                      — Create (idempotent), list
    /leave-requests/stats/{employee_id}  — Yearly stats for one employee
    /leave-requests/{id}                 — Get, cancel
    /leave-requests/{id}/status          — Update status
"""


import uuid
from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query, Response
from sqlalchemy.ext.asyncio import AsyncSession

from workforce.common.constants import LeaveStatus
from workforce.common.pagination import PaginatedResponse, PaginationParams
from workforce.database import get_db
from workforce.dependencies import get_event_publisher
from workforce.leave.schemas import (
    LeaveCancelRequest,
    LeaveRequestCreate,
    LeaveRequestCreated,
    LeaveRequestOut,
    LeaveStats,
    LeaveStatusUpdate,
)
from workforce.leave.service import LeaveService
from workforce.messaging.broker import EventPublisher

router = APIRouter(prefix="", tags=["leave-requests"])


# ── POST /leave-requests ────────────────────────────────────────────

@router.post(
    "",
    response_model=LeaveRequestCreated,
    status_code=201,
    responses={200: {"description": "Duplicate of an existing request (same idempotency key)"}},
)
async def create_leave_request(
    body: LeaveRequestCreate,
    response: Response,
    db: AsyncSession = Depends(get_db),
    publisher: Optional[EventPublisher] = Depends(get_event_publisher),
):
    """Create a leave request. Replays with the same ``idempotency_key`` return 200."""
    result = await LeaveService.create_leave_request(db, body, publisher=publisher)
    if result.is_duplicate:
        response.status_code = 200
    return result


# ── GET /leave-requests ─────────────────────────────────────────────

@router.get("", response_model=PaginatedResponse[LeaveRequestOut])
async def list_leave_requests(
    db: AsyncSession = Depends(get_db),
    pagination: PaginationParams = Depends(),
    employee_id: Optional[uuid.UUID] = Query(None, description="Filter by employee"),
    status: Optional[LeaveStatus] = Query(None, description="Filter by status"),
    start_date: Optional[date] = Query(None, description="Starting on or after"),
    end_date: Optional[date] = Query(None, description="Ending on or before"),
):
    """List leave requests, newest first."""
    return await LeaveService.list_leave_requests(
        db,
        pagination,
        employee_id=employee_id,
        status=status,
        start_date=start_date,
        end_date=end_date,
    )


# ── GET /leave-requests/stats/{employee_id} ─────────────────────────

@router.get("/stats/{employee_id}", response_model=LeaveStats)
async def employee_leave_stats(
    employee_id: uuid.UUID,
    year: Optional[int] = Query(None, ge=1970, le=9999, description="Defaults to the current year"),
    db: AsyncSession = Depends(get_db),
):
    """Counts by status and approved days for requests created in *year*."""
    return await LeaveService.get_employee_leave_stats(db, employee_id, year)


# ── GET /leave-requests/{id} ────────────────────────────────────────

@router.get("/{request_id}", response_model=LeaveRequestOut)
async def get_leave_request(
    request_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
):
    return await LeaveService.get_leave_request(db, request_id)


# ── PATCH /leave-requests/{id}/status ───────────────────────────────

@router.patch("/{request_id}/status", response_model=LeaveRequestOut)
async def update_leave_request_status(
    request_id: uuid.UUID,
    body: LeaveStatusUpdate,
    db: AsyncSession = Depends(get_db),
):
    """Set the status of a leave request (manual approval / rejection)."""
    return await LeaveService.update_leave_request_status(db, request_id, body.status)


# ── DELETE /leave-requests/{id} ─────────────────────────────────────

@router.delete("/{request_id}", status_code=204)
async def cancel_leave_request(
    request_id: uuid.UUID,
    body: LeaveCancelRequest,
    db: AsyncSession = Depends(get_db),
):
    """Cancel (delete) a leave request. Only its owner may cancel it."""
    await LeaveService.cancel_leave_request(db, request_id, body.employee_id)
    return Response(status_code=204)
