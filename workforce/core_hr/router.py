"""Core HR router — Department and Employee API endpoints.

Routes:
    /departments                  — List, create departments
    /departments/{id}             — Get, update, delete department
    /departments/{id}/employees   — Department members (paginated)
    /employees                    — List, create employees
    /employees/{id}               — Get, update, delete employee
    /employees/{id}/leave-requests — Employee's leave requests (paginated)
"""


import uuid
from typing import Optional

from fastapi import APIRouter, Depends, Query, Response
from sqlalchemy.ext.asyncio import AsyncSession

from workforce.common.constants import LeaveStatus
from workforce.common.exceptions import NotFoundException
from workforce.common.pagination import PaginatedResponse, PaginationParams
from workforce.core_hr.schemas import (
    DepartmentCreate,
    DepartmentResponse,
    DepartmentUpdate,
    EmployeeCreate,
    EmployeeResponse,
    EmployeeUpdate,
)
from workforce.core_hr.service import DepartmentService, EmployeeService
from workforce.database import get_db
from workforce.leave.schemas import LeaveRequestOut
from workforce.leave.service import LeaveService


# ═════════════════════════════════════════════════════════════════════
# Routers
# ═════════════════════════════════════════════════════════════════════

employees_router = APIRouter(prefix="", tags=["employees"])
departments_router = APIRouter(prefix="", tags=["departments"])


# ═════════════════════════════════════════════════════════════════════
# Department Endpoints
# ═════════════════════════════════════════════════════════════════════


@departments_router.post("", response_model=DepartmentResponse, status_code=201)
async def create_department(
    body: DepartmentCreate,
    db: AsyncSession = Depends(get_db),
):
    return await DepartmentService.create_department(db, body)


@departments_router.get("", response_model=PaginatedResponse[DepartmentResponse])
async def list_departments(
    db: AsyncSession = Depends(get_db),
    pagination: PaginationParams = Depends(),
    search: Optional[str] = Query(None, description="Search by name"),
):
    return await DepartmentService.list_departments(db, pagination, search=search)


@departments_router.get("/{department_id}", response_model=DepartmentResponse)
async def get_department(
    department_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
):
    return await DepartmentService.get_department(db, department_id)


@departments_router.get(
    "/{department_id}/employees",
    response_model=PaginatedResponse[EmployeeResponse],
)
async def list_department_employees(
    department_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    pagination: PaginationParams = Depends(),
):
    return await DepartmentService.list_department_employees(
        db, department_id, pagination,
    )


@departments_router.patch("/{department_id}", response_model=DepartmentResponse)
async def update_department(
    department_id: uuid.UUID,
    body: DepartmentUpdate,
    db: AsyncSession = Depends(get_db),
):
    return await DepartmentService.update_department(db, department_id, body)


@departments_router.delete("/{department_id}", status_code=204)
async def delete_department(
    department_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
):
    """Delete a department. Fails with 409 while employees are assigned."""
    await DepartmentService.delete_department(db, department_id)
    return Response(status_code=204)


# ═════════════════════════════════════════════════════════════════════
# Employee Endpoints
# ═════════════════════════════════════════════════════════════════════


@employees_router.post("", response_model=EmployeeResponse, status_code=201)
async def create_employee(
    body: EmployeeCreate,
    db: AsyncSession = Depends(get_db),
):
    return await EmployeeService.create_employee(db, body)


@employees_router.get("", response_model=PaginatedResponse[EmployeeResponse])
async def list_employees(
    db: AsyncSession = Depends(get_db),
    pagination: PaginationParams = Depends(),
    search: Optional[str] = Query(None, description="Search by name or email"),
    department_id: Optional[uuid.UUID] = Query(None, description="Filter by department"),
):
    return await EmployeeService.list_employees(
        db, pagination, search=search, department_id=department_id,
    )


@employees_router.get("/{employee_id}", response_model=EmployeeResponse)
async def get_employee(
    employee_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
):
    return await EmployeeService.get_employee(db, employee_id)


@employees_router.get(
    "/{employee_id}/leave-requests",
    response_model=PaginatedResponse[LeaveRequestOut],
)
async def list_employee_leave_requests(
    employee_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    pagination: PaginationParams = Depends(),
    status: Optional[LeaveStatus] = Query(None, description="Filter by status"),
):
    """Leave requests of one employee, newest first."""
    if not await EmployeeService.exists(db, employee_id):
        raise NotFoundException("Employee", str(employee_id))
    return await LeaveService.list_leave_requests(
        db, pagination, employee_id=employee_id, status=status,
    )


@employees_router.patch("/{employee_id}", response_model=EmployeeResponse)
async def update_employee(
    employee_id: uuid.UUID,
    body: EmployeeUpdate,
    db: AsyncSession = Depends(get_db),
):
    return await EmployeeService.update_employee(db, employee_id, body)


@employees_router.delete("/{employee_id}", status_code=204)
async def delete_employee(
    employee_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
):
    """Delete an employee and all of their leave requests."""
    await EmployeeService.delete_employee(db, employee_id)
    return Response(status_code=204)
