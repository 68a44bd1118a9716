"""Core HR service layer — async CRUD for departments and employees.

Uses:
  - ``paginate()`` from workforce.common.pagination
  - ``apply_filters / apply_search`` from workforce.common.filters
  - ``NotFoundException / ConflictError / InvalidStateException`` from
    workforce.common.exceptions
"""

from __future__ import annotations

import logging
import uuid
from typing import Any, Optional

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from workforce.common.exceptions import (
    ConflictError,
    InvalidStateException,
    NotFoundException,
)
from workforce.common.filters import apply_filters, apply_search
from workforce.common.pagination import PaginatedResponse, PaginationParams, paginate
from workforce.core_hr.models import Department, Employee
from workforce.core_hr.schemas import (
    DepartmentCreate,
    DepartmentResponse,
    DepartmentUpdate,
    EmployeeCreate,
    EmployeeResponse,
    EmployeeUpdate,
)
from workforce.leave.repository import LeaveRequestRepository

logger = logging.getLogger(__name__)


# ═════════════════════════════════════════════════════════════════════
# EmployeeService
# ═════════════════════════════════════════════════════════════════════


class EmployeeService:
    """Async CRUD operations for employees."""

    # ── Lookups ─────────────────────────────────────────────────────

    @staticmethod
    async def exists(db: AsyncSession, employee_id: uuid.UUID) -> bool:
        result = await db.execute(
            select(Employee.id).where(Employee.id == employee_id)
        )
        return result.scalar_one_or_none() is not None

    @staticmethod
    async def find_by_id(
        db: AsyncSession,
        employee_id: uuid.UUID,
    ) -> Optional[Employee]:
        result = await db.execute(
            select(Employee)
            .where(Employee.id == employee_id)
            .options(selectinload(Employee.department))
            .execution_options(populate_existing=True)
        )
        return result.scalars().first()

    @staticmethod
    async def get_employee(
        db: AsyncSession,
        employee_id: uuid.UUID,
    ) -> EmployeeResponse:
        employee = await EmployeeService.find_by_id(db, employee_id)
        if employee is None:
            raise NotFoundException("Employee", str(employee_id))
        return EmployeeResponse.model_validate(employee)

    # ── List (paginated, searchable, filterable) ────────────────────

    @staticmethod
    async def list_employees(
        db: AsyncSession,
        pagination: PaginationParams,
        *,
        search: Optional[str] = None,
        department_id: Optional[uuid.UUID] = None,
    ) -> PaginatedResponse[EmployeeResponse]:
        """Return a paginated employee list, optionally by department / search."""

        query = (
            select(Employee)
            .options(selectinload(Employee.department))
            .order_by(Employee.name, Employee.id)
        )
        query = apply_filters(query, Employee, {"department_id": department_id})
        query = apply_search(query, Employee, search, ["name", "email"])

        page = await paginate(db, query, pagination, model=Employee)
        return PaginatedResponse[EmployeeResponse](
            data=[EmployeeResponse.model_validate(e) for e in page.data],
            meta=page.meta,
        )

    # ── Create ──────────────────────────────────────────────────────

    @staticmethod
    async def create_employee(
        db: AsyncSession,
        data: EmployeeCreate,
    ) -> EmployeeResponse:
        """Create an employee in an existing department."""

        await DepartmentService.ensure_exists(db, data.department_id)
        await EmployeeService._ensure_email_free(db, data.email)

        employee = Employee(**data.model_dump())
        db.add(employee)
        try:
            await db.flush()
        except IntegrityError as exc:
            await db.rollback()
            if "email" in str(exc.orig):
                raise ConflictError("email", data.email) from exc
            raise

        logger.info("Employee %s created (%s)", employee.id, employee.email)
        return await EmployeeService.get_employee(db, employee.id)

    # ── Update ──────────────────────────────────────────────────────

    @staticmethod
    async def update_employee(
        db: AsyncSession,
        employee_id: uuid.UUID,
        data: EmployeeUpdate,
    ) -> EmployeeResponse:
        """Partial-update an existing employee."""

        employee = await EmployeeService.find_by_id(db, employee_id)
        if employee is None:
            raise NotFoundException("Employee", str(employee_id))

        changes: dict[str, Any] = data.model_dump(exclude_unset=True, exclude_none=True)
        if not changes:
            return EmployeeResponse.model_validate(employee)

        if "department_id" in changes:
            await DepartmentService.ensure_exists(db, changes["department_id"])
        if "email" in changes and changes["email"] != employee.email:
            await EmployeeService._ensure_email_free(db, changes["email"])

        for field, value in changes.items():
            setattr(employee, field, value)

        try:
            await db.flush()
        except IntegrityError as exc:
            await db.rollback()
            if "email" in str(exc.orig):
                raise ConflictError("email", changes.get("email", "")) from exc
            raise

        return await EmployeeService.get_employee(db, employee_id)

    # ── Delete ──────────────────────────────────────────────────────

    @staticmethod
    async def delete_employee(db: AsyncSession, employee_id: uuid.UUID) -> None:
        """Delete an employee together with their leave requests."""

        employee = await EmployeeService.find_by_id(db, employee_id)
        if employee is None:
            raise NotFoundException("Employee", str(employee_id))

        removed = await LeaveRequestRepository.delete_by_employee(db, employee_id)
        await db.delete(employee)
        await db.flush()
        logger.info(
            "Employee %s deleted (%d leave request(s) removed)", employee_id, removed,
        )

    # ── Internal ────────────────────────────────────────────────────

    @staticmethod
    async def _ensure_email_free(db: AsyncSession, email: str) -> None:
        result = await db.execute(
            select(Employee.id).where(func.lower(Employee.email) == email.lower())
        )
        if result.first() is not None:
            raise ConflictError("email", email)


# ═════════════════════════════════════════════════════════════════════
# DepartmentService
# ═════════════════════════════════════════════════════════════════════


class DepartmentService:
    """Async CRUD operations for departments."""

    @staticmethod
    async def ensure_exists(db: AsyncSession, department_id: uuid.UUID) -> None:
        result = await db.execute(
            select(Department.id).where(Department.id == department_id)
        )
        if result.scalar_one_or_none() is None:
            raise NotFoundException("Department", str(department_id))

    @staticmethod
    async def _employee_count(db: AsyncSession, department_id: uuid.UUID) -> int:
        result = await db.execute(
            select(func.count())
            .select_from(Employee)
            .where(Employee.department_id == department_id)
        )
        return result.scalar() or 0

    # ── List ────────────────────────────────────────────────────────

    @staticmethod
    async def list_departments(
        db: AsyncSession,
        pagination: PaginationParams,
        *,
        search: Optional[str] = None,
    ) -> PaginatedResponse[DepartmentResponse]:
        """Return departments (by name) with their employee counts."""

        query = select(Department).order_by(Department.name)
        query = apply_search(query, Department, search, ["name"])
        page = await paginate(db, query, pagination, model=Department)

        # Batch-fetch employee counts for this page
        ids = [dept.id for dept in page.data]
        emp_counts: dict[uuid.UUID, int] = {}
        if ids:
            count_result = await db.execute(
                select(Employee.department_id, func.count(Employee.id))
                .where(Employee.department_id.in_(ids))
                .group_by(Employee.department_id)
            )
            emp_counts = {row[0]: row[1] for row in count_result.all()}

        responses: list[DepartmentResponse] = []
        for dept in page.data:
            resp = DepartmentResponse.model_validate(dept)
            resp.employee_count = emp_counts.get(dept.id, 0)
            responses.append(resp)

        return PaginatedResponse[DepartmentResponse](data=responses, meta=page.meta)

    # ── Get single ──────────────────────────────────────────────────

    @staticmethod
    async def get_department(
        db: AsyncSession,
        department_id: uuid.UUID,
    ) -> DepartmentResponse:
        result = await db.execute(
            select(Department).where(Department.id == department_id)
        )
        dept = result.scalars().first()
        if dept is None:
            raise NotFoundException("Department", str(department_id))

        resp = DepartmentResponse.model_validate(dept)
        resp.employee_count = await DepartmentService._employee_count(db, department_id)
        return resp

    @staticmethod
    async def list_department_employees(
        db: AsyncSession,
        department_id: uuid.UUID,
        pagination: PaginationParams,
    ) -> PaginatedResponse[EmployeeResponse]:
        await DepartmentService.ensure_exists(db, department_id)
        return await EmployeeService.list_employees(
            db, pagination, department_id=department_id,
        )

    # ── Create ──────────────────────────────────────────────────────

    @staticmethod
    async def create_department(
        db: AsyncSession,
        data: DepartmentCreate,
    ) -> DepartmentResponse:
        await DepartmentService._ensure_name_free(db, data.name)

        dept = Department(**data.model_dump())
        db.add(dept)
        try:
            await db.flush()
        except IntegrityError as exc:
            await db.rollback()
            if "name" in str(exc.orig):
                raise ConflictError("name", data.name) from exc
            raise

        logger.info("Department %s created (%s)", dept.id, dept.name)
        return DepartmentResponse.model_validate(dept)

    # ── Update ──────────────────────────────────────────────────────

    @staticmethod
    async def update_department(
        db: AsyncSession,
        department_id: uuid.UUID,
        data: DepartmentUpdate,
    ) -> DepartmentResponse:
        result = await db.execute(
            select(Department).where(Department.id == department_id)
        )
        dept = result.scalars().first()
        if dept is None:
            raise NotFoundException("Department", str(department_id))

        changes = data.model_dump(exclude_unset=True)
        if changes.get("name") is None:
            changes.pop("name", None)
        if "name" in changes and changes["name"] != dept.name:
            await DepartmentService._ensure_name_free(db, changes["name"])

        for field, value in changes.items():
            setattr(dept, field, value)

        try:
            await db.flush()
        except IntegrityError as exc:
            await db.rollback()
            if "name" in str(exc.orig):
                raise ConflictError("name", changes.get("name", "")) from exc
            raise

        return await DepartmentService.get_department(db, department_id)

    # ── Delete ──────────────────────────────────────────────────────

    @staticmethod
    async def delete_department(db: AsyncSession, department_id: uuid.UUID) -> None:
        """Delete an empty department; refuse while employees reference it."""

        result = await db.execute(
            select(Department).where(Department.id == department_id)
        )
        dept = result.scalars().first()
        if dept is None:
            raise NotFoundException("Department", str(department_id))

        employee_count = await DepartmentService._employee_count(db, department_id)
        if employee_count:
            raise InvalidStateException(
                f"Cannot delete department '{dept.name}': "
                f"{employee_count} employee(s) still assigned."
            )

        await db.delete(dept)
        await db.flush()
        logger.info("Department %s deleted", department_id)

    # ── Internal ────────────────────────────────────────────────────

    @staticmethod
    async def _ensure_name_free(db: AsyncSession, name: str) -> None:
        result = await db.execute(
            select(Department.id).where(Department.name == name)
        )
        if result.first() is not None:
            raise ConflictError("name", name)
