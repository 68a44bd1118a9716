"""Core HR Pydantic v2 schemas — request / response validation.

Naming conventions:
  - *Create / *Update  → request bodies (write)
  - *Response / *Detail → response bodies (read)
  - *Brief             → compact embedded representations
"""


import uuid
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field

from workforce.common.constants import NAME_MAX_LENGTH, NAME_MIN_LENGTH


# ═════════════════════════════════════════════════════════════════════
# Department
# ═════════════════════════════════════════════════════════════════════


class DepartmentCreate(BaseModel):
    """Payload for creating a department."""

    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(..., min_length=NAME_MIN_LENGTH, max_length=NAME_MAX_LENGTH)
    description: Optional[str] = Field(None, max_length=1000)


class DepartmentUpdate(BaseModel):
    """Partial update — only fields explicitly sent are applied."""

    model_config = ConfigDict(str_strip_whitespace=True)

    name: Optional[str] = Field(
        None, min_length=NAME_MIN_LENGTH, max_length=NAME_MAX_LENGTH,
    )
    description: Optional[str] = Field(None, max_length=1000)


class DepartmentResponse(BaseModel):
    """Full department representation."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    name: str
    description: Optional[str] = None
    created_at: datetime
    updated_at: datetime
    # Enriched by the service layer
    employee_count: int = 0


class DepartmentBrief(BaseModel):
    """Minimal department info embedded in other responses."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    name: str


# ═════════════════════════════════════════════════════════════════════
# Employee
# ═════════════════════════════════════════════════════════════════════


class EmployeeCreate(BaseModel):
    """Payload for creating an employee."""

    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(..., min_length=NAME_MIN_LENGTH, max_length=NAME_MAX_LENGTH)
    email: EmailStr
    department_id: uuid.UUID


class EmployeeUpdate(BaseModel):
    """Partial update — only fields explicitly sent are applied."""

    model_config = ConfigDict(str_strip_whitespace=True)

    name: Optional[str] = Field(
        None, min_length=NAME_MIN_LENGTH, max_length=NAME_MAX_LENGTH,
    )
    email: Optional[EmailStr] = None
    department_id: Optional[uuid.UUID] = None


class EmployeeResponse(BaseModel):
    """Employee with its department."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    name: str
    email: str
    department_id: uuid.UUID
    department: Optional[DepartmentBrief] = None
    created_at: datetime
    updated_at: datetime


class EmployeeBrief(BaseModel):
    """Minimal employee info embedded in leave responses."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    name: str
    email: str
    department: Optional[DepartmentBrief] = None
