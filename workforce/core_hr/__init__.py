"""Core HR module — Department and Employee models, schemas and services."""

from workforce.core_hr.models import Department, Employee

__all__ = ["Employee", "Department"]
