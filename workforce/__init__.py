"""Workforce: departments, employees and leave-request processing."""
