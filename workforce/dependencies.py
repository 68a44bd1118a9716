"""Shared FastAPI dependencies."""

from typing import Optional

from fastapi import Request

from workforce.messaging.broker import EventPublisher


def get_event_publisher(request: Request) -> Optional[EventPublisher]:
    """The process-wide broker, or ``None`` when messaging is disabled."""
    return getattr(request.app.state, "broker", None)
