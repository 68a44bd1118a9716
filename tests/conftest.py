"""Shared test fixtures — async DB, client, publisher fake, factories.

Reusable across all test modules (core_hr, leave, messaging).
Uses SQLite + aiosqlite for fast isolated tests without PostgreSQL.
"""

from __future__ import annotations

import os

# Point settings at SQLite and disable RabbitMQ before anything imports them
os.environ["DATABASE_URL"] = "sqlite+aiosqlite://"
os.environ["RABBITMQ_URL"] = ""
os.environ.setdefault("LOG_LEVEL", "warning")

import uuid
from datetime import date, datetime, timedelta, timezone
from typing import Any, AsyncGenerator, Optional

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import event
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

from workforce.common.constants import LeaveStatus
from workforce.common.pagination import PaginationParams
from workforce.database import Base, get_db
from workforce.dependencies import get_event_publisher
from workforce.main import create_app
from workforce.messaging.broker import BrokerUnavailableError

# Import ALL model modules so SQLAlchemy can resolve cross-module relationships
import workforce.core_hr.models  # noqa: F401
import workforce.leave.models  # noqa: F401


# ── Test database (SQLite in-memory) ────────────────────────────────

TEST_DATABASE_URL = "sqlite+aiosqlite://"

engine = create_async_engine(
    TEST_DATABASE_URL,
    echo=False,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)


@event.listens_for(engine.sync_engine, "connect")
def _enable_sqlite_foreign_keys(dbapi_conn, connection_record):
    """SQLite ignores FOREIGN KEY clauses unless asked to enforce them."""
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


TestSessionFactory = async_sessionmaker(
    engine, class_=AsyncSession, expire_on_commit=False,
)


@pytest.fixture(autouse=True)
async def _setup_db():
    """Create all tables before each test, drop after."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest.fixture(autouse=True)
def _reset_rate_limiter():
    """Reset rate limiter storage between tests to prevent cross-test interference."""
    from workforce.common.rate_limit import limiter

    limiter.reset()
    yield


async def _override_get_db() -> AsyncGenerator[AsyncSession, None]:
    async with TestSessionFactory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


# ── Event publisher fake ────────────────────────────────────────────

class RecordingPublisher:
    """In-memory stand-in for ``RabbitMQBroker.publish``."""

    def __init__(self, *, fail: bool = False) -> None:
        self.fail = fail
        self.published: list[tuple[str, dict[str, Any]]] = []

    async def publish(self, routing_key: str, payload: dict[str, Any]) -> None:
        if self.fail:
            raise BrokerUnavailableError("RabbitMQ is not connected")
        self.published.append((routing_key, payload))

    def routing_keys(self) -> list[str]:
        return [key for key, _ in self.published]


@pytest.fixture
def publisher() -> RecordingPublisher:
    return RecordingPublisher()


# ── FastAPI test client ─────────────────────────────────────────────

@pytest.fixture
async def app(publisher):
    """Create a fresh app instance with DB + publisher dependencies overridden."""
    application = create_app()
    application.dependency_overrides[get_db] = _override_get_db
    application.dependency_overrides[get_event_publisher] = lambda: publisher
    yield application
    application.dependency_overrides.clear()


@pytest.fixture
async def client(app) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP client wired to the test app."""
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac


# ── Database session (for direct DB operations in tests) ────────────

@pytest.fixture
async def db() -> AsyncGenerator[AsyncSession, None]:
    async with TestSessionFactory() as session:
        yield session
        await session.commit()


def page_params(page: int = 1, page_size: int = 10, sort: Optional[str] = None) -> PaginationParams:
    """Build ``PaginationParams`` outside of a request."""
    return PaginationParams(page=page, page_size=page_size, sort=sort)


# ── Model factories ─────────────────────────────────────────────────

def _make_department(
    *,
    name: str = "Engineering",
    description: Optional[str] = "Builds the product",
) -> dict:
    return dict(
        id=uuid.uuid4(),
        name=name,
        description=description,
        created_at=datetime.now(timezone.utc),
        updated_at=datetime.now(timezone.utc),
    )


def _make_employee(
    *,
    department_id: uuid.UUID,
    name: str = "Test User",
    email: Optional[str] = None,
) -> dict:
    return dict(
        id=uuid.uuid4(),
        name=name,
        email=email or f"user.{uuid.uuid4().hex[:8]}@example.com",
        department_id=department_id,
        created_at=datetime.now(timezone.utc),
        updated_at=datetime.now(timezone.utc),
    )


def _make_leave_request(
    *,
    employee_id: uuid.UUID,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    status: LeaveStatus = LeaveStatus.pending,
    idempotency_key: Optional[str] = None,
    created_at: Optional[datetime] = None,
) -> dict:
    start = start_date or date.today() + timedelta(days=10)
    now = created_at or datetime.now(timezone.utc)
    return dict(
        id=uuid.uuid4(),
        employee_id=employee_id,
        start_date=start,
        end_date=end_date or start,
        status=status,
        idempotency_key=idempotency_key or uuid.uuid4().hex,
        created_at=now,
        updated_at=now,
    )


@pytest.fixture
async def test_department(db) -> dict:
    """Insert a test department and return its data dict."""
    from workforce.core_hr.models import Department

    data = _make_department()
    db.add(Department(**data))
    await db.flush()
    return data


@pytest.fixture
async def test_employee(db, test_department) -> dict:
    """Insert an employee in test_department."""
    from workforce.core_hr.models import Employee

    data = _make_employee(
        department_id=test_department["id"],
        name="Asha Verma",
        email="asha.verma@example.com",
    )
    db.add(Employee(**data))
    await db.flush()
    return data
