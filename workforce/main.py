"""Workforce — FastAPI Application Factory."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware

from workforce.common.exceptions import register_exception_handlers
from workforce.common.logging_config import configure_logging
from workforce.common.rate_limit import limiter
from workforce.config import settings
from workforce.core_hr.router import departments_router, employees_router
from workforce.database import async_session_factory, dispose_engine
from workforce.leave.processor import start_leave_request_consumer
from workforce.leave.router import router as leave_router
from workforce.messaging.broker import BrokerUnavailableError, RabbitMQBroker

logger = logging.getLogger(__name__)

VERSION = "1.0.0"


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application startup and shutdown events."""
    # Startup
    configure_logging(settings.LOG_LEVEL)
    app.state.broker = None

    if settings.broker_enabled:
        broker = RabbitMQBroker.from_settings(settings)
        try:
            await broker.connect()
            await start_leave_request_consumer(broker, async_session_factory)
            app.state.broker = broker
        except BrokerUnavailableError:
            logger.exception(
                "RabbitMQ unavailable; leave events will not be published "
                "and auto-processing is disabled"
            )
            await broker.close_connection()
    else:
        logger.warning(
            "RabbitMQ not configured (RABBITMQ_URL / exchange / queue); "
            "leave auto-processing is disabled"
        )

    yield

    # Shutdown
    if app.state.broker is not None:
        await app.state.broker.close_connection()
    await dispose_engine()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title="Workforce",
        description="Departments, employees and leave requests with queue-driven auto-approval",
        version=VERSION,
        docs_url="/api/docs" if settings.ENVIRONMENT != "production" else None,
        redoc_url="/api/redoc" if settings.ENVIRONMENT != "production" else None,
        lifespan=lifespan,
    )
    app.state.broker = None

    # Exception handlers (RFC 7807)
    register_exception_handlers(app)

    # Rate limiting (slowapi)
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
    app.add_middleware(SlowAPIMiddleware)

    # CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Health check
    @app.get("/api/v1/health", tags=["system"])
    @limiter.exempt
    async def health_check(request: Request):
        broker = request.app.state.broker
        return {
            "status": "healthy",
            "version": VERSION,
            "environment": settings.ENVIRONMENT,
            "broker_connected": bool(broker and broker.is_connected),
        }

    # Register routers
    app.include_router(departments_router, prefix="/api/v1/departments", tags=["departments"])
    app.include_router(employees_router, prefix="/api/v1/employees", tags=["employees"])
    app.include_router(leave_router, prefix="/api/v1/leave-requests", tags=["leave-requests"])

    return app


app = create_app()
