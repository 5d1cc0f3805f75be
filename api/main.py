"""
FastAPI API Service Entry Point
"""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text

from api.dependencies import get_event_publisher
from api.routes import alerts, appointments, internal, notifications, plans, slots, webhooks
from database.connection import get_async_session
from scheduling.errors import SchedulingError
from shared.config import get_settings
from shared.logging_config import configure_logging
from shared.startup_validator import StartupValidationError, validate_startup_config

# Configure structured JSON logging on startup
configure_logging()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """
    Validate critical configuration at startup and drain pending
    notification tasks on shutdown.

    Raises:
        StartupValidationError: If critical configuration is invalid
    """
    logger.info("Running API startup configuration validation...")
    try:
        validate_startup_config(get_settings())
        logger.info("API startup configuration validation passed")
    except StartupValidationError as e:
        logger.critical(f"API startup blocked due to configuration errors: {e}")
        raise

    yield

    pending = get_event_publisher().pending
    if pending:
        logger.info(f"Waiting for {pending} pending notification tasks")
        await get_event_publisher().drain()


app = FastAPI(
    title="Agenda Scheduling API",
    version="1.0.0",
    lifespan=lifespan,
)

settings = get_settings()
origins = settings.CORS_ORIGINS.split(",")

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["*"],
)

app.include_router(slots.router)
app.include_router(appointments.router)
app.include_router(plans.router)
app.include_router(notifications.router)
app.include_router(alerts.router)
app.include_router(webhooks.router)
app.include_router(internal.router)


@app.exception_handler(SchedulingError)
async def scheduling_exception_handler(request: Request, exc: SchedulingError) -> JSONResponse:
    """Render scheduling errors as {"error", "code", "details"}."""
    logger.info(
        f"{exc.error_code}: {exc.message}",
        extra={"request_path": request.url.path},
    )
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Return 400 with validation error details."""
    fields = {
        ".".join(str(part) for part in error["loc"] if part != "body") or "body": error["msg"]
        for error in exc.errors()
    }
    return JSONResponse(
        status_code=400,
        content={"error": "Validation error", "code": "VALIDATION_ERROR", "details": {"fields": fields}},
    )


@app.get("/health")
async def health_check() -> JSONResponse:
    """
    Health check endpoint for Docker health checks and monitoring.

    Returns:
        200 OK when PostgreSQL answers SELECT 1
        503 Service Unavailable otherwise
    """
    health_status = {"status": "healthy", "postgres": "unknown"}
    status_code = 200

    try:
        async with get_async_session() as session:
            await session.execute(text("SELECT 1"))
            health_status["postgres"] = "connected"
    except Exception:
        logger.exception("Health check: PostgreSQL unreachable")
        health_status["postgres"] = "disconnected"
        health_status["status"] = "degraded"
        status_code = 503

    return JSONResponse(status_code=status_code, content=health_status)


@app.get("/")
async def root() -> dict[str, str]:
    """Root endpoint"""
    return {"message": "Agenda Scheduling API - Use /health for health checks"}
