"""
FastAPI API Service Entry Point
"""

import asyncio
import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from api.routes import booking
from booking.errors import (
    AlreadyCancelled,
    AlreadyCompleted,
    BookingError,
    BookingValidationError,
    Collision,
    ConcurrentModification,
    NotFound,
    RateLimited,
    SlotExpiredOrTaken,
    SlotUnavailable,
    UpstreamError,
    VerificationFailed,
)
from shared.config import get_settings
from shared.logging_config import configure_logging
from shared.startup_validator import StartupValidationError, validate_startup_config

# Configure structured JSON logging on startup
configure_logging()
logger = logging.getLogger(__name__)

app = FastAPI(
    title="Slotbook Booking API",
    version="1.0.0",
)

# Load settings for CORS configuration
settings = get_settings()
origins = settings.CORS_ORIGINS.split(",")

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
    allow_headers=["*"],
)

app.include_router(booking.router)

# HTTP status per booking error type (first match wins)
ERROR_STATUS_CODES: list[tuple[type[BookingError], int]] = [
    (NotFound, 404),
    (SlotUnavailable, 409),
    (SlotExpiredOrTaken, 409),
    (Collision, 409),
    (AlreadyCancelled, 409),
    (AlreadyCompleted, 409),
    (ConcurrentModification, 409),
    (BookingValidationError, 422),
    (RateLimited, 429),
    (VerificationFailed, 403),
    (UpstreamError, 502),
]

_background_tasks: list[asyncio.Task] = []


def status_code_for(exc: BookingError) -> int:
    for error_type, status_code in ERROR_STATUS_CODES:
        if isinstance(exc, error_type):
            return status_code
    return 500


# =========================================================================
# STARTUP VALIDATION
# =========================================================================
@app.on_event("startup")
async def startup_config_validation():
    """
    Validate critical configuration at startup.

    This catches misconfigurations early (fail-fast) rather than at runtime
    when a patient tries to book.

    Raises:
        StartupValidationError: If critical configuration is invalid
    """
    logger.info("Running API startup configuration validation...")
    try:
        await validate_startup_config(require_google_calendar=True)
        logger.info("API startup configuration validation passed")
    except StartupValidationError as e:
        logger.critical(f"API startup blocked due to configuration errors: {e}")
        raise  # FastAPI will fail to start


@app.on_event("startup")
async def start_in_process_maintenance():
    """
    With the in-memory store there is no separate worker process: slot
    maintenance and notification dispatch run inside the API process.
    """
    if settings.STORE_BACKEND != "memory":
        return

    from booking.engine import get_engine
    from booking.workers.notification_dispatcher import dispatch_loop
    from booking.workers.slot_maintenance import SlotMaintenance, maintenance_loop

    engine = get_engine()
    maintenance = SlotMaintenance(engine.store, engine.calendar, engine.clock, settings.SLOT_HORIZON_DAYS)
    _background_tasks.append(
        asyncio.create_task(maintenance_loop(maintenance, settings.MAINTENANCE_INTERVAL_SECONDS))
    )
    _background_tasks.append(
        asyncio.create_task(dispatch_loop(engine.sender, settings.NOTIFICATION_POLL_SECONDS))
    )
    logger.info("In-process slot maintenance and notification dispatch started")


@app.on_event("shutdown")
async def stop_background_tasks():
    for task in _background_tasks:
        task.cancel()
    await asyncio.gather(*_background_tasks, return_exceptions=True)
    _background_tasks.clear()

    if settings.RATE_LIMIT_BACKEND == "redis":
        from shared.redis_client import close_redis_client

        await close_redis_client()


@app.exception_handler(BookingError)
async def booking_error_handler(request: Request, exc: BookingError) -> JSONResponse:
    """Map booking errors to HTTP status codes with a uniform body."""
    status_code = status_code_for(exc)
    headers = {}
    if isinstance(exc, RateLimited):
        headers["Retry-After"] = str(exc.retry_after)

    log = logger.warning if status_code >= 500 else logger.info
    log(
        f"Booking request failed: {exc.error_code} - {exc.message}",
        extra={"request_path": request.url.path},
    )
    return JSONResponse(status_code=status_code, content=exc.to_dict(), headers=headers)


# Exception handler for validation errors
@app.exception_handler(ValidationError)
async def validation_exception_handler(request: Request, exc: ValidationError) -> JSONResponse:
    """Return 422 with validation error details."""
    return JSONResponse(
        status_code=422,
        content={"error": "Validation error", "details": exc.errors()},
    )


@app.get("/health")
async def health_check() -> JSONResponse:
    """
    Health check endpoint for Docker health checks and monitoring.

    Checks:
    - Redis connectivity (PING command), when it holds rate limit counters
    - PostgreSQL connectivity (SELECT 1 query), when it is the store

    Returns:
        200 OK if all systems healthy
        503 Service Unavailable if degraded
    """
    health_status = {
        "status": "healthy",
        "store": settings.STORE_BACKEND,
    }
    status_code = 200

    if settings.RATE_LIMIT_BACKEND == "redis":
        from shared.redis_client import get_redis_client

        try:
            await get_redis_client().ping()
            health_status["redis"] = "connected"
        except Exception:
            health_status["redis"] = "disconnected"
            health_status["status"] = "degraded"
            status_code = 503

    if settings.STORE_BACKEND == "sql":
        from sqlalchemy import text

        from database.connection import get_async_session

        try:
            async with get_async_session() as session:
                await session.execute(text("SELECT 1"))
                health_status["postgres"] = "connected"
        except Exception:
            health_status["postgres"] = "disconnected"
            health_status["status"] = "degraded"
            status_code = 503

    return JSONResponse(status_code=status_code, content=health_status)


@app.get("/")
async def root() -> dict[str, str]:
    """Root endpoint"""
    return {"message": "Slotbook Booking API - Use /health for health checks"}
