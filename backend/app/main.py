"""
FastAPI Application Entry Point.

This is the main application file for the Pallet Fulfillment Backend.
"""

from contextlib import asynccontextmanager
from fastapi import FastAPI, HTTPException
from fastapi.exceptions import RequestValidationError
from backend.app.core.config import settings
from backend.app.api.v1.router import router as api_v1_router
from backend.app.db.session import engine, Base
from backend.app.core.observability import ObservabilityMiddleware, configure_logging
from backend.app.core.exceptions import (
    AppException,
    app_exception_handler,
    http_exception_handler,
    validation_exception_handler,
    generic_exception_handler
)
from backend.app.jobs.scheduler import get_job_status, start_scheduler, shutdown_scheduler
from backend.app.core.redis_client import close_redis

# Import models to ensure they are registered with Base
from backend.app.models.zone import Zone
from backend.app.models.producer import Producer
from backend.app.models.wine import Wine
from backend.app.models.pallet import Pallet
from backend.app.models.reservation import OrderReservation, ReservationItem
from backend.app.models.payment_request import PaymentRequest
from backend.app.models.audit_log import AuditLog

configure_logging(settings.log_level)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan context manager for application startup/shutdown.

    1. Creates database tables on startup.
    2. Starts the pallet jobs when the scheduler is enabled.
    3. Closes the lock store connection on shutdown.
    """
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    if settings.scheduler_enabled:
        start_scheduler()
    yield
    shutdown_scheduler()
    await close_redis()


# Initialize FastAPI application
app = FastAPI(
    title=settings.app_name,
    version=settings.api_version,
    debug=settings.debug,
    description="Pallet consolidation, zone matching and completion lifecycle for a wine marketplace",
    lifespan=lifespan,
)

app.add_middleware(ObservabilityMiddleware)

# Register global exception handlers
app.add_exception_handler(AppException, app_exception_handler)
app.add_exception_handler(HTTPException, http_exception_handler)
app.add_exception_handler(RequestValidationError, validation_exception_handler)
app.add_exception_handler(Exception, generic_exception_handler)


@app.get("/health", tags=["Health"])
async def health_check():
    """
    Health check endpoint.

    Returns:
        dict: Status and application information
    """
    health = {
        "status": "healthy",
        "app_name": settings.app_name,
        "version": settings.api_version,
        "lock_backend": settings.pallet_lock_backend,
    }
    if settings.scheduler_enabled:
        health["jobs"] = get_job_status()
    if settings.pallet_lock_backend == "redis":
        from backend.app.core.redis_client import ping_redis
        health["redis"] = await ping_redis()
        if not health["redis"]:
            health["status"] = "degraded"
    return health


# Include API v1 router
app.include_router(api_v1_router, prefix=f"/{settings.api_version}")


@app.get("/", tags=["Root"])
async def root():
    """
    Root endpoint.

    Returns:
        dict: Welcome message and API documentation links
    """
    return {
        "message": "Welcome to Pallet Fulfillment Backend API",
        "docs": "/docs",
        "health": "/health",
    }
