"""
FastAPI application entry point: lifespan wiring for the job scheduler,
admin routers, health and metrics routes.
"""
import uuid
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import PlainTextResponse
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.exceptions import HTTPException as StarletteHTTPException

from mediaportal.api.routes import admin_jobs, admin_notifications
from mediaportal.api.middleware.error_handler import (
    AppException,
    app_exception_handler,
    core_error_handler,
    validation_exception_handler,
    http_exception_handler,
    unhandled_exception_handler,
)
from mediaportal.jobs.definitions import bootstrap_jobs
from mediaportal.jobs.scheduler import get_job_scheduler, get_scheduler_manager
from mediaportal.lib.db import SessionLocal, init_db, session_scope
from mediaportal.lib.errors import CoreError
from mediaportal.lib.logging import get_logger, set_correlation_id, setup_logging
from mediaportal.lib.metrics import get_metrics_collector
from mediaportal.lib.settings import settings
from mediaportal.notifications.dispatcher import get_dispatcher

logger = get_logger(__name__)


# Correlation ID middleware
class CorrelationIdMiddleware(BaseHTTPMiddleware):
    """
    Middleware to add correlation_id to all requests for distributed tracing.
    Accepts X-Correlation-ID from incoming requests or generates a new one.
    """

    async def dispatch(self, request: Request, call_next):
        correlation_id = request.headers.get("X-Correlation-ID", str(uuid.uuid4()))

        # Store in request state for access in route handlers and error handlers
        request.state.correlation_id = correlation_id
        set_correlation_id(correlation_id)

        logger.info(
            "Incoming request",
            extra={
                "method": request.method,
                "path": request.url.path,
                "client": request.client.host if request.client else None,
            }
        )

        try:
            response = await call_next(request)
        finally:
            set_correlation_id(None)

        response.headers["X-Correlation-ID"] = correlation_id

        logger.info(
            "Response sent",
            extra={
                "correlation_id": correlation_id,
                "status_code": response.status_code,
            }
        )

        return response


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Application lifespan manager.

    Startup creates tables, seeds a row per registered job and starts the
    tick loop; shutdown stops ticking, then waits for in-flight job runs and
    notification sends.
    """
    setup_logging(level="DEBUG" if settings.debug else "INFO")
    logger.info(f"{settings.app_name} starting up...")

    init_db()
    job_scheduler = get_job_scheduler()
    with session_scope(SessionLocal) as db:
        bootstrap_jobs(db, job_scheduler.registry)

    manager = None
    if settings.scheduler_enabled:
        manager = get_scheduler_manager()
        manager.start()
    else:
        logger.info("Scheduler disabled; jobs only run when triggered manually")

    yield

    logger.info(f"{settings.app_name} shutting down...")
    if manager is not None:
        await manager.shutdown(wait=True)
    await get_dispatcher().drain()


app = FastAPI(
    title="Media Portal Core",
    version="1.0.0",
    description="Background job scheduling, notification delivery and request throttling",
    lifespan=lifespan,
)


# Correlation ID middleware
app.add_middleware(CorrelationIdMiddleware)


# Register exception handlers
app.add_exception_handler(AppException, app_exception_handler)
app.add_exception_handler(CoreError, core_error_handler)
app.add_exception_handler(RequestValidationError, validation_exception_handler)
app.add_exception_handler(StarletteHTTPException, http_exception_handler)
app.add_exception_handler(Exception, unhandled_exception_handler)


# Include routers
app.include_router(admin_jobs.router)
app.include_router(admin_notifications.router)


@app.get("/health")
def health_check():
    """Health check endpoint."""
    return {"status": "ok"}


@app.get("/metrics", include_in_schema=False)
def metrics_endpoint():
    """
    Prometheus-compatible metrics endpoint.

    Metrics exposed:
    - job_runs_total: Job executions by job and status
    - notification_deliveries_total: Adapter sends by channel and status
    - rate_limit_rejections_total: Rejected requests by kind (rate_limit, lockout)

    Returns:
        Prometheus text format metrics
    """
    metrics = get_metrics_collector()
    return PlainTextResponse(
        content=metrics.export_prometheus(),
        media_type="text/plain; version=0.0.4; charset=utf-8"
    )
