"""Tenant licensing service: FastAPI application entry point."""

import asyncio
import contextlib
import signal
import uuid
from contextlib import asynccontextmanager

# CRITICAL ORDER: configure_structlog MUST be called before all other app imports
# to avoid the structlog cache pitfall (structlog caches the processor chain on first use).
from tenant_licensing.core.logging import configure_structlog
from tenant_licensing.core.config import get_settings as _get_settings_early

_early_settings = _get_settings_early()
configure_structlog(
    log_level="DEBUG" if _early_settings.debug else "INFO",
    json_logs=not _early_settings.debug,
)

import structlog

from fastapi import FastAPI, Request, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from tenant_licensing.api.deps import (
    get_gateway,
    get_ledger,
    get_license_store,
    get_notifier,
    get_tenant_directory,
)
from tenant_licensing.api.routes import api_router
from tenant_licensing.core.config import get_settings
from tenant_licensing.core.exceptions import LicensingError
from tenant_licensing.db import close_db, init_db
from tenant_licensing.jobs.expiration import run_expiration_loop
from tenant_licensing.middleware.correlation import (
    setup_correlation_middleware,
    get_correlation_id,
)

logger = structlog.get_logger(__name__)


def _build_ledger():
    return get_ledger(get_license_store(), get_tenant_directory(), get_gateway(), get_notifier())


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler for startup/shutdown events."""
    # Graceful shutdown flag: the SIGTERM handler flips this so ALB health check returns 503
    app.state.shutting_down = False

    def handle_sigterm(signum, frame):
        app.state.shutting_down = True
        logger.info("sigterm_received", action="health_check_503_draining_connections")

    signal.signal(signal.SIGTERM, handle_sigterm)

    # Startup
    settings = get_settings()
    logger.info("startup_begin", app_name=settings.app_name, debug=settings.debug)

    await init_db()
    logger.info("db_initialized")

    expiration_task = None
    if settings.license_expiration_enabled and settings.license_duration_days is not None:
        expiration_task = asyncio.create_task(
            run_expiration_loop(
                _build_ledger,
                interval_seconds=settings.expiration_sweep_interval_seconds,
                warning_days=settings.expiration_warning_days,
            )
        )
        logger.info("license_expiration_scheduled", interval_seconds=settings.expiration_sweep_interval_seconds)

    yield

    # Shutdown
    logger.info("shutdown_begin")
    if expiration_task is not None:
        expiration_task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await expiration_task
    await close_db()
    logger.info("shutdown_complete")


async def licensing_error_handler(request: Request, exc: LicensingError) -> JSONResponse:
    """Map business-rule violations to their HTTP status and stable error code."""
    debug_id = str(uuid.uuid4())

    logger.warning(
        "licensing_error",
        status_code=exc.status_code,
        code=exc.code,
        debug_id=debug_id,
        correlation_id=get_correlation_id(),
        path=request.url.path,
        method=request.method,
        user_id=getattr(request.state, "user_id", None),
        detail=exc.message,
    )

    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message, "code": exc.code, "debug_id": debug_id},
    )


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Global exception handler for HTTPException with debug_id tracking.

    Logs errors server-side with full context, returns sanitized response to client.
    """
    debug_id = str(uuid.uuid4())

    logger.error(
        "http_exception",
        status_code=exc.status_code,
        debug_id=debug_id,
        correlation_id=get_correlation_id(),
        path=request.url.path,
        method=request.method,
        user_id=getattr(request.state, "user_id", None),
        detail=exc.detail,
    )

    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.detail, "debug_id": debug_id},
    )


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Global exception handler for unhandled errors with debug_id tracking.

    Logs full exception with traceback, returns generic 500 to client.
    """
    debug_id = str(uuid.uuid4())

    logger.error(
        "unhandled_exception",
        debug_id=debug_id,
        correlation_id=get_correlation_id(),
        path=request.url.path,
        method=request.method,
        user_id=getattr(request.state, "user_id", None),
        error=str(exc),
        error_type=type(exc).__name__,
        exc_info=True,
    )

    # Return generic 500 (no internal details leaked)
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error", "debug_id": debug_id},
    )


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title=settings.app_name,
        description="B2B course license pricing and seat allocation",
        version="0.1.0",
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Correlation ID middleware (runs first on incoming requests)
    setup_correlation_middleware(app)

    # Exception handlers
    app.exception_handler(LicensingError)(licensing_error_handler)
    app.exception_handler(HTTPException)(http_exception_handler)
    app.exception_handler(Exception)(generic_exception_handler)

    app.include_router(api_router, prefix="/api")

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "tenant_licensing.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
    )
