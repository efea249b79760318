"""
InstiVault API - Main application entry point.
"""
import asyncio
import contextlib
import time
from contextlib import asynccontextmanager
from typing import Any, Dict

import sentry_sdk
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sentry_sdk.integrations.asgi import SentryAsgiMiddleware
from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration
from structlog.contextvars import bind_contextvars, clear_contextvars

from instivault.api.router import api_router
from instivault.core.config import settings
from instivault.core.errors import ErrorCode, ErrorKind, ErrorResponse
from instivault.core.exceptions import InstiVaultException, InvalidArgumentError, NotFoundError
from instivault.core.logging import error_log_context, get_logger, request_log_context, setup_logging
from instivault.infrastructure.database.base import engine
from instivault.services.documents import DocumentDistributionEngine

# Setup logging
setup_logging()
logger = get_logger(__name__)


# Initialize Sentry if configured
if settings.SENTRY_DSN:
    sentry_sdk.init(
        dsn=settings.SENTRY_DSN,
        environment=settings.SENTRY_ENVIRONMENT or settings.ENVIRONMENT,
        traces_sample_rate=settings.SENTRY_TRACES_SAMPLE_RATE,
        integrations=[
            SqlalchemyIntegration(),
        ],
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.
    """
    # Startup
    logger.info(
        "Starting InstiVault API",
        version=settings.APP_VERSION,
        environment=settings.ENVIRONMENT,
    )

    # Note: In production, use Alembic migrations instead
    if settings.is_development:
        from instivault.infrastructure.database.base import Base
        from instivault.infrastructure.database import models  # noqa: F401

        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    sweeper = None
    if settings.GRANT_SWEEP_INTERVAL_SECONDS > 0:
        sweeper = asyncio.create_task(
            DocumentDistributionEngine().sweep_forever(settings.GRANT_SWEEP_INTERVAL_SECONDS)
        )

    yield

    # Shutdown
    logger.info("Shutting down InstiVault API")
    if sweeper:
        sweeper.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await sweeper
    await engine.dispose()


# Create FastAPI application
app = FastAPI(
    title=settings.PROJECT_NAME,
    version=settings.APP_VERSION,
    openapi_url=f"{settings.API_PREFIX}/openapi.json" if not settings.is_production else None,
    docs_url=f"{settings.API_PREFIX}/docs" if not settings.is_production else None,
    redoc_url=f"{settings.API_PREFIX}/redoc" if not settings.is_production else None,
    lifespan=lifespan,
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.BACKEND_CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["X-Watermark", "X-Request-ID", "Content-Disposition"],
)


# Add request logging middleware
@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log all requests with timing information."""
    start_time = time.time()

    logger.info(
        "Request started",
        **request_log_context(
            method=request.method,
            path=request.url.path,
            client_ip=request.client.host if request.client else None,
        ),
    )

    response = await call_next(request)

    duration_ms = (time.time() - start_time) * 1000
    logger.info(
        "Request completed",
        status_code=response.status_code,
        duration_ms=round(duration_ms, 2),
    )

    return response


# Add request ID middleware; registered last so it runs first
@app.middleware("http")
async def add_request_id(request: Request, call_next):
    """Add unique request ID to each request."""
    request_id = request.headers.get("X-Request-ID", str(time.time_ns()))

    # Bind request ID to logging context
    clear_contextvars()
    bind_contextvars(request_id=request_id)

    response = await call_next(request)
    response.headers["X-Request-ID"] = request_id
    return response


# Add Sentry middleware if configured
if settings.SENTRY_DSN:
    app.add_middleware(SentryAsgiMiddleware)


def error_response(exc: InstiVaultException) -> JSONResponse:
    """Render a domain failure in the standard error shape."""
    headers = {"WWW-Authenticate": "Bearer"} if exc.status_code == 401 else None
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(exc.kind, exc.code, exc.message, exc.details).to_dict(),
        headers=headers,
    )


@app.exception_handler(InstiVaultException)
async def instivault_exception_handler(request: Request, exc: InstiVaultException):
    """Render domain failures in the standard error shape."""
    logger.warning(
        "Request failed",
        code=exc.code.value,
        kind=exc.kind.value,
        status_code=exc.status_code,
        path=request.url.path,
    )
    return error_response(exc)


@app.exception_handler(RequestValidationError)
async def request_validation_exception_handler(request: Request, exc: RequestValidationError):
    """
    Render request contract violations in the standard error shape.

    An id in the path that does not parse names nothing, so it is NotFound;
    malformed bodies, forms and queries are InvalidArgument.
    """
    errors = [
        {
            "loc": [str(part) for part in error.get("loc", ())],
            "type": error.get("type"),
            "msg": error.get("msg"),
        }
        for error in exc.errors()
    ]
    logger.warning("request_validation_failed", path=request.url.path, errors=errors)

    if any(error["loc"][:1] == ["path"] for error in errors):
        failure = NotFoundError(code=ErrorCode.REQ_UNKNOWN_RESOURCE, details={"errors": errors})
    else:
        failure = InvalidArgumentError(details={"errors": errors})
    return error_response(failure)


# Global exception handler
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Handle all unhandled exceptions."""
    logger.error(
        "Unhandled exception",
        exc_info=exc,
        **error_log_context(exc, path=request.url.path, method=request.method),
    )

    # Don't expose internal errors in production
    message = None if settings.is_production else str(exc)
    return JSONResponse(
        status_code=500,
        content=ErrorResponse(ErrorKind.INTERNAL, ErrorCode.SYS_INTERNAL_ERROR, message).to_dict(),
    )


# Include API router
app.include_router(api_router, prefix=settings.API_PREFIX)


# Root endpoint
@app.get("/")
async def root() -> Dict[str, Any]:
    """
    Root endpoint.

    Returns:
        API information
    """
    return {
        "name": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "docs": f"{settings.API_PREFIX}/docs" if not settings.is_production else "Disabled in production",
    }
