from __future__ import annotations

import time
from contextlib import asynccontextmanager

import sentry_sdk
from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_fastapi_instrumentator import Instrumentator
from sentry_sdk.integrations.asyncio import AsyncioIntegration
from sentry_sdk.integrations.fastapi import FastApiIntegration
from sentry_sdk.integrations.starlette import StarletteIntegration

from aeo_api.core.config import settings
from aeo_api.core.exceptions import APIError, BaseAPIException, RateLimitError
from aeo_api.core.logging import configure_structlog, get_structlog_logger
from aeo_api.middleware.logging import LoggingMiddleware
from aeo_api.middleware.rate_limiter import RateLimitingMiddleware
from aeo_api.middleware.request_id import RequestIdMiddleware
from aeo_api.routes import auth, health
from aeo_api.services.lead_capture import build_lead_capture_flow
from aeo_api.services.redis import close_redis_pool, init_redis_pool


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan context manager for startup and shutdown events."""
    logger = get_structlog_logger(__name__)

    logger.info("application.starting", environment=settings.environment)

    if settings.store_backend == "redis":
        # Codes and sessions live in Redis; without it the flow cannot run.
        await init_redis_pool()

    if settings.sentry_dsn:
        sentry_sdk.init(
            dsn=settings.sentry_dsn,
            environment=settings.environment,
            integrations=[
                AsyncioIntegration(),
                FastApiIntegration(),
                StarletteIntegration(),
            ],
            traces_sample_rate=1.0 if settings.is_development else 0.1,
            send_default_pii=False,
        )
        logger.info("sentry.initialized")

    if getattr(app.state, "lead_flow", None) is None:
        app.state.lead_flow = await build_lead_capture_flow(settings)
    logger.info(
        "lead_flow.initialized",
        store_backend=settings.store_backend,
        email_provider=settings.email_provider,
        crm_enabled=settings.hubspot_enabled,
    )

    logger.info("application.started")
    yield

    logger.info("application.shutting_down")

    # Let in-flight CRM syncs finish
    await app.state.lead_flow.wait_for_background()

    await close_redis_pool()

    logger.info("application.shutdown_complete")


def register_exception_handlers(app: FastAPI) -> None:
    logger = get_structlog_logger(__name__)

    @app.exception_handler(BaseAPIException)
    async def api_exception_handler(request: Request, exc: BaseAPIException):
        """Handle custom API exceptions."""
        logger.warning(
            "api.exception",
            status_code=exc.status_code,
            code=exc.code,
            path=request.url.path,
            method=request.method,
        )
        headers = None
        if isinstance(exc, RateLimitError) and exc.retry_after:
            headers = {"Retry-After": str(exc.retry_after)}
        return JSONResponse(
            status_code=exc.status_code,
            content=exc.to_dict(),
            headers=headers,
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        """Handle Pydantic validation errors."""
        errors = []
        for error in exc.errors():
            errors.append({
                "loc": list(error.get("loc", [])),
                "msg": error.get("msg", "Validation error"),
                "type": error.get("type", "value_error"),
            })

        logger.warning(
            "validation.error",
            path=request.url.path,
            method=request.method,
            errors=errors,
        )

        error = APIError(
            "Request validation failed",
            code="validation_error",
            details={"errors": errors},
        )
        return JSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            content=error.to_dict(),
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        """Handle unexpected exceptions."""
        error_id = f"err_{int(time.time())}_{hash(str(exc)) % 10000:04d}"

        logger.error(
            "unhandled.exception",
            error_id=error_id,
            error_type=type(exc).__name__,
            error=str(exc),
            path=request.url.path,
            method=request.method,
            exc_info=exc,
        )

        message = f"Internal server error: {exc}" if settings.is_development else "Internal server error"
        error = APIError(message, code="internal_error", details={"error_id": error_id})
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=error.to_dict(),
            headers={"X-Error-ID": error_id},
        )


def create_app() -> FastAPI:
    app = FastAPI(
        title="AEO Audit Suite Lead API",
        version="1.0.0",
        description="Lead capture with email verification for the AEO Audit Suite",
        docs_url="/docs" if settings.is_development else None,
        redoc_url="/redoc" if settings.is_development else None,
        openapi_url="/openapi.json" if settings.is_development else None,
        lifespan=lifespan,
    )

    # Last added runs first
    app.add_middleware(LoggingMiddleware)
    # Counters live in Redis; the memory backend has no pool to count in.
    if settings.store_backend == "redis" and not settings.is_development and not settings.is_testing:
        app.add_middleware(RateLimitingMiddleware)
    app.add_middleware(RequestIdMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.origins(),
        allow_credentials=True,
        allow_methods=settings.methods(),
        allow_headers=settings.allowed_headers.split(","),
        expose_headers=["X-Request-ID", "X-Response-Time", "Retry-After"],
    )

    register_exception_handlers(app)

    app.include_router(health.router, prefix=settings.api_prefix)
    app.include_router(auth.router, prefix=settings.api_prefix)

    if not settings.is_testing:
        Instrumentator().instrument(app).expose(app, endpoint="/metrics", include_in_schema=False)

    @app.get("/")
    async def root():
        """Root endpoint with API information."""
        return {
            "name": app.title,
            "version": app.version,
            "environment": settings.environment,
            "docs": "/docs" if settings.is_development else None,
            "health": f"{settings.api_prefix}/health/live",
        }

    return app


# Configure logging before creating app
configure_structlog()
app = create_app()

get_structlog_logger(__name__).info("application.configured", environment=settings.environment)
