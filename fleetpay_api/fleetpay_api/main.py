"""FastAPI application entry-point for the fleetpay gateway service."""

from __future__ import annotations

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fleetpay_core.errors import (
    GatewayAuthenticationError,
    GatewayConfigurationError,
    GatewayError,
    GatewayTimeoutError,
    InvalidWebhookPayloadError,
    TenantConfigNotFoundError,
    UnknownInvoiceError,
)
from fleetpay_core.state.database import is_sqlite_url
from sqlalchemy.exc import SQLAlchemyError

from fleetpay_api import __version__
from fleetpay_api.config import PlatformEnv, load_api_settings
from fleetpay_api.dependencies import (
    dispose_engine,
    dispose_gateway_client,
    dispose_scheduler,
    get_settings,
    init_engine,
    init_gateway_client,
    init_scheduler,
)
from fleetpay_api.middleware.json_formatter import configure_logging
from fleetpay_api.middleware.logging import RequestLoggingMiddleware
from fleetpay_api.routers import gateway, health, logs, tenant_config, webhooks
from fleetpay_api.schemas import ErrorResponse

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application startup / shutdown lifecycle.

    On startup:
    - Configure logging (JSON lines when ``structured_logging`` is on).
    - Initialise the async database engine; create tables in dev or on
      SQLite (production uses Alembic migrations).
    - Initialise the gateway client and the auto-sync scheduler, starting
      the latter only when ``auto_sync_enabled``.

    On shutdown everything is stopped and disposed in reverse order.
    """
    settings = get_settings()
    configure_logging(structured=settings.structured_logging, level=settings.log_level)

    engine = init_engine(settings)
    is_local = is_sqlite_url(settings.database_url)
    logger.info("Database engine initialised (%s)", "local SQLite" if is_local else "postgres")

    if settings.platform_env == PlatformEnv.DEV or is_local:
        from fleetpay_core.state.tables import Base

        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Database tables ensured")

    init_gateway_client(settings)
    logger.info("Gateway client initialised (proxy=%s)", settings.gateway_proxy_url)

    scheduler = init_scheduler(settings)
    if settings.auto_sync_enabled:
        await scheduler.start()

    yield

    await dispose_scheduler()
    await dispose_gateway_client()
    await dispose_engine()
    logger.info("Application shutdown complete")


# ---------------------------------------------------------------------------
# Error responses
# ---------------------------------------------------------------------------


def _error_response(status_code: int, error: str, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(error=error, message=message).model_dump(),
    )


def _register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(GatewayConfigurationError)
    async def configuration_error_handler(request: Request, exc: GatewayConfigurationError) -> JSONResponse:
        logger.warning("Gateway configuration error on %s: %s", request.url.path, exc)
        return _error_response(400, "configuration_error", str(exc))

    @app.exception_handler(GatewayAuthenticationError)
    async def authentication_error_handler(request: Request, exc: GatewayAuthenticationError) -> JSONResponse:
        logger.warning("Gateway authentication failed on %s: %s", request.url.path, exc)
        return _error_response(401, "invalid_client", str(exc))

    @app.exception_handler(GatewayTimeoutError)
    async def timeout_error_handler(request: Request, exc: GatewayTimeoutError) -> JSONResponse:
        logger.warning("Gateway timeout on %s: %s", request.url.path, exc)
        return _error_response(504, "gateway_timeout", str(exc))

    @app.exception_handler(GatewayError)
    async def gateway_error_handler(request: Request, exc: GatewayError) -> JSONResponse:
        logger.warning("Gateway error on %s: %s", request.url.path, exc)
        return _error_response(502, "gateway_error", str(exc))

    @app.exception_handler(TenantConfigNotFoundError)
    async def tenant_config_not_found_handler(request: Request, exc: TenantConfigNotFoundError) -> JSONResponse:
        return _error_response(404, "tenant_config_not_found", str(exc))

    @app.exception_handler(UnknownInvoiceError)
    async def unknown_invoice_handler(request: Request, exc: UnknownInvoiceError) -> JSONResponse:
        return _error_response(404, "invoice_not_found", str(exc))

    @app.exception_handler(InvalidWebhookPayloadError)
    async def invalid_payload_handler(request: Request, exc: InvalidWebhookPayloadError) -> JSONResponse:
        return _error_response(400, "invalid_payload", str(exc))

    @app.exception_handler(ValueError)
    async def value_error_handler(request: Request, exc: ValueError) -> JSONResponse:
        logger.warning("ValueError on %s: %s", request.url.path, exc)
        return _error_response(400, "invalid_request", str(exc))

    @app.exception_handler(SQLAlchemyError)
    async def sqlalchemy_error_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
        logger.error("Database error: %s", exc, exc_info=True)
        return _error_response(500, "database_error", "Internal database error")


# ---------------------------------------------------------------------------
# Application factory
# ---------------------------------------------------------------------------


def create_app() -> FastAPI:
    """Construct and configure the FastAPI application."""
    settings = load_api_settings()

    app = FastAPI(
        title="fleetpay API",
        description="Payment-gateway integration: statement sync, reconciliation and charge webhooks.",
        version=__version__,
        lifespan=lifespan,
    )

    # -- Middleware (outermost first) ----------------------------------------

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=settings.cors_allow_credentials,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["Authorization", "Content-Type", "X-Correlation-ID", "X-Webhook-Signature", "Accept"],
    )
    app.add_middleware(RequestLoggingMiddleware)

    # -- Routers -------------------------------------------------------------

    app.include_router(health.router, prefix="/api/v1")
    app.include_router(gateway.router, prefix="/api/v1")
    app.include_router(webhooks.router, prefix="/api/v1")
    app.include_router(tenant_config.router, prefix="/api/v1")
    app.include_router(logs.router, prefix="/api/v1")

    # Readiness probe outside versioning.
    app.include_router(health.readiness_router)

    _register_exception_handlers(app)
    return app


# Module-level application instance used by ``uvicorn fleetpay_api.main:app``.
app = create_app()
