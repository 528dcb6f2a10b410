"""ASGI entry point: ``uvicorn pulse_api.main:app``."""

from __future__ import annotations

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from pulse_api import __version__
from pulse_api.config import APISettings, load_api_settings
from pulse_api.dependencies import (
    dispose_dispatcher,
    dispose_engine,
    get_core_settings,
    get_session_factory,
    init_dispatcher,
    init_engine,
)
from pulse_api.middleware.json_formatter import JSONFormatter
from pulse_api.middleware.logging import RequestLoggingMiddleware
from pulse_api.middleware.prometheus import PrometheusMiddleware
from pulse_api.middleware.trace_context import TraceContextMiddleware, TraceLoggingFilter
from pulse_api.routers import health, ingest, integrity, tenants, webhooks
from pulse_api.routers import metrics as metrics_router
from pulse_api.services.event_handlers import init_event_bus
from pulse_core.state.sqlite_adapter import create_local_tables

logger = logging.getLogger(__name__)

API_PREFIX = "/api/v1"


def _check_deployment_secrets(settings: APISettings) -> None:
    """Refuse to boot a deployed instance whose webhook or admin routes would be unauthenticated."""
    if not settings.is_deployed:
        return
    unset = [
        f"PULSE_API_{name.upper()}"
        for name in ("webhook_secret", "cron_secret")
        if not getattr(settings, name).get_secret_value()
    ]
    if unset:
        raise RuntimeError(f"{settings.platform_env.value} requires {', '.join(unset)}")


def _configure_logging(settings: APISettings) -> None:
    if not settings.structured_logging:
        return
    handler = logging.StreamHandler()
    handler.setFormatter(JSONFormatter())
    handler.addFilter(TraceLoggingFilter())
    root = logging.getLogger()
    root.handlers[:] = [handler]
    root.setLevel(logging.DEBUG if settings.debug else logging.INFO)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Wire the store, the event bus, and the backfill dispatcher.

    Tables are created on boot for dev and SQLite databases only.
    Deployed PostgreSQL schemas are managed outside the app.
    """
    settings = load_api_settings()
    _check_deployment_secrets(settings)
    _configure_logging(settings)

    engine = init_engine(settings)
    backend = engine.dialect.name
    if backend == "sqlite" or not settings.is_deployed:
        await create_local_tables(engine)
        logger.info("Schema ensured on %s", backend)

    core_settings = get_core_settings()
    init_dispatcher(get_session_factory(), core_settings, event_bus=init_event_bus())
    logger.info(
        "Creator Pulse API %s up (env=%s, db=%s, install backfill=%dd)",
        __version__,
        settings.platform_env.value,
        backend,
        core_settings.install_backfill_days,
    )

    try:
        yield
    finally:
        await dispose_dispatcher()
        await dispose_engine()
        logger.info("Creator Pulse API stopped")


async def _bad_value(request: Request, exc: Exception) -> JSONResponse:
    logger.warning("Rejected %s %s: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=400, content={"detail": "Invalid request"})


async def _store_failure(request: Request, exc: Exception) -> JSONResponse:
    logger.error("Store error on %s %s", request.method, request.url.path, exc_info=exc)
    return JSONResponse(status_code=500, content={"detail": "Internal database error"})


def create_app() -> FastAPI:
    settings = load_api_settings()

    app = FastAPI(
        title="Creator Pulse API",
        description="Provider webhooks, daily creator metrics, backfills, and tenant dashboards.",
        version=__version__,
        lifespan=lifespan,
    )

    # Starlette runs the last-added middleware first.
    app.add_middleware(PrometheusMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=settings.cors_allow_credentials,
        allow_methods=["GET", "POST", "PUT", "OPTIONS"],
        allow_headers=["Authorization", "Content-Type", "X-Correlation-ID"],
    )
    app.add_middleware(TraceContextMiddleware)
    app.add_middleware(RequestLoggingMiddleware)

    for module in (health, webhooks, ingest, integrity, tenants):
        app.include_router(module.router, prefix=API_PREFIX)
    # Scrape and readiness endpoints sit at the root for infrastructure probes.
    app.include_router(metrics_router.router)
    app.include_router(health.readiness_router)

    app.add_exception_handler(ValueError, _bad_value)
    app.add_exception_handler(SQLAlchemyError, _store_failure)
    return app


app = create_app()
