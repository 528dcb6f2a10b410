"""FastAPI dependency injection for settings, sessions, and engine services."""

from __future__ import annotations

import logging
from collections.abc import AsyncGenerator
from typing import Annotated

from fastapi import Depends, HTTPException, Query, Request
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from pulse_core.config import CoreSettings, load_core_settings
from pulse_core.events import EventBus
from pulse_core.identity.context import SessionClaims
from pulse_core.ingestion.backfill import BackfillEngine
from pulse_core.ingestion.pipeline import IngestionPipeline
from pulse_core.ingestion.unit import ClientFactory
from pulse_core.provider.client import ProviderClient
from pulse_core.state.database import get_engine, make_session_factory

from pulse_api.config import APISettings, load_api_settings
from pulse_api.security import check_shared_secret, decode_session_token
from pulse_api.services.backfill_dispatcher import BackfillDispatcher
from pulse_api.services.event_handlers import get_event_bus

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------

_settings_cache: APISettings | None = None
_core_settings_cache: CoreSettings | None = None


def get_settings() -> APISettings:
    """Return the cached :class:`APISettings` singleton."""
    global _settings_cache  # noqa: PLW0603
    if _settings_cache is None:
        _settings_cache = load_api_settings()
    return _settings_cache


def get_core_settings() -> CoreSettings:
    """Return the cached :class:`CoreSettings` singleton."""
    global _core_settings_cache  # noqa: PLW0603
    if _core_settings_cache is None:
        _core_settings_cache = load_core_settings()
    return _core_settings_cache


SettingsDep = Annotated[APISettings, Depends(get_settings)]
CoreSettingsDep = Annotated[CoreSettings, Depends(get_core_settings)]

# ---------------------------------------------------------------------------
# Database session
# ---------------------------------------------------------------------------

_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None


def init_engine(settings: APISettings) -> AsyncEngine:
    """Create and cache the global async engine."""
    global _engine, _session_factory  # noqa: PLW0603
    _engine = get_engine(settings.database_url)
    _session_factory = make_session_factory(_engine)
    return _engine


async def dispose_engine() -> None:
    """Dispose the global engine pool (call during shutdown)."""
    global _engine, _session_factory  # noqa: PLW0603
    if _engine is not None:
        await _engine.dispose()
        _engine = None
        _session_factory = None


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Return the global async session factory.

    Used by the units of work that run outside the request transaction
    (per-tenant ingestion, per-day backfill, background backfills).
    """
    if _session_factory is None:
        raise RuntimeError(
            "Database engine has not been initialised. Ensure init_engine() is called during application startup."
        )
    return _session_factory


async def get_db_session(
    session_factory: Annotated[async_sessionmaker[AsyncSession], Depends(get_session_factory)],
) -> AsyncGenerator[AsyncSession, None]:
    """Yield an ``AsyncSession`` for one request.

    Repositories scope every read and write to a tenant id themselves, so
    the session carries no tenant context.  The session commits on clean
    exit and rolls back on exception.
    """
    session = session_factory()
    try:
        yield session
        await session.commit()
    except Exception:
        await session.rollback()
        raise
    finally:
        await session.close()


SessionFactoryDep = Annotated[async_sessionmaker[AsyncSession], Depends(get_session_factory)]
SessionDep = Annotated[AsyncSession, Depends(get_db_session)]
EventBusDep = Annotated[EventBus, Depends(get_event_bus)]

# ---------------------------------------------------------------------------
# Ingestion services
# ---------------------------------------------------------------------------


def get_client_factory(settings: CoreSettingsDep) -> ClientFactory:
    """Return a factory building provider clients from core settings."""

    def _factory(credential: str) -> ProviderClient:
        return ProviderClient.from_settings(credential, settings)

    return _factory


ClientFactoryDep = Annotated[ClientFactory, Depends(get_client_factory)]


def get_ingestion_pipeline(
    session_factory: SessionFactoryDep,
    client_factory: ClientFactoryDep,
    settings: CoreSettingsDep,
    event_bus: EventBusDep,
) -> IngestionPipeline:
    return IngestionPipeline(
        session_factory,
        client_factory,
        per_tenant_timeout=settings.per_tenant_timeout_seconds,
        event_bus=event_bus,
    )


def get_backfill_engine(
    session_factory: SessionFactoryDep,
    client_factory: ClientFactoryDep,
    settings: CoreSettingsDep,
    event_bus: EventBusDep,
) -> BackfillEngine:
    return BackfillEngine(
        session_factory,
        client_factory,
        delay_seconds=settings.backfill_delay_seconds,
        event_bus=event_bus,
    )


PipelineDep = Annotated[IngestionPipeline, Depends(get_ingestion_pipeline)]
BackfillEngineDep = Annotated[BackfillEngine, Depends(get_backfill_engine)]

# ---------------------------------------------------------------------------
# Background backfill dispatcher
# ---------------------------------------------------------------------------

_dispatcher: BackfillDispatcher | None = None


def init_dispatcher(
    session_factory: async_sessionmaker[AsyncSession],
    settings: CoreSettings,
    event_bus: EventBus | None = None,
) -> BackfillDispatcher:
    """Create and cache the global :class:`BackfillDispatcher`."""
    global _dispatcher  # noqa: PLW0603
    client_factory = get_client_factory(settings)
    engine = BackfillEngine(
        session_factory,
        client_factory,
        delay_seconds=settings.backfill_delay_seconds,
        event_bus=event_bus,
    )
    _dispatcher = BackfillDispatcher(
        session_factory,
        engine,
        days=settings.install_backfill_days,
        timeout=settings.install_backfill_timeout_seconds,
    )
    return _dispatcher


async def dispose_dispatcher() -> None:
    """Cancel outstanding backfills (call during shutdown)."""
    global _dispatcher  # noqa: PLW0603
    if _dispatcher is not None:
        await _dispatcher.shutdown()
        _dispatcher = None


def get_backfill_dispatcher() -> BackfillDispatcher:
    """Return the cached :class:`BackfillDispatcher` singleton."""
    if _dispatcher is None:
        raise RuntimeError(
            "Backfill dispatcher has not been initialised. "
            "Ensure init_dispatcher() is called during application startup."
        )
    return _dispatcher


DispatcherDep = Annotated[BackfillDispatcher, Depends(get_backfill_dispatcher)]

# ---------------------------------------------------------------------------
# Access control
# ---------------------------------------------------------------------------


def require_admin_secret(
    settings: SettingsDep,
    secret: Annotated[str | None, Query()] = None,
) -> None:
    """Guard for the cron-triggered admin endpoints (``?secret=``)."""
    check_shared_secret(secret, settings.cron_secret.get_secret_value())


def get_session_claims(request: Request, settings: SettingsDep) -> SessionClaims | None:
    """Decode the caller's session from the cookie or a bearer token.

    Returns ``None`` when there is no session or it fails verification.
    """
    token = request.cookies.get(settings.session_cookie_name)
    if not token:
        auth_header = request.headers.get("authorization", "")
        if auth_header.lower().startswith("bearer "):
            token = auth_header[7:].strip()
    if not token:
        return None
    return decode_session_token(token, settings.session_secret.get_secret_value())


SessionClaimsDep = Annotated[SessionClaims | None, Depends(get_session_claims)]


def require_session(claims: SessionClaimsDep) -> SessionClaims:
    """Require a verified session; 401 otherwise."""
    if claims is None:
        raise HTTPException(status_code=401, detail="Authentication required")
    return claims


RequiredSessionDep = Annotated[SessionClaims, Depends(require_session)]
