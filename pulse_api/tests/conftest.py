"""Shared fixtures for the Creator Pulse API tests.

The app runs against a file-backed SQLite database in ``tmp_path`` and a
provider stubbed with ``httpx.MockTransport``.  ``ASGITransport`` does not
run the lifespan, so every global the lifespan would create is supplied
through ``app.dependency_overrides`` instead.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from pathlib import Path
from typing import Any

import httpx
import pytest
import pytest_asyncio
from api_helpers import CRON_SECRET, PROVIDER_URL, SESSION_SECRET, WEBHOOK_SECRET, ProviderStub
from httpx import ASGITransport, AsyncClient
from pydantic import SecretStr
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from pulse_core.config import CoreSettings, load_core_settings
from pulse_core.events import EventBus
from pulse_core.ingestion.backfill import BackfillEngine
from pulse_core.provider.client import ProviderClient
from pulse_core.state.sqlite_adapter import create_local_tables, get_local_engine

from pulse_api.config import APISettings
from pulse_api.dependencies import (
    get_backfill_dispatcher,
    get_client_factory,
    get_core_settings,
    get_event_bus,
    get_session_factory,
    get_settings,
)
from pulse_api.main import create_app
from pulse_api.services.backfill_dispatcher import BackfillDispatcher

# ---------------------------------------------------------------------------
# Settings and storage
# ---------------------------------------------------------------------------


@pytest.fixture
def api_settings() -> APISettings:
    return APISettings(
        database_url="sqlite+aiosqlite://",
        webhook_secret=SecretStr(WEBHOOK_SECRET),
        cron_secret=SecretStr(CRON_SECRET),
        session_secret=SecretStr(SESSION_SECRET),
    )


@pytest.fixture
def core_settings() -> CoreSettings:
    return load_core_settings(provider_base_url=PROVIDER_URL, backfill_delay_seconds=0)


@pytest_asyncio.fixture
async def engine(tmp_path: Path) -> AsyncGenerator[AsyncEngine, None]:
    engine = get_local_engine(tmp_path / "api.db")
    await create_local_tables(engine)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, expire_on_commit=False)


@pytest_asyncio.fixture
async def session(session_factory: async_sessionmaker[AsyncSession]) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


# ---------------------------------------------------------------------------
# Engine services
# ---------------------------------------------------------------------------


@pytest.fixture
def provider() -> ProviderStub:
    return ProviderStub()


@pytest.fixture
def client_factory(provider: ProviderStub, core_settings: CoreSettings) -> Any:
    def _factory(credential: str) -> ProviderClient:
        return ProviderClient(
            credential,
            base_url=core_settings.provider_base_url,
            transport=httpx.MockTransport(provider),
        )

    return _factory


@pytest.fixture
def event_bus() -> EventBus:
    return EventBus()


@pytest_asyncio.fixture
async def dispatcher(
    session_factory: async_sessionmaker[AsyncSession],
    client_factory: Any,
    event_bus: EventBus,
) -> AsyncGenerator[BackfillDispatcher, None]:
    engine = BackfillEngine(session_factory, client_factory, delay_seconds=0, event_bus=event_bus)
    dispatcher = BackfillDispatcher(session_factory, engine, days=7, timeout=30.0)
    yield dispatcher
    await dispatcher.shutdown()


# ---------------------------------------------------------------------------
# Application
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture
async def client(
    api_settings: APISettings,
    core_settings: CoreSettings,
    session_factory: async_sessionmaker[AsyncSession],
    client_factory: Any,
    dispatcher: BackfillDispatcher,
    event_bus: EventBus,
) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP client wired to a fully overridden app."""
    app = create_app()
    app.dependency_overrides[get_settings] = lambda: api_settings
    app.dependency_overrides[get_core_settings] = lambda: core_settings
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    app.dependency_overrides[get_client_factory] = lambda: client_factory
    app.dependency_overrides[get_backfill_dispatcher] = lambda: dispatcher
    app.dependency_overrides[get_event_bus] = lambda: event_bus

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

