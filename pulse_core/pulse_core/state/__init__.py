"""State persistence layer (PostgreSQL in production, SQLite locally)."""

from pulse_core.state.database import get_engine, make_session_factory, session_scope
from pulse_core.state.repository import (
    MetricsRepository,
    PreferencesRepository,
    TenantRepository,
)

__all__ = [
    "MetricsRepository",
    "PreferencesRepository",
    "TenantRepository",
    "get_engine",
    "make_session_factory",
    "session_scope",
]
