"""API router modules for the Creator Pulse service."""

from __future__ import annotations

from pulse_api.routers import health, ingest, integrity, tenants, webhooks

__all__ = [
    "health",
    "ingest",
    "integrity",
    "tenants",
    "webhooks",
]
