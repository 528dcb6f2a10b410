"""Built-in event bus handlers and the module-level bus singleton.

Usage::

    from pulse_api.services.event_handlers import get_event_bus

    bus = get_event_bus()
    await bus.emit(EventType.TENANT_INSTALLED, tenant_id="biz_1")
"""

from __future__ import annotations

import logging

from pulse_core.events import EventBus, EventPayload, EventType

from pulse_api.middleware.prometheus import BACKFILL_DAYS_TOTAL, INGEST_TENANTS_TOTAL

logger = logging.getLogger(__name__)


async def lifecycle_log_handler(payload: EventPayload) -> None:
    """Log every event with its data keys (never the values)."""
    logger.info(
        "EVENT: %s tenant=%s corr=%s data_keys=%s",
        payload.event_type.value,
        payload.tenant_id,
        payload.correlation_id[:8],
        sorted(payload.data.keys()),
    )


async def ingest_metrics_handler(payload: EventPayload) -> None:
    """Count per-tenant ingestion outcomes."""
    if payload.event_type == EventType.METRICS_INGESTED:
        INGEST_TENANTS_TOTAL.labels(outcome="ok").inc()
    elif payload.event_type == EventType.INGESTION_FAILED:
        INGEST_TENANTS_TOTAL.labels(outcome="failed").inc()


async def backfill_metrics_handler(payload: EventPayload) -> None:
    """Count backfilled days by outcome."""
    written = int(payload.data.get("days_written", 0))
    failed = len(payload.data.get("failed_dates", []))
    if written:
        BACKFILL_DAYS_TOTAL.labels(outcome="written").inc(written)
    if failed:
        BACKFILL_DAYS_TOTAL.labels(outcome="failed").inc(failed)


_event_bus: EventBus | None = None


def init_event_bus() -> EventBus:
    """Create the global event bus with the built-in handlers registered."""
    global _event_bus  # noqa: PLW0603
    _event_bus = EventBus()
    _event_bus.register_handler(lifecycle_log_handler)
    _event_bus.register_handler(ingest_metrics_handler, event_type=EventType.METRICS_INGESTED)
    _event_bus.register_handler(ingest_metrics_handler, event_type=EventType.INGESTION_FAILED)
    _event_bus.register_handler(backfill_metrics_handler, event_type=EventType.BACKFILL_COMPLETED)

    logger.info("Event bus initialised with %d handler(s)", _event_bus.handler_count)
    return _event_bus


def get_event_bus() -> EventBus:
    """Return the module-level event bus instance."""
    if _event_bus is None:
        return init_event_bus()
    return _event_bus
