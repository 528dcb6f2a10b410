"""In-process notifications for tenant lifecycle and ingestion outcomes.

The webhook router, the ingestion pipeline, and the backfill engine publish
here; downstream hooks (digests, alerts, metrics) subscribe.  Publishing
never fails the publisher: a handler that raises or overruns its time
budget is logged and skipped.

Usage::

    bus = EventBus(handler_timeout=5.0)
    bus.register_handler(send_daily_digest, event_type=EventType.METRICS_INGESTED)
    await bus.emit(EventType.METRICS_INGESTED, tenant_id="biz_1", data={...})
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)


class EventType(str, Enum):
    TENANT_INSTALLED = "tenant.installed"
    TENANT_REINSTALLED = "tenant.reinstalled"
    TENANT_UNINSTALLED = "tenant.uninstalled"
    PLAN_CHANGED = "tenant.plan_changed"
    METRICS_INGESTED = "metrics.ingested"
    INGESTION_FAILED = "metrics.ingestion_failed"
    BACKFILL_COMPLETED = "metrics.backfill_completed"


class EventPayload(BaseModel):
    """What every handler receives."""

    event_type: EventType
    tenant_id: str
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))
    correlation_id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    data: dict[str, Any] = Field(default_factory=dict)


EventHandler = Callable[[EventPayload], Awaitable[None]]


def _handler_name(handler: EventHandler) -> str:
    return getattr(handler, "__name__", None) or repr(handler)


class EventBus:
    """Routes each event to its typed subscribers plus the catch-all ones.

    Parameters
    ----------
    handler_timeout:
        Optional per-handler budget in seconds.  The ingestion pipeline
        awaits :meth:`emit` between tenants, so a hung hook would otherwise
        stall the whole run.
    """

    def __init__(self, *, handler_timeout: float | None = None) -> None:
        self._typed: dict[EventType, list[EventHandler]] = {}
        self._catch_all: list[EventHandler] = []
        self._handler_timeout = handler_timeout

    def register_handler(
        self,
        handler: EventHandler,
        *,
        event_type: EventType | None = None,
    ) -> None:
        """Subscribe *handler* to one event type, or to every event when ``None``."""
        if event_type is None:
            self._catch_all.append(handler)
        else:
            self._typed.setdefault(event_type, []).append(handler)
        logger.debug("Subscribed %s to %s", _handler_name(handler), event_type.value if event_type else "*")

    def handlers_for(self, event_type: EventType) -> list[EventHandler]:
        return [*self._typed.get(event_type, []), *self._catch_all]

    @property
    def handler_count(self) -> int:
        return len(self._catch_all) + sum(len(handlers) for handlers in self._typed.values())

    async def emit(
        self,
        event_type: EventType,
        *,
        tenant_id: str,
        data: dict[str, Any] | None = None,
        correlation_id: str | None = None,
    ) -> int:
        """Deliver one event to every matching handler concurrently.

        Returns the number of handlers that failed or timed out; the
        failures themselves are only logged.
        """
        handlers = self.handlers_for(event_type)
        if not handlers:
            return 0

        payload = EventPayload(
            event_type=event_type,
            tenant_id=tenant_id,
            data=data or {},
            correlation_id=correlation_id or uuid.uuid4().hex,
        )
        outcomes = await asyncio.gather(*(self._deliver(handler, payload) for handler in handlers))
        return outcomes.count(False)

    async def _deliver(self, handler: EventHandler, payload: EventPayload) -> bool:
        try:
            if self._handler_timeout is None:
                await handler(payload)
            else:
                await asyncio.wait_for(handler(payload), timeout=self._handler_timeout)
        except TimeoutError:
            logger.warning(
                "Handler %s timed out on %s for tenant %s",
                _handler_name(handler),
                payload.event_type.value,
                payload.tenant_id,
            )
            return False
        except Exception:
            logger.exception(
                "Handler %s raised on %s for tenant %s (corr=%s)",
                _handler_name(handler),
                payload.event_type.value,
                payload.tenant_id,
                payload.correlation_id[:8],
            )
            return False
        return True
