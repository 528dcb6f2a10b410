"""Historical backfill for a single tenant.

Ingests the last N calendar days (``today - (N-1)`` through ``today``),
oldest first so that derived active member counts chain forward.  Each day
is its own unit of work: a failure is logged and recorded in
``failed_dates`` and the loop moves on.  Partial success is a normal result.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import UTC, date, datetime, timedelta

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from pulse_core.events import EventBus, EventType
from pulse_core.ingestion.unit import ClientFactory, ingest_tenant_day
from pulse_core.models.metrics import BackfillResult
from pulse_core.state.database import session_scope

logger = logging.getLogger(__name__)

MAX_BACKFILL_DAYS = 365


def backfill_dates(days: int, today: date) -> list[date]:
    """Return the *days* most recent dates ending at *today*, oldest first."""
    return [today - timedelta(days=offset) for offset in range(days - 1, -1, -1)]


class BackfillEngine:
    """Runs provider fetch + upsert for each of the last N days for one tenant.

    A fixed delay between days throttles requests to the provider.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        client_factory: ClientFactory,
        *,
        delay_seconds: float = 0.1,
        event_bus: EventBus | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._client_factory = client_factory
        self._delay_seconds = delay_seconds
        self._event_bus = event_bus

    async def run(
        self,
        tenant_id: str,
        credential: str,
        days: int,
        *,
        today: date | None = None,
    ) -> BackfillResult:
        """Backfill *days* days for *tenant_id*.

        Never raises for a per-day failure.

        Raises
        ------
        ValueError
            If *days* is outside ``1..365``.
        """
        if not 1 <= days <= MAX_BACKFILL_DAYS:
            raise ValueError(f"days must be between 1 and {MAX_BACKFILL_DAYS}, got {days}")

        today = today or datetime.now(UTC).date()
        result = BackfillResult(tenant_id=tenant_id, total_days=days)

        logger.info("Starting %d-day backfill for tenant %s", days, tenant_id)

        async with self._client_factory(credential) as client:
            for index, day in enumerate(backfill_dates(days, today)):
                if index and self._delay_seconds > 0:
                    await asyncio.sleep(self._delay_seconds)
                try:
                    async with session_scope(self._session_factory) as session:
                        await ingest_tenant_day(session, tenant_id, client, day, today=today)
                except Exception as exc:
                    logger.warning(
                        "Backfill of %s failed for tenant %s: %s",
                        day.isoformat(),
                        tenant_id,
                        exc,
                        exc_info=True,
                    )
                    result.failed_dates.append(day)
                    continue
                result.days_written += 1

        logger.info(
            "Backfill for tenant %s complete: %d/%d days written",
            tenant_id,
            result.days_written,
            result.total_days,
        )
        if self._event_bus is not None:
            await self._event_bus.emit(
                EventType.BACKFILL_COMPLETED,
                tenant_id=tenant_id,
                data={
                    "days_written": result.days_written,
                    "total_days": result.total_days,
                    "failed_dates": [d.isoformat() for d in result.failed_dates],
                },
            )
        return result
