"""Daily metrics ingestion across every installed tenant.

Tenants are processed sequentially.  Each tenant gets its own session and
transaction and its own timeout, so a slow or failing provider call for one
tenant never blocks or rolls back another.  Failures are itemised in the
returned :class:`~pulse_core.models.metrics.IngestionReport`; the run as a
whole still reports ``ok``.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import UTC, date, datetime, timedelta

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from pulse_core.events import EventBus, EventType
from pulse_core.ingestion.unit import ClientFactory, ingest_tenant_day
from pulse_core.models.metrics import IngestionReport, TenantIngestResult
from pulse_core.state.database import session_scope
from pulse_core.state.repository import TenantRepository

logger = logging.getLogger(__name__)


def utc_yesterday() -> date:
    return datetime.now(UTC).date() - timedelta(days=1)


class IngestionPipeline:
    """Fetches one day of metrics for every tenant with a credential.

    Parameters
    ----------
    session_factory:
        Factory for the per-tenant sessions.
    client_factory:
        Builds a provider client for a tenant credential.  The client is
        used as an async context manager and closed after each tenant.
    per_tenant_timeout:
        Upper bound in seconds on one tenant's fetch and upsert.
    event_bus:
        Optional bus notified with ``METRICS_INGESTED`` or
        ``INGESTION_FAILED`` per tenant.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        client_factory: ClientFactory,
        *,
        per_tenant_timeout: float = 60.0,
        event_bus: EventBus | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._client_factory = client_factory
        self._per_tenant_timeout = per_tenant_timeout
        self._event_bus = event_bus

    async def run(self, day: date | None = None) -> IngestionReport:
        """Ingest *day* (default: yesterday, UTC) for every tenant.

        Re-running for the same day overwrites each tenant's row with the
        freshly fetched values.
        """
        day = day or utc_yesterday()

        async with session_scope(self._session_factory) as session:
            tenants = [(t.tenant_id, t.credential) for t in await TenantRepository(session).list_with_credentials()]

        logger.info("Starting ingestion for %s across %d tenant(s)", day.isoformat(), len(tenants))

        report = IngestionReport(date=day)
        for tenant_id, credential in tenants:
            result = await self._ingest_tenant(tenant_id, credential, day)
            report.results.append(result)
            if result.ok:
                report.succeeded += 1
            else:
                report.failed += 1

        logger.info(
            "Ingestion for %s finished: %d succeeded, %d failed",
            day.isoformat(),
            report.succeeded,
            report.failed,
        )
        return report

    async def _ingest_tenant(self, tenant_id: str, credential: str, day: date) -> TenantIngestResult:
        try:
            async with self._client_factory(credential) as client, session_scope(self._session_factory) as session:
                summary = await asyncio.wait_for(
                    ingest_tenant_day(session, tenant_id, client, day),
                    timeout=self._per_tenant_timeout,
                )
        except Exception as exc:
            logger.error(
                "Ingestion failed for tenant %s on %s: %s",
                tenant_id,
                day.isoformat(),
                exc,
                exc_info=True,
            )
            error = str(exc) or type(exc).__name__
            await self._emit(EventType.INGESTION_FAILED, tenant_id, {"date": day.isoformat(), "error": error})
            return TenantIngestResult(tenant_id=tenant_id, ok=False, error=error)

        logger.debug("Ingested %s for tenant %s", day.isoformat(), tenant_id)
        await self._emit(
            EventType.METRICS_INGESTED,
            tenant_id,
            {"date": day.isoformat(), "summary": summary.model_dump(mode="json")},
        )
        return TenantIngestResult(tenant_id=tenant_id, ok=True, summary=summary)

    async def _emit(self, event_type: EventType, tenant_id: str, data: dict[str, object]) -> None:
        if self._event_bus is not None:
            await self._event_bus.emit(event_type, tenant_id=tenant_id, data=data)
