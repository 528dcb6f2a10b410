"""Single tenant-day unit of work shared by the pipeline and the backfill engine."""

from __future__ import annotations

from collections.abc import Callable
from datetime import date

from sqlalchemy.ext.asyncio import AsyncSession

from pulse_core.models.metrics import DailySummary
from pulse_core.provider.client import ProviderClient
from pulse_core.state.repository import MetricsRepository

# Builds a provider client bound to one tenant credential.
ClientFactory = Callable[[str], ProviderClient]


async def ingest_tenant_day(
    session: AsyncSession,
    tenant_id: str,
    client: ProviderClient,
    day: date,
    *,
    today: date | None = None,
) -> DailySummary:
    """Fetch one day for one tenant and overwrite its metrics row.

    The previous stored day seeds the active member derivation, so days
    must be ingested oldest first for the derivation to chain correctly.
    """
    metrics = MetricsRepository(session, tenant_id)
    previous = await metrics.get_latest_before(day)
    summary = await client.fetch_daily_summary(
        day,
        previous_active=previous.active_members if previous is not None else 0,
        today=today,
    )
    await metrics.upsert_day(
        day,
        gross_revenue=summary.gross_revenue,
        active_members=summary.active_members,
        new_members=summary.new_members,
        cancellations=summary.cancellations,
        trials_started=summary.trials_started,
        trials_paid=summary.trials_paid,
    )
    return summary
