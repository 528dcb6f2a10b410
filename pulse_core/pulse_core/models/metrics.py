"""Metric summary and ingestion result models.

``DailySummary`` is what the provider client produces for one tenant and one
UTC calendar day.  The ingestion pipeline and backfill engine wrap the
outcome of writing those summaries in the report types below; partial
failure is a normal, itemised outcome rather than an exception.
"""

from __future__ import annotations

import datetime as dt
from decimal import Decimal

from pydantic import BaseModel, Field


class DailySummary(BaseModel):
    """Aggregated provider metrics for one tenant and one day.

    ``active_members_derived`` is True when the provider's live total was
    not used and the count was instead computed as
    ``max(0, previous_active + new_members - cancellations)``.  That
    derivation chains off the previous stored day, so it is approximate and
    can drift over long backfill windows.
    """

    gross_revenue: Decimal = Field(default=Decimal("0"), ge=0)
    active_members: int = Field(default=0, ge=0)
    new_members: int = Field(default=0, ge=0)
    cancellations: int = Field(default=0, ge=0)
    trials_started: int = Field(default=0, ge=0)
    trials_paid: int = Field(default=0, ge=0)
    active_members_derived: bool = False


class TenantIngestResult(BaseModel):
    """Outcome of ingesting one day for one tenant."""

    tenant_id: str
    ok: bool
    summary: DailySummary | None = None
    error: str | None = None


class IngestionReport(BaseModel):
    """Result of one pipeline run across all tenants.

    ``ok`` stays True when some tenants failed: the failures are itemised in
    ``results`` and counted in ``failed``.
    """

    ok: bool = True
    date: dt.date
    results: list[TenantIngestResult] = Field(default_factory=list)
    succeeded: int = 0
    failed: int = 0


class BackfillResult(BaseModel):
    """Result of a multi-day backfill for one tenant."""

    tenant_id: str
    days_written: int = 0
    total_days: int = 0
    failed_dates: list[dt.date] = Field(default_factory=list)

    @property
    def complete(self) -> bool:
        return self.days_written == self.total_days
