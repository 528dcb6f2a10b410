"""Stand-in provider client for ingestion and backfill tests."""

from __future__ import annotations

import asyncio
from datetime import date
from decimal import Decimal
from typing import Any

from pulse_core.models.metrics import DailySummary


class FakeProviderClient:
    """Returns a fixed summary per day; days in ``fail_days`` raise."""

    def __init__(
        self,
        credential: str,
        *,
        fail_days: set[date] | None = None,
        delay: float = 0.0,
        error: Exception | None = None,
    ) -> None:
        self.credential = credential
        self.fail_days = fail_days or set()
        self.delay = delay
        self.error = error
        self.calls: list[tuple[date, int]] = []
        self.closed = False

    async def __aenter__(self) -> FakeProviderClient:
        return self

    async def __aexit__(self, *exc: Any) -> None:
        self.closed = True

    async def fetch_daily_summary(
        self,
        day: date,
        *,
        previous_active: int = 0,
        today: date | None = None,
    ) -> DailySummary:
        self.calls.append((day, previous_active))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        if day in self.fail_days:
            raise RuntimeError(f"provider exploded on {day.isoformat()}")
        return DailySummary(
            gross_revenue=Decimal("10.00"),
            active_members=previous_active + 1,
            new_members=1,
            cancellations=0,
            trials_started=0,
            trials_paid=0,
            active_members_derived=True,
        )
