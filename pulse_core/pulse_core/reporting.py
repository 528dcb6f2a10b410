"""Plan-gated, tenant-scoped dashboard data.

KPIs come from the latest stored day; the series covers the plan's data
window (7 days on free, 90 on paid plans) ending today.
"""

from __future__ import annotations

import datetime as dt
from datetime import UTC, datetime, timedelta
from decimal import Decimal

from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from pulse_core.plans import Plan, data_window_days
from pulse_core.state.repository import MetricsRepository


class DashboardKPIs(BaseModel):
    gross_revenue: Decimal = Decimal("0")
    active_members: int = 0
    new_members: int = 0
    cancellations: int = 0
    trials_paid: int = 0
    latest_date: dt.date | None = None


class SeriesPoint(BaseModel):
    date: dt.date
    gross_revenue: Decimal
    active_members: int
    new_members: int
    cancellations: int
    trials_started: int
    trials_paid: int


class Dashboard(BaseModel):
    tenant_id: str
    plan: Plan
    window_days: int
    kpis: DashboardKPIs = Field(default_factory=DashboardKPIs)
    series: list[SeriesPoint] = Field(default_factory=list)

    @property
    def has_data(self) -> bool:
        return bool(self.series)


async def build_dashboard(
    session: AsyncSession,
    tenant_id: str,
    plan: Plan,
    *,
    today: dt.date | None = None,
) -> Dashboard:
    """Assemble KPIs and the daily series for one tenant."""
    today = today or datetime.now(UTC).date()
    window = data_window_days(plan)
    rows = await MetricsRepository(session, tenant_id).list_range(
        start=today - timedelta(days=window - 1),
        end=today,
    )

    dashboard = Dashboard(tenant_id=tenant_id, plan=plan, window_days=window)
    dashboard.series = [
        SeriesPoint(
            date=row.date,
            gross_revenue=row.gross_revenue,
            active_members=row.active_members,
            new_members=row.new_members,
            cancellations=row.cancellations,
            trials_started=row.trials_started,
            trials_paid=row.trials_paid,
        )
        for row in rows
    ]
    if rows:
        latest = rows[-1]
        dashboard.kpis = DashboardKPIs(
            gross_revenue=latest.gross_revenue,
            active_members=latest.active_members,
            new_members=latest.new_members,
            cancellations=latest.cancellations,
            trials_paid=latest.trials_paid,
            latest_date=latest.date,
        )
    return dashboard
