"""Read-only integrity diagnostic for one tenant.

Reports credential presence, metric coverage, recent gaps, cross-tenant
isolation, and rows matching known seed fixtures.  Violations are returned
as data in the report, never raised.  Nothing here writes to the store.
"""

from __future__ import annotations

import logging
from datetime import UTC, date, datetime, timedelta
from decimal import Decimal

from sqlalchemy.ext.asyncio import AsyncSession

from pulse_core.models.integrity import CrossTenantLeaks, IntegrityReport
from pulse_core.state.repository import MetricsRepository, TenantRepository

logger = logging.getLogger(__name__)

# (gross_revenue, active_members) pairs used by demo/seed fixtures.
SEED_PATTERNS: tuple[tuple[Decimal, int], ...] = (
    (Decimal("1737.92"), 95),
    (Decimal("1000"), 50),
)


def gap_window(today: date, days: int) -> list[date]:
    """The *days* calendar days ending yesterday, oldest first."""
    yesterday = today - timedelta(days=1)
    return [yesterday - timedelta(days=offset) for offset in range(days - 1, -1, -1)]


class IntegrityChecker:
    def __init__(self, session: AsyncSession, *, gap_days: int = 14) -> None:
        self._session = session
        self._gap_days = gap_days

    async def check(self, tenant_id: str, *, today: date | None = None) -> IntegrityReport:
        today = today or datetime.now(UTC).date()
        report = IntegrityReport(tenant_id=tenant_id)

        tenant = await TenantRepository(self._session).get(tenant_id)
        report.install_found = tenant is not None
        report.has_access_token = bool(tenant is not None and tenant.credential)
        if not report.install_found:
            report.notes.append("Install not found")
        elif not report.has_access_token:
            report.notes.append("Install is missing its access token")

        metrics = MetricsRepository(self._session, tenant_id)
        rows = await metrics.list_range()
        report.total_rows = len(rows)
        if rows:
            report.oldest_date = rows[0].date
            report.newest_date = rows[-1].date

        present = {row.date for row in rows}
        report.gaps = [d for d in gap_window(today, self._gap_days) if d not in present]

        leaks = sum(1 for row in rows if row.tenant_id != tenant_id)
        report.cross_tenant_leaks = CrossTenantLeaks(
            rows_for_other_tenants=await metrics.count_rows_for_other_tenants(),
            leaks_in_query=leaks,
        )
        if leaks:
            report.notes.append(f"CRITICAL: tenant-scoped query returned {leaks} row(s) owned by other tenants")
            logger.error("Cross-tenant leak detected for tenant %s: %d row(s)", tenant_id, leaks)
        elif report.cross_tenant_leaks.rows_for_other_tenants:
            report.notes.append(
                f"Info: {report.cross_tenant_leaks.rows_for_other_tenants} row(s) exist for other tenants"
            )

        for revenue, members in SEED_PATTERNS:
            if any(row.gross_revenue == revenue and row.active_members == members for row in rows):
                report.hardcoded_data_detected = True
                report.notes.append(f"Possible seed data: revenue={revenue}, active_members={members}")

        report.ok = report.install_found and report.has_access_token and leaks == 0
        return report
