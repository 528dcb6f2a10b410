"""Tests for the read-only tenant integrity diagnostic."""

from __future__ import annotations

from datetime import date, timedelta
from decimal import Decimal

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from pulse_core.integrity import IntegrityChecker, gap_window
from pulse_core.plans import Plan
from pulse_core.state.repository import MetricsRepository, TenantRepository

TODAY = date(2024, 3, 20)


async def _day(
    session: AsyncSession,
    tenant_id: str,
    day: date,
    *,
    revenue: str = "10.00",
    active: int = 5,
) -> None:
    await MetricsRepository(session, tenant_id).upsert_day(
        day,
        gross_revenue=Decimal(revenue),
        active_members=active,
        new_members=0,
        cancellations=0,
        trials_started=0,
        trials_paid=0,
    )


class TestGapWindow:
    def test_ends_yesterday(self) -> None:
        window = gap_window(TODAY, 14)
        assert len(window) == 14
        assert window[-1] == TODAY - timedelta(days=1)
        assert window[0] == TODAY - timedelta(days=14)


class TestIntegrityChecker:
    @pytest.mark.asyncio
    async def test_unknown_tenant(self, session: AsyncSession) -> None:
        report = await IntegrityChecker(session).check("biz_ghost", today=TODAY)

        assert report.ok is False
        assert report.install_found is False
        assert report.total_rows == 0
        assert len(report.gaps) == 14
        assert "Install not found" in report.notes

    @pytest.mark.asyncio
    async def test_healthy_tenant_with_full_coverage(self, session: AsyncSession) -> None:
        await TenantRepository(session).upsert_install("biz_1", credential="tok", plan=Plan.PRO)
        for day in gap_window(TODAY, 14):
            await _day(session, "biz_1", day)

        report = await IntegrityChecker(session).check("biz_1", today=TODAY)

        assert report.ok is True
        assert report.has_access_token is True
        assert report.total_rows == 14
        assert report.oldest_date == TODAY - timedelta(days=14)
        assert report.newest_date == TODAY - timedelta(days=1)
        assert report.gaps == []
        assert report.hardcoded_data_detected is False

    @pytest.mark.asyncio
    async def test_missing_days_are_reported_as_gaps(self, session: AsyncSession) -> None:
        await TenantRepository(session).upsert_install("biz_1", credential="tok", plan=Plan.FREE)
        window = gap_window(TODAY, 14)
        for day in window[:-3]:
            await _day(session, "biz_1", day)

        report = await IntegrityChecker(session).check("biz_1", today=TODAY)

        assert report.gaps == window[-3:]
        assert report.ok is True

    @pytest.mark.asyncio
    async def test_broken_install_is_not_ok(self, session: AsyncSession) -> None:
        await TenantRepository(session).create("biz_1", owner_user_id="user_1")

        report = await IntegrityChecker(session).check("biz_1", today=TODAY)

        assert report.install_found is True
        assert report.has_access_token is False
        assert report.ok is False
        assert "Install is missing its access token" in report.notes

    @pytest.mark.asyncio
    async def test_other_tenants_rows_are_informational(self, session: AsyncSession) -> None:
        await TenantRepository(session).upsert_install("biz_1", credential="tok", plan=Plan.FREE)
        await _day(session, "biz_1", TODAY - timedelta(days=1))
        await _day(session, "biz_2", TODAY - timedelta(days=1))
        await _day(session, "biz_2", TODAY - timedelta(days=2))

        report = await IntegrityChecker(session).check("biz_1", today=TODAY)

        assert report.cross_tenant_leaks.rows_for_other_tenants == 2
        assert report.cross_tenant_leaks.leaks_in_query == 0
        assert report.total_rows == 1
        assert report.ok is True

    @pytest.mark.asyncio
    @pytest.mark.parametrize(("revenue", "active"), [("1737.92", 95), ("1000.00", 50)])
    async def test_seed_data_is_flagged(self, session: AsyncSession, revenue: str, active: int) -> None:
        await TenantRepository(session).upsert_install("biz_1", credential="tok", plan=Plan.FREE)
        await _day(session, "biz_1", TODAY - timedelta(days=1), revenue=revenue, active=active)

        report = await IntegrityChecker(session).check("biz_1", today=TODAY)

        assert report.hardcoded_data_detected is True
        assert any(note.startswith("Possible seed data") for note in report.notes)

    @pytest.mark.asyncio
    async def test_custom_gap_window(self, session: AsyncSession) -> None:
        report = await IntegrityChecker(session, gap_days=3).check("biz_1", today=TODAY)
        assert report.gaps == gap_window(TODAY, 3)
