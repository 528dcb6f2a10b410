"""Tests for the tenant, preferences, and metrics repositories on SQLite."""

from __future__ import annotations

from datetime import date, timedelta
from decimal import Decimal

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from pulse_core.plans import Plan
from pulse_core.state.database import session_scope
from pulse_core.state.repository import (
    MetricsRepository,
    PreferencesRepository,
    TenantRepository,
)

DAY = date(2024, 3, 10)


def _metrics(**overrides: object) -> dict[str, object]:
    values: dict[str, object] = {
        "gross_revenue": Decimal("120.50"),
        "active_members": 40,
        "new_members": 3,
        "cancellations": 1,
        "trials_started": 2,
        "trials_paid": 1,
    }
    values.update(overrides)
    return values


# ---------------------------------------------------------------------------
# TenantRepository
# ---------------------------------------------------------------------------


class TestTenantRepository:
    @pytest.mark.asyncio
    async def test_upsert_install_creates_row(self, session: AsyncSession) -> None:
        repo = TenantRepository(session)
        row = await repo.upsert_install("biz_1", credential="tok_1", plan=Plan.PRO)

        assert row.tenant_id == "biz_1"
        assert row.credential == "tok_1"
        assert row.plan == "pro"
        assert row.install_generation == 1
        assert row.secondary_id is None

    @pytest.mark.asyncio
    async def test_upsert_install_refreshes_credential_and_plan_only(self, session: AsyncSession) -> None:
        repo = TenantRepository(session)
        await repo.upsert_install("biz_1", credential="tok_1", plan=Plan.FREE, install_generation=3)
        assert await repo.claim_secondary_id("biz_1", "exp_1")

        row = await repo.upsert_install("biz_1", credential="tok_2", plan=Plan.BUSINESS, install_generation=1)

        assert row.credential == "tok_2"
        assert row.plan == "business"
        assert row.install_generation == 3
        assert row.secondary_id == "exp_1"

    @pytest.mark.asyncio
    async def test_list_with_credentials_skips_broken_installs(self, session: AsyncSession) -> None:
        repo = TenantRepository(session)
        await repo.upsert_install("biz_b", credential="tok", plan=Plan.FREE)
        await repo.create("biz_a", owner_user_id="user_1")

        rows = await repo.list_with_credentials()

        assert [r.tenant_id for r in rows] == ["biz_b"]

    @pytest.mark.asyncio
    async def test_get_latest_by_owner_prefers_most_recent(self, session: AsyncSession) -> None:
        repo = TenantRepository(session)
        await repo.create("biz_old", owner_user_id="user_1")
        await repo.create("biz_new", owner_user_id="user_1")
        await repo.set_owner("biz_new", "user_1")

        latest = await repo.get_latest_by_owner("user_1")

        assert latest is not None
        assert latest.tenant_id == "biz_new"

    @pytest.mark.asyncio
    async def test_create_keeps_the_first_row(self, session: AsyncSession) -> None:
        repo = TenantRepository(session)
        await repo.create("user_user_1", owner_user_id="user_1")

        again = await repo.create("user_user_1", owner_user_id="user_2", plan=Plan.PRO)

        assert again.owner_user_id == "user_1"
        assert again.plan == "free"

    @pytest.mark.asyncio
    async def test_delete_reports_existence(self, session: AsyncSession) -> None:
        repo = TenantRepository(session)
        await repo.create("biz_1")

        assert await repo.delete("biz_1") is True
        assert await repo.get("biz_1") is None
        assert await repo.delete("biz_1") is False

    @pytest.mark.asyncio
    async def test_update_plan_missing_tenant(self, session: AsyncSession) -> None:
        assert await TenantRepository(session).update_plan("nope", Plan.PRO) is None


# ---------------------------------------------------------------------------
# Secondary id claims
# ---------------------------------------------------------------------------


class TestClaimSecondaryId:
    @pytest.mark.asyncio
    async def test_claim_unowned_value(self, session: AsyncSession) -> None:
        repo = TenantRepository(session)
        await repo.create("biz_1")

        assert await repo.claim_secondary_id("biz_1", "exp_1") is True
        row = await repo.get("biz_1")
        assert row is not None and row.secondary_id == "exp_1"

    @pytest.mark.asyncio
    async def test_value_owned_elsewhere_is_never_taken(self, session: AsyncSession) -> None:
        repo = TenantRepository(session)
        await repo.create("biz_1")
        await repo.create("biz_2")
        assert await repo.claim_secondary_id("biz_1", "exp_shared")

        assert await repo.claim_secondary_id("biz_2", "exp_shared") is False

        owner = await repo.get_by_secondary_id("exp_shared")
        other = await repo.get("biz_2")
        assert owner is not None and owner.tenant_id == "biz_1"
        assert other is not None and other.secondary_id is None

    @pytest.mark.asyncio
    async def test_reinstall_claim_resets_plan_and_bumps_generation(self, session: AsyncSession) -> None:
        repo = TenantRepository(session)
        await repo.upsert_install("biz_1", credential="tok", plan=Plan.PRO)
        await repo.claim_secondary_id("biz_1", "exp_old")

        assert await repo.claim_secondary_id("biz_1", "exp_new", reinstall=True)

        row = await repo.get("biz_1")
        assert row is not None
        assert row.secondary_id == "exp_new"
        assert row.plan == "free"
        assert row.install_generation == 2

    @pytest.mark.asyncio
    async def test_rejected_reinstall_leaves_plan_alone(self, session: AsyncSession) -> None:
        repo = TenantRepository(session)
        await repo.upsert_install("biz_1", credential="tok", plan=Plan.PRO)
        await repo.claim_secondary_id("biz_1", "exp_1")
        await repo.create("biz_2")
        await repo.claim_secondary_id("biz_2", "exp_2")

        assert await repo.claim_secondary_id("biz_1", "exp_2", reinstall=True) is False

        row = await repo.get("biz_1")
        assert row is not None
        assert row.plan == "pro"
        assert row.install_generation == 1
        assert row.secondary_id == "exp_1"


# ---------------------------------------------------------------------------
# PreferencesRepository
# ---------------------------------------------------------------------------


class TestPreferencesRepository:
    @pytest.mark.asyncio
    async def test_get_or_create_is_lazy_and_stable(self, session: AsyncSession) -> None:
        prefs = PreferencesRepository(session, "biz_1")
        assert await prefs.get() is None

        first = await prefs.get_or_create()
        second = await prefs.get_or_create()

        assert first.tenant_id == second.tenant_id == "biz_1"

    @pytest.mark.asyncio
    async def test_goal_sentinel_distinguishes_unset_from_clear(self, session: AsyncSession) -> None:
        prefs = PreferencesRepository(session, "biz_1")
        await prefs.update(goal_amount=Decimal("5000.00"))

        row = await prefs.update(pro_welcome_shown=True)
        assert row.goal_amount == Decimal("5000.00")
        assert row.pro_welcome_shown_at is not None

        row = await prefs.update(goal_amount=None)
        assert row.goal_amount is None

    @pytest.mark.asyncio
    async def test_completion_and_generations(self, session: AsyncSession) -> None:
        prefs = PreferencesRepository(session, "biz_1")
        assert await prefs.next_install_generation() == 1

        await prefs.mark_complete(2)
        assert await prefs.next_install_generation() == 3

        assert await prefs.clear_completion() is True
        assert await prefs.clear_completion() is False
        row = await prefs.get()
        assert row is not None and row.completed_at is None and row.completed_generation is None


# ---------------------------------------------------------------------------
# MetricsRepository
# ---------------------------------------------------------------------------


class TestMetricsRepository:
    @pytest.mark.asyncio
    async def test_upsert_is_idempotent(self, session: AsyncSession) -> None:
        metrics = MetricsRepository(session, "biz_1")
        await metrics.upsert_day(DAY, **_metrics())
        await metrics.upsert_day(DAY, **_metrics())

        rows = await metrics.list_range()
        assert len(rows) == 1
        assert rows[0].gross_revenue == Decimal("120.50")

    @pytest.mark.asyncio
    async def test_upsert_overwrites_full_row(self, session: AsyncSession) -> None:
        metrics = MetricsRepository(session, "biz_1")
        await metrics.upsert_day(DAY, **_metrics())
        await metrics.upsert_day(DAY, **_metrics(gross_revenue=Decimal("0"), active_members=0, trials_paid=0))

        row = await metrics.get_day(DAY)
        assert row is not None
        assert row.gross_revenue == Decimal("0")
        assert row.active_members == 0
        assert row.trials_paid == 0
        assert row.new_members == 3

    @pytest.mark.asyncio
    async def test_reads_are_tenant_scoped(self, session: AsyncSession) -> None:
        await MetricsRepository(session, "biz_a").upsert_day(DAY, **_metrics())
        await MetricsRepository(session, "biz_b").upsert_day(DAY, **_metrics(active_members=99))
        await MetricsRepository(session, "biz_b").upsert_day(DAY + timedelta(days=1), **_metrics())

        rows_a = await MetricsRepository(session, "biz_a").list_range()
        assert [r.tenant_id for r in rows_a] == ["biz_a"]
        assert rows_a[0].active_members == 40
        assert await MetricsRepository(session, "biz_a").count_rows_for_other_tenants() == 2
        assert await MetricsRepository(session, "biz_c").get_day(DAY) is None

    @pytest.mark.asyncio
    async def test_latest_before_and_coverage(self, session: AsyncSession) -> None:
        metrics = MetricsRepository(session, "biz_1")
        for offset in (0, 1, 4):
            await metrics.upsert_day(DAY + timedelta(days=offset), **_metrics(active_members=offset))

        previous = await metrics.get_latest_before(DAY + timedelta(days=4))
        assert previous is not None and previous.date == DAY + timedelta(days=1)
        assert await metrics.get_latest_before(DAY) is None

        count, oldest, newest = await metrics.coverage()
        assert (count, oldest, newest) == (3, DAY, DAY + timedelta(days=4))

    @pytest.mark.asyncio
    async def test_list_range_bounds_are_inclusive(self, session: AsyncSession) -> None:
        metrics = MetricsRepository(session, "biz_1")
        for offset in range(5):
            await metrics.upsert_day(DAY + timedelta(days=offset), **_metrics())

        rows = await metrics.list_range(start=DAY + timedelta(days=1), end=DAY + timedelta(days=3))
        assert [r.date for r in rows] == [DAY + timedelta(days=i) for i in (1, 2, 3)]


# ---------------------------------------------------------------------------
# Transaction boundaries
# ---------------------------------------------------------------------------


class TestSessionScope:
    @pytest.mark.asyncio
    async def test_commits_on_success(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        async with session_scope(session_factory) as session:
            await TenantRepository(session).create("biz_1")

        async with session_scope(session_factory) as session:
            assert await TenantRepository(session).get("biz_1") is not None

    @pytest.mark.asyncio
    async def test_rolls_back_on_error(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        with pytest.raises(RuntimeError, match="boom"):
            async with session_scope(session_factory) as session:
                await TenantRepository(session).create("biz_1")
                raise RuntimeError("boom")

        async with session_scope(session_factory) as session:
            assert await TenantRepository(session).get("biz_1") is None
