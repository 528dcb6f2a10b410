"""Repository classes providing access to the tenant and metrics stores.

Each repository takes an ``AsyncSession`` at construction time and operates
within the caller's transaction boundary.  All writes call ``session.flush()``
so that generated defaults are populated; the caller is responsible for calling
``session.commit()`` (or relying on ``session_scope``).

Metric and preference repositories are bound to a single tenant and never
return another tenant's rows.  The only cross-tenant reads are the explicitly
documented admin/ingestion helpers below.
"""

from __future__ import annotations

import logging
from datetime import UTC, date, datetime
from decimal import Decimal
from typing import Any

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from pulse_core.plans import Plan
from pulse_core.state.database import dialect_name, savepoint
from pulse_core.state.tables import (
    MetricsDailyTable,
    TenantPreferencesTable,
    TenantTable,
)

logger = logging.getLogger(__name__)


async def _dialect_upsert(
    session: AsyncSession,
    table: Any,
    values: dict[str, Any],
    index_elements: list[str],
    update_columns: list[str],
) -> Any:
    """Dialect-aware upsert: PostgreSQL ``ON CONFLICT DO UPDATE`` or SQLite equivalent.

    Parameters
    ----------
    session:
        The active async session.
    table:
        The SQLAlchemy table class to upsert into.
    values:
        Column-value mapping for the row to insert.
    index_elements:
        Column names forming the unique constraint for conflict detection.
    update_columns:
        Column names to update when a conflict occurs.

    Returns
    -------
    The execution result from ``session.execute()``.
    """
    stmt: Any
    if dialect_name(session) == "postgresql":
        from sqlalchemy.dialects.postgresql import insert as _pg_insert

        stmt = _pg_insert(table).values(**values)
        stmt = stmt.on_conflict_do_update(
            index_elements=index_elements,
            set_={col: getattr(stmt.excluded, col) for col in update_columns},
        )
    else:
        from sqlalchemy.dialects.sqlite import insert as _sqlite_insert

        stmt = _sqlite_insert(table).values(**values)
        stmt = stmt.on_conflict_do_update(
            index_elements=index_elements,
            set_={col: values[col] for col in update_columns},
        )
    return await session.execute(stmt)


# ---------------------------------------------------------------------------
# TenantRepository
# ---------------------------------------------------------------------------


class TenantRepository:
    """Access to the ``tenants`` table.

    Tenant rows are keyed by their own id, so this repository is not bound to
    a single tenant.  Lookups by owner or secondary id are how identity
    resolution finds the canonical row in the first place.
    """

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get(self, tenant_id: str) -> TenantTable | None:
        """Fetch a tenant by id. Returns None if not found."""
        stmt = select(TenantTable).where(TenantTable.tenant_id == tenant_id)
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_by_secondary_id(self, secondary_id: str) -> TenantTable | None:
        stmt = select(TenantTable).where(TenantTable.secondary_id == secondary_id)
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_latest_by_owner(self, owner_user_id: str) -> TenantTable | None:
        """Return the most recently updated tenant owned by *owner_user_id*."""
        stmt = (
            select(TenantTable)
            .where(TenantTable.owner_user_id == owner_user_id)
            .order_by(TenantTable.updated_at.desc(), TenantTable.tenant_id)
            .limit(1)
        )
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def list_with_credentials(self) -> list[TenantTable]:
        """List every tenant holding a non-empty credential (**cross-tenant**).

        .. warning:: **Intentionally cross-tenant**

           Used only by the daily ingestion pipeline, which must visit every
           installed tenant.  Request handlers must never call this.
        """
        stmt = select(TenantTable).where(TenantTable.credential != "").order_by(TenantTable.tenant_id)
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    async def create(
        self,
        tenant_id: str,
        *,
        owner_user_id: str | None = None,
        credential: str = "",
        plan: Plan = Plan.FREE,
        install_generation: int = 1,
    ) -> TenantTable:
        """Insert a tenant row unless one with this id already exists.

        Concurrent creates for the same id converge on whichever row landed
        first; that row is returned, so callers must check its owner rather
        than assume their own values were written.  The secondary id is
        claimed separately.
        """
        now = datetime.now(UTC)
        await _dialect_upsert(
            self._session,
            TenantTable,
            values={
                "tenant_id": tenant_id,
                "owner_user_id": owner_user_id,
                "credential": credential,
                "plan": plan.value,
                "install_generation": install_generation,
                "created_at": now,
                "updated_at": now,
            },
            index_elements=["tenant_id"],
            update_columns=["tenant_id"],
        )
        await self._session.flush()
        row = await self._reload(tenant_id)
        logger.info("Ensured tenant %s (requested owner=%s)", tenant_id, owner_user_id)
        return row  # type: ignore[return-value]

    async def upsert_install(
        self,
        tenant_id: str,
        *,
        credential: str,
        plan: Plan,
        install_generation: int = 1,
    ) -> TenantTable:
        """Create or refresh a tenant from an install event.

        On conflict only the credential, plan, and ``updated_at`` are
        overwritten; ``install_generation`` and the secondary id of an
        existing row are left alone.
        """
        now = datetime.now(UTC)
        await _dialect_upsert(
            self._session,
            TenantTable,
            values={
                "tenant_id": tenant_id,
                "credential": credential,
                "plan": plan.value,
                "install_generation": install_generation,
                "created_at": now,
                "updated_at": now,
            },
            index_elements=["tenant_id"],
            update_columns=["credential", "plan", "updated_at"],
        )
        await self._session.flush()
        return await self._reload(tenant_id)  # type: ignore[return-value]

    async def claim_secondary_id(
        self,
        tenant_id: str,
        secondary_id: str,
        *,
        reinstall: bool = False,
    ) -> bool:
        """Atomically write *secondary_id* onto *tenant_id* unless another tenant owns it.

        The check and the write are one ``UPDATE ... WHERE NOT EXISTS``
        statement, so two concurrent claims cannot both succeed.  The unique
        constraint is the final guard; on PostgreSQL the statement runs in a
        savepoint so a violation does not abort the caller's transaction.

        When *reinstall* is true the same statement resets ``plan`` to free
        and bumps ``install_generation``.

        Returns True if the row was updated, False if the value is owned by
        another tenant (or the tenant does not exist).
        """
        others = TenantTable.__table__.alias("other_tenants")
        owned_elsewhere = (
            select(others.c.tenant_id)
            .where(
                others.c.secondary_id == secondary_id,
                others.c.tenant_id != tenant_id,
            )
            .exists()
        )
        values: dict[str, Any] = {
            "secondary_id": secondary_id,
            "updated_at": datetime.now(UTC),
        }
        if reinstall:
            values["plan"] = Plan.FREE.value
            values["install_generation"] = TenantTable.install_generation + 1

        stmt = (
            update(TenantTable)
            .where(TenantTable.tenant_id == tenant_id, ~owned_elsewhere)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        try:
            async with savepoint(self._session):
                result = await self._session.execute(stmt)
        except IntegrityError:
            logger.warning(
                "Secondary id %s already claimed concurrently; tenant %s left unchanged",
                secondary_id,
                tenant_id,
            )
            return False

        claimed = result.rowcount > 0  # type: ignore[attr-defined]
        if claimed:
            await self._reload(tenant_id)
        else:
            logger.warning(
                "Rejected secondary id %s for tenant %s: owned by another tenant",
                secondary_id,
                tenant_id,
            )
        return claimed

    async def update_plan(self, tenant_id: str, plan: Plan) -> TenantTable | None:
        """Set the plan on an existing tenant. Returns None if not found."""
        row = await self.get(tenant_id)
        if row is None:
            return None
        row.plan = plan.value
        row.updated_at = datetime.now(UTC)
        await self._session.flush()
        return row

    async def set_owner(self, tenant_id: str, owner_user_id: str) -> TenantTable | None:
        row = await self.get(tenant_id)
        if row is None:
            return None
        row.owner_user_id = owner_user_id
        row.updated_at = datetime.now(UTC)
        await self._session.flush()
        return row

    async def delete(self, tenant_id: str) -> bool:
        """Delete a tenant row. Returns True if it existed.

        Preferences and metric history are not touched.
        """
        row = await self.get(tenant_id)
        if row is None:
            return False
        await self._session.delete(row)
        await self._session.flush()
        return True

    async def _reload(self, tenant_id: str) -> TenantTable | None:
        stmt = (
            select(TenantTable)
            .where(TenantTable.tenant_id == tenant_id)
            .execution_options(populate_existing=True)
        )
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()


# ---------------------------------------------------------------------------
# PreferencesRepository
# ---------------------------------------------------------------------------


class PreferencesRepository:
    """CRUD operations for the ``tenant_preferences`` table."""

    def __init__(self, session: AsyncSession, tenant_id: str) -> None:
        self._session = session
        self._tenant_id = tenant_id

    async def get(self) -> TenantPreferencesTable | None:
        stmt = select(TenantPreferencesTable).where(TenantPreferencesTable.tenant_id == self._tenant_id)
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_or_create(self) -> TenantPreferencesTable:
        """Return the preferences row, creating it lazily on first request."""
        row = await self.get()
        if row is not None:
            return row
        now = datetime.now(UTC)
        await _dialect_upsert(
            self._session,
            TenantPreferencesTable,
            values={"tenant_id": self._tenant_id, "created_at": now, "updated_at": now},
            index_elements=["tenant_id"],
            update_columns=["tenant_id"],
        )
        await self._session.flush()
        return await self.get()  # type: ignore[return-value]

    async def update(
        self,
        *,
        goal_amount: Decimal | None = ...,  # type: ignore[assignment]
        pro_welcome_shown: bool = False,
    ) -> TenantPreferencesTable:
        """Update user-editable preferences.

        ``goal_amount`` uses the sentinel ``...`` to distinguish "not
        provided" (leave unchanged) from an explicit ``None`` (clear it).
        """
        row = await self.get_or_create()
        if goal_amount is not ...:
            row.goal_amount = goal_amount
        if pro_welcome_shown and row.pro_welcome_shown_at is None:
            row.pro_welcome_shown_at = datetime.now(UTC)
        row.updated_at = datetime.now(UTC)
        await self._session.flush()
        return row

    async def next_install_generation(self) -> int:
        """Generation for a freshly created tenant row.

        Preferences outlive the tenant row, so a new row must start past any
        generation at which onboarding was previously completed.
        """
        row = await self.get()
        if row is None or row.completed_generation is None:
            return 1
        return row.completed_generation + 1

    async def mark_complete(self, install_generation: int) -> TenantPreferencesTable:
        """Record onboarding completion for the given install generation."""
        row = await self.get_or_create()
        now = datetime.now(UTC)
        row.completed_at = now
        row.completed_generation = install_generation
        row.updated_at = now
        await self._session.flush()
        return row

    async def clear_completion(self) -> bool:
        """Clear the onboarding marker. Returns True if one was set."""
        row = await self.get()
        if row is None or row.completed_at is None:
            return False
        row.completed_at = None
        row.completed_generation = None
        row.updated_at = datetime.now(UTC)
        await self._session.flush()
        logger.info("Cleared onboarding completion for tenant %s", self._tenant_id)
        return True


# ---------------------------------------------------------------------------
# MetricsRepository
# ---------------------------------------------------------------------------

_METRIC_COLUMNS = [
    "gross_revenue",
    "active_members",
    "new_members",
    "cancellations",
    "trials_started",
    "trials_paid",
]


class MetricsRepository:
    """Tenant-scoped access to the ``metrics_daily`` time series."""

    def __init__(self, session: AsyncSession, tenant_id: str) -> None:
        self._session = session
        self._tenant_id = tenant_id

    async def upsert_day(
        self,
        day: date,
        *,
        gross_revenue: Decimal,
        active_members: int,
        new_members: int,
        cancellations: int,
        trials_started: int,
        trials_paid: int,
    ) -> None:
        """Write the full row for *day*, overwriting any previous values."""
        now = datetime.now(UTC)
        await _dialect_upsert(
            self._session,
            MetricsDailyTable,
            values={
                "tenant_id": self._tenant_id,
                "date": day,
                "gross_revenue": gross_revenue,
                "active_members": active_members,
                "new_members": new_members,
                "cancellations": cancellations,
                "trials_started": trials_started,
                "trials_paid": trials_paid,
                "created_at": now,
                "updated_at": now,
            },
            index_elements=["tenant_id", "date"],
            update_columns=[*_METRIC_COLUMNS, "updated_at"],
        )
        await self._session.flush()

    async def get_day(self, day: date) -> MetricsDailyTable | None:
        stmt = (
            select(MetricsDailyTable)
            .where(
                MetricsDailyTable.tenant_id == self._tenant_id,
                MetricsDailyTable.date == day,
            )
            .execution_options(populate_existing=True)
        )
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_latest_before(self, day: date) -> MetricsDailyTable | None:
        """Return the most recent row strictly before *day*."""
        stmt = (
            select(MetricsDailyTable)
            .where(
                MetricsDailyTable.tenant_id == self._tenant_id,
                MetricsDailyTable.date < day,
            )
            .order_by(MetricsDailyTable.date.desc())
            .limit(1)
        )
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def list_range(self, start: date | None = None, end: date | None = None) -> list[MetricsDailyTable]:
        """List rows for this tenant ordered by date, optionally bounded (inclusive)."""
        stmt = select(MetricsDailyTable).where(MetricsDailyTable.tenant_id == self._tenant_id)
        if start is not None:
            stmt = stmt.where(MetricsDailyTable.date >= start)
        if end is not None:
            stmt = stmt.where(MetricsDailyTable.date <= end)
        stmt = stmt.order_by(MetricsDailyTable.date).execution_options(populate_existing=True)
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    async def coverage(self) -> tuple[int, date | None, date | None]:
        """Return ``(row_count, oldest_date, newest_date)`` for this tenant."""
        stmt = select(
            func.count(),
            func.min(MetricsDailyTable.date),
            func.max(MetricsDailyTable.date),
        ).where(MetricsDailyTable.tenant_id == self._tenant_id)
        result = await self._session.execute(stmt)
        count, oldest, newest = result.one()
        return int(count or 0), oldest, newest

    async def count_rows_for_other_tenants(self) -> int:
        """Count metric rows owned by any other tenant (**cross-tenant**).

        .. warning:: **Intentionally cross-tenant**

           Leak-detection probe for the integrity checker only.  The result
           is informational; it is expected to be non-zero in a populated
           store.
        """
        stmt = select(func.count()).select_from(MetricsDailyTable).where(
            MetricsDailyTable.tenant_id != self._tenant_id
        )
        result = await self._session.execute(stmt)
        return int(result.scalar_one() or 0)
