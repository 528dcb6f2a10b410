"""SQLAlchemy 2.0 ORM table definitions for the tenant and metrics stores.

All tables use the modern ``Mapped`` / ``mapped_column`` declaration style
introduced in SQLAlchemy 2.0.  The ``Base`` declarative base is exported for
use by migrations, the SQLite adapter, and the repository layer.
"""

from __future__ import annotations

import datetime as dt
from datetime import UTC, datetime
from decimal import Decimal
from typing import Any

from sqlalchemy import (
    CheckConstraint,
    Date,
    DateTime,
    Index,
    Integer,
    Numeric,
    PrimaryKeyConstraint,
    String,
    Text,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator


def _utcnow() -> datetime:
    """Return the current UTC timestamp (timezone-aware)."""
    return datetime.now(UTC)


class UTCDateTime(TypeDecorator[datetime]):
    """Timezone-aware ``DateTime`` that always loads as UTC.

    PostgreSQL round-trips the offset natively; SQLite drops it, so naive
    values read back are re-tagged as UTC.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value: Any, dialect: Any) -> Any:
        if value is not None and value.tzinfo is not None:
            return value.astimezone(UTC)
        return value

    def process_result_value(self, value: Any, dialect: Any) -> Any:
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value


# ---------------------------------------------------------------------------
# Declarative base
# ---------------------------------------------------------------------------


class Base(DeclarativeBase):
    """Shared declarative base for all tables."""


# ---------------------------------------------------------------------------
# Tenants (one row per installed company)
# ---------------------------------------------------------------------------


class TenantTable(Base):
    """Installed tenant with its provider credential and subscription plan."""

    __tablename__ = "tenants"

    tenant_id: Mapped[str] = mapped_column(String(128), primary_key=True)
    secondary_id: Mapped[str | None] = mapped_column(String(128), nullable=True, unique=True)
    owner_user_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    credential: Mapped[str] = mapped_column(Text, nullable=False, default="")
    plan: Mapped[str] = mapped_column(String(16), nullable=False, default="free")
    install_generation: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=_utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=_utcnow, onupdate=_utcnow, nullable=False)

    __table_args__ = (
        CheckConstraint("plan IN ('free', 'pro', 'business')", name="ck_tenants_plan"),
        Index("ix_tenants_owner_updated", "owner_user_id", "updated_at"),
    )


# ---------------------------------------------------------------------------
# Tenant preferences (1:1, survives uninstall)
# ---------------------------------------------------------------------------


class TenantPreferencesTable(Base):
    """Onboarding state and dashboard preferences for a tenant.

    Deliberately not foreign-keyed to ``tenants``: an uninstall removes the
    tenant row while preferences are kept for a potential reinstall.
    """

    __tablename__ = "tenant_preferences"

    tenant_id: Mapped[str] = mapped_column(String(128), primary_key=True)
    goal_amount: Mapped[Decimal | None] = mapped_column(Numeric(14, 2), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    completed_generation: Mapped[int | None] = mapped_column(Integer, nullable=True)
    pro_welcome_shown_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=_utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=_utcnow, onupdate=_utcnow, nullable=False)


# ---------------------------------------------------------------------------
# Daily metrics (one row per tenant per UTC day)
# ---------------------------------------------------------------------------


class MetricsDailyTable(Base):
    """Daily aggregate business metrics ingested from the provider."""

    __tablename__ = "metrics_daily"

    tenant_id: Mapped[str] = mapped_column(String(128), nullable=False)
    date: Mapped[dt.date] = mapped_column(Date, nullable=False)
    gross_revenue: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False, default=Decimal("0"))
    active_members: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    new_members: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    cancellations: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    trials_started: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    trials_paid: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=_utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=_utcnow, onupdate=_utcnow, nullable=False)

    __table_args__ = (
        PrimaryKeyConstraint("tenant_id", "date"),
        CheckConstraint("gross_revenue >= 0", name="ck_metrics_daily_revenue"),
        CheckConstraint(
            "active_members >= 0 AND new_members >= 0 AND cancellations >= 0 "
            "AND trials_started >= 0 AND trials_paid >= 0",
            name="ck_metrics_daily_counts",
        ),
        Index("ix_metrics_daily_tenant", "tenant_id"),
    )
