"""Read-only tenant views exposed to request handlers."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any

from pydantic import BaseModel

from pulse_core.plans import Plan, normalize_plan


class TenantView(BaseModel):
    """Tenant state without the provider credential."""

    tenant_id: str
    secondary_id: str | None = None
    owner_user_id: str | None = None
    plan: Plan = Plan.FREE
    install_generation: int = 1
    has_credential: bool = False
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @classmethod
    def from_row(cls, row: Any) -> TenantView:
        return cls(
            tenant_id=row.tenant_id,
            secondary_id=row.secondary_id,
            owner_user_id=row.owner_user_id,
            plan=normalize_plan(row.plan),
            install_generation=row.install_generation,
            has_credential=bool(row.credential),
            created_at=row.created_at,
            updated_at=row.updated_at,
        )


class PreferencesView(BaseModel):
    tenant_id: str
    goal_amount: Decimal | None = None
    onboarding_complete: bool = False
    completed_at: datetime | None = None
    pro_welcome_shown_at: datetime | None = None

    @classmethod
    def from_row(cls, row: Any, install_generation: int) -> PreferencesView:
        """Build the view; onboarding counts only for the current install generation."""
        return cls(
            tenant_id=row.tenant_id,
            goal_amount=row.goal_amount,
            onboarding_complete=row.completed_at is not None and row.completed_generation == install_generation,
            completed_at=row.completed_at,
            pro_welcome_shown_at=row.pro_welcome_shown_at,
        )
