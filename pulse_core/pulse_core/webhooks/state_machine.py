"""Apply verified webhook events to the tenant store.

Per-tenant states are ``uninstalled`` (no row) and ``installed(plan)``.
Every transition is an upsert or a delete keyed by tenant id, so a
redelivered event converges to the same end state.

The state machine works inside the caller's transaction and never commits.
An install only *requests* a backfill; the caller submits it once the
transaction has committed.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import assert_never

from sqlalchemy.ext.asyncio import AsyncSession

from pulse_core.plans import normalize_plan
from pulse_core.state.repository import PreferencesRepository, TenantRepository
from pulse_core.webhooks.events import (
    InstallEvent,
    PlanChangedEvent,
    UninstallEvent,
    UnrecognizedEvent,
    WebhookEvent,
)

logger = logging.getLogger(__name__)


class WebhookStatus(str, Enum):
    INSTALLED = "installed"
    REINSTALLED = "reinstalled"
    REFRESHED = "refreshed"
    UNINSTALLED = "uninstalled"
    PLAN_UPDATED = "plan_updated"
    NOT_FOUND = "not_found"
    IGNORED = "ignored"


@dataclass(frozen=True)
class WebhookOutcome:
    event: str
    status: WebhookStatus
    tenant_id: str | None = None
    backfill_requested: bool = False
    secondary_rejected: bool = False


class WebhookStateMachine:
    """Dispatches typed webhook events onto the tenant store."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session
        self._tenants = TenantRepository(session)

    async def apply(self, event: WebhookEvent) -> WebhookOutcome:
        if isinstance(event, InstallEvent):
            return await self._install(event)
        elif isinstance(event, UninstallEvent):
            return await self._uninstall(event)
        elif isinstance(event, PlanChangedEvent):
            return await self._plan_changed(event)
        elif isinstance(event, UnrecognizedEvent):
            logger.info("Ignoring unrecognized webhook event %r", event.event)
            return WebhookOutcome(event=event.event, status=WebhookStatus.IGNORED)
        else:
            assert_never(event)

    async def _install(self, event: InstallEvent) -> WebhookOutcome:
        tenant_id = event.tenant_id
        plan = normalize_plan(event.plan)
        prefs = PreferencesRepository(self._session, tenant_id)
        existing = await self._tenants.get(tenant_id)

        status = WebhookStatus.REFRESHED
        secondary_rejected = False

        if existing is None:
            generation = await prefs.next_install_generation()
            await prefs.clear_completion()
            await self._tenants.upsert_install(
                tenant_id,
                credential=event.credential,
                plan=plan,
                install_generation=generation,
            )
            status = WebhookStatus.INSTALLED
            if event.secondary_id:
                secondary_rejected = not await self._tenants.claim_secondary_id(tenant_id, event.secondary_id)
        else:
            if event.secondary_id and existing.secondary_id != event.secondary_id:
                reinstall = existing.secondary_id is not None
                claimed = await self._tenants.claim_secondary_id(tenant_id, event.secondary_id, reinstall=reinstall)
                secondary_rejected = not claimed
                if claimed and reinstall:
                    await prefs.clear_completion()
                    status = WebhookStatus.REINSTALLED
            # Applied after the claim so the event's plan wins over the reinstall reset.
            await self._tenants.upsert_install(tenant_id, credential=event.credential, plan=plan)

        if secondary_rejected:
            logger.warning(
                "Install for tenant %s left secondary id unset: %s belongs to another tenant",
                tenant_id,
                event.secondary_id,
            )

        logger.info("Tenant %s %s (plan=%s)", tenant_id, status.value, plan.value)
        return WebhookOutcome(
            event=event.kind.value,
            status=status,
            tenant_id=tenant_id,
            backfill_requested=True,
            secondary_rejected=secondary_rejected,
        )

    async def _uninstall(self, event: UninstallEvent) -> WebhookOutcome:
        deleted = await self._tenants.delete(event.tenant_id)
        if not deleted:
            logger.warning("Uninstall for unknown tenant %s; nothing to remove", event.tenant_id)
            return WebhookOutcome(event=event.kind.value, status=WebhookStatus.NOT_FOUND, tenant_id=event.tenant_id)
        logger.info("Tenant %s uninstalled; preferences and metrics retained", event.tenant_id)
        return WebhookOutcome(event=event.kind.value, status=WebhookStatus.UNINSTALLED, tenant_id=event.tenant_id)

    async def _plan_changed(self, event: PlanChangedEvent) -> WebhookOutcome:
        plan = normalize_plan(event.plan)
        row = await self._tenants.update_plan(event.tenant_id, plan)
        if row is None:
            logger.warning(
                "Plan change to %s for unknown tenant %s dropped",
                plan.value,
                event.tenant_id,
            )
            return WebhookOutcome(event=event.kind.value, status=WebhookStatus.NOT_FOUND, tenant_id=event.tenant_id)
        logger.info("Tenant %s plan changed to %s", event.tenant_id, plan.value)
        return WebhookOutcome(event=event.kind.value, status=WebhookStatus.PLAN_UPDATED, tenant_id=event.tenant_id)
