"""Map the identifiers presented by a request onto one canonical tenant.

Precedence, most to least authoritative:

1. A verified user id: the most recently updated tenant it owns.  Canonical
   regardless of the URL; a differing URL tenant id is only flagged.
2. The URL secondary ("experience") id.
3. The URL tenant id, or the session's tenant id when the URL has none.
4. With a verified user id and no match, a new free tenant is created.
5. Otherwise the request is unresolved and the caller redirects to login.

URL identifiers only ever locate a tenant; they never authorise writes.  A
differing URL secondary id is written (atomic compare-and-set) only for a
verified user who owns the tenant.  If the stored value was non-null this is
a reinstall: plan drops to free, the install generation advances, and
onboarding restarts.  A value owned by another tenant is never taken.
Sessions are only minted for the tenant's owner, so locating someone
else's tenant by URL yields a read-only resolution.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from enum import Enum

from sqlalchemy.ext.asyncio import AsyncSession

from pulse_core.identity.context import RequestContext, SessionClaims
from pulse_core.models.tenant import PreferencesView, TenantView
from pulse_core.plans import Plan
from pulse_core.state.repository import PreferencesRepository, TenantRepository
from pulse_core.state.tables import TenantTable

logger = logging.getLogger(__name__)


class ResolutionStatus(str, Enum):
    RESOLVED = "resolved"
    UNRESOLVED = "unresolved"


class ResolutionSource(str, Enum):
    """Which identifier located the tenant."""

    OWNER = "owner"
    SECONDARY_ID = "secondary_id"
    TENANT_ID = "tenant_id"
    CREATED = "created"


@dataclass(frozen=True)
class Resolution:
    """Outcome of resolving one request.

    ``session_claims`` is set when the caller should issue a fresh session
    for the resolved tenant (new login, or the session pointed elsewhere).
    """

    status: ResolutionStatus
    tenant: TenantView | None = None
    preferences: PreferencesView | None = None
    source: ResolutionSource | None = None
    url_mismatch: bool = False
    reinstalled: bool = False
    secondary_rejected: bool = False
    session_claims: SessionClaims | None = None

    @property
    def resolved(self) -> bool:
        return self.status is ResolutionStatus.RESOLVED


UNRESOLVED = Resolution(status=ResolutionStatus.UNRESOLVED)


class IdentityResolver:
    """Resolves a :class:`RequestContext` within the caller's transaction.

    The resolver flushes but never commits; the request's session
    dependency commits on success.
    """

    def __init__(
        self,
        session: AsyncSession,
        *,
        recent_update_window_seconds: float = 5.0,
    ) -> None:
        self._session = session
        self._tenants = TenantRepository(session)
        self._recent_window = timedelta(seconds=recent_update_window_seconds)

    async def resolve(self, ctx: RequestContext) -> Resolution:
        user_id = ctx.verified_user_id
        tenant, source = await self._locate(ctx)

        if tenant is None and user_id:
            tenant = await self._create_for_user(ctx, user_id)
            source = ResolutionSource.CREATED

        if tenant is None or source is None:
            logger.debug(
                "Unresolved request (tenant=%s, secondary=%s, user=%s)",
                ctx.url_tenant_id,
                ctx.url_secondary_id,
                user_id,
            )
            return UNRESOLVED

        # Captured before any write below bumps it.
        last_updated = tenant.updated_at

        url_mismatch = (
            source is ResolutionSource.OWNER and ctx.url_tenant_id is not None and ctx.url_tenant_id != tenant.tenant_id
        )
        if url_mismatch:
            logger.info(
                "URL tenant %s differs from canonical tenant %s for user %s",
                ctx.url_tenant_id,
                tenant.tenant_id,
                user_id,
            )

        prefs_repo = PreferencesRepository(self._session, tenant.tenant_id)

        # Only a signed session bound to this ownerless tenant may claim it.
        if (
            user_id
            and tenant.owner_user_id is None
            and ctx.session is not None
            and ctx.session.tenant_id == tenant.tenant_id
        ):
            tenant = await self._tenants.set_owner(tenant.tenant_id, user_id) or tenant
            logger.info("Recorded owner %s on tenant %s", user_id, tenant.tenant_id)

        is_owner = bool(user_id) and tenant.owner_user_id == user_id

        reinstalled = False
        secondary_rejected = False
        if ctx.url_secondary_id and tenant.secondary_id != ctx.url_secondary_id:
            if not is_owner:
                secondary_rejected = True
                logger.warning(
                    "Ignoring secondary id %s for tenant %s from a caller that does not own it",
                    ctx.url_secondary_id,
                    tenant.tenant_id,
                )
            else:
                reinstall = tenant.secondary_id is not None
                claimed = await self._tenants.claim_secondary_id(
                    tenant.tenant_id,
                    ctx.url_secondary_id,
                    reinstall=reinstall,
                )
                if not claimed:
                    secondary_rejected = True
                elif reinstall:
                    reinstalled = True
                    await prefs_repo.clear_completion()
                    logger.info(
                        "Reinstall detected for tenant %s (secondary id now %s); plan reset to free",
                        tenant.tenant_id,
                        ctx.url_secondary_id,
                    )

        prefs = await prefs_repo.get_or_create()
        if (
            tenant.plan == Plan.FREE.value
            and prefs.completed_at is not None
            and datetime.now(UTC) - last_updated < self._recent_window
        ):
            await prefs_repo.clear_completion()
            logger.info("Cleared stale onboarding marker on recently reset tenant %s", tenant.tenant_id)

        session_claims = None
        if is_owner and user_id and (ctx.session is None or ctx.session.tenant_id != tenant.tenant_id):
            session_claims = SessionClaims(tenant_id=tenant.tenant_id, user_id=user_id)

        return Resolution(
            status=ResolutionStatus.RESOLVED,
            tenant=TenantView.from_row(tenant),
            preferences=PreferencesView.from_row(prefs, tenant.install_generation),
            source=source,
            url_mismatch=url_mismatch,
            reinstalled=reinstalled,
            secondary_rejected=secondary_rejected,
            session_claims=session_claims,
        )

    async def _locate(self, ctx: RequestContext) -> tuple[TenantTable | None, ResolutionSource | None]:
        if ctx.verified_user_id:
            tenant = await self._tenants.get_latest_by_owner(ctx.verified_user_id)
            if tenant is not None:
                return tenant, ResolutionSource.OWNER

        if ctx.url_secondary_id:
            tenant = await self._tenants.get_by_secondary_id(ctx.url_secondary_id)
            if tenant is not None:
                return tenant, ResolutionSource.SECONDARY_ID

        lookup_id = ctx.url_tenant_id or (ctx.session.tenant_id if ctx.session is not None else None)
        if lookup_id:
            tenant = await self._tenants.get(lookup_id)
            if tenant is not None:
                return tenant, ResolutionSource.TENANT_ID

        return None, None

    async def _create_for_user(self, ctx: RequestContext, user_id: str) -> TenantTable:
        tenant_id = ctx.url_tenant_id or f"user_{user_id}"
        existing = await self._tenants.get(tenant_id)
        if existing is not None:
            return existing

        prefs_repo = PreferencesRepository(self._session, tenant_id)
        generation = await prefs_repo.next_install_generation()
        await prefs_repo.clear_completion()
        return await self._tenants.create(
            tenant_id,
            owner_user_id=user_id,
            plan=Plan.FREE,
            install_generation=generation,
        )
