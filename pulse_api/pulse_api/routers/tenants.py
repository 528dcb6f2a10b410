"""Tenant identity, preferences, and dashboard endpoints used by the UI.

``/tenants/resolve`` maps the URL identifiers plus the caller's session onto
one tenant and refreshes the session cookie when the resolver asks for it.
The per-tenant endpoints require a session bound to the same tenant.
"""

from __future__ import annotations

import logging
from decimal import Decimal
from typing import Annotated, Any

from fastapi import APIRouter, HTTPException, Query, Request, Response
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from pulse_core.identity import IdentityResolver, RequestContext, SessionClaims
from pulse_core.models.tenant import PreferencesView
from pulse_core.plans import normalize_plan
from pulse_core.reporting import build_dashboard
from pulse_core.state.repository import PreferencesRepository, TenantRepository
from pulse_core.state.tables import TenantTable

from pulse_api.dependencies import (
    CoreSettingsDep,
    RequiredSessionDep,
    SessionClaimsDep,
    SessionDep,
    SettingsDep,
)
from pulse_api.security import encode_session_token

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/tenants", tags=["tenants"])

LOGIN_REDIRECT = "/login"


class PreferencesUpdate(BaseModel):
    """Request body for ``PUT /tenants/{tenant_id}/preferences``.

    Omit ``goal_amount`` to leave it unchanged; send ``null`` to clear it.
    """

    goal_amount: Decimal | None = Field(default=None, ge=0, max_digits=14, decimal_places=2)
    complete_onboarding: bool = False
    pro_welcome_shown: bool = False


async def _load_authorized_tenant(
    request: Request,
    session: AsyncSession,
    claims: SessionClaims,
    tenant_id: str,
) -> TenantTable:
    if claims.tenant_id != tenant_id:
        logger.warning(
            "Session for tenant %s attempted to access tenant %s",
            claims.tenant_id,
            tenant_id,
        )
        raise HTTPException(status_code=403, detail="Session is not valid for this tenant")
    tenant = await TenantRepository(session).get(tenant_id)
    if tenant is None:
        raise HTTPException(status_code=404, detail=f"Tenant {tenant_id} not found")
    request.state.tenant_id = tenant_id
    return tenant


@router.get("/resolve", response_model=None)
async def resolve_tenant(
    request: Request,
    response: Response,
    session: SessionDep,
    settings: SettingsDep,
    core_settings: CoreSettingsDep,
    claims: SessionClaimsDep,
    company_id: Annotated[str | None, Query()] = None,
    experience_id: Annotated[str | None, Query()] = None,
) -> dict[str, Any] | JSONResponse:
    """Resolve the request's identifiers to one tenant.

    Returns 404 ``{"status": "unresolved", "redirect": "/login"}`` when no
    tenant matches and there is no verified user to create one for.
    """
    ctx = RequestContext.from_session(claims, url_tenant_id=company_id, url_secondary_id=experience_id)
    resolver = IdentityResolver(
        session,
        recent_update_window_seconds=core_settings.recent_update_window_seconds,
    )
    resolution = await resolver.resolve(ctx)

    if not resolution.resolved or resolution.tenant is None or resolution.source is None:
        return JSONResponse(
            status_code=404,
            content={"status": "unresolved", "redirect": LOGIN_REDIRECT},
        )

    request.state.tenant_id = resolution.tenant.tenant_id

    if resolution.session_claims is not None:
        token = encode_session_token(
            resolution.session_claims,
            settings.session_secret.get_secret_value(),
            settings.session_ttl_seconds,
        )
        response.set_cookie(
            settings.session_cookie_name,
            token,
            max_age=settings.session_ttl_seconds,
            httponly=True,
            secure=settings.is_deployed,
            samesite="lax",
        )

    return {
        "status": resolution.status.value,
        "source": resolution.source.value,
        "tenant": resolution.tenant.model_dump(mode="json"),
        "preferences": resolution.preferences.model_dump(mode="json") if resolution.preferences else None,
        "url_mismatch": resolution.url_mismatch,
        "reinstalled": resolution.reinstalled,
        "secondary_rejected": resolution.secondary_rejected,
    }


@router.get("/{tenant_id}/preferences")
async def get_preferences(
    tenant_id: str,
    request: Request,
    session: SessionDep,
    claims: RequiredSessionDep,
) -> dict[str, Any]:
    tenant = await _load_authorized_tenant(request, session, claims, tenant_id)
    row = await PreferencesRepository(session, tenant_id).get()
    if row is None:
        return PreferencesView(tenant_id=tenant_id).model_dump(mode="json")
    return PreferencesView.from_row(row, tenant.install_generation).model_dump(mode="json")


@router.put("/{tenant_id}/preferences")
async def update_preferences(
    tenant_id: str,
    body: PreferencesUpdate,
    request: Request,
    session: SessionDep,
    claims: RequiredSessionDep,
) -> dict[str, Any]:
    """Update the revenue goal and onboarding markers.

    ``complete_onboarding`` records completion for the tenant's current
    install generation only.
    """
    tenant = await _load_authorized_tenant(request, session, claims, tenant_id)
    prefs = PreferencesRepository(session, tenant_id)

    if "goal_amount" in body.model_fields_set:
        row = await prefs.update(goal_amount=body.goal_amount, pro_welcome_shown=body.pro_welcome_shown)
    else:
        row = await prefs.update(pro_welcome_shown=body.pro_welcome_shown)
    if body.complete_onboarding:
        row = await prefs.mark_complete(tenant.install_generation)
        logger.info("Onboarding completed for tenant %s (generation %d)", tenant_id, tenant.install_generation)

    return PreferencesView.from_row(row, tenant.install_generation).model_dump(mode="json")


@router.get("/{tenant_id}/dashboard")
async def get_dashboard(
    tenant_id: str,
    request: Request,
    session: SessionDep,
    claims: RequiredSessionDep,
) -> dict[str, Any]:
    """KPIs and the daily series for the tenant's plan window (7 or 90 days)."""
    tenant = await _load_authorized_tenant(request, session, claims, tenant_id)
    dashboard = await build_dashboard(session, tenant_id, normalize_plan(tenant.plan))
    return {**dashboard.model_dump(mode="json"), "has_data": dashboard.has_data}
