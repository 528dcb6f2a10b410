"""Cron-triggered ingestion and backfill endpoints.

Both endpoints are guarded by the shared cron secret (``?secret=``).
"""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, ConfigDict, Field

from pulse_core.ingestion.backfill import MAX_BACKFILL_DAYS
from pulse_core.state.repository import TenantRepository

from pulse_api.dependencies import BackfillEngineDep, PipelineDep, SessionDep, require_admin_secret

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/ingest",
    tags=["ingest"],
    dependencies=[Depends(require_admin_secret)],
)


class BackfillRequest(BaseModel):
    """Request body for ``POST /ingest/backfill``."""

    model_config = ConfigDict(populate_by_name=True)

    company_id: str = Field(..., alias="companyId", min_length=1, description="Tenant to backfill.")
    days: int = Field(
        default=7,
        ge=1,
        le=MAX_BACKFILL_DAYS,
        description="Number of days ending today to ingest.",
    )


@router.post("")
async def run_ingestion(pipeline: PipelineDep) -> dict[str, Any]:
    """Ingest yesterday (UTC) for every installed tenant.

    Always 200 once the run completes; per-tenant failures are itemised in
    ``results`` and counted in ``failed``.
    """
    report = await pipeline.run()
    return report.model_dump(mode="json")


@router.post("/backfill")
async def run_backfill(
    body: BackfillRequest,
    session: SessionDep,
    engine: BackfillEngineDep,
) -> dict[str, Any]:
    """Backfill the last ``days`` days for one tenant and wait for the result."""
    tenant = await TenantRepository(session).get(body.company_id)
    if tenant is None:
        raise HTTPException(status_code=404, detail=f"Tenant {body.company_id} not found")
    if not tenant.credential:
        raise HTTPException(status_code=404, detail=f"Tenant {body.company_id} has no access token")

    credential = tenant.credential
    # End the read transaction before the engine opens its own per-day sessions.
    await session.commit()

    result = await engine.run(body.company_id, credential, body.days)
    return {"ok": True, **result.model_dump(mode="json"), "complete": result.complete}
