"""Read-only tenant integrity diagnostic, guarded by the cron secret."""

from __future__ import annotations

from typing import Annotated, Any

from fastapi import APIRouter, Depends, Query

from pulse_core.integrity import IntegrityChecker

from pulse_api.dependencies import CoreSettingsDep, SessionDep, require_admin_secret

router = APIRouter(tags=["integrity"], dependencies=[Depends(require_admin_secret)])


@router.get("/integrity")
async def check_integrity(
    session: SessionDep,
    settings: CoreSettingsDep,
    company_id: Annotated[str, Query(alias="companyId", min_length=1)],
) -> dict[str, Any]:
    """Report install state, coverage, gaps, leaks, and seed data for one tenant.

    Always 200 for an authorised caller; problems are reported in the body.
    """
    checker = IntegrityChecker(session, gap_days=settings.integrity_gap_days)
    report = await checker.check(company_id)
    return report.model_dump(mode="json")
