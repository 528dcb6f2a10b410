"""Integrity report returned by the read-only tenant diagnostic."""

from __future__ import annotations

from datetime import date

from pydantic import BaseModel, Field


class CrossTenantLeaks(BaseModel):
    """Leak-detection counters.

    ``rows_for_other_tenants`` comes from an unscoped count and is expected
    to be non-zero in a populated store.  ``leaks_in_query`` counts other
    tenants' rows returned by the tenant-scoped query and must be zero.
    """

    rows_for_other_tenants: int = 0
    leaks_in_query: int = 0


class IntegrityReport(BaseModel):
    tenant_id: str
    ok: bool = True
    install_found: bool = False
    has_access_token: bool = False
    total_rows: int = 0
    oldest_date: date | None = None
    newest_date: date | None = None
    gaps: list[date] = Field(default_factory=list)
    cross_tenant_leaks: CrossTenantLeaks = Field(default_factory=CrossTenantLeaks)
    hardcoded_data_detected: bool = False
    notes: list[str] = Field(default_factory=list)
