"""Domain models for the Creator Pulse engine."""

from pulse_core.models.integrity import CrossTenantLeaks, IntegrityReport
from pulse_core.models.metrics import (
    BackfillResult,
    DailySummary,
    IngestionReport,
    TenantIngestResult,
)
from pulse_core.models.tenant import PreferencesView, TenantView

__all__ = [
    "BackfillResult",
    "CrossTenantLeaks",
    "DailySummary",
    "IngestionReport",
    "IntegrityReport",
    "PreferencesView",
    "TenantIngestResult",
    "TenantView",
]
