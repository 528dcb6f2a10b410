"""Daily ingestion pipeline and historical backfill."""

from pulse_core.ingestion.backfill import BackfillEngine, backfill_dates
from pulse_core.ingestion.pipeline import IngestionPipeline, utc_yesterday
from pulse_core.ingestion.unit import ClientFactory, ingest_tenant_day

__all__ = [
    "BackfillEngine",
    "ClientFactory",
    "IngestionPipeline",
    "backfill_dates",
    "ingest_tenant_day",
    "utc_yesterday",
]
