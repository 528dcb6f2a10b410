"""Tests for the built-in event bus handlers."""

from __future__ import annotations

import pytest
from prometheus_client import REGISTRY

from pulse_core.events import EventType

from pulse_api.services.event_handlers import init_event_bus


def _sample(name: str, outcome: str) -> float:
    return REGISTRY.get_sample_value(name, {"outcome": outcome}) or 0.0


class TestEventHandlers:
    def test_registers_builtin_handlers(self) -> None:
        assert init_event_bus().handler_count == 4

    @pytest.mark.asyncio
    async def test_ingest_outcomes_are_counted(self) -> None:
        bus = init_event_bus()
        ok_before = _sample("pulse_ingest_tenants_total", "ok")
        failed_before = _sample("pulse_ingest_tenants_total", "failed")

        await bus.emit(EventType.METRICS_INGESTED, tenant_id="biz_1")
        await bus.emit(EventType.INGESTION_FAILED, tenant_id="biz_2", data={"error": "boom"})

        assert _sample("pulse_ingest_tenants_total", "ok") == ok_before + 1
        assert _sample("pulse_ingest_tenants_total", "failed") == failed_before + 1

    @pytest.mark.asyncio
    async def test_backfill_days_are_counted(self) -> None:
        bus = init_event_bus()
        written_before = _sample("pulse_backfill_days_total", "written")
        failed_before = _sample("pulse_backfill_days_total", "failed")

        await bus.emit(
            EventType.BACKFILL_COMPLETED,
            tenant_id="biz_1",
            data={"days_written": 5, "total_days": 7, "failed_dates": ["2024-03-01", "2024-03-02"]},
        )

        assert _sample("pulse_backfill_days_total", "written") == written_before + 5
        assert _sample("pulse_backfill_days_total", "failed") == failed_before + 2
