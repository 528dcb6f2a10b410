"""Tests for the in-process event bus."""

from __future__ import annotations

import asyncio

import pytest

from pulse_core.events import EventBus, EventPayload, EventType


class TestEventBus:
    @pytest.mark.asyncio
    async def test_typed_and_catch_all_handlers(self) -> None:
        bus = EventBus()
        typed: list[EventPayload] = []
        everything: list[EventPayload] = []

        async def on_install(payload: EventPayload) -> None:
            typed.append(payload)

        async def on_any(payload: EventPayload) -> None:
            everything.append(payload)

        bus.register_handler(on_install, event_type=EventType.TENANT_INSTALLED)
        bus.register_handler(on_any)

        await bus.emit(EventType.TENANT_INSTALLED, tenant_id="biz_1", data={"plan": "pro"})
        await bus.emit(EventType.PLAN_CHANGED, tenant_id="biz_1")

        assert [p.event_type for p in typed] == [EventType.TENANT_INSTALLED]
        assert typed[0].data == {"plan": "pro"}
        assert [p.event_type for p in everything] == [EventType.TENANT_INSTALLED, EventType.PLAN_CHANGED]
        assert bus.handler_count == 2

    @pytest.mark.asyncio
    async def test_failing_handler_does_not_propagate(self) -> None:
        bus = EventBus()
        received: list[str] = []

        async def broken(payload: EventPayload) -> None:
            raise RuntimeError("hook down")

        async def working(payload: EventPayload) -> None:
            received.append(payload.tenant_id)

        bus.register_handler(broken)
        bus.register_handler(working)

        await bus.emit(EventType.METRICS_INGESTED, tenant_id="biz_1")

        assert received == ["biz_1"]

    @pytest.mark.asyncio
    async def test_correlation_id_is_passed_through(self) -> None:
        bus = EventBus()
        received: list[EventPayload] = []

        async def collect(payload: EventPayload) -> None:
            received.append(payload)

        bus.register_handler(collect)
        await bus.emit(EventType.TENANT_UNINSTALLED, tenant_id="biz_1", correlation_id="abc123")

        assert received[0].correlation_id == "abc123"

    @pytest.mark.asyncio
    async def test_no_handlers_is_a_noop(self) -> None:
        await EventBus().emit(EventType.BACKFILL_COMPLETED, tenant_id="biz_1")

    @pytest.mark.asyncio
    async def test_emit_counts_failed_handlers(self) -> None:
        bus = EventBus()

        async def broken(payload: EventPayload) -> None:
            raise RuntimeError("hook down")

        async def fine(payload: EventPayload) -> None:
            return None

        bus.register_handler(broken, event_type=EventType.INGESTION_FAILED)
        bus.register_handler(fine)

        assert await bus.emit(EventType.INGESTION_FAILED, tenant_id="biz_1") == 1
        assert await bus.emit(EventType.METRICS_INGESTED, tenant_id="biz_1") == 0

    @pytest.mark.asyncio
    async def test_slow_handler_is_cut_off(self) -> None:
        bus = EventBus(handler_timeout=0.01)
        received: list[str] = []

        async def hung(payload: EventPayload) -> None:
            await asyncio.sleep(5)

        async def quick(payload: EventPayload) -> None:
            received.append(payload.tenant_id)

        bus.register_handler(hung)
        bus.register_handler(quick)

        assert await bus.emit(EventType.BACKFILL_COMPLETED, tenant_id="biz_1") == 1
        assert received == ["biz_1"]
