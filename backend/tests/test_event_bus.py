"""Tests for the per-run event bus."""

from __future__ import annotations

import asyncio

import pytest

from flowengine.runtime.events import ExecutionEvent, ExecutionEventType as E
from flowengine.services.event_service import EventBus


def _event(run_id: str, event_type: E = E.NODE_COMPLETE, node_id: str | None = "n") -> ExecutionEvent:
    return ExecutionEvent(type=event_type, run_id=run_id, node_id=node_id)


class TestEventBus:
    def test_history_is_per_run_and_bounded(self):
        bus = EventBus(history_limit=2)
        for node_id in ("a", "b", "c"):
            bus.publish(_event("r1", node_id=node_id))
        bus.publish(_event("r2"))
        assert [e.node_id for e in bus.history("r1")] == ["b", "c"]
        assert len(bus.history("r2")) == 1

    @pytest.mark.asyncio
    async def test_replay_then_live_until_closed(self):
        bus = EventBus()
        bus.publish(_event("r1", E.EXECUTION_START, None))
        received: list[ExecutionEvent] = []

        async def consume():
            async for event in bus.subscribe("r1"):
                received.append(event)

        task = asyncio.create_task(consume())
        await asyncio.sleep(0)
        bus.publish(_event("r1", E.NODE_START))
        bus.publish(_event("r1", E.EXECUTION_COMPLETE, None))
        bus.close("r1")
        await asyncio.wait_for(task, 1)

        assert [e.type for e in received] == [E.EXECUTION_START, E.NODE_START, E.EXECUTION_COMPLETE]

    @pytest.mark.asyncio
    async def test_subscribe_after_close_only_replays(self):
        bus = EventBus()
        bus.publish(_event("r1"))
        bus.close("r1")
        received = [e async for e in bus.subscribe("r1")]
        assert len(received) == 1
        assert bus.is_closed("r1")

    def test_forget(self):
        bus = EventBus()
        bus.publish(_event("r1"))
        bus.close("r1")
        bus.forget("r1")
        assert bus.history("r1") == []
        assert not bus.is_closed("r1")

    def test_terminal_events(self):
        assert _event("r", E.BUILDER_MODE_READY).is_terminal
        assert not _event("r", E.EXECUTION_PAUSED).is_terminal
