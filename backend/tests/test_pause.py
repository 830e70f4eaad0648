"""Tests for breakpoints, wait pauses and live workflow replacement."""

from __future__ import annotations

import asyncio

import pytest

from conftest import chain, node, of_type
from flowengine.compiler.parser import parse_workflow
from flowengine.runtime.breakpoints import BreakpointConfig, BreakpointScope, BreakpointTiming
from flowengine.runtime.errors import WorkflowUpdateError
from flowengine.runtime.events import ExecutionEventType as E
from flowengine.runtime.state import PauseReason, RunStatus


async def wait_until_paused(interp, timeout: float = 2.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not interp.is_paused:
        if loop.time() > deadline:
            raise AssertionError("interpreter never paused")
        await asyncio.sleep(0.01)


@pytest.fixture
def marked_doc(linear_doc):
    """The linear workflow with a breakpoint on ``b``."""
    linear_doc["nodes"][2]["data"]["breakpoint"] = True
    return linear_doc


@pytest.fixture
def start_paused(make_interpreter):
    async def _start(doc, **kwargs):
        kwargs.setdefault("breakpoints", BreakpointConfig(enabled=True))
        interp = make_interpreter(doc, **kwargs)
        task = asyncio.create_task(interp.execute())
        await wait_until_paused(interp)
        return interp, task

    return _start


class TestBreakpoints:
    @pytest.mark.asyncio
    async def test_pre_breakpoint_then_continue(self, start_paused, marked_doc, recorder, events):
        interp, task = await start_paused(marked_doc)

        assert interp.status == RunStatus.PAUSED
        assert interp.paused_node_id == "b"
        assert interp.pause_reason == PauseReason.BREAKPOINT
        assert recorder.node_ids == ["a"]
        kinds = [e.type for e in events]
        assert kinds.index(E.BREAKPOINT_TRIGGERED) < kinds.index(E.EXECUTION_PAUSED)

        assert interp.continue_execution() is True
        assert await task == RunStatus.COMPLETED
        assert recorder.node_ids == ["a", "b", "end"]

    @pytest.mark.asyncio
    async def test_stop_from_pause(self, start_paused, marked_doc, recorder, events):
        interp, task = await start_paused(marked_doc)

        assert interp.stop_from_pause() is True
        assert await task == RunStatus.STOPPED
        assert recorder.node_ids == ["a"]
        assert "b" not in interp.executed_node_ids
        assert events[-1].message == "Execution stopped by user"
        assert not interp.is_paused

    @pytest.mark.asyncio
    async def test_request_stop_while_paused(self, start_paused, marked_doc):
        interp, task = await start_paused(marked_doc)
        interp.request_stop()
        assert await task == RunStatus.STOPPED

    @pytest.mark.asyncio
    async def test_skip_node_at_breakpoint(self, start_paused, marked_doc, recorder):
        interp, task = await start_paused(marked_doc)

        assert interp.skip_and_continue() is True
        assert await task == RunStatus.COMPLETED
        assert recorder.node_ids == ["a", "end"]
        assert "b" in interp.executed_node_ids

    @pytest.mark.asyncio
    async def test_post_breakpoint(self, start_paused, marked_doc, recorder):
        config = BreakpointConfig(enabled=True, breakpoint_at=BreakpointTiming.POST)
        interp, task = await start_paused(marked_doc, breakpoints=config)

        assert recorder.node_ids == ["a", "b"]
        interp.skip_and_continue()
        assert await task == RunStatus.COMPLETED
        assert recorder.node_ids == ["a", "b", "end"]

    @pytest.mark.asyncio
    async def test_disable_breakpoints(self, start_paused, linear_doc, events):
        config = BreakpointConfig(enabled=True, breakpoint_for=BreakpointScope.ALL)
        interp, task = await start_paused(linear_doc, breakpoints=config)

        assert interp.paused_node_id == "start"
        assert interp.disable_breakpoints_and_continue() is True
        assert await task == RunStatus.COMPLETED
        assert len(of_type(events, E.EXECUTION_PAUSED)) == 1

    @pytest.mark.asyncio
    async def test_controls_are_noops_when_running(self, make_interpreter, linear_doc):
        interp = make_interpreter(linear_doc)
        assert interp.continue_execution() is False
        assert interp.stop_from_pause() is False
        assert interp.skip_and_continue() is False


class TestWaitPause:
    @pytest.mark.asyncio
    async def test_wait_node_pauses_until_continued(self, start_paused, recorder):
        doc = {
            "nodes": [node("start", "start"), node("w", "wait", pause=True), node("after", "action")],
            "edges": chain("start", "w", "after"),
        }
        interp, task = await start_paused(doc, breakpoints=None)

        assert interp.pause_reason == PauseReason.WAIT_PAUSE
        assert recorder.calls == []
        interp.continue_execution()
        assert await task == RunStatus.COMPLETED
        assert recorder.node_ids == ["after"]

    @pytest.mark.asyncio
    async def test_stop_during_wait_pause(self, start_paused, recorder):
        doc = {
            "nodes": [node("start", "start"), node("w", "wait", pause=True), node("after", "action")],
            "edges": chain("start", "w", "after"),
        }
        interp, task = await start_paused(doc, breakpoints=None)
        interp.stop_from_pause()
        assert await task == RunStatus.STOPPED
        assert recorder.calls == []

    @pytest.mark.asyncio
    async def test_skip_at_wait_does_not_carry_to_breakpoint(self, start_paused, recorder):
        doc = {
            "nodes": [
                node("start", "start"),
                node("w", "wait", pause=True),
                node("a", "action", breakpoint=True),
                node("b", "action"),
            ],
            "edges": chain("start", "w", "a", "b"),
        }
        interp, task = await start_paused(doc)
        assert interp.pause_reason == PauseReason.WAIT_PAUSE
        assert interp.skip_and_continue() is True

        await wait_until_paused(interp)
        assert interp.paused_node_id == "a"
        assert interp.pause_reason == PauseReason.BREAKPOINT
        interp.continue_execution()

        assert await task == RunStatus.COMPLETED
        assert recorder.node_ids == ["a", "b"]

    @pytest.mark.asyncio
    async def test_workflow_update_rejected_during_wait(self, start_paused, linear_doc):
        doc = {
            "nodes": [node("start", "start"), node("w", "wait", pause=True)],
            "edges": chain("start", "w"),
        }
        interp, task = await start_paused(doc, breakpoints=None)
        with pytest.raises(WorkflowUpdateError):
            interp.update_workflow(parse_workflow(linear_doc))
        interp.continue_execution()
        await task


class TestUpdateWorkflow:
    @pytest.mark.asyncio
    async def test_insert_node_after_paused_one(self, start_paused, marked_doc, recorder):
        interp, task = await start_paused(marked_doc)

        updated = {
            "nodes": marked_doc["nodes"][:3] + [node("c", "action"), marked_doc["nodes"][3]],
            "edges": chain("start", "a", "b", "c", "end"),
        }
        remaining = interp.update_workflow(parse_workflow(updated))
        assert remaining == ["b", "c", "end"]
        assert interp.cursor == 0

        interp.continue_execution()
        assert await task == RunStatus.COMPLETED
        assert recorder.node_ids == ["a", "b", "c", "end"]

    @pytest.mark.asyncio
    async def test_insert_after_post_breakpoint(self, start_paused, marked_doc, recorder):
        config = BreakpointConfig(enabled=True, breakpoint_at=BreakpointTiming.POST)
        interp, task = await start_paused(marked_doc, breakpoints=config)
        assert recorder.node_ids == ["a", "b"]

        updated = {
            "nodes": marked_doc["nodes"][:3] + [node("c", "action"), marked_doc["nodes"][3]],
            "edges": chain("start", "a", "b", "c", "end"),
        }
        remaining = interp.update_workflow(parse_workflow(updated))
        assert remaining == ["c", "end"]
        assert interp.cursor == 0

        interp.continue_execution()
        assert await task == RunStatus.COMPLETED
        assert recorder.node_ids == ["a", "b", "c", "end"]

    @pytest.mark.asyncio
    async def test_post_breakpoint_resumes_after_paused_node(self, start_paused, marked_doc, recorder):
        config = BreakpointConfig(enabled=True, breakpoint_at=BreakpointTiming.POST)
        interp, task = await start_paused(marked_doc, breakpoints=config)

        # "z" lands ahead of the already-executed "b" in the new plan.
        updated = {
            "nodes": marked_doc["nodes"] + [node("z", "action")],
            "edges": chain("start", "z", "a", "b", "end"),
        }
        remaining = interp.update_workflow(parse_workflow(updated))
        assert remaining == ["z", "end"]
        assert interp.cursor == 1

        interp.continue_execution()
        assert await task == RunStatus.COMPLETED
        assert recorder.node_ids == ["a", "b", "end"]

    @pytest.mark.asyncio
    async def test_paused_node_must_survive(self, start_paused, marked_doc):
        interp, task = await start_paused(marked_doc)
        without_b = {
            "nodes": [n for n in marked_doc["nodes"] if n["id"] != "b"],
            "edges": chain("start", "a", "end"),
        }
        with pytest.raises(WorkflowUpdateError):
            interp.update_workflow(parse_workflow(without_b))
        interp.continue_execution()
        assert await task == RunStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_not_paused_rejected(self, make_interpreter, linear_doc):
        interp = make_interpreter(linear_doc)
        with pytest.raises(WorkflowUpdateError):
            interp.update_workflow(parse_workflow(linear_doc))
