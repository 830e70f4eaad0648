"""Shared fixtures for backend tests."""

from __future__ import annotations

import os
import tempfile

# Point persistence at a throwaway SQLite file before flowengine.config loads.
os.environ.setdefault(
    "FLOW_DB_URL",
    f"sqlite+aiosqlite:///{os.path.join(tempfile.gettempdir(), 'flowengine_test.db')}",
)
os.environ.setdefault("OUTPUT_DIR", os.path.join(tempfile.gettempdir(), "flowengine_test_output"))

import pytest

from flowengine.compiler.ir import WorkflowNode
from flowengine.compiler.parser import parse_workflow
from flowengine.registry.handler_registry import default_registry
from flowengine.runtime.events import ExecutionEventType
from flowengine.runtime.interpreter import WorkflowInterpreter
from flowengine.runtime.node_handlers import NodeHandler


# ── Document builders ───────────────────────────────────────────


def node(node_id: str, node_type: str, **data) -> dict:
    return {"id": node_id, "type": node_type, "data": data}


def edge(source: str, target: str, source_handle: str | None = "output", target_handle: str | None = "input") -> dict:
    return {
        "id": f"{source}->{target}:{source_handle}:{target_handle}",
        "source": source,
        "target": target,
        "sourceHandle": source_handle,
        "targetHandle": target_handle,
    }


def chain(*node_ids: str) -> list[dict]:
    return [edge(a, b) for a, b in zip(node_ids, node_ids[1:])]


# ── Recording handler ───────────────────────────────────────────


class RecordingHandler(NodeHandler):
    """Records every execution together with a snapshot of loop variables."""

    def __init__(self, fail_on: set[str] | None = None):
        self.calls: list[dict] = []
        self.fail_on = fail_on or set()

    async def execute(self, node: WorkflowNode, context) -> None:
        self.calls.append({
            "node_id": node.node_id,
            "data": dict(node.data),
            "item": context.get_variable("item"),
            "index": context.get_variable("index"),
        })
        if node.node_id in self.fail_on:
            raise RuntimeError(f"boom in {node.node_id}")

    @property
    def node_ids(self) -> list[str]:
        return [c["node_id"] for c in self.calls]


@pytest.fixture
def recorder() -> RecordingHandler:
    return RecordingHandler()


@pytest.fixture
def registry(recorder):
    """Built-in handlers plus an ``action`` type routed to the recorder."""
    reg = default_registry()
    reg.register("action", lambda: recorder)
    return reg


@pytest.fixture
def events() -> list:
    return []


@pytest.fixture
def make_interpreter(registry, events):
    """Build an interpreter over a document, wired to the recorder and event list."""

    def _make(doc: dict, **kwargs) -> WorkflowInterpreter:
        kwargs.setdefault("registry", registry)
        kwargs.setdefault("emit", events.append)
        return WorkflowInterpreter(parse_workflow(doc), **kwargs)

    return _make


def of_type(events: list, event_type: ExecutionEventType) -> list:
    return [e for e in events if e.type == event_type]


# ── Workflow documents ──────────────────────────────────────────


@pytest.fixture
def linear_doc() -> dict:
    """start -> a -> b -> end"""
    return {
        "name": "linear",
        "nodes": [
            node("start", "start"),
            node("a", "action"),
            node("b", "action"),
            node("end", "action"),
        ],
        "edges": chain("start", "a", "b", "end"),
    }


@pytest.fixture
def switch_doc() -> dict:
    """A switch with three branches, each leading to a two-node chain."""
    return {
        "nodes": [
            node("start", "start"),
            node("sw", "switch", cases=[
                {"id": "case-1", "label": "Low", "condition": "{{score}} < 10"},
                {"id": "case-2", "label": "High", "condition": "{{score}} >= 10"},
            ], defaultCase={"label": "Other"}),
            node("low1", "action"), node("low2", "action"),
            node("high1", "action"), node("high2", "action"),
            node("dflt", "action"),
        ],
        "edges": [
            edge("start", "sw"),
            edge("sw", "low1", "case-1"), edge("low1", "low2"),
            edge("sw", "high1", "case-2"), edge("high1", "high2"),
            edge("sw", "dflt", "default"),
        ],
    }


@pytest.fixture
def reusable_doc() -> dict:
    """A reusable flow 'greet' invoked once from the main chain."""
    return {
        "nodes": [
            node("start", "start"),
            node("call", "runReusable", contextName="greet"),
            node("after", "action"),
            node("def", "reusable", contextName="greet"),
            node("body1", "setVariable", variableName="greeting", value="hello {{who}}"),
            node("body2", "action"),
            node("rend", "reusableEnd"),
        ],
        "edges": chain("start", "call", "after") + chain("def", "body1", "body2", "rend"),
    }
