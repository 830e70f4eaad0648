"""Workflow IR dataclasses — output of workflow document parsing."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


# ── Type tags ───────────────────────────────────────────────────

NODE_START = "start"
NODE_LOOP = "loop"
NODE_SWITCH = "switch"
NODE_REUSABLE = "reusable"
NODE_REUSABLE_END = "reusableEnd"
NODE_RUN_REUSABLE = "runReusable"
NODE_INT_VALUE = "intValue"
NODE_STRING_VALUE = "stringValue"
NODE_BOOLEAN_VALUE = "booleanValue"
NODE_INPUT_VALUE = "inputValue"
NODE_SET_VARIABLE = "setVariable"
NODE_LOG = "log"
NODE_WAIT = "wait"
NODE_API_REQUEST = "apiRequest"

# Definition and end markers never run in the main plan.
REUSABLE_MARKER_TYPES: frozenset[str] = frozenset({NODE_REUSABLE, NODE_REUSABLE_END})


# ── Handles ─────────────────────────────────────────────────────

DRIVER_HANDLE = "driver"
DEFAULT_OUTPUT_HANDLE = "output"
DEFAULT_INPUT_HANDLE = "input"
PROPERTY_INPUT_SUFFIX = "-input"

_DEFAULT_SOURCE_HANDLES = (None, "", DEFAULT_OUTPUT_HANDLE, DRIVER_HANDLE)
_CONTROL_TARGET_HANDLES = (None, "", DEFAULT_INPUT_HANDLE, DRIVER_HANDLE)


def normalize_source_handle(handle: str | None) -> str:
    """Collapse the default-output spellings to ``output``; branch labels pass through."""
    return DEFAULT_OUTPUT_HANDLE if handle in _DEFAULT_SOURCE_HANDLES else handle


def property_handle(field_name: str) -> str:
    return f"{field_name}{PROPERTY_INPUT_SUFFIX}"


# ── Nodes ───────────────────────────────────────────────────────


@dataclass
class WorkflowNode:
    node_id: str
    type: str
    data: dict[str, Any] = field(default_factory=dict)

    @property
    def bypass(self) -> bool:
        return bool(self.data.get("bypass"))

    @property
    def fail_silently(self) -> bool:
        return bool(self.data.get("failSilently"))

    @property
    def breakpoint(self) -> bool:
        return bool(self.data.get("breakpoint"))

    @property
    def input_connections(self) -> dict[str, Any]:
        raw = self.data.get("_inputConnections")
        return raw if isinstance(raw, dict) else {}

    def bound_fields(self) -> list[str]:
        """Configuration fields currently sourced from a property-input edge."""
        return [
            name
            for name, binding in self.input_connections.items()
            if isinstance(binding, dict) and binding.get("isInput")
        ]


# ── Edges ───────────────────────────────────────────────────────


@dataclass
class WorkflowEdge:
    edge_id: str
    source: str
    target: str
    source_handle: str | None = None
    target_handle: str | None = None

    @property
    def is_property_input(self) -> bool:
        return (
            self.target_handle not in _CONTROL_TARGET_HANDLES
            and self.target_handle.endswith(PROPERTY_INPUT_SUFFIX)
        )

    @property
    def is_control_flow(self) -> bool:
        return not self.is_property_input

    @property
    def is_default_output(self) -> bool:
        return self.source_handle in _DEFAULT_SOURCE_HANDLES

    @property
    def property_name(self) -> str | None:
        if not self.is_property_input:
            return None
        return self.target_handle[: -len(PROPERTY_INPUT_SUFFIX)]


# ── Workflow ────────────────────────────────────────────────────


@dataclass
class Workflow:
    nodes: list[WorkflowNode] = field(default_factory=list)
    edges: list[WorkflowEdge] = field(default_factory=list)
    name: str | None = None

    def get_node(self, node_id: str) -> WorkflowNode | None:
        for node in self.nodes:
            if node.node_id == node_id:
                return node
        return None

    def to_dict(self) -> dict[str, Any]:
        """Serialise back to the document shape accepted by ``parse_workflow``."""
        return {
            "name": self.name,
            "nodes": [
                {"id": n.node_id, "type": n.type, "data": dict(n.data)} for n in self.nodes
            ],
            "edges": [
                {
                    "id": e.edge_id,
                    "source": e.source,
                    "target": e.target,
                    "sourceHandle": e.source_handle,
                    "targetHandle": e.target_handle,
                }
                for e in self.edges
            ],
        }
