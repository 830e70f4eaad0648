"""Workflow static validator — checks graph integrity before execution."""

from __future__ import annotations

from dataclasses import dataclass, field

from flowengine.compiler.graph import (
    GraphError,
    GraphErrorKind,
    WorkflowGraph,
)
from flowengine.compiler.ir import NODE_REUSABLE, NODE_RUN_REUSABLE, NODE_START
from flowengine.compiler.reusable import scope_has_end_marker


class WorkflowValidationError(Exception):
    def __init__(self, errors: list[GraphError], warnings: list[str] | None = None):
        self.errors = errors
        self.warnings = warnings or []
        super().__init__(f"Workflow validation failed: {[str(e) for e in errors]}")


@dataclass
class ValidationResult:
    errors: list[GraphError] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def valid(self) -> bool:
        return not self.errors

    def error_messages(self) -> list[str]:
        return [e.message for e in self.errors]

    def raise_for_errors(self) -> None:
        if self.errors:
            raise WorkflowValidationError(self.errors, self.warnings)


def validate_graph(graph: WorkflowGraph) -> ValidationResult:
    """Collect every structural problem; nothing here short-circuits."""
    result = ValidationResult()

    # ── Entry node ──────────────────────────────────────────────
    entries = graph.entry_nodes()
    if not entries:
        result.errors.append(
            GraphError(GraphErrorKind.MISSING_ENTRY_NODE, "Workflow must contain a Start node")
        )
    elif len(entries) > 1:
        result.errors.append(
            GraphError(
                GraphErrorKind.MULTIPLE_ENTRY_NODES,
                f"Workflow must contain exactly one Start node (found {len(entries)})",
                entries[1].node_id,
            )
        )

    # ── Cycles ──────────────────────────────────────────────────
    cyclic = graph.detect_cycle()
    if cyclic is not None:
        result.errors.append(
            GraphError(
                GraphErrorKind.CIRCULAR_DEPENDENCY,
                f"Circular dependency detected involving node: {cyclic}",
                cyclic,
            )
        )

    # ── Reusable definitions ────────────────────────────────────
    names: dict[str, str] = {}
    for node in graph.get_all_nodes():
        if node.type != NODE_REUSABLE:
            continue
        name = str(node.data.get("contextName") or "").strip()
        if not name:
            result.errors.append(
                GraphError(
                    GraphErrorKind.EMPTY_REUSABLE_NAME,
                    f"Reusable node {node.node_id} must have a non-empty context name",
                    node.node_id,
                )
            )
            continue
        if name in names:
            result.errors.append(
                GraphError(
                    GraphErrorKind.DUPLICATE_REUSABLE_NAME,
                    f"Duplicate reusable context name '{name}' on nodes {names[name]} and {node.node_id}",
                    node.node_id,
                )
            )
        else:
            names[name] = node.node_id

        scope = graph.reusable_scopes().get(node.node_id, [])
        if not scope_has_end_marker(graph.workflow, scope):
            result.warnings.append(f"Reusable flow '{name}' ({node.node_id}) has no End node")

    for node in graph.get_all_nodes():
        if node.type != NODE_RUN_REUSABLE:
            continue
        ref = str(node.data.get("contextName") or "").strip()
        if not ref or ref not in names:
            result.errors.append(
                GraphError(
                    GraphErrorKind.UNKNOWN_REUSABLE_REFERENCE,
                    f"Run Reusable node {node.node_id} references unknown reusable flow '{ref}'",
                    node.node_id,
                )
            )

    # ── Control-flow fan-in ─────────────────────────────────────
    for node in graph.get_all_nodes():
        if node.type == NODE_START:
            continue
        if len(graph.control_flow_predecessors(node.node_id)) > 1:
            result.errors.append(
                GraphError(
                    GraphErrorKind.MULTIPLE_CONTROL_FLOW_INPUTS,
                    f"Node {node.node_id} has multiple control flow input connections (only one allowed)",
                    node.node_id,
                )
            )

    return result
