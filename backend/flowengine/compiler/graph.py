"""Workflow graph model — adjacency, execution order and branch reachability."""

from __future__ import annotations

import logging
from enum import Enum
from typing import TYPE_CHECKING

from flowengine.compiler.ir import (
    NODE_START,
    REUSABLE_MARKER_TYPES,
    Workflow,
    WorkflowEdge,
    WorkflowNode,
    normalize_source_handle,
    property_handle,
)
from flowengine.compiler.reusable import get_reusable_scopes

if TYPE_CHECKING:
    from flowengine.compiler.validator import ValidationResult

logger = logging.getLogger("flowengine.graph")


class GraphErrorKind(str, Enum):
    MISSING_ENTRY_NODE = "missing_entry_node"
    MULTIPLE_ENTRY_NODES = "multiple_entry_nodes"
    CIRCULAR_DEPENDENCY = "circular_dependency"
    EMPTY_REUSABLE_NAME = "empty_reusable_name"
    DUPLICATE_REUSABLE_NAME = "duplicate_reusable_name"
    UNKNOWN_REUSABLE_REFERENCE = "unknown_reusable_reference"
    MULTIPLE_CONTROL_FLOW_INPUTS = "multiple_control_flow_inputs"


class GraphError(Exception):
    def __init__(self, kind: GraphErrorKind, message: str, node_id: str | None = None):
        self.kind = kind
        self.message = message
        self.node_id = node_id
        super().__init__(message)

    def to_dict(self) -> dict:
        return {"kind": self.kind.value, "message": self.message, "node_id": self.node_id}


class CircularDependencyError(GraphError):
    def __init__(self, node_id: str):
        super().__init__(
            GraphErrorKind.CIRCULAR_DEPENDENCY,
            f"Circular dependency detected involving node: {node_id}",
            node_id,
        )


class WorkflowGraph:
    """Adjacency view over a ``Workflow``.

    Dependencies and dependents include both control-flow and property-input
    edges and keep the document's edge order, so every traversal below is
    deterministic for a given document.  Construction never fails; a missing
    entry node is reported by ``validate()``.
    """

    def __init__(self, workflow: Workflow):
        self.workflow = workflow
        self._nodes: dict[str, WorkflowNode] = {n.node_id: n for n in workflow.nodes}
        self._dependencies: dict[str, list[str]] = {nid: [] for nid in self._nodes}
        self._dependents: dict[str, list[str]] = {nid: [] for nid in self._nodes}
        self._outgoing: dict[str, list[WorkflowEdge]] = {nid: [] for nid in self._nodes}
        self._incoming: dict[str, list[WorkflowEdge]] = {nid: [] for nid in self._nodes}

        for edge in workflow.edges:
            if edge.source not in self._nodes or edge.target not in self._nodes:
                logger.debug("Ignoring dangling edge %s (%s -> %s)", edge.edge_id, edge.source, edge.target)
                continue
            self._outgoing[edge.source].append(edge)
            self._incoming[edge.target].append(edge)
            if edge.source not in self._dependencies[edge.target]:
                self._dependencies[edge.target].append(edge.source)
            if edge.target not in self._dependents[edge.source]:
                self._dependents[edge.source].append(edge.target)

        self._reusable_scopes: dict[str, list[str]] | None = None

    # ── Lookups ─────────────────────────────────────────────────

    def get_node(self, node_id: str) -> WorkflowNode | None:
        return self._nodes.get(node_id)

    def get_all_nodes(self) -> list[WorkflowNode]:
        return list(self._nodes.values())

    def has_node(self, node_id: str) -> bool:
        return node_id in self._nodes

    def dependencies(self, node_id: str) -> list[str]:
        return list(self._dependencies.get(node_id, []))

    def dependents(self, node_id: str) -> list[str]:
        return list(self._dependents.get(node_id, []))

    def incoming_edges(self, node_id: str) -> list[WorkflowEdge]:
        return list(self._incoming.get(node_id, []))

    def outgoing_edges(self, node_id: str) -> list[WorkflowEdge]:
        return list(self._outgoing.get(node_id, []))

    def entry_nodes(self) -> list[WorkflowNode]:
        return [n for n in self._nodes.values() if n.type == NODE_START]

    @property
    def entry_node_id(self) -> str | None:
        entries = self.entry_nodes()
        return entries[0].node_id if entries else None

    def find_property_edge(self, node_id: str, field_name: str) -> WorkflowEdge | None:
        """Return the edge feeding ``<field_name>-input`` on *node_id*."""
        handle = property_handle(field_name)
        for edge in self._incoming.get(node_id, []):
            if edge.target_handle == handle:
                return edge
        return None

    def control_flow_predecessors(self, node_id: str) -> list[str]:
        return [e.source for e in self._incoming.get(node_id, []) if e.is_control_flow]

    # ── Reusable scopes ─────────────────────────────────────────

    def reusable_scopes(self) -> dict[str, list[str]]:
        if self._reusable_scopes is None:
            self._reusable_scopes = get_reusable_scopes(self.workflow)
        return self._reusable_scopes

    def reusable_scope_node_ids(self) -> set[str]:
        ids: set[str] = set()
        for scope in self.reusable_scopes().values():
            ids.update(scope)
        return ids

    # ── Ordering ────────────────────────────────────────────────

    def compute_execution_order(
        self,
        exclude_reusable_scopes: bool = False,
        roots: list[str] | None = None,
    ) -> list[str]:
        """Topological plan starting from the entry node (or explicit *roots*).

        Each node is emitted after all of its dependencies; after emitting,
        its dependents are walked forward so the whole connected component is
        picked up.  A second pass sweeps unvisited nodes that hang off a
        visited one.  Raises ``CircularDependencyError`` on a cycle.
        """
        if roots is None:
            entry = self.entry_node_id
            if entry is None:
                raise GraphError(GraphErrorKind.MISSING_ENTRY_NODE, "Workflow must contain a Start node")
            roots = [entry]

        excluded = self.reusable_scope_node_ids() if exclude_reusable_scopes else set()
        visited: set[str] = set()
        visiting: set[str] = set()
        order: list[str] = []

        def visit(node_id: str) -> None:
            if node_id in visiting:
                raise CircularDependencyError(node_id)
            if node_id in visited or node_id not in self._nodes:
                return
            visiting.add(node_id)
            for dep in self._dependencies[node_id]:
                if dep not in visited:
                    visit(dep)
            visiting.discard(node_id)
            visited.add(node_id)

            node = self._nodes[node_id]
            if not (exclude_reusable_scopes and (node_id in excluded or node.type in REUSABLE_MARKER_TYPES)):
                order.append(node_id)

            for dependent in self._dependents[node_id]:
                if dependent in visited or dependent in visiting:
                    continue
                # Deferred while another producer is still on the stack; that
                # producer's own forward walk picks it up.
                if any(dep in visiting for dep in self._dependencies[dependent]):
                    continue
                visit(dependent)

        for root in roots:
            if root not in visited:
                visit(root)

        changed = True
        while changed:
            changed = False
            for node_id in self._nodes:
                if node_id in visited:
                    continue
                if any(dep in visited for dep in self._dependencies[node_id]):
                    visit(node_id)
                    changed = True

        return order

    def detect_cycle(self) -> str | None:
        """Return a node on a dependency cycle anywhere in the graph, or None."""
        state: dict[str, int] = {}

        def visit(node_id: str) -> str | None:
            state[node_id] = 1
            for dep in self._dependencies[node_id]:
                mark = state.get(dep, 0)
                if mark == 1:
                    return dep
                if mark == 0:
                    found = visit(dep)
                    if found is not None:
                        return found
            state[node_id] = 2
            return None

        for node_id in self._nodes:
            if state.get(node_id, 0) == 0:
                found = visit(node_id)
                if found is not None:
                    return found
        return None

    # ── Branches ────────────────────────────────────────────────

    def get_switch_output_handles(self, node_id: str) -> list[str]:
        handles: list[str] = []
        for edge in self._outgoing.get(node_id, []):
            if not edge.is_control_flow:
                continue
            handle = normalize_source_handle(edge.source_handle)
            if handle not in handles:
                handles.append(handle)
        return handles

    def get_nodes_reachable_from_handle(self, node_id: str, source_handle: str) -> list[str]:
        """Nodes reachable from one output handle of *node_id*, in discovery order.

        The first hop only follows control-flow edges leaving through
        *source_handle*; later hops follow any control-flow edge.
        """
        wanted = normalize_source_handle(source_handle)
        reached: dict[str, None] = {}
        queue: list[str] = []
        for edge in self._outgoing.get(node_id, []):
            if edge.is_control_flow and normalize_source_handle(edge.source_handle) == wanted:
                if edge.target not in reached and edge.target != node_id:
                    reached[edge.target] = None
                    queue.append(edge.target)

        while queue:
            current = queue.pop(0)
            for edge in self._outgoing.get(current, []):
                if edge.is_control_flow and edge.target not in reached and edge.target != node_id:
                    reached[edge.target] = None
                    queue.append(edge.target)
        return list(reached)

    # ── Validation ──────────────────────────────────────────────

    def validate(self) -> "ValidationResult":
        from flowengine.compiler.validator import validate_graph

        return validate_graph(self)
