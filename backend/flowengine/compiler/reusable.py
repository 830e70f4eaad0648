"""Reusable-flow scopes — discovery and sub-graph extraction.

A reusable scope starts at a ``reusable`` definition node and covers every
node reachable over default control-flow edges up to and including the
matching ``reusableEnd`` marker.  Definitions nested inside a scope open an
inner level that must be closed by its own end marker first.
"""

from __future__ import annotations

from flowengine.compiler.ir import (
    NODE_REUSABLE,
    NODE_REUSABLE_END,
    Workflow,
    WorkflowEdge,
)


def _is_scope_edge(edge: WorkflowEdge) -> bool:
    return edge.is_default_output and edge.is_control_flow


def find_reusable_scope(workflow: Workflow, reusable_node_id: str) -> list[str]:
    """Return node ids in the scope of *reusable_node_id* (definition included), in discovery order."""
    types = {n.node_id: n.type for n in workflow.nodes}
    outgoing: dict[str, list[str]] = {}
    for edge in workflow.edges:
        if _is_scope_edge(edge):
            outgoing.setdefault(edge.source, []).append(edge.target)

    scope: dict[str, None] = {}
    visited: set[str] = set()

    def visit(node_id: str, depth: int) -> None:
        if node_id in visited or node_id not in types:
            return
        visited.add(node_id)
        scope[node_id] = None

        node_type = types[node_id]
        if node_type == NODE_REUSABLE and node_id != reusable_node_id:
            depth += 1
        elif node_type == NODE_REUSABLE_END:
            if depth == 0:
                return
            depth -= 1

        for target in outgoing.get(node_id, []):
            visit(target, depth)

    visit(reusable_node_id, 0)
    return list(scope)


def get_reusable_scopes(workflow: Workflow) -> dict[str, list[str]]:
    """Map each reusable definition id to its scope."""
    return {
        node.node_id: find_reusable_scope(workflow, node.node_id)
        for node in workflow.nodes
        if node.type == NODE_REUSABLE
    }


def scope_has_end_marker(workflow: Workflow, scope: list[str]) -> bool:
    types = {n.node_id: n.type for n in workflow.nodes}
    return any(types.get(node_id) == NODE_REUSABLE_END for node_id in scope)


def find_reusable_by_context(workflow: Workflow, context_name: str):
    """Return the reusable definition node whose ``contextName`` equals *context_name*."""
    for node in workflow.nodes:
        if node.type == NODE_REUSABLE and node.data.get("contextName") == context_name:
            return node
    return None


def extract_reusable_flow(workflow: Workflow, reusable_node_id: str) -> Workflow | None:
    """Cut the body of a reusable scope out as a standalone workflow.

    The definition node itself is dropped; edges are kept when their target
    lies inside the body, which carries property inputs fed from outside.
    """
    if workflow.get_node(reusable_node_id) is None:
        return None
    scope = find_reusable_scope(workflow, reusable_node_id)
    body = set(scope) - {reusable_node_id}
    if not body:
        return None
    nodes = [n for n in workflow.nodes if n.node_id in body]
    edges = [e for e in workflow.edges if e.target in body]
    return Workflow(nodes=nodes, edges=edges, name=workflow.name)
