"""Workflow JSON parser: converts a raw workflow document into IR structures."""

from __future__ import annotations

from typing import Any

from flowengine.compiler.ir import Workflow, WorkflowEdge, WorkflowNode


class WorkflowFormatError(ValueError):
    """The document is not shaped like a workflow (missing ids, wrong containers)."""


def parse_workflow(doc: dict[str, Any]) -> Workflow:
    """Parse a workflow document dict into a ``Workflow``.

    Unknown keys on the document, nodes and edges are ignored so documents
    saved by newer editors still load.
    """
    if not isinstance(doc, dict):
        raise WorkflowFormatError("Workflow document must be a JSON object.")

    nodes_raw = doc.get("nodes") or []
    edges_raw = doc.get("edges") or []
    if not isinstance(nodes_raw, list) or not isinstance(edges_raw, list):
        raise WorkflowFormatError("'nodes' and 'edges' must be lists.")

    nodes = [_parse_node(i, n) for i, n in enumerate(nodes_raw)]
    edges = [_parse_edge(i, e) for i, e in enumerate(edges_raw)]
    return Workflow(nodes=nodes, edges=edges, name=doc.get("name"))


# ── Internal helpers ────────────────────────────────────────────


def _parse_node(index: int, d: Any) -> WorkflowNode:
    if not isinstance(d, dict):
        raise WorkflowFormatError(f"Node #{index} must be an object.")
    node_id = d.get("id")
    if not node_id:
        raise WorkflowFormatError(f"Node #{index} is missing 'id'.")
    node_type = d.get("type") or d.get("typeTag")
    if not node_type:
        raise WorkflowFormatError(f"Node '{node_id}' is missing 'type'.")
    data = d.get("data")
    if data is None:
        data = d.get("configuration")
    return WorkflowNode(
        node_id=str(node_id),
        type=str(node_type),
        data=dict(data) if isinstance(data, dict) else {},
    )


def _parse_edge(index: int, d: Any) -> WorkflowEdge:
    if not isinstance(d, dict):
        raise WorkflowFormatError(f"Edge #{index} must be an object.")
    source = d.get("source") or d.get("sourceId")
    target = d.get("target") or d.get("targetId")
    if not source or not target:
        raise WorkflowFormatError(f"Edge #{index} needs both 'source' and 'target'.")
    return WorkflowEdge(
        edge_id=str(d.get("id") or f"{source}-{target}-{index}"),
        source=str(source),
        target=str(target),
        source_handle=d.get("sourceHandle"),
        target_handle=d.get("targetHandle"),
    )
