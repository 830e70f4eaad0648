"""Property-input resolution — turns data-flow edges into node configuration.

For every configuration field flagged ``isInput`` the value is read from the
upstream producer (stored in context variables under the producer's node id)
instead of the literal configured on the node.  The graph is never mutated:
a shallow clone carrying the resolved configuration is returned.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from typing import Any, Callable

from flowengine.compiler.graph import WorkflowGraph
from flowengine.compiler.ir import (
    NODE_BOOLEAN_VALUE,
    NODE_INPUT_VALUE,
    NODE_INT_VALUE,
    NODE_STRING_VALUE,
    WorkflowNode,
    property_handle,
)
from flowengine.runtime.context import ExecutionContext
from flowengine.utils.type_converter import (
    ConversionError,
    PropertyDataType,
    convert,
    infer_type,
    parse_data_type,
)

logger = logging.getLogger("flowengine.resolver")

_LITERAL_TYPES: dict[str, PropertyDataType] = {
    NODE_INT_VALUE: PropertyDataType.INT,
    NODE_STRING_VALUE: PropertyDataType.STRING,
    NODE_BOOLEAN_VALUE: PropertyDataType.BOOLEAN,
}

_MISSING = object()


def source_data_type(source: WorkflowNode | None, value: Any) -> PropertyDataType:
    """Canonical type of a producer's output."""
    if source is not None:
        if source.type in _LITERAL_TYPES:
            return _LITERAL_TYPES[source.type]
        if source.type == NODE_INPUT_VALUE:
            return parse_data_type(source.data.get("dataType"))
    return infer_type(value)


def resolve_property_inputs(
    node: WorkflowNode,
    graph: WorkflowGraph,
    context: ExecutionContext,
    trace_log: Callable[[str], None] | None = None,
) -> WorkflowNode:
    fields = node.bound_fields()
    if not fields:
        return node

    def trace(message: str) -> None:
        if trace_log is not None:
            trace_log(message)

    resolved = dict(node.data)
    for field_name in fields:
        edge = graph.find_property_edge(node.node_id, field_name)
        if edge is None:
            trace(f"Warning: No edge found for property input {property_handle(field_name)} on node {node.node_id}")
            logger.warning("No property-input edge for %s on %s", field_name, node.node_id)
            resolved.pop(field_name, None)
            continue

        value = context.get_variable(edge.source, _MISSING)
        if value is _MISSING:
            trace(f"Warning: Source value not found for property {field_name} from node {edge.source}")
            logger.warning("Producer %s has no value for %s.%s", edge.source, node.node_id, field_name)
            resolved.pop(field_name, None)
            continue

        src_type = source_data_type(graph.get_node(edge.source), value)
        # The destination field's declared type is not consulted.
        tgt_type = src_type
        try:
            resolved[field_name] = convert(value, src_type, tgt_type)
            trace(
                f"Resolved property {field_name} = {resolved[field_name]!r} "
                f"({src_type.value} → {tgt_type.value})"
            )
        except ConversionError as exc:
            resolved[field_name] = value
            trace(f"Using unconverted value for {field_name}: {exc}")
            logger.warning("Conversion failed for %s.%s: %s", node.node_id, field_name, exc)

    return replace(node, data=resolved)
