"""Built-in node handlers — one capability per type tag.

Every handler exposes ``async execute(node, context)``; it mutates the
context and raises on failure.  Control-flow handlers (loop, switch) only
record their decision in context; the interpreter acts on it.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Any

import httpx

from flowengine.compiler.graph import WorkflowGraph
from flowengine.compiler.ir import (
    NODE_REUSABLE_END,
    REUSABLE_MARKER_TYPES,
    Workflow,
    WorkflowNode,
)
from flowengine.compiler.reusable import extract_reusable_flow, find_reusable_by_context
from flowengine.config import settings
from flowengine.runtime import context as ctx_keys
from flowengine.runtime.context import ExecutionContext
from flowengine.runtime.errors import HandlerNotFoundError, NodeExecutionError
from flowengine.runtime.state import PauseReason
from flowengine.templating.engine import render_template_str, render_value
from flowengine.templating.expressions import ExpressionError, evaluate_condition
from flowengine.utils.type_converter import PropertyDataType, coerce_to_type, parse_data_type

logger = logging.getLogger("flowengine.nodes")

LOOP_MODE_FOR_EACH = "forEach"
LOOP_MODE_REPEAT_UNTIL = "repeatUntil"
_LOOP_MODE_ALIASES = {"forEach": LOOP_MODE_FOR_EACH, "repeatUntil": LOOP_MODE_REPEAT_UNTIL, "doWhile": LOOP_MODE_REPEAT_UNTIL}


class NodeHandler(ABC):
    """Base class for node capabilities."""

    @abstractmethod
    async def execute(self, node: WorkflowNode, context: ExecutionContext) -> None:
        ...


class NoopHandler(NodeHandler):
    async def execute(self, node: WorkflowNode, context: ExecutionContext) -> None:
        return None


# ── Literal values ──────────────────────────────────────────────


class ValueHandler(NodeHandler):
    """Emits a typed literal under the node id for property-input consumers."""

    def __init__(self, data_type: PropertyDataType | None = None):
        self.data_type = data_type

    async def execute(self, node: WorkflowNode, context: ExecutionContext) -> None:
        data_type = self.data_type or parse_data_type(node.data.get("dataType"))
        raw = node.data.get("value")
        try:
            value = coerce_to_type(raw, data_type)
        except (TypeError, ValueError) as exc:
            raise NodeExecutionError(
                f"Value {raw!r} is not a valid {data_type.value}", node.node_id
            ) from exc
        context.set_variable(node.node_id, value)
        context.set_data("value", value)


class SetVariableHandler(NodeHandler):
    async def execute(self, node: WorkflowNode, context: ExecutionContext) -> None:
        name = node.data.get("variableName") or node.data.get("variable")
        if not name:
            raise NodeExecutionError("Set Variable node requires 'variableName'", node.node_id)
        value = render_value(node.data.get("value"), context.scope())
        context.set_variable(str(name), value)
        context.trace(f"Set variable {name} = {value!r}")


class LogHandler(NodeHandler):
    async def execute(self, node: WorkflowNode, context: ExecutionContext) -> None:
        message = render_template_str(str(node.data.get("message", "")), context.scope())
        level = str(node.data.get("level", "INFO")).upper()
        logger.log(getattr(logging, level, logging.INFO), "[workflow] %s", message)
        context.trace(message)
        context.set_data(node.data.get("contextKey") or "lastLog", message)


class WaitHandler(NodeHandler):
    """Sleeps ``duration`` ms, or suspends the run until continued when ``pause`` is set."""

    async def execute(self, node: WorkflowNode, context: ExecutionContext) -> None:
        if node.data.get("pause"):
            pause = context.get_ambient(ctx_keys.PAUSE_EXECUTION)
            if pause is None:
                raise NodeExecutionError("Wait pause requested but no pause function is installed", node.node_id)
            await pause(node.node_id, PauseReason.WAIT_PAUSE)
            return
        try:
            duration_ms = float(node.data.get("duration", 0) or 0)
        except (TypeError, ValueError) as exc:
            raise NodeExecutionError(f"Invalid wait duration: {node.data.get('duration')!r}", node.node_id) from exc
        if duration_ms > 0:
            await asyncio.sleep(duration_ms / 1000)


class ApiRequestHandler(NodeHandler):
    def __init__(self, transport: httpx.AsyncBaseTransport | None = None):
        self._transport = transport

    async def execute(self, node: WorkflowNode, context: ExecutionContext) -> None:
        cfg = render_value(dict(node.data), context.scope())
        url = cfg.get("url")
        if not url:
            raise NodeExecutionError("API Request node requires 'url'", node.node_id)
        method = str(cfg.get("method", "GET")).upper()
        timeout = float(cfg.get("timeout") or settings.API_REQUEST_TIMEOUT_SECONDS)
        body = cfg.get("body")

        kwargs: dict[str, Any] = {"headers": cfg.get("headers") or {}}
        if isinstance(body, (dict, list)):
            kwargs["json"] = body
        elif body is not None:
            kwargs["content"] = str(body)

        try:
            async with httpx.AsyncClient(timeout=timeout, transport=self._transport) as client:
                resp = await client.request(method, str(url), **kwargs)
        except httpx.HTTPError as exc:
            raise NodeExecutionError(f"API request to {url} failed: {exc}", node.node_id) from exc

        try:
            payload: Any = resp.json()
        except ValueError:
            payload = resp.text

        key = cfg.get("contextKey") or "apiResponse"
        context.set_data(key, {"status": resp.status_code, "headers": dict(resp.headers), "body": payload})
        context.trace(f"{method} {url} -> {resp.status_code}")
        if cfg.get("failOnError") and resp.status_code >= 400:
            raise NodeExecutionError(f"API request to {url} returned HTTP {resp.status_code}", node.node_id)


# ── Control flow ────────────────────────────────────────────────


class LoopHandler(NodeHandler):
    """Validates loop configuration and publishes it under the ``_loop*`` keys."""

    async def execute(self, node: WorkflowNode, context: ExecutionContext) -> None:
        raw_mode = node.data.get("mode", LOOP_MODE_FOR_EACH)
        mode = _LOOP_MODE_ALIASES.get(raw_mode)
        if mode is None:
            raise NodeExecutionError(f"Unknown loop mode: {raw_mode}", node.node_id)

        if mode == LOOP_MODE_FOR_EACH:
            array = self._resolve_array(node, context)
            if not isinstance(array, (list, tuple)):
                raise NodeExecutionError(
                    f"Loop array '{node.data.get('arrayVariable')}' is not a list", node.node_id
                )
            array = list(array)
            context.set_variable("index", 0)
            context.set_variable("item", array[0] if array else None)
            context.set_data(ctx_keys.LOOP_ARRAY, array)
        else:
            condition = node.data.get("condition")
            if condition in (None, ""):
                raise NodeExecutionError("Repeat-until loop requires a 'condition'", node.node_id)
            try:
                max_iterations = int(node.data.get("maxIterations") or settings.LOOP_MAX_ITERATIONS)
            except (TypeError, ValueError) as exc:
                raise NodeExecutionError("maxIterations must be an integer", node.node_id) from exc
            context.set_variable("index", 0)
            try:
                should_start = evaluate_condition(condition, context.scope())
            except (ExpressionError, TypeError, ValueError) as exc:
                context.trace(f"Initial loop condition failed to evaluate, loop will not run: {exc}")
                should_start = False
            context.set_data(ctx_keys.LOOP_CONDITION, condition)
            context.set_data(ctx_keys.LOOP_MAX_ITERATIONS, max(1, max_iterations))
            context.set_data(ctx_keys.LOOP_UPDATE_STEP, node.data.get("updateStep"))
            context.set_data(ctx_keys.LOOP_SHOULD_START, should_start)

        context.set_data(ctx_keys.LOOP_MODE, mode)

    @staticmethod
    def _resolve_array(node: WorkflowNode, context: ExecutionContext) -> Any:
        if "array" in node.data:
            return render_value(node.data["array"], context.scope())
        key = node.data.get("arrayVariable")
        if not key:
            raise NodeExecutionError("forEach loop requires 'arrayVariable'", node.node_id)
        if context.has_data(key):
            return context.get_data(key)
        if context.has_variable(key):
            return context.get_variable(key)
        return render_value(f"{{{{{key}}}}}", context.scope())


class SwitchHandler(NodeHandler):
    """Picks the first case whose condition holds; ``default`` otherwise."""

    async def execute(self, node: WorkflowNode, context: ExecutionContext) -> None:
        cases = node.data.get("cases")
        if not isinstance(cases, list) or not cases:
            raise NodeExecutionError("Switch node requires at least one case", node.node_id)
        scope = context.scope()
        for case in cases:
            if not isinstance(case, dict) or not case.get("id"):
                raise NodeExecutionError("Each switch case needs an 'id'", node.node_id)
            try:
                matched = _evaluate_case(case.get("condition"), scope)
            except ExpressionError as exc:
                raise NodeExecutionError(f"Case '{case['id']}': {exc}", node.node_id) from exc
            if matched:
                context.set_data(ctx_keys.SWITCH_OUTPUT, case["id"])
                context.set_data(ctx_keys.SWITCH_OUTPUT_LABEL, case.get("label") or case["id"])
                context.trace(f"Switch matched case {case['id']}")
                return

        default = node.data.get("defaultCase") or {}
        context.set_data(ctx_keys.SWITCH_OUTPUT, "default")
        context.set_data(ctx_keys.SWITCH_OUTPUT_LABEL, default.get("label") or "Default")
        context.trace("Switch fell through to default")


def _evaluate_case(condition: Any, scope: dict[str, Any]) -> bool:
    if isinstance(condition, dict):
        # {"variable": "x", "operator": "==", "value": 3}
        name = condition.get("variable") or condition.get("variableName")
        op = condition.get("operator") or condition.get("comparisonOperator") or "=="
        literal = condition.get("value", condition.get("comparisonValue"))
        if not name:
            raise ExpressionError("Variable condition needs 'variable'")
        right = repr(literal) if isinstance(literal, str) else str(literal)
        return evaluate_condition(f"{name} {op} {right}", scope)
    return evaluate_condition(condition, scope)


# ── Reusable flows ──────────────────────────────────────────────


class ReusableHandler(NodeHandler):
    async def execute(self, node: WorkflowNode, context: ExecutionContext) -> None:
        if not str(node.data.get("contextName") or "").strip():
            raise NodeExecutionError("Reusable node requires a context name", node.node_id)


class RunReusableHandler(NodeHandler):
    """Runs a reusable scope inline, sharing the caller's context."""

    async def execute(self, node: WorkflowNode, context: ExecutionContext) -> None:
        name = str(node.data.get("contextName") or "").strip()
        if not name:
            raise NodeExecutionError("Run Reusable node requires a context name", node.node_id)

        workflow: Workflow | None = context.get_ambient(ctx_keys.WORKFLOW)
        registry = context.get_ambient(ctx_keys.HANDLER_REGISTRY)
        if workflow is None or registry is None:
            raise NodeExecutionError("Workflow snapshot or handler registry not installed in context", node.node_id)

        definition = find_reusable_by_context(workflow, name)
        if definition is None:
            raise NodeExecutionError(f"Reusable flow '{name}' not found", node.node_id)

        flow = extract_reusable_flow(workflow, definition.node_id)
        if flow is None:
            logger.warning("Reusable flow '%s' is empty", name)
            context.trace(f"Reusable flow '{name}' has no nodes")
            return

        sub_graph = WorkflowGraph(flow)
        order = sub_graph.compute_execution_order(roots=_sub_flow_roots(sub_graph))
        resolve = context.get_ambient(ctx_keys.RESOLVE_PROPERTY_INPUTS)
        context.trace(f"Running reusable flow '{name}' ({len(order)} nodes)")

        for node_id in order:
            inner = sub_graph.get_node(node_id)
            if inner is None or inner.type in REUSABLE_MARKER_TYPES:
                continue
            if inner.bypass:
                context.trace(f"Reusable node {node_id} bypassed")
                continue
            resolved = resolve(inner) if resolve is not None else inner
            handler = registry.get(resolved.type)
            if handler is None:
                raise HandlerNotFoundError(resolved.type)
            await handler.execute(resolved, context)


def _sub_flow_roots(graph: WorkflowGraph) -> list[str]:
    """Nodes with no control-flow input from inside the extracted flow."""
    roots = []
    for node in graph.get_all_nodes():
        preds = [p for p in graph.control_flow_predecessors(node.node_id) if graph.has_node(p)]
        if not preds and node.type != NODE_REUSABLE_END:
            roots.append(node.node_id)
    return roots
