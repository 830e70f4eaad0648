"""Workflow interpreter — walks the execution plan one node at a time.

The interpreter owns run state (status, cursor, executed set, pause info),
dispatches each plan entry to the handler registered for its type tag, and
acts on control-flow decisions the handlers leave in context (switch
branch selection, loop configuration).  Exactly one node is in flight at
any moment; the only suspension points are handler awaits, the pause
signal and the optional inter-node delay.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import time
import uuid
from typing import Any, Callable

from flowengine.compiler.graph import WorkflowGraph
from flowengine.compiler.ir import (
    NODE_LOOP,
    NODE_START,
    NODE_SWITCH,
    REUSABLE_MARKER_TYPES,
    Workflow,
    WorkflowNode,
)
from flowengine.compiler.validator import WorkflowValidationError
from flowengine.config import settings
from flowengine.registry.handler_registry import HandlerRegistry, default_registry
from flowengine.runtime import context as ctx_keys
from flowengine.runtime.artifacts import ArtifactHooks
from flowengine.runtime.breakpoints import BreakpointConfig, BreakpointTiming, should_trigger_breakpoint
from flowengine.runtime.context import ExecutionContext
from flowengine.runtime.errors import (
    HandlerNotFoundError,
    LoopError,
    PauseCancelledError,
    WorkflowUpdateError,
)
from flowengine.runtime.events import ExecutionEvent, ExecutionEventType
from flowengine.runtime.node_handlers import LOOP_MODE_FOR_EACH, LOOP_MODE_REPEAT_UNTIL
from flowengine.runtime.resolver import resolve_property_inputs
from flowengine.runtime.state import PauseInfo, PauseReason, RunStatus
from flowengine.runtime.tracker import ExecutionTracker
from flowengine.templating.expressions import evaluate_condition, evaluate_expression, parse_assignments
from flowengine.utils.logger import ctx_node_id, ctx_run_id
from flowengine.utils.metrics import (
    record_loop_iteration,
    record_node_execution,
    record_run_completed,
    record_run_started,
)

logger = logging.getLogger("flowengine.interpreter")
trace_logger = logging.getLogger("flowengine.trace")

EventSink = Callable[[ExecutionEvent], Any]

STOPPED_MESSAGE = "Execution stopped by user"

# Never contained by failSilently.
_FATAL_NODE_ERRORS = (HandlerNotFoundError, LoopError)

_SKIP_MARKER = "Node skipped (reusable definition/marker)"
_SKIP_SCOPE = "Node skipped (in reusable scope)"
_SKIP_BRANCH = "Node skipped (unreachable branch)"
_SKIP_BYPASS = "Node bypassed"


class WorkflowInterpreter:
    def __init__(
        self,
        workflow: Workflow,
        *,
        run_id: str | None = None,
        registry: HandlerRegistry | None = None,
        emit: EventSink | None = None,
        context: ExecutionContext | None = None,
        breakpoints: BreakpointConfig | None = None,
        trace_logs: bool | None = None,
        builder_mode: bool = False,
        hooks: ArtifactHooks | None = None,
        tracker: ExecutionTracker | None = None,
        slow_mo_ms: float | None = None,
    ):
        self.run_id = run_id or str(uuid.uuid4())
        self.workflow = workflow
        self.graph = WorkflowGraph(workflow)
        self.registry = registry or default_registry()
        self.context = context or ExecutionContext()
        self.breakpoints = breakpoints or BreakpointConfig()
        self.trace_logs = settings.TRACE_LOGS_DEFAULT if trace_logs is None else trace_logs
        self.builder_mode = builder_mode
        self.hooks = hooks or ArtifactHooks()
        self.tracker = tracker
        self._emit_sink = emit
        self._sink_tasks: set[asyncio.Future] = set()

        self.status = RunStatus.IDLE
        self.current_node_id: str | None = None
        self.error: str | None = None
        self.plan: list[str] = []
        self.cursor = 0
        self._executed: dict[str, None] = {}
        self._pruned: set[str] = set()
        self._reusable_nodes: set[str] = set()
        self._pause: PauseInfo | None = None
        self._skip_requested = False
        self._stop_requested = False
        self._builder_ready = False
        self._node_trace: dict[str, list[str]] = {}
        self._started_at: float | None = None

        start = next((n for n in workflow.nodes if n.type == NODE_START), None)
        start_cfg = start.data if start is not None else {}
        self.slow_mo_ms = float(slow_mo_ms if slow_mo_ms is not None else start_cfg.get("slowMo") or 0)
        self.screenshot_all_nodes = bool(start_cfg.get("screenshotAllNodes"))
        self.screenshot_timing = str(start_cfg.get("screenshotTiming") or "post")

    # ── Status accessors ────────────────────────────────────────

    @property
    def executed_node_ids(self) -> list[str]:
        return list(self._executed)

    @property
    def pruned_node_ids(self) -> set[str]:
        return set(self._pruned)

    @property
    def is_paused(self) -> bool:
        return self._pause is not None

    @property
    def paused_node_id(self) -> str | None:
        return self._pause.node_id if self._pause else None

    @property
    def pause_reason(self) -> PauseReason | None:
        return self._pause.reason if self._pause else None

    def snapshot(self) -> dict[str, Any]:
        return {
            "run_id": self.run_id,
            "status": self.status.value,
            "current_node_id": self.current_node_id,
            "paused_node_id": self.paused_node_id,
            "pause_reason": self.pause_reason.value if self.pause_reason else None,
            "executed_node_ids": self.executed_node_ids,
            "plan": list(self.plan),
            "cursor": self.cursor,
            "error": self.error,
        }

    # ── Events & trace ──────────────────────────────────────────

    def _emit(
        self,
        event_type: ExecutionEventType,
        node_id: str | None = None,
        message: str | None = None,
        data: dict[str, Any] | None = None,
    ) -> None:
        event = ExecutionEvent(type=event_type, run_id=self.run_id, node_id=node_id, message=message, data=data)
        if self._emit_sink is None:
            return
        try:
            result = self._emit_sink(event)
            if inspect.isawaitable(result):
                task = asyncio.ensure_future(result)
                self._sink_tasks.add(task)
                task.add_done_callback(self._sink_done)
        except Exception as exc:
            logger.warning("Event sink failed for %s: %s", event_type.value, exc)

    def _sink_done(self, task: asyncio.Future) -> None:
        self._sink_tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.warning("Event sink failed: %s", task.exception())

    def trace_log(self, message: str) -> None:
        if not self.trace_logs:
            return
        trace_logger.info(message)
        if self.current_node_id is not None and self.current_node_id in self._node_trace:
            self._node_trace[self.current_node_id].append(message)

    def _set_current_node(self, node_id: str | None) -> None:
        self.current_node_id = node_id
        ctx_node_id.set(node_id)

    def _mark_executed(self, node_id: str) -> None:
        self._executed[node_id] = None

    def _install_context(self) -> None:
        ctx = self.context
        ctx.set_ambient(ctx_keys.WORKFLOW, self.workflow)
        ctx.set_ambient(ctx_keys.RESOLVE_PROPERTY_INPUTS, self.resolve_node)
        ctx.set_ambient(ctx_keys.TRACE_LOG, self.trace_log)
        ctx.set_ambient(ctx_keys.TRACE_LOGS_ENABLED, self.trace_logs)
        ctx.set_ambient(ctx_keys.EMIT_EVENT, self._emit)
        ctx.set_ambient(ctx_keys.GET_CURRENT_NODE_ID, lambda: self.current_node_id)
        ctx.set_ambient(ctx_keys.SET_CURRENT_NODE_ID, self._set_current_node)
        ctx.set_ambient(ctx_keys.PAUSE_EXECUTION, self.pause)
        ctx.set_ambient(ctx_keys.HANDLER_REGISTRY, self.registry)

    def resolve_node(self, node: WorkflowNode) -> WorkflowNode:
        return resolve_property_inputs(node, self.graph, self.context, self.trace_log)

    # ── Run ─────────────────────────────────────────────────────

    async def execute(self) -> RunStatus:
        """Run the workflow to a terminal status (or builder-mode ready)."""
        run_token = ctx_run_id.set(self.run_id)
        self._started_at = time.monotonic()
        record_run_started()
        try:
            validation = self.graph.validate()
            for warning in validation.warnings:
                logger.warning("Workflow warning: %s", warning)
                self.trace_log(f"Warning: {warning}")
            validation.raise_for_errors()

            self._install_context()
            self.status = RunStatus.RUNNING
            self._emit(ExecutionEventType.EXECUTION_START, message="Execution started")

            self.plan = self.graph.compute_execution_order(exclude_reusable_scopes=True)
            self.cursor = 0
            self._executed.clear()
            self._pruned.clear()
            self._reusable_nodes = self.graph.reusable_scope_node_ids()
            logger.info("Run %s plan: %s", self.run_id, self.plan)

            while self.cursor < len(self.plan):
                node_id = self.plan[self.cursor]
                self.cursor += 1

                if node_id in self._executed:
                    self.trace_log(f"Node {node_id} already executed, skipping")
                    continue

                node = self.graph.get_node(node_id)
                if node is None:
                    raise WorkflowUpdateError(f"Node {node_id} not found in workflow")

                reason = self._skip_reason(node)
                if reason is not None:
                    self._skip(node, reason)
                    continue

                if self._stop_requested:
                    self._finish_stopped()
                    return self.status

                if should_trigger_breakpoint(node, BreakpointTiming.PRE, self.breakpoints):
                    await self._break(node_id, BreakpointTiming.PRE)
                    if self._skip_requested:
                        self._skip_requested = False
                        self.trace_log(f"Node {node_id} skipped at breakpoint")
                        self._mark_executed(node_id)
                        continue
                    # The graph may have been replaced while paused.
                    node = self.graph.get_node(node_id) or node

                await self._execute_plan_node(node)

            if self.builder_mode and self.context.session is not None:
                self._builder_ready = True
                self._emit(
                    ExecutionEventType.BUILDER_MODE_READY,
                    node_id=self.plan[-1] if self.plan else None,
                    message="Workflow finished; session kept open for building",
                )
                return self.status

            self.status = RunStatus.COMPLETED
            await self._finalize()
            self._emit(ExecutionEventType.EXECUTION_COMPLETE, message="Execution completed")
            return self.status

        except PauseCancelledError:
            self._finish_stopped()
            return self.status
        except WorkflowValidationError as exc:
            self.status = RunStatus.ERROR
            self.error = str(exc)
            self._emit(
                ExecutionEventType.EXECUTION_ERROR,
                message=self.error,
                data={"errors": [e.to_dict() for e in exc.errors], "warnings": exc.warnings},
            )
            return self.status
        except Exception as exc:
            logger.exception("Run %s failed", self.run_id)
            self.status = RunStatus.ERROR
            self.error = str(exc)
            await self._finalize()
            self._emit(
                ExecutionEventType.EXECUTION_ERROR,
                node_id=self.current_node_id,
                message=self.error,
                data={"errorType": type(exc).__name__},
            )
            return self.status
        finally:
            if not self._builder_ready:
                record_run_completed(time.monotonic() - self._started_at, self.status.value)
            if self._sink_tasks:
                await asyncio.gather(*self._sink_tasks, return_exceptions=True)
            await self._teardown()
            ctx_node_id.set(None)
            ctx_run_id.reset(run_token)

    def _skip_reason(self, node: WorkflowNode) -> str | None:
        if node.type in REUSABLE_MARKER_TYPES:
            return _SKIP_MARKER
        if node.node_id in self._reusable_nodes:
            return _SKIP_SCOPE
        if node.node_id in self._pruned:
            return _SKIP_BRANCH
        if node.bypass:
            return _SKIP_BYPASS
        return None

    def _skip(self, node: WorkflowNode, message: str) -> None:
        self.trace_log(f"{message}: {node.node_id}")
        self._mark_executed(node.node_id)
        bypassed = message == _SKIP_BYPASS
        if self.tracker is not None:
            self.tracker.record_node_skipped(node.node_id, node.type, message, bypassed=bypassed)
        record_node_execution(node.type, "bypassed" if bypassed else "skipped")
        self._emit(ExecutionEventType.NODE_COMPLETE, node_id=node.node_id, message=message)

    def _finish_stopped(self) -> None:
        self.status = RunStatus.STOPPED
        self._pause = None
        if self.tracker is not None:
            self.tracker.finish(self.status.value)
        logger.info("Run %s stopped", self.run_id)
        self._emit(
            ExecutionEventType.EXECUTION_ERROR,
            node_id=self.current_node_id,
            message=STOPPED_MESSAGE,
            data={"stopped": True},
        )

    # ── Node execution ──────────────────────────────────────────

    async def _dispatch(self, node: WorkflowNode) -> WorkflowNode:
        """Resolve property inputs, look up the handler and run it."""
        resolved = self.resolve_node(node)
        handler = self.registry.get(resolved.type)
        if handler is None:
            raise HandlerNotFoundError(resolved.type)
        await handler.execute(resolved, self.context)
        return resolved

    async def _execute_plan_node(self, node: WorkflowNode) -> None:
        node_id = node.node_id
        self._set_current_node(node_id)
        self._node_trace[node_id] = []
        self.trace_log(f"Starting node: {node_id} (type: {node.type})")
        if self.tracker is not None:
            self.tracker.record_node_start(node_id, node.type)
        self._emit(ExecutionEventType.NODE_START, node_id=node_id, message=f"Executing {node.type}")
        await self._screenshot(node, "pre")

        try:
            resolved = await self._dispatch(node)

            if self.slow_mo_ms > 0 and node_id != self.plan[-1]:
                await asyncio.sleep(self.slow_mo_ms / 1000)

            self._apply_branch_selection(resolved)
            if resolved.type == NODE_LOOP:
                await self._run_loop(resolved)

            self._node_trace.pop(node_id, None)
            artifact = self.context.pop_data(ctx_keys.ARTIFACT_PATH)
            if artifact and self.tracker is not None:
                self.tracker.record_artifact(node_id, node.type, str(artifact))
            await self._screenshot(node, "post")

            self._mark_executed(node_id)
            if self.tracker is not None:
                self.tracker.record_node_complete(node_id, node.type)
            record_node_execution(node.type, "completed")
            self._emit(ExecutionEventType.NODE_COMPLETE, node_id=node_id, message="Node completed")

            if should_trigger_breakpoint(node, BreakpointTiming.POST, self.breakpoints):
                await self._break(node_id, BreakpointTiming.POST)
                # Nothing left to skip on this node.
                self._skip_requested = False
        except PauseCancelledError:
            raise
        except Exception as exc:
            if not await self._contain_failure(node, exc):
                raise

    async def _contain_failure(self, node: WorkflowNode, exc: Exception) -> bool:
        """Report a node failure.  Returns True when the run may continue."""
        node_id = node.node_id
        self.error = str(exc)
        self.trace_log(f"Node {node_id} failed: {exc}")
        logger.warning("Node %s (%s) failed: %s", node_id, node.type, exc)

        trace_logs = self._node_trace.pop(node_id, [])
        screenshot = await self._screenshot(node, "failure", force=True)
        debug_info = None
        try:
            debug_info = await self.hooks.capture_debug_info(node, self.context)
        except Exception as hook_exc:
            logger.warning("Debug snapshot for %s failed: %s", node_id, hook_exc)

        fail_silently = node.fail_silently and not isinstance(exc, _FATAL_NODE_ERRORS)
        if self.tracker is not None:
            self.tracker.record_node_error(node_id, node.type, str(exc), trace_logs, debug_info)
        record_node_execution(node.type, "error")
        self._emit(
            ExecutionEventType.NODE_ERROR,
            node_id=node_id,
            message=str(exc),
            data={
                "traceLogs": trace_logs,
                "debugInfo": debug_info,
                "screenshot": screenshot,
                "failSilently": fail_silently,
                "errorType": type(exc).__name__,
            },
        )
        if fail_silently:
            self._mark_executed(node_id)
            self.error = None
            return True
        return False

    async def _screenshot(self, node: WorkflowNode, timing: str, force: bool = False) -> str | None:
        if not force:
            if not self.screenshot_all_nodes:
                return None
            if self.screenshot_timing not in (timing, "both"):
                return None
        try:
            path = await self.hooks.capture_screenshot(node.node_id, timing, self.context)
        except Exception as exc:
            logger.warning("Screenshot (%s) for %s failed: %s", timing, node.node_id, exc)
            return None
        if path and self.tracker is not None:
            self.tracker.record_screenshot(node.node_id, node.type, path)
        return path

    # ── Branches ────────────────────────────────────────────────

    def _apply_branch_selection(self, resolved: WorkflowNode) -> None:
        if resolved.type != NODE_SWITCH:
            return
        selected = self.context.get_data(ctx_keys.SWITCH_OUTPUT)
        if not selected:
            return
        keep = set(self.graph.get_nodes_reachable_from_handle(resolved.node_id, selected))
        for handle in self.graph.get_switch_output_handles(resolved.node_id):
            if handle == selected:
                continue
            for node_id in self.graph.get_nodes_reachable_from_handle(resolved.node_id, handle):
                if node_id not in keep:
                    self._pruned.add(node_id)
        self.trace_log(f"Switch {resolved.node_id} selected {selected}")

    # ── Loops ───────────────────────────────────────────────────

    def _loop_children(self, loop_id: str) -> list[str]:
        children = self.graph.get_nodes_reachable_from_handle(loop_id, "output")
        position = {node_id: i for i, node_id in enumerate(self.plan)}
        return sorted(children, key=lambda nid: position.get(nid, len(position)))

    async def _run_loop(self, loop_node: WorkflowNode) -> set[str]:
        """Iterate the loop body in place.  Returns the child ids it consumed."""
        ctx = self.context
        mode = ctx.get_data(ctx_keys.LOOP_MODE)
        if mode is None:
            raise LoopError("Loop mode not set. Loop handler must run before iteration.")
        cfg = {key: ctx.pop_data(key) for key in ctx_keys.LOOP_KEYS}

        children = self._loop_children(loop_node.node_id)
        if not children:
            self.trace_log(f"Loop {loop_node.node_id} has no body nodes")
            return set()
        pruned_at_start = self._pruned & set(children)

        if mode == LOOP_MODE_FOR_EACH:
            array = cfg[ctx_keys.LOOP_ARRAY]
            if not isinstance(array, list):
                raise LoopError("Loop array not found or is not an array")
            for index, item in enumerate(array):
                ctx.set_variable("index", index)
                ctx.set_variable("item", item)
                record_loop_iteration(mode)
                await self._run_iteration(loop_node.node_id, children, pruned_at_start, index)

        elif mode == LOOP_MODE_REPEAT_UNTIL:
            condition = cfg[ctx_keys.LOOP_CONDITION]
            if not condition:
                raise LoopError("Loop condition not found")
            max_iterations = int(cfg[ctx_keys.LOOP_MAX_ITERATIONS] or settings.LOOP_MAX_ITERATIONS)
            update_step = cfg[ctx_keys.LOOP_UPDATE_STEP]

            if not cfg[ctx_keys.LOOP_SHOULD_START]:
                self.trace_log(f"Loop {loop_node.node_id} condition false at start, body not run")
            else:
                count = 0
                passed = True
                while passed and count < max_iterations:
                    ctx.set_variable("index", count)
                    record_loop_iteration(mode)
                    await self._run_iteration(loop_node.node_id, children, pruned_at_start, count)
                    if update_step:
                        self._apply_update_step(update_step)
                    count += 1
                    try:
                        passed = evaluate_condition(condition, ctx.scope())
                    except Exception as exc:
                        self.trace_log(f"Loop condition evaluation failed, treating as false: {exc}")
                        passed = False
                if passed and count >= max_iterations:
                    raise LoopError(f"Loop exceeded maximum iterations limit of {max_iterations}")
        else:
            raise LoopError(f"Unknown loop mode: {mode}")

        for child_id in children:
            self._mark_executed(child_id)
        return set(children)

    def _apply_update_step(self, update_step: Any) -> None:
        try:
            for name, expression in parse_assignments(update_step):
                value = evaluate_expression(expression, self.context.scope())
                self.context.set_variable(name, value)
        except Exception as exc:
            self.trace_log(f"Warning: loop update step failed: {exc}")
            logger.warning("Loop update step failed: %s", exc)

    async def _run_iteration(
        self,
        loop_id: str,
        children: list[str],
        pruned_at_start: set[str],
        iteration: int,
    ) -> None:
        # Branch pruning inside the body is re-derived on every pass.
        self._pruned = (self._pruned - set(children)) | pruned_at_start
        handled: set[str] = set()
        for child_id in children:
            if child_id in handled:
                continue
            await self._run_child(child_id, loop_id, iteration, handled)

    async def _run_child(self, child_id: str, loop_id: str, iteration: int, handled: set[str]) -> None:
        node = self.graph.get_node(child_id)
        if node is None or child_id in self._pruned:
            return
        loop_data = {"loopNodeId": loop_id, "iteration": iteration}
        if node.bypass:
            self._emit(ExecutionEventType.NODE_COMPLETE, node_id=child_id, message=_SKIP_BYPASS, data=loop_data)
            return

        self._set_current_node(child_id)
        self._node_trace[child_id] = []
        self._emit(ExecutionEventType.NODE_START, node_id=child_id, message=f"Executing {node.type}", data=loop_data)
        try:
            resolved = await self._dispatch(node)
            if self.slow_mo_ms > 0:
                await asyncio.sleep(self.slow_mo_ms / 1000)
            self._apply_branch_selection(resolved)
            if resolved.type == NODE_LOOP:
                handled.update(await self._run_loop(resolved))
            self._node_trace.pop(child_id, None)
            record_node_execution(node.type, "completed")
            self._emit(ExecutionEventType.NODE_COMPLETE, node_id=child_id, message="Node completed", data=loop_data)
        except PauseCancelledError:
            raise
        except Exception as exc:
            if not await self._contain_failure(node, exc):
                raise
        finally:
            self._set_current_node(loop_id)

    # ── Pause protocol ──────────────────────────────────────────

    async def _break(self, node_id: str, timing: BreakpointTiming) -> None:
        self._emit(
            ExecutionEventType.BREAKPOINT_TRIGGERED,
            node_id=node_id,
            message=f"Breakpoint triggered ({timing.value})",
            data={"breakpointAt": timing.value},
        )
        await self.pause(node_id, PauseReason.BREAKPOINT, timing=timing.value)

    async def pause(self, node_id: str, reason: PauseReason, timing: str | None = None) -> None:
        """Suspend the calling coroutine until continued or stopped."""
        if self._pause is not None:
            return
        # A skip only applies to the pause it was requested in.
        self._skip_requested = False
        signal = asyncio.get_running_loop().create_future()
        self._pause = PauseInfo(node_id=node_id, reason=reason, signal=signal, timing=timing)
        self.status = RunStatus.PAUSED
        logger.info("Run %s paused at %s (%s)", self.run_id, node_id, reason.value)
        self._emit(
            ExecutionEventType.EXECUTION_PAUSED,
            node_id=node_id,
            message=f"Execution paused: {reason.value}",
            data={"reason": reason.value},
        )
        await signal

    def continue_execution(self) -> bool:
        info = self._pause
        if info is None:
            return False
        self._pause = None
        self.status = RunStatus.RUNNING
        if not info.signal.done():
            info.signal.set_result(None)
        return True

    def stop_from_pause(self) -> bool:
        info = self._pause
        if info is None:
            return False
        self._stop_requested = True
        if not info.signal.done():
            info.signal.set_exception(PauseCancelledError(STOPPED_MESSAGE))
        return True

    def request_stop(self) -> None:
        """Stop at the next plan step, or immediately when paused."""
        if self._pause is not None:
            self.stop_from_pause()
            return
        self._stop_requested = True

    def skip_and_continue(self) -> bool:
        if self._pause is None:
            return False
        self._skip_requested = True
        return self.continue_execution()

    def disable_breakpoints_and_continue(self) -> bool:
        self.breakpoints.enabled = False
        return self.continue_execution()

    # ── Live graph replacement ──────────────────────────────────

    def update_workflow(self, workflow: Workflow) -> list[str]:
        """Swap in a new workflow while paused at a breakpoint.  Returns the new plan."""
        info = self._pause
        if info is None or info.reason != PauseReason.BREAKPOINT:
            raise WorkflowUpdateError("Workflow can only be updated while paused at a breakpoint")

        new_graph = WorkflowGraph(workflow)
        if not new_graph.has_node(info.node_id):
            raise WorkflowUpdateError(f"Paused node {info.node_id} no longer exists in the updated workflow")
        new_graph.validate().raise_for_errors()
        full_plan = new_graph.compute_execution_order(exclude_reusable_scopes=True)

        remaining = [node_id for node_id in full_plan if node_id not in self._executed]
        if info.node_id in remaining:
            cursor = remaining.index(info.node_id)
        elif info.node_id in full_plan:
            # Paused after the node ran: resume at the first pending node after it.
            before = full_plan[: full_plan.index(info.node_id)]
            cursor = sum(1 for node_id in before if node_id not in self._executed)
        else:
            cursor = 0

        self.workflow = workflow
        self.graph = new_graph
        self.plan = remaining
        self.cursor = cursor
        self._reusable_nodes = new_graph.reusable_scope_node_ids()
        self._pruned &= {n.node_id for n in workflow.nodes}
        self.context.set_ambient(ctx_keys.WORKFLOW, workflow)
        logger.info("Run %s workflow replaced; %d nodes remaining", self.run_id, len(remaining))
        self.trace_log(f"Workflow updated, resuming at index {cursor} of {len(remaining)}")
        return list(remaining)

    # ── Teardown ────────────────────────────────────────────────

    async def _finalize(self) -> None:
        if self.tracker is not None:
            self.tracker.finish(self.status.value)
        try:
            await self.hooks.finalize(self.run_id, self.status.value, self.tracker)
        except Exception as exc:
            logger.warning("Finalizing artifacts for %s failed: %s", self.run_id, exc)

    async def _teardown(self) -> None:
        if self._builder_ready:
            return
        try:
            await self.hooks.release_session(self.context)
        except Exception as exc:
            logger.warning("Releasing session for %s failed: %s", self.run_id, exc)
        self.context.reset()
