"""Run execution manager — owns the active interpreters keyed by run id."""

from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from typing import Any, Callable

from flowengine.compiler.ir import Workflow
from flowengine.config import settings
from flowengine.registry.handler_registry import HandlerRegistry, default_registry
from flowengine.runtime.artifacts import ArtifactHooks, JsonReportHooks
from flowengine.runtime.breakpoints import BreakpointConfig
from flowengine.runtime.context import ExecutionContext
from flowengine.runtime.events import ExecutionEvent
from flowengine.runtime.interpreter import WorkflowInterpreter
from flowengine.runtime.state import RunStatus
from flowengine.runtime.tracker import ExecutionTracker
from flowengine.services import run_service
from flowengine.services.event_service import EventBus, event_bus

logger = logging.getLogger("flowengine.execution")


class RunNotFoundError(KeyError):
    def __init__(self, run_id: str):
        self.run_id = run_id
        super().__init__(f"Run {run_id} not found")

    def __str__(self) -> str:
        return self.args[0]


@dataclass
class RunOptions:
    trace_logs: bool | None = None
    breakpoints: BreakpointConfig | None = None
    builder_mode: bool = False
    report: bool = False
    slow_mo_ms: float | None = None
    variables: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        bp = self.breakpoints
        return {
            "trace_logs": self.trace_logs,
            "breakpoints": (
                {
                    "enabled": bp.enabled,
                    "breakpointAt": bp.breakpoint_at.value,
                    "breakpointFor": bp.breakpoint_for.value,
                }
                if bp
                else None
            ),
            "builder_mode": self.builder_mode,
            "report": self.report,
            "slow_mo_ms": self.slow_mo_ms,
        }


@dataclass
class _ActiveRun:
    interpreter: WorkflowInterpreter
    task: asyncio.Task | None = None
    writer: asyncio.Task | None = None
    pending: asyncio.Queue | None = None
    cleanup: asyncio.TimerHandle | None = None


class ExecutionManager:
    """Starts runs in the background and routes control requests to them.

    When *db_factory* is given, run status and every emitted event are
    persisted through ``run_service`` by a per-run writer task.
    """

    def __init__(
        self,
        bus: EventBus,
        registry_factory: Callable[[], HandlerRegistry] = default_registry,
        db_factory: Callable | None = None,
        session_factory: Callable[[], Any] | None = None,
        retention_seconds: float | None = None,
    ):
        self.bus = bus
        self._registry_factory = registry_factory
        self._db_factory = db_factory
        self._session_factory = session_factory
        self.retention_seconds = settings.RUN_RETENTION_SECONDS if retention_seconds is None else retention_seconds
        self._runs: dict[str, _ActiveRun] = {}

    # ── Lookup ──────────────────────────────────────────────────

    def get(self, run_id: str) -> WorkflowInterpreter:
        active = self._runs.get(run_id)
        if active is None:
            raise RunNotFoundError(run_id)
        return active.interpreter

    def list_runs(self) -> list[WorkflowInterpreter]:
        return [a.interpreter for a in self._runs.values()]

    def forget(self, run_id: str) -> None:
        active = self._runs.pop(run_id, None)
        if active is not None and active.cleanup is not None:
            active.cleanup.cancel()
        self.bus.forget(run_id)

    # ── Start ───────────────────────────────────────────────────

    async def start_run(self, workflow: Workflow, options: RunOptions | None = None) -> WorkflowInterpreter:
        options = options or RunOptions()
        run_id = str(uuid.uuid4())
        tracker = ExecutionTracker(run_id, workflow.name)
        hooks: ArtifactHooks = JsonReportHooks(settings.OUTPUT_DIR) if options.report else ArtifactHooks()
        context = ExecutionContext(variables=options.variables)
        if self._session_factory is not None:
            context.session = self._session_factory()

        active = _ActiveRun(interpreter=None)  # type: ignore[arg-type]
        persist = self._db_factory is not None and settings.PERSIST_EVENTS
        if persist:
            active.pending = asyncio.Queue()

        def emit(event: ExecutionEvent) -> None:
            self.bus.publish(event)
            if active.pending is not None:
                active.pending.put_nowait(event)

        interpreter = WorkflowInterpreter(
            workflow,
            run_id=run_id,
            registry=self._registry_factory(),
            emit=emit,
            context=context,
            breakpoints=options.breakpoints,
            trace_logs=options.trace_logs,
            builder_mode=options.builder_mode,
            hooks=hooks,
            tracker=tracker,
            slow_mo_ms=options.slow_mo_ms,
        )
        active.interpreter = interpreter
        self._runs[run_id] = active

        if self._db_factory is not None:
            async with self._db_factory() as db:
                await run_service.create_run(db, run_id, workflow.to_dict(), options.to_dict())
                await db.commit()
        if active.pending is not None:
            active.writer = asyncio.create_task(self._write_events(run_id, active.pending))

        active.task = asyncio.create_task(self._drive(active))
        logger.info("Run %s started (%d nodes)", run_id, len(workflow.nodes))
        return interpreter

    async def _drive(self, active: _ActiveRun) -> None:
        interpreter = active.interpreter
        await self._persist_status(interpreter.run_id, RunStatus.RUNNING.value)
        try:
            status = await interpreter.execute()
        except Exception:
            logger.exception("Run %s crashed outside the interpreter", interpreter.run_id)
            status = RunStatus.ERROR
        finally:
            if active.pending is not None:
                active.pending.put_nowait(None)
            if active.writer is not None:
                await active.writer
            if interpreter.status != RunStatus.RUNNING:
                self.bus.close(interpreter.run_id)
        await self._persist_status(interpreter.run_id, status.value, interpreter.error)
        if interpreter.status != RunStatus.RUNNING:
            self._schedule_forget(interpreter.run_id)

    def _schedule_forget(self, run_id: str) -> None:
        """Drop a finished run from memory once the retention window passes."""
        loop = asyncio.get_running_loop()
        active = self._runs.get(run_id)
        if active is None:
            return
        active.cleanup = loop.call_later(self.retention_seconds, self._expire, run_id, active)

    def _expire(self, run_id: str, active: _ActiveRun) -> None:
        if self._runs.get(run_id) is not active:
            return
        self.forget(run_id)
        logger.debug("Run %s released from memory", run_id)

    async def _write_events(self, run_id: str, queue: asyncio.Queue) -> None:
        while True:
            event = await queue.get()
            if event is None:
                return
            try:
                async with self._db_factory() as db:
                    await run_service.emit_event(
                        db,
                        run_id,
                        event.type.value,
                        node_id=event.node_id,
                        message=event.message,
                        payload=event.data,
                        ts=event.timestamp,
                    )
                    await db.commit()
            except Exception as exc:
                logger.warning("Persisting %s for run %s failed: %s", event.type.value, run_id, exc)

    async def _persist_status(self, run_id: str, status: str, error: str | None = None) -> None:
        if self._db_factory is None:
            return
        try:
            async with self._db_factory() as db:
                await run_service.update_run_status(db, run_id, status, error)
                await db.commit()
        except Exception as exc:
            logger.warning("Persisting status %s for run %s failed: %s", status, run_id, exc)

    async def wait(self, run_id: str, timeout: float | None = None) -> RunStatus:
        """Await the run's background task (tests and CLI use)."""
        active = self._runs.get(run_id)
        if active is None:
            raise RunNotFoundError(run_id)
        if active.task is not None:
            await asyncio.wait_for(asyncio.shield(active.task), timeout)
        return active.interpreter.status

    # ── Control surface ─────────────────────────────────────────

    def stop(self, run_id: str) -> WorkflowInterpreter:
        interpreter = self.get(run_id)
        interpreter.request_stop()
        return interpreter

    def continue_run(self, run_id: str) -> bool:
        return self.get(run_id).continue_execution()

    def skip(self, run_id: str) -> bool:
        return self.get(run_id).skip_and_continue()

    def disable_breakpoints(self, run_id: str) -> bool:
        return self.get(run_id).disable_breakpoints_and_continue()

    async def update_workflow(self, run_id: str, workflow: Workflow) -> list[str]:
        plan = self.get(run_id).update_workflow(workflow)
        if self._db_factory is not None:
            try:
                async with self._db_factory() as db:
                    await run_service.update_run_workflow(db, run_id, workflow.to_dict())
                    await db.commit()
            except Exception as exc:
                logger.warning("Persisting updated workflow for run %s failed: %s", run_id, exc)
        return plan


def _build_default_manager() -> ExecutionManager:
    from flowengine.db.engine import async_session

    return ExecutionManager(event_bus, db_factory=async_session)


execution_manager = _build_default_manager()
