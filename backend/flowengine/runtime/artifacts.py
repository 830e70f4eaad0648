"""Artifact hook points called by the interpreter.

Screenshots, debug snapshots and session handling belong to the automation
layer; the interpreter only calls these hooks.  The base class is a no-op
apart from closing a session object that offers ``close()``.
"""

from __future__ import annotations

import inspect
import json
import logging
import os
from typing import Any

from flowengine.compiler.ir import WorkflowNode
from flowengine.runtime.context import ExecutionContext
from flowengine.runtime.tracker import ExecutionTracker

logger = logging.getLogger("flowengine.artifacts")


class ArtifactHooks:
    async def capture_screenshot(self, node_id: str, timing: str, context: ExecutionContext) -> str | None:
        """Return the stored screenshot path, or None when nothing was captured."""
        return None

    async def capture_debug_info(self, node: WorkflowNode, context: ExecutionContext) -> dict[str, Any] | None:
        return None

    async def finalize(self, run_id: str, status: str, tracker: ExecutionTracker | None) -> None:
        return None

    async def release_session(self, context: ExecutionContext) -> None:
        session = context.session
        if session is None:
            return
        close = getattr(session, "close", None)
        if close is None:
            return
        result = close()
        if inspect.isawaitable(result):
            await result


class JsonReportHooks(ArtifactHooks):
    """Writes ``<output_dir>/<run_id>/report.json`` from the tracker."""

    def __init__(self, output_dir: str):
        self.output_dir = output_dir
        self.last_report_path: str | None = None

    async def finalize(self, run_id: str, status: str, tracker: ExecutionTracker | None) -> None:
        if tracker is None:
            return
        run_dir = os.path.join(self.output_dir, run_id)
        os.makedirs(run_dir, exist_ok=True)
        path = os.path.join(run_dir, "report.json")
        with open(path, "w", encoding="utf-8") as fh:
            json.dump(tracker.to_report(), fh, indent=2, default=str)
        self.last_report_path = path
        logger.info("Report written to %s", path)
