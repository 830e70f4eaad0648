"""Per-node outcome records collected during a run, used for reports."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class NodeRecord:
    node_id: str
    node_type: str
    status: str = "running"  # running | completed | error | bypassed | skipped
    started_at: str | None = None
    ended_at: str | None = None
    message: str | None = None
    error: str | None = None
    trace_logs: list[str] = field(default_factory=list)
    screenshots: list[str] = field(default_factory=list)
    artifacts: list[str] = field(default_factory=list)
    debug_info: dict[str, Any] | None = None


class ExecutionTracker:
    def __init__(self, run_id: str, workflow_name: str | None = None):
        self.run_id = run_id
        self.workflow_name = workflow_name
        self.started_at = _now()
        self.ended_at: str | None = None
        self.status: str | None = None
        self._records: dict[str, NodeRecord] = {}

    def _record(self, node_id: str, node_type: str) -> NodeRecord:
        record = self._records.get(node_id)
        if record is None:
            record = NodeRecord(node_id=node_id, node_type=node_type)
            self._records[node_id] = record
        return record

    def record_node_start(self, node_id: str, node_type: str) -> None:
        record = self._record(node_id, node_type)
        record.status = "running"
        record.started_at = _now()

    def record_node_complete(self, node_id: str, node_type: str) -> None:
        record = self._record(node_id, node_type)
        record.status = "completed"
        record.ended_at = _now()

    def record_node_skipped(self, node_id: str, node_type: str, message: str, bypassed: bool = False) -> None:
        record = self._record(node_id, node_type)
        record.status = "bypassed" if bypassed else "skipped"
        record.message = message
        record.ended_at = _now()

    def record_node_error(
        self,
        node_id: str,
        node_type: str,
        error: str,
        trace_logs: list[str] | None = None,
        debug_info: dict[str, Any] | None = None,
    ) -> None:
        # Status stays "error" even when the node fails silently.
        record = self._record(node_id, node_type)
        record.status = "error"
        record.error = error
        record.ended_at = _now()
        record.trace_logs = list(trace_logs or [])
        record.debug_info = debug_info

    def record_screenshot(self, node_id: str, node_type: str, path: str) -> None:
        self._record(node_id, node_type).screenshots.append(path)

    def record_artifact(self, node_id: str, node_type: str, path: str) -> None:
        self._record(node_id, node_type).artifacts.append(path)

    def finish(self, status: str) -> None:
        self.status = status
        self.ended_at = _now()

    def get(self, node_id: str) -> NodeRecord | None:
        return self._records.get(node_id)

    def to_report(self) -> dict[str, Any]:
        records = list(self._records.values())
        summary: dict[str, int] = {}
        for record in records:
            summary[record.status] = summary.get(record.status, 0) + 1
        return {
            "run_id": self.run_id,
            "workflow_name": self.workflow_name,
            "status": self.status,
            "started_at": self.started_at,
            "ended_at": self.ended_at,
            "summary": summary,
            "nodes": [asdict(r) for r in records],
        }
