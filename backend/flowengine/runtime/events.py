"""Execution event types emitted by the interpreter."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class ExecutionEventType(str, Enum):
    EXECUTION_START = "execution_start"
    EXECUTION_COMPLETE = "execution_complete"
    EXECUTION_ERROR = "execution_error"
    NODE_START = "node_start"
    NODE_COMPLETE = "node_complete"
    NODE_ERROR = "node_error"
    EXECUTION_PAUSED = "execution_paused"
    BREAKPOINT_TRIGGERED = "breakpoint_triggered"
    BUILDER_MODE_READY = "builder_mode_ready"


TERMINAL_EVENT_TYPES = frozenset({
    ExecutionEventType.EXECUTION_COMPLETE,
    ExecutionEventType.EXECUTION_ERROR,
    ExecutionEventType.BUILDER_MODE_READY,
})


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ExecutionEvent(BaseModel):
    type: ExecutionEventType
    run_id: str = Field(serialization_alias="runId")
    node_id: str | None = Field(default=None, serialization_alias="nodeId")
    message: str | None = None
    data: dict[str, Any] | None = None
    timestamp: datetime = Field(default_factory=_utcnow)

    @property
    def is_terminal(self) -> bool:
        return self.type in TERMINAL_EVENT_TYPES

    def to_wire(self) -> dict[str, Any]:
        """JSON-ready dict with camelCase keys."""
        return self.model_dump(mode="json", by_alias=True)
