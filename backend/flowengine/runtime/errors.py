"""Run-time error taxonomy raised by the interpreter and node handlers."""

from __future__ import annotations


class HandlerNotFoundError(Exception):
    def __init__(self, node_type: str):
        self.node_type = node_type
        super().__init__(f"No handler found for node type: {node_type}")


class LoopError(Exception):
    """Missing loop mode/array/condition or iteration cap exceeded."""


class NodeExecutionError(Exception):
    """Generic failure raised by a node handler."""

    def __init__(self, message: str, node_id: str | None = None):
        self.node_id = node_id
        super().__init__(message)


class PauseCancelledError(Exception):
    """Raised into a suspended pause when the run is stopped from the pause."""

    def __init__(self, message: str = "Execution stopped by user"):
        super().__init__(message)


class WorkflowUpdateError(Exception):
    """Live workflow replacement requested in an illegal state."""
