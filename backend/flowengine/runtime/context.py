"""Run-time context shared by the interpreter and node handlers."""

from __future__ import annotations

from typing import Any

from flowengine.templating.engine import build_scope

# ── Ambient slot keys ───────────────────────────────────────────
# Installed by the interpreter at run start, cleared by ``reset()``.

SESSION = "session"
WORKFLOW = "workflow"
RESOLVE_PROPERTY_INPUTS = "resolve_property_inputs"
TRACE_LOG = "trace_log"
TRACE_LOGS_ENABLED = "trace_logs_enabled"
EMIT_EVENT = "emit_event"
GET_CURRENT_NODE_ID = "get_current_node_id"
SET_CURRENT_NODE_ID = "set_current_node_id"
PAUSE_EXECUTION = "pause_execution"
HANDLER_REGISTRY = "handler_registry"

# ── Well-known data keys written by handlers ────────────────────

LOOP_MODE = "_loopMode"
LOOP_ARRAY = "_loopArray"
LOOP_CONDITION = "_loopCondition"
LOOP_MAX_ITERATIONS = "_loopMaxIterations"
LOOP_UPDATE_STEP = "_loopUpdateStep"
LOOP_SHOULD_START = "_loopShouldStart"
LOOP_KEYS = (
    LOOP_MODE,
    LOOP_ARRAY,
    LOOP_CONDITION,
    LOOP_MAX_ITERATIONS,
    LOOP_UPDATE_STEP,
    LOOP_SHOULD_START,
)
SWITCH_OUTPUT = "switchOutput"
SWITCH_OUTPUT_LABEL = "switchOutputLabel"
ARTIFACT_PATH = "_artifactPath"

_MISSING = object()


class ExecutionContext:
    """Data and variable maps plus ambient references for one run.

    ``data`` holds producer-keyed artifacts (API responses, switch selection);
    ``variables`` holds scalars such as loop ``index``/``item`` and the value
    each literal node emits under its own id.  Neither is locked: only one
    node runs at a time.
    """

    def __init__(self, variables: dict[str, Any] | None = None, session: Any = None):
        self._data: dict[str, Any] = {}
        self._variables: dict[str, Any] = dict(variables or {})
        self._ambient: dict[str, Any] = {}
        if session is not None:
            self._ambient[SESSION] = session

    # ── Data ────────────────────────────────────────────────────

    def set_data(self, key: str, value: Any) -> None:
        self._data[key] = value

    def get_data(self, key: str, default: Any = None) -> Any:
        return self._data.get(key, default)

    def has_data(self, key: str) -> bool:
        return key in self._data

    def pop_data(self, key: str, default: Any = None) -> Any:
        return self._data.pop(key, default)

    def get_all_data(self) -> dict[str, Any]:
        return dict(self._data)

    # ── Variables ───────────────────────────────────────────────

    def set_variable(self, key: str, value: Any) -> None:
        self._variables[key] = value

    def get_variable(self, key: str, default: Any = None) -> Any:
        return self._variables.get(key, default)

    def has_variable(self, key: str) -> bool:
        return key in self._variables

    def get_all_variables(self) -> dict[str, Any]:
        return dict(self._variables)

    # ── Ambient slots ───────────────────────────────────────────

    def set_ambient(self, key: str, value: Any) -> None:
        self._ambient[key] = value

    def get_ambient(self, key: str, default: Any = None) -> Any:
        return self._ambient.get(key, default)

    @property
    def session(self) -> Any:
        return self._ambient.get(SESSION)

    @session.setter
    def session(self, value: Any) -> None:
        self._ambient[SESSION] = value

    def trace(self, message: str) -> None:
        """Forward *message* to the installed trace sink, if any."""
        sink = self._ambient.get(TRACE_LOG)
        if sink is not None:
            sink(message)

    def scope(self) -> dict[str, Any]:
        """Template/condition scope over the current variables and data."""
        return build_scope(self._variables, self._data)

    def reset(self) -> None:
        """Drop ambient references (session, callbacks) at run teardown."""
        self._ambient.clear()
