"""Breakpoint configuration and trigger predicate."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from flowengine.compiler.ir import WorkflowNode


class BreakpointTiming(str, Enum):
    PRE = "pre"
    POST = "post"
    BOTH = "both"


class BreakpointScope(str, Enum):
    ALL = "all"
    MARKED = "marked"


@dataclass
class BreakpointConfig:
    enabled: bool = False
    breakpoint_at: BreakpointTiming = BreakpointTiming.PRE
    breakpoint_for: BreakpointScope = BreakpointScope.MARKED

    @classmethod
    def from_dict(cls, raw: dict | None) -> "BreakpointConfig":
        if not raw:
            return cls()
        return cls(
            enabled=bool(raw.get("enabled", False)),
            breakpoint_at=BreakpointTiming(raw.get("breakpointAt", raw.get("breakpoint_at", "pre"))),
            breakpoint_for=BreakpointScope(raw.get("breakpointFor", raw.get("breakpoint_for", "marked"))),
        )


def should_trigger_breakpoint(node: WorkflowNode, timing: BreakpointTiming, config: BreakpointConfig | None) -> bool:
    """True when *node* should pause at *timing* (``pre`` or ``post``)."""
    if config is None or not config.enabled:
        return False
    if config.breakpoint_at != BreakpointTiming.BOTH and config.breakpoint_at != timing:
        return False
    if config.breakpoint_for == BreakpointScope.ALL:
        return True
    return node.breakpoint
