"""Run state types owned by the interpreter."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from enum import Enum


class RunStatus(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    PAUSED = "paused"
    STOPPED = "stopped"
    COMPLETED = "completed"
    ERROR = "error"


TERMINAL_STATUSES = frozenset({RunStatus.STOPPED, RunStatus.COMPLETED, RunStatus.ERROR})


class PauseReason(str, Enum):
    WAIT_PAUSE = "wait_pause"
    BREAKPOINT = "breakpoint"


@dataclass
class PauseInfo:
    """A suspended run: which node, why, and the one-shot resume signal."""

    node_id: str
    reason: PauseReason
    signal: asyncio.Future
    timing: str | None = None
