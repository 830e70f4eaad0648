"""Pydantic models for runs."""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, Field

from flowengine.schemas.workflows import WorkflowIn


class BreakpointsIn(BaseModel):
    enabled: bool = True
    breakpointAt: Literal["pre", "post", "both"] = "pre"
    breakpointFor: Literal["all", "marked"] = "marked"


class RunCreate(BaseModel):
    workflow: WorkflowIn
    traceLogs: bool | None = None
    breakpoints: BreakpointsIn | None = None
    builderMode: bool = False
    report: bool = False
    slowMo: float | None = Field(default=None, ge=0)
    variables: dict[str, Any] = Field(default_factory=dict)


class RunOut(BaseModel):
    run_id: str
    status: str
    current_node_id: str | None = None
    paused_node_id: str | None = None
    pause_reason: str | None = None
    executed_node_ids: list[str] = Field(default_factory=list)
    plan: list[str] = Field(default_factory=list)
    cursor: int = 0
    error: str | None = None


class ControlOut(BaseModel):
    run_id: str
    accepted: bool
    status: str
