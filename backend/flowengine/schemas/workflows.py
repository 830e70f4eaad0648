"""Pydantic models for workflow documents."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field


class NodeIn(BaseModel):
    id: str
    type: str
    data: dict[str, Any] = Field(default_factory=dict)

    model_config = {"extra": "allow"}


class EdgeIn(BaseModel):
    id: str | None = None
    source: str
    target: str
    sourceHandle: str | None = None
    targetHandle: str | None = None

    model_config = {"extra": "allow"}


class WorkflowIn(BaseModel):
    name: str | None = None
    nodes: list[NodeIn]
    edges: list[EdgeIn] = Field(default_factory=list)

    model_config = {"extra": "allow"}

    def to_document(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "nodes": [{"id": n.id, "type": n.type, "data": n.data} for n in self.nodes],
            "edges": [e.model_dump(include={"id", "source", "target", "sourceHandle", "targetHandle"}) for e in self.edges],
        }


class GraphErrorOut(BaseModel):
    kind: str
    message: str
    node_id: str | None = None


class ValidationOut(BaseModel):
    valid: bool
    errors: list[GraphErrorOut] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    plan: list[str] = Field(default_factory=list)
