"""Workflows API router — static validation and plan preview."""

from __future__ import annotations

from fastapi import APIRouter

from flowengine.api.deps import parse_or_422
from flowengine.compiler.graph import GraphError, WorkflowGraph
from flowengine.schemas.workflows import GraphErrorOut, ValidationOut, WorkflowIn

router = APIRouter()


@router.post("/validate", response_model=ValidationOut)
async def validate_workflow(body: WorkflowIn):
    graph = WorkflowGraph(parse_or_422(body.to_document()))
    result = graph.validate()
    plan: list[str] = []
    if result.valid:
        try:
            plan = graph.compute_execution_order(exclude_reusable_scopes=True)
        except GraphError as exc:
            result.errors.append(exc)
    return ValidationOut(
        valid=result.valid,
        errors=[GraphErrorOut(**e.to_dict()) for e in result.errors],
        warnings=result.warnings,
        plan=plan,
    )
