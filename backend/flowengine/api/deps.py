"""Shared API helpers."""

from __future__ import annotations

from typing import Any

from fastapi import HTTPException

from flowengine.compiler.ir import Workflow
from flowengine.compiler.parser import WorkflowFormatError, parse_workflow
from flowengine.services.execution_service import ExecutionManager, execution_manager


def get_execution_manager() -> ExecutionManager:
    return execution_manager


def parse_or_422(document: dict[str, Any]) -> Workflow:
    try:
        return parse_workflow(document)
    except WorkflowFormatError as exc:
        raise HTTPException(status_code=422, detail=str(exc))
