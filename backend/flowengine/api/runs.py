"""Runs API router — start runs and drive the pause/stop control surface."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException

from flowengine.api.deps import get_execution_manager, parse_or_422
from flowengine.compiler.validator import WorkflowValidationError
from flowengine.runtime.breakpoints import BreakpointConfig
from flowengine.runtime.errors import WorkflowUpdateError
from flowengine.schemas.runs import ControlOut, RunCreate, RunOut
from flowengine.schemas.workflows import WorkflowIn
from flowengine.services.execution_service import ExecutionManager, RunNotFoundError, RunOptions
from flowengine.utils.metrics import get_metrics_summary

router = APIRouter()


def _get_or_404(manager: ExecutionManager, run_id: str):
    try:
        return manager.get(run_id)
    except RunNotFoundError:
        raise HTTPException(status_code=404, detail="Run not found")


@router.post("", response_model=RunOut, status_code=201)
async def create_run(body: RunCreate, manager: ExecutionManager = Depends(get_execution_manager)):
    workflow = parse_or_422(body.workflow.to_document())
    options = RunOptions(
        trace_logs=body.traceLogs,
        breakpoints=BreakpointConfig.from_dict(body.breakpoints.model_dump()) if body.breakpoints else None,
        builder_mode=body.builderMode,
        report=body.report,
        slow_mo_ms=body.slowMo,
        variables=body.variables,
    )
    interpreter = await manager.start_run(workflow, options)
    return interpreter.snapshot()


@router.get("", response_model=list[RunOut])
async def list_runs(manager: ExecutionManager = Depends(get_execution_manager)):
    return [i.snapshot() for i in manager.list_runs()]


@router.get("/metrics/summary")
async def metrics_summary():
    return get_metrics_summary()


@router.get("/{run_id}", response_model=RunOut)
async def get_run(run_id: str, manager: ExecutionManager = Depends(get_execution_manager)):
    return _get_or_404(manager, run_id).snapshot()


@router.get("/{run_id}/report")
async def get_report(run_id: str, manager: ExecutionManager = Depends(get_execution_manager)):
    interpreter = _get_or_404(manager, run_id)
    if interpreter.tracker is None:
        raise HTTPException(status_code=404, detail="No report for this run")
    return interpreter.tracker.to_report()


@router.post("/{run_id}/stop", response_model=ControlOut)
async def stop_run(run_id: str, manager: ExecutionManager = Depends(get_execution_manager)):
    interpreter = _get_or_404(manager, run_id)
    interpreter.request_stop()
    return ControlOut(run_id=run_id, accepted=True, status=interpreter.status.value)


@router.post("/{run_id}/continue", response_model=ControlOut)
async def continue_run(run_id: str, manager: ExecutionManager = Depends(get_execution_manager)):
    interpreter = _get_or_404(manager, run_id)
    if not interpreter.continue_execution():
        raise HTTPException(status_code=409, detail="Run is not paused")
    return ControlOut(run_id=run_id, accepted=True, status=interpreter.status.value)


@router.post("/{run_id}/skip", response_model=ControlOut)
async def skip_node(run_id: str, manager: ExecutionManager = Depends(get_execution_manager)):
    interpreter = _get_or_404(manager, run_id)
    if not interpreter.skip_and_continue():
        raise HTTPException(status_code=409, detail="Run is not paused")
    return ControlOut(run_id=run_id, accepted=True, status=interpreter.status.value)


@router.post("/{run_id}/breakpoints/disable", response_model=ControlOut)
async def disable_breakpoints(run_id: str, manager: ExecutionManager = Depends(get_execution_manager)):
    interpreter = _get_or_404(manager, run_id)
    resumed = interpreter.disable_breakpoints_and_continue()
    return ControlOut(run_id=run_id, accepted=resumed, status=interpreter.status.value)


@router.put("/{run_id}/workflow", response_model=RunOut)
async def update_workflow(
    run_id: str,
    body: WorkflowIn,
    manager: ExecutionManager = Depends(get_execution_manager),
):
    interpreter = _get_or_404(manager, run_id)
    workflow = parse_or_422(body.to_document())
    try:
        await manager.update_workflow(run_id, workflow)
    except WorkflowUpdateError as exc:
        raise HTTPException(status_code=409, detail=str(exc))
    except WorkflowValidationError as exc:
        raise HTTPException(
            status_code=422,
            detail={"message": "Invalid workflow", "errors": [e.message for e in exc.errors]},
        )
    return interpreter.snapshot()
