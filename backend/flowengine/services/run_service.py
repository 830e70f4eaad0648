"""Run persistence: run records and the event timeline."""

from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from flowengine.db.models import Run, RunEvent


async def create_run(
    db: AsyncSession,
    run_id: str,
    workflow: dict[str, Any],
    options: dict[str, Any] | None = None,
) -> Run:
    run = Run(
        run_id=run_id,
        workflow_name=workflow.get("name"),
        workflow_json=json.dumps(workflow, default=str),
        options_json=json.dumps(options, default=str) if options else None,
        status="idle",
    )
    db.add(run)
    await db.flush()
    await db.refresh(run)
    return run


async def get_run(db: AsyncSession, run_id: str) -> Run | None:
    return await db.get(Run, run_id)


async def list_runs(db: AsyncSession, status: str | None = None, limit: int = 100) -> list[Run]:
    stmt = select(Run)
    if status:
        stmt = stmt.where(Run.status == status)
    stmt = stmt.order_by(Run.created_at.desc()).limit(limit)
    result = await db.execute(stmt)
    return list(result.scalars().all())


async def update_run_status(
    db: AsyncSession,
    run_id: str,
    status: str,
    error_message: str | None = None,
) -> Run | None:
    run = await db.get(Run, run_id)
    if run is None:
        return None
    now = datetime.now(timezone.utc)
    run.status = status
    if status == "running" and run.started_at is None:
        run.started_at = now
    if status in ("completed", "error", "stopped"):
        run.ended_at = now
        run.error_message = error_message
    await db.flush()
    return run


async def update_run_workflow(db: AsyncSession, run_id: str, workflow: dict[str, Any]) -> None:
    run = await db.get(Run, run_id)
    if run is not None:
        run.workflow_json = json.dumps(workflow, default=str)
        await db.flush()


async def emit_event(
    db: AsyncSession,
    run_id: str,
    event_type: str,
    node_id: str | None = None,
    message: str | None = None,
    payload: dict[str, Any] | None = None,
    ts: datetime | None = None,
) -> RunEvent:
    event = RunEvent(
        run_id=run_id,
        event_type=event_type,
        node_id=node_id,
        message=message,
        payload_json=json.dumps(payload, default=str) if payload else None,
    )
    if ts is not None:
        event.ts = ts
    db.add(event)
    await db.flush()
    await db.refresh(event)
    return event


async def list_events(db: AsyncSession, run_id: str) -> list[RunEvent]:
    stmt = select(RunEvent).where(RunEvent.run_id == run_id).order_by(RunEvent.event_id.asc())
    result = await db.execute(stmt)
    return list(result.scalars().all())
