"""Events API router — persisted timeline + live SSE streaming."""

from __future__ import annotations

import json

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession
from sse_starlette.sse import EventSourceResponse

from flowengine.db.engine import get_db
from flowengine.schemas.events import RunEventOut
from flowengine.services import run_service
from flowengine.services.event_service import event_bus

router = APIRouter()


@router.get("/runs/{run_id}/events", response_model=list[RunEventOut])
async def list_events(run_id: str, db: AsyncSession = Depends(get_db)):
    if await run_service.get_run(db, run_id) is None:
        raise HTTPException(status_code=404, detail="Run not found")
    return await run_service.list_events(db, run_id)


@router.get("/runs/{run_id}/stream")
async def stream_events(run_id: str, request: Request):
    """SSE endpoint — replays buffered events, then follows the run live."""

    async def event_generator():
        seq = 0
        async for event in event_bus.subscribe(run_id):
            if await request.is_disconnected():
                break
            seq += 1
            yield {
                "event": event.type.value,
                "id": str(seq),
                "data": json.dumps(event.to_wire()),
            }
            if event.is_terminal:
                break

    return EventSourceResponse(event_generator())
