"""In-process event bus fanning execution events out per run id."""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from typing import AsyncIterator

from flowengine.config import settings
from flowengine.runtime.events import ExecutionEvent

logger = logging.getLogger("flowengine.events")

# Queue sentinel marking end of a run's stream.
_CLOSED = None


class EventBus:
    def __init__(self, history_limit: int | None = None):
        self._history_limit = history_limit or settings.EVENT_HISTORY_LIMIT
        self._history: dict[str, deque[ExecutionEvent]] = {}
        self._subscribers: dict[str, set[asyncio.Queue]] = {}
        self._closed: set[str] = set()

    def publish(self, event: ExecutionEvent) -> None:
        history = self._history.setdefault(event.run_id, deque(maxlen=self._history_limit))
        history.append(event)
        for queue in list(self._subscribers.get(event.run_id, ())):
            queue.put_nowait(event)

    def history(self, run_id: str) -> list[ExecutionEvent]:
        return list(self._history.get(run_id, ()))

    def close(self, run_id: str) -> None:
        """Mark *run_id* finished; live subscribers drain and stop."""
        self._closed.add(run_id)
        for queue in list(self._subscribers.get(run_id, ())):
            queue.put_nowait(_CLOSED)

    def is_closed(self, run_id: str) -> bool:
        return run_id in self._closed

    def forget(self, run_id: str) -> None:
        self._history.pop(run_id, None)
        self._closed.discard(run_id)

    async def subscribe(self, run_id: str, replay: bool = True) -> AsyncIterator[ExecutionEvent]:
        """Yield past events (when *replay*) then live ones until the run closes."""
        queue: asyncio.Queue = asyncio.Queue()
        self._subscribers.setdefault(run_id, set()).add(queue)
        try:
            if replay:
                for event in self.history(run_id):
                    yield event
            if run_id in self._closed:
                return
            while True:
                event = await queue.get()
                if event is _CLOSED:
                    return
                yield event
        finally:
            subscribers = self._subscribers.get(run_id)
            if subscribers is not None:
                subscribers.discard(queue)
                if not subscribers:
                    self._subscribers.pop(run_id, None)


event_bus = EventBus()
