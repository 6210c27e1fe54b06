"""
Real-time Run Progress Hub.

``RunStreamHub`` is a pure consumer of the Event Bus progress channel: it fans
``ProgressEvent`` objects out to the per-run queues of connected SSE clients
and has no reference back into the engine.
"""

import asyncio
from collections import defaultdict
from typing import AsyncIterator, Dict, Set

from agentrelay.core.logging_config import get_logger
from agentrelay.events.bus import EventBus
from agentrelay.events.models import ProgressEvent

logger = get_logger(__name__)

# ProgressEvent.kind -> SSE event name
SSE_EVENT_NAMES = {
    "step": "agent:stream",
    "completed": "agent:complete",
    "failed": "agent:error",
}


class RunStreamHub:
    def __init__(self, *, max_queue: int = 1000) -> None:
        self._subscribers: Dict[str, Set[asyncio.Queue[ProgressEvent]]] = defaultdict(set)
        self._max_queue = max_queue

    def attach(self, bus: EventBus) -> None:
        bus.subscribe_progress(self.publish)

    async def publish(self, event: ProgressEvent) -> None:
        for queue in list(self._subscribers.get(event.run_id, ())):
            try:
                queue.put_nowait(event)
            except asyncio.QueueFull:
                logger.warning(f"Dropping progress event for slow subscriber of run {event.run_id}")

    def subscribe(self, run_id: str) -> "asyncio.Queue[ProgressEvent]":
        queue: asyncio.Queue[ProgressEvent] = asyncio.Queue(maxsize=self._max_queue)
        self._subscribers[run_id].add(queue)
        return queue

    def unsubscribe(self, run_id: str, queue: "asyncio.Queue[ProgressEvent]") -> None:
        subs = self._subscribers.get(run_id)
        if subs is None:
            return
        subs.discard(queue)
        if not subs:
            self._subscribers.pop(run_id, None)

    def subscriber_count(self, run_id: str) -> int:
        return len(self._subscribers.get(run_id, ()))

    async def iterate(self, run_id: str, queue: "asyncio.Queue[ProgressEvent]") -> AsyncIterator[ProgressEvent]:
        """Yield events from ``queue`` until the terminal event of the run."""
        try:
            while True:
                event = await queue.get()
                yield event
                if event.terminal:
                    break
        finally:
            self.unsubscribe(run_id, queue)
