from __future__ import annotations

"""In-process publish/subscribe Event Bus.

Producers (the agent engine, the workflow endpoint) publish without knowing who
consumes. Each handler runs in its own asyncio task so that a slow consumer
(for example a webhook with retries) never delays the producer or the other
consumers. Handler failures are logged and swallowed at this boundary: they
never propagate back into the producer.

``drain()`` awaits all in-flight handler tasks; the server calls it on shutdown
and tests call it to make delivery observable.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Iterable, List, Optional, Set, Tuple

from .models import Event, EventType, ProgressEvent

logger = logging.getLogger(__name__)

EventHandler = Callable[[Event], Awaitable[None]]
ProgressHandler = Callable[[ProgressEvent], Awaitable[None]]


class EventBus:
    def __init__(self) -> None:
        self._handlers: List[Tuple[EventHandler, Optional[frozenset[str]]]] = []
        self._progress_handlers: List[ProgressHandler] = []
        self._tasks: Set[asyncio.Task[None]] = set()

    def subscribe(self, handler: EventHandler, event_types: Optional[Iterable[EventType | str]] = None) -> None:
        """Register ``handler`` for the given event types (all types when ``None``)."""
        types = None
        if event_types is not None:
            types = frozenset(t.value if isinstance(t, EventType) else str(t) for t in event_types)
        self._handlers.append((handler, types))

    def subscribe_progress(self, handler: ProgressHandler) -> None:
        self._progress_handlers.append(handler)

    def unsubscribe_progress(self, handler: ProgressHandler) -> None:
        if handler in self._progress_handlers:
            self._progress_handlers.remove(handler)

    async def publish(self, event: Event) -> None:
        logger.debug(f"Publishing event {event.type.value} id={event.id}")
        for handler, types in list(self._handlers):
            if types is not None and event.type.value not in types:
                continue
            self._spawn(self._run_handler(handler, event), name=f"event:{event.type.value}:{event.id}")

    async def publish_progress(self, event: ProgressEvent) -> None:
        for handler in list(self._progress_handlers):
            self._spawn(self._run_progress_handler(handler, event), name=f"progress:{event.run_id}")

    async def drain(self) -> None:
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def _spawn(self, coro: Awaitable[None], *, name: str) -> None:
        task = asyncio.ensure_future(coro)
        task.set_name(name)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    @staticmethod
    async def _run_handler(handler: EventHandler, event: Event) -> None:
        try:
            await handler(event)
        except Exception as e:
            logger.error(f"Event handler failed for {event.type.value} id={event.id}: {e}", exc_info=True)

    @staticmethod
    async def _run_progress_handler(handler: ProgressHandler, event: ProgressEvent) -> None:
        try:
            await handler(event)
        except Exception as e:
            logger.warning(f"Progress handler failed for run {event.run_id}: {e}")
