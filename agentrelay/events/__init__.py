"""Typed events and the in-process Event Bus."""

from .bus import EventBus, EventHandler, ProgressHandler
from .models import SUBSCRIBABLE_EVENT_TYPES, Event, EventType, ProgressEvent, idempotency_key_for

__all__ = [
    "Event",
    "EventBus",
    "EventHandler",
    "EventType",
    "ProgressEvent",
    "ProgressHandler",
    "SUBSCRIBABLE_EVENT_TYPES",
    "idempotency_key_for",
]
