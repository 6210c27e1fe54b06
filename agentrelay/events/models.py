from __future__ import annotations

"""Typed events raised on the in-process Event Bus.

- ``Event``: a lifecycle event (``agent.completed``, ``workflow.failed``, ...)
  delivered to webhook subscribers.
- ``ProgressEvent``: an incremental step of a running agent, consumed by the
  real-time transport only.

Idempotency keys are derived from the triggering source (run or workflow id)
and step index, so re-publishing the same occurrence yields the same key.
"""

import hashlib
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional, Union
from uuid import uuid4

from pydantic import Field

from ..agent_core.schemas.base import BaseSchema


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class EventType(str, Enum):
    agent_completed = "agent.completed"
    agent_failed = "agent.failed"
    workflow_completed = "workflow.completed"
    workflow_failed = "workflow.failed"
    webhook_test = "webhook.test"


# event types a subscription may list; ``webhook.test`` is synthetic
SUBSCRIBABLE_EVENT_TYPES = frozenset(
    {
        EventType.agent_completed.value,
        EventType.agent_failed.value,
        EventType.workflow_completed.value,
        EventType.workflow_failed.value,
    }
)


def idempotency_key_for(event_type: Union[EventType, str], source_id: str, step_index: Optional[int] = None) -> str:
    """Derive the deterministic idempotency key for an occurrence."""
    kind = event_type.value if isinstance(event_type, EventType) else str(event_type)
    seed = f"{kind}:{source_id}:{'' if step_index is None else step_index}"
    return hashlib.sha256(seed.encode("utf-8")).hexdigest()


class Event(BaseSchema):
    id: str = Field(default_factory=lambda: str(uuid4()))
    type: EventType
    payload: Dict[str, Any] = Field(default_factory=dict)
    occurred_at: datetime = Field(default_factory=_utc_now)
    idempotency_key: str
    # subscriptions of this user receive the event; None broadcasts to all owners
    owner_id: Optional[str] = None

    @classmethod
    def for_source(
        cls,
        event_type: EventType,
        *,
        source_id: str,
        payload: Dict[str, Any],
        owner_id: Optional[str] = None,
        step_index: Optional[int] = None,
    ) -> "Event":
        return cls(
            type=event_type,
            payload=payload,
            owner_id=owner_id,
            idempotency_key=idempotency_key_for(event_type, source_id, step_index),
        )


class ProgressEvent(BaseSchema):
    run_id: str
    kind: str
    data: Dict[str, Any] = Field(default_factory=dict)
    occurred_at: datetime = Field(default_factory=_utc_now)
    terminal: bool = False
