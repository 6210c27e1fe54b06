from __future__ import annotations

import secrets
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, List, Optional
from uuid import uuid4

from pydantic import Field

from ..agent_core.schemas.base import BaseSchema
from ..events.models import EventType

DEFAULT_EVENTS: List[str] = [EventType.workflow_completed.value]


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def generate_secret() -> str:
    return secrets.token_hex(32)


class DeliveryOutcome(str, Enum):
    pending = "pending"
    delivered = "delivered"
    retrying = "retrying"
    abandoned = "abandoned"


class WebhookSubscription(BaseSchema):
    id: str = Field(default_factory=lambda: str(uuid4()))
    owner_id: str
    name: str
    description: Optional[str] = None
    target_url: str
    events: List[str] = Field(default_factory=lambda: list(DEFAULT_EVENTS))
    secret: str = Field(default_factory=generate_secret, repr=False)
    is_active: bool = True
    headers: Dict[str, str] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=_utc_now)
    updated_at: datetime = Field(default_factory=_utc_now)

    def matches(self, event_type: str, owner_id: Optional[str] = None) -> bool:
        if not self.is_active or event_type not in self.events:
            return False
        return owner_id is None or owner_id == self.owner_id


class DeliveryAttempt(BaseSchema):
    id: str = Field(default_factory=lambda: str(uuid4()))
    webhook_id: str
    event_id: str
    event_type: str
    idempotency_key: str
    attempt_number: int = Field(ge=1)
    request_signature: str
    response_status: Optional[int] = None
    outcome: DeliveryOutcome
    error: Optional[str] = None
    duration_ms: Optional[float] = None
    created_at: datetime = Field(default_factory=_utc_now)
