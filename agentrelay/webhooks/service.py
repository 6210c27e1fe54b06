from __future__ import annotations

"""Webhook subscription management.

``WebhookService`` is the owner-scoped CRUD facade used by the API. It
validates subscriptions before they are stored, generates the signing secret
at creation (and on rotation) and hides subscriptions of other owners behind
``NotFoundError``.
"""

import logging
import re
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Dict, Iterable, List, Optional

import httpx

from ..core.errors import NotFoundError, ValidationError
from ..events.models import SUBSCRIBABLE_EVENT_TYPES
from .dispatcher import WebhookDispatcher
from .models import DEFAULT_EVENTS, DeliveryAttempt, WebhookSubscription, generate_secret

if TYPE_CHECKING:
    from ..repos.interfaces import DeliveryAttemptRepository, WebhookRepository

logger = logging.getLogger(__name__)

# RFC 7230 token
_HEADER_NAME_RE = re.compile(r"^[!#$%&'*+\-.^_`|~0-9A-Za-z]+$")


def validate_subscription(target_url: str, events: Iterable[str], headers: Dict[str, str]) -> None:
    """
    Check a subscription's target, event types and custom headers.

    Raises:
        ValidationError: With one entry per problem found.
    """
    errors: List[str] = []
    try:
        url = httpx.URL(target_url)
        if url.scheme not in ("http", "https") or not url.host:
            errors.append(f"target_url: must be an absolute http(s) URL, got '{target_url}'")
    except httpx.InvalidURL:
        errors.append(f"target_url: invalid URL '{target_url}'")

    events = list(events)
    if not events:
        errors.append("events: at least one event type is required")
    for event in events:
        if event not in SUBSCRIBABLE_EVENT_TYPES:
            errors.append(f"events: unknown event type '{event}'")

    for name, value in headers.items():
        if not _HEADER_NAME_RE.match(name):
            errors.append(f"headers: invalid header name '{name}'")
        if not isinstance(value, str) or "\n" in value or "\r" in value:
            errors.append(f"headers.{name}: value must be a single-line string")

    if errors:
        raise ValidationError("invalid webhook subscription", errors=errors)


class WebhookService:
    def __init__(
        self,
        *,
        webhooks: WebhookRepository,
        deliveries: DeliveryAttemptRepository,
        dispatcher: WebhookDispatcher,
    ) -> None:
        self._webhooks = webhooks
        self._deliveries = deliveries
        self._dispatcher = dispatcher

    async def create(
        self,
        owner_id: str,
        *,
        name: str,
        target_url: str,
        events: Optional[List[str]] = None,
        description: Optional[str] = None,
        headers: Optional[Dict[str, str]] = None,
        is_active: bool = True,
    ) -> WebhookSubscription:
        """Create a subscription; the returned object is the only one exposing the secret."""
        events = list(dict.fromkeys(events)) if events is not None else list(DEFAULT_EVENTS)
        headers = dict(headers or {})
        validate_subscription(target_url, events, headers)

        webhook = WebhookSubscription(
            owner_id=owner_id,
            name=name,
            description=description,
            target_url=target_url,
            events=events,
            headers=headers,
            is_active=is_active,
        )
        await self._webhooks.create(webhook)
        logger.info(f"Created webhook {webhook.id} for owner {owner_id} events={events}")
        return webhook

    async def list(self, owner_id: str) -> List[WebhookSubscription]:
        return await self._webhooks.list(owner_id)

    async def get(self, webhook_id: str, owner_id: str) -> WebhookSubscription:
        webhook = await self._webhooks.get(webhook_id)
        if webhook is None or webhook.owner_id != owner_id:
            raise NotFoundError("webhook", webhook_id)
        return webhook

    async def update(
        self,
        webhook_id: str,
        owner_id: str,
        *,
        name: Optional[str] = None,
        description: Optional[str] = None,
        target_url: Optional[str] = None,
        events: Optional[List[str]] = None,
        headers: Optional[Dict[str, str]] = None,
        is_active: Optional[bool] = None,
    ) -> WebhookSubscription:
        """Apply the given changes; ``None`` leaves a field unchanged. The secret is preserved."""
        current = await self.get(webhook_id, owner_id)
        changes: Dict[str, object] = {}
        if name is not None:
            changes["name"] = name
        if description is not None:
            changes["description"] = description
        if target_url is not None:
            changes["target_url"] = target_url
        if events is not None:
            changes["events"] = list(dict.fromkeys(events))
        if headers is not None:
            changes["headers"] = dict(headers)
        if is_active is not None:
            changes["is_active"] = is_active

        updated = current.model_copy(update={**changes, "updated_at": datetime.now(timezone.utc)})
        validate_subscription(updated.target_url, updated.events, updated.headers)
        await self._webhooks.update(updated)
        return updated

    async def delete(self, webhook_id: str, owner_id: str) -> None:
        await self.get(webhook_id, owner_id)
        await self._webhooks.delete(webhook_id)
        logger.info(f"Deleted webhook {webhook_id}")

    async def rotate_secret(self, webhook_id: str, owner_id: str) -> WebhookSubscription:
        current = await self.get(webhook_id, owner_id)
        rotated = current.model_copy(update={"secret": generate_secret(), "updated_at": datetime.now(timezone.utc)})
        await self._webhooks.update(rotated)
        logger.info(f"Rotated secret of webhook {webhook_id}")
        return rotated

    async def list_deliveries(self, webhook_id: str, owner_id: str, *, limit: int = 100) -> List[DeliveryAttempt]:
        await self.get(webhook_id, owner_id)
        return await self._deliveries.list_for_webhook(webhook_id, limit=limit)

    async def test(self, webhook_id: str, owner_id: str) -> DeliveryAttempt:
        return await self._dispatcher.test(webhook_id, owner_id=owner_id)
