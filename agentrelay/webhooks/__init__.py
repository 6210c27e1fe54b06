"""Webhook subscriptions and signed, retried delivery.

- ``models``: ``WebhookSubscription``, ``DeliveryAttempt``, ``DeliveryOutcome``.
- ``signing``: deterministic serialization, HMAC-SHA256 sign/verify.
- ``retry``: ``RetryPolicy`` and the delivery state machine.
- ``dispatcher``: ``WebhookDispatcher`` (event fan-out, retries, test delivery).
- ``service``: ``WebhookService`` (owner-scoped CRUD, secret rotation).
"""

from .dispatcher import DeliveryHeaders, WebhookDispatcher
from .models import DeliveryAttempt, DeliveryOutcome, WebhookSubscription
from .retry import RetryPolicy
from .service import WebhookService
from .signing import require_valid_signature, serialize_payload, sign, verify

__all__ = [
    "DeliveryAttempt",
    "DeliveryHeaders",
    "DeliveryOutcome",
    "RetryPolicy",
    "WebhookDispatcher",
    "WebhookService",
    "WebhookSubscription",
    "require_valid_signature",
    "serialize_payload",
    "sign",
    "verify",
]
