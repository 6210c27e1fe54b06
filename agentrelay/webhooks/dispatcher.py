from __future__ import annotations

"""Webhook dispatcher.

``WebhookDispatcher`` turns each published ``Event`` into signed HTTP POSTs to
the matching subscriptions.

Delivery model
--------------

- Matching subscriptions are resolved once per event (active, subscribed to
  the event type, owned by the event's owner when the event has one).
- Subscriptions are delivered to concurrently; a failing or slow endpoint
  never delays or fails the others.
- Attempts to one subscription are strictly sequential: a retry never starts
  before the previous attempt's outcome is known and recorded.
- Every attempt is recorded as a ``DeliveryAttempt``. Intermediate failures
  are ``retrying``; the last one is ``delivered`` or ``abandoned``.
- Nothing raised here reaches the producer of the event.

The body and signature are computed once per subscription, so every retry
carries byte-identical content and the same idempotency key.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Awaitable, Callable, List, Optional
from uuid import uuid4

import httpx

from ..core.errors import NotFoundError, TransportError
from ..core.monitoring import log_webhook_delivery
from ..events.bus import EventBus
from ..events.models import SUBSCRIBABLE_EVENT_TYPES, Event, EventType, idempotency_key_for
from .models import DeliveryAttempt, DeliveryOutcome, WebhookSubscription
from .retry import RetryPolicy, is_success_status, next_outcome, transition
from .signing import serialize_payload, sign

if TYPE_CHECKING:
    from ..repos.interfaces import DeliveryAttemptRepository, WebhookRepository

logger = logging.getLogger(__name__)

TEST_MESSAGE = "This is a test webhook from agentrelay"
USER_AGENT = "agentrelay-webhooks/0.1"


@dataclass(frozen=True)
class DeliveryHeaders:
    """Names of the protocol headers set on every delivery."""

    signature: str = "X-Webhook-Signature"
    event: str = "X-Webhook-Event"
    webhook_id: str = "X-Webhook-ID"
    idempotency_key: str = "X-Webhook-Idempotency-Key"


def build_envelope(webhook: WebhookSubscription, event: Event) -> dict:
    return {
        "event": event.type.value,
        "event_id": event.id,
        "webhook_id": webhook.id,
        "timestamp": event.occurred_at.isoformat(),
        "idempotency_key": event.idempotency_key,
        "data": event.payload,
    }


class WebhookDispatcher:
    """Sign, deliver, retry and record webhook deliveries."""

    def __init__(
        self,
        *,
        webhooks: WebhookRepository,
        attempts: DeliveryAttemptRepository,
        client: httpx.AsyncClient,
        retry_policy: Optional[RetryPolicy] = None,
        timeout_seconds: float = 10.0,
        headers: Optional[DeliveryHeaders] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        """
        Initialize the dispatcher.

        Args:
            webhooks: Subscription store used to resolve matching subscriptions.
            attempts: Append-only store for delivery attempts.
            client: Shared HTTP client used for outbound deliveries.
            retry_policy: Attempt bound and backoff schedule.
            timeout_seconds: Per-attempt HTTP timeout.
            headers: Protocol header names.
            sleep: Backoff sleeper; tests inject a recorder instead of waiting.
        """
        self._webhooks = webhooks
        self._attempts = attempts
        self._client = client
        self._policy = retry_policy or RetryPolicy()
        self._timeout = timeout_seconds
        self._headers = headers or DeliveryHeaders()
        self._sleep = sleep

    def attach(self, bus: EventBus) -> None:
        """Subscribe ``dispatch`` to every subscribable event type on ``bus``."""
        bus.subscribe(self._on_event, SUBSCRIBABLE_EVENT_TYPES)

    async def _on_event(self, event: Event) -> None:
        await self.dispatch(event)

    async def dispatch(self, event: Event) -> List[DeliveryAttempt]:
        """
        Deliver ``event`` to all matching subscriptions.

        Returns:
            The final ``DeliveryAttempt`` of each subscription that was tried.
        """
        try:
            subs = await self._webhooks.list_matching(event.type.value, owner_id=event.owner_id)
        except Exception as e:
            logger.error(f"Could not resolve subscriptions for {event.type.value} id={event.id}: {e}", exc_info=True)
            return []
        if not subs:
            logger.debug(f"No subscriptions for {event.type.value} id={event.id}")
            return []

        logger.info(f"Dispatching {event.type.value} id={event.id} to {len(subs)} subscription(s)")
        results = await asyncio.gather(
            *(self._deliver(sub, event, self._policy) for sub in subs),
            return_exceptions=True,
        )
        final: List[DeliveryAttempt] = []
        for sub, result in zip(subs, results):
            if isinstance(result, BaseException):
                logger.error(f"Delivery to webhook {sub.id} crashed: {result}")
                continue
            final.append(result)
        return final

    async def test(self, webhook_id: str, *, owner_id: Optional[str] = None) -> DeliveryAttempt:
        """
        Send one synthetic ``webhook.test`` delivery, without retries.

        The subscription filter and the active flag are bypassed.

        Raises:
            NotFoundError: If the webhook does not exist or is not owned by ``owner_id``.
        """
        sub = await self._webhooks.get(webhook_id)
        if sub is None or (owner_id is not None and sub.owner_id != owner_id):
            raise NotFoundError("webhook", webhook_id)

        test_id = str(uuid4())
        event = Event(
            id=test_id,
            type=EventType.webhook_test,
            payload={"message": TEST_MESSAGE},
            idempotency_key=idempotency_key_for(EventType.webhook_test, test_id),
            owner_id=sub.owner_id,
        )
        return await self._deliver(sub, event, RetryPolicy(max_attempts=1))

    def _build_headers(self, sub: WebhookSubscription, event: Event, signature: str) -> httpx.Headers:
        # custom headers first; protocol headers replace them case-insensitively
        headers = httpx.Headers(sub.headers)
        headers["Content-Type"] = "application/json"
        headers["User-Agent"] = USER_AGENT
        headers[self._headers.signature] = signature
        headers[self._headers.event] = event.type.value
        headers[self._headers.webhook_id] = sub.id
        headers[self._headers.idempotency_key] = event.idempotency_key
        return headers

    async def _send(self, url: str, body: bytes, headers: httpx.Headers) -> int:
        try:
            resp = await self._client.post(url, content=body, headers=headers, timeout=self._timeout)
        except httpx.HTTPError as e:
            raise TransportError(f"{type(e).__name__}: {e}") from e
        if not is_success_status(resp.status_code):
            raise TransportError(f"non-2xx response: {resp.status_code}", status_code=resp.status_code)
        return resp.status_code

    async def _deliver(self, sub: WebhookSubscription, event: Event, policy: RetryPolicy) -> DeliveryAttempt:
        body = serialize_payload(build_envelope(sub, event))
        signature = sign(body, sub.secret)
        headers = self._build_headers(sub, event, signature)
        delays = policy.schedule()

        state = DeliveryOutcome.pending
        attempt: Optional[DeliveryAttempt] = None
        for number in range(1, policy.max_attempts + 1):
            started = time.perf_counter()
            status_code: Optional[int] = None
            error: Optional[str] = None
            try:
                status_code = await self._send(sub.target_url, body, headers)
            except TransportError as e:
                status_code = e.status_code
                error = e.message

            state = transition(state, next_outcome(success=error is None, attempt=number, policy=policy))
            attempt = DeliveryAttempt(
                webhook_id=sub.id,
                event_id=event.id,
                event_type=event.type.value,
                idempotency_key=event.idempotency_key,
                attempt_number=number,
                request_signature=signature,
                response_status=status_code,
                outcome=state,
                error=error,
                duration_ms=(time.perf_counter() - started) * 1000,
            )
            await self._record(attempt)

            if state != DeliveryOutcome.retrying:
                break
            await self._sleep(delays[number - 1])

        assert attempt is not None
        if attempt.outcome == DeliveryOutcome.abandoned:
            logger.warning(
                f"Webhook {sub.id} abandoned {event.type.value} id={event.id} after {attempt.attempt_number} attempt(s): {attempt.error}"
            )
        return attempt

    async def _record(self, attempt: DeliveryAttempt) -> None:
        log_webhook_delivery(
            attempt.webhook_id,
            attempt.event_type,
            attempt.attempt_number,
            attempt.outcome.value,
            attempt.response_status,
        )
        try:
            await self._attempts.append(attempt)
        except Exception as e:
            logger.error(f"Could not record delivery attempt {attempt.id} for webhook {attempt.webhook_id}: {e}")
