"""
Webhook Subscription API Endpoints.

Owner-scoped CRUD over webhook subscriptions plus test delivery, secret
rotation and delivery history. The signing secret is returned only by create
and rotate-secret.
"""

from typing import List

from fastapi import APIRouter, Query, Response

from agentrelay.core.logging_config import get_logger
from agentrelay.server.auth import CurrentUserDep
from agentrelay.server.schemas import (
    DeliveryAttemptOut,
    WebhookCreate,
    WebhookCreated,
    WebhookOut,
    WebhookUpdate,
)
from agentrelay.server.services.deps import PlatformDep

logger = get_logger(__name__)
router = APIRouter()


@router.post(
    "/",
    response_model=WebhookCreated,
    status_code=201,
    summary="Create Webhook",
    description="Create a subscription; the response carries the signing secret, shown only once.",
)
async def create_webhook(webhook_in: WebhookCreate, platform: PlatformDep, user: CurrentUserDep):
    webhook = await platform.webhooks.create(
        user.id,
        name=webhook_in.name,
        description=webhook_in.description,
        target_url=webhook_in.target_url,
        events=webhook_in.events,
        headers=webhook_in.headers,
        is_active=webhook_in.is_active,
    )
    return WebhookCreated.from_domain(webhook)


@router.get("/", response_model=List[WebhookOut], summary="List Webhooks")
async def list_webhooks(platform: PlatformDep, user: CurrentUserDep):
    return [WebhookOut.from_domain(w) for w in await platform.webhooks.list(user.id)]


@router.get("/{webhook_id}", response_model=WebhookOut, summary="Get Webhook")
async def get_webhook(webhook_id: str, platform: PlatformDep, user: CurrentUserDep):
    return WebhookOut.from_domain(await platform.webhooks.get(webhook_id, user.id))


@router.put(
    "/{webhook_id}",
    response_model=WebhookOut,
    summary="Update Webhook",
    description="Update the given fields; omitted fields and the secret are preserved.",
)
async def update_webhook(webhook_id: str, webhook_in: WebhookUpdate, platform: PlatformDep, user: CurrentUserDep):
    webhook = await platform.webhooks.update(webhook_id, user.id, **webhook_in.model_dump(exclude_none=True))
    return WebhookOut.from_domain(webhook)


@router.delete("/{webhook_id}", status_code=204, summary="Delete Webhook")
async def delete_webhook(webhook_id: str, platform: PlatformDep, user: CurrentUserDep):
    await platform.webhooks.delete(webhook_id, user.id)
    return Response(status_code=204)


@router.post(
    "/{webhook_id}/test",
    response_model=DeliveryAttemptOut,
    summary="Test Webhook",
    description="Send one synthetic webhook.test delivery immediately, without retries.",
)
async def test_webhook(webhook_id: str, platform: PlatformDep, user: CurrentUserDep):
    logger.info(f"Test delivery requested for webhook {webhook_id} by {user.id}")
    attempt = await platform.webhooks.test(webhook_id, user.id)
    return DeliveryAttemptOut.from_domain(attempt)


@router.post("/{webhook_id}/rotate-secret", response_model=WebhookCreated, summary="Rotate Webhook Secret")
async def rotate_webhook_secret(webhook_id: str, platform: PlatformDep, user: CurrentUserDep):
    return WebhookCreated.from_domain(await platform.webhooks.rotate_secret(webhook_id, user.id))


@router.get(
    "/{webhook_id}/deliveries",
    response_model=List[DeliveryAttemptOut],
    summary="List Deliveries",
    description="List delivery attempts of a subscription, newest first.",
)
async def list_deliveries(
    webhook_id: str,
    platform: PlatformDep,
    user: CurrentUserDep,
    limit: int = Query(default=100, ge=1, le=500),
):
    attempts = await platform.webhooks.list_deliveries(webhook_id, user.id, limit=limit)
    return [DeliveryAttemptOut.from_domain(a) for a in attempts]
