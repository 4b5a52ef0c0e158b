"""V1 webhook endpoints.

Subscription management, test pings, the delivery log and event publishing.
"""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, Query

from omniagent.api.dependencies import get_webhooks, require_user
from omniagent.api.middleware.auth import UserContext  # noqa: TC001
from omniagent.api.v1.schemas import (
    DeliveryAttemptResponse,
    PublishEventRequest,
    PublishEventResponse,
    SubscriptionCreatedResponse,
    SubscriptionCreateRequest,
    SubscriptionResponse,
    SubscriptionUpdateRequest,
    WebhookTestRequest,
    WebhookTestResponse,
)
from omniagent.notifications.webhook import WebhookDispatcher  # noqa: TC001

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


# ---------------------------------------------------------------------------
# Subscriptions
# ---------------------------------------------------------------------------


@router.get("")
async def list_webhooks(
    ctx: Annotated[UserContext, Depends(require_user)],
    webhooks: Annotated[WebhookDispatcher, Depends(get_webhooks)],
) -> list[dict]:
    """List the current user's subscriptions."""
    subs = await webhooks.list_subscriptions(ctx.user_id)
    return [SubscriptionResponse.from_model(s).model_dump(mode="json") for s in subs]


@router.post("", status_code=201)
async def create_webhook(
    body: SubscriptionCreateRequest,
    ctx: Annotated[UserContext, Depends(require_user)],
    webhooks: Annotated[WebhookDispatcher, Depends(get_webhooks)],
) -> dict:
    """Register a subscription. The response is the only place the secret appears."""
    sub, secret = await webhooks.register_subscription(ctx.user_id, body.url, body.events)
    base = SubscriptionResponse.from_model(sub).model_dump()
    return SubscriptionCreatedResponse(**base, secret=secret).model_dump(mode="json")


@router.post("/test")
async def test_webhook(
    body: WebhookTestRequest,
    _ctx: Annotated[UserContext, Depends(require_user)],
    webhooks: Annotated[WebhookDispatcher, Depends(get_webhooks)],
) -> dict:
    """Send a one-off ``test.ping`` to a URL and report how it answered."""
    result = await webhooks.test_subscription(body.url)
    return WebhookTestResponse(
        success=result.success, status_code=result.status_code, message=result.message
    ).model_dump()


@router.post("/events", status_code=202)
async def publish_event(
    body: PublishEventRequest,
    ctx: Annotated[UserContext, Depends(require_user)],
    webhooks: Annotated[WebhookDispatcher, Depends(get_webhooks)],
) -> dict:
    """Publish an event to the current user's subscribers; delivery is asynchronous."""
    scheduled = await webhooks.publish(ctx.user_id, body.event, body.data)
    return PublishEventResponse(event=body.event, scheduled=scheduled).model_dump()


@router.get("/{subscription_id}")
async def get_webhook(
    subscription_id: str,
    ctx: Annotated[UserContext, Depends(require_user)],
    webhooks: Annotated[WebhookDispatcher, Depends(get_webhooks)],
) -> dict:
    sub = await webhooks.get_subscription(ctx.user_id, subscription_id)
    return SubscriptionResponse.from_model(sub).model_dump(mode="json")


@router.patch("/{subscription_id}")
async def update_webhook(
    subscription_id: str,
    body: SubscriptionUpdateRequest,
    ctx: Annotated[UserContext, Depends(require_user)],
    webhooks: Annotated[WebhookDispatcher, Depends(get_webhooks)],
) -> dict:
    """Change URL, events or the active flag."""
    sub = await webhooks.update_subscription(
        ctx.user_id,
        subscription_id,
        url=body.url,
        events=body.events,
        active=body.active,
    )
    return SubscriptionResponse.from_model(sub).model_dump(mode="json")


@router.delete("/{subscription_id}", status_code=204)
async def delete_webhook(
    subscription_id: str,
    ctx: Annotated[UserContext, Depends(require_user)],
    webhooks: Annotated[WebhookDispatcher, Depends(get_webhooks)],
) -> None:
    await webhooks.delete_subscription(ctx.user_id, subscription_id)


# ---------------------------------------------------------------------------
# Delivery log
# ---------------------------------------------------------------------------


@router.get("/{subscription_id}/logs")
async def webhook_logs(
    subscription_id: str,
    ctx: Annotated[UserContext, Depends(require_user)],
    webhooks: Annotated[WebhookDispatcher, Depends(get_webhooks)],
    limit: Annotated[int, Query(ge=1, le=500)] = 50,
) -> list[dict]:
    """Delivery attempts for one subscription, newest first."""
    await webhooks.get_subscription(ctx.user_id, subscription_id)
    rows = await webhooks.list_delivery_attempts(ctx.user_id, subscription_id, limit=limit)
    return [DeliveryAttemptResponse.from_model(r).model_dump(mode="json") for r in rows]
