"""Request / response models for the v1 API."""

from __future__ import annotations

from datetime import datetime  # noqa: TC003 - pydantic needs this at runtime
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, Field

from omniagent.models.base import as_utc

if TYPE_CHECKING:
    from omniagent.credentials.types import ConnectionStatus
    from omniagent.models.webhook import DeliveryAttempt, WebhookSubscription


# ---------------------------------------------------------------------------
# Integrations
# ---------------------------------------------------------------------------


class AuthorizationUrlResponse(BaseModel):
    provider: str
    url: str


class OAuthCallbackRequest(BaseModel):
    """Code and state returned by the provider redirect."""

    code: str = Field(min_length=1)
    state: str = Field(min_length=1)


class ConnectionResponse(BaseModel):
    provider: str
    state: str
    connected: bool
    expires_at: datetime | None = None
    scope: str | None = None

    @classmethod
    def from_status(cls, status: ConnectionStatus) -> ConnectionResponse:
        return cls(
            provider=status.provider,
            state=status.state.value,
            connected=status.connected,
            expires_at=status.expires_at,
            scope=status.scope,
        )


# ---------------------------------------------------------------------------
# Webhooks
# ---------------------------------------------------------------------------


class SubscriptionCreateRequest(BaseModel):
    url: str
    events: list[str]


class SubscriptionUpdateRequest(BaseModel):
    url: str | None = None
    events: list[str] | None = None
    active: bool | None = None


class SubscriptionResponse(BaseModel):
    id: str
    url: str
    events: list[str]
    active: bool
    last_triggered: datetime | None = None
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_model(cls, sub: WebhookSubscription) -> SubscriptionResponse:
        return cls(
            id=sub.id,
            url=sub.url,
            events=list(sub.events),
            active=sub.active,
            last_triggered=as_utc(sub.last_triggered),
            created_at=as_utc(sub.created_at),  # type: ignore[arg-type]
            updated_at=as_utc(sub.updated_at),  # type: ignore[arg-type]
        )


class SubscriptionCreatedResponse(SubscriptionResponse):
    """Creation response; the only place the signing secret is ever returned."""

    secret: str


class WebhookTestRequest(BaseModel):
    url: str


class WebhookTestResponse(BaseModel):
    success: bool
    status_code: int
    message: str


class DeliveryAttemptResponse(BaseModel):
    id: str
    subscription_id: str
    event: str
    payload: dict[str, Any]
    response_status: int
    response_body: str
    success: bool
    attempt: int
    created_at: datetime

    @classmethod
    def from_model(cls, row: DeliveryAttempt) -> DeliveryAttemptResponse:
        return cls(
            id=row.id,
            subscription_id=row.subscription_id,
            event=row.event,
            payload=row.payload,
            response_status=row.response_status,
            response_body=row.response_body,
            success=row.success,
            attempt=row.attempt,
            created_at=as_utc(row.created_at),  # type: ignore[arg-type]
        )


class PublishEventRequest(BaseModel):
    event: str
    data: Any = Field(default_factory=dict)


class PublishEventResponse(BaseModel):
    event: str
    scheduled: int
