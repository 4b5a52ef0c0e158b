"""Webhook subscription errors."""

from __future__ import annotations

from omniagent.errors.base import OmniAgentError


class InvalidSubscriptionError(OmniAgentError):
    """A subscription request carried a bad URL or event set."""

    def __init__(self, message: str) -> None:
        super().__init__(message, status_code=400, code="invalid-subscription")


class SubscriptionNotFoundError(OmniAgentError):
    """No subscription exists with the given ID."""

    def __init__(self, subscription_id: str) -> None:
        super().__init__(
            f"webhook subscription not found: {subscription_id}",
            status_code=404,
            code="subscription-not-found",
        )
        self.subscription_id = subscription_id


class UnknownEventError(OmniAgentError, ValueError):
    """An event name outside the supported event kinds was published."""

    def __init__(self, event: str) -> None:
        super().__init__(f"unknown webhook event: {event}", status_code=400, code="unknown-event")
        self.event = event
