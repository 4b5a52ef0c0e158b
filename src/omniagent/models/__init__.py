"""Data models (SQLAlchemy ORM).

Import :data:`ALL_MODELS` for migration and table creation.
"""

from omniagent.models.base import Base, TimestampMixin
from omniagent.models.provider_credential import ProviderCredential
from omniagent.models.webhook import DeliveryAttempt, WebhookSubscription

ALL_MODELS: list[type[Base]] = [
    ProviderCredential,
    WebhookSubscription,
    DeliveryAttempt,
]

__all__ = [
    "ALL_MODELS",
    "Base",
    "DeliveryAttempt",
    "ProviderCredential",
    "TimestampMixin",
    "WebhookSubscription",
]
