"""Event kinds and the signed envelope delivered to webhook subscribers."""

from __future__ import annotations

import enum
import json
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from datetime import datetime


class WebhookEvent(enum.StrEnum):
    """Application events a subscription can listen for."""

    LEAD_CREATED = "lead.created"
    LEAD_UPDATED = "lead.updated"
    LEAD_CONVERTED = "lead.converted"
    EMAIL_SENT = "email.sent"
    EMAIL_OPENED = "email.opened"
    EMAIL_REPLIED = "email.replied"
    SOCIAL_POSTED = "social.posted"
    CAMPAIGN_COMPLETED = "campaign.completed"
    TEST_PING = "test.ping"


def format_timestamp(value: datetime) -> str:
    """ISO-8601 UTC with millisecond precision and a ``Z`` suffix."""
    return value.isoformat(timespec="milliseconds").replace("+00:00", "Z")


@dataclass(frozen=True)
class WebhookEnvelope:
    """The unit of data POSTed to a subscriber.

    ``to_json`` is the exact byte string that is signed and sent.
    """

    event: str
    timestamp: str
    webhook_id: str
    data: Any = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Serialize to the wire field names."""
        return {
            "event": self.event,
            "timestamp": self.timestamp,
            "data": self.data,
            "webhookId": self.webhook_id,
        }

    def to_json(self) -> bytes:
        """Compact UTF-8 JSON; non-JSON values (datetimes, UUIDs) become strings."""
        return json.dumps(
            self.to_dict(), separators=(",", ":"), ensure_ascii=False, default=str
        ).encode("utf-8")
