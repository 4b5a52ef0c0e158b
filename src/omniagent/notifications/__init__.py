"""Notifications — signed webhook delivery of application events.

Provides:
- ``WebhookDispatcher`` — subscriptions, fire-and-forget fan-out, retries, delivery log
- ``WebhookEvent`` / ``WebhookEnvelope`` — event kinds and the wire envelope
- ``sign_payload`` / ``verify_signature`` — HMAC-SHA256 body signatures
"""

from __future__ import annotations

from omniagent.notifications.events import WebhookEnvelope, WebhookEvent
from omniagent.notifications.signing import sign_payload, verify_signature
from omniagent.notifications.webhook import WebhookDispatcher, WebhookTestResult

__all__ = [
    "WebhookDispatcher",
    "WebhookEnvelope",
    "WebhookEvent",
    "WebhookTestResult",
    "sign_payload",
    "verify_signature",
]
