"""Webhook payload signatures (HMAC-SHA256 over the exact request body).

Receivers recompute the signature from the raw body and their copy of the
subscription secret and compare it with ``X-Webhook-Signature``.
"""

from __future__ import annotations

from omniagent.utils.crypto import constant_time_equals, hmac_sha256_hex

SIGNATURE_HEADER = "X-Webhook-Signature"
EVENT_HEADER = "X-Webhook-Event"


def sign_payload(body: bytes, secret: str) -> str:
    """Hex HMAC-SHA256 of *body* keyed by *secret*."""
    return hmac_sha256_hex(secret, body)


def verify_signature(body: bytes, signature: str, secret: str) -> bool:
    """Check a received signature against the body, in constant time."""
    return constant_time_equals(sign_payload(body, secret), signature)
