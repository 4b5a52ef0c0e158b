"""Tests for event kinds, the wire envelope and payload signatures."""

from __future__ import annotations

import json
from datetime import UTC, datetime

import pytest

from omniagent.notifications.events import WebhookEnvelope, WebhookEvent, format_timestamp
from omniagent.notifications.signing import sign_payload, verify_signature
from omniagent.utils.crypto import random_secret


class TestWebhookEvent:
    def test_known_kinds(self) -> None:
        assert {e.value for e in WebhookEvent} == {
            "lead.created",
            "lead.updated",
            "lead.converted",
            "email.sent",
            "email.opened",
            "email.replied",
            "social.posted",
            "campaign.completed",
            "test.ping",
        }

    def test_unknown_kind(self) -> None:
        with pytest.raises(ValueError):
            WebhookEvent("lead.deleted")


class TestEnvelope:
    def test_timestamp_format(self) -> None:
        ts = format_timestamp(datetime(2024, 3, 1, 9, 30, 5, 123456, tzinfo=UTC))
        assert ts == "2024-03-01T09:30:05.123Z"

    def test_wire_field_names(self) -> None:
        env = WebhookEnvelope(
            event="lead.created",
            timestamp="2024-03-01T09:30:05.123Z",
            webhook_id="wh-1",
            data={"id": 7},
        )
        assert json.loads(env.to_json()) == {
            "event": "lead.created",
            "timestamp": "2024-03-01T09:30:05.123Z",
            "data": {"id": 7},
            "webhookId": "wh-1",
        }

    def test_non_json_values_become_strings(self) -> None:
        when = datetime(2024, 1, 1, tzinfo=UTC)
        env = WebhookEnvelope(event="email.sent", timestamp="t", webhook_id="w", data={"at": when})
        assert json.loads(env.to_json())["data"]["at"] == str(when)

    def test_utf8_body(self) -> None:
        env = WebhookEnvelope(event="email.sent", timestamp="t", webhook_id="w", data={"n": "Zoë"})
        assert "Zoë".encode() in env.to_json()


class TestSigning:
    def test_deterministic(self) -> None:
        body = b'{"event":"lead.created"}'
        assert sign_payload(body, "s3cret") == sign_payload(body, "s3cret")
        assert len(sign_payload(body, "s3cret")) == 64

    def test_known_vector(self) -> None:
        # RFC 4231 test case 2
        assert (
            sign_payload(b"what do ya want for nothing?", "Jefe")
            == "5bdcc146bf60754e6a042426089575c75a003f089d2739839dec58b964ec3843"
        )

    def test_one_byte_change_changes_signature(self) -> None:
        body = b'{"event":"lead.created","data":{"id":1}}'
        altered = body.replace(b"1", b"2")
        assert sign_payload(body, "k") != sign_payload(altered, "k")

    def test_different_secret_changes_signature(self) -> None:
        assert sign_payload(b"x", "a") != sign_payload(b"x", "b")

    def test_verify(self) -> None:
        body = b"payload"
        sig = sign_payload(body, "k")
        assert verify_signature(body, sig, "k") is True
        assert verify_signature(body + b" ", sig, "k") is False
        assert verify_signature(body, sig, "other") is False


class TestRandomSecret:
    def test_length_and_alphabet(self) -> None:
        secret = random_secret()
        assert len(secret) == 32
        assert secret.isalnum()
        assert secret.isascii()

    def test_unique(self) -> None:
        assert len({random_secret() for _ in range(50)}) == 50
