"""Tests for provider descriptors and the provider registry."""

from __future__ import annotations

from urllib.parse import parse_qs, urlsplit

import pytest

from omniagent.credentials.providers import (
    FACEBOOK,
    GMAIL,
    TWITTER,
    ClientAuth,
    Provider,
    ProviderDescriptor,
    ProviderRegistry,
    RefreshGrant,
    default_registry,
)
from omniagent.errors.credential_errors import UnsupportedProviderError


def _query(url: str) -> dict[str, str]:
    return {k: v[0] for k, v in parse_qs(urlsplit(url).query).items()}


class TestDescriptors:
    def test_default_registry_has_four_providers(self) -> None:
        assert sorted(default_registry.list_providers()) == [
            "facebook",
            "gmail",
            "linkedin",
            "twitter",
        ]

    def test_authorization_url_params(self) -> None:
        url = GMAIL.authorization_url(
            client_id="cid", redirect_uri="https://app.test/cb", state="gmail"
        )
        assert url.startswith("https://accounts.google.com/o/oauth2/v2/auth?")
        q = _query(url)
        assert q["client_id"] == "cid"
        assert q["redirect_uri"] == "https://app.test/cb"
        assert q["response_type"] == "code"
        assert q["state"] == "gmail"
        assert q["scope"] == " ".join(GMAIL.scopes)
        assert q["access_type"] == "offline"
        assert q["prompt"] == "consent"

    def test_only_gmail_adds_offline_params(self) -> None:
        q = _query(TWITTER.authorization_url(client_id="c", redirect_uri="r", state="twitter"))
        assert "access_type" not in q
        assert "prompt" not in q

    def test_twitter_uses_basic_auth(self) -> None:
        assert TWITTER.client_auth is ClientAuth.BASIC
        assert GMAIL.client_auth is ClientAuth.FORM

    def test_refresh_forms(self) -> None:
        assert GMAIL.refresh_form("rt") == {"grant_type": "refresh_token", "refresh_token": "rt"}
        assert FACEBOOK.refresh_grant is RefreshGrant.TOKEN_EXCHANGE
        assert FACEBOOK.refresh_form("at") == {
            "grant_type": "fb_exchange_token",
            "fb_exchange_token": "at",
        }


class TestProviderRegistry:
    def test_get_is_case_insensitive(self) -> None:
        assert default_registry.get("GMail") is GMAIL
        assert default_registry.get(" twitter ") is TWITTER

    def test_get_unknown_raises(self) -> None:
        with pytest.raises(UnsupportedProviderError, match="myspace") as exc_info:
            default_registry.get("myspace")
        assert exc_info.value.status_code == 400
        assert exc_info.value.provider == "myspace"

    def test_register_replaces(self) -> None:
        registry = ProviderRegistry((GMAIL,))
        custom = ProviderDescriptor(
            provider=Provider.GMAIL,
            authorize_url="https://auth.example/authorize",
            token_url="https://auth.example/token",
            scopes=("a",),
        )
        registry.register(custom)
        assert registry.get("gmail") is custom
        assert registry.list_providers() == ["gmail"]

    def test_empty_registry(self) -> None:
        with pytest.raises(UnsupportedProviderError):
            ProviderRegistry().get("gmail")
