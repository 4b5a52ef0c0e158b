"""Tests for CredentialManager — code exchange, refresh-before-use, disconnect.

Provider token endpoints are served by ``httpx.MockTransport``; time comes
from the ``clock`` fixture so expiry is exact.
"""

from __future__ import annotations

import asyncio
import base64
from datetime import timedelta
from urllib.parse import parse_qs

import httpx
import pytest
from sqlalchemy import select

from omniagent.config.settings import DatabaseConfig, OAuthConfig, ProviderClientConfig
from omniagent.credentials.service import CredentialManager
from omniagent.credentials.types import ConnectionState
from omniagent.datastore.client import Datastore
from omniagent.errors.credential_errors import (
    MissingCredentialsError,
    NotConnectedError,
    ReauthorizationRequiredError,
    TokenExchangeError,
    TokenRefreshError,
    UnsupportedProviderError,
)
from omniagent.metrics.collector import EngineMetrics
from omniagent.models import Base
from omniagent.models.base import as_utc
from omniagent.models.provider_credential import ProviderCredential

USER_ID = "user-1"
ALL_PROVIDERS = ["gmail", "linkedin", "twitter", "facebook"]

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _form(request: httpx.Request) -> dict[str, str]:
    return {k: v[0] for k, v in parse_qs(request.content.decode()).items()}


class TokenEndpoint:
    """Records token requests and answers from a queue of responses."""

    def __init__(self, *responses: httpx.Response) -> None:
        self.requests: list[httpx.Request] = []
        self._responses = list(responses)

    def push(self, *responses: httpx.Response) -> None:
        self._responses.extend(responses)

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if not self._responses:
            return httpx.Response(500, text="unexpected token request")
        return self._responses.pop(0)

    @property
    def forms(self) -> list[dict[str, str]]:
        return [_form(r) for r in self.requests]


def _tokens(
    access: str = "at-1", refresh: str | None = "rt-1", expires_in: int | None = 3600
) -> httpx.Response:
    body: dict = {"access_token": access, "token_type": "Bearer"}
    if refresh is not None:
        body["refresh_token"] = refresh
    if expires_in is not None:
        body["expires_in"] = expires_in
    return httpx.Response(200, json=body)


@pytest.fixture
def endpoint() -> TokenEndpoint:
    return TokenEndpoint()


@pytest.fixture
async def manager(datastore, oauth_config, endpoint, clock):
    mgr = CredentialManager(
        datastore,
        oauth_config,
        transport=httpx.MockTransport(endpoint),
        clock=clock,
    )
    await mgr.connect()
    yield mgr
    await mgr.close()


async def _stored(datastore, provider: str) -> ProviderCredential | None:
    async with datastore.session() as session:
        result = await session.execute(
            select(ProviderCredential).where(
                ProviderCredential.user_id == USER_ID,
                ProviderCredential.provider == provider,
            )
        )
        return result.scalar_one_or_none()


async def _connect(manager, endpoint, provider: str = "gmail", **token_kwargs) -> None:
    endpoint.push(_tokens(**token_kwargs))
    await manager.exchange_code_for_tokens(USER_ID, provider, "auth-code")
    endpoint.requests.clear()


# ---------------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------------


class TestLifecycle:
    async def test_not_connected_by_default(self, datastore, oauth_config) -> None:
        mgr = CredentialManager(datastore, oauth_config)
        assert mgr.is_connected is False

    async def test_connect_and_close(self, datastore, oauth_config) -> None:
        mgr = CredentialManager(datastore, oauth_config)
        await mgr.connect()
        assert mgr.is_connected is True
        await mgr.close()
        assert mgr.is_connected is False

    async def test_close_idempotent(self, datastore, oauth_config) -> None:
        mgr = CredentialManager(datastore, oauth_config)
        await mgr.close()
        assert mgr.is_connected is False

    async def test_exchange_requires_connect(self, datastore, oauth_config) -> None:
        mgr = CredentialManager(datastore, oauth_config)
        with pytest.raises(RuntimeError, match="not connected"):
            await mgr.exchange_code_for_tokens(USER_ID, "gmail", "code")

    async def test_refresh_margin_from_config(self, datastore) -> None:
        mgr = CredentialManager(datastore, OAuthConfig(refresh_margin_seconds=60))
        assert mgr.refresh_margin == timedelta(seconds=60)


# ---------------------------------------------------------------------------
# Authorization URL
# ---------------------------------------------------------------------------


class TestBuildAuthorizationUrl:
    async def test_state_names_the_provider(self, manager) -> None:
        url = manager.build_authorization_url("linkedin")
        assert url.startswith("https://www.linkedin.com/oauth/v2/authorization?")
        assert "state=linkedin" in url
        assert "client_id=li-id" in url
        assert "response_type=code" in url

    async def test_unknown_provider(self, manager) -> None:
        with pytest.raises(UnsupportedProviderError):
            manager.build_authorization_url("myspace")

    async def test_missing_client_id(self, datastore) -> None:
        mgr = CredentialManager(datastore, OAuthConfig())
        with pytest.raises(MissingCredentialsError, match="client_id") as exc_info:
            mgr.build_authorization_url("gmail")
        assert exc_info.value.status_code == 500


# ---------------------------------------------------------------------------
# Code exchange
# ---------------------------------------------------------------------------


class TestExchangeCode:
    async def test_stores_tokens(self, manager, endpoint, datastore, clock) -> None:
        endpoint.push(_tokens(expires_in=3600))
        cred = await manager.exchange_code_for_tokens(USER_ID, "gmail", "auth-code")

        assert cred.connected is True
        assert cred.access_token == "at-1"
        assert cred.refresh_token == "rt-1"

        stored = await _stored(datastore, "gmail")
        assert stored is not None
        assert as_utc(stored.expires_at) == clock.now + timedelta(seconds=3600)

        form = endpoint.forms[0]
        assert form["grant_type"] == "authorization_code"
        assert form["code"] == "auth-code"
        assert form["redirect_uri"] == "https://app.test/oauth-callback"
        assert form["client_id"] == "gmail-id"
        assert form["client_secret"] == "gmail-secret"
        assert str(endpoint.requests[0].url) == "https://oauth2.googleapis.com/token"

    async def test_no_expires_in_stores_null_expiry(self, manager, endpoint, datastore) -> None:
        endpoint.push(_tokens(expires_in=None))
        await manager.exchange_code_for_tokens(USER_ID, "linkedin", "code")
        stored = await _stored(datastore, "linkedin")
        assert stored.expires_at is None

    async def test_reconnect_overwrites(self, manager, endpoint, datastore) -> None:
        await _connect(manager, endpoint, access="old", refresh="old-rt")
        endpoint.push(_tokens(access="new", refresh=None))
        await manager.exchange_code_for_tokens(USER_ID, "gmail", "code-2")

        stored = await _stored(datastore, "gmail")
        assert stored.access_token == "new"
        assert stored.refresh_token is None

    async def test_rejected_code_writes_nothing(self, manager, endpoint, datastore) -> None:
        endpoint.push(httpx.Response(400, text='{"error":"invalid_grant"}'))
        with pytest.raises(TokenExchangeError) as exc_info:
            await manager.exchange_code_for_tokens(USER_ID, "gmail", "bad-code")
        assert "invalid_grant" in exc_info.value.provider_body
        assert await _stored(datastore, "gmail") is None

    async def test_rejected_code_leaves_existing_row(self, manager, endpoint, datastore) -> None:
        await _connect(manager, endpoint, access="keep-me")
        before = await _stored(datastore, "gmail")

        endpoint.push(httpx.Response(401, text="nope"))
        with pytest.raises(TokenExchangeError):
            await manager.exchange_code_for_tokens(USER_ID, "gmail", "bad-code")

        after = await _stored(datastore, "gmail")
        assert after.access_token == before.access_token == "keep-me"
        assert after.refresh_token == before.refresh_token
        assert after.expires_at == before.expires_at
        assert after.connected is True

    async def test_malformed_response(self, manager, endpoint) -> None:
        endpoint.push(httpx.Response(200, text="not json"))
        with pytest.raises(TokenExchangeError, match="malformed"):
            await manager.exchange_code_for_tokens(USER_ID, "gmail", "code")

    async def test_empty_access_token_is_malformed(self, manager, endpoint, datastore) -> None:
        endpoint.push(httpx.Response(200, json={"access_token": "", "expires_in": 3600}))
        with pytest.raises(TokenExchangeError, match="malformed"):
            await manager.exchange_code_for_tokens(USER_ID, "gmail", "code")
        assert await _stored(datastore, "gmail") is None

    async def test_concurrent_first_exchanges_share_one_row(
        self, tmp_path, oauth_config, clock
    ) -> None:
        async def slow_endpoint(request: httpx.Request) -> httpx.Response:
            await asyncio.sleep(0.05)
            return _tokens(access=_form(request)["code"])

        ds = Datastore(DatabaseConfig(dsn=f"sqlite+aiosqlite:///{tmp_path}/creds.db"))
        await ds.open(base=Base)
        mgr = CredentialManager(
            ds, oauth_config, transport=httpx.MockTransport(slow_endpoint), clock=clock
        )
        await mgr.connect()

        results = await asyncio.gather(
            mgr.exchange_code_for_tokens(USER_ID, "gmail", "code-a"),
            mgr.exchange_code_for_tokens(USER_ID, "gmail", "code-b"),
        )
        assert all(c.connected for c in results)

        async with ds.session() as session:
            rows = (await session.execute(select(ProviderCredential))).scalars().all()
        assert len(rows) == 1
        assert rows[0].access_token in {"code-a", "code-b"}

        await mgr.close()
        await ds.close()

    async def test_unreachable_endpoint(self, datastore, oauth_config) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        mgr = CredentialManager(datastore, oauth_config, transport=httpx.MockTransport(handler))
        await mgr.connect()
        with pytest.raises(TokenExchangeError, match="unreachable"):
            await mgr.exchange_code_for_tokens(USER_ID, "gmail", "code")
        await mgr.close()

    async def test_missing_client_secret(self, datastore) -> None:
        config = OAuthConfig(gmail=ProviderClientConfig(client_id="cid"))
        mgr = CredentialManager(datastore, config)
        await mgr.connect()
        with pytest.raises(MissingCredentialsError, match="client_secret"):
            await mgr.exchange_code_for_tokens(USER_ID, "gmail", "code")
        await mgr.close()

    async def test_twitter_uses_basic_auth(self, manager, endpoint) -> None:
        endpoint.push(_tokens())
        await manager.exchange_code_for_tokens(USER_ID, "twitter", "code")

        request = endpoint.requests[0]
        expected = base64.b64encode(b"tw-id:tw-secret").decode()
        assert request.headers["Authorization"] == f"Basic {expected}"
        assert "client_secret" not in endpoint.forms[0]


# ---------------------------------------------------------------------------
# Refresh-before-use
# ---------------------------------------------------------------------------


class TestGetValidAccessToken:
    @pytest.mark.parametrize("provider", ALL_PROVIDERS)
    async def test_fresh_token_makes_no_request(self, manager, endpoint, provider) -> None:
        await _connect(manager, endpoint, provider, access="fresh", expires_in=3600)
        token = await manager.get_valid_access_token(USER_ID, provider)
        assert token == "fresh"
        assert endpoint.requests == []

    async def test_just_outside_margin_is_still_fresh(self, manager, endpoint, clock) -> None:
        await _connect(manager, endpoint, expires_in=3600)
        clock.advance(3600 - 301)
        assert await manager.get_valid_access_token(USER_ID, "gmail") == "at-1"
        assert endpoint.requests == []

    async def test_no_expiry_never_refreshes(self, manager, endpoint, clock) -> None:
        await _connect(manager, endpoint, expires_in=None)
        clock.advance(10 * 365 * 24 * 3600)
        assert await manager.get_valid_access_token(USER_ID, "gmail") == "at-1"
        assert endpoint.requests == []

    @pytest.mark.parametrize("provider", ["gmail", "linkedin", "twitter"])
    async def test_refreshes_within_margin(
        self, manager, endpoint, datastore, clock, provider
    ) -> None:
        await _connect(manager, endpoint, provider, expires_in=3600)
        old_expiry = as_utc((await _stored(datastore, provider)).expires_at)
        clock.advance(3600 - 120)

        endpoint.push(_tokens(access="at-2", refresh=None, expires_in=3600))
        token = await manager.get_valid_access_token(USER_ID, provider)

        assert token == "at-2"
        assert len(endpoint.requests) == 1
        form = endpoint.forms[0]
        assert form["grant_type"] == "refresh_token"
        assert form["refresh_token"] == "rt-1"

        stored = await _stored(datastore, provider)
        assert stored.access_token == "at-2"
        assert as_utc(stored.expires_at) > old_expiry
        # Provider did not rotate the refresh token, so the old one is kept.
        assert stored.refresh_token == "rt-1"

    async def test_rotated_refresh_token_is_stored(
        self, manager, endpoint, datastore, clock
    ) -> None:
        await _connect(manager, endpoint, expires_in=600)
        clock.advance(500)
        endpoint.push(_tokens(access="at-2", refresh="rt-2"))
        await manager.get_valid_access_token(USER_ID, "gmail")
        assert (await _stored(datastore, "gmail")).refresh_token == "rt-2"

    async def test_facebook_exchanges_current_token(self, manager, endpoint, clock) -> None:
        await _connect(manager, endpoint, "facebook", access="short", refresh=None, expires_in=600)
        clock.advance(400)

        endpoint.push(_tokens(access="long-lived", refresh=None, expires_in=60 * 24 * 3600))
        token = await manager.get_valid_access_token(USER_ID, "facebook")

        assert token == "long-lived"
        form = endpoint.forms[0]
        assert form["grant_type"] == "fb_exchange_token"
        assert form["fb_exchange_token"] == "short"
        assert form["client_id"] == "fb-id"

    async def test_facebook_expired_token_requires_reauth(
        self, manager, endpoint, clock
    ) -> None:
        await _connect(manager, endpoint, "facebook", refresh=None, expires_in=600)
        clock.advance(601)
        with pytest.raises(ReauthorizationRequiredError):
            await manager.get_valid_access_token(USER_ID, "facebook")
        assert endpoint.requests == []

    async def test_no_refresh_token_requires_reauth(self, manager, endpoint, clock) -> None:
        await _connect(manager, endpoint, refresh=None, expires_in=600)
        clock.advance(400)
        with pytest.raises(ReauthorizationRequiredError) as exc_info:
            await manager.get_valid_access_token(USER_ID, "gmail")
        assert exc_info.value.status_code == 409
        assert endpoint.requests == []

    async def test_rejected_refresh_leaves_row_untouched(
        self, manager, endpoint, datastore, clock
    ) -> None:
        await _connect(manager, endpoint, expires_in=600)
        before = await _stored(datastore, "gmail")
        clock.advance(400)

        endpoint.push(httpx.Response(400, text='{"error":"invalid_grant"}'))
        with pytest.raises(TokenRefreshError) as exc_info:
            await manager.get_valid_access_token(USER_ID, "gmail")
        assert "invalid_grant" in exc_info.value.provider_body

        after = await _stored(datastore, "gmail")
        assert after.access_token == before.access_token
        assert after.refresh_token == before.refresh_token
        assert after.expires_at == before.expires_at
        assert after.connected is True

    async def test_concurrent_callers_share_one_refresh(self, manager, endpoint, clock) -> None:
        await _connect(manager, endpoint, expires_in=600)
        clock.advance(400)
        endpoint.push(_tokens(access="at-2", expires_in=3600))

        tokens = await asyncio.gather(
            *(manager.get_valid_access_token(USER_ID, "gmail") for _ in range(5))
        )
        assert tokens == ["at-2"] * 5
        assert len(endpoint.requests) == 1

    async def test_refresh_lock_released_after_use(self, manager, endpoint, clock) -> None:
        await _connect(manager, endpoint, expires_in=600)
        clock.advance(400)
        endpoint.push(_tokens(access="at-2"))

        assert await manager.get_valid_access_token(USER_ID, "gmail") == "at-2"
        assert len(manager._refresh_locks) == 0

    async def test_reconnect_during_refresh_is_kept(self, datastore, oauth_config, clock) -> None:
        async def handler(request: httpx.Request) -> httpx.Response:
            if _form(request)["grant_type"] != "refresh_token":
                return _tokens(expires_in=600)
            # A new code exchange lands while the refresh is in flight.
            async with datastore.session() as session:
                row = (await session.execute(select(ProviderCredential))).scalar_one()
                row.access_token = "reconnected"
                row.expires_at = clock() + timedelta(hours=1)
                await session.commit()
            return _tokens(access="refreshed")

        mgr = CredentialManager(
            datastore, oauth_config, transport=httpx.MockTransport(handler), clock=clock
        )
        await mgr.connect()
        await mgr.exchange_code_for_tokens(USER_ID, "gmail", "code")
        clock.advance(400)

        assert await mgr.get_valid_access_token(USER_ID, "gmail") == "reconnected"
        assert (await _stored(datastore, "gmail")).access_token == "reconnected"
        await mgr.close()

    async def test_never_connected(self, manager) -> None:
        with pytest.raises(NotConnectedError):
            await manager.get_valid_access_token(USER_ID, "gmail")

    async def test_users_are_isolated(self, manager, endpoint) -> None:
        await _connect(manager, endpoint)
        with pytest.raises(NotConnectedError):
            await manager.get_valid_access_token("someone-else", "gmail")

    async def test_unsupported_provider(self, manager) -> None:
        with pytest.raises(UnsupportedProviderError):
            await manager.get_valid_access_token(USER_ID, "myspace")


# ---------------------------------------------------------------------------
# Disconnect
# ---------------------------------------------------------------------------


class TestDisconnect:
    async def test_disconnect_clears_tokens(self, manager, endpoint, datastore) -> None:
        await _connect(manager, endpoint)
        await manager.disconnect(USER_ID, "gmail")

        stored = await _stored(datastore, "gmail")
        assert stored.connected is False
        assert stored.access_token is None
        assert stored.refresh_token is None
        assert stored.expires_at is None

        with pytest.raises(NotConnectedError):
            await manager.get_valid_access_token(USER_ID, "gmail")

    async def test_disconnect_twice(self, manager, endpoint) -> None:
        await _connect(manager, endpoint)
        await manager.disconnect(USER_ID, "gmail")
        await manager.disconnect(USER_ID, "gmail")

    async def test_disconnect_never_connected(self, manager, datastore) -> None:
        await manager.disconnect(USER_ID, "twitter")
        assert await _stored(datastore, "twitter") is None

    async def test_reconnect_after_disconnect(self, manager, endpoint) -> None:
        await _connect(manager, endpoint)
        await manager.disconnect(USER_ID, "gmail")
        await _connect(manager, endpoint, access="again")
        assert await manager.get_valid_access_token(USER_ID, "gmail") == "again"


# ---------------------------------------------------------------------------
# Status
# ---------------------------------------------------------------------------


class TestStatus:
    async def test_list_connections(self, manager, endpoint) -> None:
        await _connect(manager, endpoint, "linkedin")
        statuses = {s.provider: s for s in await manager.list_connections(USER_ID)}

        assert set(statuses) == set(ALL_PROVIDERS)
        assert statuses["linkedin"].state is ConnectionState.CONNECTED
        assert statuses["linkedin"].connected is True
        assert statuses["gmail"].state is ConnectionState.DISCONNECTED
        assert statuses["gmail"].connected is False

    async def test_reauth_required_state(self, manager, endpoint, clock) -> None:
        await _connect(manager, endpoint, refresh=None, expires_in=600)
        clock.advance(600)
        status = await manager.get_status(USER_ID, "gmail")
        assert status.state is ConnectionState.REAUTH_REQUIRED

    async def test_status_after_disconnect(self, manager, endpoint) -> None:
        await _connect(manager, endpoint)
        await manager.disconnect(USER_ID, "gmail")
        status = await manager.get_status(USER_ID, "gmail")
        assert status.state is ConnectionState.DISCONNECTED
        assert status.expires_at is None


# ---------------------------------------------------------------------------
# Metrics
# ---------------------------------------------------------------------------


class TestMetrics:
    async def test_exchange_and_refresh_counted(
        self, datastore, oauth_config, endpoint, clock
    ) -> None:
        metrics = EngineMetrics()
        mgr = CredentialManager(
            datastore,
            oauth_config,
            metrics=metrics,
            transport=httpx.MockTransport(endpoint),
            clock=clock,
        )
        await mgr.connect()
        await _connect(mgr, endpoint, expires_in=600)
        clock.advance(400)
        endpoint.push(httpx.Response(400, text="bad"))
        with pytest.raises(TokenRefreshError):
            await mgr.get_valid_access_token(USER_ID, "gmail")
        await mgr.close()

        registry = metrics.registry
        assert (
            registry.get_sample_value(
                "omniagent_token_exchange_total", {"provider": "gmail", "outcome": "ok"}
            )
            == 1.0
        )
        assert (
            registry.get_sample_value(
                "omniagent_token_refresh_total", {"provider": "gmail", "outcome": "error"}
            )
            == 1.0
        )
