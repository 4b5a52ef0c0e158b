"""Credential manager — OAuth2 code exchange, token storage and refresh.

Every call takes the owning ``user_id`` explicitly; there is no ambient
"current user". Tokens are refreshed *before* use once they are within the
configured safety margin of expiry, so callers always receive a token that
stays valid for at least that margin.

Per connection::

    Disconnected --exchange--> Connected --near expiry--> refreshing
    refreshing --ok--> Connected
    refreshing --no material / rejected--> ReauthRequired
    ReauthRequired --exchange--> Connected
    any --disconnect--> Disconnected
"""

from __future__ import annotations

import asyncio
import logging
import weakref
from datetime import datetime, timedelta
from typing import TYPE_CHECKING

import httpx
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from omniagent.credentials.providers import (
    ClientAuth,
    ProviderDescriptor,
    ProviderRegistry,
    RefreshGrant,
    default_registry,
)
from omniagent.credentials.types import ConnectionState, ConnectionStatus, TokenResponse
from omniagent.errors.credential_errors import (
    MissingCredentialsError,
    NotConnectedError,
    ReauthorizationRequiredError,
    TokenExchangeError,
    TokenRefreshError,
)
from omniagent.models.base import as_utc, utc_now
from omniagent.models.provider_credential import ProviderCredential

if TYPE_CHECKING:
    from collections.abc import Callable

    from sqlalchemy.ext.asyncio import AsyncSession

    from omniagent.config.settings import OAuthConfig, ProviderClientConfig
    from omniagent.datastore.client import Datastore
    from omniagent.metrics.collector import EngineMetrics

logger = logging.getLogger(__name__)


class CredentialManager:
    """Produces currently valid access tokens for (user, provider) pairs.

    Usage::

        manager = CredentialManager(datastore, config.oauth)
        await manager.connect()
        url = manager.build_authorization_url("gmail")
        ...
        await manager.exchange_code_for_tokens(user_id, "gmail", code)
        token = await manager.get_valid_access_token(user_id, "gmail")
        await manager.close()
    """

    def __init__(
        self,
        datastore: Datastore,
        config: OAuthConfig,
        *,
        registry: ProviderRegistry | None = None,
        metrics: EngineMetrics | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._datastore = datastore
        self._config = config
        self._registry = registry or default_registry
        self._metrics = metrics
        self._transport = transport
        self._clock = clock
        self._client: httpx.AsyncClient | None = None
        # Entries live only while some caller holds or awaits the lock.
        self._refresh_locks: weakref.WeakValueDictionary[tuple[str, str], asyncio.Lock] = (
            weakref.WeakValueDictionary()
        )

    async def connect(self) -> None:  # noqa: ASYNC910
        """Create the HTTP client used for token endpoint calls."""
        self._client = httpx.AsyncClient(
            timeout=self._config.http_timeout,
            headers={"Accept": "application/json"},
            transport=self._transport,
        )

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    @property
    def is_connected(self) -> bool:
        return self._client is not None

    @property
    def registry(self) -> ProviderRegistry:
        return self._registry

    @property
    def refresh_margin(self) -> timedelta:
        return timedelta(seconds=self._config.refresh_margin_seconds)

    # ------------------------------------------------------------------
    # Authorization flow
    # ------------------------------------------------------------------

    def build_authorization_url(self, provider: str) -> str:
        """Return the provider URL that starts the authorization-code flow.

        The provider identifier travels as ``state`` so the callback can be
        attributed to the right provider.

        Raises:
            UnsupportedProviderError: Unknown provider.
            MissingCredentialsError: No client id configured for the provider.
        """
        descriptor = self._registry.get(provider)
        client = self._config.client_for(descriptor.provider.value)
        if not client.client_id:
            raise MissingCredentialsError(descriptor.provider.value, "client_id")
        return descriptor.authorization_url(
            client_id=client.client_id,
            redirect_uri=self._config.redirect_uri,
            state=descriptor.provider.value,
        )

    async def exchange_code_for_tokens(
        self, user_id: str, provider: str, code: str
    ) -> ProviderCredential:
        """Trade an authorization code for tokens and store them.

        Nothing is written unless the provider accepts the code.

        Raises:
            UnsupportedProviderError: Unknown provider.
            MissingCredentialsError: Client id or secret not configured.
            TokenExchangeError: Provider rejected the code or was unreachable.
        """
        descriptor = self._registry.get(provider)
        name = descriptor.provider.value
        client = self._require_client(descriptor)

        form = {
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": self._config.redirect_uri,
        }
        try:
            tokens = await self._token_request(descriptor, client, form, TokenExchangeError)
        except TokenExchangeError:
            self._record_exchange(name, ok=False)
            raise

        now = self._clock()
        try:
            credential = await self._store_tokens(user_id, name, tokens, now)
        except IntegrityError:
            # A concurrent first exchange for the same pair inserted the row.
            credential = await self._store_tokens(user_id, name, tokens, now)

        self._record_exchange(name, ok=True)
        logger.info("Connected %s for user %s", name, user_id)
        return credential

    # ------------------------------------------------------------------
    # Token access
    # ------------------------------------------------------------------

    async def get_valid_access_token(self, user_id: str, provider: str) -> str:
        """Return an access token valid for at least the safety margin.

        Raises:
            UnsupportedProviderError: Unknown provider.
            NotConnectedError: No connected credential for the pair.
            ReauthorizationRequiredError: Near expiry with nothing to refresh with.
            TokenRefreshError: Provider rejected the refresh; stored row untouched.
        """
        descriptor = self._registry.get(provider)
        name = descriptor.provider.value

        credential = await self._read_connected(user_id, name)
        if not self._needs_refresh(credential, self._clock()):
            return credential.access_token  # type: ignore[return-value]

        lock = self._refresh_locks.get((user_id, name))
        if lock is None:
            lock = asyncio.Lock()
            self._refresh_locks[(user_id, name)] = lock
        async with lock:
            # Another caller may have refreshed while we waited.
            credential = await self._read_connected(user_id, name)
            now = self._clock()
            if not self._needs_refresh(credential, now):
                return credential.access_token  # type: ignore[return-value]
            return await self._refresh(descriptor, credential, now)

    async def disconnect(self, user_id: str, provider: str) -> None:
        """Clear stored tokens and mark the connection as disconnected.

        Disconnecting a provider that was never connected is not an error.
        """
        name = self._registry.get(provider).provider.value
        async with self._datastore.session() as session:
            credential = await self._load(session, user_id, name)
            if credential is None:
                return
            was_connected = credential.connected
            credential.access_token = None
            credential.refresh_token = None
            credential.expires_at = None
            credential.scope = None
            credential.connected = False
            await session.commit()
        if was_connected:
            logger.info("Disconnected %s for user %s", name, user_id)

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    async def get_status(self, user_id: str, provider: str) -> ConnectionStatus:
        """Describe the connection state without exposing token values."""
        descriptor = self._registry.get(provider)
        async with self._datastore.session() as session:
            credential = await self._load(session, user_id, descriptor.provider.value)
        return self._status(descriptor, credential, self._clock())

    async def list_connections(self, user_id: str) -> list[ConnectionStatus]:
        """Status of every registered provider for a user."""
        async with self._datastore.session() as session:
            result = await session.execute(
                select(ProviderCredential).where(ProviderCredential.user_id == user_id)
            )
            by_provider = {row.provider: row for row in result.scalars().all()}
        now = self._clock()
        return [
            self._status(self._registry.get(name), by_provider.get(name), now)
            for name in self._registry.list_providers()
        ]

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _store_tokens(
        self, user_id: str, provider: str, tokens: TokenResponse, now: datetime
    ) -> ProviderCredential:
        async with self._datastore.session() as session:
            credential = await self._load(session, user_id, provider)
            if credential is None:
                credential = ProviderCredential(user_id=user_id, provider=provider)
                session.add(credential)
            credential.access_token = tokens.access_token
            credential.refresh_token = tokens.refresh_token
            credential.expires_at = self._expiry(now, tokens.expires_in)
            credential.scope = tokens.scope
            credential.connected = True
            await session.commit()
            await session.refresh(credential)
            return credential

    async def _refresh(
        self, descriptor: ProviderDescriptor, credential: ProviderCredential, now: datetime
    ) -> str:
        name = descriptor.provider.value
        material = self._refresh_material(descriptor, credential, now)
        if material is None:
            logger.warning(
                "%s token for user %s expired with no refresh token", name, credential.user_id
            )
            raise ReauthorizationRequiredError(name)

        client = self._require_client(descriptor)
        try:
            tokens = await self._token_request(
                descriptor, client, descriptor.refresh_form(material), TokenRefreshError
            )
        except TokenRefreshError as exc:
            self._record_refresh(name, ok=False)
            logger.warning(
                "Refreshing %s for user %s failed: %s", name, credential.user_id, exc.provider_body
            )
            raise

        async with self._datastore.session() as session:
            row = await session.get(ProviderCredential, credential.id)
            if row is None or not row.connected:
                raise NotConnectedError(name)
            if row.access_token != credential.access_token:
                # Reconnected while the refresh was in flight; the new grant wins.
                logger.debug(
                    "Discarding %s refresh for user %s, credential was replaced",
                    name,
                    credential.user_id,
                )
                return row.access_token  # type: ignore[return-value]
            row.access_token = tokens.access_token
            row.expires_at = self._expiry(now, tokens.expires_in)
            if tokens.refresh_token:
                row.refresh_token = tokens.refresh_token
            if tokens.scope:
                row.scope = tokens.scope
            await session.commit()

        self._record_refresh(name, ok=True)
        logger.debug("Refreshed %s token for user %s", name, credential.user_id)
        return tokens.access_token

    async def _token_request(
        self,
        descriptor: ProviderDescriptor,
        client: ProviderClientConfig,
        form: dict[str, str],
        error_cls: type[TokenExchangeError] | type[TokenRefreshError],
    ) -> TokenResponse:
        http = self._ensure_connected()
        name = descriptor.provider.value
        auth: httpx.BasicAuth | None = None
        if descriptor.client_auth is ClientAuth.BASIC:
            auth = httpx.BasicAuth(client.client_id, client.client_secret)
        else:
            form = {**form, "client_id": client.client_id, "client_secret": client.client_secret}

        try:
            response = await http.post(descriptor.token_url, data=form, auth=auth)
        except httpx.HTTPError as exc:
            raise error_cls(name, f"token endpoint unreachable: {exc}") from exc

        if not response.is_success:
            raise error_cls(name, response.text)

        try:
            return TokenResponse.model_validate(response.json())
        except ValueError as exc:
            raise error_cls(name, f"malformed token response: {exc}") from exc

    def _require_client(self, descriptor: ProviderDescriptor) -> ProviderClientConfig:
        name = descriptor.provider.value
        client = self._config.client_for(name)
        if not client.client_id:
            raise MissingCredentialsError(name, "client_id")
        if not client.client_secret:
            raise MissingCredentialsError(name, "client_secret")
        return client

    def _ensure_connected(self) -> httpx.AsyncClient:
        if self._client is None:
            msg = "CredentialManager is not connected. Call connect() first."
            raise RuntimeError(msg)
        return self._client

    async def _read_connected(self, user_id: str, provider: str) -> ProviderCredential:
        async with self._datastore.session() as session:
            credential = await self._load(session, user_id, provider)
        if credential is None or not credential.connected or not credential.access_token:
            raise NotConnectedError(provider)
        return credential

    @staticmethod
    async def _load(
        session: AsyncSession, user_id: str, provider: str
    ) -> ProviderCredential | None:
        result = await session.execute(
            select(ProviderCredential).where(
                ProviderCredential.user_id == user_id,
                ProviderCredential.provider == provider,
            )
        )
        return result.scalar_one_or_none()

    def _needs_refresh(self, credential: ProviderCredential, now: datetime) -> bool:
        expires_at = as_utc(credential.expires_at)
        if expires_at is None:
            return False
        return expires_at <= now + self.refresh_margin

    @staticmethod
    def _refresh_material(
        descriptor: ProviderDescriptor, credential: ProviderCredential, now: datetime
    ) -> str | None:
        if credential.refresh_token:
            return credential.refresh_token
        if descriptor.refresh_grant is RefreshGrant.TOKEN_EXCHANGE:
            expires_at = as_utc(credential.expires_at)
            if expires_at is None or expires_at > now:
                return credential.access_token
        return None

    def _status(
        self,
        descriptor: ProviderDescriptor,
        credential: ProviderCredential | None,
        now: datetime,
    ) -> ConnectionStatus:
        name = descriptor.provider.value
        if credential is None or not credential.connected or not credential.access_token:
            return ConnectionStatus(provider=name, state=ConnectionState.DISCONNECTED)
        state = ConnectionState.CONNECTED
        if (
            self._needs_refresh(credential, now)
            and self._refresh_material(descriptor, credential, now) is None
        ):
            state = ConnectionState.REAUTH_REQUIRED
        return ConnectionStatus(
            provider=name,
            state=state,
            expires_at=as_utc(credential.expires_at),
            scope=credential.scope,
        )

    @staticmethod
    def _expiry(now: datetime, expires_in: int | None) -> datetime | None:
        if expires_in is None:
            return None
        return now + timedelta(seconds=expires_in)

    def _record_exchange(self, provider: str, *, ok: bool) -> None:
        if self._metrics is not None:
            self._metrics.record_token_exchange(provider, ok=ok)

    def _record_refresh(self, provider: str, *, ok: bool) -> None:
        if self._metrics is not None:
            self._metrics.record_token_refresh(provider, ok=ok)
