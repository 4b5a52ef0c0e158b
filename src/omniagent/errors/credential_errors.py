"""OAuth credential lifecycle errors."""

from __future__ import annotations

from omniagent.errors.base import OmniAgentError


class UnsupportedProviderError(OmniAgentError):
    """The provider identifier is not one of the supported providers."""

    def __init__(self, provider: str) -> None:
        super().__init__(
            f"unsupported provider: {provider}",
            status_code=400,
            code="unsupported-provider",
        )
        self.provider = provider


class MissingCredentialsError(OmniAgentError):
    """The OAuth client id/secret for a provider is not configured."""

    def __init__(self, provider: str, field: str = "client_id") -> None:
        super().__init__(
            f"{provider} OAuth {field} is not configured",
            status_code=500,
            code="missing-client-credentials",
        )
        self.provider = provider
        self.field = field


class TokenExchangeError(OmniAgentError):
    """The provider rejected the authorization-code exchange."""

    def __init__(self, provider: str, provider_body: str, *, status_code: int = 502) -> None:
        super().__init__(
            f"{provider} token exchange failed: {provider_body}",
            status_code=status_code,
            code="token-exchange-failed",
        )
        self.provider = provider
        self.provider_body = provider_body


class TokenRefreshError(OmniAgentError):
    """The provider rejected a refresh of a stored credential."""

    def __init__(self, provider: str, provider_body: str, *, status_code: int = 502) -> None:
        super().__init__(
            f"{provider} token refresh failed: {provider_body}",
            status_code=status_code,
            code="token-refresh-failed",
        )
        self.provider = provider
        self.provider_body = provider_body


class NotConnectedError(OmniAgentError):
    """No connected credential exists for the (user, provider) pair."""

    def __init__(self, provider: str) -> None:
        super().__init__(
            f"{provider} is not connected",
            status_code=409,
            code="provider-not-connected",
        )
        self.provider = provider


class ReauthorizationRequiredError(OmniAgentError):
    """The stored token expired and cannot be refreshed without the user."""

    def __init__(self, provider: str) -> None:
        super().__init__(
            f"{provider} token expired, reconnect required",
            status_code=409,
            code="reauthorization-required",
        )
        self.provider = provider
