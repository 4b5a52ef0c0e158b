"""Identity provider descriptors and the registry that resolves them.

Every provider is described by data only: endpoints, scopes, how the client
authenticates to the token endpoint and which grant renews a token. The
credential manager treats all of them the same way, so supporting another
provider means registering another descriptor.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from urllib.parse import urlencode

from omniagent.errors.credential_errors import UnsupportedProviderError


class Provider(enum.StrEnum):
    """Supported identity providers."""

    GMAIL = "gmail"
    LINKEDIN = "linkedin"
    TWITTER = "twitter"
    FACEBOOK = "facebook"


class ClientAuth(enum.StrEnum):
    """How client credentials are presented to the token endpoint."""

    FORM = "client_secret_post"
    BASIC = "client_secret_basic"


class RefreshGrant(enum.StrEnum):
    """Grant used to renew an access token."""

    REFRESH_TOKEN = "refresh_token"
    # Facebook: swap a still-valid token for a fresh long-lived one.
    TOKEN_EXCHANGE = "fb_exchange_token"


@dataclass(frozen=True)
class ProviderDescriptor:
    """Static OAuth2 endpoints and behaviour of one provider."""

    provider: Provider
    authorize_url: str
    token_url: str
    scopes: tuple[str, ...]
    client_auth: ClientAuth = ClientAuth.FORM
    refresh_grant: RefreshGrant = RefreshGrant.REFRESH_TOKEN
    authorize_params: dict[str, str] = field(default_factory=dict)

    def authorization_url(self, *, client_id: str, redirect_uri: str, state: str) -> str:
        """Build the URL the user's browser is sent to."""
        params = {
            "client_id": client_id,
            "redirect_uri": redirect_uri,
            "response_type": "code",
            "scope": " ".join(self.scopes),
            "state": state,
        }
        params.update(self.authorize_params)
        return f"{self.authorize_url}?{urlencode(params)}"

    def refresh_form(self, material: str) -> dict[str, str]:
        """Form fields for a refresh request, without client credentials."""
        if self.refresh_grant is RefreshGrant.TOKEN_EXCHANGE:
            return {"grant_type": "fb_exchange_token", "fb_exchange_token": material}
        return {"grant_type": "refresh_token", "refresh_token": material}


GMAIL = ProviderDescriptor(
    provider=Provider.GMAIL,
    authorize_url="https://accounts.google.com/o/oauth2/v2/auth",
    token_url="https://oauth2.googleapis.com/token",
    scopes=(
        "https://www.googleapis.com/auth/gmail.send",
        "https://www.googleapis.com/auth/gmail.readonly",
        "https://www.googleapis.com/auth/gmail.modify",
        "https://www.googleapis.com/auth/userinfo.email",
    ),
    # Google only issues a refresh token with offline access + forced consent.
    authorize_params={"access_type": "offline", "prompt": "consent"},
)

LINKEDIN = ProviderDescriptor(
    provider=Provider.LINKEDIN,
    authorize_url="https://www.linkedin.com/oauth/v2/authorization",
    token_url="https://www.linkedin.com/oauth/v2/accessToken",
    scopes=("openid", "profile", "w_member_social", "r_basicprofile"),
)

TWITTER = ProviderDescriptor(
    provider=Provider.TWITTER,
    authorize_url="https://twitter.com/i/oauth2/authorize",
    token_url="https://api.twitter.com/2/oauth2/token",
    scopes=("tweet.read", "tweet.write", "users.read", "offline.access"),
    client_auth=ClientAuth.BASIC,
)

FACEBOOK = ProviderDescriptor(
    provider=Provider.FACEBOOK,
    authorize_url="https://www.facebook.com/v18.0/dialog/oauth",
    token_url="https://graph.facebook.com/v18.0/oauth/access_token",
    scopes=(
        "pages_manage_posts",
        "pages_read_engagement",
        "instagram_basic",
        "instagram_content_publish",
        "public_profile",
    ),
    refresh_grant=RefreshGrant.TOKEN_EXCHANGE,
)


class ProviderRegistry:
    """Registry for provider descriptors."""

    def __init__(self, descriptors: tuple[ProviderDescriptor, ...] = ()) -> None:
        self._descriptors: dict[str, ProviderDescriptor] = {}
        for descriptor in descriptors:
            self.register(descriptor)

    def register(self, descriptor: ProviderDescriptor) -> None:
        """Register (or replace) a provider descriptor."""
        self._descriptors[descriptor.provider.value] = descriptor

    def get(self, provider: str) -> ProviderDescriptor:
        """Resolve a provider identifier, case-insensitively.

        Raises:
            UnsupportedProviderError: If no descriptor is registered.
        """
        descriptor = self._descriptors.get(str(provider).strip().lower())
        if descriptor is None:
            raise UnsupportedProviderError(str(provider))
        return descriptor

    def list_providers(self) -> list[str]:
        """List all registered provider identifiers."""
        return list(self._descriptors)


default_registry = ProviderRegistry((GMAIL, LINKEDIN, TWITTER, FACEBOOK))
