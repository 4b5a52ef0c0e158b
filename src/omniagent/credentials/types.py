"""Value types shared by the credential manager and the HTTP layer."""

from __future__ import annotations

import enum
from dataclasses import dataclass
from datetime import datetime  # noqa: TC003

from pydantic import BaseModel, Field


class TokenResponse(BaseModel):
    """Body of a successful OAuth2 token endpoint response."""

    access_token: str = Field(min_length=1)
    refresh_token: str | None = None
    token_type: str = "Bearer"
    expires_in: int | None = None
    scope: str | None = None


class ConnectionState(enum.StrEnum):
    """Lifecycle state of a (user, provider) connection."""

    DISCONNECTED = "disconnected"
    CONNECTED = "connected"
    REAUTH_REQUIRED = "reauth_required"


@dataclass(frozen=True)
class ConnectionStatus:
    """Snapshot of a connection, safe to show to the user (no token values)."""

    provider: str
    state: ConnectionState
    expires_at: datetime | None = None
    scope: str | None = None

    @property
    def connected(self) -> bool:
        return self.state is not ConnectionState.DISCONNECTED
