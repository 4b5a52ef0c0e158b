"""V1 integration endpoints.

Provider connection status, the OAuth authorize redirect, the callback code
exchange and disconnect.
"""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends

from omniagent.api.dependencies import get_engine, require_user
from omniagent.api.middleware.auth import UserContext  # noqa: TC001
from omniagent.api.v1.schemas import (
    AuthorizationUrlResponse,
    ConnectionResponse,
    OAuthCallbackRequest,
)
from omniagent.engine.client import IntegrationsEngine  # noqa: TC001
from omniagent.errors.definitions import ErrInvalidOAuthState

router = APIRouter(prefix="/integrations", tags=["integrations"])


@router.get("")
async def list_integrations(
    ctx: Annotated[UserContext, Depends(require_user)],
    engine: Annotated[IntegrationsEngine, Depends(get_engine)],
) -> list[dict]:
    """Connection status of every supported provider for the current user."""
    statuses = await engine.credentials.list_connections(ctx.user_id)
    return [ConnectionResponse.from_status(s).model_dump(mode="json") for s in statuses]


@router.get("/{provider}/authorize")
async def authorize_url(
    provider: str,
    _ctx: Annotated[UserContext, Depends(require_user)],
    engine: Annotated[IntegrationsEngine, Depends(get_engine)],
) -> dict:
    """URL the browser should be sent to in order to start the OAuth flow."""
    url = engine.credentials.build_authorization_url(provider)
    return AuthorizationUrlResponse(provider=provider.lower(), url=url).model_dump()


@router.post("/callback")
async def oauth_callback(
    body: OAuthCallbackRequest,
    ctx: Annotated[UserContext, Depends(require_user)],
    engine: Annotated[IntegrationsEngine, Depends(get_engine)],
) -> dict:
    """Exchange the authorization code; ``state`` names the provider."""
    provider = body.state.strip().lower()
    if provider not in engine.credentials.registry.list_providers():
        raise ErrInvalidOAuthState
    await engine.credentials.exchange_code_for_tokens(ctx.user_id, provider, body.code)
    status = await engine.credentials.get_status(ctx.user_id, provider)
    return ConnectionResponse.from_status(status).model_dump(mode="json")


@router.delete("/{provider}", status_code=204)
async def disconnect_integration(
    provider: str,
    ctx: Annotated[UserContext, Depends(require_user)],
    engine: Annotated[IntegrationsEngine, Depends(get_engine)],
) -> None:
    """Forget the stored tokens for a provider. Idempotent."""
    await engine.credentials.disconnect(ctx.user_id, provider)
