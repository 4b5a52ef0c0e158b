"""FastAPI dependency injection helpers.

Usage in a route::

    @router.get("/")
    async def list_things(
        ctx: Annotated[UserContext, Depends(require_user)],
        engine: Annotated[IntegrationsEngine, Depends(get_engine)],
    ) -> ...:
        ...
"""

from __future__ import annotations

from typing import Annotated

from fastapi import Depends, Header, Request

from omniagent.api.middleware.auth import AUTH_HEADER_USER, UserContext, resolve_user
from omniagent.engine.client import IntegrationsEngine  # noqa: TC001
from omniagent.errors.definitions import ErrEngineNotReady, ErrWebhooksDisabled
from omniagent.notifications.webhook import WebhookDispatcher  # noqa: TC001


def get_engine(request: Request) -> IntegrationsEngine:
    """Retrieve the engine stored on ``app.state`` during lifespan startup.

    Raises:
        OmniAgentError: 503 if the engine is not initialized.
    """
    engine: IntegrationsEngine | None = getattr(request.app.state, "engine", None)
    if engine is None:
        raise ErrEngineNotReady
    return engine


def get_webhooks(
    engine: Annotated[IntegrationsEngine, Depends(get_engine)],
) -> WebhookDispatcher:
    """The webhook dispatcher, or 503 when webhooks are disabled."""
    dispatcher = engine.webhooks
    if dispatcher is None:
        raise ErrWebhooksDisabled
    return dispatcher


def require_user(
    x_user_id: Annotated[str, Header(alias=AUTH_HEADER_USER)] = "",
) -> UserContext:
    """Dependency that requires an ``x-user-id`` header."""
    return resolve_user(x_user_id)
