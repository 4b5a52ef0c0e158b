"""V1 REST API routes.

Combines all sub-routers under the ``/api/v1`` prefix.
"""

from fastapi import APIRouter

from omniagent.api.v1.integrations import router as integrations_router
from omniagent.api.v1.webhooks import router as webhooks_router

v1_router = APIRouter(prefix="/api/v1")

v1_router.include_router(integrations_router)
v1_router.include_router(webhooks_router)

__all__ = ["v1_router"]
