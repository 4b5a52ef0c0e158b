"""FastAPI application factory."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from prometheus_client import generate_latest
from starlette.responses import Response

from omniagent import __version__
from omniagent.api.middleware.cors import setup_cors
from omniagent.api.v1 import v1_router
from omniagent.config.settings import AppConfig
from omniagent.engine.client import IntegrationsEngine
from omniagent.errors.base import OmniAgentError
from omniagent.metrics.collector import EngineMetrics
from omniagent.metrics.middleware import PrometheusMiddleware

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    import httpx

logger = logging.getLogger(__name__)


@asynccontextmanager
async def _lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Startup / shutdown lifecycle hooks.

    Initialises the engine (datastore, credential manager, webhook
    dispatcher) on startup and drains deliveries on exit.
    """
    config: AppConfig = app.state.config
    engine = IntegrationsEngine(
        config,
        metrics=app.state.metrics,
        transport=app.state.transport,
    )

    try:
        await engine.initialize()
        app.state.engine = engine
        logger.info("Integrations engine initialized")
        yield
    finally:
        app.state.engine = None
        await engine.close()
        logger.info("Integrations engine shut down")


def create_app(
    *,
    config: AppConfig | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> FastAPI:
    """Build and return the FastAPI application.

    Args:
        config: Optional AppConfig. If *None*, a default config is created
            from environment variables.
        transport: Optional httpx transport for outbound provider and
            webhook calls (tests).
    """
    if config is None:
        config = AppConfig()

    if config.debug:
        logging.getLogger("omniagent").setLevel(logging.DEBUG)

    app = FastAPI(
        title="omniagent",
        version=__version__,
        description="OmniAgent integrations core: OAuth connections and webhooks",
        lifespan=_lifespan,
    )

    # Store config on app.state for lifespan access
    app.state.config = config
    app.state.transport = transport
    app.state.engine = None
    app.state.metrics = EngineMetrics() if config.metrics.enabled else None

    # -- Middleware --
    setup_cors(app)
    if app.state.metrics is not None:
        app.add_middleware(PrometheusMiddleware, registry=app.state.metrics.registry)

    # -- Error handler --
    @app.exception_handler(OmniAgentError)
    async def _omniagent_error_handler(request: Request, exc: OmniAgentError) -> JSONResponse:
        return JSONResponse(
            status_code=exc.status_code,
            content={"code": exc.code, "message": exc.message},
        )

    # -- Base routes --
    @app.get("/health", tags=["base"])
    async def health() -> dict[str, str]:
        engine: IntegrationsEngine | None = app.state.engine
        if engine is None:
            return {"status": "starting"}
        return {"status": "ok", **await engine.health_check()}

    @app.get("/metrics", tags=["base"], include_in_schema=False)
    async def metrics_endpoint() -> Response:
        """Prometheus metrics endpoint."""
        metrics: EngineMetrics | None = app.state.metrics
        body = generate_latest(metrics.registry) if metrics else generate_latest()
        return Response(
            content=body,
            media_type="text/plain; version=0.0.4; charset=utf-8",
        )

    # -- Mount v1 API --
    app.include_router(v1_router)

    return app
