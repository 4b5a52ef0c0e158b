"""IntegrationsEngine — central client owning the datastore and both services."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    import httpx

    from omniagent.config.settings import AppConfig
    from omniagent.credentials.service import CredentialManager
    from omniagent.datastore.client import Datastore
    from omniagent.metrics.collector import EngineMetrics
    from omniagent.notifications.webhook import WebhookDispatcher

logger = logging.getLogger(__name__)

_ERR_NOT_INITIALIZED = "Engine not initialized. Call initialize() first."


class IntegrationsEngine:
    """Owns infrastructure and services, with an explicit lifecycle.

    Usage::

        engine = IntegrationsEngine(config)
        await engine.initialize()
        token = await engine.credentials.get_valid_access_token(user_id, "gmail")
        await engine.webhooks.publish(user_id, "email.sent", {...})
        await engine.close()
    """

    def __init__(
        self,
        config: AppConfig,
        *,
        metrics: EngineMetrics | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize engine with configuration.

        Args:
            config: Application configuration.
            metrics: Shared metrics; created on ``initialize`` when omitted.
            transport: Optional httpx transport for every outbound call (tests).
        """
        self._config = config
        self._transport = transport
        self._initialized = False

        self._datastore: Datastore | None = None
        self._metrics: EngineMetrics | None = metrics
        self._credentials: CredentialManager | None = None
        self._webhooks: WebhookDispatcher | None = None

    async def initialize(self) -> None:
        """Open the datastore, create tables and start both services.

        Raises:
            RuntimeError: If already initialized.
        """
        if self._initialized:
            msg = "Engine already initialized"
            raise RuntimeError(msg)

        # Import here to avoid circular deps
        from omniagent.credentials.service import CredentialManager
        from omniagent.datastore.client import Datastore
        from omniagent.datastore.migrations import run_auto_migrate
        from omniagent.metrics.collector import EngineMetrics
        from omniagent.notifications.webhook import WebhookDispatcher

        self._datastore = Datastore(self._config.db)
        await self._datastore.open()
        await run_auto_migrate(self._datastore.engine)

        if self._metrics is None and self._config.metrics.enabled:
            self._metrics = EngineMetrics()

        self._credentials = CredentialManager(
            self._datastore,
            self._config.oauth,
            metrics=self._metrics,
            transport=self._transport,
        )
        await self._credentials.connect()

        if self._config.webhooks.enabled:
            self._webhooks = WebhookDispatcher(
                self._datastore,
                self._config.webhooks,
                metrics=self._metrics,
                transport=self._transport,
            )
            await self._webhooks.start()

        self._initialized = True
        logger.info("Integrations engine initialized")

    async def close(self) -> None:
        """Gracefully shut down services and connections.

        In-flight webhook deliveries are allowed to finish first. Can be
        called multiple times.
        """
        if not self._initialized:
            return

        if self._webhooks is not None:
            await self._webhooks.close()
            self._webhooks = None

        if self._credentials is not None:
            await self._credentials.close()
            self._credentials = None

        if self._datastore is not None:
            await self._datastore.close()
            self._datastore = None

        self._initialized = False
        logger.info("Integrations engine shut down")

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    @property
    def config(self) -> AppConfig:
        return self._config

    @property
    def datastore(self) -> Datastore:
        if self._datastore is None:
            raise RuntimeError(_ERR_NOT_INITIALIZED)
        return self._datastore

    @property
    def credentials(self) -> CredentialManager:
        """Get the credential manager."""
        if self._credentials is None:
            raise RuntimeError(_ERR_NOT_INITIALIZED)
        return self._credentials

    @property
    def webhooks(self) -> WebhookDispatcher | None:
        """Get the webhook dispatcher (None if webhooks are disabled)."""
        return self._webhooks

    @property
    def metrics(self) -> EngineMetrics | None:
        return self._metrics

    async def health_check(self) -> dict[str, str]:
        """Component statuses ('ok', 'error', 'disabled', 'not_initialized')."""
        if not self._initialized:
            return {"engine": "not_initialized"}
        return {
            "engine": "ok",
            "datastore": "ok" if self._datastore and self._datastore.is_open else "error",
            "credentials": "ok" if self._credentials and self._credentials.is_connected else "error",
            "webhooks": (
                "disabled"
                if self._webhooks is None
                else "ok"
                if self._webhooks.is_running
                else "error"
            ),
        }
