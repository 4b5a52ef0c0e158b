"""Application entry point for the OmniAgent integrations server."""

from __future__ import annotations

import logging
import os

import uvicorn

from omniagent.config.settings import AppConfig


def main() -> None:
    """Start the integrations server."""
    config = AppConfig()
    reload = os.getenv("OMNIAGENT_RELOAD", "false").lower() in ("1", "true", "yes")
    logging.basicConfig(
        level=logging.DEBUG if config.debug else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    uvicorn.run(
        "omniagent.api.app:create_app",
        factory=True,
        host=config.server.host,
        port=config.server.port,
        reload=reload,
        log_level="debug" if config.debug else "info",
    )


if __name__ == "__main__":
    main()
