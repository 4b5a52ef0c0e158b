"""Shared test fixtures for the omniagent test suite."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING

import pytest

from omniagent.config.settings import (
    AppConfig,
    DatabaseConfig,
    DatabaseEngine,
    OAuthConfig,
    ProviderClientConfig,
    WebhookConfig,
)

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from omniagent.datastore.client import Datastore


class FakeClock:
    """Controllable UTC clock; ``sleep`` advances it instead of waiting."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2024, 1, 1, 12, 0, 0, tzinfo=UTC)
        self.sleeps: list[float] = []

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.advance(seconds)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def db_config() -> DatabaseConfig:
    return DatabaseConfig(engine=DatabaseEngine.SQLITE, dsn="sqlite+aiosqlite:///:memory:")


@pytest.fixture
def oauth_config() -> OAuthConfig:
    """OAuth settings with client registrations for every provider."""
    return OAuthConfig(
        redirect_uri="https://app.test/oauth-callback",
        gmail=ProviderClientConfig(client_id="gmail-id", client_secret="gmail-secret"),
        linkedin=ProviderClientConfig(client_id="li-id", client_secret="li-secret"),
        twitter=ProviderClientConfig(client_id="tw-id", client_secret="tw-secret"),
        facebook=ProviderClientConfig(client_id="fb-id", client_secret="fb-secret"),
    )


@pytest.fixture
def webhook_config() -> WebhookConfig:
    return WebhookConfig()


@pytest.fixture
def app_config(db_config, oauth_config, webhook_config) -> AppConfig:
    """Provide a test AppConfig with safe defaults."""
    return AppConfig(
        debug=True,
        db=db_config,
        oauth=oauth_config,
        webhooks=webhook_config,
    )


@pytest.fixture
async def datastore(db_config) -> AsyncIterator[Datastore]:
    """In-memory SQLite datastore with every table created."""
    from omniagent.datastore.client import Datastore
    from omniagent.models import Base

    ds = Datastore(db_config)
    await ds.open(base=Base)
    yield ds
    await ds.close()
