"""Fixtures for HTTP route tests: real engine, in-memory SQLite, mocked remotes."""

from __future__ import annotations

import httpx
import pytest
from fastapi.testclient import TestClient

from omniagent.api.app import create_app

TOKEN_HOSTS = {
    "oauth2.googleapis.com",
    "www.linkedin.com",
    "api.twitter.com",
    "graph.facebook.com",
}


class Remote:
    """Stands in for provider token endpoints and webhook subscribers."""

    def __init__(self) -> None:
        self.token_requests: list[httpx.Request] = []
        self.webhook_requests: list[httpx.Request] = []
        self.token_status = 200
        self.webhook_status = 200

    def __call__(self, request: httpx.Request) -> httpx.Response:
        if request.url.host in TOKEN_HOSTS:
            self.token_requests.append(request)
            if self.token_status != 200:
                return httpx.Response(self.token_status, json={"error": "invalid_grant"})
            return httpx.Response(
                200,
                json={
                    "access_token": "at-1",
                    "refresh_token": "rt-1",
                    "expires_in": 3600,
                    "scope": "openid profile",
                },
            )
        self.webhook_requests.append(request)
        return httpx.Response(self.webhook_status, text="ok")


@pytest.fixture
def remote() -> Remote:
    return Remote()


@pytest.fixture
def client(app_config, remote):
    """TestClient with the lifespan running (engine initialized)."""
    app = create_app(config=app_config, transport=httpx.MockTransport(remote))
    with TestClient(app) as c:
        yield c


@pytest.fixture
def user_headers() -> dict[str, str]:
    return {"x-user-id": "user-1"}
