"""Prometheus HTTP request metrics middleware for FastAPI.

Requests are labelled by route template (``/api/v1/webhooks/{subscription_id}``)
rather than raw path so subscription IDs do not explode label cardinality.
"""

from __future__ import annotations

import time
from typing import TYPE_CHECKING

from prometheus_client import Counter, Histogram
from starlette.middleware.base import BaseHTTPMiddleware

if TYPE_CHECKING:
    from collections.abc import Callable

    from prometheus_client import CollectorRegistry
    from starlette.requests import Request
    from starlette.responses import Response

_APP_LABEL = "omniagent"

_LABELS = ("method", "route", "status_code", "app")
_DURATION_LABELS = ("method", "route", "app")


def _route_label(request: Request) -> str:
    route = request.scope.get("route")
    template = getattr(route, "path", None)
    return template or request.url.path


class PrometheusMiddleware(BaseHTTPMiddleware):
    """Starlette middleware that records request count and duration."""

    def __init__(self, app: object, *, registry: CollectorRegistry) -> None:
        super().__init__(app)  # type: ignore[arg-type]
        self._request_count = Counter(
            "http_request_total",
            "Total HTTP requests",
            _LABELS,
            registry=registry,
        )
        self._request_duration = Histogram(
            "http_request_duration_seconds",
            "HTTP request duration in seconds",
            _DURATION_LABELS,
            registry=registry,
        )

    async def dispatch(self, request: Request, call_next: Callable) -> Response:  # type: ignore[type-arg]
        method = request.method
        start = time.monotonic()
        status = "500"
        try:
            response: Response = await call_next(request)
            status = str(response.status_code)
            return response
        finally:
            route = _route_label(request)
            self._request_count.labels(
                method=method, route=route, status_code=status, app=_APP_LABEL
            ).inc()
            self._request_duration.labels(method=method, route=route, app=_APP_LABEL).observe(
                time.monotonic() - start
            )
