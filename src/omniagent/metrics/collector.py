"""Metrics collector — Prometheus counters and histograms.

- ``omniagent_token_exchange_total`` counter (provider, outcome)
- ``omniagent_token_refresh_total`` counter (provider, outcome)
- ``omniagent_webhook_delivery_total`` counter (event, outcome)
- ``omniagent_webhook_delivery_seconds`` histogram (event)
"""

from __future__ import annotations

import time
from contextlib import contextmanager
from typing import TYPE_CHECKING

from prometheus_client import CollectorRegistry, Counter, Histogram

if TYPE_CHECKING:
    from collections.abc import Iterator

_PREFIX = "omniagent"


class MetricsCollector:
    """Low-level Prometheus collector that owns the registry.

    Use :class:`EngineMetrics` for the high-level tracking interface.
    """

    def __init__(self, registry: CollectorRegistry | None = None) -> None:
        self._registry = registry or CollectorRegistry()

    @property
    def registry(self) -> CollectorRegistry:
        """Return the underlying Prometheus registry."""
        return self._registry

    def histogram(self, name: str, doc: str, labels: tuple[str, ...] = ()) -> Histogram:
        """Register and return a Histogram."""
        return Histogram(name, doc, labels, registry=self._registry)

    def counter(self, name: str, doc: str, labels: tuple[str, ...] = ()) -> Counter:
        """Register and return a Counter."""
        return Counter(name, doc, labels, registry=self._registry)


class EngineMetrics:
    """High-level metrics for the credential manager and webhook dispatcher."""

    def __init__(self, collector: MetricsCollector | None = None) -> None:
        self._collector = collector or MetricsCollector()

        self._token_exchange = self._collector.counter(
            f"{_PREFIX}_token_exchange_total",
            "OAuth authorization-code exchanges",
            ("provider", "outcome"),
        )
        self._token_refresh = self._collector.counter(
            f"{_PREFIX}_token_refresh_total",
            "OAuth access token refreshes",
            ("provider", "outcome"),
        )
        self._delivery = self._collector.counter(
            f"{_PREFIX}_webhook_delivery_total",
            "Webhook delivery attempts",
            ("event", "outcome"),
        )
        self._delivery_duration = self._collector.histogram(
            f"{_PREFIX}_webhook_delivery_seconds",
            "Duration of a single webhook delivery attempt",
            ("event",),
        )

    @property
    def registry(self) -> CollectorRegistry:
        """Return the underlying Prometheus registry."""
        return self._collector.registry

    def record_token_exchange(self, provider: str, *, ok: bool) -> None:
        self._token_exchange.labels(provider=provider, outcome="ok" if ok else "error").inc()

    def record_token_refresh(self, provider: str, *, ok: bool) -> None:
        self._token_refresh.labels(provider=provider, outcome="ok" if ok else "error").inc()

    def record_delivery(self, event: str, *, ok: bool) -> None:
        self._delivery.labels(event=event, outcome="ok" if ok else "error").inc()

    @contextmanager
    def track_delivery(self, event: str) -> Iterator[None]:
        """Track the duration of one webhook POST."""
        start = time.monotonic()
        try:
            yield
        finally:
            self._delivery_duration.labels(event=event).observe(time.monotonic() - start)
