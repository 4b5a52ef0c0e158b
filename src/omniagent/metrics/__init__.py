"""Metrics — Prometheus metrics collection and exposure."""

from __future__ import annotations

from omniagent.metrics.collector import EngineMetrics, MetricsCollector

__all__ = ["EngineMetrics", "MetricsCollector"]
