"""Logging and metrics for the sales indexer."""

from __future__ import annotations

from typing import Any, Dict, Optional

from .logging import configure_logging, flush_logging
from .metrics import METRICS, MetricsManager

__all__ = ["configure_logging", "flush_logging", "MetricsManager", "METRICS", "increment", "gauge"]


# Convenience functions for metrics
def increment(name: str, value: float = 1.0, labels: Optional[Dict[str, Any]] = None) -> None:
    """Increment a counter metric."""
    if name in METRICS:
        metric = METRICS[name]
        if labels is not None:
            metric.labels(**labels).inc(value)
        else:
            metric.inc(value)


def gauge(name: str, value: float, labels: Optional[Dict[str, Any]] = None) -> None:
    """Set a gauge metric."""
    if name in METRICS:
        metric = METRICS[name]
        if labels is not None:
            metric.labels(**labels).set(value)
        else:
            metric.set(value)
