"""
Defines and manages Prometheus metrics for the indexer.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Dict

import structlog
from prometheus_client import REGISTRY as _PROM_REGISTRY
from prometheus_client import Counter as _OrigCounter
from prometheus_client import Gauge as _OrigGauge
from prometheus_client import start_http_server

if TYPE_CHECKING:
    from salesindex.config.config import MonitoringConfig

logger = structlog.get_logger(__name__)

# ---------------------------------------------------------------------------
# Duplicate-safe Prometheus metric wrappers
# ---------------------------------------------------------------------------
# Re-importing this module (as the test suite does) must not register the same
# collector twice.


def _duplicate_safe_factory(metric_cls):
    """Return a factory that reuses an existing collector if already present."""

    def _factory(name: str, documentation: str, *args, **kwargs):  # type: ignore[override]
        existing = _PROM_REGISTRY._names_to_collectors.get(name)
        if existing is not None:
            return existing  # type: ignore[return-value]

        try:
            return metric_cls(name, documentation, *args, **kwargs)  # type: ignore[call-arg]
        except ValueError:
            # Registration lost the race, fall back to the now-existing collector.
            return _PROM_REGISTRY._names_to_collectors[name]  # type: ignore[return-value]

    return _factory


Counter = _duplicate_safe_factory(_OrigCounter)  # type: ignore[assignment]
Gauge = _duplicate_safe_factory(_OrigGauge)  # type: ignore[assignment]


def _create_metrics() -> Dict[str, Any]:
    return {
        "entities_processed": Counter(
            "salesindex_entities_processed_total",
            "Entities handled by the crawl loop",
            ["outcome"],
        ),
        "fetch_retries": Counter(
            "salesindex_fetch_retries_total",
            "Fetch attempts that were retried",
            ["reason"],
        ),
        "rate_limit_hits": Counter(
            "salesindex_rate_limit_hits_total",
            "Entities that failed with HTTP 429 after retries",
        ),
        "trades_accumulated": Counter(
            "salesindex_trades_accumulated_total",
            "Trade records accepted into the index",
        ),
        "duplicate_trades": Counter(
            "salesindex_duplicate_trades_total",
            "Trade records dropped because their dedupe key was already seen",
        ),
        "rate_limiter_delay_ms": Gauge(
            "salesindex_rate_limiter_delay_ms",
            "Current inter-request delay of the adaptive rate limiter",
        ),
        "checkpoints_saved": Counter(
            "salesindex_checkpoints_saved_total",
            "Checkpoint snapshots successfully written",
        ),
    }


METRICS: Dict[str, Any] = _create_metrics()


class MetricsManager:
    """Manages the optional Prometheus exporter."""

    def __init__(self, config: MonitoringConfig) -> None:
        self.config = config
        self._started = False

    def start(self) -> None:
        """Start the Prometheus HTTP exporter if a port is configured."""
        if self.config.prometheus_port and not self._started:
            logger.info("Starting Prometheus metrics server", port=self.config.prometheus_port)
            start_http_server(self.config.prometheus_port)
            self._started = True
