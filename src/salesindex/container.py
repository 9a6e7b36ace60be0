"""
Dependency container wiring configuration into the crawler components.
"""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, Generic, Optional, TypeVar

import structlog

from salesindex.config import Config, load_config
from salesindex.crawler.http_client import HttpClient
from salesindex.crawler.rate_limiter import AdaptiveRateLimiter
from salesindex.dataset.index_builder import IndexBuilder
from salesindex.dataset.validator import IndexValidator
from salesindex.extractor.trade_extractor import TradeExtractor
from salesindex.observability import MetricsManager
from salesindex.pipeline import CrawlOrchestrator, JsonFetcher
from salesindex.recovery.checkpoint import CheckpointStore
from salesindex.recovery.error_log import ErrorLog

T = TypeVar("T")
SleepFunc = Callable[[float], Awaitable[Any]]


class LazyInstance(Generic[T]):
    """Lazy-loaded instance with lifecycle management."""

    def __init__(self, factory: Callable[..., T], *args: Any, **kwargs: Any) -> None:
        self._factory = factory
        self._args = args
        self._kwargs = kwargs
        self._instance: Optional[T] = None

    async def get(self) -> T:
        """Get or create the instance, awaiting its ``initialize()`` if it has one."""
        if self._instance is None:
            instance = self._factory(*self._args, **self._kwargs)
            if callable(getattr(instance, "initialize", None)):
                await instance.initialize()  # type: ignore[attr-defined]
            self._instance = instance
        return self._instance

    async def cleanup(self) -> None:
        if self._instance is not None and callable(getattr(self._instance, "close", None)):
            await self._instance.close()  # type: ignore[attr-defined]
        self._instance = None


class DependencyContainer:
    """
    Builds the crawler components from one ``Config``.

    ``sleep`` replaces ``asyncio.sleep`` in every component that waits, which
    lets tests run whole crawls without real delays.
    """

    def __init__(
        self,
        config: Optional[Config] = None,
        config_path: Optional[Path] = None,
        sleep: Optional[SleepFunc] = None,
    ) -> None:
        self.config_path = config_path
        self.config = config if config is not None else load_config(config_path)
        self.sleep: SleepFunc = sleep or asyncio.sleep
        self.logger = structlog.get_logger(self.__class__.__name__)
        self.is_running = False

        self._instances: Dict[str, LazyInstance[Any]] = {
            "http_client": LazyInstance(HttpClient, self.config.crawler, sleep=self.sleep),
        }
        self.metrics = MetricsManager(self.config.monitoring)

    async def get_http_client(self) -> HttpClient:
        return await self._instances["http_client"].get()

    def create_rate_limiter(self) -> AdaptiveRateLimiter:
        return AdaptiveRateLimiter(self.config.rate_limiter, sleep=self.sleep)

    def create_extractor(self) -> TradeExtractor:
        return TradeExtractor(self.config.extraction, self.config.collection.collection_id)

    def create_index_builder(self) -> IndexBuilder:
        return IndexBuilder(self.config.collection.collection_id, self.config.extraction.unmapped_sample_size)

    def create_index_validator(self) -> IndexValidator:
        return IndexValidator(
            self.config.collection.collection_id,
            self.config.extraction.min_secondary_price,
            self.config.collection.validation_entities,
        )

    async def create_orchestrator(
        self,
        fetcher: Optional[JsonFetcher] = None,
        install_signal_handlers: bool = True,
    ) -> CrawlOrchestrator:
        return CrawlOrchestrator(
            config=self.config,
            fetcher=fetcher or await self.get_http_client(),
            rate_limiter=self.create_rate_limiter(),
            checkpoint_store=CheckpointStore(self.config.paths.checkpoint),
            error_log=ErrorLog(self.config.paths.error_log),
            extractor=self.create_extractor(),
            index_builder=self.create_index_builder(),
            install_signal_handlers=install_signal_handlers,
        )

    @asynccontextmanager
    async def lifecycle(self) -> AsyncIterator[DependencyContainer]:
        """Context manager for proper lifecycle management."""
        try:
            self.metrics.start()
            self.is_running = True
            yield self
        finally:
            await self.shutdown()

    async def shutdown(self) -> None:
        if not self.is_running:
            return
        for name, instance in self._instances.items():
            try:
                await instance.cleanup()
            except Exception as e:
                self.logger.error(f"Error cleaning up {name}", error=str(e))
        self.is_running = False
        self.logger.debug("Dependency container shutdown complete")
