"""
Crawl orchestration: pacing, retries, accumulation, checkpointing and resume.
"""

from __future__ import annotations

import asyncio
import math
import signal
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol, Sequence, Set

import structlog

from salesindex.config import Config
from salesindex.crawler.rate_limiter import AdaptiveRateLimiter
from salesindex.dataset.index_builder import BuildStats, IndexBuilder, SalesIndex
from salesindex.extractor.models import TradeRecord
from salesindex.extractor.trade_extractor import TradeExtractor
from salesindex.observability import flush_logging, increment
from salesindex.protocols import CrawlState, Entity, ErrorType, RunMode
from salesindex.recovery.checkpoint import CheckpointSnapshot, CheckpointStore
from salesindex.recovery.error_log import ErrorLog, classify_error

logger = structlog.get_logger(__name__)

# Only the first few failures and then every hundredth are logged individually.
ERROR_LOG_EVERY = 100
ERROR_LOG_FIRST = 10


class JsonFetcher(Protocol):
    async def fetch_json(self, url: str, max_retries: Optional[int] = None) -> Any: ...


@dataclass
class CrawlProgress:
    """Everything a resumed run needs besides the rate limiter state."""

    processed: Set[str] = field(default_factory=set)
    failed: Set[str] = field(default_factory=set)
    records: List[TradeRecord] = field(default_factory=list)
    seen_keys: Set[str] = field(default_factory=set)
    next_index: int = 0
    processed_count: int = 0
    success_count: int = 0
    error_count: int = 0
    trades_found: int = 0

    @classmethod
    def from_checkpoint(cls, snapshot: CheckpointSnapshot) -> "CrawlProgress":
        return cls(
            processed=set(snapshot.processed_launchers),
            failed=set(snapshot.failed_launchers),
            records=list(snapshot.trades),
            seen_keys=set(snapshot.seen_keys),
            next_index=snapshot.next_index,
            processed_count=snapshot.processed_count,
            success_count=snapshot.success_count,
            error_count=snapshot.error_count,
            trades_found=snapshot.trades_found,
        )

    def to_checkpoint(self, collection_id: str, rate_limiter: AdaptiveRateLimiter) -> CheckpointSnapshot:
        return CheckpointSnapshot(
            collection_id=collection_id,
            processed_launchers=sorted(self.processed),
            failed_launchers=sorted(self.failed),
            trades=list(self.records),
            seen_keys=sorted(self.seen_keys),
            next_index=self.next_index,
            processed_count=self.processed_count,
            success_count=self.success_count,
            error_count=self.error_count,
            trades_found=self.trades_found,
            rate_limiter=rate_limiter.snapshot(),
        )


@dataclass
class CrawlReport:
    state: CrawlState
    total: int
    processed: int
    success_count: int
    error_count: int
    trades_found: int
    duration: float
    output_path: Optional[Path] = None
    index: Optional[SalesIndex] = None


def format_progress_bar(current: int, total: int, width: int = 20) -> str:
    fraction = current / total if total else 1.0
    filled = min(width, int(fraction * width))
    return "[" + "█" * filled + "░" * (width - filled) + "]"


def estimate_minutes_remaining(done: int, remaining: int, elapsed: float) -> Optional[int]:
    if done <= 0 or remaining <= 0:
        return None
    return math.ceil(elapsed / done * remaining / 60)


class CrawlOrchestrator:
    """
    Walks every entity once, sequentially, and turns the results into the index.

    The orchestrator owns all mutable crawl state. Per-entity mutations happen
    between suspension points, so whenever the task is suspended (rate limiter
    wait, retry sleep, circuit breaker pause) the state is consistent and can be
    checkpointed. ``interrupt()`` relies on this: it cancels the crawl task and
    the cancellation is handled by saving a checkpoint.
    """

    def __init__(
        self,
        config: Config,
        fetcher: JsonFetcher,
        rate_limiter: AdaptiveRateLimiter,
        checkpoint_store: CheckpointStore,
        error_log: ErrorLog,
        extractor: TradeExtractor,
        index_builder: IndexBuilder,
        install_signal_handlers: bool = True,
    ) -> None:
        self.config = config
        self.fetcher = fetcher
        self.rate_limiter = rate_limiter
        self.checkpoint_store = checkpoint_store
        self.error_log = error_log
        self.extractor = extractor
        self.index_builder = index_builder
        self.install_signal_handlers = install_signal_handlers

        self.logger = structlog.get_logger(self.__class__.__name__)
        self.state = CrawlState.IDLE
        self.progress = CrawlProgress()

        self._interrupt_requested = False
        self._task: Optional[asyncio.Task] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._original_handlers: Dict[int, Any] = {}
        self._started_at = 0.0
        self._session_start_count = 0

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def run(
        self,
        entities: Sequence[Entity],
        floor_xch: Optional[float] = None,
        mode: RunMode = RunMode.AUTO,
    ) -> CrawlReport:
        """Crawl ``entities`` and write the index, or stop early with a checkpoint when interrupted."""
        if self.state in (CrawlState.RUNNING, CrawlState.CHECKPOINTING):
            raise RuntimeError("Crawl is already running")

        entities = list(entities)
        self._interrupt_requested = False
        self._prepare(mode)

        self._loop = asyncio.get_running_loop()
        self._task = asyncio.current_task()
        self._started_at = time.monotonic()
        self._session_start_count = self.progress.processed_count
        self.state = CrawlState.RUNNING

        self.logger.info(
            "Crawl started",
            total=len(entities),
            start_index=self.progress.next_index,
            already_processed=self.progress.processed_count,
            checkpoint_interval=self.config.crawler.checkpoint_interval,
            floor_xch=floor_xch,
        )

        if self.install_signal_handlers:
            self._setup_signal_handlers()
        try:
            await self._crawl(entities, floor_xch)
        except asyncio.CancelledError:
            if not self._interrupt_requested:
                raise
            task = asyncio.current_task()
            if task is not None:
                task.uncancel()
            return self._finish_interrupted(len(entities))
        finally:
            self._cleanup_signal_handlers()
            self._task = None

        return self._complete(len(entities), floor_xch)

    def interrupt(self, signum: Optional[int] = None) -> None:
        """
        Stop the crawl at its next suspension point.

        Safe to call from a signal handler. The running ``run()`` call saves a
        checkpoint and the error log, then returns an ``INTERRUPTED`` report.
        """
        if self.state not in (CrawlState.RUNNING, CrawlState.CHECKPOINTING) or self._interrupt_requested:
            return
        self._interrupt_requested = True
        self.logger.warning("Interrupt requested, stopping after the current step", signal=signum)
        if self._loop is not None and not self._loop.is_closed():
            self._loop.call_soon_threadsafe(self._cancel_crawl)

    # ------------------------------------------------------------------
    # Start-up
    # ------------------------------------------------------------------

    def _prepare(self, mode: RunMode) -> None:
        snapshot = None
        if mode is RunMode.FRESH:
            self.logger.info("Starting fresh build, discarding any checkpoint")
        elif mode is RunMode.RESUME or self.config.crawler.auto_resume:
            snapshot = self.checkpoint_store.load()
            if snapshot is None and mode is RunMode.RESUME:
                self.logger.warning("No usable checkpoint to resume from, starting fresh")
        elif self.checkpoint_store.exists():
            self.logger.info("Checkpoint found but auto-resume is disabled, starting fresh")

        if snapshot is not None and snapshot.collection_id != self.config.collection.collection_id:
            self.logger.warning(
                "Checkpoint belongs to another collection, starting fresh",
                checkpoint_collection=snapshot.collection_id,
            )
            snapshot = None

        if snapshot is None:
            self.checkpoint_store.clear()
            self.progress = CrawlProgress()
            self.rate_limiter.reset()
            self.error_log.records = []
            return

        self.progress = CrawlProgress.from_checkpoint(snapshot)
        self.rate_limiter.restore(snapshot.rate_limiter)
        self.error_log.load()
        self.logger.info(
            "Resuming from checkpoint",
            next_index=self.progress.next_index,
            processed=self.progress.processed_count,
            trades=len(self.progress.records),
            saved_at=snapshot.saved_at,
        )

        if self.config.crawler.retry_failed and self.progress.failed:
            self._requeue_failed()

    def _requeue_failed(self) -> None:
        retry = self.progress.failed & self.progress.processed
        self.progress.processed -= retry
        self.progress.failed -= retry
        self.progress.processed_count -= len(retry)
        self.progress.error_count -= len(retry)
        self.progress.next_index = 0
        self.error_log.records = [r for r in self.error_log.records if r.launcher not in retry]
        self.logger.info("Re-attempting previously failed entities", count=len(retry))

    # ------------------------------------------------------------------
    # Crawl loop
    # ------------------------------------------------------------------

    async def _crawl(self, entities: List[Entity], floor_xch: Optional[float]) -> None:
        total = len(entities)
        interval = self.config.crawler.checkpoint_interval

        for index in range(self.progress.next_index, total):
            entity = entities[index]
            if entity.launcher in self.progress.processed:
                self.progress.next_index = index + 1
                continue

            successes = self.progress.success_count
            await self.rate_limiter.wait()
            pause = await self._process_entity(entity, floor_xch)
            self.progress.next_index = index + 1

            # Checkpoints follow successful entities only.
            succeeded = self.progress.success_count > successes
            if succeeded and (self.progress.processed_count % interval == 0 or index + 1 == total):
                self._log_progress(total)
                self._save_checkpoint()

            if pause:
                self.logger.warning("Circuit breaker pause", pause_ms=self.rate_limiter.config.max_delay_ms)
                await self.rate_limiter.pause()

    async def _process_entity(self, entity: Entity, floor_xch: Optional[float]) -> bool:
        """Fetch, extract and accumulate one entity. Returns True when the caller must pause."""
        url = self.config.collection.url_for(entity.launcher)
        try:
            payload = await self.fetcher.fetch_json(url, max_retries=self.config.crawler.max_retries)
            records = self.extractor.extract(payload, entity, floor_xch)
        except Exception as e:
            return self._record_failure(entity, e)

        accepted = self._accumulate(records)
        self.progress.processed.add(entity.launcher)
        self.progress.processed_count += 1
        self.progress.success_count += 1
        self.progress.trades_found += accepted
        self.rate_limiter.on_success()
        increment("entities_processed", labels={"outcome": "success"})
        return False

    def _accumulate(self, records: List[TradeRecord]) -> int:
        accepted = 0
        for record in records:
            key = record.dedupe_key
            if key in self.progress.seen_keys:
                increment("duplicate_trades")
                continue
            self.progress.seen_keys.add(key)
            self.progress.records.append(record)
            accepted += 1
        if accepted:
            increment("trades_accumulated", accepted)
        return accepted

    def _record_failure(self, entity: Entity, error: Exception) -> bool:
        error_type = classify_error(error)
        pause = False
        if error_type is ErrorType.RATE_LIMIT:
            increment("rate_limit_hits")
            pause = self.rate_limiter.on_rate_limit()
        elif error_type is not ErrorType.CLIENT_ERROR:
            self.rate_limiter.on_error()

        self.error_log.add(entity.launcher, error, error_type)
        self.progress.processed.add(entity.launcher)
        self.progress.failed.add(entity.launcher)
        self.progress.processed_count += 1
        self.progress.error_count += 1
        increment("entities_processed", labels={"outcome": "error"})

        count = self.progress.error_count
        if count <= ERROR_LOG_FIRST or count % ERROR_LOG_EVERY == 0:
            self.logger.warning(
                "Failed to fetch entity",
                launcher=entity.launcher,
                internal_id=entity.internal_id,
                error_type=error_type.value,
                error=str(error),
                error_count=count,
            )
        return pause

    def _log_progress(self, total: int) -> None:
        done = self.progress.processed_count
        stats = self.rate_limiter.get_stats()
        self.logger.info(
            "Progress",
            bar=format_progress_bar(done, total),
            percent=round(done / total * 100, 1) if total else 100.0,
            processed=done,
            total=total,
            trades=self.progress.trades_found,
            success=self.progress.success_count,
            errors=self.progress.error_count,
            delay_ms=stats["current_delay_ms"],
            rate_limits=stats["rate_limit_count"],
            eta_minutes=estimate_minutes_remaining(
                done - self._session_start_count, total - done, time.monotonic() - self._started_at
            ),
        )

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def _save_checkpoint(self) -> bool:
        previous = self.state
        self.state = CrawlState.CHECKPOINTING
        try:
            snapshot = self.progress.to_checkpoint(self.config.collection.collection_id, self.rate_limiter)
            saved = self.checkpoint_store.save(snapshot)
            self.error_log.save()
            return saved
        finally:
            self.state = previous

    def _build_stats(self, total: int) -> BuildStats:
        return BuildStats(
            total_nfts=total,
            processed_nfts=self.progress.processed_count,
            success_count=self.progress.success_count,
            error_count=self.progress.error_count,
            trades_found=self.progress.trades_found,
            rate_limiter_stats=self.rate_limiter.get_stats(),
            error_stats=self.error_log.get_stats(),
        )

    def _complete(self, total: int, floor_xch: Optional[float]) -> CrawlReport:
        index = self.index_builder.build(self.progress.records, self._build_stats(total), floor_xch=floor_xch)
        output_path = self.config.paths.output
        try:
            self.index_builder.write(index, output_path)
        except (OSError, ValueError):
            self.logger.error("Failed to write sales index, keeping checkpoint", path=str(output_path))
            self.error_log.save()
            self.state = CrawlState.IDLE
            raise

        self.error_log.save()
        self.checkpoint_store.clear()
        self.state = CrawlState.COMPLETED

        duration = time.monotonic() - self._started_at
        self.logger.info(
            "Crawl completed",
            processed=self.progress.processed_count,
            success=self.progress.success_count,
            errors=self.progress.error_count,
            trades=self.progress.trades_found,
            duration_seconds=round(duration, 1),
        )
        return CrawlReport(
            state=self.state,
            total=total,
            processed=self.progress.processed_count,
            success_count=self.progress.success_count,
            error_count=self.progress.error_count,
            trades_found=self.progress.trades_found,
            duration=duration,
            output_path=output_path,
            index=index,
        )

    def _finish_interrupted(self, total: int) -> CrawlReport:
        self.state = CrawlState.INTERRUPTED
        saved = self._save_checkpoint()
        self.logger.warning(
            "Crawl interrupted",
            checkpoint_saved=saved,
            processed=self.progress.processed_count,
            total=total,
            hint="run again (or with --resume) to continue",
        )
        flush_logging()
        return CrawlReport(
            state=self.state,
            total=total,
            processed=self.progress.processed_count,
            success_count=self.progress.success_count,
            error_count=self.progress.error_count,
            trades_found=self.progress.trades_found,
            duration=time.monotonic() - self._started_at,
        )

    # ------------------------------------------------------------------
    # Signals
    # ------------------------------------------------------------------

    def _cancel_crawl(self) -> None:
        if self._task is not None and not self._task.done():
            self._task.cancel()

    def _setup_signal_handlers(self) -> None:
        def signal_handler(signum: int, frame: Any) -> None:
            self.interrupt(signum)

        for signum in (signal.SIGINT, signal.SIGTERM):
            try:
                self._original_handlers[signum] = signal.signal(signum, signal_handler)
            except ValueError:
                # Not on the main thread
                self.logger.debug("Cannot install signal handler", signal=signum)

    def _cleanup_signal_handlers(self) -> None:
        for signum, handler in self._original_handlers.items():
            signal.signal(signum, handler)
        self._original_handlers.clear()


# ----------------------------------------------------------------------
# Extraction dry run
# ----------------------------------------------------------------------


@dataclass
class ExtractionCheck:
    internal_id: str
    launcher: str
    events: int = 0
    event_types: Dict[str, int] = field(default_factory=dict)
    trades: List[TradeRecord] = field(default_factory=list)
    expected_price: Optional[float] = None
    expected_price_found: Optional[bool] = None
    error: Optional[str] = None

    @property
    def passed(self) -> bool:
        return self.error is None and bool(self.trades)


async def validate_extraction(
    config: Config,
    fetcher: JsonFetcher,
    extractor: TradeExtractor,
    floor_xch: Optional[float] = None,
) -> List[ExtractionCheck]:
    """Fetch the configured known sales and report what extraction finds, without writing anything."""
    checks: List[ExtractionCheck] = []
    for known in config.collection.validation_entities:
        check = ExtractionCheck(
            internal_id=known.internal_id, launcher=known.launcher, expected_price=known.expected_price
        )
        checks.append(check)
        log = logger.bind(internal_id=known.internal_id, launcher=known.launcher)

        try:
            payload = await fetcher.fetch_json(
                config.collection.url_for(known.launcher), max_retries=config.crawler.validate_max_retries
            )
        except Exception as e:
            check.error = str(e)
            log.error("Validation fetch failed", error=str(e))
            continue

        events = payload.get("events") if isinstance(payload, dict) else None
        events = events if isinstance(events, list) else []
        check.events = len(events)
        for event in events:
            event_type = str(event.get("type")) if isinstance(event, dict) else "invalid"
            check.event_types[event_type] = check.event_types.get(event_type, 0) + 1
        log.info("Fetched events", events=check.events, event_types=check.event_types)

        check.trades = extractor.extract(payload, Entity(known.internal_id, known.launcher), floor_xch)
        for trade in check.trades:
            log.info(
                "Trade found",
                timestamp=trade.timestamp,
                price_xch=trade.price_xch,
                buyer=trade.buyer_address,
                seller=trade.seller_address,
                flags=trade.flags.model_dump(),
            )
        if not check.trades:
            log.warning("No trades found")

        if known.expected_price is not None:
            check.expected_price_found = any(
                t.price_xch is not None and abs(t.price_xch - known.expected_price) < 0.1 for t in check.trades
            )
            if not check.expected_price_found:
                log.warning("Expected trade price not found", expected_price=known.expected_price)
    return checks
