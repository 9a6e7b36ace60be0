"""
Final index assembly: deterministic ordering, summary counts and an atomic write.
"""

from __future__ import annotations

import statistics
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple

import structlog
from pydantic import BaseModel, Field

from salesindex.extractor.models import TradeRecord
from salesindex.utils.atomic import atomic_write_json

logger = structlog.get_logger(__name__)

INDEX_SCHEMA_VERSION = "1.0"
SOURCE_NAME = "mintgarden"


class BuildStats(BaseModel):
    total_nfts: int
    processed_nfts: int
    success_count: int
    error_count: int
    trades_found: int
    rate_limiter_stats: Dict[str, Any] = Field(default_factory=dict)
    error_stats: Dict[str, Any] = Field(default_factory=dict)


class UnmappedSample(BaseModel):
    launcher: str
    timestamp: Optional[str] = None
    price_xch: Optional[float] = None
    source: str = SOURCE_NAME


class SalesIndex(BaseModel):
    schema_version: str = INDEX_SCHEMA_VERSION
    generated_at: str
    collection_id: str
    floor_xch: Optional[float] = None
    count_events: int
    count_mapped: int
    count_valid_prices: int
    build_stats: BuildStats
    events: List[TradeRecord]
    unmapped_sample: List[UnmappedSample]


def utc_timestamp() -> str:
    """Current time as ISO-8601 UTC with millisecond precision and a ``Z`` suffix."""
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def _numeric_id(record: TradeRecord) -> Optional[int]:
    if not record.internal_id:
        return None
    try:
        return int(record.internal_id)
    except ValueError:
        return None


def sort_key(record: TradeRecord) -> Tuple[Tuple[int, int], Tuple[bool, str], str]:
    """
    Total order for index events.

    Records with a numeric internal id come first, ascending by id, followed by
    records without one. Within each id, records are ordered by timestamp with
    missing timestamps last, then by launcher.
    """
    numeric_id = _numeric_id(record)
    id_rank = (0, numeric_id) if numeric_id is not None else (1, 0)
    return id_rank, (not record.timestamp, record.timestamp or ""), record.launcher


def sort_records(records: Sequence[TradeRecord]) -> List[TradeRecord]:
    """Stable deterministic ordering for byte-identical output across runs."""
    return sorted(records, key=sort_key)


def price_summary(records: Sequence[TradeRecord]) -> Optional[Dict[str, float]]:
    prices = [r.price_xch for r in records if r.is_valid_price and r.price_xch is not None]
    if not prices:
        return None
    return {"min": min(prices), "median": statistics.median(prices), "max": max(prices), "count": len(prices)}


class IndexBuilder:
    """Shapes accumulated trade records into the published sales index."""

    def __init__(self, collection_id: str, unmapped_sample_size: int = 200) -> None:
        self.collection_id = collection_id
        self.unmapped_sample_size = unmapped_sample_size

    def build(
        self,
        records: Sequence[TradeRecord],
        build_stats: BuildStats,
        floor_xch: Optional[float] = None,
        generated_at: Optional[str] = None,
    ) -> SalesIndex:
        events = sort_records(records)
        mapped = 0
        unmapped: List[UnmappedSample] = []
        for record in events:
            if record.internal_id:
                mapped += 1
            elif len(unmapped) < self.unmapped_sample_size:
                unmapped.append(
                    UnmappedSample(launcher=record.launcher, timestamp=record.timestamp, price_xch=record.price_xch)
                )

        index = SalesIndex(
            generated_at=generated_at or utc_timestamp(),
            collection_id=self.collection_id,
            floor_xch=floor_xch,
            count_events=len(events),
            count_mapped=mapped,
            count_valid_prices=sum(1 for r in events if r.is_valid_price),
            build_stats=build_stats,
            events=events,
            unmapped_sample=unmapped,
        )

        logger.info(
            "Sales index built",
            events=index.count_events,
            mapped=index.count_mapped,
            valid_prices=index.count_valid_prices,
            unmapped_sample=len(unmapped),
        )
        summary = price_summary(events)
        if summary:
            logger.info("Price summary", **summary)
        return index

    def write(self, index: SalesIndex, path: Path) -> None:
        """
        Atomically write the index to ``path``.

        Raises:
            OSError: If the file cannot be written.
        """
        atomic_write_json(Path(path), index.model_dump(mode="json"))
        logger.info("Sales index written", path=str(path), events=index.count_events)
