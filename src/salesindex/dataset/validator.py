"""
Post-build integrity checks for a published sales index.

The validator reads the index as plain JSON rather than through the pydantic
models so that it can report every problem in a damaged file instead of
stopping at the first one.
"""

from __future__ import annotations

import json
import math
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

import structlog

from salesindex.config import ValidationEntity
from salesindex.dataset.index_builder import INDEX_SCHEMA_VERSION
from salesindex.extractor.models import dedupe_key

logger = structlog.get_logger(__name__)

PRICE_TOLERANCE = 0.1


@dataclass
class PriceStats:
    count: int
    min: float
    q25: float
    median: float
    q75: float
    max: float
    below_threshold: int


@dataclass
class KnownSaleResult:
    internal_id: str
    launcher: str
    events_found: int
    expected_price: Optional[float]
    price_found: bool
    prices: List[float] = field(default_factory=list)


@dataclass
class ValidationReport:
    """Outcome of validating one index file. ``issues`` fail it, ``warnings`` do not."""

    path: Path
    issues: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    event_issues: List[str] = field(default_factory=list)
    duplicate_keys: List[str] = field(default_factory=list)
    total_events: int = 0
    count_mapped: int = 0
    count_valid_prices: int = 0
    price_stats: Optional[PriceStats] = None
    known_sales: List[KnownSaleResult] = field(default_factory=list)

    @property
    def passed(self) -> bool:
        return not self.issues and not self.event_issues and not self.duplicate_keys


def _quantile(sorted_values: Sequence[float], fraction: float) -> float:
    return sorted_values[min(len(sorted_values) - 1, int(len(sorted_values) * fraction))]


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


class IndexValidator:
    def __init__(
        self,
        collection_id: str,
        min_secondary_price: float = 0.8,
        known_sales: Optional[Sequence[ValidationEntity]] = None,
    ) -> None:
        self.collection_id = collection_id
        self.min_secondary_price = min_secondary_price
        self.known_sales = list(known_sales or [])

    def validate_file(self, path: Path) -> ValidationReport:
        path = Path(path)
        report = ValidationReport(path=path)
        if not path.is_file():
            report.issues.append(f"Sales index file not found: {path}")
            return report
        try:
            document = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            report.issues.append(f"Failed to read sales index: {e}")
            return report
        return self.validate(document, report)

    def validate(self, document: Any, report: Optional[ValidationReport] = None) -> ValidationReport:
        report = report or ValidationReport(path=Path("<memory>"))
        if not isinstance(document, dict):
            report.issues.append("Sales index is not a JSON object")
            return report

        self._check_schema(document, report)
        events = document.get("events") if isinstance(document.get("events"), list) else []
        report.total_events = len(events)
        report.count_mapped = document.get("count_mapped") or 0
        report.count_valid_prices = document.get("count_valid_prices") or 0
        if not events:
            report.warnings.append("No events found in output (this may be normal if no sales occurred)")

        prices = self._check_events(events, report)
        self._check_prices(prices, report)
        self._check_known_sales(events, report)

        logger.info(
            "Sales index validated",
            path=str(report.path),
            passed=report.passed,
            issues=len(report.issues),
            event_issues=len(report.event_issues),
            duplicates=len(report.duplicate_keys),
            warnings=len(report.warnings),
        )
        return report

    def _check_schema(self, document: Dict[str, Any], report: ValidationReport) -> None:
        version = document.get("schema_version")
        if not version:
            report.issues.append("Missing schema_version")
        elif version != INDEX_SCHEMA_VERSION:
            report.warnings.append(f"Unexpected schema_version: {version} (expected {INDEX_SCHEMA_VERSION})")

        if not document.get("generated_at"):
            report.issues.append("Missing generated_at")

        collection_id = document.get("collection_id")
        if not collection_id:
            report.issues.append("Missing collection_id")
        elif collection_id != self.collection_id:
            report.warnings.append(f"Collection ID mismatch: {collection_id} (expected {self.collection_id})")

        if "events" not in document:
            report.issues.append("Missing events array")
        elif not isinstance(document["events"], list):
            report.issues.append("events is not an array")

    def _check_events(self, events: List[Any], report: ValidationReport) -> List[float]:
        prices: List[float] = []
        seen = set()
        invalid = 0
        for i, event in enumerate(events):
            if not isinstance(event, dict):
                report.event_issues.append(f"Event {i}: not an object")
                continue
            if not event.get("launcher") and not event.get("internal_id"):
                report.event_issues.append(f"Event {i}: Missing both launcher and internal_id")

            price = event.get("price_xch")
            if price is None:
                if event.get("is_valid_price"):
                    report.event_issues.append(f"Event {i}: is_valid_price=true but price_xch is null")
            elif not _is_number(price) or not math.isfinite(price) or price <= 0:
                invalid += 1
                report.event_issues.append(f"Event {i}: Invalid price: {price}")
            else:
                prices.append(float(price))

            raw = event.get("raw") if isinstance(event.get("raw"), dict) else {}
            key = dedupe_key(event.get("launcher") or "unknown", event.get("timestamp"), raw.get("event_index"))
            if key in seen:
                report.duplicate_keys.append(f"Event {i}: Duplicate key: {key}")
            seen.add(key)

            flags = event.get("flags")
            if not isinstance(flags, dict):
                report.event_issues.append(f"Event {i}: Missing flags object")
            else:
                for name in ("same_owner", "extreme"):
                    if not isinstance(flags.get(name), bool):
                        report.event_issues.append(f"Event {i}: flags.{name} is not boolean")

        if invalid:
            report.issues.append(f"{invalid} invalid prices (<= 0 or NaN)")
        return prices

    def _check_prices(self, prices: List[float], report: ValidationReport) -> None:
        if not prices:
            report.warnings.append("No valid prices found")
            return
        values = sorted(prices)
        below = sum(1 for p in values if p < self.min_secondary_price)
        report.price_stats = PriceStats(
            count=len(values),
            min=values[0],
            q25=_quantile(values, 0.25),
            median=_quantile(values, 0.5),
            q75=_quantile(values, 0.75),
            max=values[-1],
            below_threshold=below,
        )
        if below:
            report.warnings.append(f"{below} prices below {self.min_secondary_price} XCH threshold")

    def _check_known_sales(self, events: List[Any], report: ValidationReport) -> None:
        if not events:
            if self.known_sales:
                report.warnings.append("Cannot check known sales: no events in output")
            return

        for known in self.known_sales:
            matching = [
                e
                for e in events
                if isinstance(e, dict) and (e.get("internal_id") == known.internal_id or e.get("launcher") == known.launcher)
            ]
            prices = [float(e["price_xch"]) for e in matching if _is_number(e.get("price_xch"))]
            found = known.expected_price is None or any(
                abs(p - known.expected_price) < PRICE_TOLERANCE for p in prices
            )
            report.known_sales.append(
                KnownSaleResult(
                    internal_id=known.internal_id,
                    launcher=known.launcher,
                    events_found=len(matching),
                    expected_price=known.expected_price,
                    price_found=bool(matching) and found,
                    prices=prices,
                )
            )
            if not matching:
                report.warnings.append(f"NFT #{known.internal_id}: Expected in output but not found")
            elif not found:
                report.warnings.append(f"NFT #{known.internal_id}: Expected price {known.expected_price} XCH not found")
