"""
Turns an item's marketplace event history into normalized trade records.
"""

from __future__ import annotations

import math
from typing import Any, List, Optional

import structlog
from pydantic import ValidationError

from salesindex.config import ExtractionConfig
from salesindex.extractor.models import Number, RawEvent, TradeFlags, TradeProvenance, TradeRecord
from salesindex.protocols import Entity

logger = structlog.get_logger(__name__)


def normalize_price(raw: Any, threshold: float = 1e9, factor: float = 1e12) -> Optional[float]:
    """
    Convert a reported price to XCH.

    Integer values at or above ``threshold`` are mojos and get divided by
    ``factor``. Every other number is already XCH. Missing, non-numeric and
    non-finite values normalize to None.
    """
    if raw is None or isinstance(raw, bool):
        return None
    try:
        value = float(raw)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(value):
        return None
    if value.is_integer() and value >= threshold:
        return value / factor
    return value


def compute_flags(
    price_xch: Optional[float],
    buyer_address: Optional[str],
    seller_address: Optional[str],
    floor_xch: Optional[float],
    extreme_multiple: float = 50.0,
) -> TradeFlags:
    flags = TradeFlags()
    if buyer_address and seller_address and buyer_address == seller_address:
        flags.same_owner = True
    if price_xch is not None:
        if price_xch <= 0:
            flags.extreme = True
        elif floor_xch and price_xch > extreme_multiple * floor_xch:
            flags.extreme = True
    return flags


class TradeExtractor:
    """Filters trade events, derives their XCH price and flags suspicious ones."""

    def __init__(self, config: ExtractionConfig, collection_id: str) -> None:
        self.config = config
        self.collection_id = collection_id

    def _normalize(self, raw: Any) -> Optional[float]:
        return normalize_price(raw, self.config.mojo_threshold, self.config.mojo_per_xch)

    @staticmethod
    def derived_price(event: RawEvent) -> Optional[Number]:
        """Sum of positive native-currency payments, or None when there are none."""
        total: Number = 0
        for payment in event.payments:
            if payment.asset_id is None and payment.amount is not None and payment.amount > 0:
                total += payment.amount
        return total if total > 0 else None

    def _parse_events(self, payload: Any, launcher: str) -> List[RawEvent]:
        events = payload.get("events") if isinstance(payload, dict) else None
        if not isinstance(events, list):
            logger.debug("No events array", launcher=launcher)
            return []

        parsed: List[RawEvent] = []
        for item in events:
            if not isinstance(item, dict) or item.get("type") != self.config.trade_event_type:
                continue
            try:
                parsed.append(RawEvent.model_validate(item))
            except ValidationError as e:
                logger.warning("Skipping malformed trade event", launcher=launcher, errors=e.error_count())
        return parsed

    def extract(self, payload: Any, entity: Entity, floor_xch: Optional[float] = None) -> List[TradeRecord]:
        """Return one record per trade event priced at or above the secondary-market floor."""
        records: List[TradeRecord] = []
        for event in self._parse_events(payload, entity.launcher):
            reported = event.xch_price
            derived = self.derived_price(event) if reported is None else None
            price_raw = reported if reported is not None else derived
            price_xch = self._normalize(price_raw)

            if price_xch is None or price_xch < self.config.min_secondary_price:
                logger.debug(
                    "Dropping trade below secondary floor",
                    launcher=entity.launcher,
                    price_xch=price_xch,
                    timestamp=event.timestamp,
                )
                continue

            records.append(
                TradeRecord(
                    internal_id=entity.internal_id,
                    launcher=entity.launcher,
                    timestamp=event.timestamp,
                    price_raw=price_raw if isinstance(price_raw, (int, float)) else price_xch,
                    price_xch_reported=self._normalize(reported),
                    price_xch_computed=self._normalize(derived),
                    price_xch=price_xch,
                    is_valid_price=price_xch > 0,
                    flags=compute_flags(
                        price_xch,
                        event.buyer_address,
                        event.seller_address,
                        floor_xch,
                        self.config.extreme_floor_multiple,
                    ),
                    buyer_address=event.buyer_address,
                    seller_address=event.seller_address,
                    buyer_profile=event.owner,
                    seller_profile=event.previous_owner,
                    collection_id=self.collection_id,
                    raw=TradeProvenance(
                        timestamp=event.timestamp,
                        event_index=event.event_index,
                        nft_id=event.nft_id,
                        collection_id=self.collection_id,
                    ),
                )
            )
        return records
