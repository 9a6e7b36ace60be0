"""
Data models for marketplace events and the trade records derived from them.
"""

from __future__ import annotations

from typing import Any, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

Number = Union[int, float]


# ---------------------------------------------------------------------------
# Upstream payload
# ---------------------------------------------------------------------------


class Payment(BaseModel):
    model_config = ConfigDict(extra="ignore")

    amount: Optional[Number] = None
    asset_id: Optional[str] = None


class AddressRef(BaseModel):
    model_config = ConfigDict(extra="ignore")

    encoded_id: Optional[str] = None


class RawEvent(BaseModel):
    """One entry of an item's ``events`` array. Unknown fields are ignored."""

    model_config = ConfigDict(extra="ignore")

    type: Optional[int] = None
    timestamp: Optional[str] = None
    xch_price: Optional[Any] = None
    payments: List[Payment] = Field(default_factory=list)
    address: Optional[AddressRef] = None
    previous_address: Optional[AddressRef] = None
    owner: Optional[Any] = None
    previous_owner: Optional[Any] = None
    event_index: Optional[int] = None
    nft_id: Optional[str] = None

    @property
    def buyer_address(self) -> Optional[str]:
        return self.address.encoded_id if self.address else None

    @property
    def seller_address(self) -> Optional[str]:
        return self.previous_address.encoded_id if self.previous_address else None


# ---------------------------------------------------------------------------
# Output records
# ---------------------------------------------------------------------------


class TradeFlags(BaseModel):
    """Anti-manipulation markers. Flagged trades are kept, never dropped."""

    same_owner: bool = False
    extreme: bool = False


class TradeProvenance(BaseModel):
    """Minimal upstream fields kept for auditing a record."""

    timestamp: Optional[str] = None
    event_index: Optional[int] = None
    nft_id: Optional[str] = None
    collection_id: str


class TradeRecord(BaseModel):
    """One accepted secondary-market sale. ``price_xch`` is always in XCH."""

    internal_id: Optional[str] = None
    launcher: str
    timestamp: Optional[str] = None
    price_raw: Optional[Number] = None
    price_xch_reported: Optional[float] = None
    price_xch_computed: Optional[float] = None
    price_xch: Optional[float] = None
    is_valid_price: bool = False
    flags: TradeFlags = Field(default_factory=TradeFlags)
    buyer_address: Optional[str] = None
    seller_address: Optional[str] = None
    buyer_profile: Optional[Any] = None
    seller_profile: Optional[Any] = None
    collection_id: str
    token_id: Optional[str] = None
    currency: str = "xch"
    raw: TradeProvenance

    @property
    def dedupe_key(self) -> str:
        return dedupe_key(self.launcher, self.timestamp, self.raw.event_index)


def dedupe_key(launcher: str, timestamp: Optional[str], event_index: Optional[int]) -> str:
    """Stable identity of a trade: ``launcher|timestamp|event_index`` with ``unknown`` for gaps."""
    ts = timestamp or "unknown"
    index = "unknown" if event_index is None else str(event_index)
    return f"{launcher}|{ts}|{index}"
