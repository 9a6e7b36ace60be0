from .models import RawEvent, TradeFlags, TradeProvenance, TradeRecord, dedupe_key
from .trade_extractor import TradeExtractor, compute_flags, normalize_price

__all__ = [
    "RawEvent",
    "TradeFlags",
    "TradeProvenance",
    "TradeRecord",
    "TradeExtractor",
    "compute_flags",
    "dedupe_key",
    "normalize_price",
]
