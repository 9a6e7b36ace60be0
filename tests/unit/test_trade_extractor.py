"""
Tests for trade extraction, price normalization and manipulation flags.
"""

import math

import pytest
from hypothesis import given
from hypothesis import strategies as st

from salesindex.config import ExtractionConfig
from salesindex.extractor import TradeExtractor, compute_flags, dedupe_key, normalize_price
from salesindex.protocols import Entity
from tests.helpers import details, trade_event

COLLECTION = "col1test"
ENTITY = Entity(internal_id="1563", launcher="nft1563")


@pytest.fixture
def extractor():
    return TradeExtractor(ExtractionConfig(), COLLECTION)


@pytest.mark.unit
class TestNormalizePrice:
    @pytest.mark.parametrize(
        "raw,expected",
        [
            (3.3, 3.3),
            (2, 2.0),
            (2_000_000_000_000, 2.0),
            (1_000_000_000, 0.001),
            (999_999_999, 999_999_999.0),
            ("4.5", 4.5),
            (0, 0.0),
        ],
    )
    def test_values(self, raw, expected):
        assert normalize_price(raw) == pytest.approx(expected)

    @pytest.mark.parametrize("raw", [None, "abc", float("nan"), float("inf"), {"x": 1}, [1], True])
    def test_invalid_values_are_none(self, raw):
        assert normalize_price(raw) is None

    def test_large_fractional_value_is_not_mojos(self):
        assert normalize_price(1_500_000_000.5) == 1_500_000_000.5

    @given(st.integers(min_value=1_000_000_000, max_value=10**18))
    def test_mojo_integers_divide_by_factor(self, mojos):
        assert normalize_price(mojos) == pytest.approx(mojos / 1e12)

    @given(st.floats(min_value=0, max_value=1e6, allow_nan=False))
    def test_small_xch_values_pass_through(self, value):
        result = normalize_price(value)
        assert result is not None and math.isclose(result, value)


@pytest.mark.unit
class TestComputeFlags:
    def test_same_owner(self):
        assert compute_flags(3.0, "xch1a", "xch1a", 1.0).same_owner is True

    def test_missing_addresses_are_not_same_owner(self):
        assert compute_flags(3.0, None, None, 1.0).same_owner is False

    def test_extreme_above_floor_multiple(self):
        assert compute_flags(51.0, "a", "b", 1.0).extreme is True
        assert compute_flags(50.0, "a", "b", 1.0).extreme is False

    def test_extreme_without_floor_only_for_non_positive(self):
        assert compute_flags(1e6, "a", "b", None).extreme is False
        assert compute_flags(0.0, "a", "b", None).extreme is True


@pytest.mark.unit
class TestTradeExtractor:
    def test_reported_price_in_mojos(self, extractor):
        payload = details(trade_event(price=2_000_000_000_000))
        [record] = extractor.extract(payload, ENTITY)

        assert record.price_xch == 2.0
        assert record.price_raw == 2_000_000_000_000
        assert record.price_xch_reported == 2.0
        assert record.price_xch_computed is None
        assert record.is_valid_price is True
        assert record.internal_id == "1563"
        assert record.collection_id == COLLECTION

    def test_only_trade_events_are_used(self, extractor):
        payload = details(
            trade_event(price=5.0, event_type=0),
            trade_event(price=5.0, event_type=1),
            trade_event(price=5.0, event_index=3),
        )
        records = extractor.extract(payload, ENTITY)
        assert [r.raw.event_index for r in records] == [3]

    def test_drops_trades_below_secondary_floor(self, extractor):
        payload = details(
            trade_event(price=0.5, event_index=0),
            trade_event(price=0.8, event_index=1),
            trade_event(price=None, event_index=2),
        )
        records = extractor.extract(payload, ENTITY)
        assert [r.price_xch for r in records] == [0.8]

    def test_price_derived_from_native_payments(self, extractor):
        payments = [
            {"amount": 1_500_000_000_000, "asset_id": None},
            {"amount": 500_000_000_000, "asset_id": None},
            {"amount": 9_000_000_000_000, "asset_id": "cat-token"},
            {"amount": -1, "asset_id": None},
        ]
        [record] = extractor.extract(details(trade_event(price=None, payments=payments)), ENTITY)

        assert record.price_raw == 2_000_000_000_000
        assert record.price_xch == 2.0
        assert record.price_xch_computed == 2.0
        assert record.price_xch_reported is None

    def test_same_owner_trade_is_kept_and_flagged(self, extractor):
        payload = details(trade_event(price=3.0, buyer="xch1same", seller="xch1same"))
        [record] = extractor.extract(payload, ENTITY)
        assert record.flags.same_owner is True
        assert record.flags.extreme is False

    def test_extreme_trade_uses_floor(self, extractor):
        [record] = extractor.extract(details(trade_event(price=500.0)), ENTITY, floor_xch=2.0)
        assert record.flags.extreme is True

    def test_addresses_and_profiles(self, extractor):
        event = trade_event(owner={"name": "buyer"}, previous_owner={"name": "seller"})
        [record] = extractor.extract(details(event), ENTITY)
        assert record.buyer_address == "xch1buyer"
        assert record.seller_address == "xch1seller"
        assert record.buyer_profile == {"name": "buyer"}
        assert record.seller_profile == {"name": "seller"}

    @pytest.mark.parametrize("payload", [None, {}, {"events": None}, {"events": "nope"}, []])
    def test_missing_events_yield_nothing(self, extractor, payload):
        assert extractor.extract(payload, ENTITY) == []

    def test_malformed_event_is_skipped(self, extractor):
        payload = details(
            trade_event(price=3.0, event_index="not-an-int"),
            trade_event(price=4.0, event_index=1),
        )
        records = extractor.extract(payload, ENTITY)
        assert [r.price_xch for r in records] == [4.0]


@pytest.mark.unit
class TestDedupeKey:
    def test_full_key(self):
        assert dedupe_key("nft1", "2024-01-01T00:00:00", 4) == "nft1|2024-01-01T00:00:00|4"

    def test_zero_index_is_kept(self):
        assert dedupe_key("nft1", "t", 0) == "nft1|t|0"

    def test_missing_parts_are_unknown(self):
        assert dedupe_key("nft1", None, None) == "nft1|unknown|unknown"

    def test_record_property(self, extractor):
        [record] = extractor.extract(details(trade_event(timestamp="t1", event_index=7)), ENTITY)
        assert record.dedupe_key == "nft1563|t1|7"
