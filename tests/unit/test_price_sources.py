"""
test_price_sources.py - Unit tests for pricing_source.py

Tests:
- StaticPricingSource: static prices, updates
- TimeSeriesPricingSource: point-in-time lookup, incremental and batch initialization
- basket_resolution_at / basket_level_at
"""

import pytest
from datetime import datetime, timedelta
from decimal import Decimal

from outcome_engine import (
    PricingSource, StaticPricingSource, TimeSeriesPricingSource,
    basket_level_at, basket_resolution_at,
)
from tests.builders import basket


T0 = datetime(2024, 1, 15)
T1 = datetime(2024, 2, 15)
T2 = datetime(2024, 3, 15)


class TestStaticPricingSource:
    """Tests for StaticPricingSource."""

    def test_get_price(self):
        source = StaticPricingSource({'AAPL': 175.0, 'TSLA': 250.0})
        assert source.get_price('AAPL', T0) == Decimal("175.0")

    def test_prices_stored_as_decimal(self):
        source = StaticPricingSource({'AAPL': 175.1})
        assert source.get_price('AAPL', T0) == Decimal("175.1")

    def test_unknown_symbol_is_none(self):
        source = StaticPricingSource({'AAPL': 175.0})
        assert source.get_price('UNKNOWN', T0) is None

    def test_timestamp_ignored(self):
        source = StaticPricingSource({'AAPL': 175.0})
        assert source.get_price('AAPL', T0) == source.get_price('AAPL', T2)

    def test_get_prices_omits_missing(self):
        source = StaticPricingSource({'AAPL': 175.0, 'TSLA': 250.0})
        prices = source.get_prices(['AAPL', 'UNKNOWN'], T0)
        assert prices == {'AAPL': Decimal("175.0")}

    def test_update_prices(self):
        source = StaticPricingSource({'AAPL': 175.0})
        source.update_prices({'AAPL': 180, 'MSFT': 400})
        assert source.get_price('AAPL', T0) == Decimal("180")
        assert source.get_price('MSFT', T0) == Decimal("400")

    def test_satisfies_protocol(self):
        assert isinstance(StaticPricingSource({}), PricingSource)


class TestTimeSeriesPricingSource:
    """Tests for TimeSeriesPricingSource."""

    @pytest.fixture
    def source(self):
        return TimeSeriesPricingSource({
            'AAPL': [(T2, 101), (T0, 100), (T1, 102)],
            'MSFT': [(T0, 200)],
        })

    def test_exact_timestamp(self, source):
        assert source.get_price('AAPL', T1) == Decimal("102")

    def test_previous_close_between_observations(self, source):
        """A weekend lookup returns the last close before it."""
        assert source.get_price('AAPL', T1 + timedelta(days=3)) == Decimal("102")

    def test_before_first_observation_is_none(self, source):
        assert source.get_price('AAPL', T0 - timedelta(days=1)) is None

    def test_unsorted_input_sorted(self, source):
        assert source.get_all_timestamps('AAPL') == [T0, T1, T2]

    def test_add_price_out_of_order(self, source):
        source.add_price('MSFT', T2, 210)
        source.add_price('MSFT', T1, 205)
        assert source.get_price('MSFT', T1) == Decimal("205")
        assert source.get_price('MSFT', T2) == Decimal("210")

    def test_add_prices_batch(self):
        source = TimeSeriesPricingSource()
        source.add_prices({'AAPL': 100, 'MSFT': 200}, T0)
        assert source.get_prices(['AAPL', 'MSFT'], T1) == {
            'AAPL': Decimal("100"), 'MSFT': Decimal("200"),
        }

    def test_all_timestamps_union(self, source):
        assert source.get_all_timestamps() == [T0, T1, T2]

    def test_empty_path_ignored(self):
        source = TimeSeriesPricingSource({'AAPL': []})
        assert source.get_price('AAPL', T0) is None
        assert source.get_all_timestamps() == []

    def test_satisfies_protocol(self, source):
        assert isinstance(source, PricingSource)


class TestBasketAtTimestamp:

    def test_resolution_from_source(self):
        b = basket(1, 1, basket_type="worst_of")
        source = StaticPricingSource({'U0': 110, 'U1': 85})
        resolution = basket_resolution_at(b, source, T0)
        assert resolution.driving_index == 1
        assert resolution.reference_level == Decimal("0.85")

    def test_missing_price_gives_none(self):
        b = basket(1, 1, basket_type="worst_of")
        source = StaticPricingSource({'U0': 110})
        assert basket_resolution_at(b, source, T0) is None
        assert basket_level_at(b, source, T0) is None

    def test_level_uses_history(self):
        b = basket(1)
        source = TimeSeriesPricingSource({'U0': [(T0, 100), (T1, 64)]})
        assert basket_level_at(b, source, T0) == Decimal("1")
        assert basket_level_at(b, source, T2) == Decimal("0.64")

    def test_source_does_not_change_basket(self):
        b = basket(1)
        basket_level_at(b, StaticPricingSource({'U0': 50}), T0)
        assert b[0].current_price == Decimal("100")
