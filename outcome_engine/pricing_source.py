"""
pricing_source.py - Price inputs for the outcome engine

The engine never fetches market data. Current and historical closes are
handed to it through a PricingSource.

Classes:
- PricingSource: Protocol defining the pricing interface
- StaticPricingSource: Time-independent quotes (what-if and tests)
- TimeSeriesPricingSource: Historical closes with point-in-time lookup

Functions:
- basket_level_at: Reference level of a basket from a pricing source
"""

from __future__ import annotations
from datetime import datetime
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Protocol, Set, Tuple, runtime_checkable
from bisect import bisect_right

from .basket import Basket, BasketResolution, resolve_performances
from .numeric import to_decimal


@runtime_checkable
class PricingSource(Protocol):
    """
    Protocol for pricing sources.

    A pricing source provides prices of underlyings at specific timestamps.
    A missing price is None, never zero.
    """

    def get_price(self, symbol: str, timestamp: datetime) -> Optional[Decimal]:
        """Get the price of a single underlying at a specific timestamp."""
        ...

    def get_prices(self, symbols: Iterable[str], timestamp: datetime) -> Dict[str, Decimal]:
        """Get prices for multiple underlyings; missing symbols are omitted."""
        ...


class StaticPricingSource:
    """
    Pricing source with static prices (time-independent).

    Prices remain constant regardless of timestamp.
    """

    def __init__(self, prices: Dict[str, Decimal]):
        self.prices = {symbol: to_decimal(price) for symbol, price in prices.items()}

    def get_price(self, symbol: str, timestamp: datetime) -> Optional[Decimal]:
        """Get static price (timestamp is ignored)."""
        return self.prices.get(symbol)

    def get_prices(self, symbols: Iterable[str], timestamp: datetime) -> Dict[str, Decimal]:
        return {s: self.prices[s] for s in symbols if s in self.prices}

    def update_prices(self, prices: Dict[str, Decimal]):
        self.prices.update({symbol: to_decimal(price) for symbol, price in prices.items()})

    def __repr__(self):
        return f"StaticPricingSource({len(self.prices)} prices)"


class TimeSeriesPricingSource:
    """
    Pricing source with historical closes.

    Uses the most recent price at or before the requested timestamp, so a
    weekend or holiday lookup returns the previous close.

    Examples:
        pricer = TimeSeriesPricingSource({
            'AAPL': [(t0, 100), (t1, 102), (t2, 101)],
            'MSFT': [(t0, 200), (t1, 205), (t2, 203)]
        })
        pricer.add_price('AAPL', t3, 99)
    """

    def __init__(self, price_paths: Optional[Dict[str, List[Tuple[datetime, Decimal]]]] = None):
        self.price_history: Dict[str, List[Tuple[datetime, Decimal]]] = {}
        if price_paths:
            for symbol, path in price_paths.items():
                if not path:
                    continue
                self.price_history[symbol] = sorted(
                    ((ts, to_decimal(p)) for ts, p in path), key=lambda x: x[0]
                )

    def add_price(self, symbol: str, timestamp: datetime, price: Decimal):
        history = self.price_history.setdefault(symbol, [])
        history.append((timestamp, to_decimal(price)))
        history.sort(key=lambda x: x[0])

    def add_prices(self, prices: Dict[str, Decimal], timestamp: datetime):
        for symbol, price in prices.items():
            self.add_price(symbol, timestamp, price)

    def get_price(self, symbol: str, timestamp: datetime) -> Optional[Decimal]:
        """
        Get price at or before the specified timestamp.

        Returns None if no price data is available at or before the timestamp.
        Binary search, O(log n).
        """
        history = self.price_history.get(symbol)
        if not history:
            return None
        timestamps = [ts for ts, _ in history]
        idx = bisect_right(timestamps, timestamp)
        if idx == 0:
            return None
        return history[idx - 1][1]

    def get_prices(self, symbols: Iterable[str], timestamp: datetime) -> Dict[str, Decimal]:
        prices = {}
        for symbol in symbols:
            price = self.get_price(symbol, timestamp)
            if price is not None:
                prices[symbol] = price
        return prices

    def get_all_timestamps(self, symbol: Optional[str] = None) -> List[datetime]:
        """
        Sorted unique timestamps, for one symbol or the union of all of them.
        """
        if symbol:
            return [ts for ts, _ in self.price_history.get(symbol, [])]
        all_times: Set[datetime] = set()
        for path in self.price_history.values():
            all_times.update(ts for ts, _ in path)
        return sorted(all_times)

    def __repr__(self):
        total = sum(len(history) for history in self.price_history.values())
        return f"TimeSeriesPricingSource({len(self.price_history)} symbols, {total} observations)"


def basket_resolution_at(basket: Basket, source: PricingSource, timestamp: datetime) -> Optional[BasketResolution]:
    """
    Resolve the basket at timestamp using the source's prices.

    Returns None when any underlying has no price at or before timestamp.
    """
    prices = source.get_prices(basket.symbols, timestamp)
    if len(prices) != len(basket):
        return None
    performances = [
        to_decimal(prices[u.symbol]) / u.initial_price - Decimal("1")
        for u in basket.underlyings
    ]
    return resolve_performances(basket.basket_type, performances)


def basket_level_at(basket: Basket, source: PricingSource, timestamp: datetime) -> Optional[Decimal]:
    """Reference level (fraction of initial) of the basket at timestamp, or None."""
    resolution = basket_resolution_at(basket, source, timestamp)
    return None if resolution is None else resolution.reference_level
