"""
basket.py - Underlyings, baskets and the basket resolver.

This module provides:
1. BreachEvent - immutable record of a barrier/knock-in breach
2. Underlying - one asset of a product, with its append-only breach log
3. Basket - ordered underlyings plus a basket type
4. resolve_basket() / resolve_levels() - reference value and driving underlying

Resolution rules:
    single            -> the only underlying drives (index 0)
    worst_of          -> argmin(performance), ties to the lowest index
    best_of           -> argmax(performance), ties to the lowest index
    average           -> arithmetic mean of performances, no driving index
    equally_weighted  -> same as average

The breach log is the one piece of mutable state in the engine. It is
append-only and guarded by a per-underlying lock, so concurrent evaluations
can never regress a breach or overwrite the first breach date.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import List, Optional, Sequence, Tuple
import logging
import threading

from .core import (
    BASKET_TYPES, BASKET_SINGLE, BASKET_WORST_OF, BASKET_BEST_OF,
    BREACH_AUTOCALL, InvalidBasketError,
)
from .numeric import to_decimal, pct_to_ratio


logger = logging.getLogger(__name__)


# ============================================================================
# BREACH EVENTS
# ============================================================================

@dataclass(frozen=True, slots=True)
class BreachEvent:
    """
    Immutable record of a breach observed on an underlying.

    Attributes:
        date: Observation timestamp of the breach
        kind: "barrier", "knock_in" or "autocall"
        level_pct: The level that was breached, percent of initial
        observed_level: Basket reference level at the time (fraction of initial)
    """
    date: datetime
    kind: str
    level_pct: Decimal
    observed_level: Decimal


# ============================================================================
# UNDERLYING
# ============================================================================

@dataclass(eq=False)
class Underlying:
    """
    One underlying asset of a structured product.

    initial_price is fixed at trade inception. current_price is the only
    field refreshed on reload (update_price). performance and level are
    derived on every access, so they can never go stale.

    The *_pct fields are the bucket's trigger levels as percent of initial;
    the matching absolute prices are derived properties.
    """
    symbol: str
    name: str
    initial_price: Decimal
    current_price: Decimal
    protection_level_pct: Optional[Decimal] = None
    autocall_level_pct: Optional[Decimal] = None
    participation_start_pct: Optional[Decimal] = None
    cap_level_pct: Optional[Decimal] = None
    barrier_level_pct: Optional[Decimal] = None
    breach_log: List[BreachEvent] = field(default_factory=list)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def __post_init__(self):
        if not self.symbol or not self.symbol.strip():
            raise ValueError("symbol cannot be empty")
        self.initial_price = to_decimal(self.initial_price)
        self.current_price = to_decimal(self.current_price)
        self.protection_level_pct = to_decimal(self.protection_level_pct)
        self.autocall_level_pct = to_decimal(self.autocall_level_pct)
        self.participation_start_pct = to_decimal(self.participation_start_pct)
        self.cap_level_pct = to_decimal(self.cap_level_pct)
        self.barrier_level_pct = to_decimal(self.barrier_level_pct)
        if self.initial_price <= Decimal("0"):
            raise ValueError(f"initial_price must be positive for {self.symbol}, got {self.initial_price}")
        if self.current_price <= Decimal("0"):
            raise ValueError(f"current_price must be positive for {self.symbol}, got {self.current_price}")
        self.breach_log = sorted(self.breach_log, key=lambda e: e.date)

    # ------------------------------------------------------------------
    # Derived values
    # ------------------------------------------------------------------

    @property
    def level(self) -> Decimal:
        """Current price as a fraction of initial (1.05 = 105%)."""
        return self.current_price / self.initial_price

    @property
    def performance(self) -> Decimal:
        """current_price / initial_price - 1"""
        return self.current_price / self.initial_price - Decimal("1")

    def _price_at(self, pct: Optional[Decimal]) -> Optional[Decimal]:
        if pct is None:
            return None
        return self.initial_price * pct_to_ratio(pct)

    @property
    def protection_level(self) -> Optional[Decimal]:
        return self._price_at(self.protection_level_pct)

    @property
    def autocall_level(self) -> Optional[Decimal]:
        return self._price_at(self.autocall_level_pct)

    @property
    def participation_start(self) -> Optional[Decimal]:
        return self._price_at(self.participation_start_pct)

    @property
    def cap_level(self) -> Optional[Decimal]:
        return self._price_at(self.cap_level_pct)

    @property
    def barrier_level(self) -> Optional[Decimal]:
        return self._price_at(self.barrier_level_pct)

    # ------------------------------------------------------------------
    # Price refresh
    # ------------------------------------------------------------------

    def update_price(self, price) -> None:
        """Refresh current_price. The breach log is untouched."""
        price = to_decimal(price)
        if price <= Decimal("0"):
            raise ValueError(f"price must be positive for {self.symbol}, got {price}")
        self.current_price = price

    # ------------------------------------------------------------------
    # Breach log (append-only)
    # ------------------------------------------------------------------

    def record_breach(self, event: BreachEvent) -> bool:
        """
        Append a breach event; compare-and-set on the first breach.

        Returns:
            True if this is the first breach of event.kind on this
            underlying, False otherwise. Duplicate (kind, date) records are
            ignored. Existing entries are never removed or rewritten.
        """
        with self._lock:
            same_kind = [e for e in self.breach_log if e.kind == event.kind]
            if any(e.date == event.date for e in same_kind):
                return False
            self.breach_log.append(event)
            self.breach_log.sort(key=lambda e: e.date)
            first = not same_kind
        if first:
            logger.info(
                "%s: first %s breach at %s (level %s%%, observed %s)",
                self.symbol, event.kind, event.date.isoformat(),
                event.level_pct, event.observed_level,
            )
        return first

    def breaches(self, kind: Optional[str] = None) -> Tuple[BreachEvent, ...]:
        with self._lock:
            return tuple(e for e in self.breach_log if kind is None or e.kind == kind)

    def _protective_breaches(self) -> Tuple[BreachEvent, ...]:
        return tuple(e for e in self.breaches() if e.kind != BREACH_AUTOCALL)

    @property
    def barrier_breached(self) -> bool:
        return bool(self._protective_breaches())

    @property
    def barrier_breached_date(self) -> Optional[datetime]:
        """Earliest barrier or knock-in breach date; a later breach can never replace it."""
        log = self._protective_breaches()
        return log[0].date if log else None

    def clone(self, initial_price=None, current_price=None) -> "Underlying":
        """Independent copy (own breach log and lock) with optional price overrides."""
        return Underlying(
            symbol=self.symbol,
            name=self.name,
            initial_price=self.initial_price if initial_price is None else initial_price,
            current_price=self.current_price if current_price is None else current_price,
            protection_level_pct=self.protection_level_pct,
            autocall_level_pct=self.autocall_level_pct,
            participation_start_pct=self.participation_start_pct,
            cap_level_pct=self.cap_level_pct,
            barrier_level_pct=self.barrier_level_pct,
            breach_log=list(self.breaches()),
        )


# ============================================================================
# BASKET
# ============================================================================

def validate_basket(underlyings: Sequence[Underlying], basket_type: str) -> None:
    """
    Check basket invariants.

    Raises:
        InvalidBasketError: Empty list, unknown basket type, a single basket
            without exactly one underlying, or duplicate symbols.
    """
    if basket_type not in BASKET_TYPES:
        raise InvalidBasketError(f"Unknown basket type {basket_type!r}")
    if not underlyings:
        raise InvalidBasketError("Basket must contain at least one underlying")
    if basket_type == BASKET_SINGLE and len(underlyings) != 1:
        raise InvalidBasketError(
            f"Single basket requires exactly 1 underlying, got {len(underlyings)}"
        )
    symbols = [u.symbol for u in underlyings]
    if len(set(symbols)) != len(symbols):
        raise InvalidBasketError(f"Underlying symbols must be unique, got {symbols}")


@dataclass(frozen=True)
class Basket:
    """Non-empty ordered list of underlyings and the rule combining them."""
    underlyings: Tuple[Underlying, ...]
    basket_type: str = BASKET_SINGLE

    def __post_init__(self):
        object.__setattr__(self, 'underlyings', tuple(self.underlyings))
        validate_basket(self.underlyings, self.basket_type)

    def __len__(self) -> int:
        return len(self.underlyings)

    def __getitem__(self, index: int) -> Underlying:
        return self.underlyings[index]

    @property
    def symbols(self) -> Tuple[str, ...]:
        return tuple(u.symbol for u in self.underlyings)

    def clone(self, initial_prices=None, current_prices=None) -> "Basket":
        """
        Independent copy of the basket for what-if evaluation.

        Args:
            initial_prices: Optional {symbol: price} overrides.
            current_prices: Optional {symbol: price} overrides.
        """
        initial_prices = initial_prices or {}
        current_prices = current_prices or {}
        return Basket(
            underlyings=tuple(
                u.clone(
                    initial_price=initial_prices.get(u.symbol),
                    current_price=current_prices.get(u.symbol),
                )
                for u in self.underlyings
            ),
            basket_type=self.basket_type,
        )


# ============================================================================
# RESOLVER
# ============================================================================

@dataclass(frozen=True, slots=True)
class BasketResolution:
    """
    Result of resolving a basket.

    Attributes:
        reference_level: Basket level as a fraction of initial (0.92 = 92%)
        reference_performance: reference_level - 1
        driving_index: Underlying that drives the payoff (None for average baskets)
        per_underlying_performance: Performance of each underlying, in basket order
        worst_index: argmin of performance (first occurrence)
        best_index: argmax of performance (first occurrence)
    """
    reference_level: Decimal
    reference_performance: Decimal
    driving_index: Optional[int]
    per_underlying_performance: Tuple[Decimal, ...]
    worst_index: int
    best_index: int


def resolve_performances(basket_type: str, performances: Sequence[Decimal]) -> BasketResolution:
    """
    Resolve raw per-underlying performances under a basket type.

    Used by resolve_basket() and when replaying historical prices.

    Raises:
        InvalidBasketError: Empty input, unknown type, or single with != 1 value.
    """
    if basket_type not in BASKET_TYPES:
        raise InvalidBasketError(f"Unknown basket type {basket_type!r}")
    if not performances:
        raise InvalidBasketError("Basket must contain at least one underlying")
    if basket_type == BASKET_SINGLE and len(performances) != 1:
        raise InvalidBasketError(
            f"Single basket requires exactly 1 underlying, got {len(performances)}"
        )

    perfs = tuple(to_decimal(p) for p in performances)
    indices = range(len(perfs))
    # min()/max() return the first extreme element, giving lowest-index ties
    worst = min(indices, key=lambda i: perfs[i])
    best = max(indices, key=lambda i: perfs[i])

    if basket_type == BASKET_SINGLE:
        driving: Optional[int] = 0
    elif basket_type == BASKET_WORST_OF:
        driving = worst
    elif basket_type == BASKET_BEST_OF:
        driving = best
    else:
        driving = None

    if driving is None:
        reference_performance = sum(perfs, Decimal("0")) / Decimal(len(perfs))
    else:
        reference_performance = perfs[driving]

    return BasketResolution(
        reference_level=Decimal("1") + reference_performance,
        reference_performance=reference_performance,
        driving_index=driving,
        per_underlying_performance=perfs,
        worst_index=worst,
        best_index=best,
    )


def resolve_levels(basket_type: str, levels: Sequence[Decimal]) -> BasketResolution:
    """Same as resolve_performances() but from levels (price / initial)."""
    return resolve_performances(basket_type, [to_decimal(l) - Decimal("1") for l in levels])


def resolve_basket(basket: Basket) -> BasketResolution:
    """
    Compute the reference performance and driving underlying of a basket.

    Example:
        >>> basket = Basket((
        ...     Underlying("AAPL", "Apple", 100, 110),
        ...     Underlying("MSFT", "Microsoft", 200, 180),
        ... ), "worst_of")
        >>> r = resolve_basket(basket)
        >>> r.driving_index, r.reference_level
        (1, Decimal('0.9'))
    """
    validate_basket(basket.underlyings, basket.basket_type)
    return resolve_performances(basket.basket_type, [u.performance for u in basket.underlyings])
