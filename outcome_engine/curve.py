"""
curve.py - Vectorised maturity payoff curves.

payoff_curve() evaluates a bucket's maturity redemption, as a fraction of
notional, over a grid of final reference levels. The grid defaults to
0.00 .. 1.60 in 0.01 steps. Values agree with the scalar formulas in
payout.py at every grid point; the curve only trades Decimal exactness for
numpy arrays, which is what chart consumers want.
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

import numpy as np

from .core import CURVE_STEP, DEFAULT_CURVE_MAX_LEVEL, require_exhaustive, dispatch
from .terms import (
    TERMS_VARIANTS, Terms,
    RegularIncomeTerms, CapitalProtectionTerms, BoostedGrowthTerms,
)


@dataclass(frozen=True, slots=True)
class CurveMarker:
    """A labelled level on the curve (fraction of initial)."""
    label: str
    level: float


@dataclass(frozen=True, eq=False)
class PayoffCurve:
    levels: np.ndarray
    redemption: np.ndarray
    markers: Tuple[CurveMarker, ...]

    def as_points(self) -> List[Tuple[float, float]]:
        return [(float(x), float(y)) for x, y in zip(self.levels, self.redemption)]


def default_levels(max_level: float = DEFAULT_CURVE_MAX_LEVEL, step: float = CURVE_STEP) -> np.ndarray:
    """Grid 0.00 .. max_level inclusive, rounded to kill float drift."""
    count = int(round(max_level / step)) + 1
    return np.round(np.arange(count) * step, 10)


def _pct(value) -> float:
    return float(value) / 100.0


def _regular_income(terms: RegularIncomeTerms, levels: np.ndarray, breached: bool,
                    coupon_count: int) -> Tuple[np.ndarray, List[CurveMarker]]:
    conversion = _pct(terms.conversion_level_pct)
    coupons = _pct(terms.coupon_rate_pct) / terms.coupon_freq_per_year * coupon_count
    if terms.is_geared_put:
        strike = _pct(terms.strike_pct)
        redemption = np.where(levels < conversion, levels / strike, 1.0) + coupons
        markers = [CurveMarker("Knock-In Barrier", conversion), CurveMarker("Strike", strike)]
    else:
        redemption = np.where(levels < conversion, levels, 1.0) + coupons
        markers = [CurveMarker("Protection Level", conversion)]
    if terms.autocall_level_pct is not None:
        markers.append(CurveMarker("Autocall Trigger", _pct(terms.autocall_level_pct)))
    return redemption, markers


def _capital_protection(terms: CapitalProtectionTerms, levels: np.ndarray, breached: bool,
                        coupon_count: int) -> Tuple[np.ndarray, List[CurveMarker]]:
    floor = _pct(terms.capital_protection_pct)
    start = _pct(terms.participation_start_pct)
    rate = _pct(terms.participation_rate_pct)
    markers = [CurveMarker("Participation Start", start)]
    if terms.has_knock_in:
        markers.append(CurveMarker("Knock-In", _pct(terms.knock_in_level_pct)))
    if breached:
        return levels.astype(float), markers

    participating = floor + (levels - start) * rate
    redemption = np.where(levels < start, floor, participating)
    if terms.has_cap:
        cap = _pct(terms.cap_level_pct)
        redemption = np.minimum(redemption, cap)
        if rate > 0:
            markers.append(CurveMarker("Cap", start + (cap - floor) / rate))
    return redemption, markers


def _boosted_growth(terms: BoostedGrowthTerms, levels: np.ndarray, breached: bool,
                    coupon_count: int) -> Tuple[np.ndarray, List[CurveMarker]]:
    bonus = _pct(terms.bonus_level_pct)
    markers = [
        CurveMarker("Bonus Barrier", _pct(terms.barrier_pct)),
        CurveMarker("Bonus Level", bonus),
    ]
    if breached:
        return levels * _pct(terms.effective_participation_pct), markers
    return np.maximum(levels, bonus), markers


_HANDLERS = require_exhaustive("curve", {
    RegularIncomeTerms: _regular_income,
    CapitalProtectionTerms: _capital_protection,
    BoostedGrowthTerms: _boosted_growth,
}, TERMS_VARIANTS)


def payoff_curve(
    terms: Terms,
    levels: Optional[Sequence[float]] = None,
    *,
    breached: bool = False,
    coupon_count: int = 0,
) -> PayoffCurve:
    """
    Maturity redemption (fraction of notional) over final reference levels.

    Args:
        terms: Bucket terms.
        levels: Final levels as fractions of initial (default grid if None).
        breached: Knock-in (Capital Protection) or barrier (Boosted Growth)
            already triggered. Regular Income breaches follow from the level.
        coupon_count: Regular Income coupons added to every point.

    Example:
        >>> curve = payoff_curve(BoostedGrowthTerms(60, 125), [0.9, 1.4])
        >>> curve.redemption.tolist()
        [1.25, 1.4]
    """
    grid = default_levels() if levels is None else np.asarray(levels, dtype=float)
    if np.any(grid < 0):
        raise ValueError("curve levels cannot be negative")
    handler = dispatch("curve", _HANDLERS, terms)
    redemption, markers = handler(terms, grid, breached, coupon_count)
    return PayoffCurve(levels=grid, redemption=np.asarray(redemption, dtype=float),
                       markers=tuple(markers))
