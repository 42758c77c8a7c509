"""
payout.py - Terminal payout per bucket.

This module provides:
1. regular_income_payout() - principal plus coupons, or share conversion
2. capital_protection_payout() - floor plus capped participation
3. boosted_growth_payout() - bonus while the barrier holds, tracking after
4. calculate_payout() - exhaustive dispatch from an evaluated trigger status
5. break_even_level() - level at which the investor gets the principal back

Payoff formulas (N = notional, L = final reference level as a fraction
of initial, all *_pct terms in percent):

    Regular Income
        not breached / autocalled   N + coupons
        protection breached         N * L + coupons           (physical)
        geared put, L < knock-in    N * L / K + coupons       (K = strike/100)

    Capital Protection
        issuer call in month m      N * (P/100 + exit/100 * m/12)
        knock-in triggered          N * L
        L*100 <  K                  N * P/100
        L*100 >= K                  N * min(P/100 + (L*100 - K) * a/100/100, cap/100)

    Boosted Growth
        barrier intact              N * max(bonus, L*100) / 100
        barrier breached            N * L * (gearing or 100) / 100

Ratios are never rounded. The amount is rounded once, at the end.
"""

from __future__ import annotations
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional
import logging

from .core import (
    SETTLEMENT_CASH, SETTLEMENT_PHYSICAL,
    require_exhaustive, dispatch,
)
from .numeric import Number, pct_to_ratio, ratio_to_pct, round_money, to_decimal
from .terms import (
    TERMS_VARIANTS, Terms,
    RegularIncomeTerms, CapitalProtectionTerms, BoostedGrowthTerms,
)
from .triggers import (
    TriggerStatus,
    RegularIncomeStatus, CapitalProtectionStatus, BoostedGrowthStatus,
)


logger = logging.getLogger(__name__)


# Outcome names shared with the scenario narrator
OUTCOME_EARLY_REDEMPTION = "Early Redemption"
OUTCOME_CASH_REDEMPTION = "Cash Redemption"
OUTCOME_SHARE_CONVERSION = "Share Conversion"
OUTCOME_PROTECTION_REMOVED = "Protection Removed"
OUTCOME_PROTECTED = "Protected Outcome"
OUTCOME_PARTICIPATING = "Participating Outcome"
OUTCOME_BONUS_PAYOUT = "Bonus Payout"
OUTCOME_BARRIER_BREACHED = "Barrier Breached"

_ONE = Decimal("1")
_HUNDRED = Decimal("100")


@dataclass(frozen=True, slots=True)
class PayoutResult:
    """
    Terminal payout of a product.

    Attributes:
        amount: Total paid to the investor (redemption + coupons), rounded
        redemption_pct: Redemption excluding coupons, percent of notional
        coupons_paid: Coupons included in amount
        outcome: Named outcome (e.g. "Cash Redemption")
        settlement_type: "cash" or "physical"
        projected_shares: Shares delivered on physical settlement, if known
        total_return: amount - notional
        total_return_pct: total_return as percent of notional
    """
    amount: Decimal
    redemption_pct: Decimal
    coupons_paid: Decimal
    outcome: str
    settlement_type: str
    projected_shares: Optional[Decimal]
    total_return: Decimal
    total_return_pct: Decimal


def _result(notional: Decimal, redemption_ratio: Decimal, coupons: Decimal, outcome: str,
            settlement_type: str = SETTLEMENT_CASH,
            projected_shares: Optional[Decimal] = None) -> PayoutResult:
    amount = round_money(notional * redemption_ratio + coupons)
    total_return = amount - notional
    return PayoutResult(
        amount=amount,
        redemption_pct=ratio_to_pct(redemption_ratio),
        coupons_paid=round_money(coupons),
        outcome=outcome,
        settlement_type=settlement_type,
        projected_shares=projected_shares,
        total_return=total_return,
        total_return_pct=ratio_to_pct(total_return / notional),
    )


def _check_notional(notional: Number) -> Decimal:
    notional = to_decimal(notional)
    if notional <= Decimal("0"):
        raise ValueError(f"notional must be positive, got {notional}")
    return notional


def _check_level(reference_level: Number) -> Decimal:
    level = to_decimal(reference_level)
    if level < Decimal("0"):
        raise ValueError(f"reference_level cannot be negative, got {level}")
    return level


# ============================================================================
# REDEMPTION RATIOS (fraction of notional, unrounded)
# ============================================================================

def capital_protection_ratio(terms: CapitalProtectionTerms, reference_level: Decimal) -> Decimal:
    """Maturity redemption as a fraction of notional, protection intact."""
    floor = pct_to_ratio(terms.capital_protection_pct)
    if ratio_to_pct(reference_level) < terms.participation_start_pct:
        return floor
    gain_pct = (ratio_to_pct(reference_level) - terms.participation_start_pct) \
        * pct_to_ratio(terms.participation_rate_pct)
    ratio = floor + pct_to_ratio(gain_pct)
    if terms.has_cap:
        ratio = min(ratio, pct_to_ratio(terms.cap_level_pct))
    return ratio


def boosted_growth_ratio(terms: BoostedGrowthTerms, reference_level: Decimal, barrier_breached: bool) -> Decimal:
    if barrier_breached:
        return reference_level * pct_to_ratio(terms.effective_participation_pct)
    return max(pct_to_ratio(terms.bonus_level_pct), reference_level)


# ============================================================================
# PER-BUCKET PAYOUTS
# ============================================================================

def regular_income_payout(
    terms: RegularIncomeTerms,
    notional: Number,
    reference_level: Number,
    protection_breached: bool,
    coupons_paid: Number = 0,
    autocalled: bool = False,
    driving_initial_price: Optional[Number] = None,
) -> PayoutResult:
    """
    Regular Income redemption.

    Early redemption (autocall) or an intact protection level returns the
    principal in cash. A breach converts into shares: the investor receives
    notional / initial price shares of the driving underlying, worth
    notional * reference_level. A geared put converts at the strike K
    instead: notional / (initial price * K) shares, worth
    notional * reference_level / K.

    Example:
        >>> terms = RegularIncomeTerms(5.75, 4, 70)
        >>> regular_income_payout(terms, 100000, Decimal("1.08"), False, Decimal("5750")).amount
        Decimal('105750.00')
    """
    notional = _check_notional(notional)
    level = _check_level(reference_level)
    coupons = to_decimal(coupons_paid)

    if autocalled:
        return _result(notional, _ONE, coupons, OUTCOME_EARLY_REDEMPTION)
    if not protection_breached:
        return _result(notional, _ONE, coupons, OUTCOME_CASH_REDEMPTION)

    strike = pct_to_ratio(terms.strike_pct) if terms.is_geared_put else _ONE
    shares = None
    if driving_initial_price is not None:
        shares = round_money(notional / (to_decimal(driving_initial_price) * strike))
    return _result(notional, level / strike, coupons, OUTCOME_SHARE_CONVERSION,
                   SETTLEMENT_PHYSICAL, shares)


def capital_protection_payout(
    terms: CapitalProtectionTerms,
    notional: Number,
    reference_level: Number,
    knock_in_triggered: bool = False,
    issuer_call_month: Optional[int] = None,
) -> PayoutResult:
    """
    Capital Protection redemption.

    An issuer call short-circuits everything else. A knock-in voids the
    floor and tracks the basket 1:1.

    Example:
        >>> terms = CapitalProtectionTerms(90, 100, 120)
        >>> capital_protection_payout(terms, 100000, Decimal("1.40")).amount
        Decimal('138000.00')
    """
    notional = _check_notional(notional)
    level = _check_level(reference_level)
    zero = Decimal("0")

    if issuer_call_month is not None:
        if not terms.issuer_callable:
            raise ValueError("issuer_call_month given for a product that is not issuer callable")
        premium = pct_to_ratio(terms.exit_rate_pa_pct) * Decimal(issuer_call_month) / Decimal(12)
        return _result(notional, pct_to_ratio(terms.capital_protection_pct) + premium, zero,
                       OUTCOME_EARLY_REDEMPTION)
    if knock_in_triggered:
        return _result(notional, level, zero, OUTCOME_PROTECTION_REMOVED)

    active = ratio_to_pct(level) >= terms.participation_start_pct
    return _result(notional, capital_protection_ratio(terms, level), zero,
                   OUTCOME_PARTICIPATING if active else OUTCOME_PROTECTED)


def boosted_growth_payout(
    terms: BoostedGrowthTerms,
    notional: Number,
    reference_level: Number,
    barrier_breached: bool,
) -> PayoutResult:
    """
    Boosted Growth redemption.

    Example:
        >>> terms = BoostedGrowthTerms(60, 125)
        >>> boosted_growth_payout(terms, 100000, Decimal("0.90"), False).amount
        Decimal('125000.00')
        >>> boosted_growth_payout(terms, 100000, Decimal("0.55"), True).amount
        Decimal('55000.00')
    """
    notional = _check_notional(notional)
    level = _check_level(reference_level)
    outcome = OUTCOME_BARRIER_BREACHED if barrier_breached else OUTCOME_BONUS_PAYOUT
    return _result(notional, boosted_growth_ratio(terms, level, barrier_breached),
                   Decimal("0"), outcome)


# ============================================================================
# DISPATCH
# ============================================================================

def _expect(status: TriggerStatus, cls: type, terms: Terms) -> None:
    if not isinstance(status, cls):
        raise TypeError(
            f"{type(terms).__name__} requires a {cls.__name__}, got {type(status).__name__}"
        )


def _regular_income(terms, notional, status, coupons_paid, driving_initial_price):
    _expect(status, RegularIncomeStatus, terms)
    return regular_income_payout(
        terms, notional, status.reference_level, status.protection_breached,
        coupons_paid, autocalled=status.autocall_triggered,
        driving_initial_price=driving_initial_price,
    )


def _capital_protection(terms, notional, status, coupons_paid, driving_initial_price):
    _expect(status, CapitalProtectionStatus, terms)
    return capital_protection_payout(
        terms, notional, status.reference_level, status.knock_in_triggered,
        issuer_call_month=status.issuer_call_month,
    )


def _boosted_growth(terms, notional, status, coupons_paid, driving_initial_price):
    _expect(status, BoostedGrowthStatus, terms)
    return boosted_growth_payout(terms, notional, status.reference_level, status.barrier_breached)


_HANDLERS = require_exhaustive("payout", {
    RegularIncomeTerms: _regular_income,
    CapitalProtectionTerms: _capital_protection,
    BoostedGrowthTerms: _boosted_growth,
}, TERMS_VARIANTS)


def calculate_payout(
    terms: Terms,
    notional: Number,
    status: TriggerStatus,
    coupons_paid: Number = 0,
    *,
    driving_initial_price: Optional[Number] = None,
) -> PayoutResult:
    """
    Payout for the evaluated trigger state of a product.

    Raises:
        UnknownBucketError: If terms is not one of the three variants.
        TypeError: If status was produced for a different bucket.
    """
    handler = dispatch("payout", _HANDLERS, terms)
    result = handler(terms, notional, status, coupons_paid, driving_initial_price)
    logger.debug("%s payout: %s (%s)", type(terms).__name__, result.amount, result.outcome)
    return result


# ============================================================================
# BREAK-EVEN
# ============================================================================

def _regular_income_break_even(terms: RegularIncomeTerms, coupon_count: Optional[int]) -> Optional[Decimal]:
    # Converted redemption N * L / K plus coupons C equals N at L = K * (1 - C/N)
    if coupon_count is None:
        raise ValueError("coupon_count is required for a Regular Income break-even")
    total_coupons = pct_to_ratio(terms.coupon_rate_pct) / Decimal(terms.coupon_freq_per_year) \
        * Decimal(coupon_count)
    strike = pct_to_ratio(terms.strike_pct) if terms.is_geared_put else _ONE
    return strike * (_ONE - total_coupons)


def _capital_protection_break_even(terms: CapitalProtectionTerms, coupon_count) -> Optional[Decimal]:
    # P + (X - K) * a = 100 in the participating regime
    if terms.capital_protection_pct >= _HUNDRED:
        return None
    if terms.participation_rate_pct == 0:
        return None
    if terms.has_cap and terms.cap_level_pct < _HUNDRED:
        return None
    gap = (_HUNDRED - terms.capital_protection_pct) / pct_to_ratio(terms.participation_rate_pct)
    return pct_to_ratio(terms.participation_start_pct + gap)


def _boosted_growth_break_even(terms: BoostedGrowthTerms, coupon_count) -> Optional[Decimal]:
    # After a breach the redemption is L * g, which returns the principal at L = 1 / g
    return _ONE / pct_to_ratio(terms.effective_participation_pct)


_BREAK_EVEN = require_exhaustive("break_even", {
    RegularIncomeTerms: _regular_income_break_even,
    CapitalProtectionTerms: _capital_protection_break_even,
    BoostedGrowthTerms: _boosted_growth_break_even,
}, TERMS_VARIANTS)


def break_even_level(terms: Terms, coupon_count: Optional[int] = None) -> Optional[Decimal]:
    """
    Final reference level (fraction of initial) at which the payout equals
    the principal, or None when the principal is always returned or can
    never be reached.

    Regular Income: the share-conversion level 1 - total coupons / notional,
        for coupon_count coupons.
    Capital Protection: the participation level where the floor plus the
        participated gain reaches 100%. Knock-in is ignored.
    Boosted Growth: the level where the post-breach redemption reaches 100%.

    Example:
        >>> break_even_level(RegularIncomeTerms(10, 1, 70), coupon_count=1)
        Decimal('0.9')
    """
    return dispatch("break_even", _BREAK_EVEN, terms)(terms, coupon_count)
