"""
coupons.py - Coupon schedule generation for income products.

Schedule shape for trade date T, maturity M and frequency f per year:

    interval_months  = 12 / f             (f must divide 12)
    entries          = months(T, M) * f // 12
    observation k    = T + k * interval_months        k = 1..entries
    payment k        = observation k + payment_lag_days
    amount           = round_money(notional * rate_pa / 100 / f)

Status, for an explicit as_of:
    payment date <= as_of      -> paid
    first later entry          -> upcoming
    everything after           -> pending

Only Regular Income products pay coupons; the other buckets have an empty
schedule. A paid entry is immutable: advance_schedule() merges a
recomputed schedule into a previous one without ever moving an entry
backwards.
"""

from __future__ import annotations
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Callable, Dict, List, Mapping, Optional, Sequence, Tuple, Union
import logging

from .core import (
    COUPON_PAID, COUPON_UPCOMING, COUPON_PENDING, COUPON_STATUS_RANK,
    ScheduleConfigError, require_exhaustive, dispatch,
)
from .numeric import Number, add_months, months_between, pct_to_ratio, round_money, to_decimal
from .terms import (
    TERMS_VARIANTS, Terms,
    RegularIncomeTerms, CapitalProtectionTerms, BoostedGrowthTerms,
)


logger = logging.getLogger(__name__)

# Reference levels by observation date: a mapping or a lookup function.
# A missing level (None) leaves a conditional coupon unchecked.
LevelLookup = Union[Mapping[datetime, Number], Callable[[datetime], Optional[Number]]]


@dataclass(frozen=True, slots=True)
class CouponScheduleEntry:
    """
    One coupon period.

    coupon_rate_pct is the rate for the period (annual rate / frequency),
    in percent. amount is already rounded to cents.
    """
    period: int
    observation_date: datetime
    payment_date: datetime
    coupon_rate_pct: Decimal
    amount: Decimal
    status: str
    barrier_checked: bool = False
    barrier_breached: bool = False

    @property
    def is_paid(self) -> bool:
        return self.status == COUPON_PAID


CouponSchedule = Tuple[CouponScheduleEntry, ...]


def _lookup_level(reference_levels: Optional[LevelLookup], date: datetime) -> Optional[Decimal]:
    if reference_levels is None:
        return None
    if callable(reference_levels):
        return to_decimal(reference_levels(date))
    return to_decimal(reference_levels.get(date))


def coupon_interval_months(freq_per_year: int) -> int:
    """
    Months between coupon observations.

    Raises:
        ScheduleConfigError: If the frequency is not positive or does not divide 12.
    """
    if freq_per_year <= 0 or 12 % freq_per_year != 0:
        raise ScheduleConfigError(
            f"coupon frequency must be a positive divisor of 12, got {freq_per_year}"
        )
    return 12 // freq_per_year


def coupon_amount(terms: RegularIncomeTerms, notional: Number,
                  reference_level: Optional[Number] = None) -> Decimal:
    """
    Amount of one coupon period, rounded to cents.

    A conditional coupon observed below the protection level pays nothing.
    Skipped coupons are never recovered by a later period. Without an
    observed level the full coupon is assumed.
    """
    period_rate = terms.coupon_rate_pct / Decimal(terms.coupon_freq_per_year)
    if terms.conditional_coupon and reference_level is not None:
        if to_decimal(reference_level) < pct_to_ratio(terms.protection_level_pct):
            return Decimal("0.00")
    return round_money(to_decimal(notional) * pct_to_ratio(period_rate))


def _regular_income_schedule(
    terms: RegularIncomeTerms,
    notional: Decimal,
    trade_date: datetime,
    maturity_date: datetime,
    as_of: datetime,
    reference_levels: Optional[LevelLookup],
    terminated_on: Optional[datetime],
) -> CouponSchedule:
    freq = terms.coupon_freq_per_year
    interval = coupon_interval_months(freq)
    count = months_between(trade_date, maturity_date) * freq // 12
    period_rate = terms.coupon_rate_pct / Decimal(freq)
    lag = timedelta(days=terms.payment_lag_days)

    entries: List[CouponScheduleEntry] = []
    upcoming_assigned = False
    for period in range(1, count + 1):
        observation = add_months(trade_date, period * interval)
        if terminated_on is not None and observation > terminated_on:
            break
        payment = observation + lag

        level = None
        if terms.conditional_coupon and observation <= as_of:
            level = _lookup_level(reference_levels, observation)
        amount = coupon_amount(terms, notional, level)
        checked = level is not None
        breached = checked and level < pct_to_ratio(terms.protection_level_pct)

        if payment <= as_of:
            status = COUPON_PAID
        elif not upcoming_assigned:
            status = COUPON_UPCOMING
            upcoming_assigned = True
        else:
            status = COUPON_PENDING

        entries.append(CouponScheduleEntry(
            period=period,
            observation_date=observation,
            payment_date=payment,
            coupon_rate_pct=period_rate,
            amount=amount,
            status=status,
            barrier_checked=checked,
            barrier_breached=breached,
        ))

    logger.debug("Coupon schedule: %d of %d entries, %d paid", len(entries), count,
                 sum(1 for e in entries if e.is_paid))
    return tuple(entries)


def _no_coupons(terms, notional, trade_date, maturity_date, as_of, reference_levels, terminated_on) -> CouponSchedule:
    return ()


_HANDLERS = require_exhaustive("coupons", {
    RegularIncomeTerms: _regular_income_schedule,
    CapitalProtectionTerms: _no_coupons,
    BoostedGrowthTerms: _no_coupons,
}, TERMS_VARIANTS)


def generate_coupon_schedule(
    terms: Terms,
    notional: Number,
    trade_date: datetime,
    maturity_date: datetime,
    as_of: datetime,
    *,
    reference_levels: Optional[LevelLookup] = None,
    terminated_on: Optional[datetime] = None,
) -> CouponSchedule:
    """
    Build the ordered coupon schedule at as_of.

    Args:
        terms: Bucket terms; only Regular Income produces entries.
        notional: Principal amount.
        trade_date: Start of the tenor; observations are counted from here.
        maturity_date: End of the tenor.
        as_of: Evaluation timestamp deciding paid/upcoming/pending.
        reference_levels: Basket levels (fraction of initial) by observation
            date, used to check conditional coupons against protection.
        terminated_on: Early termination (autocall) date; later
            observations are dropped.

    Raises:
        ScheduleConfigError: If the coupon frequency is invalid.
        ValueError: If notional is not positive or maturity precedes trade date.

    Example:
        >>> terms = RegularIncomeTerms(5.75, 4, 70)
        >>> schedule = generate_coupon_schedule(
        ...     terms, 100000, datetime(2024, 1, 15), datetime(2025, 1, 15),
        ...     as_of=datetime(2025, 2, 1))
        >>> len(schedule), schedule[0].amount
        (4, Decimal('1437.50'))
    """
    notional = to_decimal(notional)
    if notional <= Decimal("0"):
        raise ValueError(f"notional must be positive, got {notional}")
    if maturity_date <= trade_date:
        raise ValueError(
            f"maturity_date must be after trade_date, got {maturity_date.date()} <= {trade_date.date()}"
        )
    handler = dispatch("coupons", _HANDLERS, terms)
    return handler(terms, notional, trade_date, maturity_date, as_of, reference_levels, terminated_on)


def advance_schedule(previous: Sequence[CouponScheduleEntry],
                     recomputed: Sequence[CouponScheduleEntry]) -> CouponSchedule:
    """
    Merge a recomputed schedule into a previous one, forward only.

    Paid entries of the previous schedule are kept verbatim. Any other
    entry takes the recomputed values but never a lower status than it
    already had (upcoming never returns to pending).
    """
    by_date: Dict[datetime, CouponScheduleEntry] = {e.observation_date: e for e in recomputed}
    for old in previous:
        new = by_date.get(old.observation_date)
        if old.status == COUPON_PAID:
            by_date[old.observation_date] = old
        elif new is not None and COUPON_STATUS_RANK[new.status] < COUPON_STATUS_RANK[old.status]:
            by_date[old.observation_date] = replace(new, status=old.status)
    return tuple(sorted(by_date.values(), key=lambda e: e.observation_date))


def paid_coupon_total(schedule: Sequence[CouponScheduleEntry]) -> Decimal:
    """Sum of amounts of paid entries."""
    return sum((e.amount for e in schedule if e.status == COUPON_PAID), Decimal("0"))
