"""
triggers.py - Barrier and trigger evaluation per bucket.

This module provides:
1. KeyLevel - one monitored level with its distance and status
2. RegularIncomeStatus / CapitalProtectionStatus / BoostedGrowthStatus
3. evaluate_triggers() - exhaustive dispatch on the terms variant
4. issuer_call_dates() / autocall_observation_dates() - observation schedules
5. replay_history() - feed historical closes through the evaluator

Classification rules (reference level L as a fraction of initial):

    Regular Income      autocall_triggered  = L >= autocall level on a
                                              scheduled observation (terminal)
                        protection_breached = L <  protection level (or the
                                              knock-in of a geared put)
    Capital Protection  participation_active = L >= participation start
                        knock_in_triggered   = L <= knock-in level, at ANY
                                               observation (permanent)
    Boosted Growth      barrier_breached     = L <= barrier, at ANY
                        observation (continuous) or at the final
                        observation date only (european)

Knock-in, barrier and autocall events are written to the append-only breach log of
the driving underlying (every underlying for average baskets). That log is
the only state the evaluator is allowed to touch; once it holds an entry at
or before as_of, the flag can never reset.
"""

from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Iterable, List, Optional, Sequence, Tuple, Union
import logging

from .basket import Basket, BasketResolution, BreachEvent, resolve_basket
from .core import (
    BREACH_AUTOCALL, BREACH_BARRIER, BREACH_KNOCK_IN,
    LEVEL_SAFE, LEVEL_AT_RISK, LEVEL_BREACHED,
    RISK_SAFE, RISK_WATCH, RISK_TRIGGERED,
    OBSERVATION_EUROPEAN, WATCH_THRESHOLD,
    require_exhaustive, dispatch,
)
from .numeric import Number, add_months, pct_to_ratio, ratio_to_pct, to_decimal
from .pricing_source import PricingSource, basket_resolution_at
from .terms import (
    TERMS_VARIANTS, Terms,
    RegularIncomeTerms, CapitalProtectionTerms, BoostedGrowthTerms,
)


logger = logging.getLogger(__name__)

# (observation date, basket reference level as a fraction of initial)
Observation = Tuple[datetime, Number]


# ============================================================================
# STATUS TYPES
# ============================================================================

@dataclass(frozen=True, slots=True)
class KeyLevel:
    """
    A monitored level, in percent of initial.

    distance_pct is current_pct - level_pct in percentage points; positive
    means the basket sits above the level.
    """
    label: str
    level_pct: Decimal
    current_pct: Decimal
    status: str
    distance_pct: Decimal


@dataclass(frozen=True, slots=True)
class RegularIncomeStatus:
    reference_level: Decimal
    protection_level_pct: Decimal
    protection_breached: bool
    buffer_to_protection: Decimal
    autocall_enabled: bool
    autocall_level_pct: Optional[Decimal]
    autocall_triggered: bool
    autocall_date: Optional[datetime]
    distance_to_autocall: Optional[Decimal]
    key_levels: Tuple[KeyLevel, ...]
    risk_status: str


@dataclass(frozen=True, slots=True)
class CapitalProtectionStatus:
    reference_level: Decimal
    participation_active: bool
    knock_in_enabled: bool
    knock_in_triggered: bool
    knock_in_date: Optional[datetime]
    issuer_called: bool
    issuer_call_date: Optional[datetime]
    issuer_call_month: Optional[int]
    key_levels: Tuple[KeyLevel, ...]
    risk_status: str


@dataclass(frozen=True, slots=True)
class BoostedGrowthStatus:
    reference_level: Decimal
    barrier_observation: str
    barrier_observed: bool
    barrier_breached: bool
    barrier_breached_date: Optional[datetime]
    key_levels: Tuple[KeyLevel, ...]
    risk_status: str


TriggerStatus = Union[RegularIncomeStatus, CapitalProtectionStatus, BoostedGrowthStatus]


@dataclass(frozen=True, slots=True)
class _Context:
    """Evaluation inputs shared by every bucket handler."""
    basket: Basket
    resolution: BasketResolution
    as_of: datetime
    history: Tuple[Tuple[datetime, Decimal], ...]
    final_observation_date: Optional[datetime]
    issuer_call_date: Optional[datetime]
    trade_date: Optional[datetime]
    maturity_date: Optional[datetime]
    watch_threshold: Decimal


# ============================================================================
# HELPERS
# ============================================================================

def _key_level(label: str, level_pct: Decimal, reference_level: Decimal,
               breached: bool, threshold: Decimal) -> KeyLevel:
    current_pct = ratio_to_pct(reference_level)
    distance = current_pct - level_pct
    if breached:
        status = LEVEL_BREACHED
    elif distance < ratio_to_pct(threshold):
        status = LEVEL_AT_RISK
    else:
        status = LEVEL_SAFE
    return KeyLevel(label, level_pct, current_pct, status, distance)


def _risk_status(triggered: bool, protective: Iterable[KeyLevel]) -> str:
    if triggered:
        return RISK_TRIGGERED
    if any(k.status == LEVEL_AT_RISK for k in protective):
        return RISK_WATCH
    return RISK_SAFE


def _breach_targets(ctx: _Context):
    if ctx.resolution.driving_index is None:
        return ctx.basket.underlyings
    return (ctx.basket.underlyings[ctx.resolution.driving_index],)


def _earliest_logged(basket: Basket, kind: str, as_of: datetime) -> Optional[datetime]:
    dates = [
        e.date
        for u in basket.underlyings
        for e in u.breaches(kind)
        if e.date <= as_of
    ]
    return min(dates) if dates else None


def _record(ctx: _Context, kind: str, level_pct: Decimal,
            observations: Iterable[Tuple[datetime, Decimal]]) -> None:
    for date, level in observations:
        for underlying in _breach_targets(ctx):
            underlying.record_breach(BreachEvent(date, kind, level_pct, level))


def _continuous_breach(ctx: _Context, kind: str, level_pct: Decimal) -> Optional[datetime]:
    """
    Monitor a level continuously: history plus the current level.

    Breaching observations are appended to the breach log. Returns the
    earliest logged breach date at or before as_of, or None.
    """
    threshold = pct_to_ratio(level_pct)
    breaches = [(d, lvl) for d, lvl in ctx.history if d <= ctx.as_of and lvl <= threshold]
    if ctx.resolution.reference_level <= threshold:
        breaches.append((ctx.as_of, ctx.resolution.reference_level))
    if breaches:
        _record(ctx, kind, level_pct, breaches)
    return _earliest_logged(ctx.basket, kind, ctx.as_of)


def _periodic_dates(start: datetime, end: datetime, interval_months: int) -> List[datetime]:
    dates = []
    k = 1
    while True:
        date = add_months(start, k * interval_months)
        if date >= end:
            break
        dates.append(date)
        k += 1
    return dates


def issuer_call_dates(trade_date: datetime, maturity_date: datetime, frequency: int) -> List[datetime]:
    """
    Scheduled issuer call observations: every 12/frequency months after
    trade_date, strictly before maturity.
    """
    if not isinstance(frequency, int) or frequency <= 0 or 12 % frequency != 0:
        raise ValueError(f"issuer call frequency must be a positive divisor of 12, got {frequency!r}")
    return _periodic_dates(trade_date, maturity_date, 12 // frequency)


# ============================================================================
# REGULAR INCOME
# ============================================================================

def _autocall_schedule(terms: RegularIncomeTerms, trade_date: Optional[datetime],
                       maturity_date: Optional[datetime]) -> Optional[List[datetime]]:
    """Autocall observation dates, or None when they cannot be determined."""
    if terms.autocall_step_down:
        return [o.observation_date for o in terms.autocall_step_down
                if maturity_date is None or o.observation_date < maturity_date]
    if not terms.has_autocall or trade_date is None or maturity_date is None:
        return None
    freq = terms.coupon_freq_per_year
    if freq <= 0 or 12 % freq != 0:
        return None
    return _periodic_dates(trade_date, maturity_date, 12 // freq)


def autocall_observation_dates(terms: RegularIncomeTerms, trade_date: datetime,
                               maturity_date: datetime) -> List[datetime]:
    """
    Dates on which the autocall trigger is observed, strictly before maturity.

    A step-down schedule supplies its own dates; otherwise the trigger is
    observed on each coupon observation date. Empty without an autocall or
    when the coupon frequency does not divide 12.
    """
    if not terms.has_autocall:
        return []
    return _autocall_schedule(terms, trade_date, maturity_date) or []


def _level_on(ctx: _Context, date: datetime) -> Optional[Decimal]:
    """Basket level recorded on the calendar day of date, if any."""
    if date.date() == ctx.as_of.date():
        return ctx.resolution.reference_level
    same_day = [lvl for d, lvl in ctx.history if d.date() == date.date()]
    return same_day[-1] if same_day else None


def _autocall_date(terms: RegularIncomeTerms, ctx: _Context) -> Optional[datetime]:
    """
    Date the product autocalled, at or before as_of.

    The trigger is only observed on its schedule. The first observation at
    or above the trigger is logged and stays terminal. Without a known
    schedule the current level is checked at as_of and nothing is logged.
    """
    logged = _earliest_logged(ctx.basket, BREACH_AUTOCALL, ctx.as_of)
    if logged is not None:
        return logged

    schedule = _autocall_schedule(terms, ctx.trade_date, ctx.maturity_date)
    if schedule is None:
        trigger = pct_to_ratio(terms.autocall_level_for(ctx.as_of))
        return ctx.as_of if ctx.resolution.reference_level >= trigger else None

    for date in schedule:
        if date > ctx.as_of:
            break
        level = _level_on(ctx, date)
        if level is None:
            continue
        trigger_pct = terms.autocall_level_for(date)
        if level >= pct_to_ratio(trigger_pct):
            _record(ctx, BREACH_AUTOCALL, trigger_pct, [(date, level)])
            logger.info("Autocall triggered on %s (level %s >= %s%%)",
                        date.date().isoformat(), level, trigger_pct)
            return date
    return None


def _evaluate_regular_income(terms: RegularIncomeTerms, ctx: _Context) -> RegularIncomeStatus:
    level = ctx.resolution.reference_level
    conversion_pct = terms.conversion_level_pct
    protection = pct_to_ratio(conversion_pct)
    # Exactly at the protection level is not a breach
    protection_breached = level < protection
    buffer = Decimal("1") - protection / level

    autocall_pct = terms.autocall_level_for(ctx.as_of) if terms.has_autocall else None
    autocall_date = None
    distance_to_autocall = None
    if autocall_pct is not None:
        autocall_date = _autocall_date(terms, ctx)
        distance_to_autocall = pct_to_ratio(autocall_pct) / level - Decimal("1")
    autocall_triggered = autocall_date is not None

    label = "Knock-In Barrier" if terms.is_geared_put else "Protection Level"
    protection_key = _key_level(label, conversion_pct, level,
                                protection_breached, ctx.watch_threshold)
    key_levels = [protection_key]
    if autocall_pct is not None:
        # Upside trigger: only ever breached or safe
        current_pct = ratio_to_pct(level)
        key_levels.append(KeyLevel(
            "Autocall Trigger", autocall_pct, current_pct,
            LEVEL_BREACHED if autocall_triggered else LEVEL_SAFE,
            current_pct - autocall_pct,
        ))

    if autocall_triggered:
        # Redeemed early; nothing left at risk
        risk = RISK_SAFE
    else:
        risk = _risk_status(protection_breached, [protection_key])

    return RegularIncomeStatus(
        reference_level=level,
        protection_level_pct=conversion_pct,
        protection_breached=protection_breached,
        buffer_to_protection=buffer,
        autocall_enabled=autocall_pct is not None,
        autocall_level_pct=autocall_pct,
        autocall_triggered=autocall_triggered,
        autocall_date=autocall_date,
        distance_to_autocall=distance_to_autocall,
        key_levels=tuple(key_levels),
        risk_status=risk,
    )


# ============================================================================
# CAPITAL PROTECTION
# ============================================================================

def _issuer_call_month(terms: CapitalProtectionTerms, ctx: _Context) -> Optional[int]:
    """Months from trade date to a valid issuer call at or before as_of, else None."""
    call_date = ctx.issuer_call_date
    if not terms.issuer_callable or call_date is None or call_date > ctx.as_of:
        return None
    if ctx.trade_date is None:
        raise ValueError("trade_date is required to evaluate an issuer call")
    interval = 12 // terms.issuer_call_frequency
    months = (call_date.year - ctx.trade_date.year) * 12 + call_date.month - ctx.trade_date.month
    if months <= 0 or months % interval != 0 or add_months(ctx.trade_date, months).date() != call_date.date():
        raise ValueError(
            f"issuer call on {call_date.date()} is not a scheduled call date "
            f"(every {interval} months from {ctx.trade_date.date()})"
        )
    return months


def _evaluate_capital_protection(terms: CapitalProtectionTerms, ctx: _Context) -> CapitalProtectionStatus:
    level = ctx.resolution.reference_level

    call_month = _issuer_call_month(terms, ctx)
    if call_month is not None:
        logger.info("Issuer call on %s (month %d); product terminated",
                    ctx.issuer_call_date.date().isoformat(), call_month)
        knock_in_date = (
            _earliest_logged(ctx.basket, BREACH_KNOCK_IN, ctx.issuer_call_date)
            if terms.has_knock_in else None
        )
        return CapitalProtectionStatus(
            reference_level=level,
            participation_active=False,
            knock_in_enabled=terms.has_knock_in,
            knock_in_triggered=knock_in_date is not None,
            knock_in_date=knock_in_date,
            issuer_called=True,
            issuer_call_date=ctx.issuer_call_date,
            issuer_call_month=call_month,
            key_levels=(),
            risk_status=RISK_SAFE,
        )

    participation_active = level >= pct_to_ratio(terms.participation_start_pct)

    knock_in_date = None
    key_levels: Tuple[KeyLevel, ...] = ()
    if terms.has_knock_in:
        knock_in_date = _continuous_breach(ctx, BREACH_KNOCK_IN, terms.knock_in_level_pct)
        key_levels = (
            _key_level("Knock-In Barrier", terms.knock_in_level_pct, level,
                       knock_in_date is not None, ctx.watch_threshold),
        )
    knock_in_triggered = knock_in_date is not None

    return CapitalProtectionStatus(
        reference_level=level,
        participation_active=participation_active,
        knock_in_enabled=terms.has_knock_in,
        knock_in_triggered=knock_in_triggered,
        knock_in_date=knock_in_date,
        issuer_called=False,
        issuer_call_date=None,
        issuer_call_month=None,
        key_levels=key_levels,
        risk_status=_risk_status(knock_in_triggered, key_levels),
    )


# ============================================================================
# BOOSTED GROWTH
# ============================================================================

def _european_breach(terms: BoostedGrowthTerms, ctx: _Context) -> Tuple[bool, Optional[datetime]]:
    """Check the barrier once, on the final observation date."""
    final = ctx.final_observation_date
    if final is None or ctx.as_of < final:
        return False, _earliest_logged(ctx.basket, BREACH_BARRIER, ctx.as_of)
    # Only a close on the final date counts; stale history never stands in for it
    on_final = [lvl for d, lvl in ctx.history if d.date() == final.date() and d <= ctx.as_of]
    final_level = on_final[-1] if on_final else ctx.resolution.reference_level
    if final_level <= pct_to_ratio(terms.barrier_pct):
        _record(ctx, BREACH_BARRIER, terms.barrier_pct, [(final, final_level)])
    return True, _earliest_logged(ctx.basket, BREACH_BARRIER, ctx.as_of)


def _evaluate_boosted_growth(terms: BoostedGrowthTerms, ctx: _Context) -> BoostedGrowthStatus:
    level = ctx.resolution.reference_level
    if terms.barrier_observation == OBSERVATION_EUROPEAN:
        observed, breach_date = _european_breach(terms, ctx)
    else:
        observed = True
        breach_date = _continuous_breach(ctx, BREACH_BARRIER, terms.barrier_pct)
    breached = breach_date is not None

    barrier_key = _key_level("Bonus Barrier", terms.barrier_pct, level, breached, ctx.watch_threshold)
    return BoostedGrowthStatus(
        reference_level=level,
        barrier_observation=terms.barrier_observation,
        barrier_observed=observed,
        barrier_breached=breached,
        barrier_breached_date=breach_date,
        key_levels=(barrier_key,),
        risk_status=_risk_status(breached, [barrier_key]),
    )


_HANDLERS = require_exhaustive("triggers", {
    RegularIncomeTerms: _evaluate_regular_income,
    CapitalProtectionTerms: _evaluate_capital_protection,
    BoostedGrowthTerms: _evaluate_boosted_growth,
}, TERMS_VARIANTS)


# ============================================================================
# PUBLIC API
# ============================================================================

def evaluate_triggers(
    terms: Terms,
    basket: Basket,
    as_of: datetime,
    *,
    history: Optional[Sequence[Observation]] = None,
    resolution: Optional[BasketResolution] = None,
    final_observation_date: Optional[datetime] = None,
    issuer_call_date: Optional[datetime] = None,
    trade_date: Optional[datetime] = None,
    maturity_date: Optional[datetime] = None,
    watch_threshold: Number = WATCH_THRESHOLD,
) -> TriggerStatus:
    """
    Classify the trigger state of a product at as_of.

    Args:
        terms: Bucket terms variant.
        basket: The product's basket; its breach logs may be appended to.
        as_of: Evaluation timestamp.
        history: Past (date, reference level) observations for continuous
            monitoring. Observations after as_of are ignored.
        resolution: Pre-computed basket resolution (resolved here if None).
        final_observation_date: Needed for european barrier observation.
        issuer_call_date: Date the issuer exercised its call, if it did.
        trade_date: Needed to validate an issuer call against its schedule
            and to build the autocall observation schedule.
        maturity_date: End of the autocall observation schedule. Without
            trade and maturity dates (and no step-down schedule) the autocall
            is checked on the current level at as_of.
        watch_threshold: Distance (fraction of initial) flagged as at risk.

    Raises:
        InvalidBasketError: If the basket is malformed.
        UnknownBucketError: If terms is not one of the three variants.
        ValueError: If an issuer call falls outside its schedule.
    """
    handler = dispatch("triggers", _HANDLERS, terms)
    if resolution is None:
        resolution = resolve_basket(basket)
    ctx = _Context(
        basket=basket,
        resolution=resolution,
        as_of=as_of,
        history=tuple(sorted(((d, to_decimal(lvl)) for d, lvl in (history or ())), key=lambda o: o[0])),
        final_observation_date=final_observation_date,
        issuer_call_date=issuer_call_date,
        trade_date=trade_date,
        maturity_date=maturity_date,
        watch_threshold=to_decimal(watch_threshold),
    )
    status = handler(terms, ctx)
    logger.debug("%s at %s: level=%s risk=%s", type(terms).__name__,
                 as_of.isoformat(), resolution.reference_level, status.risk_status)
    return status


def replay_history(
    terms: Terms,
    basket: Basket,
    source: PricingSource,
    dates: Iterable[datetime],
    **kwargs,
) -> List[Tuple[datetime, TriggerStatus]]:
    """
    Evaluate the product on each historical date in chronological order.

    Builds the breach logs the way live monitoring would have. Dates where
    any underlying has no price are skipped. Extra keyword arguments are
    passed to evaluate_triggers().
    """
    results = []
    for date in sorted(dates):
        resolution = basket_resolution_at(basket, source, date)
        if resolution is None:
            logger.debug("Skipping %s: missing prices", date.isoformat())
            continue
        results.append((date, evaluate_triggers(terms, basket, date, resolution=resolution, **kwargs)))
    return results
