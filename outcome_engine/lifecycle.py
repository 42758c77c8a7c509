"""
lifecycle.py - Product lifecycle aggregate and full evaluation.

This module provides:
1. ProductLifecycleData - aggregate root: bucket, terms, basket, dates
2. build_events() / next_event() - the product timeline
3. evaluate_lifecycle() - resolve -> triggers -> {coupons, payout} -> scenarios
4. lifecycle_from_mapping() - adapter from the plain-data contract
5. clone_for_scenario() - independent what-if copy
6. refresh_prices() - reload current prices from a PricingSource

All date and terms fields are write-once. The basket's current prices are
the only refreshable data, and the breach logs the only growing data.
"""

from __future__ import annotations
from dataclasses import dataclass, replace
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple
import logging

from .basket import Basket, BasketResolution, BreachEvent, Underlying, resolve_basket
from .core import (
    BASKET_SINGLE, BUCKET_CAPITAL_PROTECTION, BREACH_BARRIER, BREACH_KNOCK_IN,
    COUPON_PAID, COUPON_UPCOMING, DEFAULT_NOTIONAL,
    EVENT_COMPLETED, EVENT_UPCOMING, EVENT_PENDING,
    MissingTermsForBucketError, ScheduleConfigError,
)
from .coupons import CouponSchedule, LevelLookup, generate_coupon_schedule, paid_coupon_total
from .numeric import Number, clamp, to_decimal
from .payout import PayoutResult, calculate_payout
from .pricing_source import PricingSource
from .scenarios import ScenarioFlow, build_scenario_flow, earn_risk_lines
from .terms import (
    TERMS_BY_BUCKET, Terms,
    RegularIncomeTerms, CapitalProtectionTerms, BoostedGrowthTerms,
    check_bucket, terms_from_mapping, _get, _parse_datetime,
)
from .triggers import (
    Observation, TriggerStatus, RegularIncomeStatus,
    autocall_observation_dates, evaluate_triggers, issuer_call_dates,
)


logger = logging.getLogger(__name__)


# Lifecycle event types
EVENT_INITIAL_FIXING = "initial_fixing"
EVENT_COUPON_OBSERVATION = "coupon_observation"
EVENT_AUTOCALL_OBSERVATION = "autocall_observation"
EVENT_ISSUER_CALL_OBSERVATION = "issuer_call_observation"
EVENT_FINAL_OBSERVATION = "final_observation"
EVENT_MATURITY = "maturity"
EVENT_SETTLEMENT = "settlement"


@dataclass(frozen=True, slots=True)
class LifecycleEvent:
    type: str
    date: datetime
    label: str
    status: str
    amount: Optional[Decimal] = None


# ============================================================================
# AGGREGATE ROOT
# ============================================================================

@dataclass(frozen=True)
class ProductLifecycleData:
    """
    One structured product instance.

    The bucket tag must agree with the terms variant:
        unknown tag                      -> UnknownBucketError
        known tag, terms None or another -> MissingTermsForBucketError

    Dates must be ordered trade <= initial fixing <= maturity <= settlement,
    with maturity strictly after the trade date.
    """
    bucket: str
    terms: Optional[Terms]
    basket: Basket
    notional: Decimal
    trade_date: datetime
    initial_fixing_date: datetime
    maturity_date: datetime
    settlement_date: datetime
    currency: str = "USD"
    product_name: str = ""
    isin: Optional[str] = None
    issuer_call_date: Optional[datetime] = None
    final_observation_date: Optional[datetime] = None

    def __post_init__(self):
        check_bucket(self.bucket)
        expected = TERMS_BY_BUCKET[self.bucket]
        if not isinstance(self.terms, expected):
            raise MissingTermsForBucketError(
                f"Bucket {self.bucket} requires {expected.__name__}, "
                f"got {type(self.terms).__name__}"
            )
        object.__setattr__(self, 'notional', to_decimal(self.notional))
        if self.notional <= Decimal("0"):
            raise ValueError(f"notional must be positive, got {self.notional}")
        if self.maturity_date <= self.trade_date:
            raise ValueError(
                f"maturity_date must be after trade_date, got {self.maturity_date} <= {self.trade_date}"
            )
        if not self.trade_date <= self.initial_fixing_date <= self.maturity_date <= self.settlement_date:
            raise ValueError(
                "dates must satisfy trade <= initial fixing <= maturity <= settlement"
            )

    @property
    def final_observation(self) -> datetime:
        return self.final_observation_date or self.maturity_date

    def progress_pct(self, as_of: datetime) -> Decimal:
        """Elapsed share of the tenor in percent, clamped to [0, 100]."""
        total = Decimal((self.maturity_date - self.trade_date).days)
        elapsed = Decimal((as_of - self.trade_date).days)
        return clamp(elapsed / total * Decimal("100"), 0, 100)

    def days_to_maturity(self, as_of: datetime) -> int:
        return max(0, (self.maturity_date.date() - as_of.date()).days)

    def days_elapsed(self, as_of: datetime) -> int:
        return max(0, (as_of.date() - self.trade_date.date()).days)


# ============================================================================
# EVENTS
# ============================================================================

_COUPON_EVENT_STATUS = {
    COUPON_PAID: EVENT_COMPLETED,
    COUPON_UPCOMING: EVENT_UPCOMING,
}


def _observation_events(lifecycle: ProductLifecycleData,
                        schedule: Optional[CouponSchedule]) -> List[LifecycleEvent]:
    terms = lifecycle.terms
    events = []
    if isinstance(terms, RegularIncomeTerms):
        for entry in schedule or ():
            events.append(LifecycleEvent(
                EVENT_COUPON_OBSERVATION, entry.observation_date,
                f"Coupon {entry.period}",
                _COUPON_EVENT_STATUS.get(entry.status, EVENT_PENDING),
                entry.amount,
            ))
        for date in autocall_observation_dates(terms, lifecycle.trade_date, lifecycle.maturity_date):
            events.append(LifecycleEvent(EVENT_AUTOCALL_OBSERVATION, date,
                                         "Autocall Observation", EVENT_PENDING))
    elif isinstance(terms, CapitalProtectionTerms) and terms.issuer_callable:
        for date in issuer_call_dates(lifecycle.trade_date, lifecycle.maturity_date,
                                      terms.issuer_call_frequency):
            events.append(LifecycleEvent(EVENT_ISSUER_CALL_OBSERVATION, date,
                                         "Issuer Call Date", EVENT_PENDING))
    return events


def build_events(
    lifecycle: ProductLifecycleData,
    as_of: datetime,
    schedule: Optional[CouponSchedule] = None,
    terminated_on: Optional[datetime] = None,
) -> Tuple[LifecycleEvent, ...]:
    """
    Ordered product timeline at as_of.

    Events dated at or before as_of are completed, every event on the next
    future date is upcoming, later ones are pending. Coupon events take
    their status from the schedule entry. Observations after an early
    termination are dropped.
    """
    events = [LifecycleEvent(EVENT_INITIAL_FIXING, lifecycle.initial_fixing_date,
                             "Initial Fixing", EVENT_PENDING)]
    events += _observation_events(lifecycle, schedule)
    events += [
        LifecycleEvent(EVENT_FINAL_OBSERVATION, lifecycle.final_observation,
                       "Final Observation", EVENT_PENDING),
        LifecycleEvent(EVENT_MATURITY, lifecycle.maturity_date, "Maturity", EVENT_PENDING),
        LifecycleEvent(EVENT_SETTLEMENT, lifecycle.settlement_date, "Settlement", EVENT_PENDING),
    ]
    if terminated_on is not None:
        events = [
            e for e in events
            if e.date <= terminated_on or e.type in (EVENT_MATURITY, EVENT_SETTLEMENT)
        ]
    events.sort(key=lambda e: e.date)

    future = [e.date for e in events if e.date > as_of]
    next_date = min(future) if future else None
    result = []
    for event in events:
        if event.type == EVENT_COUPON_OBSERVATION:
            result.append(event)
            continue
        if event.date <= as_of:
            status = EVENT_COMPLETED
        elif event.date == next_date:
            status = EVENT_UPCOMING
        else:
            status = EVENT_PENDING
        result.append(replace(event, status=status))
    return tuple(result)


def next_event(events: Sequence[LifecycleEvent]) -> Optional[LifecycleEvent]:
    """First upcoming event, or None once everything has happened."""
    for event in events:
        if event.status == EVENT_UPCOMING:
            return event
    return None


# ============================================================================
# EVALUATION
# ============================================================================

@dataclass(frozen=True)
class LifecycleSnapshot:
    """Everything the presentation layer needs about a product at as_of."""
    as_of: datetime
    resolution: BasketResolution
    status: TriggerStatus
    schedule: Optional[CouponSchedule]
    payout: PayoutResult
    flow: ScenarioFlow
    events: Tuple[LifecycleEvent, ...]
    next_event: Optional[LifecycleEvent]
    progress_pct: Decimal
    days_to_maturity: int
    days_elapsed: int
    earn_line: str
    risk_line: str

    @property
    def reference_level(self) -> Decimal:
        return self.resolution.reference_level

    @property
    def reference_performance(self) -> Decimal:
        return self.resolution.reference_performance

    @property
    def worst_performer_index(self) -> int:
        return self.resolution.worst_index

    @property
    def best_performer_index(self) -> int:
        return self.resolution.best_index


def evaluate_lifecycle(
    lifecycle: ProductLifecycleData,
    as_of: datetime,
    *,
    history: Optional[Sequence[Observation]] = None,
    reference_levels: Optional[LevelLookup] = None,
) -> LifecycleSnapshot:
    """
    Run the full evaluation of a product at as_of.

    Args:
        lifecycle: The product.
        as_of: Evaluation timestamp; nothing reads the wall clock.
        history: Past (date, reference level) observations for continuous
            barrier monitoring.
        reference_levels: Levels by coupon observation date for conditional
            coupons. Defaults to the history observations.

    Raises:
        InvalidBasketError: Blocks the whole evaluation.
        UnknownBucketError: Terms outside the three buckets.

    A ScheduleConfigError is not raised: the schedule is omitted (None) and
    the payout is computed without coupons.
    """
    terms = lifecycle.terms
    basket = lifecycle.basket
    resolution = resolve_basket(basket)
    status = evaluate_triggers(
        terms, basket, as_of,
        history=history,
        resolution=resolution,
        final_observation_date=lifecycle.final_observation,
        issuer_call_date=lifecycle.issuer_call_date,
        trade_date=lifecycle.trade_date,
        maturity_date=lifecycle.maturity_date,
    )

    terminated_on = None
    if isinstance(status, RegularIncomeStatus) and status.autocall_triggered:
        terminated_on = status.autocall_date
    elif getattr(status, 'issuer_called', False):
        terminated_on = status.issuer_call_date

    if reference_levels is None and history:
        reference_levels = {date: level for date, level in history}

    try:
        schedule: Optional[CouponSchedule] = generate_coupon_schedule(
            terms, lifecycle.notional, lifecycle.trade_date, lifecycle.maturity_date, as_of,
            reference_levels=reference_levels, terminated_on=terminated_on,
        )
    except ScheduleConfigError as exc:
        logger.warning("%s: coupon schedule omitted (%s)",
                       lifecycle.product_name or lifecycle.bucket, exc)
        schedule = None

    driving_price = None
    if resolution.driving_index is not None:
        driving_price = basket[resolution.driving_index].initial_price
    payout = calculate_payout(
        terms, lifecycle.notional, status, paid_coupon_total(schedule or ()),
        driving_initial_price=driving_price,
    )

    flow = build_scenario_flow(terms, basket.basket_type, lifecycle.notional,
                               coupon_count=len(schedule) if schedule else None)
    events = build_events(lifecycle, as_of, schedule, terminated_on)
    earn, risk = earn_risk_lines(terms)

    logger.debug("%s evaluated at %s: %s", lifecycle.product_name or lifecycle.bucket,
                 as_of.isoformat(), payout.outcome)
    return LifecycleSnapshot(
        as_of=as_of,
        resolution=resolution,
        status=status,
        schedule=schedule,
        payout=payout,
        flow=flow,
        events=events,
        next_event=next_event(events),
        progress_pct=lifecycle.progress_pct(as_of),
        days_to_maturity=lifecycle.days_to_maturity(as_of),
        days_elapsed=lifecycle.days_elapsed(as_of),
        earn_line=earn,
        risk_line=risk,
    )


# ============================================================================
# WHAT-IF AND REFRESH
# ============================================================================

def clone_for_scenario(
    lifecycle: ProductLifecycleData,
    initial_prices: Optional[Mapping[str, Number]] = None,
    current_prices: Optional[Mapping[str, Number]] = None,
) -> ProductLifecycleData:
    """
    Independent copy of the product with price overrides applied to the
    copy only. Breach logs are copied, so evaluating the clone never
    touches the canonical product.
    """
    return replace(lifecycle, basket=lifecycle.basket.clone(initial_prices, current_prices))


def refresh_prices(lifecycle: ProductLifecycleData, source: PricingSource,
                   as_of: datetime) -> Dict[str, Decimal]:
    """
    Update current prices from source. Underlyings without a price at
    as_of keep their previous price. Returns the prices applied.
    """
    prices = source.get_prices(lifecycle.basket.symbols, as_of)
    for underlying in lifecycle.basket.underlyings:
        if underlying.symbol in prices:
            underlying.update_price(prices[underlying.symbol])
    missing = set(lifecycle.basket.symbols) - set(prices)
    if missing:
        logger.debug("No price at %s for %s", as_of.isoformat(), sorted(missing))
    return {s: to_decimal(p) for s, p in prices.items()}


# ============================================================================
# ADAPTER - plain data -> aggregate
# ============================================================================

def _levels_from_terms(terms: Terms) -> Dict[str, Optional[Decimal]]:
    """Per-underlying trigger levels implied by the terms."""
    if isinstance(terms, RegularIncomeTerms):
        return {'protection_level_pct': terms.conversion_level_pct,
                'autocall_level_pct': terms.autocall_level_pct}
    if isinstance(terms, CapitalProtectionTerms):
        return {'participation_start_pct': terms.participation_start_pct,
                'cap_level_pct': terms.cap_level_pct,
                'barrier_level_pct': terms.knock_in_level_pct if terms.has_knock_in else None}
    if isinstance(terms, BoostedGrowthTerms):
        return {'barrier_level_pct': terms.barrier_pct}
    return {}


_UNDERLYING_LEVELS = (
    ('protection_level_pct', 'protectionLevelPct'),
    ('autocall_level_pct', 'autocallLevelPct'),
    ('participation_start_pct', 'participationStartPct'),
    ('cap_level_pct', 'capLevelPct'),
    ('barrier_level_pct', 'barrierLevelPct'),
)


def _underlying_from(item: Mapping[str, Any], defaults: Mapping[str, Optional[Decimal]],
                     breach_kind: str, trade_date: datetime) -> Underlying:
    levels = {
        snake: _get(item, snake, camel, defaults.get(snake))
        for snake, camel in _UNDERLYING_LEVELS
    }
    underlying = Underlying(
        symbol=_get(item, 'symbol', 'symbol', ''),
        name=_get(item, 'name', 'name', ''),
        initial_price=_get(item, 'initial_price', 'initialPrice'),
        current_price=_get(item, 'current_price', 'currentPrice'),
        **levels,
    )
    if _get(item, 'barrier_breached', 'barrierBreached', False):
        date = _get(item, 'barrier_breached_date', 'barrierBreachedDate')
        underlying.record_breach(BreachEvent(
            date=_parse_datetime(date) if date is not None else trade_date,
            kind=breach_kind,
            level_pct=levels['barrier_level_pct'] or Decimal("0"),
            observed_level=underlying.level,
        ))
    return underlying


def _required_date(data: Mapping[str, Any], snake: str, camel: str) -> datetime:
    value = _get(data, snake, camel)
    if value is None:
        raise ValueError(f"Product field '{camel}' is missing")
    return _parse_datetime(value)


def _optional_date(data: Mapping[str, Any], snake: str, camel: str) -> Optional[datetime]:
    value = _get(data, snake, camel)
    return None if value is None else _parse_datetime(value)


def lifecycle_from_mapping(data: Mapping[str, Any]) -> ProductLifecycleData:
    """
    Build a ProductLifecycleData from the plain-data contract.

    Accepts camelCase (presentation layer) or snake_case keys. Underlying
    trigger levels not given explicitly are taken from the terms. A
    barrierBreached flag seeds the breach log; without a date it is dated
    at the trade date.

    Raises:
        UnknownBucketError: Unknown bucket tag.
        MissingTermsForBucketError: Terms block absent for the bucket.
        InvalidBasketError: Empty or inconsistent basket.
        ValueError: Missing or inconsistent dates.
    """
    bucket = check_bucket(_get(data, 'bucket', 'bucket', ''))
    terms = terms_from_mapping(bucket, data)
    trade_date = _required_date(data, 'trade_date', 'tradeDate')
    maturity_date = _required_date(data, 'maturity_date', 'maturityDate')
    initial_fixing = _optional_date(data, 'initial_fixing_date', 'initialFixingDate') or trade_date
    settlement = _optional_date(data, 'settlement_date', 'settlementDate') or maturity_date

    breach_kind = BREACH_KNOCK_IN if bucket == BUCKET_CAPITAL_PROTECTION else BREACH_BARRIER
    defaults = _levels_from_terms(terms)
    underlyings = tuple(
        _underlying_from(item, defaults, breach_kind, trade_date)
        for item in _get(data, 'underlyings', 'underlyings', ()) or ()
    )
    basket = Basket(underlyings, _get(data, 'basket_type', 'basketType', BASKET_SINGLE))

    return ProductLifecycleData(
        bucket=bucket,
        terms=terms,
        basket=basket,
        notional=_get(data, 'notional', 'notional', DEFAULT_NOTIONAL),
        trade_date=trade_date,
        initial_fixing_date=initial_fixing,
        maturity_date=maturity_date,
        settlement_date=settlement,
        currency=_get(data, 'currency', 'currency', "USD"),
        product_name=_get(data, 'product_name', 'productDisplayName', ""),
        isin=_get(data, 'isin', 'isin'),
        issuer_call_date=_optional_date(data, 'issuer_call_date', 'issuerCallDate'),
        final_observation_date=_optional_date(data, 'final_observation_date', 'finalObservationDate'),
    )
