"""
outcome_engine - Structured-Product Outcome Engine

Rules-based payoff determination for three structured-product families
(Regular Income, Capital Protection, Boosted Growth) from contractual terms
and given prices. No pricing models, no market-data fetching.

Usage:
    from datetime import datetime
    from outcome_engine import (
        Basket, Underlying, ProductLifecycleData, RegularIncomeTerms,
        evaluate_lifecycle,
    )

    product = ProductLifecycleData(
        bucket="REGULAR_INCOME",
        terms=RegularIncomeTerms(coupon_rate_pct=5.75, coupon_freq_per_year=4,
                                 protection_level_pct=70),
        basket=Basket((Underlying("AAPL", "Apple", 100, 108),)),
        notional=100000,
        trade_date=datetime(2024, 1, 15),
        initial_fixing_date=datetime(2024, 1, 15),
        maturity_date=datetime(2025, 1, 15),
        settlement_date=datetime(2025, 1, 22),
    )
    snapshot = evaluate_lifecycle(product, as_of=datetime(2025, 1, 22))
    snapshot.payout.amount   # Decimal('105750.00')
"""

# Core
from .core import (
    BUCKET_REGULAR_INCOME,
    BUCKET_CAPITAL_PROTECTION,
    BUCKET_BOOSTED_GROWTH,
    BUCKETS,
    BASKET_SINGLE,
    BASKET_WORST_OF,
    BASKET_BEST_OF,
    BASKET_AVERAGE,
    BASKET_EQUALLY_WEIGHTED,
    BASKET_TYPES,
    COUPON_PAID,
    COUPON_UPCOMING,
    COUPON_PENDING,
    EVENT_COMPLETED,
    EVENT_UPCOMING,
    EVENT_PENDING,
    RISK_SAFE,
    RISK_WATCH,
    RISK_TRIGGERED,
    LEVEL_SAFE,
    LEVEL_AT_RISK,
    LEVEL_BREACHED,
    OBSERVATION_CONTINUOUS,
    OBSERVATION_EUROPEAN,
    BREACH_BARRIER,
    BREACH_KNOCK_IN,
    BREACH_AUTOCALL,
    SETTLEMENT_CASH,
    SETTLEMENT_PHYSICAL,
    DEFAULT_NOTIONAL,
    WATCH_THRESHOLD,
    EngineError,
    InvalidBasketError,
    ScheduleConfigError,
    UnknownBucketError,
    MissingTermsForBucketError,
    require_exhaustive,
)

# Numeric utilities
from .numeric import (
    to_decimal,
    round_money,
    clamp,
    safe_divide,
    pct_to_ratio,
    ratio_to_pct,
    format_pct,
    format_ratio_pct,
    format_money,
    add_months,
    months_between,
)

# Terms
from .terms import (
    AutocallObservation,
    RegularIncomeTerms,
    CapitalProtectionTerms,
    BoostedGrowthTerms,
    Terms,
    TERMS_VARIANTS,
    terms_from_mapping,
)

# Basket
from .basket import (
    BreachEvent,
    Underlying,
    Basket,
    BasketResolution,
    resolve_basket,
    resolve_levels,
    resolve_performances,
)

# Pricing sources
from .pricing_source import (
    PricingSource,
    StaticPricingSource,
    TimeSeriesPricingSource,
    basket_level_at,
    basket_resolution_at,
)

# Triggers
from .triggers import (
    KeyLevel,
    RegularIncomeStatus,
    CapitalProtectionStatus,
    BoostedGrowthStatus,
    TriggerStatus,
    evaluate_triggers,
    issuer_call_dates,
    autocall_observation_dates,
    replay_history,
)

# Coupons
from .coupons import (
    CouponScheduleEntry,
    coupon_amount,
    generate_coupon_schedule,
    advance_schedule,
    paid_coupon_total,
)

# Payout
from .payout import (
    PayoutResult,
    regular_income_payout,
    capital_protection_payout,
    boosted_growth_payout,
    calculate_payout,
    break_even_level,
)

# Payoff curve
from .curve import (
    CurveMarker,
    PayoffCurve,
    payoff_curve,
)

# Scenarios
from .scenarios import (
    Outcome,
    ScenarioNode,
    ScenarioFlow,
    build_scenario_flow,
    earn_risk_lines,
)

# Lifecycle
from .lifecycle import (
    LifecycleEvent,
    LifecycleSnapshot,
    ProductLifecycleData,
    build_events,
    next_event,
    evaluate_lifecycle,
    lifecycle_from_mapping,
    clone_for_scenario,
    refresh_prices,
)

__all__ = [
    # Core
    'BUCKET_REGULAR_INCOME', 'BUCKET_CAPITAL_PROTECTION', 'BUCKET_BOOSTED_GROWTH', 'BUCKETS',
    'BASKET_SINGLE', 'BASKET_WORST_OF', 'BASKET_BEST_OF', 'BASKET_AVERAGE',
    'BASKET_EQUALLY_WEIGHTED', 'BASKET_TYPES',
    'COUPON_PAID', 'COUPON_UPCOMING', 'COUPON_PENDING',
    'EVENT_COMPLETED', 'EVENT_UPCOMING', 'EVENT_PENDING',
    'RISK_SAFE', 'RISK_WATCH', 'RISK_TRIGGERED',
    'LEVEL_SAFE', 'LEVEL_AT_RISK', 'LEVEL_BREACHED',
    'OBSERVATION_CONTINUOUS', 'OBSERVATION_EUROPEAN',
    'BREACH_BARRIER', 'BREACH_KNOCK_IN', 'BREACH_AUTOCALL',
    'SETTLEMENT_CASH', 'SETTLEMENT_PHYSICAL',
    'DEFAULT_NOTIONAL', 'WATCH_THRESHOLD',
    'EngineError', 'InvalidBasketError', 'ScheduleConfigError',
    'UnknownBucketError', 'MissingTermsForBucketError', 'require_exhaustive',
    # Numeric
    'to_decimal', 'round_money', 'clamp', 'safe_divide', 'pct_to_ratio', 'ratio_to_pct',
    'format_pct', 'format_ratio_pct', 'format_money', 'add_months', 'months_between',
    # Terms
    'AutocallObservation', 'RegularIncomeTerms', 'CapitalProtectionTerms', 'BoostedGrowthTerms',
    'Terms', 'TERMS_VARIANTS', 'terms_from_mapping',
    # Basket
    'BreachEvent', 'Underlying', 'Basket', 'BasketResolution',
    'resolve_basket', 'resolve_levels', 'resolve_performances',
    # Pricing
    'PricingSource', 'StaticPricingSource', 'TimeSeriesPricingSource',
    'basket_level_at', 'basket_resolution_at',
    # Triggers
    'KeyLevel', 'RegularIncomeStatus', 'CapitalProtectionStatus', 'BoostedGrowthStatus',
    'TriggerStatus', 'evaluate_triggers', 'issuer_call_dates', 'autocall_observation_dates', 'replay_history',
    # Coupons
    'CouponScheduleEntry', 'coupon_amount', 'generate_coupon_schedule', 'advance_schedule', 'paid_coupon_total',
    # Payout
    'PayoutResult', 'regular_income_payout', 'capital_protection_payout',
    'boosted_growth_payout', 'calculate_payout', 'break_even_level',
    # Curve
    'CurveMarker', 'PayoffCurve', 'payoff_curve',
    # Scenarios
    'Outcome', 'ScenarioNode', 'ScenarioFlow', 'build_scenario_flow', 'earn_risk_lines',
    # Lifecycle
    'LifecycleEvent', 'LifecycleSnapshot', 'ProductLifecycleData',
    'build_events', 'next_event', 'evaluate_lifecycle', 'lifecycle_from_mapping',
    'clone_for_scenario', 'refresh_prices',
]

__version__ = '1.0.0'
