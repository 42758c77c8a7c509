"""
Core constants, exceptions and dispatch helpers for the outcome engine.

This module provides the foundations shared by every component:
1. Decimal context configuration (deterministic money arithmetic)
2. Constants: bucket tags, basket types, status strings, defaults
3. Exceptions: EngineError and the typed failures of the engine
4. require_exhaustive(): construction-time check for bucket dispatch tables

All engine functions are pure over their inputs. The only controlled
mutation anywhere in the package is the append-only breach log kept on
each Underlying (see basket.py).
"""

from __future__ import annotations
from decimal import Decimal, ROUND_HALF_UP, getcontext
from typing import Any, Callable, Mapping, Tuple


# ============================================================================
# DECIMAL CONTEXT CONFIGURATION
# ============================================================================
#
# Payout arithmetic must be deterministic. The global context is configured
# once at import time.
#
# PRECONDITION: No other code should modify the global Decimal context.
# If thread-local contexts are needed, use decimal.localcontext().
#
#   - prec=50: intermediate ratios keep full precision
#   - rounding: only applied explicitly through numeric.round_money()
#
_ENGINE_DECIMAL_CONTEXT = getcontext()
_ENGINE_DECIMAL_CONTEXT.prec = 50


# ============================================================================
# CONSTANTS
# ============================================================================

# Bucket tags (strings, not enum, matching the plain-data contract).
BUCKET_REGULAR_INCOME = "REGULAR_INCOME"
BUCKET_CAPITAL_PROTECTION = "CAPITAL_PROTECTION"
BUCKET_BOOSTED_GROWTH = "BOOSTED_GROWTH"
BUCKETS = frozenset({
    BUCKET_REGULAR_INCOME,
    BUCKET_CAPITAL_PROTECTION,
    BUCKET_BOOSTED_GROWTH,
})

# Basket types
BASKET_SINGLE = "single"
BASKET_WORST_OF = "worst_of"
BASKET_BEST_OF = "best_of"
BASKET_AVERAGE = "average"
BASKET_EQUALLY_WEIGHTED = "equally_weighted"
BASKET_TYPES = frozenset({
    BASKET_SINGLE,
    BASKET_WORST_OF,
    BASKET_BEST_OF,
    BASKET_AVERAGE,
    BASKET_EQUALLY_WEIGHTED,
})

# Coupon entry status
COUPON_PAID = "paid"
COUPON_UPCOMING = "upcoming"
COUPON_PENDING = "pending"
# Forward order of coupon status; an entry only ever moves to a higher rank.
COUPON_STATUS_RANK = {COUPON_PENDING: 0, COUPON_UPCOMING: 1, COUPON_PAID: 2}

# Lifecycle event status
EVENT_COMPLETED = "completed"
EVENT_UPCOMING = "upcoming"
EVENT_PENDING = "pending"

# Risk status
RISK_SAFE = "SAFE"
RISK_WATCH = "WATCH"
RISK_TRIGGERED = "TRIGGERED"

# Key level status
LEVEL_SAFE = "safe"
LEVEL_AT_RISK = "at_risk"
LEVEL_BREACHED = "breached"

# Barrier observation styles
OBSERVATION_CONTINUOUS = "continuous"
OBSERVATION_EUROPEAN = "european"

# Event kinds recorded in an Underlying's breach log. Autocall is logged
# there too so an early redemption stays terminal on later evaluations.
BREACH_BARRIER = "barrier"
BREACH_KNOCK_IN = "knock_in"
BREACH_AUTOCALL = "autocall"

# Settlement types
SETTLEMENT_CASH = "cash"
SETTLEMENT_PHYSICAL = "physical"

# Money outputs are quantised to cents with round-half-up.
MONEY_PLACES = 2
MONEY_ROUNDING = ROUND_HALF_UP

# Notional used for illustrative scenario examples.
DEFAULT_NOTIONAL = Decimal("100000")

# Days between a coupon observation and its payment.
DEFAULT_PAYMENT_LAG_DAYS = 5

# Distance (as a fraction of initial) under which a level is "at risk".
WATCH_THRESHOLD = Decimal("0.05")

# Payoff curve grid (fractions of initial)
DEFAULT_CURVE_MAX_LEVEL = 1.6
CURVE_STEP = 0.01


# ============================================================================
# EXCEPTIONS
# ============================================================================

class EngineError(Exception):
    """Base exception for all outcome-engine errors."""
    pass


class InvalidBasketError(EngineError):
    """Raised when a basket is empty or its type does not match its underlyings."""
    pass


class ScheduleConfigError(EngineError):
    """Raised when a coupon frequency is not positive or does not divide 12."""
    pass


class UnknownBucketError(EngineError):
    """Raised when a bucket tag is outside the three defined buckets."""
    pass


class MissingTermsForBucketError(EngineError):
    """Raised when a bucket tag is present but its terms are absent."""
    pass


# ============================================================================
# EXHAUSTIVE DISPATCH
# ============================================================================

def require_exhaustive(
    component: str,
    handlers: Mapping[type, Callable[..., Any]],
    variants: Tuple[type, ...],
) -> Mapping[type, Callable[..., Any]]:
    """
    Check that a bucket dispatch table covers exactly the terms variants.

    Every component that branches on the bucket builds its table at import
    time and passes it through this check, so a new terms variant cannot be
    added without updating every component: the package fails to import.

    Raises:
        TypeError: If the table misses a variant or handles an unknown type.
    """
    missing = [v.__name__ for v in variants if v not in handlers]
    extra = [h.__name__ for h in handlers if h not in variants]
    if missing or extra:
        raise TypeError(
            f"{component}: bucket dispatch is not exhaustive "
            f"(missing={missing}, unexpected={extra})"
        )
    return dict(handlers)


def dispatch(component: str, handlers: Mapping[type, Callable[..., Any]], terms: Any) -> Callable[..., Any]:
    """Look up the handler for a terms instance or raise UnknownBucketError."""
    handler = handlers.get(type(terms))
    if handler is None:
        raise UnknownBucketError(
            f"{component}: no handler for terms of type {type(terms).__name__}"
        )
    return handler
