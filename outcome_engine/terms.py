"""
terms.py - Immutable contract terms, one closed variant per bucket.

ARCHITECTURE:
=============

1. FROZEN DATACLASSES (set at issuance, never change):
   - RegularIncomeTerms: periodic coupons, protection level, optional autocall
   - CapitalProtectionTerms: floor, participation, optional cap/knock-in/issuer call
   - BoostedGrowthTerms: bonus level guarded by a barrier

2. CLOSED SET:
   - TERMS_VARIANTS lists exactly the three variants. Every component that
     branches on the bucket registers a handler per variant and checks the
     table with core.require_exhaustive() at import time.

3. ADAPTER (terms_from_mapping):
   - Converts the plain-data contract (camelCase or snake_case keys) into a
     typed variant. The ONLY place that raises UnknownBucketError and
     MissingTermsForBucketError for raw input.

All percentage fields are percent of the initial fixing (70 = 70%).
"""

from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any, ClassVar, Dict, Mapping, Optional, Tuple, Union

from .core import (
    BUCKET_REGULAR_INCOME, BUCKET_CAPITAL_PROTECTION, BUCKET_BOOSTED_GROWTH,
    BUCKETS, DEFAULT_PAYMENT_LAG_DAYS,
    OBSERVATION_CONTINUOUS, OBSERVATION_EUROPEAN,
    UnknownBucketError, MissingTermsForBucketError,
)
from .numeric import to_decimal


def _convert(obj: Any, *names: str) -> None:
    """Convert the named fields of a frozen dataclass to Decimal in place."""
    for name in names:
        value = getattr(obj, name)
        if value is not None and not isinstance(value, Decimal):
            object.__setattr__(obj, name, to_decimal(value))


def _parse_datetime(value: Union[datetime, str]) -> datetime:
    if isinstance(value, datetime):
        return value
    return datetime.fromisoformat(value)


# ============================================================================
# REGULAR INCOME
# ============================================================================

@dataclass(frozen=True, slots=True)
class AutocallObservation:
    """One step of a step-down autocall schedule."""
    observation_date: datetime
    trigger_level_pct: Decimal

    def __post_init__(self):
        _convert(self, 'trigger_level_pct')
        if self.trigger_level_pct <= Decimal("0"):
            raise ValueError(
                f"trigger_level_pct must be positive, got {self.trigger_level_pct}"
            )


@dataclass(frozen=True, slots=True)
class RegularIncomeTerms:
    """
    Income note terms: periodic coupons with conditional downside protection.

    Two redemption variants share these terms. The standard variant converts
    1:1 below protection_level_pct. The low-strike (geared put) variant is
    selected by strike_pct: below its knock-in barrier the investor receives
    shares bought at the strike, so the loss is geared by 100 / strike_pct.

    Attributes:
        coupon_rate_pct: Annual coupon rate in percent (5.75 = 5.75% p.a.)
        coupon_freq_per_year: Coupon payments per year (12, 4, 2, 1, ...)
        protection_level_pct: Protection level, percent of initial. Also the
            barrier for conditional coupons in both variants.
        conditional_coupon: Coupons are only paid while the basket is at
            or above the protection level on the observation date
        autocall_level_pct: Early-redemption trigger (None = no autocall)
        autocall_step_down: Optional step-down trigger schedule; overrides
            autocall_level_pct once its first observation has passed
        payment_lag_days: Days between observation and payment
        strike_pct: Geared put strike K, percent of initial (None = standard)
        knock_in_barrier_pct: Geared put conversion trigger (defaults to K)
    """
    bucket: ClassVar[str] = BUCKET_REGULAR_INCOME

    coupon_rate_pct: Decimal
    coupon_freq_per_year: int
    protection_level_pct: Decimal
    conditional_coupon: bool = False
    autocall_level_pct: Optional[Decimal] = None
    autocall_step_down: Tuple[AutocallObservation, ...] = ()
    payment_lag_days: int = DEFAULT_PAYMENT_LAG_DAYS
    strike_pct: Optional[Decimal] = None
    knock_in_barrier_pct: Optional[Decimal] = None

    def __post_init__(self):
        _convert(self, 'coupon_rate_pct', 'protection_level_pct', 'autocall_level_pct',
                 'strike_pct', 'knock_in_barrier_pct')
        object.__setattr__(
            self, 'autocall_step_down',
            tuple(sorted(self.autocall_step_down, key=lambda o: o.observation_date)),
        )

        if self.coupon_rate_pct < Decimal("0"):
            raise ValueError(f"coupon_rate_pct cannot be negative, got {self.coupon_rate_pct}")
        if not isinstance(self.coupon_freq_per_year, int) or isinstance(self.coupon_freq_per_year, bool):
            raise ValueError(
                f"coupon_freq_per_year must be an integer, got {self.coupon_freq_per_year!r}"
            )
        if self.protection_level_pct <= Decimal("0"):
            raise ValueError(
                f"protection_level_pct must be positive, got {self.protection_level_pct}"
            )
        if self.autocall_level_pct is not None and self.autocall_level_pct <= Decimal("0"):
            raise ValueError(
                f"autocall_level_pct must be positive if specified, got {self.autocall_level_pct}"
            )
        if self.payment_lag_days < 0:
            raise ValueError(f"payment_lag_days cannot be negative, got {self.payment_lag_days}")
        if self.strike_pct is not None and not (Decimal("0") < self.strike_pct <= Decimal("100")):
            raise ValueError(f"strike_pct must be in (0, 100], got {self.strike_pct}")
        if self.knock_in_barrier_pct is not None:
            if self.strike_pct is None:
                raise ValueError("knock_in_barrier_pct requires strike_pct")
            if not (Decimal("0") < self.knock_in_barrier_pct <= self.strike_pct):
                raise ValueError(
                    f"knock_in_barrier_pct must be in (0, strike_pct], got {self.knock_in_barrier_pct}"
                )

    @property
    def has_autocall(self) -> bool:
        return self.autocall_level_pct is not None or bool(self.autocall_step_down)

    @property
    def is_geared_put(self) -> bool:
        return self.strike_pct is not None

    @property
    def conversion_level_pct(self) -> Decimal:
        """Level below which redemption converts to shares."""
        if not self.is_geared_put:
            return self.protection_level_pct
        if self.knock_in_barrier_pct is not None:
            return self.knock_in_barrier_pct
        return self.strike_pct

    @property
    def gearing(self) -> Decimal:
        if not self.is_geared_put:
            return Decimal("1")
        return Decimal("100") / self.strike_pct

    def autocall_level_for(self, as_of: datetime) -> Optional[Decimal]:
        """
        Autocall trigger (percent of initial) applicable at as_of.

        With a step-down schedule, the level of the latest observation at or
        before as_of applies; before the first observation, its level applies.
        """
        if not self.autocall_step_down:
            return self.autocall_level_pct
        level = self.autocall_step_down[0].trigger_level_pct
        for step in self.autocall_step_down:
            if step.observation_date > as_of:
                break
            level = step.trigger_level_pct
        return level


# ============================================================================
# CAPITAL PROTECTION
# ============================================================================

@dataclass(frozen=True, slots=True)
class CapitalProtectionTerms:
    """
    Protected participation note terms.

    Attributes:
        capital_protection_pct: Floor P, percent of notional
        participation_start_pct: Participation start K, percent of initial
        participation_rate_pct: Participation rate a, percent (120 = 1.2x)
        cap_level_pct: Optional cap on the payout, percent of notional
        knock_in_enabled: Protection is void once the basket touches the
            knock-in level (continuous, permanent)
        knock_in_level_pct: Knock-in level, percent of initial
        issuer_callable: Issuer may redeem early on call dates
        issuer_call_frequency: Call observations per year
        exit_rate_pa_pct: Annual exit premium paid on an issuer call
    """
    bucket: ClassVar[str] = BUCKET_CAPITAL_PROTECTION

    capital_protection_pct: Decimal
    participation_start_pct: Decimal
    participation_rate_pct: Decimal
    cap_level_pct: Optional[Decimal] = None
    knock_in_enabled: bool = False
    knock_in_level_pct: Optional[Decimal] = None
    issuer_callable: bool = False
    issuer_call_frequency: Optional[int] = None
    exit_rate_pa_pct: Optional[Decimal] = None

    def __post_init__(self):
        _convert(
            self, 'capital_protection_pct', 'participation_start_pct',
            'participation_rate_pct', 'cap_level_pct', 'knock_in_level_pct',
            'exit_rate_pa_pct',
        )

        if self.capital_protection_pct < Decimal("0") or self.capital_protection_pct > Decimal("200"):
            raise ValueError(
                f"capital_protection_pct must be between 0 and 200, got {self.capital_protection_pct}"
            )
        if self.participation_start_pct <= Decimal("0"):
            raise ValueError(
                f"participation_start_pct must be positive, got {self.participation_start_pct}"
            )
        if self.participation_rate_pct < Decimal("0"):
            raise ValueError(
                f"participation_rate_pct cannot be negative, got {self.participation_rate_pct}"
            )
        if self.cap_level_pct is not None and self.cap_level_pct < self.capital_protection_pct:
            raise ValueError(
                f"cap_level_pct must be at least capital_protection_pct, "
                f"got {self.cap_level_pct} < {self.capital_protection_pct}"
            )
        if self.knock_in_enabled:
            if self.knock_in_level_pct is None or self.knock_in_level_pct <= Decimal("0"):
                raise ValueError("knock_in_level_pct must be positive when knock-in is enabled")
        if self.issuer_callable:
            freq = self.issuer_call_frequency
            if not isinstance(freq, int) or freq <= 0 or 12 % freq != 0:
                raise ValueError(
                    f"issuer_call_frequency must be a positive divisor of 12, got {freq!r}"
                )
            if self.exit_rate_pa_pct is None or self.exit_rate_pa_pct < Decimal("0"):
                raise ValueError("exit_rate_pa_pct must be non-negative when issuer callable")

    @property
    def has_cap(self) -> bool:
        return self.cap_level_pct is not None

    @property
    def has_knock_in(self) -> bool:
        return self.knock_in_enabled and self.knock_in_level_pct is not None


# ============================================================================
# BOOSTED GROWTH
# ============================================================================

@dataclass(frozen=True, slots=True)
class BoostedGrowthTerms:
    """
    Bonus certificate terms.

    Attributes:
        barrier_pct: Barrier, percent of initial
        bonus_level_pct: Minimum redemption while the barrier holds,
            percent of notional
        participation_rate_pct: Gearing applied after a breach (None = 1:1)
        barrier_observation: "continuous" (any touch during the life) or
            "european" (final observation date only)
    """
    bucket: ClassVar[str] = BUCKET_BOOSTED_GROWTH

    barrier_pct: Decimal
    bonus_level_pct: Decimal
    participation_rate_pct: Optional[Decimal] = None
    barrier_observation: str = OBSERVATION_CONTINUOUS

    def __post_init__(self):
        _convert(self, 'barrier_pct', 'bonus_level_pct', 'participation_rate_pct')

        if self.barrier_pct <= Decimal("0") or self.barrier_pct >= Decimal("100"):
            raise ValueError(f"barrier_pct must be between 0 and 100, got {self.barrier_pct}")
        if self.bonus_level_pct <= Decimal("0"):
            raise ValueError(f"bonus_level_pct must be positive, got {self.bonus_level_pct}")
        if self.participation_rate_pct is not None and self.participation_rate_pct <= Decimal("0"):
            raise ValueError(
                f"participation_rate_pct must be positive if specified, got {self.participation_rate_pct}"
            )
        if self.barrier_observation not in (OBSERVATION_CONTINUOUS, OBSERVATION_EUROPEAN):
            raise ValueError(
                f"barrier_observation must be 'continuous' or 'european', got {self.barrier_observation!r}"
            )

    @property
    def effective_participation_pct(self) -> Decimal:
        if self.participation_rate_pct is None:
            return Decimal("100")
        return self.participation_rate_pct


# ============================================================================
# CLOSED SET
# ============================================================================

Terms = Union[RegularIncomeTerms, CapitalProtectionTerms, BoostedGrowthTerms]

TERMS_VARIANTS: Tuple[type, ...] = (
    RegularIncomeTerms,
    CapitalProtectionTerms,
    BoostedGrowthTerms,
)

TERMS_BY_BUCKET: Dict[str, type] = {cls.bucket: cls for cls in TERMS_VARIANTS}


def check_bucket(bucket: str) -> str:
    """Return bucket if it is one of the defined tags, else raise UnknownBucketError."""
    if bucket not in BUCKETS:
        raise UnknownBucketError(f"Unknown bucket {bucket!r}; expected one of {sorted(BUCKETS)}")
    return bucket


# ============================================================================
# ADAPTER - plain data -> typed terms
# ============================================================================

# bucket -> (camelCase block key, snake_case block key)
_TERMS_KEYS = {
    BUCKET_REGULAR_INCOME: ('regularIncomeTerms', 'regular_income_terms'),
    BUCKET_CAPITAL_PROTECTION: ('capitalProtectionTerms', 'capital_protection_terms'),
    BUCKET_BOOSTED_GROWTH: ('boostedGrowthTerms', 'boosted_growth_terms'),
}


def _get(block: Mapping[str, Any], snake: str, camel: str, default: Any = None) -> Any:
    if snake in block and block[snake] is not None:
        return block[snake]
    if camel in block and block[camel] is not None:
        return block[camel]
    return default


def _need(block: Mapping[str, Any], snake: str, camel: str) -> Any:
    value = _get(block, snake, camel)
    if value is None:
        raise MissingTermsForBucketError(f"Terms field '{camel}' is missing")
    return value


def _regular_income_from(block: Mapping[str, Any]) -> RegularIncomeTerms:
    step_down = tuple(
        AutocallObservation(
            observation_date=_parse_datetime(_get(step, 'observation_date', 'observationDate')),
            trigger_level_pct=_get(step, 'trigger_level_pct', 'triggerLevelPct'),
        )
        for step in (_get(block, 'autocall_schedule', 'autocallSchedule', ()) or ())
    )
    autocall_level = _get(block, 'autocall_level_pct', 'autocallLevelPct')
    if _get(block, 'has_autocall', 'hasAutocall') is False:
        autocall_level = None
        step_down = ()
    return RegularIncomeTerms(
        coupon_rate_pct=_need(block, 'coupon_rate_pct', 'couponRatePct'),
        coupon_freq_per_year=int(_need(block, 'coupon_freq_per_year', 'couponFreqPerYear')),
        protection_level_pct=_need(block, 'protection_level_pct', 'protectionLevelPct'),
        conditional_coupon=bool(_get(block, 'conditional_coupon', 'conditionalCoupon', False)),
        autocall_level_pct=autocall_level,
        autocall_step_down=step_down,
        payment_lag_days=int(_get(block, 'payment_lag_days', 'paymentLagDays', DEFAULT_PAYMENT_LAG_DAYS)),
        strike_pct=_get(block, 'strike_pct', 'strikePct'),
        knock_in_barrier_pct=_get(block, 'knock_in_barrier_pct', 'knockInBarrierPct'),
    )


def _capital_protection_from(block: Mapping[str, Any]) -> CapitalProtectionTerms:
    freq = _get(block, 'issuer_call_frequency', 'issuerCallFrequency')
    return CapitalProtectionTerms(
        capital_protection_pct=_need(block, 'capital_protection_pct', 'capitalProtectionPct'),
        participation_start_pct=_need(block, 'participation_start_pct', 'participationStartPct'),
        participation_rate_pct=_need(block, 'participation_rate_pct', 'participationRatePct'),
        cap_level_pct=_get(block, 'cap_level_pct', 'capLevelPct'),
        knock_in_enabled=bool(_get(block, 'knock_in_enabled', 'knockInEnabled', False)),
        knock_in_level_pct=_get(block, 'knock_in_level_pct', 'knockInLevelPct'),
        issuer_callable=bool(_get(block, 'issuer_callable', 'issuerCallable', False)),
        issuer_call_frequency=int(freq) if freq is not None else None,
        exit_rate_pa_pct=_get(block, 'exit_rate_pa_pct', 'exitRatePA'),
    )


def _boosted_growth_from(block: Mapping[str, Any]) -> BoostedGrowthTerms:
    return BoostedGrowthTerms(
        barrier_pct=_need(block, 'barrier_pct', 'barrierPct'),
        bonus_level_pct=_need(block, 'bonus_level_pct', 'bonusLevelPct'),
        participation_rate_pct=_get(block, 'participation_rate_pct', 'participationRatePct'),
        barrier_observation=_get(block, 'barrier_observation', 'barrierObservation', OBSERVATION_CONTINUOUS),
    )


_BUILDERS = {
    BUCKET_REGULAR_INCOME: _regular_income_from,
    BUCKET_CAPITAL_PROTECTION: _capital_protection_from,
    BUCKET_BOOSTED_GROWTH: _boosted_growth_from,
}


def terms_from_mapping(bucket: str, data: Mapping[str, Any]) -> Terms:
    """
    Build the typed terms variant for a bucket from plain product data.

    Args:
        bucket: Bucket tag ("REGULAR_INCOME", "CAPITAL_PROTECTION", "BOOSTED_GROWTH").
        data: Product mapping holding the bucket's terms block under its
            camelCase key (e.g. "regularIncomeTerms") or snake_case key.

    Raises:
        UnknownBucketError: If bucket is not one of the three tags.
        MissingTermsForBucketError: If the matching terms block is absent or None.

    Example:
        >>> terms = terms_from_mapping("BOOSTED_GROWTH", {
        ...     "boostedGrowthTerms": {"barrierPct": 60, "bonusLevelPct": 125},
        ... })
        >>> terms.bonus_level_pct
        Decimal('125')
    """
    check_bucket(bucket)
    camel, snake = _TERMS_KEYS[bucket]
    block = data.get(camel)
    if block is None:
        block = data.get(snake)
    if block is None:
        raise MissingTermsForBucketError(
            f"Bucket {bucket} has no terms (expected '{camel}' in product data)"
        )
    return _BUILDERS[bucket](block)
