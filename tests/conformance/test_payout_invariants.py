"""
Payout Conformance Tests

INVARIANT: Payouts are bounded by the contract and agree with the payoff
curve at every level.

    CP, no knock-in:      floor <= redemption <= cap (when capped)
    CP:                   redemption non-decreasing in L
    BG, barrier intact:   redemption >= bonus
    BG, barrier breached: redemption = L * gearing
    RI:                   amount - coupons <= notional
    ∀ L on the grid:      payoff_curve(L) = scalar payout(L) / notional

    Every component dispatching on the bucket covers exactly the three
    terms variants.

This ensures:
- Protection and caps are never violated by rounding or ordering
- Chart curves never disagree with the engine's own figures
- A new bucket cannot be added without handling it everywhere
"""

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st
from datetime import datetime
from decimal import Decimal

from outcome_engine import (
    capital_protection_payout, boosted_growth_payout, regular_income_payout, payoff_curve,
    TERMS_VARIANTS, UnknownBucketError,
    calculate_payout, break_even_level, build_scenario_flow, earn_risk_lines,
    evaluate_triggers, generate_coupon_schedule,
)
from outcome_engine import coupons, curve, payout, scenarios, triggers
from tests.builders import basket, income_terms, protection_terms, growth_terms


NOTIONAL = Decimal("100000")

final_levels = st.decimals(min_value=Decimal("0"), max_value=Decimal("2.5"), places=4,
                           allow_nan=False, allow_infinity=False)
floors = st.integers(min_value=50, max_value=110)
rates = st.integers(min_value=0, max_value=300)
starts = st.integers(min_value=80, max_value=130)


class TestCapitalProtectionBounds:

    @given(level=final_levels, floor=floors, rate=rates, start=starts,
           headroom=st.integers(min_value=0, max_value=80))
    @settings(max_examples=300)
    def test_floor_and_cap(self, level, floor, rate, start, headroom):
        """PROPERTY: floor <= redemption <= cap while protection is intact."""
        terms = protection_terms(capital_protection_pct=floor, participation_start_pct=start,
                                 participation_rate_pct=rate, cap_level_pct=floor + headroom)
        result = capital_protection_payout(terms, NOTIONAL, level)
        assert NOTIONAL * floor / 100 <= result.amount <= NOTIONAL * (floor + headroom) / 100

    @given(a=final_levels, b=final_levels, floor=floors, rate=rates, start=starts)
    @settings(max_examples=300)
    def test_non_decreasing_in_level(self, a, b, floor, rate, start):
        """PROPERTY: a higher final level never pays less."""
        terms = protection_terms(capital_protection_pct=floor, participation_start_pct=start,
                                 participation_rate_pct=rate)
        low, high = sorted((a, b))
        assert (capital_protection_payout(terms, NOTIONAL, low).amount
                <= capital_protection_payout(terms, NOTIONAL, high).amount)


class TestBoostedGrowthBounds:

    @given(level=final_levels, barrier=st.integers(min_value=30, max_value=95),
           bonus=st.integers(min_value=100, max_value=160))
    @settings(max_examples=300)
    def test_bonus_floor_while_intact(self, level, barrier, bonus):
        """PROPERTY: an intact barrier pays at least the bonus level."""
        terms = growth_terms(barrier_pct=barrier, bonus_level_pct=bonus)
        assert boosted_growth_payout(terms, NOTIONAL, level, False).amount >= NOTIONAL * bonus / 100

    @given(level=final_levels, gearing=st.integers(min_value=50, max_value=250))
    @settings(max_examples=300)
    def test_breached_tracks_level(self, level, gearing):
        """PROPERTY: a breached barrier pays L * gearing of notional."""
        terms = growth_terms(participation_rate_pct=gearing)
        expected = (NOTIONAL * level * gearing / 100).quantize(Decimal("0.01"))
        assert boosted_growth_payout(terms, NOTIONAL, level, True).amount == expected


class TestRegularIncomeBounds:

    @given(level=final_levels,
           coupons_paid=st.decimals(min_value=Decimal("0"), max_value=Decimal("20000"), places=2))
    @settings(max_examples=300)
    def test_principal_never_exceeded(self, level, coupons_paid):
        """PROPERTY: redemption excluding coupons never exceeds the notional."""
        breached = level < Decimal("0.7")
        result = regular_income_payout(income_terms(), NOTIONAL, level, breached, coupons_paid)
        assert result.amount - result.coupons_paid <= NOTIONAL


class TestCurveAgreement:

    @given(floor=floors, rate=rates, start=starts, headroom=st.integers(min_value=0, max_value=80),
           breached=st.booleans())
    @settings(max_examples=50)
    def test_capital_protection_curve(self, floor, rate, start, headroom, breached):
        """PROPERTY: the curve equals the scalar payout at every grid level."""
        terms = protection_terms(capital_protection_pct=floor, participation_start_pct=start,
                                 participation_rate_pct=rate, cap_level_pct=floor + headroom)
        for level, redemption in payoff_curve(terms, breached=breached).as_points():
            scalar = capital_protection_payout(terms, NOTIONAL, Decimal(str(level)),
                                               knock_in_triggered=breached)
            assert redemption == pytest.approx(float(scalar.amount / NOTIONAL), abs=1e-7)

    @given(barrier=st.integers(min_value=30, max_value=95), bonus=st.integers(min_value=100, max_value=160),
           breached=st.booleans())
    @settings(max_examples=50)
    def test_boosted_growth_curve(self, barrier, bonus, breached):
        """PROPERTY: the curve equals the scalar payout at every grid level."""
        terms = growth_terms(barrier_pct=barrier, bonus_level_pct=bonus)
        for level, redemption in payoff_curve(terms, breached=breached).as_points():
            scalar = boosted_growth_payout(terms, NOTIONAL, Decimal(str(level)), breached)
            assert redemption == pytest.approx(float(scalar.amount / NOTIONAL), abs=1e-7)


class TestClosedDispatch:

    @pytest.mark.parametrize("table", [
        triggers._HANDLERS, coupons._HANDLERS, payout._HANDLERS, payout._BREAK_EVEN,
        curve._HANDLERS, scenarios._FLOWS, scenarios._LINES,
    ])
    def test_every_table_covers_every_variant(self, table):
        """PROPERTY: each dispatch table maps exactly the three terms variants."""
        assert set(table) == set(TERMS_VARIANTS)

    @pytest.mark.parametrize("call", [
        lambda t: evaluate_triggers(t, basket(1), None),
        lambda t: generate_coupon_schedule(t, 1, datetime(2024, 1, 1),
                                           datetime(2025, 1, 1),
                                           datetime(2024, 6, 1)),
        lambda t: calculate_payout(t, 1, None),
        lambda t: break_even_level(t),
        lambda t: payoff_curve(t),
        lambda t: build_scenario_flow(t),
        lambda t: earn_risk_lines(t),
    ])
    def test_foreign_terms_rejected(self, call):
        """PROPERTY: an object outside the closed set is an UnknownBucketError everywhere."""
        with pytest.raises(UnknownBucketError):
            call(object())
