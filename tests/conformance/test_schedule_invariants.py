"""
Coupon Schedule Conformance Tests

INVARIANT: The schedule is fully determined by the terms, the tenor and
as_of, and an entry's status only ever moves forward.

    ∀ f | 12, tenor T months:   len(schedule) = T * f // 12
    ∀ f ∤ 12:                   generate_coupon_schedule raises ScheduleConfigError
    ∀ t1 <= t2:                 rank(status_t1(e)) <= rank(status_t2(e))
    ∀ schedule:                 at most one entry is upcoming

This ensures:
- Frequencies that do not divide the year are rejected, never approximated
- A paid coupon can never become unpaid
- Replaying an older evaluation can never regress a merged schedule
"""

import pytest
from hypothesis import given, settings, assume
from hypothesis import strategies as st
from datetime import datetime, timedelta
from decimal import Decimal

from outcome_engine import (
    generate_coupon_schedule, advance_schedule, add_months,
    ScheduleConfigError, COUPON_UPCOMING,
)
from outcome_engine.core import COUPON_STATUS_RANK
from tests.builders import income_terms


TRADE = datetime(2024, 1, 15)

divisors = st.sampled_from([1, 2, 3, 4, 6, 12])
non_divisors = st.integers(min_value=1, max_value=60).filter(lambda f: 12 % f != 0)
tenors = st.integers(min_value=1, max_value=120)
offsets = st.integers(min_value=-30, max_value=4000)


def build(freq, tenor_months, as_of, **kwargs):
    return generate_coupon_schedule(
        income_terms(coupon_freq_per_year=freq), 100000, TRADE, add_months(TRADE, tenor_months),
        as_of, **kwargs,
    )


class TestScheduleShape:

    @given(freq=divisors, tenor=tenors)
    @settings(max_examples=200)
    def test_entry_count(self, freq, tenor):
        """PROPERTY: a T-month tenor has T * f // 12 entries."""
        assert len(build(freq, tenor, TRADE)) == tenor * freq // 12

    @given(freq=non_divisors, tenor=tenors)
    @settings(max_examples=100)
    def test_non_divisor_rejected(self, freq, tenor):
        """PROPERTY: a frequency that does not divide 12 always fails."""
        with pytest.raises(ScheduleConfigError):
            build(freq, tenor, TRADE)

    @given(freq=divisors, tenor=tenors)
    @settings(max_examples=100)
    def test_observations_strictly_increasing_within_tenor(self, freq, tenor):
        """PROPERTY: observation dates increase and never pass maturity."""
        schedule = build(freq, tenor, TRADE)
        dates = [e.observation_date for e in schedule]
        assert all(a < b for a, b in zip(dates, dates[1:]))
        assert all(d <= add_months(TRADE, tenor) for d in dates)


class TestForwardOnlyStatus:

    @given(freq=divisors, tenor=tenors, a=offsets, b=offsets)
    @settings(max_examples=200)
    def test_status_monotonic_in_as_of(self, freq, tenor, a, b):
        """PROPERTY: evaluating later never lowers any entry's status."""
        early, late = sorted((a, b))
        first = build(freq, tenor, TRADE + timedelta(days=early))
        second = build(freq, tenor, TRADE + timedelta(days=late))
        for old, new in zip(first, second):
            assert COUPON_STATUS_RANK[old.status] <= COUPON_STATUS_RANK[new.status]

    @given(freq=divisors, tenor=tenors, offset=offsets)
    @settings(max_examples=200)
    def test_single_upcoming_entry(self, freq, tenor, offset):
        """PROPERTY: at most one entry is upcoming."""
        schedule = build(freq, tenor, TRADE + timedelta(days=offset))
        assert sum(1 for e in schedule if e.status == COUPON_UPCOMING) <= 1

    @given(freq=divisors, tenor=tenors, a=offsets, b=offsets)
    @settings(max_examples=200)
    def test_merge_never_regresses(self, freq, tenor, a, b):
        """PROPERTY: merging any recomputation keeps every status at least as high."""
        assume(a != b)
        previous = build(freq, tenor, TRADE + timedelta(days=a))
        recomputed = build(freq, tenor, TRADE + timedelta(days=b))
        merged = advance_schedule(previous, recomputed)
        by_date = {e.observation_date: e for e in merged}
        for old in previous:
            assert COUPON_STATUS_RANK[by_date[old.observation_date].status] >= COUPON_STATUS_RANK[old.status]
            if old.is_paid:
                assert by_date[old.observation_date] == old

    @given(freq=divisors, tenor=tenors, offset=offsets)
    @settings(max_examples=100)
    def test_paid_amount_independent_of_levels(self, freq, tenor, offset):
        """PROPERTY: an unconditional schedule never depends on reference levels."""
        as_of = TRADE + timedelta(days=offset)
        plain = build(freq, tenor, as_of)
        with_levels = build(freq, tenor, as_of, reference_levels=lambda d: Decimal("0.1"))
        assert plain == with_levels
