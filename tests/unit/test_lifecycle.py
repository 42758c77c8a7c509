"""
test_lifecycle.py - Unit tests for the product lifecycle aggregate

Tests:
- ProductLifecycleData validation (bucket/terms agreement, dates, notional)
- Progress and day counters
- Event timeline construction and next event
- Plain-data adapter (lifecycle_from_mapping)
- What-if cloning and price refresh
"""

import pytest
from datetime import datetime
from decimal import Decimal

from outcome_engine import (
    build_events, next_event, generate_coupon_schedule, lifecycle_from_mapping,
    clone_for_scenario, refresh_prices, evaluate_lifecycle, ProductLifecycleData, AutocallObservation,
    StaticPricingSource, UnknownBucketError, MissingTermsForBucketError, InvalidBasketError,
    EVENT_COMPLETED, EVENT_UPCOMING, EVENT_PENDING, BREACH_KNOCK_IN, BREACH_BARRIER,
)
from outcome_engine.lifecycle import (
    EVENT_INITIAL_FIXING, EVENT_COUPON_OBSERVATION, EVENT_AUTOCALL_OBSERVATION,
    EVENT_ISSUER_CALL_OBSERVATION, EVENT_MATURITY, EVENT_SETTLEMENT,
)
from tests.builders import (
    basket, product, income_terms, protection_terms, growth_terms,
    TRADE_DATE, MATURITY_DATE, SETTLEMENT_DATE,
)


# ============================================================================
# AGGREGATE VALIDATION
# ============================================================================

class TestProductValidation:

    def test_valid_product(self, ri_terms, flat_basket):
        p = product(ri_terms, flat_basket)
        assert p.notional == Decimal("100000")
        assert p.currency == "USD"

    def test_unknown_bucket(self, ri_terms, flat_basket):
        with pytest.raises(UnknownBucketError):
            product(ri_terms, flat_basket, bucket="STRUCTURED_DEPOSIT")

    def test_terms_of_other_bucket(self, cp_terms, flat_basket):
        with pytest.raises(MissingTermsForBucketError, match="RegularIncomeTerms"):
            product(cp_terms, flat_basket, bucket="REGULAR_INCOME")

    def test_terms_missing(self, flat_basket):
        with pytest.raises(MissingTermsForBucketError, match="got NoneType"):
            ProductLifecycleData(
                bucket="REGULAR_INCOME", terms=None, basket=flat_basket, notional=100000,
                trade_date=TRADE_DATE, initial_fixing_date=TRADE_DATE,
                maturity_date=MATURITY_DATE, settlement_date=SETTLEMENT_DATE,
            )

    def test_non_positive_notional(self, ri_terms, flat_basket):
        with pytest.raises(ValueError, match="notional"):
            product(ri_terms, flat_basket, notional=0)

    def test_maturity_must_follow_trade(self, ri_terms, flat_basket):
        with pytest.raises(ValueError, match="maturity_date"):
            product(ri_terms, flat_basket, maturity_date=TRADE_DATE)

    def test_settlement_before_maturity(self, ri_terms, flat_basket):
        with pytest.raises(ValueError, match="settlement"):
            product(ri_terms, flat_basket, settlement_date=datetime(2025, 1, 10))

    def test_immutable_dates(self, ri_terms, flat_basket):
        p = product(ri_terms, flat_basket)
        with pytest.raises(AttributeError):
            p.maturity_date = datetime(2026, 1, 15)

    def test_final_observation_defaults_to_maturity(self, ri_terms, flat_basket):
        assert product(ri_terms, flat_basket).final_observation == MATURITY_DATE
        p = product(ri_terms, flat_basket, final_observation_date=datetime(2025, 1, 8))
        assert p.final_observation == datetime(2025, 1, 8)


class TestProgress:

    def test_mid_life(self, ri_terms, flat_basket, mid_life):
        p = product(ri_terms, flat_basket)
        assert p.days_elapsed(mid_life) == 168
        assert p.days_to_maturity(mid_life) == 198
        assert p.progress_pct(mid_life) == Decimal(168) / Decimal(366) * Decimal("100")

    def test_clamped(self, ri_terms, flat_basket, after_maturity):
        p = product(ri_terms, flat_basket)
        assert p.progress_pct(after_maturity) == Decimal("100")
        assert p.progress_pct(datetime(2023, 1, 1)) == Decimal("0")
        assert p.days_to_maturity(after_maturity) == 0
        assert p.days_elapsed(datetime(2023, 1, 1)) == 0


# ============================================================================
# EVENTS
# ============================================================================

def events_for(p, as_of, terminated_on=None):
    schedule = generate_coupon_schedule(p.terms, p.notional, p.trade_date, p.maturity_date, as_of,
                                        terminated_on=terminated_on)
    return build_events(p, as_of, schedule, terminated_on)


class TestEvents:

    def test_income_timeline(self, ri_terms, flat_basket, mid_life):
        events = events_for(product(ri_terms, flat_basket), mid_life)
        types = [e.type for e in events]
        assert types[0] == EVENT_INITIAL_FIXING
        assert types.count(EVENT_COUPON_OBSERVATION) == 4
        assert types[-1] == EVENT_SETTLEMENT
        dates = [e.date for e in events]
        assert dates == sorted(dates)

    def test_statuses_mid_life(self, ri_terms, flat_basket, mid_life):
        events = events_for(product(ri_terms, flat_basket), mid_life)
        by_label = {e.label: e for e in events}
        assert by_label["Initial Fixing"].status == EVENT_COMPLETED
        assert by_label["Coupon 1"].status == EVENT_COMPLETED
        assert by_label["Coupon 1"].amount == Decimal("1437.50")
        assert by_label["Coupon 2"].status == EVENT_UPCOMING
        assert by_label["Maturity"].status == EVENT_PENDING

    def test_next_event(self, ri_terms, flat_basket, mid_life):
        events = events_for(product(ri_terms, flat_basket), mid_life)
        assert next_event(events).label == "Coupon 2"

    def test_next_event_none_after_settlement(self, ri_terms, flat_basket):
        events = events_for(product(ri_terms, flat_basket), datetime(2025, 2, 1))
        assert all(e.status == EVENT_COMPLETED for e in events)
        assert next_event(events) is None

    def test_same_day_events_all_upcoming(self, bg_terms, flat_basket):
        """Final observation and maturity on the same date are both upcoming."""
        events = build_events(product(bg_terms, flat_basket), datetime(2024, 12, 1))
        upcoming = [e.type for e in events if e.status == EVENT_UPCOMING]
        assert set(upcoming) == {"final_observation", EVENT_MATURITY}

    def test_autocall_observations_before_maturity(self, flat_basket, mid_life):
        events = events_for(product(income_terms(autocall_level_pct=100), flat_basket), mid_life)
        autocalls = [e for e in events if e.type == EVENT_AUTOCALL_OBSERVATION]
        assert len(autocalls) == 3
        assert all(e.date < MATURITY_DATE for e in autocalls)

    def test_step_down_observations_replace_coupon_dates(self, flat_basket, mid_life):
        steps = (AutocallObservation(datetime(2024, 7, 15), 100),
                 AutocallObservation(datetime(2024, 10, 15), 95))
        events = events_for(product(income_terms(autocall_step_down=steps), flat_basket), mid_life)
        autocalls = [e.date for e in events if e.type == EVENT_AUTOCALL_OBSERVATION]
        assert autocalls == [datetime(2024, 7, 15), datetime(2024, 10, 15)]

    def test_issuer_call_dates(self, flat_basket, mid_life):
        terms = protection_terms(issuer_callable=True, issuer_call_frequency=2, exit_rate_pa_pct=3)
        events = build_events(product(terms, flat_basket), mid_life)
        calls = [e for e in events if e.type == EVENT_ISSUER_CALL_OBSERVATION]
        assert [e.date for e in calls] == [datetime(2024, 7, 15)]
        assert calls[0].status == EVENT_UPCOMING

    def test_termination_drops_later_observations(self, flat_basket):
        terminated = datetime(2024, 7, 15)
        p = product(income_terms(autocall_level_pct=100), flat_basket)
        events = events_for(p, datetime(2024, 7, 21), terminated_on=terminated)
        observations = [e for e in events if e.type not in (EVENT_MATURITY, EVENT_SETTLEMENT)]
        assert all(e.date <= terminated for e in observations)
        assert {EVENT_MATURITY, EVENT_SETTLEMENT} <= {e.type for e in events}


# ============================================================================
# ADAPTER
# ============================================================================

def plain_product(**overrides):
    data = {
        "bucket": "CAPITAL_PROTECTION",
        "productDisplayName": "Tech Protected Note",
        "notional": 250000,
        "tradeDate": "2024-01-15",
        "maturityDate": "2025-01-15",
        "settlementDate": "2025-01-22",
        "basketType": "worst_of",
        "capitalProtectionTerms": {
            "capitalProtectionPct": 90, "participationStartPct": 100, "participationRatePct": 120,
            "knockInEnabled": True, "knockInLevelPct": 60,
        },
        "underlyings": [
            {"symbol": "AAPL", "name": "Apple", "initialPrice": 180, "currentPrice": 198},
            {"symbol": "MSFT", "name": "Microsoft", "initialPrice": 400, "currentPrice": 360},
        ],
    }
    data.update(overrides)
    return data


class TestLifecycleFromMapping:

    def test_builds_aggregate(self):
        p = lifecycle_from_mapping(plain_product())
        assert p.bucket == "CAPITAL_PROTECTION"
        assert p.product_name == "Tech Protected Note"
        assert p.notional == Decimal("250000")
        assert p.basket.symbols == ("AAPL", "MSFT")
        assert p.trade_date == TRADE_DATE
        assert p.settlement_date == SETTLEMENT_DATE

    def test_initial_fixing_defaults_to_trade_date(self):
        assert lifecycle_from_mapping(plain_product()).initial_fixing_date == TRADE_DATE

    def test_underlying_levels_from_terms(self):
        p = lifecycle_from_mapping(plain_product())
        assert p.basket[0].barrier_level_pct == Decimal("60")
        assert p.basket[1].barrier_level == Decimal("240")

    def test_breach_flag_seeds_log(self):
        data = plain_product(underlyings=[
            {"symbol": "AAPL", "name": "Apple", "initialPrice": 180, "currentPrice": 198,
             "barrierBreached": True, "barrierBreachedDate": "2024-05-02"},
        ], basketType="single")
        p = lifecycle_from_mapping(data)
        assert p.basket[0].breaches(BREACH_KNOCK_IN)[0].date == datetime(2024, 5, 2)

    def test_breach_flag_without_date_uses_trade_date(self):
        data = {
            "bucket": "BOOSTED_GROWTH",
            "tradeDate": "2024-01-15", "maturityDate": "2025-01-15",
            "boostedGrowthTerms": {"barrierPct": 60, "bonusLevelPct": 125},
            "underlyings": [{"symbol": "SPY", "initialPrice": 500, "currentPrice": 520,
                             "barrierBreached": True}],
        }
        p = lifecycle_from_mapping(data)
        assert p.basket[0].breaches(BREACH_BARRIER)[0].date == TRADE_DATE
        assert p.settlement_date == MATURITY_DATE

    def test_seeded_breach_drives_evaluation(self):
        data = {
            "bucket": "BOOSTED_GROWTH",
            "tradeDate": "2024-01-15", "maturityDate": "2025-01-15",
            "boostedGrowthTerms": {"barrierPct": 60, "bonusLevelPct": 125},
            "underlyings": [{"symbol": "SPY", "initialPrice": 500, "currentPrice": 450,
                             "barrierBreached": True, "barrierBreachedDate": "2024-06-10"}],
        }
        snapshot = evaluate_lifecycle(lifecycle_from_mapping(data), datetime(2025, 1, 20))
        assert snapshot.status.barrier_breached
        assert snapshot.payout.amount == Decimal("90000.00")

    def test_snake_case_keys(self):
        data = {
            "bucket": "REGULAR_INCOME",
            "trade_date": "2024-01-15", "maturity_date": "2025-01-15",
            "regular_income_terms": {"coupon_rate_pct": 8, "coupon_freq_per_year": 12,
                                     "protection_level_pct": 65},
            "underlyings": [{"symbol": "NVDA", "initial_price": 500, "current_price": 520}],
        }
        p = lifecycle_from_mapping(data)
        assert p.terms.coupon_freq_per_year == 12
        assert p.basket[0].protection_level_pct == Decimal("65")

    def test_geared_put_terms(self):
        data = {
            "bucket": "REGULAR_INCOME",
            "tradeDate": "2024-01-15", "maturityDate": "2025-01-15",
            "regularIncomeTerms": {"couponRatePct": 9, "couponFreqPerYear": 4,
                                   "protectionLevelPct": 70, "strikePct": 80,
                                   "knockInBarrierPct": 60},
            "underlyings": [{"symbol": "TSLA", "initialPrice": 200, "currentPrice": 100}],
        }
        p = lifecycle_from_mapping(data)
        assert p.terms.is_geared_put
        assert p.basket[0].protection_level_pct == Decimal("60")

        snapshot = evaluate_lifecycle(p, SETTLEMENT_DATE)
        assert snapshot.status.protection_breached
        assert snapshot.payout.amount == Decimal("71500.00")
        assert snapshot.payout.projected_shares == Decimal("625.00")

    def test_missing_trade_date(self):
        data = plain_product()
        del data["tradeDate"]
        with pytest.raises(ValueError, match="tradeDate"):
            lifecycle_from_mapping(data)

    def test_unknown_bucket(self):
        with pytest.raises(UnknownBucketError):
            lifecycle_from_mapping(plain_product(bucket="STRUCTURED_DEPOSIT"))

    def test_missing_terms(self):
        with pytest.raises(MissingTermsForBucketError):
            lifecycle_from_mapping(plain_product(bucket="BOOSTED_GROWTH"))

    def test_empty_basket(self):
        with pytest.raises(InvalidBasketError):
            lifecycle_from_mapping(plain_product(underlyings=[]))


# ============================================================================
# WHAT-IF AND REFRESH
# ============================================================================

class TestCloneAndRefresh:

    def test_clone_overrides_only_copy(self, cp_terms, three_name_basket):
        p = product(cp_terms, three_name_basket)
        clone = clone_for_scenario(p, current_prices={"U1": 50})
        assert clone.basket[1].current_price == Decimal("50")
        assert p.basket[1].current_price == Decimal("80")
        assert clone.terms is p.terms

    def test_clone_evaluation_leaves_canonical_log_untouched(self, bg_terms):
        p = product(bg_terms, basket(0.9))
        clone = clone_for_scenario(p, current_prices={"U0": 40})
        assert evaluate_lifecycle(clone, datetime(2024, 7, 1)).status.barrier_breached
        assert p.basket[0].breaches() == ()

    def test_refresh_applies_available_prices(self, cp_terms, three_name_basket):
        p = product(cp_terms, three_name_basket)
        applied = refresh_prices(p, StaticPricingSource({"U0": 120, "U2": 99}), datetime(2024, 7, 1))
        assert applied == {"U0": Decimal("120"), "U2": Decimal("99")}
        assert p.basket[0].current_price == Decimal("120")
        assert p.basket[1].current_price == Decimal("80")
