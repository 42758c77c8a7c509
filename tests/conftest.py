"""
conftest.py - Shared pytest fixtures for outcome engine tests

Provides common fixtures used across unit, functional and conformance tests:
- Terms for each bucket (the reference products of the worked examples)
- Single-underlying and multi-underlying baskets
- Evaluation timestamps
"""

import pytest
from datetime import datetime

from tests.builders import (
    basket, income_terms, protection_terms, growth_terms,
    TRADE_DATE, MATURITY_DATE,
)


# =============================================================================
# TERMS
# =============================================================================

@pytest.fixture
def ri_terms():
    """5.75% p.a. paid quarterly, protection 70%."""
    return income_terms()


@pytest.fixture
def cp_terms():
    """Protection 90%, participation from 100% at 120%."""
    return protection_terms()


@pytest.fixture
def bg_terms():
    """Bonus 125%, barrier 60%, continuous observation."""
    return growth_terms()


# =============================================================================
# BASKETS
# =============================================================================

@pytest.fixture
def flat_basket():
    """Single underlying at its initial price."""
    return basket(1)


@pytest.fixture
def three_name_basket():
    """Worst-of basket: U0 +10%, U1 -20%, U2 +5%."""
    return basket(1.10, 0.80, 1.05, basket_type="worst_of")


# =============================================================================
# DATES
# =============================================================================

@pytest.fixture
def trade_date():
    return TRADE_DATE


@pytest.fixture
def maturity_date():
    return MATURITY_DATE


@pytest.fixture
def after_maturity():
    return datetime(2025, 2, 1)


@pytest.fixture
def mid_life():
    return datetime(2024, 7, 1)
