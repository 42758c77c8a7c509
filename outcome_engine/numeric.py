"""
numeric.py - Rounding, clamping, ratio formatting and calendar helpers.

Pure functions, no state. Monetary rounding happens only through
round_money(), and only on final outputs.
"""

from __future__ import annotations
from datetime import datetime
from decimal import Decimal
from typing import Optional, Union
import calendar

from .core import MONEY_PLACES, MONEY_ROUNDING


Number = Union[Decimal, int, float, str]


def to_decimal(value: Optional[Number]) -> Optional[Decimal]:
    """
    Convert a number to Decimal via its string form.

    Floats go through str() so 0.1 becomes Decimal("0.1") rather than its
    binary expansion. None passes through unchanged.
    """
    if value is None:
        return None
    return value if isinstance(value, Decimal) else Decimal(str(value))


def round_money(value: Number, places: int = MONEY_PLACES) -> Decimal:
    """
    Round a monetary amount half-up to a fixed number of places.

    Example:
        >>> round_money(Decimal("1437.505"))
        Decimal('1437.51')
    """
    quantum = Decimal(1).scaleb(-places)
    return to_decimal(value).quantize(quantum, rounding=MONEY_ROUNDING)


def clamp(value: Number, low: Number, high: Number) -> Decimal:
    """Clamp value into [low, high]."""
    value, low, high = to_decimal(value), to_decimal(low), to_decimal(high)
    if low > high:
        raise ValueError(f"low must not exceed high, got {low} > {high}")
    return min(max(value, low), high)


def safe_divide(numerator: Number, denominator: Number, default: Number = 0) -> Decimal:
    """Divide, returning default when the denominator is zero."""
    denominator = to_decimal(denominator)
    if denominator == 0:
        return to_decimal(default)
    return to_decimal(numerator) / denominator


def pct_to_ratio(pct: Number) -> Decimal:
    """70 -> 0.70"""
    return to_decimal(pct) / Decimal("100")


def ratio_to_pct(ratio: Number) -> Decimal:
    """0.70 -> 70"""
    return to_decimal(ratio) * Decimal("100")


def format_pct(value: Number, places: int = 1) -> str:
    """Format a percentage figure: 12.75 -> '12.8%' (places=1)."""
    quantum = Decimal(1).scaleb(-places)
    return f"{to_decimal(value).quantize(quantum, rounding=MONEY_ROUNDING)}%"


def format_ratio_pct(ratio: Number, places: int = 1) -> str:
    """Format a fraction as a percentage: 0.1275 -> '12.8%' (places=1)."""
    return format_pct(ratio_to_pct(ratio), places)


def format_money(amount: Number, currency: str = "USD") -> str:
    """
    Format an amount with thousands separators.

    Example:
        >>> format_money(Decimal("105750"))
        '$105,750.00'
        >>> format_money(Decimal("-12.5"), "EUR")
        '-EUR 12.50'
    """
    amount = round_money(amount)
    sign = "-" if amount < 0 else ""
    body = f"{abs(amount):,.2f}"
    if currency == "USD":
        return f"{sign}${body}"
    return f"{sign}{currency} {body}"


# ============================================================================
# CALENDAR
# ============================================================================

def add_months(dt: datetime, months: int) -> datetime:
    """
    Shift a datetime by whole calendar months.

    The day is clamped to the last day of the target month, so
    31 Jan + 1 month is the last day of February.
    """
    month_index = dt.month - 1 + months
    year = dt.year + month_index // 12
    month = month_index % 12 + 1
    day = min(dt.day, calendar.monthrange(year, month)[1])
    return dt.replace(year=year, month=month, day=day)


def months_between(start: datetime, end: datetime) -> int:
    """
    Whole calendar months from start to end.

    A partial trailing month is not counted: 15 Jan -> 14 Apr is 2 months.
    """
    months = (end.year - start.year) * 12 + (end.month - start.month)
    if add_months(start, months) > end:
        months -= 1
    return months
