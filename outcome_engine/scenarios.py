"""
scenarios.py - "What happens if..." decision flows per bucket.

A ScenarioFlow is an ordered list of decision nodes, each with a yes and a
no Outcome. Nodes for optional features (autocall, conditional coupons,
issuer call, knock-in) are only emitted when the feature is enabled.

Every worked example is produced by the payout and coupon functions,
evaluated at an illustrative level derived from the terms (never from
live prices), and is labelled as illustrative in its text.
"""

from __future__ import annotations
from dataclasses import dataclass
from decimal import Decimal
from typing import List, Optional, Tuple

from .core import (
    BASKET_SINGLE, BASKET_WORST_OF, BASKET_BEST_OF, BASKET_AVERAGE,
    BASKET_EQUALLY_WEIGHTED, BASKET_TYPES,
    DEFAULT_NOTIONAL, OBSERVATION_EUROPEAN,
    InvalidBasketError, require_exhaustive, dispatch,
)
from .coupons import coupon_amount
from .numeric import Number, format_money, format_pct, pct_to_ratio, to_decimal
from .payout import (
    PayoutResult,
    regular_income_payout, capital_protection_payout, boosted_growth_payout,
    OUTCOME_EARLY_REDEMPTION, OUTCOME_CASH_REDEMPTION, OUTCOME_SHARE_CONVERSION,
    OUTCOME_PROTECTION_REMOVED, OUTCOME_PROTECTED, OUTCOME_PARTICIPATING,
    OUTCOME_BONUS_PAYOUT, OUTCOME_BARRIER_BREACHED,
)
from .terms import (
    TERMS_VARIANTS, Terms,
    RegularIncomeTerms, CapitalProtectionTerms, BoostedGrowthTerms,
)


STAGE_OBSERVATION = "observation"
STAGE_MATURITY = "maturity"

OUTCOME_PRODUCT_CONTINUES = "Product Continues"
OUTCOME_COUPON_PAID = "Coupon Paid"
OUTCOME_COUPON_SKIPPED = "Coupon Skipped"
OUTCOME_PROTECTION_ACTIVE = "Protection Active"


@dataclass(frozen=True, slots=True)
class Outcome:
    title: str
    lines: Tuple[str, ...]
    example: str
    example_payout: Optional[PayoutResult] = None


@dataclass(frozen=True, slots=True)
class ScenarioNode:
    id: str
    stage: str
    condition: str
    yes: Outcome
    no: Outcome
    note: Optional[str] = None
    meta_chips: Tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class ScenarioFlow:
    title: str
    subtitle: str
    nodes: Tuple[ScenarioNode, ...]

    def node(self, node_id: str) -> Optional[ScenarioNode]:
        for node in self.nodes:
            if node.id == node_id:
                return node
        return None


# ============================================================================
# FORMATTING HELPERS
# ============================================================================

def _level(pct: Decimal) -> str:
    """70 -> '70%', 62.5 -> '62.5%'"""
    pct = to_decimal(pct)
    return format_pct(pct, 0 if pct == pct.to_integral_value() else 1)


def _level_label(basket_type: str) -> str:
    if basket_type == BASKET_SINGLE:
        return "Final Level"
    if basket_type == BASKET_WORST_OF:
        return "Worst-Of Final Level"
    if basket_type == BASKET_BEST_OF:
        return "Best-Of Final Level"
    return "Basket Average Final Level"


_BASKET_CHIPS = {
    BASKET_WORST_OF: "Worst-Of Basket",
    BASKET_BEST_OF: "Best-Of Basket",
    BASKET_AVERAGE: "Average Basket",
    BASKET_EQUALLY_WEIGHTED: "Equally-Weighted Basket",
}


def _basket_chips(basket_type: str) -> List[str]:
    chip = _BASKET_CHIPS.get(basket_type)
    return [chip] if chip else []


def _below(pct: Decimal, points: int) -> Decimal:
    """Illustrative level some points below pct, floored at zero."""
    return max(pct - Decimal(points), Decimal("0"))


def _example(level_pct: Decimal, result: PayoutResult, detail: str = "") -> str:
    suffix = f", {detail}" if detail else ""
    return (
        f"Illustrative: final level {_level(level_pct)}{suffix} -> "
        f"{format_money(result.amount)} ({format_pct(result.total_return_pct, 1)} total return)"
    )


# ============================================================================
# REGULAR INCOME
# ============================================================================

def _regular_income_flow(terms: RegularIncomeTerms, basket_type: str, notional: Decimal,
                         coupon_count: Optional[int]) -> ScenarioFlow:
    label = _level_label(basket_type)
    freq = terms.coupon_freq_per_year
    coupon = coupon_amount(terms, notional)
    count = freq if coupon_count is None else coupon_count
    all_coupons = coupon * count
    protection = terms.protection_level_pct
    nodes = []

    if terms.has_autocall:
        trigger = terms.autocall_step_down[0].trigger_level_pct if terms.autocall_step_down \
            else terms.autocall_level_pct
        called = regular_income_payout(terms, notional, pct_to_ratio(trigger), False,
                                       coupon, autocalled=True)
        below = _below(trigger, 10)
        next_coupon = coupon_amount(terms, notional, pct_to_ratio(below))
        nodes.append(ScenarioNode(
            id="ri-autocall",
            stage=STAGE_OBSERVATION,
            condition=f"Is {label} >= Autocall Trigger ({_level(trigger)}) on an observation date?",
            yes=Outcome(
                title=OUTCOME_EARLY_REDEMPTION,
                lines=("100% notional returned early", "Coupon for the period is paid", "No further coupons"),
                example=_example(trigger, called, "autocalled after 1 coupon"),
                example_payout=called,
            ),
            no=Outcome(
                title=OUTCOME_PRODUCT_CONTINUES,
                lines=("Product continues to the next observation", "Coupons continue as scheduled"),
                example=(f"Illustrative: level {_level(below)} on an observation date -> "
                         f"{format_money(next_coupon)} coupon, product continues"),
            ),
            note="Autocall trigger steps down over the life" if terms.autocall_step_down else None,
        ))

    if terms.conditional_coupon:
        paid_level = Decimal("100")
        paid = coupon_amount(terms, notional, pct_to_ratio(paid_level))
        skipped_level = _below(protection, 10)
        skipped = coupon_amount(terms, notional, pct_to_ratio(skipped_level))
        nodes.append(ScenarioNode(
            id="ri-coupon",
            stage=STAGE_OBSERVATION,
            condition=f"Is {label} >= Protection Level ({_level(protection)}) on the coupon date?",
            yes=Outcome(
                title=OUTCOME_COUPON_PAID,
                lines=(f"Coupon of {format_pct(terms.coupon_rate_pct / Decimal(freq), 4)} of notional paid",),
                example=f"Illustrative: level {_level(paid_level)} on the coupon date -> {format_money(paid)} coupon",
            ),
            no=Outcome(
                title=OUTCOME_COUPON_SKIPPED,
                lines=("No coupon for this period", "A skipped coupon is not paid later"),
                example=f"Illustrative: level {_level(skipped_level)} on the coupon date -> {format_money(skipped)} coupon",
            ),
        ))

    conversion = terms.conversion_level_pct
    cash = regular_income_payout(terms, notional, Decimal("1"), False, all_coupons)
    converted_level = _below(conversion, 10)
    converted = regular_income_payout(terms, notional, pct_to_ratio(converted_level), True, all_coupons)
    shares_line = ("Converted into the worst-performing underlying"
                   if basket_type == BASKET_WORST_OF else "Converted into underlying shares")
    chips = _basket_chips(basket_type) + [
        f"Coupon: {format_pct(terms.coupon_rate_pct, 2)} p.a.",
        f"Frequency: {freq}/yr",
    ]
    if terms.is_geared_put:
        strike = terms.strike_pct
        condition = f"Is {label} >= Knock-In Barrier ({_level(conversion)})?"
        no_lines = (shares_line, "Shares delivered = Notional / (Initial Fixing x Strike)",
                    "Final value = Notional x Final Level / Strike")
        note = f"Below the knock-in, losses are geared {terms.gearing:.2f}x from the {_level(strike)} strike"
        chips.append(f"Strike: {_level(strike)}")
    else:
        condition = f"Is {label} >= Protection Level ({_level(conversion)})?"
        no_lines = (shares_line, "Shares delivered = Notional / Initial Fixing",
                    "Final value = Shares x Final Price")
        note = "Payoff tracks the final level 1:1 below protection"
    nodes.append(ScenarioNode(
        id="ri-maturity",
        stage=STAGE_MATURITY,
        condition=condition,
        yes=Outcome(
            title=OUTCOME_CASH_REDEMPTION,
            lines=("100% notional returned", "Coupons paid as scheduled", "Settlement: Cash"),
            example=_example(Decimal("100"), cash, f"{count} coupons"),
            example_payout=cash,
        ),
        no=Outcome(
            title=OUTCOME_SHARE_CONVERSION,
            lines=no_lines,
            example=_example(converted_level, converted, f"{count} coupons"),
            example_payout=converted,
        ),
        note=note,
        meta_chips=tuple(chips),
    ))

    return ScenarioFlow(
        title="Understand the Scenarios",
        subtitle="What happens on observation dates and at maturity",
        nodes=tuple(nodes),
    )


# ============================================================================
# CAPITAL PROTECTION
# ============================================================================

def _capital_protection_flow(terms: CapitalProtectionTerms, basket_type: str, notional: Decimal,
                             coupon_count: Optional[int]) -> ScenarioFlow:
    label = _level_label(basket_type)
    floor = terms.capital_protection_pct
    start = terms.participation_start_pct
    nodes = []

    if terms.issuer_callable:
        month = 12 // terms.issuer_call_frequency
        called = capital_protection_payout(terms, notional, Decimal("1"), issuer_call_month=month)
        nodes.append(ScenarioNode(
            id="cp-issuer-call",
            stage=STAGE_OBSERVATION,
            condition="Does the issuer call the note on a call date?",
            yes=Outcome(
                title=OUTCOME_EARLY_REDEMPTION,
                lines=(f"{_level(floor)} of notional returned",
                       f"Plus exit premium of {format_pct(terms.exit_rate_pa_pct, 2)} p.a. pro rata",
                       "No further participation"),
                example=(f"Illustrative: called at month {month} -> {format_money(called.amount)} "
                         f"({format_pct(called.total_return_pct, 1)} total return)"),
                example_payout=called,
            ),
            no=Outcome(
                title=OUTCOME_PRODUCT_CONTINUES,
                lines=("Product continues to the next call date or maturity",),
                example="Illustrative: no call -> maturity payoff applies",
            ),
            meta_chips=(f"Calls: {terms.issuer_call_frequency}/yr",),
        ))

    if terms.has_knock_in:
        ki = terms.knock_in_level_pct
        removed_level = _below(ki, 10)
        removed = capital_protection_payout(terms, notional, pct_to_ratio(removed_level), knock_in_triggered=True)
        active_level = ki + Decimal("5")
        active = capital_protection_payout(terms, notional, pct_to_ratio(active_level))
        nodes.append(ScenarioNode(
            id="cp-knock-in",
            stage=STAGE_MATURITY,
            condition=f"Does {label} touch the Knock-In ({_level(ki)}) during the life?",
            yes=Outcome(
                title=OUTCOME_PROTECTION_REMOVED,
                lines=("Protection floor is removed for the rest of the life",
                       "Payoff% = 100 x Final Level"),
                example=_example(removed_level, removed),
                example_payout=removed,
            ),
            no=Outcome(
                title=OUTCOME_PROTECTION_ACTIVE,
                lines=(f"Floor: {_level(floor)}", f"Participation starts at K = {_level(start)}"),
                example=_example(active_level, active),
                example_payout=active,
            ),
            note="Knock-in is monitored continuously and cannot reset",
            meta_chips=(f"Cap: {_level(terms.cap_level_pct)}" if terms.has_cap else "Cap: None",),
        ))

    up_level = start + Decimal("40")
    up = capital_protection_payout(terms, notional, pct_to_ratio(up_level))
    down_level = _below(start, 20)
    down = capital_protection_payout(terms, notional, pct_to_ratio(down_level))
    nodes.append(ScenarioNode(
        id="cp-participation",
        stage=STAGE_MATURITY,
        condition=f"Is {label} >= K ({_level(start)})?",
        yes=Outcome(
            title=OUTCOME_PARTICIPATING,
            lines=("Payoff% = P + a x (X - K)",
                   f"Capped at {_level(terms.cap_level_pct)}" if terms.has_cap else "No cap"),
            example=_example(up_level, up),
            example_payout=up,
        ),
        no=Outcome(
            title=OUTCOME_PROTECTED,
            lines=(f"Payoff% = {_level(floor)} (floor)", "No participation in this region"),
            example=_example(down_level, down),
            example_payout=down,
        ),
        meta_chips=tuple(_basket_chips(basket_type) + [
            f"P: {_level(floor)}",
            f"a: {_level(terms.participation_rate_pct)}",
            f"K: {_level(start)}",
        ]),
    ))

    return ScenarioFlow(
        title="Understand the Scenarios",
        subtitle="What happens at maturity based on final basket level",
        nodes=tuple(nodes),
    )


# ============================================================================
# BOOSTED GROWTH
# ============================================================================

def _boosted_growth_flow(terms: BoostedGrowthTerms, basket_type: str, notional: Decimal,
                         coupon_count: Optional[int]) -> ScenarioFlow:
    label = _level_label(basket_type)
    barrier = terms.barrier_pct
    breached_level = _below(barrier, 5)
    breached = boosted_growth_payout(terms, notional, pct_to_ratio(breached_level), True)
    intact_level = Decimal("100") - (Decimal("100") - barrier) / Decimal("4")
    intact = boosted_growth_payout(terms, notional, pct_to_ratio(intact_level), False)
    european = terms.barrier_observation == OBSERVATION_EUROPEAN
    when = "on the final observation date" if european else "at any time during the life"
    tracking = (f"Payoff tracks the final level at {_level(terms.effective_participation_pct)} participation"
                if terms.participation_rate_pct is not None else "Payoff tracks the final level 1:1")

    node = ScenarioNode(
        id="bg-barrier",
        stage=STAGE_MATURITY,
        condition=f"Is {label} <= Barrier ({_level(barrier)}) {when}?",
        yes=Outcome(
            title=OUTCOME_BARRIER_BREACHED,
            lines=("Bonus is forfeited", tracking),
            example=_example(breached_level, breached),
            example_payout=breached,
        ),
        no=Outcome(
            title=OUTCOME_BONUS_PAYOUT,
            lines=(f"Receive the greater of {_level(terms.bonus_level_pct)} and the final level",),
            example=_example(intact_level, intact),
            example_payout=intact,
        ),
        note="European observation: only the final level counts" if european else None,
        meta_chips=tuple(_basket_chips(basket_type) + [
            f"Bonus: {_level(terms.bonus_level_pct)}",
            f"Barrier: {_level(barrier)} ({terms.barrier_observation})",
        ]),
    )
    return ScenarioFlow(
        title="Understand the Scenarios",
        subtitle="What happens at maturity depending on the barrier",
        nodes=(node,),
    )


_FLOWS = require_exhaustive("scenarios", {
    RegularIncomeTerms: _regular_income_flow,
    CapitalProtectionTerms: _capital_protection_flow,
    BoostedGrowthTerms: _boosted_growth_flow,
}, TERMS_VARIANTS)


def build_scenario_flow(
    terms: Terms,
    basket_type: str = BASKET_SINGLE,
    notional: Number = DEFAULT_NOTIONAL,
    coupon_count: Optional[int] = None,
) -> ScenarioFlow:
    """
    Decision flow for a product's terms.

    Args:
        terms: Bucket terms.
        basket_type: Shapes the wording of conditions and chips.
        notional: Notional used in worked examples.
        coupon_count: Coupons assumed in Regular Income examples
            (defaults to one year of coupons).

    Example:
        >>> flow = build_scenario_flow(BoostedGrowthTerms(60, 125))
        >>> [n.id for n in flow.nodes]
        ['bg-barrier']
        >>> flow.nodes[0].no.example_payout.amount
        Decimal('125000.00')
    """
    if basket_type not in BASKET_TYPES:
        raise InvalidBasketError(f"Unknown basket type {basket_type!r}")
    notional = to_decimal(notional)
    if notional <= Decimal("0"):
        raise ValueError(f"notional must be positive, got {notional}")
    return dispatch("scenarios", _FLOWS, terms)(terms, basket_type, notional, coupon_count)


# ============================================================================
# EARN / RISK SUMMARY
# ============================================================================

def _regular_income_lines(terms: RegularIncomeTerms) -> Tuple[str, str]:
    rate = format_pct(terms.coupon_rate_pct, 1)
    earn = (f"Earn {rate} p.a. coupons + early exit opportunity" if terms.has_autocall
            else f"Earn {rate} p.a. in periodic coupons")
    if terms.is_geared_put:
        return earn, (f"Protected down to {_level(terms.conversion_level_pct)}, then geared "
                      f"downside from a {_level(terms.strike_pct)} strike")
    return earn, f"Protected down to {_level(terms.protection_level_pct)}, then 1:1 downside exposure"


def _capital_protection_lines(terms: CapitalProtectionTerms) -> Tuple[str, str]:
    cap = f" (capped at {_level(terms.cap_level_pct)})" if terms.has_cap else ""
    earn = (f"Capture {_level(terms.participation_rate_pct)} of upside above "
            f"{_level(terms.participation_start_pct)}{cap}")
    condition = f" (conditional on {_level(terms.knock_in_level_pct)} barrier)" if terms.has_knock_in else ""
    return earn, f"Principal protected at {_level(terms.capital_protection_pct)}{condition}"


def _boosted_growth_lines(terms: BoostedGrowthTerms) -> Tuple[str, str]:
    bonus_return = terms.bonus_level_pct - Decimal("100")
    if terms.participation_rate_pct is not None:
        tracking = f"tracks underlying at {_level(terms.effective_participation_pct)} participation"
    else:
        tracking = "tracks underlying 1:1"
    if bonus_return > 0:
        earn = f"Earn at least {_level(bonus_return)} if the barrier holds"
    else:
        earn = f"Receive at least {_level(terms.bonus_level_pct)} of notional if the barrier holds"
    return (
        earn,
        f"Barrier at {_level(terms.barrier_pct)}; if breached, payoff {tracking}",
    )


_LINES = require_exhaustive("earn_risk_lines", {
    RegularIncomeTerms: _regular_income_lines,
    CapitalProtectionTerms: _capital_protection_lines,
    BoostedGrowthTerms: _boosted_growth_lines,
}, TERMS_VARIANTS)


def earn_risk_lines(terms: Terms) -> Tuple[str, str]:
    """One-line (earn, risk) summary of a product."""
    return dispatch("earn_risk_lines", _LINES, terms)(terms)
