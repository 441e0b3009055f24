# pricing/services/actions.py
from __future__ import annotations
from dataclasses import dataclass
from decimal import Decimal
from typing import Sequence

from ..model.rules import PercentageOff, FixedOff, FreeShipping, Bogo, PromotionAction
from ..utils.money import D, ZERO, clamp_money, percent_of, round_money


@dataclass(frozen=True)
class ActionResult:
    amount: Decimal
    free_shipping: bool = False


ACTION_NAMES = {
    PercentageOff: "PERCENTAGE_OFF",
    FixedOff: "FIXED_OFF",
    FreeShipping: "FREE_SHIPPING",
    Bogo: "BOGO",
}


def action_name(action: PromotionAction) -> str:
    return ACTION_NAMES[type(action)]


def percentage_off(base: Decimal, pct: Decimal, cap: Decimal | None = None) -> Decimal:
    amount = percent_of(base, pct)
    if cap is not None and amount > cap:
        amount = D(cap)
    return clamp_money(amount, base)


def fixed_off(base: Decimal, value: Decimal) -> Decimal:
    return clamp_money(min(D(value), D(base)), base)


def bogo_discounted_units(units: int, rule: Bogo) -> int:
    """
    Units that get the discount: every `buy` units unlock the next `get`.
    A trailing partial group still earns whatever part of `get` it reaches.
    """
    if units <= 0 or rule.buy_quantity <= 0 or rule.get_quantity <= 0:
        return 0
    full, rem = divmod(units, rule.group_size)
    return full * rule.get_quantity + max(0, rem - rule.buy_quantity)


def bogo_discount(unit_prices: Sequence[Decimal], rule: Bogo) -> Decimal:
    """Unclamped BOGO amount; the cheapest eligible units are the ones discounted."""
    k = bogo_discounted_units(len(unit_prices), rule)
    if k == 0:
        return ZERO
    cheapest = sorted(D(p) for p in unit_prices)[:k]
    return round_money(percent_of(sum(cheapest, ZERO), rule.get_discount))


def apply_action(action: PromotionAction, base: Decimal, unit_prices: Sequence[Decimal] = ()) -> ActionResult:
    """
    Discount produced by one action against base amount `base`.
    `unit_prices` lists one entry per eligible unit and is only read by BOGO.
    Results are rounded half-up to cents and clamped to [0, base].
    """
    base = max(ZERO, round_money(base))
    if isinstance(action, PercentageOff):
        return ActionResult(percentage_off(base, action.value, action.max_discount))
    if isinstance(action, FixedOff):
        return ActionResult(fixed_off(base, action.value))
    if isinstance(action, FreeShipping):
        return ActionResult(ZERO, free_shipping=True)
    if isinstance(action, Bogo):
        return ActionResult(clamp_money(bogo_discount(unit_prices, action), base))
    raise TypeError(f"unknown action {action!r}")
