# pricing/services/conditions.py
from __future__ import annotations
from decimal import Decimal
from typing import Iterable, Sequence

from ..model.order import OrderLine
from ..model.rules import MinAmount, MinQuantity, SpecificProduct, PromotionCondition


def _condition_holds(cond: PromotionCondition, lines: Sequence[OrderLine], subtotal: Decimal) -> bool:
    if isinstance(cond, MinAmount):
        return subtotal >= cond.value
    if isinstance(cond, MinQuantity):
        return sum(l.quantity for l in lines) >= cond.value
    if isinstance(cond, SpecificProduct):
        return any(l.quantity > 0 and cond.matches(l.product_id, l.variant_id) for l in lines)
    raise TypeError(f"unknown condition {cond!r}")


def conditions_match(
    conditions: Iterable[PromotionCondition],
    lines: Sequence[OrderLine],
    subtotal: Decimal,
) -> bool:
    """
    AND of every condition against the order; an empty list applies to
    every order. `subtotal` is the figure the order is priced at after
    combo resolution.
    """
    return all(_condition_holds(c, lines, subtotal) for c in conditions)


def targeted_products(conditions: Iterable[PromotionCondition]) -> list[SpecificProduct]:
    return [c for c in conditions if isinstance(c, SpecificProduct)]
