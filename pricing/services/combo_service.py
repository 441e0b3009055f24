# pricing/services/combo_service.py
from __future__ import annotations
import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, ROUND_DOWN
from typing import Callable, Dict, List, Optional, Sequence

from ..model.order import AppliedCombo, ComboAllocation, Order, OrderLine, PricedLine
from ..model.rules import Combo, ComboItem, ComboType, SpecificVariants
from ..utils.money import D, MONEY, ZERO, round_money
from .actions import bogo_discount

logger = logging.getLogger(__name__)


@dataclass
class ComboResolution:
    """Order state after bundle pricing; `remaining[i]` is the unconsumed quantity of line i."""
    lines: List[PricedLine]
    remaining: List[int]
    applied: List[AppliedCombo]

    @property
    def original_subtotal(self) -> Decimal:
        return round_money(sum((p.line_subtotal for p in self.lines), ZERO))

    @property
    def subtotal(self) -> Decimal:
        return round_money(sum((p.line_total for p in self.lines), ZERO))

    @property
    def order_lines(self) -> List[OrderLine]:
        return [p.line for p in self.lines]

    def eligible_subtotal(self, accept: Callable[[OrderLine], bool]) -> Decimal:
        """Post-combo total of the lines `accept` allows."""
        return round_money(sum((p.line_total for p in self.lines if accept(p.line)), ZERO))

    def free_unit_prices(self, accept: Callable[[OrderLine], bool]) -> List[Decimal]:
        """One price per unit not consumed by a combo, for lines `accept` allows."""
        prices: List[Decimal] = []
        for p, left in zip(self.lines, self.remaining):
            if left > 0 and accept(p.line):
                prices.extend([p.line.unit_price] * left)
        return prices


def _item_order(items: Sequence[ComboItem]) -> List[ComboItem]:
    # variant-restricted items claim units before catch-all items for the same product
    return sorted(items, key=lambda it: 0 if isinstance(it.variant_mode, SpecificVariants) else 1)


def _take_items(items: Sequence[ComboItem], lines: Sequence[OrderLine], remaining: Sequence[int]) -> Optional[Dict[int, int]]:
    """
    Units to consume for one application of a bundle, as {line index: qty}.
    None when any item cannot be fully satisfied.
    """
    left = list(remaining)
    takes: Dict[int, int] = {}
    for item in _item_order(items):
        need = item.quantity
        for idx, line in enumerate(lines):
            if need == 0:
                break
            if left[idx] <= 0 or not item.accepts(line.product_id, line.variant_id):
                continue
            qty = min(need, left[idx])
            left[idx] -= qty
            takes[idx] = takes.get(idx, 0) + qty
            need -= qty
        if need > 0:
            return None
    return takes


def _pool_units(items: Sequence[ComboItem], lines: Sequence[OrderLine], remaining: Sequence[int]) -> Dict[int, int]:
    takes: Dict[int, int] = {}
    for idx, line in enumerate(lines):
        if remaining[idx] > 0 and any(it.accepts(line.product_id, line.variant_id) for it in items):
            takes[idx] = remaining[idx]
    return takes


def allocate_savings(savings: Decimal, contributions: Dict[int, Decimal]) -> Dict[int, Decimal]:
    """
    Split `savings` across lines proportionally to their contribution.
    Shares are rounded down to cents; the leftover cents go to the largest
    contributors first, never past a line's own contribution, so the shares
    add up to `savings` and no line total goes below zero.
    """
    total = sum(contributions.values(), ZERO)
    if total <= 0 or savings <= 0:
        return {idx: ZERO for idx in contributions}
    shares = {
        idx: (savings * c / total).quantize(MONEY, rounding=ROUND_DOWN)
        for idx, c in contributions.items()
    }
    leftover = savings - sum(shares.values(), ZERO)
    for idx in sorted(contributions, key=lambda i: (-contributions[i], i)):
        if leftover <= 0:
            break
        extra = min(leftover, contributions[idx] - shares[idx])
        shares[idx] += extra
        leftover -= extra
    return shares


def _apply_match(
    combo: Combo,
    takes: Dict[int, int],
    lines: List[PricedLine],
    remaining: List[int],
    savings_for: Callable[[Decimal, List[Decimal]], Decimal],
) -> Optional[AppliedCombo]:
    contributions = {idx: round_money(lines[idx].line.unit_price * qty) for idx, qty in takes.items()}
    matched = round_money(sum(contributions.values(), ZERO))
    unit_prices = [lines[idx].line.unit_price for idx, qty in takes.items() for _ in range(qty)]
    savings = round_money(savings_for(matched, unit_prices))
    if savings < 0:
        logger.info("combo %s skipped: price exceeds matched items (%s)", combo.id, matched)
        return None
    for idx, share in allocate_savings(savings, contributions).items():
        lines[idx].combo_allocations.append(ComboAllocation(combo.id, takes[idx], share))
        remaining[idx] -= takes[idx]
    return AppliedCombo(combo_id=combo.id, matched_subtotal=matched, price=round_money(matched - savings))


def resolve_combos(order: Order, combos: Sequence[Combo], now: datetime) -> ComboResolution:
    """
    Greedy exact matching of live combos in the given order. A bundle is
    applied as many times as the unconsumed quantities allow; a BOGO combo
    pools every matching unit once all of its items are present.
    """
    lines = [PricedLine(line) for line in order.lines]
    remaining = [line.quantity for line in order.lines]
    applied: List[AppliedCombo] = []
    raw = list(order.lines)

    for combo in combos:
        if not combo.is_live(now):
            continue

        if combo.type is ComboType.BOGO:
            if _take_items(combo.items, raw, remaining) is None:
                continue
            takes = _pool_units(combo.items, raw, remaining)
            rule = combo.bogo_rule()
            if sum(takes.values()) < rule.group_size:
                continue
            hit = _apply_match(combo, takes, lines, remaining,
                               lambda matched, units: min(bogo_discount(units, rule), matched))
            if hit:
                applied.append(hit)
            continue

        while True:
            takes = _take_items(combo.items, raw, remaining)
            if takes is None:
                break
            hit = _apply_match(combo, takes, lines, remaining,
                               lambda matched, units: matched - D(combo.combo_price))
            if hit is None:
                break
            applied.append(hit)

    if applied:
        logger.debug("order %s combos applied: %s", order.order_id, [a.combo_id for a in applied])
    return ComboResolution(lines=lines, remaining=remaining, applied=applied)
