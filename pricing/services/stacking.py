# pricing/services/stacking.py
from __future__ import annotations
import logging
from datetime import datetime
from decimal import Decimal
from functools import reduce
from typing import Collection, List, NamedTuple, Optional, Sequence, Tuple

from ..model.order import CustomerHistory, DiscountLine, OrderLine
from ..model.rules import ConstructKind, FreeShipping, Promotion, PromotionAction
from ..utils.money import ZERO, round_money
from .actions import action_name, apply_action
from .combo_service import ComboResolution
from .conditions import conditions_match, targeted_products

logger = logging.getLogger(__name__)


class StackState(NamedTuple):
    """Running totals threaded through the discount fold."""
    remaining: Decimal
    shipping_fee: Decimal
    discounts: Tuple[DiscountLine, ...] = ()


class _Step(NamedTuple):
    kind: ConstructKind
    construct_id: str
    action: PromotionAction
    unit_prices: Tuple[Decimal, ...]
    # (eligible subtotal, order subtotal) for product-targeted constructs
    share: Optional[Tuple[Decimal, Decimal]] = None


def eligible_base(remaining: Decimal, share: Optional[Tuple[Decimal, Decimal]]) -> Decimal:
    """
    Part of `remaining` that belongs to the targeted lines: the eligible lines'
    post-combo total scaled by how much of the order is still undiscounted.
    """
    if share is None:
        return remaining
    eligible, subtotal = share
    if subtotal <= 0 or eligible <= 0:
        return ZERO
    return min(remaining, round_money(remaining * eligible / subtotal))


def _eligible_lines(promo: Promotion):
    targets = targeted_products(promo.conditions)

    def accept(line: OrderLine) -> bool:
        if not promo.targets(line.product_id, line.variant_id):
            return False
        if not targets:
            return True
        return any(t.matches(line.product_id, line.variant_id) for t in targets)

    return accept


def matching_promotions(
    promotions: Sequence[Promotion],
    resolution: ComboResolution,
    history: CustomerHistory,
    now: datetime,
    excluded: Collection[Tuple[str, str]] = (),
) -> List[Promotion]:
    """Promotions that are live, have usage left and whose conditions hold."""
    lines = resolution.order_lines
    subtotal = resolution.subtotal
    out = []
    for promo in promotions:
        if (promo.kind.value, promo.id) in excluded:
            continue
        if not promo.is_live(now) or promo.is_exhausted():
            continue
        if promo.per_user_limit > 0 and history.redemptions_of(promo.kind, promo.id) >= promo.per_user_limit:
            logger.debug("promotion %s skipped: per-user limit reached for %s", promo.id, history.customer_id)
            continue
        if promo.targeted and not any(promo.targets(l.product_id, l.variant_id) for l in lines if l.quantity > 0):
            logger.debug("promotion %s skipped: no targeted product in the order", promo.id)
            continue
        if conditions_match(promo.conditions, lines, subtotal):
            out.append(promo)
    return out


def select_promotions(matches: Sequence[Promotion]) -> List[Promotion]:
    """
    Application order: the single winning non-stackable promotion (highest
    priority, then earliest start) followed by every stackable one by
    descending priority. Losing non-stackables are dropped.
    """
    exclusive = sorted((p for p in matches if not p.stackable), key=Promotion.sort_key)
    stackable = sorted((p for p in matches if p.stackable), key=Promotion.sort_key)
    if len(exclusive) > 1:
        logger.debug("non-stackable %s wins over %s", exclusive[0].id, [p.id for p in exclusive[1:]])
    return exclusive[:1] + stackable


def target_share(construct, resolution: ComboResolution) -> Optional[Tuple[Decimal, Decimal]]:
    if not construct.targeted:
        return None
    eligible = resolution.eligible_subtotal(lambda line: construct.targets(line.product_id, line.variant_id))
    return eligible, resolution.subtotal


def _fold_step(state: StackState, step: _Step) -> StackState:
    if isinstance(step.action, FreeShipping):
        if state.shipping_fee <= 0:
            return state
        line = DiscountLine(step.kind, step.construct_id, state.shipping_fee, action_name(step.action), shipping=True)
        return StackState(state.remaining, ZERO, state.discounts + (line,))

    result = apply_action(step.action, eligible_base(state.remaining, step.share), step.unit_prices)
    if result.amount <= 0:
        return state
    line = DiscountLine(step.kind, step.construct_id, result.amount, action_name(step.action))
    return StackState(round_money(state.remaining - result.amount), state.shipping_fee, state.discounts + (line,))


def apply_actions(
    state: StackState,
    kind: ConstructKind,
    construct_id: str,
    actions: Sequence[PromotionAction],
    unit_prices: Sequence[Decimal] = (),
    share: Optional[Tuple[Decimal, Decimal]] = None,
) -> StackState:
    prices = tuple(unit_prices)
    return reduce(_fold_step, (_Step(kind, construct_id, a, prices, share) for a in actions), state)


def apply_promotions(
    selected: Sequence[Promotion],
    resolution: ComboResolution,
    state: StackState,
) -> StackState:
    """
    Fold the selected promotions into `state` in order. Every action is
    computed against what is left after the discounts before it, and each
    action's cap is checked against that base alone. A product-targeted
    promotion only sees the targeted lines' part of that remainder.
    """
    for promo in selected:
        unit_prices = resolution.free_unit_prices(_eligible_lines(promo))
        share = target_share(promo, resolution)
        state = apply_actions(state, promo.kind, promo.id, promo.actions, unit_prices, share)
    return state
