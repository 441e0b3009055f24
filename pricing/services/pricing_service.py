# pricing/services/pricing_service.py
from __future__ import annotations
import logging
from datetime import datetime
from typing import Collection, Optional, Sequence, Tuple

from ..errors import CouponValidationError
from ..model.order import CustomerHistory, Order, PricedOrder
from ..model.rules import Combo, Coupon, ConstructKind, Promotion
from ..utils.money import ZERO, round_money
from ..utils.timeparse import utcnow
from .combo_service import resolve_combos
from .coupon_service import check_coupon
from .stacking import (
    StackState, apply_actions, apply_promotions, matching_promotions, select_promotions, target_share,
)

logger = logging.getLogger(__name__)


def price_order(
    order: Order,
    promotions: Sequence[Promotion] = (),
    combos: Sequence[Combo] = (),
    coupon: Optional[Coupon] = None,
    *,
    history: Optional[CustomerHistory] = None,
    now: Optional[datetime] = None,
    excluded: Collection[Tuple[str, str]] = (),
) -> PricedOrder:
    """
    Price `order` without side effects.
    Order:
      1) combos replace the matched lines' contribution with the combo price
      2) matching promotions are selected (one non-stackable at most)
      3) selected promotions are folded over the remaining subtotal
      4) coupon, validated and applied on what is left
      5) shipping (possibly zeroed by a FREE_SHIPPING action)
    `excluded` holds (kind, id) pairs to leave out, used when a completion
    lost a usage-limit race.
    """
    now = now or utcnow()
    history = history or CustomerHistory(customer_id=order.customer_id)

    # 1) combos
    resolution = resolve_combos(order, combos, now)
    subtotal = resolution.subtotal

    # 2) + 3) automatic promotions
    state = StackState(remaining=subtotal, shipping_fee=order.shipping_fee)
    coupon_error = None
    use_coupon = coupon is not None and (ConstructKind.COUPON.value, coupon.id) not in excluded

    exclusive_coupon = False
    if use_coupon:
        try:
            check_coupon(coupon, resolution.order_lines, subtotal, history, now)
            exclusive_coupon = coupon.exclusive
        except CouponValidationError as e:
            logger.info("order %s: coupon %s rejected (%s)", order.order_id, coupon.code, e.code)
            coupon_error = e
            use_coupon = False

    if not exclusive_coupon:
        matches = matching_promotions(promotions, resolution, history, now, excluded)
        state = apply_promotions(select_promotions(matches), resolution, state)

    # 4) coupon on the remainder, limited to its products when it targets some
    if use_coupon:
        state = apply_actions(state, ConstructKind.COUPON, coupon.id, [coupon.as_action()],
                              share=target_share(coupon, resolution))

    # 5) totals
    discounts = list(state.discounts)
    total = round_money(state.remaining + state.shipping_fee)
    if total < 0:
        total = round_money(ZERO)

    priced = PricedOrder(
        order_id=order.order_id,
        line_items=resolution.lines,
        original_subtotal=resolution.original_subtotal,
        subtotal=subtotal,
        discounts=discounts,
        shipping_fee=state.shipping_fee,
        total=total,
        combos=resolution.applied,
        coupon_error=coupon_error,
    )
    logger.debug("order %s priced: subtotal=%s discounts=%s total=%s",
                 order.order_id, subtotal, priced.discount_total, total)
    return priced
