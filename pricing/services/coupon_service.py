# pricing/services/coupon_service.py
from __future__ import annotations
import logging
from datetime import datetime
from decimal import Decimal
from typing import Sequence

from ..errors import (
    CouponInactive, CouponExpired, MinOrderNotMet, MinQuantityNotMet,
    UsageExhausted, PerUserLimitExceeded, NotFirstOrder, CustomerNotEligible, CouponNotApplicable,
)
from ..model.order import CustomerHistory, OrderLine
from ..model.rules import Coupon, ConstructKind
from ..utils.money import ZERO, round_money
from .actions import ActionResult, apply_action

logger = logging.getLogger(__name__)


def eligible_subtotal(coupon: Coupon, lines: Sequence[OrderLine]) -> Decimal:
    """List-price subtotal of the lines the coupon targets."""
    return round_money(sum((l.line_subtotal() for l in lines if coupon.targets(l.product_id, l.variant_id)), ZERO))


def check_coupon(
    coupon: Coupon,
    lines: Sequence[OrderLine],
    subtotal: Decimal,
    history: CustomerHistory,
    now: datetime,
) -> None:
    """
    Eligibility checks in a fixed order; the first failure is raised.
    `subtotal` is the order subtotal the coupon minimum is compared with.
    """
    code = coupon.code
    if not coupon.is_active:
        raise CouponInactive(coupon_code=code)
    if not coupon.in_window(now):
        raise CouponExpired(coupon_code=code)
    if subtotal < coupon.min_order_amount:
        raise MinOrderNotMet(
            f"Order subtotal must be at least {coupon.min_order_amount:.2f} to use this coupon.",
            coupon_code=code,
        )
    if coupon.min_quantity and sum(l.quantity for l in lines) < coupon.min_quantity:
        raise MinQuantityNotMet(
            f"Add at least {coupon.min_quantity} items to use this coupon.",
            coupon_code=code,
        )
    if coupon.targeted and not any(coupon.targets(l.product_id, l.variant_id) for l in lines if l.quantity > 0):
        raise CouponNotApplicable(coupon_code=code)
    if coupon.usage_limit > 0 and coupon.usage_count >= coupon.usage_limit:
        raise UsageExhausted(coupon_code=code)
    if coupon.per_user_limit > 0:
        used = history.redemptions_of(ConstructKind.COUPON, coupon.id)
        if used >= coupon.per_user_limit:
            raise PerUserLimitExceeded(coupon_code=code)
    if coupon.first_order_only and history.completed_orders > 0:
        raise NotFirstOrder(coupon_code=code)
    if coupon.restricted_to_users and history.customer_id not in coupon.restricted_to_users:
        raise CustomerNotEligible(coupon_code=code)


def validate_coupon(
    coupon: Coupon,
    lines: Sequence[OrderLine],
    subtotal: Decimal,
    history: CustomerHistory,
    now: datetime,
    base: Decimal | None = None,
) -> ActionResult:
    """
    Validate `coupon` and compute its discount.
    The amount is taken from `base`, which defaults to the subtotal of the
    targeted lines; the pricing engine passes its own remainder instead.
    """
    check_coupon(coupon, lines, subtotal, history, now)
    if base is None:
        base = eligible_subtotal(coupon, lines) if coupon.targeted else subtotal
    result = apply_action(coupon.as_action(), base)
    logger.debug("coupon %s accepted: %s", coupon.code, result)
    return result
