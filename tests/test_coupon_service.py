"""Coupon validation: check order and error codes."""
from decimal import Decimal

import pytest

from pricing.errors import (
    CouponExpired, CouponInactive, CouponNotApplicable, CustomerNotEligible, MinOrderNotMet,
    MinQuantityNotMet, NotFirstOrder, PerUserLimitExceeded, UsageExhausted,
)
from pricing.model import CouponDiscountType, CustomerHistory, SpecificProduct, SpecificVariants
from pricing.services.coupon_service import validate_coupon

from conftest import END, NOW, make_coupon, make_order


def _validate(coupon, order, history=None, now=NOW):
    history = history or CustomerHistory(customer_id=order.customer_id)
    return validate_coupon(coupon, order.lines, order.subtotal, history, now)


def test_valid_percentage_coupon():
    r = _validate(make_coupon(value="10"), make_order(("A", 2, 250)))
    assert r.amount == Decimal("50.00")


def test_percentage_coupon_cap():
    coupon = make_coupon(value="20", max_discount=Decimal("150"))
    assert _validate(coupon, make_order(("A", 1, 1000))).amount == Decimal("150.00")


def test_fixed_coupon_clamped_to_subtotal():
    coupon = make_coupon("FLAT", CouponDiscountType.FIXED, "500")
    assert _validate(coupon, make_order(("A", 1, 120))).amount == Decimal("120.00")


def test_free_shipping_coupon():
    coupon = make_coupon("SHIPFREE", CouponDiscountType.FREE_SHIPPING, "0")
    r = _validate(coupon, make_order(("A", 1, 120), shipping="15"))
    assert r.free_shipping and r.amount == 0


def test_code_is_normalized():
    assert make_coupon(" save10 ").code == "SAVE10"


def test_inactive():
    with pytest.raises(CouponInactive):
        _validate(make_coupon(is_active=False), make_order(("A", 1, 100)))


def test_expired_and_not_started():
    with pytest.raises(CouponExpired):
        _validate(make_coupon(), make_order(("A", 1, 100)), now=END.replace(year=2027))
    with pytest.raises(CouponExpired):
        _validate(make_coupon(), make_order(("A", 1, 100)), now=NOW.replace(year=2025))


def test_min_order_not_met():
    coupon = make_coupon(min_order_amount=Decimal("500"))
    with pytest.raises(MinOrderNotMet) as exc:
        _validate(coupon, make_order(("A", 4, 100)))
    assert exc.value.code == "MIN_ORDER_NOT_MET"
    assert "500.00" in exc.value.message


def test_min_quantity_not_met():
    with pytest.raises(MinQuantityNotMet):
        _validate(make_coupon(min_quantity=3), make_order(("A", 2, 100)))


def test_usage_exhausted():
    coupon = make_coupon(usage_limit=5, usage_count=5)
    with pytest.raises(UsageExhausted):
        _validate(coupon, make_order(("A", 1, 100)))


def test_unlimited_usage_never_exhausts():
    coupon = make_coupon(usage_limit=0, usage_count=10_000)
    assert _validate(coupon, make_order(("A", 1, 100))).amount == Decimal("10.00")


def test_per_user_limit():
    coupon = make_coupon(per_user_limit=1)
    history = CustomerHistory("c-1", completed_orders=3, redemptions={("coupon", coupon.id): 1})
    with pytest.raises(PerUserLimitExceeded):
        _validate(coupon, make_order(("A", 1, 100)), history)


def test_first_order_only():
    coupon = make_coupon(first_order_only=True)
    with pytest.raises(NotFirstOrder):
        _validate(coupon, make_order(("A", 1, 100)), CustomerHistory("c-1", completed_orders=1))
    assert _validate(coupon, make_order(("A", 1, 100)), CustomerHistory("c-1")).amount == Decimal("10.00")


def test_restricted_users():
    coupon = make_coupon(restricted_to_users=frozenset({"vip"}))
    with pytest.raises(CustomerNotEligible):
        _validate(coupon, make_order(("A", 1, 100)))
    order = make_order(("A", 1, 100), customer_id="vip")
    assert _validate(coupon, order).amount == Decimal("10.00")


def test_checks_short_circuit_in_order():
    # inactive wins over every later failure
    coupon = make_coupon(is_active=False, min_order_amount=Decimal("9999"), usage_limit=1, usage_count=1)
    with pytest.raises(CouponInactive):
        _validate(coupon, make_order(("A", 1, 100)))
    # min order is checked before usage
    coupon = make_coupon(min_order_amount=Decimal("9999"), usage_limit=1, usage_count=1)
    with pytest.raises(MinOrderNotMet):
        _validate(coupon, make_order(("A", 1, 100)))


def test_targeted_coupon_discounts_only_its_products():
    coupon = make_coupon(applicable_products=(SpecificProduct("A"),))
    r = _validate(coupon, make_order(("A", 1, 100), ("B", 1, 100)))
    assert r.amount == Decimal("10.00")


def test_excluded_products_are_left_out_of_the_base():
    coupon = make_coupon("FLAT", CouponDiscountType.FIXED, "80", excluded_products=frozenset({"B"}))
    r = _validate(coupon, make_order(("A", 1, 30), ("B", 1, 100)))
    assert r.amount == Decimal("30.00")


def test_coupon_for_other_products_is_not_applicable():
    coupon = make_coupon(applicable_products=(SpecificProduct("A", SpecificVariants(frozenset({"red"}))),))
    with pytest.raises(CouponNotApplicable) as exc:
        _validate(coupon, make_order(("A", 1, 100, "blue"), ("B", 1, 100)))
    assert exc.value.code == "NOT_APPLICABLE"
    assert _validate(coupon, make_order(("A", 1, 100, "red"))).amount == Decimal("10.00")


def test_not_applicable_is_checked_after_min_quantity_and_before_usage():
    coupon = make_coupon(applicable_products=(SpecificProduct("A"),), min_quantity=5,
                         usage_limit=1, usage_count=1)
    with pytest.raises(MinQuantityNotMet):
        _validate(coupon, make_order(("B", 1, 100)))
    coupon = make_coupon(applicable_products=(SpecificProduct("A"),), usage_limit=1, usage_count=1)
    with pytest.raises(CouponNotApplicable):
        _validate(coupon, make_order(("B", 1, 100)))
