"""End-to-end pricing: combos, promotions, coupon and shipping together."""
from decimal import Decimal

from pricing import price_order
from pricing.errors import CouponNotApplicable, MinOrderNotMet, UsageExhausted
from pricing.model import (
    CouponDiscountType, FixedOff, FreeShipping, MinAmount, Order, PercentageOff, SpecificProduct,
)

from conftest import NOW, make_combo, make_coupon, make_order, make_promotion


def test_no_rules_prices_at_list():
    priced = price_order(make_order(("A", 2, "12.50"), shipping="5"), now=NOW)
    assert priced.subtotal == Decimal("25.00")
    assert priced.discounts == []
    assert priced.total == Decimal("30.00")


def test_empty_order_only_pays_shipping():
    priced = price_order(make_order(shipping="7"), now=NOW)
    assert priced.subtotal == 0
    assert priced.total == Decimal("7.00")


def test_stacked_promotions_example():
    pct = make_promotion("pct", [PercentageOff(Decimal("10"))], stackable=True, priority=2)
    flat = make_promotion("flat", [FixedOff(Decimal("50"))], stackable=True, priority=1)
    priced = price_order(make_order(("A", 1, 1000)), [pct, flat], now=NOW)
    assert priced.discount_total == Decimal("150.00")
    assert priced.total == Decimal("850.00")


def test_coupon_min_order_failure_is_reported_not_raised():
    coupon = make_coupon(min_order_amount=Decimal("500"))
    priced = price_order(make_order(("A", 4, 100)), coupon=coupon, now=NOW)
    assert isinstance(priced.coupon_error, MinOrderNotMet)
    assert priced.discount_total == 0
    assert priced.total == Decimal("400.00")
    assert priced.as_api()["coupon_error"]["code"] == "MIN_ORDER_NOT_MET"


def test_coupon_applies_after_promotions():
    promo = make_promotion("p10", [PercentageOff(Decimal("10"))])
    coupon = make_coupon("FLAT100", CouponDiscountType.FIXED, "100")
    priced = price_order(make_order(("A", 1, 1000)), [promo], coupon=coupon, now=NOW)
    assert [d.key for d in priced.discounts] == [("promotion", "p10"), ("coupon", "flat100")]
    assert priced.total == Decimal("800.00")


def test_coupon_is_clamped_to_what_promotions_left():
    promo = make_promotion("p", [FixedOff(Decimal("900"))])
    coupon = make_coupon("FLAT", CouponDiscountType.FIXED, "500")
    priced = price_order(make_order(("A", 1, 1000)), [promo], coupon=coupon, now=NOW)
    assert priced.discounts[-1].amount == Decimal("100.00")
    assert priced.total == Decimal("0.00")


def test_exclusive_coupon_replaces_promotions():
    promo = make_promotion("p", [FixedOff(Decimal("50"))])
    coupon = make_coupon("ONLYME", value="20", exclusive=True)
    priced = price_order(make_order(("A", 1, 100)), [promo], coupon=coupon, now=NOW)
    assert priced.applied_keys() == [("coupon", "onlyme")]
    assert priced.total == Decimal("80.00")


def test_rejected_exclusive_coupon_keeps_promotions():
    promo = make_promotion("p", [FixedOff(Decimal("50"))])
    coupon = make_coupon("ONLYME", value="20", exclusive=True, usage_limit=1, usage_count=1)
    priced = price_order(make_order(("A", 1, 100)), [promo], coupon=coupon, now=NOW)
    assert isinstance(priced.coupon_error, UsageExhausted)
    assert priced.applied_keys() == [("promotion", "p")]


def test_promotion_conditions_see_post_combo_subtotal():
    combo = make_combo("duo", [("A", 1), ("B", 1)], price=350, original=500)
    promo = make_promotion("big", [FixedOff(Decimal("20"))], conditions=[MinAmount(Decimal("400"))])
    order = make_order(("A", 1, 300), ("B", 1, 200))
    priced = price_order(order, [promo], [combo], now=NOW)
    assert priced.original_subtotal == Decimal("500.00")
    assert priced.subtotal == Decimal("350.00")
    assert priced.discounts == []
    assert priced.total == Decimal("350.00")


def test_free_shipping_coupon_zeroes_shipping():
    coupon = make_coupon("SHIP", CouponDiscountType.FREE_SHIPPING, "0")
    priced = price_order(make_order(("A", 1, 100), shipping="12"), coupon=coupon, now=NOW)
    assert priced.shipping_fee == 0
    assert priced.total == Decimal("100.00")


def test_excluded_coupon_is_ignored_silently():
    coupon = make_coupon()
    priced = price_order(make_order(("A", 1, 100)), coupon=coupon, now=NOW,
                         excluded={("coupon", coupon.id)})
    assert priced.discounts == [] and priced.coupon_error is None


def test_api_shape():
    combo = make_combo("duo", [("A", 1), ("B", 1)], price=120, original=150)
    promo = make_promotion("ship", [FreeShipping()])
    order = Order.from_api({
        "orderId": "o-9",
        "customerId": "c-9",
        "shippingFee": 10,
        "items": [
            {"productId": "A", "variantId": "red", "quantity": 1, "unitPrice": 100},
            {"productId": "B", "quantity": 1, "price": "50"},
        ],
    })
    out = price_order(order, [promo], [combo], now=NOW).as_api()
    assert out["order_id"] == "o-9"
    assert out["money"] == {
        "original_subtotal": 150.0,
        "subtotal": 120.0,
        "discount_total": 10.0,
        "shipping_fee": 0.0,
        "total": 120.0,
    }
    assert out["combos"] == [{"combo_id": "duo", "price": 120.0, "savings": 30.0}]
    assert sum(c["savings"] for item in out["items"] for c in item["combo"]) == 30.0
    assert out["discounts"][0]["action"] == "FREE_SHIPPING"


def test_targeted_coupon_takes_its_share_of_the_remainder():
    promo = make_promotion("flat", [FixedOff(Decimal("20"))])
    coupon = make_coupon(applicable_products=(SpecificProduct("A"),))
    priced = price_order(make_order(("A", 1, 100), ("B", 1, 100)), [promo], coupon=coupon, now=NOW)
    # 180 left after the promotion, A owns half of it
    assert [d.amount for d in priced.discounts] == [Decimal("20.00"), Decimal("9.00")]
    assert priced.total == Decimal("171.00")


def test_coupon_for_products_not_in_the_order_is_reported():
    coupon = make_coupon(applicable_products=(SpecificProduct("Z"),))
    priced = price_order(make_order(("A", 1, 100)), coupon=coupon, now=NOW)
    assert isinstance(priced.coupon_error, CouponNotApplicable)
    assert priced.total == Decimal("100.00")
