"""Pytest fixtures: app with in-memory SQLite, rule/order builders."""
from datetime import datetime
from decimal import Decimal

import pytest

from pricing import create_app
from pricing.config import TestConfig
from pricing.extensions import db
from pricing.model import (
    ALL_VARIANTS, Combo, ComboItem, ComboType, Coupon, CouponDiscountType,
    Order, OrderLine, Promotion,
)

NOW = datetime(2026, 6, 15, 12, 0, 0)
START = datetime(2026, 1, 1)
END = datetime(2026, 12, 31, 23, 59, 59)


@pytest.fixture
def app():
    app = create_app(TestConfig)
    with app.app_context():
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def runner(app):
    return app.test_cli_runner()


def make_order(*lines, order_id="o-1", customer_id="c-1", shipping="0"):
    """lines: (product_id, quantity, unit_price[, variant_id])"""
    built = []
    for row in lines:
        pid, qty, price = row[:3]
        variant = row[3] if len(row) > 3 else None
        built.append(OrderLine(product_id=pid, quantity=qty, unit_price=Decimal(str(price)), variant_id=variant))
    return Order(order_id=order_id, customer_id=customer_id, lines=tuple(built), shipping_fee=Decimal(shipping))


def make_promotion(pid, actions, conditions=(), stackable=False, priority=0, start=START, end=END, **kw):
    return Promotion(
        id=pid,
        type=kw.pop("type", "PERCENTAGE"),
        conditions=tuple(conditions),
        actions=tuple(actions),
        start_date=start,
        end_date=end,
        stackable=stackable,
        priority=priority,
        **kw,
    )


def make_coupon(code="SAVE10", dtype=CouponDiscountType.PERCENTAGE, value="10", **kw):
    kw.setdefault("start_date", START)
    kw.setdefault("end_date", END)
    return Coupon(
        id=kw.pop("id", code.lower()),
        code=code,
        discount_type=dtype,
        discount_value=Decimal(value),
        **kw,
    )


def make_combo(cid, items, price, original=None, ctype=ComboType.BUNDLE, **kw):
    """items: (product_id, quantity[, variant_mode])"""
    built = tuple(ComboItem(i[0], i[1], i[2] if len(i) > 2 else ALL_VARIANTS) for i in items)
    price = Decimal(str(price))
    original = Decimal(str(original)) if original is not None else price
    return Combo(id=cid, items=built, original_price=original, combo_price=price,
                 savings=original - price, type=ctype, **kw)
