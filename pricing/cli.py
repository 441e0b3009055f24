# pricing/cli.py
import json
import sys

import click
from flask import current_app
from flask.cli import AppGroup

from .errors import CouponValidationError
from .extensions import db
from .model import Order
from .services import complete_order, load_rules, price_order, usage_store_for, validate_coupon
from .services.catalog import StaticCatalog, validate_order_lines
from .utils.api import api_ok, api_error
from .utils.money import to_float
from .utils.timeparse import parse_datetime, utcnow

pricing_cli = AppGroup("pricing", help="Price orders against exported promotion rules.")


def _echo(payload, ok=True):
    click.echo(json.dumps(payload, indent=2, default=str))
    if not ok:
        sys.exit(1)


def _load(rules_file, order_file, code, catalog_file=None):
    catalog = StaticCatalog.from_api(json.load(catalog_file)) if catalog_file else None
    rules = load_rules(json.load(rules_file), catalog)
    order = Order.from_api(json.load(order_file))
    if catalog is not None:
        problems = validate_order_lines(catalog, order.lines)
        if problems:
            _echo(api_error("Order has items missing from the catalog", {"problems": problems}), ok=False)
    coupon = rules.coupon(code)
    if code and coupon is None:
        _echo(api_error(f"Unknown coupon code {code.strip().upper()}"), ok=False)
    return rules, order, coupon


def _at(value):
    try:
        return parse_datetime(value)
    except ValueError:
        raise click.BadParameter(f"invalid datetime {value!r}")


_rules_opt = click.option("--rules", "rules_file", type=click.File("r"), required=True,
                          help="JSON export with promotions, combos and coupons.")
_order_opt = click.option("--order", "order_file", type=click.File("r"), required=True,
                          help="JSON order with items, customerId and shippingFee.")
_coupon_opt = click.option("--coupon", "code", default=None, help="Coupon code entered by the customer.")
_at_opt = click.option("--at", "at", default=None, help="Price as of this ISO timestamp (UTC).")
_catalog_opt = click.option("--catalog", "catalog_file", type=click.File("r"), default=None,
                            help="JSON catalog export (productId, variantId, sizes) to check rules and items against.")


@pricing_cli.command("quote")
@_rules_opt
@_order_opt
@_coupon_opt
@_at_opt
@_catalog_opt
def quote(rules_file, order_file, code, at, catalog_file):
    """Preview the price of an order; nothing is recorded."""
    rules, order, coupon = _load(rules_file, order_file, code, catalog_file)
    history = usage_store_for(current_app).customer_history(order.customer_id)
    priced = price_order(order, rules.promotions, rules.combos, coupon, history=history, now=_at(at))
    _echo(api_ok("Order priced", priced.as_api()))


@pricing_cli.command("complete")
@_rules_opt
@_order_opt
@_coupon_opt
@_at_opt
@_catalog_opt
def complete(rules_file, order_file, code, at, catalog_file):
    """Price an order for real and record coupon/promotion usage."""
    rules, order, coupon = _load(rules_file, order_file, code, catalog_file)
    if not order.order_id:
        _echo(api_error("orderId is required to complete an order"), ok=False)
    result = complete_order(usage_store_for(current_app), order, rules.promotions, rules.combos, coupon, now=_at(at))
    _echo(api_ok("Order replayed" if result.replayed else "Order completed", {
        **result.priced.as_api(),
        "claimed": [f"{k}:{cid}" for k, cid in result.claimed],
        "rejected": [f"{k}:{cid}" for k, cid in result.rejected],
        "replayed": result.replayed,
    }))


@pricing_cli.command("check-coupon")
@_rules_opt
@_order_opt
@click.argument("code")
@_at_opt
def check_coupon(rules_file, order_file, code, at):
    """Validate a coupon code against an order without other discounts."""
    rules, order, coupon = _load(rules_file, order_file, code)
    history = usage_store_for(current_app).customer_history(order.customer_id)
    try:
        result = validate_coupon(coupon, order.lines, order.subtotal, history, _at(at) or utcnow())
    except CouponValidationError as e:
        _echo(api_error(e.message, e.as_api()), ok=False)
        return
    _echo(api_ok("Coupon valid", {
        "code": coupon.code,
        "amount": to_float(result.amount),
        "free_shipping": result.free_shipping,
    }))


@pricing_cli.command("usage")
def usage():
    """List usage counters of the configured store."""
    _echo(api_ok("ok", {"counters": usage_store_for(current_app).counters()}))


@pricing_cli.command("init-db")
def init_db():
    db.create_all()
    click.echo("usage tables ready")


def register_cli(app):
    app.cli.add_command(pricing_cli)
