# --- pricing/model/order.py ---
from __future__ import annotations
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Dict, List, Optional, Tuple

from ..utils.money import D, ZERO, round_money, to_float
from .rules import ConstructKind


@dataclass(frozen=True)
class OrderLine:
    product_id: str
    quantity: int
    unit_price: Decimal
    variant_id: Optional[str] = None
    size: Optional[str] = None

    def __post_init__(self):
        object.__setattr__(self, "unit_price", D(self.unit_price))
        if self.quantity < 0:
            raise ValueError(f"negative quantity for {self.product_id}")
        if self.unit_price < 0:
            raise ValueError(f"negative unit price for {self.product_id}")

    def line_subtotal(self) -> Decimal:
        return round_money(self.unit_price * self.quantity)


@dataclass(frozen=True)
class Order:
    order_id: str
    customer_id: Optional[str]
    lines: Tuple[OrderLine, ...]
    shipping_fee: Decimal = ZERO

    def __post_init__(self):
        object.__setattr__(self, "lines", tuple(self.lines))
        object.__setattr__(self, "shipping_fee", round_money(D(self.shipping_fee)))

    @property
    def subtotal(self) -> Decimal:
        return round_money(sum((l.line_subtotal() for l in self.lines), ZERO))

    def total_quantity(self) -> int:
        return sum(l.quantity for l in self.lines)

    @classmethod
    def from_api(cls, data: dict) -> "Order":
        lines = [
            OrderLine(
                product_id=str(it.get("productId") or it.get("itemId")),
                variant_id=it.get("variantId") or None,
                size=it.get("size"),
                quantity=int(it.get("quantity") or 0),
                unit_price=D(it.get("unitPrice", it.get("price"))),
            )
            for it in (data.get("items") or data.get("lineItems") or [])
        ]
        return cls(
            order_id=str(data.get("orderId") or ""),
            customer_id=data.get("customerId") or data.get("userId"),
            lines=tuple(lines),
            shipping_fee=D(data.get("shippingFee")),
        )


@dataclass
class CustomerHistory:
    """Per-customer facts fetched by the caller before pricing."""
    customer_id: Optional[str] = None
    completed_orders: int = 0
    redemptions: Dict[Tuple[str, str], int] = field(default_factory=dict)

    def redemptions_of(self, kind: ConstructKind, construct_id: str) -> int:
        return self.redemptions.get((ConstructKind(kind).value, construct_id), 0)


@dataclass(frozen=True)
class ComboAllocation:
    combo_id: str
    quantity: int
    savings: Decimal


@dataclass
class PricedLine:
    line: OrderLine
    combo_allocations: List[ComboAllocation] = field(default_factory=list)

    @property
    def line_subtotal(self) -> Decimal:
        return self.line.line_subtotal()

    @property
    def combo_savings(self) -> Decimal:
        return round_money(sum((a.savings for a in self.combo_allocations), ZERO))

    @property
    def combo_quantity(self) -> int:
        return sum(a.quantity for a in self.combo_allocations)

    @property
    def line_total(self) -> Decimal:
        return round_money(self.line_subtotal - self.combo_savings)

    def as_api(self):
        l = self.line
        return {
            "product_id": l.product_id,
            "variant_id": l.variant_id,
            "size": l.size,
            "quantity": l.quantity,
            "unit_price": to_float(l.unit_price),
            "line_subtotal": to_float(self.line_subtotal),
            "combo": [
                {"combo_id": a.combo_id, "quantity": a.quantity, "savings": to_float(a.savings)}
                for a in self.combo_allocations
            ],
            "line_total": to_float(self.line_total),
        }


@dataclass(frozen=True)
class AppliedCombo:
    combo_id: str
    matched_subtotal: Decimal
    price: Decimal

    @property
    def savings(self) -> Decimal:
        return round_money(self.matched_subtotal - self.price)


@dataclass(frozen=True)
class DiscountLine:
    source: ConstructKind
    construct_id: str
    amount: Decimal
    action: str
    # set only for discounts that zero the shipping fee
    shipping: bool = False

    @property
    def key(self) -> Tuple[str, str]:
        return (self.source.value, self.construct_id)

    def as_api(self):
        return {
            "source": self.source.value,
            "construct_id": self.construct_id,
            "action": self.action,
            "amount": to_float(self.amount),
        }


@dataclass
class PricedOrder:
    order_id: str
    line_items: List[PricedLine]
    original_subtotal: Decimal
    subtotal: Decimal
    discounts: List[DiscountLine]
    shipping_fee: Decimal
    total: Decimal
    combos: List[AppliedCombo] = field(default_factory=list)
    coupon_error: Optional[Exception] = None

    @property
    def discount_total(self) -> Decimal:
        return round_money(sum((d.amount for d in self.discounts), ZERO))

    def applied_keys(self) -> List[Tuple[str, str]]:
        """(kind, id) of every coupon/promotion in the result, first occurrence order."""
        seen = []
        for d in self.discounts:
            if d.key not in seen:
                seen.append(d.key)
        return seen

    def as_api(self):
        return {
            "order_id": self.order_id,
            "items": [i.as_api() for i in self.line_items],
            "money": {
                "original_subtotal": to_float(self.original_subtotal),
                "subtotal": to_float(self.subtotal),
                "discount_total": to_float(self.discount_total),
                "shipping_fee": to_float(self.shipping_fee),
                "total": to_float(self.total),
            },
            "discounts": [d.as_api() for d in self.discounts],
            "combos": [
                {"combo_id": c.combo_id, "price": to_float(c.price), "savings": to_float(c.savings)}
                for c in self.combos
            ],
            "coupon_error": self.coupon_error.as_api() if self.coupon_error is not None else None,
        }
