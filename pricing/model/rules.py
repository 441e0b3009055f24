# --- pricing/model/rules.py ---
"""
In-memory rule definitions.

These are the validated forms of the Promotion / Coupon / Combo documents the
admin UI writes to the rule store. Every union below is closed: the loader in
services/rule_loader.py is the only place that turns loose JSON into these
types, so evaluation code never re-checks shapes.
"""
from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional, Tuple, Union

from ..errors import ConfigurationError


# ---- variant targeting ----------------------------------------------------

@dataclass(frozen=True)
class AllVariants:
    def allows(self, variant_id: Optional[str]) -> bool:
        return True


@dataclass(frozen=True)
class SpecificVariants:
    variant_ids: frozenset

    def __post_init__(self):
        if not self.variant_ids:
            raise ConfigurationError("SPECIFIC_VARIANTS needs at least one variant id")

    def allows(self, variant_id: Optional[str]) -> bool:
        return variant_id is not None and variant_id in self.variant_ids


VariantMode = Union[AllVariants, SpecificVariants]

ALL_VARIANTS = AllVariants()


# ---- conditions ------------------------------------------------------------

@dataclass(frozen=True)
class MinAmount:
    value: Decimal


@dataclass(frozen=True)
class MinQuantity:
    value: int


@dataclass(frozen=True)
class SpecificProduct:
    product_id: str
    variant_mode: VariantMode = ALL_VARIANTS

    def matches(self, product_id: str, variant_id: Optional[str]) -> bool:
        return product_id == self.product_id and self.variant_mode.allows(variant_id)


PromotionCondition = Union[MinAmount, MinQuantity, SpecificProduct]


# ---- actions ---------------------------------------------------------------

@dataclass(frozen=True)
class PercentageOff:
    value: Decimal
    max_discount: Optional[Decimal] = None


@dataclass(frozen=True)
class FixedOff:
    value: Decimal


@dataclass(frozen=True)
class FreeShipping:
    pass


@dataclass(frozen=True)
class Bogo:
    buy_quantity: int
    get_quantity: int
    get_discount: Decimal = Decimal("100")  # percent off the "get" units; 100 = free

    @property
    def group_size(self) -> int:
        return self.buy_quantity + self.get_quantity


PromotionAction = Union[PercentageOff, FixedOff, FreeShipping, Bogo]


# ---- constructs ------------------------------------------------------------

class ConstructKind(str, Enum):
    PROMOTION = "promotion"
    COUPON = "coupon"
    COMBO = "combo"


def _targets(applicable, excluded, product_id: str, variant_id: Optional[str]) -> bool:
    if product_id in excluded:
        return False
    return not applicable or any(t.matches(product_id, variant_id) for t in applicable)


def _in_window(now: datetime, start: Optional[datetime], end: Optional[datetime]) -> bool:
    if start and now < start:
        return False
    if end and now > end:
        return False
    return True


@dataclass(frozen=True)
class Promotion:
    id: str
    type: str
    conditions: Tuple[PromotionCondition, ...]
    actions: Tuple[PromotionAction, ...]
    start_date: Optional[datetime]
    end_date: Optional[datetime]
    is_active: bool = True
    stackable: bool = False
    priority: int = 0
    usage_limit: int = 0
    per_user_limit: int = 0
    usage_count: int = 0
    name: str = ""
    # product targeting: empty applicable_products means every product
    applicable_products: Tuple[SpecificProduct, ...] = ()
    excluded_products: frozenset = field(default_factory=frozenset)

    kind = ConstructKind.PROMOTION

    def is_live(self, now: datetime) -> bool:
        return self.is_active and _in_window(now, self.start_date, self.end_date)

    def is_exhausted(self) -> bool:
        return self.usage_limit > 0 and self.usage_count >= self.usage_limit

    def sort_key(self):
        # highest priority first, then the promotion that started earliest
        return (-self.priority, self.start_date or datetime.min, self.id)

    @property
    def targeted(self) -> bool:
        return bool(self.applicable_products or self.excluded_products)

    def targets(self, product_id: str, variant_id: Optional[str] = None) -> bool:
        return _targets(self.applicable_products, self.excluded_products, product_id, variant_id)


class CouponDiscountType(str, Enum):
    PERCENTAGE = "PERCENTAGE"
    FIXED = "FIXED"
    FREE_SHIPPING = "FREE_SHIPPING"


def normalize_code(code: str) -> str:
    return (code or "").strip().upper()


@dataclass(frozen=True)
class Coupon:
    id: str
    code: str
    discount_type: CouponDiscountType
    discount_value: Decimal
    start_date: Optional[datetime]
    end_date: Optional[datetime]
    max_discount: Optional[Decimal] = None
    min_order_amount: Decimal = Decimal("0")
    min_quantity: int = 0
    usage_limit: int = 0
    per_user_limit: int = 0
    usage_count: int = 0
    first_order_only: bool = False
    is_active: bool = True
    restricted_to_users: frozenset = field(default_factory=frozenset)
    applicable_products: Tuple[SpecificProduct, ...] = ()
    excluded_products: frozenset = field(default_factory=frozenset)
    # reserved: an exclusive coupon replaces every automatic promotion
    exclusive: bool = False

    kind = ConstructKind.COUPON

    def __post_init__(self):
        object.__setattr__(self, "code", normalize_code(self.code))

    def in_window(self, now: datetime) -> bool:
        return _in_window(now, self.start_date, self.end_date)

    @property
    def targeted(self) -> bool:
        return bool(self.applicable_products or self.excluded_products)

    def targets(self, product_id: str, variant_id: Optional[str] = None) -> bool:
        return _targets(self.applicable_products, self.excluded_products, product_id, variant_id)

    def as_action(self) -> PromotionAction:
        if self.discount_type is CouponDiscountType.PERCENTAGE:
            return PercentageOff(self.discount_value, self.max_discount)
        if self.discount_type is CouponDiscountType.FIXED:
            return FixedOff(self.discount_value)
        return FreeShipping()


class ComboType(str, Enum):
    BUNDLE = "BUNDLE"
    BOGO = "BOGO"
    MULTI_BUY = "MULTI_BUY"


@dataclass(frozen=True)
class ComboItem:
    product_id: str
    quantity: int
    variant_mode: VariantMode = ALL_VARIANTS

    def accepts(self, product_id: str, variant_id: Optional[str]) -> bool:
        return product_id == self.product_id and self.variant_mode.allows(variant_id)


@dataclass(frozen=True)
class Combo:
    id: str
    items: Tuple[ComboItem, ...]
    original_price: Decimal
    combo_price: Decimal
    savings: Decimal
    type: ComboType = ComboType.BUNDLE
    status: str = "ACTIVE"
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    name: str = ""
    # BOGO combos only
    buy_quantity: int = 0
    get_quantity: int = 0
    get_discount: Decimal = Decimal("100")

    kind = ConstructKind.COMBO

    def is_live(self, now: datetime) -> bool:
        return self.status == "ACTIVE" and _in_window(now, self.start_date, self.end_date)

    def bogo_rule(self) -> Bogo:
        return Bogo(self.buy_quantity, self.get_quantity, self.get_discount)
