# ------ pricing/model/__init__.py ------

from .rules import (
    ALL_VARIANTS, AllVariants, SpecificVariants,
    MinAmount, MinQuantity, SpecificProduct,
    PercentageOff, FixedOff, FreeShipping, Bogo,
    ConstructKind, Promotion, Coupon, CouponDiscountType,
    Combo, ComboItem, ComboType, normalize_code,
)
from .order import (
    Order, OrderLine, CustomerHistory,
    PricedOrder, PricedLine, DiscountLine, AppliedCombo, ComboAllocation,
)
from .usage import UsageCounter, Redemption, CompletedOrder

__all__ = [
    "ALL_VARIANTS",
    "AllVariants",
    "SpecificVariants",
    "MinAmount",
    "MinQuantity",
    "SpecificProduct",
    "PercentageOff",
    "FixedOff",
    "FreeShipping",
    "Bogo",
    "ConstructKind",
    "Promotion",
    "Coupon",
    "CouponDiscountType",
    "Combo",
    "ComboItem",
    "ComboType",
    "normalize_code",
    "Order",
    "OrderLine",
    "CustomerHistory",
    "PricedOrder",
    "PricedLine",
    "DiscountLine",
    "AppliedCombo",
    "ComboAllocation",
    "UsageCounter",
    "Redemption",
    "CompletedOrder",
]
