from .pricing_service import price_order
from .usage_service import complete_order, record_usage, claim_usage, CompletionResult, UsageReceipt
from .usage_store import MemoryUsageStore, SqlUsageStore, UsageStore, usage_store_for
from .coupon_service import validate_coupon
from .rule_loader import load_rules, load_promotions, load_combos, load_coupons, RuleSet

__all__ = [
    "price_order",
    "complete_order",
    "record_usage",
    "claim_usage",
    "CompletionResult",
    "UsageReceipt",
    "MemoryUsageStore",
    "SqlUsageStore",
    "UsageStore",
    "usage_store_for",
    "validate_coupon",
    "load_rules",
    "load_promotions",
    "load_combos",
    "load_coupons",
    "RuleSet",
]
