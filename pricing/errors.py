# --- pricing/errors.py ---
"""
Error taxonomy of the pricing engine.

CouponValidationError subclasses are meant to reach the shopper verbatim,
ConfigurationError marks a single malformed rule (excluded, never fatal for
checkout) and ConcurrencyError signals a lost usage-counter race.
"""


class PricingError(Exception):
    """Base class for every error raised by the pricing package."""


class ConfigurationError(PricingError):
    def __init__(self, message: str, construct_id: str | None = None):
        self.construct_id = construct_id
        if construct_id:
            message = f"{construct_id}: {message}"
        super().__init__(message)


class ConcurrencyError(PricingError):
    def __init__(self, key, expected: int):
        self.key = key
        self.expected = expected
        super().__init__(f"usage counter {key} moved away from {expected}")


class CouponValidationError(PricingError):
    code = "COUPON_INVALID"
    default_message = "This coupon cannot be used."

    def __init__(self, message: str | None = None, coupon_code: str | None = None):
        self.coupon_code = coupon_code
        self.message = message or self.default_message
        super().__init__(self.message)

    def as_api(self):
        return {"code": self.code, "message": self.message, "coupon": self.coupon_code}


class CouponInactive(CouponValidationError):
    code = "COUPON_INACTIVE"
    default_message = "This coupon is not active."


class CouponExpired(CouponValidationError):
    code = "COUPON_EXPIRED"
    default_message = "This coupon is not valid at this time."


class MinOrderNotMet(CouponValidationError):
    code = "MIN_ORDER_NOT_MET"
    default_message = "Order subtotal is below the coupon minimum."


class MinQuantityNotMet(CouponValidationError):
    code = "MIN_QUANTITY_NOT_MET"
    default_message = "Order does not contain enough items for this coupon."


class UsageExhausted(CouponValidationError):
    code = "USAGE_EXHAUSTED"
    default_message = "This coupon has reached its usage limit."


class PerUserLimitExceeded(CouponValidationError):
    code = "PER_USER_LIMIT_EXCEEDED"
    default_message = "You have already used this coupon the maximum number of times."


class NotFirstOrder(CouponValidationError):
    code = "NOT_FIRST_ORDER"
    default_message = "This coupon is only valid on a first order."


class CustomerNotEligible(CouponValidationError):
    code = "CUSTOMER_NOT_ELIGIBLE"
    default_message = "This coupon is not available for your account."


class CouponNotApplicable(CouponValidationError):
    code = "NOT_APPLICABLE"
    default_message = "This coupon does not apply to any item in your order."
