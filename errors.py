"""
Error taxonomy for the storefront.

Every error raised by the core carries the HTTP status it maps to, a short
machine-readable ``code`` and an optional dict of extra fields that the API
layer merges into the JSON body (for example ``attempts_remaining``).
"""

from typing import Any, Dict, Optional


class StoreError(Exception):
    status_code = 500
    code = "internal_error"

    def __init__(self, message: str, extra: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.extra = extra or {}

    def to_dict(self) -> Dict[str, Any]:
        return {"detail": self.message, "error": self.code, **self.extra}


# Validation
class ValidationFailed(StoreError):
    status_code = 400
    code = "validation_failed"


# Integrity
class ProductUnavailable(StoreError):
    status_code = 400
    code = "product_unavailable"


class SizeUnavailable(StoreError):
    status_code = 400
    code = "size_unavailable"


class InsufficientStock(StoreError):
    status_code = 400
    code = "insufficient_stock"


class CouponInvalid(StoreError):
    status_code = 400
    code = "coupon_invalid"


class CouponExhausted(StoreError):
    status_code = 400
    code = "coupon_exhausted"


class CouponMinimumNotMet(StoreError):
    status_code = 400
    code = "coupon_minimum_not_met"


# Not found
class OrderNotFound(StoreError):
    status_code = 404
    code = "order_not_found"


class ProductNotFound(StoreError):
    status_code = 404
    code = "product_not_found"


class CouponNotFound(StoreError):
    status_code = 404
    code = "coupon_not_found"


# External dependencies
class PaymentGatewayUnavailable(StoreError):
    status_code = 502
    code = "payment_gateway_unavailable"


class EmailDeliveryFailed(StoreError):
    status_code = 502
    code = "email_delivery_failed"


class ShippingQuoteUnavailable(StoreError):
    status_code = 502
    code = "shipping_quote_unavailable"


class PersistenceError(StoreError):
    status_code = 500
    code = "persistence_error"


# Authorization
class NotAuthorized(StoreError):
    status_code = 401
    code = "not_authorized"

    def __init__(self, status_code: int = 401):
        super().__init__("Not authorized")
        self.status_code = status_code


class MfaRequired(StoreError):
    status_code = 403
    code = "mfa_required"


class CodeExpiredOrMissing(StoreError):
    status_code = 401
    code = "code_expired_or_missing"


class TooManyAttempts(StoreError):
    status_code = 429
    code = "too_many_attempts"


class IncorrectCode(StoreError):
    status_code = 401
    code = "incorrect_code"

    def __init__(self, attempts_remaining: int):
        super().__init__("Incorrect code", {"attempts_remaining": attempts_remaining})
        self.attempts_remaining = attempts_remaining
