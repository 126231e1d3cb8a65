# Overview: Checkout error taxonomy shared by services and routes.

"""
Every business failure raised by the pricing, intent, settlement and refund
services derives from CheckoutError. Routes translate these into JSON with
the class-level http_status; anything else is an unexpected 500.
"""

from __future__ import annotations


class CheckoutError(Exception):
    """Base class for checkout failures."""

    http_status = 400
    code = "CHECKOUT_ERROR"
    retryable = False

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        payload = {"error": self.message, "code": self.code}
        if self.details:
            payload["details"] = self.details
        if self.retryable:
            payload["retryable"] = True
        return payload


class ValidationError(CheckoutError):
    """400-level input problem."""
    code = "VALIDATION_ERROR"


class NoItems(ValidationError):
    code = "NO_ITEMS"


class NotFound(CheckoutError):
    http_status = 404
    code = "NOT_FOUND"


class ProductNotFound(NotFound):
    code = "PRODUCT_NOT_FOUND"


class ProductUnavailable(CheckoutError):
    http_status = 409
    code = "PRODUCT_UNAVAILABLE"


class InsufficientStock(CheckoutError):
    http_status = 409
    code = "INSUFFICIENT_STOCK"


class CouponInvalid(CheckoutError):
    code = "COUPON_INVALID"


class CouponExhausted(CouponInvalid):
    http_status = 409
    code = "COUPON_EXHAUSTED"


class SignatureInvalid(CheckoutError):
    """Payment authenticity check failed. Audited, never retried."""
    code = "SIGNATURE_INVALID"


class PaymentDeclined(CheckoutError):
    http_status = 402
    code = "PAYMENT_DECLINED"


class PaymentPending(CheckoutError):
    """Gateway has not settled the payment yet; poll again later."""
    http_status = 202
    code = "PAYMENT_PENDING"
    retryable = True


class QuoteMismatch(CheckoutError):
    """Recomputed total no longer matches the amount captured by the gateway."""
    http_status = 409
    code = "QUOTE_MISMATCH"


class IntentClosed(CheckoutError):
    http_status = 409
    code = "INTENT_CLOSED"


class InvalidTransition(CheckoutError):
    http_status = 409
    code = "INVALID_TRANSITION"


class GatewayUnavailable(CheckoutError):
    http_status = 503
    code = "GATEWAY_UNAVAILABLE"
    retryable = True


class CommitConflict(CheckoutError):
    """Another worker already committed this payment reference."""
    http_status = 409
    code = "COMMIT_CONFLICT"

    def __init__(self, message: str, order_id: int | None = None):
        super().__init__(message, {"order_id": order_id} if order_id else None)
        self.order_id = order_id


class RefundFailed(CheckoutError):
    http_status = 502
    code = "REFUND_FAILED"


class AlreadyRefunded(RefundFailed):
    http_status = 409
    code = "ALREADY_REFUNDED"


# Failures that happen after a payment was verified but before the order
# could be written. The intent moves to FAILED when one of these surfaces.
SETTLEMENT_FATAL = (
    ProductNotFound,
    ProductUnavailable,
    InsufficientStock,
    CouponInvalid,
    QuoteMismatch,
    NoItems,
)
