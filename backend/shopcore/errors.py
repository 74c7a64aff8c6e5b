# Overview: Error taxonomy shared by services and routes.

"""
Every service failure carries a machine-readable ``code`` that routes return
verbatim; customers and providers never see raw exception text.

TAXONOMY:
- ValidationError: malformed input, rejected before touching state (400)
- NotFoundError: tenant/product/coupon/payment/order absent (404)
- ConflictError: business rule conflict, retry with fresh data (409)
- ProviderVerificationFailed: untrusted webhook, nothing applied (400)
- PaymentProviderError: provider unreachable or rejected the call (502)
"""

from __future__ import annotations


class CommerceError(Exception):
    """Base class for all domain errors."""

    code = "INTERNAL_ERROR"
    http_status = 500

    def __init__(self, message: str | None = None, *, code: str | None = None, details: dict | None = None):
        super().__init__(message or self.code)
        if code is not None:
            self.code = code
        self.details = details or {}

    def to_dict(self) -> dict:
        body = {"error": self.code}
        if self.details:
            body["details"] = self.details
        return body


class ValidationError(CommerceError, ValueError):
    """400-level input problem."""

    code = "VALIDATION_ERROR"
    http_status = 400

    def to_dict(self) -> dict:
        # Validation messages describe the caller's own input, so they are safe to echo
        body = super().to_dict()
        body["message"] = str(self)
        return body


class OrderTotalZero(ValidationError):
    """Discounts leave nothing to charge; a hosted checkout cannot start."""

    code = "ORDER_TOTAL_ZERO"


class NotFoundError(CommerceError):
    code = "NOT_FOUND"
    http_status = 404


class TenantNotFound(NotFoundError):
    code = "TENANT_NOT_FOUND"


class ProductUnavailable(NotFoundError):
    code = "PRODUCT_UNAVAILABLE"


class CartItemNotFound(NotFoundError):
    code = "CART_ITEM_NOT_FOUND"


class CouponNotFound(NotFoundError):
    code = "COUPON_NOT_FOUND"


class OrderNotFound(NotFoundError):
    code = "ORDER_NOT_FOUND"


class PaymentNotFound(NotFoundError):
    code = "PAYMENT_NOT_FOUND"


class AlertNotFound(NotFoundError):
    code = "ALERT_NOT_FOUND"


class ConflictError(CommerceError, ValueError):
    """409-level business rule conflict."""

    code = "CONFLICT"
    http_status = 409


class InvalidTransition(ConflictError):
    code = "INVALID_TRANSITION"

    def __init__(self, entity: str, current: str, target: str):
        super().__init__(
            f"{entity} cannot move from {current} to {target}",
            details={"entity": entity, "from": current, "to": target},
        )


class CouponRaceLost(ConflictError):
    """The coupon's last slot was claimed between validation and checkout."""

    code = "COUPON_RACE_LOST"


class CouponRejected(ConflictError):
    """Checkout was attempted with a coupon that fails validation."""

    code = "COUPON_REJECTED"

    def __init__(self, reason: str):
        super().__init__(reason, details={"reason": reason})
        self.reason = reason


class CouponCodeTaken(ConflictError):
    code = "COUPON_CODE_TAKEN"


class CartEmpty(ConflictError):
    code = "CART_EMPTY"


class PaymentNotConfigured(ConflictError):
    code = "PAYMENT_NOT_CONFIGURED"


class InsufficientStock(ConflictError):
    code = "INSUFFICIENT_STOCK"


class ProviderVerificationFailed(CommerceError):
    code = "WEBHOOK_VERIFICATION_FAILED"
    http_status = 400


class PaymentProviderError(CommerceError):
    """Provider call failed; checkout callers only see a generic retry message."""

    code = "PAYMENT_NOT_STARTED"
    http_status = 502
