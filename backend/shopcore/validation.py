"""
Request validation.

Routes turn raw JSON into typed, immutable request values here before
anything reaches a service; services never see untyped input.

Two layers:
- parse_* helpers: strict scalar coercion (integers reject floats,
  decimals and scientific notation)
- ModelValidationPolicy + validate_payload: column-metadata-driven
  validation for admin create/patch payloads
"""

from __future__ import annotations
from datetime import datetime
from shopcore.time_utils import parse_iso_datetime

import re
from dataclasses import dataclass
from typing import Any

from sqlalchemy import JSON, Boolean, Integer, String, Text, DateTime
from sqlalchemy.orm import DeclarativeMeta

from .errors import ValidationError


# Maximum money amount in minor units (999,999.999 KWD)
# This prevents database overflow issues and nonsensical prices
MAX_AMOUNT_MINOR = 999_999_999

COUPON_CODE_RE = re.compile(r"^[A-Za-z0-9_-]{3,20}$")
EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


# =============================================================================
# Scalar coercion
# =============================================================================

def parse_int(value: Any, field: str, *, minimum: int | None = None, maximum: int | None = None) -> int:
    # Already an int (but not bool which is a subclass of int)
    if isinstance(value, int) and not isinstance(value, bool):
        result = value
    # String input - must be plain digits (with optional leading minus)
    elif isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValidationError(f"{field} must be an integer")
        # Reject scientific notation (e.g., "1e15", "1E10")
        if 'e' in stripped.lower():
            raise ValidationError(f"{field} must be a plain integer (scientific notation not allowed)")
        # Reject decimal points (e.g., "12.5")
        if '.' in stripped:
            raise ValidationError(f"{field} must be an integer (no decimals)")
        try:
            result = int(stripped)
        except ValueError:
            raise ValidationError(f"{field} must be an integer")
    # Reject floats explicitly
    elif isinstance(value, float):
        raise ValidationError(f"{field} must be an integer, not a decimal")
    else:
        raise ValidationError(f"{field} must be an integer")

    if minimum is not None and result < minimum:
        raise ValidationError(f"{field} must be >= {minimum}")
    if maximum is not None and result > maximum:
        raise ValidationError(f"{field} must be <= {maximum}")
    return result


def parse_optional_int(value: Any, field: str, **kwargs) -> int | None:
    if value is None or value == "":
        return None
    return parse_int(value, field, **kwargs)


def parse_str(value: Any, field: str, *, required: bool = True, max_length: int | None = None) -> str | None:
    if value is None:
        if required:
            raise ValidationError(f"{field} is required")
        return None
    if not isinstance(value, (str, int)) or isinstance(value, bool):
        raise ValidationError(f"{field} must be a string")
    result = str(value).strip()
    if not result:
        if required:
            raise ValidationError(f"{field} cannot be blank")
        return None
    if max_length and len(result) > max_length:
        raise ValidationError(f"{field} exceeds max length {max_length}")
    return result


def parse_datetime(value: Any, field: str) -> datetime:
    if isinstance(value, datetime):
        return value
    if isinstance(value, str):
        try:
            dt = parse_iso_datetime(value)
        except ValueError:
            raise ValidationError(f"{field} must be an ISO-8601 datetime")
        if dt is not None:
            return dt
    raise ValidationError(f"{field} must be an ISO-8601 datetime")


def _require_object(payload: Any) -> dict:
    if payload is None:
        return {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")
    return payload


# =============================================================================
# Storefront request values
# =============================================================================

@dataclass(frozen=True)
class CartItemRequest:
    product_id: int
    quantity: int
    variant_key: str = ""


def parse_cart_item(payload: Any, *, product_id: int | None = None) -> CartItemRequest:
    """
    POST body {"product_id", "quantity", "variant_id"?} or, for PATCH, the
    product id from the URL plus {"quantity"}.
    """
    payload = _require_object(payload)
    if product_id is None:
        product_id = parse_int(payload.get("product_id"), "product_id", minimum=1)
    if "quantity" not in payload:
        raise ValidationError("quantity is required")
    quantity = parse_int(payload.get("quantity"), "quantity")
    variant_key = parse_str(payload.get("variant_id"), "variant_id", required=False, max_length=64) or ""
    return CartItemRequest(product_id=product_id, quantity=quantity, variant_key=variant_key)


@dataclass(frozen=True)
class SnapshotItem:
    product_id: int
    quantity: int
    price: int
    category_id: int | None = None


@dataclass(frozen=True)
class OrderSnapshot:
    """What a coupon is evaluated against. All amounts in minor units."""
    subtotal: int
    shipping_cost: int
    items: tuple[SnapshotItem, ...]
    customer_id: str | None = None
    customer_email: str | None = None


@dataclass(frozen=True)
class CustomerInfo:
    name: str
    email: str
    phone: str | None = None
    customer_id: str | None = None


@dataclass(frozen=True)
class RedirectUrls:
    success: str
    cancel: str
    failure: str


@dataclass(frozen=True)
class CouponValidateRequest:
    code: str
    customer_id: str | None = None
    customer_email: str | None = None


def parse_coupon_validate(payload: Any) -> CouponValidateRequest:
    payload = _require_object(payload)
    return CouponValidateRequest(
        code=parse_str(payload.get("code"), "code", max_length=32),
        customer_id=parse_str(payload.get("customer_id"), "customer_id", required=False, max_length=64),
        customer_email=parse_str(payload.get("customer_email"), "customer_email", required=False, max_length=255),
    )


@dataclass(frozen=True)
class CheckoutRequest:
    customer: CustomerInfo
    redirect_urls: RedirectUrls
    coupon_code: str | None = None


def parse_customer(payload: Any) -> CustomerInfo:
    payload = _require_object(payload)
    email = parse_str(payload.get("email"), "customer.email", max_length=255)
    if not EMAIL_RE.match(email):
        raise ValidationError("customer.email must be a valid email address")
    return CustomerInfo(
        name=parse_str(payload.get("name"), "customer.name", max_length=255),
        email=email.lower(),
        phone=parse_str(payload.get("phone"), "customer.phone", required=False, max_length=32),
        customer_id=parse_str(payload.get("customer_id"), "customer.customer_id", required=False, max_length=64),
    )


def parse_checkout(payload: Any, *, default_base_url: str) -> CheckoutRequest:
    """
    Checkout body:
        {"customer": {...}, "coupon_code"?: str,
         "redirect_urls"?: {"success", "cancel", "failure"}}
    Missing redirect URLs default to pages under default_base_url.
    """
    payload = _require_object(payload)
    urls = _require_object(payload.get("redirect_urls"))
    base = default_base_url.rstrip("/")
    redirect_urls = RedirectUrls(
        success=parse_str(urls.get("success"), "redirect_urls.success", required=False, max_length=1024)
        or f"{base}/checkout/success",
        cancel=parse_str(urls.get("cancel"), "redirect_urls.cancel", required=False, max_length=1024)
        or f"{base}/checkout/cancel",
        failure=parse_str(urls.get("failure"), "redirect_urls.failure", required=False, max_length=1024)
        or f"{base}/checkout/failure",
    )
    return CheckoutRequest(
        customer=parse_customer(payload.get("customer")),
        redirect_urls=redirect_urls,
        coupon_code=parse_str(payload.get("coupon_code"), "coupon_code", required=False, max_length=32),
    )


# =============================================================================
# Admin request values
# =============================================================================

@dataclass(frozen=True)
class MovementRequest:
    product_id: int
    type: str
    quantity_delta: int
    reason: str
    reference: str | None = None


def parse_movement(payload: Any) -> MovementRequest:
    payload = _require_object(payload)
    return MovementRequest(
        product_id=parse_int(payload.get("product_id"), "product_id", minimum=1),
        type=parse_str(payload.get("type"), "type", max_length=16).upper(),
        quantity_delta=parse_int(payload.get("quantity_delta"), "quantity_delta"),
        reason=parse_str(payload.get("reason"), "reason", max_length=255),
        reference=parse_str(payload.get("reference"), "reference", required=False, max_length=64),
    )


@dataclass(frozen=True)
class ModelValidationPolicy:
    """
    Central policy layer:
    - writable_fields: what clients are allowed to set (security boundary)
    - required_on_create: fields required for POST
    """
    writable_fields: set[str]
    required_on_create: set[str] = None  # type: ignore


def _columns_by_key(model: DeclarativeMeta) -> dict[str, Any]:
    mapper = model.__mapper__
    return {c.key: c for c in mapper.columns}


def _coerce_value(col, value: Any):
    coltype = col.type

    if value is None:
        return None

    if isinstance(coltype, Integer):
        return parse_int(value, col.key)

    # Booleans
    if isinstance(coltype, Boolean):
        if isinstance(value, bool):
            return value
        raise ValidationError(f"{col.key} must be a boolean")

    # Datetimes (accept ISO-8601 strings; normalize to UTC)
    if isinstance(coltype, DateTime):
        return parse_datetime(value, col.key)

    # JSON columns hold lists of ids
    if isinstance(coltype, JSON):
        if isinstance(value, list):
            return [parse_int(v, col.key) for v in value]
        if isinstance(value, dict):
            return value
        raise ValidationError(f"{col.key} must be a list or object")

    # Strings / Text
    if isinstance(coltype, (String, Text)):
        return str(value).strip()

    # Default: leave as-is
    return value


def validate_payload(
    *,
    model: DeclarativeMeta,
    payload: dict,
    policy: ModelValidationPolicy,
    partial: bool,
) -> dict:
    """
    Validates + normalizes incoming JSON against:
    - SQLAlchemy column metadata (nullable, type, String length)
    - a policy allowlist (writable_fields)
    - required_on_create (if partial=False)
    Returns a cleaned patch dict with only writable fields.

    partial=False: create semantics (enforce required_on_create)
    partial=True: patch semantics (validate only provided keys)
    """
    payload = _require_object(payload)

    required = policy.required_on_create or set()
    if not partial:
        missing = sorted(f for f in required if f not in payload)
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}")

    cols = _columns_by_key(model)

    # Reject unknown / non-writable fields
    for k in payload.keys():
        if k not in policy.writable_fields:
            raise ValidationError(f"Field not allowed: {k}")
        if k not in cols:
            raise ValidationError(f"Unknown field: {k}")

    patch: dict = {}

    for k, raw in payload.items():
        col = cols[k]

        # NULL handling
        if raw is None:
            if not col.nullable:
                raise ValidationError(f"{k} cannot be null")
            patch[k] = None
            continue

        val = _coerce_value(col, raw)

        # Blank string check for non-nullable text fields
        if isinstance(col.type, (String, Text)) and not col.nullable:
            if isinstance(val, str) and val == "":
                raise ValidationError(f"{k} cannot be blank")

        # Max length check for String(n)
        if isinstance(col.type, String) and col.type.length and isinstance(val, str):
            if len(val) > col.type.length:
                raise ValidationError(f"{k} exceeds max length {col.type.length}")

        patch[k] = val

    return patch


def enforce_rules_coupon(fields: dict) -> None:
    """
    Coupon business rules that column metadata cannot express.

    fields is the full resulting coupon state (existing values merged with
    the patch), so the same check serves create and update.
    """
    code = fields.get("code")
    if code is not None and not COUPON_CODE_RE.match(code):
        raise ValidationError("code must be 3-20 characters: letters, digits, '-' or '_'")

    coupon_type = fields.get("type")
    if coupon_type not in ("PERCENTAGE", "FIXED_AMOUNT", "FREE_SHIPPING"):
        raise ValidationError("type must be one of: FIXED_AMOUNT, FREE_SHIPPING, PERCENTAGE")

    value = fields.get("value")
    if value is None or value <= 0:
        raise ValidationError("value must be > 0")
    if coupon_type == "PERCENTAGE" and value > 100:
        raise ValidationError("PERCENTAGE value cannot exceed 100")
    if value > MAX_AMOUNT_MINOR:
        raise ValidationError(f"value cannot exceed {MAX_AMOUNT_MINOR}")

    if fields.get("maximum_discount_amount") is not None:
        if coupon_type != "PERCENTAGE":
            raise ValidationError("maximum_discount_amount is only allowed for PERCENTAGE coupons")
        if fields["maximum_discount_amount"] <= 0:
            raise ValidationError("maximum_discount_amount must be > 0")

    if fields.get("minimum_order_amount") is not None and fields["minimum_order_amount"] < 0:
        raise ValidationError("minimum_order_amount must be >= 0")

    if fields.get("usage_limit") is not None and fields["usage_limit"] < 1:
        raise ValidationError("usage_limit must be >= 1")

    valid_from = fields.get("valid_from")
    valid_until = fields.get("valid_until")
    if valid_from is not None and valid_until is not None and valid_until <= valid_from:
        raise ValidationError("valid_until must be after valid_from")

    restrictions = fields.get("customer_restrictions")
    if restrictions is not None:
        if not isinstance(restrictions, dict):
            raise ValidationError("customer_restrictions must be an object")
        unknown = set(restrictions) - {"customer_ids", "new_customers_only", "existing_customers_only"}
        if unknown:
            raise ValidationError(f"Unknown customer_restrictions keys: {', '.join(sorted(unknown))}")
        if restrictions.get("new_customers_only") and restrictions.get("existing_customers_only"):
            raise ValidationError("new_customers_only and existing_customers_only are mutually exclusive")
        ids = restrictions.get("customer_ids")
        if ids is not None and not isinstance(ids, list):
            raise ValidationError("customer_restrictions.customer_ids must be a list")
