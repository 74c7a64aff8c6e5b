# Overview: Coupon validation, admin management and race-free redemption.

"""
Coupon Service

VALIDATION ORDER (first failure wins):
1. COUPON_NOT_FOUND        unknown code, inactive, or another tenant's
2. COUPON_NOT_YET_VALID / COUPON_EXPIRED
3. USAGE_LIMIT_REACHED     usage_count >= usage_limit
4. MINIMUM_NOT_MET
5. NOT_APPLICABLE          product/category lists set, no line matches
6. CUSTOMER_RESTRICTED

REDEMPTION:
Validation never changes counters. A capped coupon is reserved when the
order is created (reserve_coupon) with a conditional UPDATE that only
succeeds while usage_count + reserved_count < usage_limit. Confirmation
converts the reservation (redeem_coupon); failure or expiry releases it
(release_coupon). usage_count is never decremented.
"""

from __future__ import annotations

from dataclasses import dataclass

from flask import current_app
from sqlalchemy import case, func, or_, update
from sqlalchemy.exc import IntegrityError

from ..errors import CouponCodeTaken, CouponNotFound, CouponRaceLost, ValidationError
from ..extensions import db
from ..models import Coupon, CouponRedemption, Order
from ..models.coupons import COUPON_FIXED_AMOUNT, COUPON_FREE_SHIPPING, COUPON_PERCENTAGE
from ..models.orders import (
    ORDER_CONFIRMED,
    ORDER_DELIVERED,
    ORDER_PROCESSING,
    ORDER_REFUNDED,
    ORDER_SHIPPED,
)
from ..time_utils import to_utc_naive, utcnow
from ..validation import OrderSnapshot, enforce_rules_coupon
from .audit_service import append_audit_event
from .concurrency import run_with_retry
from .tenant_service import scoped_query


REASON_NOT_FOUND = "COUPON_NOT_FOUND"
REASON_NOT_YET_VALID = "COUPON_NOT_YET_VALID"
REASON_EXPIRED = "COUPON_EXPIRED"
REASON_USAGE_LIMIT = "USAGE_LIMIT_REACHED"
REASON_MINIMUM = "MINIMUM_NOT_MET"
REASON_NOT_APPLICABLE = "NOT_APPLICABLE"
REASON_CUSTOMER = "CUSTOMER_RESTRICTED"

# Orders that make a customer an "existing" customer
_PLACED_ORDER_STATUSES = (ORDER_CONFIRMED, ORDER_PROCESSING, ORDER_SHIPPED, ORDER_DELIVERED, ORDER_REFUNDED)


@dataclass(frozen=True)
class CouponValidation:
    valid: bool
    coupon: Coupon | None = None
    discount_amount: int = 0
    reason: str | None = None

    def to_dict(self) -> dict:
        body = {"valid": self.valid, "discount_amount": self.discount_amount}
        if self.reason:
            body["reason"] = self.reason
        if self.coupon is not None:
            body["code"] = self.coupon.code
            body["type"] = self.coupon.type
        return body


def normalize_code(code: str) -> str:
    return (code or "").strip().upper()


def _reject(reason: str) -> CouponValidation:
    return CouponValidation(valid=False, reason=reason)


def find_coupon(tenant_id: int, code: str) -> Coupon | None:
    return (
        scoped_query(Coupon, tenant_id)
        .filter(Coupon.code_normalized == normalize_code(code))
        .first()
    )


def compute_discount(coupon: Coupon, snapshot: OrderSnapshot) -> int:
    """
    Discount in minor units, never more than what it discounts.

    PERCENTAGE rounds half up in integer arithmetic.
    """
    if coupon.type == COUPON_PERCENTAGE:
        discount = (snapshot.subtotal * coupon.value + 50) // 100
        if coupon.maximum_discount_amount is not None:
            discount = min(discount, coupon.maximum_discount_amount)
        return min(discount, snapshot.subtotal)
    if coupon.type == COUPON_FIXED_AMOUNT:
        return min(coupon.value, snapshot.subtotal)
    if coupon.type == COUPON_FREE_SHIPPING:
        return snapshot.shipping_cost
    return 0


def _has_placed_orders(tenant_id: int, snapshot: OrderSnapshot) -> bool:
    identity = []
    if snapshot.customer_id:
        identity.append(Order.customer_id == snapshot.customer_id)
    if snapshot.customer_email:
        identity.append(func.lower(Order.customer_email) == snapshot.customer_email.lower())
    if not identity:
        return False
    query = scoped_query(Order, tenant_id).filter(
        Order.status.in_(_PLACED_ORDER_STATUSES),
        or_(*identity),
    )
    return db.session.query(query.exists()).scalar()


def _customer_allowed(tenant_id: int, coupon: Coupon, snapshot: OrderSnapshot) -> bool:
    restrictions = coupon.customer_restrictions or {}
    allowed_ids = restrictions.get("customer_ids") or []
    if allowed_ids and snapshot.customer_id not in {str(cid) for cid in allowed_ids}:
        return False
    if restrictions.get("new_customers_only") and _has_placed_orders(tenant_id, snapshot):
        return False
    if restrictions.get("existing_customers_only") and not _has_placed_orders(tenant_id, snapshot):
        return False
    return True


def _applies_to_items(coupon: Coupon, snapshot: OrderSnapshot) -> bool:
    product_ids = {int(pid) for pid in (coupon.applicable_product_ids or [])}
    category_ids = {int(cid) for cid in (coupon.applicable_category_ids or [])}
    if not product_ids and not category_ids:
        return True
    for item in snapshot.items:
        if item.product_id in product_ids:
            return True
        if item.category_id is not None and item.category_id in category_ids:
            return True
    return False


def validate_coupon(tenant_id: int, code: str, snapshot: OrderSnapshot, *, now=None) -> CouponValidation:
    """Evaluate a code against an order snapshot. Read-only."""
    coupon = find_coupon(tenant_id, code)
    if coupon is None or not coupon.is_active:
        return _reject(REASON_NOT_FOUND)

    now = now or utcnow()
    if now < to_utc_naive(coupon.valid_from):
        return _reject(REASON_NOT_YET_VALID)
    if now > to_utc_naive(coupon.valid_until):
        return _reject(REASON_EXPIRED)

    if coupon.usage_limit is not None and coupon.usage_count >= coupon.usage_limit:
        return _reject(REASON_USAGE_LIMIT)

    if coupon.minimum_order_amount is not None and snapshot.subtotal < coupon.minimum_order_amount:
        return _reject(REASON_MINIMUM)

    if not _applies_to_items(coupon, snapshot):
        return _reject(REASON_NOT_APPLICABLE)

    if not _customer_allowed(tenant_id, coupon, snapshot):
        return _reject(REASON_CUSTOMER)

    return CouponValidation(valid=True, coupon=coupon, discount_amount=compute_discount(coupon, snapshot))


# =============================================================================
# Reservation / redemption (run inside the caller's transaction)
# =============================================================================

def reserve_coupon(tenant_id: int, coupon_id: int) -> None:
    """
    Claim one usage slot for a PENDING order.

    Uncapped coupons need no slot. For capped ones the conditional UPDATE
    is the only guard: concurrent checkouts cannot jointly exceed the cap.

    Raises:
        CouponRaceLost if the last slot is already taken
    """
    stmt = (
        update(Coupon)
        .where(
            Coupon.id == coupon_id,
            Coupon.tenant_id == tenant_id,
            Coupon.is_active.is_(True),
            or_(
                Coupon.usage_limit.is_(None),
                Coupon.usage_count + Coupon.reserved_count < Coupon.usage_limit,
            ),
        )
        .values(
            reserved_count=Coupon.reserved_count + 1,
            version_id=Coupon.version_id + 1,
        )
        .execution_options(synchronize_session=False)
    )
    result = db.session.execute(stmt)
    if result.rowcount != 1:
        raise CouponRaceLost("Coupon is no longer available")


def redeem_coupon(tenant_id: int, order: Order) -> bool:
    """
    Convert the order's reservation into a redemption.

    Idempotent per order: the CouponRedemption unique key rejects a second
    redemption, in which case counters are left untouched. Returns True when
    a redemption was recorded.
    """
    if not order.coupon_id:
        return False

    redemption = CouponRedemption(
        tenant_id=tenant_id,
        coupon_id=order.coupon_id,
        order_id=order.id,
        customer_id=order.customer_id,
        discount_amount=order.discount,
    )
    try:
        with db.session.begin_nested():
            db.session.add(redemption)
    except IntegrityError:
        return False

    stmt = (
        update(Coupon)
        .where(Coupon.id == order.coupon_id, Coupon.tenant_id == tenant_id)
        .values(
            usage_count=Coupon.usage_count + 1,
            reserved_count=case((Coupon.reserved_count > 0, Coupon.reserved_count - 1), else_=0),
            version_id=Coupon.version_id + 1,
        )
        .execution_options(synchronize_session=False)
    )
    db.session.execute(stmt)
    return True


def release_coupon(tenant_id: int, order: Order) -> None:
    """Give back the slot held by a PENDING order that will never confirm."""
    if not order.coupon_id:
        return
    stmt = (
        update(Coupon)
        .where(
            Coupon.id == order.coupon_id,
            Coupon.tenant_id == tenant_id,
            Coupon.reserved_count > 0,
        )
        .values(
            reserved_count=Coupon.reserved_count - 1,
            version_id=Coupon.version_id + 1,
        )
        .execution_options(synchronize_session=False)
    )
    db.session.execute(stmt)


# =============================================================================
# Admin management
# =============================================================================

def _apply_code(coupon: Coupon, code: str) -> None:
    coupon.code = code.strip()
    coupon.code_normalized = normalize_code(code)


def create_coupon(tenant_id: int, fields: dict, *, actor_id: str) -> Coupon:
    """
    Create a coupon from validated fields (see validation.validate_payload).

    Raises:
        ValidationError on business rule violations
        CouponCodeTaken if the code exists for this tenant (any case)
    """
    fields = dict(fields)
    for required in ("code", "type", "value", "valid_from", "valid_until"):
        if fields.get(required) is None:
            raise ValidationError(f"{required} is required")
    fields.setdefault("name", fields["code"])
    fields.setdefault("is_active", True)
    enforce_rules_coupon(fields)

    coupon = Coupon(tenant_id=tenant_id, created_by=str(actor_id), usage_count=0, reserved_count=0)
    for key, value in fields.items():
        if key == "code":
            _apply_code(coupon, value)
        else:
            setattr(coupon, key, value)

    try:
        with db.session.begin_nested():
            db.session.add(coupon)
    except IntegrityError:
        db.session.rollback()
        raise CouponCodeTaken(f"Coupon code already exists: {fields.get('code')}")

    append_audit_event(
        tenant_id=tenant_id,
        actor=actor_id,
        action="COUPON_CREATED",
        target_type="coupon",
        target_id=coupon.id,
        meta={"code": coupon.code, "type": coupon.type, "value": coupon.value},
    )
    db.session.commit()
    return coupon


def get_coupon(tenant_id: int, coupon_id: int) -> Coupon:
    coupon = scoped_query(Coupon, tenant_id).filter(Coupon.id == coupon_id).first()
    if coupon is None:
        raise CouponNotFound("Coupon not found")
    return coupon


def list_coupons(tenant_id: int, *, is_active: bool | None = None, coupon_type: str | None = None) -> list[Coupon]:
    """Newest first, optionally filtered by active flag and type."""
    query = scoped_query(Coupon, tenant_id)
    if is_active is not None:
        query = query.filter(Coupon.is_active.is_(is_active))
    if coupon_type:
        query = query.filter(Coupon.type == coupon_type.upper())
    return query.order_by(Coupon.created_at.desc(), Coupon.id.desc()).all()


def update_coupon(tenant_id: int, coupon_id: int, patch: dict, *, actor_id: str) -> Coupon:
    """
    Patch a coupon. Counters are never writable; the merged state is
    re-checked against the creation rules.
    """
    def _op() -> Coupon:
        coupon = get_coupon(tenant_id, coupon_id)
        merged = {
            "code": coupon.code,
            "type": coupon.type,
            "value": coupon.value,
            "minimum_order_amount": coupon.minimum_order_amount,
            "maximum_discount_amount": coupon.maximum_discount_amount,
            "usage_limit": coupon.usage_limit,
            "valid_from": coupon.valid_from,
            "valid_until": coupon.valid_until,
            "customer_restrictions": coupon.customer_restrictions,
        }
        merged.update(patch)
        enforce_rules_coupon(merged)

        for key, value in patch.items():
            if key == "code":
                _apply_code(coupon, value)
            else:
                setattr(coupon, key, value)

        try:
            with db.session.begin_nested():
                db.session.flush()
        except IntegrityError:
            db.session.rollback()
            raise CouponCodeTaken(f"Coupon code already exists: {patch.get('code')}")

        append_audit_event(
            tenant_id=tenant_id,
            actor=actor_id,
            action="COUPON_UPDATED",
            target_type="coupon",
            target_id=coupon.id,
            meta={"fields": sorted(patch.keys())},
        )
        db.session.commit()
        return coupon

    return run_with_retry(_op)


def deactivate_coupon(tenant_id: int, coupon_id: int, *, actor_id: str) -> Coupon:
    """Soft delete: coupons are referenced by orders and are never removed."""
    def _op() -> Coupon:
        coupon = get_coupon(tenant_id, coupon_id)
        if coupon.is_active:
            coupon.is_active = False
            append_audit_event(
                tenant_id=tenant_id,
                actor=actor_id,
                action="COUPON_DEACTIVATED",
                target_type="coupon",
                target_id=coupon.id,
                meta={"code": coupon.code},
            )
        db.session.commit()
        return coupon

    return run_with_retry(_op)


def get_coupon_analytics(tenant_id: int, *, top: int = 5) -> dict:
    """Totals from the redemption ledger, not from coupon values."""
    total_coupons = scoped_query(Coupon, tenant_id).count()
    active_coupons = scoped_query(Coupon, tenant_id).filter(Coupon.is_active.is_(True)).count()

    totals = (
        scoped_query(CouponRedemption, tenant_id)
        .with_entities(
            func.count(CouponRedemption.id),
            func.coalesce(func.sum(CouponRedemption.discount_amount), 0),
        )
        .one()
    )

    top_rows = (
        db.session.query(
            Coupon.id,
            Coupon.code,
            func.count(CouponRedemption.id).label("usage_count"),
            func.coalesce(func.sum(CouponRedemption.discount_amount), 0).label("discount_given"),
        )
        .join(CouponRedemption, CouponRedemption.coupon_id == Coupon.id)
        .filter(Coupon.tenant_id == tenant_id)
        .group_by(Coupon.id, Coupon.code)
        .order_by(func.count(CouponRedemption.id).desc(), Coupon.id.asc())
        .limit(top)
        .all()
    )

    current_app.logger.debug("Coupon analytics computed for tenant %s", tenant_id)
    return {
        "total_coupons": total_coupons,
        "active_coupons": active_coupons,
        "total_usage": int(totals[0] or 0),
        "total_discount_given": int(totals[1] or 0),
        "top_coupons": [
            {
                "coupon_id": row.id,
                "code": row.code,
                "usage_count": int(row.usage_count),
                "discount_given": int(row.discount_given),
            }
            for row in top_rows
        ],
    }
