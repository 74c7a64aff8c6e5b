from __future__ import annotations

from ..extensions import db
from shopcore.time_utils import to_utc_z


COUPON_PERCENTAGE = "PERCENTAGE"
COUPON_FIXED_AMOUNT = "FIXED_AMOUNT"
COUPON_FREE_SHIPPING = "FREE_SHIPPING"
COUPON_TYPES = (COUPON_PERCENTAGE, COUPON_FIXED_AMOUNT, COUPON_FREE_SHIPPING)


class Coupon(db.Model):
    """
    Tenant coupon.

    value: whole percent (0-100] for PERCENTAGE, minor units for FIXED_AMOUNT,
    ignored for FREE_SHIPPING.

    USAGE COUNTERS:
    - usage_count: confirmed redemptions; only ever incremented
    - reserved_count: slots held by PENDING orders; claimed at checkout,
      converted to a redemption on confirmation or released on failure
    Both are changed with conditional UPDATE statements only (see
    coupon_service), never read-modify-write.
    """
    __tablename__ = "coupons"
    __table_args__ = (
        # Codes are case-insensitive: uniqueness is on the upper-cased form
        db.UniqueConstraint("tenant_id", "code_normalized", name="uq_coupons_tenant_code"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)

    code = db.Column(db.String(32), nullable=False)
    code_normalized = db.Column(db.String(32), nullable=False)
    name = db.Column(db.String(100), nullable=False)
    description = db.Column(db.Text, nullable=True)

    type = db.Column(db.String(16), nullable=False)
    value = db.Column(db.Integer, nullable=False)
    minimum_order_amount = db.Column(db.Integer, nullable=True)
    maximum_discount_amount = db.Column(db.Integer, nullable=True)  # PERCENTAGE only

    usage_limit = db.Column(db.Integer, nullable=True)
    usage_count = db.Column(db.Integer, nullable=False, default=0)
    reserved_count = db.Column(db.Integer, nullable=False, default=0)

    valid_from = db.Column(db.DateTime(timezone=True), nullable=False)
    valid_until = db.Column(db.DateTime(timezone=True), nullable=False)

    applicable_product_ids = db.Column(db.JSON, nullable=True)
    applicable_category_ids = db.Column(db.JSON, nullable=True)
    # {"customer_ids": [...], "new_customers_only": bool, "existing_customers_only": bool}
    customer_restrictions = db.Column(db.JSON, nullable=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)

    created_by = db.Column(db.String(64), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    version_id = db.Column(db.Integer, nullable=False, default=1)
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "code": self.code,
            "name": self.name,
            "description": self.description,
            "type": self.type,
            "value": self.value,
            "minimum_order_amount": self.minimum_order_amount,
            "maximum_discount_amount": self.maximum_discount_amount,
            "usage_limit": self.usage_limit,
            "usage_count": self.usage_count,
            "reserved_count": self.reserved_count,
            "valid_from": to_utc_z(self.valid_from),
            "valid_until": to_utc_z(self.valid_until),
            "applicable_product_ids": self.applicable_product_ids,
            "applicable_category_ids": self.applicable_category_ids,
            "customer_restrictions": self.customer_restrictions,
            "is_active": self.is_active,
            "created_by": self.created_by,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class CouponRedemption(db.Model):
    """
    Append-only record of a confirmed coupon use.

    One row per (coupon, order): a replayed confirmation can never redeem
    the same order twice.
    """
    __tablename__ = "coupon_redemptions"
    __table_args__ = (
        db.UniqueConstraint("coupon_id", "order_id", name="uq_coupon_redemptions_coupon_order"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)
    coupon_id = db.Column(db.Integer, db.ForeignKey("coupons.id"), nullable=False, index=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    customer_id = db.Column(db.String(64), nullable=True)
    discount_amount = db.Column(db.Integer, nullable=False)
    redeemed_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    coupon = db.relationship("Coupon", backref=db.backref("redemptions", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "coupon_id": self.coupon_id,
            "order_id": self.order_id,
            "customer_id": self.customer_id,
            "discount_amount": self.discount_amount,
            "redeemed_at": to_utc_z(self.redeemed_at),
        }
