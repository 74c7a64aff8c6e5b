from __future__ import annotations

from ..extensions import db
from shopcore.time_utils import to_utc_z, utcnow


# Order lifecycle
ORDER_PENDING = "PENDING"
ORDER_CONFIRMED = "CONFIRMED"
ORDER_PROCESSING = "PROCESSING"
ORDER_SHIPPED = "SHIPPED"
ORDER_DELIVERED = "DELIVERED"
ORDER_CANCELLED = "CANCELLED"
ORDER_REFUNDED = "REFUNDED"

# Payment lifecycle
PAYMENT_PENDING = "PENDING"
PAYMENT_SUCCEEDED = "SUCCEEDED"
PAYMENT_FAILED = "FAILED"
PAYMENT_TERMINAL_STATUSES = (PAYMENT_SUCCEEDED, PAYMENT_FAILED)


class Order(db.Model):
    """
    Storefront order.

    WHY: The customer-visible record of a checkout. Every money field is an
    integer in minor units of `currency` and is fixed at creation time.

    LIFECYCLE:
    - PENDING: created at checkout, awaiting provider webhook
    - CONFIRMED: payment succeeded, stock debited, coupon redeemed
    - PROCESSING / SHIPPED / DELIVERED: fulfilment (admin driven)
    - CANCELLED: payment failed, expired, or cancelled before shipping
    - REFUNDED: reversed after confirmation

    The customer fields are a snapshot, not a live reference.
    """
    __tablename__ = "orders"
    __table_args__ = (
        db.UniqueConstraint("tenant_id", "order_number", name="uq_orders_tenant_number"),
        db.Index("ix_orders_tenant_status", "tenant_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)
    order_number = db.Column(db.String(32), nullable=False)
    status = db.Column(db.String(16), nullable=False, default=ORDER_PENDING)

    # Customer snapshot
    customer_id = db.Column(db.String(64), nullable=True, index=True)
    customer_name = db.Column(db.String(255), nullable=False)
    customer_email = db.Column(db.String(255), nullable=False)
    customer_phone = db.Column(db.String(32), nullable=True)

    coupon_id = db.Column(db.Integer, db.ForeignKey("coupons.id"), nullable=True, index=True)
    coupon_code = db.Column(db.String(32), nullable=True)

    subtotal = db.Column(db.Integer, nullable=False)
    discount = db.Column(db.Integer, nullable=False, default=0)
    tax = db.Column(db.Integer, nullable=False, default=0)
    shipping = db.Column(db.Integer, nullable=False, default=0)
    total = db.Column(db.Integer, nullable=False)
    currency = db.Column(db.String(3), nullable=False)

    # True once SALE movements have been written (confirmation)
    stock_debited = db.Column(db.Boolean, nullable=False, default=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, server_default=db.func.now(), index=True)
    confirmed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    version_id = db.Column(db.Integer, nullable=False, default=1)

    items = db.relationship("OrderItem", backref="order", lazy=True, order_by="OrderItem.line_number")
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self, include_items: bool = True) -> dict:
        data = {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "order_number": self.order_number,
            "status": self.status,
            "customer_id": self.customer_id,
            "customer_name": self.customer_name,
            "customer_email": self.customer_email,
            "customer_phone": self.customer_phone,
            "coupon_code": self.coupon_code,
            "subtotal": self.subtotal,
            "discount": self.discount,
            "tax": self.tax,
            "shipping": self.shipping,
            "total": self.total,
            "currency": self.currency,
            "created_at": to_utc_z(self.created_at),
            "confirmed_at": to_utc_z(self.confirmed_at),
            "cancelled_at": to_utc_z(self.cancelled_at),
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
        return data

    def to_customer_dict(self) -> dict:
        """Customer-safe view: no internal ids, flags or coupon linkage."""
        return {
            "order_number": self.order_number,
            "status": self.status,
            "subtotal": self.subtotal,
            "discount": self.discount,
            "tax": self.tax,
            "shipping": self.shipping,
            "total": self.total,
            "currency": self.currency,
            "created_at": to_utc_z(self.created_at),
            "items": [
                {
                    "title": item.name_snapshot,
                    "price_minor": item.price_snapshot,
                    "quantity": item.quantity,
                    "line_total": item.line_total,
                }
                for item in self.items
            ],
        }


class OrderItem(db.Model):
    """Order line; name and price are snapshotted from the cart."""
    __tablename__ = "order_items"
    __table_args__ = (
        db.UniqueConstraint("order_id", "line_number", name="uq_order_items_order_line"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)
    line_number = db.Column(db.Integer, nullable=False)

    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    variant_key = db.Column(db.String(64), nullable=False, default="")
    name_snapshot = db.Column(db.String(255), nullable=False)
    price_snapshot = db.Column(db.Integer, nullable=False)
    quantity = db.Column(db.Integer, nullable=False)
    line_total = db.Column(db.Integer, nullable=False)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "line_number": self.line_number,
            "product_id": self.product_id,
            "variant_id": self.variant_key or None,
            "name": self.name_snapshot,
            "price": self.price_snapshot,
            "quantity": self.quantity,
            "line_total": self.line_total,
        }


class Payment(db.Model):
    """
    Hosted-checkout payment attempt.

    IDEMPOTENCY: (provider, external_id) is unique. external_id is the
    provider's transaction id and the key for every webhook lookup; it is
    NULL only between order creation and the provider's checkout response.

    PENDING -> SUCCEEDED | FAILED. Both outcomes are terminal.
    """
    __tablename__ = "payments"
    __table_args__ = (
        db.UniqueConstraint("provider", "external_id", name="uq_payments_provider_external"),
        db.Index("ix_payments_tenant_status", "tenant_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=True, index=True)

    provider = db.Column(db.String(16), nullable=False)
    external_id = db.Column(db.String(128), nullable=True)
    redirect_url = db.Column(db.String(1024), nullable=True)

    status = db.Column(db.String(16), nullable=False, default=PAYMENT_PENDING)
    amount_minor = db.Column(db.Integer, nullable=False)
    currency = db.Column(db.String(3), nullable=False)

    # Last provider payload (checkout response or verified webhook body)
    raw_payload = db.Column(db.JSON, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, server_default=db.func.now(), index=True)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    order = db.relationship("Order", backref=db.backref("payments", lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def is_terminal(self) -> bool:
        return self.status in PAYMENT_TERMINAL_STATUSES

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "order_id": self.order_id,
            "provider": self.provider,
            "external_id": self.external_id,
            "status": self.status,
            "amount_minor": self.amount_minor,
            "currency": self.currency,
            "created_at": to_utc_z(self.created_at),
            "completed_at": to_utc_z(self.completed_at),
        }


class WebhookEvent(db.Model):
    """
    Inbound provider call log.

    IMMUTABLE: Never update or delete. Every delivery gets a row, including
    ones that fail verification or processing (processed=False).

    outcome: APPLIED_SUCCEEDED, APPLIED_FAILED, NO_CHANGE, IGNORED_TERMINAL,
    VERIFICATION_FAILED, UNKNOWN_PAYMENT, UNKNOWN_PROVIDER, ERROR.
    """
    __tablename__ = "webhook_events"
    __table_args__ = (
        db.Index("ix_webhook_events_provider_external", "provider", "external_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    provider = db.Column(db.String(16), nullable=False)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=True, index=True)
    external_id = db.Column(db.String(128), nullable=True)

    raw_body = db.Column(db.Text, nullable=False)
    headers = db.Column(db.JSON, nullable=True)

    processed = db.Column(db.Boolean, nullable=False, default=False)
    outcome = db.Column(db.String(32), nullable=True)
    error = db.Column(db.String(255), nullable=True)

    received_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, server_default=db.func.now(), index=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "provider": self.provider,
            "tenant_id": self.tenant_id,
            "external_id": self.external_id,
            "processed": self.processed,
            "outcome": self.outcome,
            "error": self.error,
            "received_at": to_utc_z(self.received_at),
        }
