from __future__ import annotations

from ..extensions import db
from shopcore.time_utils import to_utc_z, utcnow


MOVEMENT_RECEIVE = "RECEIVE"
MOVEMENT_SALE = "SALE"
MOVEMENT_RETURN = "RETURN"
MOVEMENT_ADJUSTMENT = "ADJUSTMENT"
MOVEMENT_TYPES = (MOVEMENT_RECEIVE, MOVEMENT_SALE, MOVEMENT_RETURN, MOVEMENT_ADJUSTMENT)

ALERT_LOW_STOCK = "LOW_STOCK"
ALERT_OUT_OF_STOCK = "OUT_OF_STOCK"

SEVERITY_MEDIUM = "MEDIUM"
SEVERITY_HIGH = "HIGH"
SEVERITY_CRITICAL = "CRITICAL"
SEVERITY_RANK = {SEVERITY_CRITICAL: 0, SEVERITY_HIGH: 1, SEVERITY_MEDIUM: 2}


class StockMovement(db.Model):
    """
    Append-only inventory ledger row.

    Current stock for a product is SUM(quantity_delta); there is no stored
    counter. Rows are never updated or deleted.

    Order-driven rows carry reference=order_number and
    reference_line=order line number, and the unique constraint on
    (tenant_id, type, reference, reference_line) makes a replayed debit or
    return fail at the database instead of double-counting.
    """
    __tablename__ = "stock_movements"
    __table_args__ = (
        db.Index("ix_stock_movements_tenant_product_created", "tenant_id", "product_id", "created_at"),
        db.UniqueConstraint(
            "tenant_id", "type", "reference", "reference_line",
            name="uq_stock_movements_tenant_type_reference_line",
        ),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    type = db.Column(db.String(16), nullable=False, index=True)
    quantity_delta = db.Column(db.Integer, nullable=False)
    reason = db.Column(db.String(255), nullable=False)

    reference = db.Column(db.String(64), nullable=True, index=True)
    reference_line = db.Column(db.Integer, nullable=True)

    actor_id = db.Column(db.String(64), nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "product_id": self.product_id,
            "type": self.type,
            "quantity_delta": self.quantity_delta,
            "reason": self.reason,
            "reference": self.reference,
            "reference_line": self.reference_line,
            "actor_id": self.actor_id,
            "created_at": to_utc_z(self.created_at),
        }


class InventoryAlert(db.Model):
    """
    Low-stock alert for the admin dashboard.

    DEDUP: at most one unacknowledged alert per (tenant_id, product_id),
    enforced by a partial unique index. Acknowledgement is one-way.
    """
    __tablename__ = "inventory_alerts"
    __table_args__ = (
        db.Index(
            "uq_inventory_alerts_open_per_product",
            "tenant_id",
            "product_id",
            unique=True,
            sqlite_where=db.text("acknowledged = 0"),
            postgresql_where=db.text("acknowledged = false"),
        ),
        db.Index("ix_inventory_alerts_tenant_ack", "tenant_id", "acknowledged"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    alert_type = db.Column(db.String(16), nullable=False)
    severity = db.Column(db.String(16), nullable=False)
    threshold = db.Column(db.Integer, nullable=False)
    current_stock_at_alert = db.Column(db.Integer, nullable=False)

    acknowledged = db.Column(db.Boolean, nullable=False, default=False)
    acknowledged_by = db.Column(db.String(64), nullable=True)
    acknowledged_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, server_default=db.func.now())

    product = db.relationship("Product", backref=db.backref("inventory_alerts", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "product_id": self.product_id,
            "product_title": self.product.title if self.product else None,
            "alert_type": self.alert_type,
            "severity": self.severity,
            "threshold": self.threshold,
            "current_stock_at_alert": self.current_stock_at_alert,
            "acknowledged": self.acknowledged,
            "acknowledged_by": self.acknowledged_by,
            "acknowledged_at": to_utc_z(self.acknowledged_at),
            "created_at": to_utc_z(self.created_at),
        }
