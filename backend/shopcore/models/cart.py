from __future__ import annotations

from ..extensions import db
from shopcore.time_utils import to_utc_z


class CartItem(db.Model):
    """
    One line of a session-scoped cart.

    Ephemeral keyed storage, not a ledger: rows are created on first add,
    mutated on add/update/remove, and deleted on checkout or expiry.
    price_snapshot_minor is copied from the catalog at add time and is only
    re-copied by an explicit refresh.

    variant_key is "" for products without variants so the unique key never
    contains NULL.
    """
    __tablename__ = "cart_items"
    __table_args__ = (
        db.UniqueConstraint(
            "tenant_id", "session_key", "product_id", "variant_key",
            name="uq_cart_items_tenant_session_product_variant",
        ),
        db.Index("ix_cart_items_tenant_session", "tenant_id", "session_key"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)
    session_key = db.Column(db.String(64), nullable=False)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)
    variant_key = db.Column(db.String(64), nullable=False, default="")

    quantity = db.Column(db.Integer, nullable=False)
    title_snapshot = db.Column(db.String(255), nullable=False)
    price_snapshot_minor = db.Column(db.Integer, nullable=False)
    currency = db.Column(db.String(3), nullable=False)

    expires_at = db.Column(db.DateTime(timezone=True), nullable=False, index=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    @property
    def line_total_minor(self) -> int:
        return self.price_snapshot_minor * self.quantity

    def to_dict(self) -> dict:
        return {
            "product_id": self.product_id,
            "variant_id": self.variant_key or None,
            "title": self.title_snapshot,
            "price_minor": self.price_snapshot_minor,
            "quantity": self.quantity,
            "line_total_minor": self.line_total_minor,
            "currency": self.currency,
            "expires_at": to_utc_z(self.expires_at),
        }
