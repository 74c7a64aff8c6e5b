from __future__ import annotations

from ..extensions import db
from shopcore.time_utils import to_utc_z


class Product(db.Model):
    """
    Product master data, read by the transaction core through catalog_service.

    Catalog CRUD belongs to the admin application; this core only reads
    active products and never writes a stock counter here. Stock is derived
    from StockMovement rows (see inventory_service).
    """
    __tablename__ = "products"
    __table_args__ = (
        db.Index("ix_products_tenant_active", "tenant_id", "is_active"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)

    title = db.Column(db.String(255), nullable=False)
    category_id = db.Column(db.Integer, nullable=True, index=True)

    # Authoritative storage in minor units (fils, cents)
    price_minor = db.Column(db.Integer, nullable=False)
    currency = db.Column(db.String(3), nullable=False, default="KWD")

    is_active = db.Column(db.Boolean, nullable=False, default=True)
    track_inventory = db.Column(db.Boolean, nullable=False, default=True)
    low_stock_threshold = db.Column(db.Integer, nullable=True)  # None -> DEFAULT_LOW_STOCK_THRESHOLD

    version_id = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    tenant = db.relationship("Tenant", backref=db.backref("products", lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Product id={self.id} title={self.title!r} tenant_id={self.tenant_id}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "title": self.title,
            "category_id": self.category_id,
            "price_minor": self.price_minor,
            "currency": self.currency,
            "is_active": self.is_active,
            "track_inventory": self.track_inventory,
            "low_stock_threshold": self.low_stock_threshold,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
