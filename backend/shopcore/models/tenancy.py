from __future__ import annotations

from ..extensions import db
from shopcore.time_utils import to_utc_z


class Tenant(db.Model):
    """
    Multi-tenant root: every merchant storefront is a Tenant.

    WHY: Shared-database multi-tenancy with strict isolation.
    Every cart line, coupon, order, payment and ledger row carries tenant_id,
    and no query in the transaction core may omit it.

    DESIGN:
    - slug and domain are immutable identity once created
    - money settings (currency, tax, flat shipping) live here so totals can be
      computed without another lookup
    - provider credentials live in TenantPaymentConfig (mutable by admin)
    """
    __tablename__ = "tenants"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    slug = db.Column(db.String(64), nullable=False, unique=True, index=True)  # Always lower-case
    domain = db.Column(db.String(255), nullable=True, unique=True, index=True)

    currency = db.Column(db.String(3), nullable=False, default="KWD")
    tax_rate_bps = db.Column(db.Integer, nullable=False, default=0)  # Basis points (e.g., 500 = 5%)
    shipping_flat_minor = db.Column(db.Integer, nullable=False, default=0)

    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)

    created_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    def __repr__(self) -> str:
        return f"<Tenant id={self.id} slug={self.slug!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "slug": self.slug,
            "domain": self.domain,
            "currency": self.currency,
            "tax_rate_bps": self.tax_rate_bps,
            "shipping_flat_minor": self.shipping_flat_minor,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class TenantPaymentConfig(db.Model):
    """
    Tenant payment provider configuration (one row per tenant).

    config_json always holds the upgraded (current schema_version) shape;
    older payloads are run through payment_config.upgrade_payment_config
    before they are written.
    """
    __tablename__ = "tenant_payment_configs"
    __table_args__ = (
        db.UniqueConstraint("tenant_id", name="uq_tenant_payment_configs_tenant"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)
    schema_version = db.Column(db.Integer, nullable=False)
    config_json = db.Column(db.JSON, nullable=False)
    updated_by = db.Column(db.String(64), nullable=True)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    tenant = db.relationship("Tenant", backref=db.backref("payment_config", uselist=False, lazy=True))

    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        # Secrets never leave the server
        config = dict(self.config_json or {})
        config.pop("credentials", None)
        config.pop("webhook_secret", None)
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "schema_version": self.schema_version,
            "config": config,
            "updated_by": self.updated_by,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
