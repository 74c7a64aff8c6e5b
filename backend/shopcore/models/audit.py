from __future__ import annotations

from ..extensions import db
from shopcore.time_utils import to_utc_z, utcnow


class AuditEvent(db.Model):
    """
    Action audit log with tenant context.

    IMMUTABLE: Never update or delete. Append-only for audit integrity.
    Written by audit_service inside a savepoint so a failed audit write
    never aborts the transaction it is attached to.
    """
    __tablename__ = "audit_events"
    __table_args__ = (
        db.Index("ix_audit_events_tenant_occurred", "tenant_id", "occurred_at"),
        db.Index("ix_audit_events_target", "target_type", "target_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=True, index=True)

    actor = db.Column(db.String(64), nullable=False)  # "system" for provider-driven changes
    action = db.Column(db.String(64), nullable=False, index=True)  # PAYMENT_SUCCEEDED, ORDER_CANCELLED, ...
    target_type = db.Column(db.String(32), nullable=True)
    target_id = db.Column(db.String(64), nullable=True)
    meta = db.Column(db.JSON, nullable=True)

    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "actor": self.actor,
            "action": self.action,
            "target_type": self.target_type,
            "target_id": self.target_id,
            "meta": self.meta,
            "occurred_at": to_utc_z(self.occurred_at),
        }
