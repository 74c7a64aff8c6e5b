# Overview: Append-only audit sink attached to the caller's transaction.

from __future__ import annotations

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db
from ..models import AuditEvent


ACTOR_SYSTEM = "system"


def append_audit_event(
    *,
    tenant_id: int | None,
    actor: str,
    action: str,
    target_type: str | None = None,
    target_id=None,
    meta: dict | None = None,
) -> AuditEvent | None:
    """
    Append an audit row inside a savepoint of the current transaction.

    Fire-and-forget: a failed audit write is rolled back to the savepoint and
    logged; it never aborts or blocks the transaction it is attached to.
    The row becomes durable when the caller commits.
    """
    event = AuditEvent(
        tenant_id=tenant_id,
        actor=str(actor),
        action=action,
        target_type=target_type,
        target_id=str(target_id) if target_id is not None else None,
        meta=meta or None,
    )
    try:
        with db.session.begin_nested():
            db.session.add(event)
    except SQLAlchemyError:
        current_app.logger.warning(
            "Audit append failed (action=%s tenant_id=%s)", action, tenant_id, exc_info=True
        )
        return None
    return event


def list_audit_events(tenant_id: int, *, action: str | None = None, limit: int = 100) -> list[AuditEvent]:
    query = db.session.query(AuditEvent).filter(AuditEvent.tenant_id == tenant_id)
    if action:
        query = query.filter(AuditEvent.action == action)
    return query.order_by(AuditEvent.id.desc()).limit(limit).all()
