# Overview: Tenant-unique, human-readable document numbers.

from __future__ import annotations

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import DocumentSequence


ORDER_DOCUMENT_TYPE = "ORDER"
ORDER_PREFIX = "ORD"


class DocumentSequenceError(Exception):
    """Raised when document sequence operations fail."""
    pass


def next_document_number(
    *,
    tenant_id: int,
    document_type: str,
    prefix: str,
    pad: int = 6,
) -> str:
    """
    Allocate the next document number for a tenant/type.

    Runs inside the caller's transaction: the increment is a single UPDATE,
    so the row stays locked until the caller commits or rolls back. The
    first allocation inserts the sequence row inside a savepoint; losing
    that insert race falls back to the UPDATE path.
    """
    if not tenant_id:
        raise DocumentSequenceError("tenant_id is required")
    if not document_type:
        raise DocumentSequenceError("document_type is required")

    stmt = (
        update(DocumentSequence)
        .where(
            DocumentSequence.tenant_id == tenant_id,
            DocumentSequence.document_type == document_type,
        )
        .values(next_number=DocumentSequence.next_number + 1)
    )

    result = db.session.execute(stmt)
    if not result.rowcount:
        try:
            with db.session.begin_nested():
                db.session.add(DocumentSequence(tenant_id=tenant_id, document_type=document_type, next_number=2))
            return f"{prefix}-{1:0{pad}d}"
        except IntegrityError:
            result = db.session.execute(stmt)
            if not result.rowcount:
                raise

    current = (
        db.session.query(DocumentSequence.next_number)
        .filter_by(tenant_id=tenant_id, document_type=document_type)
        .scalar()
    )
    return f"{prefix}-{current - 1:0{pad}d}"


def next_order_number(tenant_id: int) -> str:
    return next_document_number(tenant_id=tenant_id, document_type=ORDER_DOCUMENT_TYPE, prefix=ORDER_PREFIX)
