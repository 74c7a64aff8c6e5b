# Overview: Session-scoped cart lines with price snapshots and integer subtotals.

"""
Cart Engine

DESIGN:
- A cart is the set of CartItem rows for (tenant_id, session_key)
- Prices are snapshotted at add time; only refresh_prices() re-snapshots
- Quantities per line are clamped to CART_MAX_LINE_QUANTITY
- Every mutation slides the expiry window of the whole cart
- Nothing here reads or writes inventory
"""

from __future__ import annotations

from datetime import timedelta

from flask import current_app
from sqlalchemy.exc import IntegrityError

from ..errors import CartItemNotFound, ProductUnavailable, ValidationError
from ..extensions import db
from ..models import CartItem
from ..time_utils import utcnow
from .catalog_service import get_active_product
from .concurrency import run_with_retry
from .tenant_service import scoped_query


def _require_session(session_key: str) -> str:
    key = (session_key or "").strip()
    if not key:
        raise ValidationError("cart session is required")
    return key


def _max_quantity() -> int:
    return current_app.config.get("CART_MAX_LINE_QUANTITY", 99)


def _expiry(now=None):
    now = now or utcnow()
    return now + timedelta(hours=current_app.config.get("CART_TTL_HOURS", 168))


def _lines_query(tenant_id: int, session_key: str):
    return scoped_query(CartItem, tenant_id).filter(CartItem.session_key == session_key)


def _live_lines(tenant_id: int, session_key: str) -> list[CartItem]:
    now = utcnow()
    return (
        _lines_query(tenant_id, session_key)
        .filter(CartItem.expires_at > now)
        .order_by(CartItem.id.asc())
        .all()
    )


def _touch(tenant_id: int, session_key: str) -> None:
    expires_at = _expiry()
    for line in _lines_query(tenant_id, session_key).all():
        line.expires_at = expires_at


def _find_line(tenant_id: int, session_key: str, product_id: int, variant_key: str) -> CartItem | None:
    return (
        _lines_query(tenant_id, session_key)
        .filter(CartItem.product_id == product_id, CartItem.variant_key == variant_key)
        .first()
    )


def calculate_subtotal(items) -> int:
    """Sum of price_snapshot x quantity in integer minor units."""
    return sum(int(item.price_snapshot_minor) * int(item.quantity) for item in items)


def cart_view(items: list[CartItem], currency: str | None = None) -> dict:
    return {
        "items": [item.to_dict() for item in items],
        "subtotal": calculate_subtotal(items),
        "item_count": sum(item.quantity for item in items),
        "currency": items[0].currency if items else currency,
    }


def get_cart_items(tenant_id: int, session_key: str) -> list[CartItem]:
    return _live_lines(tenant_id, _require_session(session_key))


def get_cart(tenant_id: int, session_key: str, *, currency: str | None = None) -> dict:
    return cart_view(get_cart_items(tenant_id, session_key), currency)


def add_item(
    tenant_id: int,
    session_key: str,
    product_id: int,
    quantity: int,
    variant_key: str = "",
    *,
    currency: str | None = None,
) -> dict:
    """
    Add quantity of a product to the cart.

    An existing (product, variant) line has its quantity increased; a new
    line snapshots the catalog title and price. Products priced in another
    currency than the tenant's are treated as unavailable.
    """
    session_key = _require_session(session_key)
    if quantity < 1:
        raise ValidationError("quantity must be >= 1")
    variant_key = variant_key or ""
    max_qty = _max_quantity()

    def _op() -> dict:
        product = get_active_product(tenant_id, product_id)
        if currency and product.currency != currency:
            raise ProductUnavailable(f"Product {product_id} is not available")

        now = utcnow()
        line = _find_line(tenant_id, session_key, product_id, variant_key)
        if line is not None and line.expires_at <= now:
            # Expired lines restart from a fresh snapshot
            line.quantity = 0
            line.title_snapshot = product.title
            line.price_snapshot_minor = product.price_minor
            line.currency = product.currency

        if line is None:
            line = CartItem(
                tenant_id=tenant_id,
                session_key=session_key,
                product_id=product.id,
                variant_key=variant_key,
                quantity=min(quantity, max_qty),
                title_snapshot=product.title,
                price_snapshot_minor=product.price_minor,
                currency=product.currency,
                expires_at=_expiry(now),
            )
            try:
                with db.session.begin_nested():
                    db.session.add(line)
            except IntegrityError:
                # A concurrent add created the line first; merge into it
                line = _find_line(tenant_id, session_key, product_id, variant_key)
                if line is None:
                    raise
                line.quantity = min(line.quantity + quantity, max_qty)
        else:
            line.quantity = min(line.quantity + quantity, max_qty)

        _touch(tenant_id, session_key)
        db.session.commit()
        return cart_view(_live_lines(tenant_id, session_key), currency)

    return run_with_retry(_op)


def update_item(
    tenant_id: int,
    session_key: str,
    product_id: int,
    quantity: int,
    variant_key: str = "",
    *,
    currency: str | None = None,
) -> dict:
    """Set a line's quantity; quantity <= 0 removes the line."""
    session_key = _require_session(session_key)
    if quantity <= 0:
        return remove_item(tenant_id, session_key, product_id, variant_key, currency=currency)

    def _op() -> dict:
        line = _find_line(tenant_id, session_key, product_id, variant_key or "")
        if line is None or line.expires_at <= utcnow():
            raise CartItemNotFound(f"Product {product_id} is not in the cart")
        line.quantity = min(quantity, _max_quantity())
        _touch(tenant_id, session_key)
        db.session.commit()
        return cart_view(_live_lines(tenant_id, session_key), currency)

    return run_with_retry(_op)


def remove_item(
    tenant_id: int,
    session_key: str,
    product_id: int,
    variant_key: str = "",
    *,
    currency: str | None = None,
) -> dict:
    """Remove a line. Removing an absent line is a no-op."""
    session_key = _require_session(session_key)
    (
        _lines_query(tenant_id, session_key)
        .filter(CartItem.product_id == product_id, CartItem.variant_key == (variant_key or ""))
        .delete(synchronize_session=False)
    )
    db.session.commit()
    return cart_view(_live_lines(tenant_id, session_key), currency)


def refresh_prices(tenant_id: int, session_key: str, *, currency: str | None = None) -> dict:
    """
    Explicitly re-snapshot title and price from the catalog.

    Lines whose product is no longer available are dropped; their product
    ids are returned under "removed_product_ids".
    """
    session_key = _require_session(session_key)
    removed: list[int] = []

    for line in _live_lines(tenant_id, session_key):
        try:
            product = get_active_product(tenant_id, line.product_id)
        except ProductUnavailable:
            product = None
        if product is None or (currency and product.currency != currency):
            removed.append(line.product_id)
            db.session.delete(line)
            continue
        line.title_snapshot = product.title
        line.price_snapshot_minor = product.price_minor
        line.currency = product.currency

    _touch(tenant_id, session_key)
    db.session.commit()

    view = cart_view(_live_lines(tenant_id, session_key), currency)
    view["removed_product_ids"] = removed
    return view


def clear_cart(tenant_id: int, session_key: str, *, commit: bool = True) -> int:
    """Delete every line of the cart. Returns the number of lines removed."""
    session_key = _require_session(session_key)
    count = _lines_query(tenant_id, session_key).delete(synchronize_session=False)
    if commit:
        db.session.commit()
    return count


def purge_expired(now=None) -> int:
    """
    Delete expired cart lines across all tenants (maintenance sweep).

    Returns the number of lines removed.
    """
    now = now or utcnow()
    count = db.session.query(CartItem).filter(CartItem.expires_at <= now).delete(synchronize_session=False)
    db.session.commit()
    return count
