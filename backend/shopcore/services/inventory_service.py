# Overview: Append-only stock ledger, derived stock levels and low-stock alerts.

from __future__ import annotations

from datetime import timedelta

from flask import current_app
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError

from ..errors import AlertNotFound, InsufficientStock, ProductUnavailable, ValidationError
from ..extensions import db
from ..models import InventoryAlert, Product, StockMovement
from ..models.inventory import (
    ALERT_LOW_STOCK,
    ALERT_OUT_OF_STOCK,
    MOVEMENT_ADJUSTMENT,
    MOVEMENT_RECEIVE,
    MOVEMENT_RETURN,
    MOVEMENT_SALE,
    MOVEMENT_TYPES,
    SEVERITY_CRITICAL,
    SEVERITY_HIGH,
    SEVERITY_MEDIUM,
    SEVERITY_RANK,
)
from ..time_utils import utcnow
from .audit_service import append_audit_event
from .concurrency import lock_for_update, run_with_retry
from .tenant_service import scoped_query
"""
Inventory Ledger Invariants (authoritative)

Inventory model:
- Stock is ledger-derived from StockMovement rows; never stored as a mutable quantity field.
- Current stock is SUM(quantity_delta) over a product's movements.

Sign rules:
- RECEIVE > 0, SALE < 0, RETURN > 0, ADJUSTMENT != 0.
- An ADJUSTMENT may not take stock below zero.
- SALE rows come only from order confirmation and are written even if they
  take stock negative: the customer has already paid.

Idempotency:
- Order-driven rows carry (reference=order_number, reference_line=line number);
  a replay hits the unique constraint and is skipped.

Alerts:
- Tracked, active products with stock <= threshold get one open alert.
- Alerting is best-effort when triggered after a confirmation.
"""


RECENT_MOVEMENT_DAYS = 7


def _default_threshold() -> int:
    return current_app.config.get("DEFAULT_LOW_STOCK_THRESHOLD", 5)


def threshold_for(product: Product) -> int:
    if product.low_stock_threshold is not None:
        return product.low_stock_threshold
    return _default_threshold()


def _ensure_product(tenant_id: int, product_id: int, *, lock: bool = False) -> Product:
    query = scoped_query(Product, tenant_id).filter(Product.id == product_id)
    if lock:
        query = lock_for_update(query)
    product = query.first()
    if product is None:
        raise ProductUnavailable(f"Product {product_id} not found")
    return product


def get_current_stock(tenant_id: int, product_id: int) -> int:
    """SUM(quantity_delta) for one product of this tenant."""
    q = scoped_query(StockMovement, tenant_id).with_entities(
        func.coalesce(func.sum(StockMovement.quantity_delta), 0)
    ).filter(StockMovement.product_id == product_id)
    return int(q.scalar() or 0)


def get_stock_levels(tenant_id: int, product_ids=None) -> dict[int, int]:
    """product_id -> current stock, for products that have any movement."""
    q = scoped_query(StockMovement, tenant_id).with_entities(
        StockMovement.product_id,
        func.coalesce(func.sum(StockMovement.quantity_delta), 0),
    )
    if product_ids is not None:
        q = q.filter(StockMovement.product_id.in_(list(product_ids)))
    return {pid: int(total) for pid, total in q.group_by(StockMovement.product_id).all()}


def _check_sign(movement_type: str, quantity_delta: int) -> None:
    if movement_type not in MOVEMENT_TYPES:
        raise ValidationError(f"type must be one of: {', '.join(MOVEMENT_TYPES)}")
    if movement_type in (MOVEMENT_RECEIVE, MOVEMENT_RETURN) and quantity_delta <= 0:
        raise ValidationError(f"quantity_delta must be > 0 for {movement_type}")
    if movement_type == MOVEMENT_SALE and quantity_delta >= 0:
        raise ValidationError("quantity_delta must be < 0 for SALE")
    if movement_type == MOVEMENT_ADJUSTMENT and quantity_delta == 0:
        raise ValidationError("quantity_delta must be non-zero for ADJUSTMENT")


def _record_movement_inner(
    *,
    tenant_id: int,
    product_id: int,
    movement_type: str,
    quantity_delta: int,
    reason: str,
    actor_id: str,
    reference: str | None = None,
    reference_line: int | None = None,
) -> StockMovement | None:
    """
    Core append without locking, retry or commit.

    Returns None when a row with the same (type, reference, reference_line)
    already exists; the existing row stands and nothing is appended.
    """
    movement = StockMovement(
        tenant_id=tenant_id,
        product_id=product_id,
        type=movement_type,
        quantity_delta=quantity_delta,
        reason=reason,
        reference=reference,
        reference_line=reference_line,
        actor_id=str(actor_id),
    )
    if reference is None or reference_line is None:
        db.session.add(movement)
        db.session.flush()
        return movement

    try:
        with db.session.begin_nested():
            db.session.add(movement)
    except IntegrityError:
        return None
    return movement


def record_movement(
    tenant_id: int,
    product_id: int,
    movement_type: str,
    quantity_delta: int,
    reason: str,
    *,
    actor_id: str,
    reference: str | None = None,
    reference_line: int | None = None,
) -> StockMovement | None:
    """
    Append one movement to the ledger and commit.

    Raises:
        ValidationError for sign-rule violations
        ProductUnavailable if the product is not this tenant's
        InsufficientStock if an ADJUSTMENT would take stock below zero
    """
    movement_type = (movement_type or "").upper()
    _check_sign(movement_type, quantity_delta)
    if not reason or not reason.strip():
        raise ValidationError("reason is required")
    if reference and reference_line is None:
        # A single-line reference still dedups on (type, reference)
        reference_line = 0

    def _op():
        _ensure_product(tenant_id, product_id, lock=True)

        if movement_type == MOVEMENT_ADJUSTMENT and quantity_delta < 0:
            current = get_current_stock(tenant_id, product_id)
            if current + quantity_delta < 0:
                raise InsufficientStock("adjustment would make stock negative")

        movement = _record_movement_inner(
            tenant_id=tenant_id,
            product_id=product_id,
            movement_type=movement_type,
            quantity_delta=quantity_delta,
            reason=reason.strip(),
            actor_id=actor_id,
            reference=reference,
            reference_line=reference_line,
        )
        if movement is not None:
            append_audit_event(
                tenant_id=tenant_id,
                actor=actor_id,
                action=f"STOCK_{movement_type}",
                target_type="product",
                target_id=product_id,
                meta={"quantity_delta": quantity_delta, "reference": reference},
            )
        db.session.commit()
        return movement

    movement = run_with_retry(_op)
    if movement is not None and quantity_delta < 0:
        run_low_stock_check(tenant_id, [product_id])
    return movement


def record_order_movements(tenant_id: int, order, movement_type: str, *, actor_id: str, reason: str) -> list[int]:
    """
    SALE or RETURN rows for every order line, inside the caller's transaction.

    Idempotent per (order_number, line_number). Returns the product ids that
    received a new row.
    """
    if movement_type not in (MOVEMENT_SALE, MOVEMENT_RETURN):
        raise ValidationError("order movements must be SALE or RETURN")
    sign = -1 if movement_type == MOVEMENT_SALE else 1

    touched: list[int] = []
    for item in order.items:
        movement = _record_movement_inner(
            tenant_id=tenant_id,
            product_id=item.product_id,
            movement_type=movement_type,
            quantity_delta=sign * item.quantity,
            reason=reason,
            actor_id=actor_id,
            reference=order.order_number,
            reference_line=item.line_number,
        )
        if movement is not None:
            touched.append(item.product_id)
    return touched


# =============================================================================
# Alerts
# =============================================================================

def classify_stock(stock: int, threshold: int) -> tuple[str, str] | None:
    """(alert_type, severity) for a stock level, or None when healthy."""
    if stock <= 0:
        return ALERT_OUT_OF_STOCK, SEVERITY_CRITICAL
    if stock <= threshold:
        if stock <= threshold / 2:
            return ALERT_LOW_STOCK, SEVERITY_HIGH
        return ALERT_LOW_STOCK, SEVERITY_MEDIUM
    return None


def _has_open_alert(tenant_id: int, product_id: int) -> bool:
    q = scoped_query(InventoryAlert, tenant_id).filter(
        InventoryAlert.product_id == product_id,
        InventoryAlert.acknowledged.is_(False),
    )
    return db.session.query(q.exists()).scalar()


def check_low_stock_alerts(tenant_id: int, product_ids=None) -> list[InventoryAlert]:
    """
    Create alerts for tracked products at or below their threshold.

    A product with an open (unacknowledged) alert is skipped; the partial
    unique index turns a concurrent duplicate into a skipped insert too.
    Returns the alerts created by this call.
    """
    products_q = scoped_query(Product, tenant_id).filter(
        Product.is_active.is_(True),
        Product.track_inventory.is_(True),
    )
    if product_ids is not None:
        products_q = products_q.filter(Product.id.in_(list(product_ids)))
    products = products_q.order_by(Product.id.asc()).all()

    levels = get_stock_levels(tenant_id, [p.id for p in products])
    created: list[InventoryAlert] = []

    for product in products:
        stock = levels.get(product.id, 0)
        threshold = threshold_for(product)
        classification = classify_stock(stock, threshold)
        if classification is None or _has_open_alert(tenant_id, product.id):
            continue

        alert_type, severity = classification
        alert = InventoryAlert(
            tenant_id=tenant_id,
            product_id=product.id,
            alert_type=alert_type,
            severity=severity,
            threshold=threshold,
            current_stock_at_alert=stock,
            acknowledged=False,
        )
        try:
            with db.session.begin_nested():
                db.session.add(alert)
        except IntegrityError:
            continue
        created.append(alert)

    db.session.commit()
    if created:
        current_app.logger.info(
            "Created %d low-stock alert(s) for tenant %s", len(created), tenant_id
        )
    return created


def run_low_stock_check(tenant_id: int, product_ids=None) -> list[InventoryAlert]:
    """Best-effort alert check: failures are logged, never raised."""
    try:
        return check_low_stock_alerts(tenant_id, product_ids)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Low-stock alert check failed for tenant %s", tenant_id)
        return []


def acknowledge_alert(tenant_id: int, alert_id: int, *, actor_id: str) -> InventoryAlert:
    """One-way acknowledge. Re-acknowledging returns the alert unchanged."""
    def _op() -> InventoryAlert:
        alert = lock_for_update(
            scoped_query(InventoryAlert, tenant_id).filter(InventoryAlert.id == alert_id)
        ).first()
        if alert is None:
            raise AlertNotFound("Alert not found")
        if alert.acknowledged:
            return alert

        alert.acknowledged = True
        alert.acknowledged_by = str(actor_id)
        alert.acknowledged_at = utcnow()
        append_audit_event(
            tenant_id=tenant_id,
            actor=actor_id,
            action="INVENTORY_ALERT_ACKNOWLEDGED",
            target_type="inventory_alert",
            target_id=alert.id,
            meta={"product_id": alert.product_id},
        )
        db.session.commit()
        return alert

    return run_with_retry(_op)


def list_alerts(tenant_id: int, *, acknowledged: bool | None = None) -> list[InventoryAlert]:
    """Most severe first, newest first within a severity."""
    q = scoped_query(InventoryAlert, tenant_id)
    if acknowledged is not None:
        q = q.filter(InventoryAlert.acknowledged.is_(acknowledged))
    alerts = q.order_by(InventoryAlert.created_at.desc(), InventoryAlert.id.desc()).all()
    # Stable sort keeps the recency order inside each severity
    return sorted(alerts, key=lambda a: SEVERITY_RANK.get(a.severity, len(SEVERITY_RANK)))


def list_movements(tenant_id: int, *, product_id: int | None = None, limit: int = 50) -> list[StockMovement]:
    q = scoped_query(StockMovement, tenant_id)
    if product_id is not None:
        q = q.filter(StockMovement.product_id == product_id)
    limit = max(1, min(int(limit), 500))
    return q.order_by(StockMovement.created_at.desc(), StockMovement.id.desc()).limit(limit).all()


def get_inventory_summary(tenant_id: int) -> dict:
    """Dashboard totals over tracked, active products."""
    products = (
        scoped_query(Product, tenant_id)
        .filter(Product.is_active.is_(True), Product.track_inventory.is_(True))
        .all()
    )
    levels = get_stock_levels(tenant_id, [p.id for p in products])

    low_stock = 0
    out_of_stock = 0
    total_value = 0
    for product in products:
        stock = levels.get(product.id, 0)
        if stock <= 0:
            out_of_stock += 1
        elif stock <= threshold_for(product):
            low_stock += 1
        if stock > 0:
            total_value += stock * product.price_minor

    since = utcnow() - timedelta(days=RECENT_MOVEMENT_DAYS)
    recent_movements = (
        scoped_query(StockMovement, tenant_id)
        .filter(StockMovement.created_at >= since)
        .count()
    )
    open_alerts = (
        scoped_query(InventoryAlert, tenant_id)
        .filter(InventoryAlert.acknowledged.is_(False))
        .count()
    )

    return {
        "total_products": len(products),
        "low_stock_products": low_stock,
        "out_of_stock_products": out_of_stock,
        "total_value": total_value,
        "recent_movements": recent_movements,
        "open_alerts": open_alerts,
    }
