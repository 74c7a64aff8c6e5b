# Overview: Flask API routes for tenant inventory administration.

"""
Inventory admin routes.

SECURITY: All routes require the X-Actor-Id header (set by the auth
gateway) and a resolved tenant; every query is scoped to g.tenant_id.

Stock is never stored: levels are the sum of ledger movements, so the only
write here is appending a movement.
"""
from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_actor, require_tenant
from ..errors import CommerceError
from ..services import inventory_service
from ..validation import ValidationError, parse_movement, parse_optional_int


admin_inventory_bp = Blueprint("admin_inventory", __name__, url_prefix="/api/admin/<tenant>/inventory")


def _parse_bool_arg(name: str):
    raw = request.args.get(name)
    if raw is None or raw == "":
        return None
    lowered = raw.strip().lower()
    if lowered in ("true", "1", "yes"):
        return True
    if lowered in ("false", "0", "no"):
        return False
    raise ValidationError(f"{name} must be true or false")


@admin_inventory_bp.get("/summary")
@require_tenant
@require_actor
def inventory_summary_route():
    return jsonify(inventory_service.get_inventory_summary(g.tenant_id))


@admin_inventory_bp.get("/products/<int:product_id>/stock")
@require_tenant
@require_actor
def product_stock_route(product_id: int):
    try:
        stock = inventory_service.get_current_stock(g.tenant_id, product_id)
    except CommerceError as e:
        return jsonify(e.to_dict()), e.http_status
    return jsonify({"product_id": product_id, "stock": stock})


@admin_inventory_bp.get("/alerts")
@require_tenant
@require_actor
def list_alerts_route():
    """
    List alerts, most severe first.

    Query params:
        acknowledged: true|false (optional)
    """
    try:
        acknowledged = _parse_bool_arg("acknowledged")
    except ValidationError as e:
        return jsonify(e.to_dict()), e.http_status
    alerts = inventory_service.list_alerts(g.tenant_id, acknowledged=acknowledged)
    return jsonify({"alerts": [a.to_dict() for a in alerts]})


@admin_inventory_bp.post("/alerts/check")
@require_tenant
@require_actor
def check_alerts_route():
    try:
        created = inventory_service.check_low_stock_alerts(g.tenant_id)
    except Exception:
        current_app.logger.exception("Failed to check low-stock alerts")
        return jsonify({"error": "INTERNAL_ERROR"}), 500
    return jsonify({"created": [a.to_dict() for a in created]})


@admin_inventory_bp.post("/alerts/<int:alert_id>/acknowledge")
@require_tenant
@require_actor
def acknowledge_alert_route(alert_id: int):
    try:
        alert = inventory_service.acknowledge_alert(g.tenant_id, alert_id, actor_id=g.actor_id)
    except CommerceError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to acknowledge alert")
        return jsonify({"error": "INTERNAL_ERROR"}), 500
    return jsonify({"alert": alert.to_dict()})


@admin_inventory_bp.get("/movements")
@require_tenant
@require_actor
def list_movements_route():
    try:
        product_id = parse_optional_int(request.args.get("product_id"), "product_id", minimum=1)
        limit = parse_optional_int(request.args.get("limit"), "limit", minimum=1, maximum=500) or 50
    except ValidationError as e:
        return jsonify(e.to_dict()), e.http_status
    movements = inventory_service.list_movements(g.tenant_id, product_id=product_id, limit=limit)
    return jsonify({"movements": [m.to_dict() for m in movements]})


@admin_inventory_bp.post("/movements")
@require_tenant
@require_actor
def record_movement_route():
    """
    Append a stock movement.

    Request body:
    {
        "product_id": 12,
        "type": "RECEIVE" | "SALE" | "RETURN" | "ADJUSTMENT",
        "quantity_delta": 50,
        "reason": "PO-1182 delivery",
        "reference": "PO-1182"  (optional, makes the call idempotent)
    }

    Returns:
        201: movement recorded
        200: duplicate reference, nothing recorded
        409: INSUFFICIENT_STOCK
    """
    try:
        body = parse_movement(request.get_json(silent=True))
        movement = inventory_service.record_movement(
            g.tenant_id,
            body.product_id,
            body.type,
            body.quantity_delta,
            body.reason,
            actor_id=g.actor_id,
            reference=body.reference,
        )
        stock = inventory_service.get_current_stock(g.tenant_id, body.product_id)
    except CommerceError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to record stock movement")
        return jsonify({"error": "INTERNAL_ERROR"}), 500

    if movement is None:
        return jsonify({"movement": None, "duplicate": True, "stock": stock}), 200
    return jsonify({"movement": movement.to_dict(), "stock": stock}), 201
