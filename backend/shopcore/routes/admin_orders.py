# Overview: Flask API routes for order administration (listing and fulfilment transitions).

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_actor, require_tenant
from ..errors import CommerceError
from ..services import order_service
from ..validation import ValidationError, parse_optional_int, parse_str


admin_orders_bp = Blueprint("admin_orders", __name__, url_prefix="/api/admin/<tenant>/orders")


@admin_orders_bp.get("")
@require_tenant
@require_actor
def list_orders_route():
    try:
        limit = parse_optional_int(request.args.get("limit"), "limit", minimum=1, maximum=500) or 50
    except ValidationError as e:
        return jsonify(e.to_dict()), e.http_status
    orders = order_service.list_orders(g.tenant_id, status=request.args.get("status"), limit=limit)
    return jsonify({"orders": [o.to_dict(include_items=False) for o in orders]})


@admin_orders_bp.get("/<int:order_id>")
@require_tenant
@require_actor
def get_order_route(order_id: int):
    try:
        order = order_service.get_order(g.tenant_id, order_id)
    except CommerceError as e:
        return jsonify(e.to_dict()), e.http_status
    return jsonify({"order": order.to_dict()})


@admin_orders_bp.patch("/<int:order_id>/status")
@require_tenant
@require_actor
def update_order_status_route(order_id: int):
    """
    Move an order along its lifecycle.

    Request body: {"status": "PROCESSING" | "SHIPPED" | "DELIVERED" | "CANCELLED" | "REFUNDED"}

    Returns:
        200: updated order
        400: unknown status
        409: INVALID_TRANSITION {details: {entity, from, to}}
    """
    payload = request.get_json(silent=True) or {}
    try:
        target = parse_str(payload.get("status"), "status", max_length=16)
        order = order_service.transition_order(g.tenant_id, order_id, target, actor_id=g.actor_id)
    except CommerceError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to update order status")
        return jsonify({"error": "INTERNAL_ERROR"}), 500
    return jsonify({"order": order.to_dict()})
