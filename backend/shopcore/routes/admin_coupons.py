# Overview: Flask API routes for coupon administration; parses input and returns JSON responses.

"""
Coupon admin routes.

Field-level validation is driven by the Coupon column metadata through
COUPON_CREATE_POLICY / COUPON_PATCH_POLICY; business rules (code format,
percentage cap, date order) run in the service on the merged state.

Counters (usage_count, reserved_count) are never client-writable.
"""
from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_actor, require_tenant
from ..errors import CommerceError
from ..models import Coupon
from ..services import coupon_service
from ..validation import ModelValidationPolicy, ValidationError, validate_payload


admin_coupons_bp = Blueprint("admin_coupons", __name__, url_prefix="/api/admin/<tenant>/coupons")

_COUPON_FIELDS = {
    "code",
    "name",
    "description",
    "type",
    "value",
    "minimum_order_amount",
    "maximum_discount_amount",
    "usage_limit",
    "valid_from",
    "valid_until",
    "applicable_product_ids",
    "applicable_category_ids",
    "customer_restrictions",
    "is_active",
}

COUPON_CREATE_POLICY = ModelValidationPolicy(
    writable_fields=_COUPON_FIELDS,
    required_on_create={"code", "type", "value", "valid_from", "valid_until"},
)

COUPON_PATCH_POLICY = ModelValidationPolicy(writable_fields=_COUPON_FIELDS)


@admin_coupons_bp.get("")
@require_tenant
@require_actor
def list_coupons_route():
    raw_active = request.args.get("is_active")
    is_active = None
    if raw_active is not None and raw_active != "":
        is_active = raw_active.strip().lower() in ("true", "1", "yes")
    coupons = coupon_service.list_coupons(g.tenant_id, is_active=is_active, coupon_type=request.args.get("type"))
    return jsonify({"coupons": [c.to_dict() for c in coupons]})


@admin_coupons_bp.get("/analytics")
@require_tenant
@require_actor
def coupon_analytics_route():
    return jsonify(coupon_service.get_coupon_analytics(g.tenant_id))


@admin_coupons_bp.post("")
@require_tenant
@require_actor
def create_coupon_route():
    """
    Create a coupon.

    Request body:
    {
        "code": "SAVE10",
        "type": "PERCENTAGE",
        "value": 10,
        "valid_from": "2026-01-01T00:00:00Z",
        "valid_until": "2026-12-31T23:59:59Z",
        "usage_limit": 100,  (optional)
        "minimum_order_amount": 5000  (optional, minor units)
    }

    Returns:
        201: created coupon
        400: invalid fields
        409: COUPON_CODE_TAKEN
    """
    try:
        fields = validate_payload(
            model=Coupon,
            payload=request.get_json(silent=True),
            policy=COUPON_CREATE_POLICY,
            partial=False,
        )
        coupon = coupon_service.create_coupon(g.tenant_id, fields, actor_id=g.actor_id)
    except CommerceError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to create coupon")
        return jsonify({"error": "INTERNAL_ERROR"}), 500
    return jsonify({"coupon": coupon.to_dict()}), 201


@admin_coupons_bp.get("/<int:coupon_id>")
@require_tenant
@require_actor
def get_coupon_route(coupon_id: int):
    try:
        coupon = coupon_service.get_coupon(g.tenant_id, coupon_id)
    except CommerceError as e:
        return jsonify(e.to_dict()), e.http_status
    return jsonify({"coupon": coupon.to_dict()})


@admin_coupons_bp.patch("/<int:coupon_id>")
@require_tenant
@require_actor
def update_coupon_route(coupon_id: int):
    try:
        patch = validate_payload(
            model=Coupon,
            payload=request.get_json(silent=True),
            policy=COUPON_PATCH_POLICY,
            partial=True,
        )
        if not patch:
            raise ValidationError("No fields to update")
        coupon = coupon_service.update_coupon(g.tenant_id, coupon_id, patch, actor_id=g.actor_id)
    except CommerceError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to update coupon")
        return jsonify({"error": "INTERNAL_ERROR"}), 500
    return jsonify({"coupon": coupon.to_dict()})


@admin_coupons_bp.delete("/<int:coupon_id>")
@require_tenant
@require_actor
def deactivate_coupon_route(coupon_id: int):
    """Soft delete; orders keep referencing the coupon."""
    try:
        coupon = coupon_service.deactivate_coupon(g.tenant_id, coupon_id, actor_id=g.actor_id)
    except CommerceError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to deactivate coupon")
        return jsonify({"error": "INTERNAL_ERROR"}), 500
    return jsonify({"coupon": coupon.to_dict()})
