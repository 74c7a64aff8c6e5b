# Overview: Flask API routes for the public storefront: cart, coupon preview, checkout, order lookup.

"""
Storefront API Routes

WHY: Anonymous shoppers build a cart, preview a coupon and start a hosted
checkout. The tenant comes from the URL; the cart from a session key.

DESIGN:
- Cart session key from the X-Cart-Session header or the cart_session
  cookie; the first add issues one (cookie + response header)
- Service errors map to {"error": code} with the error's HTTP status
- Checkout returns the provider redirect; the order is confirmed later
  by the provider webhook, never by the redirect

SECURITY:
- Every service call is scoped by g.tenant_id from require_tenant
- Provider and internal failures never surface raw exception text
"""

import secrets

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_tenant
from ..errors import CommerceError, CartEmpty
from ..services import cart_service, order_service
from ..validation import parse_cart_item, parse_checkout, parse_coupon_validate, parse_str


storefront_bp = Blueprint("storefront", __name__, url_prefix="/api/storefront/<tenant>")

SESSION_HEADER = "X-Cart-Session"
SESSION_COOKIE = "cart_session"


def _session_key() -> str | None:
    key = request.headers.get(SESSION_HEADER) or request.cookies.get(SESSION_COOKIE)
    key = (key or "").strip()
    return key[:64] or None


def _with_session(response, session_key: str):
    response.headers[SESSION_HEADER] = session_key
    response.set_cookie(
        SESSION_COOKIE,
        session_key,
        max_age=int(current_app.config.get("CART_TTL_HOURS", 168)) * 3600,
        httponly=True,
        samesite="Lax",
    )
    return response


def _empty_cart():
    return cart_service.cart_view([], g.tenant.currency)


# =============================================================================
# CART
# =============================================================================

@storefront_bp.get("/cart")
@require_tenant
def get_cart_route():
    session_key = _session_key()
    if not session_key:
        return jsonify(_empty_cart())
    try:
        return jsonify(cart_service.get_cart(g.tenant_id, session_key, currency=g.tenant.currency))
    except CommerceError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to load cart")
        return jsonify({"error": "INTERNAL_ERROR"}), 500


@storefront_bp.post("/cart/items")
@require_tenant
def add_cart_item_route():
    """
    Add a product to the cart.

    Request body:
    {
        "product_id": 12,
        "quantity": 2,
        "variant_id": "L-RED"  (optional)
    }

    Returns:
        200: Cart view {items, subtotal, item_count, currency}
        400: Invalid input
        404: PRODUCT_UNAVAILABLE
    """
    session_key = _session_key() or secrets.token_urlsafe(24)
    try:
        item = parse_cart_item(request.get_json(silent=True))
        view = cart_service.add_item(
            g.tenant_id,
            session_key,
            item.product_id,
            item.quantity,
            item.variant_key,
            currency=g.tenant.currency,
        )
    except CommerceError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to add cart item")
        return jsonify({"error": "INTERNAL_ERROR"}), 500

    return _with_session(jsonify(view), session_key)


@storefront_bp.patch("/cart/items/<int:product_id>")
@require_tenant
def update_cart_item_route(product_id: int):
    """Set a line's quantity; 0 or less removes it."""
    session_key = _session_key()
    if not session_key:
        return jsonify({"error": "CART_ITEM_NOT_FOUND"}), 404
    try:
        item = parse_cart_item(request.get_json(silent=True), product_id=product_id)
        view = cart_service.update_item(
            g.tenant_id,
            session_key,
            item.product_id,
            item.quantity,
            item.variant_key,
            currency=g.tenant.currency,
        )
    except CommerceError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to update cart item")
        return jsonify({"error": "INTERNAL_ERROR"}), 500
    return jsonify(view)


@storefront_bp.delete("/cart/items/<int:product_id>")
@require_tenant
def remove_cart_item_route(product_id: int):
    session_key = _session_key()
    if not session_key:
        return jsonify(_empty_cart())
    variant_key = request.args.get("variant_id", "")
    try:
        view = cart_service.remove_item(
            g.tenant_id, session_key, product_id, variant_key, currency=g.tenant.currency
        )
    except CommerceError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to remove cart item")
        return jsonify({"error": "INTERNAL_ERROR"}), 500
    return jsonify(view)


@storefront_bp.post("/cart/refresh")
@require_tenant
def refresh_cart_route():
    """Re-snapshot prices from the catalog; unavailable lines are dropped."""
    session_key = _session_key()
    if not session_key:
        view = _empty_cart()
        view["removed_product_ids"] = []
        return jsonify(view)
    try:
        view = cart_service.refresh_prices(g.tenant_id, session_key, currency=g.tenant.currency)
    except CommerceError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to refresh cart")
        return jsonify({"error": "INTERNAL_ERROR"}), 500
    return jsonify(view)


# =============================================================================
# COUPONS
# =============================================================================

@storefront_bp.post("/coupons/validate")
@require_tenant
def validate_coupon_route():
    """
    Preview a coupon against the current cart. Never changes counters.

    Returns:
        200: {valid, discount_amount, reason?}
    """
    try:
        body = parse_coupon_validate(request.get_json(silent=True))
        session_key = _session_key()
        if not session_key:
            raise CartEmpty("Cart is empty")
        result = order_service.preview_coupon(
            g.tenant,
            session_key,
            body.code,
            customer_id=body.customer_id,
            customer_email=body.customer_email,
        )
    except CommerceError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to validate coupon")
        return jsonify({"error": "INTERNAL_ERROR"}), 500
    return jsonify(result.to_dict())


# =============================================================================
# CHECKOUT
# =============================================================================

@storefront_bp.post("/checkout")
@require_tenant
def checkout_route():
    """
    Create a PENDING order and start a hosted checkout.

    Request body:
    {
        "customer": {"name": "...", "email": "...", "phone": "..."},
        "coupon_code": "SAVE10",  (optional)
        "redirect_urls": {"success": "...", "cancel": "...", "failure": "..."}  (optional)
    }

    Returns:
        201: {redirect_url, payment_id, order_id, order_number}
        400: Invalid input
        404: PRODUCT_UNAVAILABLE
        409: CART_EMPTY, COUPON_REJECTED, COUPON_RACE_LOST, PAYMENT_NOT_CONFIGURED
        502: PAYMENT_NOT_STARTED (order cancelled, nothing charged)
    """
    try:
        body = parse_checkout(
            request.get_json(silent=True),
            default_base_url=current_app.config.get("PAYMENT_CALLBACK_BASE_URL", ""),
        )
        session_key = _session_key()
        if not session_key:
            raise CartEmpty("Cart is empty")
        result = order_service.create_checkout(g.tenant, session_key, body)
    except CommerceError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to create checkout")
        return jsonify({"error": "INTERNAL_ERROR"}), 500

    return jsonify(result.to_dict()), 201


@storefront_bp.get("/orders/<order_number>")
@require_tenant
def get_order_route(order_number: str):
    """
    Customer order status.

    Query params:
        email: the address the order was placed with (required)

    Returns:
        200: customer-safe order view
        400: email missing
        404: ORDER_NOT_FOUND (also when the email does not match)
    """
    try:
        email = parse_str(request.args.get("email"), "email", max_length=255)
        order = order_service.get_customer_order(g.tenant_id, order_number, email)
    except CommerceError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to load order %s", order_number)
        return jsonify({"error": "INTERNAL_ERROR"}), 500
    return jsonify(order.to_customer_dict())
