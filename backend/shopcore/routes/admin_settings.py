# Overview: Flask API routes for tenant settings: payment provider configuration.

"""
Payment provider settings routes.

SECURITY:
- Credentials and the webhook secret are write-only: responses carry the
  provider, mode and schema version, never the secrets
- Legacy (flat, schema v1) documents are accepted and upgraded on write
"""
from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_actor, require_tenant
from ..errors import CommerceError
from ..services import tenant_service
from ..services.gateways import get_payment_adapter


admin_settings_bp = Blueprint("admin_settings", __name__, url_prefix="/api/admin/<tenant>")


@admin_settings_bp.get("/payment-config")
@require_tenant
@require_actor
def get_payment_config_route():
    record = tenant_service.get_payment_config_record(g.tenant_id)
    config = g.tenant.provider_config
    return jsonify({
        "provider": config.provider,
        "mode": config.mode,
        "is_configured": config.is_configured,
        "record": record.to_dict() if record else None,
    })


@admin_settings_bp.put("/payment-config")
@require_tenant
@require_actor
def update_payment_config_route():
    """
    Replace the tenant's payment provider configuration.

    Request body (current schema):
    {
        "schema_version": 2,
        "provider": "TAP",
        "mode": "sandbox",
        "credentials": {"secret_key": "...", "public_key": "..."},
        "webhook_secret": "..."
    }

    Returns:
        200: stored config (secrets removed)
        400: invalid or unsupported document
    """
    try:
        record = tenant_service.update_payment_config(
            g.tenant_id, request.get_json(silent=True), actor_id=g.actor_id
        )
    except CommerceError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to update payment config")
        return jsonify({"error": "INTERNAL_ERROR"}), 500
    return jsonify({"record": record.to_dict()})


@admin_settings_bp.post("/payment-config/test")
@require_tenant
@require_actor
def test_payment_config_route():
    """Probe the configured provider with the stored credentials."""
    try:
        adapter = get_payment_adapter(g.tenant.provider_config)
        check = adapter.test_connection()
    except CommerceError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to test payment provider connection")
        return jsonify({"error": "INTERNAL_ERROR"}), 500
    return jsonify({"ok": check.ok, "message": check.message})
