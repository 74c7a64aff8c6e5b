# Overview: Flask API route receiving payment provider webhooks.

"""
Provider Webhook Route

Providers retry until they see a 2xx, so the status code is the contract:
- 200: applied, or already terminal, or nothing to change
- 400: signature did not verify (provider should not retry a forged call)
- 404: unknown provider or payment
- 500: unexpected failure, nothing applied; the provider will retry

The raw body is passed through untouched: signatures cover the exact bytes.
"""

from flask import Blueprint, request, jsonify, current_app

from ..errors import CommerceError
from ..services import webhook_service


webhooks_bp = Blueprint("webhooks", __name__, url_prefix="/api/webhooks")


@webhooks_bp.post("/<provider>")
def receive_webhook_route(provider: str):
    raw_body = request.get_data(cache=True)
    headers = {key: value for key, value in request.headers.items()}

    try:
        result = webhook_service.process_webhook(provider, raw_body, headers)
    except CommerceError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to process %s webhook", provider)
        return jsonify({"error": "INTERNAL_ERROR"}), 500

    return jsonify(result.to_dict()), 200
