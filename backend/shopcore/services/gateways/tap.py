"""
Tap Payments adapter (Kuwait).

Checkout: POST /v2/charges with a Bearer secret key; the reply carries the
charge id and transaction.url (hosted payment page).
Webhook: JSON charge object, signed with a hex HMAC-SHA256 of the raw body
in the `x-tap-signature` header.
"""

from __future__ import annotations

from typing import Mapping

from ...errors import PaymentProviderError
from .base import (
    STATUS_FAILED,
    STATUS_PENDING,
    STATUS_SUCCEEDED,
    CheckoutInput,
    ConnectionCheck,
    HostedCheckout,
    PaymentAdapter,
    WebhookVerification,
    header_value,
    major_amount_for_json,
    parse_json_body,
    verify_hmac_signature,
)


TAP_API_URL = "https://api.tap.company"

# Tap charge status -> payment status
STATUS_MAP = {
    "CAPTURED": STATUS_SUCCEEDED,
    "AUTHORIZED": STATUS_PENDING,
    "INITIATED": STATUS_PENDING,
    "IN_PROGRESS": STATUS_PENDING,
    "FAILED": STATUS_FAILED,
    "DECLINED": STATUS_FAILED,
    "CANCELLED": STATUS_FAILED,
    "ABANDONED": STATUS_FAILED,
    "VOID": STATUS_FAILED,
    "TIMEDOUT": STATUS_FAILED,
}


class TapAdapter(PaymentAdapter):
    provider = "TAP"
    signature_header = "x-tap-signature"

    @property
    def base_url(self) -> str:
        # Tap uses one host; the key pair decides sandbox vs live
        return TAP_API_URL

    def _auth_token(self) -> str | None:
        return self.config.credential("secret_key")

    def create_hosted_checkout(self, checkout: CheckoutInput) -> HostedCheckout:
        customer = checkout.customer
        first_name, _, last_name = ((customer.name if customer else "") or "Customer").partition(" ")
        payload = {
            "amount": major_amount_for_json(checkout.amount_minor, checkout.currency),
            "currency": checkout.currency,
            "threeDSecure": True,
            "save_card": False,
            "description": f"Payment for order {checkout.order_number}",
            "metadata": {
                "udf1": str(checkout.tenant_id),
                "udf2": checkout.order_number,
            },
            "reference": {
                "transaction": checkout.order_number,
                "order": checkout.order_number,
            },
            "customer": {
                "first_name": first_name,
                "last_name": last_name,
                "email": customer.email if customer else "",
                "phone": {"number": (customer.phone or "") if customer else ""},
            },
            "source": {"id": "src_all"},
            "redirect": {"url": checkout.redirect_urls.success},
            "post": {"url": checkout.webhook_url},
        }
        public_key = self.config.credential("public_key")
        if public_key:
            payload["merchant"] = {"id": public_key}

        data = self._request("POST", "/v2/charges", json_body=payload)
        charge_id = data.get("id")
        redirect_url = (data.get("transaction") or {}).get("url")
        if not charge_id or not redirect_url:
            raise PaymentProviderError("TAP response missing charge id or transaction url")
        return HostedCheckout(external_id=str(charge_id), redirect_url=redirect_url, raw=data)

    def verify_webhook(self, raw_body: bytes, headers: Mapping[str, str]) -> WebhookVerification:
        signature = header_value(headers, self.signature_header)
        if not verify_hmac_signature(raw_body, signature, self.config.webhook_secret, encoding="hex"):
            return WebhookVerification(ok=False)

        payload = parse_json_body(raw_body)
        if payload is None or not payload.get("id"):
            return WebhookVerification(ok=False)

        status = STATUS_MAP.get(str(payload.get("status") or "").upper())
        if status is None:
            # Unknown states are neither success nor failure
            status = STATUS_PENDING
        return WebhookVerification(ok=True, external_id=str(payload["id"]), status=status, payload=payload)

    def test_connection(self) -> ConnectionCheck:
        try:
            self._request("GET", "/v2/charges?limit=1")
        except PaymentProviderError as exc:
            return ConnectionCheck(ok=False, message=f"Connection failed: {exc}")
        return ConnectionCheck(ok=True, message="Connection successful")

    @classmethod
    def extract_external_id(cls, raw_body: bytes) -> str | None:
        payload = parse_json_body(raw_body)
        if not payload or not payload.get("id"):
            return None
        return str(payload["id"])
