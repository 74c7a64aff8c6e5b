"""
MyFatoorah adapter (Kuwait / GCC).

Checkout: POST /v2/SendPayment; the reply carries Data.InvoiceId and
Data.InvoiceURL. Sandbox and live use different hosts.
Webhook: {"Data": {"InvoiceId", "InvoiceStatus", ...}} signed with a base64
HMAC-SHA256 of the raw body in the `myfatoorah-signature` header.
"""

from __future__ import annotations

from typing import Mapping

from ...errors import PaymentProviderError
from ..payment_config import MODE_LIVE
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


MYFATOORAH_LIVE_URL = "https://api.myfatoorah.com"
MYFATOORAH_SANDBOX_URL = "https://apitest.myfatoorah.com"

STATUS_MAP = {
    "PAID": STATUS_SUCCEEDED,
    "FAILED": STATUS_FAILED,
    "CANCELLED": STATUS_FAILED,
    "CANCELED": STATUS_FAILED,
    "EXPIRED": STATUS_FAILED,
    "PENDING": STATUS_PENDING,
}


def _invoice_data(payload: dict) -> dict:
    data = payload.get("Data")
    return data if isinstance(data, dict) else {}


class MyFatoorahAdapter(PaymentAdapter):
    provider = "MYFATOORAH"
    signature_header = "myfatoorah-signature"

    @property
    def base_url(self) -> str:
        return MYFATOORAH_LIVE_URL if self.config.mode == MODE_LIVE else MYFATOORAH_SANDBOX_URL

    def _auth_token(self) -> str | None:
        return self.config.credential("api_key")

    def create_hosted_checkout(self, checkout: CheckoutInput) -> HostedCheckout:
        customer = checkout.customer
        amount = major_amount_for_json(checkout.amount_minor, checkout.currency)
        payload = {
            "NotificationOption": "LNK",
            "InvoiceValue": amount,
            "DisplayCurrencyIso": checkout.currency,
            "CustomerName": (customer.name if customer else None) or "Customer",
            "CustomerEmail": customer.email if customer else "",
            "CustomerMobile": (customer.phone or "") if customer else "",
            "CustomerReference": checkout.order_number,
            "UserDefinedField": str(checkout.tenant_id),
            "CallBackUrl": checkout.redirect_urls.success,
            "ErrorUrl": checkout.redirect_urls.failure,
            "Language": "en",
        }

        data = self._request("POST", "/v2/SendPayment", json_body=payload)
        if not data.get("IsSuccess"):
            raise PaymentProviderError(f"MYFATOORAH rejected the invoice: {data.get('Message')}")
        invoice = _invoice_data(data)
        invoice_id = invoice.get("InvoiceId")
        invoice_url = invoice.get("InvoiceURL")
        if invoice_id in (None, "") or not invoice_url:
            raise PaymentProviderError("MYFATOORAH response missing InvoiceId or InvoiceURL")
        return HostedCheckout(external_id=str(invoice_id), redirect_url=invoice_url, raw=data)

    def verify_webhook(self, raw_body: bytes, headers: Mapping[str, str]) -> WebhookVerification:
        signature = header_value(headers, self.signature_header)
        if not verify_hmac_signature(raw_body, signature, self.config.webhook_secret, encoding="base64"):
            return WebhookVerification(ok=False)

        payload = parse_json_body(raw_body)
        if payload is None:
            return WebhookVerification(ok=False)
        invoice = _invoice_data(payload)
        invoice_id = invoice.get("InvoiceId")
        if invoice_id in (None, ""):
            return WebhookVerification(ok=False)

        status = STATUS_MAP.get(str(invoice.get("InvoiceStatus") or "").upper(), STATUS_PENDING)
        return WebhookVerification(ok=True, external_id=str(invoice_id), status=status, payload=payload)

    def test_connection(self) -> ConnectionCheck:
        try:
            self._request("POST", "/v2/GetPaymentStatus", json_body={"Key": "0", "KeyType": "InvoiceId"})
        except PaymentProviderError as exc:
            return ConnectionCheck(ok=False, message=f"Connection failed: {exc}")
        return ConnectionCheck(ok=True, message="Connection successful")

    @classmethod
    def extract_external_id(cls, raw_body: bytes) -> str | None:
        payload = parse_json_body(raw_body)
        if payload is None:
            return None
        invoice_id = _invoice_data(payload).get("InvoiceId")
        return None if invoice_id in (None, "") else str(invoice_id)
