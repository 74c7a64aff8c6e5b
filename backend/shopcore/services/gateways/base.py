"""
Payment adapter contract shared by every hosted-checkout provider.

An adapter is built per call from a tenant's PaymentProviderConfig. It never
touches the database; the order/payment state machine owns all state.

SECURITY:
- Webhook bodies are trusted only after an HMAC-SHA256 over the raw bytes
  matches the provider signature header (constant-time comparison)
- extract_external_id() reads the raw body WITHOUT verification and is only
  used to find the payment (and therefore the tenant secret) to verify with
"""

from __future__ import annotations

import base64
import hashlib
import hmac
import json
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Mapping

import httpx
from flask import current_app

from ...errors import PaymentProviderError
from ...validation import CustomerInfo, RedirectUrls
from ..payment_config import PaymentProviderConfig


STATUS_SUCCEEDED = "SUCCEEDED"
STATUS_FAILED = "FAILED"
STATUS_PENDING = "PENDING"

# ISO 4217 minor-unit exponents that differ from the default of 2
CURRENCY_EXPONENTS = {
    "KWD": 3,
    "BHD": 3,
    "OMR": 3,
    "JOD": 3,
    "IQD": 3,
    "LYD": 3,
    "TND": 3,
    "JPY": 0,
}


def currency_exponent(currency: str) -> int:
    return CURRENCY_EXPONENTS.get((currency or "").upper(), 2)


def minor_to_major(amount_minor: int, currency: str) -> Decimal:
    """Exact major-unit amount: 1800 KWD fils -> Decimal('1.800')."""
    exponent = currency_exponent(currency)
    return Decimal(int(amount_minor)).scaleb(-exponent).quantize(Decimal(1).scaleb(-exponent))


def major_amount_for_json(amount_minor: int, currency: str) -> float:
    # float() of a 3-decimal Decimal round-trips through JSON as the same text
    return float(minor_to_major(amount_minor, currency))


def hmac_sha256(secret: str, raw_body: bytes) -> bytes:
    return hmac.new((secret or "").encode("utf-8"), raw_body, hashlib.sha256).digest()


def verify_hmac_signature(raw_body: bytes, signature: str | None, secret: str | None, *, encoding: str = "hex") -> bool:
    """
    Verify an HMAC-SHA256 signature over the raw request body.

    Returns False for a missing secret or signature rather than trusting an
    unsigned call.
    """
    if not secret or not signature:
        return False
    digest = hmac_sha256(secret, raw_body)
    if encoding == "hex":
        expected = digest.hex()
        return hmac.compare_digest(expected, signature.strip().lower())
    if encoding == "base64":
        expected = base64.b64encode(digest).decode("ascii")
        return hmac.compare_digest(expected, signature.strip())
    return False


def header_value(headers: Mapping[str, str], name: str) -> str | None:
    """Case-insensitive header lookup over a plain mapping."""
    lowered = name.lower()
    for key, value in headers.items():
        if key.lower() == lowered:
            return value
    return None


def parse_json_body(raw_body: bytes) -> dict | None:
    try:
        data = json.loads(raw_body)
    except (ValueError, UnicodeDecodeError):
        return None
    return data if isinstance(data, dict) else None


@dataclass(frozen=True)
class CheckoutInput:
    tenant_id: int
    amount_minor: int
    currency: str
    order_number: str
    redirect_urls: RedirectUrls
    webhook_url: str
    customer: CustomerInfo | None = None


@dataclass(frozen=True)
class HostedCheckout:
    external_id: str
    redirect_url: str
    raw: dict | None = None


@dataclass(frozen=True)
class WebhookVerification:
    ok: bool
    external_id: str | None = None
    status: str | None = None
    payload: dict | None = None


@dataclass(frozen=True)
class ConnectionCheck:
    ok: bool
    message: str


class PaymentAdapter:
    """
    Base class for provider adapters.

    Subclasses set `provider`, `signature_header` and implement
    create_hosted_checkout / verify_webhook / test_connection /
    extract_external_id.
    """

    provider = "NONE"
    signature_header = ""

    def __init__(self, config: PaymentProviderConfig, *, timeout: float = 15.0, transport: httpx.BaseTransport | None = None):
        self.config = config
        self.timeout = timeout
        self.transport = transport

    # -- HTTP -----------------------------------------------------------------

    @property
    def base_url(self) -> str:
        raise NotImplementedError

    def _auth_token(self) -> str | None:
        raise NotImplementedError

    def _headers(self) -> dict:
        headers = {"Content-Type": "application/json", "Accept": "application/json"}
        token = self._auth_token()
        if token:
            headers["Authorization"] = f"Bearer {token}"
        return headers

    def _client(self) -> httpx.Client:
        return httpx.Client(base_url=self.base_url, timeout=self.timeout, transport=self.transport)

    def _request(self, method: str, path: str, *, json_body: Any = None) -> dict:
        """
        Call the provider and return its JSON object.

        Raises:
            PaymentProviderError on network failure, non-2xx or non-JSON reply
        """
        try:
            with self._client() as client:
                response = client.request(method, path, headers=self._headers(), json=json_body)
        except httpx.HTTPError as exc:
            current_app.logger.warning("%s %s %s failed: %s", self.provider, method, path, exc)
            raise PaymentProviderError(f"{self.provider} request failed") from exc

        if response.status_code >= 400:
            current_app.logger.warning(
                "%s %s %s returned HTTP %s: %s",
                self.provider, method, path, response.status_code, response.text[:500],
            )
            raise PaymentProviderError(f"{self.provider} returned HTTP {response.status_code}")

        try:
            data = response.json()
        except ValueError as exc:
            raise PaymentProviderError(f"{self.provider} returned a non-JSON response") from exc
        if not isinstance(data, dict):
            raise PaymentProviderError(f"{self.provider} returned an unexpected response")
        return data

    # -- Contract -------------------------------------------------------------

    def create_hosted_checkout(self, checkout: CheckoutInput) -> HostedCheckout:
        raise NotImplementedError

    def verify_webhook(self, raw_body: bytes, headers: Mapping[str, str]) -> WebhookVerification:
        raise NotImplementedError

    def test_connection(self) -> ConnectionCheck:
        raise NotImplementedError

    @classmethod
    def extract_external_id(cls, raw_body: bytes) -> str | None:
        raise NotImplementedError
