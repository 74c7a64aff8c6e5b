# Overview: Resolve a tenant's provider config to a concrete adapter.

from __future__ import annotations

from flask import current_app

from ...errors import NotFoundError, PaymentNotConfigured
from ..payment_config import PROVIDER_MYFATOORAH, PROVIDER_TAP, PaymentProviderConfig
from .base import PaymentAdapter
from .myfatoorah import MyFatoorahAdapter
from .tap import TapAdapter


ADAPTERS: dict[str, type[PaymentAdapter]] = {
    PROVIDER_TAP: TapAdapter,
    PROVIDER_MYFATOORAH: MyFatoorahAdapter,
}


class UnknownProvider(NotFoundError):
    code = "UNKNOWN_PROVIDER"


def adapter_class_for(provider: str) -> type[PaymentAdapter]:
    """Adapter class by provider name (used for webhook routing)."""
    adapter_cls = ADAPTERS.get((provider or "").upper())
    if adapter_cls is None:
        raise UnknownProvider(f"Unknown payment provider: {provider}")
    return adapter_cls


def get_payment_adapter(provider_config: PaymentProviderConfig | None) -> PaymentAdapter:
    """
    Adapter for a tenant's configuration.

    No silent fallback: NONE, missing credentials, or a provider without an
    adapter (PAYTABS, HYPERPAY) all raise PaymentNotConfigured.
    """
    if provider_config is None or not provider_config.is_configured:
        raise PaymentNotConfigured("Payment provider is not configured")

    adapter_cls = ADAPTERS.get(provider_config.provider)
    if adapter_cls is None:
        raise PaymentNotConfigured(f"{provider_config.provider} payments are not supported")

    return adapter_cls(
        provider_config,
        timeout=current_app.config.get("PAYMENT_HTTP_TIMEOUT_SECONDS", 15),
        transport=current_app.config.get("PAYMENT_HTTP_TRANSPORT"),
    )
