"""
Versioned payment provider configuration.

WHY: Tenants configured providers through several generations of the admin
settings page. Older rows hold a flat camelCase document (schema v1) with
every provider's keys side by side. The transaction core only ever sees the
current shape, produced by the pure upgrade_payment_config() function.

SCHEMA v2:
    {
        "schema_version": 2,
        "provider": "TAP" | "MYFATOORAH" | "PAYTABS" | "HYPERPAY" | "NONE",
        "mode": "sandbox" | "live",
        "credentials": {...},          # keys for the selected provider only
        "webhook_secret": "..." | None,
    }
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping

from ..errors import ValidationError


CURRENT_SCHEMA_VERSION = 2

PROVIDER_NONE = "NONE"
PROVIDER_TAP = "TAP"
PROVIDER_MYFATOORAH = "MYFATOORAH"
PROVIDER_PAYTABS = "PAYTABS"
PROVIDER_HYPERPAY = "HYPERPAY"
ALL_PROVIDERS = {PROVIDER_NONE, PROVIDER_TAP, PROVIDER_MYFATOORAH, PROVIDER_PAYTABS, PROVIDER_HYPERPAY}

MODE_SANDBOX = "sandbox"
MODE_LIVE = "live"
ALL_MODES = {MODE_SANDBOX, MODE_LIVE}

# v1 flat key -> (provider, v2 credential key)
_V1_CREDENTIAL_KEYS = {
    "tapPublicKey": (PROVIDER_TAP, "public_key"),
    "tapSecretKey": (PROVIDER_TAP, "secret_key"),
    "myfatoorahApiKey": (PROVIDER_MYFATOORAH, "api_key"),
    "paytabsProfileId": (PROVIDER_PAYTABS, "profile_id"),
    "paytabsServerKey": (PROVIDER_PAYTABS, "server_key"),
    "hyperpayEntityId": (PROVIDER_HYPERPAY, "entity_id"),
    "hyperpayToken": (PROVIDER_HYPERPAY, "token"),
}

# Credentials an adapter cannot work without
REQUIRED_CREDENTIALS = {
    PROVIDER_TAP: ("secret_key",),
    PROVIDER_MYFATOORAH: ("api_key",),
    PROVIDER_PAYTABS: ("profile_id", "server_key"),
    PROVIDER_HYPERPAY: ("entity_id", "token"),
}


@dataclass(frozen=True)
class PaymentProviderConfig:
    """Immutable, already-upgraded provider configuration for one tenant."""

    provider: str = PROVIDER_NONE
    mode: str = MODE_SANDBOX
    credentials: Mapping[str, str] = field(default_factory=dict)
    webhook_secret: str | None = None
    schema_version: int = CURRENT_SCHEMA_VERSION

    @property
    def is_configured(self) -> bool:
        if self.provider == PROVIDER_NONE:
            return False
        required = REQUIRED_CREDENTIALS.get(self.provider, ())
        return all(self.credentials.get(key) for key in required)

    def credential(self, key: str) -> str | None:
        return self.credentials.get(key)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any] | None) -> "PaymentProviderConfig":
        """
        Build from a v2 document.

        Raises ValidationError for anything that is not the current schema;
        callers holding older documents must upgrade first.
        """
        if not data:
            return cls()
        if data.get("schema_version") != CURRENT_SCHEMA_VERSION:
            raise ValidationError(
                f"payment config schema_version must be {CURRENT_SCHEMA_VERSION}"
            )

        provider = str(data.get("provider") or PROVIDER_NONE).upper()
        if provider not in ALL_PROVIDERS:
            raise ValidationError(f"Unknown payment provider: {provider}")

        mode = str(data.get("mode") or MODE_SANDBOX).lower()
        if mode not in ALL_MODES:
            raise ValidationError(f"mode must be one of: {', '.join(sorted(ALL_MODES))}")

        credentials = data.get("credentials") or {}
        if not isinstance(credentials, Mapping):
            raise ValidationError("credentials must be an object")

        return cls(
            provider=provider,
            mode=mode,
            credentials={str(k): str(v) for k, v in credentials.items() if v not in (None, "")},
            webhook_secret=data.get("webhook_secret") or None,
        )

    def to_dict(self) -> dict:
        return {
            "schema_version": self.schema_version,
            "provider": self.provider,
            "mode": self.mode,
            "credentials": dict(self.credentials),
            "webhook_secret": self.webhook_secret,
        }


def _upgrade_v1(raw: Mapping[str, Any]) -> dict:
    provider = str(raw.get("provider") or PROVIDER_NONE).upper()
    # v1 rows could be saved but flagged invalid by the settings page
    if raw.get("isValid") is False:
        provider = PROVIDER_NONE

    credentials = {}
    for v1_key, (owner, v2_key) in _V1_CREDENTIAL_KEYS.items():
        value = raw.get(v1_key)
        if owner == provider and value:
            credentials[v2_key] = value

    return {
        "schema_version": CURRENT_SCHEMA_VERSION,
        "provider": provider,
        "mode": str(raw.get("mode") or MODE_SANDBOX).lower(),
        "credentials": credentials,
        "webhook_secret": raw.get("webhookSecret") or None,
    }


def upgrade_payment_config(raw: Mapping[str, Any] | None) -> dict:
    """
    Pure upgrade of any stored payment config document to the current schema.

    - None / {} -> an unconfigured v2 document (provider NONE)
    - v1 (no schema_version, or schema_version == 1) -> mapped to v2
    - v2 -> returned as a copy
    Never mutates its input.
    """
    if not raw:
        return PaymentProviderConfig().to_dict()

    version = raw.get("schema_version", 1)
    if version == 1:
        return _upgrade_v1(raw)
    if version == CURRENT_SCHEMA_VERSION:
        upgraded = dict(raw)
        upgraded["credentials"] = dict(raw.get("credentials") or {})
        return upgraded

    raise ValidationError(f"Unsupported payment config schema_version: {version}")
