"""
Multi-Tenant Service: Tenant Resolution and Scoping Helpers

WHY: Every storefront and admin call starts from a slug or a host header.
That value is resolved exactly once per request into a TenantContext; from
then on every service call takes the resolved tenant_id, never the slug.

SECURITY INVARIANTS:
1. Inactive or unknown tenants resolve to TenantNotFound
2. Queries touching tenant-owned rows are built with scoped_query(), which
   refuses to build a query without a tenant id
3. Provider credentials reach the core only as an upgraded
   PaymentProviderConfig

CACHING:
Resolution results are cached in-process for TENANT_CACHE_TTL_SECONDS.
update_payment_config() invalidates every cached entry of the tenant it
changes.

USAGE:
    from shopcore.services.tenant_service import resolve_tenant, scoped_query

    ctx = resolve_tenant(request.host)
    orders = scoped_query(Order, ctx.tenant_id).filter_by(status="PENDING").all()
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass

from flask import current_app
from sqlalchemy import func, or_
from sqlalchemy.exc import IntegrityError

from ..errors import TenantNotFound, ValidationError
from ..extensions import db
from ..models import Tenant, TenantPaymentConfig
from .audit_service import append_audit_event
from .concurrency import run_with_retry
from .payment_config import PaymentProviderConfig, upgrade_payment_config


class TenantAccessError(Exception):
    """Raised when a tenant-owned query is built without a tenant id."""
    pass


@dataclass(frozen=True)
class TenantContext:
    tenant_id: int
    slug: str
    name: str
    currency: str
    tax_rate_bps: int
    shipping_flat_minor: int
    provider_config: PaymentProviderConfig


_cache: dict[str, tuple[float, TenantContext]] = {}
_cache_lock = threading.Lock()


def _normalize_key(slug_or_host: str) -> str:
    # Host headers may carry a port ("shop.example.com:8443")
    return (slug_or_host or "").strip().lower().split(":", 1)[0]


def _load_provider_config(tenant_id: int) -> PaymentProviderConfig:
    record = db.session.query(TenantPaymentConfig).filter_by(tenant_id=tenant_id).first()
    if record is None:
        return PaymentProviderConfig()
    return PaymentProviderConfig.from_dict(upgrade_payment_config(record.config_json))


def _build_context(tenant: Tenant) -> TenantContext:
    return TenantContext(
        tenant_id=tenant.id,
        slug=tenant.slug,
        name=tenant.name,
        currency=tenant.currency,
        tax_rate_bps=tenant.tax_rate_bps,
        shipping_flat_minor=tenant.shipping_flat_minor,
        provider_config=_load_provider_config(tenant.id),
    )


def resolve_tenant(slug_or_host: str) -> TenantContext:
    """
    Resolve a slug or host header to a TenantContext.

    Raises:
        TenantNotFound if nothing active matches
    """
    key = _normalize_key(slug_or_host)
    if not key:
        raise TenantNotFound("Tenant not found")

    ttl = current_app.config.get("TENANT_CACHE_TTL_SECONDS", 300)
    now = time.monotonic()

    with _cache_lock:
        cached = _cache.get(key)
        if cached and cached[0] > now:
            return cached[1]

    tenant = (
        db.session.query(Tenant)
        .filter(
            Tenant.is_active.is_(True),
            or_(func.lower(Tenant.slug) == key, func.lower(Tenant.domain) == key),
        )
        .first()
    )
    if tenant is None:
        raise TenantNotFound("Tenant not found")

    ctx = _build_context(tenant)
    if ttl > 0:
        with _cache_lock:
            _cache[key] = (now + ttl, ctx)
    return ctx


def get_tenant_context(tenant_id: int) -> TenantContext:
    """Context for an already-known tenant id (webhooks, CLI). Not cached."""
    tenant = db.session.query(Tenant).filter_by(id=tenant_id).first()
    if tenant is None:
        raise TenantNotFound("Tenant not found")
    return _build_context(tenant)


def invalidate_tenant_cache(tenant_id: int | None = None) -> None:
    """Drop cached resolutions for one tenant, or all of them."""
    with _cache_lock:
        if tenant_id is None:
            _cache.clear()
            return
        for key in [k for k, (_, ctx) in _cache.items() if ctx.tenant_id == tenant_id]:
            del _cache[key]


def scoped_query(model, tenant_id: int):
    """
    Start a query on a tenant-owned model, already filtered by tenant.

    SECURITY: the only sanctioned way for services to query tenant rows.
    """
    if not tenant_id:
        raise TenantAccessError(f"Tenant context required for {model.__name__} queries")
    return db.session.query(model).filter(model.tenant_id == tenant_id)


def ensure_tenant(
    *,
    slug: str,
    name: str,
    domain: str | None = None,
    currency: str = "KWD",
    tax_rate_bps: int = 0,
    shipping_flat_minor: int = 0,
) -> tuple[Tenant, bool]:
    """
    Idempotent create-if-missing keyed by slug.

    The insert is attempted first and the unique slug constraint decides the
    winner; there is no read-then-write window. Existing tenants are returned
    unchanged (identity is immutable).

    Returns:
        (tenant, created)
    """
    slug = (slug or "").strip().lower()
    if not slug:
        raise ValidationError("slug is required")
    if not name or not name.strip():
        raise ValidationError("name is required")
    if tax_rate_bps < 0 or shipping_flat_minor < 0:
        raise ValidationError("tax_rate_bps and shipping_flat_minor must be >= 0")

    tenant = Tenant(
        slug=slug,
        name=name.strip(),
        domain=(domain or "").strip().lower() or None,
        currency=(currency or "KWD").upper(),
        tax_rate_bps=tax_rate_bps,
        shipping_flat_minor=shipping_flat_minor,
    )
    try:
        with db.session.begin_nested():
            db.session.add(tenant)
        db.session.commit()
        return tenant, True
    except IntegrityError:
        existing = db.session.query(Tenant).filter_by(slug=slug).first()
        if existing is None:
            # Collided on domain, not slug
            db.session.rollback()
            raise ValidationError(f"domain already in use: {domain}")
        return existing, False


def get_payment_config_record(tenant_id: int) -> TenantPaymentConfig | None:
    return db.session.query(TenantPaymentConfig).filter_by(tenant_id=tenant_id).first()


def update_payment_config(tenant_id: int, raw_config: dict, *, actor_id: str) -> TenantPaymentConfig:
    """
    Store a tenant's provider config (any supported schema version).

    The document is upgraded and validated before it is written; the stored
    row always holds the current schema. Invalidates the tenant cache.
    """
    if not isinstance(raw_config, dict):
        raise ValidationError("payment config must be an object")
    config = PaymentProviderConfig.from_dict(upgrade_payment_config(raw_config))

    def _op() -> TenantPaymentConfig:
        tenant = db.session.query(Tenant).filter_by(id=tenant_id).first()
        if tenant is None:
            raise TenantNotFound("Tenant not found")

        record = get_payment_config_record(tenant_id)
        if record is None:
            record = TenantPaymentConfig(tenant_id=tenant_id, schema_version=config.schema_version, config_json={})
            db.session.add(record)
        record.schema_version = config.schema_version
        record.config_json = config.to_dict()
        record.updated_by = str(actor_id)

        append_audit_event(
            tenant_id=tenant_id,
            actor=actor_id,
            action="PAYMENT_CONFIG_UPDATED",
            target_type="tenant",
            target_id=tenant_id,
            meta={"provider": config.provider, "mode": config.mode},
        )
        db.session.commit()
        return record

    record = run_with_retry(_op)
    invalidate_tenant_cache(tenant_id)
    return record
