"""
Payment Webhook Processing

WHY: Providers deliver at-least-once and may deliver the same event
concurrently. The only state change a webhook may cause is the single
PENDING -> terminal step of one existing payment, applied exactly once.

FLOW:
    1. external id from the raw body -> Payment by (provider, external_id)
       unknown -> PaymentNotFound (payments are never created here)
    2. terminal payment -> IGNORED_TERMINAL (200)
    3. tenant adapter verifies the signature -> VERIFICATION_FAILED (400)
    4. SUCCEEDED -> apply_payment_success (one commit with the event row)
    5. FAILED    -> apply_payment_failure
       PENDING   -> NO_CHANGE

CONCURRENCY:
The payment row is locked and version-checked; a losing delivery is retried
by run_with_retry and exits at step 2 on its second read.

SECURITY:
Nothing from the body is trusted before verification except the external
id, which is only used to find the tenant whose secret verifies it.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Mapping

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from ..errors import CommerceError, PaymentNotFound, ProviderVerificationFailed
from ..extensions import db
from ..models import Order, Payment, WebhookEvent
from . import inventory_service, notification_service
from .audit_service import ACTOR_SYSTEM, append_audit_event
from .concurrency import lock_for_update, run_with_retry
from .gateways import STATUS_FAILED, STATUS_SUCCEEDED, UnknownProvider, adapter_class_for
from .order_service import apply_payment_failure, apply_payment_success
from .tenant_service import get_tenant_context, scoped_query


OUTCOME_APPLIED_SUCCEEDED = "APPLIED_SUCCEEDED"
OUTCOME_APPLIED_FAILED = "APPLIED_FAILED"
OUTCOME_NO_CHANGE = "NO_CHANGE"
OUTCOME_IGNORED_TERMINAL = "IGNORED_TERMINAL"
OUTCOME_VERIFICATION_FAILED = "VERIFICATION_FAILED"
OUTCOME_UNKNOWN_PAYMENT = "UNKNOWN_PAYMENT"
OUTCOME_UNKNOWN_PROVIDER = "UNKNOWN_PROVIDER"
OUTCOME_ERROR = "ERROR"

STORED_HEADERS = ("content-type", "user-agent", "x-request-id")


@dataclass(frozen=True)
class WebhookResult:
    outcome: str
    payment_id: int | None = None
    tenant_id: int | None = None
    order_number: str | None = None
    debited_product_ids: tuple[int, ...] = ()

    def to_dict(self) -> dict:
        return {"received": True, "outcome": self.outcome}


def _stored_headers(headers: Mapping[str, str], signature_header: str | None = None) -> dict:
    wanted = set(STORED_HEADERS)
    if signature_header:
        wanted.add(signature_header.lower())
    return {key.lower(): value for key, value in headers.items() if key.lower() in wanted}


def _add_event(
    *,
    provider: str,
    raw_body: bytes,
    headers: dict,
    external_id: str | None,
    tenant_id: int | None,
    processed: bool,
    outcome: str,
    error: str | None = None,
) -> WebhookEvent:
    event = WebhookEvent(
        provider=provider,
        tenant_id=tenant_id,
        external_id=external_id,
        raw_body=raw_body.decode("utf-8", errors="replace"),
        headers=headers,
        processed=processed,
        outcome=outcome,
        error=error[:255] if error else None,
    )
    db.session.add(event)
    return event


def _record_unprocessed(**kwargs) -> None:
    """Separate short transaction for deliveries that changed nothing."""
    try:
        _add_event(processed=False, **kwargs)
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.exception("Failed to record webhook event for %s", kwargs.get("provider"))


def process_webhook(provider: str, raw_body: bytes, headers: Mapping[str, str]) -> WebhookResult:
    """
    Apply one provider delivery.

    Raises:
        UnknownProvider / PaymentNotFound (404)
        ProviderVerificationFailed (400)
        anything unexpected after recording an ERROR event (500)
    """
    try:
        adapter_cls = adapter_class_for(provider)
    except UnknownProvider as exc:
        _record_unprocessed(
            provider=(provider or "?").upper()[:16],
            raw_body=raw_body,
            headers=_stored_headers(headers),
            external_id=None,
            tenant_id=None,
            outcome=OUTCOME_UNKNOWN_PROVIDER,
            error=exc.code,
        )
        raise
    provider_name = adapter_cls.provider
    stored_headers = _stored_headers(headers, adapter_cls.signature_header)
    external_id = adapter_cls.extract_external_id(raw_body)
    event_kwargs = {
        "provider": provider_name,
        "raw_body": raw_body,
        "headers": stored_headers,
        "external_id": external_id,
    }

    if not external_id:
        _record_unprocessed(tenant_id=None, outcome=OUTCOME_UNKNOWN_PAYMENT, error="external id missing", **event_kwargs)
        raise PaymentNotFound("Payment not found")

    # Set once the payment is found so failures are still attributed to its tenant
    known_tenant_id = None

    def _op() -> WebhookResult:
        nonlocal known_tenant_id
        # Tenant is unknown until the payment is found; (provider, external_id) is globally unique
        payment = lock_for_update(
            db.session.query(Payment).filter(
                Payment.provider == provider_name,
                Payment.external_id == external_id,
            )
        ).first()
        if payment is None:
            db.session.rollback()
            return WebhookResult(outcome=OUTCOME_UNKNOWN_PAYMENT)

        tenant_id = known_tenant_id = payment.tenant_id

        if payment.is_terminal:
            _add_event(tenant_id=tenant_id, processed=True, outcome=OUTCOME_IGNORED_TERMINAL, **event_kwargs)
            append_audit_event(
                tenant_id=tenant_id,
                actor=ACTOR_SYSTEM,
                action="WEBHOOK_IGNORED",
                target_type="payment",
                target_id=payment.id,
                meta={"status": payment.status, "amount_minor": payment.amount_minor, "currency": payment.currency},
            )
            db.session.commit()
            return WebhookResult(outcome=OUTCOME_IGNORED_TERMINAL, payment_id=payment.id, tenant_id=tenant_id)

        provider_config = get_tenant_context(tenant_id).provider_config
        verification = None
        if provider_config.provider == provider_name:
            adapter = adapter_cls(provider_config)
            verification = adapter.verify_webhook(raw_body, headers)

        if verification is None or not verification.ok or verification.external_id != payment.external_id:
            _add_event(
                tenant_id=tenant_id,
                processed=False,
                outcome=OUTCOME_VERIFICATION_FAILED,
                error="signature verification failed",
                **event_kwargs,
            )
            append_audit_event(
                tenant_id=tenant_id,
                actor=ACTOR_SYSTEM,
                action="WEBHOOK_VERIFICATION_FAILED",
                target_type="payment",
                target_id=payment.id,
                meta={"amount_minor": payment.amount_minor, "currency": payment.currency},
            )
            db.session.commit()
            return WebhookResult(outcome=OUTCOME_VERIFICATION_FAILED, payment_id=payment.id, tenant_id=tenant_id)

        order = None
        if payment.order_id:
            order = scoped_query(Order, tenant_id).filter(Order.id == payment.order_id).first()

        debited: list[int] = []
        if verification.status == STATUS_SUCCEEDED:
            debited = apply_payment_success(payment, order, payload=verification.payload)
            outcome = OUTCOME_APPLIED_SUCCEEDED
        elif verification.status == STATUS_FAILED:
            apply_payment_failure(payment, order, payload=verification.payload, reason="provider reported failure")
            outcome = OUTCOME_APPLIED_FAILED
        else:
            append_audit_event(
                tenant_id=tenant_id,
                actor=ACTOR_SYSTEM,
                action="WEBHOOK_NO_CHANGE",
                target_type="payment",
                target_id=payment.id,
                meta={"amount_minor": payment.amount_minor, "currency": payment.currency},
            )
            outcome = OUTCOME_NO_CHANGE

        _add_event(tenant_id=tenant_id, processed=True, outcome=outcome, **event_kwargs)
        db.session.commit()
        return WebhookResult(
            outcome=outcome,
            payment_id=payment.id,
            tenant_id=tenant_id,
            order_number=order.order_number if order else None,
            debited_product_ids=tuple(debited),
        )

    try:
        result = run_with_retry(_op)
    except CommerceError as exc:
        db.session.rollback()
        _record_unprocessed(tenant_id=known_tenant_id, outcome=OUTCOME_ERROR, error=exc.code, **event_kwargs)
        raise
    except Exception as exc:
        db.session.rollback()
        current_app.logger.exception("Webhook processing failed for %s %s", provider_name, external_id)
        _record_unprocessed(tenant_id=known_tenant_id, outcome=OUTCOME_ERROR, error=type(exc).__name__, **event_kwargs)
        raise

    if result.outcome == OUTCOME_UNKNOWN_PAYMENT:
        _record_unprocessed(tenant_id=None, outcome=OUTCOME_UNKNOWN_PAYMENT, **event_kwargs)
        raise PaymentNotFound("Payment not found")
    if result.outcome == OUTCOME_VERIFICATION_FAILED:
        current_app.logger.warning("Webhook verification failed for %s payment %s", provider_name, result.payment_id)
        raise ProviderVerificationFailed("Webhook verification failed")

    _after_commit(result)
    return result


def _after_commit(result: WebhookResult) -> None:
    """Best-effort follow-ups; the delivery is already acknowledged."""
    if result.outcome not in (OUTCOME_APPLIED_SUCCEEDED, OUTCOME_APPLIED_FAILED):
        return

    if result.debited_product_ids:
        inventory_service.run_low_stock_check(result.tenant_id, list(result.debited_product_ids))

    if not result.order_number:
        return
    order = scoped_query(Order, result.tenant_id).filter(Order.order_number == result.order_number).first()
    if order is None:
        return
    event = (
        notification_service.EVENT_ORDER_CONFIRMED
        if result.outcome == OUTCOME_APPLIED_SUCCEEDED
        else notification_service.EVENT_ORDER_CANCELLED
    )
    notification_service.notify_order_event(order, event)
