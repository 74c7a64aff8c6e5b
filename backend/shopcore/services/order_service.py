# Overview: Order/Payment state machine: checkout creation, transitions and expiry.

"""
Order & Payment State Machine

STATE MACHINES:
    Payment: PENDING -> SUCCEEDED | FAILED            (both terminal)
    Order:   PENDING -> CONFIRMED -> PROCESSING -> SHIPPED -> DELIVERED
             PENDING | CONFIRMED -> CANCELLED
             CONFIRMED | PROCESSING | SHIPPED | DELIVERED -> REFUNDED

    Anything else raises InvalidTransition.

CHECKOUT (create_checkout):
    tx1  Order(PENDING) + OrderItems + Payment(PENDING) + coupon reservation
    ---  provider call (outside any transaction)
    tx2  external_id / redirect_url stored, cart cleared
    A provider failure compensates tx1: Payment FAILED, Order CANCELLED,
    reservation released.

CONFIRMATION (apply_payment_success, called by webhook_service):
    Payment SUCCEEDED, Order CONFIRMED, coupon redeemed, SALE movements.
    All inside the caller's transaction; the caller commits once.

STOCK:
    Stock is debited only at confirmation, never at checkout. Leaving a
    debited state for CANCELLED / REFUNDED writes RETURN movements.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta

from flask import current_app

from ..errors import (
    CartEmpty,
    CommerceError,
    CouponRejected,
    InvalidTransition,
    OrderNotFound,
    OrderTotalZero,
    PaymentProviderError,
    ProductUnavailable,
    ValidationError,
)
from ..extensions import db
from ..models import Order, OrderItem, Payment
from ..models.coupons import COUPON_FREE_SHIPPING
from ..models.inventory import MOVEMENT_RETURN, MOVEMENT_SALE
from ..models.orders import (
    ORDER_CANCELLED,
    ORDER_CONFIRMED,
    ORDER_DELIVERED,
    ORDER_PENDING,
    ORDER_PROCESSING,
    ORDER_REFUNDED,
    ORDER_SHIPPED,
    PAYMENT_FAILED,
    PAYMENT_PENDING,
    PAYMENT_SUCCEEDED,
)
from ..time_utils import utcnow
from ..validation import CheckoutRequest, OrderSnapshot, SnapshotItem
from . import cart_service, coupon_service, inventory_service, notification_service
from .audit_service import ACTOR_SYSTEM, append_audit_event
from .catalog_service import get_active_product, get_category_map
from .concurrency import lock_for_update, run_with_retry
from .document_service import next_order_number
from .gateways import CheckoutInput, get_payment_adapter
from .tenant_service import TenantContext, scoped_query


ORDER_TRANSITIONS = {
    ORDER_PENDING: {ORDER_CONFIRMED, ORDER_CANCELLED},
    ORDER_CONFIRMED: {ORDER_PROCESSING, ORDER_CANCELLED, ORDER_REFUNDED},
    ORDER_PROCESSING: {ORDER_SHIPPED, ORDER_REFUNDED},
    ORDER_SHIPPED: {ORDER_DELIVERED, ORDER_REFUNDED},
    ORDER_DELIVERED: {ORDER_REFUNDED},
    ORDER_CANCELLED: set(),
    ORDER_REFUNDED: set(),
}

PAYMENT_TRANSITIONS = {
    PAYMENT_PENDING: {PAYMENT_SUCCEEDED, PAYMENT_FAILED},
    PAYMENT_SUCCEEDED: set(),
    PAYMENT_FAILED: set(),
}

# Targets an admin may request; CONFIRMED is reachable only through a verified payment
ADMIN_TARGETS = {ORDER_PROCESSING, ORDER_SHIPPED, ORDER_DELIVERED, ORDER_CANCELLED, ORDER_REFUNDED}

CHECKOUT_FAILED_MESSAGE = "Payment could not be started, please try again"


def can_transition_order(current: str, target: str) -> bool:
    return target in ORDER_TRANSITIONS.get(current, set())


def transition_order_status(order: Order, target: str) -> None:
    if not can_transition_order(order.status, target):
        raise InvalidTransition("order", order.status, target)
    order.status = target
    if target == ORDER_CONFIRMED:
        order.confirmed_at = utcnow()
    elif target == ORDER_CANCELLED:
        order.cancelled_at = utcnow()


def transition_payment_status(payment: Payment, target: str) -> None:
    if target not in PAYMENT_TRANSITIONS.get(payment.status, set()):
        raise InvalidTransition("payment", payment.status, target)
    payment.status = target
    payment.completed_at = utcnow()


def _money_meta(payment: Payment, **extra) -> dict:
    meta = {"amount_minor": payment.amount_minor, "currency": payment.currency, "provider": payment.provider}
    meta.update(extra)
    return meta


# =============================================================================
# Totals
# =============================================================================

@dataclass(frozen=True)
class OrderTotals:
    subtotal: int
    discount: int
    tax: int
    shipping: int
    total: int


def compute_totals(*, subtotal: int, discount: int, coupon_type: str | None, tax_rate_bps: int, shipping: int) -> OrderTotals:
    """
    total = subtotal - discount + tax + shipping

    Tax applies to goods after a goods discount (FREE_SHIPPING discounts
    shipping, not goods) and rounds half up.
    """
    goods_discount = 0 if coupon_type == COUPON_FREE_SHIPPING else discount
    taxable = max(subtotal - goods_discount, 0)
    tax = (taxable * tax_rate_bps + 5000) // 10000
    total = subtotal - discount + tax + shipping
    return OrderTotals(subtotal=subtotal, discount=discount, tax=tax, shipping=shipping, total=total)


def build_snapshot(
    ctx: TenantContext,
    items,
    *,
    customer_id: str | None = None,
    customer_email: str | None = None,
) -> OrderSnapshot:
    categories = get_category_map(ctx.tenant_id, [item.product_id for item in items])
    return OrderSnapshot(
        subtotal=cart_service.calculate_subtotal(items),
        shipping_cost=ctx.shipping_flat_minor,
        customer_id=customer_id,
        customer_email=customer_email,
        items=tuple(
            SnapshotItem(
                product_id=item.product_id,
                quantity=item.quantity,
                price=item.price_snapshot_minor,
                category_id=categories.get(item.product_id),
            )
            for item in items
        ),
    )


def preview_coupon(ctx: TenantContext, session_key: str, code: str, *, customer_id=None, customer_email=None):
    """Validate a code against the session's current cart. Read-only."""
    items = cart_service.get_cart_items(ctx.tenant_id, session_key)
    snapshot = build_snapshot(ctx, items, customer_id=customer_id, customer_email=customer_email)
    return coupon_service.validate_coupon(ctx.tenant_id, code, snapshot)


# =============================================================================
# Checkout
# =============================================================================

@dataclass(frozen=True)
class CheckoutResult:
    order_id: int
    order_number: str
    payment_id: int
    redirect_url: str

    def to_dict(self) -> dict:
        return {
            "redirect_url": self.redirect_url,
            "payment_id": self.payment_id,
            "order_id": self.order_id,
            "order_number": self.order_number,
        }


def _create_pending_order(ctx: TenantContext, session_key: str, request: CheckoutRequest) -> tuple[int, int]:
    """tx1: everything that must exist before the provider is called."""
    tenant_id = ctx.tenant_id
    items = cart_service.get_cart_items(tenant_id, session_key)
    if not items:
        raise CartEmpty("Cart is empty")

    for item in items:
        product = get_active_product(tenant_id, item.product_id)
        if item.currency != ctx.currency or product.currency != ctx.currency:
            raise ProductUnavailable(f"Product {item.product_id} is not available")

    customer = request.customer
    snapshot = build_snapshot(ctx, items, customer_id=customer.customer_id, customer_email=customer.email)

    coupon = None
    discount = 0
    if request.coupon_code:
        validation = coupon_service.validate_coupon(tenant_id, request.coupon_code, snapshot)
        if not validation.valid:
            raise CouponRejected(validation.reason)
        coupon = validation.coupon
        discount = validation.discount_amount

    totals = compute_totals(
        subtotal=snapshot.subtotal,
        discount=discount,
        coupon_type=coupon.type if coupon else None,
        tax_rate_bps=ctx.tax_rate_bps,
        shipping=ctx.shipping_flat_minor,
    )
    if totals.total <= 0:
        raise OrderTotalZero("order total must be greater than zero")

    order = Order(
        tenant_id=tenant_id,
        order_number=next_order_number(tenant_id),
        status=ORDER_PENDING,
        customer_id=customer.customer_id,
        customer_name=customer.name,
        customer_email=customer.email,
        customer_phone=customer.phone,
        coupon_id=coupon.id if coupon else None,
        coupon_code=coupon.code if coupon else None,
        subtotal=totals.subtotal,
        discount=totals.discount,
        tax=totals.tax,
        shipping=totals.shipping,
        total=totals.total,
        currency=ctx.currency,
    )
    db.session.add(order)
    db.session.flush()

    for line_number, item in enumerate(items, start=1):
        db.session.add(
            OrderItem(
                order_id=order.id,
                tenant_id=tenant_id,
                line_number=line_number,
                product_id=item.product_id,
                variant_key=item.variant_key,
                name_snapshot=item.title_snapshot,
                price_snapshot=item.price_snapshot_minor,
                quantity=item.quantity,
                line_total=item.line_total_minor,
            )
        )

    if coupon is not None:
        # Raises CouponRaceLost; the whole unit rolls back with it
        coupon_service.reserve_coupon(tenant_id, coupon.id)

    payment = Payment(
        tenant_id=tenant_id,
        order_id=order.id,
        provider=ctx.provider_config.provider,
        status=PAYMENT_PENDING,
        amount_minor=totals.total,
        currency=ctx.currency,
    )
    db.session.add(payment)
    db.session.flush()

    append_audit_event(
        tenant_id=tenant_id,
        actor=customer.customer_id or ACTOR_SYSTEM,
        action="ORDER_CREATED",
        target_type="order",
        target_id=order.id,
        meta=_money_meta(payment, order_number=order.order_number, coupon_code=order.coupon_code),
    )
    db.session.commit()
    return order.id, payment.id


def _abort_checkout(tenant_id: int, order_id: int, payment_id: int, reason: str) -> None:
    """Compensate tx1 after the provider refused or was unreachable."""
    def _op():
        payment = lock_for_update(
            scoped_query(Payment, tenant_id).filter(Payment.id == payment_id)
        ).first()
        if payment is None or payment.status != PAYMENT_PENDING:
            db.session.rollback()
            return
        order = scoped_query(Order, tenant_id).filter(Order.id == order_id).first()
        apply_payment_failure(payment, order, payload=None, reason=reason, action="CHECKOUT_FAILED")
        db.session.commit()

    run_with_retry(_op)


def create_checkout(ctx: TenantContext, session_key: str, request: CheckoutRequest) -> CheckoutResult:
    """
    Turn the session's cart into a PENDING order and a hosted checkout.

    Raises:
        CartEmpty, ProductUnavailable, CouponRejected, CouponRaceLost,
        PaymentNotConfigured, ValidationError before anything persists
        PaymentProviderError after compensating a failed provider call
    """
    adapter = get_payment_adapter(ctx.provider_config)

    try:
        order_id, payment_id = run_with_retry(lambda: _create_pending_order(ctx, session_key, request))
    except CommerceError:
        db.session.rollback()
        raise

    order = scoped_query(Order, ctx.tenant_id).filter(Order.id == order_id).one()
    base_url = current_app.config.get("PAYMENT_CALLBACK_BASE_URL", "").rstrip("/")
    checkout_input = CheckoutInput(
        tenant_id=ctx.tenant_id,
        amount_minor=order.total,
        currency=order.currency,
        order_number=order.order_number,
        redirect_urls=request.redirect_urls,
        webhook_url=f"{base_url}/api/webhooks/{adapter.provider.lower()}",
        customer=request.customer,
    )

    try:
        hosted = adapter.create_hosted_checkout(checkout_input)
    except PaymentProviderError as exc:
        current_app.logger.warning(
            "Hosted checkout failed for order %s (tenant %s): %s", order.order_number, ctx.tenant_id, exc
        )
        _abort_checkout(ctx.tenant_id, order_id, payment_id, reason=str(exc))
        raise PaymentProviderError(CHECKOUT_FAILED_MESSAGE) from exc

    def _store_checkout():
        payment = lock_for_update(
            scoped_query(Payment, ctx.tenant_id).filter(Payment.id == payment_id)
        ).one()
        payment.external_id = hosted.external_id
        payment.redirect_url = hosted.redirect_url
        payment.raw_payload = hosted.raw
        cart_service.clear_cart(ctx.tenant_id, session_key, commit=False)
        append_audit_event(
            tenant_id=ctx.tenant_id,
            actor=ACTOR_SYSTEM,
            action="PAYMENT_INITIATED",
            target_type="payment",
            target_id=payment.id,
            meta=_money_meta(payment, external_id=hosted.external_id),
        )
        db.session.commit()

    run_with_retry(_store_checkout)

    return CheckoutResult(
        order_id=order_id,
        order_number=order.order_number,
        payment_id=payment_id,
        redirect_url=hosted.redirect_url,
    )


# =============================================================================
# Payment outcomes (inside the caller's transaction)
# =============================================================================

def apply_payment_success(payment: Payment, order: Order, *, payload: dict | None) -> list[int]:
    """
    Payment SUCCEEDED + Order CONFIRMED + coupon redemption + SALE rows.

    The caller holds the payment row lock and commits. Returns the product
    ids whose stock was debited.
    """
    transition_payment_status(payment, PAYMENT_SUCCEEDED)
    payment.raw_payload = payload

    debited: list[int] = []
    if order is not None:
        transition_order_status(order, ORDER_CONFIRMED)
        coupon_service.redeem_coupon(order.tenant_id, order)
        debited = inventory_service.record_order_movements(
            order.tenant_id, order, MOVEMENT_SALE, actor_id=ACTOR_SYSTEM, reason=f"Order {order.order_number}"
        )
        order.stock_debited = True

    append_audit_event(
        tenant_id=payment.tenant_id,
        actor=ACTOR_SYSTEM,
        action="PAYMENT_SUCCEEDED",
        target_type="payment",
        target_id=payment.id,
        meta=_money_meta(
            payment,
            external_id=payment.external_id,
            order_number=order.order_number if order else None,
        ),
    )
    return debited


def apply_payment_failure(
    payment: Payment,
    order: Order | None,
    *,
    payload: dict | None,
    reason: str | None = None,
    action: str = "PAYMENT_FAILED",
) -> None:
    """Payment FAILED + Order CANCELLED + reservation released. No stock effects."""
    transition_payment_status(payment, PAYMENT_FAILED)
    if payload is not None:
        payment.raw_payload = payload

    if order is not None and order.status == ORDER_PENDING:
        transition_order_status(order, ORDER_CANCELLED)
        coupon_service.release_coupon(order.tenant_id, order)

    append_audit_event(
        tenant_id=payment.tenant_id,
        actor=ACTOR_SYSTEM,
        action=action,
        target_type="payment",
        target_id=payment.id,
        meta=_money_meta(
            payment,
            external_id=payment.external_id,
            order_number=order.order_number if order else None,
            reason=reason,
        ),
    )


# =============================================================================
# Admin transitions
# =============================================================================

def get_order(tenant_id: int, order_id: int) -> Order:
    order = scoped_query(Order, tenant_id).filter(Order.id == order_id).first()
    if order is None:
        raise OrderNotFound("Order not found")
    return order


def get_order_by_number(tenant_id: int, order_number: str) -> Order:
    order = scoped_query(Order, tenant_id).filter(Order.order_number == order_number).first()
    if order is None:
        raise OrderNotFound("Order not found")
    return order


def get_customer_order(tenant_id: int, order_number: str, email: str) -> Order:
    """
    Storefront lookup: the order number alone is guessable, so the buyer's
    email must match too. A mismatch looks exactly like a missing order.
    """
    order = get_order_by_number(tenant_id, order_number)
    if not email or (order.customer_email or "").lower() != email.strip().lower():
        raise OrderNotFound("Order not found")
    return order


def list_orders(tenant_id: int, *, status: str | None = None, limit: int = 50) -> list[Order]:
    q = scoped_query(Order, tenant_id)
    if status:
        q = q.filter(Order.status == status.upper())
    limit = max(1, min(int(limit), 500))
    return q.order_by(Order.created_at.desc(), Order.id.desc()).limit(limit).all()


def transition_order(tenant_id: int, order_id: int, target: str, *, actor_id: str) -> Order:
    """
    Admin-driven fulfilment / reversal.

    Cancelling a PENDING order fails its pending payment so a late webhook
    becomes a no-op. Leaving a debited state writes RETURN movements.
    """
    target = (target or "").upper()
    if target not in ADMIN_TARGETS:
        raise ValidationError(f"status must be one of: {', '.join(sorted(ADMIN_TARGETS))}")

    def _op() -> tuple[Order, list[int]]:
        order = lock_for_update(
            scoped_query(Order, tenant_id).filter(Order.id == order_id)
        ).first()
        if order is None:
            raise OrderNotFound("Order not found")

        previous = order.status
        if not can_transition_order(previous, target):
            raise InvalidTransition("order", previous, target)

        if previous == ORDER_PENDING and target == ORDER_CANCELLED:
            pending = lock_for_update(
                scoped_query(Payment, tenant_id).filter(
                    Payment.order_id == order.id,
                    Payment.status == PAYMENT_PENDING,
                )
            ).all()
            for payment in pending:
                transition_payment_status(payment, PAYMENT_FAILED)
            coupon_service.release_coupon(tenant_id, order)

        transition_order_status(order, target)

        returned: list[int] = []
        if target in (ORDER_CANCELLED, ORDER_REFUNDED) and order.stock_debited:
            returned = inventory_service.record_order_movements(
                tenant_id, order, MOVEMENT_RETURN, actor_id=actor_id,
                reason=f"Order {order.order_number} {target.lower()}",
            )

        append_audit_event(
            tenant_id=tenant_id,
            actor=actor_id,
            action=f"ORDER_{target}",
            target_type="order",
            target_id=order.id,
            meta={"from": previous, "to": target, "total": order.total, "currency": order.currency},
        )
        db.session.commit()
        return order, returned

    try:
        order, _ = run_with_retry(_op)
    except CommerceError:
        db.session.rollback()
        raise

    event = (
        notification_service.EVENT_ORDER_CANCELLED
        if target == ORDER_CANCELLED
        else notification_service.EVENT_ORDER_STATUS_CHANGED
    )
    notification_service.notify_order_event(order, event)
    return order


# =============================================================================
# Expiry sweep
# =============================================================================

def expire_stale_orders(*, older_than_minutes: int | None = None, now=None) -> list[str]:
    """
    Fail PENDING payments older than the timeout and cancel their orders.

    Safe to run concurrently with webhooks: each payment is re-checked under
    its row lock, and a late webhook for an expired payment is a terminal
    no-op. Returns the order numbers that were cancelled.
    """
    if older_than_minutes is None:
        older_than_minutes = current_app.config.get("PENDING_ORDER_TIMEOUT_MINUTES", 60)
    cutoff = (now or utcnow()) - timedelta(minutes=older_than_minutes)

    candidates = (
        db.session.query(Payment.id, Payment.tenant_id)
        .filter(Payment.status == PAYMENT_PENDING, Payment.created_at < cutoff)
        .order_by(Payment.id.asc())
        .all()
    )
    db.session.rollback()

    expired: list[str] = []
    for payment_id, tenant_id in candidates:
        def _op(payment_id=payment_id, tenant_id=tenant_id):
            payment = lock_for_update(
                scoped_query(Payment, tenant_id).filter(Payment.id == payment_id)
            ).first()
            if payment is None or payment.status != PAYMENT_PENDING:
                db.session.rollback()
                return None
            order = None
            if payment.order_id:
                order = scoped_query(Order, tenant_id).filter(Order.id == payment.order_id).first()
            apply_payment_failure(payment, order, payload=None, reason="expired", action="PAYMENT_EXPIRED")
            db.session.commit()
            return order.order_number if order else None

        order_number = run_with_retry(_op)
        if order_number:
            expired.append(order_number)

    if expired:
        current_app.logger.info("Expired %d stale pending order(s)", len(expired))
    return expired
