# Overview: Pytest coverage for admin order transitions, stock reversal and the pending-order expiry sweep.

"""
Order State Machine Tests

    PENDING -> CONFIRMED -> PROCESSING -> SHIPPED -> DELIVERED
    PENDING | CONFIRMED -> CANCELLED
    CONFIRMED | PROCESSING | SHIPPED | DELIVERED -> REFUNDED

CONFIRMED is reachable only through a verified payment webhook.
"""

import json
from datetime import timedelta

import httpx
import pytest

from shopcore.errors import InvalidTransition, OrderNotFound, ValidationError
from shopcore.extensions import db
from shopcore.models import Coupon, StockMovement
from shopcore.services import inventory_service, order_service
from shopcore.services.audit_service import list_audit_events
from shopcore.services.webhook_service import OUTCOME_IGNORED_TERMINAL
from shopcore.time_utils import utcnow


@pytest.fixture
def widget(shop, make_product):
    return make_product(shop.tenant, "Widget", 1000, stock=10)


def advance(shop, result, *targets):
    order = None
    for target in targets:
        order = order_service.transition_order(shop.tenant.id, result.order_id, target, actor_id="admin-1")
    return order


class TestTransitionTable:

    @pytest.mark.parametrize("current,target,allowed", [
        ("PENDING", "CONFIRMED", True),
        ("PENDING", "CANCELLED", True),
        ("PENDING", "SHIPPED", False),
        ("PENDING", "REFUNDED", False),
        ("CONFIRMED", "PROCESSING", True),
        ("CONFIRMED", "CANCELLED", True),
        ("CONFIRMED", "REFUNDED", True),
        ("CONFIRMED", "DELIVERED", False),
        ("PROCESSING", "SHIPPED", True),
        ("PROCESSING", "CANCELLED", False),
        ("SHIPPED", "DELIVERED", True),
        ("SHIPPED", "PROCESSING", False),
        ("DELIVERED", "REFUNDED", True),
        ("CANCELLED", "CONFIRMED", False),
        ("REFUNDED", "CANCELLED", False),
    ])
    def test_can_transition(self, current, target, allowed):
        assert order_service.can_transition_order(current, target) is allowed


class TestAdminTransitions:
    """transition_order as driven by the admin API."""

    def test_fulfilment_chain(self, db_session, shop, widget):
        checkout = shop.buy(widget, 2)

        order = advance(shop, checkout, "PROCESSING", "SHIPPED", "DELIVERED")

        assert order.status == "DELIVERED"
        actions = [e.action for e in list_audit_events(shop.tenant.id)]
        assert {"ORDER_PROCESSING", "ORDER_SHIPPED", "ORDER_DELIVERED"} <= set(actions)
        # Fulfilment does not touch stock
        assert inventory_service.get_current_stock(shop.tenant.id, widget.id) == 8

    def test_refund_returns_stock(self, db_session, shop, widget):
        """Leaving a debited state writes one RETURN per order line."""
        checkout = shop.buy(widget, 2)

        order = advance(shop, checkout, "PROCESSING", "SHIPPED", "REFUNDED")

        assert order.status == "REFUNDED"
        assert inventory_service.get_current_stock(shop.tenant.id, widget.id) == 10
        ret = db_session.query(StockMovement).filter_by(type="RETURN").one()
        assert ret.quantity_delta == 2
        assert ret.reference == checkout.order_number
        assert ret.reference_line == 1
        assert ret.actor_id == "admin-1"

    def test_cancel_confirmed_returns_stock(self, db_session, shop, widget):
        checkout = shop.buy(widget, 3)

        order = advance(shop, checkout, "CANCELLED")

        assert order.status == "CANCELLED"
        assert order.cancelled_at is not None
        assert inventory_service.get_current_stock(shop.tenant.id, widget.id) == 10

    def test_terminal_states_are_final(self, db_session, shop, widget):
        """A refunded order cannot be refunded (or returned) twice."""
        checkout = shop.buy(widget, 2)
        advance(shop, checkout, "REFUNDED")

        with pytest.raises(InvalidTransition):
            advance(shop, checkout, "REFUNDED")

        assert db_session.query(StockMovement).filter_by(type="RETURN").count() == 1

    def test_invalid_transition_details(self, db_session, shop, widget):
        shop.add(widget, 1)
        checkout = shop.checkout()

        with pytest.raises(InvalidTransition) as exc_info:
            advance(shop, checkout, "SHIPPED")

        err = exc_info.value
        assert err.http_status == 409
        assert err.to_dict() == {
            "error": "INVALID_TRANSITION",
            "details": {"entity": "order", "from": "PENDING", "to": "SHIPPED"},
        }
        assert shop.order(checkout).status == "PENDING"

    def test_confirmed_is_not_an_admin_target(self, db_session, shop, widget):
        """Only a verified payment can confirm an order."""
        shop.add(widget, 1)
        checkout = shop.checkout()

        with pytest.raises(ValidationError):
            advance(shop, checkout, "CONFIRMED")
        assert shop.order(checkout).status == "PENDING"

    def test_unknown_status(self, db_session, shop, widget):
        checkout = shop.buy(widget, 1)
        with pytest.raises(ValidationError):
            advance(shop, checkout, "LOST")

    def test_status_is_case_insensitive(self, db_session, shop, widget):
        checkout = shop.buy(widget, 1)
        assert advance(shop, checkout, "processing").status == "PROCESSING"

    def test_other_tenant_order(self, db_session, shop, widget, tenant_b):
        checkout = shop.buy(widget, 1)
        with pytest.raises(OrderNotFound):
            order_service.transition_order(tenant_b.id, checkout.order_id, "PROCESSING", actor_id="admin-1")

    def test_transition_notifies_customer(self, app, db_session, shop, widget):
        checkout = shop.buy(widget, 1)
        delivered = []
        app.config["NOTIFIER_WEBHOOK_URL"] = "https://notify.test/events"
        app.config["NOTIFIER_HTTP_TRANSPORT"] = httpx.MockTransport(
            lambda request: delivered.append(json.loads(request.content)) or httpx.Response(202)
        )

        advance(shop, checkout, "PROCESSING")

        assert [d["event"] for d in delivered] == ["order.status_changed"]
        assert delivered[0]["data"]["status"] == "PROCESSING"


class TestCancelPending:
    """Cancelling before the provider reports back."""

    def test_cancel_pending_fails_payment_and_releases_coupon(self, db_session, shop, widget, make_coupon):
        coupon = make_coupon(shop.tenant, "ONCE", usage_limit=1)
        shop.add(widget, 1)
        checkout = shop.checkout(coupon_code="ONCE")

        order = advance(shop, checkout, "CANCELLED")

        assert order.status == "CANCELLED"
        assert shop.payment(checkout).status == "FAILED"
        db.session.expire_all()
        assert db.session.get(Coupon, coupon.id).reserved_count == 0
        # Nothing was debited, so nothing is returned
        assert db_session.query(StockMovement).filter_by(type="RETURN").count() == 0

    def test_late_success_webhook_ignored(self, db_session, shop, widget):
        shop.add(widget, 1)
        checkout = shop.checkout()
        advance(shop, checkout, "CANCELLED")

        result = shop.webhook(checkout, "CAPTURED")

        assert result.outcome == OUTCOME_IGNORED_TERMINAL
        assert shop.order(checkout).status == "CANCELLED"
        assert inventory_service.get_current_stock(shop.tenant.id, widget.id) == 10


class TestExpireStaleOrders:
    """Sweep for payments that never received a webhook."""

    def test_expires_old_pending(self, db_session, shop, widget, make_coupon):
        coupon = make_coupon(shop.tenant, "ONCE", usage_limit=1)
        shop.add(widget, 1)
        checkout = shop.checkout(coupon_code="ONCE")

        expired = order_service.expire_stale_orders(older_than_minutes=60, now=utcnow() + timedelta(hours=2))

        assert expired == [checkout.order_number]
        assert shop.order(checkout).status == "CANCELLED"
        assert shop.payment(checkout).status == "FAILED"
        db.session.expire_all()
        assert db.session.get(Coupon, coupon.id).reserved_count == 0
        assert "PAYMENT_EXPIRED" in {e.action for e in list_audit_events(shop.tenant.id)}

    def test_recent_pending_untouched(self, db_session, shop, widget):
        shop.add(widget, 1)
        checkout = shop.checkout()

        assert order_service.expire_stale_orders(older_than_minutes=60) == []
        assert shop.order(checkout).status == "PENDING"

    def test_confirmed_orders_untouched(self, db_session, shop, widget):
        checkout = shop.buy(widget, 1)

        expired = order_service.expire_stale_orders(older_than_minutes=60, now=utcnow() + timedelta(hours=2))

        assert expired == []
        assert shop.order(checkout).status == "CONFIRMED"

    def test_default_timeout_from_config(self, app, db_session, shop, widget):
        shop.add(widget, 1)
        shop.checkout()
        minutes = app.config["PENDING_ORDER_TIMEOUT_MINUTES"]

        early = order_service.expire_stale_orders(now=utcnow() + timedelta(minutes=minutes - 5))
        late = order_service.expire_stale_orders(now=utcnow() + timedelta(minutes=minutes + 5))

        assert early == []
        assert late == ["ORD-000001"]

    def test_webhook_after_expiry_ignored(self, db_session, shop, widget):
        shop.add(widget, 1)
        checkout = shop.checkout()
        order_service.expire_stale_orders(older_than_minutes=60, now=utcnow() + timedelta(hours=2))

        result = shop.webhook(checkout, "CAPTURED")

        assert result.outcome == OUTCOME_IGNORED_TERMINAL
        assert inventory_service.get_current_stock(shop.tenant.id, widget.id) == 10

    def test_sweep_is_repeatable(self, db_session, shop, widget):
        shop.add(widget, 1)
        shop.checkout()
        later = utcnow() + timedelta(hours=2)

        assert len(order_service.expire_stale_orders(older_than_minutes=60, now=later)) == 1
        assert order_service.expire_stale_orders(older_than_minutes=60, now=later) == []
