"""
Threaded concurrency tests.

The shared in-memory database used elsewhere hands every thread the same
connection, so these tests build their own app on a file-backed SQLite
database. Each worker runs in its own app context (and therefore its own
session and connection); a barrier releases them together.
"""

import threading
from datetime import timedelta

import httpx
import pytest

from shopcore import create_app
from shopcore.errors import CouponRaceLost
from shopcore.extensions import db
from shopcore.models import Coupon, CouponRedemption, Order, Payment, Product, StockMovement, Tenant, WebhookEvent
from shopcore.services import cart_service, coupon_service, inventory_service, tenant_service, webhook_service
from shopcore.services.webhook_service import OUTCOME_APPLIED_SUCCEEDED, OUTCOME_IGNORED_TERMINAL
from shopcore.time_utils import utcnow

from conftest import CALLBACK_BASE_URL, FakeProvider, Shop, configure_tap, tap_signature, tap_webhook_body


WORKERS = 6


@pytest.fixture
def file_app(tmp_path):
    fake = FakeProvider()
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': f"sqlite:///{tmp_path / 'concurrency.db'}",
        'SQLALCHEMY_ENGINE_OPTIONS': {'connect_args': {'timeout': 30}},
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'PAYMENT_CALLBACK_BASE_URL': CALLBACK_BASE_URL,
        'PAYMENT_HTTP_TRANSPORT': httpx.MockTransport(fake.handler),
        'NOTIFIER_WEBHOOK_URL': None,
        'TENANT_CACHE_TTL_SECONDS': 0,
        # SQLite reports lock contention as OperationalError; give losers room to retry
        'TX_RETRY_ATTEMPTS': 20,
    })

    with app.app_context():
        tenant_service.invalidate_tenant_cache()
        db.drop_all()
        db.create_all()

    yield app

    with app.app_context():
        db.session.remove()
        db.drop_all()
        db.session.remove()
        db.engine.dispose()
    tenant_service.invalidate_tenant_cache()


def seed_shop(coupon_code, usage_limit):
    """Tenant with TAP configured, a widget with 10 in stock and one coupon. Returns ids."""
    tenant, _ = tenant_service.ensure_tenant(slug="acme", name="Acme Store")
    configure_tap(tenant)

    product = Product(tenant_id=tenant.id, title="Widget", price_minor=1000, currency="KWD")
    db.session.add(product)
    db.session.commit()
    inventory_service.record_movement(tenant.id, product.id, "RECEIVE", 10, "Opening stock", actor_id="seed")

    now = utcnow()
    coupon = coupon_service.create_coupon(
        tenant.id,
        {
            "code": coupon_code,
            "type": "PERCENTAGE",
            "value": 10,
            "usage_limit": usage_limit,
            "valid_from": now - timedelta(days=1),
            "valid_until": now + timedelta(days=30),
        },
        actor_id="admin-1",
    )
    return tenant.id, product.id, coupon.id


def run_workers(app, target, count=WORKERS):
    """Start `count` threads that call target(index) together; collect results and errors."""
    barrier = threading.Barrier(count)
    lock = threading.Lock()
    results = []
    errors = []

    def worker(index):
        with app.app_context():
            try:
                barrier.wait()
                value = target(index)
                with lock:
                    results.append(value)
            except Exception as exc:
                with lock:
                    errors.append(exc)
            finally:
                db.session.remove()

    threads = [threading.Thread(target=worker, args=(i,)) for i in range(count)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    return results, errors


class TestDuplicateWebhooks:

    def test_concurrent_duplicates_apply_once(self, file_app):
        """Six copies of the same signed CAPTURED delivery: one applies, five see a terminal payment."""
        with file_app.app_context():
            tenant_id, product_id, coupon_id = seed_shop("SAVE10", 5)
            shop = Shop(db.session.get(Tenant, tenant_id))
            shop.add(db.session.get(Product, product_id), 2)
            checkout = shop.checkout(coupon_code="SAVE10")
            external_id = shop.payment(checkout).external_id
            db.session.remove()

        body = tap_webhook_body(external_id, "CAPTURED")
        headers = {"x-tap-signature": tap_signature(body)}

        outcomes, errors = run_workers(
            file_app, lambda _: webhook_service.process_webhook("tap", body, headers).outcome
        )

        assert errors == []
        assert sorted(outcomes) == [OUTCOME_APPLIED_SUCCEEDED] + [OUTCOME_IGNORED_TERMINAL] * (WORKERS - 1)

        with file_app.app_context():
            sales = db.session.query(StockMovement).filter_by(tenant_id=tenant_id, type="SALE").all()
            assert [m.quantity_delta for m in sales] == [-2]
            assert inventory_service.get_current_stock(tenant_id, product_id) == 8

            coupon = db.session.get(Coupon, coupon_id)
            assert (coupon.usage_count, coupon.reserved_count) == (1, 0)
            assert db.session.query(CouponRedemption).count() == 1

            assert db.session.get(Payment, checkout.payment_id).status == "SUCCEEDED"
            assert db.session.get(Order, checkout.order_id).status == "CONFIRMED"
            assert db.session.query(WebhookEvent).filter_by(processed=True).count() == WORKERS


class TestCouponLastSlot:

    def test_concurrent_checkouts_claim_one_slot(self, file_app):
        """Separate carts race for a single-use coupon; exactly one checkout gets it."""
        with file_app.app_context():
            tenant_id, product_id, coupon_id = seed_shop("ONCE", 1)
            for i in range(WORKERS):
                cart_service.add_item(tenant_id, f"sess-{i}", product_id, 1, currency="KWD")
            db.session.remove()

        def checkout(index):
            shop = Shop(db.session.get(Tenant, tenant_id))
            return shop.checkout(f"sess-{index}", coupon_code="ONCE").order_number

        order_numbers, errors = run_workers(file_app, checkout)

        assert len(order_numbers) == 1
        assert len(errors) == WORKERS - 1
        assert all(isinstance(exc, CouponRaceLost) for exc in errors), errors
        assert {exc.code for exc in errors} == {"COUPON_RACE_LOST"}

        with file_app.app_context():
            coupon = db.session.get(Coupon, coupon_id)
            assert (coupon.usage_count, coupon.reserved_count) == (0, 1)
            orders = db.session.query(Order).filter_by(tenant_id=tenant_id).all()
            assert [o.order_number for o in orders] == order_numbers
            assert orders[0].coupon_code == "ONCE"
            # Only the winning checkout reached the provider and emptied its cart
            line_counts = sorted(len(cart_service.get_cart_items(tenant_id, f"sess-{i}")) for i in range(WORKERS))
            assert line_counts == [0] + [1] * (WORKERS - 1)
