"""
Pytest fixtures for shopcore backend tests.

Provides test database setup, two isolated tenants, catalog helpers, a fake
payment provider behind an httpx MockTransport, and webhook signing helpers.
"""

import base64
import hashlib
import hmac
import json
from datetime import timedelta

import httpx
import pytest

from shopcore import create_app
from shopcore.extensions import db
from shopcore.models import Payment, Product
from shopcore.services import cart_service, coupon_service, inventory_service, order_service, tenant_service, webhook_service
from shopcore.time_utils import utcnow
from shopcore.validation import parse_checkout


TAP_SECRET = "sk_test_acme"
TAP_WEBHOOK_SECRET = "whsec_acme"
MF_WEBHOOK_SECRET = "whsec_beta"
CALLBACK_BASE_URL = "https://shop.test"


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'PAYMENT_CALLBACK_BASE_URL': CALLBACK_BASE_URL,
        'TENANT_CACHE_TTL_SECONDS': 0,
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()
        tenant_service.invalidate_tenant_cache()
        app.config['PAYMENT_HTTP_TRANSPORT'] = None
        app.config['NOTIFIER_HTTP_TRANSPORT'] = None
        app.config['NOTIFIER_WEBHOOK_URL'] = None
        app.config['TENANT_CACHE_TTL_SECONDS'] = 0

        yield db.session

        # Cleanup after test
        db.session.rollback()
        tenant_service.invalidate_tenant_cache()


# =============================================================================
# Tenants and catalog
# =============================================================================

@pytest.fixture(scope='function')
def tenant_a(db_session):
    """Tenant A (KWD, no tax, no shipping)."""
    tenant, _ = tenant_service.ensure_tenant(slug="acme", name="Acme Store", domain="shop.acme.test")
    return tenant


@pytest.fixture(scope='function')
def tenant_b(db_session):
    """Tenant B (second tenant, same currency)."""
    tenant, _ = tenant_service.ensure_tenant(slug="beta", name="Beta Store")
    return tenant


@pytest.fixture(scope='function')
def make_product(db_session):
    """Factory: product with optional opening stock (RECEIVE movement)."""
    def _make(tenant, title="Widget", price_minor=1000, *, stock=None, category_id=None,
              threshold=None, is_active=True, currency="KWD"):
        product = Product(
            tenant_id=tenant.id,
            title=title,
            price_minor=price_minor,
            currency=currency,
            category_id=category_id,
            low_stock_threshold=threshold,
            is_active=is_active,
        )
        db_session.add(product)
        db_session.commit()
        if stock:
            inventory_service.record_movement(
                tenant.id, product.id, "RECEIVE", stock, "Opening stock", actor_id="seed"
            )
        return product
    return _make


@pytest.fixture(scope='function')
def make_coupon(db_session):
    """Factory: active coupon valid from yesterday for 30 days."""
    def _make(tenant, code="SAVE10", coupon_type="PERCENTAGE", value=10, **fields):
        now = utcnow()
        data = {
            "code": code,
            "type": coupon_type,
            "value": value,
            "valid_from": now - timedelta(days=1),
            "valid_until": now + timedelta(days=30),
        }
        data.update(fields)
        return coupon_service.create_coupon(tenant.id, data, actor_id="admin-1")
    return _make


def configure_tap(tenant, *, webhook_secret=TAP_WEBHOOK_SECRET):
    tenant_service.update_payment_config(
        tenant.id,
        {
            "schema_version": 2,
            "provider": "TAP",
            "mode": "sandbox",
            "credentials": {"secret_key": TAP_SECRET},
            "webhook_secret": webhook_secret,
        },
        actor_id="admin-1",
    )


def configure_myfatoorah(tenant, *, webhook_secret=MF_WEBHOOK_SECRET):
    tenant_service.update_payment_config(
        tenant.id,
        {
            "schema_version": 2,
            "provider": "MYFATOORAH",
            "mode": "sandbox",
            "credentials": {"api_key": "mf_test_key"},
            "webhook_secret": webhook_secret,
        },
        actor_id="admin-1",
    )


@pytest.fixture(scope='function')
def tap_tenant(tenant_a):
    """Tenant A with TAP configured."""
    configure_tap(tenant_a)
    return tenant_a


@pytest.fixture(scope='function')
def mf_tenant(tenant_b):
    """Tenant B with MyFatoorah configured."""
    configure_myfatoorah(tenant_b)
    return tenant_b


# =============================================================================
# Payment provider
# =============================================================================

class FakeProvider:
    """
    Hosted-checkout provider stand-in for httpx.MockTransport.

    Answers TAP charge creation and MyFatoorah SendPayment; `fail` switches
    every call to HTTP 503.
    """

    def __init__(self):
        self.requests = []
        self.fail = False
        self._counter = 0

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.fail:
            return httpx.Response(503, json={"message": "unavailable"})

        self._counter += 1
        path = request.url.path
        if path == "/v2/charges" and request.method == "POST":
            charge_id = f"chg_TS{self._counter:04d}"
            return httpx.Response(200, json={
                "id": charge_id,
                "status": "INITIATED",
                "transaction": {"url": f"https://tap.test/pay/{charge_id}"},
            })
        if path == "/v2/charges" and request.method == "GET":
            return httpx.Response(200, json={"charges": []})
        if path == "/v2/SendPayment":
            invoice_id = 900000 + self._counter
            return httpx.Response(200, json={
                "IsSuccess": True,
                "Message": "Invoice Created Successfully!",
                "Data": {"InvoiceId": invoice_id, "InvoiceURL": f"https://mf.test/invoice/{invoice_id}"},
            })
        if path == "/v2/GetPaymentStatus":
            return httpx.Response(200, json={"IsSuccess": False, "Message": "Invoice not found"})
        return httpx.Response(404, json={"message": "not found"})

    def json_bodies(self):
        return [json.loads(r.content) for r in self.requests if r.content]


@pytest.fixture(scope='function')
def provider(app, db_session):
    """Fake provider installed as the payment HTTP transport."""
    fake = FakeProvider()
    app.config['PAYMENT_HTTP_TRANSPORT'] = httpx.MockTransport(fake.handler)
    yield fake
    app.config['PAYMENT_HTTP_TRANSPORT'] = None


# =============================================================================
# Webhook signing
# =============================================================================

def tap_webhook_body(charge_id: str, status: str) -> bytes:
    payload = {"id": charge_id, "object": "charge", "status": status}
    return json.dumps(payload).encode("utf-8")


def tap_signature(body: bytes, secret: str = TAP_WEBHOOK_SECRET) -> str:
    return hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()


def myfatoorah_webhook_body(invoice_id, status: str) -> bytes:
    payload = {"EventType": 1, "Data": {"InvoiceId": invoice_id, "InvoiceStatus": status}}
    return json.dumps(payload).encode("utf-8")


def myfatoorah_signature(body: bytes, secret: str = MF_WEBHOOK_SECRET) -> str:
    digest = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).digest()
    return base64.b64encode(digest).decode("ascii")


@pytest.fixture(scope='function')
def signed_tap():
    """(body, headers) for a TAP charge webhook."""
    def _signed(charge_id, status, *, secret=TAP_WEBHOOK_SECRET):
        body = tap_webhook_body(charge_id, status)
        headers = {"x-tap-signature": tap_signature(body, secret), "Content-Type": "application/json"}
        return body, headers
    return _signed


@pytest.fixture(scope='function')
def signed_myfatoorah():
    """(body, headers) for a MyFatoorah invoice webhook."""
    def _signed(invoice_id, status, *, secret=MF_WEBHOOK_SECRET):
        body = myfatoorah_webhook_body(invoice_id, status)
        headers = {"myfatoorah-signature": myfatoorah_signature(body, secret), "Content-Type": "application/json"}
        return body, headers
    return _signed


# =============================================================================
# Storefront driver
# =============================================================================

class Shop:
    """Drives one tenant through cart -> checkout -> webhook at the service layer."""

    def __init__(self, tenant):
        self.tenant = tenant

    @property
    def ctx(self):
        return tenant_service.get_tenant_context(self.tenant.id)

    def add(self, product, quantity=1, session_key="sess-1"):
        return cart_service.add_item(
            self.tenant.id, session_key, product.id, quantity, currency=self.ctx.currency
        )

    def checkout(self, session_key="sess-1", *, coupon_code=None, email="buyer@example.com", customer_id=None):
        request = parse_checkout(
            {
                "customer": {"name": "Sara Buyer", "email": email, "phone": "+96550000000", "customer_id": customer_id},
                "coupon_code": coupon_code,
            },
            default_base_url=CALLBACK_BASE_URL,
        )
        return order_service.create_checkout(self.ctx, session_key, request)

    def payment(self, result):
        return db.session.get(Payment, result.payment_id)

    def order(self, result):
        return order_service.get_order(self.tenant.id, result.order_id)

    def webhook(self, result, status, *, secret=None):
        """Deliver a signed provider webhook for a checkout result."""
        payment = self.payment(result)
        if payment.provider == "MYFATOORAH":
            body = myfatoorah_webhook_body(int(payment.external_id), status)
            headers = {"myfatoorah-signature": myfatoorah_signature(body, secret or MF_WEBHOOK_SECRET)}
            return webhook_service.process_webhook("myfatoorah", body, headers)
        body = tap_webhook_body(payment.external_id, status)
        headers = {"x-tap-signature": tap_signature(body, secret or TAP_WEBHOOK_SECRET)}
        return webhook_service.process_webhook("tap", body, headers)

    def buy(self, product, quantity=1, *, session_key="sess-1", coupon_code=None, email="buyer@example.com"):
        """Add, check out and confirm in one step."""
        self.add(product, quantity, session_key)
        result = self.checkout(session_key, coupon_code=coupon_code, email=email)
        self.webhook(result, "CAPTURED")
        return result


@pytest.fixture(scope='function')
def shop(tap_tenant, provider):
    """Shop driver for the TAP-configured tenant."""
    return Shop(tap_tenant)


@pytest.fixture(scope='function')
def make_shop(provider):
    def _make(tenant):
        return Shop(tenant)
    return _make


def admin_headers(actor: str = "admin-1") -> dict:
    """Helper to create admin actor headers."""
    return {"X-Actor-Id": actor}


@pytest.fixture(scope='function')
def admin():
    return admin_headers()
