"""
Pytest fixtures for storefront backend tests.

Provides an in-memory database, a stubbed payment-provider transport, a
patched Stripe SDK, test users and products, and login helpers for route
tests.
"""

from types import SimpleNamespace

import httpx
import pytest
import stripe

from storefront import create_app
from storefront.extensions import db, checkout_store
from storefront.models import User
from storefront.services import catalog_service
from storefront.services.auth_service import create_user


PASSWORD = "Password123!"
SESSION_KEY = "test-session-key"


class FakeProvider:
    """
    Stands in for every payment provider's HTTP API.

    Tests register responses per (method, path); unregistered calls answer
    404 so an unexpected request fails loudly.
    """

    def __init__(self):
        self.routes = {}
        self.requests = []

    def reset(self):
        self.routes.clear()
        self.requests.clear()

    def on(self, method, path, json=None, status_code=200, handler=None):
        if handler is None:
            def handler(request, _json=json, _status=status_code):
                return httpx.Response(_status, json=_json if _json is not None else {})
        self.routes[(method.upper(), path)] = handler

    def calls(self, method, path):
        return [r for r in self.requests if r.method == method.upper() and r.url.path == path]

    def __call__(self, request):
        self.requests.append(request)
        handler = self.routes.get((request.method, request.url.path))
        if handler is None:
            return httpx.Response(404, json={"message": f"unstubbed {request.method} {request.url.path}"})
        return handler(request)


_fake_provider = FakeProvider()


class FakeStripe:
    """
    Stands in for the Stripe SDK's checkout-session and refund calls.

    Sessions live in a dict keyed by id. ``add_session`` presets a session;
    its id is also handed out by the next ``Session.create`` call so tests
    know the reference a checkout will carry. ``fail_with`` and
    ``refund_error`` make the next calls raise a Stripe error.
    """

    def __init__(self):
        self.reset()

    def reset(self):
        self.sessions = {}
        self.queued_ids = []
        self.created = []
        self.retrieved = []
        self.refunds = []
        self.fail_with = None
        self.refund_error = None

    @staticmethod
    def _defaults(session_id):
        return {
            "id": session_id,
            "url": f"https://checkout.stripe.test/pay/{session_id}",
            "payment_status": "unpaid",
            "status": "open",
            "amount_total": None,
            "payment_intent": None,
            "customer": None,
            "customer_details": None,
        }

    def add_session(self, session_id, email=None, **fields):
        values = self._defaults(session_id)
        values.update(fields)
        if email is not None:
            values["customer_details"] = {"email": email}
        self.sessions[session_id] = values
        self.queued_ids.append(session_id)
        return values

    def paid_session(self, session_id, amount_cents, email="payer@example.com"):
        return self.add_session(
            session_id,
            email=email,
            payment_status="paid",
            status="complete",
            amount_total=amount_cents,
            payment_intent=f"pi_{session_id}",
        )

    @staticmethod
    def _as_object(values):
        details = values.get("customer_details")
        return SimpleNamespace(**{
            **values,
            "customer_details": SimpleNamespace(**details) if details else None,
        })

    def create_session(self, api_key=None, **params):
        self.created.append(params)
        if self.fail_with is not None:
            raise self.fail_with
        session_id = self.queued_ids.pop(0) if self.queued_ids else f"cs_test_{len(self.created)}"
        values = self.sessions.get(session_id) or self._defaults(session_id)
        if values["amount_total"] is None:
            values["amount_total"] = params["line_items"][0]["price_data"]["unit_amount"]
        self.sessions[session_id] = values
        return self._as_object(values)

    def retrieve_session(self, session_id, api_key=None, **params):
        self.retrieved.append(session_id)
        if self.fail_with is not None:
            raise self.fail_with
        values = self.sessions.get(session_id)
        if values is None:
            raise stripe.InvalidRequestError(
                f"No such checkout.session: '{session_id}'", "id", code="resource_missing"
            )
        return self._as_object(values)

    def create_refund(self, api_key=None, **params):
        self.refunds.append(params)
        if self.refund_error is not None:
            raise self.refund_error
        return SimpleNamespace(id=f"re_{len(self.refunds)}", status="succeeded", amount=params.get("amount"))


@pytest.fixture(autouse=True)
def stripe_api(monkeypatch):
    """Patched Stripe SDK; autouse so no test can reach the real API."""
    fake = FakeStripe()
    monkeypatch.setattr(stripe.checkout.Session, "create", fake.create_session)
    monkeypatch.setattr(stripe.checkout.Session, "retrieve", fake.retrieve_session)
    monkeypatch.setattr(stripe.Refund, "create", fake.create_refund)
    return fake


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'BCRYPT_ROUNDS': 4,
        'STRIPE_SECRET_KEY': 'sk_test_123',
        'PAYPAL_CLIENT_ID': 'client',
        'PAYPAL_CLIENT_SECRET': 'secret',
        'PAYPAL_API_BASE': 'https://paypal.test',
        'NETS_API_KEY': 'nets-key',
        'NETS_PROJECT_ID': 'nets-project',
        'NETS_API_BASE': 'https://nets.test',
        'QR_POLL_INTERVAL_SECONDS': 0,
        'QR_POLL_MAX_ATTEMPTS': 3,
        'PROVIDER_TRANSPORT': httpx.MockTransport(_fake_provider),
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
        checkout_store.clear()

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture(scope='function')
def provider(db_session):
    """Stubbed provider HTTP API, emptied for each test."""
    _fake_provider.reset()
    yield _fake_provider
    _fake_provider.reset()


@pytest.fixture(scope='function')
def store():
    return checkout_store


@pytest.fixture(scope='function')
def customer(db_session):
    return create_user(
        "alice",
        "alice@example.com",
        PASSWORD,
        address="1 Orchard Road",
        contact="91234567",
    )


@pytest.fixture(scope='function')
def other_customer(db_session):
    return create_user("bob", "bob@example.com", PASSWORD)


@pytest.fixture(scope='function')
def admin(db_session):
    return create_user("admin", "admin@example.com", PASSWORD, role="admin")


@pytest.fixture(scope='function')
def make_product(db_session):
    """Factory: make_product(name, price_cents, quantity)."""
    def _make(name="Fresh Milk 1L", price_cents=200, quantity=5, category="Dairy"):
        return catalog_service.create_product(name, price_cents, quantity, category=category)
    return _make


def shipping(**overrides) -> dict:
    details = {"name": "Alice Tan", "address": "1 Orchard Road", "phone": "91234567", "notes": ""}
    details.update(overrides)
    return details


def line(product, quantity) -> dict:
    """Cart snapshot line for checkout_service.begin; prices come from the catalog."""
    return {"product_id": product.id, "quantity": quantity}


def reload(model, pk):
    """Fresh copy of a row, bypassing the identity map."""
    db.session.expire_all()
    return db.session.get(model, pk)


def get_auth_token(client, username: str, password: str = PASSWORD) -> str:
    """Helper to get auth token for a user."""
    response = client.post('/api/auth/login', json={
        'username': username,
        'password': password
    })
    if response.status_code == 200:
        return response.json.get('token')
    return None


def auth_headers(token: str) -> dict:
    """Helper to create Authorization headers."""
    return {'Authorization': f'Bearer {token}'}


@pytest.fixture(scope='function')
def customer_headers(client, customer):
    return auth_headers(get_auth_token(client, customer.username))


@pytest.fixture(scope='function')
def admin_headers(client, admin):
    return auth_headers(get_auth_token(client, admin.username))


def user_by_name(username: str) -> User:
    return db.session.query(User).filter_by(username=username).first()
