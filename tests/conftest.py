"""Shared test fixtures for the marketplace test suite.

Provides:
- app: Flask app configured for testing (in-memory SQLite, fake gateways)
- client / other_client: Flask test clients (one per logged-in party)
- db_session: clean database per test (tables created/dropped)
- seed_data: admin, seller, buyer and two products
- payments / carrier: the in-memory gateways, reset per test
"""

import json
from decimal import Decimal

import pytest
from flask import g
from werkzeug.security import generate_password_hash

from fleamarket import create_app
from fleamarket.extensions import db as _db
from fleamarket.models.product import Product
from fleamarket.models.transaction import Transaction
from fleamarket.models.user import User

PASSWORD = "secret123"


@pytest.fixture(scope="session")
def app():
    """Create the Flask application configured for testing."""
    app = create_app("testing")

    @app.before_request
    def _reload_login_user():
        # Tests keep one app context open across requests; make Flask-Login
        # resolve the user from each client's own session cookie.
        g.pop("_login_user", None)

    yield app


@pytest.fixture(autouse=True)
def db_session(app):
    """Create all tables before each test, drop after."""
    with app.app_context():
        _db.create_all()
        yield _db.session
        _db.session.rollback()
        _db.drop_all()


@pytest.fixture(autouse=True)
def payments(app):
    processor = app.extensions["payment_processor"]
    processor.reset()
    return processor


@pytest.fixture(autouse=True)
def carrier(app):
    fake = app.extensions["carrier"]
    fake.reset()
    return fake


@pytest.fixture
def client(app):
    """Flask test client."""
    return app.test_client()


@pytest.fixture
def other_client(app):
    """A second, independent test client (separate session cookie)."""
    return app.test_client()


@pytest.fixture
def seed_data(app, db_session):
    """Seed an admin, a seller with a postal code, a buyer, and two products.

    Returns a dict of plain IDs for easy access in tests.
    """
    admin = User(
        email="admin@fleamarket.test",
        password_hash=generate_password_hash(PASSWORD),
        name="Admin User",
        is_admin=True,
    )
    seller = User(
        email="seller@fleamarket.test",
        password_hash=generate_password_hash(PASSWORD),
        name="Sandra Seller",
        phone="11999990000",
        document="12345678909",
        address_postal_code="01310100",
        location="São Paulo, SP",
    )
    buyer = User(
        email="buyer@fleamarket.test",
        password_hash=generate_password_hash(PASSWORD),
        name="Bruno Buyer",
        phone="21999990000",
        document="98765432100",
        address_postal_code="20040020",
    )
    _db.session.add_all([admin, seller, buyer])
    _db.session.flush()

    product = Product(
        seller_id=seller.id,
        title="Vintage record player",
        price=Decimal("100.00"),
        location="São Paulo, SP",
        shipping_weight=Decimal("2.500"),
        shipping_height=15,
        shipping_width=30,
        shipping_length=40,
    )
    loose_product = Product(
        seller_id=seller.id,
        title="Wooden bookshelf",
        price=Decimal("250.00"),
        local_pickup=True,
        location="São Paulo, SP",
    )
    _db.session.add_all([product, loose_product])
    _db.session.commit()

    return {
        "admin_id": admin.id,
        "seller_id": seller.id,
        "buyer_id": buyer.id,
        "product_id": product.id,
        "loose_product_id": loose_product.id,
    }


def login(client, email):
    """Log `client` in as the seed user with `email`."""
    resp = client.post("/auth/login", json={"email": email, "password": PASSWORD})
    assert resp.status_code == 200, resp.data
    return resp


def login_seller(client):
    return login(client, "seller@fleamarket.test")


def login_buyer(client):
    return login(client, "buyer@fleamarket.test")


def login_admin(client):
    return login(client, "admin@fleamarket.test")


def make_transaction(seed_data, status="paid", product_key="product_id", amount="100.00"):
    """Insert a transaction directly (no processor) in the given status."""
    product = _db.session.get(Product, seed_data[product_key])
    txn = Transaction(
        product_id=product.id,
        buyer_id=seed_data["buyer_id"],
        seller_id=seed_data["seller_id"],
        amount=Decimal(amount),
        platform_fee=Decimal("8.00"),
        seller_amount=Decimal(amount) - Decimal("8.00"),
        payment_provider="stripe",
        status=status,
    )
    _db.session.add(txn)
    _db.session.commit()
    return txn


ADDRESS_FROM = {
    "postal_code": "01310-100",
    "street": "Avenida Paulista",
    "number": "1000",
    "neighborhood": "Bela Vista",
    "city": "São Paulo",
    "state": "sp",
}

ADDRESS_TO = {
    "postal_code": "20040-020",
    "street": "Rua da Assembleia",
    "number": "10",
    "complement": "Sala 501",
    "neighborhood": "Centro",
    "city": "Rio de Janeiro",
    "state": "RJ",
}


def make_carrier_shipment(seed_data, txn=None, **fields):
    """Create a pending carrier shipment through the service layer."""
    from fleamarket.services.shipment_service import create_shipment

    txn = txn or make_transaction(seed_data)
    shipment = create_shipment(
        txn.id, seed_data["seller_id"], "carrier", ADDRESS_FROM, ADDRESS_TO,
        shipping_cost="25.90",
    )
    for key, value in fields.items():
        setattr(shipment, key, value)
    _db.session.commit()
    return shipment


def webhook_body(event_id, event_type, transaction_id=None, **session_fields):
    """Serialized Stripe-style event envelope for a checkout session."""
    session = {"id": "cs_fake_1", "object": "checkout.session", **session_fields}
    if transaction_id is not None:
        session["metadata"] = {"transaction_id": transaction_id}
    return json.dumps({
        "id": event_id,
        "type": event_type,
        "data": {"object": session},
    }).encode("utf-8")


def post_webhook(client, processor, body, signature=None):
    return client.post(
        "/webhooks/stripe",
        data=body,
        content_type="application/json",
        headers={"Stripe-Signature": signature if signature is not None else processor.sign(body)},
    )


