"""Tests for checkout session creation.

Covers:
- Fee split (100.00 at 8% -> 8.00 / 92.00) and its rounding
- Metadata, URLs and amount handed to the payment processor
- Rejections that must not leave a transaction behind
- Processor outage after the local row exists
- Transaction visibility for buyer / seller / strangers
- Forward-only status and immutable processor session id
"""

from decimal import Decimal

import pytest

from fleamarket.extensions import db
from fleamarket.models.audit import AuditEvent
from fleamarket.models.product import Product
from fleamarket.models.transaction import Transaction
from fleamarket.services.checkout_service import split_amount, to_minor_units

from conftest import login_admin, login_buyer, login_seller, make_transaction


class TestSplitAmount:
    def test_eight_percent_of_one_hundred(self):
        assert split_amount(Decimal("100.00"), Decimal("0.08")) == (Decimal("8.00"), Decimal("92.00"))

    def test_fee_rounds_half_up_and_parts_add_up(self):
        fee, seller = split_amount(Decimal("10.05"), Decimal("0.10"))
        assert fee == Decimal("1.01")  # 1.005 -> 1.01
        assert fee + seller == Decimal("10.05")

    def test_minor_units(self):
        assert to_minor_units(Decimal("100.00")) == 10000
        assert to_minor_units(Decimal("19.99")) == 1999


class TestCreateCheckout:
    def test_creates_pending_transaction_and_returns_url(self, client, seed_data, payments):
        login_buyer(client)
        resp = client.post("/payments/checkout", json={"product_id": seed_data["product_id"]})

        assert resp.status_code == 201
        data = resp.get_json()
        assert data["checkout_url"] == "https://checkout.fake/pay/cs_fake_1"

        txn = db.session.get(Transaction, data["transaction_id"])
        assert txn.status == "pending"
        assert txn.amount == Decimal("100.00")
        assert txn.platform_fee == Decimal("8.00")
        assert txn.seller_amount == Decimal("92.00")
        assert txn.seller_amount + txn.platform_fee == txn.amount
        assert txn.provider_transaction_id == "cs_fake_1"
        assert txn.payment_provider == "stripe"
        assert txn.buyer_id == seed_data["buyer_id"]
        assert txn.seller_id == seed_data["seller_id"]

    def test_session_carries_correlation_metadata(self, client, seed_data, payments):
        login_buyer(client)
        resp = client.post("/payments/checkout", json={"product_id": seed_data["product_id"]})
        txn_id = resp.get_json()["transaction_id"]

        session = payments.sessions[0]
        assert session["metadata"] == {
            "transaction_id": txn_id,
            "product_id": seed_data["product_id"],
            "buyer_id": seed_data["buyer_id"],
            "seller_id": seed_data["seller_id"],
        }
        assert session["unit_amount"] == 10000
        assert session["currency"] == "brl"
        assert session["payment_method_types"] == ["card", "pix"]
        assert txn_id in session["success_url"]
        assert "{CHECKOUT_SESSION_ID}" in session["success_url"]
        assert "status=cancelled" in session["cancel_url"]

    def test_product_stays_available_until_paid(self, client, seed_data):
        login_buyer(client)
        client.post("/payments/checkout", json={"product_id": seed_data["product_id"]})
        assert db.session.get(Product, seed_data["product_id"]).status == "available"

    def test_writes_audit_event(self, client, seed_data):
        login_buyer(client)
        resp = client.post("/payments/checkout", json={"product_id": seed_data["product_id"]})
        txn_id = resp.get_json()["transaction_id"]
        audit = AuditEvent.query.filter_by(action="transaction.created", entity_id=txn_id).first()
        assert audit is not None
        assert audit.actor_user_id == seed_data["buyer_id"]


class TestCheckoutRejections:
    def test_requires_login(self, client, seed_data):
        resp = client.post("/payments/checkout", json={"product_id": seed_data["product_id"]})
        assert resp.status_code == 401
        assert resp.get_json()["code"] == "unauthorized"

    def test_missing_product_id(self, client, seed_data):
        login_buyer(client)
        resp = client.post("/payments/checkout", json={})
        assert resp.status_code == 400

    def test_unknown_product(self, client, seed_data, payments):
        login_buyer(client)
        resp = client.post("/payments/checkout", json={"product_id": "does-not-exist"})
        assert resp.status_code == 404
        assert resp.get_json()["code"] == "product_not_found"
        assert Transaction.query.count() == 0
        assert payments.sessions == []

    def test_unavailable_product(self, client, seed_data, payments):
        product = db.session.get(Product, seed_data["product_id"])
        product.status = "sold"
        db.session.commit()

        login_buyer(client)
        resp = client.post("/payments/checkout", json={"product_id": seed_data["product_id"]})
        assert resp.status_code == 400
        assert resp.get_json()["code"] == "product_unavailable"
        assert Transaction.query.count() == 0
        assert payments.sessions == []

    def test_seller_cannot_buy_own_product(self, client, seed_data, payments):
        login_seller(client)
        resp = client.post("/payments/checkout", json={"product_id": seed_data["product_id"]})
        assert resp.status_code == 400
        assert resp.get_json()["code"] == "own_product"
        assert Transaction.query.count() == 0


class TestProcessorOutage:
    def test_leaves_pending_transaction_without_provider_id(self, client, seed_data, payments):
        payments.fail_checkout = True
        login_buyer(client)

        resp = client.post("/payments/checkout", json={"product_id": seed_data["product_id"]})

        assert resp.status_code == 502
        assert resp.get_json()["code"] == "payment_processor_error"
        txn = Transaction.query.one()
        assert txn.status == "pending"
        assert txn.provider_transaction_id is None
        assert db.session.get(Product, seed_data["product_id"]).status == "available"


class TestTransactionVisibility:
    def _checkout(self, client, seed_data):
        login_buyer(client)
        resp = client.post("/payments/checkout", json={"product_id": seed_data["product_id"]})
        return resp.get_json()["transaction_id"]

    def test_buyer_and_seller_can_read(self, client, other_client, seed_data):
        txn_id = self._checkout(client, seed_data)
        assert client.get(f"/payments/transactions/{txn_id}").get_json()["status"] == "pending"

        login_seller(other_client)
        resp = other_client.get(f"/payments/transactions/{txn_id}")
        assert resp.status_code == 200
        assert resp.get_json()["seller_amount"] in ("92.00", "92")

    def test_admin_can_read(self, client, other_client, seed_data):
        txn_id = self._checkout(client, seed_data)
        login_admin(other_client)
        assert other_client.get(f"/payments/transactions/{txn_id}").status_code == 200

    def test_stranger_is_forbidden(self, client, other_client, seed_data):
        from werkzeug.security import generate_password_hash
        from fleamarket.models.user import User
        from conftest import PASSWORD, login

        txn_id = self._checkout(client, seed_data)
        db.session.add(User(
            email="stranger@fleamarket.test",
            password_hash=generate_password_hash(PASSWORD),
            name="Stranger",
        ))
        db.session.commit()

        login(other_client, "stranger@fleamarket.test")
        resp = other_client.get(f"/payments/transactions/{txn_id}")
        assert resp.status_code == 403

    def test_unknown_transaction(self, client, seed_data):
        login_buyer(client)
        resp = client.get("/payments/transactions/nope")
        assert resp.status_code == 404
        assert resp.get_json()["code"] == "transaction_not_found"


class TestTransactionInvariants:
    def test_provider_transaction_id_cannot_be_reassigned(self, seed_data):
        txn = make_transaction(seed_data, status="pending")
        txn.provider_transaction_id = "cs_fake_1"
        db.session.commit()

        with pytest.raises(ValueError, match="immutable"):
            txn.provider_transaction_id = "cs_fake_2"
        assert db.session.get(Transaction, txn.id).provider_transaction_id == "cs_fake_1"

    def test_provider_transaction_id_same_value_allowed(self, seed_data):
        txn = make_transaction(seed_data, status="pending")
        txn.provider_transaction_id = "cs_fake_1"
        txn.provider_transaction_id = "cs_fake_1"
        db.session.commit()
        assert txn.provider_transaction_id == "cs_fake_1"

    def test_paid_transaction_cannot_go_back_to_pending(self, seed_data):
        txn = make_transaction(seed_data, status="paid")

        with pytest.raises(ValueError, match="from 'paid' to 'pending'"):
            txn.status = "pending"
        assert txn.status == "paid"

    def test_unknown_status_rejected(self, seed_data):
        txn = make_transaction(seed_data, status="pending")
        with pytest.raises(ValueError, match="Invalid transaction status"):
            txn.status = "shipped"

    def test_legal_transition_allowed(self, seed_data):
        txn = make_transaction(seed_data, status="paid")
        txn.status = "released"
        db.session.commit()
        assert db.session.get(Transaction, txn.id).status == "released"
