"""Tests for shipment creation, carrier labels, local progression and cancellation.

Covers:
- Seller-only creation, method validation, paid-transaction guard
- Package dimensions copied from the product, never from the request
- Address sanitation and contact defaults
- Label generation happy path, wrong method, second attempt
- Failure at every stage of the four-call chain persists nothing
- Label claim (label_generating) blocks concurrent attempts until it expires
- Local method progression and cancellation
"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from fleamarket.errors import AlreadyDoneError, ValidationError
from fleamarket.extensions import db
from fleamarket.gateways.melhor_envio import CarrierError
from fleamarket.models.audit import AuditEvent
from fleamarket.models.shipment import Shipment
from fleamarket.models.transaction import Transaction
from fleamarket.services.shipment_service import (
    build_cart_item,
    clean_address,
    generate_label,
)

from conftest import (
    ADDRESS_FROM,
    ADDRESS_TO,
    login_buyer,
    login_seller,
    make_carrier_shipment,
    make_transaction,
)


def _create(client, txn_id, method="carrier", **extra):
    body = {
        "transaction_id": txn_id,
        "method": method,
        "from_address": ADDRESS_FROM,
        "to_address": ADDRESS_TO,
        **extra,
    }
    return client.post("/shipping", json=body)


class TestCreateShipment:
    def test_carrier_shipment_copies_product_dimensions(self, client, seed_data):
        txn = make_transaction(seed_data)
        login_seller(client)

        resp = _create(client, txn.id, shipping_cost="25.90", package={"weight": 0.1, "height": 1})

        assert resp.status_code == 201
        data = resp.get_json()
        assert data["status"] == "pending"
        assert data["method"] == "carrier"
        assert data["service_id"] == "1"
        assert data["package"]["height"] == 15
        assert data["package"]["width"] == 30
        assert data["package"]["length"] == 40
        assert Decimal(data["package"]["weight"]) == Decimal("2.5")

    def test_records_shipping_cost_on_transaction(self, client, seed_data):
        txn = make_transaction(seed_data)
        login_seller(client)
        _create(client, txn.id, shipping_cost="25.90")
        assert db.session.get(Transaction, txn.id).shipping_cost == Decimal("25.90")

    def test_address_snapshot_is_cleaned(self, client, seed_data):
        txn = make_transaction(seed_data)
        login_seller(client)
        resp = _create(client, txn.id)

        shipment = db.session.get(Shipment, resp.get_json()["id"])
        assert shipment.from_address["postal_code"] == "01310100"
        assert shipment.from_address["state"] == "SP"
        # Contact details default to the parties' profiles
        assert shipment.from_address["name"] == "Sandra Seller"
        assert shipment.to_address["name"] == "Bruno Buyer"
        assert shipment.to_address["document"] == "98765432100"

    def test_only_seller_can_create(self, client, seed_data):
        txn = make_transaction(seed_data)
        login_buyer(client)
        resp = _create(client, txn.id)
        assert resp.status_code == 403
        assert Shipment.query.count() == 0

    def test_unknown_transaction(self, client, seed_data):
        login_seller(client)
        resp = _create(client, "nope")
        assert resp.status_code == 404

    def test_invalid_method(self, client, seed_data):
        txn = make_transaction(seed_data)
        login_seller(client)
        resp = _create(client, txn.id, method="teleport")
        assert resp.status_code == 400
        assert resp.get_json()["code"] == "invalid_method"

    def test_unpaid_transaction_rejected(self, client, seed_data):
        txn = make_transaction(seed_data, status="pending")
        login_seller(client)
        resp = _create(client, txn.id)
        assert resp.status_code == 400
        assert resp.get_json()["code"] == "transaction_not_paid"

    def test_carrier_needs_product_dimensions(self, client, seed_data):
        txn = make_transaction(seed_data, product_key="loose_product_id", amount="250.00")
        login_seller(client)
        resp = _create(client, txn.id)
        assert resp.status_code == 400
        assert resp.get_json()["code"] == "missing_dimensions"
        assert Shipment.query.count() == 0

    def test_carrier_needs_complete_addresses(self, client, seed_data):
        txn = make_transaction(seed_data)
        login_seller(client)
        resp = client.post("/shipping", json={
            "transaction_id": txn.id,
            "method": "carrier",
            "from_address": ADDRESS_FROM,
            "to_address": {"postal_code": "20040020"},
        })
        assert resp.status_code == 400
        assert "to_address is missing" in resp.get_json()["error"]

    def test_second_active_shipment_rejected(self, client, seed_data):
        txn = make_transaction(seed_data)
        login_seller(client)
        _create(client, txn.id)
        resp = _create(client, txn.id)
        assert resp.status_code == 409
        assert resp.get_json()["code"] == "shipment_exists"

    def test_local_meeting_requires_date_time_and_location(self, client, seed_data):
        txn = make_transaction(seed_data)
        login_seller(client)
        resp = _create(client, txn.id, method="local_meeting", meeting_details={"date": "2026-11-01"})
        assert resp.status_code == 400
        assert resp.get_json()["error"] == "meeting_details is missing: time, location"

    def test_local_meeting_accepts_date_time_location(self, client, seed_data):
        txn = make_transaction(seed_data)
        login_seller(client)
        resp = _create(
            client, txn.id, method="local_meeting",
            meeting_details={"date": "2026-10-20", "time": "14:00", "location": "Praça da Sé"},
        )
        assert resp.status_code == 201
        assert resp.get_json()["meeting_details"] == {
            "date": "2026-10-20", "time": "14:00", "location": "Praça da Sé",
        }

    def test_local_meeting_details_sanitized(self, client, seed_data):
        txn = make_transaction(seed_data)
        login_seller(client)
        resp = _create(
            client, txn.id, method="local_meeting",
            meeting_details={
                "date": "2026-11-01",
                "time": "18:00",
                "location": "<b>Metrô Sé</b><script>x</script>",
                "notes": "<i>perto da saída</i>",
            },
        )
        assert resp.status_code == 201
        meeting = resp.get_json()["meeting_details"]
        assert meeting["location"].startswith("Metrô Sé")
        assert "<" not in meeting["location"]
        assert meeting["notes"] == "perto da saída"
        assert resp.get_json()["package"]["weight"] is None

    def test_non_numeric_service_rejected(self, client, seed_data, carrier):
        txn = make_transaction(seed_data)
        login_seller(client)
        resp = _create(client, txn.id, service_id="sedex")
        assert resp.status_code == 400
        assert resp.get_json()["code"] == "invalid_service"
        assert db.session.query(Shipment).count() == 0

    @pytest.mark.parametrize("service_id", ["0", "-2", "1.5"])
    def test_non_positive_service_rejected(self, client, seed_data, service_id):
        txn = make_transaction(seed_data)
        login_seller(client)
        resp = _create(client, txn.id, service_id=service_id)
        assert resp.status_code == 400
        assert resp.get_json()["code"] == "invalid_service"

    def test_numeric_service_stored_and_used_for_label(self, client, seed_data, carrier):
        txn = make_transaction(seed_data)
        login_seller(client)
        shipment_id = _create(client, txn.id, service_id=" 17 ").get_json()["id"]
        assert db.session.get(Shipment, shipment_id).service_id == "17"

        resp = client.post(f"/shipping/{shipment_id}/label")
        assert resp.status_code == 200
        assert carrier.calls_for("add_to_cart")[0][1]["service"] == 17

    def test_audit_event(self, client, seed_data):
        txn = make_transaction(seed_data)
        login_seller(client)
        shipment_id = _create(client, txn.id).get_json()["id"]
        assert AuditEvent.query.filter_by(action="shipment.created", entity_id=shipment_id).count() == 1


class TestCleanAddress:
    def test_strips_html(self):
        cleaned = clean_address(dict(ADDRESS_FROM, street="<i>Avenida</i> Paulista"))
        assert cleaned["street"] == "Avenida Paulista"

    def test_bad_postal_code(self):
        with pytest.raises(ValidationError):
            clean_address(dict(ADDRESS_FROM, postal_code="123"))

    def test_bad_state(self):
        with pytest.raises(ValidationError):
            clean_address(dict(ADDRESS_FROM, state="São Paulo"))

    def test_lenient_mode_allows_partial(self):
        assert clean_address({"city": "Recife"}, strict=False) == {"city": "Recife"}


class TestGenerateLabel:
    def test_happy_path_persists_carrier_linkage(self, client, seed_data, carrier):
        shipment = make_carrier_shipment(seed_data)
        login_seller(client)

        resp = client.post(f"/shipping/{shipment.id}/label")

        assert resp.status_code == 200
        data = resp.get_json()
        assert data["status"] == "label_generated"
        assert data["label_url"] == "https://labels.fake/ord_2.pdf"
        assert data["tracking_code"] == "ME00000002BR"

        shipment = db.session.get(Shipment, shipment.id)
        assert shipment.melhor_envio_order_id == "ord_2"
        assert shipment.label_requested_at is None
        assert [c[0] for c in carrier.calls] == ["add_to_cart", "checkout", "generate", "print"]

    def test_cart_item_uses_snapshots_and_insured_price(self, seed_data, carrier):
        shipment = make_carrier_shipment(seed_data)
        generate_label(shipment.id, seed_data["seller_id"], carrier)

        item = carrier.calls_for("add_to_cart")[0][1]
        assert item["service"] == 1
        assert item["from"]["postal_code"] == "01310100"
        assert item["to"]["district"] == "Centro"
        assert item["to"]["complement"] == "Sala 501"
        assert item["options"]["insurance_value"] == 100.0
        assert item["volumes"] == [{"height": 15, "width": 30, "length": 40, "weight": 2.5}]

    def test_rejects_non_carrier_shipment(self, client, seed_data, carrier):
        txn = make_transaction(seed_data)
        login_seller(client)
        shipment_id = _create(client, txn.id, method="local_pickup").get_json()["id"]

        resp = client.post(f"/shipping/{shipment_id}/label")

        assert resp.status_code == 400
        assert resp.get_json()["error"] == "Label only available for carrier shipments"
        assert carrier.calls == []

    def test_second_request_rejected_without_second_purchase(self, client, seed_data, carrier):
        shipment = make_carrier_shipment(seed_data)
        login_seller(client)
        client.post(f"/shipping/{shipment.id}/label")

        resp = client.post(f"/shipping/{shipment.id}/label")

        assert resp.status_code == 409
        assert resp.get_json()["error"] == "Label already generated"
        assert len(carrier.calls_for("checkout")) == 1
        assert db.session.get(Shipment, shipment.id).label_url == "https://labels.fake/ord_2.pdf"

    def test_buyer_cannot_generate(self, client, seed_data, carrier):
        shipment = make_carrier_shipment(seed_data)
        login_buyer(client)
        resp = client.post(f"/shipping/{shipment.id}/label")
        assert resp.status_code == 403
        assert carrier.calls == []

    @pytest.mark.parametrize("stage", ["add_to_cart", "checkout", "generate", "print"])
    def test_failure_at_any_stage_persists_nothing(self, client, seed_data, carrier, stage):
        shipment = make_carrier_shipment(seed_data)
        carrier.fail_on = {stage}
        login_seller(client)

        resp = client.post(f"/shipping/{shipment.id}/label")

        assert resp.status_code == 502
        assert resp.get_json()["code"] == "carrier_error"
        shipment = db.session.get(Shipment, shipment.id)
        assert shipment.status == "pending"
        assert shipment.label_url is None
        assert shipment.tracking_code is None
        assert shipment.melhor_envio_order_id is None
        assert shipment.label_requested_at is None

    def test_retry_after_failure_starts_clean(self, client, seed_data, carrier):
        shipment = make_carrier_shipment(seed_data)
        carrier.fail_on = {"print"}
        login_seller(client)
        client.post(f"/shipping/{shipment.id}/label")

        carrier.fail_on = set()
        resp = client.post(f"/shipping/{shipment.id}/label")

        assert resp.status_code == 200
        assert len(carrier.calls_for("add_to_cart")) == 2

    def test_in_flight_claim_blocks_second_attempt(self, seed_data, carrier):
        shipment = make_carrier_shipment(
            seed_data,
            status="label_generating",
            label_requested_at=datetime.now(timezone.utc),
        )

        with pytest.raises(AlreadyDoneError) as exc:
            generate_label(shipment.id, seed_data["seller_id"], carrier)

        assert exc.value.code == "label_in_progress"
        assert carrier.calls == []

    def test_expired_claim_can_be_taken_over(self, seed_data, carrier):
        shipment = make_carrier_shipment(
            seed_data,
            status="label_generating",
            label_requested_at=datetime.now(timezone.utc) - timedelta(hours=1),
        )

        shipment = generate_label(shipment.id, seed_data["seller_id"], carrier)

        assert shipment.status == "label_generated"
        assert len(carrier.calls_for("checkout")) == 1

    def test_cancelled_shipment_rejected(self, seed_data, carrier):
        shipment = make_carrier_shipment(seed_data, status="cancelled")
        with pytest.raises(ValidationError):
            generate_label(shipment.id, seed_data["seller_id"], carrier)


class TestBuildCartItem:
    def test_declares_product(self, seed_data):
        shipment = make_carrier_shipment(seed_data)
        item = build_cart_item(shipment, shipment.transaction.product)
        assert item["products"] == [{"name": "Vintage record player", "quantity": 1, "unitary_value": 100.0}]


class TestLocalStatus:
    def test_pickup_progression(self, client, seed_data):
        txn = make_transaction(seed_data)
        login_seller(client)
        shipment_id = _create(client, txn.id, method="local_pickup").get_json()["id"]

        assert client.post(f"/shipping/{shipment_id}/status", json={"status": "ready_for_pickup"}).status_code == 200
        resp = client.post(f"/shipping/{shipment_id}/status", json={"status": "picked_up"})
        assert resp.get_json()["status"] == "picked_up"

    def test_skipping_a_step_rejected(self, client, seed_data):
        txn = make_transaction(seed_data)
        login_seller(client)
        shipment_id = _create(client, txn.id, method="local_meeting",
                              meeting_details={"date": "2026-11-01", "time": "10:00", "location": "Praça"}).get_json()["id"]

        resp = client.post(f"/shipping/{shipment_id}/status", json={"status": "completed"})
        assert resp.status_code == 400
        assert resp.get_json()["code"] == "invalid_transition"

    def test_carrier_shipments_not_manually_advanced(self, client, seed_data):
        shipment = make_carrier_shipment(seed_data)
        login_seller(client)
        resp = client.post(f"/shipping/{shipment.id}/status", json={"status": "posted"})
        assert resp.status_code == 400

    def test_own_delivery_can_go_straight_to_delivered(self, client, seed_data):
        txn = make_transaction(seed_data)
        login_seller(client)
        shipment_id = _create(client, txn.id, method="own").get_json()["id"]
        client.post(f"/shipping/{shipment_id}/status", json={"status": "posted"})
        resp = client.post(f"/shipping/{shipment_id}/status", json={"status": "delivered"})
        assert resp.get_json()["status"] == "delivered"


class TestCancelShipment:
    def test_cancel_local_shipment(self, client, seed_data, carrier):
        txn = make_transaction(seed_data)
        login_seller(client)
        shipment_id = _create(client, txn.id, method="local_pickup").get_json()["id"]

        resp = client.post(f"/shipping/{shipment_id}/cancel", json={"reason": "buyer gave up"})

        assert resp.get_json()["status"] == "cancelled"
        assert carrier.calls_for("cancel") == []

    def test_cancel_carrier_order_first(self, client, seed_data, carrier):
        shipment = make_carrier_shipment(seed_data)
        login_seller(client)
        client.post(f"/shipping/{shipment.id}/label")

        resp = client.post(f"/shipping/{shipment.id}/cancel")

        assert resp.status_code == 200
        assert carrier.calls_for("cancel") == [("cancel", "ord_2")]

    def test_carrier_refusal_keeps_shipment(self, client, seed_data, carrier):
        shipment = make_carrier_shipment(seed_data)
        login_seller(client)
        client.post(f"/shipping/{shipment.id}/label")
        carrier.fail_on = {"cancel"}

        resp = client.post(f"/shipping/{shipment.id}/cancel")

        assert resp.status_code == 502
        assert db.session.get(Shipment, shipment.id).status == "label_generated"

    def test_delivered_cannot_be_cancelled(self, client, seed_data):
        shipment = make_carrier_shipment(seed_data, status="delivered")
        login_seller(client)
        resp = client.post(f"/shipping/{shipment.id}/cancel")
        assert resp.status_code == 400

    def test_cancelled_frees_transaction_for_replacement(self, client, seed_data):
        txn = make_transaction(seed_data)
        login_seller(client)
        first = _create(client, txn.id, method="local_pickup").get_json()["id"]
        client.post(f"/shipping/{first}/cancel")

        resp = _create(client, txn.id)
        assert resp.status_code == 201

    def test_carrier_error_type(self):
        assert CarrierError("x").status_code == 502
