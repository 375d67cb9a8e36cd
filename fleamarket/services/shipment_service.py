"""Shipment service — creation, carrier labels, local progression, cancellation.

Address and meeting fields are sanitized with bleach.clean(). Package
dimensions for carrier shipments are always copied from the product,
never taken from the request.

create_shipment() and update_local_status() flush but do NOT commit;
the caller commits. generate_label() and cancel_shipment() talk to the
carrier between writes, so they own their commits.
"""

import enum
import logging
import re
from datetime import datetime, timedelta, timezone
from decimal import Decimal, InvalidOperation

import bleach
from flask import current_app
from sqlalchemy import and_, or_

from fleamarket.errors import AlreadyDoneError, NotFoundError, PermissionDeniedError, ValidationError
from fleamarket.extensions import db
from fleamarket.gateways.melhor_envio import CarrierError
from fleamarket.models.shipment import Shipment
from fleamarket.models.transaction import Transaction
from fleamarket.models.user import User
from fleamarket.services.audit_service import log_audit
from fleamarket.services.transaction_service import TransactionNotFoundError

logger = logging.getLogger(__name__)

ADDRESS_FIELDS = ["postal_code", "street", "number", "complement", "neighborhood", "city", "state"]
REQUIRED_ADDRESS_FIELDS = ["postal_code", "street", "number", "neighborhood", "city", "state"]
CONTACT_FIELDS = ["name", "phone", "email", "document"]
MEETING_FIELDS = ["date", "time", "location", "notes"]
REQUIRED_MEETING_FIELDS = ["date", "time", "location"]

# Transactions a shipment may be attached to when SHIPMENT_REQUIRES_PAID is on
SHIPPABLE_TRANSACTION_STATUSES = ["paid", "released"]


class ShipmentNotFoundError(NotFoundError):
    code = "shipment_not_found"


class LabelStage(enum.Enum):
    """How far a label purchase got. Lives only in local variables."""

    IDLE = "idle"
    CART_ADDED = "cart_added"
    CHECKED_OUT = "checked_out"
    LABEL_REQUESTED = "label_requested"
    LABEL_PRINTED = "label_printed"


# ──────────────────────────────────────────────
# Input cleaning
# ──────────────────────────────────────────────

def _sanitize(text):
    """Strip all HTML tags from user input."""
    if text is None:
        return None
    return bleach.clean(str(text), tags=[], strip=True).strip()


def clean_postal_code(value):
    """Normalize a CEP to its 8 digits ("01310-100" -> "01310100")."""
    digits = re.sub(r"\D", "", str(value or ""))
    if len(digits) != 8:
        raise ValidationError("Postal code must have 8 digits", code="invalid_postal_code")
    return digits


def clean_address(data, label="address", strict=True, contact=None):
    """Sanitize an address snapshot.

    With strict=True every field a carrier label needs must be present.
    `contact` fills name/phone/email/document the caller left out.
    """
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ValidationError(f"{label} must be an object")

    cleaned = {}
    for field in ADDRESS_FIELDS + CONTACT_FIELDS:
        value = _sanitize(data.get(field))
        if value:
            cleaned[field] = value
    for field, value in (contact or {}).items():
        if value and not cleaned.get(field):
            cleaned[field] = value

    if strict:
        missing = [f for f in REQUIRED_ADDRESS_FIELDS if not cleaned.get(f)]
        if missing:
            raise ValidationError(f"{label} is missing: {', '.join(missing)}")
    if "postal_code" in cleaned:
        cleaned["postal_code"] = clean_postal_code(cleaned["postal_code"])
    if "state" in cleaned:
        state = cleaned["state"].upper()
        if not re.fullmatch(r"[A-Z]{2}", state):
            raise ValidationError(f"{label}.state must be a 2-letter UF code")
        cleaned["state"] = state
    return cleaned


def _clean_meeting(data):
    if not isinstance(data, dict):
        raise ValidationError("meeting_details must be an object")
    cleaned = {f: _sanitize(data.get(f)) for f in MEETING_FIELDS if data.get(f)}
    missing = [f for f in REQUIRED_MEETING_FIELDS if not cleaned.get(f)]
    if missing:
        raise ValidationError(f"meeting_details is missing: {', '.join(missing)}")
    return cleaned


def _clean_service_id(value):
    """Carrier service ids are positive integers; stored as their string form."""
    try:
        service = int(str(value).strip())
    except (TypeError, ValueError):
        service = 0
    if service <= 0:
        raise ValidationError(
            f"Invalid carrier service '{value}'", code="invalid_service"
        )
    return str(service)


def _contact_of(user):
    if user is None:
        return {}
    return {
        "name": user.name,
        "phone": user.phone,
        "email": user.email,
        "document": user.document,
    }


def _money(value):
    try:
        amount = Decimal(str(value if value is not None else "0")).quantize(Decimal("0.01"))
    except (InvalidOperation, ValueError):
        raise ValidationError("shipping_cost must be a number")
    if amount < 0:
        raise ValidationError("shipping_cost cannot be negative")
    return amount


# ──────────────────────────────────────────────
# Lookups
# ──────────────────────────────────────────────

def _get_owned_shipment(shipment_id, seller_id):
    shipment = db.session.get(Shipment, shipment_id)
    if shipment is None:
        raise ShipmentNotFoundError(f"Shipment {shipment_id} not found")
    if shipment.transaction.seller_id != seller_id:
        raise PermissionDeniedError("Only the seller can manage this shipment")
    return shipment


def active_shipment_for(transaction_id):
    """The transaction's shipment that hasn't been cancelled, if any."""
    return (
        Shipment.query
        .filter(Shipment.transaction_id == transaction_id, Shipment.status != "cancelled")
        .first()
    )


# ──────────────────────────────────────────────
# Create
# ──────────────────────────────────────────────

def create_shipment(transaction_id, seller_id, method, from_address, to_address,
                    meeting_details=None, service_id=None, shipping_cost=None, config=None):
    """Create a pending shipment for a transaction. Flushes; caller commits.

    Args:
        transaction_id: parent transaction.
        seller_id: requesting user; must be the transaction's seller.
        method: one of Shipment.METHODS.
        from_address / to_address: address snapshots (sanitized here).
        meeting_details: required for local_meeting.
        service_id: carrier service; defaults to MELHOR_ENVIO_DEFAULT_SERVICE.
        shipping_cost: also recorded on the transaction.

    Raises:
        TransactionNotFoundError, PermissionDeniedError, ValidationError,
        AlreadyDoneError (an active shipment already exists).
    """
    config = config or current_app.config

    txn = db.session.get(Transaction, transaction_id)
    if txn is None:
        raise TransactionNotFoundError(f"Transaction {transaction_id} not found")
    if txn.seller_id != seller_id:
        raise PermissionDeniedError("Only the seller can create a shipment")
    if method not in Shipment.METHODS:
        raise ValidationError(
            f"Invalid method '{method}'. Must be one of: {', '.join(Shipment.METHODS)}",
            code="invalid_method",
        )
    if config.get("SHIPMENT_REQUIRES_PAID", True) and txn.status not in SHIPPABLE_TRANSACTION_STATUSES:
        raise ValidationError(
            f"Transaction is '{txn.status}'; shipments require a paid transaction",
            code="transaction_not_paid",
        )
    if active_shipment_for(txn.id) is not None:
        raise AlreadyDoneError("Transaction already has an active shipment", code="shipment_exists")

    is_carrier = method == "carrier"
    seller = db.session.get(User, txn.seller_id)
    buyer = db.session.get(User, txn.buyer_id)
    shipment = Shipment(
        transaction_id=txn.id,
        method=method,
        from_address=clean_address(from_address, "from_address", strict=is_carrier, contact=_contact_of(seller)),
        to_address=clean_address(to_address, "to_address", strict=is_carrier, contact=_contact_of(buyer)),
        shipping_cost=_money(shipping_cost),
        status="pending",
        tracking_events=[],
    )

    if method == "local_meeting":
        shipment.meeting_details = _clean_meeting(meeting_details)
    elif meeting_details:
        raise ValidationError("meeting_details only apply to local_meeting shipments")

    if is_carrier:
        product = txn.product
        if not product.has_dimensions:
            raise ValidationError(
                "Product has no shipping dimensions; carrier shipping unavailable",
                code="missing_dimensions",
            )
        shipment.service_id = _clean_service_id(
            service_id or config.get("MELHOR_ENVIO_DEFAULT_SERVICE", "1")
        )
        shipment.package_weight = product.shipping_weight
        shipment.package_height = product.shipping_height
        shipment.package_width = product.shipping_width
        shipment.package_length = product.shipping_length

    db.session.add(shipment)
    txn.shipping_cost = shipment.shipping_cost
    db.session.flush()

    log_audit("shipment.created", "shipment", shipment.id, seller_id, {
        "transaction_id": txn.id,
        "method": method,
        "shipping_cost": str(shipment.shipping_cost),
    })
    return shipment


# ──────────────────────────────────────────────
# Carrier label
# ──────────────────────────────────────────────

def build_cart_item(shipment, product):
    """Aggregator cart payload for one shipment, product price as insured value."""

    def party(address):
        return {
            "name": address.get("name"),
            "phone": address.get("phone"),
            "email": address.get("email"),
            "document": address.get("document"),
            "address": address.get("street"),
            "number": address.get("number"),
            "complement": address.get("complement"),
            "district": address.get("neighborhood"),
            "city": address.get("city"),
            "state_abbr": address.get("state"),
            "country_id": "BR",
            "postal_code": address.get("postal_code"),
        }

    price = float(product.price)
    return {
        "service": int(shipment.service_id),
        "from": party(shipment.from_address),
        "to": party(shipment.to_address),
        "products": [{
            "name": product.title,
            "quantity": 1,
            "unitary_value": price,
        }],
        "volumes": [{
            "height": shipment.package_height,
            "width": shipment.package_width,
            "length": shipment.package_length,
            "weight": float(shipment.package_weight),
        }],
        "options": {
            "insurance_value": price,
            "receipt": False,
            "own_hand": False,
            "reverse": False,
            "non_commercial": True,
        },
    }


def _claim_label(shipment_id, lock_seconds):
    """pending -> label_generating, or take over an expired claim. Commits.

    Returns True if this caller holds the claim.
    """
    now = datetime.now(timezone.utc)
    stale_before = now - timedelta(seconds=lock_seconds)
    claimed = (
        Shipment.query
        .filter(
            Shipment.id == shipment_id,
            Shipment.label_url.is_(None),
            or_(
                Shipment.status == "pending",
                and_(
                    Shipment.status == "label_generating",
                    Shipment.label_requested_at < stale_before,
                ),
            ),
        )
        .update(
            {"status": "label_generating", "label_requested_at": now},
            synchronize_session="fetch",
        )
    )
    db.session.commit()
    return bool(claimed)


def _release_label_claim(shipment_id):
    """label_generating -> pending after a failed chain. Commits."""
    db.session.rollback()
    (
        Shipment.query
        .filter(Shipment.id == shipment_id, Shipment.status == "label_generating")
        .update(
            {"status": "pending", "label_requested_at": None},
            synchronize_session="fetch",
        )
    )
    db.session.commit()


def generate_label(shipment_id, seller_id, carrier, config=None):
    """Buy a carrier label for a shipment.

    Runs add-to-cart -> checkout -> generate -> print against the carrier.
    Nothing the carrier returns is persisted until all four calls have
    succeeded; on any failure the shipment goes back to pending with no
    carrier linkage and the error propagates.

    Returns the updated Shipment.

    Raises:
        ShipmentNotFoundError, PermissionDeniedError,
        ValidationError (not a carrier shipment, cancelled, no package),
        AlreadyDoneError (label exists, or another request holds the claim),
        CarrierError (any stage failed).
    """
    config = config or current_app.config
    shipment = _get_owned_shipment(shipment_id, seller_id)

    if not shipment.is_carrier:
        raise ValidationError("Label only available for carrier shipments", code="not_carrier")
    if shipment.label_url:
        raise AlreadyDoneError("Label already generated", code="label_already_generated")
    if shipment.status == "cancelled":
        raise ValidationError("Shipment was cancelled", code="shipment_cancelled")
    if shipment.package_weight is None:
        raise ValidationError("Shipment has no package dimensions", code="missing_dimensions")

    product = shipment.transaction.product
    cart_item = build_cart_item(shipment, product)

    if not _claim_label(shipment.id, config.get("LABEL_LOCK_SECONDS", 300)):
        db.session.refresh(shipment)
        if shipment.label_url:
            raise AlreadyDoneError("Label already generated", code="label_already_generated")
        raise AlreadyDoneError("Label generation already in progress", code="label_in_progress")

    stage = LabelStage.IDLE
    try:
        cart_item_id = carrier.add_to_cart(cart_item)
        stage = LabelStage.CART_ADDED

        purchase = carrier.checkout([cart_item_id])
        order_id = purchase["purchase_id"]
        stage = LabelStage.CHECKED_OUT

        carrier.generate_labels([order_id])
        stage = LabelStage.LABEL_REQUESTED

        label_url = carrier.print_labels([order_id])
        stage = LabelStage.LABEL_PRINTED
    except Exception as e:
        logger.error(
            f"Label generation for shipment {shipment_id} failed after stage "
            f"'{stage.value}': {e}"
        )
        _release_label_claim(shipment_id)
        raise

    shipment = db.session.get(Shipment, shipment_id)
    shipment.melhor_envio_order_id = order_id
    shipment.tracking_code = purchase.get("tracking_code")
    shipment.label_url = label_url
    shipment.status = "label_generated"
    shipment.label_requested_at = None
    log_audit("shipment.label_generated", "shipment", shipment.id, seller_id, {
        "order_id": order_id,
        "tracking_code": shipment.tracking_code,
    })
    db.session.commit()

    logger.info(f"Label generated for shipment {shipment.id} (order {order_id})")
    return shipment


# ──────────────────────────────────────────────
# Progression / cancellation
# ──────────────────────────────────────────────

def update_local_status(shipment_id, seller_id, new_status):
    """Advance a non-carrier shipment along its method's transitions. Flushes."""
    shipment = _get_owned_shipment(shipment_id, seller_id)
    if shipment.is_carrier:
        raise ValidationError(
            "Carrier shipments are updated from tracking", code="not_local"
        )

    old_status = shipment.status
    allowed = Shipment.LOCAL_TRANSITIONS[shipment.method].get(old_status, [])
    if new_status not in allowed:
        raise ValidationError(
            f"Cannot transition from '{old_status}' to '{new_status}'. "
            f"Allowed: {', '.join(allowed) if allowed else 'none (terminal state)'}",
            code="invalid_transition",
        )

    shipment.status = new_status
    db.session.flush()

    log_audit("shipment.status_changed", "shipment", shipment.id, seller_id, {
        "old_status": old_status,
        "new_status": new_status,
    })
    return shipment


def cancel_shipment(shipment_id, seller_id, carrier, reason=None):
    """Cancel a shipment that hasn't been delivered. Commits.

    Carrier-linked shipments are cancelled at the carrier first; the local
    row only changes once the carrier agrees.
    """
    shipment = _get_owned_shipment(shipment_id, seller_id)

    if shipment.status == "cancelled":
        raise AlreadyDoneError("Shipment already cancelled", code="already_cancelled")
    if shipment.is_final:
        raise ValidationError(
            f"Shipment is '{shipment.status}' and can no longer be cancelled",
            code="invalid_transition",
        )
    if shipment.status == "label_generating":
        raise AlreadyDoneError("Label generation in progress; try again shortly", code="label_in_progress")

    if shipment.melhor_envio_order_id:
        if not carrier.cancel(shipment.melhor_envio_order_id):
            raise CarrierError(
                f"Carrier refused to cancel order {shipment.melhor_envio_order_id}"
            )

    old_status = shipment.status
    shipment.status = "cancelled"
    log_audit("shipment.cancelled", "shipment", shipment.id, seller_id, {
        "old_status": old_status,
        "reason": _sanitize(reason),
    })
    db.session.commit()

    logger.info(f"Shipment {shipment.id} cancelled by seller {seller_id}")
    return shipment
