"""Shipping blueprint — /shipping/*

Quotes, shipment creation, carrier labels, local progression,
cancellation and tracking. Sellers manage; buyers may only track.
"""

from flask import Blueprint, jsonify, request
from flask_login import current_user, login_required

from fleamarket.errors import ValidationError
from fleamarket.extensions import db, limiter
from fleamarket.gateways import get_carrier
from fleamarket.services import shipment_service
from fleamarket.services.quote_service import quote_shipping
from fleamarket.services.tracking_service import refresh_tracking

shipping_bp = Blueprint("shipping", __name__, url_prefix="/shipping")


def _json_body():
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValidationError("JSON object body required")
    return data


# ──────────────────────────────────────────────
# POST /shipping/quote
# ──────────────────────────────────────────────

@shipping_bp.route("/quote", methods=["POST"])
@login_required
@limiter.limit("30 per minute")
def quote():
    data = _json_body()
    if not data.get("product_id") or not data.get("to_postal_code"):
        raise ValidationError("product_id and to_postal_code are required")
    return jsonify(quote_shipping(data["product_id"], data["to_postal_code"], get_carrier()))


# ──────────────────────────────────────────────
# POST /shipping
# ──────────────────────────────────────────────

@shipping_bp.route("", methods=["POST"])
@login_required
def create():
    """Seller creates the shipment for a transaction."""
    data = _json_body()
    if not data.get("transaction_id") or not data.get("method"):
        raise ValidationError("transaction_id and method are required")

    shipment = shipment_service.create_shipment(
        transaction_id=data["transaction_id"],
        seller_id=current_user.id,
        method=data["method"],
        from_address=data.get("from_address"),
        to_address=data.get("to_address"),
        meeting_details=data.get("meeting_details"),
        service_id=data.get("service_id"),
        shipping_cost=data.get("shipping_cost"),
    )
    db.session.commit()
    return jsonify(shipment.to_dict()), 201


# ──────────────────────────────────────────────
# POST /shipping/<id>/label
# ──────────────────────────────────────────────

@shipping_bp.route("/<shipment_id>/label", methods=["POST"])
@login_required
@limiter.limit("10 per minute")
def label(shipment_id):
    shipment = shipment_service.generate_label(shipment_id, current_user.id, get_carrier())
    return jsonify({
        "shipment_id": shipment.id,
        "label_url": shipment.label_url,
        "tracking_code": shipment.tracking_code,
        "status": shipment.status,
    })


# ──────────────────────────────────────────────
# POST /shipping/<id>/status
# ──────────────────────────────────────────────

@shipping_bp.route("/<shipment_id>/status", methods=["POST"])
@login_required
def status(shipment_id):
    """Seller advances a local-pickup / meeting / own-delivery shipment."""
    data = _json_body()
    if not data.get("status"):
        raise ValidationError("status is required")
    shipment = shipment_service.update_local_status(shipment_id, current_user.id, data["status"])
    db.session.commit()
    return jsonify(shipment.to_dict())


# ──────────────────────────────────────────────
# POST /shipping/<id>/cancel
# ──────────────────────────────────────────────

@shipping_bp.route("/<shipment_id>/cancel", methods=["POST"])
@login_required
def cancel(shipment_id):
    data = request.get_json(silent=True) or {}
    shipment = shipment_service.cancel_shipment(
        shipment_id, current_user.id, get_carrier(), reason=data.get("reason")
    )
    return jsonify(shipment.to_dict())


# ──────────────────────────────────────────────
# GET /shipping/<id>/tracking
# ──────────────────────────────────────────────

@shipping_bp.route("/<shipment_id>/tracking")
@login_required
@limiter.limit("60 per minute")
def tracking(shipment_id):
    return jsonify(refresh_tracking(shipment_id, current_user.id, get_carrier()))
