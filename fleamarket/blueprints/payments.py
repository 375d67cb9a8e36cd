"""Payments blueprint — /payments/*

Opens checkout sessions and lets the parties poll transaction status
after the processor redirects back.
"""

from flask import Blueprint, jsonify, request
from flask_login import current_user, login_required

from fleamarket.errors import ValidationError
from fleamarket.extensions import limiter
from fleamarket.gateways import get_payment_processor
from fleamarket.services.checkout_service import create_checkout
from fleamarket.services.transaction_service import get_transaction_for_user

payments_bp = Blueprint("payments", __name__, url_prefix="/payments")


@payments_bp.route("/checkout", methods=["POST"])
@login_required
@limiter.limit("20 per minute")
def checkout():
    """Create a pending transaction and return the hosted checkout URL."""
    data = request.get_json(silent=True) or {}
    product_id = data.get("product_id")
    if not product_id:
        raise ValidationError("product_id is required")

    result = create_checkout(product_id, current_user.id, get_payment_processor())
    return jsonify({
        "transaction_id": result.transaction.id,
        "checkout_url": result.checkout_url,
        "transaction": result.transaction.to_dict(),
    }), 201


@payments_bp.route("/transactions/<transaction_id>")
@login_required
def transaction_detail(transaction_id):
    txn = get_transaction_for_user(transaction_id, current_user)
    return jsonify(txn.to_dict())
