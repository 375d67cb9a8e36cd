"""Admin blueprint — /admin/*

Transaction listing and manual status changes (release, refund, ...).
All routes protected by @admin_required decorator.
"""

from flask import Blueprint, jsonify, request
from flask_login import current_user

from fleamarket.decorators import admin_required
from fleamarket.errors import ValidationError
from fleamarket.services import transaction_service

admin_bp = Blueprint("admin", __name__, url_prefix="/admin")


@admin_bp.route("/transactions")
@admin_required
def transaction_list():
    """Paginated transaction list with optional ?status= filter."""
    try:
        page = int(request.args.get("page", 1))
        limit = int(request.args.get("limit", 20))
    except ValueError:
        raise ValidationError("page and limit must be integers")

    items, total = transaction_service.list_transactions(
        status=request.args.get("status") or None, page=page, limit=limit
    )
    return jsonify({
        "items": [t.to_dict() for t in items],
        "total": total,
        "page": max(page, 1),
    })


@admin_bp.route("/transactions/<transaction_id>/status", methods=["POST"])
@admin_required
def transaction_status(transaction_id):
    data = request.get_json(silent=True) or {}
    new_status = data.get("status")
    if not new_status:
        raise ValidationError("status is required")

    txn = transaction_service.override_status(
        transaction_id, new_status, current_user.id, reason=data.get("reason")
    )
    return jsonify(txn.to_dict())
