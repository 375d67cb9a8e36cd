"""Webhooks blueprint — /webhooks/stripe

Receives payment processor webhook events. CSRF-exempt.
Raw body is required for signature verification.
"""

import logging

from flask import Blueprint, request, jsonify

from fleamarket.errors import ValidationError, WebhookSignatureError
from fleamarket.gateways import get_payment_processor
from fleamarket.services.payment_webhook_service import handle_payment_webhook
from fleamarket.services.transaction_service import TransactionNotFoundError

logger = logging.getLogger(__name__)

webhooks_bp = Blueprint("webhooks", __name__, url_prefix="/webhooks")


@webhooks_bp.route("/stripe", methods=["POST"])
def stripe_webhook():
    """Receive and process payment webhook events.

    1. Get raw body bytes (required for signature verification)
    2. Verify signature, claim the event in the ledger, apply it
    3. Return 200 to acknowledge receipt, also for duplicates

    A 5xx leaves the ledger row unprocessed so the processor retries.
    CSRF is exempted for this blueprint in create_app().
    """
    payload = request.get_data()
    sig_header = request.headers.get("Stripe-Signature")

    try:
        status = handle_payment_webhook(payload, sig_header, get_payment_processor())
    except WebhookSignatureError as e:
        logger.warning(f"Webhook signature verification failed: {e.message}")
        return jsonify(e.to_dict()), e.status_code
    except ValidationError as e:
        logger.warning(f"Rejected malformed webhook: {e.message}")
        return jsonify(e.to_dict()), e.status_code
    except TransactionNotFoundError as e:
        logger.error(f"Webhook references unknown transaction: {e.message}")
        return jsonify(e.to_dict()), e.status_code
    except Exception as e:
        logger.error(f"Webhook processing failed: {e}")
        return jsonify({"error": "Webhook processing failed", "code": "webhook_failed"}), 500

    return jsonify({"status": status}), 200
