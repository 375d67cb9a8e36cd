"""Payment webhook reconciler.

Turns verified payment-processor notifications into transaction state,
exactly once per distinct (event id, provider, event type):

1. Verify the signature over the raw body (the processor gateway does it)
2. Claim the event in the webhook ledger
3. Dispatch on event type; side effects + ledger flag commit together
4. On any failure roll back, leaving the ledger row unprocessed so the
   processor's retry can finish the work

Returns a short status string for the HTTP response; raises
WebhookSignatureError / ValidationError for requests that must be
rejected, and TransactionNotFoundError when metadata points nowhere.
"""

import logging

from fleamarket.errors import ValidationError
from fleamarket.extensions import db
from fleamarket.services.transaction_service import apply_transition, settle_payment
from fleamarket.services.webhook_ledger import LedgerClaim, claim_event, mark_processed

logger = logging.getLogger(__name__)


def handle_payment_webhook(raw_body, sig_header, processor):
    """Authenticate, de-duplicate and apply one webhook delivery.

    Args:
        raw_body: request body bytes exactly as received.
        sig_header: value of the processor's signature header (may be None).
        processor: the PaymentProcessor that signed the delivery.

    Returns one of "processed", "already_processed", "in_progress".
    """
    event = processor.parse_webhook(raw_body, sig_header)

    event_id = event.get("id")
    event_type = event.get("type")
    if not event_id or not event_type:
        raise ValidationError("Webhook event is missing id or type", code="malformed_payload")

    claim, ledger_row = claim_event(
        event_id, processor.name, event_type, raw_body.decode("utf-8", errors="replace")
    )

    if claim is LedgerClaim.PROCESSED:
        logger.info(f"Duplicate webhook event {event_id}, skipping")
        return "already_processed"
    if claim is LedgerClaim.IN_FLIGHT:
        logger.info(f"Webhook event {event_id} is being handled by another delivery")
        return "in_progress"
    if claim is LedgerClaim.UNPROCESSED:
        logger.info(f"Retrying side effects of webhook event {event_id}")

    handler = EVENT_HANDLERS.get(event_type)
    try:
        if handler:
            handler(event)
        mark_processed(ledger_row)
        db.session.commit()
    except Exception as e:
        logger.error(f"Error handling {event_type} ({event_id}): {e}", exc_info=True)
        db.session.rollback()
        raise

    return "processed"


# ──────────────────────────────────────────────
# Event Handlers
# ──────────────────────────────────────────────

def _session_of(event):
    """Return (transaction_id, checkout session object) from an event envelope."""
    session = (event.get("data") or {}).get("object") or {}
    metadata = session.get("metadata") or {}
    return metadata.get("transaction_id"), session


def _handle_checkout_completed(event):
    """checkout.session.completed.

    Card payments arrive already paid. Delayed methods (Pix, boleto)
    complete the session with payment_status="unpaid" and settle later
    through checkout.session.async_payment_succeeded.
    """
    transaction_id, session = _session_of(event)
    if not transaction_id:
        logger.warning(f"{event['type']} {event['id']} has no transaction_id metadata")
        return

    if session.get("payment_status") == "unpaid":
        apply_transition(transaction_id, "processing")
        return

    if settle_payment(transaction_id):
        logger.info(f"Transaction {transaction_id} paid via event {event['id']}")


def _handle_async_payment_succeeded(event):
    transaction_id, _ = _session_of(event)
    if not transaction_id:
        logger.warning(f"{event['type']} {event['id']} has no transaction_id metadata")
        return
    if settle_payment(transaction_id):
        logger.info(f"Transaction {transaction_id} paid via event {event['id']}")


def _handle_payment_not_completed(event):
    """async_payment_failed / session expired: the buyer never paid."""
    transaction_id, _ = _session_of(event)
    if not transaction_id:
        logger.warning(f"{event['type']} {event['id']} has no transaction_id metadata")
        return
    if apply_transition(transaction_id, "failed"):
        logger.info(f"Transaction {transaction_id} failed via {event['type']}")


EVENT_HANDLERS = {
    "checkout.session.completed": _handle_checkout_completed,
    "checkout.session.async_payment_succeeded": _handle_async_payment_succeeded,
    "checkout.session.async_payment_failed": _handle_payment_not_completed,
    "checkout.session.expired": _handle_payment_not_completed,
}
