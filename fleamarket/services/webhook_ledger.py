"""Webhook event ledger — idempotency for at-least-once deliveries.

claim_event() is the single entry point. It reports which of these
situations the delivery is in, and the caller branches on all of them:

    INSERTED     first sight of this event; apply its side effects
    UNPROCESSED  seen before but its side effects never committed
                 (an earlier attempt failed); apply them again
    IN_FLIGHT    a concurrent delivery inserted the row between our read
                 and our insert; acknowledge without applying
    PROCESSED    side effects already committed; acknowledge without applying

The race between concurrent deliveries is decided by the unique
constraint on webhook_events, not by the read that precedes the insert.
"""

import enum
import logging
from datetime import datetime, timezone

from sqlalchemy.exc import IntegrityError

from fleamarket.extensions import db
from fleamarket.models.webhook_event import WebhookEvent

logger = logging.getLogger(__name__)


class LedgerClaim(enum.Enum):
    INSERTED = "inserted"
    UNPROCESSED = "unprocessed"
    IN_FLIGHT = "in_flight"
    PROCESSED = "processed"

    @property
    def should_apply(self):
        return self in (LedgerClaim.INSERTED, LedgerClaim.UNPROCESSED)


def find_event(external_event_id, provider, event_type):
    return WebhookEvent.query.filter_by(
        external_event_id=external_event_id,
        provider=provider,
        event_type=event_type,
    ).first()


def claim_event(external_event_id, provider, event_type, payload):
    """Record a delivery in the ledger. Commits the insert on first sight.

    Returns (LedgerClaim, WebhookEvent).
    """
    existing = find_event(external_event_id, provider, event_type)
    if existing is not None:
        if existing.processed:
            return LedgerClaim.PROCESSED, existing
        return LedgerClaim.UNPROCESSED, existing

    event = WebhookEvent(
        external_event_id=external_event_id,
        provider=provider,
        event_type=event_type,
        payload=payload,
        processed=False,
    )
    db.session.add(event)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        logger.info(
            f"Concurrent delivery of {provider} event {external_event_id} won the insert"
        )
        return LedgerClaim.IN_FLIGHT, find_event(external_event_id, provider, event_type)

    return LedgerClaim.INSERTED, event


def mark_processed(event):
    """Flag the ledger row processed. Flushes; the caller commits it
    together with the side effects it vouches for."""
    event.processed = True
    event.processed_at = datetime.now(timezone.utc)
    db.session.flush()
