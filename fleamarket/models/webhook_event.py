"""Webhook event model (idempotency ledger).

Every inbound payment-processor notification is recorded by its
(external_event_id, provider, event_type) key. The unique constraint on
that key is the only serialization point between concurrent deliveries
of the same event, and the database enforces it.

A row is inserted unprocessed on first sight and flipped to processed
only after the event's side effects have committed.
"""

import uuid

from fleamarket.extensions import db


class WebhookEvent(db.Model):
    __tablename__ = "webhook_events"
    __table_args__ = (
        db.UniqueConstraint(
            "external_event_id",
            "provider",
            "event_type",
            name="uq_webhook_events_event_provider_type",
        ),
    )

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    external_event_id = db.Column(
        db.String(255), nullable=False
    )  # e.g. "evt_1Abc..."
    provider = db.Column(db.String(50), nullable=False)  # e.g. "stripe"
    event_type = db.Column(
        db.String(255), nullable=False
    )  # e.g. "checkout.session.completed"
    payload = db.Column(db.Text, nullable=False)  # raw body, verbatim
    processed = db.Column(db.Boolean, default=False, nullable=False)
    received_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )
    processed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    def __repr__(self):
        state = "processed" if self.processed else "pending"
        return f"<WebhookEvent {self.provider}:{self.external_event_id} ({self.event_type}, {state})>"
