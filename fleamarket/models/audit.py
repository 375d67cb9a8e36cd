"""Audit event model.

Logs money- and fulfilment-relevant actions (checkout started, payment
reconciled, admin overrides, labels bought) for support and debugging.
"""

import uuid

from fleamarket.extensions import db


class AuditEvent(db.Model):
    __tablename__ = "audit_events"

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    actor_user_id = db.Column(
        db.String(36), db.ForeignKey("users.id"), nullable=True
    )  # None for system-initiated events (webhooks, CLI)
    action = db.Column(db.String(255), nullable=False)  # e.g. "transaction.paid"
    entity = db.Column(db.String(50), nullable=False)  # transaction | shipment
    entity_id = db.Column(db.String(36), nullable=True, index=True)
    metadata_ = db.Column(
        "metadata", db.JSON, default=dict
    )  # extra context, named metadata_ to avoid the declarative attribute clash
    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )

    # --- Relationships ---
    actor = db.relationship("User", back_populates="audit_events")

    def __repr__(self):
        return f"<AuditEvent {self.action} {self.entity}:{self.entity_id}>"
