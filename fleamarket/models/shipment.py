"""Shipment model.

One fulfilment attempt for one transaction. Addresses and package
dimensions are snapshots taken at creation time and are never re-derived
from the user profile or the product afterwards.

Carrier linkage (melhor_envio_order_id, tracking_code, label_url) stays
NULL until a label has been bought, and only ever for method="carrier".
"""

import uuid

from fleamarket.extensions import db


class Shipment(db.Model):
    __tablename__ = "shipments"

    METHODS = ["carrier", "local_pickup", "local_meeting", "own"]

    # Carrier progression, driven by label generation + tracking refresh
    CARRIER_STATUSES = [
        "pending",
        "label_generating",
        "label_generated",
        "posted",
        "in_transit",
        "out_for_delivery",
        "delivered",
        "cancelled",
    ]

    # -- Seller-driven progression for non-carrier methods --
    LOCAL_TRANSITIONS = {
        "local_pickup": {
            "pending": ["ready_for_pickup"],
            "ready_for_pickup": ["picked_up"],
        },
        "local_meeting": {
            "pending": ["meeting_scheduled"],
            "meeting_scheduled": ["completed"],
        },
        "own": {
            "pending": ["posted"],
            "posted": ["in_transit", "delivered"],
            "in_transit": ["delivered"],
        },
    }

    # Nothing moves out of these
    FINAL_STATUSES = ["delivered", "picked_up", "completed", "cancelled"]

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    transaction_id = db.Column(
        db.String(36), db.ForeignKey("transactions.id"), nullable=False, index=True
    )
    method = db.Column(
        db.String(20), nullable=False
    )  # carrier | local_pickup | local_meeting | own
    service_id = db.Column(db.String(20), nullable=True)  # aggregator service, e.g. "1" (PAC)
    shipping_cost = db.Column(db.Numeric(10, 2), nullable=False, default=0)

    # --- Snapshots ---
    from_address = db.Column(db.JSON, nullable=False)
    to_address = db.Column(db.JSON, nullable=False)
    meeting_details = db.Column(db.JSON, nullable=True)
    package_weight = db.Column(db.Numeric(10, 3), nullable=True)  # kg
    package_height = db.Column(db.Integer, nullable=True)  # cm
    package_width = db.Column(db.Integer, nullable=True)  # cm
    package_length = db.Column(db.Integer, nullable=True)  # cm

    # --- Carrier linkage ---
    melhor_envio_order_id = db.Column(db.String(100), nullable=True, index=True)
    tracking_code = db.Column(db.String(100), nullable=True, index=True)
    label_url = db.Column(db.Text, nullable=True)
    label_requested_at = db.Column(
        db.DateTime(timezone=True), nullable=True
    )  # lease start of an in-flight label purchase

    status = db.Column(
        db.String(30), default="pending", nullable=False, index=True
    )
    tracking_events = db.Column(
        db.JSON, default=list
    )  # [{date, description, location}], oldest first

    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    # --- Relationships ---
    transaction = db.relationship("Transaction", back_populates="shipments")

    @property
    def is_carrier(self):
        return self.method == "carrier"

    @property
    def is_final(self):
        return self.status in self.FINAL_STATUSES

    def to_dict(self):
        return {
            "id": self.id,
            "transaction_id": self.transaction_id,
            "method": self.method,
            "service_id": self.service_id,
            "shipping_cost": str(self.shipping_cost or 0),
            "from_address": self.from_address,
            "to_address": self.to_address,
            "meeting_details": self.meeting_details,
            "package": {
                "weight": str(self.package_weight) if self.package_weight is not None else None,
                "height": self.package_height,
                "width": self.package_width,
                "length": self.package_length,
            },
            "melhor_envio_order_id": self.melhor_envio_order_id,
            "tracking_code": self.tracking_code,
            "label_url": self.label_url,
            "status": self.status,
            "tracking_events": list(self.tracking_events or []),
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self):
        return f"<Shipment {self.id} {self.method} ({self.status})>"
