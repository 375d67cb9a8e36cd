"""Transaction model.

One purchase attempt for one product. transactions.status is the source
of truth for payment state; it only ever moves forward along
VALID_TRANSITIONS:

    pending -> processing -> paid -> released
    pending | processing  -> failed
    paid                  -> refunded

Money columns are fixed-point. seller_amount + platform_fee == amount is
established at creation (see checkout_service.split_amount) and never
rewritten afterwards.
"""

import uuid

from sqlalchemy.orm import validates

from fleamarket.extensions import db


class Transaction(db.Model):
    __tablename__ = "transactions"

    # -- Valid statuses --
    STATUSES = ["pending", "processing", "paid", "released", "refunded", "failed"]

    # -- Valid status transitions (forward only) --
    VALID_TRANSITIONS = {
        "pending": ["processing", "paid", "failed"],
        "processing": ["paid", "failed"],
        "paid": ["released", "refunded"],
    }

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    product_id = db.Column(
        db.String(36), db.ForeignKey("products.id"), nullable=False, index=True
    )
    buyer_id = db.Column(
        db.String(36), db.ForeignKey("users.id"), nullable=False, index=True
    )
    seller_id = db.Column(
        db.String(36), db.ForeignKey("users.id"), nullable=False, index=True
    )

    amount = db.Column(db.Numeric(10, 2), nullable=False)
    platform_fee = db.Column(db.Numeric(10, 2), nullable=False)
    seller_amount = db.Column(db.Numeric(10, 2), nullable=False)
    shipping_cost = db.Column(db.Numeric(10, 2), nullable=False, default=0)

    payment_method = db.Column(db.String(50), nullable=True)  # e.g. card,pix
    payment_provider = db.Column(db.String(50), nullable=True)  # e.g. stripe
    provider_transaction_id = db.Column(
        db.String(255), unique=True, nullable=True
    )  # checkout session id, e.g. "cs_test_..."

    status = db.Column(
        db.String(20), default="pending", nullable=False, index=True
    )  # pending | processing | paid | released | refunded | failed

    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    # --- Relationships ---
    product = db.relationship("Product")
    buyer = db.relationship("User", foreign_keys=[buyer_id])
    seller = db.relationship("User", foreign_keys=[seller_id])
    shipments = db.relationship(
        "Shipment", back_populates="transaction", lazy="dynamic"
    )

    @classmethod
    def sources_for(cls, target):
        """Statuses from which `target` may legally be reached."""
        return [s for s, targets in cls.VALID_TRANSITIONS.items() if target in targets]

    def can_transition_to(self, target):
        return target in self.VALID_TRANSITIONS.get(self.status, [])

    @validates("status")
    def _validate_status(self, key, value):
        if value not in self.STATUSES:
            raise ValueError(f"Invalid transaction status '{value}'.")
        current = self.status
        if current is not None and value != current and not self.can_transition_to(value):
            raise ValueError(
                f"Cannot move transaction from '{current}' to '{value}'."
            )
        return value

    @validates("provider_transaction_id")
    def _validate_provider_id(self, key, value):
        current = self.provider_transaction_id
        if current is not None and value != current:
            raise ValueError("provider_transaction_id is immutable once set.")
        return value

    def involves(self, user_id):
        return user_id in (self.buyer_id, self.seller_id)

    def to_dict(self):
        return {
            "id": self.id,
            "product_id": self.product_id,
            "buyer_id": self.buyer_id,
            "seller_id": self.seller_id,
            "amount": str(self.amount),
            "platform_fee": str(self.platform_fee),
            "seller_amount": str(self.seller_amount),
            "shipping_cost": str(self.shipping_cost or 0),
            "payment_method": self.payment_method,
            "payment_provider": self.payment_provider,
            "provider_transaction_id": self.provider_transaction_id,
            "status": self.status,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self):
        return f"<Transaction {self.id} ({self.status})>"
