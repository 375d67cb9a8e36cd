"""Product model.

Listing CRUD is handled elsewhere. The payment core reads price and
shipping dimensions, and flips status to "sold" when a payment settles.
"""

import uuid

from fleamarket.extensions import db


class Product(db.Model):
    __tablename__ = "products"

    # -- Valid statuses --
    STATUSES = ["available", "sold", "paused", "removed"]

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    seller_id = db.Column(
        db.String(36), db.ForeignKey("users.id"), nullable=False
    )
    title = db.Column(db.String(255), nullable=False)
    price = db.Column(db.Numeric(10, 2), nullable=False)
    status = db.Column(
        db.String(20), default="available", nullable=False
    )  # available | sold | paused | removed
    location = db.Column(db.String(255), nullable=True)

    # --- Shipping ---
    shipping_weight = db.Column(db.Numeric(10, 3), nullable=True)  # kg
    shipping_height = db.Column(db.Integer, nullable=True)  # cm
    shipping_width = db.Column(db.Integer, nullable=True)  # cm
    shipping_length = db.Column(db.Integer, nullable=True)  # cm
    local_pickup = db.Column(db.Boolean, default=False)
    free_shipping = db.Column(db.Boolean, default=False)

    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    # --- Relationships ---
    seller = db.relationship("User", back_populates="products")

    @property
    def has_dimensions(self):
        return None not in (
            self.shipping_weight,
            self.shipping_height,
            self.shipping_width,
            self.shipping_length,
        )

    def __repr__(self):
        return f"<Product {self.title} ({self.status})>"
