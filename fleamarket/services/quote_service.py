"""Shipping quote — which fulfilment options a product offers to a destination."""

import logging

from fleamarket.errors import ExternalServiceError, NotFoundError
from fleamarket.extensions import db
from fleamarket.models.product import Product
from fleamarket.services.shipment_service import clean_postal_code

logger = logging.getLogger(__name__)


def quote_shipping(product_id, to_postal_code, carrier):
    """List fulfilment options for a product.

    Carrier options need product dimensions and a seller postal code; a
    carrier failure drops them instead of failing the quote.
    """
    product = db.session.get(Product, product_id)
    if product is None:
        raise NotFoundError(f"Product {product_id} not found", code="product_not_found")
    to_postal_code = clean_postal_code(to_postal_code)

    options = []
    if product.free_shipping:
        options.append({"type": "free_shipping", "price": "0.00"})
    if product.local_pickup:
        options.append({"type": "local_pickup", "price": "0.00", "location": product.location})
    options.append({"type": "local_meeting", "price": "0.00"})

    from_postal_code = product.seller.address_postal_code if product.seller else None
    if product.has_dimensions and from_postal_code:
        package = {
            "weight": float(product.shipping_weight),
            "height": product.shipping_height,
            "width": product.shipping_width,
            "length": product.shipping_length,
        }
        try:
            quotes = carrier.calculate_rates(from_postal_code, to_postal_code, package)
        except ExternalServiceError as e:
            logger.warning(f"Carrier quote for product {product.id} failed: {e}")
            quotes = []
        for q in quotes:
            options.append({
                "type": "carrier",
                "service_id": q["service_id"],
                "name": q["name"],
                "carrier": q["carrier"],
                "price": str(q["price"]),
                "delivery_time": q["delivery_time"],
            })

    return {
        "product_id": product.id,
        "to_postal_code": to_postal_code,
        "options": options,
    }
