"""Checkout session initiation.

Responsible for:
- Validating that a product can be bought by this buyer
- Splitting the price into platform fee and seller amount
- Creating the local pending transaction BEFORE the processor session,
  so the session metadata can reference a real transaction id
"""

import logging
from collections import namedtuple
from decimal import ROUND_HALF_UP, Decimal

from flask import current_app

from fleamarket.errors import NotFoundError, ValidationError
from fleamarket.extensions import db
from fleamarket.models.product import Product
from fleamarket.models.transaction import Transaction
from fleamarket.services.audit_service import log_audit

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")

CheckoutResult = namedtuple("CheckoutResult", ["transaction", "checkout_url"])


def split_amount(amount, fee_rate):
    """Return (platform_fee, seller_amount) for `amount`.

    The fee is rounded half-up to the cent; the seller gets the exact
    remainder so the two always add back up to `amount`.
    """
    amount = Decimal(amount).quantize(CENT)
    platform_fee = (amount * Decimal(fee_rate)).quantize(CENT, rounding=ROUND_HALF_UP)
    return platform_fee, amount - platform_fee


def to_minor_units(amount):
    """100.00 -> 10000 (centavos)."""
    return int((Decimal(amount) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def create_checkout(product_id, buyer_id, processor, config=None):
    """Create a pending transaction and a hosted checkout session for it.

    Args:
        product_id: listing being bought.
        buyer_id: authenticated buyer.
        processor: PaymentProcessor to open the session with.
        config: mapping of settings (defaults to current_app.config).

    Returns:
        CheckoutResult(transaction, checkout_url)

    Raises:
        NotFoundError: product doesn't exist.
        ValidationError: product not available, or buyer is the seller.
        PaymentProcessorError: session creation failed. The transaction
            stays pending with no provider id and can be expired later.
    """
    config = config or current_app.config

    product = db.session.get(Product, product_id)
    if product is None:
        raise NotFoundError(f"Product {product_id} not found", code="product_not_found")
    if product.status != "available":
        raise ValidationError("Product is not available", code="product_unavailable")
    if product.seller_id == buyer_id:
        raise ValidationError("You cannot buy your own product", code="own_product")

    platform_fee, seller_amount = split_amount(product.price, config["PLATFORM_FEE_RATE"])
    methods = list(config.get("STRIPE_PAYMENT_METHOD_TYPES") or ["card"])

    txn = Transaction(
        product_id=product.id,
        buyer_id=buyer_id,
        seller_id=product.seller_id,
        amount=Decimal(product.price).quantize(CENT),
        platform_fee=platform_fee,
        seller_amount=seller_amount,
        shipping_cost=Decimal("0.00"),
        payment_method=",".join(methods),
        payment_provider=processor.name,
        status="pending",
    )
    db.session.add(txn)
    db.session.flush()
    log_audit("transaction.created", "transaction", txn.id, buyer_id, {
        "product_id": product.id,
        "amount": str(txn.amount),
    })
    db.session.commit()

    base_url = config["APP_BASE_URL"].rstrip("/")
    try:
        session = processor.create_checkout_session(
            title=product.title,
            unit_amount=to_minor_units(txn.amount),
            currency=config.get("CURRENCY", "brl"),
            metadata={
                "transaction_id": txn.id,
                "product_id": product.id,
                "buyer_id": buyer_id,
                "seller_id": product.seller_id,
            },
            success_url=f"{base_url}/payments/transactions/{txn.id}?status=success&session_id={{CHECKOUT_SESSION_ID}}",
            cancel_url=f"{base_url}/payments/transactions/{txn.id}?status=cancelled",
            payment_method_types=methods,
        )
    except Exception:
        logger.error(
            f"Checkout session failed for transaction {txn.id}; left pending without provider id",
            exc_info=True,
        )
        raise

    txn.provider_transaction_id = session.session_id
    db.session.commit()

    logger.info(f"Checkout {session.session_id} opened for transaction {txn.id}")
    return CheckoutResult(transaction=txn, checkout_url=session.url)
