"""Payment processor gateway.

PaymentProcessor is the capability the checkout and webhook services
depend on. StripePaymentProcessor is the production implementation; the
in-memory FakePaymentProcessor (gateways/fakes.py) is used in tests and
local runs without Stripe credentials.

Responsible for:
- Creating hosted Checkout Sessions
- Verifying webhook signatures over the raw, unparsed request body
"""

import json
import logging
from collections import namedtuple

import stripe

from fleamarket.errors import ExternalServiceError, ValidationError, WebhookSignatureError

logger = logging.getLogger(__name__)

CheckoutSession = namedtuple("CheckoutSession", ["session_id", "url"])


class PaymentProcessorError(ExternalServiceError):
    code = "payment_processor_error"


class PaymentProcessor:
    """Interface for the hosted-checkout payment processor."""

    name = None

    def create_checkout_session(self, *, title, unit_amount, currency, metadata,
                                success_url, cancel_url, payment_method_types):
        """Create a hosted checkout session. Returns a CheckoutSession.

        `unit_amount` is in the currency's minor unit (centavos).
        Raises PaymentProcessorError on any remote failure.
        """
        raise NotImplementedError

    def parse_webhook(self, payload, sig_header):
        """Verify `sig_header` over the raw `payload` bytes and decode the event.

        Returns the event envelope as a dict.
        Raises WebhookSignatureError if the signature is absent or wrong,
        ValidationError if the verified body is not a JSON object.
        """
        raise NotImplementedError


def decode_event(payload):
    """Decode a verified webhook body into a dict event envelope."""
    try:
        event = json.loads(payload)
    except (TypeError, ValueError) as e:
        raise ValidationError(f"Malformed webhook payload: {e}", code="malformed_payload") from e
    if not isinstance(event, dict):
        raise ValidationError("Webhook payload is not an object", code="malformed_payload")
    return event


class StripePaymentProcessor(PaymentProcessor):
    name = "stripe"

    def __init__(self, secret_key, webhook_secret, timeout=20, max_network_retries=2):
        self.webhook_secret = webhook_secret
        self.client = stripe.StripeClient(
            secret_key,
            http_client=stripe.RequestsClient(timeout=timeout),
            max_network_retries=max_network_retries,
        )

    def create_checkout_session(self, *, title, unit_amount, currency, metadata,
                                success_url, cancel_url, payment_method_types):
        try:
            session = self.client.checkout.sessions.create(params={
                "mode": "payment",
                "payment_method_types": list(payment_method_types),
                "line_items": [
                    {
                        "price_data": {
                            "currency": currency,
                            "product_data": {"name": title},
                            "unit_amount": unit_amount,
                        },
                        "quantity": 1,
                    }
                ],
                "metadata": metadata,
                "success_url": success_url,
                "cancel_url": cancel_url,
            })
        except stripe.StripeError as e:
            logger.error(f"Stripe checkout session creation failed: {e}")
            raise PaymentProcessorError(f"Payment processor unavailable: {e}") from e

        return CheckoutSession(session_id=session.id, url=session.url)

    def parse_webhook(self, payload, sig_header):
        if not sig_header:
            raise WebhookSignatureError("Missing signature")
        try:
            stripe.WebhookSignature.verify_header(
                payload.decode("utf-8"), sig_header, self.webhook_secret
            )
        except (stripe.SignatureVerificationError, UnicodeDecodeError) as e:
            raise WebhookSignatureError("Invalid signature") from e
        return decode_event(payload)
