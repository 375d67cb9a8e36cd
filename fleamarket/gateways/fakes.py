"""In-memory gateways.

Selected with PAYMENT_BACKEND=fake / CARRIER_BACKEND=fake (the testing
config does this). They keep every call in memory so tests can assert on
what was (or was not) sent to the outside world.
"""

import hashlib
import hmac
import itertools

from fleamarket.gateways.melhor_envio import CarrierAggregator, CarrierError
from fleamarket.gateways.payments import (
    CheckoutSession,
    PaymentProcessor,
    PaymentProcessorError,
    decode_event,
)
from fleamarket.errors import WebhookSignatureError


class FakePaymentProcessor(PaymentProcessor):
    name = "stripe"

    def __init__(self, webhook_secret="whsec_fake"):
        self.webhook_secret = webhook_secret
        self.reset()

    def reset(self):
        self.sessions = []
        self.fail_checkout = False
        self._ids = itertools.count(1)

    def sign(self, payload):
        """Signature header value a genuine delivery of `payload` would carry."""
        return hmac.new(
            self.webhook_secret.encode(), payload, hashlib.sha256
        ).hexdigest()

    def create_checkout_session(self, *, title, unit_amount, currency, metadata,
                                success_url, cancel_url, payment_method_types):
        if self.fail_checkout:
            raise PaymentProcessorError("Payment processor unavailable: simulated outage")
        session_id = f"cs_fake_{next(self._ids)}"
        self.sessions.append({
            "id": session_id,
            "title": title,
            "unit_amount": unit_amount,
            "currency": currency,
            "metadata": dict(metadata),
            "success_url": success_url,
            "cancel_url": cancel_url,
            "payment_method_types": list(payment_method_types),
        })
        return CheckoutSession(
            session_id=session_id,
            url=f"https://checkout.fake/pay/{session_id}",
        )

    def parse_webhook(self, payload, sig_header):
        if not sig_header:
            raise WebhookSignatureError("Missing signature")
        if not hmac.compare_digest(self.sign(payload), sig_header):
            raise WebhookSignatureError("Invalid signature")
        return decode_event(payload)


class FakeCarrier(CarrierAggregator):
    name = "melhor_envio"

    STAGES = ["calculate", "add_to_cart", "checkout", "generate", "print", "track", "cancel"]

    def __init__(self):
        self.reset()

    def reset(self):
        self.calls = []
        self.fail_on = set()  # stage names that raise CarrierError
        self.quotes = []
        self.tracking = {}  # order_id -> {status, occurrences}
        self._ids = itertools.count(1)

    def _record(self, stage, *args):
        self.calls.append((stage,) + args)
        if stage in self.fail_on:
            raise CarrierError(f"Carrier {stage} failed: simulated outage")

    def calls_for(self, stage):
        return [c for c in self.calls if c[0] == stage]

    def calculate_rates(self, from_postal_code, to_postal_code, package):
        self._record("calculate", from_postal_code, to_postal_code, package)
        return list(self.quotes)

    def add_to_cart(self, item):
        self._record("add_to_cart", item)
        return f"cart_{next(self._ids)}"

    def checkout(self, cart_item_ids):
        self._record("checkout", list(cart_item_ids))
        n = next(self._ids)
        return {"purchase_id": f"ord_{n}", "tracking_code": f"ME{n:08d}BR"}

    def generate_labels(self, purchase_ids):
        self._record("generate", list(purchase_ids))
        return {"ok": True}

    def print_labels(self, purchase_ids):
        self._record("print", list(purchase_ids))
        return f"https://labels.fake/{purchase_ids[0]}.pdf"

    def track(self, order_id):
        self._record("track", order_id)
        return self.tracking.get(order_id)

    def cancel(self, order_id):
        self._record("cancel", order_id)
        return True
