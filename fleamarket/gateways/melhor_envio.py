"""Carrier aggregator gateway — Melhor Envio API v2.

CarrierAggregator is the capability the shipment and tracking services
depend on. MelhorEnvioClient is the production implementation over
`requests`; FakeCarrier (gateways/fakes.py) is the in-memory one.

API notes:
- Bearer token + an identifying User-Agent are mandatory on every call.
- Rate ceiling is 250 requests/minute per token. 429 answers are retried
  with back-off at the adapter level; read timeouts are never retried,
  because a purchase may already have gone through.
- Production: www.melhorenvio.com.br, sandbox: sandbox.melhorenvio.com.br
"""

import logging
from decimal import Decimal, InvalidOperation

import requests
from requests.adapters import HTTPAdapter, Retry

from fleamarket.errors import ExternalServiceError

logger = logging.getLogger(__name__)

PRODUCTION_URL = "https://www.melhorenvio.com.br/api/v2"
SANDBOX_URL = "https://sandbox.melhorenvio.com.br/api/v2"


class CarrierError(ExternalServiceError):
    code = "carrier_error"


class CarrierAggregator:
    """Interface for the label-purchase / tracking aggregator."""

    name = None

    def calculate_rates(self, from_postal_code, to_postal_code, package):
        """Quote every available service.

        Returns a list of {service_id, name, carrier, price, delivery_time}.
        """
        raise NotImplementedError

    def add_to_cart(self, item):
        """Put one shipment in the cart. Returns the cart item id."""
        raise NotImplementedError

    def checkout(self, cart_item_ids):
        """Pay for cart items. Returns {purchase_id, tracking_code}."""
        raise NotImplementedError

    def generate_labels(self, purchase_ids):
        """Ask the carrier to generate labels for paid purchases."""
        raise NotImplementedError

    def print_labels(self, purchase_ids):
        """Returns the URL of the printable label PDF."""
        raise NotImplementedError

    def track(self, order_id):
        """Returns {status, occurrences: [...]}, or None if the order is unknown."""
        raise NotImplementedError

    def cancel(self, order_id):
        """Cancel an order that has not been posted yet. Returns True on success."""
        raise NotImplementedError


class MelhorEnvioClient(CarrierAggregator):
    name = "melhor_envio"

    def __init__(self, token, user_agent, sandbox=False, timeout=15,
                 max_retries=3, session=None):
        self.base_url = SANDBOX_URL if sandbox else PRODUCTION_URL
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.update({
            "Accept": "application/json",
            "Content-Type": "application/json",
            "Authorization": f"Bearer {token}",
            "User-Agent": user_agent,
        })
        retry = Retry(
            total=max_retries,
            connect=max_retries,
            read=0,
            status=max_retries,
            status_forcelist=[429],
            allowed_methods=None,  # 429 means the request was not processed
            backoff_factor=1,
            respect_retry_after_header=True,
            raise_on_status=False,
        )
        self.session.mount("https://", HTTPAdapter(max_retries=retry))

    # ──────────────────────────────────────────────
    # HTTP plumbing
    # ──────────────────────────────────────────────

    def _post(self, path, body, action):
        url = f"{self.base_url}{path}"
        try:
            resp = self.session.post(url, json=body, timeout=self.timeout)
        except requests.RequestException as e:
            logger.warning(f"Melhor Envio {action} request failed: {e}")
            raise CarrierError(f"Carrier {action} failed: {e}") from e

        if not resp.ok:
            message = _error_message(resp)
            logger.warning(
                f"Melhor Envio {action} answered {resp.status_code}: {message}"
            )
            raise CarrierError(f"Carrier {action} failed ({resp.status_code}): {message}")

        try:
            return resp.json()
        except ValueError as e:
            raise CarrierError(f"Carrier {action} returned invalid JSON") from e

    # ──────────────────────────────────────────────
    # Operations
    # ──────────────────────────────────────────────

    def calculate_rates(self, from_postal_code, to_postal_code, package):
        data = self._post("/me/shipment/calculate", {
            "from": {"postal_code": from_postal_code},
            "to": {"postal_code": to_postal_code},
            "package": package,
        }, "rate calculation")

        quotes = []
        for quote in data or []:
            # Services that can't carry this package come back with an "error"
            if quote.get("error"):
                continue
            try:
                price = Decimal(str(quote.get("price")))
            except (InvalidOperation, ValueError):
                continue
            quotes.append({
                "service_id": str(quote.get("id")),
                "name": quote.get("name"),
                "carrier": (quote.get("company") or {}).get("name"),
                "price": price,
                "delivery_time": quote.get("delivery_time"),
            })
        return quotes

    def add_to_cart(self, item):
        data = self._post("/me/cart", item, "add to cart")
        cart_item_id = data.get("id")
        if not cart_item_id:
            raise CarrierError("Carrier add to cart returned no id")
        return str(cart_item_id)

    def checkout(self, cart_item_ids):
        data = self._post("/me/shipment/checkout", {
            "orders": list(cart_item_ids),
        }, "checkout")
        purchase = data.get("purchase") or {}
        if not purchase.get("id"):
            raise CarrierError("Carrier checkout returned no purchase")
        return {
            "purchase_id": str(purchase["id"]),
            "tracking_code": purchase.get("protocol"),
        }

    def generate_labels(self, purchase_ids):
        return self._post("/me/shipment/generate", {
            "orders": list(purchase_ids),
        }, "label generation")

    def print_labels(self, purchase_ids):
        data = self._post("/me/shipment/print", {
            "mode": "private",
            "orders": list(purchase_ids),
        }, "label printing")
        url = data.get("url")
        if not url:
            raise CarrierError("Carrier label printing returned no URL")
        return url

    def track(self, order_id):
        data = self._post("/me/shipment/tracking", {
            "orders": [order_id],
        }, "tracking")
        return data.get(order_id) if isinstance(data, dict) else None

    def cancel(self, order_id):
        data = self._post("/me/shipment/cancel", {
            "order": {"id": order_id},
        }, "cancellation")
        result = data.get(order_id, data) if isinstance(data, dict) else {}
        return bool(result.get("canceled"))


def _error_message(resp):
    """Best-effort extraction of the API's error message."""
    try:
        body = resp.json()
    except ValueError:
        return resp.text[:200]
    if isinstance(body, dict):
        return body.get("message") or body.get("error") or str(body)[:200]
    return str(body)[:200]
