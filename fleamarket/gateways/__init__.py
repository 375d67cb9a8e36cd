"""External service gateways.

Built once per app in create_app() from configuration and kept in
app.extensions. Services never reach for a module-level client; routes
look the gateway up here and pass it in.
"""

from flask import current_app


def init_gateways(app):
    """Construct the payment processor and carrier aggregator for `app`."""
    app.extensions["payment_processor"] = _build_payment_processor(app.config)
    app.extensions["carrier"] = _build_carrier(app.config)


def _build_payment_processor(config):
    backend = config.get("PAYMENT_BACKEND", "stripe")
    if backend == "fake":
        from fleamarket.gateways.fakes import FakePaymentProcessor

        return FakePaymentProcessor(webhook_secret=config.get("STRIPE_WEBHOOK_SECRET") or "whsec_fake")
    if backend == "stripe":
        from fleamarket.gateways.payments import StripePaymentProcessor

        return StripePaymentProcessor(
            secret_key=config.get("STRIPE_SECRET_KEY"),
            webhook_secret=config.get("STRIPE_WEBHOOK_SECRET"),
            timeout=config.get("PAYMENT_TIMEOUT_SECONDS", 20),
        )
    raise RuntimeError(f"Unknown PAYMENT_BACKEND '{backend}'")


def _build_carrier(config):
    backend = config.get("CARRIER_BACKEND", "melhor_envio")
    if backend == "fake":
        from fleamarket.gateways.fakes import FakeCarrier

        return FakeCarrier()
    if backend == "melhor_envio":
        from fleamarket.gateways.melhor_envio import MelhorEnvioClient

        return MelhorEnvioClient(
            token=config.get("MELHOR_ENVIO_TOKEN"),
            user_agent=config.get("MELHOR_ENVIO_USER_AGENT"),
            sandbox=config.get("MELHOR_ENVIO_SANDBOX", False),
            timeout=config.get("CARRIER_TIMEOUT_SECONDS", 15),
            max_retries=config.get("CARRIER_MAX_RETRIES", 3),
        )
    raise RuntimeError(f"Unknown CARRIER_BACKEND '{backend}'")


def get_payment_processor():
    return current_app.extensions["payment_processor"]


def get_carrier():
    return current_app.extensions["carrier"]
