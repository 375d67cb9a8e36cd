import os
from decimal import Decimal


def _flag(name, default=""):
    return os.environ.get(name, default).lower() in ("1", "true", "yes")


class Config:
    """Base configuration. Shared across all environments."""

    # --- Required ---
    SECRET_KEY = os.environ.get("SECRET_KEY")

    # Handle DATABASE_URL: some PaaS providers (Railway, Heroku) use
    # "postgres://" which SQLAlchemy 1.4+ doesn't accept.
    _db_url = os.environ.get("DATABASE_URL", "")
    if _db_url.startswith("postgres://"):
        _db_url = _db_url.replace("postgres://", "postgresql://", 1)
    SQLALCHEMY_DATABASE_URI = _db_url or None

    APP_BASE_URL = os.environ.get("APP_BASE_URL", "http://localhost:5000")

    # --- Payments (Stripe Checkout) ---
    PAYMENT_BACKEND = os.environ.get("PAYMENT_BACKEND", "stripe")  # stripe | fake
    STRIPE_SECRET_KEY = os.environ.get("STRIPE_SECRET_KEY")
    STRIPE_WEBHOOK_SECRET = os.environ.get("STRIPE_WEBHOOK_SECRET")
    STRIPE_PAYMENT_METHOD_TYPES = [
        m.strip()
        for m in os.environ.get("STRIPE_PAYMENT_METHOD_TYPES", "card,pix").split(",")
        if m.strip()
    ]
    PAYMENT_TIMEOUT_SECONDS = int(os.environ.get("PAYMENT_TIMEOUT_SECONDS", 20))
    CURRENCY = os.environ.get("CURRENCY", "brl")

    # Marketplace cut of every sale, e.g. 0.08 = 8%
    PLATFORM_FEE_RATE = Decimal(os.environ.get("PLATFORM_FEE_RATE", "0.08"))

    # Pending checkouts older than this can be expired with `flask expire-checkouts`
    STALE_CHECKOUT_HOURS = int(os.environ.get("STALE_CHECKOUT_HOURS", 48))

    # --- Shipping (Melhor Envio) ---
    CARRIER_BACKEND = os.environ.get("CARRIER_BACKEND", "melhor_envio")  # melhor_envio | fake
    MELHOR_ENVIO_TOKEN = os.environ.get("MELHOR_ENVIO_TOKEN")
    MELHOR_ENVIO_SANDBOX = _flag("MELHOR_ENVIO_SANDBOX")
    # Melhor Envio rejects requests without an identifying User-Agent
    MELHOR_ENVIO_USER_AGENT = os.environ.get(
        "MELHOR_ENVIO_USER_AGENT", "Mercado de Pulgas (suporte@mercadodepulgas.com.br)"
    )
    MELHOR_ENVIO_DEFAULT_SERVICE = os.environ.get("MELHOR_ENVIO_DEFAULT_SERVICE", "1")  # PAC
    CARRIER_TIMEOUT_SECONDS = int(os.environ.get("CARRIER_TIMEOUT_SECONDS", 15))
    CARRIER_MAX_RETRIES = int(os.environ.get("CARRIER_MAX_RETRIES", 3))

    # A label_generating claim older than this is considered abandoned
    LABEL_LOCK_SECONDS = int(os.environ.get("LABEL_LOCK_SECONDS", 300))

    # Sellers may only create shipments for paid transactions
    SHIPMENT_REQUIRES_PAID = not _flag("SHIPMENT_ALLOW_UNPAID")

    # --- SQLAlchemy ---
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = {
        "pool_pre_ping": True,
        "pool_recycle": 300,
    }

    # --- Session / cookies ---
    SESSION_COOKIE_HTTPONLY = True
    SESSION_COOKIE_SAMESITE = "Lax"
    REMEMBER_COOKIE_HTTPONLY = True
    REMEMBER_COOKIE_SAMESITE = "Lax"

    # --- WTF / CSRF ---
    WTF_CSRF_ENABLED = True

    @staticmethod
    def validate():
        """Fail fast if required env vars are missing."""
        required = [
            "SECRET_KEY",
            "DATABASE_URL",
            "APP_BASE_URL",
        ]
        if os.environ.get("PAYMENT_BACKEND", "stripe") == "stripe":
            required += ["STRIPE_SECRET_KEY", "STRIPE_WEBHOOK_SECRET"]
        if os.environ.get("CARRIER_BACKEND", "melhor_envio") == "melhor_envio":
            required.append("MELHOR_ENVIO_TOKEN")
        missing = [v for v in required if not os.environ.get(v)]
        if missing:
            raise RuntimeError(
                f"Missing required environment variables: {', '.join(missing)}"
            )


class DevConfig(Config):
    """Local development."""

    DEBUG = True
    SESSION_COOKIE_SECURE = False
    REMEMBER_COOKIE_SECURE = False


class TestConfig(Config):
    """Testing — in-memory SQLite, fake gateways, CSRF disabled."""

    TESTING = True
    DEBUG = True
    SECRET_KEY = "test-secret-key-not-for-production"
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    SQLALCHEMY_ENGINE_OPTIONS = {}
    PAYMENT_BACKEND = "fake"
    CARRIER_BACKEND = "fake"
    STRIPE_SECRET_KEY = "sk_test_fake"
    STRIPE_WEBHOOK_SECRET = "whsec_test_fake"
    MELHOR_ENVIO_TOKEN = "me_test_fake"
    APP_BASE_URL = "http://localhost:5000"
    PLATFORM_FEE_RATE = Decimal("0.08")
    SHIPMENT_REQUIRES_PAID = True
    WTF_CSRF_ENABLED = False  # disable CSRF for test requests
    RATELIMIT_ENABLED = False  # disable rate limiting in tests
    SESSION_COOKIE_SECURE = False
    REMEMBER_COOKIE_SECURE = False
    SERVER_NAME = "localhost"

    @staticmethod
    def validate():
        """Skip validation in test mode — everything is hardcoded."""
        pass


class ProdConfig(Config):
    """Production."""

    DEBUG = False
    SESSION_COOKIE_SECURE = True
    REMEMBER_COOKIE_SECURE = True


config_by_name = {
    "development": DevConfig,
    "production": ProdConfig,
    "testing": TestConfig,
}
