# Models package: import all models here so Alembic can discover them.

from fleamarket.models.user import User  # noqa: F401
from fleamarket.models.product import Product  # noqa: F401
from fleamarket.models.transaction import Transaction  # noqa: F401
from fleamarket.models.webhook_event import WebhookEvent  # noqa: F401
from fleamarket.models.shipment import Shipment  # noqa: F401
from fleamarket.models.audit import AuditEvent  # noqa: F401
