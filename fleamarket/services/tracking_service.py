"""Tracking refresh.

Best-effort: a carrier outage never turns into an error for the buyer or
seller looking at a shipment. They get the last state we stored instead.
"""

import logging

from fleamarket.errors import ExternalServiceError, PermissionDeniedError
from fleamarket.extensions import db
from fleamarket.models.shipment import Shipment
from fleamarket.services.shipment_service import ShipmentNotFoundError

logger = logging.getLogger(__name__)

# Aggregator status -> local shipment status. Anything else keeps the current one.
STATUS_MAP = {
    "released": "label_generated",
    "generated": "label_generated",
    "printed": "label_generated",
    "posted": "posted",
    "in_transit": "in_transit",
    "out_for_delivery": "out_for_delivery",
    "delivered": "delivered",
    "canceled": "cancelled",
    "cancelled": "cancelled",
}


def map_status(remote_status, current):
    """Local status for an aggregator status. Never moves a shipment backwards."""
    if not remote_status:
        return current
    mapped = STATUS_MAP.get(str(remote_status).lower(), current)
    order = Shipment.CARRIER_STATUSES
    if mapped in order and current in order and order.index(mapped) < order.index(current):
        return current
    return mapped


def normalize_events(occurrences):
    """Reduce aggregator occurrences to [{date, description, location}], oldest first."""
    events = []
    for occ in occurrences or []:
        if not isinstance(occ, dict):
            continue
        location = occ.get("location")
        if not location and (occ.get("city") or occ.get("state")):
            location = " / ".join(p for p in (occ.get("city"), occ.get("state")) if p)
        events.append({
            "date": occ.get("date") or occ.get("created_at"),
            "description": occ.get("description") or occ.get("status") or "",
            "location": location or None,
        })
    events.sort(key=lambda e: (e["date"] is None, e["date"] or ""))
    return events


def _view(shipment, refreshed):
    return {
        "shipment_id": shipment.id,
        "tracking_code": shipment.tracking_code,
        "status": shipment.status,
        "method": shipment.method,
        "events": list(shipment.tracking_events or []),
        "refreshed": refreshed,
    }


def refresh_tracking(shipment_id, requester_id, carrier):
    """Pull tracking from the carrier and store it. Commits when it changes anything.

    Returns {shipment_id, tracking_code, status, method, events, refreshed}.
    `refreshed` is False when no remote data was applied.
    """
    shipment = db.session.get(Shipment, shipment_id)
    if shipment is None:
        raise ShipmentNotFoundError(f"Shipment {shipment_id} not found")
    if not shipment.transaction.involves(requester_id):
        raise PermissionDeniedError("Only the buyer or seller can track this shipment")

    if not shipment.melhor_envio_order_id:
        return _view(shipment, refreshed=False)

    try:
        data = carrier.track(shipment.melhor_envio_order_id)
    except ExternalServiceError as e:
        logger.warning(
            f"Tracking refresh for shipment {shipment.id} failed, serving stored state: {e}"
        )
        return _view(shipment, refreshed=False)

    if not data:
        return _view(shipment, refreshed=False)

    events = normalize_events(data.get("occurrences"))
    if events:
        shipment.tracking_events = events
    if not shipment.is_final:
        shipment.status = map_status(data.get("status"), shipment.status)
    if data.get("tracking"):
        shipment.tracking_code = data["tracking"]
    db.session.commit()

    return _view(shipment, refreshed=True)
