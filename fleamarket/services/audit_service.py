"""Audit helpers.

Functions flush but do NOT commit. The caller commits, so the audit row
lands in the same unit of work as the change it describes.
"""

from fleamarket.extensions import db
from fleamarket.models.audit import AuditEvent


def log_audit(action, entity, entity_id, actor_user_id=None, metadata=None):
    """Record an audit event. Actor is None for webhook/CLI initiated changes."""
    event = AuditEvent(
        actor_user_id=actor_user_id,
        action=action,
        entity=entity,
        entity_id=entity_id,
        metadata_=metadata or {},
    )
    db.session.add(event)
    db.session.flush()
    return event
