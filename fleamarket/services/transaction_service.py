"""Transaction service — the authoritative store for payment state.

Responsible for:
- Guarded, forward-only status transitions (conditional UPDATE)
- Settling a payment: transaction -> paid and product -> sold together
- Visibility rules for buyers, sellers and admins
- Administrative overrides and manual expiry of stale checkouts

Functions flush but do NOT commit unless stated; the caller owns the
commit boundary so multi-row changes land atomically.
"""

import logging
from datetime import datetime, timedelta, timezone

from fleamarket.errors import NotFoundError, PermissionDeniedError, ValidationError
from fleamarket.extensions import db
from fleamarket.models.product import Product
from fleamarket.models.transaction import Transaction
from fleamarket.services.audit_service import log_audit

logger = logging.getLogger(__name__)


class TransactionNotFoundError(NotFoundError):
    code = "transaction_not_found"


# ──────────────────────────────────────────────
# State machine
# ──────────────────────────────────────────────

def apply_transition(transaction_id, target):
    """Move a transaction to `target` if and only if its current status allows it.

    The status check and the write are one UPDATE ... WHERE status IN (...),
    so two concurrent callers cannot both move the row.

    Returns True if this call moved the row, False if it was already past
    the point where `target` is reachable (a stale or duplicate request).
    Raises TransactionNotFoundError if the transaction doesn't exist.
    """
    moved = (
        Transaction.query
        .filter(
            Transaction.id == transaction_id,
            Transaction.status.in_(Transaction.sources_for(target)),
        )
        .update(
            {"status": target, "updated_at": datetime.now(timezone.utc)},
            synchronize_session="fetch",
        )
    )
    if moved:
        return True

    current = db.session.get(Transaction, transaction_id)
    if current is None:
        raise TransactionNotFoundError(f"Transaction {transaction_id} not found")
    logger.info(
        f"Transaction {transaction_id} is '{current.status}', not moving to '{target}'"
    )
    return False


def settle_payment(transaction_id, source="webhook", actor_user_id=None):
    """Mark a transaction paid and its product sold in the current unit of work.

    Both rows change in the same session; the caller's commit makes them
    visible together, and any exception before that leaves neither changed.

    Returns True if the payment was settled by this call.
    """
    if not apply_transition(transaction_id, "paid"):
        return False

    txn = db.session.get(Transaction, transaction_id)
    product = db.session.get(Product, txn.product_id)
    if product is None:
        raise NotFoundError(f"Product {txn.product_id} for transaction {transaction_id} not found")

    if product.status == "sold":
        # Two buyers paid for the same listing; refund is an admin decision.
        logger.error(
            f"Product {product.id} already sold when transaction {transaction_id} settled"
        )
    product.status = "sold"
    db.session.flush()

    log_audit("transaction.paid", "transaction", transaction_id, actor_user_id, {
        "product_id": product.id,
        "amount": str(txn.amount),
        "source": source,
    })
    return True


# ──────────────────────────────────────────────
# Reads
# ──────────────────────────────────────────────

def get_transaction_for_user(transaction_id, user):
    """Return a transaction visible to `user` (buyer, seller or admin)."""
    txn = db.session.get(Transaction, transaction_id)
    if txn is None:
        raise TransactionNotFoundError(f"Transaction {transaction_id} not found")
    if not (user.is_admin or txn.involves(user.id)):
        raise PermissionDeniedError("You are not a party to this transaction")
    return txn


def list_transactions(status=None, page=1, limit=20):
    """Paginated admin listing, newest first. Returns (items, total)."""
    if status and status not in Transaction.STATUSES:
        raise ValidationError(f"Unknown status '{status}'")
    page = max(page, 1)
    limit = min(max(limit, 1), 100)

    query = Transaction.query
    if status:
        query = query.filter_by(status=status)
    total = query.count()
    items = (
        query.order_by(Transaction.created_at.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return items, total


# ──────────────────────────────────────────────
# Administrative changes
# ──────────────────────────────────────────────

def override_status(transaction_id, new_status, admin_user_id, reason=None):
    """Admin-driven status change. Still forward-only; commits.

    Raises:
        ValidationError: unknown status or illegal transition.
        TransactionNotFoundError: no such transaction.
    """
    if new_status not in Transaction.STATUSES:
        raise ValidationError(
            f"Invalid status '{new_status}'. Must be one of: {', '.join(Transaction.STATUSES)}"
        )

    txn = db.session.get(Transaction, transaction_id)
    if txn is None:
        raise TransactionNotFoundError(f"Transaction {transaction_id} not found")

    old_status = txn.status
    if not txn.can_transition_to(new_status):
        raise ValidationError(
            f"Cannot move transaction from '{old_status}' to '{new_status}'",
            code="invalid_transition",
        )

    try:
        if new_status == "paid":
            moved = settle_payment(transaction_id, source="admin", actor_user_id=admin_user_id)
        else:
            moved = apply_transition(transaction_id, new_status)
        if not moved:
            # Someone else moved it between our read and the guarded update
            raise ValidationError(
                f"Transaction changed concurrently; now '{db.session.get(Transaction, transaction_id).status}'",
                code="invalid_transition",
            )
        log_audit("transaction.status_override", "transaction", transaction_id, admin_user_id, {
            "old_status": old_status,
            "new_status": new_status,
            "reason": reason,
        })
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    logger.info(
        f"Admin {admin_user_id} moved transaction {transaction_id} {old_status} -> {new_status}"
    )
    return db.session.get(Transaction, transaction_id)


def find_stale_checkouts(older_than_hours):
    """Pending transactions created more than `older_than_hours` ago."""
    cutoff = datetime.now(timezone.utc) - timedelta(hours=older_than_hours)
    return (
        Transaction.query
        .filter(Transaction.status == "pending", Transaction.created_at < cutoff)
        .order_by(Transaction.created_at)
        .all()
    )


def expire_stale_checkouts(older_than_hours, dry_run=False):
    """Fail pending checkouts nobody completed. Commits unless dry_run.

    The product was never marked sold for these, so nothing else changes.
    Returns the list of affected transaction ids.
    """
    expired = []
    for txn in find_stale_checkouts(older_than_hours):
        if dry_run:
            expired.append(txn.id)
            continue
        if apply_transition(txn.id, "failed"):
            log_audit("transaction.expired", "transaction", txn.id, None, {
                "older_than_hours": older_than_hours,
            })
            expired.append(txn.id)
    if not dry_run:
        db.session.commit()
    return expired
