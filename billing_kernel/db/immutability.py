"""
ORM-level immutability enforcement for locked invoices.

SQLAlchemy fires mapper events before INSERT/UPDATE/DELETE statements reach
the database.  The listeners here check the lock state and abort the flush:

    session.flush()
         |
         v
    [before_update / before_delete / before_insert]
         |                      |
         v                      v
    SQL sent to database   ImmutabilityViolationError

The services already refuse to mutate a locked ledger (LedgerLockedError);
these listeners catch any code path that bypasses them.

Protected entities:

    Entity              | When immutable
    --------------------|------------------------------------------------
    InvoiceModel        | Billing fields while locked; never deleted locked
    LedgerLineItemModel | While the owning invoice is locked
    InvoiceLockEvent    | Always (append-only audit trail)

Lock transitions themselves are allowed: the lock flush changes lock_state,
locked_at and locked_by_id, and an unlock changes them back.

Usage:

    from billing_kernel.db.immutability import register_immutability_listeners
    register_immutability_listeners()  # once at startup

    unregister_immutability_listeners()  # tests only
"""

from sqlalchemy import event, inspect, select
from sqlalchemy.orm.attributes import get_history

from billing_kernel.domain.dtos import LockState
from billing_kernel.exceptions import ImmutabilityViolationError
from billing_kernel.logging_config import get_logger

logger = get_logger("db.immutability")

# Audit metadata and the concurrency counter may change on a locked invoice.
_MUTABLE_WHEN_LOCKED = frozenset(
    {"updated_at", "updated_by_id", "version", "lock_state", "locked_at", "locked_by_id"}
)

_LOCKED = LockState.LOCKED.value


def _blocked(entity_type: str, entity_id, operation: str, reason: str, **fields) -> None:
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": entity_type,
            "entity_id": str(entity_id),
            "operation": operation,
            **fields,
        },
    )
    raise ImmutabilityViolationError(
        entity_type=entity_type,
        entity_id=str(entity_id),
        reason=reason,
    )


def _was_locked(target) -> bool:
    """Lock state as it stood before this flush."""
    history = get_history(target, "lock_state")
    if history.deleted:
        return LockState(history.deleted[0]) == LockState.LOCKED
    return target.is_locked


def _invoice_is_locked(connection, invoice_id) -> bool:
    from billing_kernel.models.invoice import InvoiceModel

    table = InvoiceModel.__table__
    state = connection.execute(
        select(table.c.lock_state).where(table.c.id == str(invoice_id))
    ).scalar()
    return state == _LOCKED


def _check_invoice_immutability(mapper, connection, target):
    if not _was_locked(target):
        return
    history = get_history(target, "lock_state")
    if history.added and not target.is_locked:
        # Unlock transition.
        return
    for attr in inspect(target).attrs:
        if attr.key in _MUTABLE_WHEN_LOCKED or attr.key == "line_items":
            continue
        if attr.history.has_changes():
            _blocked(
                "Invoice",
                target.id,
                "UPDATE",
                f"Cannot modify field '{attr.key}' on a locked invoice",
                field=attr.key,
            )


def _check_invoice_delete(mapper, connection, target):
    if _was_locked(target):
        _blocked("Invoice", target.id, "DELETE", "Locked invoices cannot be deleted")


def _check_line_item_insert(mapper, connection, target):
    if _invoice_is_locked(connection, target.invoice_id):
        _blocked(
            "LedgerLineItem",
            target.id,
            "INSERT",
            "Cannot add line items to a locked invoice",
            invoice_id=str(target.invoice_id),
        )


def _check_line_item_immutability(mapper, connection, target):
    if _invoice_is_locked(connection, target.invoice_id):
        _blocked(
            "LedgerLineItem",
            target.id,
            "UPDATE",
            "Line items cannot be modified while the invoice is locked",
            invoice_id=str(target.invoice_id),
        )


def _check_line_item_delete(mapper, connection, target):
    if _invoice_is_locked(connection, target.invoice_id):
        _blocked(
            "LedgerLineItem",
            target.id,
            "DELETE",
            "Line items cannot be deleted while the invoice is locked",
            invoice_id=str(target.invoice_id),
        )


def _check_lock_event_immutability(mapper, connection, target):
    _blocked("InvoiceLockEvent", target.id, "UPDATE", "Lock events are append-only")


def _check_lock_event_delete(mapper, connection, target):
    _blocked("InvoiceLockEvent", target.id, "DELETE", "Lock events are append-only")


def _listeners():
    from billing_kernel.models.invoice import InvoiceModel, LedgerLineItemModel
    from billing_kernel.models.lock_event import InvoiceLockEvent

    return (
        (InvoiceModel, "before_update", _check_invoice_immutability),
        (InvoiceModel, "before_delete", _check_invoice_delete),
        (LedgerLineItemModel, "before_insert", _check_line_item_insert),
        (LedgerLineItemModel, "before_update", _check_line_item_immutability),
        (LedgerLineItemModel, "before_delete", _check_line_item_delete),
        (InvoiceLockEvent, "before_update", _check_lock_event_immutability),
        (InvoiceLockEvent, "before_delete", _check_lock_event_delete),
    )


def register_immutability_listeners():
    """
    Register the immutability listeners.

    Call after the models are importable and before any writes; calling it
    twice is harmless.
    """
    for target, event_name, listener_fn in _listeners():
        if not event.contains(target, event_name, listener_fn):
            event.listen(target, event_name, listener_fn)


def unregister_immutability_listeners():
    """
    Remove the immutability listeners.

    WARNING: Only use this in tests that must bypass the lock to verify
    detection elsewhere.
    """
    for target, event_name, listener_fn in _listeners():
        if event.contains(target, event_name, listener_fn):
            event.remove(target, event_name, listener_fn)
