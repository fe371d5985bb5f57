"""ORM models for the billing kernel."""

from billing_kernel.models.invoice import InvoiceModel, LedgerLineItemModel
from billing_kernel.models.lock_event import InvoiceLockEvent

__all__ = [
    "InvoiceLockEvent",
    "InvoiceModel",
    "LedgerLineItemModel",
]
