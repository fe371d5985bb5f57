"""
BaseService -- abstract base for the kernel's write services.

Responsibility:
    Common constructor and session contract.  Services persist with
    ``session.flush()`` and never commit or roll back; the caller
    (LedgerOrchestrator, BulkInvoiceGenerator or a test) owns the
    transaction.

Architecture position:
    Kernel > Services -- imperative shell infrastructure.
"""

from abc import ABC
from typing import Generic, TypeVar

from sqlalchemy.orm import Session

from billing_kernel.db.base import Base

ModelType = TypeVar("ModelType", bound=Base)


class BaseService(ABC, Generic[ModelType]):
    """
    Abstract base class for kernel services.

    Non-goals:
        - Does NOT manage transaction lifecycle (commit/rollback).
        - Does NOT provide read projections; those belong in
          ``billing_kernel/selectors/``.
    """

    def __init__(self, session: Session):
        self.session = session
