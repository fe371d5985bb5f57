"""
InvoiceGuard -- in-process single-writer lock per invoice.

Responsibility:
    Hands out one ``threading.Lock`` per invoice id so that generation,
    line edits and lock transitions on the same invoice run one at a time
    within a process.  A lock request that waits for an in-flight
    regeneration observes its result.

Architecture position:
    Kernel > Services -- concurrency primitive used by the orchestrator.
    Cross-process safety comes from row locks and the invoice version
    counter; this guard only serializes threads sharing one process.

Failure modes:
    - ConcurrentModificationError when the lock is not acquired within
      ``timeout`` seconds.
"""

from __future__ import annotations

import threading
from contextlib import contextmanager
from typing import Iterator
from uuid import UUID

from billing_kernel.exceptions import ConcurrentModificationError
from billing_kernel.logging_config import get_logger

logger = get_logger("services.invoice_guard")

DEFAULT_GUARD_TIMEOUT_SECONDS = 30.0


class InvoiceGuard:
    """
    Registry of per-invoice locks.

    An entry lives only while some thread holds or waits for the invoice;
    the last one out removes it, so the registry does not grow with the
    number of invoices touched.
    """

    def __init__(self, timeout: float = DEFAULT_GUARD_TIMEOUT_SECONDS):
        self._timeout = timeout
        # invoice id -> [lock, holders and waiters]
        self._entries: dict[UUID, list] = {}
        self._registry_lock = threading.Lock()

    def _checkout(self, invoice_id: UUID) -> threading.Lock:
        with self._registry_lock:
            entry = self._entries.get(invoice_id)
            if entry is None:
                entry = [threading.Lock(), 0]
                self._entries[invoice_id] = entry
            entry[1] += 1
            return entry[0]

    def _checkin(self, invoice_id: UUID) -> None:
        with self._registry_lock:
            entry = self._entries[invoice_id]
            entry[1] -= 1
            if entry[1] == 0:
                del self._entries[invoice_id]

    @contextmanager
    def hold(self, invoice_id: UUID, operation: str = "modify") -> Iterator[None]:
        lock = self._checkout(invoice_id)
        try:
            if not lock.acquire(timeout=self._timeout):
                logger.warning(
                    "invoice_guard_timeout",
                    extra={
                        "invoice_id": str(invoice_id),
                        "operation": operation,
                        "timeout_seconds": self._timeout,
                    },
                )
                raise ConcurrentModificationError(
                    str(invoice_id),
                    f"timed out after {self._timeout}s waiting to {operation}",
                )
            try:
                yield
            finally:
                lock.release()
        finally:
            self._checkin(invoice_id)

    def is_held(self, invoice_id: UUID) -> bool:
        with self._registry_lock:
            entry = self._entries.get(invoice_id)
        return entry is not None and entry[0].locked()

    def active_count(self) -> int:
        """Number of invoices currently held or waited on."""
        with self._registry_lock:
            return len(self._entries)
