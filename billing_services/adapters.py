"""
In-memory adapters for the ledger's ports.

Used by tests and by applications that embed the ledger with visits and
rate cards already in memory.  Production deployments supply their own
VisitStore backed by the scheduling system.
"""

from __future__ import annotations

import threading
from datetime import date
from typing import Iterable, Sequence
from uuid import UUID

from billing_config.schema import RateCard
from billing_kernel.domain.dtos import InvoiceInfo
from billing_kernel.domain.rates import RateBlock
from billing_kernel.domain.visits import Visit


class InMemoryVisitStore:
    """Visits held in a list; safe to read and extend from several threads."""

    def __init__(self, visits: Iterable[Visit] = ()):
        self._visits: list[Visit] = list(visits)
        self._lock = threading.Lock()

    def add(self, *visits: Visit) -> None:
        with self._lock:
            self._visits.extend(visits)

    def list_visits(
        self, client_id: str, start_date: date, end_date: date
    ) -> Sequence[Visit]:
        with self._lock:
            return [
                v
                for v in self._visits
                if v.client_id == client_id and start_date <= v.visit_date <= end_date
            ]

    def list_branch_visits(
        self, branch_id: str, start_date: date, end_date: date
    ) -> Sequence[Visit]:
        with self._lock:
            return [
                v
                for v in self._visits
                if v.branch_id == branch_id and start_date <= v.visit_date <= end_date
            ]


class StaticRateBlockSource:
    """A fixed set of rate blocks, optionally scoped per branch."""

    def __init__(self, blocks: Iterable[RateBlock] = ()):
        self._blocks = tuple(blocks)

    @classmethod
    def from_rate_card(cls, card: RateCard) -> StaticRateBlockSource:
        return cls(card.blocks)

    def list_rate_blocks(self, branch_id: str | None) -> Sequence[RateBlock]:
        return tuple(
            block
            for block in self._blocks
            if block.branch_id is None or branch_id is None or block.branch_id == branch_id
        )


class ActorListLockAuthority:
    """Only the listed actors may unlock invoices."""

    def __init__(self, allowed_actor_ids: Iterable[UUID]):
        self._allowed = frozenset(allowed_actor_ids)

    def can_unlock(self, actor_id: UUID, invoice: InvoiceInfo) -> bool:
        return actor_id in self._allowed
