"""
Tests for the flush-only kernel services: InvoiceService and
LedgerLockService.
"""

from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest

from billing_engines.ledger_generator import generate_ledger_lines
from billing_kernel.domain.dtos import LockState
from billing_kernel.exceptions import (
    InvoiceNotFoundError,
    LedgerLockedError,
    UnauthorizedLedgerActionError,
)
from billing_kernel.models.lock_event import InvoiceLockEvent
from billing_kernel.selectors.invoice_selector import InvoiceSelector
from billing_kernel.services.invoice_service import format_invoice_number
from billing_kernel.services.lock_service import DenyAllLockAuthority, LedgerLockService
from tests.factories import MARCH_END, MARCH_START, hours_block, make_visit


@pytest.fixture
def invoice(invoice_service, test_actor_id):
    return invoice_service.create_invoice("client-1", MARCH_START, MARCH_END, test_actor_id)


def _priced(*visits):
    return generate_ledger_lines(list(visits), [hours_block()])


class TestInvoiceService:

    def test_format_invoice_number(self):
        assert format_invoice_number(date(2024, 11, 1), 7) == "INV-2024-11-0007"

    def test_numbering_per_month(self, invoice_service, invoice, test_actor_id):
        april = invoice_service.create_invoice(
            "client-1", date(2024, 4, 1), date(2024, 4, 30), test_actor_id
        )
        march = invoice_service.create_invoice("client-2", MARCH_START, MARCH_END, test_actor_id)
        assert invoice.invoice_number == "INV-2024-03-0001"
        assert april.invoice_number == "INV-2024-04-0001"
        assert march.invoice_number == "INV-2024-03-0002"

    @pytest.mark.parametrize("kwargs,message", [
        ({"client_id": ""}, "client_id is required"),
        ({"vat_rate": Decimal("1.5")}, "vat_rate must be"),
        ({"vat_rate": 0.2}, "vat_rate must be"),
        ({"currency": "pounds"}, "Invalid currency code"),
    ])
    def test_create_validation(self, invoice_service, test_actor_id, kwargs, message):
        params = {
            "client_id": "client-1",
            "period_start": MARCH_START,
            "period_end": MARCH_END,
            "actor_id": test_actor_id,
        }
        params.update(kwargs)
        with pytest.raises(ValueError, match=message):
            invoice_service.create_invoice(**params)

    def test_replace_lines_reconciles(self, invoice_service, invoice, test_actor_id):
        result = _priced(make_visit("V-1"), make_visit("V-2", start=(13, 0), end=(13, 45)))
        totals = invoice_service.replace_lines(invoice, result.lines, [], test_actor_id)

        assert totals.net_amount == Decimal("27.50")
        assert invoice.net_amount == Decimal("27.50")
        assert invoice.total_invoiced_minutes == 165
        assert [line.sort_order for line in invoice.line_items] == [0, 1]

    def test_replace_lines_removes_old_lines(self, invoice_service, invoice, test_actor_id):
        invoice_service.replace_lines(
            invoice, _priced(make_visit("V-1"), make_visit("V-2")).lines, [], test_actor_id
        )
        invoice_service.replace_lines(invoice, _priced(make_visit("V-3")).lines, [], test_actor_id)

        assert [line.visit_ref for line in invoice.line_items] == ["V-3"]
        assert invoice.net_amount == Decimal("20.00")

    def test_load_for_update_unknown(self, invoice_service):
        with pytest.raises(InvoiceNotFoundError):
            invoice_service.load_for_update(uuid4())


class TestLedgerLockService:

    def test_lock_records_actor_time_and_event(
        self, session, lock_service, invoice, test_actor_id, deterministic_clock
    ):
        lock_service.lock(invoice.id, test_actor_id)

        assert invoice.state == LockState.LOCKED
        assert invoice.locked_by_id == test_actor_id
        assert invoice.locked_at == deterministic_clock.now()

        history = InvoiceSelector(session).lock_history(invoice.id)
        assert len(history) == 1
        assert history[0].previous_state == LockState.UNLOCKED
        assert history[0].new_state == LockState.LOCKED

    def test_locked_invoice_rejects_replacement(
        self, lock_service, invoice_service, invoice, test_actor_id
    ):
        lock_service.lock(invoice.id, test_actor_id)
        with pytest.raises(LedgerLockedError):
            invoice_service.replace_lines(invoice, _priced(make_visit()).lines, [], test_actor_id)

    def test_unlock_unlocked_is_noop(self, session, lock_service, invoice, test_actor_id):
        lock_service.unlock(invoice.id, test_actor_id)
        assert invoice.state == LockState.UNLOCKED
        assert session.query(InvoiceLockEvent).count() == 0

    def test_deny_all_authority(
        self, session, deterministic_clock, invoice_service, invoice, test_actor_id
    ):
        service = LedgerLockService(
            session,
            clock=deterministic_clock,
            authority=DenyAllLockAuthority(),
            invoices=invoice_service,
        )
        service.lock(invoice.id, test_actor_id)

        with pytest.raises(UnauthorizedLedgerActionError) as exc_info:
            service.unlock(invoice.id, test_actor_id)
        assert exc_info.value.action == "unlock"
        assert invoice.is_locked

    def test_event_sequence_increments(self, session, lock_service, invoice, test_actor_id):
        lock_service.lock(invoice.id, test_actor_id)
        lock_service.unlock(invoice.id, test_actor_id)
        lock_service.lock(invoice.id, test_actor_id)

        history = InvoiceSelector(session).lock_history(invoice.id)
        assert [event.sequence for event in history] == [1, 2, 3]
