"""
Typed Exception Hierarchy for the Billing Kernel.

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

All exceptions inherit from BillingKernelError:

    BillingKernelError (base)
    |
    +-- RateRuleError
    |   +-- NoRateRuleFoundError
    |   +-- AmbiguousRateRuleError
    |
    +-- LedgerError
    |   +-- InvoiceNotFoundError
    |   +-- LineItemNotFoundError
    |   +-- LedgerLockedError
    |   +-- UnauthorizedLedgerActionError
    |
    +-- ConcurrencyError
    |   +-- ConcurrentModificationError
    |
    +-- ImmutabilityError
    |   +-- ImmutabilityViolationError
    |
    +-- ConfigurationError
        +-- RateConfigurationError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category        | Code                        | When Raised
----------------|-----------------------------|-----------------------------------------
Rate rule       | NO_RATE_RULE                | No rate block matches a visit
                | AMBIGUOUS_RATE_RULE         | More than one rate block matches a visit
----------------|-----------------------------|-----------------------------------------
Ledger          | INVOICE_NOT_FOUND           | Invoice ID doesn't exist
                | LINE_ITEM_NOT_FOUND         | Line item not on this invoice
                | LEDGER_LOCKED               | Mutation attempted on a locked invoice
                | UNAUTHORIZED_LEDGER_ACTION  | Actor may not unlock this invoice
----------------|-----------------------------|-----------------------------------------
Concurrency     | CONCURRENT_MODIFICATION     | Write race on an invoice detected
----------------|-----------------------------|-----------------------------------------
Immutability    | IMMUTABILITY_VIOLATION      | ORM write to a locked invoice's rows
----------------|-----------------------------|-----------------------------------------
Configuration   | RATE_CONFIGURATION_INVALID  | Rate card failed validation

===============================================================================
HANDLING PATTERNS
===============================================================================

Per-visit rate errors are never raised out of ledger generation.  The
generator catches them and turns them into flagged, zero-priced lines plus a
warning, so the operator sees "N of M visits priced, K flagged":

    try:
        block = resolve_rate_block(visit, blocks)
    except RateRuleError as e:
        warnings.append(PricingWarning(visit_ref=e.visit_ref, flag=..., message=str(e)))

LedgerLockedError and ConcurrentModificationError abort the whole operation;
the orchestrator rolls the transaction back and re-raises:

    try:
        orchestrator.generate_ledger(invoice_id, actor_id)
    except LedgerLockedError as e:
        api_response(code=e.code, invoice=e.invoice_id)
    except ConcurrencyError:
        retry_later()
"""


class BillingKernelError(Exception):
    """
    Base exception for all billing kernel errors.

    All subclasses carry a ``code`` class attribute for machine-readable
    identification.
    """

    code: str = "BILLING_KERNEL_ERROR"


# Rate rule exceptions


class RateRuleError(BillingKernelError):
    """Base exception for rate resolution failures on a single visit."""

    code: str = "RATE_RULE_ERROR"

    def __init__(self, visit_ref: str, message: str):
        self.visit_ref = visit_ref
        super().__init__(message)


class NoRateRuleFoundError(RateRuleError):
    """No rate block matches the visit (recoverable, per visit)."""

    code: str = "NO_RATE_RULE"

    def __init__(self, visit_ref: str, day_type: str, start_time: str):
        self.day_type = day_type
        self.start_time = start_time
        super().__init__(
            visit_ref,
            f"No rate rule found for visit {visit_ref} ({day_type} {start_time})",
        )


class AmbiguousRateRuleError(RateRuleError):
    """
    More than one rate block matches the visit.

    This is a configuration error: overlapping blocks are never resolved by
    picking one of them.
    """

    code: str = "AMBIGUOUS_RATE_RULE"

    def __init__(self, visit_ref: str, block_ids: tuple[str, ...]):
        self.block_ids = block_ids
        super().__init__(
            visit_ref,
            f"Ambiguous rate rule for visit {visit_ref}: "
            f"{len(block_ids)} blocks match ({', '.join(block_ids)})",
        )


# Ledger exceptions


class LedgerError(BillingKernelError):
    """Base exception for invoice ledger errors."""

    code: str = "LEDGER_ERROR"


class InvoiceNotFoundError(LedgerError):
    """Invoice with given ID was not found."""

    code: str = "INVOICE_NOT_FOUND"

    def __init__(self, invoice_id: str):
        self.invoice_id = invoice_id
        super().__init__(f"Invoice not found: {invoice_id}")


class LineItemNotFoundError(LedgerError):
    """Line item does not exist on the given invoice."""

    code: str = "LINE_ITEM_NOT_FOUND"

    def __init__(self, invoice_id: str, line_item_id: str):
        self.invoice_id = invoice_id
        self.line_item_id = line_item_id
        super().__init__(
            f"Line item {line_item_id} not found on invoice {invoice_id}"
        )


class LedgerLockedError(LedgerError):
    """Mutation attempted against a locked invoice ledger."""

    code: str = "LEDGER_LOCKED"

    def __init__(self, invoice_id: str, operation: str):
        self.invoice_id = invoice_id
        self.operation = operation
        super().__init__(
            f"Cannot {operation}: ledger for invoice {invoice_id} is locked"
        )


class UnauthorizedLedgerActionError(LedgerError):
    """Actor is not permitted to perform a privileged ledger action."""

    code: str = "UNAUTHORIZED_LEDGER_ACTION"

    def __init__(self, invoice_id: str, actor_id: str, action: str):
        self.invoice_id = invoice_id
        self.actor_id = actor_id
        self.action = action
        super().__init__(
            f"Actor {actor_id} is not authorized to {action} invoice {invoice_id}"
        )


# Concurrency exceptions


class ConcurrencyError(BillingKernelError):
    """Base exception for concurrency-related errors."""

    code: str = "CONCURRENCY_ERROR"


class ConcurrentModificationError(ConcurrencyError):
    """
    A concurrent write to the same invoice was detected.

    Raised when the per-invoice guard cannot be acquired in time or when the
    invoice row version changed underneath the current transaction.
    """

    code: str = "CONCURRENT_MODIFICATION"

    def __init__(self, invoice_id: str, reason: str):
        self.invoice_id = invoice_id
        self.reason = reason
        super().__init__(
            f"Concurrent modification of invoice {invoice_id}: {reason}"
        )


# Immutability exceptions


class ImmutabilityError(BillingKernelError):
    """Base exception for immutability violations."""

    code: str = "IMMUTABILITY_ERROR"


class ImmutabilityViolationError(ImmutabilityError):
    """Attempted to modify rows that belong to a locked invoice."""

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Cannot modify {entity_type} {entity_id}: {reason}"
        )


# Configuration exceptions


class ConfigurationError(BillingKernelError):
    """Base exception for configuration errors."""

    code: str = "CONFIGURATION_ERROR"


class RateConfigurationError(ConfigurationError):
    """A rate card failed validation (invalid or overlapping blocks)."""

    code: str = "RATE_CONFIGURATION_INVALID"

    def __init__(self, source: str, errors: list[str]):
        self.source = source
        self.errors = errors
        super().__init__(
            f"Rate configuration {source} is invalid: {len(errors)} error(s)"
        )
