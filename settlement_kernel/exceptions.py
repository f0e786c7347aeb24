"""
Typed Exception Hierarchy for the Settlement Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

A settlement engine must never lose money silently, so every rejection is a
distinct exception type that callers catch by type, never by message:

  1. Every error has a TYPED exception class (catch by type, not message)
  2. Every exception has a CODE attribute (machine-readable, API-safe)
  3. Exceptions carry structured DATA (not just a message string)

Example - WRONG way to handle errors:
    try:
        service.apply(obligation_id, event)
    except Exception as e:
        if "overpay" in str(e):  # FRAGILE - message might change
            refresh_screen()

Example - RIGHT way:
    try:
        service.apply(obligation_id, event)
    except InsufficientRemainingBalanceError as e:
        notify(f"Only {e.remaining} remains on this bill")
        api_response(code=e.code, remaining=e.remaining)

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    SettlementKernelError (base)
    |
    +-- SettlementValidationError      rejected before any write
    |   +-- InvalidTenderAmountError
    |   +-- InvalidTenderLabelError
    |   +-- DebtorNameRequiredError
    |   +-- DuplicateTenderKindError
    |   +-- DebtorMismatchError
    |   +-- DebtorNameWithoutDebtError
    |   +-- RedistributionTotalsError
    |
    +-- SettlementStateError           stale UI state; refresh and retry
    |   +-- AlreadySettledError
    |   +-- InsufficientRemainingBalanceError
    |   +-- ObligationNotFoundError
    |
    +-- ConcurrencyError               re-read and retry automatically
    |   +-- ConcurrentModificationError
    |
    +-- IdempotencyError
    |   +-- EventPayloadMismatchError
    |
    +-- LedgerDataError                data corruption upstream; surface loudly
    |   +-- MalformedLedgerError
    |   +-- LedgerInvariantError
    |   +-- ImmutabilityViolationError
    |
    +-- FulfillmentError               logged, retried; never rolls back money
        +-- StockDecrementError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category      | Code                           | When Raised
--------------|--------------------------------|--------------------------------------
Validation    | INVALID_TENDER_AMOUNT          | Amount <= 0, non-finite, too precise
              | DEBTOR_NAME_REQUIRED           | Debt entry without a debtor name
              | DUPLICATE_TENDER_KIND          | Same tender kind twice in one event
              | INVALID_TENDER_LABEL           | Blank or unreadable tender label
              | DEBTOR_MISMATCH                | New debt under a different debtor
              | DEBTOR_NAME_WITHOUT_DEBT       | Debtor named on an event with no debt
              | REDISTRIBUTION_TOTALS_CHANGED  | Re-split changes paid or owed totals
--------------|--------------------------------|--------------------------------------
State         | ALREADY_SETTLED                | Event against a SETTLED obligation
              | INSUFFICIENT_REMAINING_BALANCE | Payment or debt exceeds remainder
              | OBLIGATION_NOT_FOUND           | Unknown obligation id
--------------|--------------------------------|--------------------------------------
Concurrency   | CONCURRENT_MODIFICATION        | Version changed since it was read
--------------|--------------------------------|--------------------------------------
Idempotency   | EVENT_PAYLOAD_MISMATCH         | Event id reused with another payload
--------------|--------------------------------|--------------------------------------
Data          | MALFORMED_LEDGER               | Tender string failed to parse
              | LEDGER_INVARIANT_VIOLATION     | Stored totals disagree with ledger
              | IMMUTABILITY_VIOLATION         | Update to a recorded settlement event
--------------|--------------------------------|--------------------------------------
Side effect   | STOCK_DECREMENT_FAILED         | Stock write lost every CAS attempt

===============================================================================
HANDLING PATTERNS
===============================================================================

1. CONCURRENCY ERRORS ARE RETRYABLE (with a fresh read):

    except ConcurrentModificationError:
        obligation = processor.load(obligation_id)   # never reuse the stale one

2. REPLAYED EVENTS ARE SUCCESS:

    result = service.apply(obligation_id, event)
    if result.replayed:
        ...  # already applied earlier; result.trigger is None

3. DATA ERRORS ARE NEVER TREATED AS EMPTY:

    except MalformedLedgerError as e:
        alert_operations(e.fragment)
"""

from decimal import Decimal


class SettlementKernelError(Exception):
    """
    Base exception for all settlement kernel errors.

    All subclasses must have a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "SETTLEMENT_KERNEL_ERROR"


# Validation exceptions


class SettlementValidationError(SettlementKernelError):
    """Base exception for malformed settlement input."""

    code: str = "SETTLEMENT_VALIDATION_ERROR"


class InvalidTenderAmountError(SettlementValidationError):
    """A tender amount is non-positive, non-finite, or too precise."""

    code: str = "INVALID_TENDER_AMOUNT"

    def __init__(self, amount: str, reason: str):
        self.amount = amount
        self.reason = reason
        super().__init__(f"Invalid tender amount {amount!r}: {reason}")


class DebtorNameRequiredError(SettlementValidationError):
    """A debt entry was supplied without naming the debtor."""

    code: str = "DEBTOR_NAME_REQUIRED"

    def __init__(self, obligation_id: str, debt_amount: str):
        self.obligation_id = obligation_id
        self.debt_amount = debt_amount
        super().__init__(
            f"Debt of {debt_amount} on obligation {obligation_id} "
            "requires a debtor name"
        )


class InvalidTenderLabelError(SettlementValidationError):
    """A tender label is blank or not of the form used in tender strings."""

    code: str = "INVALID_TENDER_LABEL"

    def __init__(self, label: str):
        self.label = label
        super().__init__(f"Invalid tender label {label!r}")


class DuplicateTenderKindError(SettlementValidationError):
    """The same tender kind appears more than once in one settlement event."""

    code: str = "DUPLICATE_TENDER_KIND"

    def __init__(self, label: str):
        self.label = label
        super().__init__(f"Tender kind '{label}' appears more than once in the event")


class DebtorMismatchError(SettlementValidationError):
    """New debt names a different debtor while existing debt is still owed."""

    code: str = "DEBTOR_MISMATCH"

    def __init__(self, obligation_id: str, current_debtor: str, supplied_debtor: str):
        self.obligation_id = obligation_id
        self.current_debtor = current_debtor
        self.supplied_debtor = supplied_debtor
        super().__init__(
            f"Obligation {obligation_id} already owes debt to '{current_debtor}', "
            f"cannot record new debt for '{supplied_debtor}'"
        )


class DebtorNameWithoutDebtError(SettlementValidationError):
    """
    A debtor was named on an event that records no debt.

    Naming the current debtor on a payment that clears their debt is allowed.
    """

    code: str = "DEBTOR_NAME_WITHOUT_DEBT"

    def __init__(self, obligation_id: str, debtor_name: str):
        self.obligation_id = obligation_id
        self.debtor_name = debtor_name
        super().__init__(
            f"Event names debtor '{debtor_name}' but records no debt on "
            f"obligation {obligation_id}"
        )


class RedistributionTotalsError(SettlementValidationError):
    """A redistribution would change the amount paid or the debt owed."""

    code: str = "REDISTRIBUTION_TOTALS_CHANGED"

    def __init__(
        self,
        obligation_id: str,
        paid: Decimal,
        supplied_paid: Decimal,
        debt: Decimal,
        supplied_debt: Decimal,
    ):
        self.obligation_id = obligation_id
        self.paid = str(paid)
        self.supplied_paid = str(supplied_paid)
        self.debt = str(debt)
        self.supplied_debt = str(supplied_debt)
        super().__init__(
            f"Redistribution of {obligation_id} must keep paid {paid} and debt {debt}, "
            f"got paid {supplied_paid} and debt {supplied_debt}"
        )


# State exceptions


class SettlementStateError(SettlementKernelError):
    """Base exception for events that do not fit the obligation's state."""

    code: str = "SETTLEMENT_STATE_ERROR"


class AlreadySettledError(SettlementStateError):
    """The obligation is fully settled; no further payments are accepted."""

    code: str = "ALREADY_SETTLED"

    def __init__(self, obligation_id: str):
        self.obligation_id = obligation_id
        super().__init__(f"Obligation {obligation_id} is already settled")


class InsufficientRemainingBalanceError(SettlementStateError):
    """The event would overpay the obligation or over-record debt."""

    code: str = "INSUFFICIENT_REMAINING_BALANCE"

    def __init__(self, obligation_id: str, remaining: Decimal, requested: Decimal):
        self.obligation_id = obligation_id
        self.remaining = str(remaining)
        self.requested = str(requested)
        super().__init__(
            f"Obligation {obligation_id} has {remaining} remaining, "
            f"event allocates {requested}"
        )


class ObligationNotFoundError(SettlementStateError):
    """Obligation with given ID was not found."""

    code: str = "OBLIGATION_NOT_FOUND"

    def __init__(self, obligation_id: str):
        self.obligation_id = obligation_id
        super().__init__(f"Obligation not found: {obligation_id}")


# Concurrency exceptions


class ConcurrencyError(SettlementKernelError):
    """Base exception for concurrency-related errors."""

    code: str = "CONCURRENCY_ERROR"


class ConcurrentModificationError(ConcurrencyError):
    """
    The obligation changed between read and conditional write.

    Safe to retry after re-reading the obligation.
    """

    code: str = "CONCURRENT_MODIFICATION"

    def __init__(self, obligation_id: str, expected_version: int):
        self.obligation_id = obligation_id
        self.expected_version = expected_version
        super().__init__(
            f"Obligation {obligation_id} was modified concurrently "
            f"(expected version {expected_version})"
        )


# Idempotency exceptions


class IdempotencyError(SettlementKernelError):
    """Base exception for idempotency violations."""

    code: str = "IDEMPOTENCY_ERROR"


class EventPayloadMismatchError(IdempotencyError):
    """
    Event ID was already applied with a different payload.

    Settlement events are immutable; corrections must use a new event id.
    """

    code: str = "EVENT_PAYLOAD_MISMATCH"

    def __init__(self, event_id: str, expected_hash: str, received_hash: str):
        self.event_id = event_id
        self.expected_hash = expected_hash
        self.received_hash = received_hash
        super().__init__(
            f"Payload mismatch for settlement event {event_id}: "
            f"expected {expected_hash}, received {received_hash}"
        )


# Data exceptions


class LedgerDataError(SettlementKernelError):
    """Base exception for corrupted persisted settlement data."""

    code: str = "LEDGER_DATA_ERROR"


class MalformedLedgerError(LedgerDataError):
    """A tender ledger string failed to parse."""

    code: str = "MALFORMED_LEDGER"

    def __init__(self, text: str, fragment: str, reason: str):
        self.text = text
        self.fragment = fragment
        self.reason = reason
        super().__init__(
            f"Malformed tender ledger {text!r}: fragment {fragment!r} {reason}"
        )


class LedgerInvariantError(LedgerDataError):
    """Stored obligation totals disagree with its tender ledger."""

    code: str = "LEDGER_INVARIANT_VIOLATION"

    def __init__(self, obligation_id: str, reason: str):
        self.obligation_id = obligation_id
        self.reason = reason
        super().__init__(f"Ledger invariant violated on {obligation_id}: {reason}")


class ImmutabilityViolationError(LedgerDataError):
    """An applied settlement event was about to be modified."""

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity: str, entity_id: str):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} {entity_id} is immutable once recorded")


# Side-effect exceptions


class FulfillmentError(SettlementKernelError):
    """Base exception for fulfillment side-effect failures."""

    code: str = "FULFILLMENT_ERROR"


class StockDecrementError(FulfillmentError):
    """A stock record could not be decremented."""

    code: str = "STOCK_DECREMENT_FAILED"

    def __init__(self, item_ref: str, attempts: int):
        self.item_ref = item_ref
        self.attempts = attempts
        super().__init__(
            f"Stock decrement for '{item_ref}' lost {attempts} consecutive "
            "compare-and-set attempts"
        )
