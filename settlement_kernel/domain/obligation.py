"""
Obligation -- Immutable snapshot of one payable unit.

Responsibility:
    Defines the Obligation value object (an order, room booking, or supply
    delivery) together with its lifecycle states and the consumed-quantity
    lines that drive the fulfillment side effect.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.  Services load ORM rows
    into Obligation snapshots; the state machine derives the next snapshot.

Invariants enforced:
    - amount_settled == ledger.paid_total (debt entries excluded).
    - debtor_name is set iff the ledger carries an outstanding debt entry.
    - 0 <= amount_settled <= total_due; outstanding debt fits the remainder.
    - SETTLED means fully paid with no debt.

Failure modes:
    - LedgerInvariantError when a snapshot violates any invariant above.
      Loading a corrupted row therefore fails loudly.
    - ValueError for invalid line construction.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from settlement_kernel.domain.tender import ZERO, TenderLedger
from settlement_kernel.exceptions import LedgerInvariantError


class ObligationKind(str, Enum):
    """Departments that create payable obligations."""

    RESTAURANT_ORDER = "restaurant_order"
    BAR_ORDER = "bar_order"
    ROOM_BOOKING = "room_booking"
    SUPPLY_DELIVERY = "supply_delivery"


class LifecycleState(str, Enum):
    """Settlement lifecycle of an obligation.  See ``state_machine``."""

    OPEN = "open"
    PARTIALLY_SETTLED = "partially_settled"
    DEBTED = "debted"
    SETTLED = "settled"


@dataclass(frozen=True)
class ConsumedLine:
    """
    A line item whose quantity is consumed when the obligation is fulfilled.

    ``unit_cost`` is optional; when present it feeds gross-profit reporting.
    """

    item_ref: str
    quantity: Decimal
    unit_price: Decimal = ZERO
    unit_cost: Decimal | None = None

    def __post_init__(self) -> None:
        if not self.item_ref or not self.item_ref.strip():
            raise ValueError("item_ref is required")
        for name in ("quantity", "unit_price", "unit_cost"):
            value = getattr(self, name)
            if value is not None and not isinstance(value, Decimal):
                if isinstance(value, float):
                    raise ValueError(f"{name} must not be a float")
                object.__setattr__(self, name, Decimal(str(value)))
        if self.quantity <= ZERO:
            raise ValueError(f"quantity must be positive, got {self.quantity}")
        if self.unit_price < ZERO:
            raise ValueError("unit_price cannot be negative")
        if self.unit_cost is not None and self.unit_cost < ZERO:
            raise ValueError("unit_cost cannot be negative")

    @property
    def revenue(self) -> Decimal:
        return self.unit_price * self.quantity

    @property
    def cost(self) -> Decimal | None:
        if self.unit_cost is None:
            return None
        return self.unit_cost * self.quantity


@dataclass(frozen=True)
class Obligation:
    """
    Snapshot of a payable obligation at one row version.

    Contract:
        Every snapshot satisfies the module invariants; construction raises
        LedgerInvariantError otherwise.  ``version`` is the row version the
        snapshot was read at and is the basis of optimistic concurrency.

    Non-goals:
        - Does NOT perform transitions (see ``state_machine.plan_transition``).
    """

    id: UUID
    kind: ObligationKind
    total_due: Decimal
    amount_settled: Decimal
    ledger: TenderLedger
    state: LifecycleState
    version: int
    opened_at: datetime
    debtor_name: str | None = None
    fulfilled: bool = False
    reference: str | None = None
    lines: tuple[ConsumedLine, ...] = ()

    def __post_init__(self) -> None:
        oid = str(self.id)
        if self.total_due < ZERO:
            raise LedgerInvariantError(oid, f"total_due {self.total_due} is negative")
        if self.amount_settled != self.ledger.paid_total:
            raise LedgerInvariantError(
                oid,
                f"amount_settled {self.amount_settled} != ledger paid total "
                f"{self.ledger.paid_total} ({self.ledger.encode()!r})",
            )
        if self.amount_settled > self.total_due:
            raise LedgerInvariantError(
                oid, f"amount_settled {self.amount_settled} exceeds total_due {self.total_due}"
            )
        if self.outstanding_debt > self.remaining_balance:
            raise LedgerInvariantError(
                oid,
                f"outstanding debt {self.outstanding_debt} exceeds remaining "
                f"balance {self.remaining_balance}",
            )
        if (self.debtor_name is not None) != (self.outstanding_debt > ZERO):
            raise LedgerInvariantError(
                oid, "debtor_name must be set exactly when debt is outstanding"
            )
        if self.state is LifecycleState.SETTLED and self.remaining_balance != ZERO:
            raise LedgerInvariantError(oid, "SETTLED obligation has a remaining balance")
        if self.state is LifecycleState.DEBTED and self.outstanding_debt == ZERO:
            raise LedgerInvariantError(oid, "DEBTED obligation carries no debt")

    @property
    def remaining_balance(self) -> Decimal:
        return self.total_due - self.amount_settled

    @property
    def outstanding_debt(self) -> Decimal:
        return self.ledger.debt_total

    @property
    def is_settled(self) -> bool:
        return self.state is LifecycleState.SETTLED
