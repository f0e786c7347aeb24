"""
Settlement value objects: events, fulfillment triggers, and results.

Responsibility:
    SettlementEvent is the atomic payment application submitted by a
    terminal.  FulfillmentTrigger is raised once per obligation when it first
    becomes fully settled.  ObligationResult is what ``apply`` returns.

Architecture position:
    Kernel > Domain -- pure value objects, zero I/O.

Invariants enforced:
    - Events are immutable; corrections are new events with new ids.
    - A trigger id is derived from the obligation id alone, so every delivery
      of "obligation X is fulfilled" carries the same dedup key.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Iterable, Mapping
from uuid import UUID, uuid4, uuid5

from settlement_kernel.domain.obligation import Obligation
from settlement_kernel.domain.tender import ZERO, TenderEntry, encode

# Namespace for deterministic fulfillment trigger ids
FULFILLMENT_NAMESPACE = UUID("6f1c1b4e-2d7a-5c9e-9a43-0b8d6e2f7a15")


class SettlementEventKind(str, Enum):
    """
    What an event does to the ledger.

    ``PAYMENT`` adds tenders (and possibly debt).  ``REDISTRIBUTION`` replaces
    the whole breakdown with one carrying the same paid and owed totals, for
    a payment recorded under the wrong tender or debtor.
    """

    PAYMENT = "payment"
    REDISTRIBUTION = "redistribution"


@dataclass(frozen=True)
class SettlementEvent:
    """
    One atomic ledger change against one obligation.

    Contract:
        For a payment, ``entries`` are added to the ledger.  For a
        redistribution they are the complete new breakdown.  ``entries``
        may mix tender kinds and at most one debt entry.  A
        ``debtor_name`` is required whenever a debt entry is present
        (enforced by the state machine, not at construction, so the rejection
        is reported as a typed settlement error).
    """

    obligation_id: UUID
    entries: tuple[TenderEntry, ...]
    actor_id: UUID
    occurred_at: datetime
    debtor_name: str | None = None
    event_id: UUID = field(default_factory=uuid4)
    kind: SettlementEventKind = SettlementEventKind.PAYMENT

    def __post_init__(self) -> None:
        object.__setattr__(self, "entries", tuple(self.entries))
        object.__setattr__(self, "kind", SettlementEventKind(self.kind))
        if self.debtor_name is not None:
            name = self.debtor_name.strip()
            object.__setattr__(self, "debtor_name", name or None)

    @classmethod
    def of(
        cls,
        obligation_id: UUID,
        tenders: Mapping[str, Decimal | str | int] | Iterable[tuple[str, Decimal | str | int]],
        *,
        actor_id: UUID,
        occurred_at: datetime,
        debtor_name: str | None = None,
        event_id: UUID | None = None,
        aliases: Mapping[str, str] | None = None,
        kind: SettlementEventKind = SettlementEventKind.PAYMENT,
    ) -> SettlementEvent:
        """
        Build an event from ``{"cash": "500", "mpesa": "300"}`` style input.

        Raises:
            InvalidTenderLabelError: If any label is blank or unreadable.
            InvalidTenderAmountError: If any amount is invalid.
        """
        pairs = tenders.items() if isinstance(tenders, Mapping) else tenders
        entries = tuple(TenderEntry.of(label, amount, aliases) for label, amount in pairs)
        return cls(
            obligation_id=obligation_id,
            entries=entries,
            actor_id=actor_id,
            occurred_at=occurred_at,
            debtor_name=debtor_name,
            event_id=event_id or uuid4(),
            kind=kind,
        )

    def canonical(self, aliases: Mapping[str, str] | None) -> SettlementEvent:
        """The same event with ``OTHER`` labels resolved through ``aliases``."""
        entries = tuple(entry.canonical(aliases) for entry in self.entries)
        if entries == self.entries:
            return self
        return replace(self, entries=entries)

    @property
    def is_redistribution(self) -> bool:
        return self.kind is SettlementEventKind.REDISTRIBUTION

    @property
    def paid_total(self) -> Decimal:
        return sum((e.amount for e in self.entries if not e.is_debt), ZERO)

    @property
    def debt_total(self) -> Decimal:
        return sum((e.amount for e in self.entries if e.is_debt), ZERO)

    @property
    def tenders(self) -> str:
        return encode(self.entries)


@dataclass(frozen=True)
class FulfillmentLine:
    """Item reference and committed quantity to take out of stock."""

    item_ref: str
    quantity: Decimal


@dataclass(frozen=True)
class FulfillmentTrigger:
    """Raised once per obligation when it first becomes SETTLED."""

    trigger_id: UUID
    obligation_id: UUID
    event_id: UUID | None
    lines: tuple[FulfillmentLine, ...] = ()

    @staticmethod
    def trigger_id_for(obligation_id: UUID) -> UUID:
        return uuid5(FULFILLMENT_NAMESPACE, f"fulfilled:{obligation_id}")

    @classmethod
    def for_obligation(
        cls, obligation: Obligation, event_id: UUID | None
    ) -> FulfillmentTrigger:
        return cls(
            trigger_id=cls.trigger_id_for(obligation.id),
            obligation_id=obligation.id,
            event_id=event_id,
            lines=tuple(
                FulfillmentLine(item_ref=line.item_ref, quantity=line.quantity)
                for line in obligation.lines
            ),
        )


@dataclass(frozen=True)
class ObligationResult:
    """
    Outcome of a successful ``apply``.

    ``trigger`` is set only on the application that first settled the
    obligation.  ``replayed`` is True when the event id had already been
    applied and the result was answered from the record.
    """

    obligation: Obligation
    event_id: UUID | None
    trigger: FulfillmentTrigger | None = None
    replayed: bool = False
