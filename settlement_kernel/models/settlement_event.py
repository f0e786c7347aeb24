"""
Module: settlement_kernel.models.settlement_event
Responsibility: ORM persistence for applied settlement events -- the
    append-only record of every payment and redistribution.
Architecture position: Kernel > Models.  May import from db/base.py and
    exceptions.py only.

Invariants enforced:
    - idempotency_key (obligation_id:event_id) is UNIQUE, so an event is
      recorded at most once per obligation even when two terminals race.
    - payload_hash detects a reused event id carrying a different payload.
    - Rows are immutable once flushed (ORM before_update listener).

Failure modes:
    - IntegrityError on a duplicate idempotency_key.
    - ImmutabilityViolationError on any UPDATE of an existing row.
"""

from datetime import datetime
from uuid import UUID

from sqlalchemy import Index, Integer, String, event
from sqlalchemy.orm import Mapped, mapped_column

from settlement_kernel.db.base import Base, UUIDString
from settlement_kernel.exceptions import ImmutabilityViolationError


class SettlementEventModel(Base):
    """
    One applied settlement event and the state it produced.

    Contract:
        Inserted in the same transaction as the obligation's conditional
        update.  The resulting_* columns let a replay answer from the record
        without re-applying anything.
    """

    __tablename__ = "settlement_events"

    __table_args__ = (
        Index("idx_settlement_event_obligation", "obligation_id", "resulting_version"),
        Index("idx_settlement_event_occurred", "occurred_at"),
    )

    idempotency_key: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
        unique=True,
    )

    event_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    obligation_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    # "payment" or "redistribution"
    event_kind: Mapped[str] = mapped_column(String(20), nullable=False, default="payment")

    # SHA-256 of the canonical money-relevant payload
    payload_hash: Mapped[str] = mapped_column(String(64), nullable=False)

    # Canonical tenders of this event; the whole new breakdown for a redistribution
    tenders: Mapped[str] = mapped_column(String(1000), nullable=False)
    debtor_name: Mapped[str | None] = mapped_column(String(200), nullable=True)

    actor_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    occurred_at: Mapped[datetime] = mapped_column(nullable=False)
    recorded_at: Mapped[datetime] = mapped_column(nullable=False)

    resulting_state: Mapped[str] = mapped_column(String(32), nullable=False)
    resulting_version: Mapped[int] = mapped_column(Integer, nullable=False)

    # Set when this event raised the fulfillment trigger
    trigger_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    def __repr__(self) -> str:
        return f"<SettlementEventModel {self.idempotency_key} -> {self.resulting_state}>"


@event.listens_for(SettlementEventModel, "before_update")
def prevent_settlement_event_update(mapper, connection, target):
    """Applied events are immutable; corrections are new events."""
    raise ImmutabilityViolationError("SettlementEvent", str(target.event_id))
