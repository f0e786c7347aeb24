"""
Module: settlement_kernel.models.obligation
Responsibility: ORM persistence for obligations (orders, room bookings,
    supply deliveries) and their consumed-quantity lines.
Architecture position: Kernel > Models.  May import from db/base.py,
    domain/, and exceptions.py only.

Invariants enforced:
    - version is the optimistic-concurrency counter.  The settlement
      processor only ever changes money columns through a conditional
      UPDATE ... WHERE version = :read_version.
    - tender_ledger holds the canonical tender string; it is never parsed
      leniently (to_dto raises MalformedLedgerError on corruption).
    - to_dto re-checks every Obligation invariant, so a corrupted row fails
      loudly on load (LedgerInvariantError).

Failure modes:
    - MalformedLedgerError / LedgerInvariantError from to_dto().
"""

from collections.abc import Mapping
from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import Boolean, ForeignKey, Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from settlement_kernel.db.base import Base, TrackedBase
from settlement_kernel.domain.obligation import (
    ConsumedLine,
    LifecycleState,
    Obligation,
    ObligationKind,
)
from settlement_kernel.domain.tender import TenderLedger


class ObligationModel(TrackedBase):
    """
    A payable unit and its accumulated settlement state.

    Contract:
        Money columns (amount_settled, tender_ledger, debtor_name,
        lifecycle_state, fulfilled) are written only by the settlement
        processor, and always together with a version bump.

    Non-goals:
        - This model does NOT validate transitions; that is
          ``settlement_kernel.domain.state_machine``.
    """

    __tablename__ = "obligations"

    __table_args__ = (
        Index("idx_obligation_opened_at", "opened_at"),
        Index("idx_obligation_state", "lifecycle_state"),
        Index("idx_obligation_kind_opened", "kind", "opened_at"),
    )

    kind: Mapped[str] = mapped_column(String(32), nullable=False)

    # Order number, room number, delivery note...
    reference: Mapped[str | None] = mapped_column(String(100), nullable=True)

    total_due: Mapped[Decimal] = mapped_column(nullable=False)
    amount_settled: Mapped[Decimal] = mapped_column(nullable=False)

    # Canonical tender string, e.g. "mobile:1500,cash:500,debt:200"
    tender_ledger: Mapped[str] = mapped_column(String(1000), nullable=False, default="")

    debtor_name: Mapped[str | None] = mapped_column(String(200), nullable=True)

    lifecycle_state: Mapped[str] = mapped_column(
        String(32),
        nullable=False,
        default=LifecycleState.OPEN.value,
    )

    # Set once, in the same write that first reaches SETTLED
    fulfilled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    opened_at: Mapped[datetime] = mapped_column(nullable=False)

    lines: Mapped[list["ObligationLineModel"]] = relationship(
        back_populates="obligation",
        cascade="all, delete-orphan",
        order_by="ObligationLineModel.line_seq",
        lazy="selectin",
    )

    def to_dto(self, aliases: Mapping[str, str] | None = None) -> Obligation:
        return Obligation(
            id=self.id,
            kind=ObligationKind(self.kind),
            total_due=self.total_due,
            amount_settled=self.amount_settled,
            ledger=TenderLedger.parse(self.tender_ledger, aliases),
            state=LifecycleState(self.lifecycle_state),
            version=self.version,
            opened_at=self.opened_at,
            debtor_name=self.debtor_name,
            fulfilled=self.fulfilled,
            reference=self.reference,
            lines=tuple(line.to_dto() for line in self.lines),
        )

    @classmethod
    def from_dto(cls, dto: Obligation, created_by_id: UUID) -> "ObligationModel":
        return cls(
            id=dto.id,
            kind=dto.kind.value,
            reference=dto.reference,
            total_due=dto.total_due,
            amount_settled=dto.amount_settled,
            tender_ledger=dto.ledger.encode(),
            debtor_name=dto.debtor_name,
            lifecycle_state=dto.state.value,
            fulfilled=dto.fulfilled,
            version=dto.version,
            opened_at=dto.opened_at,
            created_by_id=created_by_id,
            lines=[
                ObligationLineModel.from_dto(line, seq)
                for seq, line in enumerate(dto.lines, start=1)
            ],
        )

    def __repr__(self) -> str:
        return (
            f"<ObligationModel(id={self.id!r}, kind={self.kind!r}, "
            f"state={self.lifecycle_state!r}, version={self.version!r})>"
        )


class ObligationLineModel(Base):
    """
    An item consumed by an obligation.

    Table: ``obligation_lines``
    """

    __tablename__ = "obligation_lines"

    __table_args__ = (
        UniqueConstraint("obligation_id", "line_seq", name="uq_obligation_line_seq"),
        Index("idx_obligation_line_item", "item_ref"),
    )

    obligation_id: Mapped[UUID] = mapped_column(
        ForeignKey("obligations.id"),
        nullable=False,
    )
    line_seq: Mapped[int] = mapped_column(Integer, nullable=False)
    item_ref: Mapped[str] = mapped_column(String(100), nullable=False)
    quantity: Mapped[Decimal] = mapped_column(nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(nullable=False)
    unit_cost: Mapped[Decimal | None] = mapped_column(nullable=True)

    obligation: Mapped[ObligationModel] = relationship(back_populates="lines")

    def to_dto(self) -> ConsumedLine:
        return ConsumedLine(
            item_ref=self.item_ref,
            quantity=self.quantity,
            unit_price=self.unit_price,
            unit_cost=self.unit_cost,
        )

    @classmethod
    def from_dto(cls, dto: ConsumedLine, line_seq: int) -> "ObligationLineModel":
        return cls(
            line_seq=line_seq,
            item_ref=dto.item_ref,
            quantity=dto.quantity,
            unit_price=dto.unit_price,
            unit_cost=dto.unit_cost,
        )

    def __repr__(self) -> str:
        return f"<ObligationLineModel({self.item_ref!r} x {self.quantity})>"
