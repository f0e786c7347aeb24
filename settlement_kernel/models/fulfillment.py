"""
Module: settlement_kernel.models.fulfillment
Responsibility: Outbox rows for fulfillment triggers.
Architecture position: Kernel > Models.  May import from db/base.py and
    domain/ only.

Invariants enforced:
    - At most one trigger row per obligation (UNIQUE obligation_id), and the
      trigger_id is the deterministic id for that obligation.
    - The row is written in the settlement transaction that first reaches
      SETTLED, so a committed settlement always has a pending or delivered
      trigger even if the process dies before fulfillment runs.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from sqlalchemy import JSON, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from settlement_kernel.db.base import Base, UUIDString
from settlement_kernel.domain.settlement import FulfillmentLine, FulfillmentTrigger


class TriggerStatus(str, Enum):
    PENDING = "pending"
    DELIVERED = "delivered"


class FulfillmentTriggerModel(Base):
    """
    Table: ``fulfillment_triggers``

    ``lines`` is a JSON snapshot of [item_ref, quantity] pairs taken when the
    trigger was raised; quantities are stored as strings.
    """

    __tablename__ = "fulfillment_triggers"

    __table_args__ = (
        Index("idx_fulfillment_trigger_status", "status", "raised_at"),
    )

    trigger_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False, unique=True)
    obligation_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False, unique=True)
    event_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    lines: Mapped[list] = mapped_column(JSON, nullable=False, default=list)

    status: Mapped[str] = mapped_column(
        String(16),
        nullable=False,
        default=TriggerStatus.PENDING.value,
    )
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_error: Mapped[str | None] = mapped_column(String(500), nullable=True)

    raised_at: Mapped[datetime] = mapped_column(nullable=False)
    delivered_at: Mapped[datetime | None] = mapped_column(nullable=True)

    def to_dto(self) -> FulfillmentTrigger:
        return FulfillmentTrigger(
            trigger_id=self.trigger_id,
            obligation_id=self.obligation_id,
            event_id=self.event_id,
            lines=tuple(
                FulfillmentLine(item_ref=item_ref, quantity=Decimal(quantity))
                for item_ref, quantity in self.lines
            ),
        )

    @classmethod
    def from_dto(cls, dto: FulfillmentTrigger, raised_at: datetime) -> "FulfillmentTriggerModel":
        return cls(
            trigger_id=dto.trigger_id,
            obligation_id=dto.obligation_id,
            event_id=dto.event_id,
            lines=[[line.item_ref, format(line.quantity, "f")] for line in dto.lines],
            status=TriggerStatus.PENDING.value,
            attempts=0,
            raised_at=raised_at,
        )

    def __repr__(self) -> str:
        return f"<FulfillmentTriggerModel {self.trigger_id} {self.status}>"
