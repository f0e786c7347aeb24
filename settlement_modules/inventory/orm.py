"""
Inventory ORM Models (``settlement_modules.inventory.orm``).

Responsibility
--------------
SQLAlchemy persistence for stock records and for the set of fulfillment
triggers the inventory module has already processed.

Architecture position
---------------------
**Modules layer** -- persistence.  Imports from ``settlement_kernel.db.base``
and sibling ``models.py``.  MUST NOT be imported by ``settlement_kernel``.
"""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from settlement_kernel.db.base import Base, TrackedBase, UUIDString


# ---------------------------------------------------------------------------
# StockRecordModel
# ---------------------------------------------------------------------------

class StockRecordModel(TrackedBase):
    """
    ORM model for ``StockRecord``.

    Table: ``inventory_stock_records``

    ``quantity`` changes only through compare-and-set updates keyed on the
    value that was read.
    """

    __tablename__ = "inventory_stock_records"

    item_ref: Mapped[str] = mapped_column(String(100))
    description: Mapped[str] = mapped_column(String(200))
    quantity: Mapped[Decimal]
    unit: Mapped[str] = mapped_column(String(20), default="unit")
    unit_cost: Mapped[Decimal | None]

    __table_args__ = (
        UniqueConstraint("item_ref", name="uq_inventory_stock_records_item_ref"),
    )

    def to_dto(self):
        from settlement_modules.inventory.models import StockRecord
        return StockRecord(
            id=self.id,
            item_ref=self.item_ref,
            description=self.description,
            quantity=self.quantity,
            unit=self.unit,
            unit_cost=self.unit_cost,
        )

    @classmethod
    def from_dto(cls, dto, created_by_id: UUID) -> "StockRecordModel":
        return cls(
            id=dto.id,
            item_ref=dto.item_ref,
            description=dto.description,
            quantity=dto.quantity,
            unit=dto.unit,
            unit_cost=dto.unit_cost,
            created_by_id=created_by_id,
        )

    def __repr__(self) -> str:
        return f"<StockRecordModel(item_ref={self.item_ref!r}, quantity={self.quantity!r})>"


# ---------------------------------------------------------------------------
# ProcessedTriggerModel
# ---------------------------------------------------------------------------

class ProcessedTriggerModel(Base):
    """
    Claim marker for a fulfillment trigger.

    Table: ``inventory_processed_triggers``

    Inserted in the same transaction as the stock decrements it guards, so
    the decrements happen at most once per trigger id.
    """

    __tablename__ = "inventory_processed_triggers"

    trigger_id: Mapped[UUID] = mapped_column(UUIDString())
    obligation_id: Mapped[UUID] = mapped_column(UUIDString())
    processed_at: Mapped[datetime]
    line_count: Mapped[int] = mapped_column(Integer, default=0)

    __table_args__ = (
        UniqueConstraint("trigger_id", name="uq_inventory_processed_trigger_id"),
    )

    def __repr__(self) -> str:
        return f"<ProcessedTriggerModel(trigger_id={self.trigger_id!r})>"
