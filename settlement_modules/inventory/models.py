"""
Inventory Domain Models (``settlement_modules.inventory.models``).

Responsibility
--------------
Frozen value objects for stock: the stock record of one item, a single
movement applied by fulfillment, and the report of one trigger delivery.

Architecture
------------
Layer: **Modules** -- pure domain data structures.  No database identity
beyond the record id and no I/O; used as DTOs between the inventory
services and callers.

Invariants
----------
- ``StockRecord.quantity`` is never negative.
- Quantities and costs are ``Decimal`` -- never ``float``.
"""

from dataclasses import dataclass
from decimal import Decimal
from uuid import UUID

from settlement_kernel.logging_config import get_logger

logger = get_logger("modules.inventory.models")


@dataclass(frozen=True)
class StockRecord:
    """
    Quantity on hand for one item (bar bottle, kitchen ingredient, ...).

    ``item_ref`` is the key obligation lines use to name the item.
    """
    id: UUID
    item_ref: str
    description: str
    quantity: Decimal
    unit: str = "unit"
    unit_cost: Decimal | None = None

    def __post_init__(self):
        if self.quantity < 0:
            logger.warning(
                "stock_record_quantity_invalid",
                extra={"item_ref": self.item_ref, "quantity": str(self.quantity)},
            )
            raise ValueError(f"quantity cannot be negative (got {self.quantity})")


@dataclass(frozen=True)
class StockMovement:
    """One decrement applied while fulfilling a trigger."""
    item_ref: str
    requested: Decimal
    before: Decimal
    after: Decimal

    @property
    def shortfall(self) -> Decimal:
        """Quantity that could not be taken because stock ran out."""
        return max(Decimal("0"), self.requested - self.before)


@dataclass(frozen=True)
class FulfillmentReport:
    """
    Outcome of ``FulfillmentCoordinator.on_fulfilled``.

    ``duplicate`` is True when the trigger had already been processed; in
    that case nothing was decremented.
    """
    trigger_id: UUID
    obligation_id: UUID
    duplicate: bool = False
    movements: tuple[StockMovement, ...] = ()
    missing_items: tuple[str, ...] = ()

    @property
    def shortfalls(self) -> tuple[StockMovement, ...]:
        return tuple(m for m in self.movements if m.shortfall > 0)
