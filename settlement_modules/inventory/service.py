"""
Inventory Stock Service (``settlement_modules.inventory.service``).

Responsibility
--------------
Registers stock records and changes their quantities: restocking, setting a
counted quantity, and the clamped decrement used by fulfillment.

Architecture
------------
Layer: **Modules** -- stateful service.  Flushes only; the caller owns the
transaction.

Invariants
----------
- Quantities never go below zero: a decrement larger than the stock on hand
  takes what is there and reports the shortfall.
- Every quantity change is a compare-and-set keyed on the value that was
  read, retried up to ``stock_cas_attempts`` times.  Concurrent fulfillments
  of different obligations that consume the same item never lose a
  decrement.

Failure Modes
-------------
- ``StockDecrementError`` when every compare-and-set attempt lost a race.
- ``ValueError`` for non-positive quantities or a duplicate ``item_ref``.

Usage::

    stock = StockService(session, clock)
    stock.register("tusker-500ml", "Tusker lager 500ml", Decimal("48"), actor_id)
    stock.restock("tusker-500ml", Decimal("24"), actor_id)
"""

from __future__ import annotations

from collections.abc import Callable
from decimal import Decimal
from uuid import UUID, uuid4

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from settlement_kernel.config import SettlementConfig
from settlement_kernel.domain.clock import Clock, SystemClock
from settlement_kernel.exceptions import StockDecrementError
from settlement_kernel.logging_config import get_logger
from settlement_modules.inventory.models import StockMovement, StockRecord
from settlement_modules.inventory.orm import StockRecordModel

logger = get_logger("modules.inventory.service")

_ZERO = Decimal("0")


def _positive(quantity: Decimal | str | int, what: str) -> Decimal:
    if isinstance(quantity, float):
        raise ValueError(f"{what} must not be a float")
    quantity = quantity if isinstance(quantity, Decimal) else Decimal(str(quantity))
    if not quantity.is_finite() or quantity <= _ZERO:
        raise ValueError(f"{what} must be positive (got {quantity})")
    return quantity


class StockService:
    """Stock records keyed by ``item_ref``."""

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        config: SettlementConfig | None = None,
    ):
        self.session = session
        self._clock = clock or SystemClock()
        self._attempts = (config or SettlementConfig.with_defaults()).stock_cas_attempts

    # =========================================================================
    # Queries
    # =========================================================================

    def get(self, item_ref: str) -> StockRecord | None:
        model = self._load(item_ref)
        return model.to_dto() if model is not None else None

    # =========================================================================
    # Commands
    # =========================================================================

    def register(
        self,
        item_ref: str,
        description: str,
        quantity: Decimal | str | int,
        actor_id: UUID,
        unit: str = "unit",
        unit_cost: Decimal | None = None,
    ) -> StockRecord:
        """Create the stock record for a new item."""
        if self._load(item_ref) is not None:
            raise ValueError(f"Stock record for '{item_ref}' already exists")
        quantity = quantity if isinstance(quantity, Decimal) else Decimal(str(quantity))
        record = StockRecord(
            id=uuid4(),
            item_ref=item_ref,
            description=description,
            quantity=quantity,
            unit=unit,
            unit_cost=unit_cost,
        )
        self.session.add(StockRecordModel.from_dto(record, created_by_id=actor_id))
        self.session.flush()
        logger.info(
            "stock_record_registered",
            extra={"item_ref": item_ref, "quantity": quantity},
        )
        return record

    def restock(
        self,
        item_ref: str,
        quantity: Decimal | str | int,
        actor_id: UUID,
    ) -> StockRecord:
        """Add ``quantity`` to the stock on hand."""
        quantity = _positive(quantity, "restock quantity")
        changed = self._compare_and_set(item_ref, lambda q: q + quantity, actor_id)
        if changed is None:
            raise ValueError(f"No stock record for '{item_ref}'")
        before, after = changed
        logger.info(
            "stock_restocked",
            extra={"item_ref": item_ref, "before": before, "after": after},
        )
        return self.get(item_ref)

    def set_quantity(
        self,
        item_ref: str,
        quantity: Decimal | str | int,
        actor_id: UUID,
    ) -> StockRecord:
        """Overwrite the stock on hand with a counted quantity."""
        quantity = quantity if isinstance(quantity, Decimal) else Decimal(str(quantity))
        if quantity < _ZERO:
            raise ValueError(f"quantity cannot be negative (got {quantity})")
        changed = self._compare_and_set(item_ref, lambda _: quantity, actor_id)
        if changed is None:
            raise ValueError(f"No stock record for '{item_ref}'")
        before, after = changed
        logger.info(
            "stock_counted",
            extra={"item_ref": item_ref, "before": before, "after": after},
        )
        return self.get(item_ref)

    def decrement(
        self,
        item_ref: str,
        quantity: Decimal,
        actor_id: UUID | None = None,
    ) -> StockMovement | None:
        """
        Take ``quantity`` out of stock, clamping at zero.

        Returns None when the item has no stock record.
        """
        quantity = _positive(quantity, "decrement quantity")
        changed = self._compare_and_set(
            item_ref, lambda q: max(_ZERO, q - quantity), actor_id
        )
        if changed is None:
            return None
        before, after = changed
        return StockMovement(
            item_ref=item_ref, requested=quantity, before=before, after=after
        )

    # =========================================================================
    # Internals
    # =========================================================================

    def _load(self, item_ref: str) -> StockRecordModel | None:
        return self.session.execute(
            select(StockRecordModel)
            .where(StockRecordModel.item_ref == item_ref)
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def _compare_and_set(
        self,
        item_ref: str,
        compute: Callable[[Decimal], Decimal],
        actor_id: UUID | None,
    ) -> tuple[Decimal, Decimal] | None:
        for attempt in range(1, self._attempts + 1):
            model = self._load(item_ref)
            if model is None:
                return None
            before = model.quantity
            after = compute(before)
            result = self.session.execute(
                update(StockRecordModel)
                .where(StockRecordModel.id == model.id)
                .where(StockRecordModel.quantity == before)
                .values(quantity=after, updated_by_id=actor_id)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 1:
                return before, after
            logger.debug(
                "stock_cas_retry",
                extra={"item_ref": item_ref, "attempt": attempt},
            )
        logger.error(
            "stock_cas_exhausted",
            extra={"item_ref": item_ref, "attempts": self._attempts},
        )
        raise StockDecrementError(item_ref, self._attempts)
