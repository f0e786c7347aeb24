"""
Fulfillment Coordinator (``settlement_modules.inventory.coordinator``).

Responsibility
--------------
Consumes fulfillment triggers: when an obligation is fully settled, the
stock of every item it consumed is decremented, once.

Architecture
------------
Layer: **Modules** -- side-effect handler.  Runs after the settlement
transaction has committed, in its own transaction owned by the caller
(``SettlementService``).  Never touches obligation money columns.

Invariants
----------
- Exactly-once effect per trigger id: the trigger is claimed in
  ``inventory_processed_triggers`` in the same transaction as the
  decrements, so a redelivered trigger finds its claim and does nothing,
  and a failed delivery leaves no claim behind.
- Stock never goes negative (see ``StockService.decrement``).

Failure Modes
-------------
- ``StockDecrementError`` when a compare-and-set write keeps losing; the
  caller rolls back and the trigger stays pending.
- ``IntegrityError`` when two deliveries of one trigger race to claim it;
  the loser rolls back and its redelivery reports a duplicate.
- Short stock and unknown items are logged, never raised.
"""

from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.orm import Session

from settlement_kernel.config import SettlementConfig
from settlement_kernel.domain.clock import Clock, SystemClock
from settlement_kernel.domain.settlement import FulfillmentTrigger
from settlement_kernel.logging_config import LogContext, get_logger
from settlement_modules.inventory.models import FulfillmentReport
from settlement_modules.inventory.orm import ProcessedTriggerModel
from settlement_modules.inventory.service import StockService

logger = get_logger("modules.inventory.coordinator")


class FulfillmentCoordinator:
    """Applies the stock side effect of fulfilled obligations."""

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        config: SettlementConfig | None = None,
    ):
        self.session = session
        self._clock = clock or SystemClock()
        self._stock = StockService(session, self._clock, config)

    def on_fulfilled(self, trigger: FulfillmentTrigger) -> FulfillmentReport:
        """
        Decrement stock for every line of ``trigger``.

        Postconditions:
            - On first delivery the trigger is claimed and each known item
              is decremented by its committed quantity, clamped at zero.
            - On redelivery nothing changes and ``duplicate`` is True.
        """
        with LogContext.bind(
            trigger_id=trigger.trigger_id,
            obligation_id=trigger.obligation_id,
        ):
            if self._already_processed(trigger):
                logger.info("fulfillment_trigger_duplicate")
                return FulfillmentReport(
                    trigger_id=trigger.trigger_id,
                    obligation_id=trigger.obligation_id,
                    duplicate=True,
                )

            self.session.add(
                ProcessedTriggerModel(
                    trigger_id=trigger.trigger_id,
                    obligation_id=trigger.obligation_id,
                    processed_at=self._clock.now(),
                    line_count=len(trigger.lines),
                )
            )
            self.session.flush()

            movements = []
            missing = []
            for line in trigger.lines:
                movement = self._stock.decrement(line.item_ref, line.quantity)
                if movement is None:
                    logger.warning(
                        "stock_record_missing",
                        extra={"item_ref": line.item_ref, "quantity": line.quantity},
                    )
                    missing.append(line.item_ref)
                    continue
                if movement.shortfall > 0:
                    logger.warning(
                        "stock_shortfall",
                        extra={
                            "item_ref": line.item_ref,
                            "requested": movement.requested,
                            "on_hand": movement.before,
                            "shortfall": movement.shortfall,
                        },
                    )
                movements.append(movement)

            self.session.flush()
            logger.info(
                "fulfillment_applied",
                extra={
                    "decremented": len(movements),
                    "missing": len(missing),
                },
            )
            return FulfillmentReport(
                trigger_id=trigger.trigger_id,
                obligation_id=trigger.obligation_id,
                movements=tuple(movements),
                missing_items=tuple(missing),
            )

    def _already_processed(self, trigger: FulfillmentTrigger) -> bool:
        return self.session.execute(
            select(ProcessedTriggerModel.id).where(
                ProcessedTriggerModel.trigger_id == trigger.trigger_id
            )
        ).first() is not None
