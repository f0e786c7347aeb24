"""
ObligationService -- creates payable obligations.

Responsibility:
    Opens a new obligation (restaurant order, bar order, room booking,
    supply delivery) with its consumed lines.  A complimentary obligation
    (total due of zero) is born SETTLED and raises its fulfillment trigger
    immediately, since no payment will ever arrive to raise it.

Architecture position:
    Kernel > Services -- imperative shell.  Flushes only.

Failure modes:
    - ValueError: negative or float total, too many decimal places, or an
      invalid line.
"""

from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime
from decimal import Decimal
from uuid import UUID, uuid4

from sqlalchemy.orm import Session

from settlement_kernel.config import SettlementConfig
from settlement_kernel.domain.clock import Clock
from settlement_kernel.domain.obligation import (
    ConsumedLine,
    LifecycleState,
    Obligation,
    ObligationKind,
)
from settlement_kernel.domain.settlement import FulfillmentTrigger, ObligationResult
from settlement_kernel.domain.tender import ZERO, TenderLedger
from settlement_kernel.logging_config import get_logger
from settlement_kernel.models.fulfillment import FulfillmentTriggerModel
from settlement_kernel.models.obligation import ObligationModel
from settlement_kernel.services.base import BaseService

logger = get_logger("services.obligation")


class ObligationService(BaseService[ObligationModel]):
    """Creates obligations at version 1."""

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        config: SettlementConfig | None = None,
    ):
        super().__init__(session, clock, config)

    def create(
        self,
        kind: ObligationKind | str,
        total_due: Decimal | str | int,
        lines: Iterable[ConsumedLine],
        reference: str | None,
        actor_id: UUID,
        opened_at: datetime | None = None,
    ) -> ObligationResult:
        """
        Insert a new obligation.

        Postconditions:
            - The obligation is OPEN with nothing settled, or SETTLED and
              fulfilled when ``total_due`` is zero; in that case the
              returned result carries the trigger and an outbox row is
              pending.
        """
        total = _coerce_total(total_due, self._config.amount_places)
        kind = ObligationKind(kind)
        lines = tuple(lines)
        complimentary = total == ZERO

        obligation = Obligation(
            id=uuid4(),
            kind=kind,
            total_due=total,
            amount_settled=ZERO,
            ledger=TenderLedger.empty(),
            state=LifecycleState.SETTLED if complimentary else LifecycleState.OPEN,
            version=1,
            opened_at=opened_at or self._clock.now(),
            fulfilled=complimentary,
            reference=reference,
            lines=lines,
        )
        self.session.add(ObligationModel.from_dto(obligation, created_by_id=actor_id))

        trigger = None
        if complimentary:
            trigger = FulfillmentTrigger.for_obligation(obligation, event_id=None)
            self.session.add(
                FulfillmentTriggerModel.from_dto(trigger, raised_at=self._clock.now())
            )
        self.session.flush()

        logger.info(
            "obligation_created",
            extra={
                "obligation_id": str(obligation.id),
                "kind": kind.value,
                "total_due": total,
                "line_count": len(lines),
                "complimentary": complimentary,
            },
        )
        return ObligationResult(obligation=obligation, event_id=None, trigger=trigger)


def _coerce_total(value: Decimal | str | int, places: int) -> Decimal:
    if isinstance(value, (float, bool)):
        raise ValueError("total_due must be a Decimal, str or int, not a float")
    total = value if isinstance(value, Decimal) else Decimal(str(value))
    if not total.is_finite() or total < ZERO:
        raise ValueError(f"total_due must be a non-negative amount, got {value!r}")
    if total.as_tuple().exponent < -places:
        raise ValueError(f"total_due {value!r} has more than {places} decimal places")
    return total
