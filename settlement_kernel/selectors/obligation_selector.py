"""
Module: settlement_kernel.selectors.obligation_selector
Responsibility: Read-only queries over obligations and the fulfillment
    outbox, returning domain snapshots.
Architecture position: Kernel > Selectors.

Invariants enforced:
    - Every returned Obligation passed the snapshot invariant checks; a
      corrupted row raises (MalformedLedgerError / LedgerInvariantError)
      instead of being skipped.
    - populate_existing is used on every load so a session that already
      holds a row never hands back stale money columns after a conditional
      UPDATE.
"""

from datetime import datetime
from uuid import UUID

from sqlalchemy import select

from settlement_kernel.domain.obligation import LifecycleState, Obligation
from settlement_kernel.domain.settlement import FulfillmentTrigger
from settlement_kernel.models.fulfillment import FulfillmentTriggerModel, TriggerStatus
from settlement_kernel.models.obligation import ObligationModel
from settlement_kernel.selectors.base import BaseSelector


class ObligationSelector(BaseSelector[ObligationModel]):
    """Obligation snapshots and pending fulfillment triggers."""

    def get(self, obligation_id: UUID) -> Obligation | None:
        model = self.session.execute(
            select(ObligationModel)
            .where(ObligationModel.id == obligation_id)
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if model is None:
            return None
        return model.to_dto(self._aliases)

    def opened_between(self, start: datetime, end: datetime) -> list[Obligation]:
        """Obligations with ``start <= opened_at < end``, oldest first."""
        models = self.session.execute(
            select(ObligationModel)
            .where(ObligationModel.opened_at >= start)
            .where(ObligationModel.opened_at < end)
            .order_by(ObligationModel.opened_at, ObligationModel.id)
            .execution_options(populate_existing=True)
        ).scalars().all()
        return [m.to_dto(self._aliases) for m in models]

    def debted(self) -> list[Obligation]:
        """Every obligation currently carrying debt, oldest first."""
        models = self.session.execute(
            select(ObligationModel)
            .where(ObligationModel.lifecycle_state == LifecycleState.DEBTED.value)
            .order_by(ObligationModel.opened_at, ObligationModel.id)
            .execution_options(populate_existing=True)
        ).scalars().all()
        return [m.to_dto(self._aliases) for m in models]

    def pending_triggers(self, limit: int = 100) -> list[FulfillmentTrigger]:
        """Outbox triggers not yet delivered, in the order they were raised."""
        models = self.session.execute(
            select(FulfillmentTriggerModel)
            .where(FulfillmentTriggerModel.status == TriggerStatus.PENDING.value)
            .order_by(FulfillmentTriggerModel.raised_at, FulfillmentTriggerModel.id)
            .limit(limit)
        ).scalars().all()
        return [m.to_dto() for m in models]
