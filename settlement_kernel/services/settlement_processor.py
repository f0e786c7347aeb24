"""
SettlementProcessor -- applies settlement events to persisted obligations.

Responsibility:
    Loads an obligation snapshot, validates a SettlementEvent against it
    through the pure state machine, and persists the result with an
    optimistic-concurrency conditional write.  Records every applied event
    for idempotent replay and writes the fulfillment outbox row when the
    obligation first becomes SETTLED.

Architecture position:
    Kernel > Services -- imperative shell around
    ``settlement_kernel.domain.state_machine``.  Called by
    ``settlement_services.SettlementService``, which owns the transaction.

Invariants enforced:
    - All validation happens before any write; a rejected event leaves the
      obligation untouched.
    - The obligation row changes only through
      ``UPDATE obligations ... WHERE id = :id AND version = :v``; a stale
      snapshot never overwrites a newer one.
    - An event id is applied at most once per obligation (unique
      idempotency key + payload hash).
    - The fulfillment trigger is raised by exactly one application: the
      ``fulfilled`` flag flips inside the same conditional write.

Failure modes:
    - ObligationNotFoundError: unknown obligation id.
    - EventPayloadMismatchError: event id reused with a different payload.
    - ConcurrentModificationError: version moved since the snapshot was read,
      or a concurrent writer recorded the same event first.
    - Any validation/state error from ``plan_event``.

Usage:
    processor = SettlementProcessor(session, clock, config)
    result = processor.apply(obligation_id, event)
    session.commit()
"""

from __future__ import annotations

from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from settlement_kernel.config import SettlementConfig
from settlement_kernel.domain.clock import Clock
from settlement_kernel.domain.obligation import Obligation
from settlement_kernel.domain.settlement import (
    FulfillmentTrigger,
    ObligationResult,
    SettlementEvent,
)
from settlement_kernel.domain.state_machine import plan_event
from settlement_kernel.exceptions import (
    ConcurrentModificationError,
    EventPayloadMismatchError,
    ObligationNotFoundError,
)
from settlement_kernel.logging_config import get_logger
from settlement_kernel.models.fulfillment import FulfillmentTriggerModel
from settlement_kernel.models.obligation import ObligationModel
from settlement_kernel.models.settlement_event import SettlementEventModel
from settlement_kernel.selectors.obligation_selector import ObligationSelector
from settlement_kernel.services.base import BaseService
from settlement_kernel.utils.hashing import hash_settlement_event
from settlement_kernel.utils.idempotency import generate_idempotency_key

logger = get_logger("services.settlement_processor")


class SettlementProcessor(BaseService[ObligationModel]):
    """
    Applies settlement events with optimistic concurrency.

    Contract:
        Flushes only.  The caller commits on success and rolls back on any
        exception, so one event is all-or-nothing.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        config: SettlementConfig | None = None,
    ):
        super().__init__(session, clock, config)
        self._selector = ObligationSelector(session, self._config.tender_aliases)

    def load(self, obligation_id: UUID) -> Obligation:
        """
        Read the current snapshot of an obligation.

        Raises:
            ObligationNotFoundError: If no obligation has this id.
        """
        obligation = self._selector.get(obligation_id)
        if obligation is None:
            raise ObligationNotFoundError(str(obligation_id))
        return obligation

    def apply(self, obligation_id: UUID, event: SettlementEvent) -> ObligationResult:
        """Load the current snapshot and apply ``event`` to it."""
        return self.apply_to(self.load(obligation_id), event)

    def apply_to(self, snapshot: Obligation, event: SettlementEvent) -> ObligationResult:
        """
        Apply ``event`` to the obligation as of ``snapshot``.

        Preconditions:
            - ``snapshot`` was read from the database (its version matters).

        Postconditions:
            - On success the obligation row is one version ahead, the event
              row is recorded, and (if first settled) the outbox row exists.
            - On replay nothing is written and ``replayed`` is True.
        """
        if event.obligation_id != snapshot.id:
            raise ValueError(
                f"Event {event.event_id} targets {event.obligation_id}, not {snapshot.id}"
            )
        # Aliases first, so "mpesa" and "mobile" are one kind in every check
        event = event.canonical(self._config.tender_aliases)
        key = generate_idempotency_key(snapshot.id, event.event_id)
        payload_hash = hash_settlement_event(
            event.obligation_id,
            ((e.key, e.amount) for e in event.entries),
            event.debtor_name,
            event.kind.value,
        )

        recorded = self._recorded_event(key)
        if recorded is not None:
            if recorded.payload_hash != payload_hash:
                logger.warning(
                    "settlement_event_payload_mismatch",
                    extra={"idempotency_key": key},
                )
                raise EventPayloadMismatchError(
                    str(event.event_id), recorded.payload_hash, payload_hash
                )
            logger.info(
                "settlement_event_replayed",
                extra={
                    "idempotency_key": key,
                    "resulting_version": recorded.resulting_version,
                },
            )
            return ObligationResult(
                obligation=self.load(snapshot.id),
                event_id=event.event_id,
                trigger=None,
                replayed=True,
            )

        transition = plan_event(snapshot, event, self._config.amount_places)
        updated = transition.apply(snapshot)

        result = self.session.execute(
            update(ObligationModel)
            .where(ObligationModel.id == snapshot.id)
            .where(ObligationModel.version == snapshot.version)
            .values(
                amount_settled=updated.amount_settled,
                tender_ledger=updated.ledger.encode(),
                debtor_name=updated.debtor_name,
                lifecycle_state=updated.state.value,
                fulfilled=updated.fulfilled,
                version=ObligationModel.version + 1,
                updated_by_id=event.actor_id,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            logger.info(
                "settlement_version_conflict",
                extra={"expected_version": snapshot.version},
            )
            raise ConcurrentModificationError(str(snapshot.id), snapshot.version)

        now = self._clock.now()
        trigger = None
        if transition.raises_fulfillment:
            trigger = FulfillmentTrigger.for_obligation(updated, event.event_id)
            self.session.add(FulfillmentTriggerModel.from_dto(trigger, raised_at=now))

        self.session.add(
            SettlementEventModel(
                idempotency_key=key,
                event_id=event.event_id,
                obligation_id=snapshot.id,
                event_kind=event.kind.value,
                payload_hash=payload_hash,
                tenders=event.tenders,
                debtor_name=event.debtor_name,
                actor_id=event.actor_id,
                occurred_at=event.occurred_at,
                recorded_at=now,
                resulting_state=updated.state.value,
                resulting_version=updated.version,
                trigger_id=trigger.trigger_id if trigger else None,
            )
        )
        try:
            self.session.flush()
        except IntegrityError as e:
            # Another writer recorded this event id (or trigger) first
            logger.warning(
                "settlement_event_insert_conflict",
                extra={"idempotency_key": key},
            )
            raise ConcurrentModificationError(str(snapshot.id), snapshot.version) from e

        logger.info(
            "settlement_event_recorded",
            extra={
                "event_kind": event.kind.value,
                "from_state": transition.from_state.value,
                "to_state": transition.to_state.value,
                "paid": event.paid_total,
                "debt_added": transition.debt_added,
                "debt_cleared": transition.debt_cleared,
                "version": updated.version,
                "fulfillment_raised": trigger is not None,
            },
        )
        return ObligationResult(
            obligation=updated,
            event_id=event.event_id,
            trigger=trigger,
        )

    def _recorded_event(self, idempotency_key: str) -> SettlementEventModel | None:
        return self.session.execute(
            select(SettlementEventModel).where(
                SettlementEventModel.idempotency_key == idempotency_key
            )
        ).scalar_one_or_none()
