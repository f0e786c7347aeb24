"""
settlement_services.settlement_service -- Settlement orchestration.

Responsibility:
    The single mutation entry point for terminals.  Owns transaction
    boundaries around the kernel's flush-only services, retries optimistic
    concurrency conflicts with a fresh read, delivers fulfillment triggers
    after the settlement commit, and notifies change listeners.

Architecture position:
    Services -- stateful orchestration over kernel + modules.  Composes
    SettlementProcessor, ObligationService, ObligationSelector and
    FulfillmentCoordinator.  Each terminal thread may share one instance;
    every call opens its own sessions from the factory.

Invariants enforced:
    - A settlement event commits entirely or not at all.
    - ConcurrentModificationError is retried up to ``max_apply_attempts``
      times, each time against a freshly loaded snapshot, never by blind
      overwrite.
    - Fulfillment runs only after the settlement transaction committed, in
      a separate transaction.  A fulfillment failure never rolls back or
      fails the settlement; the outbox row stays pending for
      ``redeliver_pending``.
    - Listeners run after commit; a failing listener is logged and the
      remaining listeners still run.

Failure modes:
    - Every SettlementKernelError from the processor propagates to the
      caller after rollback (logged as ``settlement_rejected``).
    - ConcurrentModificationError propagates once retries are exhausted.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Callable, Iterable, Mapping
from uuid import UUID, uuid4

from sqlalchemy import update
from sqlalchemy.orm import Session

from settlement_kernel.config import SettlementConfig
from settlement_kernel.db.engine import session_scope
from settlement_kernel.domain.clock import Clock, SystemClock
from settlement_kernel.domain.obligation import ConsumedLine, Obligation, ObligationKind
from settlement_kernel.domain.settlement import (
    FulfillmentTrigger,
    ObligationResult,
    SettlementEvent,
    SettlementEventKind,
)
from settlement_kernel.exceptions import ConcurrentModificationError, SettlementKernelError
from settlement_kernel.logging_config import LogContext, get_logger
from settlement_kernel.models.fulfillment import FulfillmentTriggerModel, TriggerStatus
from settlement_kernel.selectors.obligation_selector import ObligationSelector
from settlement_kernel.services.obligation_service import ObligationService
from settlement_kernel.services.settlement_processor import SettlementProcessor
from settlement_modules.inventory.coordinator import FulfillmentCoordinator
from settlement_modules.inventory.models import FulfillmentReport

logger = get_logger("services.settlement")

ChangeListener = Callable[[Obligation], None]


class SettlementService:
    """
    Applies settlement events and runs their side effects.

    Usage:
        service = SettlementService(get_session_factory(), clock, config)
        created = service.create_obligation(
            ObligationKind.BAR_ORDER, Decimal("700"), lines, "B-0042", actor_id,
        )
        event = SettlementEvent.of(
            created.obligation.id, {"cash": "500", "mpesa": "200"},
            actor_id=actor_id, occurred_at=clock.now(),
            aliases=config.tender_aliases,
        )
        result = service.apply(created.obligation.id, event)
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        clock: Clock | None = None,
        config: SettlementConfig | None = None,
        listeners: Iterable[ChangeListener] = (),
    ):
        self._session_factory = session_factory
        self._clock = clock or SystemClock()
        self._config = config or SettlementConfig.with_defaults()
        self._listeners: list[ChangeListener] = list(listeners)

    def add_listener(self, listener: ChangeListener) -> None:
        self._listeners.append(listener)

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    def create_obligation(
        self,
        kind: ObligationKind | str,
        total_due,
        lines: Iterable[ConsumedLine],
        reference: str | None,
        actor_id: UUID,
        opened_at=None,
    ) -> ObligationResult:
        """Open an obligation; a complimentary one is fulfilled at once."""
        with LogContext.bind(correlation_id=str(uuid4()), actor_id=actor_id):
            with session_scope(self._session_factory) as session:
                result = ObligationService(session, self._clock, self._config).create(
                    kind, total_due, lines, reference, actor_id, opened_at
                )
            if result.trigger is not None:
                self._deliver(result.trigger)
            self._notify(result.obligation)
            return result

    def apply(self, obligation_id: UUID, event: SettlementEvent) -> ObligationResult:
        """
        Apply ``event`` to the obligation, retrying version conflicts.

        Returns:
            ObligationResult; ``replayed`` is True when the event id had
            already been applied (no trigger, no listener call).
        """
        with LogContext.bind(
            correlation_id=str(uuid4()),
            obligation_id=obligation_id,
            event_id=event.event_id,
            actor_id=event.actor_id,
        ):
            result = self._apply_with_retry(obligation_id, event)
            logger.info(
                "settlement_applied",
                extra={
                    "event_kind": event.kind.value,
                    "state": result.obligation.state.value,
                    "amount_settled": result.obligation.amount_settled,
                    "outstanding_debt": result.obligation.outstanding_debt,
                    "version": result.obligation.version,
                    "replayed": result.replayed,
                    "fulfillment_raised": result.trigger is not None,
                },
            )
            if result.trigger is not None:
                self._deliver(result.trigger)
            if not result.replayed:
                self._notify(result.obligation)
            return result

    def redistribute(
        self,
        obligation_id: UUID,
        breakdown: Mapping[str, Decimal | str | int],
        actor_id: UUID,
        debtor_name: str | None = None,
        event_id: UUID | None = None,
    ) -> ObligationResult:
        """
        Re-split what was already recorded, e.g. cash that was really M-Pesa.

        ``breakdown`` is the complete new ledger, debt included.  It must keep
        the amount paid and the debt owed; the debt may move to another
        debtor.  Recorded as its own immutable event, so passing the same
        ``event_id`` again is a replay.

        Raises:
            RedistributionTotalsError: If the totals would change.
        """
        event = SettlementEvent.of(
            obligation_id,
            breakdown,
            actor_id=actor_id,
            occurred_at=self._clock.now(),
            debtor_name=debtor_name,
            event_id=event_id,
            aliases=self._config.tender_aliases,
            kind=SettlementEventKind.REDISTRIBUTION,
        )
        return self.apply(obligation_id, event)

    def redeliver_pending(self, limit: int = 100) -> list[FulfillmentReport]:
        """
        Deliver every outbox trigger still pending.

        Safe to run at any time, including concurrently with ``apply``:
        the inventory module processes each trigger id once.
        """
        session = self._session_factory()
        try:
            pending = ObligationSelector(session).pending_triggers(limit)
        finally:
            session.close()

        logger.info("fulfillment_redelivery_started", extra={"pending": len(pending)})
        reports = []
        for trigger in pending:
            report = self._deliver(trigger)
            if report is not None:
                reports.append(report)
        return reports

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _apply_with_retry(
        self, obligation_id: UUID, event: SettlementEvent
    ) -> ObligationResult:
        attempts = self._config.max_apply_attempts
        for attempt in range(1, attempts + 1):
            try:
                with session_scope(self._session_factory) as session:
                    processor = SettlementProcessor(session, self._clock, self._config)
                    return processor.apply(obligation_id, event)
            except ConcurrentModificationError as e:
                if attempt == attempts:
                    logger.warning(
                        "settlement_rejected",
                        extra={"code": e.code, "attempts": attempt},
                    )
                    raise
                logger.info(
                    "settlement_retry",
                    extra={"attempt": attempt, "expected_version": e.expected_version},
                )
            except SettlementKernelError as e:
                logger.warning(
                    "settlement_rejected",
                    extra={"code": e.code, "reason": str(e)},
                )
                raise
        raise AssertionError("unreachable")  # pragma: no cover

    def _deliver(self, trigger: FulfillmentTrigger) -> FulfillmentReport | None:
        with LogContext.bind(trigger_id=trigger.trigger_id):
            try:
                with session_scope(self._session_factory) as session:
                    report = FulfillmentCoordinator(
                        session, self._clock, self._config
                    ).on_fulfilled(trigger)
                    session.execute(
                        update(FulfillmentTriggerModel)
                        .where(FulfillmentTriggerModel.trigger_id == trigger.trigger_id)
                        .values(
                            status=TriggerStatus.DELIVERED.value,
                            delivered_at=self._clock.now(),
                            attempts=FulfillmentTriggerModel.attempts + 1,
                            last_error=None,
                        )
                        .execution_options(synchronize_session=False)
                    )
            except Exception as e:
                # The settlement is committed; the trigger stays pending.
                logger.error("fulfillment_delivery_failed", exc_info=True)
                self._record_delivery_failure(trigger, e)
                return None

            logger.info(
                "fulfillment_delivered",
                extra={"duplicate": report.duplicate},
            )
            return report

    def _record_delivery_failure(self, trigger: FulfillmentTrigger, error: Exception) -> None:
        try:
            with session_scope(self._session_factory) as session:
                session.execute(
                    update(FulfillmentTriggerModel)
                    .where(FulfillmentTriggerModel.trigger_id == trigger.trigger_id)
                    .values(
                        attempts=FulfillmentTriggerModel.attempts + 1,
                        last_error=f"{type(error).__name__}: {error}"[:500],
                    )
                    .execution_options(synchronize_session=False)
                )
        except Exception:
            logger.error("fulfillment_failure_not_recorded", exc_info=True)

    def _notify(self, obligation: Obligation) -> None:
        for listener in self._listeners:
            try:
                listener(obligation)
            except Exception:
                logger.error(
                    "change_listener_failed",
                    extra={"listener": getattr(listener, "__name__", repr(listener))},
                    exc_info=True,
                )
