"""
Tests for SettlementService orchestration.

Transaction boundaries, conflict retries, fulfillment delivery after the
settlement commit, outbox redelivery, and change listeners.
"""

from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy import select

from settlement_kernel.domain.obligation import ConsumedLine, LifecycleState, ObligationKind
from settlement_kernel.exceptions import (
    ConcurrentModificationError,
    InsufficientRemainingBalanceError,
    RedistributionTotalsError,
)
from settlement_kernel.models.fulfillment import FulfillmentTriggerModel, TriggerStatus
from settlement_kernel.models.settlement_event import SettlementEventModel
from settlement_kernel.selectors.obligation_selector import ObligationSelector
from settlement_kernel.services.settlement_processor import SettlementProcessor
from settlement_modules.inventory.coordinator import FulfillmentCoordinator
from settlement_modules.inventory.service import StockService
from settlement_services.settlement_service import SettlementService

TUSKER = "tusker-500ml"


@pytest.fixture
def stocked(session_factory, deterministic_clock, test_actor_id):
    """Register ten bottles of TUSKER and return a reader for its quantity."""
    s = session_factory()
    StockService(s, deterministic_clock).register(TUSKER, "Tusker 500ml", "10", test_actor_id)
    s.commit()
    s.close()

    def _quantity() -> Decimal:
        reader = session_factory()
        try:
            return StockService(reader).get(TUSKER).quantity
        finally:
            reader.close()

    return _quantity


@pytest.fixture
def bar_order(create_obligation):
    return create_obligation(
        "700",
        kind=ObligationKind.BAR_ORDER,
        lines=(ConsumedLine(TUSKER, Decimal("2"), Decimal("350")),),
    )


def _trigger_row(session_factory, obligation_id) -> FulfillmentTriggerModel:
    s = session_factory()
    try:
        return s.execute(
            select(FulfillmentTriggerModel).where(
                FulfillmentTriggerModel.obligation_id == obligation_id
            )
        ).scalar_one()
    finally:
        s.close()


class TestApply:

    def test_apply_commits(self, settlement_service, session_factory, create_obligation, make_event):
        obligation = create_obligation("1000")

        result = settlement_service.apply(obligation.id, make_event(obligation.id, {"cash": "250"}))

        s = session_factory()
        try:
            assert ObligationSelector(s).get(obligation.id) == result.obligation
        finally:
            s.close()

    def test_rejection_rolls_back_and_logs(
        self, settlement_service, session_factory, create_obligation, make_event, captured_logs
    ):
        obligation = create_obligation("1000")

        with pytest.raises(InsufficientRemainingBalanceError):
            settlement_service.apply(obligation.id, make_event(obligation.id, {"cash": "2000"}))

        s = session_factory()
        try:
            assert ObligationSelector(s).get(obligation.id).version == 1
        finally:
            s.close()
        rejected = [r for r in captured_logs() if r["message"] == "settlement_rejected"]
        assert rejected and rejected[0]["code"] == "INSUFFICIENT_REMAINING_BALANCE"

    def test_applied_log_carries_context(
        self, settlement_service, create_obligation, make_event, captured_logs
    ):
        obligation = create_obligation("1000")
        event = make_event(obligation.id, {"cash": "1000"})

        settlement_service.apply(obligation.id, event)

        applied = next(r for r in captured_logs() if r["message"] == "settlement_applied")
        assert applied["obligation_id"] == str(obligation.id)
        assert applied["event_id"] == str(event.event_id)
        assert applied["state"] == "settled"
        assert applied["fulfillment_raised"] is True


class TestRedistribute:
    """Correcting how a recorded amount was paid."""

    def test_resplit_settled_order(
        self, settlement_service, session_factory, stocked, bar_order, make_event, test_actor_id
    ):
        paid = settlement_service.apply(bar_order.id, make_event(bar_order.id, {"cash": "700"}))

        result = settlement_service.redistribute(
            bar_order.id, {"mpesa": "500", "cash": "200"}, test_actor_id
        )

        assert result.obligation.ledger.encode() == "mobile:500,cash:200"
        assert result.obligation.state is LifecycleState.SETTLED
        assert result.obligation.amount_settled == paid.obligation.amount_settled
        assert result.obligation.version == paid.obligation.version + 1
        assert result.trigger is None
        assert stocked() == Decimal("8")

        s = session_factory()
        try:
            assert ObligationSelector(s).get(bar_order.id) == result.obligation
            kinds = s.execute(
                select(SettlementEventModel.event_kind)
                .where(SettlementEventModel.obligation_id == bar_order.id)
                .order_by(SettlementEventModel.resulting_version)
            ).scalars().all()
        finally:
            s.close()
        assert kinds == ["payment", "redistribution"]

    def test_moves_debt_to_another_debtor(
        self, settlement_service, create_obligation, make_event, test_actor_id
    ):
        obligation = create_obligation("500")
        settlement_service.apply(
            obligation.id,
            make_event(obligation.id, {"cash": "300", "debt": "200"}, debtor_name="Room 12"),
        )

        result = settlement_service.redistribute(
            obligation.id, {"cash": "300", "debt": "200"}, test_actor_id, debtor_name="Mr. Otieno"
        )

        assert result.obligation.state is LifecycleState.DEBTED
        assert result.obligation.debtor_name == "Mr. Otieno"
        assert result.obligation.outstanding_debt == Decimal("200")

    def test_same_event_id_replays(
        self, settlement_service, create_obligation, make_event, test_actor_id
    ):
        obligation = create_obligation("1000")
        settlement_service.apply(obligation.id, make_event(obligation.id, {"cash": "1000"}))
        event_id = uuid4()

        first = settlement_service.redistribute(
            obligation.id, {"card": "1000"}, test_actor_id, event_id=event_id
        )
        replay = settlement_service.redistribute(
            obligation.id, {"kcb": "1000"}, test_actor_id, event_id=event_id
        )

        assert replay.replayed
        assert replay.obligation == first.obligation

    def test_changed_totals_rejected_and_logged(
        self, settlement_service, session_factory, create_obligation, make_event,
        test_actor_id, captured_logs,
    ):
        obligation = create_obligation("1000")
        paid = settlement_service.apply(obligation.id, make_event(obligation.id, {"cash": "1000"}))

        with pytest.raises(RedistributionTotalsError):
            settlement_service.redistribute(obligation.id, {"cash": "900"}, test_actor_id)

        s = session_factory()
        try:
            assert ObligationSelector(s).get(obligation.id) == paid.obligation
        finally:
            s.close()
        rejected = [r for r in captured_logs() if r["message"] == "settlement_rejected"]
        assert rejected[-1]["code"] == "REDISTRIBUTION_TOTALS_CHANGED"

    def test_listeners_see_new_breakdown(
        self, settlement_service, create_obligation, make_event, test_actor_id
    ):
        obligation = create_obligation("1000")
        settlement_service.apply(obligation.id, make_event(obligation.id, {"cash": "1000"}))
        seen = []
        settlement_service.add_listener(seen.append)

        settlement_service.redistribute(obligation.id, {"mpesa": "1000"}, test_actor_id)

        assert [o.ledger.encode() for o in seen] == ["mobile:1000"]


class TestRetry:
    """Version conflicts are retried against a fresh snapshot."""

    def test_conflict_retried(
        self, settlement_service, create_obligation, make_event, monkeypatch, captured_logs
    ):
        obligation = create_obligation("1000")
        original = SettlementProcessor.apply
        calls = []

        def flaky(self, obligation_id, event):
            calls.append(obligation_id)
            if len(calls) == 1:
                raise ConcurrentModificationError(str(obligation_id), 1)
            return original(self, obligation_id, event)

        monkeypatch.setattr(SettlementProcessor, "apply", flaky)

        result = settlement_service.apply(obligation.id, make_event(obligation.id, {"cash": "100"}))

        assert len(calls) == 2
        assert result.obligation.amount_settled == Decimal("100")
        assert any(r["message"] == "settlement_retry" for r in captured_logs())

    def test_conflict_exhausts_attempts(
        self, settlement_service, settlement_config, create_obligation, make_event, monkeypatch
    ):
        obligation = create_obligation("1000")
        calls = []

        def always_conflicts(self, obligation_id, event):
            calls.append(obligation_id)
            raise ConcurrentModificationError(str(obligation_id), 1)

        monkeypatch.setattr(SettlementProcessor, "apply", always_conflicts)

        with pytest.raises(ConcurrentModificationError):
            settlement_service.apply(obligation.id, make_event(obligation.id, {"cash": "100"}))
        assert len(calls) == settlement_config.max_apply_attempts


class TestFulfillment:
    """Stock leaves inventory once, after the settlement commits."""

    def test_settling_decrements_stock(
        self, settlement_service, session_factory, stocked, bar_order, make_event
    ):
        settlement_service.apply(bar_order.id, make_event(bar_order.id, {"cash": "300"}))
        assert stocked() == Decimal("10")

        settlement_service.apply(bar_order.id, make_event(bar_order.id, {"mpesa": "400"}))

        assert stocked() == Decimal("8")
        row = _trigger_row(session_factory, bar_order.id)
        assert row.status == TriggerStatus.DELIVERED.value
        assert row.attempts == 1

    def test_replay_does_not_decrement_again(
        self, settlement_service, stocked, bar_order, make_event
    ):
        event = make_event(bar_order.id, {"cash": "700"})
        settlement_service.apply(bar_order.id, event)
        replay = settlement_service.apply(bar_order.id, event)

        assert replay.replayed
        assert stocked() == Decimal("8")

    def test_complimentary_order_fulfilled_on_create(
        self, settlement_service, stocked, test_actor_id
    ):
        result = settlement_service.create_obligation(
            ObligationKind.BAR_ORDER,
            "0",
            (ConsumedLine(TUSKER, Decimal("3")),),
            "COMP-7",
            test_actor_id,
        )

        assert result.obligation.state is LifecycleState.SETTLED
        assert stocked() == Decimal("7")

    def test_failed_delivery_keeps_settlement(
        self,
        settlement_service,
        session_factory,
        stocked,
        bar_order,
        make_event,
        monkeypatch,
        captured_logs,
    ):
        def broken(self, trigger):
            raise RuntimeError("stock database unavailable")

        monkeypatch.setattr(FulfillmentCoordinator, "on_fulfilled", broken)

        result = settlement_service.apply(bar_order.id, make_event(bar_order.id, {"cash": "700"}))

        assert result.obligation.state is LifecycleState.SETTLED
        assert stocked() == Decimal("10")
        row = _trigger_row(session_factory, bar_order.id)
        assert row.status == TriggerStatus.PENDING.value
        assert row.attempts == 1
        assert row.last_error == "RuntimeError: stock database unavailable"
        assert any(r["message"] == "fulfillment_delivery_failed" for r in captured_logs())

    def test_redeliver_pending(
        self, settlement_service, session_factory, stocked, bar_order, make_event, monkeypatch
    ):
        def broken(self, trigger):
            raise RuntimeError("down")

        with monkeypatch.context() as m:
            m.setattr(FulfillmentCoordinator, "on_fulfilled", broken)
            settlement_service.apply(bar_order.id, make_event(bar_order.id, {"cash": "700"}))

        reports = settlement_service.redeliver_pending()

        assert len(reports) == 1
        assert not reports[0].duplicate
        assert stocked() == Decimal("8")
        assert _trigger_row(session_factory, bar_order.id).status == TriggerStatus.DELIVERED.value
        assert settlement_service.redeliver_pending() == []


class TestListeners:

    def test_listener_sees_committed_snapshot(
        self, settlement_service, session_factory, create_obligation, make_event
    ):
        obligation = create_obligation("1000")
        seen = []

        def listener(snapshot):
            s = session_factory()
            try:
                seen.append((snapshot, ObligationSelector(s).get(snapshot.id)))
            finally:
                s.close()

        settlement_service.add_listener(listener)
        settlement_service.apply(obligation.id, make_event(obligation.id, {"cash": "10"}))

        assert len(seen) == 1
        notified, committed = seen[0]
        assert notified == committed
        assert notified.version == 2

    def test_failing_listener_does_not_block_others(
        self, session_factory, deterministic_clock, settlement_config,
        create_obligation, make_event, captured_logs,
    ):
        seen = []

        def broken(snapshot):
            raise RuntimeError("display offline")

        service = SettlementService(
            session_factory,
            deterministic_clock,
            settlement_config,
            listeners=[broken, seen.append],
        )
        obligation = create_obligation("1000")

        result = service.apply(obligation.id, make_event(obligation.id, {"cash": "10"}))

        assert seen == [result.obligation]
        assert any(r["message"] == "change_listener_failed" for r in captured_logs())

    def test_replay_not_notified(self, settlement_service, create_obligation, make_event):
        obligation = create_obligation("1000")
        seen = []
        settlement_service.add_listener(seen.append)
        event = make_event(obligation.id, {"cash": "10"})

        settlement_service.apply(obligation.id, event)
        settlement_service.apply(obligation.id, event)

        assert len(seen) == 1
