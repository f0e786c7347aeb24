"""
Tests for SettlementProcessor.

Covers the single-event contract: validation before any write, the
conditional version write, the event record used for idempotent replay,
and the fulfillment outbox row written by the settling application.
"""

from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy import func, select

from settlement_kernel.domain.obligation import ConsumedLine, LifecycleState, ObligationKind
from settlement_kernel.domain.settlement import SettlementEvent, SettlementEventKind
from settlement_kernel.exceptions import (
    AlreadySettledError,
    ConcurrentModificationError,
    DebtorMismatchError,
    DebtorNameRequiredError,
    DuplicateTenderKindError,
    EventPayloadMismatchError,
    InsufficientRemainingBalanceError,
    InvalidTenderAmountError,
    ObligationNotFoundError,
    RedistributionTotalsError,
)
from settlement_kernel.models.fulfillment import FulfillmentTriggerModel, TriggerStatus
from settlement_kernel.models.settlement_event import SettlementEventModel
from settlement_kernel.services.settlement_processor import SettlementProcessor


@pytest.fixture
def processor(session, deterministic_clock, settlement_config):
    return SettlementProcessor(session, deterministic_clock, settlement_config)


def _event_count(session) -> int:
    return session.execute(select(func.count()).select_from(SettlementEventModel)).scalar_one()


def _triggers(session) -> list[FulfillmentTriggerModel]:
    return list(session.execute(select(FulfillmentTriggerModel)).scalars().all())


class TestApply:
    """Happy paths through the lifecycle."""

    def test_partial_payment(self, processor, create_obligation, make_event):
        obligation = create_obligation("1000")

        result = processor.apply(obligation.id, make_event(obligation.id, {"cash": "400"}))

        assert result.obligation.state is LifecycleState.PARTIALLY_SETTLED
        assert result.obligation.amount_settled == Decimal("400")
        assert result.obligation.remaining_balance == Decimal("600")
        assert result.obligation.version == 2
        assert result.trigger is None
        assert not result.replayed

    def test_mixed_tenders_settle_and_raise_trigger(
        self, session, processor, create_obligation, make_event
    ):
        obligation = create_obligation("2000")

        processor.apply(obligation.id, make_event(obligation.id, {"mpesa": "1500"}))
        result = processor.apply(obligation.id, make_event(obligation.id, {"cash": "500"}))

        assert result.obligation.state is LifecycleState.SETTLED
        assert result.obligation.ledger.encode() == "mobile:1500,cash:500"
        assert result.obligation.fulfilled
        assert result.trigger is not None
        assert result.trigger.obligation_id == obligation.id

        rows = _triggers(session)
        assert len(rows) == 1
        assert rows[0].status == TriggerStatus.PENDING.value
        assert rows[0].trigger_id == result.trigger.trigger_id

    def test_persisted_snapshot_matches_result(
        self, session, processor, create_obligation, make_event
    ):
        obligation = create_obligation("1000")
        result = processor.apply(
            obligation.id, make_event(obligation.id, {"card": "250.50"})
        )
        session.commit()

        assert processor.load(obligation.id) == result.obligation

    def test_trigger_carries_consumed_lines(self, processor, create_obligation, make_event):
        obligation = create_obligation(
            "700",
            kind=ObligationKind.BAR_ORDER,
            lines=(ConsumedLine("tusker-500ml", Decimal("2"), Decimal("350")),),
        )

        result = processor.apply(obligation.id, make_event(obligation.id, {"cash": "700"}))

        assert [(l.item_ref, l.quantity) for l in result.trigger.lines] == [
            ("tusker-500ml", Decimal("2"))
        ]

    def test_alias_resolved_in_stored_ledger(
        self, processor, create_obligation, deterministic_clock, test_actor_id
    ):
        obligation = create_obligation("1000")
        event = SettlementEvent.of(
            obligation.id,
            {"mpesa": "100"},
            actor_id=test_actor_id,
            occurred_at=deterministic_clock.now(),
        )

        result = processor.apply(obligation.id, event)

        assert result.obligation.ledger.encode() == "mobile:100"
        assert processor.load(obligation.id).ledger == result.obligation.ledger

    def test_event_row_records_outcome(self, session, processor, create_obligation, make_event):
        obligation = create_obligation("1000")
        event = make_event(obligation.id, {"cash": "1000"})

        result = processor.apply(obligation.id, event)

        row = session.execute(select(SettlementEventModel)).scalar_one()
        assert row.event_id == event.event_id
        assert row.tenders == "cash:1000"
        assert row.resulting_state == LifecycleState.SETTLED.value
        assert row.resulting_version == 2
        assert row.trigger_id == result.trigger.trigger_id


class TestDebt:
    """Debt recording and clearing."""

    def test_debt_with_payment(self, processor, create_obligation, make_event):
        obligation = create_obligation("500")

        result = processor.apply(
            obligation.id,
            make_event(obligation.id, {"debt": "200", "cash": "300"}, debtor_name="X"),
        )

        assert result.obligation.state is LifecycleState.DEBTED
        assert result.obligation.amount_settled == Decimal("300")
        assert result.obligation.outstanding_debt == Decimal("200")
        assert result.obligation.debtor_name == "X"

    def test_payment_clears_debt_and_settles(self, processor, create_obligation, make_event):
        obligation = create_obligation("500")
        processor.apply(
            obligation.id,
            make_event(obligation.id, {"debt": "200", "cash": "300"}, debtor_name="X"),
        )

        result = processor.apply(obligation.id, make_event(obligation.id, {"mobile": "200"}))

        assert result.obligation.state is LifecycleState.SETTLED
        assert result.obligation.debtor_name is None
        assert result.obligation.outstanding_debt == 0
        assert result.obligation.ledger.encode() == "cash:300,mobile:200"
        assert result.trigger is not None

    def test_debt_without_name_rejected(self, processor, create_obligation, make_event):
        obligation = create_obligation("500")

        with pytest.raises(DebtorNameRequiredError):
            processor.apply(obligation.id, make_event(obligation.id, {"debt": "500"}))

    def test_second_debtor_rejected(self, processor, create_obligation, make_event):
        obligation = create_obligation("500")
        processor.apply(
            obligation.id, make_event(obligation.id, {"debt": "200"}, debtor_name="X")
        )

        with pytest.raises(DebtorMismatchError):
            processor.apply(
                obligation.id, make_event(obligation.id, {"debt": "100"}, debtor_name="Y")
            )


class TestRejections:
    """Rejected events leave the obligation untouched."""

    def test_overpayment_rejected(self, session, processor, create_obligation, make_event):
        obligation = create_obligation("1000")

        with pytest.raises(InsufficientRemainingBalanceError):
            processor.apply(obligation.id, make_event(obligation.id, {"cash": "1000.01"}))

        assert processor.load(obligation.id) == obligation
        assert _event_count(session) == 0

    def test_settled_obligation_rejects_payment(self, processor, create_obligation, make_event):
        obligation = create_obligation("100")
        processor.apply(obligation.id, make_event(obligation.id, {"cash": "100"}))

        with pytest.raises(AlreadySettledError):
            processor.apply(obligation.id, make_event(obligation.id, {"cash": "1"}))

    def test_duplicate_label_rejected(self, processor, create_obligation, make_event):
        obligation = create_obligation("1000")
        event = make_event(obligation.id, [("mpesa", "100"), ("mobile", "100")])

        with pytest.raises(DuplicateTenderKindError):
            processor.apply(obligation.id, event)

    def test_aliases_applied_to_events_built_without_them(
        self, session, processor, create_obligation, deterministic_clock, test_actor_id
    ):
        obligation = create_obligation("1000")
        event = SettlementEvent.of(
            obligation.id,
            {"mpesa": "100", "mobile": "50"},
            actor_id=test_actor_id,
            occurred_at=deterministic_clock.now(),
        )

        with pytest.raises(DuplicateTenderKindError):
            processor.apply(obligation.id, event)

        assert _event_count(session) == 0

    def test_too_many_places_rejected(self, processor, create_obligation, make_event):
        obligation = create_obligation("1000")

        with pytest.raises(InvalidTenderAmountError):
            processor.apply(obligation.id, make_event(obligation.id, {"cash": "1.005"}))

    def test_unknown_obligation(self, processor, make_event):
        missing = uuid4()

        with pytest.raises(ObligationNotFoundError):
            processor.apply(missing, make_event(missing, {"cash": "1"}))

    def test_event_for_other_obligation(self, processor, create_obligation, make_event):
        first = create_obligation("100")
        second = create_obligation("100")

        with pytest.raises(ValueError):
            processor.apply(first.id, make_event(second.id, {"cash": "1"}))


class TestIdempotency:
    """The same event id is applied at most once."""

    def test_replay_returns_current_snapshot(
        self, session, processor, create_obligation, make_event
    ):
        obligation = create_obligation("1000")
        event = make_event(obligation.id, {"cash": "1000"})
        first = processor.apply(obligation.id, event)

        replay = processor.apply(obligation.id, event)

        assert replay.replayed
        assert replay.trigger is None
        assert replay.obligation == first.obligation
        assert _event_count(session) == 1
        assert len(_triggers(session)) == 1

    def test_equal_amounts_in_other_notation_replay(
        self, processor, create_obligation, make_event
    ):
        obligation = create_obligation("1000")
        event_id = uuid4()
        processor.apply(
            obligation.id, make_event(obligation.id, {"cash": "500"}, event_id=event_id)
        )

        replay = processor.apply(
            obligation.id, make_event(obligation.id, {"cash": "500.00"}, event_id=event_id)
        )

        assert replay.replayed
        assert replay.obligation.amount_settled == Decimal("500")

    def test_reused_event_id_with_other_payload(
        self, processor, create_obligation, make_event
    ):
        obligation = create_obligation("1000")
        event_id = uuid4()
        processor.apply(
            obligation.id, make_event(obligation.id, {"cash": "500"}, event_id=event_id)
        )

        with pytest.raises(EventPayloadMismatchError):
            processor.apply(
                obligation.id, make_event(obligation.id, {"cash": "400"}, event_id=event_id)
            )

    def test_replay_logged(self, processor, create_obligation, make_event, captured_logs):
        obligation = create_obligation("1000")
        event = make_event(obligation.id, {"cash": "10"})
        processor.apply(obligation.id, event)
        processor.apply(obligation.id, event)

        messages = [r["message"] for r in captured_logs()]
        assert "settlement_event_recorded" in messages
        assert "settlement_event_replayed" in messages


class TestVersionCheck:
    """A stale snapshot never overwrites a newer version."""

    def test_stale_snapshot_conflicts(self, session, processor, create_obligation, make_event):
        obligation = create_obligation("1000")
        stale = processor.load(obligation.id)
        processor.apply(obligation.id, make_event(obligation.id, {"cash": "600"}))

        with pytest.raises(ConcurrentModificationError) as exc_info:
            processor.apply_to(stale, make_event(obligation.id, {"cash": "600"}))

        assert exc_info.value.expected_version == 1
        current = processor.load(obligation.id)
        assert current.amount_settled == Decimal("600")
        assert current.version == 2


class TestRedistribution:
    """A redistribution replaces the breakdown under the same version check."""

    def _redistribution(self, obligation_id, tenders, deterministic_clock, test_actor_id,
                        debtor_name=None, event_id=None):
        return SettlementEvent.of(
            obligation_id,
            tenders,
            actor_id=test_actor_id,
            occurred_at=deterministic_clock.now(),
            debtor_name=debtor_name,
            event_id=event_id,
            kind=SettlementEventKind.REDISTRIBUTION,
        )

    def test_resplit_recorded_as_its_own_event(
        self, session, processor, create_obligation, make_event,
        deterministic_clock, test_actor_id,
    ):
        obligation = create_obligation("1000")
        processor.apply(obligation.id, make_event(obligation.id, {"cash": "1000"}))

        result = processor.apply(
            obligation.id,
            self._redistribution(
                obligation.id, {"mpesa": "600", "cash": "400"}, deterministic_clock, test_actor_id
            ),
        )

        assert result.obligation.ledger.encode() == "mobile:600,cash:400"
        assert result.obligation.state is LifecycleState.SETTLED
        assert result.obligation.amount_settled == Decimal("1000")
        assert result.obligation.version == 3
        assert result.trigger is None
        assert len(_triggers(session)) == 1

        kinds = session.execute(
            select(SettlementEventModel.event_kind)
            .order_by(SettlementEventModel.resulting_version)
        ).scalars().all()
        assert kinds == ["payment", "redistribution"]

    def test_same_id_as_payment_is_payload_mismatch(
        self, processor, create_obligation, make_event, deterministic_clock, test_actor_id
    ):
        obligation = create_obligation("1000")
        event_id = uuid4()
        processor.apply(
            obligation.id, make_event(obligation.id, {"cash": "400"}, event_id=event_id)
        )

        with pytest.raises(EventPayloadMismatchError):
            processor.apply(
                obligation.id,
                self._redistribution(
                    obligation.id, {"cash": "400"}, deterministic_clock, test_actor_id,
                    event_id=event_id,
                ),
            )

    def test_changed_totals_leave_obligation_untouched(
        self, session, processor, create_obligation, make_event,
        deterministic_clock, test_actor_id,
    ):
        obligation = create_obligation("1000")
        paid = processor.apply(obligation.id, make_event(obligation.id, {"cash": "700"}))

        with pytest.raises(RedistributionTotalsError):
            processor.apply(
                obligation.id,
                self._redistribution(
                    obligation.id, {"cash": "600"}, deterministic_clock, test_actor_id
                ),
            )

        assert processor.load(obligation.id) == paid.obligation
        assert _event_count(session) == 1
