"""
Obligation state machine -- pure transition planning.

Responsibility:
    Decides whether a SettlementEvent may be applied to an Obligation
    snapshot and, if so, what the next snapshot looks like.  Every rejection
    happens here, before any write.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.  Called by the
    SettlementProcessor, which persists the planned transition.

Transitions::

    OPEN              -> PARTIALLY_SETTLED | DEBTED | SETTLED
    PARTIALLY_SETTLED -> PARTIALLY_SETTLED | DEBTED | SETTLED
    DEBTED            -> DEBTED | SETTLED | PARTIALLY_SETTLED
    SETTLED           -> (terminal)

    DEBTED -> PARTIALLY_SETTLED happens when a payment clears the debt but
    an ordinary unpaid balance remains.

Rules, for a payment p (non-debt tender) and new debt d, prior debt D:
    - amount_settled + p <= total_due
    - non-debt tender clears prior debt first: cleared = min(p, D)
    - outstanding debt afterwards, D - cleared + d, must fit the remaining
      balance; with no prior debt that is d <= total_due - amount_settled - p
    - d > 0 requires a debtor name, which must match any debtor still owed
    - a debtor name with d == 0 is accepted only when it names the debtor
      whose debt the payment clears

Redistribution replaces the breakdown without moving money: the new
entries must carry the same paid total and the same outstanding debt, so
the state never changes.  The debt may move to another debtor.  It is
allowed in every state, SETTLED included.

Failure modes:
    AlreadySettledError, InvalidTenderAmountError, DuplicateTenderKindError,
    DebtorNameRequiredError, DebtorMismatchError, DebtorNameWithoutDebtError,
    InsufficientRemainingBalanceError, RedistributionTotalsError.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from decimal import Decimal

from settlement_kernel.domain.obligation import LifecycleState, Obligation
from settlement_kernel.domain.settlement import SettlementEvent
from settlement_kernel.domain.tender import ZERO, TenderLedger, format_amount
from settlement_kernel.exceptions import (
    AlreadySettledError,
    DebtorMismatchError,
    DebtorNameRequiredError,
    DebtorNameWithoutDebtError,
    DuplicateTenderKindError,
    InsufficientRemainingBalanceError,
    InvalidTenderAmountError,
    RedistributionTotalsError,
)

ALLOWED_TRANSITIONS: dict[LifecycleState, frozenset[LifecycleState]] = {
    LifecycleState.OPEN: frozenset({
        LifecycleState.PARTIALLY_SETTLED,
        LifecycleState.DEBTED,
        LifecycleState.SETTLED,
    }),
    LifecycleState.PARTIALLY_SETTLED: frozenset({
        LifecycleState.PARTIALLY_SETTLED,
        LifecycleState.DEBTED,
        LifecycleState.SETTLED,
    }),
    LifecycleState.DEBTED: frozenset({
        LifecycleState.DEBTED,
        LifecycleState.SETTLED,
        LifecycleState.PARTIALLY_SETTLED,
    }),
    LifecycleState.SETTLED: frozenset(),
}


def can_transition(from_state: LifecycleState, to_state: LifecycleState) -> bool:
    return to_state in ALLOWED_TRANSITIONS[from_state]


@dataclass(frozen=True)
class Transition:
    """Planned result of applying one event to one snapshot."""

    from_state: LifecycleState
    to_state: LifecycleState
    amount_settled: Decimal
    ledger: TenderLedger
    debtor_name: str | None
    debt_cleared: Decimal
    debt_added: Decimal
    raises_fulfillment: bool

    def apply(self, obligation: Obligation) -> Obligation:
        """Next snapshot, one version ahead."""
        return replace(
            obligation,
            amount_settled=self.amount_settled,
            ledger=self.ledger,
            debtor_name=self.debtor_name,
            state=self.to_state,
            version=obligation.version + 1,
            fulfilled=obligation.fulfilled or self.raises_fulfillment,
        )


def _validate_entries(event: SettlementEvent, amount_places: int | None) -> None:
    if not event.entries:
        raise InvalidTenderAmountError("", "event carries no tender entries")
    seen: set[str] = set()
    for entry in event.entries:
        if entry.key in seen:
            raise DuplicateTenderKindError(entry.key)
        seen.add(entry.key)
        if amount_places is not None and entry.amount.as_tuple().exponent < -amount_places:
            raise InvalidTenderAmountError(
                format_amount(entry.amount),
                f"more than {amount_places} decimal places",
            )


def _same_debtor(a: str | None, b: str | None) -> bool:
    return a is not None and b is not None and a.casefold() == b.casefold()


def plan_transition(
    obligation: Obligation,
    event: SettlementEvent,
    amount_places: int | None = None,
) -> Transition:
    """
    Validate ``event`` against ``obligation`` and plan the next state.

    Preconditions:
        - ``event.obligation_id == obligation.id``.

    Postconditions:
        - The returned transition satisfies every Obligation invariant.
        - ``raises_fulfillment`` is True only when the obligation becomes
          SETTLED for the first time.

    Raises:
        See module docstring.  Nothing is mutated on rejection.
    """
    if event.obligation_id != obligation.id:
        raise ValueError(
            f"Event {event.event_id} targets {event.obligation_id}, not {obligation.id}"
        )
    oid = str(obligation.id)

    if obligation.state is LifecycleState.SETTLED:
        raise AlreadySettledError(oid)

    _validate_entries(event, amount_places)

    paid = event.paid_total
    new_debt = event.debt_total
    if new_debt > ZERO and event.debtor_name is None:
        raise DebtorNameRequiredError(oid, format_amount(new_debt))

    remaining = obligation.remaining_balance
    if paid > remaining:
        raise InsufficientRemainingBalanceError(oid, remaining, paid + new_debt)

    prior_debt = obligation.outstanding_debt
    cleared = min(paid, prior_debt)
    debt_after = prior_debt - cleared + new_debt
    if debt_after > remaining - paid:
        raise InsufficientRemainingBalanceError(oid, remaining, paid + new_debt)

    carried_debt = prior_debt - cleared
    if new_debt > ZERO and carried_debt > ZERO and not _same_debtor(
        obligation.debtor_name, event.debtor_name
    ):
        raise DebtorMismatchError(oid, obligation.debtor_name or "", event.debtor_name or "")
    if new_debt == ZERO and event.debtor_name is not None:
        if prior_debt == ZERO:
            raise DebtorNameWithoutDebtError(oid, event.debtor_name)
        if not _same_debtor(obligation.debtor_name, event.debtor_name):
            raise DebtorMismatchError(oid, obligation.debtor_name or "", event.debtor_name)

    if debt_after == ZERO:
        debtor_name = None
    elif carried_debt > ZERO:
        debtor_name = obligation.debtor_name
    else:
        debtor_name = event.debtor_name

    amount_settled = obligation.amount_settled + paid
    if debt_after > ZERO:
        to_state = LifecycleState.DEBTED
    elif amount_settled == obligation.total_due:
        to_state = LifecycleState.SETTLED
    else:
        to_state = LifecycleState.PARTIALLY_SETTLED

    if not can_transition(obligation.state, to_state):
        raise RuntimeError(f"Illegal transition {obligation.state} -> {to_state}")

    return Transition(
        from_state=obligation.state,
        to_state=to_state,
        amount_settled=amount_settled,
        ledger=obligation.ledger.clear_debt(cleared).merge(event.entries),
        debtor_name=debtor_name,
        debt_cleared=cleared,
        debt_added=new_debt,
        raises_fulfillment=(
            to_state is LifecycleState.SETTLED and not obligation.fulfilled
        ),
    )


def plan_redistribution(
    obligation: Obligation,
    event: SettlementEvent,
    amount_places: int | None = None,
) -> Transition:
    """
    Plan replacing the obligation's breakdown with ``event.entries``.

    The new ledger must hold exactly ``amount_settled`` in non-debt tender
    and exactly the outstanding debt, named to a debtor when non-zero.
    """
    if event.obligation_id != obligation.id:
        raise ValueError(
            f"Event {event.event_id} targets {event.obligation_id}, not {obligation.id}"
        )
    oid = str(obligation.id)
    _validate_entries(event, amount_places)

    debt = event.debt_total
    if debt > ZERO and event.debtor_name is None:
        raise DebtorNameRequiredError(oid, format_amount(debt))
    if debt == ZERO and event.debtor_name is not None:
        raise DebtorNameWithoutDebtError(oid, event.debtor_name)
    if event.paid_total != obligation.amount_settled or debt != obligation.outstanding_debt:
        raise RedistributionTotalsError(
            oid,
            obligation.amount_settled,
            event.paid_total,
            obligation.outstanding_debt,
            debt,
        )

    return Transition(
        from_state=obligation.state,
        to_state=obligation.state,
        amount_settled=obligation.amount_settled,
        ledger=TenderLedger(event.entries),
        debtor_name=event.debtor_name if debt > ZERO else None,
        debt_cleared=ZERO,
        debt_added=ZERO,
        raises_fulfillment=False,
    )


def plan_event(
    obligation: Obligation,
    event: SettlementEvent,
    amount_places: int | None = None,
) -> Transition:
    """Plan a payment or a redistribution, whichever ``event`` is."""
    if event.is_redistribution:
        return plan_redistribution(obligation, event, amount_places)
    return plan_transition(obligation, event, amount_places)
