"""
Pure period aggregation over obligation snapshots.

Folds committed Obligation snapshots into a PeriodSummary.  ZERO I/O.
ZERO side effects.  Same inputs always produce the same outputs,
including the order of tender keys and the tie-breaks between items.

Rules:
- An obligation belongs to the window when ``opened_at`` is in
  ``[start, end)``.
- Revenue counts SETTLED obligations only.
- Outstanding debt is the remaining balance of DEBTED obligations.
- Tender totals come from every windowed obligation's ledger, whatever its
  state; debt entries are excluded and summed as ``recorded_debt``.
- Items are ranked by quantity, highest first.  Equal quantities keep
  first-seen order, and best/worst ties go to the first-seen item.
"""

from __future__ import annotations

from collections.abc import Iterable
from decimal import Decimal

from settlement_kernel.domain.obligation import LifecycleState, Obligation
from settlement_kernel.domain.tender import ZERO
from settlement_modules.reporting.models import (
    ItemPerformance,
    PeriodSummary,
    PeriodWindow,
)


def summarize(obligations: Iterable[Obligation], window: PeriodWindow) -> PeriodSummary:
    windowed = [o for o in obligations if window.contains(o.opened_at)]
    settled = [o for o in windowed if o.state is LifecycleState.SETTLED]

    revenue = sum((o.amount_settled for o in settled), ZERO)
    outstanding_debt = sum(
        (o.remaining_balance for o in windowed if o.state is LifecycleState.DEBTED),
        ZERO,
    )

    tender_totals: dict[str, Decimal] = {}
    recorded_debt = ZERO
    for obligation in windowed:
        for entry in obligation.ledger:
            if entry.is_debt:
                recorded_debt += entry.amount
            else:
                tender_totals[entry.key] = tender_totals.get(entry.key, ZERO) + entry.amount

    items = _item_performance(settled)
    costed = [i.cost for i in items if i.cost is not None]
    cost = sum(costed, ZERO) if costed else None

    counts_by_state = {state.value: 0 for state in LifecycleState}
    for obligation in windowed:
        counts_by_state[obligation.state.value] += 1

    settled_by_kind: dict[str, Decimal] = {}
    for obligation in settled:
        kind = obligation.kind.value
        settled_by_kind[kind] = settled_by_kind.get(kind, ZERO) + obligation.amount_settled

    return PeriodSummary(
        window=window,
        obligation_count=len(windowed),
        revenue=revenue,
        outstanding_debt=outstanding_debt,
        recorded_debt=recorded_debt,
        tender_totals=tender_totals,
        cost=cost,
        gross_profit=revenue - cost if cost is not None else None,
        item_performance=tuple(sorted(items, key=lambda i: -i.quantity)),
        best_item=_best(items),
        worst_item=_worst(items),
        counts_by_state=counts_by_state,
        settled_by_kind=settled_by_kind,
    )


def _item_performance(settled: list[Obligation]) -> list[ItemPerformance]:
    """Per-item totals in first-seen order."""
    quantity: dict[str, Decimal] = {}
    revenue: dict[str, Decimal] = {}
    cost: dict[str, Decimal | None] = {}
    for obligation in settled:
        for line in obligation.lines:
            ref = line.item_ref
            quantity[ref] = quantity.get(ref, ZERO) + line.quantity
            revenue[ref] = revenue.get(ref, ZERO) + line.revenue
            line_cost = line.cost
            if line_cost is not None:
                cost[ref] = (cost.get(ref) or ZERO) + line_cost
            else:
                cost.setdefault(ref, None)

    rows = []
    for ref in quantity:
        item_cost = cost[ref]
        rows.append(
            ItemPerformance(
                item_ref=ref,
                quantity=quantity[ref],
                revenue=revenue[ref],
                cost=item_cost,
                profit=revenue[ref] - item_cost if item_cost is not None else None,
            )
        )
    return rows


def _best(items: list[ItemPerformance]) -> ItemPerformance | None:
    best = None
    for item in items:
        if best is None or item.quantity > best.quantity:
            best = item
    return best


def _worst(items: list[ItemPerformance]) -> ItemPerformance | None:
    worst = None
    for item in items:
        if worst is None or item.quantity < worst.quantity:
            worst = item
    return worst
