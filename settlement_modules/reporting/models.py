"""
Period Reporting Domain Models (``settlement_modules.reporting.models``).

Responsibility
--------------
Frozen value objects for period reports: the half-open reporting window,
per-item performance rows, and the period summary handed to report
renderers.

Architecture position
---------------------
**Modules layer** -- pure data definitions with ZERO I/O.  Produced by
``aggregator.summarize`` and returned by ``ReportingService``.

Invariants enforced
-------------------
* All models are ``frozen=True``.
* All monetary fields use ``Decimal`` -- NEVER ``float``.
* A window is half-open, ``[start, end)``, with timezone-aware bounds.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, date, datetime, time, timedelta, tzinfo
from decimal import Decimal


# =========================================================================
# Window
# =========================================================================


@dataclass(frozen=True)
class PeriodWindow:
    """
    Half-open reporting window ``[start, end)``.

    The named constructors build the daily, weekly (Monday start), monthly
    and yearly windows used by the back-office reports, anchored on the
    day that contains ``day`` in timezone ``tz``.
    """

    start: datetime
    end: datetime
    label: str = "custom"

    def __post_init__(self) -> None:
        if self.start.tzinfo is None or self.end.tzinfo is None:
            raise ValueError("PeriodWindow bounds must be timezone-aware")
        if self.end <= self.start:
            raise ValueError(f"Window end {self.end} must be after start {self.start}")

    def contains(self, moment: datetime) -> bool:
        return self.start <= moment < self.end

    @classmethod
    def daily(cls, day: date, tz: tzinfo = UTC) -> PeriodWindow:
        start = _midnight(day, tz)
        return cls(start, _midnight(day + timedelta(days=1), tz), "daily")

    @classmethod
    def weekly(cls, day: date, tz: tzinfo = UTC) -> PeriodWindow:
        monday = day - timedelta(days=day.weekday())
        return cls(
            _midnight(monday, tz),
            _midnight(monday + timedelta(days=7), tz),
            "weekly",
        )

    @classmethod
    def monthly(cls, day: date, tz: tzinfo = UTC) -> PeriodWindow:
        first = day.replace(day=1)
        if first.month == 12:
            following = first.replace(year=first.year + 1, month=1)
        else:
            following = first.replace(month=first.month + 1)
        return cls(_midnight(first, tz), _midnight(following, tz), "monthly")

    @classmethod
    def yearly(cls, day: date, tz: tzinfo = UTC) -> PeriodWindow:
        first = date(day.year, 1, 1)
        return cls(
            _midnight(first, tz),
            _midnight(date(day.year + 1, 1, 1), tz),
            "yearly",
        )


def _midnight(day: date, tz: tzinfo) -> datetime:
    return datetime.combine(day, time.min, tzinfo=tz)


# =========================================================================
# Report rows
# =========================================================================


@dataclass(frozen=True)
class ItemPerformance:
    """
    Sales of one item over SETTLED obligations in the window.

    ``cost`` and ``profit`` are None when no line for the item carried a
    unit cost.
    """

    item_ref: str
    quantity: Decimal
    revenue: Decimal
    cost: Decimal | None = None
    profit: Decimal | None = None


@dataclass(frozen=True)
class PeriodSummary:
    """
    Settlement totals for one reporting window.

    ``tender_totals`` is keyed by tender label (``cash``, ``mobile``,
    ``card`` or the preserved label of an unrecognised tender) in order of
    first appearance; debt is never a key there and is reported as
    ``recorded_debt``.
    """

    window: PeriodWindow
    obligation_count: int
    revenue: Decimal
    outstanding_debt: Decimal
    recorded_debt: Decimal
    tender_totals: dict[str, Decimal] = field(default_factory=dict)
    cost: Decimal | None = None
    gross_profit: Decimal | None = None
    item_performance: tuple[ItemPerformance, ...] = ()
    best_item: ItemPerformance | None = None
    worst_item: ItemPerformance | None = None
    counts_by_state: dict[str, int] = field(default_factory=dict)
    settled_by_kind: dict[str, Decimal] = field(default_factory=dict)
