"""
Reporting Module Service (``settlement_modules.reporting.service``).

Responsibility
--------------
Produces period summaries (daily, weekly, monthly, yearly or any custom
window) by bridging ``ObligationSelector`` to the pure fold in
``aggregator.py``.  This is a **read-only** service.

Architecture position
---------------------
**Modules layer** -- thin glue.  Constructor: ``session`` + ``clock`` +
``config``.

Invariants enforced
-------------------
* Read-only -- takes no locks and writes nothing.  Snapshots committed
  after the read started may be missing from the report.
* All monetary amounts use ``Decimal`` -- NEVER ``float``.

Failure modes
-------------
* A corrupted obligation row raises ``MalformedLedgerError`` or
  ``LedgerInvariantError``; the report is never built from a partial read.
"""

from __future__ import annotations

from datetime import UTC, date, tzinfo
from decimal import Decimal
from typing import Any

from sqlalchemy.orm import Session

from settlement_kernel.config import SettlementConfig
from settlement_kernel.domain.clock import Clock, SystemClock
from settlement_kernel.logging_config import get_logger
from settlement_kernel.selectors.obligation_selector import ObligationSelector
from settlement_modules.reporting.aggregator import summarize
from settlement_modules.reporting.models import ItemPerformance, PeriodSummary, PeriodWindow

logger = get_logger("modules.reporting.service")


class ReportingService:
    """Read-only period reports over committed obligations."""

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        config: SettlementConfig | None = None,
    ):
        self._session = session
        self._clock = clock or SystemClock()
        self._config = config or SettlementConfig.with_defaults()
        self._selector = ObligationSelector(session, self._config.tender_aliases)

    def summarize_period(self, window: PeriodWindow) -> PeriodSummary:
        obligations = self._selector.opened_between(window.start, window.end)
        summary = summarize(obligations, window)
        logger.info(
            "period_summary_generated",
            extra={
                "window": window.label,
                "start": window.start,
                "end": window.end,
                "obligation_count": summary.obligation_count,
                "revenue": summary.revenue,
            },
        )
        return summary

    def summarize_today(self, label: str = "daily", tz: tzinfo = UTC) -> PeriodSummary:
        """
        Summary of the current day, week, month or year per the clock.

        ``tz`` is the hotel's local zone; period boundaries fall on its
        midnights.
        """
        today: date = self._clock.today(tz)
        builders = {
            "daily": PeriodWindow.daily,
            "weekly": PeriodWindow.weekly,
            "monthly": PeriodWindow.monthly,
            "yearly": PeriodWindow.yearly,
        }
        if label not in builders:
            raise ValueError(f"Unknown period '{label}', expected one of {sorted(builders)}")
        return self.summarize_period(builders[label](today, tz))

    def to_dict(self, summary: PeriodSummary) -> dict[str, Any]:
        """Plain-data rendering for report renderers; amounts become strings."""

        def amount(value: Decimal | None) -> str | None:
            return None if value is None else format(value, "f")

        def item(row: ItemPerformance | None) -> dict[str, Any] | None:
            if row is None:
                return None
            return {
                "item_ref": row.item_ref,
                "quantity": amount(row.quantity),
                "revenue": amount(row.revenue),
                "cost": amount(row.cost),
                "profit": amount(row.profit),
            }

        return {
            "currency": self._config.currency,
            "window": {
                "label": summary.window.label,
                "start": summary.window.start.isoformat(),
                "end": summary.window.end.isoformat(),
            },
            "obligation_count": summary.obligation_count,
            "revenue": amount(summary.revenue),
            "outstanding_debt": amount(summary.outstanding_debt),
            "recorded_debt": amount(summary.recorded_debt),
            "tender_totals": {k: amount(v) for k, v in summary.tender_totals.items()},
            "cost": amount(summary.cost),
            "gross_profit": amount(summary.gross_profit),
            "item_performance": [item(row) for row in summary.item_performance],
            "best_item": item(summary.best_item),
            "worst_item": item(summary.worst_item),
            "counts_by_state": dict(summary.counts_by_state),
            "settled_by_kind": {k: amount(v) for k, v in summary.settled_by_kind.items()},
        }
