"""
Reporting Module (``settlement_modules.reporting``).

Period summaries of settlement activity: revenue, outstanding debt, tender
breakdown, gross profit and item performance.
"""

from settlement_modules.reporting.aggregator import summarize
from settlement_modules.reporting.models import (
    ItemPerformance,
    PeriodSummary,
    PeriodWindow,
)
from settlement_modules.reporting.service import ReportingService

__all__ = [
    "ItemPerformance",
    "PeriodSummary",
    "PeriodWindow",
    "ReportingService",
    "summarize",
]
