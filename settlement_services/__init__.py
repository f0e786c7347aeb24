"""Orchestration services: transaction owners above the settlement kernel."""

from settlement_services.settlement_service import ChangeListener, SettlementService

__all__ = [
    "ChangeListener",
    "SettlementService",
]
