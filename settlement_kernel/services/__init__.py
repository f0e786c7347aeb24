"""Kernel services: the imperative shell around the settlement domain."""

from settlement_kernel.services.base import BaseService
from settlement_kernel.services.obligation_service import ObligationService
from settlement_kernel.services.settlement_processor import SettlementProcessor

__all__ = [
    "BaseService",
    "ObligationService",
    "SettlementProcessor",
]
