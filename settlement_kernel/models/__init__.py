"""ORM models for the settlement kernel."""

from settlement_kernel.models.fulfillment import FulfillmentTriggerModel, TriggerStatus
from settlement_kernel.models.obligation import ObligationLineModel, ObligationModel
from settlement_kernel.models.settlement_event import SettlementEventModel

__all__ = [
    "FulfillmentTriggerModel",
    "ObligationLineModel",
    "ObligationModel",
    "SettlementEventModel",
    "TriggerStatus",
]
