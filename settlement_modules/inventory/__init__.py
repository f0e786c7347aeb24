"""
Inventory Module (``settlement_modules.inventory``).

Responsibility
--------------
Stock records for consumable items and the fulfillment side effect that
decrements them once an obligation is fully settled.

Architecture
------------
Layer: **Modules**.  Imports from ``settlement_kernel`` but never the
reverse.
"""

from settlement_modules.inventory.coordinator import FulfillmentCoordinator
from settlement_modules.inventory.models import (
    FulfillmentReport,
    StockMovement,
    StockRecord,
)
from settlement_modules.inventory.service import StockService

__all__ = [
    "FulfillmentCoordinator",
    "FulfillmentReport",
    "StockMovement",
    "StockRecord",
    "StockService",
]
