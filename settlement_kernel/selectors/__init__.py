"""Read-only query selectors for the settlement kernel."""

from settlement_kernel.selectors.base import BaseSelector
from settlement_kernel.selectors.obligation_selector import ObligationSelector

__all__ = [
    "BaseSelector",
    "ObligationSelector",
]
