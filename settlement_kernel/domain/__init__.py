"""
Settlement Kernel domain layer -- pure functional core, zero I/O.

Re-exports the value objects most callers need.
"""

from settlement_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from settlement_kernel.domain.obligation import (
    ConsumedLine,
    LifecycleState,
    Obligation,
    ObligationKind,
)
from settlement_kernel.domain.settlement import (
    FulfillmentLine,
    FulfillmentTrigger,
    ObligationResult,
    SettlementEvent,
    SettlementEventKind,
)
from settlement_kernel.domain.state_machine import (
    ALLOWED_TRANSITIONS,
    Transition,
    can_transition,
    plan_event,
    plan_redistribution,
    plan_transition,
)
from settlement_kernel.domain.tender import (
    TenderEntry,
    TenderKind,
    TenderLedger,
    decode,
    decode_legacy,
    encode,
    merge,
)

__all__ = [
    "ALLOWED_TRANSITIONS",
    "Clock",
    "ConsumedLine",
    "DeterministicClock",
    "FulfillmentLine",
    "FulfillmentTrigger",
    "LifecycleState",
    "Obligation",
    "ObligationKind",
    "ObligationResult",
    "SettlementEvent",
    "SettlementEventKind",
    "SystemClock",
    "TenderEntry",
    "TenderKind",
    "TenderLedger",
    "Transition",
    "can_transition",
    "decode",
    "decode_legacy",
    "encode",
    "merge",
    "plan_event",
    "plan_redistribution",
    "plan_transition",
]
