"""
Settlement Kernel

The payment-settlement core of the hotel back office:
- Exact-decimal tender ledger with a strict, auditable string encoding
- Obligation lifecycle driven by settlement events
- Per-obligation optimistic concurrency
- Idempotent settlement application keyed by event id
- Exactly-once fulfillment triggers
"""

__version__ = "0.1.0"
