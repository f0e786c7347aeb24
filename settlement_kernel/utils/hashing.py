"""
Deterministic hashing utilities.

A terminal that resubmits a settlement event must produce the same hash
for the same money, however it spelled the amounts or ordered the
tenders.  Everything here is pure and reproducible across processes.
"""

import hashlib
import json
from collections.abc import Iterable
from datetime import date, datetime
from decimal import Decimal
from typing import Any
from uuid import UUID


def _json_serializer(obj: Any) -> Any:
    """
    Encode the non-JSON types that appear in settlement payloads.

    Raises:
        TypeError: If object type is not supported.
    """
    if isinstance(obj, Decimal):
        # 500, 500.0 and 500.00 are one amount; never exponent notation
        return format(obj.normalize(), "f")
    if isinstance(obj, (datetime, date)):
        return obj.isoformat()
    if isinstance(obj, UUID):
        return str(obj)
    raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")


def canonicalize_json(data: dict | list | Any) -> str:
    """Sorted-key, whitespace-free JSON."""
    return json.dumps(
        data,
        sort_keys=True,
        separators=(",", ":"),
        default=_json_serializer,
    )


def hash_payload(payload: dict) -> str:
    """Hex SHA-256 of the canonical JSON of ``payload``."""
    return hashlib.sha256(canonicalize_json(payload).encode("utf-8")).hexdigest()


def hash_settlement_event(
    obligation_id: UUID,
    tenders: Iterable[tuple[str, Decimal]],
    debtor_name: str | None,
    kind: str = "payment",
) -> str:
    """
    Hash the money-relevant content of a settlement event.

    ``tenders`` holds ``(label, amount)`` pairs with canonical labels.  Their
    order does not matter.  Actor and timestamps are excluded: a retried
    submission from another till is still the same payment.  ``kind``
    separates a payment from a redistribution with the same tenders.
    """
    return hash_payload(
        {
            "obligation_id": obligation_id,
            "kind": kind,
            "tenders": sorted([label, amount] for label, amount in tenders),
            "debtor_name": debtor_name,
        }
    )
