"""
Idempotency key generation utilities.

Idempotency keys ensure that a settlement event re-submitted by a terminal
(double tap, network retry) is applied at most once per obligation.
"""

from uuid import UUID


def generate_idempotency_key(
    obligation_id: UUID | str,
    event_id: UUID | str,
) -> str:
    """
    Generate an idempotency key for a settlement event.

    Format: obligation_id:event_id

    The key is stored on the settlement event row under a unique constraint.

    Example:
        >>> generate_idempotency_key(obligation_uuid, event_uuid)
        "0b7c...:550e8400-e29b-41d4-a716-446655440000"
    """
    return f"{obligation_id}:{event_id}"


def parse_idempotency_key(key: str) -> tuple[str, str]:
    """
    Parse an idempotency key into (obligation_id, event_id).

    Raises:
        ValueError: If key format is invalid.
    """
    parts = key.split(":")
    if len(parts) != 2 or not all(parts):
        raise ValueError(f"Invalid idempotency key format: {key}")
    return parts[0], parts[1]
