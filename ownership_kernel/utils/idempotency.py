"""
Idempotency key generation utilities.

A distribution idempotency key names one logical "distribute revenue for
asset X over period P" request.  Retrying with the same key after a timeout
returns the run that key already completed instead of paying twice.
"""

from uuid import UUID

DISTRIBUTION_KEY_PREFIX = "distribution"


def generate_distribution_key(asset_id: UUID | str, period_key: str) -> str:
    """
    Derive the default idempotency key for a distribution request.

    Format: distribution:asset_id:period_key

    Args:
        asset_id: Asset the revenue belongs to.
        period_key: Canonical period key, e.g. "2025-11".

    Returns:
        Idempotency key string.

    Example:
        >>> generate_distribution_key("550e8400-e29b-41d4-a716-446655440000", "2025-11")
        'distribution:550e8400-e29b-41d4-a716-446655440000:2025-11'
    """
    return f"{DISTRIBUTION_KEY_PREFIX}:{asset_id}:{period_key}"


def parse_distribution_key(key: str) -> tuple[str, str]:
    """
    Parse a derived distribution key into (asset_id, period_key).

    Raises:
        ValueError: If the key was not produced by generate_distribution_key.
    """
    parts = key.split(":", 2)
    if len(parts) != 3 or parts[0] != DISTRIBUTION_KEY_PREFIX or not parts[1] or not parts[2]:
        raise ValueError(f"Invalid distribution key format: {key}")
    return parts[1], parts[2]
