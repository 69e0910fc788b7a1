"""Utility functions for the ownership kernel."""

from ownership_kernel.utils.idempotency import (
    generate_distribution_key,
    parse_distribution_key,
)

__all__ = [
    "generate_distribution_key",
    "parse_distribution_key",
]
