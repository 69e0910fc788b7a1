"""
Pure domain layer.

Value objects, DTOs, the clock abstraction and the distribution calculator,
with NO dependencies on:
- ORM sessions
- Database
- I/O

All domain objects are immutable and deterministic.
"""

from ownership_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from ownership_kernel.domain.distribution_calculator import compute_distribution
from ownership_kernel.domain.dtos import (
    AssetInfo,
    DistributionRunRecord,
    GrantRecord,
    LineItemRecord,
)
from ownership_kernel.domain.values import AllocatedShare, OwnershipShare, RevenuePeriod

__all__ = [
    # Time
    "Clock",
    "SystemClock",
    "DeterministicClock",
    # Value objects
    "RevenuePeriod",
    "OwnershipShare",
    "AllocatedShare",
    # DTOs
    "AssetInfo",
    "GrantRecord",
    "DistributionRunRecord",
    "LineItemRecord",
    # Calculation
    "compute_distribution",
]
