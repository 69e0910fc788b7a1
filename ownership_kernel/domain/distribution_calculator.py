"""
Module: ownership_kernel.domain.distribution_calculator
Responsibility:
    Split a revenue amount across an ownership snapshot in integer minor
    units, with a deterministic largest-remainder policy so that the shares
    always add back up to the input exactly.

Architecture position:
    Kernel > Domain -- pure calculation, zero I/O, no clock access.
    Called by DistributionExecutor; unit-testable in total isolation.

Invariants enforced:
    - Conservation: sum(amount) == total_revenue, always.
    - Determinism: same snapshot + same total -> same output, independent of
      dict ordering, process or platform (integer arithmetic only).
    - Fairness bound: every amount differs from the owner's exact
      proportional entitlement by strictly less than one minor unit.
    - Output has one entry per snapshot entry, in snapshot order.

Algorithm:
    D = sum of snapshot basis points (10,000 when the asset is fully sold)
    1. floor_i = (total * bps_i) // D
    2. remainder = total - sum(floor_i), which is in [0, len(snapshot))
    3. Hand out the remainder one unit at a time, largest fractional part
       (total * bps_i) % D first, ties broken by investor_id ascending.

Failure modes:
    - NoOwnersError if the snapshot is empty.
    - InvalidAmountError if total_revenue is not a non-negative int.
    - InvalidFractionError if any entry (or the sum) falls outside
      (0, 10000] basis points.
    - ValueError if an investor appears twice (snapshots are aggregated
      per investor upstream).
    - ConservationViolationError if the shares do not add back up to the
      total.  Indicates a bug in this module.
"""

from __future__ import annotations

from collections.abc import Sequence

from ownership_kernel.db.types import BASIS_POINTS_PER_WHOLE
from ownership_kernel.domain.values import AllocatedShare, OwnershipShare
from ownership_kernel.exceptions import (
    ConservationViolationError,
    InvalidAmountError,
    InvalidFractionError,
    NoOwnersError,
)


def _validate(snapshot: Sequence[OwnershipShare], total_revenue: int) -> int:
    if isinstance(total_revenue, bool) or not isinstance(total_revenue, int):
        raise InvalidAmountError("total_revenue", total_revenue)
    if total_revenue < 0:
        raise InvalidAmountError("total_revenue", total_revenue)

    if not snapshot:
        raise NoOwnersError()

    seen: set[str] = set()
    allocated = 0
    for share in snapshot:
        bps = share.basis_points
        if isinstance(bps, bool) or not isinstance(bps, int):
            raise InvalidFractionError(bps)
        if not 0 < bps <= BASIS_POINTS_PER_WHOLE:
            raise InvalidFractionError(bps)
        if share.investor_id in seen:
            raise ValueError(f"Investor {share.investor_id} appears twice in snapshot")
        seen.add(share.investor_id)
        allocated += bps

    if allocated > BASIS_POINTS_PER_WHOLE:
        raise InvalidFractionError(allocated)
    return allocated


def compute_distribution(
    snapshot: Sequence[OwnershipShare],
    total_revenue: int,
) -> tuple[AllocatedShare, ...]:
    """
    Compute each owner's share of ``total_revenue`` minor units.

    Args:
        snapshot: Aggregated ownership, one entry per investor.
        total_revenue: Amount to split, in minor units.

    Returns:
        One AllocatedShare per snapshot entry, in snapshot order.

    Example:
        X holds 6000 bps and Y 4000 bps of 1,000,001 units.  Floors are
        600,000 and 400,000; the single leftover unit goes to X (fractional
        part .6 beats .4), giving X=600,001 and Y=400,000.
    """
    denominator = _validate(snapshot, total_revenue)

    floors: list[int] = []
    fractions: list[int] = []
    for share in snapshot:
        floor_amount, fraction = divmod(total_revenue * share.basis_points, denominator)
        floors.append(floor_amount)
        fractions.append(fraction)

    remainder = total_revenue - sum(floors)

    order = sorted(
        range(len(snapshot)),
        key=lambda i: (-fractions[i], snapshot[i].investor_id),
    )
    bumped = set(order[:remainder])

    allocation = tuple(
        AllocatedShare(
            investor_id=share.investor_id,
            basis_points=share.basis_points,
            amount=floors[i] + (1 if i in bumped else 0),
            is_rounding_adjustment=i in bumped,
        )
        for i, share in enumerate(snapshot)
    )
    check_conservation(allocation, total_revenue)
    return allocation


def check_conservation(shares: Sequence[AllocatedShare], total_revenue: int) -> None:
    """Raise ConservationViolationError unless the shares sum to the total."""
    actual = sum(share.amount for share in shares)
    if actual != total_revenue:
        raise ConservationViolationError(None, total_revenue, actual)


def exact_entitlement(
    share: OwnershipShare,
    total_revenue: int,
    allocated_basis_points: int,
) -> tuple[int, int]:
    """
    Exact proportional entitlement as an unreduced fraction.

    Returns ``(numerator, denominator)``; used by audits and tests to check
    the one-unit fairness bound without going through float.
    """
    return total_revenue * share.basis_points, allocated_basis_points
