"""
DTOs -- Pure domain data transfer objects.

Responsibility:
    Defines the immutable records returned across the service boundary:
    AssetInfo, GrantRecord, DistributionRunRecord and LineItemRecord.
    Callers (dashboards, batch jobs, settlement hand-off) never receive ORM
    entities, so nothing outside the kernel can mutate ledger state by
    accident.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.
    from_model() class methods are boundary converters, invoked only from
    the service and selector layers.

Invariants enforced:
    - Money fields are integer minor units; ownership fields are integer
      basis points.
    - Datetimes are always timezone-aware UTC (ensure_utc on the way out).
    - DistributionRunRecord.line_items keep snapshot order.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from typing import TYPE_CHECKING
from uuid import UUID

from ownership_kernel.db.types import ensure_utc

if TYPE_CHECKING:
    from ownership_kernel.models.asset import Asset
    from ownership_kernel.models.distribution import DistributionLineItem, DistributionRun
    from ownership_kernel.models.ownership import OwnershipGrant


@dataclass(frozen=True)
class AssetInfo:
    """Read-only view of an asset."""

    id: UUID
    asset_code: str
    category: str
    status: str
    model: str | None
    location: str | None
    original_value: int
    currency: str
    health: int
    is_tokenized: bool
    retired_at: datetime | None = None

    @classmethod
    def from_model(cls, model: Asset) -> AssetInfo:
        return cls(
            id=model.id,
            asset_code=model.asset_code,
            category=str(getattr(model.category, "value", model.category)),
            status=str(getattr(model.status, "value", model.status)),
            model=model.model,
            location=model.location,
            original_value=model.original_value,
            currency=model.currency,
            health=model.health,
            is_tokenized=bool(model.is_tokenized),
            retired_at=ensure_utc(model.retired_at),
        )


@dataclass(frozen=True)
class GrantRecord:
    """
    Read-only view of an ownership grant.

    ``supersedes_grant_id`` is set when the grant was created by a transfer.
    """

    id: UUID
    grant_code: str
    asset_id: UUID
    investor_id: str
    basis_points: int
    amount_paid: int
    currency: str
    status: str
    granted_at: datetime
    cancelled_at: datetime | None = None
    cancellation_reason: str | None = None
    supersedes_grant_id: UUID | None = None

    @property
    def is_active(self) -> bool:
        return self.status == "active"

    @classmethod
    def from_model(cls, model: OwnershipGrant) -> GrantRecord:
        return cls(
            id=model.id,
            grant_code=model.grant_code,
            asset_id=model.asset_id,
            investor_id=model.investor_id,
            basis_points=model.basis_points,
            amount_paid=model.amount_paid,
            currency=model.currency,
            status=str(getattr(model.status, "value", model.status)),
            granted_at=ensure_utc(model.granted_at),
            cancelled_at=ensure_utc(model.cancelled_at),
            cancellation_reason=model.cancellation_reason,
            supersedes_grant_id=model.supersedes_grant_id,
        )


@dataclass(frozen=True)
class LineItemRecord:
    """One payment owed to one owner within a run."""

    id: UUID
    run_id: UUID
    investor_id: str
    basis_points: int
    amount: int
    currency: str
    is_rounding_adjustment: bool
    position: int

    @classmethod
    def from_model(cls, model: DistributionLineItem) -> LineItemRecord:
        return cls(
            id=model.id,
            run_id=model.run_id,
            investor_id=model.investor_id,
            basis_points=model.basis_points,
            amount=model.amount,
            currency=model.currency,
            is_rounding_adjustment=bool(model.is_rounding_adjustment),
            position=model.position,
        )


@dataclass(frozen=True)
class DistributionRunRecord:
    """
    Read-only view of a distribution run and (optionally) its line items.

    Guarantees:
        - For a COMPLETED run loaded with items, sum(amount) == total_revenue.
    """

    id: UUID
    asset_id: UUID
    period_start: date
    period_end: date
    period_key: str
    total_revenue: int
    currency: str
    status: str
    idempotency_key: str
    attempt: int
    snapshot_at: datetime
    opened_at: datetime
    completed_at: datetime | None = None
    failed_at: datetime | None = None
    failure_reason: str | None = None
    line_items: tuple[LineItemRecord, ...] = ()

    @property
    def is_completed(self) -> bool:
        return self.status == "completed"

    @property
    def distributed_total(self) -> int:
        return sum(item.amount for item in self.line_items)

    @classmethod
    def from_model(
        cls,
        model: DistributionRun,
        line_items: list[DistributionLineItem] | None = None,
    ) -> DistributionRunRecord:
        """
        Convert a run.  The diagnostic column is deliberately left out;
        it is support-only detail.
        """
        items = tuple(
            LineItemRecord.from_model(item)
            for item in sorted(line_items or (), key=lambda x: x.position)
        )
        return cls(
            id=model.id,
            asset_id=model.asset_id,
            period_start=model.period_start,
            period_end=model.period_end,
            period_key=model.period_key,
            total_revenue=model.total_revenue,
            currency=model.currency,
            status=str(getattr(model.status, "value", model.status)),
            idempotency_key=model.idempotency_key,
            attempt=model.attempt,
            snapshot_at=ensure_utc(model.snapshot_at),
            opened_at=ensure_utc(model.opened_at),
            completed_at=ensure_utc(model.completed_at),
            failed_at=ensure_utc(model.failed_at),
            failure_reason=model.failure_reason,
            line_items=items,
        )
