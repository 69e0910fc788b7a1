"""
Module: ownership_kernel.selectors.portfolio_selector
Responsibility: Read-only views for dashboards: an investor's portfolio
    (holdings, amount invested, amount distributed, return on investment)
    and an asset's ownership summary (allocation, owners, payouts).
Architecture position: Kernel > Selectors.  May import from models/,
    db/ and selectors/base.py.

Invariants enforced:
    - No stored balances.  Invested totals derive from ACTIVE grants;
      distributed totals derive from line items of COMPLETED runs only.
    - Money stays in integer minor units, grouped per currency; ROI is an
      integer count of basis points (floor), never a float.

Failure modes:
    - AssetNotFoundError from asset_summary() for unknown assets.
    - Investors with no holdings get an empty portfolio, not an error.
"""

from dataclasses import dataclass, field
from uuid import UUID

from sqlalchemy import func, select

from ownership_kernel.db.types import BASIS_POINTS_PER_WHOLE
from ownership_kernel.exceptions import AssetNotFoundError
from ownership_kernel.models.asset import Asset
from ownership_kernel.models.distribution import (
    DistributionLineItem,
    DistributionRun,
    RunStatus,
)
from ownership_kernel.models.ownership import GrantStatus, OwnershipGrant
from ownership_kernel.selectors.base import BaseSelector


@dataclass(frozen=True)
class PortfolioHolding:
    """An investor's aggregated position in one asset."""

    asset_id: UUID
    asset_code: str
    category: str
    basis_points: int
    amount_paid: int
    currency: str
    grant_count: int


@dataclass(frozen=True)
class InvestorPortfolio:
    """Everything an investor holds and has been paid."""

    investor_id: str
    holdings: tuple[PortfolioHolding, ...] = ()
    total_invested: dict[str, int] = field(default_factory=dict)
    total_distributed: dict[str, int] = field(default_factory=dict)

    @property
    def asset_count(self) -> int:
        return len(self.holdings)

    def roi_basis_points(self, currency: str) -> int | None:
        """
        Distributed / invested in basis points for one currency.

        None when nothing was invested in that currency.
        """
        invested = self.total_invested.get(currency, 0)
        if invested == 0:
            return None
        distributed = self.total_distributed.get(currency, 0)
        return distributed * BASIS_POINTS_PER_WHOLE // invested


@dataclass(frozen=True)
class AssetOwnershipSummary:
    """Allocation and payout overview for one asset."""

    asset_id: UUID
    asset_code: str
    status: str
    currency: str
    allocated_basis_points: int
    owner_count: int
    completed_run_count: int
    total_distributed: int

    @property
    def available_basis_points(self) -> int:
        return BASIS_POINTS_PER_WHOLE - self.allocated_basis_points

    @property
    def is_fully_allocated(self) -> bool:
        return self.allocated_basis_points == BASIS_POINTS_PER_WHOLE


class PortfolioSelector(BaseSelector):
    """Investor- and asset-level read models."""

    def investor_portfolio(self, investor_id: str) -> InvestorPortfolio:
        rows = self.session.execute(
            select(
                Asset.id,
                Asset.asset_code,
                Asset.category,
                OwnershipGrant.currency,
                func.sum(OwnershipGrant.basis_points),
                func.sum(OwnershipGrant.amount_paid),
                func.count(OwnershipGrant.id),
            )
            .select_from(OwnershipGrant)
            .join(Asset, OwnershipGrant.asset_id == Asset.id)
            .where(
                OwnershipGrant.investor_id == investor_id,
                OwnershipGrant.status == GrantStatus.ACTIVE.value,
            )
            .group_by(Asset.id, Asset.asset_code, Asset.category, OwnershipGrant.currency)
            .order_by(Asset.asset_code)
        ).all()

        holdings = tuple(
            PortfolioHolding(
                asset_id=asset_id,
                asset_code=asset_code,
                category=str(category),
                basis_points=int(bps),
                amount_paid=int(paid),
                currency=currency,
                grant_count=int(count),
            )
            for asset_id, asset_code, category, currency, bps, paid, count in rows
        )

        invested: dict[str, int] = {}
        for holding in holdings:
            invested[holding.currency] = invested.get(holding.currency, 0) + holding.amount_paid

        distributed_rows = self.session.execute(
            select(DistributionLineItem.currency, func.sum(DistributionLineItem.amount))
            .join(DistributionRun, DistributionLineItem.run_id == DistributionRun.id)
            .where(
                DistributionLineItem.investor_id == investor_id,
                DistributionRun.status == RunStatus.COMPLETED.value,
            )
            .group_by(DistributionLineItem.currency)
        ).all()

        return InvestorPortfolio(
            investor_id=investor_id,
            holdings=holdings,
            total_invested=invested,
            total_distributed={currency: int(total) for currency, total in distributed_rows},
        )

    def asset_summary(self, asset_id: UUID) -> AssetOwnershipSummary:
        asset = self.session.get(Asset, asset_id)
        if asset is None:
            raise AssetNotFoundError(str(asset_id))

        allocated, owners = self.session.execute(
            select(
                func.coalesce(func.sum(OwnershipGrant.basis_points), 0),
                func.count(func.distinct(OwnershipGrant.investor_id)),
            ).where(
                OwnershipGrant.asset_id == asset_id,
                OwnershipGrant.status == GrantStatus.ACTIVE.value,
            )
        ).one()

        run_count, distributed = self.session.execute(
            select(
                func.count(DistributionRun.id),
                func.coalesce(func.sum(DistributionRun.total_revenue), 0),
            ).where(
                DistributionRun.asset_id == asset_id,
                DistributionRun.status == RunStatus.COMPLETED.value,
            )
        ).one()

        return AssetOwnershipSummary(
            asset_id=asset.id,
            asset_code=asset.asset_code,
            status=str(getattr(asset.status, "value", asset.status)),
            currency=asset.currency,
            allocated_basis_points=int(allocated),
            owner_count=int(owners),
            completed_run_count=int(run_count),
            total_distributed=int(distributed),
        )
