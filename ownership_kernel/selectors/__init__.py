"""Read-only selectors for presentation layers."""

from ownership_kernel.selectors.base import BaseSelector
from ownership_kernel.selectors.portfolio_selector import (
    AssetOwnershipSummary,
    InvestorPortfolio,
    PortfolioHolding,
    PortfolioSelector,
)

__all__ = [
    "BaseSelector",
    "PortfolioSelector",
    "InvestorPortfolio",
    "PortfolioHolding",
    "AssetOwnershipSummary",
]
