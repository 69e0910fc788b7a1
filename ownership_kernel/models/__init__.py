"""ORM models for the ownership kernel."""

from ownership_kernel.models.asset import (
    VALID_TRANSITIONS,
    Asset,
    AssetCategory,
    AssetStatus,
)
from ownership_kernel.models.distribution import (
    TERMINAL_RUN_STATUSES,
    DistributionLineItem,
    DistributionRun,
    RunStatus,
)
from ownership_kernel.models.ownership import GrantStatus, OwnershipGrant

__all__ = [
    "Asset",
    "AssetCategory",
    "AssetStatus",
    "VALID_TRANSITIONS",
    "OwnershipGrant",
    "GrantStatus",
    "DistributionRun",
    "DistributionLineItem",
    "RunStatus",
    "TERMINAL_RUN_STATUSES",
]
