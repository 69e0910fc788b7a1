"""
Services layer - the imperative shell around the pure domain.

Registry, ledger and history store are flush-only; OwnershipLedgerService
(auto_commit=True) and DistributionExecutor own their transactions.
"""

from ownership_kernel.services.asset_locks import (
    AssetLockRegistry,
    default_lock_registry,
    lock_asset_row,
)
from ownership_kernel.services.asset_registry import (
    AssetFilter,
    AssetRegistryService,
    AssetSpec,
)
from ownership_kernel.services.distribution_executor import (
    DistributionExecutor,
    DistributionPolicy,
    DistributionResult,
    DistributionStatus,
    UnallocatedSharePolicy,
)
from ownership_kernel.services.distribution_history import DistributionHistoryStore
from ownership_kernel.services.ownership_ledger import OwnershipLedgerService
from ownership_kernel.services.settlement import (
    CollectingSettlementSink,
    LoggingSettlementSink,
    SettlementInstruction,
    SettlementSink,
)

__all__ = [
    "AssetLockRegistry",
    "default_lock_registry",
    "lock_asset_row",
    "AssetRegistryService",
    "AssetSpec",
    "AssetFilter",
    "OwnershipLedgerService",
    "DistributionHistoryStore",
    "DistributionExecutor",
    "DistributionPolicy",
    "DistributionResult",
    "DistributionStatus",
    "UnallocatedSharePolicy",
    "SettlementSink",
    "SettlementInstruction",
    "LoggingSettlementSink",
    "CollectingSettlementSink",
]
