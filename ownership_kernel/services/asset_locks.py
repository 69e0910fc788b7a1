"""
AssetLocks -- per-asset serialisation of read-check-write sequences.

Responsibility:
    Serialises the two operations that read an asset-wide aggregate and then
    write based on it: granting ownership (allocated basis points) and
    initiating a distribution (completed-run check plus snapshot).  Locks are
    scoped to one asset id, so different assets proceed in parallel.

Architecture position:
    Kernel > Services -- imperative shell infrastructure.
    Used by OwnershipLedgerService, AssetRegistryService and
    DistributionExecutor.

Two layers:
    1. AssetLockRegistry -- one in-process ``threading.Lock`` per asset id.
       Acquired before the first statement of the transaction and released
       after commit, so threads in one process queue without touching the
       database.
    2. lock_asset_row() -- ``SELECT ... FOR UPDATE`` on the asset row.  On
       PostgreSQL this serialises writers across processes; the row lock is
       held until the transaction ends.  SQLite has no row locks; there the
       engine opens every transaction with BEGIN IMMEDIATE, which takes the
       database write lock instead.

Failure modes:
    - AssetNotFoundError from lock_asset_row() when the asset does not exist.
    - TimeoutError from AssetLockRegistry.hold() when a timeout is given and
      the lock is not acquired in time.
"""

import threading
from collections.abc import Iterator
from contextlib import contextmanager
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from ownership_kernel.exceptions import AssetNotFoundError
from ownership_kernel.logging_config import get_logger
from ownership_kernel.models.asset import Asset

logger = get_logger("services.asset_locks")


class AssetLockRegistry:
    """
    Hands out one lock per asset id.

    Guarantees:
        - The same asset id always maps to the same lock object.
        - Holding the lock for one asset never blocks another asset.
    """

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: dict[str, threading.Lock] = {}

    def lock_for(self, asset_id: UUID | str) -> threading.Lock:
        key = str(asset_id)
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.Lock()
                self._locks[key] = lock
            return lock

    @contextmanager
    def hold(self, asset_id: UUID | str, timeout: float | None = None) -> Iterator[None]:
        """
        Hold the asset's lock for the duration of the block.

        Args:
            asset_id: Asset to serialise on.
            timeout: Seconds to wait; None waits indefinitely.
        """
        lock = self.lock_for(asset_id)
        acquired = lock.acquire(timeout=-1 if timeout is None else timeout)
        if not acquired:
            logger.warning(
                "asset_lock_timeout",
                extra={"asset_id": str(asset_id), "timeout_s": timeout},
            )
            raise TimeoutError(f"Timed out waiting for lock on asset {asset_id}")
        try:
            yield
        finally:
            lock.release()

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)


# Process-wide registry shared by services that are not handed one explicitly
default_lock_registry = AssetLockRegistry()


def lock_asset_row(session: Session, asset_id: UUID) -> Asset:
    """
    Load the asset row with an exclusive row lock.

    Preconditions:
        - Called inside the transaction whose lifetime the lock should span.

    Raises:
        AssetNotFoundError: If no asset has this id.
    """
    asset = session.execute(
        select(Asset)
        .where(Asset.id == asset_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    ).scalar_one_or_none()

    if asset is None:
        raise AssetNotFoundError(str(asset_id))
    return asset
