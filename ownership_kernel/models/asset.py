"""
Module: ownership_kernel.models.asset
Responsibility: ORM persistence for physical assets (vehicles, batteries,
    charging cabinets) and their lifecycle status.
Architecture position: Kernel > Models.  May import from db/ only.

Invariants enforced:
    - asset_code is unique (uq_asset_code).
    - Lifecycle: ACTIVE <-> MAINTENANCE, either -> RETIRED.  RETIRED is
      terminal; a retired asset is never reactivated (VALID_TRANSITIONS).
    - Assets are never deleted (db/immutability.py).

Failure modes:
    - IntegrityError on duplicate asset_code.
    - ImmutabilityViolationError on DELETE.
"""

from datetime import datetime
from enum import Enum

from sqlalchemy import BigInteger, Boolean, DateTime, Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from ownership_kernel.db.base import TrackedBase


class AssetCategory(str, Enum):
    """Kind of physical unit."""

    VEHICLE = "vehicle"
    BATTERY = "battery"
    CHARGING_CABINET = "charging_cabinet"


class AssetStatus(str, Enum):
    """Lifecycle status of an asset.

    Contract: RETIRED is terminal.
    """

    ACTIVE = "active"
    MAINTENANCE = "maintenance"
    RETIRED = "retired"


VALID_TRANSITIONS: dict[AssetStatus, frozenset[AssetStatus]] = {
    AssetStatus.ACTIVE: frozenset({AssetStatus.MAINTENANCE, AssetStatus.RETIRED}),
    AssetStatus.MAINTENANCE: frozenset({AssetStatus.ACTIVE, AssetStatus.RETIRED}),
    AssetStatus.RETIRED: frozenset(),
}


class Asset(TrackedBase):
    """
    One physical unit that can be fractionally owned.

    Owned by the Asset Registry and mutated only by operator actions
    (status and health updates).  The asset row doubles as the per-asset
    lock target: grant and distribution flows SELECT it FOR UPDATE.
    """

    __tablename__ = "assets"

    __table_args__ = (
        UniqueConstraint("asset_code", name="uq_asset_code"),
        Index("idx_asset_status", "status"),
        Index("idx_asset_category", "category"),
    )

    # Operator-facing identifier, e.g. "BAT-0042"
    asset_code: Mapped[str] = mapped_column(String(50), nullable=False)

    category: Mapped[AssetCategory] = mapped_column(String(20), nullable=False)

    status: Mapped[AssetStatus] = mapped_column(
        String(20),
        default=AssetStatus.ACTIVE,
        nullable=False,
    )

    model: Mapped[str | None] = mapped_column(String(100), nullable=True)

    location: Mapped[str | None] = mapped_column(String(200), nullable=True)

    original_value: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)

    currency: Mapped[str] = mapped_column(String(3), nullable=False)

    # State of health, 0..100
    health: Mapped[int] = mapped_column(Integer, nullable=False, default=100)

    # Set once the first ownership grant is recorded
    is_tokenized: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    retired_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    @property
    def is_retired(self) -> bool:
        return self.status == AssetStatus.RETIRED

    def can_transition_to(self, new_status: AssetStatus) -> bool:
        return AssetStatus(new_status) in VALID_TRANSITIONS[AssetStatus(self.status)]

    def __repr__(self) -> str:
        return f"<Asset {self.asset_code} {self.category} {self.status}>"
