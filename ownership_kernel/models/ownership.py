"""
Module: ownership_kernel.models.ownership
Responsibility: ORM persistence for ownership grants ("tokens") -- the
    append-only log of who owns which fraction of which asset.
Architecture position: Kernel > Models.  May import from db/ only.

Invariants enforced:
    - basis_points is in (0, 10000] (ck_grant_basis_points).
    - amount_paid is non-negative (ck_grant_amount_paid).
    - Grants are never edited in place.  The only permitted change is the
      one-way ACTIVE -> CANCELLED transition together with its cancellation
      metadata (db/immutability.py).  Grants are never deleted.
    - Sum of basis_points over ACTIVE grants per asset never exceeds 10000.
      This is NOT a column constraint: OwnershipLedgerService derives the
      allocated total from this log under the per-asset lock.

Failure modes:
    - IntegrityError on duplicate grant_code or out-of-range basis points.
    - ImmutabilityViolationError on forbidden UPDATE/DELETE.
"""

from datetime import datetime
from enum import Enum
from uuid import UUID

from sqlalchemy import (
    BigInteger,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from ownership_kernel.db.base import TrackedBase, UUIDString


class GrantStatus(str, Enum):
    """Lifecycle status of an ownership grant.

    Contract: ACTIVE -> CANCELLED only.
    """

    ACTIVE = "active"
    CANCELLED = "cancelled"


class OwnershipGrant(TrackedBase):
    """
    A fraction of one asset held by one investor.

    Contract:
        Immutable once created.  A sale or transfer is modelled as the
        cancellation of this grant plus a new grant whose
        supersedes_grant_id points back here; both rows are preserved.

    Guarantees:
        - granted_at comes from the injected clock, so historical snapshots
          (as_of queries) are reproducible.
        - cancelled_at is set exactly once, when status becomes CANCELLED.
    """

    __tablename__ = "ownership_grants"

    __table_args__ = (
        UniqueConstraint("grant_code", name="uq_grant_code"),
        CheckConstraint(
            "basis_points > 0 AND basis_points <= 10000",
            name="ck_grant_basis_points",
        ),
        CheckConstraint("amount_paid >= 0", name="ck_grant_amount_paid"),
        Index("idx_grant_asset", "asset_id"),
        Index("idx_grant_investor", "investor_id"),
        Index("idx_grant_asset_status", "asset_id", "status"),
    )

    # Human-facing token identifier, e.g. "TKN_8FJ2..."
    grant_code: Mapped[str] = mapped_column(String(40), nullable=False)

    asset_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("assets.id"),
        nullable=False,
    )

    # External investor reference (user id in the identity service)
    investor_id: Mapped[str] = mapped_column(String(100), nullable=False)

    basis_points: Mapped[int] = mapped_column(Integer, nullable=False)

    amount_paid: Mapped[int] = mapped_column(BigInteger, nullable=False)

    currency: Mapped[str] = mapped_column(String(3), nullable=False)

    status: Mapped[GrantStatus] = mapped_column(
        String(20),
        default=GrantStatus.ACTIVE,
        nullable=False,
    )

    granted_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )

    cancelled_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    cancellation_reason: Mapped[str | None] = mapped_column(String(200), nullable=True)

    # Set when this grant is the receiving side of a transfer
    supersedes_grant_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("ownership_grants.id"),
        nullable=True,
    )

    @property
    def is_active(self) -> bool:
        return self.status == GrantStatus.ACTIVE

    def __repr__(self) -> str:
        return (
            f"<OwnershipGrant {self.grant_code} asset={self.asset_id} "
            f"investor={self.investor_id} bps={self.basis_points} {self.status}>"
        )
