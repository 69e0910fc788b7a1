"""
Module: ownership_kernel.models.distribution
Responsibility: ORM persistence for distribution runs and their line items --
    the record of what each owner is owed for each asset revenue period.
Architecture position: Kernel > Models.  May import from db/ only.

Invariants enforced:
    - At most one COMPLETED run per (asset, period): completion_key is set to
      "<asset_id>:<period_key>" only when a run completes, under a UNIQUE
      constraint (uq_run_completion).  NULLs do not collide, so failed
      attempts can coexist.
    - At most one COMPLETED run per idempotency key
      (uq_run_completed_idempotency), and one row per (key, attempt)
      (uq_run_idempotency_attempt).
    - Status transitions are one-way: PENDING -> COMPLETED or
      PENDING -> FAILED.  Terminal runs are immutable (db/immutability.py).
    - Line items are immutable from creation and never deleted.
    - Sum of line-item amounts == total_revenue for every COMPLETED run.
      Checked by DistributionHistoryStore.save() against the persisted rows
      before the run is flipped to COMPLETED; a mismatch marks the run FAILED.

Failure modes:
    - IntegrityError on a second completion for the same asset/period or key.
    - ImmutabilityViolationError on edits to terminal runs or any line item.
"""

from datetime import date, datetime
from enum import Enum
from uuid import UUID

from sqlalchemy import (
    BigInteger,
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ownership_kernel.db.base import TrackedBase, UUIDString


class RunStatus(str, Enum):
    """Lifecycle status of a distribution run.

    Contract: PENDING -> COMPLETED | FAILED.  Terminal states are final.
    """

    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


TERMINAL_RUN_STATUSES = (RunStatus.COMPLETED, RunStatus.FAILED)


class DistributionRun(TrackedBase):
    """
    One decision to distribute a revenue amount for one asset over one period.

    Contract:
        A failed run is never resumed.  A retry under the same idempotency
        key opens a fresh run with attempt + 1; the failed row stays for
        audit.

    Guarantees:
        - snapshot_at pins the ownership snapshot used for the line items.
        - failure_reason / diagnostic are populated whenever status is FAILED.
    """

    __tablename__ = "distribution_runs"

    __table_args__ = (
        UniqueConstraint(
            "idempotency_key", "attempt", name="uq_run_idempotency_attempt"
        ),
        UniqueConstraint("completion_key", name="uq_run_completion"),
        UniqueConstraint(
            "completed_idempotency_key", name="uq_run_completed_idempotency"
        ),
        CheckConstraint("total_revenue >= 0", name="ck_run_total_revenue"),
        CheckConstraint("period_end >= period_start", name="ck_run_period"),
        Index("idx_run_asset_period", "asset_id", "period_key"),
        Index("idx_run_idempotency", "idempotency_key"),
        Index("idx_run_status", "status"),
    )

    asset_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("assets.id"),
        nullable=False,
    )

    period_start: Mapped[date] = mapped_column(Date, nullable=False)

    period_end: Mapped[date] = mapped_column(Date, nullable=False)

    # Canonical period identifier, e.g. "2025-11" or "2025-11-01..2025-11-15"
    period_key: Mapped[str] = mapped_column(String(30), nullable=False)

    total_revenue: Mapped[int] = mapped_column(BigInteger, nullable=False)

    currency: Mapped[str] = mapped_column(String(3), nullable=False)

    status: Mapped[RunStatus] = mapped_column(
        String(20),
        default=RunStatus.PENDING,
        nullable=False,
    )

    idempotency_key: Mapped[str] = mapped_column(String(300), nullable=False)

    attempt: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    # "<asset_id>:<period_key>", populated only on completion
    completion_key: Mapped[str | None] = mapped_column(String(100), nullable=True)

    # Copy of idempotency_key, populated only on completion
    completed_idempotency_key: Mapped[str | None] = mapped_column(
        String(300),
        nullable=True,
    )

    snapshot_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )

    opened_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )

    completed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    failed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    # Machine-readable failure code (exception code)
    failure_reason: Mapped[str | None] = mapped_column(String(50), nullable=True)

    # Internal detail for support; never shown to callers
    diagnostic: Mapped[str | None] = mapped_column(String(2000), nullable=True)

    line_items: Mapped[list["DistributionLineItem"]] = relationship(
        "DistributionLineItem",
        back_populates="run",
        order_by="DistributionLineItem.position",
    )

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_RUN_STATUSES

    def __repr__(self) -> str:
        return (
            f"<DistributionRun {self.id} asset={self.asset_id} "
            f"period={self.period_key} attempt={self.attempt} {self.status}>"
        )


class DistributionLineItem(TrackedBase):
    """
    One payment owed to one owner as part of a distribution run.

    Immutable from creation.  is_rounding_adjustment marks owners who
    received one extra minor unit from the remainder pass.
    """

    __tablename__ = "distribution_line_items"

    __table_args__ = (
        UniqueConstraint("run_id", "investor_id", name="uq_line_run_investor"),
        CheckConstraint("amount >= 0", name="ck_line_amount"),
        Index("idx_line_run", "run_id"),
        Index("idx_line_investor", "investor_id"),
    )

    run_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("distribution_runs.id"),
        nullable=False,
    )

    investor_id: Mapped[str] = mapped_column(String(100), nullable=False)

    # Fraction held at snapshot time
    basis_points: Mapped[int] = mapped_column(Integer, nullable=False)

    amount: Mapped[int] = mapped_column(BigInteger, nullable=False)

    currency: Mapped[str] = mapped_column(String(3), nullable=False)

    is_rounding_adjustment: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
    )

    # Snapshot order, keeps line items stable across reads
    position: Mapped[int] = mapped_column(Integer, nullable=False)

    run: Mapped[DistributionRun] = relationship(
        DistributionRun,
        back_populates="line_items",
    )

    def __repr__(self) -> str:
        return (
            f"<DistributionLineItem run={self.run_id} investor={self.investor_id} "
            f"amount={self.amount}>"
        )
