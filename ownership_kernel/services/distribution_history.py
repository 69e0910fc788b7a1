"""
DistributionHistoryStore -- queryable record of distribution runs.

Responsibility:
    Persists distribution runs and their line items, and answers the
    duplicate-prevention and audit questions: "has this (asset, period)
    already been paid?", "what did this idempotency key produce?", "what has
    this investor been paid?".

Architecture position:
    Kernel > Services -- imperative shell, flush-only.
    Written only by DistributionExecutor, which owns the transactions.

Invariants enforced:
    - Append-only: rows are only inserted, except for the single
      PENDING -> COMPLETED | FAILED transition of a run.
    - A run is marked COMPLETED only after its persisted line items have
      been re-read and found to sum to total_revenue exactly.
    - completion_key / completed_idempotency_key are written only on
      completion, so the store's unique constraints admit at most one
      completed run per (asset, period) and per idempotency key.
    - Reads never mutate.  Investor payout history only includes line items
      of COMPLETED runs; items of failed attempts are not authoritative.

Failure modes:
    - ConservationViolationError from save() if the persisted line items do
      not add up to the run total.
    - DistributionRunNotFoundError for unknown run ids.
    - SQLAlchemyError (IntegrityError, OperationalError) from flush, left to
      the executor to turn into a FAILED run.
"""

from collections.abc import Sequence
from datetime import datetime
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.orm import Session, selectinload

from ownership_kernel.domain.dtos import DistributionRunRecord, LineItemRecord
from ownership_kernel.domain.values import AllocatedShare, RevenuePeriod
from ownership_kernel.exceptions import (
    ConservationViolationError,
    DistributionRunNotFoundError,
)
from ownership_kernel.logging_config import get_logger
from ownership_kernel.models.distribution import (
    DistributionLineItem,
    DistributionRun,
    RunStatus,
)
from ownership_kernel.services.base import BaseService

logger = get_logger("services.distribution_history")


def completion_key_for(asset_id: UUID, period_key: str) -> str:
    """Value of DistributionRun.completion_key once a run completes."""
    return f"{asset_id}:{period_key}"


def _period_key(period: RevenuePeriod | str) -> str:
    if isinstance(period, RevenuePeriod):
        return period.period_key
    return period


class DistributionHistoryStore(BaseService):
    """
    Append-only store of distribution runs and line items.

    Read methods return DTOs.  open_run() hands the executor the ORM row it
    needs to drive the run through save() or mark_failed().
    """

    def __init__(self, session: Session):
        super().__init__(session)

    # ------------------------------------------------------------------
    # Duplicate-prevention lookups
    # ------------------------------------------------------------------

    def _record(self, run: DistributionRun) -> DistributionRunRecord:
        return DistributionRunRecord.from_model(run, list(run.line_items))

    def _runs(self):
        return select(DistributionRun).options(selectinload(DistributionRun.line_items))

    def find_completed_run(
        self,
        asset_id: UUID,
        period: RevenuePeriod | str,
    ) -> DistributionRunRecord | None:
        """The COMPLETED run for (asset, period), if any."""
        run = self.session.execute(
            self._runs().where(
                DistributionRun.completion_key
                == completion_key_for(asset_id, _period_key(period))
            )
        ).scalar_one_or_none()
        return self._record(run) if run is not None else None

    def find_by_idempotency_key(self, idempotency_key: str) -> DistributionRunRecord | None:
        """
        The run an idempotency key resolved to.

        Returns the COMPLETED run if the key ever completed, otherwise the
        latest attempt (pending or failed), otherwise None.
        """
        completed = self.session.execute(
            self._runs().where(DistributionRun.completed_idempotency_key == idempotency_key)
        ).scalar_one_or_none()
        if completed is not None:
            return self._record(completed)

        latest = self.session.execute(
            self._runs()
            .where(DistributionRun.idempotency_key == idempotency_key)
            .order_by(DistributionRun.attempt.desc())
            .limit(1)
        ).scalar_one_or_none()
        return self._record(latest) if latest is not None else None

    def next_attempt(self, idempotency_key: str) -> int:
        highest = self.session.execute(
            select(func.max(DistributionRun.attempt)).where(
                DistributionRun.idempotency_key == idempotency_key
            )
        ).scalar_one()
        return (highest or 0) + 1

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def open_run(
        self,
        *,
        asset_id: UUID,
        period: RevenuePeriod,
        total_revenue: int,
        currency: str,
        idempotency_key: str,
        snapshot_at: datetime,
        opened_at: datetime,
        actor_id: UUID,
    ) -> DistributionRun:
        """Insert a PENDING run as the next attempt for the key."""
        run = DistributionRun(
            asset_id=asset_id,
            period_start=period.start,
            period_end=period.end,
            period_key=period.period_key,
            total_revenue=total_revenue,
            currency=currency,
            status=RunStatus.PENDING,
            idempotency_key=idempotency_key,
            attempt=self.next_attempt(idempotency_key),
            snapshot_at=snapshot_at,
            opened_at=opened_at,
            created_by_id=actor_id,
        )
        self.session.add(run)
        self.session.flush()

        logger.info(
            "distribution_run_opened",
            extra={
                "run_id": str(run.id),
                "attempt": run.attempt,
                "period_key": run.period_key,
            },
        )
        return run

    def save(
        self,
        run: DistributionRun,
        shares: Sequence[AllocatedShare],
        *,
        actor_id: UUID,
        completed_at: datetime,
    ) -> DistributionRunRecord:
        """
        Append the line items of a PENDING run and flip it to COMPLETED.

        The persisted amounts are summed back from the database before the
        status flip; the run is never marked COMPLETED on the strength of
        in-memory arithmetic alone.

        Raises:
            ConservationViolationError: If the persisted items do not sum to
                run.total_revenue.  Nothing is marked completed.
        """
        items = [
            DistributionLineItem(
                run_id=run.id,
                investor_id=share.investor_id,
                basis_points=share.basis_points,
                amount=share.amount,
                currency=run.currency,
                is_rounding_adjustment=share.is_rounding_adjustment,
                position=position,
                created_by_id=actor_id,
            )
            for position, share in enumerate(shares)
        ]
        self.session.add_all(items)
        self.session.flush()

        persisted_total = self.session.execute(
            select(func.coalesce(func.sum(DistributionLineItem.amount), 0)).where(
                DistributionLineItem.run_id == run.id
            )
        ).scalar_one()
        if int(persisted_total) != run.total_revenue:
            raise ConservationViolationError(
                str(run.id), run.total_revenue, int(persisted_total)
            )

        run.status = RunStatus.COMPLETED
        run.completed_at = completed_at
        run.completion_key = completion_key_for(run.asset_id, run.period_key)
        run.completed_idempotency_key = run.idempotency_key
        run.updated_by_id = actor_id
        self.session.flush()

        return DistributionRunRecord.from_model(run, items)

    def mark_failed(
        self,
        run_id: UUID,
        *,
        failed_at: datetime,
        reason: str,
        diagnostic: str | None = None,
    ) -> DistributionRunRecord:
        """
        Move a PENDING run to FAILED.  Its line items (if any survived) are
        not authoritative.
        """
        run = self.session.execute(
            select(DistributionRun)
            .where(DistributionRun.id == run_id)
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if run is None:
            raise DistributionRunNotFoundError(str(run_id))

        run.status = RunStatus.FAILED
        run.failed_at = failed_at
        run.failure_reason = reason
        run.diagnostic = diagnostic[:2000] if diagnostic else None
        self.session.flush()

        logger.warning(
            "distribution_run_marked_failed",
            extra={"run_id": str(run_id), "failure_reason": reason},
        )
        return DistributionRunRecord.from_model(run)

    # ------------------------------------------------------------------
    # Audit / reporting reads
    # ------------------------------------------------------------------

    def get_run(self, run_id: UUID) -> DistributionRunRecord:
        run = self.session.execute(
            self._runs().where(DistributionRun.id == run_id)
        ).scalar_one_or_none()
        if run is None:
            raise DistributionRunNotFoundError(str(run_id))
        return self._record(run)

    def list_runs_for_asset(
        self,
        asset_id: UUID,
        *,
        status: RunStatus | str | None = None,
    ) -> list[DistributionRunRecord]:
        """Every run for the asset (failed attempts included), oldest first."""
        stmt = self._runs().where(DistributionRun.asset_id == asset_id)
        if status is not None:
            stmt = stmt.where(DistributionRun.status == RunStatus(status).value)
        runs = self.session.execute(
            stmt.order_by(
                DistributionRun.opened_at,
                DistributionRun.period_key,
                DistributionRun.attempt,
            )
        ).scalars().all()
        return [self._record(run) for run in runs]

    def list_line_items_for_investor(self, investor_id: str) -> list[LineItemRecord]:
        """
        Payout history for one investor, across assets, from COMPLETED runs.
        """
        items = self.session.execute(
            select(DistributionLineItem)
            .join(DistributionRun, DistributionLineItem.run_id == DistributionRun.id)
            .where(
                DistributionLineItem.investor_id == investor_id,
                DistributionRun.status == RunStatus.COMPLETED.value,
            )
            .order_by(DistributionRun.completed_at, DistributionRun.period_key)
        ).scalars().all()
        return [LineItemRecord.from_model(item) for item in items]
