"""
DistributionExecutor -- orchestrates one revenue distribution run.

Responsibility:
    Takes "distribute total_revenue minor units earned by asset X over period
    P" and turns it into exactly one COMPLETED run with line items that sum
    to the input, or into a FAILED run that a retry can supersede.  After
    the run is durable, hands settlement instructions to the custody sink.

Architecture position:
    Kernel > Services -- orchestrator.  Owns its transaction boundaries.

    initiate_distribution()
        |
        +-- AssetLockRegistry.hold(asset)          per-asset serialisation
        |     +-- lock_asset_row()                 SELECT ... FOR UPDATE
        |     +-- DistributionHistoryStore         completed run? -> return it
        |     +-- OwnershipLedgerService           snapshot (pinned: snapshot_at)
        |     +-- compute_distribution()           pure
        |     +-- open_run() -> COMMIT             durable PENDING row
        |     +-- save() -> COMMIT                 items + sum check + COMPLETED
        |
        +-- SettlementSink.emit()                  after the lock is released

Invariants enforced:
    - At most one COMPLETED run per (asset, period) and per idempotency key:
      checked under the lock, backed by unique constraints in the store.
    - A duplicate request returns the prior run unchanged with status
      ALREADY_COMPLETED; no second set of line items is written.
    - Conservation is re-checked against the persisted rows before the run
      is flipped to COMPLETED.
    - Failed runs are kept.  A retry with the same key opens attempt + 1 and
      recomputes from scratch.
    - The ownership ledger is only read during a run, never written.
    - No call to the settlement sink happens while the asset lock is held.

Failure modes:
    - AssetNotFoundError, NoOwnersError, InvalidAmountError,
      InvalidPeriodError, InvalidCurrencyError: raised before any run row
      exists.
    - IdempotencyKeyConflictError: key already completed a run for a
      different asset or period.
    - PersistenceFailureError: storage failed.  Before the PENDING row is
      committed nothing is kept and run_id is None; afterwards the run is
      marked FAILED.  Retryable either way.
    - ConservationViolationError: line items did not sum to the total; the
      run is marked FAILED with a diagnostic.  Indicates a bug.
"""

import time
from dataclasses import dataclass
from enum import Enum
from uuid import UUID, uuid4

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ownership_kernel.db.types import BASIS_POINTS_PER_WHOLE, validate_currency
from ownership_kernel.domain.clock import Clock, SystemClock
from ownership_kernel.domain.distribution_calculator import compute_distribution
from ownership_kernel.domain.dtos import DistributionRunRecord, LineItemRecord
from ownership_kernel.domain.values import OwnershipShare, RevenuePeriod
from ownership_kernel.exceptions import (
    ConservationViolationError,
    IdempotencyKeyConflictError,
    InvalidAmountError,
    NoOwnersError,
    OwnershipKernelError,
    PersistenceFailureError,
)
from ownership_kernel.logging_config import LogContext, get_logger
from ownership_kernel.services.asset_locks import (
    AssetLockRegistry,
    default_lock_registry,
    lock_asset_row,
)
from ownership_kernel.services.distribution_history import DistributionHistoryStore
from ownership_kernel.services.ownership_ledger import OwnershipLedgerService
from ownership_kernel.services.settlement import (
    LoggingSettlementSink,
    SettlementSink,
    instructions_for,
)
from ownership_kernel.utils.idempotency import generate_distribution_key

logger = get_logger("services.distribution_executor")


class UnallocatedSharePolicy(str, Enum):
    """What happens to the revenue share of unsold basis points."""

    # Split over sold basis points only
    PRO_RATA = "pro_rata"
    # Book the unsold share to the platform investor
    RETAIN = "retain"


@dataclass(frozen=True)
class DistributionPolicy:
    """
    Distribution settings compiled from configuration.

    Contract:
        RETAIN requires a platform_investor_id.  default_currency, when set,
        is the settlement currency for requests that name none; otherwise
        the asset's own currency applies.
    """

    unallocated_policy: UnallocatedSharePolicy = UnallocatedSharePolicy.PRO_RATA
    platform_investor_id: str | None = None
    default_currency: str | None = None

    def __post_init__(self) -> None:
        if self.default_currency is not None:
            object.__setattr__(
                self, "default_currency", validate_currency(self.default_currency)
            )
        object.__setattr__(
            self, "unallocated_policy", UnallocatedSharePolicy(self.unallocated_policy)
        )
        if (
            self.unallocated_policy == UnallocatedSharePolicy.RETAIN
            and not self.platform_investor_id
        ):
            raise ValueError("The retain policy requires a platform_investor_id")

    def shares_for(self, snapshot: tuple[OwnershipShare, ...]) -> tuple[OwnershipShare, ...]:
        """Snapshot the calculator should split over under this policy."""
        if self.unallocated_policy != UnallocatedSharePolicy.RETAIN:
            return snapshot

        unallocated = BASIS_POINTS_PER_WHOLE - sum(s.basis_points for s in snapshot)
        if unallocated <= 0:
            return snapshot

        shares = []
        merged = False
        for share in snapshot:
            if share.investor_id == self.platform_investor_id:
                shares.append(
                    OwnershipShare(share.investor_id, share.basis_points + unallocated)
                )
                merged = True
            else:
                shares.append(share)
        if not merged:
            shares.append(OwnershipShare(self.platform_investor_id, unallocated))
        return tuple(shares)


class DistributionStatus(str, Enum):
    """Outcome of initiate_distribution()."""

    COMPLETED = "completed"
    ALREADY_COMPLETED = "already_completed"


@dataclass(frozen=True)
class DistributionResult:
    """Result of a distribution request."""

    status: DistributionStatus
    run: DistributionRunRecord

    @property
    def run_id(self) -> UUID:
        return self.run.id

    @property
    def line_items(self) -> tuple[LineItemRecord, ...]:
        return self.run.line_items

    @property
    def is_duplicate(self) -> bool:
        return self.status == DistributionStatus.ALREADY_COMPLETED


def _coerce_period(period: RevenuePeriod | str) -> RevenuePeriod:
    if isinstance(period, RevenuePeriod):
        return period
    return RevenuePeriod.from_key(period)


class DistributionExecutor:
    """
    Runs revenue distributions, exactly once per (asset, period).

    Contract:
        The executor commits and rolls back its own session; pass it a
        session with no transaction in progress.

    Usage:
        executor = DistributionExecutor(session, clock, settlement_sink=sink)
        result = executor.initiate_distribution(
            asset_id, "2025-11", 100_000, actor_id=operator_id,
        )
        if result.is_duplicate:
            ...  # the period was already paid; result.run is the prior run
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        *,
        policy: DistributionPolicy | None = None,
        settlement_sink: SettlementSink | None = None,
        locks: AssetLockRegistry | None = None,
    ):
        self._session = session
        self._clock = clock or SystemClock()
        self._policy = policy or DistributionPolicy()
        self._sink = settlement_sink or LoggingSettlementSink()
        self._locks = locks or default_lock_registry
        self._history = DistributionHistoryStore(session)
        # Read-only use: snapshots only
        self._ledger = OwnershipLedgerService(
            session, self._clock, locks=self._locks, auto_commit=False
        )

    @property
    def history(self) -> DistributionHistoryStore:
        return self._history

    def initiate_distribution(
        self,
        asset_id: UUID,
        period: RevenuePeriod | str,
        total_revenue: int,
        *,
        actor_id: UUID,
        idempotency_key: str | None = None,
        currency: str | None = None,
    ) -> DistributionResult:
        """
        Distribute ``total_revenue`` minor units across the asset's owners.

        Args:
            asset_id: Asset that earned the revenue.
            period: RevenuePeriod, or a period key such as "2025-11".
            total_revenue: Authoritative total from the revenue feed.
            actor_id: Operator or job triggering the run.
            idempotency_key: Caller-supplied key; defaults to
                "distribution:<asset_id>:<period_key>".
            currency: Settlement currency; defaults to the asset's currency.

        Returns:
            DistributionResult with status COMPLETED for a new run, or
            ALREADY_COMPLETED carrying the prior run unchanged.
        """
        revenue_period = _coerce_period(period)
        if isinstance(total_revenue, bool) or not isinstance(total_revenue, int):
            raise InvalidAmountError("total_revenue", total_revenue)
        if total_revenue < 0:
            raise InvalidAmountError("total_revenue", total_revenue)
        currency = currency or self._policy.default_currency
        if currency is not None:
            currency = validate_currency(currency)
        key = idempotency_key or generate_distribution_key(
            asset_id, revenue_period.period_key
        )

        with LogContext.bind(
            correlation_id=str(uuid4()),
            actor_id=actor_id,
            asset_id=asset_id,
        ):
            logger.info(
                "distribution_started",
                extra={
                    "period_key": revenue_period.period_key,
                    "total_revenue": total_revenue,
                    "idempotency_key": key,
                },
            )
            t0 = time.monotonic()

            with self._locks.hold(asset_id):
                result = self._distribute_locked(
                    asset_id, revenue_period, total_revenue, key, currency, actor_id
                )

            duration_ms = round((time.monotonic() - t0) * 1000, 2)
            if result.status == DistributionStatus.ALREADY_COMPLETED:
                logger.info(
                    "distribution_already_completed",
                    extra={"run_id": str(result.run_id), "duration_ms": duration_ms},
                )
                return result

            logger.info(
                "distribution_completed",
                extra={
                    "run_id": str(result.run_id),
                    "attempt": result.run.attempt,
                    "line_item_count": len(result.line_items),
                    "rounding_adjustments": sum(
                        1 for item in result.line_items if item.is_rounding_adjustment
                    ),
                    "duration_ms": duration_ms,
                },
            )
            self._emit_settlement(result.run)
            return result

    # ------------------------------------------------------------------
    # Locked section
    # ------------------------------------------------------------------

    def _distribute_locked(
        self,
        asset_id: UUID,
        period: RevenuePeriod,
        total_revenue: int,
        key: str,
        currency: str | None,
        actor_id: UUID,
    ) -> DistributionResult:
        # Phase 1: duplicate check, snapshot, calculation, durable PENDING run
        try:
            asset = lock_asset_row(self._session, asset_id)
            asset_id = asset.id
            run_currency = currency or asset.currency

            prior = self._find_prior(asset_id, period, key, total_revenue, run_currency)
            if prior is not None:
                self._session.commit()
                return DistributionResult(DistributionStatus.ALREADY_COMPLETED, prior)

            snapshot_at = self._clock.now()
            snapshot = self._ledger.get_ownership_snapshot(asset_id)
            if not snapshot:
                raise NoOwnersError(str(asset_id))
            allocation = compute_distribution(self._policy.shares_for(snapshot), total_revenue)

            run = self._history.open_run(
                asset_id=asset_id,
                period=period,
                total_revenue=total_revenue,
                currency=run_currency,
                idempotency_key=key,
                snapshot_at=snapshot_at,
                opened_at=self._clock.now(),
                actor_id=actor_id,
            )
            run_id = run.id
            self._session.commit()
        except ConservationViolationError as exc:
            self._session.rollback()
            logger.critical(
                "distribution_conservation_violation",
                extra={
                    "expected_total": exc.expected_total,
                    "actual_total": exc.actual_total,
                },
            )
            raise
        except OwnershipKernelError as exc:
            self._session.rollback()
            logger.warning("distribution_rejected", extra={"reason": exc.code})
            raise
        except SQLAlchemyError as exc:
            self._session.rollback()
            logger.error("distribution_failed", exc_info=True)
            raise PersistenceFailureError(None) from exc
        except Exception:
            self._session.rollback()
            logger.error("distribution_failed", exc_info=True)
            raise

        # Phase 2: line items, conservation check, COMPLETED
        with LogContext.bind(run_id=run_id):
            try:
                lock_asset_row(self._session, asset_id)
                record = self._history.save(
                    run,
                    allocation,
                    actor_id=actor_id,
                    completed_at=self._clock.now(),
                )
                self._session.commit()
            except ConservationViolationError as exc:
                self._session.rollback()
                logger.critical(
                    "distribution_conservation_violation",
                    extra={
                        "expected_total": exc.expected_total,
                        "actual_total": exc.actual_total,
                    },
                )
                self._record_failure(
                    run_id,
                    exc.code,
                    f"line items sum to {exc.actual_total}, expected {exc.expected_total}",
                )
                raise
            except SQLAlchemyError as exc:
                self._session.rollback()
                logger.error("distribution_failed", exc_info=True)
                self._record_failure(
                    run_id, PersistenceFailureError.code, f"{type(exc).__name__}: {exc}"
                )
                raise PersistenceFailureError(str(run_id)) from exc
            except Exception as exc:
                self._session.rollback()
                logger.error("distribution_failed", exc_info=True)
                self._record_failure(
                    run_id,
                    getattr(exc, "code", "UNEXPECTED_ERROR"),
                    f"{type(exc).__name__}: {exc}",
                )
                raise

        return DistributionResult(DistributionStatus.COMPLETED, record)

    def _find_prior(
        self,
        asset_id: UUID,
        period: RevenuePeriod,
        key: str,
        total_revenue: int,
        currency: str,
    ) -> DistributionRunRecord | None:
        """
        The completed run this request duplicates, if any.

        A duplicate is returned unchanged even when its amount or currency
        differs from the request; the difference is logged.

        Raises:
            IdempotencyKeyConflictError: If the key completed a request for
                a different asset or period.
        """
        by_key = self._history.find_by_idempotency_key(key)
        if by_key is not None and by_key.is_completed:
            if by_key.asset_id != asset_id or by_key.period_key != period.period_key:
                logger.warning(
                    "idempotency_key_conflict",
                    extra={"idempotency_key": key, "existing_run_id": str(by_key.id)},
                )
                raise IdempotencyKeyConflictError(key, str(by_key.id))
            self._warn_if_request_differs(by_key, total_revenue, currency)
            return by_key

        by_period = self._history.find_completed_run(asset_id, period)
        if by_period is not None:
            self._warn_if_request_differs(by_period, total_revenue, currency)
        return by_period

    @staticmethod
    def _warn_if_request_differs(
        prior: DistributionRunRecord, total_revenue: int, currency: str
    ) -> None:
        if prior.total_revenue == total_revenue and prior.currency == currency:
            return
        logger.warning(
            "distribution_duplicate_amount_differs",
            extra={
                "existing_run_id": str(prior.id),
                "existing_total": prior.total_revenue,
                "requested_total": total_revenue,
                "existing_currency": prior.currency,
                "requested_currency": currency,
            },
        )

    def _record_failure(self, run_id: UUID, reason: str, diagnostic: str) -> None:
        """Mark the run FAILED in a fresh transaction."""
        try:
            self._history.mark_failed(
                run_id,
                failed_at=self._clock.now(),
                reason=reason,
                diagnostic=diagnostic,
            )
            self._session.commit()
        except SQLAlchemyError:
            self._session.rollback()
            # The run stays PENDING; a retry opens the next attempt regardless
            logger.error(
                "distribution_failure_not_recorded",
                extra={"run_id": str(run_id), "failure_reason": reason},
                exc_info=True,
            )

    def _emit_settlement(self, run: DistributionRunRecord) -> None:
        instructions = instructions_for(run)
        try:
            self._sink.emit(instructions)
        except Exception:
            logger.error(
                "settlement_emit_failed",
                extra={"run_id": str(run.id), "instruction_count": len(instructions)},
                exc_info=True,
            )
            return
        logger.info(
            "settlement_instructions_handed_off",
            extra={"run_id": str(run.id), "instruction_count": len(instructions)},
        )
