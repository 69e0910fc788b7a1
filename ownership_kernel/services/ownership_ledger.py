"""
OwnershipLedgerService -- append-only log of fractional ownership grants.

Responsibility:
    Records ownership grants ("tokens") against assets, cancels and
    transfers them, and answers "who owns what" -- now, or as of any past
    instant.

Architecture position:
    Kernel > Services -- imperative shell.
    Depends on the Asset model (row lock target) and the per-asset lock
    registry.  Read by DistributionExecutor for snapshots.

Invariants enforced:
    - For every asset, the sum of basis points over ACTIVE grants never
      exceeds 10,000.  The allocated total is derived from the grant log on
      every request (never a cached counter), and the read-check-append
      runs under the per-asset lock plus the asset row lock.
    - Grants are never edited; cancellation is the one permitted change
      (db/immutability.py backs this at the ORM level).
    - A transfer cancels the old grant and records the new one in the same
      transaction, so allocation never dips or doubles in between.
    - Only ACTIVE assets accept new grants.

Transaction boundary:
    With ``auto_commit=True`` (default) each write method owns its
    transaction: the asset lock is taken before the first statement and
    released after commit.  With ``auto_commit=False`` the caller owns the
    transaction; the database row lock still holds until the caller commits.

Failure modes:
    - InvalidFractionError, InvalidAmountError, InvalidCurrencyError on
      malformed input.
    - InvestorNotVerifiedError when the KYC assertion is false (or missing
      and required by configuration).
    - AssetNotFoundError, AssetNotInvestableError.
    - OverAllocationError, with allocated/requested/available basis points.
    - GrantNotFoundError, GrantAlreadyCancelledError.
"""

import secrets
import string
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime
from uuid import UUID

from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session

from ownership_kernel.db.types import BASIS_POINTS_PER_WHOLE, ensure_utc, validate_currency
from ownership_kernel.domain.clock import Clock, SystemClock
from ownership_kernel.domain.dtos import GrantRecord
from ownership_kernel.domain.values import OwnershipShare
from ownership_kernel.exceptions import (
    AssetNotFoundError,
    AssetNotInvestableError,
    GrantAlreadyCancelledError,
    GrantNotFoundError,
    InvalidAmountError,
    InvalidFractionError,
    InvestorNotVerifiedError,
    OverAllocationError,
)
from ownership_kernel.logging_config import LogContext, get_logger
from ownership_kernel.models.asset import Asset, AssetStatus
from ownership_kernel.models.ownership import GrantStatus, OwnershipGrant
from ownership_kernel.services.asset_locks import (
    AssetLockRegistry,
    default_lock_registry,
    lock_asset_row,
)
from ownership_kernel.services.base import BaseService

logger = get_logger("services.ownership_ledger")

GRANT_CODE_PREFIX = "TKN_"
_GRANT_CODE_ALPHABET = string.ascii_uppercase + string.digits
_GRANT_CODE_LENGTH = 20


def generate_grant_code() -> str:
    """Human-facing token identifier, e.g. ``TKN_8FJ2K0Q9ZL4M1XW7RT5B``."""
    return GRANT_CODE_PREFIX + "".join(
        secrets.choice(_GRANT_CODE_ALPHABET) for _ in range(_GRANT_CODE_LENGTH)
    )


def _validate_basis_points(basis_points: object) -> int:
    if isinstance(basis_points, bool) or not isinstance(basis_points, int):
        raise InvalidFractionError(basis_points)
    if not 0 < basis_points <= BASIS_POINTS_PER_WHOLE:
        raise InvalidFractionError(basis_points)
    return basis_points


def _validate_amount(field: str, amount: object) -> int:
    if isinstance(amount, bool) or not isinstance(amount, int) or amount < 0:
        raise InvalidAmountError(field, amount)
    return amount


def _validate_investor_id(investor_id: object) -> str:
    if not isinstance(investor_id, str) or not investor_id.strip():
        raise ValueError(f"investor_id must be a non-empty string, got {investor_id!r}")
    return investor_id


class OwnershipLedgerService(BaseService):
    """
    Grant, cancel, transfer and snapshot fractional ownership.

    Contract:
        ``grant_ownership`` either appends exactly one ACTIVE grant and
        leaves the asset's allocated total <= 10,000, or raises and appends
        nothing.

    Usage:
        ledger = OwnershipLedgerService(session, clock)
        grant = ledger.grant_ownership(
            asset_id, "investor-17", 1500, 150_000_00,
            actor_id=actor_id, investor_verified=True,
        )
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        *,
        locks: AssetLockRegistry | None = None,
        auto_commit: bool = True,
        require_kyc_assertion: bool = False,
    ):
        """
        Args:
            session: SQLAlchemy session.
            clock: Clock for grant/cancellation timestamps. Defaults to SystemClock.
            locks: Per-asset lock registry. Defaults to the process-wide one.
            auto_commit: If True (default), write methods commit on success
                and roll back on failure.
            require_kyc_assertion: If True, a grant without an explicit
                ``investor_verified=True`` is rejected.
        """
        super().__init__(session)
        self._clock = clock or SystemClock()
        self._locks = locks or default_lock_registry
        self._auto_commit = auto_commit
        self._require_kyc_assertion = require_kyc_assertion

    # ------------------------------------------------------------------
    # Transaction helpers
    # ------------------------------------------------------------------

    @contextmanager
    def _asset_transaction(self, asset_id: UUID) -> Iterator[None]:
        with self._locks.hold(asset_id):
            try:
                yield
                if self._auto_commit:
                    self.session.commit()
            except Exception:
                if self._auto_commit:
                    self.session.rollback()
                raise

    def _check_kyc(self, investor_id: str, investor_verified: bool | None) -> None:
        if investor_verified is False or (
            investor_verified is None and self._require_kyc_assertion
        ):
            logger.warning(
                "grant_rejected_unverified_investor",
                extra={"investor_id": investor_id, "assertion": investor_verified},
            )
            raise InvestorNotVerifiedError(investor_id)

    def _allocated(self, asset_id: UUID) -> int:
        total = self.session.execute(
            select(func.coalesce(func.sum(OwnershipGrant.basis_points), 0)).where(
                OwnershipGrant.asset_id == asset_id,
                OwnershipGrant.status == GrantStatus.ACTIVE.value,
            )
        ).scalar_one()
        return int(total)

    def _new_grant(
        self,
        asset: Asset,
        investor_id: str,
        basis_points: int,
        amount_paid: int,
        currency: str | None,
        actor_id: UUID,
        supersedes_grant_id: UUID | None = None,
    ) -> OwnershipGrant:
        grant = OwnershipGrant(
            grant_code=generate_grant_code(),
            asset_id=asset.id,
            investor_id=investor_id,
            basis_points=basis_points,
            amount_paid=amount_paid,
            currency=validate_currency(currency or asset.currency),
            status=GrantStatus.ACTIVE,
            granted_at=self._clock.now(),
            supersedes_grant_id=supersedes_grant_id,
            created_by_id=actor_id,
        )
        self.session.add(grant)
        if not asset.is_tokenized:
            asset.is_tokenized = True
            asset.updated_by_id = actor_id
        return grant

    def _grant_asset_id(self, grant_id: UUID) -> UUID:
        """
        Resolve the asset a grant belongs to, before the asset lock is taken.

        The lookup transaction is closed again when this service owns its
        transactions: on SQLite every transaction holds the database write
        lock, and it must not be held while waiting for the asset lock.
        """
        asset_id = self._load_grant(grant_id).asset_id
        if self._auto_commit:
            self.session.commit()
        return asset_id

    def _load_grant(self, grant_id: UUID, *, refresh: bool = False) -> OwnershipGrant:
        stmt = select(OwnershipGrant).where(OwnershipGrant.id == grant_id)
        if refresh:
            stmt = stmt.execution_options(populate_existing=True)
        grant = self.session.execute(stmt).scalar_one_or_none()
        if grant is None:
            raise GrantNotFoundError(str(grant_id))
        return grant

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def grant_ownership(
        self,
        asset_id: UUID,
        investor_id: str,
        basis_points: int,
        amount_paid: int,
        *,
        actor_id: UUID,
        investor_verified: bool | None = None,
        currency: str | None = None,
    ) -> GrantRecord:
        """
        Append a grant of ``basis_points`` of the asset to ``investor_id``.

        Preconditions:
            - The caller has consulted the KYC gate and passes its verdict as
              ``investor_verified``.

        Postconditions:
            - allocated(asset) + basis_points <= 10,000 held at the moment the
              grant was appended, under the asset lock.

        Raises:
            OverAllocationError: If the grant would push the asset past 100%.
        """
        _validate_investor_id(investor_id)
        _validate_basis_points(basis_points)
        _validate_amount("amount_paid", amount_paid)
        if currency is not None:
            currency = validate_currency(currency)
        self._check_kyc(investor_id, investor_verified)

        with LogContext.bind(asset_id=asset_id, investor_id=investor_id, actor_id=actor_id):
            with self._asset_transaction(asset_id):
                asset = lock_asset_row(self.session, asset_id)
                if AssetStatus(asset.status) != AssetStatus.ACTIVE:
                    raise AssetNotInvestableError(str(asset_id), AssetStatus(asset.status).value)

                allocated = self._allocated(asset_id)
                if allocated + basis_points > BASIS_POINTS_PER_WHOLE:
                    logger.warning(
                        "grant_rejected_over_allocation",
                        extra={
                            "allocated_basis_points": allocated,
                            "requested_basis_points": basis_points,
                        },
                    )
                    raise OverAllocationError(str(asset_id), allocated, basis_points)

                grant = self._new_grant(
                    asset, investor_id, basis_points, amount_paid, currency, actor_id
                )
                self.session.flush()
                record = GrantRecord.from_model(grant)

            logger.info(
                "grant_recorded",
                extra={
                    "grant_id": str(record.id),
                    "grant_code": record.grant_code,
                    "basis_points": basis_points,
                    "allocated_basis_points": allocated + basis_points,
                },
            )
            return record

    def cancel_grant(
        self,
        grant_id: UUID,
        *,
        actor_id: UUID,
        reason: str | None = None,
    ) -> GrantRecord:
        """
        Mark a grant CANCELLED (buyback, refund).  The row is kept.

        Raises:
            GrantNotFoundError: If no grant has this id.
            GrantAlreadyCancelledError: If the grant is not ACTIVE.
        """
        asset_id = self._grant_asset_id(grant_id)

        with LogContext.bind(asset_id=asset_id, actor_id=actor_id):
            with self._asset_transaction(asset_id):
                lock_asset_row(self.session, asset_id)
                grant = self._load_grant(grant_id, refresh=True)
                if grant.status != GrantStatus.ACTIVE:
                    raise GrantAlreadyCancelledError(str(grant_id))

                grant.status = GrantStatus.CANCELLED
                grant.cancelled_at = self._clock.now()
                grant.cancellation_reason = reason
                grant.updated_by_id = actor_id
                self.session.flush()
                record = GrantRecord.from_model(grant)

            logger.info(
                "grant_cancelled",
                extra={
                    "grant_id": str(grant_id),
                    "investor_id": record.investor_id,
                    "basis_points": record.basis_points,
                    "reason": reason,
                },
            )
            return record

    def transfer_grant(
        self,
        grant_id: UUID,
        new_investor_id: str,
        amount_paid: int,
        *,
        actor_id: UUID,
        investor_verified: bool | None = None,
        currency: str | None = None,
    ) -> tuple[GrantRecord, GrantRecord]:
        """
        Sell a whole grant to another investor.

        Cancels the existing grant and appends a new one for the same basis
        points whose ``supersedes_grant_id`` points at it, atomically.

        Returns:
            (cancelled original, new grant)

        Raises:
            GrantNotFoundError, GrantAlreadyCancelledError,
            InvestorNotVerifiedError, AssetNotInvestableError (retired asset).
        """
        _validate_investor_id(new_investor_id)
        _validate_amount("amount_paid", amount_paid)
        if currency is not None:
            currency = validate_currency(currency)
        self._check_kyc(new_investor_id, investor_verified)

        asset_id = self._grant_asset_id(grant_id)

        with LogContext.bind(asset_id=asset_id, investor_id=new_investor_id, actor_id=actor_id):
            with self._asset_transaction(asset_id):
                asset = lock_asset_row(self.session, asset_id)
                if AssetStatus(asset.status) == AssetStatus.RETIRED:
                    raise AssetNotInvestableError(str(asset_id), AssetStatus.RETIRED.value)

                original = self._load_grant(grant_id, refresh=True)
                if original.status != GrantStatus.ACTIVE:
                    raise GrantAlreadyCancelledError(str(grant_id))

                original.status = GrantStatus.CANCELLED
                original.cancelled_at = self._clock.now()
                original.cancellation_reason = f"transferred to {new_investor_id}"
                original.updated_by_id = actor_id

                replacement = self._new_grant(
                    asset,
                    new_investor_id,
                    original.basis_points,
                    amount_paid,
                    currency,
                    actor_id,
                    supersedes_grant_id=original.id,
                )
                self.session.flush()
                cancelled_record = GrantRecord.from_model(original)
                new_record = GrantRecord.from_model(replacement)

            logger.info(
                "grant_transferred",
                extra={
                    "from_grant_id": str(grant_id),
                    "to_grant_id": str(new_record.id),
                    "from_investor_id": cancelled_record.investor_id,
                    "basis_points": new_record.basis_points,
                },
            )
            return cancelled_record, new_record

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def _require_asset(self, asset_id: UUID) -> None:
        if self.session.get(Asset, asset_id) is None:
            raise AssetNotFoundError(str(asset_id))

    def get_ownership_snapshot(
        self,
        asset_id: UUID,
        as_of: datetime | None = None,
    ) -> tuple[OwnershipShare, ...]:
        """
        Aggregated ownership of an asset, one entry per investor.

        Without ``as_of`` this is the live view (ACTIVE grants).  With
        ``as_of`` it reproduces ownership at that instant: grants granted at
        or before it and not cancelled at or before it.

        Returns:
            Shares ordered by investor_id; empty if nobody owns the asset.
        """
        self._require_asset(asset_id)

        stmt = select(
            OwnershipGrant.investor_id,
            func.sum(OwnershipGrant.basis_points),
        ).where(OwnershipGrant.asset_id == asset_id)

        if as_of is None:
            stmt = stmt.where(OwnershipGrant.status == GrantStatus.ACTIVE.value)
        else:
            instant = ensure_utc(as_of)
            stmt = stmt.where(
                OwnershipGrant.granted_at <= instant,
                or_(
                    OwnershipGrant.cancelled_at.is_(None),
                    OwnershipGrant.cancelled_at > instant,
                ),
            )

        rows = self.session.execute(
            stmt.group_by(OwnershipGrant.investor_id).order_by(OwnershipGrant.investor_id)
        ).all()
        return tuple(
            OwnershipShare(investor_id=investor_id, basis_points=int(bps))
            for investor_id, bps in rows
        )

    def allocated_basis_points(self, asset_id: UUID) -> int:
        """Sum of basis points over the asset's ACTIVE grants."""
        self._require_asset(asset_id)
        return self._allocated(asset_id)

    def available_basis_points(self, asset_id: UUID) -> int:
        return BASIS_POINTS_PER_WHOLE - self.allocated_basis_points(asset_id)

    def get_grant(self, grant_id: UUID) -> GrantRecord:
        return GrantRecord.from_model(self._load_grant(grant_id))

    def list_grants_for_asset(
        self,
        asset_id: UUID,
        *,
        include_cancelled: bool = False,
    ) -> list[GrantRecord]:
        """Grants on an asset in the order they were recorded."""
        stmt = select(OwnershipGrant).where(OwnershipGrant.asset_id == asset_id)
        if not include_cancelled:
            stmt = stmt.where(OwnershipGrant.status == GrantStatus.ACTIVE.value)
        grants = self.session.execute(
            stmt.order_by(OwnershipGrant.granted_at, OwnershipGrant.grant_code)
        ).scalars().all()
        return [GrantRecord.from_model(g) for g in grants]
