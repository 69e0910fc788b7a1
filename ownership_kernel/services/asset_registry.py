"""
AssetRegistryService -- authoritative record of physical assets.

Responsibility:
    Onboards assets, answers lookups, and applies the operator actions that
    are allowed to mutate an asset: lifecycle status changes and health
    updates.

Architecture position:
    Kernel > Services -- imperative shell, flush-only.
    Leaf service: depends on nothing but the Asset model.  The caller owns
    the transaction (``session_scope()`` or an explicit commit).

Invariants enforced:
    - Lifecycle: ACTIVE <-> MAINTENANCE, either -> RETIRED; RETIRED is
      terminal.  Setting the current status again is a no-op.
    - Health is an integer in 0..100.
    - original_value is a non-negative integer of minor units in a
      supported currency.
    - Status and health updates take the asset row lock, so they serialise
      with in-flight grants on the same asset.

Failure modes:
    - AssetNotFoundError for unknown ids.
    - InvalidTransitionError for forbidden status changes.
    - InvalidHealthError, InvalidAmountError, InvalidCurrencyError on
      malformed input.
    - IntegrityError (from flush) on a duplicate asset_code.
"""

from dataclasses import dataclass
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from ownership_kernel.db.types import validate_currency
from ownership_kernel.domain.clock import Clock, SystemClock
from ownership_kernel.domain.dtos import AssetInfo
from ownership_kernel.exceptions import (
    AssetNotFoundError,
    InvalidAmountError,
    InvalidHealthError,
    InvalidTransitionError,
)
from ownership_kernel.logging_config import get_logger
from ownership_kernel.models.asset import Asset, AssetCategory, AssetStatus
from ownership_kernel.services.asset_locks import lock_asset_row
from ownership_kernel.services.base import BaseService

logger = get_logger("services.asset_registry")


@dataclass(frozen=True)
class AssetSpec:
    """Onboarding request for a new asset."""

    asset_code: str
    category: AssetCategory | str
    original_value: int
    currency: str
    model: str | None = None
    location: str | None = None
    health: int = 100


@dataclass(frozen=True)
class AssetFilter:
    """Optional criteria for list_assets(); None means "any"."""

    status: AssetStatus | str | None = None
    category: AssetCategory | str | None = None
    location: str | None = None
    is_tokenized: bool | None = None


def _validate_health(health: object) -> int:
    if isinstance(health, bool) or not isinstance(health, int):
        raise InvalidHealthError(health)
    if not 0 <= health <= 100:
        raise InvalidHealthError(health)
    return health


class AssetRegistryService(BaseService):
    """
    Create, read and update assets.

    Usage:
        with session_scope() as session:
            registry = AssetRegistryService(session, clock)
            asset = registry.create_asset(
                AssetSpec("BAT-0042", AssetCategory.BATTERY, 450_000_00, "NGN"),
                actor_id=operator_id,
            )
    """

    def __init__(self, session: Session, clock: Clock | None = None):
        super().__init__(session)
        self._clock = clock or SystemClock()

    def create_asset(self, spec: AssetSpec, *, actor_id: UUID) -> AssetInfo:
        """
        Register a new asset in ACTIVE status.

        Returns:
            AssetInfo of the flushed row.
        """
        category = AssetCategory(spec.category)
        currency = validate_currency(spec.currency)
        health = _validate_health(spec.health)
        if (
            isinstance(spec.original_value, bool)
            or not isinstance(spec.original_value, int)
            or spec.original_value < 0
        ):
            raise InvalidAmountError("original_value", spec.original_value)
        if not spec.asset_code or not spec.asset_code.strip():
            raise ValueError("asset_code must be a non-empty string")

        asset = Asset(
            asset_code=spec.asset_code.strip(),
            category=category,
            status=AssetStatus.ACTIVE,
            model=spec.model,
            location=spec.location,
            original_value=spec.original_value,
            currency=currency,
            health=health,
            is_tokenized=False,
            created_by_id=actor_id,
        )
        self.session.add(asset)
        self.session.flush()

        logger.info(
            "asset_created",
            extra={
                "asset_id": str(asset.id),
                "asset_code": asset.asset_code,
                "category": category.value,
            },
        )
        return AssetInfo.from_model(asset)

    def get_asset(self, asset_id: UUID) -> AssetInfo:
        """
        Raises:
            AssetNotFoundError: If no asset has this id.
        """
        asset = self.session.get(Asset, asset_id)
        if asset is None:
            raise AssetNotFoundError(str(asset_id))
        return AssetInfo.from_model(asset)

    def get_asset_by_code(self, asset_code: str) -> AssetInfo:
        asset = self.session.execute(
            select(Asset).where(Asset.asset_code == asset_code)
        ).scalar_one_or_none()
        if asset is None:
            raise AssetNotFoundError(asset_code)
        return AssetInfo.from_model(asset)

    def update_status(
        self,
        asset_id: UUID,
        status: AssetStatus | str,
        *,
        actor_id: UUID,
    ) -> AssetInfo:
        """
        Move an asset through its lifecycle.

        Raises:
            AssetNotFoundError: If no asset has this id.
            InvalidTransitionError: If the change is not permitted, e.g. any
                change out of RETIRED.
        """
        new_status = AssetStatus(status)
        asset = lock_asset_row(self.session, asset_id)
        current = AssetStatus(asset.status)

        if current == new_status:
            return AssetInfo.from_model(asset)

        if not asset.can_transition_to(new_status):
            logger.warning(
                "asset_transition_rejected",
                extra={
                    "asset_id": str(asset_id),
                    "from_status": current.value,
                    "to_status": new_status.value,
                },
            )
            raise InvalidTransitionError(str(asset_id), current.value, new_status.value)

        asset.status = new_status
        asset.updated_by_id = actor_id
        if new_status == AssetStatus.RETIRED:
            asset.retired_at = self._clock.now()
        self.session.flush()

        logger.info(
            "asset_status_changed",
            extra={
                "asset_id": str(asset_id),
                "from_status": current.value,
                "to_status": new_status.value,
            },
        )
        return AssetInfo.from_model(asset)

    def update_health(self, asset_id: UUID, health: int, *, actor_id: UUID) -> AssetInfo:
        """Record a new state-of-health reading (0..100)."""
        value = _validate_health(health)
        asset = lock_asset_row(self.session, asset_id)
        previous = asset.health
        asset.health = value
        asset.updated_by_id = actor_id
        self.session.flush()

        logger.info(
            "asset_health_updated",
            extra={"asset_id": str(asset_id), "previous": previous, "health": value},
        )
        return AssetInfo.from_model(asset)

    def list_assets(self, asset_filter: AssetFilter | None = None) -> list[AssetInfo]:
        """Assets matching the filter, ordered by asset_code."""
        stmt = select(Asset)
        if asset_filter is not None:
            if asset_filter.status is not None:
                stmt = stmt.where(Asset.status == AssetStatus(asset_filter.status).value)
            if asset_filter.category is not None:
                stmt = stmt.where(
                    Asset.category == AssetCategory(asset_filter.category).value
                )
            if asset_filter.location is not None:
                stmt = stmt.where(Asset.location == asset_filter.location)
            if asset_filter.is_tokenized is not None:
                stmt = stmt.where(Asset.is_tokenized == asset_filter.is_tokenized)

        assets = self.session.execute(stmt.order_by(Asset.asset_code)).scalars().all()
        return [AssetInfo.from_model(asset) for asset in assets]
