"""
ORM-level immutability of the ledger tables.

Grants, runs and line items are historical facts: the listeners in
db/immutability.py block every edit except the permitted one-way status
transitions, and every DELETE.
"""

import pytest

from ownership_kernel.db.immutability import (
    register_immutability_listeners,
    unregister_immutability_listeners,
)
from ownership_kernel.domain.values import RevenuePeriod
from ownership_kernel.exceptions import ImmutabilityViolationError
from ownership_kernel.models.asset import Asset
from ownership_kernel.models.distribution import DistributionLineItem, DistributionRun, RunStatus
from ownership_kernel.models.ownership import GrantStatus, OwnershipGrant


@pytest.fixture
def completed_run(executor, create_asset, grant, test_actor_id):
    asset = create_asset()
    grant(asset.id, "inv-a", 6_000)
    grant(asset.id, "inv-b", 4_000)
    return executor.initiate_distribution(asset.id, "2025-11", 100_000, actor_id=test_actor_id).run


class TestGrantImmutability:

    def test_basis_points_cannot_change(self, session, create_asset, grant):
        asset = create_asset()
        record = grant(asset.id, "inv-a", 1_000)
        orm = session.get(OwnershipGrant, record.id)

        orm.basis_points = 9_999
        with pytest.raises(ImmutabilityViolationError) as exc_info:
            session.flush()

        assert exc_info.value.entity_type == "OwnershipGrant"
        assert exc_info.value.code == "IMMUTABILITY_VIOLATION"

    def test_investor_cannot_change(self, session, create_asset, grant):
        asset = create_asset()
        record = grant(asset.id, "inv-a", 1_000)
        orm = session.get(OwnershipGrant, record.id)

        orm.investor_id = "someone-else"
        with pytest.raises(ImmutabilityViolationError):
            session.flush()

    def test_cancelled_grant_cannot_be_reactivated(
        self, session, ledger, create_asset, grant, test_actor_id
    ):
        asset = create_asset()
        record = grant(asset.id, "inv-a", 1_000)
        ledger.cancel_grant(record.id, actor_id=test_actor_id)
        orm = session.get(OwnershipGrant, record.id)

        orm.status = GrantStatus.ACTIVE
        with pytest.raises(ImmutabilityViolationError, match="Cancelled"):
            session.flush()

    def test_cancellation_fields_need_status_change(self, session, create_asset, grant):
        asset = create_asset()
        record = grant(asset.id, "inv-a", 1_000)
        orm = session.get(OwnershipGrant, record.id)

        orm.cancellation_reason = "quietly"
        with pytest.raises(ImmutabilityViolationError):
            session.flush()

    def test_grant_cannot_be_deleted(self, session, create_asset, grant):
        asset = create_asset()
        record = grant(asset.id, "inv-a", 1_000)

        session.delete(session.get(OwnershipGrant, record.id))
        with pytest.raises(ImmutabilityViolationError, match="append-only"):
            session.flush()


class TestRunImmutability:

    def test_completed_run_frozen(self, session, completed_run):
        orm = session.get(DistributionRun, completed_run.id)

        orm.total_revenue = 1
        with pytest.raises(ImmutabilityViolationError, match="immutable once"):
            session.flush()

    def test_completed_run_cannot_be_failed(self, session, completed_run):
        orm = session.get(DistributionRun, completed_run.id)

        orm.status = RunStatus.FAILED
        with pytest.raises(ImmutabilityViolationError):
            session.flush()

    def test_pending_run_cannot_change_amount(
        self, session, history, create_asset, test_actor_id, deterministic_clock
    ):
        asset = create_asset()
        run = history.open_run(
            asset_id=asset.id,
            period=RevenuePeriod.for_month("2025-11"),
            total_revenue=100,
            currency="NGN",
            idempotency_key="k",
            snapshot_at=deterministic_clock.now(),
            opened_at=deterministic_clock.now(),
            actor_id=test_actor_id,
        )

        run.total_revenue = 200
        run.status = RunStatus.FAILED
        with pytest.raises(ImmutabilityViolationError, match="total_revenue"):
            session.flush()

    def test_run_cannot_be_deleted(self, session, completed_run):
        session.delete(session.get(DistributionRun, completed_run.id))

        with pytest.raises(ImmutabilityViolationError):
            session.flush()


class TestLineItemImmutability:

    def test_amount_cannot_change(self, session, completed_run):
        orm = session.get(DistributionLineItem, completed_run.line_items[0].id)

        orm.amount += 1
        with pytest.raises(ImmutabilityViolationError) as exc_info:
            session.flush()

        assert exc_info.value.entity_type == "DistributionLineItem"

    def test_line_item_cannot_be_deleted(self, session, completed_run):
        session.delete(session.get(DistributionLineItem, completed_run.line_items[0].id))

        with pytest.raises(ImmutabilityViolationError):
            session.flush()


class TestAssetDeletion:

    def test_asset_cannot_be_deleted(self, session, create_asset):
        asset = create_asset()

        session.delete(session.get(Asset, asset.id))
        with pytest.raises(ImmutabilityViolationError):
            session.flush()


def test_listeners_can_be_suspended(session, create_asset, grant):
    asset = create_asset()
    record = grant(asset.id, "inv-a", 1_000)
    orm = session.get(OwnershipGrant, record.id)

    unregister_immutability_listeners()
    try:
        orm.basis_points = 2_000
        session.flush()
    finally:
        register_immutability_listeners()

    session.rollback()
    orm = session.get(OwnershipGrant, record.id)
    orm.basis_points = 3_000
    with pytest.raises(ImmutabilityViolationError):
        session.flush()
