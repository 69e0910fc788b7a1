"""
Tests for OwnershipLedgerService.

Covers the allocation cap, KYC gate, cancellation, transfers and
point-in-time ownership snapshots.
"""

import re
from datetime import timedelta
from uuid import uuid4

import pytest

from ownership_kernel.domain.values import OwnershipShare
from ownership_kernel.exceptions import (
    AssetNotFoundError,
    AssetNotInvestableError,
    GrantAlreadyCancelledError,
    GrantNotFoundError,
    InvalidAmountError,
    InvalidCurrencyError,
    InvalidFractionError,
    InvestorNotVerifiedError,
    OverAllocationError,
)
from ownership_kernel.models.asset import AssetStatus
from ownership_kernel.services.ownership_ledger import (
    OwnershipLedgerService,
    generate_grant_code,
)


def test_grant_code_format():
    code = generate_grant_code()

    assert re.fullmatch(r"TKN_[A-Z0-9]{20}", code)
    assert generate_grant_code() != code


class TestGrantOwnership:
    """Recording grants."""

    def test_grant_is_recorded(self, ledger, create_asset, test_actor_id, deterministic_clock):
        asset = create_asset()

        record = ledger.grant_ownership(
            asset.id,
            "investor-17",
            1_500,
            150_000_00,
            actor_id=test_actor_id,
            investor_verified=True,
        )

        assert record.is_active
        assert record.asset_id == asset.id
        assert record.investor_id == "investor-17"
        assert record.basis_points == 1_500
        assert record.amount_paid == 150_000_00
        assert record.currency == "NGN"
        assert record.granted_at == deterministic_clock.now()
        assert record.grant_code.startswith("TKN_")
        assert ledger.allocated_basis_points(asset.id) == 1_500
        assert ledger.available_basis_points(asset.id) == 8_500

    def test_first_grant_tokenizes_asset(self, ledger, asset_registry, create_asset, grant):
        asset = create_asset()
        assert asset.is_tokenized is False

        grant(asset.id, "inv-1", 100)

        assert asset_registry.get_asset(asset.id).is_tokenized is True

    def test_explicit_currency(self, ledger, create_asset, grant):
        asset = create_asset(currency="NGN")

        record = grant(asset.id, "inv-1", 100, 5_000, currency="usd")

        assert record.currency == "USD"

    def test_full_allocation_allowed(self, ledger, create_asset, grant):
        asset = create_asset()
        grant(asset.id, "inv-1", 6_000)
        grant(asset.id, "inv-2", 4_000)

        assert ledger.allocated_basis_points(asset.id) == 10_000
        assert ledger.available_basis_points(asset.id) == 0

    def test_grant_is_retrievable(self, ledger, create_asset, grant):
        asset = create_asset()
        record = grant(asset.id, "inv-1", 100)

        assert ledger.get_grant(record.id) == record

    def test_unknown_grant(self, ledger):
        with pytest.raises(GrantNotFoundError):
            ledger.get_grant(uuid4())

    def test_logs_grant_recorded(self, ledger, create_asset, grant, captured_logs):
        asset = create_asset()
        grant(asset.id, "inv-1", 2_500)

        records = [r for r in captured_logs() if r["message"] == "grant_recorded"]
        assert len(records) == 1
        assert records[0]["basis_points"] == 2_500
        assert records[0]["allocated_basis_points"] == 2_500
        assert records[0]["asset_id"] == str(asset.id)
        assert records[0]["investor_id"] == "inv-1"


class TestOverAllocation:
    """Total ACTIVE basis points per asset never exceed 10,000."""

    def test_over_allocation_rejected_and_nothing_recorded(self, ledger, create_asset, grant):
        asset = create_asset()
        grant(asset.id, "inv-a", 5_000)

        with pytest.raises(OverAllocationError) as exc_info:
            grant(asset.id, "inv-b", 5_001)

        err = exc_info.value
        assert err.code == "OVER_ALLOCATION"
        assert err.allocated_basis_points == 5_000
        assert err.requested_basis_points == 5_001
        assert err.available_basis_points == 5_000
        assert "5,000/10,000" in str(err)
        assert ledger.allocated_basis_points(asset.id) == 5_000
        assert [g.investor_id for g in ledger.list_grants_for_asset(asset.id)] == ["inv-a"]

    def test_fully_sold_asset_rejects_one_more_bp(self, ledger, create_asset, grant):
        asset = create_asset()
        grant(asset.id, "inv-a", 10_000)

        with pytest.raises(OverAllocationError):
            grant(asset.id, "inv-b", 1)

    def test_rejection_is_logged(self, create_asset, grant, captured_logs):
        asset = create_asset()
        grant(asset.id, "inv-a", 9_000)

        with pytest.raises(OverAllocationError):
            grant(asset.id, "inv-b", 2_000)

        rejected = [
            r for r in captured_logs() if r["message"] == "grant_rejected_over_allocation"
        ]
        assert len(rejected) == 1
        assert rejected[0]["allocated_basis_points"] == 9_000
        assert rejected[0]["requested_basis_points"] == 2_000

    def test_cancellation_frees_capacity(self, ledger, create_asset, grant, test_actor_id):
        asset = create_asset()
        first = grant(asset.id, "inv-a", 10_000)
        ledger.cancel_grant(first.id, actor_id=test_actor_id, reason="buyback")

        second = grant(asset.id, "inv-b", 10_000)

        assert second.is_active
        assert ledger.allocated_basis_points(asset.id) == 10_000


class TestGrantValidation:

    @pytest.mark.parametrize("bps", [0, -1, 10_001, 15.0, True])
    def test_invalid_fraction(self, create_asset, grant, bps):
        asset = create_asset()

        with pytest.raises(InvalidFractionError):
            grant(asset.id, "inv-1", bps, 100)

    @pytest.mark.parametrize("amount", [-1, 10.5, "100"])
    def test_invalid_amount(self, create_asset, grant, amount):
        asset = create_asset()

        with pytest.raises(InvalidAmountError) as exc_info:
            grant(asset.id, "inv-1", 100, amount)
        assert exc_info.value.field == "amount_paid"

    @pytest.mark.parametrize("investor_id", ["", "   ", None])
    def test_invalid_investor(self, create_asset, grant, investor_id):
        asset = create_asset()

        with pytest.raises(ValueError, match="investor_id"):
            grant(asset.id, investor_id, 100)

    def test_invalid_currency(self, create_asset, grant):
        asset = create_asset()

        with pytest.raises(InvalidCurrencyError):
            grant(asset.id, "inv-1", 100, currency="ABC")

    def test_unknown_asset(self, grant):
        with pytest.raises(AssetNotFoundError):
            grant(uuid4(), "inv-1", 100)

    @pytest.mark.parametrize("status", [AssetStatus.MAINTENANCE, AssetStatus.RETIRED])
    def test_non_active_asset_not_investable(
        self, session, asset_registry, create_asset, grant, test_actor_id, status
    ):
        asset = create_asset()
        asset_registry.update_status(asset.id, status, actor_id=test_actor_id)
        session.commit()

        with pytest.raises(AssetNotInvestableError) as exc_info:
            grant(asset.id, "inv-1", 100)
        assert exc_info.value.status == status.value


class TestKycGate:
    """The caller's verified-investor assertion gates every grant."""

    def test_false_assertion_rejected(self, ledger, create_asset, grant):
        asset = create_asset()

        with pytest.raises(InvestorNotVerifiedError) as exc_info:
            grant(asset.id, "inv-1", 100, investor_verified=False)

        assert exc_info.value.investor_id == "inv-1"
        assert ledger.allocated_basis_points(asset.id) == 0

    def test_missing_assertion_allowed_by_default(self, ledger, create_asset, test_actor_id):
        asset = create_asset()

        record = ledger.grant_ownership(asset.id, "inv-1", 100, 100, actor_id=test_actor_id)

        assert record.is_active

    def test_missing_assertion_rejected_when_required(
        self, session, deterministic_clock, lock_registry, create_asset, test_actor_id
    ):
        strict = OwnershipLedgerService(
            session, deterministic_clock, locks=lock_registry, require_kyc_assertion=True
        )
        asset = create_asset()

        with pytest.raises(InvestorNotVerifiedError):
            strict.grant_ownership(asset.id, "inv-1", 100, 100, actor_id=test_actor_id)

        record = strict.grant_ownership(
            asset.id, "inv-1", 100, 100, actor_id=test_actor_id, investor_verified=True
        )
        assert record.is_active


class TestCancelGrant:

    def test_cancel(self, ledger, create_asset, grant, test_actor_id, deterministic_clock):
        asset = create_asset()
        record = grant(asset.id, "inv-1", 2_000)
        deterministic_clock.advance(60)

        cancelled = ledger.cancel_grant(record.id, actor_id=test_actor_id, reason="refund")

        assert cancelled.status == "cancelled"
        assert not cancelled.is_active
        assert cancelled.cancelled_at == deterministic_clock.now()
        assert cancelled.cancellation_reason == "refund"
        assert ledger.allocated_basis_points(asset.id) == 0

    def test_cancelled_grant_is_kept(self, ledger, create_asset, grant, test_actor_id):
        asset = create_asset()
        record = grant(asset.id, "inv-1", 2_000)
        ledger.cancel_grant(record.id, actor_id=test_actor_id)

        assert ledger.list_grants_for_asset(asset.id) == []
        history = ledger.list_grants_for_asset(asset.id, include_cancelled=True)
        assert [g.id for g in history] == [record.id]

    def test_cancel_twice_rejected(self, ledger, create_asset, grant, test_actor_id):
        asset = create_asset()
        record = grant(asset.id, "inv-1", 2_000)
        ledger.cancel_grant(record.id, actor_id=test_actor_id)

        with pytest.raises(GrantAlreadyCancelledError):
            ledger.cancel_grant(record.id, actor_id=test_actor_id)

    def test_cancel_unknown(self, ledger, test_actor_id):
        with pytest.raises(GrantNotFoundError):
            ledger.cancel_grant(uuid4(), actor_id=test_actor_id)


class TestTransferGrant:

    def test_transfer_moves_whole_grant(self, ledger, create_asset, grant, test_actor_id):
        asset = create_asset()
        original = grant(asset.id, "seller", 3_000)
        grant(asset.id, "other", 1_000)

        cancelled, replacement = ledger.transfer_grant(
            original.id, "buyer", 320_000, actor_id=test_actor_id, investor_verified=True
        )

        assert cancelled.id == original.id
        assert cancelled.status == "cancelled"
        assert cancelled.cancellation_reason == "transferred to buyer"
        assert replacement.is_active
        assert replacement.investor_id == "buyer"
        assert replacement.basis_points == 3_000
        assert replacement.amount_paid == 320_000
        assert replacement.supersedes_grant_id == original.id
        assert ledger.allocated_basis_points(asset.id) == 4_000
        assert ledger.get_ownership_snapshot(asset.id) == (
            OwnershipShare("buyer", 3_000),
            OwnershipShare("other", 1_000),
        )

    def test_transfer_on_fully_sold_asset(self, ledger, create_asset, grant, test_actor_id):
        asset = create_asset()
        original = grant(asset.id, "seller", 10_000)

        _, replacement = ledger.transfer_grant(
            original.id, "buyer", 1, actor_id=test_actor_id, investor_verified=True
        )

        assert replacement.basis_points == 10_000
        assert ledger.allocated_basis_points(asset.id) == 10_000

    def test_transfer_to_unverified_investor_rejected(
        self, ledger, create_asset, grant, test_actor_id
    ):
        asset = create_asset()
        original = grant(asset.id, "seller", 3_000)

        with pytest.raises(InvestorNotVerifiedError):
            ledger.transfer_grant(
                original.id, "buyer", 1, actor_id=test_actor_id, investor_verified=False
            )

        assert ledger.get_grant(original.id).is_active

    def test_transfer_of_cancelled_grant_rejected(
        self, ledger, create_asset, grant, test_actor_id
    ):
        asset = create_asset()
        original = grant(asset.id, "seller", 3_000)
        ledger.cancel_grant(original.id, actor_id=test_actor_id)

        with pytest.raises(GrantAlreadyCancelledError):
            ledger.transfer_grant(original.id, "buyer", 1, actor_id=test_actor_id)

        assert ledger.allocated_basis_points(asset.id) == 0

    def test_transfer_allowed_during_maintenance(
        self, session, ledger, asset_registry, create_asset, grant, test_actor_id
    ):
        asset = create_asset()
        original = grant(asset.id, "seller", 3_000)
        asset_registry.update_status(asset.id, AssetStatus.MAINTENANCE, actor_id=test_actor_id)
        session.commit()

        _, replacement = ledger.transfer_grant(original.id, "buyer", 1, actor_id=test_actor_id)

        assert replacement.is_active

    def test_transfer_on_retired_asset_rejected(
        self, session, ledger, asset_registry, create_asset, grant, test_actor_id
    ):
        asset = create_asset()
        original = grant(asset.id, "seller", 3_000)
        asset_registry.update_status(asset.id, AssetStatus.RETIRED, actor_id=test_actor_id)
        session.commit()

        with pytest.raises(AssetNotInvestableError):
            ledger.transfer_grant(original.id, "buyer", 1, actor_id=test_actor_id)

        assert ledger.get_grant(original.id).is_active


class TestOwnershipSnapshot:

    def test_aggregates_per_investor_sorted(self, ledger, create_asset, grant):
        asset = create_asset()
        grant(asset.id, "inv-b", 1_000)
        grant(asset.id, "inv-a", 2_000)
        grant(asset.id, "inv-b", 500)

        assert ledger.get_ownership_snapshot(asset.id) == (
            OwnershipShare("inv-a", 2_000),
            OwnershipShare("inv-b", 1_500),
        )

    def test_empty_snapshot(self, ledger, create_asset):
        asset = create_asset()

        assert ledger.get_ownership_snapshot(asset.id) == ()

    def test_unknown_asset(self, ledger):
        with pytest.raises(AssetNotFoundError):
            ledger.get_ownership_snapshot(uuid4())

    def test_snapshot_as_of_reproduces_history(
        self, ledger, create_asset, grant, test_actor_id, deterministic_clock
    ):
        asset = create_asset()
        t0 = deterministic_clock.now()
        first = grant(asset.id, "inv-a", 4_000)
        deterministic_clock.advance(10)
        grant(asset.id, "inv-b", 3_000)
        deterministic_clock.advance(10)
        ledger.cancel_grant(first.id, actor_id=test_actor_id)

        def snapshot_at(seconds):
            return ledger.get_ownership_snapshot(asset.id, as_of=t0 + timedelta(seconds=seconds))

        assert snapshot_at(-1) == ()
        assert snapshot_at(0) == (OwnershipShare("inv-a", 4_000),)
        assert snapshot_at(15) == (
            OwnershipShare("inv-a", 4_000),
            OwnershipShare("inv-b", 3_000),
        )
        # Cancelled at exactly t0+20: no longer owned at that instant
        assert snapshot_at(20) == (OwnershipShare("inv-b", 3_000),)
        assert ledger.get_ownership_snapshot(asset.id) == (OwnershipShare("inv-b", 3_000),)


class TestCallerOwnedTransaction:

    def test_auto_commit_false_leaves_commit_to_caller(
        self, session, deterministic_clock, lock_registry, create_asset, test_actor_id
    ):
        ledger = OwnershipLedgerService(
            session, deterministic_clock, locks=lock_registry, auto_commit=False
        )
        asset = create_asset()

        ledger.grant_ownership(
            asset.id, "inv-1", 1_000, 100, actor_id=test_actor_id, investor_verified=True
        )
        assert ledger.allocated_basis_points(asset.id) == 1_000

        session.rollback()

        assert ledger.allocated_basis_points(asset.id) == 0
