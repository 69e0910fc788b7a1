"""Tests for AssetRegistryService: onboarding, lookups and lifecycle."""

from uuid import uuid4

import pytest
from sqlalchemy.exc import IntegrityError

from ownership_kernel.exceptions import (
    AssetNotFoundError,
    InvalidAmountError,
    InvalidCurrencyError,
    InvalidHealthError,
    InvalidTransitionError,
)
from ownership_kernel.models.asset import Asset, AssetCategory, AssetStatus
from ownership_kernel.services.asset_registry import AssetFilter, AssetSpec


class TestCreateAsset:

    def test_new_asset_is_active_and_untokenized(self, asset_registry, test_actor_id):
        asset = asset_registry.create_asset(
            AssetSpec(
                "VEH-0001",
                AssetCategory.VEHICLE,
                1_200_000_00,
                "ngn",
                model="Spiro Ekon 450",
                location="Lagos",
            ),
            actor_id=test_actor_id,
        )

        assert asset.status == "active"
        assert asset.category == "vehicle"
        assert asset.currency == "NGN"
        assert asset.health == 100
        assert asset.is_tokenized is False
        assert asset.retired_at is None

    def test_accepts_string_category(self, asset_registry, test_actor_id):
        asset = asset_registry.create_asset(
            AssetSpec("CAB-0001", "charging_cabinet", 0, "USD"),
            actor_id=test_actor_id,
        )

        assert asset.category == "charging_cabinet"

    def test_duplicate_code_rejected(self, create_asset):
        create_asset(asset_code="BAT-DUP")

        with pytest.raises(IntegrityError):
            create_asset(asset_code="BAT-DUP")

    def test_unknown_category_rejected(self, asset_registry, test_actor_id):
        with pytest.raises(ValueError):
            asset_registry.create_asset(
                AssetSpec("X-1", "spaceship", 100, "NGN"), actor_id=test_actor_id
            )

    def test_invalid_currency_rejected(self, asset_registry, test_actor_id):
        with pytest.raises(InvalidCurrencyError):
            asset_registry.create_asset(
                AssetSpec("BAT-1", AssetCategory.BATTERY, 100, "ABC"),
                actor_id=test_actor_id,
            )

    @pytest.mark.parametrize("value", [-1, 10.5, "100"])
    def test_invalid_original_value_rejected(self, asset_registry, test_actor_id, value):
        with pytest.raises(InvalidAmountError):
            asset_registry.create_asset(
                AssetSpec("BAT-1", AssetCategory.BATTERY, value, "NGN"),
                actor_id=test_actor_id,
            )

    def test_blank_code_rejected(self, asset_registry, test_actor_id):
        with pytest.raises(ValueError, match="asset_code"):
            asset_registry.create_asset(
                AssetSpec("  ", AssetCategory.BATTERY, 100, "NGN"),
                actor_id=test_actor_id,
            )


class TestLookups:

    def test_get_by_id_and_code(self, asset_registry, create_asset):
        asset = create_asset(asset_code="BAT-0042")

        assert asset_registry.get_asset(asset.id).asset_code == "BAT-0042"
        assert asset_registry.get_asset_by_code("BAT-0042").id == asset.id

    def test_unknown_id(self, asset_registry):
        with pytest.raises(AssetNotFoundError) as exc_info:
            asset_registry.get_asset(uuid4())
        assert exc_info.value.code == "ASSET_NOT_FOUND"

    def test_unknown_code(self, asset_registry):
        with pytest.raises(AssetNotFoundError):
            asset_registry.get_asset_by_code("NOPE")

    def test_list_with_filters(self, asset_registry, create_asset, test_actor_id):
        a = create_asset(asset_code="BAT-B", location="Lagos")
        create_asset(asset_code="BAT-A", location="Abuja")
        create_asset(asset_code="VEH-A", category=AssetCategory.VEHICLE, location="Lagos")
        asset_registry.update_status(a.id, AssetStatus.MAINTENANCE, actor_id=test_actor_id)

        def codes(asset_filter):
            return [x.asset_code for x in asset_registry.list_assets(asset_filter)]

        assert codes(None) == ["BAT-A", "BAT-B", "VEH-A"]
        assert codes(AssetFilter(category="battery")) == ["BAT-A", "BAT-B"]
        assert codes(AssetFilter(location="Lagos")) == ["BAT-B", "VEH-A"]
        assert codes(AssetFilter(status=AssetStatus.MAINTENANCE)) == ["BAT-B"]
        assert codes(AssetFilter(is_tokenized=True)) == []

    def test_tokenized_filter_after_grant(self, asset_registry, create_asset, grant):
        sold = create_asset(asset_code="BAT-SOLD")
        create_asset(asset_code="BAT-NEW")
        grant(sold.id, "inv-1", 1_000)

        tokenized = asset_registry.list_assets(AssetFilter(is_tokenized=True))

        assert [a.asset_code for a in tokenized] == ["BAT-SOLD"]


class TestLifecycle:

    def test_active_to_maintenance_and_back(self, asset_registry, create_asset, test_actor_id):
        asset = create_asset()

        assert asset_registry.update_status(
            asset.id, AssetStatus.MAINTENANCE, actor_id=test_actor_id
        ).status == "maintenance"
        assert asset_registry.update_status(
            asset.id, "active", actor_id=test_actor_id
        ).status == "active"

    def test_retire_sets_timestamp(
        self, session, asset_registry, create_asset, test_actor_id, deterministic_clock
    ):
        asset = create_asset()

        retired = asset_registry.update_status(
            asset.id, AssetStatus.RETIRED, actor_id=test_actor_id
        )

        assert retired.status == "retired"
        assert retired.retired_at == deterministic_clock.now()
        assert session.get(Asset, asset.id).is_retired

    def test_retired_is_terminal(self, asset_registry, create_asset, test_actor_id):
        asset = create_asset()
        asset_registry.update_status(asset.id, AssetStatus.RETIRED, actor_id=test_actor_id)

        with pytest.raises(InvalidTransitionError) as exc_info:
            asset_registry.update_status(asset.id, AssetStatus.ACTIVE, actor_id=test_actor_id)

        assert exc_info.value.from_status == "retired"
        assert exc_info.value.to_status == "active"

    def test_same_status_is_noop(self, asset_registry, create_asset, test_actor_id):
        asset = create_asset()

        result = asset_registry.update_status(asset.id, "active", actor_id=test_actor_id)

        assert result.status == "active"

    def test_unknown_status_rejected(self, asset_registry, create_asset, test_actor_id):
        asset = create_asset()

        with pytest.raises(ValueError):
            asset_registry.update_status(asset.id, "stolen", actor_id=test_actor_id)

    def test_unknown_asset(self, asset_registry, test_actor_id):
        with pytest.raises(AssetNotFoundError):
            asset_registry.update_status(uuid4(), "retired", actor_id=test_actor_id)


class TestHealth:

    def test_update_health(self, asset_registry, create_asset, test_actor_id):
        asset = create_asset()

        assert asset_registry.update_health(asset.id, 87, actor_id=test_actor_id).health == 87

    @pytest.mark.parametrize("value", [-1, 101, 50.5, True])
    def test_out_of_range_rejected(self, asset_registry, create_asset, test_actor_id, value):
        asset = create_asset()

        with pytest.raises(InvalidHealthError):
            asset_registry.update_health(asset.id, value, actor_id=test_actor_id)

    def test_invalid_initial_health(self, asset_registry, test_actor_id):
        with pytest.raises(InvalidHealthError):
            asset_registry.create_asset(
                AssetSpec("BAT-1", AssetCategory.BATTERY, 100, "NGN", health=120),
                actor_id=test_actor_id,
            )
