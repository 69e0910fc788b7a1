"""
Concurrent distribution requests.

Duplicate triggers for the same (asset, period) must collapse into one
COMPLETED run and one settlement hand-off; different assets must not
block each other.
"""

from concurrent.futures import ThreadPoolExecutor
from threading import Barrier

import pytest

from ownership_kernel.models.distribution import RunStatus
from ownership_kernel.services.distribution_executor import (
    DistributionExecutor,
    DistributionStatus,
)
from ownership_kernel.services.distribution_history import DistributionHistoryStore
from ownership_kernel.services.settlement import CollectingSettlementSink

pytestmark = [pytest.mark.slow_locks]

THREADS = 6


def _run_concurrently(session_factory, clock, locks, sink, actor_id, requests):
    """Each request is (asset_id, period_key, total); one thread apiece."""
    barrier = Barrier(len(requests), timeout=30)

    def attempt(asset_id, period_key, total):
        session = session_factory()
        try:
            executor = DistributionExecutor(
                session, clock, settlement_sink=sink, locks=locks
            )
            barrier.wait()
            return executor.initiate_distribution(
                asset_id, period_key, total, actor_id=actor_id
            )
        finally:
            session.close()

    with ThreadPoolExecutor(max_workers=len(requests)) as pool:
        futures = [pool.submit(attempt, *request) for request in requests]
        return [f.result(timeout=60) for f in futures]


@pytest.fixture
def owned_asset(session, create_asset, grant):
    asset = create_asset()
    grant(asset.id, "inv-a", 5_000)
    grant(asset.id, "inv-b", 3_333)
    grant(asset.id, "inv-c", 1_667)
    session.commit()
    return asset


class TestDuplicateTriggers:

    def test_exactly_one_run_completes(
        self, session, session_factory, owned_asset, deterministic_clock,
        lock_registry, test_actor_id,
    ):
        sink = CollectingSettlementSink()

        results = _run_concurrently(
            session_factory, deterministic_clock, lock_registry, sink, test_actor_id,
            [(owned_asset.id, "2025-11", 1_000_001)] * THREADS,
        )

        statuses = [r.status for r in results]
        assert statuses.count(DistributionStatus.COMPLETED) == 1
        assert statuses.count(DistributionStatus.ALREADY_COMPLETED) == THREADS - 1
        assert len({r.run_id for r in results}) == 1

        runs = DistributionHistoryStore(session).list_runs_for_asset(owned_asset.id)
        assert len(runs) == 1
        assert runs[0].status == RunStatus.COMPLETED
        assert sum(item.amount for item in runs[0].line_items) == 1_000_001

    def test_settlement_handed_off_once(
        self, session_factory, owned_asset, deterministic_clock,
        lock_registry, test_actor_id,
    ):
        sink = CollectingSettlementSink()

        results = _run_concurrently(
            session_factory, deterministic_clock, lock_registry, sink, test_actor_id,
            [(owned_asset.id, "2025-11", 90_000)] * THREADS,
        )

        run_id = results[0].run_id
        assert len(sink.instructions) == 3
        assert {i.run_id for i in sink.instructions} == {run_id}
        assert sum(i.amount for i in sink.instructions) == 90_000


class TestIndependentWork:

    def test_distinct_periods_all_complete(
        self, session, session_factory, owned_asset, deterministic_clock,
        lock_registry, test_actor_id,
    ):
        sink = CollectingSettlementSink()
        periods = [f"2025-{month:02d}" for month in range(1, THREADS + 1)]

        results = _run_concurrently(
            session_factory, deterministic_clock, lock_registry, sink, test_actor_id,
            [(owned_asset.id, period, 10_000) for period in periods],
        )

        assert all(r.status == DistributionStatus.COMPLETED for r in results)
        runs = DistributionHistoryStore(session).list_runs_for_asset(owned_asset.id)
        assert sorted(run.period_key for run in runs) == periods
        assert len(sink.instructions) == 3 * THREADS

    def test_distinct_assets_all_complete(
        self, session, session_factory, create_asset, grant, deterministic_clock,
        lock_registry, test_actor_id,
    ):
        assets = [create_asset() for _ in range(THREADS)]
        for asset in assets:
            grant(asset.id, "inv-a", 10_000)
        session.commit()
        sink = CollectingSettlementSink()

        results = _run_concurrently(
            session_factory, deterministic_clock, lock_registry, sink, test_actor_id,
            [(asset.id, "2025-11", 5_000) for asset in assets],
        )

        assert all(r.status == DistributionStatus.COMPLETED for r in results)
        assert {r.run.asset_id for r in results} == {a.id for a in assets}
        assert all(r.line_items[0].amount == 5_000 for r in results)
