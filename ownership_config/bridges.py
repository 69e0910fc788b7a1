"""
Config -> Kernel Bridges.

Functions that convert a LedgerConfig into kernel-compatible inputs.  These
live in ownership_config (the producer) because the kernel must NEVER import
ownership_config.

Usage:
    from ownership_config import get_active_config
    from ownership_config.bridges import bootstrap_database, build_distribution_executor

    config = get_active_config()
    bootstrap_database(config)
    with session_scope() as session:
        executor = build_distribution_executor(session, config)
"""

from __future__ import annotations

import logging

from sqlalchemy.orm import Session

from ownership_config.schema import LedgerConfig
from ownership_kernel.db.engine import create_tables, init_engine_from_url
from ownership_kernel.db.immutability import register_immutability_listeners
from ownership_kernel.domain.clock import Clock
from ownership_kernel.logging_config import configure_logging
from ownership_kernel.services.asset_locks import AssetLockRegistry
from ownership_kernel.services.distribution_executor import (
    DistributionExecutor,
    DistributionPolicy,
    UnallocatedSharePolicy,
)
from ownership_kernel.services.ownership_ledger import OwnershipLedgerService
from ownership_kernel.services.settlement import SettlementSink


def configure_kernel_logging(config: LedgerConfig, **kwargs) -> None:
    """Install the structured JSON handler at the configured level."""
    configure_logging(level=getattr(logging, config.logging.level), **kwargs)


def bootstrap_database(config: LedgerConfig, *, create_schema: bool = True) -> None:
    """
    Initialise the engine, install immutability listeners and (optionally)
    create the ledger tables.
    """
    db = config.database
    init_engine_from_url(
        db.url,
        echo=db.echo,
        pool_size=db.pool_size,
        max_overflow=db.max_overflow,
        sqlite_busy_timeout=db.sqlite_busy_timeout,
    )
    register_immutability_listeners()
    if create_schema:
        create_tables()


def build_distribution_policy(config: LedgerConfig) -> DistributionPolicy:
    dist = config.distribution
    return DistributionPolicy(
        unallocated_policy=UnallocatedSharePolicy(dist.unallocated_policy),
        platform_investor_id=dist.platform_investor_id,
        default_currency=dist.default_currency,
    )


def build_ownership_ledger(
    session: Session,
    config: LedgerConfig,
    *,
    clock: Clock | None = None,
    locks: AssetLockRegistry | None = None,
) -> OwnershipLedgerService:
    return OwnershipLedgerService(
        session,
        clock,
        locks=locks,
        require_kyc_assertion=config.ownership.require_kyc_assertion,
    )


def build_distribution_executor(
    session: Session,
    config: LedgerConfig,
    *,
    clock: Clock | None = None,
    settlement_sink: SettlementSink | None = None,
    locks: AssetLockRegistry | None = None,
) -> DistributionExecutor:
    return DistributionExecutor(
        session,
        clock,
        policy=build_distribution_policy(config),
        settlement_sink=settlement_sink,
        locks=locks,
    )
