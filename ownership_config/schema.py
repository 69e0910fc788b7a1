"""
LedgerConfig schema.

The typed form of the ledger's YAML configuration.  The loader parses YAML
into these frozen dataclasses; bridges turn them into kernel inputs.
"""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(frozen=True)
class DatabaseConfig:
    """Connection settings for the ledger store."""

    url: str
    echo: bool = False
    pool_size: int = 10
    max_overflow: int = 20
    sqlite_busy_timeout: int = 30


@dataclass(frozen=True)
class DistributionConfig:
    """How revenue is split and settled."""

    default_currency: str | None = None
    unallocated_policy: str = "pro_rata"  # pro_rata | retain
    platform_investor_id: str | None = None


@dataclass(frozen=True)
class OwnershipConfig:
    """Grant admission rules."""

    require_kyc_assertion: bool = False


@dataclass(frozen=True)
class LoggingConfig:
    level: str = "INFO"


@dataclass(frozen=True)
class LedgerConfig:
    """Complete, validated ledger configuration."""

    config_id: str
    version: int
    database: DatabaseConfig
    distribution: DistributionConfig = field(default_factory=DistributionConfig)
    ownership: OwnershipConfig = field(default_factory=OwnershipConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    checksum: str = ""
