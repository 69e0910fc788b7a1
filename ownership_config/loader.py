"""
Configuration Loader (``ownership_config.loader``).

Responsibility
--------------
Loads the ledger YAML document and parses it into the typed
``ownership_config.schema`` dataclasses.  Runtime callers go through
``ownership_config.get_active_config()`` instead of calling this directly.

Invariants enforced
-------------------
* Missing required keys raise ``KeyError``; invalid values raise
  ``ValueError``.  Optional keys fall back to the schema defaults.
* Every parsed object is a frozen dataclass from ``schema.py``.
* ``compute_checksum`` produces a deterministic SHA-256 hash for
  configuration identity and change detection.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
"""

from __future__ import annotations

import hashlib
import json
import logging
from pathlib import Path
from typing import Any

import yaml

from ownership_config.schema import (
    DatabaseConfig,
    DistributionConfig,
    LedgerConfig,
    LoggingConfig,
    OwnershipConfig,
)
from ownership_kernel.db.types import validate_currency
from ownership_kernel.exceptions import InvalidCurrencyError

UNALLOCATED_POLICIES = ("pro_rata", "retain")


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
        ValueError: if the top level is not a mapping.
    """
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"{path}: top level must be a mapping")
    return data


def _positive_int(section: str, key: str, value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise ValueError(f"{section}.{key} must be a positive integer, got {value!r}")
    return value


def _flag(section: str, key: str, value: Any) -> bool:
    if not isinstance(value, bool):
        raise ValueError(f"{section}.{key} must be true or false, got {value!r}")
    return value


def parse_database(data: dict[str, Any]) -> DatabaseConfig:
    url = data["url"]
    if not isinstance(url, str) or not url:
        raise ValueError(f"database.url must be a non-empty string, got {url!r}")
    return DatabaseConfig(
        url=url,
        echo=_flag("database", "echo", data.get("echo", False)),
        pool_size=_positive_int("database", "pool_size", data.get("pool_size", 10)),
        max_overflow=_positive_int("database", "max_overflow", data.get("max_overflow", 20)),
        sqlite_busy_timeout=_positive_int(
            "database", "sqlite_busy_timeout", data.get("sqlite_busy_timeout", 30)
        ),
    )


def parse_distribution(data: dict[str, Any]) -> DistributionConfig:
    """
    Parse the distribution section.

    Raises:
        ValueError: unknown policy, unsupported currency, or the retain
            policy without a platform_investor_id.
    """
    currency = data.get("default_currency")
    if currency is not None:
        try:
            currency = validate_currency(currency)
        except InvalidCurrencyError as exc:
            raise ValueError(f"distribution.default_currency: {exc}") from exc

    policy = data.get("unallocated_policy", "pro_rata")
    if policy not in UNALLOCATED_POLICIES:
        raise ValueError(
            f"distribution.unallocated_policy must be one of {UNALLOCATED_POLICIES}, "
            f"got {policy!r}"
        )

    platform_investor_id = data.get("platform_investor_id")
    if policy == "retain" and not platform_investor_id:
        raise ValueError("distribution.platform_investor_id is required for the retain policy")

    return DistributionConfig(
        default_currency=currency,
        unallocated_policy=policy,
        platform_investor_id=platform_investor_id,
    )


def parse_ownership(data: dict[str, Any]) -> OwnershipConfig:
    return OwnershipConfig(
        require_kyc_assertion=_flag(
            "ownership", "require_kyc_assertion", data.get("require_kyc_assertion", False)
        ),
    )


def parse_logging(data: dict[str, Any]) -> LoggingConfig:
    level = str(data.get("level", "INFO")).upper()
    if not isinstance(logging.getLevelName(level), int):
        raise ValueError(f"logging.level is not a logging level: {level!r}")
    return LoggingConfig(level=level)


def parse_ledger_config(data: dict[str, Any]) -> LedgerConfig:
    """
    Parse a whole configuration document.

    Postconditions:
        - ``checksum`` is the SHA-256 of the canonical source document.
    """
    return LedgerConfig(
        config_id=data["config_id"],
        version=_positive_int("root", "version", data["version"]),
        database=parse_database(data["database"]),
        distribution=parse_distribution(data.get("distribution") or {}),
        ownership=parse_ownership(data.get("ownership") or {}),
        logging=parse_logging(data.get("logging") or {}),
        checksum=compute_checksum(data),
    )


def compute_checksum(data: dict[str, Any]) -> str:
    """
    Compute SHA-256 checksum of canonical JSON serialization.

    Identical ``data`` always produces identical checksums, regardless of
    key order in the source YAML.
    """
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()
