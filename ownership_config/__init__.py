"""
ownership_config -- single public entrypoint for ledger configuration.

Responsibility:
    Provides the ONLY way to obtain configuration at runtime through
    ``get_active_config()``.  No other component reads configuration files
    directly.

Architecture position:
    Configuration -- YAML-driven settings.  This package sits above
    ``ownership_kernel``.  The kernel MUST NEVER import from
    ``ownership_config``; ``ownership_config.bridges`` translates a
    ``LedgerConfig`` into kernel inputs.

Invariants enforced:
    - Single entrypoint: all runtime config flows through get_active_config().
    - Deterministic identity: the same YAML always yields the same checksum.

Failure modes:
    - ``FileNotFoundError`` -- the configuration file does not exist.
    - ``KeyError`` -- a required key is missing.
    - ``ValueError`` -- a value fails validation.

Audit relevance:
    Every successful ``get_active_config()`` call emits an
    ``OWNERSHIP_CONFIG_TRACE`` log entry with the config id, version and
    checksum, tying distribution runs back to the settings that governed
    them.
"""

from __future__ import annotations

from pathlib import Path

from ownership_config.loader import load_yaml_file, parse_ledger_config
from ownership_config.schema import LedgerConfig
from ownership_kernel.logging_config import get_logger

_logger = get_logger("config")

DEFAULT_CONFIG_PATH = Path(__file__).parent / "defaults" / "ledger.yaml"


def get_active_config(config_path: Path | str | None = None) -> LedgerConfig:
    """The ONLY public configuration entrypoint.

    Args:
        config_path: YAML file to load.  Defaults to
            ownership_config/defaults/ledger.yaml.

    Returns:
        LedgerConfig -- frozen, validated settings.
    """
    path = Path(config_path) if config_path is not None else DEFAULT_CONFIG_PATH
    config = parse_ledger_config(load_yaml_file(path))

    _logger.info(
        "OWNERSHIP_CONFIG_TRACE",
        extra={
            "trace_type": "OWNERSHIP_CONFIG_TRACE",
            "config_id": config.config_id,
            "config_version": config.version,
            "checksum": config.checksum,
            "unallocated_policy": config.distribution.unallocated_policy,
            "require_kyc_assertion": config.ownership.require_kyc_assertion,
        },
    )
    return config


__all__ = ["get_active_config", "LedgerConfig", "DEFAULT_CONFIG_PATH"]
