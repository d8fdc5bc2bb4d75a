"""
ledger_config -- YAML-backed configuration for the ledger kernel.

Responsibility:
    ``get_ledger_config()`` is the single entrypoint: it loads the packaged
    defaults, merges an optional override file and returns a frozen
    ``LedgerConfig``.  ``ledger_config.bridges.build_ledger_policy`` turns
    that into the kernel's ``LedgerPolicy``.

Architecture position:
    Configuration.  Sits above ``ledger_kernel``; the kernel MUST NEVER
    import from ``ledger_config``.

Failure modes:
    - ``FileNotFoundError`` -- override file missing.
    - ``yaml.YAMLError`` -- malformed YAML.
    - ``ValueError`` / ``KeyError`` -- invalid or missing values.
"""

from __future__ import annotations

import logging
from pathlib import Path

from ledger_config.loader import load_config
from ledger_config.schema import LedgerConfig, NumberingConfig

_logger = logging.getLogger("ledger_kernel.config")


def get_ledger_config(config_path: Path | str | None = None) -> LedgerConfig:
    """
    Load the engine configuration.

    Args:
        config_path: Optional YAML file deep-merged over the defaults.
    """
    config = load_config(Path(config_path) if config_path is not None else None)
    _logger.info(
        "ledger_config_loaded",
        extra={
            "source_files": list(config.source_files),
            "base_currency": config.base_currency,
            "money_decimal_places": config.money_decimal_places,
        },
    )
    return config


__all__ = [
    "LedgerConfig",
    "NumberingConfig",
    "get_ledger_config",
]
