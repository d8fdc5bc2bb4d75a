"""
Configuration Loader (``ledger_config.loader``).

Responsibility
--------------
Reads the packaged ``defaults.yaml`` and an optional override file,
deep-merges them and parses the result into ``ledger_config.schema``
dataclasses.

Failure modes
-------------
* Missing override file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Unknown entry kind, rounding mode or out-of-range value  -> ``ValueError``.
"""

from __future__ import annotations

from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any

import yaml

from ledger_config.schema import ENTRY_KINDS, ROUNDING_MODES, LedgerConfig, NumberingConfig

DEFAULTS_PATH = Path(__file__).parent / "defaults.yaml"


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
        ValueError: if the document is not a mapping.
    """
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"{path}: top-level YAML must be a mapping, got {type(data).__name__}")
    return data


def deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Merge ``override`` into a copy of ``base``; nested mappings merge, everything else replaces."""
    merged = dict(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def parse_decimal(value: Any, key: str) -> Decimal:
    try:
        result = Decimal(str(value))
    except InvalidOperation as exc:
        raise ValueError(f"{key} is not a decimal: {value!r}") from exc
    if not result.is_finite() or result < 0:
        raise ValueError(f"{key} must be a non-negative finite decimal: {value!r}")
    return result


def _check_kinds(kinds: Any, key: str) -> None:
    unknown = set(kinds) - ENTRY_KINDS
    if unknown:
        raise ValueError(f"{key}: unknown entry kinds {sorted(unknown)}")


def parse_numbering(data: dict[str, Any]) -> NumberingConfig:
    prefixes = {str(k).lower(): str(v) for k, v in (data.get("prefixes") or {}).items()}
    _check_kinds(prefixes, "numbering.prefixes")
    missing = ENTRY_KINDS - set(prefixes)
    if missing:
        raise ValueError(f"numbering.prefixes: missing entry kinds {sorted(missing)}")

    yearly = frozenset(str(k).lower() for k in (data.get("yearly_kinds") or ()))
    _check_kinds(yearly, "numbering.yearly_kinds")

    width = int(data.get("sequence_width", 4))
    if width < 1:
        raise ValueError(f"numbering.sequence_width must be positive: {width}")

    return NumberingConfig(prefixes=prefixes, yearly_kinds=yearly, sequence_width=width)


def parse_config(data: dict[str, Any], source_files: tuple[str, ...] = ()) -> LedgerConfig:
    """
    Parse a merged configuration document.

    Raises:
        KeyError: a required key is missing.
        ValueError: a value is out of range.
    """
    rounding_mode = str(data["rounding_mode"])
    if rounding_mode not in ROUNDING_MODES:
        raise ValueError(f"rounding_mode: unknown mode {rounding_mode!r}")

    places = int(data["money_decimal_places"])
    if not 0 <= places <= 9:
        raise ValueError(f"money_decimal_places must be between 0 and 9: {places}")

    base_currency = str(data["base_currency"]).upper().strip()
    if len(base_currency) != 3:
        raise ValueError(f"base_currency must be a 3-letter code: {base_currency!r}")

    class_names = {int(k): str(v) for k, v in (data.get("account_class_names") or {}).items()}
    bad_classes = [k for k in class_names if not 0 <= k <= 9]
    if bad_classes:
        raise ValueError(f"account_class_names: classes must be 0-9, got {bad_classes}")

    return LedgerConfig(
        base_currency=base_currency,
        money_decimal_places=places,
        rounding_mode=rounding_mode,
        balance_tolerance=parse_decimal(data["balance_tolerance"], "balance_tolerance"),
        significance_threshold=parse_decimal(data["significance_threshold"], "significance_threshold"),
        numbering=parse_numbering(data.get("numbering") or {}),
        workspace_code_prefix=str(data["workspace_code_prefix"]),
        account_class_names=class_names,
        source_files=source_files,
    )


def load_config(config_path: Path | None = None) -> LedgerConfig:
    """Defaults, optionally overridden by ``config_path``."""
    data = load_yaml_file(DEFAULTS_PATH)
    sources = [str(DEFAULTS_PATH)]
    if config_path is not None:
        data = deep_merge(data, load_yaml_file(Path(config_path)))
        sources.append(str(config_path))
    return parse_config(data, tuple(sources))
