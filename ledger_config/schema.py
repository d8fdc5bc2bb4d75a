"""
Configuration Schema (``ledger_config.schema``).

Frozen dataclasses produced by ``ledger_config.loader`` from the merged
YAML document.  They carry plain Python values only; translation into the
kernel's ``LedgerPolicy`` happens in ``ledger_config.bridges``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal

ENTRY_KINDS = frozenset({"standard", "adjusting", "opening", "reversing", "closing"})

ROUNDING_MODES = frozenset({
    "ROUND_HALF_UP",
    "ROUND_HALF_EVEN",
    "ROUND_HALF_DOWN",
    "ROUND_UP",
    "ROUND_DOWN",
    "ROUND_CEILING",
    "ROUND_FLOOR",
    "ROUND_05UP",
})


@dataclass(frozen=True)
class NumberingConfig:
    """Entry-number layout."""

    prefixes: dict[str, str] = field(default_factory=dict)
    yearly_kinds: frozenset[str] = frozenset()
    sequence_width: int = 4


@dataclass(frozen=True)
class LedgerConfig:
    """
    Complete engine configuration.

    Decimal fields are parsed from strings so YAML never introduces a
    binary float into money arithmetic.
    """

    base_currency: str
    money_decimal_places: int
    rounding_mode: str
    balance_tolerance: Decimal
    significance_threshold: Decimal
    numbering: NumberingConfig
    workspace_code_prefix: str
    account_class_names: dict[int, str] = field(default_factory=dict)
    source_files: tuple[str, ...] = ()
