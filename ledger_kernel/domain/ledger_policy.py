"""
LedgerPolicy -- the engine's tunable numeric and numbering rules.

Responsibility:
    One immutable object carrying base currency, rounding, tolerance,
    entry-number layout and trial-balance presentation settings.  Services
    receive it by injection and default to ``LedgerPolicy()``.

Architecture position:
    Kernel > Domain -- pure, no I/O.  Built from YAML by
    ``ledger_config.bridges.build_ledger_policy``; the kernel never imports
    the config package.
"""

from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal
from types import MappingProxyType
from typing import Mapping

from ledger_kernel.db.types import round_money

DEFAULT_ENTRY_PREFIXES: Mapping[str, str] = MappingProxyType({
    "standard": "JE",
    "adjusting": "AJ",
    "opening": "OB",
    "reversing": "RV",
    "closing": "CL",
})

DEFAULT_ACCOUNT_CLASS_NAMES: Mapping[int, str] = MappingProxyType({
    0: "Fixed Assets",
    1: "Cash",
    2: "Settlements",
    3: "Materials",
    4: "Costs",
    5: "Cost Allocation",
    6: "Products",
    7: "Revenues",
    8: "Financial Result",
    9: "Off-balance",
})


@dataclass(frozen=True)
class LedgerPolicy:
    """
    Immutable engine policy.

    Entry kinds are keyed by their string value ("standard", "opening", ...)
    so the domain layer stays independent of the ORM enums.
    """

    base_currency: str = "USD"
    money_decimal_places: int = 2
    rounding_mode: str = ROUND_HALF_UP
    balance_tolerance: Decimal = Decimal("0.01")
    significance_threshold: Decimal = Decimal("10")
    entry_prefixes: Mapping[str, str] = field(default_factory=lambda: DEFAULT_ENTRY_PREFIXES)
    yearly_kinds: frozenset[str] = frozenset({"opening", "closing"})
    sequence_width: int = 4
    workspace_code_prefix: str = "WTB"
    account_class_names: Mapping[int, str] = field(
        default_factory=lambda: DEFAULT_ACCOUNT_CLASS_NAMES,
    )

    def round(self, value: Decimal) -> Decimal:
        """Round a base-currency amount with the policy's precision and mode."""
        return round_money(value, self.money_decimal_places, self.rounding_mode)

    def within_tolerance(self, left: Decimal, right: Decimal) -> bool:
        return abs(left - right) <= self.balance_tolerance

    def prefix_for(self, entry_type: str) -> str:
        kind = getattr(entry_type, "value", entry_type)
        try:
            return self.entry_prefixes[kind]
        except KeyError:
            raise ValueError(f"No entry-number prefix configured for kind '{kind}'") from None

    def is_yearly(self, entry_type: str) -> bool:
        return getattr(entry_type, "value", entry_type) in self.yearly_kinds

    def class_name(self, account_class: int) -> str:
        return self.account_class_names.get(account_class, f"Class {account_class}")
