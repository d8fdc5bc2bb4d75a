"""
Config -> Kernel Bridge.

Converts a ``LedgerConfig`` into the kernel's ``LedgerPolicy``.  It lives in
ledger_config (the producer) because the kernel must never import
ledger_config.

Usage:
    from ledger_config import get_ledger_config
    from ledger_config.bridges import build_ledger_policy

    policy = build_ledger_policy(get_ledger_config())
    service = JournalEntryService(session, policy=policy)
"""

from __future__ import annotations

import decimal
from types import MappingProxyType

from ledger_config.schema import LedgerConfig
from ledger_kernel.domain.ledger_policy import LedgerPolicy


def build_ledger_policy(config: LedgerConfig) -> LedgerPolicy:
    return LedgerPolicy(
        base_currency=config.base_currency,
        money_decimal_places=config.money_decimal_places,
        rounding_mode=getattr(decimal, config.rounding_mode),
        balance_tolerance=config.balance_tolerance,
        significance_threshold=config.significance_threshold,
        entry_prefixes=MappingProxyType(dict(config.numbering.prefixes)),
        yearly_kinds=frozenset(config.numbering.yearly_kinds),
        sequence_width=config.numbering.sequence_width,
        workspace_code_prefix=config.workspace_code_prefix,
        account_class_names=MappingProxyType(dict(config.account_class_names)),
    )
