"""Selectors for the ledger kernel (read side)."""

from ledger_kernel.selectors.balance_selector import BalanceSelector
from ledger_kernel.selectors.journal_selector import JournalSelector

__all__ = [
    "BalanceSelector",
    "JournalSelector",
]
