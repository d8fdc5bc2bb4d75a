"""ORM models for the ledger kernel."""

from ledger_kernel.models.account import Account, AccountType, NormalBalance
from ledger_kernel.models.entry_number import EntryNumberCounter
from ledger_kernel.models.fiscal_period import FiscalPeriod, PeriodStatus
from ledger_kernel.models.journal import (
    REVERSAL_MUTABLE_FIELDS,
    EntryType,
    JournalEntry,
    JournalEntryStatus,
    JournalLine,
    ReversalType,
)
from ledger_kernel.models.ledger import AccountPeriodBalance, LedgerPosting
from ledger_kernel.models.working_trial_balance import (
    AdjustmentColumn,
    AdjustmentColumnType,
    WorkingTrialBalance,
    WorkingTrialBalanceAdjustment,
    WorkingTrialBalanceLine,
    WorkspaceStatus,
)

__all__ = [
    "Account",
    "AccountPeriodBalance",
    "AccountType",
    "AdjustmentColumn",
    "AdjustmentColumnType",
    "EntryNumberCounter",
    "EntryType",
    "FiscalPeriod",
    "JournalEntry",
    "JournalEntryStatus",
    "JournalLine",
    "LedgerPosting",
    "NormalBalance",
    "PeriodStatus",
    "REVERSAL_MUTABLE_FIELDS",
    "ReversalType",
    "WorkingTrialBalance",
    "WorkingTrialBalanceAdjustment",
    "WorkingTrialBalanceLine",
    "WorkspaceStatus",
]
