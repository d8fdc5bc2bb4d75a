"""Pure domain layer: clock, policy, value objects, collaborator contracts."""

from ledger_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from ledger_kernel.domain.collaborators import AuditSink, Notifier
from ledger_kernel.domain.dtos import (
    AccountBalance,
    AccountEffect,
    Adjustment,
    BulkPostResult,
    ComparativeAmount,
    ComparativeRow,
    ComparativeTrialBalance,
    EntryValidationResult,
    GroupBy,
    LedgerCheck,
    LineInput,
    PeriodBalance,
    PostResult,
    ReversalDetails,
    SweepItemResult,
    SweepResult,
    TrialBalance,
    TrialBalanceFilter,
    TrialBalanceRow,
    WorkspaceColumn,
    WorkspaceLine,
    WorkspaceView,
)
from ledger_kernel.domain.ledger_policy import LedgerPolicy

__all__ = [
    "AccountBalance",
    "AccountEffect",
    "Adjustment",
    "AuditSink",
    "BulkPostResult",
    "Clock",
    "ComparativeAmount",
    "ComparativeRow",
    "ComparativeTrialBalance",
    "DeterministicClock",
    "EntryValidationResult",
    "GroupBy",
    "LedgerCheck",
    "LedgerPolicy",
    "LineInput",
    "Notifier",
    "PeriodBalance",
    "PostResult",
    "ReversalDetails",
    "SweepItemResult",
    "SweepResult",
    "SystemClock",
    "TrialBalance",
    "TrialBalanceFilter",
    "TrialBalanceRow",
    "WorkspaceColumn",
    "WorkspaceLine",
    "WorkspaceView",
]
