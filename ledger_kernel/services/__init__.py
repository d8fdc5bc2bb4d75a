"""Services for the ledger kernel (write side)."""

from ledger_kernel.services.account_registry import AccountRegistry
from ledger_kernel.services.auditor_service import AuditAction, AuditorService, LoggingAuditSink
from ledger_kernel.services.auto_reversal_sweep import AutoReversalSweep
from ledger_kernel.services.entry_numbering_service import EntryNumberingService
from ledger_kernel.services.journal_entry_service import JournalEntryService
from ledger_kernel.services.ledger_materializer import LedgerMaterializer
from ledger_kernel.services.notification import LoggingNotifier
from ledger_kernel.services.period_service import PeriodService
from ledger_kernel.services.reversal_service import ReversalResult, ReversalService
from ledger_kernel.services.working_trial_balance_service import WorkingTrialBalanceService

__all__ = [
    "AccountRegistry",
    "AuditAction",
    "AuditorService",
    "AutoReversalSweep",
    "EntryNumberingService",
    "JournalEntryService",
    "LedgerMaterializer",
    "LoggingAuditSink",
    "LoggingNotifier",
    "PeriodService",
    "ReversalResult",
    "ReversalService",
    "WorkingTrialBalanceService",
]
