"""
AuditorService -- forwards state changes to the audit sink.

Responsibility:
    Wraps every engine audit record in a common envelope (organization,
    actor, timestamp) and hands it to the configured AuditSink.

Architecture position:
    Kernel > Services.  Called by JournalEntryService, ReversalService,
    LedgerMaterializer (balance recalculation) and WorkingTrialBalanceService
    after their mutation has been flushed.

Failure modes:
    A sink that raises never blocks the financial mutation: the failure is
    logged as ``audit_sink_degraded`` and ``degraded`` becomes True for the
    lifetime of the service.
"""

from typing import Any
from uuid import UUID

from ledger_kernel.domain.clock import Clock, SystemClock
from ledger_kernel.domain.collaborators import AuditSink
from ledger_kernel.logging_config import get_logger

logger = get_logger("services.auditor")


class AuditAction:
    """Action names recorded by the engine."""

    ENTRY_CREATED = "journal_entry.created"
    ENTRY_UPDATED = "journal_entry.updated"
    ENTRY_DELETED = "journal_entry.deleted"
    ENTRY_POSTED = "journal_entry.posted"
    ENTRY_REVERSED = "journal_entry.reversed"
    AUTO_REVERSAL_SCHEDULED = "journal_entry.auto_reversal_scheduled"
    AUTO_REVERSAL_CANCELLED = "journal_entry.auto_reversal_cancelled"
    CORRECTION_CREATED = "journal_entry.correction_created"
    BALANCE_RECALCULATED = "account_balance.recalculated"
    BALANCES_BATCH_RECALCULATED = "account_balance.batch_recalculated"
    WORKSPACE_CREATED = "working_trial_balance.created"
    WORKSPACE_ADJUSTED = "working_trial_balance.adjusted"
    WORKSPACE_LOCKED = "working_trial_balance.locked"
    WORKSPACE_DELETED = "working_trial_balance.deleted"


class LoggingAuditSink:
    """Default sink: writes each audit record to the structured log."""

    def record(
        self,
        action: str,
        entity_type: str,
        entity_id: UUID,
        details: dict[str, Any],
    ) -> None:
        logger.info(
            "audit_record",
            extra={
                "action": action,
                "entity_type": entity_type,
                "entity_id": str(entity_id),
                "details": details,
            },
        )


class AuditorService:
    """
    Fire-and-forget audit recording.

    Guarantees:
        - ``record()`` never raises because of the sink.
    """

    def __init__(self, sink: AuditSink | None = None, clock: Clock | None = None):
        self._sink = sink or LoggingAuditSink()
        self._clock = clock or SystemClock()
        self.degraded = False

    def record(
        self,
        action: str,
        entity_type: str,
        entity_id: UUID,
        organization_id: UUID,
        actor_id: UUID,
        details: dict[str, Any] | None = None,
    ) -> None:
        envelope = {
            "organization_id": str(organization_id),
            "actor_id": str(actor_id),
            "recorded_at": self._clock.now().isoformat(),
            **(details or {}),
        }
        try:
            self._sink.record(action, entity_type, entity_id, envelope)
        except Exception:
            self.degraded = True
            logger.warning(
                "audit_sink_degraded",
                exc_info=True,
                extra={
                    "action": action,
                    "entity_type": entity_type,
                    "entity_id": str(entity_id),
                },
            )
