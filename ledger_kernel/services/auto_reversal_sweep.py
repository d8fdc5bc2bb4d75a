"""
AutoReversalSweep -- periodic reversal of entries with a due schedule.

Responsibility:
    Pull every POSTED entry whose auto_reverse_date is on or before the
    sweep date and reverse each one on its scheduled date, independently.
    The originator of each entry is notified of success or failure.

Architecture position:
    Kernel > Services.  Meant to be invoked by a scheduler once per run.

Invariants enforced:
    - Each entry is one unit of work in its own SAVEPOINT.  A failure
      (closed target period, deactivated account, ...) rolls back that
      entry only and leaves its schedule in place for the next run.
    - No lock is held across the whole sweep.

Failure modes:
    - Per-entry failures are reported in SweepResult, never raised.
    - Notifier failures are logged as ``notification_failed`` and not
      retried.
"""

from datetime import date
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from ledger_kernel.domain.clock import Clock, SystemClock
from ledger_kernel.domain.collaborators import Notifier
from ledger_kernel.domain.dtos import SweepItemResult, SweepResult
from ledger_kernel.exceptions import LedgerKernelError
from ledger_kernel.logging_config import get_logger
from ledger_kernel.models.journal import JournalEntry, JournalEntryStatus, ReversalType
from ledger_kernel.services.notification import (
    AUTO_REVERSAL_COMPLETED,
    AUTO_REVERSAL_FAILED,
    LoggingNotifier,
)
from ledger_kernel.services.reversal_service import ReversalService

logger = get_logger("services.auto_reversal_sweep")


class AutoReversalSweep:
    """
    Runs the auto-reversal batch.

    Usage:
        sweep = AutoReversalSweep(session, reversal_service, notifier, clock)
        result = sweep.run(as_of_date=date(2024, 4, 1), actor_id=system_user)
        print(f"{result.successful}/{result.processed} reversed")
    """

    def __init__(
        self,
        session: Session,
        reversal_service: ReversalService | None = None,
        notifier: Notifier | None = None,
        clock: Clock | None = None,
    ):
        self.session = session
        self._clock = clock or SystemClock()
        self._reversals = reversal_service or ReversalService(session, clock=self._clock)
        self._notifier = notifier or LoggingNotifier()

    def due_entries(self, as_of_date: date, organization_id: UUID | None = None) -> list[JournalEntry]:
        query = select(JournalEntry).where(
            JournalEntry.status == JournalEntryStatus.POSTED,
            JournalEntry.auto_reverse_date.is_not(None),
            JournalEntry.auto_reverse_date <= as_of_date,
        )
        if organization_id is not None:
            query = query.where(JournalEntry.organization_id == organization_id)
        query = query.order_by(JournalEntry.auto_reverse_date, JournalEntry.entry_number)
        return list(self.session.execute(query).scalars())

    def run(
        self,
        actor_id: UUID,
        as_of_date: date | None = None,
        organization_id: UUID | None = None,
        dry_run: bool = False,
    ) -> SweepResult:
        """
        Reverse every due entry.

        With ``dry_run`` the due entries are reported (as successful,
        without reversing ids) and nothing is written.
        """
        as_of_date = as_of_date or self._clock.today()
        due = [
            (entry.id, entry.entry_number, entry.auto_reverse_date, entry.created_by_id)
            for entry in self.due_entries(as_of_date, organization_id)
        ]

        logger.info(
            "auto_reversal_sweep_started",
            extra={"as_of_date": str(as_of_date), "due_count": len(due), "dry_run": dry_run},
        )

        if dry_run:
            results = tuple(
                SweepItemResult(
                    entry_id=entry_id,
                    entry_number=entry_number,
                    auto_reverse_date=reverse_on,
                    success=True,
                )
                for entry_id, entry_number, reverse_on, _ in due
            )
            return SweepResult(as_of_date=as_of_date, results=results, dry_run=True)

        results = []
        for entry_id, entry_number, reverse_on, originator in due:
            item = self._reverse_one(entry_id, entry_number, reverse_on, actor_id)
            results.append(item)
            self._notify(item, originator)

        result = SweepResult(as_of_date=as_of_date, results=tuple(results))
        logger.info(
            "auto_reversal_sweep_completed",
            extra={
                "as_of_date": str(as_of_date),
                "processed": result.processed,
                "successful": result.successful,
                "failed": result.failed,
            },
        )
        return result

    def _reverse_one(
        self,
        entry_id: UUID,
        entry_number: str | None,
        reverse_on: date,
        actor_id: UUID,
    ) -> SweepItemResult:
        try:
            with self.session.begin_nested():
                reversal = self._reversals.reverse(
                    entry_id,
                    reverse_on,
                    f"Automatic reversal scheduled for {reverse_on}",
                    actor_id,
                    reversal_type=ReversalType.AUTO_SCHEDULED,
                )
        except Exception as exc:
            error_code = exc.code if isinstance(exc, LedgerKernelError) else type(exc).__name__
            logger.warning(
                "auto_reversal_failed",
                exc_info=not isinstance(exc, LedgerKernelError),
                extra={
                    "entry_id": str(entry_id),
                    "entry_number": entry_number,
                    "error_code": error_code,
                },
            )
            return SweepItemResult(
                entry_id=entry_id,
                entry_number=entry_number,
                auto_reverse_date=reverse_on,
                success=False,
                error_code=error_code,
                error_message=str(exc),
            )

        return SweepItemResult(
            entry_id=entry_id,
            entry_number=entry_number,
            auto_reverse_date=reverse_on,
            success=True,
            reversing_entry_id=reversal.reversing_entry_id,
            reversing_entry_number=reversal.reversing_entry_number,
        )

    def _notify(self, item: SweepItemResult, originator: UUID) -> None:
        notification_type = AUTO_REVERSAL_COMPLETED if item.success else AUTO_REVERSAL_FAILED
        data = {
            "entry_id": str(item.entry_id),
            "entry_number": item.entry_number,
            "auto_reverse_date": str(item.auto_reverse_date),
        }
        if item.success:
            data["reversing_entry_id"] = str(item.reversing_entry_id)
            data["reversing_entry_number"] = item.reversing_entry_number
        else:
            data["error_code"] = item.error_code
            data["error_message"] = item.error_message

        try:
            self._notifier.send(notification_type, [originator], data)
        except Exception:
            logger.warning(
                "notification_failed",
                exc_info=True,
                extra={"entry_id": str(item.entry_id), "notification_type": notification_type},
            )
