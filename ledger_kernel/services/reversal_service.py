"""
ReversalService -- reversals, scheduled reversals and corrections.

Responsibility:
    Validates reversal preconditions, builds the mirror entry (debits and
    credits swapped, base amounts swapped rather than recomputed), posts it
    through JournalEntryService and cross-links both entries.  Also stores
    and cancels auto-reversal schedules and posts delta corrections.

Architecture position:
    Kernel > Services.  Consumes JournalEntryService (which owns posting,
    numbering and materialization) and AuditorService.

Invariants enforced:
    - Only a POSTED entry can be reversed, exactly once.  The mirror of a
      reversal can never be reversed either.
    - reversal_date >= entry_date; an auto-reversal date must be strictly
      after entry_date.
    - Mirror posting and the original's POSTED -> REVERSED flip run in one
      SAVEPOINT.
    - A correction never changes the original entry: it posts only the
      delta, linked through corrected_entry_id.  Each account moves by
      exactly its corrected base minus its original base, so a rate-only
      correction lands as base-currency lines.

Failure modes:
    - AlreadyReversedError, EntryNotPostedError, DateOrderError.
    - PeriodClosedError / PeriodNotFoundError for the target date.
    - ValidationError for a correction identical to the original.
"""

from collections.abc import Sequence
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from uuid import UUID, uuid4

from sqlalchemy.orm import Session

from ledger_kernel.db.types import ZERO
from ledger_kernel.domain.clock import Clock, SystemClock
from ledger_kernel.domain.collaborators import Notifier
from ledger_kernel.domain.dtos import LineInput, SweepResult
from ledger_kernel.exceptions import (
    AlreadyReversedError,
    DateOrderError,
    EntryNotPostedError,
    InvalidStateError,
    UnbalancedEntryError,
    ValidationError,
)
from ledger_kernel.logging_config import LogContext, get_logger
from ledger_kernel.models.journal import (
    EntryType,
    JournalEntry,
    JournalEntryStatus,
    JournalLine,
    ReversalType,
)
from ledger_kernel.services.auditor_service import AuditAction, AuditorService
from ledger_kernel.services.journal_entry_service import JournalEntryService

logger = get_logger("services.reversal")


@dataclass(frozen=True)
class ReversalResult:
    """Outcome of a successful reversal."""

    original_entry_id: UUID
    original_entry_number: str | None
    reversing_entry_id: UUID
    reversing_entry_number: str | None
    reversal_date: date


class ReversalService:
    """
    Reversal and correction engine.

    Contract:
        Flushes within the caller's transaction; never commits.

    Non-goals:
        - Partial (line-level) reversals.  Use create_correction instead.
    """

    def __init__(
        self,
        session: Session,
        journal_service: JournalEntryService | None = None,
        clock: Clock | None = None,
        auditor: AuditorService | None = None,
    ):
        self.session = session
        self._clock = clock or SystemClock()
        self._auditor = auditor or AuditorService(clock=self._clock)
        self._journal = journal_service or JournalEntryService(
            session, clock=self._clock, auditor=self._auditor
        )

    # ------------------------------------------------------------------
    # Reversal
    # ------------------------------------------------------------------

    def _require_reversible(self, entry: JournalEntry) -> None:
        if entry.reversing_entry_id is not None or entry.is_reversed:
            raise AlreadyReversedError(str(entry.id), _str(entry.reversing_entry_id))
        if entry.reversed_entry_id is not None:
            raise AlreadyReversedError(str(entry.id), _str(entry.reversed_entry_id))
        if not entry.is_posted:
            raise EntryNotPostedError(str(entry.id), JournalEntryStatus(entry.status).value)

    def reverse(
        self,
        entry_id: UUID,
        reversal_date: date,
        reason: str,
        actor_id: UUID,
        reversal_type: ReversalType = ReversalType.MANUAL,
    ) -> ReversalResult:
        """
        Post the mirror of an entry and mark the entry REVERSED.

        Postconditions:
            - A POSTED REVERSING entry dated ``reversal_date`` exists with
              reversed_entry_id = entry_id and every line's sides swapped.
            - The original is REVERSED, reversing_entry_id points to the
              mirror, and any auto-reversal schedule is cleared.

        Raises:
            AlreadyReversedError: Entry already reversed, or is a reversal.
            EntryNotPostedError: Entry is a draft.
            DateOrderError: reversal_date precedes the entry date.
            PeriodClosedError: reversal_date falls in a closed period.
        """
        if not reason or not reason.strip():
            raise ValidationError("A reversal reason is required", field="reason")

        original = self._journal.get_entry_for_update(entry_id)
        self._require_reversible(original)
        if reversal_date < original.entry_date:
            raise DateOrderError(
                str(original.id), str(original.entry_date), str(reversal_date), "reverse"
            )

        with LogContext.bind(entry_id=str(original.id), organization_id=str(original.organization_id)):
            with self.session.begin_nested():
                mirror = self._build_mirror(original, reversal_date, reason, actor_id, reversal_type)
                self._journal.post_generated_entry(mirror, actor_id)

                original.status = JournalEntryStatus.REVERSED
                original.reversing_entry_id = mirror.id
                original.reversal_reason = reason
                original.reversal_type = ReversalType(reversal_type)
                original.reversed_at = self._clock.now()
                original.reversed_by_id = actor_id
                original.auto_reverse_date = None
                original.updated_by_id = actor_id
                self.session.flush()

            logger.info(
                "reversal_completed",
                extra={
                    "entry_number": original.entry_number,
                    "reversing_entry_id": str(mirror.id),
                    "reversing_entry_number": mirror.entry_number,
                    "reversal_date": str(reversal_date),
                    "reversal_type": ReversalType(reversal_type).value,
                },
            )

        self._auditor.record(
            AuditAction.ENTRY_REVERSED,
            "JournalEntry",
            original.id,
            original.organization_id,
            actor_id,
            {
                "reversing_entry_id": str(mirror.id),
                "reversal_date": str(reversal_date),
                "reason": reason,
            },
        )
        return ReversalResult(
            original_entry_id=original.id,
            original_entry_number=original.entry_number,
            reversing_entry_id=mirror.id,
            reversing_entry_number=mirror.entry_number,
            reversal_date=reversal_date,
        )

    def _build_mirror(
        self,
        original: JournalEntry,
        reversal_date: date,
        reason: str,
        actor_id: UUID,
        reversal_type: ReversalType,
    ) -> JournalEntry:
        label = original.entry_number or str(original.id)
        mirror = JournalEntry(
            id=uuid4(),
            organization_id=original.organization_id,
            entry_date=reversal_date,
            entry_type=EntryType.REVERSING,
            status=JournalEntryStatus.DRAFT,
            description=f"Reversal of {label}: {reason}",
            reference=original.entry_number,
            reversed_entry_id=original.id,
            reversal_type=ReversalType(reversal_type),
            reversal_reason=reason,
            entry_metadata={"reversal_of": str(original.id)},
            created_by_id=actor_id,
        )
        mirror.lines = [
            JournalLine(
                line_no=line.line_no,
                account_id=line.account_id,
                description=f"Reversal: {line.description or original.description or label}",
                debit_amount=line.credit_amount,
                credit_amount=line.debit_amount,
                currency=line.currency,
                exchange_rate=line.exchange_rate,
                base_debit=line.base_credit,
                base_credit=line.base_debit,
                created_by_id=actor_id,
            )
            for line in original.lines
        ]
        return mirror

    # ------------------------------------------------------------------
    # Scheduling
    # ------------------------------------------------------------------

    def schedule_auto_reversal(self, entry_id: UUID, reverse_on: date, actor_id: UUID) -> JournalEntry:
        """
        Store an auto-reversal date; the sweep reverses the entry on that date.

        Raises:
            AlreadyReversedError / EntryNotPostedError: Entry not reversible.
            DateOrderError: ``reverse_on`` is not after the entry date.
        """
        entry = self._journal.get_entry_for_update(entry_id)
        self._require_reversible(entry)
        if reverse_on <= entry.entry_date:
            raise DateOrderError(
                str(entry.id), str(entry.entry_date), str(reverse_on), "schedule auto-reversal of"
            )

        entry.auto_reverse_date = reverse_on
        entry.reversal_type = ReversalType.AUTO_SCHEDULED
        entry.updated_by_id = actor_id
        self.session.flush()

        logger.info(
            "auto_reversal_scheduled",
            extra={
                "entry_id": str(entry.id),
                "entry_number": entry.entry_number,
                "auto_reverse_date": str(reverse_on),
            },
        )
        self._auditor.record(
            AuditAction.AUTO_REVERSAL_SCHEDULED,
            "JournalEntry",
            entry.id,
            entry.organization_id,
            actor_id,
            {"auto_reverse_date": str(reverse_on)},
        )
        return entry

    def cancel_auto_reversal(self, entry_id: UUID, actor_id: UUID) -> JournalEntry:
        """
        Raises:
            InvalidStateError: No auto-reversal is scheduled.
        """
        entry = self._journal.get_entry_for_update(entry_id)
        if entry.auto_reverse_date is None:
            raise InvalidStateError(
                str(entry.id),
                JournalEntryStatus(entry.status).value,
                "cancel auto-reversal",
                message=f"Entry {entry.entry_number or entry.id} has no scheduled auto-reversal",
            )

        cancelled = entry.auto_reverse_date
        entry.auto_reverse_date = None
        if entry.reversal_type == ReversalType.AUTO_SCHEDULED:
            entry.reversal_type = None
        entry.updated_by_id = actor_id
        self.session.flush()

        logger.info(
            "auto_reversal_cancelled",
            extra={"entry_id": str(entry.id), "auto_reverse_date": str(cancelled)},
        )
        self._auditor.record(
            AuditAction.AUTO_REVERSAL_CANCELLED,
            "JournalEntry",
            entry.id,
            entry.organization_id,
            actor_id,
            {"auto_reverse_date": str(cancelled)},
        )
        return entry

    def run_auto_reversal_sweep(
        self,
        as_of_date: date,
        actor_id: UUID,
        organization_id: UUID | None = None,
        dry_run: bool = False,
        notifier: Notifier | None = None,
    ) -> SweepResult:
        """Reverse every entry whose schedule is due.  See AutoReversalSweep."""
        from ledger_kernel.services.auto_reversal_sweep import AutoReversalSweep

        sweep = AutoReversalSweep(self.session, self, notifier=notifier, clock=self._clock)
        return sweep.run(
            actor_id,
            as_of_date=as_of_date,
            organization_id=organization_id,
            dry_run=dry_run,
        )

    # ------------------------------------------------------------------
    # Correction
    # ------------------------------------------------------------------

    def create_correction(
        self,
        entry_id: UUID,
        correction_date: date,
        corrected_lines: Sequence[LineInput],
        reason: str,
        actor_id: UUID,
    ) -> JournalEntry:
        """
        Post the difference between an entry and its corrected line set.

        ``corrected_lines`` is the full set the entry should have had.  The
        original stays POSTED and unchanged; the new ADJUSTING entry carries
        only the per-(account, currency) deltas.

        Raises:
            EntryNotPostedError: The original is a draft or already reversed.
            DateOrderError: correction_date precedes the entry date.
            ValidationError: Corrected lines do not validate, or equal the
                original.
        """
        if not reason or not reason.strip():
            raise ValidationError("A correction reason is required", field="reason")

        original = self._journal.get_entry_for_update(entry_id)
        if not original.is_posted:
            raise EntryNotPostedError(
                str(original.id), JournalEntryStatus(original.status).value, "correct"
            )
        if correction_date < original.entry_date:
            raise DateOrderError(
                str(original.id), str(original.entry_date), str(correction_date), "correct"
            )

        # Validates the corrected set as a standalone balanced entry
        corrected = self._journal.build_lines(
            original.organization_id, corrected_lines, actor_id, entry_id=original.id
        )
        delta_inputs = self._delta_lines(original.lines, corrected, reason)
        if not delta_inputs:
            raise ValidationError(
                "Corrected lines are identical to the original entry",
                field="lines",
                entry_id=str(original.id),
            )

        label = original.entry_number or str(original.id)
        correction = JournalEntry(
            id=uuid4(),
            organization_id=original.organization_id,
            entry_date=correction_date,
            entry_type=EntryType.ADJUSTING,
            status=JournalEntryStatus.DRAFT,
            description=f"Correction of {label}: {reason}",
            reference=original.entry_number,
            corrected_entry_id=original.id,
            reversal_type=ReversalType.CORRECTION,
            reversal_reason=reason,
            entry_metadata={"correction_of": str(original.id)},
            created_by_id=actor_id,
        )
        correction.lines = self._journal.build_lines(
            original.organization_id, delta_inputs, actor_id, entry_id=correction.id
        )
        expected = self._net_base_by_account(corrected)
        for account_id, net in self._net_base_by_account(original.lines).items():
            expected[account_id] = expected.get(account_id, ZERO) - net
        expected = {account_id: net for account_id, net in expected.items() if net != 0}
        if self._net_base_by_account(correction.lines) != expected:
            raise UnbalancedEntryError(
                str(correction.total_base_debit),
                str(correction.total_base_credit),
                self._journal.policy.base_currency,
                entry_id=str(original.id),
            )

        with self.session.begin_nested():
            self._journal.post_generated_entry(correction, actor_id)

        logger.info(
            "correction_posted",
            extra={
                "entry_id": str(original.id),
                "correction_entry_id": str(correction.id),
                "correction_entry_number": correction.entry_number,
                "delta_lines": len(delta_inputs),
            },
        )
        self._auditor.record(
            AuditAction.CORRECTION_CREATED,
            "JournalEntry",
            original.id,
            original.organization_id,
            actor_id,
            {"correction_entry_id": str(correction.id), "reason": reason},
        )
        return correction

    def _delta_lines(
        self,
        original: Sequence[JournalLine],
        corrected: Sequence[JournalLine],
        reason: str,
    ) -> list[LineInput]:
        """
        Lines that move every account from its original to its corrected
        base amount.

        The transaction-amount difference per (account, currency) is posted
        at the corrected rate.  Whatever part of the base difference that
        conversion does not cover (a rate change, rounding) is posted as a
        base-currency line on the same account.
        """
        policy = self._journal.policy
        amounts: dict[tuple[UUID, str], Decimal] = {}
        bases: dict[tuple[UUID, str], Decimal] = {}
        rates: dict[tuple[UUID, str], Decimal] = {}

        for line, sign in [(l, -1) for l in original] + [(l, 1) for l in corrected]:
            key = (line.account_id, line.currency)
            amounts[key] = amounts.get(key, ZERO) + sign * (line.debit_amount - line.credit_amount)
            bases[key] = bases.get(key, ZERO) + sign * (line.base_debit - line.base_credit)
            if sign > 0 or key not in rates:
                rates[key] = line.exchange_rate

        moves: dict[tuple[UUID, str, Decimal], Decimal] = {}
        for key, amount in amounts.items():
            account_id, currency = key
            rate = rates[key]
            converted = policy.round(abs(amount) * rate)
            if amount < 0:
                converted = -converted
            if amount != 0:
                move = (account_id, currency, rate)
                moves[move] = moves.get(move, ZERO) + amount
            residual = bases[key] - converted
            if residual != 0:
                move = (account_id, policy.base_currency, Decimal("1"))
                moves[move] = moves.get(move, ZERO) + residual

        return [
            LineInput(
                account_id=account_id,
                debit=amount if amount > 0 else ZERO,
                credit=-amount if amount < 0 else ZERO,
                currency=currency,
                exchange_rate=rate,
                description=f"Correction: {reason}",
            )
            for (account_id, currency, rate), amount in moves.items()
            if amount != 0
        ]

    @staticmethod
    def _net_base_by_account(lines: Sequence[JournalLine]) -> dict[UUID, Decimal]:
        nets: dict[UUID, Decimal] = {}
        for line in lines:
            nets[line.account_id] = nets.get(line.account_id, ZERO) + line.base_debit - line.base_credit
        return {account_id: net for account_id, net in nets.items() if net != 0}


def _str(value: object | None) -> str | None:
    return str(value) if value is not None else None
