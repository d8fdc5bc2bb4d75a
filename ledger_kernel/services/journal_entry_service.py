"""
JournalEntryService -- the journal entry store and its state machine.

Responsibility:
    Create, replace and delete DRAFT entries; post them (number allocation,
    status flip and ledger materialization as one unit); and offer the
    supporting operations around posting (preflight validation, copy,
    bulk posting and deletion, number preview).

Architecture position:
    Kernel > Services.  Uses PeriodService, AccountRegistry,
    EntryNumberingService and LedgerMaterializer.  ReversalService builds
    mirror and correction entries and hands them to
    ``post_generated_entry``.

Invariants enforced:
    - An accepted entry has at least two lines, every line has exactly one
      positive side, and base debits equal base credits.  A base-currency
      rounding difference within the policy tolerance is absorbed into the
      largest line of the lighter side so the ledger stays exact.
    - When all lines share one currency, transaction debits equal
      transaction credits within the tolerance.
    - Status is one-way: DRAFT -> POSTED (-> REVERSED via ReversalService).
    - Posting re-checks the period, accounts and balance at post time,
      because a draft may sit unposted across a period close.
    - Number allocation, status flip and materialization run inside one
      SAVEPOINT: a failure leaves no trace of the attempt.

Failure modes:
    - ValidationError family on bad input (UnbalancedEntryError,
      AccountError, PeriodError, InvalidCurrencyError).
    - InvalidStateError on update/delete of a non-draft entry.
    - AlreadyPostedError on posting a posted entry.
    - EntryNotFoundError for unknown ids.
"""

from collections.abc import Sequence
from datetime import date
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from ledger_kernel.db.types import ZERO, coerce_amount, validate_currency
from ledger_kernel.domain.clock import Clock, SystemClock
from ledger_kernel.domain.dtos import (
    BulkDeleteResult,
    BulkPostResult,
    DeleteResult,
    EntryValidationResult,
    LineInput,
    PostResult,
)
from ledger_kernel.domain.ledger_policy import LedgerPolicy
from ledger_kernel.exceptions import (
    AccountInactiveError,
    AccountNotFoundError,
    AccountNotPostableError,
    AlreadyPostedError,
    EntryNotFoundError,
    InvalidStateError,
    LedgerKernelError,
    UnbalancedEntryError,
    ValidationError,
)
from ledger_kernel.logging_config import LogContext, get_logger
from ledger_kernel.models.account import Account
from ledger_kernel.models.journal import EntryType, JournalEntry, JournalEntryStatus, JournalLine
from ledger_kernel.services.account_registry import AccountRegistry
from ledger_kernel.services.auditor_service import AuditAction, AuditorService
from ledger_kernel.services.base import BaseService
from ledger_kernel.services.entry_numbering_service import EntryNumberingService
from ledger_kernel.services.ledger_materializer import LedgerMaterializer
from ledger_kernel.services.period_service import PeriodService

logger = get_logger("services.journal_entry")


def _status(entry: JournalEntry) -> str:
    return JournalEntryStatus(entry.status).value


class JournalEntryService(BaseService[JournalEntry]):
    """
    Write side of journal entries.

    Contract:
        Flushes within the caller's transaction and never commits.  Every
        public mutation validates fully before touching the session.

    Usage:
        service = JournalEntryService(session, clock=clock)
        entry = service.create_draft(
            organization_id=org_id,
            entry_date=date(2024, 1, 15),
            lines=[
                LineInput(account_id=cash.id, debit=Decimal("5000")),
                LineInput(account_id=revenue.id, credit=Decimal("5000")),
            ],
            actor_id=user_id,
        )
        service.post(entry.id, actor_id=user_id)
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        policy: LedgerPolicy | None = None,
        auditor: AuditorService | None = None,
    ):
        super().__init__(session)
        self._clock = clock or SystemClock()
        self._policy = policy or LedgerPolicy()
        self._auditor = auditor or AuditorService(clock=self._clock)
        self._periods = PeriodService(session, self._clock)
        self._accounts = AccountRegistry(session)
        self._numbering = EntryNumberingService(session, self._policy)
        self._materializer = LedgerMaterializer(session, self._auditor)

    @property
    def policy(self) -> LedgerPolicy:
        return self._policy

    @property
    def periods(self) -> PeriodService:
        return self._periods

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    def get_entry(self, entry_id: UUID) -> JournalEntry:
        entry = self.session.get(JournalEntry, entry_id)
        if entry is None:
            raise EntryNotFoundError(str(entry_id))
        return entry

    def get_entry_for_update(self, entry_id: UUID) -> JournalEntry:
        """Load an entry under a row lock, refreshing any cached state."""
        entry = self.session.execute(
            select(JournalEntry)
            .where(JournalEntry.id == entry_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if entry is None:
            raise EntryNotFoundError(str(entry_id))
        return entry

    # ------------------------------------------------------------------
    # Line preparation and balance
    # ------------------------------------------------------------------

    def build_lines(
        self,
        organization_id: UUID,
        lines: Sequence[LineInput],
        actor_id: UUID,
        entry_id: UUID | None = None,
    ) -> list[JournalLine]:
        """
        Validate caller lines and turn them into unattached JournalLine rows.

        Base amounts are ``round(amount * exchange_rate)`` with the policy
        precision.  The returned lines are balanced in base currency.
        """
        if len(lines) < 2:
            raise ValidationError(
                f"A journal entry needs at least 2 lines, got {len(lines)}",
                field="lines",
                entry_id=str(entry_id) if entry_id else None,
            )

        accounts = self._accounts.get_accounts(
            organization_id, [line.account_id for line in lines]
        )

        built: list[JournalLine] = []
        for line_no, line_input in enumerate(lines, start=1):
            debit = coerce_amount(line_input.debit, "debit")
            credit = coerce_amount(line_input.credit, "credit")
            rate = coerce_amount(line_input.exchange_rate, "exchange_rate")

            if debit < 0 or credit < 0:
                raise ValidationError(
                    f"Line {line_no}: amounts cannot be negative",
                    field="amount",
                    line_no=line_no,
                )
            if (debit > 0) == (credit > 0):
                raise ValidationError(
                    f"Line {line_no}: exactly one of debit or credit must be positive",
                    field="amount",
                    line_no=line_no,
                )
            if rate <= 0:
                raise ValidationError(
                    f"Line {line_no}: exchange rate must be positive",
                    field="exchange_rate",
                    line_no=line_no,
                )
            currency = validate_currency(line_input.currency or self._policy.base_currency)

            account = accounts.get(line_input.account_id)
            if account is None:
                raise AccountNotFoundError(str(line_input.account_id), line_no=line_no)
            self._check_account(account, line_no)

            built.append(
                JournalLine(
                    line_no=line_no,
                    account_id=account.id,
                    description=line_input.description,
                    debit_amount=debit,
                    credit_amount=credit,
                    currency=currency,
                    exchange_rate=rate,
                    base_debit=self._policy.round(debit * rate),
                    base_credit=self._policy.round(credit * rate),
                    created_by_id=actor_id,
                )
            )

        self.balance_lines(built, entry_id)
        return built

    @staticmethod
    def _check_account(account: Account, line_no: int | None) -> None:
        if not account.is_active:
            raise AccountInactiveError(str(account.id), account.code, line_no=line_no)
        if not account.allows_posting:
            raise AccountNotPostableError(str(account.id), account.code, line_no=line_no)

    def balance_lines(self, lines: Sequence[JournalLine], entry_id: UUID | None = None) -> None:
        """
        Check debit/credit equality and absorb base rounding.

        Raises:
            UnbalancedEntryError: Totals differ by more than the tolerance.
        """
        entry_ref = str(entry_id) if entry_id else None

        currencies = {line.currency for line in lines}
        if len(currencies) == 1:
            debits = sum((line.debit_amount for line in lines), ZERO)
            credits = sum((line.credit_amount for line in lines), ZERO)
            if not self._policy.within_tolerance(debits, credits):
                raise UnbalancedEntryError(
                    str(debits), str(credits), next(iter(currencies)), entry_id=entry_ref
                )

        base_debits = sum((line.base_debit for line in lines), ZERO)
        base_credits = sum((line.base_credit for line in lines), ZERO)
        difference = base_debits - base_credits
        if difference == 0:
            return
        if not self._policy.within_tolerance(base_debits, base_credits):
            raise UnbalancedEntryError(
                str(base_debits), str(base_credits), self._policy.base_currency, entry_id=entry_ref
            )

        if difference > 0:
            target = max((l for l in lines if l.base_credit > 0), key=lambda l: l.base_credit)
            target.base_credit += difference
        else:
            target = max((l for l in lines if l.base_debit > 0), key=lambda l: l.base_debit)
            target.base_debit += -difference

        logger.info(
            "base_rounding_absorbed",
            extra={"entry_id": entry_ref, "line_no": target.line_no, "difference": str(difference)},
        )

    def _revalidate(self, entry: JournalEntry) -> None:
        """Post-time checks on an existing entry's stored lines."""
        if len(entry.lines) < 2:
            raise ValidationError(
                f"A journal entry needs at least 2 lines, got {len(entry.lines)}",
                field="lines",
                entry_id=str(entry.id),
            )
        accounts = self._accounts.get_accounts(
            entry.organization_id, [line.account_id for line in entry.lines]
        )
        for line in entry.lines:
            account = accounts.get(line.account_id)
            if account is None:
                raise AccountNotFoundError(str(line.account_id), line_no=line.line_no)
            self._check_account(account, line.line_no)

        base_debits = entry.total_base_debit
        base_credits = entry.total_base_credit
        if base_debits != base_credits:
            raise UnbalancedEntryError(
                str(base_debits), str(base_credits), self._policy.base_currency, entry_id=str(entry.id)
            )

    # ------------------------------------------------------------------
    # Draft lifecycle
    # ------------------------------------------------------------------

    def create_draft(
        self,
        organization_id: UUID,
        entry_date: date,
        lines: Sequence[LineInput],
        actor_id: UUID,
        entry_type: EntryType = EntryType.STANDARD,
        description: str | None = None,
        reference: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> JournalEntry:
        """
        Persist a balanced DRAFT entry.  No number is assigned yet.

        Raises:
            ValidationError: Bad lines, inactive/unpostable/unknown account,
                imbalance, or no open period covering ``entry_date``.
        """
        period = self._periods.require_open_period(organization_id, entry_date)
        built = self.build_lines(organization_id, lines, actor_id)

        entry = JournalEntry(
            organization_id=organization_id,
            period_id=period.id,
            entry_date=entry_date,
            entry_type=EntryType(entry_type),
            status=JournalEntryStatus.DRAFT,
            description=description,
            reference=reference,
            entry_metadata=metadata,
            created_by_id=actor_id,
        )
        entry.lines = built
        self.session.add(entry)
        self.session.flush()

        logger.info(
            "draft_created",
            extra={
                "entry_id": str(entry.id),
                "organization_id": str(organization_id),
                "entry_date": str(entry_date),
                "line_count": len(built),
            },
        )
        self._auditor.record(
            AuditAction.ENTRY_CREATED,
            "JournalEntry",
            entry.id,
            organization_id,
            actor_id,
            {"entry_date": str(entry_date), "entry_type": EntryType(entry_type).value},
        )
        return entry

    def _require_draft(self, entry: JournalEntry, operation: str) -> None:
        if not entry.is_draft:
            raise InvalidStateError(
                str(entry.id),
                _status(entry),
                operation,
                message=f"Cannot {operation} entry {entry.entry_number or entry.id}: "
                f"only draft entries can be changed (status is {_status(entry)})",
            )

    def update_draft(
        self,
        entry_id: UUID,
        actor_id: UUID,
        lines: Sequence[LineInput] | None = None,
        entry_date: date | None = None,
        description: str | None = None,
        reference: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> JournalEntry:
        """
        Change a DRAFT entry.  Lines, when given, replace the old set wholesale.

        Raises:
            InvalidStateError: The entry is posted or reversed.
            ValidationError: The new content does not validate.
        """
        entry = self.get_entry_for_update(entry_id)
        self._require_draft(entry, "update")

        if entry_date is not None and entry_date != entry.entry_date:
            period = self._periods.require_open_period(entry.organization_id, entry_date)
            entry.entry_date = entry_date
            entry.period_id = period.id

        if lines is not None:
            built = self.build_lines(entry.organization_id, lines, actor_id, entry_id=entry.id)
            # Old lines go first so (entry, line_no) stays unique
            entry.lines.clear()
            self.session.flush()
            entry.lines.extend(built)

        if description is not None:
            entry.description = description
        if reference is not None:
            entry.reference = reference
        if metadata is not None:
            entry.entry_metadata = metadata
        entry.updated_by_id = actor_id
        self.session.flush()

        logger.info(
            "draft_updated",
            extra={"entry_id": str(entry.id), "lines_replaced": lines is not None},
        )
        self._auditor.record(
            AuditAction.ENTRY_UPDATED,
            "JournalEntry",
            entry.id,
            entry.organization_id,
            actor_id,
            {"lines_replaced": lines is not None},
        )
        return entry

    def delete(self, entry_id: UUID, actor_id: UUID) -> None:
        """
        Delete a DRAFT entry and its lines.

        Raises:
            InvalidStateError: The entry is posted or reversed.
        """
        entry = self.get_entry_for_update(entry_id)
        self._require_draft(entry, "delete")

        organization_id = entry.organization_id
        self.session.delete(entry)
        self.session.flush()

        logger.info("draft_deleted", extra={"entry_id": str(entry_id)})
        self._auditor.record(
            AuditAction.ENTRY_DELETED,
            "JournalEntry",
            entry_id,
            organization_id,
            actor_id,
        )

    # ------------------------------------------------------------------
    # Posting
    # ------------------------------------------------------------------

    def post(self, entry_id: UUID, actor_id: UUID) -> JournalEntry:
        """
        Post a DRAFT entry.

        Postconditions:
            - status is POSTED, entry_number and posted_at are set.
            - One LedgerPosting per line exists and balances are updated.

        Raises:
            AlreadyPostedError: The entry is already posted.
            InvalidStateError: The entry is reversed.
            PeriodClosedError / PeriodNotFoundError: No open period covers
                the entry date now.
            UnbalancedEntryError, AccountError: Lines no longer validate.
        """
        entry = self.get_entry_for_update(entry_id)
        if entry.is_posted:
            raise AlreadyPostedError(str(entry.id), entry.entry_number)
        if not entry.is_draft:
            raise InvalidStateError(str(entry.id), _status(entry), "post")

        with LogContext.bind(entry_id=str(entry.id), organization_id=str(entry.organization_id)):
            period = self._periods.require_open_period(entry.organization_id, entry.entry_date)
            self._revalidate(entry)

            with self.session.begin_nested():
                self._finalize_posting(entry, period.id, actor_id)

            logger.info(
                "entry_posted",
                extra={
                    "entry_number": entry.entry_number,
                    "entry_date": str(entry.entry_date),
                    "total_base_debit": str(entry.total_base_debit),
                },
            )
        self._auditor.record(
            AuditAction.ENTRY_POSTED,
            "JournalEntry",
            entry.id,
            entry.organization_id,
            actor_id,
            {"entry_number": entry.entry_number},
        )
        return entry

    def _finalize_posting(self, entry: JournalEntry, period_id: UUID, actor_id: UUID) -> None:
        """Allocate the number, flip the status and materialize.  Caller holds a savepoint."""
        entry.entry_number = self._numbering.allocate(
            entry.organization_id, entry.entry_type, entry.entry_date
        )
        entry.period_id = period_id
        entry.status = JournalEntryStatus.POSTED
        entry.posted_at = self._clock.now()
        entry.posted_by_id = actor_id
        entry.updated_by_id = actor_id
        self.session.flush()

        self._materializer.materialize(entry, actor_id)

    def post_generated_entry(self, entry: JournalEntry, actor_id: UUID) -> JournalEntry:
        """
        Persist and post an engine-built entry (reversal mirror, correction).

        The entry's lines already carry their base amounts; they are checked,
        not recomputed.  The caller holds the savepoint that makes this
        atomic with its own bookkeeping.
        """
        period = self._periods.require_open_period(entry.organization_id, entry.entry_date)
        for line in entry.lines:
            account = self._accounts.get_account(entry.organization_id, line.account_id)
            self._check_account(account, line.line_no)
        self.balance_lines(entry.lines, entry.id)

        entry.status = JournalEntryStatus.DRAFT
        entry.period_id = period.id
        self.session.add(entry)
        self.session.flush()

        self._finalize_posting(entry, period.id, actor_id)
        return entry

    # ------------------------------------------------------------------
    # Supplementary operations
    # ------------------------------------------------------------------

    def validate_entry(self, entry_id: UUID) -> EntryValidationResult:
        """
        Non-raising preflight of an entry.

        Errors are what ``post`` would reject; warnings flag lines that would
        leave their account with an abnormal balance.
        """
        from ledger_kernel.selectors.balance_selector import BalanceSelector

        entry = self.get_entry(entry_id)
        errors: list[str] = []
        warnings: list[str] = []

        if not entry.is_draft:
            errors.append(f"Entry status is {_status(entry)}; only drafts can be posted")

        try:
            self._periods.require_open_period(entry.organization_id, entry.entry_date)
        except LedgerKernelError as exc:
            errors.append(str(exc))

        try:
            self._revalidate(entry)
        except LedgerKernelError as exc:
            errors.append(str(exc))

        if len({line.currency for line in entry.lines}) == 1 and not self._policy.within_tolerance(
            entry.total_debit, entry.total_credit
        ):
            errors.append(
                f"Transaction debits {entry.total_debit} != credits {entry.total_credit}"
            )

        balances = BalanceSelector(self.session, self._policy)
        effects: dict[UUID, Decimal] = {}
        for line in entry.lines:
            effects[line.account_id] = effects.get(line.account_id, ZERO) + (
                line.base_debit - line.base_credit
            )
        accounts = self._accounts.get_accounts(entry.organization_id, effects)
        for account_id, net_effect in effects.items():
            account = accounts.get(account_id)
            if account is None:
                continue
            current = balances.account_balance(account_id, entry.entry_date)
            sign = Decimal("-1") if account.is_credit_normal else Decimal("1")
            projected = current.balance + sign * net_effect
            if projected < 0:
                warnings.append(
                    f"Account {account.code} would have an abnormal balance of {projected}"
                )

        return EntryValidationResult(
            entry_id=entry.id,
            errors=tuple(errors),
            warnings=tuple(warnings),
        )

    def copy_entry(
        self,
        entry_id: UUID,
        entry_date: date,
        actor_id: UUID,
        description: str | None = None,
    ) -> JournalEntry:
        """Create a new DRAFT with the same lines as an existing entry."""
        source = self.get_entry(entry_id)
        lines = [
            LineInput(
                account_id=line.account_id,
                debit=line.debit_amount,
                credit=line.credit_amount,
                currency=line.currency,
                exchange_rate=line.exchange_rate,
                description=line.description,
            )
            for line in source.lines
        ]
        entry_type = source.entry_type
        if entry_type == EntryType.REVERSING:
            entry_type = EntryType.STANDARD

        copy = self.create_draft(
            organization_id=source.organization_id,
            entry_date=entry_date,
            lines=lines,
            actor_id=actor_id,
            entry_type=EntryType(entry_type),
            description=description if description is not None else source.description,
            reference=source.reference,
            metadata={"copied_from": str(source.id)},
        )
        logger.info(
            "entry_copied",
            extra={"source_entry_id": str(source.id), "entry_id": str(copy.id)},
        )
        return copy

    def bulk_post(self, entry_ids: Sequence[UUID], actor_id: UUID) -> BulkPostResult:
        """
        Post several entries independently.

        Each entry runs in its own SAVEPOINT; a failure is recorded in the
        result and does not affect the others.
        """
        results: list[PostResult] = []
        for entry_id in entry_ids:
            try:
                with self.session.begin_nested():
                    entry = self.post(entry_id, actor_id)
                results.append(
                    PostResult(entry_id=entry_id, success=True, entry_number=entry.entry_number)
                )
            except LedgerKernelError as exc:
                logger.warning(
                    "bulk_post_item_failed",
                    extra={"entry_id": str(entry_id), "error_code": exc.code},
                )
                results.append(
                    PostResult(
                        entry_id=entry_id,
                        success=False,
                        error_code=exc.code,
                        error_message=str(exc),
                    )
                )

        result = BulkPostResult(results=tuple(results))
        logger.info(
            "bulk_post_completed",
            extra={"posted": result.posted, "failed": result.failed},
        )
        return result

    def bulk_delete(self, entry_ids: Sequence[UUID], actor_id: UUID) -> BulkDeleteResult:
        """
        Delete several DRAFT entries independently.

        Unknown, posted and reversed entries are skipped with a reason.  Each
        deletion runs in its own SAVEPOINT.
        """
        results: list[DeleteResult] = []
        for entry_id in entry_ids:
            entry_number = None
            try:
                with self.session.begin_nested():
                    entry_number = self.get_entry_for_update(entry_id).entry_number
                    self.delete(entry_id, actor_id)
            except (EntryNotFoundError, InvalidStateError) as exc:
                logger.info(
                    "bulk_delete_item_skipped",
                    extra={"entry_id": str(entry_id), "error_code": exc.code},
                )
                results.append(
                    DeleteResult(entry_id=entry_id, deleted=False, entry_number=entry_number, reason=str(exc))
                )
                continue
            results.append(DeleteResult(entry_id=entry_id, deleted=True, entry_number=entry_number))

        result = BulkDeleteResult(results=tuple(results))
        logger.info(
            "bulk_delete_completed",
            extra={"deleted": result.deleted, "skipped": result.skipped},
        )
        return result

    def preview_entry_number(
        self,
        organization_id: UUID,
        entry_type: EntryType,
        entry_date: date,
    ) -> str:
        """The number the next posting of this kind and date would receive."""
        return self._numbering.preview(organization_id, EntryType(entry_type), entry_date)
