"""
LedgerMaterializer -- turns a posted entry into ledger facts.

Responsibility:
    For each journal line, in line order, append one immutable
    LedgerPosting and apply the line's base amounts to the account's
    AccountPeriodBalance row for the entry's period.  Rebuild balance rows
    from the postings on demand (recalculate_balance,
    batch_recalculate_balances).

Architecture position:
    Kernel > Services.  The only writer of ledger_postings and
    account_period_balances.  Called by JournalEntryService inside the
    posting savepoint, so postings, balance increments and the status flip
    commit or vanish together.

Invariants enforced:
    - One posting per journal line (unique journal_line_id).
    - Balance movements are applied as SQL increments
      (``debit_movements = debit_movements + :x``); a concurrent posting to
      the same row cannot be lost to a read-modify-write race.
    - closing = opening + sign * (debit_movements - credit_movements),
      sign = -1 for credit-normal accounts.
    - A new balance row opens at the closing balance of the latest earlier
      period row for the account (0 if none).  Posting into an earlier
      period rolls the delta into every later row, so
      opening(N) == closing(N-1) keeps holding.
    - Recalculation derives a row only from LedgerPosting and the prior
      row's closing balance; postings are never rewritten.

Failure modes:
    - ValidationError if the entry has no resolved period, or on
      recalculation of an unknown period.
    - IntegrityError on duplicate materialization of a line (propagates;
      the caller's savepoint unwinds the whole posting).
"""

from collections import OrderedDict
from collections.abc import Sequence
from decimal import Decimal
from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ledger_kernel.db.types import ZERO, sum_amount
from ledger_kernel.domain.dtos import (
    BalanceRecalculation,
    BatchRecalculationResult,
    PeriodBalance,
    RecalculationFailure,
)
from ledger_kernel.exceptions import AccountNotFoundError, LedgerKernelError, ValidationError
from ledger_kernel.logging_config import get_logger
from ledger_kernel.models.account import Account
from ledger_kernel.models.fiscal_period import FiscalPeriod
from ledger_kernel.models.journal import JournalEntry
from ledger_kernel.models.ledger import AccountPeriodBalance, LedgerPosting
from ledger_kernel.services.auditor_service import AuditAction, AuditorService
from ledger_kernel.services.base import BaseService

logger = get_logger("services.ledger_materializer")


class LedgerMaterializer(BaseService[LedgerPosting]):
    """
    Writes ledger postings and maintains period balances.

    Non-goals:
        - Does not validate balance or period status; JournalEntryService
          does that before calling materialize().
    """

    def __init__(self, session: Session, auditor: AuditorService | None = None):
        super().__init__(session)
        self._auditor = auditor or AuditorService()

    def materialize(self, entry: JournalEntry, actor_id: UUID) -> list[LedgerPosting]:
        """
        Materialize every line of a posted entry.

        Preconditions:
            - entry.period_id and entry.posted_at are set.
        Postconditions:
            - len(entry.lines) postings exist for the entry.
            - Each touched balance row reflects the entry's movements.
        """
        if entry.period_id is None:
            raise ValidationError(
                "Entry has no fiscal period; cannot materialize",
                entry_id=str(entry.id),
            )
        period = self.session.get(FiscalPeriod, entry.period_id)

        postings: list[LedgerPosting] = []
        movements: "OrderedDict[UUID, list[Decimal]]" = OrderedDict()

        for line in entry.lines:
            posting = LedgerPosting(
                organization_id=entry.organization_id,
                journal_entry_id=entry.id,
                journal_line_id=line.id,
                line_no=line.line_no,
                account_id=line.account_id,
                period_id=entry.period_id,
                posting_date=entry.entry_date,
                base_debit=line.base_debit,
                base_credit=line.base_credit,
                posted_at=entry.posted_at,
                created_by_id=actor_id,
            )
            self.session.add(posting)
            postings.append(posting)

            totals = movements.setdefault(line.account_id, [ZERO, ZERO])
            totals[0] += line.base_debit
            totals[1] += line.base_credit

        self.session.flush()

        # Stable lock order across concurrent postings
        for account_id in sorted(movements, key=str):
            debit, credit = movements[account_id]
            self._apply_movement(entry.organization_id, account_id, period, debit, credit, actor_id)

        logger.info(
            "ledger_materialized",
            extra={
                "entry_id": str(entry.id),
                "entry_number": entry.entry_number,
                "posting_count": len(postings),
                "account_count": len(movements),
            },
        )
        return postings

    # ------------------------------------------------------------------
    # Balance rows
    # ------------------------------------------------------------------

    def _apply_movement(
        self,
        organization_id: UUID,
        account_id: UUID,
        period: FiscalPeriod,
        debit: Decimal,
        credit: Decimal,
        actor_id: UUID,
    ) -> None:
        account = self.session.get(Account, account_id)
        sign = Decimal("-1") if account.is_credit_normal else Decimal("1")
        delta = sign * (debit - credit)

        row_id = self._ensure_balance_row(organization_id, account_id, period, actor_id)

        self.session.execute(
            update(AccountPeriodBalance)
            .where(AccountPeriodBalance.id == row_id)
            .values(
                debit_movements=AccountPeriodBalance.debit_movements + debit,
                credit_movements=AccountPeriodBalance.credit_movements + credit,
                closing_balance=AccountPeriodBalance.closing_balance + delta,
                updated_by_id=actor_id,
            )
            .execution_options(synchronize_session="fetch")
        )

        if delta != ZERO:
            rolled = self.session.execute(
                update(AccountPeriodBalance)
                .where(
                    AccountPeriodBalance.account_id == account_id,
                    AccountPeriodBalance.period_start > period.start_date,
                )
                .values(
                    opening_balance=AccountPeriodBalance.opening_balance + delta,
                    closing_balance=AccountPeriodBalance.closing_balance + delta,
                    updated_by_id=actor_id,
                )
                .execution_options(synchronize_session="fetch")
            )
            if rolled.rowcount:
                logger.info(
                    "balance_rolled_forward",
                    extra={
                        "account_id": str(account_id),
                        "period_code": period.period_code,
                        "delta": str(delta),
                        "rows": rolled.rowcount,
                    },
                )

    def _find_balance_row_id(self, account_id: UUID, period_id: UUID) -> UUID | None:
        return self.session.execute(
            select(AccountPeriodBalance.id).where(
                AccountPeriodBalance.account_id == account_id,
                AccountPeriodBalance.period_id == period_id,
            )
        ).scalar_one_or_none()

    def _opening_for(self, account_id: UUID, period: FiscalPeriod) -> Decimal:
        """Closing balance of the latest earlier period row, 0 when none."""
        previous = self.session.execute(
            select(AccountPeriodBalance.closing_balance)
            .where(
                AccountPeriodBalance.account_id == account_id,
                AccountPeriodBalance.period_start < period.start_date,
            )
            .order_by(AccountPeriodBalance.period_start.desc())
            .limit(1)
        ).scalar_one_or_none()
        return previous if previous is not None else ZERO

    def _ensure_balance_row(
        self,
        organization_id: UUID,
        account_id: UUID,
        period: FiscalPeriod,
        actor_id: UUID,
    ) -> UUID:
        row_id = self._find_balance_row_id(account_id, period.id)
        if row_id is not None:
            return row_id

        opening = self._opening_for(account_id, period)
        savepoint = self.session.begin_nested()
        try:
            row = AccountPeriodBalance(
                organization_id=organization_id,
                account_id=account_id,
                period_id=period.id,
                period_start=period.start_date,
                opening_balance=opening,
                debit_movements=ZERO,
                credit_movements=ZERO,
                closing_balance=opening,
                created_by_id=actor_id,
            )
            self.session.add(row)
            self.session.flush()
            savepoint.commit()
        except IntegrityError:
            # Created concurrently by another posting
            savepoint.rollback()
            row_id = self._find_balance_row_id(account_id, period.id)
            if row_id is None:
                raise
            return row_id

        logger.info(
            "balance_row_created",
            extra={
                "account_id": str(account_id),
                "period_code": period.period_code,
                "opening_balance": str(opening),
            },
        )
        return row.id

    # ------------------------------------------------------------------
    # Recalculation
    # ------------------------------------------------------------------

    def _require_period(self, period_id: UUID) -> FiscalPeriod:
        period = self.session.get(FiscalPeriod, period_id)
        if period is None:
            raise ValidationError(f"Unknown fiscal period: {period_id}", field="period_id")
        return period

    def recalculate_balance(self, account_id: UUID, period_id: UUID, actor_id: UUID) -> BalanceRecalculation:
        """
        Rebuild one balance row from the postings of its period.

        The opening balance is taken from the latest earlier row, exactly as
        when the row is first created; movements are summed from
        LedgerPosting.  Later rows are not touched, so a chain is repaired
        by recalculating its periods oldest first.  No row is created for an
        account without postings in the period.

        Raises:
            ValidationError: Unknown period.
            AccountNotFoundError: Unknown account, or one of another
                organization.
        """
        period = self._require_period(period_id)
        account = self.session.get(Account, account_id)
        if account is None or account.organization_id != period.organization_id:
            raise AccountNotFoundError(str(account_id))

        totals = self.session.execute(
            select(
                func.sum(LedgerPosting.base_debit).label("total_debit"),
                func.sum(LedgerPosting.base_credit).label("total_credit"),
                func.count(LedgerPosting.id).label("posting_count"),
            ).where(
                LedgerPosting.account_id == account_id,
                LedgerPosting.period_id == period.id,
            )
        ).one()
        debit = sum_amount(totals.total_debit)
        credit = sum_amount(totals.total_credit)
        opening = self._opening_for(account_id, period)
        sign = Decimal("-1") if account.is_credit_normal else Decimal("1")
        balance = PeriodBalance(
            account_id=account_id,
            period_id=period.id,
            opening_balance=opening,
            debit_movements=debit,
            credit_movements=credit,
            closing_balance=opening + sign * (debit - credit),
        )

        row = self.session.execute(
            select(AccountPeriodBalance)
            .where(
                AccountPeriodBalance.account_id == account_id,
                AccountPeriodBalance.period_id == period.id,
            )
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if row is None and totals.posting_count == 0:
            return BalanceRecalculation(balance=balance, previous_closing=None, changed=False)

        if row is None:
            previous_closing = None
            row_id = self._ensure_balance_row(period.organization_id, account_id, period, actor_id)
            changed = True
        else:
            previous_closing = row.closing_balance
            row_id = row.id
            changed = (
                row.opening_balance,
                row.debit_movements,
                row.credit_movements,
                row.closing_balance,
            ) != (opening, debit, credit, balance.closing_balance)

        if changed:
            self.session.execute(
                update(AccountPeriodBalance)
                .where(AccountPeriodBalance.id == row_id)
                .values(
                    opening_balance=opening,
                    debit_movements=debit,
                    credit_movements=credit,
                    closing_balance=balance.closing_balance,
                    updated_by_id=actor_id,
                )
                .execution_options(synchronize_session="fetch")
            )

        log = logger.warning if changed and previous_closing is not None else logger.info
        log(
            "balance_recalculated",
            extra={
                "account_id": str(account_id),
                "period_code": period.period_code,
                "previous_closing": str(previous_closing) if previous_closing is not None else None,
                "closing_balance": str(balance.closing_balance),
                "changed": changed,
            },
        )
        self._auditor.record(
            AuditAction.BALANCE_RECALCULATED,
            "AccountPeriodBalance",
            row_id,
            period.organization_id,
            actor_id,
            {
                "account_id": str(account_id),
                "period_id": str(period.id),
                "previous_closing": str(previous_closing) if previous_closing is not None else None,
                "closing_balance": str(balance.closing_balance),
            },
        )
        return BalanceRecalculation(balance=balance, previous_closing=previous_closing, changed=changed)

    def batch_recalculate_balances(
        self,
        organization_id: UUID,
        period_id: UUID,
        actor_id: UUID,
        account_ids: Sequence[UUID] | None = None,
    ) -> BatchRecalculationResult:
        """
        Recalculate many accounts of one period.

        Without ``account_ids``, every account with a balance row or a
        posting in the period is recalculated, inactive ones included.  Each
        account runs in its own SAVEPOINT; a failure is recorded in the
        result and does not stop the others.

        Raises:
            ValidationError: Unknown period, or one of another organization.
        """
        period = self._require_period(period_id)
        if period.organization_id != organization_id:
            raise ValidationError(
                f"Fiscal period {period.period_code} belongs to another organization",
                field="period_id",
            )

        if account_ids is None:
            touched = select(LedgerPosting.account_id).where(LedgerPosting.period_id == period.id).union(
                select(AccountPeriodBalance.account_id).where(AccountPeriodBalance.period_id == period.id)
            )
            account_ids = sorted(self.session.execute(touched).scalars(), key=str)

        recalculated: list[BalanceRecalculation] = []
        errors: list[RecalculationFailure] = []
        for account_id in account_ids:
            try:
                with self.session.begin_nested():
                    recalculated.append(self.recalculate_balance(account_id, period.id, actor_id))
            except LedgerKernelError as exc:
                logger.warning(
                    "balance_recalculation_failed",
                    extra={"account_id": str(account_id), "error_code": exc.code},
                )
                errors.append(
                    RecalculationFailure(account_id=account_id, error_code=exc.code, error_message=str(exc))
                )

        result = BatchRecalculationResult(
            period_id=period.id,
            recalculated=tuple(recalculated),
            errors=tuple(errors),
        )
        logger.info(
            "balances_batch_recalculated",
            extra={
                "period_code": period.period_code,
                "accounts_processed": result.accounts_processed,
                "corrected": result.corrected,
                "failed": len(errors),
            },
        )
        self._auditor.record(
            AuditAction.BALANCES_BATCH_RECALCULATED,
            "FiscalPeriod",
            period.id,
            organization_id,
            actor_id,
            {
                "accounts_processed": result.accounts_processed,
                "corrected": result.corrected,
                "failed": len(errors),
            },
        )
        return result
