"""
Module: ledger_kernel.selectors.balance_selector
Responsibility: Point-in-time account balances, trial balances (plain,
    grouped, comparative), the general-ledger view of one account with a
    running balance, and the ledger-wide debit/credit check, all derived
    from LedgerPosting rows.  Also exposes the cached per-period roll-up.
Architecture position: Kernel > Selectors.  Read-only.

Invariants enforced:
    - A balance is signed from the account's normal side and reported as a
      (debit, credit) pair with at most one side non-zero.
    - The ledger-wide sum of base debits equals the sum of base credits.
      A mismatch raises ImbalanceError and is logged at ERROR; it is never
      corrected here.
    - Trial balance totals count account rows only; header rows are
      presentation.

Failure modes:
    - AccountNotFoundError for an unknown account.
    - ValidationError for an unknown period in the account ledger.
    - AccountHierarchyCycleError when parent grouping meets a cycle.
    - ImbalanceError when the ledger itself does not balance.
"""

from collections.abc import Iterable, Sequence
from dataclasses import replace
from datetime import date, timedelta
from decimal import Decimal
from uuid import UUID

from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session

from ledger_kernel.db.types import ZERO, sum_amount
from ledger_kernel.domain.dtos import (
    AccountBalance,
    AccountLedger,
    ComparativeAmount,
    ComparativeRow,
    ComparativeTrialBalance,
    GroupBy,
    LedgerCheck,
    LedgerLine,
    PeriodBalance,
    TrialBalance,
    TrialBalanceFilter,
    TrialBalanceRow,
)
from ledger_kernel.domain.ledger_policy import LedgerPolicy
from ledger_kernel.exceptions import (
    AccountHierarchyCycleError,
    AccountNotFoundError,
    ImbalanceError,
    ValidationError,
)
from ledger_kernel.logging_config import get_logger
from ledger_kernel.models.account import Account, NormalBalance
from ledger_kernel.models.fiscal_period import FiscalPeriod
from ledger_kernel.models.journal import EntryType, JournalEntry, JournalLine
from ledger_kernel.models.ledger import AccountPeriodBalance, LedgerPosting
from ledger_kernel.selectors.base import BaseSelector

logger = get_logger("selectors.balance")

HUNDRED = Decimal("100")
PERCENT_QUANTUM = Decimal("0.01")


def signed_pair(account: Account, total_debit: Decimal, total_credit: Decimal) -> tuple[Decimal, Decimal, Decimal]:
    """
    Return (balance, debit, credit) for an account's raw totals.

    balance is positive on the normal side.  A positive balance lands on
    the normal side of the pair, a negative one on the opposite side.
    """
    if account.is_credit_normal:
        balance = total_credit - total_debit
        if balance >= 0:
            return balance, ZERO, balance
        return balance, -balance, ZERO
    balance = total_debit - total_credit
    if balance >= 0:
        return balance, balance, ZERO
    return balance, ZERO, -balance


class BalanceSelector(BaseSelector[LedgerPosting]):
    """
    Balance and trial-balance calculator.

    Usage:
        selector = BalanceSelector(session)
        cash = selector.account_balance(cash_id, date(2024, 1, 31))
        tb = selector.trial_balance(org_id, date(2024, 1, 31), group_by=GroupBy.CLASS)
    """

    def __init__(self, session: Session, policy: LedgerPolicy | None = None):
        super().__init__(session)
        self._policy = policy or LedgerPolicy()

    # ------------------------------------------------------------------
    # Raw sums
    # ------------------------------------------------------------------

    def _totals_by_account(
        self,
        organization_id: UUID,
        as_of_date: date,
        account_ids: Iterable[UUID] | None = None,
    ) -> dict[UUID, tuple[Decimal, Decimal]]:
        query = (
            select(
                LedgerPosting.account_id,
                func.sum(LedgerPosting.base_debit).label("total_debit"),
                func.sum(LedgerPosting.base_credit).label("total_credit"),
            )
            .where(
                LedgerPosting.organization_id == organization_id,
                LedgerPosting.posting_date <= as_of_date,
            )
            .group_by(LedgerPosting.account_id)
        )
        if account_ids is not None:
            query = query.where(LedgerPosting.account_id.in_(list(account_ids)))

        return {
            row.account_id: (sum_amount(row.total_debit), sum_amount(row.total_credit))
            for row in self.session.execute(query)
        }

    # ------------------------------------------------------------------
    # Account balances
    # ------------------------------------------------------------------

    def account_balance(self, account_id: UUID, as_of_date: date) -> AccountBalance:
        """Balance of one account from all postings dated on or before as_of_date."""
        account = self.session.get(Account, account_id)
        if account is None:
            raise AccountNotFoundError(str(account_id))

        totals = self._totals_by_account(account.organization_id, as_of_date, [account_id])
        total_debit, total_credit = totals.get(account_id, (ZERO, ZERO))
        return self._to_balance(account, as_of_date, total_debit, total_credit)

    @staticmethod
    def _to_balance(account: Account, as_of_date: date, total_debit: Decimal, total_credit: Decimal) -> AccountBalance:
        balance, debit, credit = signed_pair(account, total_debit, total_credit)
        return AccountBalance(
            account_id=account.id,
            account_code=account.code,
            as_of_date=as_of_date,
            normal_balance=NormalBalance(account.normal_balance).value,
            total_debit=total_debit,
            total_credit=total_credit,
            balance=balance,
            debit=debit,
            credit=credit,
        )

    def period_balance(self, account_id: UUID, period_id: UUID) -> PeriodBalance | None:
        """The cached roll-up row for (account, period), or None if never posted to."""
        row = self.session.execute(
            select(AccountPeriodBalance).where(
                AccountPeriodBalance.account_id == account_id,
                AccountPeriodBalance.period_id == period_id,
            )
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if row is None:
            return None
        return PeriodBalance(
            account_id=row.account_id,
            period_id=row.period_id,
            opening_balance=row.opening_balance,
            debit_movements=row.debit_movements,
            credit_movements=row.credit_movements,
            closing_balance=row.closing_balance,
        )

    # ------------------------------------------------------------------
    # Account ledger
    # ------------------------------------------------------------------

    def account_ledger(
        self,
        account_id: UUID,
        date_from: date | None = None,
        date_to: date | None = None,
        period_id: UUID | None = None,
        entry_types: Sequence[str] | None = None,
        search: str | None = None,
        limit: int | None = None,
        offset: int = 0,
        descending: bool = False,
    ) -> AccountLedger:
        """
        General-ledger view of one account: its postings in date order, each
        with the balance after it.

        ``period_id`` supplies whichever range bound is not given.  The
        opening balance covers every posting before ``date_from``.  With
        ``entry_types`` or ``search`` the running balance, totals and
        closing balance follow the matching postings only.  ``descending``
        reverses the listing, not the running balance.

        Raises:
            AccountNotFoundError: Unknown account.
            ValidationError: Unknown period.
        """
        account = self.session.get(Account, account_id)
        if account is None:
            raise AccountNotFoundError(str(account_id))
        if period_id is not None:
            period = self.session.get(FiscalPeriod, period_id)
            if period is None:
                raise ValidationError(f"Unknown fiscal period: {period_id}", field="period_id")
            date_from = date_from or period.start_date
            date_to = date_to or period.end_date

        opening = ZERO
        if date_from is not None:
            before = self._totals_by_account(account.organization_id, date_from - timedelta(days=1), [account_id])
            opening = signed_pair(account, *before.get(account_id, (ZERO, ZERO)))[0]

        query = (
            select(
                LedgerPosting.posting_date,
                LedgerPosting.journal_entry_id,
                LedgerPosting.line_no,
                LedgerPosting.base_debit,
                LedgerPosting.base_credit,
                JournalEntry.entry_number,
                JournalEntry.entry_type,
                JournalEntry.reference,
                func.coalesce(JournalLine.description, JournalEntry.description).label("description"),
            )
            .join(JournalEntry, JournalEntry.id == LedgerPosting.journal_entry_id)
            .join(JournalLine, JournalLine.id == LedgerPosting.journal_line_id)
            .where(LedgerPosting.account_id == account_id)
            .order_by(
                LedgerPosting.posting_date,
                LedgerPosting.posted_at,
                JournalEntry.entry_number,
                LedgerPosting.line_no,
            )
        )
        if date_from is not None:
            query = query.where(LedgerPosting.posting_date >= date_from)
        if date_to is not None:
            query = query.where(LedgerPosting.posting_date <= date_to)
        if entry_types:
            query = query.where(JournalEntry.entry_type.in_([EntryType(t).value for t in entry_types]))
        if search:
            pattern = f"%{search}%"
            query = query.where(
                or_(
                    JournalEntry.description.ilike(pattern),
                    JournalEntry.reference.ilike(pattern),
                    JournalEntry.entry_number.ilike(pattern),
                )
            )

        sign = Decimal("-1") if account.is_credit_normal else Decimal("1")
        running = opening
        total_debit = total_credit = ZERO
        lines: list[LedgerLine] = []
        for row in self.session.execute(query):
            total_debit += row.base_debit
            total_credit += row.base_credit
            running += sign * (row.base_debit - row.base_credit)
            lines.append(
                LedgerLine(
                    posting_date=row.posting_date,
                    entry_id=row.journal_entry_id,
                    entry_number=row.entry_number,
                    entry_type=EntryType(row.entry_type).value,
                    line_no=row.line_no,
                    description=row.description,
                    reference=row.reference,
                    debit=row.base_debit,
                    credit=row.base_credit,
                    running_balance=running,
                )
            )

        if descending:
            lines.reverse()
        page = lines[offset:] if limit is None else lines[offset:offset + limit]

        logger.info(
            "account_ledger_generated",
            extra={
                "account_id": str(account_id),
                "date_from": str(date_from) if date_from else None,
                "date_to": str(date_to) if date_to else None,
                "posting_count": len(lines),
            },
        )
        return AccountLedger(
            account_id=account.id,
            account_code=account.code,
            account_name=account.name,
            normal_balance=NormalBalance(account.normal_balance).value,
            date_from=date_from,
            date_to=date_to,
            opening_balance=opening,
            lines=tuple(page),
            total_debit=total_debit,
            total_credit=total_credit,
            closing_balance=running,
            total_count=len(lines),
            limit=limit,
            offset=offset,
        )

    # ------------------------------------------------------------------
    # Ledger check
    # ------------------------------------------------------------------

    def verify_ledger_balanced(
        self,
        organization_id: UUID,
        as_of_date: date,
        raise_on_imbalance: bool = True,
    ) -> LedgerCheck:
        """
        Compare all base debits and credits of the organization up to as_of_date.

        Raises:
            ImbalanceError: The ledger does not balance (when
                ``raise_on_imbalance``).  Logged at ERROR either way.
        """
        row = self.session.execute(
            select(
                func.coalesce(func.sum(LedgerPosting.base_debit), 0).label("total_debit"),
                func.coalesce(func.sum(LedgerPosting.base_credit), 0).label("total_credit"),
            ).where(
                LedgerPosting.organization_id == organization_id,
                LedgerPosting.posting_date <= as_of_date,
            )
        ).one()

        check = LedgerCheck(
            organization_id=organization_id,
            as_of_date=as_of_date,
            total_debit=sum_amount(row.total_debit),
            total_credit=sum_amount(row.total_credit),
        )
        if not check.is_balanced:
            logger.error(
                "ledger_imbalance_detected",
                extra={
                    "organization_id": str(organization_id),
                    "as_of_date": str(as_of_date),
                    "total_debit": str(check.total_debit),
                    "total_credit": str(check.total_credit),
                },
            )
            if raise_on_imbalance:
                raise ImbalanceError(
                    str(organization_id),
                    str(as_of_date),
                    str(check.total_debit),
                    str(check.total_credit),
                )
        return check

    # ------------------------------------------------------------------
    # Trial balance
    # ------------------------------------------------------------------

    def _accounts(self, organization_id: UUID, account_filter: TrialBalanceFilter | None) -> list[Account]:
        query = select(Account).where(Account.organization_id == organization_id)
        if account_filter is not None:
            if account_filter.account_classes is not None:
                query = query.where(Account.account_class.in_(account_filter.account_classes))
            if account_filter.code_from is not None:
                query = query.where(Account.code >= account_filter.code_from)
            if account_filter.code_to is not None:
                query = query.where(Account.code <= account_filter.code_to)
            if account_filter.account_ids is not None:
                query = query.where(Account.id.in_(account_filter.account_ids))
        return list(self.session.execute(query.order_by(Account.code)).scalars())

    def trial_balance_rows(
        self,
        organization_id: UUID,
        as_of_date: date,
        account_filter: TrialBalanceFilter | None = None,
        include_zero_balances: bool = False,
    ) -> list[TrialBalanceRow]:
        """
        Ungrouped account rows, ordered by code.

        Inactive accounts with a zero balance are left out; inactive accounts
        with a balance stay in and are flagged.  Abnormal balances are
        flagged too.
        """
        accounts = self._accounts(organization_id, account_filter)
        totals = self._totals_by_account(organization_id, as_of_date)

        rows: list[TrialBalanceRow] = []
        for account in accounts:
            total_debit, total_credit = totals.get(account.id, (ZERO, ZERO))
            balance, debit, credit = signed_pair(account, total_debit, total_credit)

            warnings: list[str] = []
            if not account.is_active:
                if balance == 0:
                    continue
                warnings.append(
                    f"Inactive account {account.code} carries a balance of {self._policy.round(balance)}"
                )
            elif balance == 0 and not include_zero_balances:
                continue
            if balance < 0:
                side = "credit" if account.is_debit_normal else "debit"
                warnings.append(f"Account {account.code} has an abnormal {side} balance")

            rows.append(
                TrialBalanceRow(
                    account_id=account.id,
                    account_code=account.code,
                    account_name=account.name,
                    debit=debit,
                    credit=credit,
                    account_class=account.account_class,
                    parent_id=account.parent_id,
                    is_warning=bool(warnings),
                    warnings=tuple(warnings),
                )
            )
        return rows

    def trial_balance(
        self,
        organization_id: UUID,
        as_of_date: date,
        account_filter: TrialBalanceFilter | None = None,
        group_by: GroupBy = GroupBy.NONE,
        include_zero_balances: bool = False,
    ) -> TrialBalance:
        """
        Trial balance as of a date.

        The whole ledger is checked first; an unbalanced ledger raises
        ImbalanceError before any report is built.  Filtered reports carry
        their own totals with ``is_balanced`` / ``out_of_balance``.
        """
        self.verify_ledger_balanced(organization_id, as_of_date)

        rows = self.trial_balance_rows(
            organization_id, as_of_date, account_filter, include_zero_balances
        )
        total_debit = sum((row.debit for row in rows), ZERO)
        total_credit = sum((row.credit for row in rows), ZERO)

        group_by = GroupBy(group_by)
        if group_by == GroupBy.CLASS:
            presented = self._group_by_class(rows)
        elif group_by == GroupBy.PARENT:
            presented = self._group_by_parent(organization_id, rows)
        else:
            presented = rows

        warnings = tuple(w for row in rows for w in row.warnings)
        report = TrialBalance(
            organization_id=organization_id,
            as_of_date=as_of_date,
            rows=tuple(presented),
            total_debit=total_debit,
            total_credit=total_credit,
            group_by=group_by,
            warnings=warnings,
        )

        logger.info(
            "trial_balance_generated",
            extra={
                "organization_id": str(organization_id),
                "as_of_date": str(as_of_date),
                "row_count": len(rows),
                "group_by": group_by.value,
                "is_balanced": report.is_balanced,
                "warning_count": len(warnings),
            },
        )
        return report

    def _group_by_class(self, rows: Sequence[TrialBalanceRow]) -> list[TrialBalanceRow]:
        by_class: dict[int, list[TrialBalanceRow]] = {}
        for row in rows:
            by_class.setdefault(row.account_class or 0, []).append(row)

        presented: list[TrialBalanceRow] = []
        for account_class in sorted(by_class):
            members = by_class[account_class]
            presented.append(
                TrialBalanceRow(
                    account_id=None,
                    account_code=str(account_class),
                    account_name=self._policy.class_name(account_class),
                    debit=sum((r.debit for r in members), ZERO),
                    credit=sum((r.credit for r in members), ZERO),
                    account_class=account_class,
                    level=0,
                    is_header=True,
                )
            )
            presented.extend(_with_level(r, 1) for r in members)
        return presented

    def _group_by_parent(self, organization_id: UUID, rows: Sequence[TrialBalanceRow]) -> list[TrialBalanceRow]:
        arena = {
            account.id: account
            for account in self.session.execute(
                select(Account).where(Account.organization_id == organization_id)
            ).scalars()
        }
        children: dict[UUID | None, list[UUID]] = {}
        for account in arena.values():
            parent = account.parent_id if account.parent_id in arena else None
            children.setdefault(parent, []).append(account.id)
        for ids in children.values():
            ids.sort(key=lambda i: arena[i].code)

        check_hierarchy_acyclic(arena)

        row_by_account = {row.account_id: row for row in rows}
        presented: list[TrialBalanceRow] = []

        def subtree_rows(account_id: UUID) -> list[TrialBalanceRow]:
            found = [row_by_account[account_id]] if account_id in row_by_account else []
            for child in children.get(account_id, []):
                found.extend(subtree_rows(child))
            return found

        def emit(account_id: UUID, depth: int) -> None:
            descendants = [r for c in children.get(account_id, []) for r in subtree_rows(c)]
            own = row_by_account.get(account_id)
            if not descendants:
                if own is not None:
                    presented.append(_with_level(own, depth))
                return

            account = arena[account_id]
            members = descendants + ([own] if own is not None else [])
            presented.append(
                TrialBalanceRow(
                    account_id=None,
                    account_code=account.code,
                    account_name=account.name,
                    debit=sum((r.debit for r in members), ZERO),
                    credit=sum((r.credit for r in members), ZERO),
                    account_class=account.account_class,
                    parent_id=account.parent_id,
                    level=depth,
                    is_header=True,
                )
            )
            if own is not None:
                presented.append(_with_level(own, depth + 1))
            for child in children.get(account_id, []):
                emit(child, depth + 1)

        for root in children.get(None, []):
            emit(root, 0)
        return presented

    # ------------------------------------------------------------------
    # Comparative trial balance
    # ------------------------------------------------------------------

    def comparative_trial_balance(
        self,
        organization_id: UUID,
        current_date: date,
        prior_dates: Sequence[date],
        account_filter: TrialBalanceFilter | None = None,
        threshold: Decimal | None = None,
    ) -> ComparativeTrialBalance:
        """
        Net balance (debit - credit) per account at the current date and at
        each prior date, with variance and percent change.

        percent = variance / |prior| * 100, None when prior is exactly zero.
        A comparison is significant when |percent| >= threshold.
        """
        threshold = self._policy.significance_threshold if threshold is None else Decimal(threshold)
        accounts = self._accounts(organization_id, account_filter)

        current_totals = self._totals_by_account(organization_id, current_date)
        prior_totals = [self._totals_by_account(organization_id, d) for d in prior_dates]

        def net(totals: dict, account_id: UUID) -> Decimal:
            debit, credit = totals.get(account_id, (ZERO, ZERO))
            return debit - credit

        rows: list[ComparativeRow] = []
        for account in accounts:
            current = net(current_totals, account.id)
            priors = [net(t, account.id) for t in prior_totals]
            if current == 0 and all(p == 0 for p in priors):
                continue

            comparisons = []
            for prior_date, prior in zip(prior_dates, priors):
                variance = current - prior
                percent = None
                if prior != 0:
                    percent = (variance / abs(prior) * HUNDRED).quantize(PERCENT_QUANTUM)
                comparisons.append(
                    ComparativeAmount(
                        as_of_date=prior_date,
                        net=prior,
                        variance=variance,
                        percent=percent,
                        is_significant=percent is not None and abs(percent) >= threshold,
                    )
                )
            rows.append(
                ComparativeRow(
                    account_id=account.id,
                    account_code=account.code,
                    account_name=account.name,
                    current_net=current,
                    comparisons=tuple(comparisons),
                )
            )

        logger.info(
            "comparative_trial_balance_generated",
            extra={
                "organization_id": str(organization_id),
                "current_date": str(current_date),
                "prior_count": len(prior_dates),
                "row_count": len(rows),
            },
        )
        return ComparativeTrialBalance(
            organization_id=organization_id,
            current_date=current_date,
            prior_dates=tuple(prior_dates),
            threshold=threshold,
            rows=tuple(rows),
        )


def check_hierarchy_acyclic(arena: dict[UUID, Account]) -> None:
    """
    Depth-first walk over parent links.

    Raises:
        AccountHierarchyCycleError: Listing the codes along the cycle.
    """
    done: set[UUID] = set()
    for start in arena:
        path: list[UUID] = []
        on_path: set[UUID] = set()
        node = start
        while node is not None and node in arena and node not in done:
            if node in on_path:
                cycle = path[path.index(node):] + [node]
                raise AccountHierarchyCycleError([arena[i].code for i in cycle])
            path.append(node)
            on_path.add(node)
            node = arena[node].parent_id
        done.update(path)


def _with_level(row: TrialBalanceRow, level: int) -> TrialBalanceRow:
    return replace(row, level=level)
