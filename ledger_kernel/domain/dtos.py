"""
DTOs -- immutable values crossing the service boundary.

Responsibility:
    Inputs (LineInput, EntryQuery, TrialBalanceFilter, Adjustment) and the
    read-side results of the journal queries, balance calculator, reversal
    sweep and working trial balance.  Services convert ORM rows into these before returning, so
    callers never hold live ORM state for reports.

Architecture position:
    Kernel > Domain -- pure, no I/O, no ORM imports.

Invariants enforced:
    - Amounts are Decimal; debit/credit pairs produced by the calculator
      never have both sides non-zero.
"""

from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from ledger_kernel.db.types import ZERO


# ---------------------------------------------------------------------------
# Journal entry input
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class LineInput:
    """
    One caller-supplied journal line.

    Exactly one of debit/credit must be positive.  ``currency`` defaults to
    the policy's base currency; ``exchange_rate`` converts the amount into
    base currency.
    """

    account_id: UUID
    debit: Decimal | int | str = ZERO
    credit: Decimal | int | str = ZERO
    currency: str | None = None
    exchange_rate: Decimal | int | str = Decimal("1")
    description: str | None = None


@dataclass(frozen=True)
class EntryValidationResult:
    """Outcome of a non-raising preflight of a draft entry."""

    entry_id: UUID
    errors: tuple[str, ...] = ()
    warnings: tuple[str, ...] = ()

    @property
    def can_post(self) -> bool:
        return not self.errors


@dataclass(frozen=True)
class PostResult:
    """Per-entry outcome of ``bulk_post``."""

    entry_id: UUID
    success: bool
    entry_number: str | None = None
    error_code: str | None = None
    error_message: str | None = None


@dataclass(frozen=True)
class BulkPostResult:
    results: tuple[PostResult, ...]

    @property
    def posted(self) -> int:
        return sum(1 for r in self.results if r.success)

    @property
    def failed(self) -> int:
        return sum(1 for r in self.results if not r.success)


@dataclass(frozen=True)
class DeleteResult:
    """Per-entry outcome of ``bulk_delete``."""

    entry_id: UUID
    deleted: bool
    entry_number: str | None = None
    reason: str | None = None


@dataclass(frozen=True)
class BulkDeleteResult:
    results: tuple[DeleteResult, ...]

    @property
    def deleted(self) -> int:
        return sum(1 for r in self.results if r.deleted)

    @property
    def skipped(self) -> int:
        return sum(1 for r in self.results if not r.deleted)


# ---------------------------------------------------------------------------
# Journal queries
# ---------------------------------------------------------------------------


class EntryOrder(str, Enum):
    DATE_ASC = "date_asc"
    DATE_DESC = "date_desc"
    NUMBER_ASC = "number_asc"
    NUMBER_DESC = "number_desc"
    AMOUNT_ASC = "amount_asc"
    AMOUNT_DESC = "amount_desc"
    CREATED_ASC = "created_asc"
    CREATED_DESC = "created_desc"


@dataclass(frozen=True)
class EntryQuery:
    """
    Filters for ``JournalSelector.query_entries``.

    ``None`` leaves a filter off.  ``search`` matches description, reference
    and entry number, case-insensitively.  ``account_id`` keeps entries with
    at least one line on that account.
    """

    statuses: tuple[str, ...] | None = None
    entry_types: tuple[str, ...] | None = None
    date_from: date | None = None
    date_to: date | None = None
    period_id: UUID | None = None
    account_id: UUID | None = None
    search: str | None = None
    order_by: EntryOrder = EntryOrder.DATE_DESC
    limit: int = 50
    offset: int = 0


@dataclass(frozen=True)
class EntrySummary:
    """One journal entry as listed by a query; totals are in base currency."""

    entry_id: UUID
    entry_number: str | None
    entry_date: date
    entry_type: str
    status: str
    description: str | None
    reference: str | None
    total_debit: Decimal
    total_credit: Decimal
    line_count: int


@dataclass(frozen=True)
class EntryPage:
    entries: tuple[EntrySummary, ...]
    total: int
    limit: int
    offset: int

    @property
    def has_more(self) -> bool:
        return self.offset + len(self.entries) < self.total


@dataclass(frozen=True)
class EntryStats:
    """Entry counts by status and type, with base-currency line totals."""

    organization_id: UUID
    total_entries: int
    by_status: dict[str, int]
    by_type: dict[str, int]
    total_debit: Decimal
    total_credit: Decimal
    last_entry_date: date | None
    last_posted_at: datetime | None

    @property
    def draft_entries(self) -> int:
        return self.by_status.get("draft", 0)

    @property
    def posted_entries(self) -> int:
        return self.by_status.get("posted", 0)

    @property
    def reversed_entries(self) -> int:
        return self.by_status.get("reversed", 0)


# ---------------------------------------------------------------------------
# Reversal
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SweepItemResult:
    """What happened to one due entry during an auto-reversal sweep."""

    entry_id: UUID
    entry_number: str | None
    auto_reverse_date: date
    success: bool
    reversing_entry_id: UUID | None = None
    reversing_entry_number: str | None = None
    error_code: str | None = None
    error_message: str | None = None


@dataclass(frozen=True)
class SweepResult:
    """Aggregate outcome of ``run_auto_reversal_sweep``."""

    as_of_date: date
    results: tuple[SweepItemResult, ...] = ()
    dry_run: bool = False

    @property
    def processed(self) -> int:
        return len(self.results)

    @property
    def successful(self) -> int:
        return sum(1 for r in self.results if r.success)

    @property
    def failed(self) -> int:
        return sum(1 for r in self.results if not r.success)


@dataclass(frozen=True)
class AccountEffect:
    """Net base-currency effect of a set of entries on one account."""

    account_id: UUID
    debit: Decimal
    credit: Decimal

    @property
    def net(self) -> Decimal:
        return self.debit - self.credit


@dataclass(frozen=True)
class ReversalDetails:
    original_entry_id: UUID
    original_entry_number: str | None
    reversing_entry_id: UUID
    reversing_entry_number: str | None
    reversal_reason: str | None
    net_effect: tuple[AccountEffect, ...]

    @property
    def is_balanced(self) -> bool:
        """True when the pair nets to zero on every account."""
        return all(effect.net == 0 for effect in self.net_effect)


# ---------------------------------------------------------------------------
# Balances and trial balance
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class AccountBalance:
    """
    Point-in-time balance of one account.

    ``balance`` is signed from the normal side.  ``debit``/``credit`` place a
    positive balance on the normal side and a negative one on the opposite
    side.
    """

    account_id: UUID
    account_code: str
    as_of_date: date
    normal_balance: str
    total_debit: Decimal
    total_credit: Decimal
    balance: Decimal
    debit: Decimal
    credit: Decimal

    @property
    def net(self) -> Decimal:
        return self.total_debit - self.total_credit

    @property
    def is_abnormal(self) -> bool:
        return self.balance < 0


@dataclass(frozen=True)
class PeriodBalance:
    account_id: UUID
    period_id: UUID
    opening_balance: Decimal
    debit_movements: Decimal
    credit_movements: Decimal
    closing_balance: Decimal


@dataclass(frozen=True)
class LedgerCheck:
    """Result of the ledger-wide debit/credit equality check."""

    organization_id: UUID
    as_of_date: date
    total_debit: Decimal
    total_credit: Decimal

    @property
    def difference(self) -> Decimal:
        return self.total_debit - self.total_credit

    @property
    def is_balanced(self) -> bool:
        return self.difference == 0


@dataclass(frozen=True)
class LedgerLine:
    """One posting in an account ledger, with the balance after it."""

    posting_date: date
    entry_id: UUID
    entry_number: str | None
    entry_type: str
    line_no: int
    description: str | None
    reference: str | None
    debit: Decimal
    credit: Decimal
    running_balance: Decimal


@dataclass(frozen=True)
class AccountLedger:
    """
    General-ledger view of one account over a date range.

    Balances are signed from the normal side.  Totals and the closing
    balance cover every matching posting, not just the returned page.
    """

    account_id: UUID
    account_code: str
    account_name: str
    normal_balance: str
    date_from: date | None
    date_to: date | None
    opening_balance: Decimal
    lines: tuple[LedgerLine, ...]
    total_debit: Decimal
    total_credit: Decimal
    closing_balance: Decimal
    total_count: int
    limit: int | None = None
    offset: int = 0

    @property
    def net_movement(self) -> Decimal:
        return self.closing_balance - self.opening_balance

    @property
    def has_more(self) -> bool:
        return self.offset + len(self.lines) < self.total_count


@dataclass(frozen=True)
class BalanceRecalculation:
    """
    A period balance row rebuilt from postings.

    ``previous_closing`` is None when no row existed.  ``changed`` is True
    when a row was created or any stored figure differed.
    """

    balance: PeriodBalance
    previous_closing: Decimal | None
    changed: bool


@dataclass(frozen=True)
class RecalculationFailure:
    account_id: UUID
    error_code: str
    error_message: str


@dataclass(frozen=True)
class BatchRecalculationResult:
    period_id: UUID
    recalculated: tuple[BalanceRecalculation, ...] = ()
    errors: tuple[RecalculationFailure, ...] = ()

    @property
    def accounts_processed(self) -> int:
        return len(self.recalculated)

    @property
    def corrected(self) -> int:
        return sum(1 for r in self.recalculated if r.changed)


class GroupBy(str, Enum):
    NONE = "none"
    CLASS = "class"
    PARENT = "parent"


@dataclass(frozen=True)
class TrialBalanceFilter:
    """
    Account selection for a trial balance.

    All given criteria must match.  Code bounds are inclusive and compare
    as strings.
    """

    account_classes: frozenset[int] | None = None
    code_from: str | None = None
    code_to: str | None = None
    account_ids: frozenset[UUID] | None = None


@dataclass(frozen=True)
class TrialBalanceRow:
    account_id: UUID | None
    account_code: str
    account_name: str
    debit: Decimal
    credit: Decimal
    account_class: int | None = None
    parent_id: UUID | None = None
    level: int = 0
    is_header: bool = False
    is_warning: bool = False
    warnings: tuple[str, ...] = ()

    @property
    def net(self) -> Decimal:
        return self.debit - self.credit


@dataclass(frozen=True)
class TrialBalance:
    """
    Trial balance report.

    Totals only count account rows; header rows are presentation.
    """

    organization_id: UUID
    as_of_date: date
    rows: tuple[TrialBalanceRow, ...]
    total_debit: Decimal
    total_credit: Decimal
    group_by: GroupBy = GroupBy.NONE
    warnings: tuple[str, ...] = ()

    @property
    def out_of_balance(self) -> Decimal:
        return self.total_debit - self.total_credit

    @property
    def is_balanced(self) -> bool:
        return self.out_of_balance == 0

    @property
    def account_rows(self) -> tuple[TrialBalanceRow, ...]:
        return tuple(row for row in self.rows if not row.is_header)


@dataclass(frozen=True)
class ComparativeAmount:
    """One prior-date comparison for an account."""

    as_of_date: date
    net: Decimal
    variance: Decimal
    percent: Decimal | None
    is_significant: bool


@dataclass(frozen=True)
class ComparativeRow:
    account_id: UUID
    account_code: str
    account_name: str
    current_net: Decimal
    comparisons: tuple[ComparativeAmount, ...]

    @property
    def has_significant_variance(self) -> bool:
        return any(c.is_significant for c in self.comparisons)


@dataclass(frozen=True)
class ComparativeTrialBalance:
    organization_id: UUID
    current_date: date
    prior_dates: tuple[date, ...]
    threshold: Decimal
    rows: tuple[ComparativeRow, ...]


# ---------------------------------------------------------------------------
# Working trial balance
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Adjustment:
    """A signed adjustment of one workspace line in one column."""

    column_id: UUID
    amount: Decimal
    reference: str | None = None
    description: str | None = None


@dataclass(frozen=True)
class WorkspaceColumn:
    column_id: UUID
    name: str
    column_type: str
    journal_entry_id: UUID | None = None
    description: str | None = None


@dataclass(frozen=True)
class WorkspaceLine:
    line_id: UUID
    account_id: UUID
    account_code: str
    account_name: str
    unadjusted_debit: Decimal
    unadjusted_credit: Decimal
    adjusted_debit: Decimal
    adjusted_credit: Decimal
    adjustments: tuple[Adjustment, ...] = ()
    is_warning: bool = False


@dataclass(frozen=True)
class WorkspaceView:
    workspace_id: UUID
    code: str
    name: str
    status: str
    as_of_date: date
    lines: tuple[WorkspaceLine, ...] = ()
    columns: tuple[WorkspaceColumn, ...] = ()
    locked_at: datetime | None = None
    lock_reason: str | None = None

    @property
    def total_adjusted_debit(self) -> Decimal:
        return sum((line.adjusted_debit for line in self.lines), ZERO)

    @property
    def total_adjusted_credit(self) -> Decimal:
        return sum((line.adjusted_credit for line in self.lines), ZERO)

    @property
    def total_unadjusted_debit(self) -> Decimal:
        return sum((line.unadjusted_debit for line in self.lines), ZERO)

    @property
    def total_unadjusted_credit(self) -> Decimal:
        return sum((line.unadjusted_credit for line in self.lines), ZERO)

    @property
    def is_balanced(self) -> bool:
        return self.total_adjusted_debit == self.total_adjusted_credit
