"""
Module: ledger_kernel.models.journal
Responsibility: ORM persistence for journal entry headers and lines -- the
    transaction record from which the ledger is materialized.
Architecture position: Kernel > Models.  May import from db/ only.

Invariants enforced:
    - Status moves one way: DRAFT -> POSTED -> REVERSED.
    - Entry number is assigned once, at posting, and is unique per
      organization.
    - At most one reversing entry is ever linked (reversing_entry_id).
    - Lines are immutable once the parent is posted, and posted entries only
      accept the reversal bookkeeping fields (db/immutability.py).

Failure modes:
    - IntegrityError on duplicate (organization_id, entry_number).
    - ImmutabilityViolationError on forbidden writes after posting.

Audit relevance:
    reversed_entry_id / reversing_entry_id cross-link a reversal pair
    permanently; corrected_entry_id links a correction to the entry it
    adjusts, so "why is this balance what it is" can always be traversed.
"""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import JSON, Date, DateTime, ForeignKey, Index, Integer, Numeric, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ledger_kernel.db.base import TrackedBase, UUIDString

if TYPE_CHECKING:
    from ledger_kernel.models.account import Account


class JournalEntryStatus(str, Enum):
    """Lifecycle status of a journal entry.

    Contract: Transitions are one-way: DRAFT -> POSTED -> REVERSED.
    """

    DRAFT = "draft"
    POSTED = "posted"
    REVERSED = "reversed"


class EntryType(str, Enum):
    """Kind of journal entry; selects the numbering prefix."""

    STANDARD = "standard"
    ADJUSTING = "adjusting"
    OPENING = "opening"
    REVERSING = "reversing"
    CLOSING = "closing"


class ReversalType(str, Enum):
    """How an entry was (or will be) reversed or corrected."""

    MANUAL = "manual"
    AUTO_SCHEDULED = "auto_scheduled"
    CORRECTION = "correction"


# Fields of a posted entry that the reversal protocol may still write.
REVERSAL_MUTABLE_FIELDS: frozenset[str] = frozenset({
    "status",
    "reversing_entry_id",
    "reversal_reason",
    "reversed_at",
    "reversed_by_id",
    "reversal_type",
    "auto_reverse_date",
    "updated_at",
    "updated_by_id",
})


class JournalEntry(TrackedBase):
    """
    Journal entry header.

    Contract:
        Created as a DRAFT whose lines may be replaced wholesale.  Posting
        assigns entry_number, period_id and posted_at exactly once.  After
        that only the reversal protocol may touch the row.

    Non-goals:
        - Balance is not enforced at the ORM level; JournalEntryService
          validates before every mutation.  is_balanced is a read-side check.
    """

    __tablename__ = "journal_entries"

    __table_args__ = (
        UniqueConstraint("organization_id", "entry_number", name="uq_entry_org_number"),
        Index("idx_entry_org_date", "organization_id", "entry_date"),
        Index("idx_entry_status", "status"),
        Index("idx_entry_auto_reverse", "status", "auto_reverse_date"),
        Index("idx_entry_corrected", "corrected_entry_id"),
    )

    organization_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    # Resolved at draft time, re-resolved at posting
    period_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("fiscal_periods.id"),
        nullable=True,
    )

    # Assigned at posting, e.g. "JE/2024/01/0001"
    entry_number: Mapped[str | None] = mapped_column(String(40), nullable=True)

    entry_date: Mapped[date] = mapped_column(Date, nullable=False)

    entry_type: Mapped[EntryType] = mapped_column(
        String(20),
        default=EntryType.STANDARD,
        nullable=False,
    )

    status: Mapped[JournalEntryStatus] = mapped_column(
        String(10),
        default=JournalEntryStatus.DRAFT,
        nullable=False,
    )

    description: Mapped[str | None] = mapped_column(String(500), nullable=True)

    reference: Mapped[str | None] = mapped_column(String(100), nullable=True)

    # Free-form caller metadata (named to avoid SQLAlchemy's reserved name)
    entry_metadata: Mapped[dict | None] = mapped_column(JSON, nullable=True)

    posted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    posted_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    # Set on a reversal entry: the entry it mirrors
    reversed_entry_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("journal_entries.id"),
        nullable=True,
    )

    # Set on a reversed entry: its mirror
    reversing_entry_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("journal_entries.id"),
        nullable=True,
    )

    # Set on a correction entry: the entry it adjusts
    corrected_entry_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("journal_entries.id"),
        nullable=True,
    )

    reversal_type: Mapped[ReversalType | None] = mapped_column(String(20), nullable=True)
    reversal_reason: Mapped[str | None] = mapped_column(String(500), nullable=True)
    reversed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    reversed_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    auto_reverse_date: Mapped[date | None] = mapped_column(Date, nullable=True)

    lines: Mapped[list["JournalLine"]] = relationship(
        back_populates="entry",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="JournalLine.line_no",
    )

    corrections: Mapped[list["JournalEntry"]] = relationship(
        primaryjoin="JournalEntry.id == foreign(JournalEntry.corrected_entry_id)",
        viewonly=True,
        lazy="select",
        order_by="JournalEntry.entry_date",
    )

    def __repr__(self) -> str:
        return f"<JournalEntry {self.entry_number or self.id} status={self.status}>"

    @property
    def is_draft(self) -> bool:
        return self.status == JournalEntryStatus.DRAFT

    @property
    def is_posted(self) -> bool:
        return self.status == JournalEntryStatus.POSTED

    @property
    def is_reversed(self) -> bool:
        return self.status == JournalEntryStatus.REVERSED

    @property
    def is_reversal(self) -> bool:
        """True when this entry mirrors another entry."""
        return self.reversed_entry_id is not None

    @property
    def is_correction(self) -> bool:
        return self.corrected_entry_id is not None

    @property
    def total_debit(self) -> Decimal:
        return sum((line.debit_amount for line in self.lines), Decimal("0"))

    @property
    def total_credit(self) -> Decimal:
        return sum((line.credit_amount for line in self.lines), Decimal("0"))

    @property
    def total_base_debit(self) -> Decimal:
        return sum((line.base_debit for line in self.lines), Decimal("0"))

    @property
    def total_base_credit(self) -> Decimal:
        return sum((line.base_credit for line in self.lines), Decimal("0"))

    @property
    def is_balanced(self) -> bool:
        """Base debits equal base credits (read-side convenience)."""
        return self.total_base_debit == self.total_base_credit


class JournalLine(TrackedBase):
    """
    One side of a transaction.

    Contract:
        Exactly one of debit_amount / credit_amount is positive.  Base
        amounts are amount x exchange_rate rounded to the ledger precision,
        computed when the line is written and carried unchanged into the
        ledger (and swapped, not recomputed, by a reversal).
    """

    __tablename__ = "journal_lines"

    __table_args__ = (
        UniqueConstraint("journal_entry_id", "line_no", name="uq_line_entry_no"),
        Index("idx_line_account", "account_id"),
    )

    journal_entry_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("journal_entries.id"),
        nullable=False,
    )

    # 1-based position within the entry, stable end to end
    line_no: Mapped[int] = mapped_column(Integer, nullable=False)

    account_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("accounts.id"),
        nullable=False,
    )

    description: Mapped[str | None] = mapped_column(String(500), nullable=True)

    debit_amount: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False, default=Decimal("0"))
    credit_amount: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False, default=Decimal("0"))

    currency: Mapped[str] = mapped_column(String(3), nullable=False)

    exchange_rate: Mapped[Decimal] = mapped_column(Numeric(38, 18), nullable=False, default=Decimal("1"))

    base_debit: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False, default=Decimal("0"))
    base_credit: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False, default=Decimal("0"))

    entry: Mapped["JournalEntry"] = relationship(back_populates="lines")

    account: Mapped["Account"] = relationship(viewonly=True, lazy="joined")

    def __repr__(self) -> str:
        return (
            f"<JournalLine {self.line_no} account={self.account_id} "
            f"dr={self.debit_amount} cr={self.credit_amount}>"
        )

    @property
    def is_debit(self) -> bool:
        return self.debit_amount > 0
