"""
Module: ledger_kernel.models.ledger
Responsibility: The materialized ledger -- one immutable posting row per
    posted journal line, and one running balance row per (account, period).
Architecture position: Kernel > Models.  Written only by
    services/ledger_materializer.py.

Invariants enforced:
    - Each journal line is materialized at most once (unique line_id).
    - LedgerPosting rows are append-only: UPDATE and DELETE are rejected by
      db/immutability.py.
    - (account_id, period_id) is unique for balance rows.
    - closing_balance = opening_balance + sign * (debit_movements - credit_movements)
      where sign is -1 for credit-normal accounts.
"""

from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import Date, DateTime, ForeignKey, Index, Integer, Numeric, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from ledger_kernel.db.base import TrackedBase, UUIDString


class LedgerPosting(TrackedBase):
    """
    One line of the general ledger, copied from a posted journal line.

    Contract:
        Base amounts are the journal line's base amounts, never recomputed.
        posting_date is the entry date, which decides which period and
        which as-of queries see the posting.
    """

    __tablename__ = "ledger_postings"

    __table_args__ = (
        UniqueConstraint("journal_line_id", name="uq_posting_line"),
        Index("idx_posting_org_date", "organization_id", "posting_date"),
        Index("idx_posting_account_date", "account_id", "posting_date"),
        Index("idx_posting_entry", "journal_entry_id"),
    )

    organization_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    journal_entry_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("journal_entries.id"),
        nullable=False,
    )

    journal_line_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("journal_lines.id"),
        nullable=False,
    )

    line_no: Mapped[int] = mapped_column(Integer, nullable=False)

    account_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("accounts.id"),
        nullable=False,
    )

    period_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("fiscal_periods.id"),
        nullable=False,
    )

    posting_date: Mapped[date] = mapped_column(Date, nullable=False)

    base_debit: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False, default=Decimal("0"))
    base_credit: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False, default=Decimal("0"))

    posted_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    def __repr__(self) -> str:
        return (
            f"<LedgerPosting {self.journal_entry_id}:{self.line_no} "
            f"dr={self.base_debit} cr={self.base_credit}>"
        )


class AccountPeriodBalance(TrackedBase):
    """
    Running balance of one account within one fiscal period.

    Contract:
        Movements are only ever incremented through SQL expressions so that
        concurrent postings cannot lose updates.  opening_balance is copied
        from the latest earlier period's closing balance when the row is
        created, and is rolled forward when an earlier period receives a
        posting afterwards.
    """

    __tablename__ = "account_period_balances"

    __table_args__ = (
        UniqueConstraint("account_id", "period_id", name="uq_balance_account_period"),
        Index("idx_balance_org_period", "organization_id", "period_id"),
    )

    organization_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    account_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("accounts.id"),
        nullable=False,
    )

    period_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("fiscal_periods.id"),
        nullable=False,
    )

    # Denormalized from the period so roll-forward can order rows
    period_start: Mapped[date] = mapped_column(Date, nullable=False)

    opening_balance: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False, default=Decimal("0"))
    debit_movements: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False, default=Decimal("0"))
    credit_movements: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False, default=Decimal("0"))
    closing_balance: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False, default=Decimal("0"))

    def __repr__(self) -> str:
        return (
            f"<AccountPeriodBalance account={self.account_id} period={self.period_id} "
            f"open={self.opening_balance} close={self.closing_balance}>"
        )
