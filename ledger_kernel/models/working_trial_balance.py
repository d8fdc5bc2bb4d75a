"""
Module: ledger_kernel.models.working_trial_balance
Responsibility: Persistence for working trial balance workspaces -- a
    snapshot of trial balance rows plus adjustment columns layered on top.
Architecture position: Kernel > Models.  Written only by
    services/working_trial_balance_service.py.

Invariants enforced:
    - Workspace code is unique per organization.
    - Status moves one way: DRAFT -> LOCKED.  A locked workspace and
      everything under it is read-only (db/immutability.py).
    - One adjustment per (column, line); recording again replaces it.
    - adjusted_debit = unadjusted_debit + sum(positive adjustments)
      adjusted_credit = unadjusted_credit + sum(|negative adjustments|)
"""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from sqlalchemy import Boolean, Date, DateTime, ForeignKey, Index, Integer, Numeric, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ledger_kernel.db.base import TrackedBase, UUIDString


class WorkspaceStatus(str, Enum):
    DRAFT = "draft"
    LOCKED = "locked"


class AdjustmentColumnType(str, Enum):
    """Nature of an adjustment column in a workspace."""

    ADJUSTING = "adjusting"
    RECLASSIFICATION = "reclassification"
    PROPOSED = "proposed"


class WorkingTrialBalance(TrackedBase):
    """
    Header of a working trial balance workspace.

    Contract:
        Lines are captured once at creation from the trial balance as of
        as_of_date.  Later postings do not change the snapshot.
    """

    __tablename__ = "working_trial_balances"

    __table_args__ = (
        UniqueConstraint("organization_id", "code", name="uq_wtb_org_code"),
        Index("idx_wtb_org_date", "organization_id", "as_of_date"),
    )

    organization_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    # e.g. "WTB-2024-0001"
    code: Mapped[str] = mapped_column(String(40), nullable=False)

    name: Mapped[str] = mapped_column(String(200), nullable=False)

    description: Mapped[str | None] = mapped_column(String(500), nullable=True)

    as_of_date: Mapped[date] = mapped_column(Date, nullable=False)

    period_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("fiscal_periods.id"),
        nullable=True,
    )

    status: Mapped[WorkspaceStatus] = mapped_column(
        String(10),
        default=WorkspaceStatus.DRAFT,
        nullable=False,
    )

    include_zero_balances: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    locked_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    locked_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    lock_reason: Mapped[str | None] = mapped_column(String(500), nullable=True)

    lines: Mapped[list["WorkingTrialBalanceLine"]] = relationship(
        back_populates="workspace",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="WorkingTrialBalanceLine.display_order",
    )

    columns: Mapped[list["AdjustmentColumn"]] = relationship(
        back_populates="workspace",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="AdjustmentColumn.display_order",
    )

    def __repr__(self) -> str:
        return f"<WorkingTrialBalance {self.code} status={self.status}>"

    @property
    def is_locked(self) -> bool:
        return self.status == WorkspaceStatus.LOCKED


class WorkingTrialBalanceLine(TrackedBase):
    """One account row of a workspace."""

    __tablename__ = "working_trial_balance_lines"

    __table_args__ = (
        UniqueConstraint("workspace_id", "account_id", name="uq_wtb_line_account"),
    )

    workspace_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("working_trial_balances.id"),
        nullable=False,
    )

    account_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("accounts.id"),
        nullable=False,
    )

    unadjusted_debit: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False, default=Decimal("0"))
    unadjusted_credit: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False, default=Decimal("0"))
    adjusted_debit: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False, default=Decimal("0"))
    adjusted_credit: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False, default=Decimal("0"))

    # Carried from the trial balance row (inactive with balance, abnormal side)
    is_warning: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    display_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    workspace: Mapped["WorkingTrialBalance"] = relationship(back_populates="lines")

    # Owned by the column side; read-only here
    adjustments: Mapped[list["WorkingTrialBalanceAdjustment"]] = relationship(
        viewonly=True,
        lazy="selectin",
    )

    def __repr__(self) -> str:
        return (
            f"<WorkingTrialBalanceLine account={self.account_id} "
            f"adj_dr={self.adjusted_debit} adj_cr={self.adjusted_credit}>"
        )


class AdjustmentColumn(TrackedBase):
    """
    A named set of adjustments within a workspace.

    journal_entry_id optionally ties the column to the entry that books the
    adjustments for real.
    """

    __tablename__ = "wtb_adjustment_columns"

    workspace_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("working_trial_balances.id"),
        nullable=False,
    )

    name: Mapped[str] = mapped_column(String(200), nullable=False)

    column_type: Mapped[AdjustmentColumnType] = mapped_column(
        String(20),
        default=AdjustmentColumnType.ADJUSTING,
        nullable=False,
    )

    journal_entry_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("journal_entries.id"),
        nullable=True,
    )

    description: Mapped[str | None] = mapped_column(String(500), nullable=True)

    display_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    workspace: Mapped["WorkingTrialBalance"] = relationship(back_populates="columns")

    adjustments: Mapped[list["WorkingTrialBalanceAdjustment"]] = relationship(
        back_populates="column",
        cascade="all, delete-orphan",
        lazy="selectin",
    )


class WorkingTrialBalanceAdjustment(TrackedBase):
    """
    A signed amount in one column against one line.

    Positive amounts add to the adjusted debit, negative amounts add their
    absolute value to the adjusted credit.
    """

    __tablename__ = "wtb_adjustments"

    __table_args__ = (
        UniqueConstraint("column_id", "line_id", name="uq_wtb_adjustment_cell"),
    )

    column_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("wtb_adjustment_columns.id"),
        nullable=False,
    )

    line_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("working_trial_balance_lines.id"),
        nullable=False,
    )

    amount: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False)

    reference: Mapped[str | None] = mapped_column(String(100), nullable=True)

    description: Mapped[str | None] = mapped_column(String(500), nullable=True)

    column: Mapped["AdjustmentColumn"] = relationship(back_populates="adjustments")

    line: Mapped["WorkingTrialBalanceLine"] = relationship()
