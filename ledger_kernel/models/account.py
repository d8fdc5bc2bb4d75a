"""
Module: ledger_kernel.models.account
Responsibility: ORM persistence for the chart of accounts as the engine sees
    it: code, class, normal-balance side, postable/active flags, and parent.
Architecture position: Kernel > Models.  May import from db/ only.

Invariants enforced:
    - (organization_id, code) is unique.
    - normal_balance is immutable once a ledger posting references the
      account (ORM listener in db/immutability.py).

Audit relevance:
    The normal-balance side decides the sign of every closing balance and
    the side on which trial-balance rows are reported.
"""

from enum import Enum
from uuid import UUID

from sqlalchemy import Boolean, Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from ledger_kernel.db.base import TrackedBase, UUIDString


class AccountType(str, Enum):
    """Types of accounts in the chart of accounts."""

    ASSET = "asset"
    LIABILITY = "liability"
    EQUITY = "equity"
    REVENUE = "revenue"
    EXPENSE = "expense"
    OFF_BALANCE = "off_balance"


class NormalBalance(str, Enum):
    """Normal balance side for an account."""

    DEBIT = "debit"
    CREDIT = "credit"


class Account(TrackedBase):
    """
    A single ledger account within one organization.

    Contract:
        Account.code is unique per organization.  Only active accounts that
        allow posting may appear on journal lines.

    Non-goals:
        - Chart-of-accounts administration (templates, renames, merges)
          lives outside the engine.
    """

    __tablename__ = "accounts"

    __table_args__ = (
        UniqueConstraint("organization_id", "code", name="uq_account_org_code"),
        Index("idx_account_org_class", "organization_id", "account_class"),
        Index("idx_account_parent", "parent_id"),
    )

    organization_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    code: Mapped[str] = mapped_column(String(50), nullable=False)

    name: Mapped[str] = mapped_column(String(255), nullable=False)

    account_type: Mapped[AccountType] = mapped_column(String(20), nullable=False)

    # Chart class 0-9 (drives class grouping in the trial balance)
    account_class: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    normal_balance: Mapped[NormalBalance] = mapped_column(String(10), nullable=False)

    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    # False for summary/header accounts that only aggregate children
    allows_posting: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    parent_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    def __repr__(self) -> str:
        return f"<Account {self.code}: {self.name}>"

    @property
    def is_debit_normal(self) -> bool:
        return self.normal_balance == NormalBalance.DEBIT

    @property
    def is_credit_normal(self) -> bool:
        return self.normal_balance == NormalBalance.CREDIT
