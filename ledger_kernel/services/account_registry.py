"""
AccountRegistry -- the engine's narrow view of the chart of accounts.

Responsibility:
    Create accounts and look them up by id or code for one organization.
    The normal-balance side recorded here decides the sign of every
    balance the ledger computes.

Architecture position:
    Kernel > Services.  Chart-of-accounts administration beyond this
    (templates, renames, merges) is out of scope.
"""

from collections.abc import Iterable
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from ledger_kernel.domain.dtos import TrialBalanceFilter
from ledger_kernel.exceptions import AccountNotFoundError, ValidationError
from ledger_kernel.logging_config import get_logger
from ledger_kernel.models.account import Account, AccountType, NormalBalance
from ledger_kernel.services.base import BaseService

logger = get_logger("services.account_registry")

_DEFAULT_NORMAL_BALANCE = {
    AccountType.ASSET: NormalBalance.DEBIT,
    AccountType.EXPENSE: NormalBalance.DEBIT,
    AccountType.OFF_BALANCE: NormalBalance.DEBIT,
    AccountType.LIABILITY: NormalBalance.CREDIT,
    AccountType.EQUITY: NormalBalance.CREDIT,
    AccountType.REVENUE: NormalBalance.CREDIT,
}


class AccountRegistry(BaseService[Account]):
    def __init__(self, session: Session):
        super().__init__(session)

    def create_account(
        self,
        organization_id: UUID,
        code: str,
        name: str,
        account_type: AccountType,
        actor_id: UUID,
        normal_balance: NormalBalance | None = None,
        account_class: int | None = None,
        parent_id: UUID | None = None,
        allows_posting: bool = True,
        is_active: bool = True,
    ) -> Account:
        """
        Create an account.

        ``normal_balance`` defaults from the account type; ``account_class``
        defaults to the first digit of a numeric code.
        """
        if not code:
            raise ValidationError("Account code is required", field="code")
        account_type = AccountType(account_type)
        if normal_balance is None:
            normal_balance = _DEFAULT_NORMAL_BALANCE[account_type]
        if account_class is None:
            account_class = int(code[0]) if code[0].isdigit() else 0
        if not 0 <= account_class <= 9:
            raise ValidationError(
                f"account_class must be between 0 and 9, got {account_class}",
                field="account_class",
            )
        if parent_id is not None:
            self.get_account(organization_id, parent_id)

        account = Account(
            organization_id=organization_id,
            code=code,
            name=name,
            account_type=account_type,
            account_class=account_class,
            normal_balance=NormalBalance(normal_balance),
            parent_id=parent_id,
            allows_posting=allows_posting,
            is_active=is_active,
            created_by_id=actor_id,
        )
        self.session.add(account)
        self.session.flush()

        logger.info(
            "account_created",
            extra={
                "organization_id": str(organization_id),
                "account_code": code,
                "normal_balance": NormalBalance(normal_balance).value,
            },
        )
        return account

    def get_account(self, organization_id: UUID, account_id: UUID) -> Account:
        """
        Raises:
            AccountNotFoundError: Unknown id, or an account of another
                organization.
        """
        account = self.session.get(Account, account_id)
        if account is None or account.organization_id != organization_id:
            raise AccountNotFoundError(str(account_id))
        return account

    def get_account_by_code(self, organization_id: UUID, code: str) -> Account | None:
        return self.session.execute(
            select(Account).where(
                Account.organization_id == organization_id,
                Account.code == code,
            )
        ).scalar_one_or_none()

    def get_accounts(self, organization_id: UUID, account_ids: Iterable[UUID]) -> dict[UUID, Account]:
        """Load several accounts of one organization keyed by id."""
        ids = set(account_ids)
        if not ids:
            return {}
        rows = self.session.execute(
            select(Account).where(
                Account.organization_id == organization_id,
                Account.id.in_(ids),
            )
        ).scalars()
        return {account.id: account for account in rows}

    def list_accounts(
        self,
        organization_id: UUID,
        account_filter: TrialBalanceFilter | None = None,
        include_inactive: bool = True,
    ) -> list[Account]:
        """Accounts of the organization ordered by code."""
        query = select(Account).where(Account.organization_id == organization_id)
        if not include_inactive:
            query = query.where(Account.is_active.is_(True))
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

    def deactivate(self, organization_id: UUID, account_id: UUID, actor_id: UUID) -> Account:
        account = self.get_account(organization_id, account_id)
        account.is_active = False
        account.updated_by_id = actor_id
        self.session.flush()
        logger.info(
            "account_deactivated",
            extra={"organization_id": str(organization_id), "account_code": account.code},
        )
        return account
