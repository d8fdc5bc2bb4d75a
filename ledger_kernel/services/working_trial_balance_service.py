"""
WorkingTrialBalanceService -- adjustment workspaces over a trial balance.

Responsibility:
    Snapshot a trial balance into a DRAFT workspace, let accountants layer
    signed adjustments in named columns on top of it, and lock the result
    once adjusted debits equal adjusted credits.

Architecture position:
    Kernel > Services.  Reads the ledger through BalanceSelector once, at
    creation; afterwards the workspace never looks at the ledger again.

Invariants enforced:
    - One adjustment per (column, line).  Recording again replaces it; a
      zero amount removes it.
    - adjusted_debit = unadjusted_debit + sum(positive adjustments) and
      adjusted_credit = unadjusted_credit + sum(|negative adjustments|),
      recomputed on every write.
    - Lock status is read under a row lock at write time, so an adjustment
      racing a lock loses.
    - DRAFT -> LOCKED only, and only when adjusted totals are equal.

Failure modes:
    - WorkspaceNotFoundError, AdjustmentColumnNotFoundError.
    - LockedWorkspaceError for any write to a locked workspace.
    - UnbalancedWorkspaceError on lock with unequal adjusted totals.
    - ImbalanceError from the snapshot when the ledger itself is broken.
"""

from datetime import date
from decimal import Decimal
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.orm import Session

from ledger_kernel.db.types import ZERO, coerce_amount
from ledger_kernel.domain.clock import Clock, SystemClock
from ledger_kernel.domain.dtos import (
    Adjustment,
    TrialBalanceFilter,
    WorkspaceColumn,
    WorkspaceLine,
    WorkspaceView,
)
from ledger_kernel.domain.ledger_policy import LedgerPolicy
from ledger_kernel.exceptions import (
    AdjustmentColumnNotFoundError,
    LockedWorkspaceError,
    UnbalancedWorkspaceError,
    ValidationError,
    WorkspaceNotFoundError,
)
from ledger_kernel.logging_config import LogContext, get_logger
from ledger_kernel.models.working_trial_balance import (
    AdjustmentColumn,
    AdjustmentColumnType,
    WorkingTrialBalance,
    WorkingTrialBalanceAdjustment,
    WorkingTrialBalanceLine,
    WorkspaceStatus,
)
from ledger_kernel.selectors.balance_selector import BalanceSelector
from ledger_kernel.services.account_registry import AccountRegistry
from ledger_kernel.services.auditor_service import AuditAction, AuditorService
from ledger_kernel.services.base import BaseService
from ledger_kernel.services.entry_numbering_service import EntryNumberingService

logger = get_logger("services.working_trial_balance")


class WorkingTrialBalanceService(BaseService[WorkingTrialBalance]):
    """
    Working trial balance workspaces.

    Usage:
        service = WorkingTrialBalanceService(session, clock=clock)
        view = service.create_working_trial_balance(org_id, date(2024, 12, 31), "Year end", actor)
        column = service.add_adjustment_column(view.workspace_id, "Accruals", actor)
        service.record_adjustment(view.workspace_id, column.column_id, rent_id, Decimal("500"), actor)
        service.record_adjustment(view.workspace_id, column.column_id, accrued_id, Decimal("-500"), actor)
        service.lock_working_trial_balance(view.workspace_id, actor)
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
        self._accounts = AccountRegistry(session)
        self._numbering = EntryNumberingService(session, self._policy)
        self._balances = BalanceSelector(session, self._policy)

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    def _get(self, workspace_id: UUID) -> WorkingTrialBalance:
        workspace = self.session.get(WorkingTrialBalance, workspace_id)
        if workspace is None:
            raise WorkspaceNotFoundError(str(workspace_id))
        return workspace

    def _get_for_update(self, workspace_id: UUID) -> WorkingTrialBalance:
        workspace = self.session.execute(
            select(WorkingTrialBalance)
            .where(WorkingTrialBalance.id == workspace_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if workspace is None:
            raise WorkspaceNotFoundError(str(workspace_id))
        return workspace

    @staticmethod
    def _require_draft(workspace: WorkingTrialBalance, operation: str) -> None:
        if workspace.is_locked:
            raise LockedWorkspaceError(str(workspace.id), operation)

    @staticmethod
    def _column(workspace: WorkingTrialBalance, column_id: UUID) -> AdjustmentColumn:
        for column in workspace.columns:
            if column.id == column_id:
                return column
        raise AdjustmentColumnNotFoundError(str(workspace.id), str(column_id))

    # ------------------------------------------------------------------
    # Create
    # ------------------------------------------------------------------

    def create_working_trial_balance(
        self,
        organization_id: UUID,
        as_of_date: date,
        name: str,
        actor_id: UUID,
        description: str | None = None,
        account_filter: TrialBalanceFilter | None = None,
        include_zero_balances: bool = False,
        period_id: UUID | None = None,
    ) -> WorkspaceView:
        """
        Snapshot the trial balance as of a date into a new DRAFT workspace.

        Every line starts with adjusted == unadjusted and no adjustments.

        Raises:
            ImbalanceError: The ledger does not balance.
        """
        if not name or not name.strip():
            raise ValidationError("A workspace name is required", field="name")

        trial_balance = self._balances.trial_balance(
            organization_id,
            as_of_date,
            account_filter=account_filter,
            include_zero_balances=include_zero_balances,
        )

        workspace = WorkingTrialBalance(
            id=uuid4(),
            organization_id=organization_id,
            code=self._numbering.next_workspace_code(organization_id, as_of_date),
            name=name,
            description=description,
            as_of_date=as_of_date,
            period_id=period_id,
            status=WorkspaceStatus.DRAFT,
            include_zero_balances=include_zero_balances,
            created_by_id=actor_id,
        )
        workspace.lines = [
            WorkingTrialBalanceLine(
                account_id=row.account_id,
                unadjusted_debit=row.debit,
                unadjusted_credit=row.credit,
                adjusted_debit=row.debit,
                adjusted_credit=row.credit,
                is_warning=row.is_warning,
                display_order=position,
                created_by_id=actor_id,
            )
            for position, row in enumerate(trial_balance.account_rows)
        ]
        self.session.add(workspace)
        self.session.flush()

        logger.info(
            "working_trial_balance_created",
            extra={
                "workspace_id": str(workspace.id),
                "code": workspace.code,
                "organization_id": str(organization_id),
                "as_of_date": str(as_of_date),
                "line_count": len(workspace.lines),
            },
        )
        self._auditor.record(
            AuditAction.WORKSPACE_CREATED,
            "WorkingTrialBalance",
            workspace.id,
            organization_id,
            actor_id,
            {"code": workspace.code, "as_of_date": str(as_of_date)},
        )
        return self._view(workspace)

    def add_adjustment_column(
        self,
        workspace_id: UUID,
        name: str,
        actor_id: UUID,
        column_type: AdjustmentColumnType = AdjustmentColumnType.ADJUSTING,
        journal_entry_id: UUID | None = None,
        description: str | None = None,
    ) -> WorkspaceColumn:
        workspace = self._get_for_update(workspace_id)
        self._require_draft(workspace, "add an adjustment column to")

        column = AdjustmentColumn(
            id=uuid4(),
            name=name,
            column_type=AdjustmentColumnType(column_type),
            journal_entry_id=journal_entry_id,
            description=description,
            display_order=len(workspace.columns),
            created_by_id=actor_id,
        )
        workspace.columns.append(column)
        self.session.flush()

        logger.info(
            "adjustment_column_added",
            extra={
                "workspace_id": str(workspace.id),
                "column_id": str(column.id),
                "column_type": AdjustmentColumnType(column_type).value,
            },
        )
        return _column_view(column)

    # ------------------------------------------------------------------
    # Adjust
    # ------------------------------------------------------------------

    def record_adjustment(
        self,
        workspace_id: UUID,
        column_id: UUID,
        account_id: UUID,
        amount: Decimal | int | str,
        actor_id: UUID,
        reference: str | None = None,
        description: str | None = None,
    ) -> WorkspaceView:
        """
        Set the adjustment of one account in one column.

        Positive amounts adjust the debit side, negative amounts the credit
        side.  An account missing from the snapshot gets a zero line first.

        Raises:
            LockedWorkspaceError: The workspace is locked.
            AdjustmentColumnNotFoundError: Column not in this workspace.
            AccountNotFoundError: Account not in the organization.
        """
        amount = coerce_amount(amount, "amount")
        workspace = self._get_for_update(workspace_id)
        self._require_draft(workspace, "adjust")
        column = self._column(workspace, column_id)

        with LogContext.bind(workspace_id=str(workspace.id)):
            line = self._line_for(workspace, account_id, actor_id)

            existing = next((a for a in column.adjustments if a.line_id == line.id), None)
            if existing is not None and amount == 0:
                column.adjustments.remove(existing)
            elif existing is not None:
                existing.amount = amount
                existing.reference = reference
                existing.description = description
                existing.updated_by_id = actor_id
            elif amount != 0:
                column.adjustments.append(
                    WorkingTrialBalanceAdjustment(
                        id=uuid4(),
                        line_id=line.id,
                        line=line,
                        amount=amount,
                        reference=reference,
                        description=description,
                        created_by_id=actor_id,
                    )
                )

            self._recompute(workspace, line, actor_id)
            self.session.flush()

            logger.info(
                "adjustment_recorded",
                extra={
                    "column_id": str(column.id),
                    "account_id": str(account_id),
                    "amount": str(amount),
                    "adjusted_debit": str(line.adjusted_debit),
                    "adjusted_credit": str(line.adjusted_credit),
                },
            )

        self._auditor.record(
            AuditAction.WORKSPACE_ADJUSTED,
            "WorkingTrialBalance",
            workspace.id,
            workspace.organization_id,
            actor_id,
            {"column_id": str(column.id), "account_id": str(account_id), "amount": str(amount)},
        )
        return self._view(workspace)

    def _line_for(
        self,
        workspace: WorkingTrialBalance,
        account_id: UUID,
        actor_id: UUID,
    ) -> WorkingTrialBalanceLine:
        for line in workspace.lines:
            if line.account_id == account_id:
                return line

        self._accounts.get_account(workspace.organization_id, account_id)
        line = WorkingTrialBalanceLine(
            id=uuid4(),
            account_id=account_id,
            unadjusted_debit=ZERO,
            unadjusted_credit=ZERO,
            adjusted_debit=ZERO,
            adjusted_credit=ZERO,
            display_order=len(workspace.lines),
            created_by_id=actor_id,
        )
        workspace.lines.append(line)
        self.session.flush()
        return line

    @staticmethod
    def _adjustments_of(workspace: WorkingTrialBalance, line: WorkingTrialBalanceLine):
        for column in workspace.columns:
            for adjustment in column.adjustments:
                if adjustment.line_id == line.id:
                    yield adjustment

    def _recompute(self, workspace: WorkingTrialBalance, line: WorkingTrialBalanceLine, actor_id: UUID) -> None:
        debit = line.unadjusted_debit
        credit = line.unadjusted_credit
        for adjustment in self._adjustments_of(workspace, line):
            if adjustment.amount > 0:
                debit += adjustment.amount
            else:
                credit += -adjustment.amount
        line.adjusted_debit = debit
        line.adjusted_credit = credit
        line.updated_by_id = actor_id

    # ------------------------------------------------------------------
    # Lock / delete
    # ------------------------------------------------------------------

    def lock_working_trial_balance(
        self,
        workspace_id: UUID,
        actor_id: UUID,
        reason: str | None = None,
    ) -> WorkspaceView:
        """
        Freeze the workspace.

        Raises:
            LockedWorkspaceError: Already locked.
            UnbalancedWorkspaceError: Adjusted debits != adjusted credits.
        """
        workspace = self._get_for_update(workspace_id)
        self._require_draft(workspace, "lock")

        total_debit = sum((line.adjusted_debit for line in workspace.lines), ZERO)
        total_credit = sum((line.adjusted_credit for line in workspace.lines), ZERO)
        if total_debit != total_credit:
            raise UnbalancedWorkspaceError(str(workspace.id), str(total_debit), str(total_credit))

        workspace.status = WorkspaceStatus.LOCKED
        workspace.locked_at = self._clock.now()
        workspace.locked_by_id = actor_id
        workspace.lock_reason = reason
        workspace.updated_by_id = actor_id
        self.session.flush()

        logger.info(
            "working_trial_balance_locked",
            extra={
                "workspace_id": str(workspace.id),
                "code": workspace.code,
                "total_adjusted_debit": str(total_debit),
            },
        )
        self._auditor.record(
            AuditAction.WORKSPACE_LOCKED,
            "WorkingTrialBalance",
            workspace.id,
            workspace.organization_id,
            actor_id,
            {"code": workspace.code, "reason": reason},
        )
        return self._view(workspace)

    def delete_working_trial_balance(self, workspace_id: UUID, actor_id: UUID) -> None:
        """
        Raises:
            LockedWorkspaceError: Locked workspaces are permanent.
        """
        workspace = self._get_for_update(workspace_id)
        self._require_draft(workspace, "delete")

        organization_id = workspace.organization_id
        code = workspace.code
        # Adjustments reference lines; remove them before the lines go
        for column in workspace.columns:
            column.adjustments.clear()
        self.session.flush()
        self.session.delete(workspace)
        self.session.flush()

        logger.info(
            "working_trial_balance_deleted",
            extra={"workspace_id": str(workspace_id), "code": code},
        )
        self._auditor.record(
            AuditAction.WORKSPACE_DELETED,
            "WorkingTrialBalance",
            workspace_id,
            organization_id,
            actor_id,
            {"code": code},
        )

    # ------------------------------------------------------------------
    # Read
    # ------------------------------------------------------------------

    def get_working_trial_balance(self, workspace_id: UUID) -> WorkspaceView:
        return self._view(self._get(workspace_id))

    def list_working_trial_balances(
        self,
        organization_id: UUID,
        status: WorkspaceStatus | None = None,
    ) -> list[WorkspaceView]:
        query = select(WorkingTrialBalance).where(
            WorkingTrialBalance.organization_id == organization_id
        )
        if status is not None:
            query = query.where(WorkingTrialBalance.status == WorkspaceStatus(status))
        query = query.order_by(WorkingTrialBalance.as_of_date, WorkingTrialBalance.code)
        return [self._view(workspace) for workspace in self.session.execute(query).scalars()]

    def _view(self, workspace: WorkingTrialBalance) -> WorkspaceView:
        accounts = self._accounts.get_accounts(
            workspace.organization_id, (line.account_id for line in workspace.lines)
        )
        by_line: dict[UUID, list[Adjustment]] = {}
        for column in workspace.columns:
            for adjustment in column.adjustments:
                by_line.setdefault(adjustment.line_id, []).append(
                    Adjustment(
                        column_id=column.id,
                        amount=adjustment.amount,
                        reference=adjustment.reference,
                        description=adjustment.description,
                    )
                )

        lines = []
        for line in workspace.lines:
            account = accounts.get(line.account_id)
            lines.append(
                WorkspaceLine(
                    line_id=line.id,
                    account_id=line.account_id,
                    account_code=account.code if account is not None else "",
                    account_name=account.name if account is not None else "",
                    unadjusted_debit=line.unadjusted_debit,
                    unadjusted_credit=line.unadjusted_credit,
                    adjusted_debit=line.adjusted_debit,
                    adjusted_credit=line.adjusted_credit,
                    adjustments=tuple(by_line.get(line.id, ())),
                    is_warning=line.is_warning,
                )
            )

        return WorkspaceView(
            workspace_id=workspace.id,
            code=workspace.code,
            name=workspace.name,
            status=WorkspaceStatus(workspace.status).value,
            as_of_date=workspace.as_of_date,
            lines=tuple(lines),
            columns=tuple(_column_view(column) for column in workspace.columns),
            locked_at=workspace.locked_at,
            lock_reason=workspace.lock_reason,
        )


def _column_view(column: AdjustmentColumn) -> WorkspaceColumn:
    return WorkspaceColumn(
        column_id=column.id,
        name=column.name,
        column_type=AdjustmentColumnType(column.column_type).value,
        journal_entry_id=column.journal_entry_id,
        description=column.description,
    )

