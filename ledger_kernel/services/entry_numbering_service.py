"""
EntryNumberingService -- gapless per-scope entry numbers.

Responsibility:
    Allocates human-readable numbers for posted entries
    (``JE/2024/01/0001``, ``OB/2024/0001``) and working trial balance codes
    (``WTB-2024-0001``) from locked counter rows.

Architecture position:
    Kernel > Services.  Called by JournalEntryService at posting time and by
    WorkingTrialBalanceService at workspace creation.

Invariants enforced:
    - One counter per (organization, prefix, year, month); month is 0 for
      kinds numbered per year.
    - Allocation is a locked fetch-and-increment (``SELECT ... FOR UPDATE``).
      Aggregate max-plus-one over journal_entries is never used.
    - The increment belongs to the caller's transaction: a rollback returns
      the value, so committed numbers have no gaps.

Failure modes:
    - IntegrityError on the first allocation of a scope when two sessions
      race to create the counter; handled by a savepoint and a re-read.
"""

from datetime import date
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ledger_kernel.domain.ledger_policy import LedgerPolicy
from ledger_kernel.logging_config import get_logger
from ledger_kernel.models.entry_number import EntryNumberCounter
from ledger_kernel.services.base import BaseService

logger = get_logger("services.entry_numbering")


class EntryNumberingService(BaseService[EntryNumberCounter]):
    """
    Allocates entry numbers and workspace codes.

    Usage:
        numbering = EntryNumberingService(session, policy)
        number = numbering.allocate(org_id, EntryType.STANDARD, date(2024, 1, 15))
        # "JE/2024/01/0001"
    """

    def __init__(self, session: Session, policy: LedgerPolicy | None = None):
        super().__init__(session)
        self._policy = policy or LedgerPolicy()

    # ------------------------------------------------------------------
    # Entry numbers
    # ------------------------------------------------------------------

    def scope_for(self, entry_type, entry_date: date) -> tuple[str, int, int]:
        """Return the (prefix, year, month) counter scope for an entry."""
        prefix = self._policy.prefix_for(entry_type)
        month = 0 if self._policy.is_yearly(entry_type) else entry_date.month
        return prefix, entry_date.year, month

    def format_number(self, prefix: str, year: int, month: int, value: int) -> str:
        seq = str(value).zfill(self._policy.sequence_width)
        if month == 0:
            return f"{prefix}/{year}/{seq}"
        return f"{prefix}/{year}/{month:02d}/{seq}"

    def allocate(self, organization_id: UUID, entry_type, entry_date: date) -> str:
        """
        Consume and return the next entry number for the entry's scope.

        Postconditions: the scope counter is incremented and flushed.
        """
        prefix, year, month = self.scope_for(entry_type, entry_date)
        value = self.next_value(organization_id, prefix, year, month)
        number = self.format_number(prefix, year, month, value)

        logger.debug(
            "entry_number_allocated",
            extra={
                "organization_id": str(organization_id),
                "entry_number": number,
            },
        )
        return number

    def preview(self, organization_id: UUID, entry_type, entry_date: date) -> str:
        """Return the number the next allocation would produce, without consuming it."""
        prefix, year, month = self.scope_for(entry_type, entry_date)
        current = self.current_value(organization_id, prefix, year, month)
        return self.format_number(prefix, year, month, current + 1)

    # ------------------------------------------------------------------
    # Workspace codes
    # ------------------------------------------------------------------

    def next_workspace_code(self, organization_id: UUID, as_of_date: date) -> str:
        prefix = self._policy.workspace_code_prefix
        value = self.next_value(organization_id, prefix, as_of_date.year, 0)
        return f"{prefix}-{as_of_date.year}-{str(value).zfill(self._policy.sequence_width)}"

    # ------------------------------------------------------------------
    # Counters
    # ------------------------------------------------------------------

    def _locked_counter(self, organization_id: UUID, prefix: str, year: int, month: int):
        return self.session.execute(
            select(EntryNumberCounter)
            .where(
                EntryNumberCounter.organization_id == organization_id,
                EntryNumberCounter.prefix == prefix,
                EntryNumberCounter.year == year,
                EntryNumberCounter.month == month,
            )
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def next_value(self, organization_id: UUID, prefix: str, year: int, month: int) -> int:
        """
        Locked fetch-and-increment of one counter scope.

        Returns:
            The new counter value (always > 0).
        """
        counter = self._locked_counter(organization_id, prefix, year, month)

        if counter is None:
            # First use of this scope; another session may create it concurrently
            savepoint = self.session.begin_nested()
            try:
                counter = EntryNumberCounter(
                    organization_id=organization_id,
                    prefix=prefix,
                    year=year,
                    month=month,
                    current_value=1,
                )
                self.session.add(counter)
                self.session.flush()
                savepoint.commit()
                return 1
            except IntegrityError:
                logger.debug(
                    "entry_counter_race_retry",
                    extra={"prefix": prefix, "year": year, "month": month},
                )
                savepoint.rollback()
                counter = self._locked_counter(organization_id, prefix, year, month)
                if counter is None:
                    raise

        counter.current_value += 1
        self.session.flush()
        return counter.current_value

    def current_value(self, organization_id: UUID, prefix: str, year: int, month: int) -> int:
        """Current value of a scope, 0 when it has never been used."""
        value = self.session.execute(
            select(EntryNumberCounter.current_value).where(
                EntryNumberCounter.organization_id == organization_id,
                EntryNumberCounter.prefix == prefix,
                EntryNumberCounter.year == year,
                EntryNumberCounter.month == month,
            )
        ).scalar_one_or_none()
        return value or 0
