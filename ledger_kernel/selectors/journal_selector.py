"""
Module: ledger_kernel.selectors.journal_selector
Responsibility: Read-only traversal of journal entries and their reversal
    and correction links; filtered, paged entry listings and per-status
    and per-type statistics.
Architecture position: Kernel > Selectors.

Invariants enforced:
    - Read-only.  Entities returned by the traversal methods are the live
      ORM rows; callers must go through the services to change them.
      Listings and statistics come back as frozen DTOs.
"""

from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session

from ledger_kernel.db.types import ZERO, sum_amount
from ledger_kernel.domain.dtos import (
    AccountEffect,
    EntryOrder,
    EntryPage,
    EntryQuery,
    EntryStats,
    EntrySummary,
    ReversalDetails,
)
from ledger_kernel.exceptions import EntryNotFoundError, InvalidStateError
from ledger_kernel.models.journal import EntryType, JournalEntry, JournalEntryStatus, JournalLine
from ledger_kernel.selectors.base import BaseSelector


class JournalSelector(BaseSelector[JournalEntry]):
    """
    Queries over journal entries.

    Usage:
        selector = JournalSelector(session)
        details = selector.reversal_details(entry_id)
        assert details.is_balanced
    """

    def __init__(self, session: Session):
        super().__init__(session)

    def get_entry(self, entry_id: UUID) -> JournalEntry:
        entry = self.session.get(JournalEntry, entry_id)
        if entry is None:
            raise EntryNotFoundError(str(entry_id))
        return entry

    def list_reversals(
        self,
        organization_id: UUID,
        date_from: date | None = None,
        date_to: date | None = None,
    ) -> list[JournalEntry]:
        """Reversing (mirror) entries of an organization, oldest first."""
        query = select(JournalEntry).where(
            JournalEntry.organization_id == organization_id,
            JournalEntry.reversed_entry_id.is_not(None),
        )
        if date_from is not None:
            query = query.where(JournalEntry.entry_date >= date_from)
        if date_to is not None:
            query = query.where(JournalEntry.entry_date <= date_to)
        query = query.order_by(JournalEntry.entry_date, JournalEntry.entry_number)
        return list(self.session.execute(query).scalars())

    def reversal_details(self, entry_id: UUID) -> ReversalDetails:
        """
        The original/mirror pair around either side of a reversal, with the
        combined base-currency effect per account.

        Raises:
            EntryNotFoundError: Unknown entry.
            InvalidStateError: The entry is not part of a reversal.
        """
        entry = self.get_entry(entry_id)
        if entry.reversed_entry_id is not None:
            original = self.get_entry(entry.reversed_entry_id)
            mirror = entry
        elif entry.reversing_entry_id is not None:
            original = entry
            mirror = self.get_entry(entry.reversing_entry_id)
        else:
            raise InvalidStateError(
                str(entry.id),
                JournalEntryStatus(entry.status).value,
                "read reversal details of",
                message=f"Entry {entry.entry_number or entry.id} has not been reversed",
            )

        debits: dict[UUID, Decimal] = {}
        credits: dict[UUID, Decimal] = {}
        for line in [*original.lines, *mirror.lines]:
            debits[line.account_id] = debits.get(line.account_id, ZERO) + line.base_debit
            credits[line.account_id] = credits.get(line.account_id, ZERO) + line.base_credit

        net_effect = tuple(
            AccountEffect(account_id=account_id, debit=debits[account_id], credit=credits[account_id])
            for account_id in sorted(debits, key=str)
        )
        return ReversalDetails(
            original_entry_id=original.id,
            original_entry_number=original.entry_number,
            reversing_entry_id=mirror.id,
            reversing_entry_number=mirror.entry_number,
            reversal_reason=original.reversal_reason,
            net_effect=net_effect,
        )

    def pending_auto_reversals(
        self,
        organization_id: UUID,
        as_of_date: date | None = None,
    ) -> list[JournalEntry]:
        """Posted entries with a schedule, optionally only those due by as_of_date."""
        query = select(JournalEntry).where(
            JournalEntry.organization_id == organization_id,
            JournalEntry.status == JournalEntryStatus.POSTED,
            JournalEntry.auto_reverse_date.is_not(None),
        )
        if as_of_date is not None:
            query = query.where(JournalEntry.auto_reverse_date <= as_of_date)
        query = query.order_by(JournalEntry.auto_reverse_date, JournalEntry.entry_number)
        return list(self.session.execute(query).scalars())

    def corrections_for(self, entry_id: UUID) -> list[JournalEntry]:
        query = (
            select(JournalEntry)
            .where(JournalEntry.corrected_entry_id == entry_id)
            .order_by(JournalEntry.entry_date, JournalEntry.entry_number)
        )
        return list(self.session.execute(query).scalars())

    # ------------------------------------------------------------------
    # Queries and statistics
    # ------------------------------------------------------------------

    @staticmethod
    def _entry_conditions(organization_id: UUID, query: EntryQuery) -> list:
        conditions = [JournalEntry.organization_id == organization_id]
        if query.statuses:
            conditions.append(JournalEntry.status.in_([JournalEntryStatus(s).value for s in query.statuses]))
        if query.entry_types:
            conditions.append(JournalEntry.entry_type.in_([EntryType(t).value for t in query.entry_types]))
        if query.date_from is not None:
            conditions.append(JournalEntry.entry_date >= query.date_from)
        if query.date_to is not None:
            conditions.append(JournalEntry.entry_date <= query.date_to)
        if query.period_id is not None:
            conditions.append(JournalEntry.period_id == query.period_id)
        if query.account_id is not None:
            conditions.append(
                JournalEntry.id.in_(
                    select(JournalLine.journal_entry_id).where(JournalLine.account_id == query.account_id)
                )
            )
        if query.search:
            pattern = f"%{query.search}%"
            conditions.append(
                or_(
                    JournalEntry.description.ilike(pattern),
                    JournalEntry.reference.ilike(pattern),
                    JournalEntry.entry_number.ilike(pattern),
                )
            )
        return conditions

    def query_entries(self, organization_id: UUID, query: EntryQuery | None = None) -> EntryPage:
        """
        One page of an organization's entries with their base totals.

        ``total`` counts every matching entry, not just the page.
        """
        query = query or EntryQuery()
        conditions = self._entry_conditions(organization_id, query)

        line_totals = (
            select(
                JournalLine.journal_entry_id.label("entry_id"),
                func.sum(JournalLine.base_debit).label("total_debit"),
                func.sum(JournalLine.base_credit).label("total_credit"),
                func.count(JournalLine.id).label("line_count"),
            )
            .group_by(JournalLine.journal_entry_id)
            .subquery()
        )

        field, direction = EntryOrder(query.order_by).value.split("_")
        column = {
            "date": JournalEntry.entry_date,
            "number": JournalEntry.entry_number,
            "amount": line_totals.c.total_debit,
            "created": JournalEntry.created_at,
        }[field]
        ordering = column.asc() if direction == "asc" else column.desc()

        total = self.session.execute(
            select(func.count()).select_from(JournalEntry).where(*conditions)
        ).scalar_one()
        rows = self.session.execute(
            select(
                JournalEntry,
                line_totals.c.total_debit,
                line_totals.c.total_credit,
                line_totals.c.line_count,
            )
            .outerjoin(line_totals, line_totals.c.entry_id == JournalEntry.id)
            .where(*conditions)
            .order_by(ordering, JournalEntry.created_at, JournalEntry.id)
            .limit(query.limit)
            .offset(query.offset)
        )

        entries = tuple(
            EntrySummary(
                entry_id=row.JournalEntry.id,
                entry_number=row.JournalEntry.entry_number,
                entry_date=row.JournalEntry.entry_date,
                entry_type=EntryType(row.JournalEntry.entry_type).value,
                status=JournalEntryStatus(row.JournalEntry.status).value,
                description=row.JournalEntry.description,
                reference=row.JournalEntry.reference,
                total_debit=sum_amount(row.total_debit),
                total_credit=sum_amount(row.total_credit),
                line_count=row.line_count or 0,
            )
            for row in rows
        )
        return EntryPage(entries=entries, total=total, limit=query.limit, offset=query.offset)

    def entry_stats(
        self,
        organization_id: UUID,
        period_id: UUID | None = None,
        date_from: date | None = None,
        date_to: date | None = None,
    ) -> EntryStats:
        """Counts by status and type plus base line totals, drafts included."""
        conditions = self._entry_conditions(
            organization_id,
            EntryQuery(period_id=period_id, date_from=date_from, date_to=date_to),
        )

        by_status = {
            JournalEntryStatus(status).value: count
            for status, count in self.session.execute(
                select(JournalEntry.status, func.count()).where(*conditions).group_by(JournalEntry.status)
            )
        }
        by_type = {
            EntryType(entry_type).value: count
            for entry_type, count in self.session.execute(
                select(JournalEntry.entry_type, func.count()).where(*conditions).group_by(JournalEntry.entry_type)
            )
        }
        totals = self.session.execute(
            select(
                func.sum(JournalLine.base_debit).label("total_debit"),
                func.sum(JournalLine.base_credit).label("total_credit"),
            )
            .join(JournalEntry, JournalEntry.id == JournalLine.journal_entry_id)
            .where(*conditions)
        ).one()
        latest = self.session.execute(
            select(
                func.max(JournalEntry.entry_date).label("last_entry_date"),
                func.max(JournalEntry.posted_at).label("last_posted_at"),
            ).where(*conditions)
        ).one()

        return EntryStats(
            organization_id=organization_id,
            total_entries=sum(by_status.values()),
            by_status=by_status,
            by_type=by_type,
            total_debit=sum_amount(totals.total_debit),
            total_credit=sum_amount(totals.total_credit),
            last_entry_date=latest.last_entry_date,
            last_posted_at=latest.last_posted_at,
        )
