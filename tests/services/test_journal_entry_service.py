"""
Journal entry store tests.

Verifies:
- Draft validation: line count, one positive side per line, balance within
  tolerance, account and period checks.
- Draft lifecycle: wholesale line replacement, deletion, status guards.
- Posting: number allocation, re-validation at post time, one-way status.
- Multi-currency base amounts and rounding absorption.
- Supplementary operations: validate_entry, copy_entry, bulk_post, bulk_delete,
  preview_entry_number.
"""

from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy import func, select

from ledger_kernel.domain.dtos import LineInput
from ledger_kernel.exceptions import (
    AccountInactiveError,
    AccountNotFoundError,
    AccountNotPostableError,
    AlreadyPostedError,
    EntryNotFoundError,
    InvalidCurrencyError,
    InvalidStateError,
    PeriodClosedError,
    PeriodNotFoundError,
    UnbalancedEntryError,
    ValidationError,
)
from ledger_kernel.models.journal import EntryType, JournalEntryStatus, JournalLine
from ledger_kernel.models.ledger import LedgerPosting
from ledger_kernel.services.auditor_service import AuditAction


@pytest.fixture
def cash_sale(standard_accounts):
    def _lines(amount="5000.00"):
        return [
            LineInput(account_id=standard_accounts["cash"].id, debit=Decimal(amount)),
            LineInput(account_id=standard_accounts["revenue"].id, credit=Decimal(amount)),
        ]

    return _lines


@pytest.fixture
def draft(journal_service, organization_id, test_actor_id, periods_2024, cash_sale):
    return journal_service.create_draft(
        organization_id, date(2024, 1, 15), cash_sale(), test_actor_id, description="Cash sale"
    )


# ---------------------------------------------------------------------------
# create_draft validation
# ---------------------------------------------------------------------------


class TestCreateDraft:
    def test_draft_has_no_number_and_keeps_line_order(self, draft, standard_accounts):
        assert draft.status == JournalEntryStatus.DRAFT
        assert draft.entry_number is None
        assert [line.line_no for line in draft.lines] == [1, 2]
        assert draft.lines[0].account_id == standard_accounts["cash"].id
        assert draft.lines[0].base_debit == Decimal("5000.00")
        assert draft.lines[1].base_credit == Decimal("5000.00")

    def test_draft_records_audit(self, draft, audit_sink):
        assert AuditAction.ENTRY_CREATED in audit_sink.actions()

    def test_single_line_rejected(self, journal_service, organization_id, test_actor_id, periods_2024, standard_accounts):
        with pytest.raises(ValidationError, match="at least 2 lines"):
            journal_service.create_draft(
                organization_id,
                date(2024, 1, 15),
                [LineInput(account_id=standard_accounts["cash"].id, debit=Decimal("10"))],
                test_actor_id,
            )

    def test_both_sides_on_one_line_rejected(self, journal_service, organization_id, test_actor_id, periods_2024, standard_accounts):
        lines = [
            LineInput(account_id=standard_accounts["cash"].id, debit=Decimal("10"), credit=Decimal("10")),
            LineInput(account_id=standard_accounts["revenue"].id, credit=Decimal("0")),
        ]
        with pytest.raises(ValidationError) as exc_info:
            journal_service.create_draft(organization_id, date(2024, 1, 15), lines, test_actor_id)
        assert exc_info.value.line_no == 1

    def test_negative_amount_rejected(self, journal_service, organization_id, test_actor_id, periods_2024, standard_accounts):
        lines = [
            LineInput(account_id=standard_accounts["cash"].id, debit=Decimal("-10")),
            LineInput(account_id=standard_accounts["revenue"].id, credit=Decimal("-10")),
        ]
        with pytest.raises(ValidationError, match="negative"):
            journal_service.create_draft(organization_id, date(2024, 1, 15), lines, test_actor_id)

    def test_unbalanced_beyond_tolerance(self, journal_service, organization_id, test_actor_id, periods_2024, standard_accounts):
        lines = [
            LineInput(account_id=standard_accounts["cash"].id, debit=Decimal("100.00")),
            LineInput(account_id=standard_accounts["revenue"].id, credit=Decimal("99.98")),
        ]
        with pytest.raises(UnbalancedEntryError) as exc_info:
            journal_service.create_draft(organization_id, date(2024, 1, 15), lines, test_actor_id)
        assert exc_info.value.code == "UNBALANCED_ENTRY"

    def test_difference_within_tolerance_is_absorbed(self, journal_service, organization_id, test_actor_id, periods_2024, standard_accounts):
        lines = [
            LineInput(account_id=standard_accounts["cash"].id, debit=Decimal("100.00")),
            LineInput(account_id=standard_accounts["revenue"].id, credit=Decimal("99.99")),
        ]
        entry = journal_service.create_draft(organization_id, date(2024, 1, 15), lines, test_actor_id)
        assert entry.total_base_debit == entry.total_base_credit == Decimal("100.00")

    def test_float_amount_rejected(self, journal_service, organization_id, test_actor_id, periods_2024, standard_accounts):
        lines = [
            LineInput(account_id=standard_accounts["cash"].id, debit=10.5),
            LineInput(account_id=standard_accounts["revenue"].id, credit=Decimal("10.5")),
        ]
        with pytest.raises(ValidationError, match="not float"):
            journal_service.create_draft(organization_id, date(2024, 1, 15), lines, test_actor_id)

    def test_unknown_currency_rejected(self, journal_service, organization_id, test_actor_id, periods_2024, standard_accounts):
        lines = [
            LineInput(account_id=standard_accounts["cash"].id, debit=Decimal("1"), currency="ABC"),
            LineInput(account_id=standard_accounts["revenue"].id, credit=Decimal("1"), currency="ABC"),
        ]
        with pytest.raises(InvalidCurrencyError):
            journal_service.create_draft(organization_id, date(2024, 1, 15), lines, test_actor_id)

    def test_header_account_not_postable(self, journal_service, organization_id, test_actor_id, periods_2024, standard_accounts):
        lines = [
            LineInput(account_id=standard_accounts["assets"].id, debit=Decimal("1")),
            LineInput(account_id=standard_accounts["revenue"].id, credit=Decimal("1")),
        ]
        with pytest.raises(AccountNotPostableError) as exc_info:
            journal_service.create_draft(organization_id, date(2024, 1, 15), lines, test_actor_id)
        assert exc_info.value.line_no == 1

    def test_inactive_account_rejected(self, journal_service, account_registry, organization_id, test_actor_id, periods_2024, standard_accounts, cash_sale):
        account_registry.deactivate(organization_id, standard_accounts["revenue"].id, test_actor_id)
        with pytest.raises(AccountInactiveError):
            journal_service.create_draft(organization_id, date(2024, 1, 15), cash_sale(), test_actor_id)

    def test_account_of_other_organization_rejected(self, journal_service, period_service, test_actor_id, periods_2024, cash_sale):
        other_org = uuid4()
        period_service.create_period(other_org, "2024-01", date(2024, 1, 1), date(2024, 1, 31), test_actor_id)
        with pytest.raises(AccountNotFoundError):
            journal_service.create_draft(other_org, date(2024, 1, 15), cash_sale(), test_actor_id)

    def test_no_period_is_validation_error(self, journal_service, organization_id, test_actor_id, periods_2024, cash_sale):
        with pytest.raises(PeriodNotFoundError) as exc_info:
            journal_service.create_draft(organization_id, date(2025, 1, 15), cash_sale(), test_actor_id)
        assert isinstance(exc_info.value, ValidationError)

    def test_closed_period_rejected(self, journal_service, period_service, organization_id, test_actor_id, periods_2024, cash_sale):
        period_service.close_period(organization_id, "2024-01", test_actor_id)
        with pytest.raises(PeriodClosedError):
            journal_service.create_draft(organization_id, date(2024, 1, 15), cash_sale(), test_actor_id)


# ---------------------------------------------------------------------------
# Draft lifecycle
# ---------------------------------------------------------------------------


class TestDraftLifecycle:
    def test_update_replaces_lines_wholesale(self, session, journal_service, draft, test_actor_id, standard_accounts):
        new_lines = [
            LineInput(account_id=standard_accounts["bank"].id, debit=Decimal("300")),
            LineInput(account_id=standard_accounts["cash"].id, debit=Decimal("200")),
            LineInput(account_id=standard_accounts["revenue"].id, credit=Decimal("500")),
        ]
        updated = journal_service.update_draft(draft.id, test_actor_id, lines=new_lines, description="Split")

        assert updated.description == "Split"
        assert [line.line_no for line in updated.lines] == [1, 2, 3]
        assert updated.total_debit == Decimal("500")
        stored = session.execute(
            select(func.count()).select_from(JournalLine).where(JournalLine.journal_entry_id == draft.id)
        ).scalar_one()
        assert stored == 3

    def test_update_revalidates_balance(self, journal_service, draft, test_actor_id, standard_accounts):
        bad = [
            LineInput(account_id=standard_accounts["cash"].id, debit=Decimal("10")),
            LineInput(account_id=standard_accounts["revenue"].id, credit=Decimal("20")),
        ]
        with pytest.raises(UnbalancedEntryError):
            journal_service.update_draft(draft.id, test_actor_id, lines=bad)

    def test_update_date_moves_period(self, journal_service, draft, test_actor_id, periods_2024):
        updated = journal_service.update_draft(draft.id, test_actor_id, entry_date=date(2024, 2, 3))
        assert updated.period_id == periods_2024["2024-02"].id

    def test_update_posted_entry_is_invalid_state(self, journal_service, draft, test_actor_id, cash_sale):
        journal_service.post(draft.id, test_actor_id)
        with pytest.raises(InvalidStateError):
            journal_service.update_draft(draft.id, test_actor_id, lines=cash_sale("1.00"))

    def test_delete_draft(self, journal_service, draft, test_actor_id, audit_sink):
        journal_service.delete(draft.id, test_actor_id)
        with pytest.raises(EntryNotFoundError):
            journal_service.get_entry(draft.id)
        assert AuditAction.ENTRY_DELETED in audit_sink.actions()

    def test_delete_posted_entry_is_invalid_state(self, journal_service, draft, test_actor_id):
        journal_service.post(draft.id, test_actor_id)
        with pytest.raises(InvalidStateError):
            journal_service.delete(draft.id, test_actor_id)


# ---------------------------------------------------------------------------
# Posting
# ---------------------------------------------------------------------------


class TestPost:
    def test_post_assigns_number_and_materializes(self, session, journal_service, draft, test_actor_id, deterministic_clock):
        posted = journal_service.post(draft.id, test_actor_id)

        assert posted.status == JournalEntryStatus.POSTED
        assert posted.entry_number == "JE/2024/01/0001"
        assert posted.posted_at == deterministic_clock.now()
        assert posted.posted_by_id == test_actor_id
        postings = session.execute(
            select(LedgerPosting).where(LedgerPosting.journal_entry_id == posted.id)
        ).scalars().all()
        assert sorted(p.line_no for p in postings) == [1, 2]

    def test_numbers_are_sequential_per_month(self, journal_service, organization_id, test_actor_id, periods_2024, cash_sale):
        numbers = []
        for day in (5, 6, 7):
            entry = journal_service.create_draft(organization_id, date(2024, 3, day), cash_sale("1"), test_actor_id)
            numbers.append(journal_service.post(entry.id, test_actor_id).entry_number)
        feb = journal_service.create_draft(organization_id, date(2024, 2, 1), cash_sale("1"), test_actor_id)
        numbers.append(journal_service.post(feb.id, test_actor_id).entry_number)

        assert numbers == ["JE/2024/03/0001", "JE/2024/03/0002", "JE/2024/03/0003", "JE/2024/02/0001"]

    def test_opening_entries_number_per_year(self, journal_service, organization_id, test_actor_id, periods_2024, cash_sale):
        entry = journal_service.create_draft(
            organization_id, date(2024, 1, 1), cash_sale("1"), test_actor_id, entry_type=EntryType.OPENING
        )
        assert journal_service.post(entry.id, test_actor_id).entry_number == "OB/2024/0001"

    def test_post_twice_raises_already_posted(self, journal_service, draft, test_actor_id):
        journal_service.post(draft.id, test_actor_id)
        with pytest.raises(AlreadyPostedError) as exc_info:
            journal_service.post(draft.id, test_actor_id)
        assert exc_info.value.code == "ALREADY_POSTED"

    def test_period_closed_after_draft(self, journal_service, period_service, draft, organization_id, test_actor_id):
        period_service.close_period(organization_id, "2024-01", test_actor_id)
        with pytest.raises(PeriodClosedError) as exc_info:
            journal_service.post(draft.id, test_actor_id)
        assert exc_info.value.period_code == "2024-01"
        assert journal_service.get_entry(draft.id).is_draft

    def test_account_deactivated_after_draft(self, journal_service, account_registry, draft, organization_id, test_actor_id, standard_accounts):
        account_registry.deactivate(organization_id, standard_accounts["cash"].id, test_actor_id)
        with pytest.raises(AccountInactiveError):
            journal_service.post(draft.id, test_actor_id)

    def test_failed_post_consumes_no_number(self, journal_service, period_service, draft, organization_id, test_actor_id, cash_sale):
        period_service.close_period(organization_id, "2024-01", test_actor_id)
        with pytest.raises(PeriodClosedError):
            journal_service.post(draft.id, test_actor_id)
        assert journal_service.preview_entry_number(organization_id, EntryType.STANDARD, date(2024, 1, 20)) == "JE/2024/01/0001"

    def test_post_logs_event(self, journal_service, draft, test_actor_id, captured_logs):
        journal_service.post(draft.id, test_actor_id)
        posted = [r for r in captured_logs() if r["message"] == "entry_posted"]
        assert posted and posted[0]["entry_id"] == str(draft.id)


# ---------------------------------------------------------------------------
# Multi-currency
# ---------------------------------------------------------------------------


class TestMultiCurrency:
    def test_base_amounts_use_rate_and_rounding(self, journal_service, organization_id, test_actor_id, periods_2024, standard_accounts):
        lines = [
            LineInput(
                account_id=standard_accounts["bank"].id,
                debit=Decimal("100.00"),
                currency="EUR",
                exchange_rate=Decimal("1.08555"),
            ),
            LineInput(account_id=standard_accounts["revenue"].id, credit=Decimal("108.56")),
        ]
        entry = journal_service.create_draft(organization_id, date(2024, 1, 15), lines, test_actor_id)
        assert entry.lines[0].base_debit == Decimal("108.56")
        assert entry.lines[0].currency == "EUR"
        assert entry.is_balanced

    def test_mixed_currency_checked_in_base(self, journal_service, organization_id, test_actor_id, periods_2024, standard_accounts):
        lines = [
            LineInput(account_id=standard_accounts["bank"].id, debit=Decimal("100"), currency="EUR", exchange_rate=Decimal("1.10")),
            LineInput(account_id=standard_accounts["revenue"].id, credit=Decimal("100")),
        ]
        with pytest.raises(UnbalancedEntryError) as exc_info:
            journal_service.create_draft(organization_id, date(2024, 1, 15), lines, test_actor_id)
        assert exc_info.value.currency == "USD"

    def test_zero_rate_rejected(self, journal_service, organization_id, test_actor_id, periods_2024, standard_accounts):
        lines = [
            LineInput(account_id=standard_accounts["bank"].id, debit=Decimal("1"), currency="EUR", exchange_rate=Decimal("0")),
            LineInput(account_id=standard_accounts["revenue"].id, credit=Decimal("1")),
        ]
        with pytest.raises(ValidationError, match="exchange rate"):
            journal_service.create_draft(organization_id, date(2024, 1, 15), lines, test_actor_id)


# ---------------------------------------------------------------------------
# Supplementary operations
# ---------------------------------------------------------------------------


class TestValidateEntry:
    def test_clean_draft_can_post(self, journal_service, draft):
        result = journal_service.validate_entry(draft.id)
        assert result.can_post
        assert result.errors == ()

    def test_closed_period_reported_not_raised(self, journal_service, period_service, draft, organization_id, test_actor_id):
        period_service.close_period(organization_id, "2024-01", test_actor_id)
        result = journal_service.validate_entry(draft.id)
        assert not result.can_post
        assert any("closed period" in e for e in result.errors)

    def test_abnormal_balance_warning(self, journal_service, organization_id, test_actor_id, periods_2024, standard_accounts):
        overdraw = journal_service.create_draft(
            organization_id,
            date(2024, 1, 15),
            [
                LineInput(account_id=standard_accounts["rent"].id, debit=Decimal("50")),
                LineInput(account_id=standard_accounts["cash"].id, credit=Decimal("50")),
            ],
            test_actor_id,
        )
        result = journal_service.validate_entry(overdraw.id)
        assert result.can_post
        assert any("101" in w for w in result.warnings)

    def test_posted_entry_cannot_post(self, journal_service, draft, test_actor_id):
        journal_service.post(draft.id, test_actor_id)
        assert not journal_service.validate_entry(draft.id).can_post


class TestCopyBulkPreview:
    def test_copy_creates_new_draft(self, journal_service, draft, test_actor_id):
        journal_service.post(draft.id, test_actor_id)
        copy = journal_service.copy_entry(draft.id, date(2024, 2, 15), test_actor_id)

        assert copy.id != draft.id
        assert copy.is_draft
        assert copy.entry_date == date(2024, 2, 15)
        assert copy.entry_metadata == {"copied_from": str(draft.id)}
        assert [(l.account_id, l.debit_amount, l.credit_amount) for l in copy.lines] == [
            (l.account_id, l.debit_amount, l.credit_amount) for l in draft.lines
        ]

    def test_bulk_post_isolates_failures(self, journal_service, period_service, organization_id, test_actor_id, periods_2024, cash_sale):
        jan = journal_service.create_draft(organization_id, date(2024, 1, 10), cash_sale("10"), test_actor_id)
        feb = journal_service.create_draft(organization_id, date(2024, 2, 10), cash_sale("20"), test_actor_id)
        period_service.close_period(organization_id, "2024-01", test_actor_id)

        result = journal_service.bulk_post([jan.id, feb.id], test_actor_id)

        assert result.posted == 1
        assert result.failed == 1
        failed = next(r for r in result.results if not r.success)
        assert failed.entry_id == jan.id
        assert failed.error_code == "PERIOD_CLOSED"
        assert journal_service.get_entry(feb.id).is_posted

    def test_bulk_delete_skips_posted_and_unknown(self, journal_service, organization_id, test_actor_id, periods_2024, cash_sale):
        first = journal_service.create_draft(organization_id, date(2024, 1, 10), cash_sale("10"), test_actor_id)
        second = journal_service.create_draft(organization_id, date(2024, 1, 11), cash_sale("20"), test_actor_id)
        posted = journal_service.create_draft(organization_id, date(2024, 1, 12), cash_sale("30"), test_actor_id)
        journal_service.post(posted.id, test_actor_id)
        missing = uuid4()

        result = journal_service.bulk_delete([first.id, posted.id, missing, second.id], test_actor_id)

        assert result.deleted == 2
        assert result.skipped == 2
        by_id = {r.entry_id: r for r in result.results}
        assert by_id[first.id].deleted and by_id[second.id].deleted
        assert not by_id[posted.id].deleted
        assert by_id[posted.id].entry_number == "JE/2024/01/0001"
        assert "only draft entries" in by_id[posted.id].reason
        assert not by_id[missing].deleted
        assert by_id[missing].entry_number is None
        with pytest.raises(EntryNotFoundError):
            journal_service.get_entry(first.id)
        assert journal_service.get_entry(posted.id).is_posted

    def test_bulk_delete_audits_each_deletion(self, journal_service, draft, test_actor_id, audit_sink):
        journal_service.bulk_delete([draft.id], test_actor_id)
        assert audit_sink.actions().count(AuditAction.ENTRY_DELETED) == 1

    def test_preview_does_not_consume(self, journal_service, draft, organization_id, test_actor_id):
        preview = journal_service.preview_entry_number(organization_id, EntryType.STANDARD, date(2024, 1, 15))
        assert preview == journal_service.preview_entry_number(organization_id, EntryType.STANDARD, date(2024, 1, 15))
        assert journal_service.post(draft.id, test_actor_id).entry_number == preview
