"""Journal traversal: reversal pairs, pending schedules, corrections, listings and statistics."""

from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest

from ledger_kernel.domain.dtos import EntryOrder, EntryQuery, LineInput
from ledger_kernel.exceptions import EntryNotFoundError, InvalidStateError
from ledger_kernel.models.journal import EntryType


@pytest.fixture
def pair(post_entry, reversal_service, standard_accounts, periods_2024, test_actor_id):
    original = post_entry(standard_accounts["rent"], standard_accounts["accrued"], "700.00", date(2024, 3, 31))
    result = reversal_service.reverse(original.id, date(2024, 4, 1), "Accrual release", test_actor_id)
    return original, result


class TestReversalDetails:
    def test_from_original_side(self, journal_selector, pair, standard_accounts):
        original, result = pair
        details = journal_selector.reversal_details(original.id)

        assert details.original_entry_id == original.id
        assert details.reversing_entry_id == result.reversing_entry_id
        assert details.reversal_reason == "Accrual release"
        assert details.is_balanced
        effects = {e.account_id: e for e in details.net_effect}
        assert effects[standard_accounts["rent"].id].debit == Decimal("700.00")
        assert effects[standard_accounts["rent"].id].credit == Decimal("700.00")

    def test_from_mirror_side(self, journal_selector, pair):
        original, result = pair
        details = journal_selector.reversal_details(result.reversing_entry_id)
        assert details.original_entry_number == original.entry_number
        assert details.reversing_entry_number == result.reversing_entry_number

    def test_unreversed_entry(self, journal_selector, post_entry, standard_accounts, periods_2024):
        entry = post_entry(standard_accounts["cash"], standard_accounts["revenue"], "1", date(2024, 1, 5))
        with pytest.raises(InvalidStateError):
            journal_selector.reversal_details(entry.id)

    def test_unknown_entry(self, journal_selector):
        with pytest.raises(EntryNotFoundError):
            journal_selector.get_entry(uuid4())


class TestListing:
    def test_list_reversals_by_date(self, journal_selector, pair, organization_id):
        _, result = pair
        assert [e.id for e in journal_selector.list_reversals(organization_id)] == [result.reversing_entry_id]
        assert journal_selector.list_reversals(organization_id, date_from=date(2024, 4, 2)) == []
        assert journal_selector.list_reversals(organization_id, date_to=date(2024, 3, 31)) == []

    def test_pending_auto_reversals(self, journal_selector, reversal_service, post_entry, standard_accounts, organization_id, periods_2024, test_actor_id):
        early = post_entry(standard_accounts["rent"], standard_accounts["accrued"], "10", date(2024, 1, 31))
        late = post_entry(standard_accounts["rent"], standard_accounts["accrued"], "20", date(2024, 2, 29))
        reversal_service.schedule_auto_reversal(early.id, date(2024, 2, 1), test_actor_id)
        reversal_service.schedule_auto_reversal(late.id, date(2024, 3, 1), test_actor_id)

        assert [e.id for e in journal_selector.pending_auto_reversals(organization_id)] == [early.id, late.id]
        assert [e.id for e in journal_selector.pending_auto_reversals(organization_id, date(2024, 2, 15))] == [early.id]

    def test_corrections_for(self, journal_selector, reversal_service, post_entry, standard_accounts, periods_2024, test_actor_id):
        entry = post_entry(standard_accounts["rent"], standard_accounts["accrued"], "100", date(2024, 1, 31))
        correction = reversal_service.create_correction(
            entry.id,
            date(2024, 2, 2),
            [
                LineInput(account_id=standard_accounts["rent"].id, debit=Decimal("110")),
                LineInput(account_id=standard_accounts["accrued"].id, credit=Decimal("110")),
            ],
            "Invoice higher than accrued",
            test_actor_id,
        )
        assert [e.id for e in journal_selector.corrections_for(entry.id)] == [correction.id]


@pytest.fixture
def journal(post_entry, journal_service, standard_accounts, organization_id, test_actor_id, periods_2024):
    sale = post_entry(
        standard_accounts["receivables"], standard_accounts["revenue"], "1200.00", date(2024, 1, 15),
        description="Consulting invoice", reference="INV-001",
    )
    rent = post_entry(
        standard_accounts["rent"], standard_accounts["cash"], "800.00", date(2024, 2, 1),
        description="February rent",
    )
    accrual = post_entry(
        standard_accounts["salaries"], standard_accounts["accrued"], "300.00", date(2024, 2, 29),
        entry_type=EntryType.ADJUSTING, description="Salary accrual",
    )
    draft = journal_service.create_draft(
        organization_id,
        date(2024, 2, 10),
        [
            LineInput(account_id=standard_accounts["cash"].id, debit=Decimal("50.00")),
            LineInput(account_id=standard_accounts["revenue"].id, credit=Decimal("50.00")),
        ],
        test_actor_id,
        description="Counter sale",
    )
    return {"sale": sale, "rent": rent, "accrual": accrual, "draft": draft}


def ids(page):
    return [summary.entry_id for summary in page.entries]


class TestQueryEntries:
    def test_newest_first_by_default(self, journal_selector, journal, organization_id):
        page = journal_selector.query_entries(organization_id)

        assert ids(page) == [journal["accrual"].id, journal["draft"].id, journal["rent"].id, journal["sale"].id]
        assert page.total == 4
        assert not page.has_more

    def test_summary_carries_base_totals(self, journal_selector, journal, organization_id):
        sale = next(s for s in journal_selector.query_entries(organization_id).entries if s.entry_id == journal["sale"].id)

        assert sale.entry_number == "JE/2024/01/0001"
        assert (sale.status, sale.entry_type) == ("posted", "standard")
        assert sale.total_debit == sale.total_credit == Decimal("1200.00")
        assert sale.line_count == 2
        assert sale.reference == "INV-001"

    def test_status_and_type_filters(self, journal_selector, journal, organization_id):
        drafts = journal_selector.query_entries(organization_id, EntryQuery(statuses=("draft",)))
        assert ids(drafts) == [journal["draft"].id]
        assert drafts.entries[0].entry_number is None

        adjusting = journal_selector.query_entries(organization_id, EntryQuery(entry_types=("adjusting",)))
        assert ids(adjusting) == [journal["accrual"].id]
        assert adjusting.entries[0].entry_number.startswith("AJ/")

    def test_period_date_and_account_filters(self, journal_selector, journal, organization_id, periods_2024, standard_accounts):
        february = journal_selector.query_entries(organization_id, EntryQuery(period_id=periods_2024["2024-02"].id))
        assert set(ids(february)) == {journal["rent"].id, journal["draft"].id, journal["accrual"].id}

        early_february = journal_selector.query_entries(
            organization_id, EntryQuery(date_from=date(2024, 2, 1), date_to=date(2024, 2, 10))
        )
        assert set(ids(early_february)) == {journal["rent"].id, journal["draft"].id}

        cash = journal_selector.query_entries(organization_id, EntryQuery(account_id=standard_accounts["cash"].id))
        assert set(ids(cash)) == {journal["rent"].id, journal["draft"].id}

    @pytest.mark.parametrize(
        "term, expected",
        [("inv-001", "sale"), ("FEBRUARY", "rent"), ("AJ/2024", "accrual")],
    )
    def test_search_is_case_insensitive(self, journal_selector, journal, organization_id, term, expected):
        page = journal_selector.query_entries(organization_id, EntryQuery(search=term))
        assert ids(page) == [journal[expected].id]

    def test_pages_in_requested_order(self, journal_selector, journal, organization_id):
        first = journal_selector.query_entries(organization_id, EntryQuery(order_by=EntryOrder.DATE_ASC, limit=2))
        second = journal_selector.query_entries(organization_id, EntryQuery(order_by=EntryOrder.DATE_ASC, limit=2, offset=2))

        assert ids(first) == [journal["sale"].id, journal["rent"].id]
        assert first.has_more
        assert ids(second) == [journal["draft"].id, journal["accrual"].id]
        assert second.total == 4
        assert not second.has_more

    def test_order_by_amount(self, journal_selector, journal, organization_id):
        page = journal_selector.query_entries(organization_id, EntryQuery(order_by=EntryOrder.AMOUNT_DESC))
        assert ids(page) == [journal["sale"].id, journal["rent"].id, journal["accrual"].id, journal["draft"].id]

    def test_other_organization_sees_nothing(self, journal_selector, journal):
        page = journal_selector.query_entries(uuid4())
        assert page.entries == ()
        assert page.total == 0


class TestEntryStats:
    def test_counts_and_totals(self, journal_selector, journal, organization_id):
        stats = journal_selector.entry_stats(organization_id)

        assert stats.total_entries == 4
        assert (stats.draft_entries, stats.posted_entries, stats.reversed_entries) == (1, 3, 0)
        assert stats.by_type == {"standard": 3, "adjusting": 1}
        assert stats.total_debit == stats.total_credit == Decimal("2350.00")
        assert stats.last_entry_date == date(2024, 2, 29)
        assert stats.last_posted_at is not None

    def test_period_filter(self, journal_selector, journal, organization_id, periods_2024):
        stats = journal_selector.entry_stats(organization_id, period_id=periods_2024["2024-01"].id)

        assert stats.total_entries == 1
        assert stats.by_status == {"posted": 1}
        assert stats.total_debit == Decimal("1200.00")

    def test_reversal_counted(self, journal_selector, reversal_service, journal, organization_id, test_actor_id):
        reversal_service.reverse(journal["rent"].id, date(2024, 3, 1), "Paid twice", test_actor_id)
        stats = journal_selector.entry_stats(organization_id)

        assert stats.total_entries == 5
        assert stats.reversed_entries == 1

    def test_empty_organization(self, journal_selector):
        stats = journal_selector.entry_stats(uuid4())

        assert stats.total_entries == 0
        assert stats.by_status == {}
        assert stats.total_debit == 0
        assert stats.last_entry_date is None
