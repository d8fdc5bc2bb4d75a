"""
End-to-end bookkeeping scenarios.

Each test walks one realistic flow through the public services:
draft -> post -> report, reversal, scheduled reversal, correction, and a
year-end working trial balance.
"""

from datetime import date
from decimal import Decimal

import pytest

from ledger_kernel.domain.dtos import GroupBy, LineInput
from ledger_kernel.exceptions import AlreadyPostedError, DateOrderError, InvalidStateError
from ledger_kernel.models.journal import JournalEntryStatus


@pytest.fixture
def cash_sale(journal_service, organization_id, test_actor_id, standard_accounts, periods_2024):
    """Cash 5000 Dr / Revenue 5000 Cr dated 15 January, posted."""
    draft = journal_service.create_draft(
        organization_id,
        date(2024, 1, 15),
        [
            LineInput(account_id=standard_accounts["cash"].id, debit=Decimal("5000")),
            LineInput(account_id=standard_accounts["revenue"].id, credit=Decimal("5000")),
        ],
        test_actor_id,
        description="Counter sales",
    )
    return journal_service.post(draft.id, test_actor_id)


class TestPostAndReport:
    def test_posted_sale_shows_in_balance(self, balance_selector, cash_sale, standard_accounts):
        balance = balance_selector.account_balance(standard_accounts["cash"].id, date(2024, 1, 31))
        assert balance.balance == Decimal("5000")
        assert balance.debit == Decimal("5000")
        assert balance.credit == 0

    def test_posting_is_one_way(self, journal_service, reversal_service, cash_sale, test_actor_id):
        with pytest.raises(AlreadyPostedError):
            journal_service.post(cash_sale.id, test_actor_id)
        with pytest.raises(InvalidStateError):
            journal_service.update_draft(cash_sale.id, test_actor_id, description="Edited")

        reversal_service.reverse(cash_sale.id, date(2024, 3, 15), "dup", test_actor_id)
        with pytest.raises(InvalidStateError):
            journal_service.post(cash_sale.id, test_actor_id)
        assert journal_service.get_entry(cash_sale.id).status == JournalEntryStatus.REVERSED


class TestReversalScenario:
    def test_reverse_in_march(self, reversal_service, journal_service, balance_selector, cash_sale, standard_accounts, test_actor_id):
        result = reversal_service.reverse(cash_sale.id, date(2024, 3, 15), "dup", test_actor_id)

        assert journal_service.get_entry(cash_sale.id).status == JournalEntryStatus.REVERSED
        mirror = journal_service.get_entry(result.reversing_entry_id)
        assert [(l.account_id, l.debit_amount, l.credit_amount) for l in mirror.lines] == [
            (standard_accounts["cash"].id, Decimal("0"), Decimal("5000")),
            (standard_accounts["revenue"].id, Decimal("5000"), Decimal("0")),
        ]
        assert balance_selector.account_balance(standard_accounts["cash"].id, date(2024, 3, 31)).balance == 0
        # History before the reversal date is untouched
        assert balance_selector.account_balance(standard_accounts["cash"].id, date(2024, 2, 29)).balance == Decimal("5000")

    def test_reversal_dated_before_entry(self, reversal_service, post_entry, standard_accounts, periods_2024, test_actor_id):
        entry = post_entry(standard_accounts["cash"], standard_accounts["revenue"], "5000", date(2024, 3, 15))
        with pytest.raises(DateOrderError):
            reversal_service.reverse(entry.id, date(2024, 3, 10), "dup", test_actor_id)


class TestScheduledReversalScenario:
    def test_sweep_reverses_on_schedule(
        self, reversal_service, journal_service, balance_selector, post_entry, standard_accounts, periods_2024, test_actor_id
    ):
        accrual = post_entry(standard_accounts["rent"], standard_accounts["accrued"], "900.00", date(2024, 3, 1))
        reversal_service.schedule_auto_reversal(accrual.id, date(2024, 4, 1), test_actor_id)

        result = reversal_service.run_auto_reversal_sweep(date(2024, 4, 1), test_actor_id)

        entry = journal_service.get_entry(accrual.id)
        assert result.successful == 1
        assert entry.status == JournalEntryStatus.REVERSED
        assert entry.auto_reverse_date is None
        assert balance_selector.account_balance(standard_accounts["accrued"].id, date(2024, 4, 1)).balance == 0


class TestCorrectionScenario:
    def test_correction_fixes_aggregate_only(
        self, reversal_service, journal_service, balance_selector, journal_selector, cash_sale, standard_accounts, test_actor_id
    ):
        reversal_service.create_correction(
            cash_sale.id,
            date(2024, 1, 20),
            [
                LineInput(account_id=standard_accounts["bank"].id, debit=Decimal("5000")),
                LineInput(account_id=standard_accounts["revenue"].id, credit=Decimal("5000")),
            ],
            "Banked, not cash",
            test_actor_id,
        )

        assert balance_selector.account_balance(standard_accounts["cash"].id, date(2024, 1, 31)).balance == 0
        assert balance_selector.account_balance(standard_accounts["bank"].id, date(2024, 1, 31)).balance == Decimal("5000")
        assert balance_selector.account_balance(standard_accounts["revenue"].id, date(2024, 1, 31)).balance == Decimal("5000")
        assert journal_service.get_entry(cash_sale.id).total_debit == Decimal("5000")
        assert len(journal_selector.corrections_for(cash_sale.id)) == 1


class TestYearEndScenario:
    def test_year_end_workspace(
        self,
        post_entry,
        wtb_service,
        balance_selector,
        standard_accounts,
        organization_id,
        test_actor_id,
        periods_2024,
    ):
        post_entry(standard_accounts["cash"], standard_accounts["equity"], "20000.00", date(2024, 1, 2))
        post_entry(standard_accounts["receivables"], standard_accounts["revenue"], "12000.00", date(2024, 5, 10))
        post_entry(standard_accounts["cash"], standard_accounts["receivables"], "9000.00", date(2024, 7, 1))
        post_entry(standard_accounts["salaries"], standard_accounts["cash"], "6000.00", date(2024, 11, 30))

        tb = balance_selector.trial_balance(organization_id, date(2024, 12, 31), group_by=GroupBy.PARENT)
        assert tb.is_balanced

        view = wtb_service.create_working_trial_balance(
            organization_id, date(2024, 12, 31), "FY2024 close", test_actor_id
        )
        accruals = wtb_service.add_adjustment_column(view.workspace_id, "December accruals", test_actor_id)
        wtb_service.record_adjustment(view.workspace_id, accruals.column_id, standard_accounts["rent"].id, "1000", test_actor_id)
        wtb_service.record_adjustment(view.workspace_id, accruals.column_id, standard_accounts["accrued"].id, "-1000", test_actor_id)

        locked = wtb_service.lock_working_trial_balance(view.workspace_id, test_actor_id, reason="Audited")

        assert locked.status == "locked"
        assert locked.total_adjusted_debit == locked.total_adjusted_credit == Decimal("33000.00")
        assert locked.total_unadjusted_debit == Decimal("32000.00")
