"""
Property checks of the balance arithmetic.

Random posting sequences (including back-dated ones) must leave:
- the trial balance exactly balanced,
- every period row opening at the previous row's closing,
- period closings equal to the as-of account balance.
Random multi-currency entries that are accepted must have exactly equal
base totals and one positive side per line.
"""

import calendar
from datetime import date
from decimal import Decimal

from hypothesis import HealthCheck, given, settings
from hypothesis import strategies as st
from sqlalchemy import select

from ledger_kernel.domain.dtos import LineInput
from ledger_kernel.models.ledger import AccountPeriodBalance

POSTABLE = ["cash", "bank", "receivables", "payables", "accrued", "equity", "revenue", "rent", "salaries"]

amounts = st.decimals(min_value=Decimal("1.00"), max_value=Decimal("250000"), places=2)
rates = st.decimals(min_value=Decimal("0.01"), max_value=Decimal("500"), places=6)

postings = st.lists(
    st.tuples(
        st.sampled_from(POSTABLE),
        st.sampled_from(POSTABLE),
        amounts,
        st.integers(min_value=1, max_value=12),
    ),
    min_size=1,
    max_size=12,
)

property_settings = settings(
    max_examples=25,
    deadline=None,
    suppress_health_check=[HealthCheck.function_scoped_fixture, HealthCheck.too_slow],
)


class TestLedgerProperties:
    @property_settings
    @given(sequence=postings)
    def test_random_postings_keep_ledger_consistent(
        self, session, post_entry, balance_selector, standard_accounts, periods_2024, organization_id, sequence
    ):
        savepoint = session.begin_nested()
        try:
            for debit, credit, amount, month in sequence:
                post_entry(standard_accounts[debit], standard_accounts[credit], amount, date(2024, month, 15))

            tb = balance_selector.trial_balance(organization_id, date(2024, 12, 31))
            assert tb.is_balanced
            assert all(row.debit == 0 or row.credit == 0 for row in tb.rows)

            rows = session.execute(
                select(AccountPeriodBalance)
                .where(AccountPeriodBalance.organization_id == organization_id)
                .order_by(AccountPeriodBalance.account_id, AccountPeriodBalance.period_start)
                .execution_options(populate_existing=True)
            ).scalars().all()

            previous = None
            for row in rows:
                if previous is not None and previous.account_id == row.account_id:
                    assert row.opening_balance == previous.closing_balance
                else:
                    assert row.opening_balance == 0
                month_end = date(
                    row.period_start.year,
                    row.period_start.month,
                    calendar.monthrange(row.period_start.year, row.period_start.month)[1],
                )
                balance = balance_selector.account_balance(row.account_id, month_end)
                assert row.closing_balance == balance.balance
                previous = row
        finally:
            savepoint.rollback()

    @property_settings
    @given(
        first=st.tuples(amounts, rates),
        second=st.tuples(amounts, rates),
    )
    def test_accepted_entries_have_exact_base_totals(
        self, session, journal_service, policy, standard_accounts, periods_2024, organization_id, test_actor_id, first, second
    ):
        # The offsetting line is rounded once over the unrounded sum, so the
        # base totals may differ by up to one cent before absorption
        offset = policy.round(first[0] * first[1] + second[0] * second[1])
        lines = [
            LineInput(account_id=standard_accounts["bank"].id, debit=first[0], currency="EUR", exchange_rate=first[1]),
            LineInput(account_id=standard_accounts["receivables"].id, debit=second[0], currency="GBP", exchange_rate=second[1]),
            LineInput(account_id=standard_accounts["revenue"].id, credit=offset),
        ]

        savepoint = session.begin_nested()
        try:
            entry = journal_service.create_draft(organization_id, date(2024, 2, 1), lines, test_actor_id)
            assert entry.total_base_debit == entry.total_base_credit
            for line in entry.lines:
                assert (line.base_debit > 0) != (line.base_credit > 0)
                assert line.base_debit == policy.round(line.base_debit)
                assert line.base_credit == policy.round(line.base_credit)
        finally:
            savepoint.rollback()
