"""
Test suite for schedules module

Tests matching tendered repayments against ordered installments, overdue
marking, and loan date derivation per repayment cycle.
"""

import pytest
from decimal import Decimal
from datetime import datetime, timezone, date

from lending_engine.errors import InvalidInput
from lending_engine.schedules import (
    Installment, InstallmentStatus, RepaymentCycle, RepaymentScheduleMatcher,
    add_months, calculate_loan_dates
)


def make_schedule(*statuses):
    """Three 100 + 10 installments, with optional starting statuses"""
    now = datetime.now(timezone.utc)
    statuses = statuses or (InstallmentStatus.PENDING,) * 3
    return [
        Installment(
            id=f"inst-{n}",
            created_at=now,
            updated_at=now,
            loan_id="loan-1",
            installment_no=n,
            due_date=date(2024, n, 1),
            principal_amount=Decimal('100'),
            interest_amount=Decimal('10'),
            status=status
        )
        for n, status in enumerate(statuses, start=1)
    ]


def summary(updates):
    return [(u.installment_no, u.new_status) for u in updates]


@pytest.fixture
def matcher():
    """Create schedule matcher for tests"""
    return RepaymentScheduleMatcher()


class TestInstallment:
    """Test installment records"""

    def test_total_defaults_to_sum(self):
        """Test total amount is principal plus interest"""
        assert make_schedule()[0].total_amount == Decimal('110')

    def test_installment_numbers_start_at_one(self):
        """Test installment_no below 1 is rejected"""
        now = datetime.now(timezone.utc)
        with pytest.raises(InvalidInput):
            Installment(id="x", created_at=now, updated_at=now, loan_id="loan-1",
                        installment_no=0, due_date=date(2024, 1, 1),
                        principal_amount=100, interest_amount=10)

    def test_round_trip_through_dict(self):
        """Test an installment survives to_dict/from_dict"""
        installment = make_schedule()[1]
        restored = Installment.from_dict(installment.to_dict())
        assert restored.due_date == date(2024, 2, 1)
        assert restored.total_amount == Decimal('110')
        assert restored.status == InstallmentStatus.PENDING


class TestScheduleMatching:
    """Test repayment matching against the schedule"""

    def test_first_paid_second_partial(self, matcher):
        """Test 150 + 15 pays the first installment and partly covers the second"""
        updates = matcher.match(make_schedule(), Decimal('150'), Decimal('15'))
        assert summary(updates) == [
            (1, InstallmentStatus.PAID),
            (2, InstallmentStatus.PARTIAL),
        ]

    def test_exact_cover_pays_all(self, matcher):
        """Test tendering the whole schedule pays every installment"""
        updates = matcher.match(make_schedule(), Decimal('300'), Decimal('30'))
        assert [s for _, s in summary(updates)] == [InstallmentStatus.PAID] * 3

    def test_paid_installments_skipped(self, matcher):
        """Test already-paid installments are not matched again"""
        schedule = make_schedule(InstallmentStatus.PAID, InstallmentStatus.PENDING, InstallmentStatus.PENDING)
        updates = matcher.match(schedule, Decimal('100'), Decimal('10'))
        assert summary(updates) == [(2, InstallmentStatus.PAID)]

    def test_partial_not_reported_twice(self, matcher):
        """Test an installment already partial is not re-marked partial"""
        schedule = make_schedule(InstallmentStatus.PARTIAL, InstallmentStatus.PENDING, InstallmentStatus.PENDING)
        assert matcher.match(schedule, Decimal('50'), Decimal('5')) == []

    def test_interest_without_principal_is_partial(self, matcher):
        """Test both portions must be covered for an installment to be paid"""
        updates = matcher.match(make_schedule(), Decimal('0'), Decimal('10'))
        assert summary(updates) == [(1, InstallmentStatus.PARTIAL)]

    def test_remainder_not_spread(self, matcher):
        """Test matching stops at the first partially covered installment"""
        updates = matcher.match(make_schedule(), Decimal('250'), Decimal('5'))
        assert summary(updates) == [(1, InstallmentStatus.PARTIAL)]

    def test_within_tolerance_counts_as_paid(self, matcher):
        """Test amounts within a cent of the installment pay it"""
        updates = matcher.match(make_schedule(), Decimal('99.995'), Decimal('9.995'))
        assert summary(updates)[0] == (1, InstallmentStatus.PAID)

    def test_exactly_one_cent_short_counts_as_paid(self, matcher):
        """Test a tender one cent short on each portion still pays the installment"""
        updates = matcher.match(make_schedule(), Decimal('99.99'), Decimal('9.99'))
        assert summary(updates) == [(1, InstallmentStatus.PAID)]

    def test_more_than_one_cent_short_is_partial(self, matcher):
        """Test a tender beyond the tolerance leaves the installment partial"""
        updates = matcher.match(make_schedule(), Decimal('99.98'), Decimal('10'))
        assert summary(updates) == [(1, InstallmentStatus.PARTIAL)]

    def test_zero_tender(self, matcher):
        """Test nothing tendered changes nothing"""
        assert matcher.match(make_schedule(), 0, 0) == []

    def test_out_of_order_input(self, matcher):
        """Test installments are matched by number whatever the input order"""
        schedule = list(reversed(make_schedule()))
        updates = matcher.match(schedule, Decimal('100'), Decimal('10'))
        assert summary(updates) == [(1, InstallmentStatus.PAID)]

    def test_empty_schedule(self, matcher):
        """Test a loan without a schedule yields no updates"""
        assert matcher.match([], Decimal('100'), Decimal('10')) == []


class TestOverdue:
    """Test overdue detection"""

    def test_pending_and_partial_past_due(self, matcher):
        """Test unpaid installments due before as_of become overdue"""
        schedule = make_schedule(InstallmentStatus.PAID, InstallmentStatus.PARTIAL, InstallmentStatus.PENDING)
        updates = matcher.overdue_updates(schedule, as_of=date(2024, 3, 1))
        assert summary(updates) == [(2, InstallmentStatus.OVERDUE)]

    def test_datetime_as_of(self, matcher):
        """Test a datetime as_of is compared by its calendar date"""
        schedule = make_schedule()
        assert matcher.overdue_updates(schedule, as_of=datetime(2024, 1, 1, 23, 59)) == []
        updates = matcher.overdue_updates(schedule, as_of=datetime(2024, 2, 1, 8, tzinfo=timezone.utc))
        assert summary(updates) == [(1, InstallmentStatus.OVERDUE)]

    def test_iso_string_as_of(self, matcher):
        """Test an ISO date string is accepted as as_of"""
        updates = matcher.overdue_updates(make_schedule(), as_of="2024-02-02")
        assert summary(updates) == [(1, InstallmentStatus.OVERDUE), (2, InstallmentStatus.OVERDUE)]


class TestLoanDates:
    """Test maturity and first repayment dates"""

    def test_add_months_clamps_month_end(self):
        """Test adding a month to January 31 lands on the last day of February"""
        assert add_months(date(2024, 1, 31), 1) == date(2024, 2, 29)
        assert add_months(date(2023, 11, 15), 3) == date(2024, 2, 15)

    def test_monthly(self):
        """Test a monthly cycle repays one month after origination"""
        dates = calculate_loan_dates(date(2024, 1, 31), 12)
        assert dates.maturity_date == date(2025, 1, 31)
        assert dates.first_repayment_date == date(2024, 2, 29)

    def test_fortnightly(self):
        """Test a fortnightly cycle repays after two weeks"""
        dates = calculate_loan_dates(date(2024, 1, 1), 6, RepaymentCycle.FORTNIGHTLY)
        assert dates.first_repayment_date == date(2024, 1, 15)

    def test_quarterly_by_name(self):
        """Test cycles may be given by value"""
        dates = calculate_loan_dates(date(2024, 1, 31), 12, "quarterly")
        assert dates.first_repayment_date == date(2024, 4, 30)

    def test_bullet(self):
        """Test a bullet loan repays at maturity"""
        dates = calculate_loan_dates(date(2024, 1, 1), 18, RepaymentCycle.BULLET)
        assert dates.first_repayment_date == dates.maturity_date == date(2025, 7, 1)

    def test_invalid_inputs(self):
        """Test bad tenures and unknown cycles raise InvalidInput"""
        with pytest.raises(InvalidInput):
            calculate_loan_dates(date(2024, 1, 1), 0)
        with pytest.raises(InvalidInput):
            calculate_loan_dates(date(2024, 1, 1), 12, "weekly")
