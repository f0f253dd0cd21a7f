"""
Repayment Schedule Module

Installment records, matching of tendered repayments against a loan's
ordered installment schedule, overdue marking, and derivation of a loan's
maturity and first repayment dates from its repayment cycle.
"""

from decimal import Decimal
from datetime import date, datetime, timedelta
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional
from enum import Enum
import calendar

from .currency import ZERO, MONEY_TOLERANCE, Numeric, non_negative
from .errors import InvalidInput
from .interest import DateLike, as_calendar_date
from .storage import StorageRecord, parse_date, parse_datetime, parse_decimal


class InstallmentStatus(Enum):
    """Installment repayment states"""
    PENDING = "pending"
    PARTIAL = "partial"
    PAID = "paid"
    OVERDUE = "overdue"


class RepaymentCycle(Enum):
    """How often a debtor repays"""
    FORTNIGHTLY = "fortnightly"
    MONTHLY = "monthly"
    BI_MONTHLY = "bi_monthly"
    QUARTERLY = "quarterly"
    QUADRIMESTER = "quadrimester"
    SEMIANNUAL = "semiannual"
    ANNUALLY = "annually"
    BULLET = "bullet"          # Single repayment at maturity


# Months until the first repayment, for the month-based cycles
CYCLE_MONTHS = {
    RepaymentCycle.MONTHLY: 1,
    RepaymentCycle.BI_MONTHLY: 2,
    RepaymentCycle.QUARTERLY: 3,
    RepaymentCycle.QUADRIMESTER: 4,
    RepaymentCycle.SEMIANNUAL: 6,
    RepaymentCycle.ANNUALLY: 12,
}


@dataclass
class Installment(StorageRecord):
    """One entry of a loan's repayment schedule"""
    loan_id: str
    installment_no: int                 # 1-based, ordering significant
    due_date: date
    principal_amount: Decimal
    interest_amount: Decimal
    total_amount: Optional[Decimal] = None
    status: InstallmentStatus = InstallmentStatus.PENDING
    paid_at: Optional[datetime] = None

    def __post_init__(self):
        if self.installment_no < 1:
            raise InvalidInput(f"installment_no must be >= 1, got {self.installment_no}")
        self.principal_amount = non_negative(self.principal_amount, "principal_amount")
        self.interest_amount = non_negative(self.interest_amount, "interest_amount")
        if self.total_amount is None:
            self.total_amount = self.principal_amount + self.interest_amount

    @property
    def is_paid(self) -> bool:
        return self.status == InstallmentStatus.PAID

    @classmethod
    def from_dict(cls, data: Dict) -> 'Installment':
        return cls(
            id=data['id'],
            created_at=parse_datetime(data['created_at']),
            updated_at=parse_datetime(data['updated_at']),
            loan_id=data['loan_id'],
            installment_no=data['installment_no'],
            due_date=parse_date(data['due_date']),
            principal_amount=parse_decimal(data['principal_amount']),
            interest_amount=parse_decimal(data['interest_amount']),
            total_amount=parse_decimal(data.get('total_amount')),
            status=InstallmentStatus(data['status']),
            paid_at=parse_datetime(data.get('paid_at'))
        )


@dataclass(frozen=True)
class InstallmentUpdate:
    """Status change the matcher wants applied to an installment"""
    installment_id: str
    installment_no: int
    new_status: InstallmentStatus


class RepaymentScheduleMatcher:
    """
    Marks installments paid or partial against a tendered repayment

    Installments are walked in ascending ``installment_no``, skipping those
    already paid. Each installment the remaining tender fully covers (within
    the tolerance) is marked paid and its amounts are taken from the pool.
    The first installment the remaining tender only partly covers is marked
    partial and matching stops there: the remainder is not spread over later
    installments.
    """

    def __init__(self, tolerance: Decimal = MONEY_TOLERANCE):
        self.tolerance = tolerance

    def match(
        self,
        schedule: Iterable[Installment],
        tender_principal: Numeric,
        tender_interest: Numeric
    ) -> List[InstallmentUpdate]:
        remaining_principal = non_negative(tender_principal, "tender_principal")
        remaining_interest = non_negative(tender_interest, "tender_interest")
        updates = []

        for installment in sorted(schedule, key=lambda i: i.installment_no):
            if installment.is_paid:
                continue
            if remaining_principal <= ZERO and remaining_interest <= ZERO:
                break

            covers_principal = remaining_principal >= installment.principal_amount - self.tolerance
            covers_interest = remaining_interest >= installment.interest_amount - self.tolerance

            if covers_principal and covers_interest:
                updates.append(InstallmentUpdate(
                    installment.id, installment.installment_no, InstallmentStatus.PAID
                ))
                remaining_principal = max(ZERO, remaining_principal - installment.principal_amount)
                remaining_interest = max(ZERO, remaining_interest - installment.interest_amount)
                continue

            if installment.status != InstallmentStatus.PARTIAL:
                updates.append(InstallmentUpdate(
                    installment.id, installment.installment_no, InstallmentStatus.PARTIAL
                ))
            break

        return updates

    def overdue_updates(self, schedule: Iterable[Installment], as_of: Optional[DateLike] = None) -> List[InstallmentUpdate]:
        """Pending or partial installments whose due date has passed"""
        as_of = as_calendar_date(as_of)
        return [
            InstallmentUpdate(i.id, i.installment_no, InstallmentStatus.OVERDUE)
            for i in sorted(schedule, key=lambda i: i.installment_no)
            if i.status in (InstallmentStatus.PENDING, InstallmentStatus.PARTIAL) and i.due_date < as_of
        ]


@dataclass(frozen=True)
class LoanDates:
    """Maturity and first repayment dates of a loan"""
    maturity_date: date
    first_repayment_date: date


def add_months(start_date: date, months: int) -> date:
    """Add months to a date, handling month-end edge cases"""
    month = start_date.month - 1 + months
    year = start_date.year + month // 12
    month = month % 12 + 1
    day = min(start_date.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


def calculate_loan_dates(origination_date: date, tenure_months: int,
                         cycle: RepaymentCycle = RepaymentCycle.MONTHLY) -> LoanDates:
    """
    Maturity date (origination + tenure) and first repayment date for a cycle

    Raises:
        InvalidInput: If tenure_months is not a positive integer
    """
    if isinstance(tenure_months, bool) or not isinstance(tenure_months, int) or tenure_months <= 0:
        raise InvalidInput(f"tenure_months must be a positive integer, got {tenure_months!r}")
    if isinstance(cycle, str):
        try:
            cycle = RepaymentCycle(cycle)
        except ValueError:
            raise InvalidInput(f"Unknown repayment cycle: {cycle!r}")

    maturity_date = add_months(origination_date, tenure_months)

    if cycle == RepaymentCycle.FORTNIGHTLY:
        first_repayment = origination_date + timedelta(weeks=2)
    elif cycle == RepaymentCycle.BULLET:
        first_repayment = maturity_date
    else:
        first_repayment = add_months(origination_date, CYCLE_MONTHS[cycle])

    return LoanDates(maturity_date=maturity_date, first_repayment_date=first_repayment)
