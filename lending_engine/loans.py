"""
Loan Module

Handles the debtor side of the book: loan records, repayment allocation
across principal and interest, the append-only repayment ledger, schedule
matching, and the archive / restore / permanent-delete lifecycle.
"""

from decimal import Decimal
from datetime import datetime, timezone, date
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Tuple
from enum import Enum
import logging
import uuid

from .currency import ZERO, MONEY_TOLERANCE, Numeric, amounts_match, non_negative
from .errors import (
    ConcurrentModification, ExceedsDue, InvalidInput, InvalidTransition,
    LendingError, NonPositive, NotFound
)
from .interest import DateLike, InterestAccrualCalculator
from .logging_config import log_action
from .rbac import CapabilitySet, Permission, check
from .schedules import (
    Installment, InstallmentStatus, InstallmentUpdate, RepaymentCycle,
    RepaymentScheduleMatcher, add_months
)
from .storage import (
    StorageInterface, StorageRecord, days_until_deletion, parse_date, parse_datetime,
    parse_decimal
)


logger = logging.getLogger("lending.loans")


class LoanStatus(Enum):
    """Loan lifecycle states"""
    PERFORMING = "performing"          # Repaying normally
    NON_PERFORMING = "non_performing"  # Behind on repayments
    FULL_PROVISION = "full_provision"  # Fully provisioned as a likely loss
    PRELIQUIDATED = "preliquidated"    # Principal repaid before maturity
    REPAID = "repaid"                  # Principal repaid
    OVERDUE = "overdue"
    ARCHIVED = "archived"              # Soft-deleted by staff


CLOSED_STATUSES = {LoanStatus.PRELIQUIDATED, LoanStatus.REPAID}


class PaymentType(Enum):
    """Whether a repayment settled everything due"""
    FULL = "full"
    PARTIAL = "partial"


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class Loan(StorageRecord):
    """Loan with terms and cumulative repayment totals"""
    debtor_id: str
    principal: Decimal
    interest_rate: Decimal              # Annual rate as a percentage, e.g. 12 for 12%
    tenure_months: int
    start_date: date
    end_date: Optional[date] = None
    amount_repaid: Decimal = ZERO       # Cumulative principal repaid
    interest_repaid: Decimal = ZERO     # Cumulative interest repaid
    status: LoanStatus = LoanStatus.PERFORMING
    reference_no: Optional[str] = None
    repayment_cycle: Optional[RepaymentCycle] = None
    archived_at: Optional[datetime] = None
    archive_reason: Optional[str] = None
    version: int = 1

    def __post_init__(self):
        self.principal = non_negative(self.principal, "principal")
        self.interest_rate = non_negative(self.interest_rate, "interest_rate")
        self.amount_repaid = non_negative(self.amount_repaid, "amount_repaid")
        self.interest_repaid = non_negative(self.interest_repaid, "interest_repaid")

        if isinstance(self.tenure_months, bool) or not isinstance(self.tenure_months, int) or self.tenure_months <= 0:
            raise InvalidInput(f"tenure_months must be a positive integer, got {self.tenure_months!r}")
        if self.amount_repaid > self.principal + MONEY_TOLERANCE:
            raise InvalidInput(
                f"amount_repaid {self.amount_repaid} cannot exceed principal {self.principal}"
            )
        if self.end_date is None:
            self.end_date = add_months(self.start_date, self.tenure_months)

    @property
    def principal_outstanding(self) -> Decimal:
        return max(ZERO, self.principal - self.amount_repaid)

    @property
    def is_archived(self) -> bool:
        return self.status == LoanStatus.ARCHIVED

    @property
    def is_fully_repaid(self) -> bool:
        return amounts_match(self.amount_repaid, self.principal)

    @classmethod
    def from_dict(cls, data: Dict) -> 'Loan':
        cycle = data.get('repayment_cycle')
        return cls(
            id=data['id'],
            created_at=parse_datetime(data['created_at']),
            updated_at=parse_datetime(data['updated_at']),
            debtor_id=data['debtor_id'],
            principal=parse_decimal(data['principal']),
            interest_rate=parse_decimal(data['interest_rate']),
            tenure_months=data['tenure_months'],
            start_date=parse_date(data['start_date']),
            end_date=parse_date(data.get('end_date')),
            amount_repaid=parse_decimal(data.get('amount_repaid'), ZERO),
            interest_repaid=parse_decimal(data.get('interest_repaid'), ZERO),
            status=LoanStatus(data['status']),
            reference_no=data.get('reference_no'),
            repayment_cycle=RepaymentCycle(cycle) if cycle else None,
            archived_at=parse_datetime(data.get('archived_at')),
            archive_reason=data.get('archive_reason'),
            version=data.get('version', 1)
        )


@dataclass(frozen=True)
class LoanRepayment:
    """Immutable repayment ledger entry"""
    id: str
    loan_id: str
    amount_principal: Decimal
    amount_interest: Decimal
    payment_type: PaymentType
    recorded_by: str
    created_at: datetime
    notes: Optional[str] = None

    @property
    def total_amount(self) -> Decimal:
        return self.amount_principal + self.amount_interest

    def to_dict(self) -> Dict:
        return {
            'id': self.id,
            'loan_id': self.loan_id,
            'amount_principal': str(self.amount_principal),
            'amount_interest': str(self.amount_interest),
            'payment_type': self.payment_type.value,
            'recorded_by': self.recorded_by,
            'created_at': self.created_at.isoformat(),
            'notes': self.notes
        }

    @classmethod
    def from_dict(cls, data: Dict) -> 'LoanRepayment':
        return cls(
            id=data['id'],
            loan_id=data['loan_id'],
            amount_principal=parse_decimal(data['amount_principal']),
            amount_interest=parse_decimal(data['amount_interest']),
            payment_type=PaymentType(data['payment_type']),
            recorded_by=data['recorded_by'],
            created_at=parse_datetime(data['created_at']),
            notes=data.get('notes')
        )


@dataclass(frozen=True)
class RepaymentAllocation:
    """Result of allocating a tendered repayment against a loan"""
    new_amount_repaid: Decimal
    new_interest_repaid: Decimal
    new_status: LoanStatus
    payment_type: PaymentType
    principal_due: Decimal
    interest_due: Decimal
    tender_principal: Decimal
    tender_interest: Decimal
    applied_principal: Decimal          # tender_principal capped at what was outstanding


class LoanRepaymentAllocator:
    """
    Allocates a tendered repayment across a loan's principal and interest

    Pure calculation; nothing is persisted here.
    """

    def __init__(self, calculator: Optional[InterestAccrualCalculator] = None,
                 tolerance: Decimal = MONEY_TOLERANCE):
        self.calculator = calculator or InterestAccrualCalculator()
        self.tolerance = tolerance

    def amounts_due(self, loan: Loan, as_of: Optional[DateLike] = None) -> Tuple[Decimal, Decimal]:
        """Outstanding (principal_due, interest_due), both floored at zero"""
        principal_due = max(ZERO, loan.principal - loan.amount_repaid)
        accrued = self.calculator.accrued_interest(
            loan.principal, loan.interest_rate, loan.start_date, as_of
        )
        interest_due = max(ZERO, accrued - loan.interest_repaid)
        return principal_due, interest_due

    def allocate(
        self,
        loan: Loan,
        tender_principal: Numeric,
        tender_interest: Numeric,
        as_of: Optional[DateLike] = None
    ) -> RepaymentAllocation:
        """
        Validate a tender and compute the loan's new totals and status

        Raises:
            InvalidInput: If either tendered amount is negative
            ExceedsDue: If tendered principal exceeds principal due
            NonPositive: If nothing is tendered
        """
        tender_principal = non_negative(tender_principal, "tender_principal")
        tender_interest = non_negative(tender_interest, "tender_interest")
        principal_due, interest_due = self.amounts_due(loan, as_of)

        if tender_principal > principal_due + self.tolerance:
            raise ExceedsDue(
                f"Principal amount {tender_principal} exceeds principal due {principal_due}"
            )
        if tender_principal + tender_interest <= ZERO:
            raise NonPositive("Repayment must be greater than zero")

        is_full = (
            amounts_match(tender_principal, principal_due, self.tolerance) and
            amounts_match(tender_interest, interest_due, self.tolerance)
        )
        payment_type = PaymentType.FULL if is_full else PaymentType.PARTIAL

        # Tolerated overshoot never lifts repaid principal above the principal
        new_amount_repaid = min(loan.principal, loan.amount_repaid + tender_principal)
        new_interest_repaid = loan.interest_repaid + tender_interest

        if amounts_match(new_amount_repaid, loan.principal, self.tolerance):
            new_status = LoanStatus.PRELIQUIDATED
        elif new_amount_repaid > ZERO:
            new_status = LoanStatus.PERFORMING
        else:
            new_status = loan.status

        return RepaymentAllocation(
            new_amount_repaid=new_amount_repaid,
            new_interest_repaid=new_interest_repaid,
            new_status=new_status,
            payment_type=payment_type,
            principal_due=principal_due,
            interest_due=interest_due,
            tender_principal=tender_principal,
            tender_interest=tender_interest,
            applied_principal=new_amount_repaid - loan.amount_repaid
        )


class LoanManager:
    """
    Applies repayments to stored loans

    Every mutation runs inside ``storage.atomic()``: the ledger entry, the
    loan totals and the installment statuses are committed together or not
    at all.
    """

    def __init__(
        self,
        storage: StorageInterface,
        allocator: Optional[LoanRepaymentAllocator] = None,
        matcher: Optional[RepaymentScheduleMatcher] = None,
        optimistic_locking: bool = True,
        retention_days: int = 30
    ):
        self.storage = storage
        self.allocator = allocator or LoanRepaymentAllocator()
        self.matcher = matcher or RepaymentScheduleMatcher(self.allocator.tolerance)
        self.optimistic_locking = optimistic_locking
        self.retention_days = retention_days

        self.loans_table = "loans"
        self.repayments_table = "loan_repayments"
        self.schedule_table = "repayment_schedules"

    @classmethod
    def from_config(cls, storage: StorageInterface, config) -> 'LoanManager':
        """Build a manager using the business rules of a LendingConfig"""
        tolerance = Decimal(config.money_tolerance)
        allocator = LoanRepaymentAllocator(
            InterestAccrualCalculator(config.day_count_basis), tolerance
        )
        return cls(
            storage,
            allocator=allocator,
            optimistic_locking=config.enable_optimistic_locking,
            retention_days=config.archive_retention_days
        )

    def create_loan(
        self,
        debtor_id: str,
        principal: Numeric,
        interest_rate: Numeric,
        tenure_months: int,
        start_date: date,
        repayment_cycle: Optional[RepaymentCycle] = None,
        reference_no: Optional[str] = None
    ) -> Loan:
        """Record a newly disbursed loan"""
        now = _now()
        loan = Loan(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            debtor_id=debtor_id,
            principal=principal,
            interest_rate=interest_rate,
            tenure_months=tenure_months,
            start_date=start_date,
            repayment_cycle=repayment_cycle,
            reference_no=reference_no
        )
        self.storage.save(self.loans_table, loan.id, loan.to_dict())

        log_action(
            logger, "info", "Loan created",
            action="create_loan", resource=f"loan:{loan.id}",
            extra={"debtor_id": debtor_id, "principal": str(loan.principal),
                   "interest_rate": str(loan.interest_rate), "tenure_months": tenure_months}
        )
        return loan

    def get_loan(self, loan_id: str) -> Loan:
        """Get loan by ID, raising NotFound if missing"""
        data = self.storage.load(self.loans_table, loan_id)
        if not data:
            raise NotFound(f"Loan {loan_id} not found")
        return Loan.from_dict(data)

    def list_loans(self, status: Optional[LoanStatus] = None,
                   debtor_id: Optional[str] = None) -> List[Loan]:
        filters = {}
        if status:
            filters['status'] = status.value
        if debtor_id:
            filters['debtor_id'] = debtor_id
        return [Loan.from_dict(data) for data in self.storage.find(self.loans_table, filters)]

    def amounts_due(self, loan_id: str, as_of: Optional[DateLike] = None) -> Tuple[Decimal, Decimal]:
        return self.allocator.amounts_due(self.get_loan(loan_id), as_of)

    def record_repayment(
        self,
        loan_id: str,
        tender_principal: Numeric,
        tender_interest: Numeric,
        recorded_by: str,
        notes: Optional[str] = None,
        expected_version: Optional[int] = None,
        capabilities: Optional[CapabilitySet] = None,
        as_of: Optional[DateLike] = None
    ) -> Tuple[LoanRepayment, Loan, List[InstallmentUpdate]]:
        """
        Record a repayment against a loan

        Args:
            loan_id: Loan being repaid
            tender_principal: Principal portion of the payment
            tender_interest: Interest portion of the payment
            recorded_by: Staff member recording the payment
            notes: Free-text notes stored on the ledger entry
            expected_version: Loan version the caller read; a mismatch
                raises ConcurrentModification
            capabilities: Caller's capabilities, or None if already authorized
            as_of: Accrual date for interest due (defaults to today)

        Returns:
            (ledger entry, updated loan, installment status changes)
        """
        check(capabilities, Permission.RECORD_REPAYMENT)

        try:
            with self.storage.atomic():
                loan = self.get_loan(loan_id)
                self._check_version(loan, expected_version)
                if loan.is_archived:
                    raise InvalidInput(f"Loan {loan_id} is archived")

                allocation = self.allocator.allocate(loan, tender_principal, tender_interest, as_of)
                now = _now()

                repayment = LoanRepayment(
                    id=str(uuid.uuid4()),
                    loan_id=loan.id,
                    amount_principal=allocation.applied_principal,
                    amount_interest=allocation.tender_interest,
                    payment_type=allocation.payment_type,
                    recorded_by=recorded_by,
                    created_at=now,
                    notes=notes or None
                )
                self.storage.save(self.repayments_table, repayment.id, repayment.to_dict())

                loan.amount_repaid = allocation.new_amount_repaid
                loan.interest_repaid = allocation.new_interest_repaid
                loan.status = allocation.new_status
                loan.updated_at = now
                loan.version += 1
                self.storage.save(self.loans_table, loan.id, loan.to_dict())

                updates = self.matcher.match(
                    self.get_schedule(loan.id),
                    allocation.applied_principal,
                    allocation.tender_interest
                )
                self._apply_installment_updates(updates, now)
        except LendingError as e:
            log_action(
                logger, "warning", f"Repayment rejected: {e}",
                user_id=recorded_by, action="record_repayment", resource=f"loan:{loan_id}",
                extra={"error": type(e).__name__}
            )
            raise

        log_action(
            logger, "info", "Repayment recorded",
            user_id=recorded_by, action="record_repayment", resource=f"loan:{loan.id}",
            extra={
                "repayment_id": repayment.id,
                "amount_principal": str(repayment.amount_principal),
                "amount_interest": str(repayment.amount_interest),
                "payment_type": repayment.payment_type.value,
                "status": loan.status.value,
                "installments_updated": len(updates)
            }
        )
        return repayment, loan, updates

    def get_repayments(self, loan_id: str) -> List[LoanRepayment]:
        """Repayment history for a loan, oldest first"""
        repayments = [
            LoanRepayment.from_dict(data)
            for data in self.storage.find(self.repayments_table, {"loan_id": loan_id})
        ]
        repayments.sort(key=lambda r: r.created_at)
        return repayments

    def recompute_totals(self, loan_id: str) -> Tuple[Decimal, Decimal]:
        """(amount_repaid, interest_repaid) summed from the ledger"""
        repayments = self.get_repayments(loan_id)
        principal = sum((r.amount_principal for r in repayments), ZERO)
        interest = sum((r.amount_interest for r in repayments), ZERO)
        return principal, interest

    def add_schedule(self, loan_id: str, entries: Iterable[Dict]) -> List[Installment]:
        """
        Store a loan's installment schedule

        Each entry needs ``due_date``, ``principal_amount`` and
        ``interest_amount``; ``installment_no`` defaults to position (1-based).
        """
        loan = self.get_loan(loan_id)
        now = _now()
        installments = []
        with self.storage.atomic():
            for position, entry in enumerate(entries, start=1):
                installment = Installment(
                    id=str(uuid.uuid4()),
                    created_at=now,
                    updated_at=now,
                    loan_id=loan.id,
                    installment_no=entry.get('installment_no', position),
                    due_date=entry['due_date'],
                    principal_amount=entry['principal_amount'],
                    interest_amount=entry['interest_amount']
                )
                self.storage.save(self.schedule_table, installment.id, installment.to_dict())
                installments.append(installment)
        return installments

    def get_schedule(self, loan_id: str) -> List[Installment]:
        """Installments for a loan in installment order"""
        schedule = [
            Installment.from_dict(data)
            for data in self.storage.find(self.schedule_table, {"loan_id": loan_id})
        ]
        schedule.sort(key=lambda i: i.installment_no)
        return schedule

    def mark_overdue_installments(self, loan_id: str, as_of: Optional[DateLike] = None) -> List[InstallmentUpdate]:
        with self.storage.atomic():
            updates = self.matcher.overdue_updates(self.get_schedule(loan_id), as_of)
            self._apply_installment_updates(updates, _now())
        return updates

    def archive_loan(self, loan_id: str, capabilities: Optional[CapabilitySet] = None,
                     reason: Optional[str] = None) -> Loan:
        """Soft-delete a loan"""
        check(capabilities, Permission.ARCHIVE)
        with self.storage.atomic():
            loan = self.get_loan(loan_id)
            if loan.is_archived:
                raise InvalidTransition(f"Loan {loan_id} is already archived")
            now = _now()
            loan.status = LoanStatus.ARCHIVED
            loan.archived_at = now
            loan.archive_reason = reason
            loan.updated_at = now
            loan.version += 1
            self.storage.save(self.loans_table, loan.id, loan.to_dict())

        log_action(logger, "info", "Loan archived", user_id=_user(capabilities),
                   action="archive_loan", resource=f"loan:{loan.id}", extra={"reason": reason})
        return loan

    def restore_loan(self, loan_id: str, capabilities: Optional[CapabilitySet] = None) -> Loan:
        """Bring an archived loan back; fully repaid loans return as preliquidated"""
        check(capabilities, Permission.RESTORE)
        with self.storage.atomic():
            loan = self.get_loan(loan_id)
            if not loan.is_archived:
                raise InvalidTransition(f"Loan {loan_id} is not archived")
            loan.status = LoanStatus.PRELIQUIDATED if loan.is_fully_repaid else LoanStatus.PERFORMING
            loan.archived_at = None
            loan.archive_reason = None
            loan.updated_at = _now()
            loan.version += 1
            self.storage.save(self.loans_table, loan.id, loan.to_dict())

        log_action(logger, "info", "Loan restored", user_id=_user(capabilities),
                   action="restore_loan", resource=f"loan:{loan.id}")
        return loan

    def delete_loan_permanently(self, loan_id: str, capabilities: Optional[CapabilitySet] = None) -> None:
        """Remove an archived loan with its ledger and schedule"""
        check(capabilities, Permission.PERMANENT_DELETE)
        with self.storage.atomic():
            loan = self.get_loan(loan_id)
            if not loan.is_archived:
                raise InvalidTransition(f"Loan {loan_id} must be archived before permanent deletion")
            for repayment in self.get_repayments(loan_id):
                self.storage.delete(self.repayments_table, repayment.id)
            for installment in self.get_schedule(loan_id):
                self.storage.delete(self.schedule_table, installment.id)
            self.storage.delete(self.loans_table, loan_id)

        log_action(logger, "warning", "Loan permanently deleted", user_id=_user(capabilities),
                   action="delete_loan", resource=f"loan:{loan_id}")

    def days_until_deletion(self, loan: Loan, now: Optional[datetime] = None) -> Optional[int]:
        """Days left in the archive retention window, None if not archived"""
        if not loan.is_archived or loan.archived_at is None:
            return None
        return days_until_deletion(loan.archived_at, self.retention_days, now)

    def purge_expired_archives(self, capabilities: Optional[CapabilitySet] = None,
                               now: Optional[datetime] = None) -> List[str]:
        """Permanently delete loans archived longer than the retention window"""
        check(capabilities, Permission.PERMANENT_DELETE)
        purged = []
        with self.storage.atomic():
            for loan in self.list_loans(status=LoanStatus.ARCHIVED):
                remaining = self.days_until_deletion(loan, now)
                if remaining is not None and remaining <= 0:
                    self.delete_loan_permanently(loan.id, capabilities)
                    purged.append(loan.id)

        if purged:
            logger.info(f"Purged {len(purged)} archived loans past {self.retention_days} days")
        return purged

    def _check_version(self, loan: Loan, expected_version: Optional[int]) -> None:
        if self.optimistic_locking and expected_version is not None and loan.version != expected_version:
            raise ConcurrentModification(
                f"Loan {loan.id} changed (version {loan.version}, expected {expected_version})"
            )

    def _apply_installment_updates(self, updates: List[InstallmentUpdate], now: datetime) -> None:
        for update in updates:
            data = self.storage.load(self.schedule_table, update.installment_id)
            installment = Installment.from_dict(data)
            installment.status = update.new_status
            installment.updated_at = now
            if update.new_status == InstallmentStatus.PAID:
                installment.paid_at = now
            self.storage.save(self.schedule_table, installment.id, installment.to_dict())


def _user(capabilities: Optional[CapabilitySet]) -> Optional[str]:
    return capabilities.user_id if capabilities else None
