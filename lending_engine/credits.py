"""
Credit Module

The creditor side of the book: placements (credits) that earn interest,
payout allocation across remaining principal and accrued interest, the
append-only payout ledger, maturity and the archive / restore lifecycle.
"""

from decimal import Decimal
from datetime import datetime, timezone, date
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple
from enum import Enum
import logging
import uuid

from .currency import ZERO, MONEY_TOLERANCE, Numeric, non_negative
from .errors import (
    ConcurrentModification, ExceedsBalance, InvalidInput, InvalidTransition,
    LendingError, NonPositive, NotFound
)
from .interest import (
    DateLike, InterestAccrualCalculator, InterestType, as_calendar_date, days_elapsed,
    parse_interest_type
)
from .logging_config import log_action
from .rbac import CapabilitySet, Permission, check
from .schedules import add_months
from .storage import (
    StorageInterface, StorageRecord, days_until_deletion, parse_date, parse_datetime,
    parse_decimal
)


logger = logging.getLogger("lending.credits")


class CreditStatus(Enum):
    """Credit lifecycle states"""
    ACTIVE = "active"
    MATURED = "matured"
    WITHDRAWN = "withdrawn"     # Principal fully paid out
    ARCHIVED = "archived"


class PayoutType(Enum):
    """Kinds of payout to a creditor"""
    INTEREST_ONLY = "interest_only"
    PARTIAL_PRINCIPAL = "partial_principal"
    FULL_MATURITY = "full_maturity"
    EARLY_WITHDRAWAL = "early_withdrawal"


# Payout types that settle the whole remaining principal and close the credit
CLOSING_PAYOUTS = {PayoutType.FULL_MATURITY, PayoutType.EARLY_WITHDRAWAL}


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class Credit(StorageRecord):
    """Creditor placement earning interest"""
    creditor_id: str
    principal: Decimal
    interest_rate: Decimal              # Annual rate as a percentage
    tenure_months: int
    start_date: date
    end_date: Optional[date] = None
    remaining_principal: Optional[Decimal] = None
    total_paid_out: Decimal = ZERO
    status: CreditStatus = CreditStatus.ACTIVE
    interest_type: InterestType = InterestType.SIMPLE
    archived_at: Optional[datetime] = None
    archive_reason: Optional[str] = None
    status_before_archive: Optional[CreditStatus] = None
    version: int = 1

    def __post_init__(self):
        self.principal = non_negative(self.principal, "principal")
        self.interest_rate = non_negative(self.interest_rate, "interest_rate")
        self.total_paid_out = non_negative(self.total_paid_out, "total_paid_out")
        if self.remaining_principal is None:
            self.remaining_principal = self.principal
        self.remaining_principal = non_negative(self.remaining_principal, "remaining_principal")

        if isinstance(self.tenure_months, bool) or not isinstance(self.tenure_months, int) or self.tenure_months <= 0:
            raise InvalidInput(f"tenure_months must be a positive integer, got {self.tenure_months!r}")
        if self.remaining_principal > self.principal + MONEY_TOLERANCE:
            raise InvalidInput(
                f"remaining_principal {self.remaining_principal} cannot exceed principal {self.principal}"
            )
        if self.end_date is None:
            self.end_date = add_months(self.start_date, self.tenure_months)

    @property
    def is_archived(self) -> bool:
        return self.status == CreditStatus.ARCHIVED

    @classmethod
    def from_dict(cls, data: Dict) -> 'Credit':
        before = data.get('status_before_archive')
        return cls(
            id=data['id'],
            created_at=parse_datetime(data['created_at']),
            updated_at=parse_datetime(data['updated_at']),
            creditor_id=data['creditor_id'],
            principal=parse_decimal(data['principal']),
            interest_rate=parse_decimal(data['interest_rate']),
            tenure_months=data['tenure_months'],
            start_date=parse_date(data['start_date']),
            end_date=parse_date(data.get('end_date')),
            remaining_principal=parse_decimal(data.get('remaining_principal')),
            total_paid_out=parse_decimal(data.get('total_paid_out'), ZERO),
            status=CreditStatus(data['status']),
            interest_type=parse_interest_type(data.get('interest_type')),
            archived_at=parse_datetime(data.get('archived_at')),
            archive_reason=data.get('archive_reason'),
            status_before_archive=CreditStatus(before) if before else None,
            version=data.get('version', 1)
        )


@dataclass(frozen=True)
class CreditPayout:
    """Immutable payout ledger entry"""
    id: str
    credit_id: str
    creditor_id: str
    principal_amount: Decimal
    interest_amount: Decimal
    payout_type: PayoutType
    processed_by: str
    created_at: datetime
    notes: Optional[str] = None

    @property
    def total_amount(self) -> Decimal:
        return self.principal_amount + self.interest_amount

    def to_dict(self) -> Dict:
        return {
            'id': self.id,
            'credit_id': self.credit_id,
            'creditor_id': self.creditor_id,
            'principal_amount': str(self.principal_amount),
            'interest_amount': str(self.interest_amount),
            'total_amount': str(self.total_amount),
            'payout_type': self.payout_type.value,
            'processed_by': self.processed_by,
            'created_at': self.created_at.isoformat(),
            'notes': self.notes
        }

    @classmethod
    def from_dict(cls, data: Dict) -> 'CreditPayout':
        return cls(
            id=data['id'],
            credit_id=data['credit_id'],
            creditor_id=data['creditor_id'],
            principal_amount=parse_decimal(data['principal_amount']),
            interest_amount=parse_decimal(data['interest_amount']),
            payout_type=PayoutType(data['payout_type']),
            processed_by=data['processed_by'],
            created_at=parse_datetime(data['created_at']),
            notes=data.get('notes')
        )


@dataclass(frozen=True)
class PayoutAllocation:
    """Result of allocating a payout against a credit"""
    payout_type: PayoutType
    principal_amount: Decimal           # Effective amounts after forcing
    interest_amount: Decimal
    new_remaining_principal: Decimal
    new_total_paid_out: Decimal
    new_status: CreditStatus


@dataclass(frozen=True)
class CreditAccrual:
    """Point-in-time valuation of a credit"""
    credit_id: str
    days_elapsed: int
    interest_accrued: Decimal
    current_value: Decimal
    maturity_value: Decimal
    is_matured: bool


class CreditPayoutAllocator:
    """
    Allocates a creditor payout across remaining principal and interest

    ``interest_only`` pays no principal. ``full_maturity`` and
    ``early_withdrawal`` pay the whole remaining principal plus the
    interest accrued on it and always leave the credit withdrawn.
    ``partial_principal`` takes both amounts as given.
    """

    def __init__(self, calculator: Optional[InterestAccrualCalculator] = None,
                 tolerance: Decimal = MONEY_TOLERANCE):
        self.calculator = calculator or InterestAccrualCalculator()
        self.tolerance = tolerance

    def accrued_interest(self, credit: Credit, as_of: Optional[DateLike] = None) -> Decimal:
        """Interest accrued on the remaining principal"""
        return self.calculator.calculate_interest(
            credit.remaining_principal, credit.interest_rate, credit.start_date,
            as_of, credit.interest_type
        )

    def allocate(
        self,
        credit: Credit,
        payout_type: PayoutType,
        principal_amount: Numeric = ZERO,
        interest_amount: Numeric = ZERO,
        as_of: Optional[DateLike] = None
    ) -> PayoutAllocation:
        """
        Validate a payout and compute the credit's new balances and status

        Raises:
            InvalidInput: If an amount is negative or the payout type is unknown
            ExceedsBalance: If principal exceeds the remaining principal
            NonPositive: If the payout totals zero or less
        """
        if isinstance(payout_type, str):
            try:
                payout_type = PayoutType(payout_type)
            except ValueError:
                raise InvalidInput(f"Unknown payout type: {payout_type!r}")

        principal_amount = non_negative(principal_amount, "principal_amount")
        interest_amount = non_negative(interest_amount, "interest_amount")

        if payout_type == PayoutType.INTEREST_ONLY:
            principal_amount = ZERO
        elif payout_type in CLOSING_PAYOUTS:
            principal_amount = credit.remaining_principal
            interest_amount = self.accrued_interest(credit, as_of)

        if principal_amount > credit.remaining_principal + self.tolerance:
            raise ExceedsBalance(
                f"Principal amount {principal_amount} exceeds remaining principal {credit.remaining_principal}"
            )
        if principal_amount + interest_amount <= ZERO:
            raise NonPositive("Nothing to pay out")

        new_status = CreditStatus.WITHDRAWN if payout_type in CLOSING_PAYOUTS else credit.status

        return PayoutAllocation(
            payout_type=payout_type,
            principal_amount=principal_amount,
            interest_amount=interest_amount,
            new_remaining_principal=max(ZERO, credit.remaining_principal - principal_amount),
            new_total_paid_out=credit.total_paid_out + principal_amount + interest_amount,
            new_status=new_status
        )

    def accrual_snapshot(self, credit: Credit, as_of: Optional[DateLike] = None) -> CreditAccrual:
        """Days elapsed, accrued interest, current and maturity value of a credit"""
        as_of = as_calendar_date(as_of)
        interest = self.accrued_interest(credit, as_of)
        maturity_value = credit.principal + self.calculator.maturity_interest(
            credit.principal, credit.interest_rate, credit.tenure_months
        )
        return CreditAccrual(
            credit_id=credit.id,
            days_elapsed=days_elapsed(credit.start_date, as_of),
            interest_accrued=interest,
            current_value=credit.remaining_principal + interest,
            maturity_value=maturity_value,
            is_matured=as_of >= credit.end_date
        )


class CreditManager:
    """
    Applies payouts to stored credits

    The payout ledger entry and the credit update are written in one
    ``storage.atomic()`` block.
    """

    def __init__(
        self,
        storage: StorageInterface,
        allocator: Optional[CreditPayoutAllocator] = None,
        optimistic_locking: bool = True,
        retention_days: int = 30
    ):
        self.storage = storage
        self.allocator = allocator or CreditPayoutAllocator()
        self.optimistic_locking = optimistic_locking
        self.retention_days = retention_days

        self.credits_table = "credits"
        self.payouts_table = "creditor_payouts"

    @classmethod
    def from_config(cls, storage: StorageInterface, config) -> 'CreditManager':
        """Build a manager using the business rules of a LendingConfig"""
        allocator = CreditPayoutAllocator(
            InterestAccrualCalculator(config.day_count_basis), Decimal(config.money_tolerance)
        )
        return cls(
            storage,
            allocator=allocator,
            optimistic_locking=config.enable_optimistic_locking,
            retention_days=config.archive_retention_days
        )

    def create_credit(
        self,
        creditor_id: str,
        principal: Numeric,
        interest_rate: Numeric,
        tenure_months: int,
        start_date: date,
        interest_type: InterestType = InterestType.SIMPLE
    ) -> Credit:
        """Record a new creditor placement"""
        now = _now()
        credit = Credit(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            creditor_id=creditor_id,
            principal=principal,
            interest_rate=interest_rate,
            tenure_months=tenure_months,
            start_date=start_date,
            interest_type=interest_type
        )
        self.storage.save(self.credits_table, credit.id, credit.to_dict())

        log_action(
            logger, "info", "Credit created",
            action="create_credit", resource=f"credit:{credit.id}",
            extra={"creditor_id": creditor_id, "principal": str(credit.principal),
                   "interest_rate": str(credit.interest_rate)}
        )
        return credit

    def get_credit(self, credit_id: str) -> Credit:
        """Get credit by ID, raising NotFound if missing"""
        data = self.storage.load(self.credits_table, credit_id)
        if not data:
            raise NotFound(f"Credit {credit_id} not found")
        return Credit.from_dict(data)

    def list_credits(self, status: Optional[CreditStatus] = None,
                     creditor_id: Optional[str] = None) -> List[Credit]:
        filters = {}
        if status:
            filters['status'] = status.value
        if creditor_id:
            filters['creditor_id'] = creditor_id
        return [Credit.from_dict(data) for data in self.storage.find(self.credits_table, filters)]

    def record_payout(
        self,
        credit_id: str,
        payout_type: PayoutType,
        processed_by: str,
        principal_amount: Numeric = ZERO,
        interest_amount: Numeric = ZERO,
        notes: Optional[str] = None,
        expected_version: Optional[int] = None,
        capabilities: Optional[CapabilitySet] = None,
        as_of: Optional[DateLike] = None
    ) -> Tuple[CreditPayout, Credit]:
        """
        Record a payout to a creditor

        Returns:
            (ledger entry, updated credit)
        """
        check(capabilities, Permission.RECORD_PAYOUT)

        try:
            with self.storage.atomic():
                credit = self.get_credit(credit_id)
                if (self.optimistic_locking and expected_version is not None
                        and credit.version != expected_version):
                    raise ConcurrentModification(
                        f"Credit {credit_id} changed (version {credit.version}, expected {expected_version})"
                    )
                if credit.status in (CreditStatus.ARCHIVED, CreditStatus.WITHDRAWN):
                    raise InvalidInput(f"Credit {credit_id} is {credit.status.value}")

                allocation = self.allocator.allocate(
                    credit, payout_type, principal_amount, interest_amount, as_of
                )
                now = _now()

                payout = CreditPayout(
                    id=str(uuid.uuid4()),
                    credit_id=credit.id,
                    creditor_id=credit.creditor_id,
                    principal_amount=allocation.principal_amount,
                    interest_amount=allocation.interest_amount,
                    payout_type=allocation.payout_type,
                    processed_by=processed_by,
                    created_at=now,
                    notes=notes or None
                )
                self.storage.save(self.payouts_table, payout.id, payout.to_dict())

                credit.remaining_principal = allocation.new_remaining_principal
                credit.total_paid_out = allocation.new_total_paid_out
                credit.status = allocation.new_status
                credit.updated_at = now
                credit.version += 1
                self.storage.save(self.credits_table, credit.id, credit.to_dict())
        except LendingError as e:
            log_action(
                logger, "warning", f"Payout rejected: {e}",
                user_id=processed_by, action="record_payout", resource=f"credit:{credit_id}",
                extra={"error": type(e).__name__}
            )
            raise

        log_action(
            logger, "info", "Payout recorded",
            user_id=processed_by, action="record_payout", resource=f"credit:{credit.id}",
            extra={
                "payout_id": payout.id,
                "payout_type": payout.payout_type.value,
                "principal_amount": str(payout.principal_amount),
                "interest_amount": str(payout.interest_amount),
                "status": credit.status.value
            }
        )
        return payout, credit

    def get_payouts(self, credit_id: str) -> List[CreditPayout]:
        """Payout history for a credit, oldest first"""
        payouts = [
            CreditPayout.from_dict(data)
            for data in self.storage.find(self.payouts_table, {"credit_id": credit_id})
        ]
        payouts.sort(key=lambda p: p.created_at)
        return payouts

    def recompute_totals(self, credit_id: str) -> Tuple[Decimal, Decimal]:
        """(remaining_principal, total_paid_out) rebuilt from the ledger"""
        credit = self.get_credit(credit_id)
        payouts = self.get_payouts(credit_id)
        principal_paid = sum((p.principal_amount for p in payouts), ZERO)
        total = sum((p.total_amount for p in payouts), ZERO)
        return max(ZERO, credit.principal - principal_paid), total

    def accrual_snapshot(self, credit_id: str, as_of: Optional[DateLike] = None) -> CreditAccrual:
        return self.allocator.accrual_snapshot(self.get_credit(credit_id), as_of)

    def mark_matured(self, as_of: Optional[DateLike] = None) -> List[Credit]:
        """Move active credits past their end date to matured"""
        as_of = as_calendar_date(as_of)
        matured = []
        with self.storage.atomic():
            for credit in self.list_credits(status=CreditStatus.ACTIVE):
                if as_of >= credit.end_date:
                    credit.status = CreditStatus.MATURED
                    credit.updated_at = _now()
                    credit.version += 1
                    self.storage.save(self.credits_table, credit.id, credit.to_dict())
                    matured.append(credit)

        if matured:
            logger.info(f"Marked {len(matured)} credits as matured")
        return matured

    def archive_credit(self, credit_id: str, capabilities: Optional[CapabilitySet] = None,
                       reason: Optional[str] = None) -> Credit:
        check(capabilities, Permission.ARCHIVE)
        with self.storage.atomic():
            credit = self.get_credit(credit_id)
            if credit.is_archived:
                raise InvalidTransition(f"Credit {credit_id} is already archived")
            now = _now()
            credit.status_before_archive = credit.status
            credit.status = CreditStatus.ARCHIVED
            credit.archived_at = now
            credit.archive_reason = reason
            credit.updated_at = now
            credit.version += 1
            self.storage.save(self.credits_table, credit.id, credit.to_dict())

        log_action(logger, "info", "Credit archived",
                   user_id=capabilities.user_id if capabilities else None,
                   action="archive_credit", resource=f"credit:{credit.id}", extra={"reason": reason})
        return credit

    def restore_credit(self, credit_id: str, capabilities: Optional[CapabilitySet] = None) -> Credit:
        """Return an archived credit to the status it had before archiving"""
        check(capabilities, Permission.RESTORE)
        with self.storage.atomic():
            credit = self.get_credit(credit_id)
            if not credit.is_archived:
                raise InvalidTransition(f"Credit {credit_id} is not archived")
            credit.status = credit.status_before_archive or CreditStatus.ACTIVE
            credit.status_before_archive = None
            credit.archived_at = None
            credit.archive_reason = None
            credit.updated_at = _now()
            credit.version += 1
            self.storage.save(self.credits_table, credit.id, credit.to_dict())

        log_action(logger, "info", "Credit restored",
                   user_id=capabilities.user_id if capabilities else None,
                   action="restore_credit", resource=f"credit:{credit.id}")
        return credit

    def delete_credit_permanently(self, credit_id: str, capabilities: Optional[CapabilitySet] = None) -> None:
        """Remove an archived credit with its payout ledger"""
        check(capabilities, Permission.PERMANENT_DELETE)
        with self.storage.atomic():
            credit = self.get_credit(credit_id)
            if not credit.is_archived:
                raise InvalidTransition(f"Credit {credit_id} must be archived before permanent deletion")
            for payout in self.get_payouts(credit_id):
                self.storage.delete(self.payouts_table, payout.id)
            self.storage.delete(self.credits_table, credit_id)

        log_action(logger, "warning", "Credit permanently deleted",
                   user_id=capabilities.user_id if capabilities else None,
                   action="delete_credit", resource=f"credit:{credit_id}")

    def purge_expired_archives(self, capabilities: Optional[CapabilitySet] = None,
                               now: Optional[datetime] = None) -> List[str]:
        """Permanently delete credits archived longer than the retention window"""
        check(capabilities, Permission.PERMANENT_DELETE)
        purged = []
        with self.storage.atomic():
            for credit in self.list_credits(status=CreditStatus.ARCHIVED):
                if credit.archived_at is None:
                    continue
                if days_until_deletion(credit.archived_at, self.retention_days, now) <= 0:
                    self.delete_credit_permanently(credit.id, capabilities)
                    purged.append(credit.id)

        if purged:
            logger.info(f"Purged {len(purged)} archived credits past {self.retention_days} days")
        return purged
