"""
Guarantor Module

Resolves how many guarantors a requested amount needs from the configured
tiers, validates requested amounts against loan limits, and manages the
guarantor submission flow: invitation link, public submission, staff
verification or rejection.
"""

from datetime import datetime, timezone
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Mapping, Optional, Union
from enum import Enum
import logging
import secrets
import uuid

from .currency import Numeric, round_money, to_decimal
from .errors import InvalidInput, InvalidTransition, NotFound
from .logging_config import log_action
from .rbac import CapabilitySet, Permission, check
from .settings import AmountValidation, GuarantorTier, LoanLimits, SystemSettings
from .storage import StorageInterface, StorageRecord, parse_datetime


logger = logging.getLogger("lending.guarantors")

TierLike = Union[GuarantorTier, Mapping[str, Any]]
LimitsLike = Union[LoanLimits, Mapping[str, Any]]

GUARANTOR_DETAIL_FIELDS = (
    'full_name', 'email', 'phone', 'address', 'relationship', 'employer', 'occupation'
)


class GuarantorRequirementResolver:
    """Guarantor counts and amount bounds from system settings"""

    def __init__(self, settings: Optional[SystemSettings] = None):
        self.settings = settings or SystemSettings()

    def required_guarantors(self, amount: Numeric, tiers: Optional[Iterable[TierLike]] = None) -> int:
        """
        Guarantors required for an amount

        Returns the ``required`` count of the first tier whose inclusive
        [min, max] band contains the amount, or 0 when guarantors are
        disabled or no tier matches. The amount is rounded to the cent first,
        so tiers that meet at the next cent leave nothing uncovered.
        """
        if not self.settings.guarantor_enabled:
            return 0
        amount = round_money(to_decimal(amount))
        for tier in self._tiers(tiers):
            if tier.contains(amount):
                return tier.required
        return 0

    def validate_amount(self, amount: Numeric, limits: Optional[LimitsLike] = None) -> AmountValidation:
        """Check a requested amount against the loan limits"""
        amount = to_decimal(amount)
        if limits is None:
            return self.settings.validate_amount(amount)
        if not isinstance(limits, LoanLimits):
            limits = LoanLimits(**limits)
        if amount < limits.min:
            return AmountValidation(False, f"Minimum loan amount is {limits.min}")
        if amount > limits.max:
            return AmountValidation(False, f"Maximum loan amount is {limits.max}")
        return AmountValidation(True)

    def _tiers(self, tiers: Optional[Iterable[TierLike]]) -> List[GuarantorTier]:
        if tiers is None:
            return self.settings.guarantor_tiers
        return [t if isinstance(t, GuarantorTier) else GuarantorTier(**t) for t in tiers]


class GuarantorStatus(Enum):
    """Guarantor submission states"""
    PENDING = "pending"        # Link issued, nothing submitted yet
    SUBMITTED = "submitted"    # Guarantor filled in the form
    VERIFIED = "verified"
    REJECTED = "rejected"


@dataclass
class GuarantorSubmission(StorageRecord):
    """Guarantor invitation and the details submitted against it"""
    loan_request_id: str
    access_token: str
    status: GuarantorStatus = GuarantorStatus.PENDING
    full_name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    relationship: Optional[str] = None
    employer: Optional[str] = None
    occupation: Optional[str] = None
    submitted_at: Optional[datetime] = None
    reviewed_at: Optional[datetime] = None
    reviewed_by: Optional[str] = None
    rejection_reason: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict) -> 'GuarantorSubmission':
        fields = {key: data.get(key) for key in GUARANTOR_DETAIL_FIELDS}
        return cls(
            id=data['id'],
            created_at=parse_datetime(data['created_at']),
            updated_at=parse_datetime(data['updated_at']),
            loan_request_id=data['loan_request_id'],
            access_token=data['access_token'],
            status=GuarantorStatus(data['status']),
            submitted_at=parse_datetime(data.get('submitted_at')),
            reviewed_at=parse_datetime(data.get('reviewed_at')),
            reviewed_by=data.get('reviewed_by'),
            rejection_reason=data.get('rejection_reason'),
            **fields
        )


class GuarantorManager:
    """Guarantor invitations, submissions and reviews"""

    def __init__(self, storage: StorageInterface, resolver: Optional[GuarantorRequirementResolver] = None):
        self.storage = storage
        self.resolver = resolver or GuarantorRequirementResolver()
        self.table = "guarantor_submissions"

    def create_invitation(self, loan_request_id: str) -> GuarantorSubmission:
        """Issue a pending submission with a fresh single-use access token"""
        now = datetime.now(timezone.utc)
        submission = GuarantorSubmission(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            loan_request_id=loan_request_id,
            access_token=secrets.token_urlsafe(32)
        )
        self.storage.save(self.table, submission.id, submission.to_dict())
        logger.info(f"Guarantor invitation created for loan request {loan_request_id}")
        return submission

    def get_submission(self, submission_id: str) -> GuarantorSubmission:
        data = self.storage.load(self.table, submission_id)
        if not data:
            raise NotFound(f"Guarantor submission {submission_id} not found")
        return GuarantorSubmission.from_dict(data)

    def get_by_token(self, access_token: str) -> GuarantorSubmission:
        if not access_token:
            raise InvalidInput("Missing access token")
        matches = self.storage.find(self.table, {"access_token": access_token})
        if not matches:
            raise NotFound("Invalid or expired link")
        return GuarantorSubmission.from_dict(matches[0])

    def list_for_request(self, loan_request_id: str) -> List[GuarantorSubmission]:
        return [
            GuarantorSubmission.from_dict(data)
            for data in self.storage.find(self.table, {"loan_request_id": loan_request_id})
        ]

    def submit(self, access_token: str, details: Mapping[str, Any]) -> GuarantorSubmission:
        """
        Record the guarantor's details against an invitation token

        Raises:
            NotFound: If the token matches no invitation
            InvalidTransition: If the form was already submitted or reviewed
            InvalidInput: If the guarantor's name is missing
        """
        with self.storage.atomic():
            submission = self.get_by_token(access_token)
            if submission.status != GuarantorStatus.PENDING:
                raise InvalidTransition("Form already submitted")
            if not details.get('full_name'):
                raise InvalidInput("Guarantor full_name is required")

            for key in GUARANTOR_DETAIL_FIELDS:
                if key in details:
                    setattr(submission, key, details[key])
            now = datetime.now(timezone.utc)
            submission.status = GuarantorStatus.SUBMITTED
            submission.submitted_at = now
            submission.updated_at = now
            self.storage.save(self.table, submission.id, submission.to_dict())

        logger.info(f"Guarantor submission {submission.id} received")
        return submission

    def verify(self, submission_id: str, capabilities: Optional[CapabilitySet] = None) -> GuarantorSubmission:
        return self._review(submission_id, GuarantorStatus.VERIFIED, capabilities)

    def reject(self, submission_id: str, capabilities: Optional[CapabilitySet] = None,
               reason: Optional[str] = None) -> GuarantorSubmission:
        return self._review(submission_id, GuarantorStatus.REJECTED, capabilities, reason)

    def outstanding_guarantors(self, loan_request_id: str, amount: Numeric) -> int:
        """Verified guarantors still missing for a request of this amount"""
        required = self.resolver.required_guarantors(amount)
        verified = sum(
            1 for s in self.list_for_request(loan_request_id)
            if s.status == GuarantorStatus.VERIFIED
        )
        return max(0, required - verified)

    def _review(self, submission_id: str, outcome: GuarantorStatus,
                capabilities: Optional[CapabilitySet], reason: Optional[str] = None) -> GuarantorSubmission:
        check(capabilities, Permission.VERIFY_GUARANTOR)
        with self.storage.atomic():
            submission = self.get_submission(submission_id)
            if submission.status != GuarantorStatus.SUBMITTED:
                raise InvalidTransition(
                    f"Cannot mark submission {outcome.value} from {submission.status.value}"
                )
            now = datetime.now(timezone.utc)
            submission.status = outcome
            submission.reviewed_at = now
            submission.reviewed_by = capabilities.user_id if capabilities else None
            submission.rejection_reason = reason if outcome == GuarantorStatus.REJECTED else None
            submission.updated_at = now
            self.storage.save(self.table, submission.id, submission.to_dict())

        log_action(
            logger, "info", f"Guarantor submission {outcome.value}",
            user_id=submission.reviewed_by, action=f"guarantor_{outcome.value}",
            resource=f"guarantor_submission:{submission.id}",
            extra={"reason": reason} if reason else None
        )
        return submission
