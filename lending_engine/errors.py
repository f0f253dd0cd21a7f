"""
Error types raised by the lending engine.

All errors derive from ValueError so callers that already guard
calculations with ``except ValueError`` keep working.
"""


class LendingError(ValueError):
    """Base class for all lending engine errors"""


class InvalidInput(LendingError):
    """Malformed or negative numeric argument, or an entity in the wrong state"""


class NonPositive(LendingError):
    """Total tendered amount is zero or negative"""


class ExceedsDue(LendingError):
    """Tendered principal exceeds the loan's outstanding principal"""


class ExceedsBalance(LendingError):
    """Payout principal exceeds the credit's remaining principal"""


class NotFound(LendingError):
    """Referenced entity does not exist"""


class ConcurrentModification(LendingError):
    """Entity changed since the caller read it"""


class InvalidTransition(LendingError):
    """Status change not allowed from the current status"""


class PermissionDenied(LendingError):
    """Caller lacks the capability required for the operation"""
