"""
Typed Errors for the Ticketing Core

Every rule violation has its own exception class and a stable,
machine-readable ``code``. Callers catch by type; APIs report the code.

Two families, never conflated:

    TicketingError (rule violations - the request itself is invalid)
    |
    +-- SoldOut, AlreadyCheckedIn, TransfersDisabled, TransferLocked,
    |   PriceCapExceeded, WalletLimitExceeded, IncompleteOwnershipProof,
    |   InvalidConfig, NotFound, AlreadyExists, Unauthorized,
    |   ProtectionAlreadyAttached, AlreadyResolved, ConditionNotMet,
    |   AlreadyRefunded, InsufficientFunds
    |
    InfrastructureError (retry later - nothing was applied)
    |
    +-- CustodyUnavailableError

No rule violation is transient. Resubmitting the same request
without changing its input fails the same way.
"""

from typing import Any


class TicketingError(Exception):
    """Base class for all rule violations."""

    code: str = "TICKETING_ERROR"

    def __init__(self, message: str, **details: Any):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict[str, Any]:
        return {"code": self.code, "detail": self.message, **self.details}


class SoldOut(TicketingError):
    """Raised when an event has no inventory left."""
    code = "SOLD_OUT"


class AlreadyCheckedIn(TicketingError):
    """Raised when a ticket has already been checked in."""
    code = "ALREADY_CHECKED_IN"


class TransfersDisabled(TicketingError):
    """Raised when the organizer has disabled transfers for the event."""
    code = "TRANSFERS_DISABLED"


class TransferLocked(TicketingError):
    """Raised inside the pre-event transfer lock window."""
    code = "TRANSFER_LOCKED"


class PriceCapExceeded(TicketingError):
    """Raised when a resale price is above the allowed markup."""
    code = "PRICE_CAP_EXCEEDED"


class WalletLimitExceeded(TicketingError):
    """Raised when the recipient already holds the maximum number of tickets."""
    code = "WALLET_LIMIT_EXCEEDED"


class IncompleteOwnershipProof(TicketingError):
    """Raised when the supplied recipient holdings do not match known holdings."""
    code = "INCOMPLETE_OWNERSHIP_PROOF"


class InvalidConfig(TicketingError):
    """Raised for malformed event configuration or operation input."""
    code = "INVALID_CONFIG"


class NotFound(TicketingError):
    """Raised when a referenced record does not exist."""
    code = "NOT_FOUND"


class AlreadyExists(TicketingError):
    """Raised when a deterministic identity is already taken."""
    code = "ALREADY_EXISTS"


class Unauthorized(TicketingError):
    """Raised when the caller is not allowed to perform the operation."""
    code = "UNAUTHORIZED"


class ProtectionAlreadyAttached(TicketingError):
    """Raised when protection is attached a second time."""
    code = "PROTECTION_ALREADY_ATTACHED"


class AlreadyResolved(TicketingError):
    """Raised when an event's market outcome has already been recorded."""
    code = "ALREADY_RESOLVED"


class ConditionNotMet(TicketingError):
    """Raised when the refund condition does not hold."""
    code = "CONDITION_NOT_MET"


class AlreadyRefunded(TicketingError):
    """Raised when a ticket has already been refunded."""
    code = "ALREADY_REFUNDED"


class InsufficientFunds(TicketingError):
    """Raised when an account cannot cover a debit."""
    code = "INSUFFICIENT_FUNDS"


class InfrastructureError(Exception):
    """Base class for failures of external collaborators. Safe to retry."""

    code: str = "INFRASTRUCTURE_ERROR"

    def __init__(self, message: str, **details: Any):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict[str, Any]:
        return {"code": self.code, "detail": self.message, **self.details}


class CustodyUnavailableError(InfrastructureError):
    """Raised when the token-custody subsystem cannot be reached."""
    code = "CUSTODY_UNAVAILABLE"
