# Core ticketing services
from .errors import (
    TicketingError,
    SoldOut,
    AlreadyCheckedIn,
    TransfersDisabled,
    TransferLocked,
    PriceCapExceeded,
    WalletLimitExceeded,
    IncompleteOwnershipProof,
    InvalidConfig,
    NotFound,
    AlreadyExists,
    Unauthorized,
    ProtectionAlreadyAttached,
    AlreadyResolved,
    ConditionNotMet,
    AlreadyRefunded,
    InsufficientFunds,
    InfrastructureError,
    CustodyUnavailableError,
)
from .hasher import Hasher, CanonicalSerializationError
from .signer import Signer
from .custody import TokenCustody, InMemoryTokenCustody
from .clock import Clock, ManualClock, system_clock
from .ticketing import TicketingService
from .gateway import ResolutionGateway, ResolutionRelay, sign_resolution_report

__all__ = [
    # Errors
    "TicketingError",
    "SoldOut",
    "AlreadyCheckedIn",
    "TransfersDisabled",
    "TransferLocked",
    "PriceCapExceeded",
    "WalletLimitExceeded",
    "IncompleteOwnershipProof",
    "InvalidConfig",
    "NotFound",
    "AlreadyExists",
    "Unauthorized",
    "ProtectionAlreadyAttached",
    "AlreadyResolved",
    "ConditionNotMet",
    "AlreadyRefunded",
    "InsufficientFunds",
    "InfrastructureError",
    "CustodyUnavailableError",
    # Services
    "Hasher",
    "CanonicalSerializationError",
    "Signer",
    "TokenCustody",
    "InMemoryTokenCustody",
    "TicketingService",
    "Clock",
    "ManualClock",
    "system_clock",
    "ResolutionGateway",
    "ResolutionRelay",
    "sign_resolution_report",
]
