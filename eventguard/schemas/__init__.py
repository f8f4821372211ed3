# Record schemas for the ticketing core.
# Every record is frozen: transitions replace records, they never edit them.

from .event import Event, EventConfig, RefundCondition, ResaleRules
from .ticket import Ticket
from .badge import CultureBadge, EventCategory
from .escrow import EscrowAccount, RefundReceipt
from .journal import JournalEntry, JournalEntryType, PendingEntry
from .resolution import MarketOutcome, MarketResolution, ResolutionReport

__all__ = [
    # Event
    "Event",
    "EventConfig",
    "RefundCondition",
    "ResaleRules",
    # Ticket
    "Ticket",
    # Badge
    "CultureBadge",
    "EventCategory",
    # Escrow
    "EscrowAccount",
    "RefundReceipt",
    # Journal
    "JournalEntry",
    "JournalEntryType",
    "PendingEntry",
    # Resolution
    "MarketOutcome",
    "MarketResolution",
    "ResolutionReport",
]
