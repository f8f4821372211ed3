"""
Event Schema

An Event is one ticketed occasion: its immutable configuration, its
inventory counter, its optional refund protection and its market
resolution. Records are frozen. A transition produces a new Event via
model_copy(update=...) and the store swaps it in atomically.
"""

from enum import Enum
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

U32_MAX = 2**32 - 1


class RefundCondition(str, Enum):
    """
    Which market outcome releases refunds.
    """
    ON_YES = "on_yes"   # refund if the market resolves YES
    ON_NO = "on_no"     # refund if the market resolves NO

    def matches(self, outcome: bool) -> bool:
        return outcome if self is RefundCondition.ON_YES else not outcome


class ResaleRules(BaseModel):
    """
    Anti-scalping rules. Fixed at creation.
    """
    model_config = ConfigDict(frozen=True)

    max_resale_markup_bps: int = Field(
        default=0,
        ge=0,
        le=U32_MAX,
        description="Maximum resale markup over purchase price, in basis points",
    )
    transfer_lock_start: int = Field(
        default=0,
        ge=0,
        le=U32_MAX,
        description="Seconds before the event date at which transfers lock",
    )
    max_tickets_per_wallet: int = Field(
        default=4,
        ge=0,
        le=U32_MAX,
        description="Maximum tickets a recipient may hold after a transfer",
    )
    transfers_enabled: bool = Field(
        default=True,
        description="Global transfer switch for the event",
    )


class EventConfig(BaseModel):
    """
    Organizer-supplied configuration.

    Semantic checks (positive inventory, future date, ...) live in the
    rule evaluator so they surface as InvalidConfig, not as schema errors.
    """
    model_config = ConfigDict(frozen=True)

    name: str = Field(..., description="Event name, unique per organizer")
    date: int = Field(..., description="Event start, epoch seconds")
    venue: str = Field(default="", description="Venue name")
    total_tickets: int = Field(..., description="Total ticket inventory")
    base_price: int = Field(..., description="Ticket price in minor units")
    settlement_unit: str = Field(
        default="USDC",
        description="Settlement mint / unit the escrow is denominated in",
    )
    rules: ResaleRules = Field(default_factory=ResaleRules)


class Event(BaseModel):
    """
    The event record.

    Invariants:
    - 0 <= tickets_sold <= config.total_tickets
    - protection fields are set at most once, strictly before resolved
    - outcome is meaningful only when resolved
    """
    model_config = ConfigDict(frozen=True)

    event_id: UUID = Field(..., description="Derived from (organizer, name)")
    organizer: str
    config: EventConfig
    tickets_sold: int = Field(default=0, ge=0)

    # Protection (attach-once)
    protection_enabled: bool = False
    market_id: Optional[str] = None
    refund_condition: Optional[RefundCondition] = None
    refund_percentage: Optional[int] = None

    # Resolution (record-once)
    resolved: bool = False
    outcome: Optional[bool] = None

    created_at: int = Field(..., description="Epoch seconds at creation")

    @property
    def escrow_id(self) -> UUID:
        """The escrow account is keyed by the event identity."""
        return self.event_id

    @property
    def rules(self) -> ResaleRules:
        return self.config.rules

    @property
    def tickets_remaining(self) -> int:
        return self.config.total_tickets - self.tickets_sold
