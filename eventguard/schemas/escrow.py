"""
Escrow Schemas
"""

from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from .ticket import Ticket


class EscrowAccount(BaseModel):
    """
    Custodial balance for one event.

    balance == total_deposited - total_refunded, and never negative.
    """
    model_config = ConfigDict(frozen=True)

    event_id: UUID
    settlement_unit: str
    balance: int = Field(default=0, ge=0)
    total_deposited: int = Field(default=0, ge=0)
    total_refunded: int = Field(default=0, ge=0)


class RefundReceipt(BaseModel):
    """Result of a successful refund claim."""
    model_config = ConfigDict(frozen=True)

    ticket: Ticket
    claimer: str
    amount: int = Field(..., ge=0)
    settlement_unit: str
    escrow_balance_after: int = Field(..., ge=0)
