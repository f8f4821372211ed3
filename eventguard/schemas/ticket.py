"""
Ticket Schema
"""

from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class Ticket(BaseModel):
    """
    A single sold admission right.

    checked_in and refunded are independent, irreversible flags.
    deposited_price never changes after purchase; purchase_price follows
    resales.
    """
    model_config = ConfigDict(frozen=True)

    ticket_key: UUID = Field(..., description="Derived from (event_id, ticket_id)")
    event_id: UUID
    ticket_id: int = Field(..., ge=0, description="0-based purchase sequence")
    owner: str
    purchase_price: int = Field(..., ge=0, description="Minor units, last sale or resale price")
    deposited_price: int = Field(..., ge=0, description="Minor units paid into escrow at purchase")
    checked_in: bool = False
    refunded: bool = False
    purchased_at: int = Field(..., description="Epoch seconds")
