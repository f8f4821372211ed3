"""
Resolution Schemas

What the resolution feed reports, and the signed form in which a
trusted resolver delivers it to the gateway.
"""

from enum import Enum
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class MarketOutcome(str, Enum):
    YES = "YES"
    NO = "NO"
    INVALID = "INVALID"


class MarketResolution(BaseModel):
    """A market's state as seen by the resolution feed."""
    model_config = ConfigDict(frozen=True)

    market_id: str
    resolved: bool
    outcome: MarketOutcome


class ResolutionReport(BaseModel):
    """
    A signed outcome report.

    The signature covers the canonical JSON of
    {event_id, market_id, outcome, reported_at} (see signed_fields()).
    """
    model_config = ConfigDict(frozen=True)

    event_id: UUID
    market_id: str = Field(..., min_length=1)
    outcome: bool
    reported_at: int = Field(..., description="Epoch seconds")
    resolver_public_key: str = Field(..., description="Ed25519 public key (base64)")
    signature: str = Field(..., description="Ed25519 signature (base64)")

    def signed_fields(self) -> dict:
        return {
            "event_id": self.event_id,
            "market_id": self.market_id,
            "outcome": self.outcome,
            "reported_at": self.reported_at,
        }
