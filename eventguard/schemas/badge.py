"""
Culture Badge Schema

A badge proves attendance. It is minted on the first check-in of an
(event, owner) pair and then never changes. No operation reassigns
a badge's owner.
"""

from enum import Enum
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class EventCategory(str, Enum):
    MUSIC = "music"
    SPORTS = "sports"
    CONFERENCE = "conference"
    FESTIVAL = "festival"
    OTHER = "other"


class CultureBadge(BaseModel):
    model_config = ConfigDict(frozen=True)

    badge_id: UUID = Field(..., description="Derived from (event_id, owner)")
    owner: str
    event_id: UUID
    event_name: str
    category: EventCategory
    seat_info: str = Field(default="", description="Ticket tier or seat at check-in")
    venue: str = ""
    issued_at: int = Field(..., description="Epoch seconds of first check-in")
