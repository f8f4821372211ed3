"""
Transition Journal Schema

Records are mutable state; the journal is the history. Every committed
transition appends exactly one entry per effect, chained by hash.

Nothing in the journal is edited. Things happen.
"""

from enum import Enum
from typing import Any, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class JournalEntryType(str, Enum):
    """
    All journal entry types.
    You can add more later, never remove.
    """
    EVENT_CREATED = "EVENT_CREATED"
    TICKET_SOLD = "TICKET_SOLD"
    TICKET_CHECKED_IN = "TICKET_CHECKED_IN"
    BADGE_ISSUED = "BADGE_ISSUED"
    TICKET_TRANSFERRED = "TICKET_TRANSFERRED"
    PROTECTION_ATTACHED = "PROTECTION_ATTACHED"
    RESOLUTION_RECORDED = "RESOLUTION_RECORDED"
    REFUND_PAID = "REFUND_PAID"


class PendingEntry(BaseModel):
    """
    A journal entry staged inside a transaction.

    The store assigns sequence number and hashes at commit time,
    while it still holds the record locks.
    """
    model_config = ConfigDict(frozen=True)

    entry_type: JournalEntryType
    entity_id: UUID
    actor: str
    payload: dict[str, Any]


class JournalEntry(BaseModel):
    """
    Chain rules:
    - sequence_number is 0, 1, 2, ... with no gaps
    - previous_entry_hash is None ONLY for sequence 0
    - entry_hash = SHA-256 of canonical payload chained to previous hash
    """
    model_config = ConfigDict(frozen=True)

    sequence_number: int = Field(..., ge=0)
    entry_type: JournalEntryType
    entity_id: UUID
    actor: str
    payload: dict[str, Any]
    previous_entry_hash: Optional[str] = None
    entry_hash: str
    recorded_at: int = Field(..., description="Epoch seconds")

    @property
    def is_genesis(self) -> bool:
        return self.sequence_number == 0

    def validate_chain_rules(self) -> None:
        """Raises ValueError if chain linkage rules are violated."""
        if self.sequence_number == 0:
            if self.previous_entry_hash is not None:
                raise ValueError(
                    "Genesis entry (sequence 0) must have previous_entry_hash=None, "
                    f"got: {self.previous_entry_hash}"
                )
        else:
            if self.previous_entry_hash is None:
                raise ValueError(
                    f"Entry {self.sequence_number} must have previous_entry_hash set"
                )
            if len(self.previous_entry_hash) != 64:
                raise ValueError(
                    "previous_entry_hash must be 64 hex characters, "
                    f"got {len(self.previous_entry_hash)}"
                )
