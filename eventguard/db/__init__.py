"""
Record Store for the Ticketing Core

Provides:
- EventStore abstraction with per-record locking transactions
- InMemoryEventStore for development, tests and single-process deployments
- Journal chain verification
"""

from .store import (
    EventStore,
    InMemoryEventStore,
    TransitionContext,
    JournalHead,
    EventStoreError,
    JournalIntegrityError,
    LockTimeoutError,
    verify_journal_chain,
)

__all__ = [
    "EventStore",
    "InMemoryEventStore",
    "TransitionContext",
    "JournalHead",
    "EventStoreError",
    "JournalIntegrityError",
    "LockTimeoutError",
    "verify_journal_chain",
]
