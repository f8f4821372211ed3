"""
Event Record Store

Owns Event, Ticket, CultureBadge and EscrowAccount records, plus the
transition journal.

The store is an arena; identities are the indices. Every record key is
derived deterministically (see Hasher.derive_id), so "already exists"
is detected by a simple key collision.

TRANSACTION CONTRACT:
Every read-check-write sequence MUST run inside transaction():

    with store.transaction(event_id, ticket_key) as ctx:
        event = ctx.get_event(event_id)
        # ... evaluate rules ...
        ctx.put_event(event.model_copy(update={...}))
        ctx.commit(entries, recorded_at=now)

- Exclusive per-record locks are taken for every listed key, in sorted
  order, before the body runs, and released after commit or rollback.
- Writes are staged on the context. commit() applies all of them (and
  appends their journal entries) in one step.
- An exception inside the block, or leaving it without commit(),
  discards every staged write.
"""

from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import dataclass, field
from threading import Lock
from typing import Callable, Generator, Iterable, Optional
from uuid import UUID

from ..core.errors import AlreadyExists, InfrastructureError, NotFound
from ..core.hasher import Hasher
from ..schemas import (
    CultureBadge,
    EscrowAccount,
    Event,
    JournalEntry,
    PendingEntry,
    Ticket,
)


# ============================================================
# EXCEPTIONS
# ============================================================

class EventStoreError(Exception):
    """Base exception for store misuse (programming errors)."""
    pass


class JournalIntegrityError(EventStoreError):
    """Raised when the journal chain fails verification."""
    pass


class LockTimeoutError(InfrastructureError):
    """Raised when a record lock cannot be acquired in time (store busy)."""
    code = "STORE_BUSY"


# ============================================================
# DATA STRUCTURES
# ============================================================

@dataclass
class JournalHead:
    """Current head of the transition journal."""
    last_sequence: int  # -1 means empty journal
    last_entry_hash: Optional[str]

    @property
    def next_sequence(self) -> int:
        return self.last_sequence + 1

    @property
    def is_empty(self) -> bool:
        return self.last_sequence == -1


@dataclass
class TransitionContext:
    """
    Staging area for one atomic transition.

    Reads see staged writes first, then committed state. Mutating an
    existing record requires holding its lock; creating a record does
    not, because creation is re-checked for collisions at commit.
    """
    keys: frozenset
    _store: "EventStore"
    _events: dict = field(default_factory=dict)
    _tickets: dict = field(default_factory=dict)
    _badges: dict = field(default_factory=dict)
    _escrows: dict = field(default_factory=dict)
    _created: set = field(default_factory=set)
    _committed: bool = field(default=False, init=False)
    _rolled_back: bool = field(default=False, init=False)

    def _require_locked(self, key: UUID) -> None:
        if str(key) not in self.keys:
            raise EventStoreError(
                f"Record {key} is not locked by this transaction"
            )

    def _require_open(self) -> None:
        if self._committed:
            raise EventStoreError("Transaction already committed")
        if self._rolled_back:
            raise EventStoreError("Transaction already rolled back")

    # ---- reads ----

    def find_event(self, event_id: UUID) -> Optional[Event]:
        if event_id in self._events:
            return self._events[event_id]
        return self._store._read_event(event_id)

    def get_event(self, event_id: UUID) -> Event:
        event = self.find_event(event_id)
        if event is None:
            raise NotFound(f"Event {event_id} not found", event_id=str(event_id))
        return event

    def find_ticket(self, ticket_key: UUID) -> Optional[Ticket]:
        if ticket_key in self._tickets:
            return self._tickets[ticket_key]
        return self._store._read_ticket(ticket_key)

    def get_ticket(self, ticket_key: UUID) -> Ticket:
        ticket = self.find_ticket(ticket_key)
        if ticket is None:
            raise NotFound(f"Ticket {ticket_key} not found", ticket_key=str(ticket_key))
        return ticket

    def find_badge(self, badge_id: UUID) -> Optional[CultureBadge]:
        if badge_id in self._badges:
            return self._badges[badge_id]
        return self._store._read_badge(badge_id)

    def get_escrow(self, event_id: UUID) -> EscrowAccount:
        if event_id in self._escrows:
            return self._escrows[event_id]
        escrow = self._store._read_escrow(event_id)
        if escrow is None:
            raise NotFound(f"Escrow account for event {event_id} not found")
        return escrow

    # ---- creates ----

    def add_event(self, event: Event) -> None:
        self._require_open()
        if self.find_event(event.event_id) is not None:
            raise AlreadyExists(
                f"Event {event.event_id} already exists", event_id=str(event.event_id)
            )
        self._events[event.event_id] = event
        self._created.add(("event", event.event_id))

    def add_ticket(self, ticket: Ticket) -> None:
        self._require_open()
        if self.find_ticket(ticket.ticket_key) is not None:
            raise AlreadyExists(
                f"Ticket {ticket.ticket_key} already exists",
                ticket_key=str(ticket.ticket_key),
            )
        self._tickets[ticket.ticket_key] = ticket
        self._created.add(("ticket", ticket.ticket_key))

    def add_badge(self, badge: CultureBadge) -> None:
        self._require_open()
        if self.find_badge(badge.badge_id) is not None:
            raise AlreadyExists(
                f"Badge {badge.badge_id} already exists", badge_id=str(badge.badge_id)
            )
        self._badges[badge.badge_id] = badge
        self._created.add(("badge", badge.badge_id))

    def add_escrow(self, escrow: EscrowAccount) -> None:
        self._require_open()
        if self._store._read_escrow(escrow.event_id) is not None or escrow.event_id in self._escrows:
            raise AlreadyExists(f"Escrow account for event {escrow.event_id} already exists")
        self._escrows[escrow.event_id] = escrow
        self._created.add(("escrow", escrow.event_id))

    # ---- mutations ----

    def put_event(self, event: Event) -> None:
        self._require_open()
        self._require_locked(event.event_id)
        self.get_event(event.event_id)
        self._events[event.event_id] = event

    def put_ticket(self, ticket: Ticket) -> None:
        self._require_open()
        self._require_locked(ticket.ticket_key)
        self.get_ticket(ticket.ticket_key)
        self._tickets[ticket.ticket_key] = ticket

    def put_escrow(self, escrow: EscrowAccount) -> None:
        self._require_open()
        self._require_locked(escrow.event_id)
        self.get_escrow(escrow.event_id)
        self._escrows[escrow.event_id] = escrow

    # ---- completion ----

    def commit(
        self,
        entries: Iterable[PendingEntry] = (),
        recorded_at: int = 0,
    ) -> list[JournalEntry]:
        """Apply every staged write and append the journal entries."""
        self._require_open()
        appended = self._store._do_commit(self, list(entries), recorded_at)
        self._committed = True
        return appended

    def rollback(self) -> None:
        if not self._committed and not self._rolled_back:
            self._store._do_rollback(self)
            self._rolled_back = True


# ============================================================
# ABSTRACT BASE CLASS
# ============================================================

class EventStore(ABC):
    """
    Abstract record store.

    Implementations must guarantee:
    1. transaction() serializes every transaction that names the same key
    2. commit applies all staged writes or none of them
    3. journal sequence numbers have no gaps and no duplicates
    """

    @contextmanager
    @abstractmethod
    def transaction(self, *keys: UUID) -> Generator[TransitionContext, None, None]:
        pass

    @abstractmethod
    def _do_commit(
        self,
        ctx: TransitionContext,
        entries: list[PendingEntry],
        recorded_at: int,
    ) -> list[JournalEntry]:
        """Internal: apply a context's writes. Use ctx.commit() instead."""
        pass

    @abstractmethod
    def _do_rollback(self, ctx: TransitionContext) -> None:
        """Internal: discard a context's writes. Use ctx.rollback() instead."""
        pass

    @abstractmethod
    def _read_event(self, event_id: UUID) -> Optional[Event]:
        pass

    @abstractmethod
    def _read_ticket(self, ticket_key: UUID) -> Optional[Ticket]:
        pass

    @abstractmethod
    def _read_badge(self, badge_id: UUID) -> Optional[CultureBadge]:
        pass

    @abstractmethod
    def _read_escrow(self, event_id: UUID) -> Optional[EscrowAccount]:
        pass

    @abstractmethod
    def list_events(self) -> list[Event]:
        pass

    @abstractmethod
    def list_tickets(
        self,
        event_id: Optional[UUID] = None,
        owner: Optional[str] = None,
    ) -> list[Ticket]:
        pass

    @abstractmethod
    def list_badges(
        self,
        owner: Optional[str] = None,
        event_id: Optional[UUID] = None,
    ) -> list[CultureBadge]:
        pass

    @abstractmethod
    def count_holdings(self, event_id: UUID, owner: str) -> Optional[int]:
        """
        Number of tickets `owner` holds for `event_id`.

        Returns None when the backend keeps no holdings index; callers
        must then rely on the holdings proof alone.
        """
        pass

    @abstractmethod
    def list_journal(self) -> list[JournalEntry]:
        pass

    @abstractmethod
    def get_head(self) -> JournalHead:
        pass

    # ================================================================
    # RECORD API
    # Single-record conveniences built on transaction().
    # ================================================================

    def get_event(self, event_id: UUID) -> Event:
        event = self._read_event(event_id)
        if event is None:
            raise NotFound(f"Event {event_id} not found", event_id=str(event_id))
        return event

    def get_ticket(self, ticket_key: UUID) -> Ticket:
        ticket = self._read_ticket(ticket_key)
        if ticket is None:
            raise NotFound(f"Ticket {ticket_key} not found", ticket_key=str(ticket_key))
        return ticket

    def get_badge(self, badge_id: UUID) -> CultureBadge:
        badge = self._read_badge(badge_id)
        if badge is None:
            raise NotFound(f"Badge {badge_id} not found", badge_id=str(badge_id))
        return badge

    def get_escrow(self, event_id: UUID) -> EscrowAccount:
        escrow = self._read_escrow(event_id)
        if escrow is None:
            raise NotFound(f"Escrow account for event {event_id} not found")
        return escrow

    def create_event(self, event: Event, escrow: EscrowAccount) -> UUID:
        with self.transaction(event.event_id) as ctx:
            ctx.add_event(event)
            ctx.add_escrow(escrow)
            ctx.commit()
        return event.event_id

    def create_ticket(self, ticket: Ticket) -> Ticket:
        """
        Insert a ticket outside the buy flow.

        Locks the owning event as well as the ticket, so the insert is
        serialized with every service operation on that event and a
        concurrent buy sees the collision before moving any tokens.
        """
        with self.transaction(ticket.event_id, ticket.ticket_key) as ctx:
            ctx.add_ticket(ticket)
            ctx.commit()
        return ticket

    def create_badge(self, badge: CultureBadge) -> CultureBadge:
        """Insert a badge under its event lock, like create_ticket()."""
        with self.transaction(badge.event_id, badge.badge_id) as ctx:
            ctx.add_badge(badge)
            ctx.commit()
        return badge

    def mutate_event(self, event_id: UUID, fn: Callable[[Event], Event]) -> Event:
        """Apply `fn` to the current event under its lock and store the result."""
        with self.transaction(event_id) as ctx:
            updated = fn(ctx.get_event(event_id))
            if updated.event_id != event_id:
                raise EventStoreError("Transition function changed the event identity")
            ctx.put_event(updated)
            ctx.commit()
        return updated

    def mutate_ticket(self, ticket_key: UUID, fn: Callable[[Ticket], Ticket]) -> Ticket:
        """Apply `fn` to the current ticket under its lock and store the result."""
        with self.transaction(ticket_key) as ctx:
            updated = fn(ctx.get_ticket(ticket_key))
            if updated.ticket_key != ticket_key:
                raise EventStoreError("Transition function changed the ticket identity")
            ctx.put_ticket(updated)
            ctx.commit()
        return updated


# ============================================================
# IN-MEMORY IMPLEMENTATION
# ============================================================

class InMemoryEventStore(EventStore):
    """
    In-memory record store with per-record locks.

    Suitable for development, testing and single-process deployments.
    Operations on different events never contend for the same lock.
    """

    def __init__(self, lock_timeout: float = 10.0):
        self._events: dict[UUID, Event] = {}
        self._tickets: dict[UUID, Ticket] = {}
        self._badges: dict[UUID, CultureBadge] = {}
        self._escrows: dict[UUID, EscrowAccount] = {}
        self._holdings: dict[tuple[UUID, str], set[UUID]] = {}
        self._journal: list[JournalEntry] = []
        self._head = JournalHead(last_sequence=-1, last_entry_hash=None)

        self._lock_timeout = lock_timeout
        # key -> [lock, transactions holding or waiting for it]
        self._record_locks: dict[str, list] = {}
        self._record_locks_guard = Lock()
        # Guards the dicts above while a commit is being applied
        self._state_lock = Lock()

    def _checkout_lock(self, key: str) -> Lock:
        with self._record_locks_guard:
            slot = self._record_locks.setdefault(key, [Lock(), 0])
            slot[1] += 1
            return slot[0]

    def _checkin_lock(self, key: str) -> None:
        # A slot is dropped once nobody holds or waits on it
        with self._record_locks_guard:
            slot = self._record_locks[key]
            slot[1] -= 1
            if slot[1] == 0:
                del self._record_locks[key]

    @property
    def active_lock_count(self) -> int:
        """Record locks currently held or waited on."""
        with self._record_locks_guard:
            return len(self._record_locks)

    @contextmanager
    def transaction(self, *keys: UUID) -> Generator[TransitionContext, None, None]:
        """Lock every key (sorted), yield a context, release on exit."""
        ordered = sorted({str(k) for k in keys})
        acquired: list[tuple[str, Lock]] = []
        try:
            for key in ordered:
                lock = self._checkout_lock(key)
                if not lock.acquire(timeout=self._lock_timeout):
                    self._checkin_lock(key)
                    raise LockTimeoutError(
                        f"Timed out waiting for record {key}", record=key
                    )
                acquired.append((key, lock))

            ctx = TransitionContext(keys=frozenset(ordered), _store=self)
            try:
                yield ctx
            except Exception:
                ctx.rollback()
                raise
            finally:
                if not ctx._committed and not ctx._rolled_back:
                    ctx.rollback()
        finally:
            for key, lock in reversed(acquired):
                lock.release()
                self._checkin_lock(key)

    def _do_commit(
        self,
        ctx: TransitionContext,
        entries: list[PendingEntry],
        recorded_at: int,
    ) -> list[JournalEntry]:
        with self._state_lock:
            # Creation collisions are re-checked here, so two transactions
            # that never shared a lock still cannot create the same record.
            # Side effects a caller ran before commit are not undone; the
            # record API locks the owning event so this only trips for
            # raw transactions that skip it.
            for kind, key in ctx._created:
                existing = {
                    "event": self._events,
                    "ticket": self._tickets,
                    "badge": self._badges,
                    "escrow": self._escrows,
                }[kind]
                if key in existing:
                    raise AlreadyExists(f"{kind.capitalize()} {key} already exists")

            appended = self._chain_entries(entries, recorded_at)

            self._events.update(ctx._events)
            for ticket in ctx._tickets.values():
                self._index_ticket(ticket)
                self._tickets[ticket.ticket_key] = ticket
            self._badges.update(ctx._badges)
            self._escrows.update(ctx._escrows)

            self._journal.extend(appended)
            if appended:
                last = appended[-1]
                self._head = JournalHead(
                    last_sequence=last.sequence_number,
                    last_entry_hash=last.entry_hash,
                )
            return appended

    def _chain_entries(
        self,
        entries: list[PendingEntry],
        recorded_at: int,
    ) -> list[JournalEntry]:
        appended = []
        sequence = self._head.next_sequence
        previous_hash = self._head.last_entry_hash
        for pending in entries:
            chained = {
                "entry_type": pending.entry_type,
                "entity_id": pending.entity_id,
                "actor": pending.actor,
                "payload": pending.payload,
                "sequence_number": sequence,
            }
            entry_hash = Hasher.hash_entry(chained, previous_hash)
            entry = JournalEntry(
                sequence_number=sequence,
                entry_type=pending.entry_type,
                entity_id=pending.entity_id,
                actor=pending.actor,
                payload=pending.payload,
                previous_entry_hash=previous_hash,
                entry_hash=entry_hash,
                recorded_at=recorded_at,
            )
            entry.validate_chain_rules()
            appended.append(entry)
            previous_hash = entry_hash
            sequence += 1
        return appended

    def _index_ticket(self, ticket: Ticket) -> None:
        previous = self._tickets.get(ticket.ticket_key)
        if previous is not None:
            held = self._holdings.get((previous.event_id, previous.owner))
            if held is not None:
                held.discard(ticket.ticket_key)
        self._holdings.setdefault((ticket.event_id, ticket.owner), set()).add(ticket.ticket_key)

    def _do_rollback(self, ctx: TransitionContext) -> None:
        ctx._events.clear()
        ctx._tickets.clear()
        ctx._badges.clear()
        ctx._escrows.clear()
        ctx._created.clear()

    def _read_event(self, event_id: UUID) -> Optional[Event]:
        with self._state_lock:
            return self._events.get(event_id)

    def _read_ticket(self, ticket_key: UUID) -> Optional[Ticket]:
        with self._state_lock:
            return self._tickets.get(ticket_key)

    def _read_badge(self, badge_id: UUID) -> Optional[CultureBadge]:
        with self._state_lock:
            return self._badges.get(badge_id)

    def _read_escrow(self, event_id: UUID) -> Optional[EscrowAccount]:
        with self._state_lock:
            return self._escrows.get(event_id)

    def list_events(self) -> list[Event]:
        with self._state_lock:
            return sorted(self._events.values(), key=lambda e: (e.config.date, e.config.name))

    def list_tickets(
        self,
        event_id: Optional[UUID] = None,
        owner: Optional[str] = None,
    ) -> list[Ticket]:
        with self._state_lock:
            tickets = [
                t for t in self._tickets.values()
                if (event_id is None or t.event_id == event_id)
                and (owner is None or t.owner == owner)
            ]
        return sorted(tickets, key=lambda t: (str(t.event_id), t.ticket_id))

    def list_badges(
        self,
        owner: Optional[str] = None,
        event_id: Optional[UUID] = None,
    ) -> list[CultureBadge]:
        with self._state_lock:
            badges = [
                b for b in self._badges.values()
                if (owner is None or b.owner == owner)
                and (event_id is None or b.event_id == event_id)
            ]
        return sorted(badges, key=lambda b: b.issued_at)

    def count_holdings(self, event_id: UUID, owner: str) -> Optional[int]:
        with self._state_lock:
            return len(self._holdings.get((event_id, owner), ()))

    def list_journal(self) -> list[JournalEntry]:
        with self._state_lock:
            return list(self._journal)

    def get_head(self) -> JournalHead:
        with self._state_lock:
            return JournalHead(
                last_sequence=self._head.last_sequence,
                last_entry_hash=self._head.last_entry_hash,
            )


def verify_journal_chain(entries: list[JournalEntry]) -> None:
    """
    Verify a complete journal chain.

    Raises JournalIntegrityError on the first broken link.
    """
    previous_hash = None
    for expected_sequence, entry in enumerate(entries):
        if entry.sequence_number != expected_sequence:
            raise JournalIntegrityError(
                f"Sequence gap or reorder: expected {expected_sequence}, "
                f"got {entry.sequence_number}"
            )
        if entry.previous_entry_hash != previous_hash:
            raise JournalIntegrityError(
                f"Chain linkage broken at sequence {expected_sequence}"
            )
        try:
            entry.validate_chain_rules()
        except ValueError as e:
            raise JournalIntegrityError(str(e)) from e

        chained = {
            "entry_type": entry.entry_type,
            "entity_id": entry.entity_id,
            "actor": entry.actor,
            "payload": entry.payload,
            "sequence_number": entry.sequence_number,
        }
        computed = Hasher.hash_entry(chained, previous_hash)
        if computed != entry.entry_hash:
            raise JournalIntegrityError(
                f"Hash verification failed at sequence {expected_sequence}. "
                f"Computed: {computed[:16]}..., stored: {entry.entry_hash[:16]}..."
            )
        previous_hash = entry.entry_hash
