"""
Ticketing Service - The State Machine

Per ticket:  Sold -> (CheckedIn)? -> (Refunded)?
Per event:   Created -> (ProtectionAttached)? -> (Resolved)?

checked_in and refunded are independent, irreversible flags. Protection
is attached at most once and only before resolution. Resolution is
recorded at most once.

Every operation follows the same shape:

    1. lock the records it touches (Event, or Ticket + Event)
    2. evaluate the rules against the locked state
    3. stage the new records and the journal entries
    4. move tokens through custody, if any
    5. commit

Any failure before step 5 leaves no trace. The in-memory commit in
step 5 cannot fail on a state that passed step 2, so an operation is
either fully applied or not applied at all.

Rules (enforced in code):
- Inventory: tickets_sold never exceeds total_tickets
- Ticket ids are 0, 1, 2, ... per event, never reused
- Transfers obey the resale rules and need a complete holdings proof
- Refunds pay only when the recorded outcome matches the condition
- Only trusted resolvers record outcomes
- Badges are minted once per (event, owner) and never move
"""

import time
from contextlib import contextmanager
from typing import TYPE_CHECKING, Iterable, Optional
from uuid import UUID

from ..observability import MetricsCollector, get_logger, get_metrics
from ..schemas import (
    CultureBadge,
    EscrowAccount,
    Event,
    EventCategory,
    EventConfig,
    JournalEntry,
    JournalEntryType,
    PendingEntry,
    RefundCondition,
    RefundReceipt,
    Ticket,
)
from . import escrow as escrow_ledger
from .clock import Clock, system_clock
from .custody import TokenCustody
from .errors import (
    IncompleteOwnershipProof,
    InfrastructureError,
    InvalidConfig,
    NotFound,
    TicketingError,
    Unauthorized,
)
from .hasher import Hasher
from .rules import (
    can_attach_protection,
    can_buy,
    can_check_in,
    can_claim_refund,
    can_record_resolution,
    can_open_transfer,
    can_transfer,
    compute_refund_amount,
    parse_event_category,
    parse_refund_condition,
    refund_basis,
    validate_event_config,
)

if TYPE_CHECKING:
    from ..db.store import EventStore, TransitionContext

logger = get_logger(__name__)


class TicketingService:
    """
    The ticketing core.

    Business rules live in rules.py; records and locking live in the
    EventStore; token movement is delegated to an optional TokenCustody.
    When no custody is configured, payments are assumed to be settled
    off-ledger and only escrow accounting is kept.

    CONCURRENCY GUARANTEES (with EventStore):
    - Every precondition is evaluated under the locks of the records it reads
    - Two buys on the last slot: exactly one succeeds, the other gets SoldOut
    - Two refunds of one ticket: exactly one pays
    - Operations on different events never block each other
    """

    def __init__(
        self,
        store: Optional["EventStore"] = None,
        custody: Optional[TokenCustody] = None,
        trusted_resolvers: Iterable[str] = (),
        clock: Optional[Clock] = None,
        require_future_date: bool = True,
        metrics: Optional[MetricsCollector] = None,
    ):
        if store is None:
            # Import here to avoid circular imports
            from ..db.store import InMemoryEventStore
            store = InMemoryEventStore()

        self._store = store
        self._custody = custody
        self._trusted_resolvers = frozenset(trusted_resolvers)
        self._clock = clock or system_clock
        self._require_future_date = require_future_date
        self._metrics = metrics if metrics is not None else get_metrics()

    @property
    def store(self) -> "EventStore":
        return self._store

    @property
    def custody(self) -> Optional[TokenCustody]:
        return self._custody

    @property
    def trusted_resolvers(self) -> frozenset:
        return self._trusted_resolvers

    @property
    def journal_length(self) -> int:
        return self._store.get_head().next_sequence

    @contextmanager
    def _observe(self, operation: str, **fields):
        """Time an operation and count its rejections by error code."""
        start = time.perf_counter()
        try:
            yield
        except TicketingError as e:
            self._metrics.record_violation(e.code)
            logger.info(
                f"{operation} rejected: {e.message}",
                operation=operation,
                error_code=e.code,
                **fields,
            )
            raise
        except InfrastructureError as e:
            logger.warning(
                f"{operation} failed: {e.message}",
                operation=operation,
                error_code=e.code,
                **fields,
            )
            raise
        self._metrics.record_operation(operation, (time.perf_counter() - start) * 1000)

    # ================================================================
    # EVENTS
    # ================================================================

    def create_event(self, organizer: str, config: EventConfig) -> Event:
        """
        Create an event and open its escrow account with balance 0.

        The event identity is derived from (organizer, name), so creating
        the same event twice fails with AlreadyExists.
        """
        with self._observe("create_event", organizer=organizer):
            if not organizer:
                raise InvalidConfig("organizer must not be empty")

            now = self._clock()
            validate_event_config(config, now, self._require_future_date)

            event_id = Hasher.derive_id("event", organizer, config.name)
            event = Event(
                event_id=event_id,
                organizer=organizer,
                config=config,
                created_at=now,
            )
            account = EscrowAccount(
                event_id=event_id,
                settlement_unit=config.settlement_unit,
            )

            with self._store.transaction(event_id) as ctx:
                ctx.add_event(event)
                ctx.add_escrow(account)
                ctx.commit([
                    PendingEntry(
                        entry_type=JournalEntryType.EVENT_CREATED,
                        entity_id=event_id,
                        actor=organizer,
                        payload={
                            "name": config.name,
                            "date": config.date,
                            "total_tickets": config.total_tickets,
                            "base_price": config.base_price,
                            "settlement_unit": config.settlement_unit,
                        },
                    ),
                ], recorded_at=now)

        logger.info(
            "Event created",
            event_id=str(event_id),
            organizer=organizer,
            total_tickets=config.total_tickets,
        )
        return event

    def attach_polymarket_protection(
        self,
        organizer: str,
        event_id: UUID,
        market_id: str,
        refund_condition: RefundCondition,
        refund_percentage: int,
    ) -> Event:
        """Attach conditional-refund protection tied to a prediction market."""
        with self._observe("attach_polymarket_protection", event_id=str(event_id)):
            with self._store.transaction(event_id) as ctx:
                now = self._clock()
                event = ctx.get_event(event_id)
                can_attach_protection(
                    event, organizer, market_id, refund_condition, refund_percentage
                )

                condition = parse_refund_condition(refund_condition)
                updated = event.model_copy(update={
                    "protection_enabled": True,
                    "market_id": market_id,
                    "refund_condition": condition,
                    "refund_percentage": refund_percentage,
                })
                ctx.put_event(updated)
                ctx.commit([
                    PendingEntry(
                        entry_type=JournalEntryType.PROTECTION_ATTACHED,
                        entity_id=event_id,
                        actor=organizer,
                        payload={
                            "market_id": market_id,
                            "refund_condition": condition,
                            "refund_percentage": refund_percentage,
                        },
                    ),
                ], recorded_at=now)

        logger.info(
            "Protection attached",
            event_id=str(event_id),
            market_id=market_id,
            refund_condition=condition.value,
            refund_percentage=refund_percentage,
        )
        return updated

    def record_market_resolution(
        self,
        resolver: str,
        event_id: UUID,
        outcome: bool,
        market_id: Optional[str] = None,
    ) -> Event:
        """
        Record the market outcome for an event.

        Only a trusted resolver may call this, and only once per event.
        Redelivery of the same outcome is rejected with AlreadyResolved.
        When `market_id` is given and the event carries protection, it
        must name the protected market.
        """
        with self._observe("record_market_resolution", event_id=str(event_id)):
            with self._store.transaction(event_id) as ctx:
                now = self._clock()
                event = ctx.get_event(event_id)
                can_record_resolution(resolver, self._trusted_resolvers, event)

                if (
                    market_id is not None
                    and event.protection_enabled
                    and market_id != event.market_id
                ):
                    raise Unauthorized(
                        f"Report is for market {market_id}, event is protected "
                        f"by market {event.market_id}"
                    )

                updated = event.model_copy(update={
                    "resolved": True,
                    "outcome": bool(outcome),
                })
                ctx.put_event(updated)
                ctx.commit([
                    PendingEntry(
                        entry_type=JournalEntryType.RESOLUTION_RECORDED,
                        entity_id=event_id,
                        actor=resolver,
                        payload={
                            "market_id": market_id or event.market_id,
                            "outcome": bool(outcome),
                        },
                    ),
                ], recorded_at=now)

        logger.info("Resolution recorded", event_id=str(event_id), outcome=bool(outcome))
        return updated

    # ================================================================
    # TICKETS
    # ================================================================

    def buy_ticket(self, buyer: str, event_id: UUID) -> Ticket:
        """
        Sell the next ticket of an event at its base price.

        The ticket id is the event's current tickets_sold. The price is
        deposited into escrow (and pulled from the buyer through custody
        when custody is configured).
        """
        with self._observe("buy_ticket", event_id=str(event_id)):
            if not buyer:
                raise InvalidConfig("buyer must not be empty")

            with self._store.transaction(event_id) as ctx:
                now = self._clock()
                event = ctx.get_event(event_id)
                can_buy(event)

                ticket_id = event.tickets_sold
                price = event.config.base_price
                ticket = Ticket(
                    ticket_key=Hasher.derive_id("ticket", event_id, ticket_id),
                    event_id=event_id,
                    ticket_id=ticket_id,
                    owner=buyer,
                    purchase_price=price,
                    deposited_price=price,
                    purchased_at=now,
                )
                ctx.add_ticket(ticket)
                ctx.put_event(event.model_copy(update={"tickets_sold": ticket_id + 1}))
                ctx.put_escrow(escrow_ledger.deposit(ctx.get_escrow(event_id), price))

                if self._custody is not None:
                    self._custody.transfer_in(buyer, event.escrow_id, price)

                ctx.commit([
                    PendingEntry(
                        entry_type=JournalEntryType.TICKET_SOLD,
                        entity_id=ticket.ticket_key,
                        actor=buyer,
                        payload={
                            "event_id": event_id,
                            "ticket_id": ticket_id,
                            "price": price,
                        },
                    ),
                ], recorded_at=now)

        logger.info(
            "Ticket sold",
            event_id=str(event_id),
            ticket_id=ticket_id,
            buyer=buyer,
            price=price,
        )
        return ticket

    def check_in_ticket(
        self,
        authority: str,
        ticket_key: UUID,
        event_type: EventCategory,
        seat_info: str = "",
    ) -> tuple[Ticket, CultureBadge]:
        """
        Check a ticket in and mint the owner's attendance badge.

        The authority must be the ticket owner or the event organizer.
        If the owner already holds a badge for this event (from another
        ticket), that badge is returned unchanged.
        """
        with self._observe("check_in_ticket", ticket_key=str(ticket_key)):
            event_id = self._event_of(ticket_key)
            category = parse_event_category(event_type)

            with self._store.transaction(ticket_key, event_id) as ctx:
                now = self._clock()
                ticket = ctx.get_ticket(ticket_key)
                event = ctx.get_event(event_id)

                if authority not in (ticket.owner, event.organizer):
                    raise Unauthorized(
                        "Only the ticket owner or the event organizer can check in"
                    )
                can_check_in(ticket)

                checked = ticket.model_copy(update={"checked_in": True})
                ctx.put_ticket(checked)
                entries = [
                    PendingEntry(
                        entry_type=JournalEntryType.TICKET_CHECKED_IN,
                        entity_id=ticket_key,
                        actor=authority,
                        payload={"event_id": event_id, "owner": ticket.owner},
                    ),
                ]

                badge_id = Hasher.derive_id("badge", event_id, ticket.owner)
                badge = ctx.find_badge(badge_id)
                issued = badge is None
                if issued:
                    badge = CultureBadge(
                        badge_id=badge_id,
                        owner=ticket.owner,
                        event_id=event_id,
                        event_name=event.config.name,
                        category=category,
                        seat_info=seat_info,
                        venue=event.config.venue,
                        issued_at=now,
                    )
                    ctx.add_badge(badge)
                    entries.append(PendingEntry(
                        entry_type=JournalEntryType.BADGE_ISSUED,
                        entity_id=badge_id,
                        actor=authority,
                        payload={
                            "event_id": event_id,
                            "owner": ticket.owner,
                            "category": category,
                        },
                    ))

                ctx.commit(entries, recorded_at=now)

        if issued:
            self._metrics.record_badge()
        logger.info(
            "Ticket checked in",
            ticket_key=str(ticket_key),
            event_id=str(event_id),
            badge_issued=issued,
        )
        return checked, badge

    def transfer_ticket(
        self,
        current_owner: str,
        new_owner: str,
        ticket_key: UUID,
        event_id: UUID,
        proposed_price: Optional[int] = None,
        recipient_holdings: Iterable[UUID] = (),
    ) -> Ticket:
        """
        Move a ticket to a new owner under the event's resale rules.

        Args:
            current_owner: Must own the ticket
            new_owner: Recipient
            ticket_key: Ticket to move
            event_id: Event the ticket belongs to
            proposed_price: Resale price; None is a gift at unchanged price
            recipient_holdings: Every ticket of this event the recipient
                holds. Must be complete; the wallet limit is counted from it.

        No tokens move here. Settlement of a resale is out of band.
        """
        with self._observe("transfer_ticket", ticket_key=str(ticket_key)):
            if not new_owner:
                raise InvalidConfig("new_owner must not be empty")
            if new_owner == current_owner:
                raise InvalidConfig("Ticket cannot be transferred to its current owner")

            with self._store.transaction(ticket_key, event_id) as ctx:
                now = self._clock()
                ticket = self._ticket_of_event(ctx, ticket_key, event_id)
                event = ctx.get_event(event_id)

                if ticket.owner != current_owner:
                    raise Unauthorized("Only the ticket owner can transfer it")

                can_open_transfer(event, now)
                held = self._verify_holdings(ctx, event_id, new_owner, recipient_holdings)
                can_transfer(event, ticket, now, proposed_price, held)

                update = {"owner": new_owner}
                if proposed_price is not None:
                    update["purchase_price"] = proposed_price
                moved = ticket.model_copy(update=update)
                ctx.put_ticket(moved)
                ctx.commit([
                    PendingEntry(
                        entry_type=JournalEntryType.TICKET_TRANSFERRED,
                        entity_id=ticket_key,
                        actor=current_owner,
                        payload={
                            "event_id": event_id,
                            "from": current_owner,
                            "to": new_owner,
                            "price": moved.purchase_price,
                        },
                    ),
                ], recorded_at=now)

        logger.info(
            "Ticket transferred",
            ticket_key=str(ticket_key),
            event_id=str(event_id),
            new_owner=new_owner,
            price=moved.purchase_price,
        )
        return moved

    def claim_refund(self, claimer: str, ticket_key: UUID, event_id: UUID) -> RefundReceipt:
        """
        Pay the protection refund for one ticket.

        refund = basis * refund_percentage // 100, withdrawn from the event
        escrow and paid to the claimer. The basis is the price the holder
        paid, capped at what the primary sale deposited, so a marked-up
        resale cannot overdraw escrow for the other holders. Check-in
        status does not matter.
        """
        with self._observe("claim_refund", ticket_key=str(ticket_key)):
            with self._store.transaction(ticket_key, event_id) as ctx:
                now = self._clock()
                ticket = self._ticket_of_event(ctx, ticket_key, event_id)
                event = ctx.get_event(event_id)

                if claimer != ticket.owner:
                    raise Unauthorized("Only the ticket owner can claim its refund")
                can_claim_refund(event, ticket)

                amount = compute_refund_amount(refund_basis(ticket), event.refund_percentage)
                account = escrow_ledger.withdraw(ctx.get_escrow(event_id), amount)
                refunded = ticket.model_copy(update={"refunded": True})
                ctx.put_escrow(account)
                ctx.put_ticket(refunded)

                if self._custody is not None:
                    self._custody.transfer_out(event.escrow_id, claimer, amount)

                ctx.commit([
                    PendingEntry(
                        entry_type=JournalEntryType.REFUND_PAID,
                        entity_id=ticket_key,
                        actor=claimer,
                        payload={
                            "event_id": event_id,
                            "amount": amount,
                            "settlement_unit": account.settlement_unit,
                        },
                    ),
                ], recorded_at=now)

        self._metrics.record_refund_volume(amount)
        logger.info(
            "Refund paid",
            ticket_key=str(ticket_key),
            event_id=str(event_id),
            amount=amount,
            escrow_balance=account.balance,
        )
        return RefundReceipt(
            ticket=refunded,
            claimer=claimer,
            amount=amount,
            settlement_unit=account.settlement_unit,
            escrow_balance_after=account.balance,
        )

    # ================================================================
    # HELPERS
    # ================================================================

    def _event_of(self, ticket_key: UUID) -> UUID:
        # A ticket's event never changes, so it is safe to read unlocked.
        return self._store.get_ticket(ticket_key).event_id

    @staticmethod
    def _ticket_of_event(ctx: "TransitionContext", ticket_key: UUID, event_id: UUID) -> Ticket:
        ticket = ctx.get_ticket(ticket_key)
        if ticket.event_id != event_id:
            raise NotFound(
                f"Ticket {ticket_key} does not belong to event {event_id}",
                ticket_key=str(ticket_key),
            )
        return ticket

    def _verify_holdings(
        self,
        ctx: "TransitionContext",
        event_id: UUID,
        recipient: str,
        recipient_holdings: Iterable[UUID],
    ) -> int:
        """
        Check the recipient's holdings proof and return the held count.

        Every listed ticket must exist, belong to this event and be owned
        by the recipient. The distinct count must match the store's
        holdings index where the store keeps one.
        """
        listed = set(recipient_holdings)
        for key in listed:
            held = ctx.find_ticket(key)
            if held is None or held.event_id != event_id or held.owner != recipient:
                raise IncompleteOwnershipProof(
                    f"Ticket {key} is not held by {recipient} for event {event_id}",
                    ticket_key=str(key),
                )

        indexed = self._store.count_holdings(event_id, recipient)
        if indexed is not None and indexed != len(listed):
            raise IncompleteOwnershipProof(
                f"Recipient holds {indexed} tickets for this event, proof lists {len(listed)}",
                held=indexed,
                listed=len(listed),
            )
        return len(listed)

    # ================================================================
    # QUERIES
    # ================================================================

    def get_event(self, event_id: UUID) -> Event:
        return self._store.get_event(event_id)

    def get_ticket(self, ticket_key: UUID) -> Ticket:
        return self._store.get_ticket(ticket_key)

    def get_escrow(self, event_id: UUID) -> EscrowAccount:
        return self._store.get_escrow(event_id)

    def get_badge(self, event_id: UUID, owner: str) -> CultureBadge:
        return self._store.get_badge(Hasher.derive_id("badge", event_id, owner))

    def list_events(self) -> list[Event]:
        return self._store.list_events()

    def list_tickets(
        self,
        event_id: Optional[UUID] = None,
        owner: Optional[str] = None,
    ) -> list[Ticket]:
        return self._store.list_tickets(event_id=event_id, owner=owner)

    def list_badges(self, owner: Optional[str] = None) -> list[CultureBadge]:
        return self._store.list_badges(owner=owner)

    def get_journal(self) -> list[JournalEntry]:
        """All journal entries, oldest first."""
        return self._store.list_journal()

    def get_journal_for_entity(self, entity_id: UUID) -> list[JournalEntry]:
        return [e for e in self._store.list_journal() if e.entity_id == entity_id]

    def verify_journal(self) -> None:
        """Raises JournalIntegrityError if the journal chain is broken."""
        from ..db.store import verify_journal_chain

        verify_journal_chain(self._store.list_journal())

    def verify_journal_integrity(self) -> bool:
        """
        Verify the entire journal chain is intact.

        This should be run periodically as a health check.
        """
        from ..db.store import JournalIntegrityError

        try:
            self.verify_journal()
        except JournalIntegrityError:
            logger.error("Journal integrity check failed", journal_length=self.journal_length)
            return False
        return True
