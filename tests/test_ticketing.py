"""
Tests for the Ticketing State Machine

Demonstrates the complete ticket lifecycle:
1. Create an event and sell tickets
2. Resell within the anti-scalping rules
3. Check in and mint attendance badges
4. Attach protection, resolve the market, claim refunds
5. Verify the journal chain
"""

import threading
from concurrent.futures import ThreadPoolExecutor

import pytest
from pydantic import ValidationError

from eventguard.core import (
    AlreadyCheckedIn,
    AlreadyExists,
    AlreadyRefunded,
    AlreadyResolved,
    ConditionNotMet,
    CustodyUnavailableError,
    Hasher,
    IncompleteOwnershipProof,
    InMemoryTokenCustody,
    InsufficientFunds,
    InvalidConfig,
    ManualClock,
    NotFound,
    PriceCapExceeded,
    ProtectionAlreadyAttached,
    SoldOut,
    TicketingService,
    TransferLocked,
    TransfersDisabled,
    Unauthorized,
    WalletLimitExceeded,
)
from eventguard.observability import MetricsCollector
from eventguard.schemas import (
    EventCategory,
    EventConfig,
    JournalEntryType,
    RefundCondition,
    ResaleRules,
    Ticket,
)

NOW = 1_750_000_000
DAY = 24 * 60 * 60
USDC = 1_000000
EVENT_DATE = NOW + 30 * DAY
RESOLVER = "resolver-key"
ORGANIZER = "organizer"


def festival_config(**overrides) -> EventConfig:
    rules = overrides.pop("rules", None) or ResaleRules(
        max_resale_markup_bps=1000,
        transfer_lock_start=DAY,
        max_tickets_per_wallet=2,
    )
    fields = dict(
        name="Harbour Lights",
        date=EVENT_DATE,
        venue="Pier 9",
        total_tickets=10,
        base_price=100 * USDC,
        rules=rules,
    )
    fields.update(overrides)
    return EventConfig(**fields)


class TicketingFixtures:
    """Shared fixtures: a controlled clock, funded wallets, a fresh service."""

    @pytest.fixture
    def clock(self):
        return ManualClock(start=NOW)

    @pytest.fixture
    def custody(self):
        custody = InMemoryTokenCustody()
        for holder in ("alice", "bob", "carol"):
            custody.fund(holder, 1_000 * USDC)
        return custody

    @pytest.fixture
    def metrics(self):
        return MetricsCollector()

    @pytest.fixture
    def service(self, clock, custody, metrics):
        return TicketingService(
            custody=custody,
            trusted_resolvers=[RESOLVER],
            clock=clock,
            metrics=metrics,
        )

    @pytest.fixture
    def event(self, service):
        return service.create_event(ORGANIZER, festival_config())


class TestEventCreation(TicketingFixtures):

    def test_create_opens_empty_escrow(self, service, event):
        escrow = service.get_escrow(event.event_id)
        assert escrow.balance == 0
        assert escrow.settlement_unit == "USDC"
        assert event.tickets_sold == 0
        assert not event.protection_enabled
        assert not event.resolved

    def test_identity_derived_from_organizer_and_name(self, event):
        assert event.event_id == Hasher.derive_id("event", ORGANIZER, "Harbour Lights")

    def test_duplicate_event_rejected(self, service, event):
        with pytest.raises(AlreadyExists):
            service.create_event(ORGANIZER, festival_config())

    def test_same_name_other_organizer_allowed(self, service, event):
        other = service.create_event("other-organizer", festival_config())
        assert other.event_id != event.event_id

    def test_invalid_config_rejected(self, service):
        with pytest.raises(InvalidConfig):
            service.create_event(ORGANIZER, festival_config(total_tickets=0))
        with pytest.raises(InvalidConfig):
            service.create_event(ORGANIZER, festival_config(date=NOW - 1))
        assert service.list_events() == []

    def test_past_date_allowed_when_not_required(self, clock):
        service = TicketingService(clock=clock, require_future_date=False, metrics=MetricsCollector())
        event = service.create_event(ORGANIZER, festival_config(date=NOW - DAY))
        assert event.config.date == NOW - DAY


class TestBuying(TicketingFixtures):

    def test_ids_are_sequential_and_unique(self, service, event):
        tickets = [service.buy_ticket("alice", event.event_id) for _ in range(3)]

        assert [t.ticket_id for t in tickets] == [0, 1, 2]
        assert len({t.ticket_key for t in tickets}) == 3
        assert tickets[1].ticket_key == Hasher.derive_id("ticket", event.event_id, 1)
        assert service.get_event(event.event_id).tickets_sold == 3

    def test_payment_flows_into_escrow(self, service, custody, event):
        service.buy_ticket("alice", event.event_id)

        assert service.get_escrow(event.event_id).balance == 100 * USDC
        assert custody.balance_of("alice") == 900 * USDC
        assert custody.vault_balance(event.escrow_id) == 100 * USDC

    def test_inventory_bound(self, service):
        event = service.create_event(ORGANIZER, festival_config(name="Tiny", total_tickets=2))
        service.buy_ticket("alice", event.event_id)
        service.buy_ticket("bob", event.event_id)

        with pytest.raises(SoldOut):
            service.buy_ticket("carol", event.event_id)

        assert service.get_event(event.event_id).tickets_sold == 2
        assert service.get_escrow(event.event_id).balance == 200 * USDC

    def test_insufficient_funds_leaves_no_trace(self, service, event):
        journal_before = service.journal_length

        with pytest.raises(InsufficientFunds):
            service.buy_ticket("dave", event.event_id)

        assert service.get_event(event.event_id).tickets_sold == 0
        assert service.get_escrow(event.event_id).balance == 0
        assert service.list_tickets(event_id=event.event_id) == []
        assert service.journal_length == journal_before

    def test_custody_outage_leaves_no_trace(self, service, custody, event):
        custody.available = False

        with pytest.raises(CustodyUnavailableError):
            service.buy_ticket("alice", event.event_id)

        assert service.get_event(event.event_id).tickets_sold == 0

        custody.available = True
        ticket = service.buy_ticket("alice", event.event_id)
        assert ticket.ticket_id == 0

    def test_unknown_event(self, service):
        with pytest.raises(NotFound):
            service.buy_ticket("alice", Hasher.derive_id("event", "nobody", "nothing"))

    def test_direct_insert_conflict_moves_no_tokens(self, service, custody, event):
        """A ticket inserted straight into the store makes the next buy collide before payment."""
        service.store.create_ticket(Ticket(
            ticket_key=Hasher.derive_id("ticket", event.event_id, 0),
            event_id=event.event_id,
            ticket_id=0,
            owner="mallory",
            purchase_price=0,
            deposited_price=0,
            purchased_at=NOW,
        ))

        with pytest.raises(AlreadyExists):
            service.buy_ticket("alice", event.event_id)

        assert custody.balance_of("alice") == 1_000 * USDC
        assert custody.vault_balance(event.escrow_id) == 0
        assert service.get_escrow(event.event_id).balance == 0
        assert service.get_event(event.event_id).tickets_sold == 0

    def test_without_custody_only_escrow_is_kept(self, clock):
        service = TicketingService(clock=clock, metrics=MetricsCollector())
        event = service.create_event(ORGANIZER, festival_config())
        service.buy_ticket("anyone", event.event_id)
        assert service.get_escrow(event.event_id).balance == 100 * USDC

    def test_concurrent_buys_on_last_slot(self, service, custody):
        """Exactly one buyer gets the last ticket."""
        event = service.create_event(ORGANIZER, festival_config(name="Last Seat", total_tickets=1))
        buyers = [f"buyer-{i}" for i in range(8)]
        for buyer in buyers:
            custody.fund(buyer, 100 * USDC)
        barrier = threading.Barrier(len(buyers))

        def attempt(buyer):
            barrier.wait()
            try:
                service.buy_ticket(buyer, event.event_id)
                return "ok"
            except SoldOut:
                return "sold_out"

        with ThreadPoolExecutor(max_workers=len(buyers)) as pool:
            results = list(pool.map(attempt, buyers))

        assert results.count("ok") == 1
        assert results.count("sold_out") == len(buyers) - 1
        assert service.get_event(event.event_id).tickets_sold == 1
        assert service.get_escrow(event.event_id).balance == 100 * USDC


class TestCheckIn(TicketingFixtures):

    @pytest.fixture
    def ticket(self, service, event):
        return service.buy_ticket("alice", event.event_id)

    def test_check_in_mints_badge(self, service, event, ticket, clock):
        clock.advance(60)
        checked, badge = service.check_in_ticket("alice", ticket.ticket_key, EventCategory.FESTIVAL, "GA")

        assert checked.checked_in
        assert badge.owner == "alice"
        assert badge.event_id == event.event_id
        assert badge.event_name == "Harbour Lights"
        assert badge.category == EventCategory.FESTIVAL
        assert badge.seat_info == "GA"
        assert badge.venue == "Pier 9"
        assert badge.issued_at == NOW + 60
        assert badge.badge_id == Hasher.derive_id("badge", event.event_id, "alice")

    def test_second_check_in_rejected(self, service, ticket):
        _, badge = service.check_in_ticket("alice", ticket.ticket_key, EventCategory.FESTIVAL)

        with pytest.raises(AlreadyCheckedIn):
            service.check_in_ticket("alice", ticket.ticket_key, EventCategory.FESTIVAL)

        assert service.list_badges(owner="alice") == [badge]

    def test_organizer_may_check_in(self, service, ticket):
        checked, badge = service.check_in_ticket(ORGANIZER, ticket.ticket_key, EventCategory.FESTIVAL)
        assert checked.checked_in
        assert badge.owner == "alice"

    def test_stranger_rejected(self, service, ticket):
        with pytest.raises(Unauthorized):
            service.check_in_ticket("mallory", ticket.ticket_key, EventCategory.FESTIVAL)
        assert not service.get_ticket(ticket.ticket_key).checked_in

    def test_one_badge_per_owner_per_event(self, service, event, ticket):
        second = service.buy_ticket("alice", event.event_id)

        _, first_badge = service.check_in_ticket("alice", ticket.ticket_key, EventCategory.FESTIVAL)
        _, second_badge = service.check_in_ticket("alice", second.ticket_key, EventCategory.MUSIC)

        assert first_badge == second_badge
        issued = [
            e for e in service.get_journal()
            if e.entry_type == JournalEntryType.BADGE_ISSUED
        ]
        assert len(issued) == 1

    def test_unknown_ticket(self, service):
        with pytest.raises(NotFound):
            service.check_in_ticket("alice", Hasher.derive_id("ticket", "x", 0), EventCategory.OTHER)

    def test_unknown_event_type(self, service, metrics, ticket):
        with pytest.raises(InvalidConfig, match="opera"):
            service.check_in_ticket("alice", ticket.ticket_key, "opera")

        assert not service.get_ticket(ticket.ticket_key).checked_in
        assert service.list_badges(owner="alice") == []
        assert metrics.get_summary()["rule_violations"] == {"INVALID_CONFIG": 1}

    def test_badges_cannot_move(self, service, event, ticket):
        """No operation reassigns a badge, and the record itself is frozen."""
        _, badge = service.check_in_ticket("alice", ticket.ticket_key, EventCategory.FESTIVAL)

        assert not hasattr(service, "transfer_badge")
        with pytest.raises(ValidationError):
            badge.owner = "bob"

        service.transfer_ticket("alice", "bob", ticket.ticket_key, event.event_id)
        assert service.get_badge(event.event_id, "alice").owner == "alice"
        assert service.list_badges(owner="bob") == []


class TestTransfers(TicketingFixtures):

    @pytest.fixture
    def ticket(self, service, event):
        return service.buy_ticket("alice", event.event_id)

    def test_resale_within_cap(self, service, event, ticket):
        moved = service.transfer_ticket("alice", "bob", ticket.ticket_key, event.event_id, 110 * USDC)
        assert moved.owner == "bob"
        assert moved.purchase_price == 110 * USDC
        assert service.get_ticket(ticket.ticket_key) == moved

    def test_resale_above_cap_rejected(self, service, event, ticket):
        with pytest.raises(PriceCapExceeded):
            service.transfer_ticket("alice", "bob", ticket.ticket_key, event.event_id, 120 * USDC)

        unchanged = service.get_ticket(ticket.ticket_key)
        assert unchanged.owner == "alice"
        assert unchanged.purchase_price == 100 * USDC

    def test_gift_keeps_price(self, service, event, ticket):
        moved = service.transfer_ticket("alice", "bob", ticket.ticket_key, event.event_id)
        assert moved.owner == "bob"
        assert moved.purchase_price == 100 * USDC

    def test_no_tokens_move_on_transfer(self, service, custody, event, ticket):
        service.transfer_ticket("alice", "bob", ticket.ticket_key, event.event_id, 110 * USDC)
        assert custody.balance_of("bob") == 1_000 * USDC
        assert service.get_escrow(event.event_id).balance == 100 * USDC

    def test_transfer_lock_window(self, service, clock, event, ticket):
        clock.set(EVENT_DATE - DAY)
        with pytest.raises(TransferLocked):
            service.transfer_ticket("alice", "bob", ticket.ticket_key, event.event_id)

        clock.set(EVENT_DATE - DAY - 1)
        service.transfer_ticket("alice", "bob", ticket.ticket_key, event.event_id)

    def test_lock_window_reported_before_holdings(self, service, clock, event, ticket):
        """Inside the lock window the answer is TransferLocked, whatever the proof."""
        service.buy_ticket("bob", event.event_id)
        clock.set(EVENT_DATE - DAY)

        with pytest.raises(TransferLocked):
            service.transfer_ticket("alice", "bob", ticket.ticket_key, event.event_id)

    def test_wallet_limit(self, service, event, ticket):
        held = [service.buy_ticket("bob", event.event_id).ticket_key for _ in range(2)]

        with pytest.raises(WalletLimitExceeded):
            service.transfer_ticket(
                "alice", "bob", ticket.ticket_key, event.event_id,
                recipient_holdings=held,
            )

    def test_holdings_proof_must_be_complete(self, service, event, ticket):
        service.buy_ticket("bob", event.event_id)

        with pytest.raises(IncompleteOwnershipProof):
            service.transfer_ticket("alice", "bob", ticket.ticket_key, event.event_id)

    def test_holdings_proof_must_be_owned_by_recipient(self, service, event, ticket):
        other = service.buy_ticket("carol", event.event_id)

        with pytest.raises(IncompleteOwnershipProof):
            service.transfer_ticket(
                "alice", "bob", ticket.ticket_key, event.event_id,
                recipient_holdings=[other.ticket_key],
            )

    def test_holdings_proof_must_be_same_event(self, service, event, ticket):
        other_event = service.create_event(ORGANIZER, festival_config(name="Other"))
        elsewhere = service.buy_ticket("bob", other_event.event_id)

        with pytest.raises(IncompleteOwnershipProof):
            service.transfer_ticket(
                "alice", "bob", ticket.ticket_key, event.event_id,
                recipient_holdings=[elsewhere.ticket_key],
            )

    def test_duplicate_holdings_counted_once(self, service, event, ticket):
        held = service.buy_ticket("bob", event.event_id).ticket_key
        moved = service.transfer_ticket(
            "alice", "bob", ticket.ticket_key, event.event_id,
            recipient_holdings=[held, held],
        )
        assert moved.owner == "bob"

    def test_only_owner_transfers(self, service, event, ticket):
        with pytest.raises(Unauthorized):
            service.transfer_ticket("mallory", "bob", ticket.ticket_key, event.event_id)

    def test_transfers_disabled(self, service):
        event = service.create_event(ORGANIZER, festival_config(
            name="Locked Down",
            rules=ResaleRules(transfers_enabled=False),
        ))
        ticket = service.buy_ticket("alice", event.event_id)

        with pytest.raises(TransfersDisabled):
            service.transfer_ticket("alice", "bob", ticket.ticket_key, event.event_id)

    def test_ticket_of_other_event_not_found(self, service, event, ticket):
        other_event = service.create_event(ORGANIZER, festival_config(name="Other"))
        with pytest.raises(NotFound):
            service.transfer_ticket("alice", "bob", ticket.ticket_key, other_event.event_id)

    def test_transfer_to_self_rejected(self, service, event, ticket):
        with pytest.raises(InvalidConfig):
            service.transfer_ticket("alice", "alice", ticket.ticket_key, event.event_id)

    def test_holdings_index_follows_transfers(self, service, event, ticket):
        service.transfer_ticket("alice", "bob", ticket.ticket_key, event.event_id)
        assert service.store.count_holdings(event.event_id, "alice") == 0
        assert service.store.count_holdings(event.event_id, "bob") == 1
        assert [t.ticket_key for t in service.list_tickets(owner="bob")] == [ticket.ticket_key]


class TestProtectionAndRefunds(TicketingFixtures):

    @pytest.fixture
    def ticket(self, service, event):
        return service.buy_ticket("alice", event.event_id)

    def protect(self, service, event, condition=RefundCondition.ON_YES, pct=50):
        return service.attach_polymarket_protection(
            ORGANIZER, event.event_id, "headliner-cancels", condition, pct,
        )

    def test_attach_protection(self, service, event):
        protected = self.protect(service, event)
        assert protected.protection_enabled
        assert protected.market_id == "headliner-cancels"
        assert protected.refund_condition == RefundCondition.ON_YES
        assert protected.refund_percentage == 50

    def test_only_organizer_attaches(self, service, event):
        with pytest.raises(Unauthorized):
            service.attach_polymarket_protection("mallory", event.event_id, "m", RefundCondition.ON_YES, 50)

    def test_attach_once(self, service, event):
        self.protect(service, event)
        with pytest.raises(ProtectionAlreadyAttached):
            self.protect(service, event, pct=100)
        assert service.get_event(event.event_id).refund_percentage == 50

    def test_percentage_bounds(self, service, event):
        with pytest.raises(InvalidConfig):
            self.protect(service, event, pct=150)

    def test_untrusted_resolver_rejected(self, service, event):
        with pytest.raises(Unauthorized):
            service.record_market_resolution("mallory", event.event_id, True)
        assert not service.get_event(event.event_id).resolved

    def test_resolution_recorded_once(self, service, event):
        resolved = service.record_market_resolution(RESOLVER, event.event_id, True)
        assert resolved.resolved
        assert resolved.outcome is True

        with pytest.raises(AlreadyResolved):
            service.record_market_resolution(RESOLVER, event.event_id, True)
        with pytest.raises(AlreadyResolved):
            service.record_market_resolution(RESOLVER, event.event_id, False)
        assert service.get_event(event.event_id).outcome is True

    def test_no_protection_after_resolution(self, service, event):
        service.record_market_resolution(RESOLVER, event.event_id, False)
        with pytest.raises(AlreadyResolved):
            self.protect(service, event)

    def test_conditional_refund(self, service, custody, event, ticket):
        """100 USDC ticket, 50% on_yes, outcome YES: 50 USDC back, once."""
        self.protect(service, event)
        service.record_market_resolution(RESOLVER, event.event_id, True)

        receipt = service.claim_refund("alice", ticket.ticket_key, event.event_id)

        assert receipt.amount == 50_000000
        assert receipt.settlement_unit == "USDC"
        assert receipt.escrow_balance_after == 50_000000
        assert receipt.ticket.refunded
        assert service.get_escrow(event.event_id).balance == 50_000000
        assert service.get_escrow(event.event_id).total_refunded == 50_000000
        assert custody.balance_of("alice") == 950 * USDC

        with pytest.raises(AlreadyRefunded):
            service.claim_refund("alice", ticket.ticket_key, event.event_id)
        assert service.get_escrow(event.event_id).balance == 50_000000

    def test_condition_mismatch(self, service, event, ticket):
        """on_no protection with outcome YES pays nothing."""
        self.protect(service, event, condition=RefundCondition.ON_NO)
        service.record_market_resolution(RESOLVER, event.event_id, True)

        with pytest.raises(ConditionNotMet):
            service.claim_refund("alice", ticket.ticket_key, event.event_id)

        assert service.get_escrow(event.event_id).balance == 100 * USDC
        assert not service.get_ticket(ticket.ticket_key).refunded

    def test_refund_before_resolution(self, service, event, ticket):
        self.protect(service, event)
        with pytest.raises(ConditionNotMet):
            service.claim_refund("alice", ticket.ticket_key, event.event_id)

    def test_refund_without_protection(self, service, event, ticket):
        service.record_market_resolution(RESOLVER, event.event_id, True)
        with pytest.raises(ConditionNotMet):
            service.claim_refund("alice", ticket.ticket_key, event.event_id)

    def test_only_owner_claims(self, service, event, ticket):
        self.protect(service, event)
        service.record_market_resolution(RESOLVER, event.event_id, True)
        with pytest.raises(Unauthorized):
            service.claim_refund("mallory", ticket.ticket_key, event.event_id)

    def test_refund_independent_of_check_in(self, service, event, ticket):
        service.check_in_ticket("alice", ticket.ticket_key, EventCategory.FESTIVAL)
        self.protect(service, event)
        service.record_market_resolution(RESOLVER, event.event_id, True)

        receipt = service.claim_refund("alice", ticket.ticket_key, event.event_id)
        assert receipt.amount == 50_000000
        assert receipt.ticket.checked_in

    def test_marked_up_resale_does_not_overdraw_escrow(self, service, custody, event, ticket):
        """Every holder is still refundable after a resale above the primary price."""
        second = service.buy_ticket("bob", event.event_id)
        resold = service.transfer_ticket("alice", "carol", ticket.ticket_key, event.event_id, 110 * USDC)
        assert resold.purchase_price == 110 * USDC
        assert resold.deposited_price == 100 * USDC

        self.protect(service, event, pct=100)
        service.record_market_resolution(RESOLVER, event.event_id, True)

        to_carol = service.claim_refund("carol", ticket.ticket_key, event.event_id)
        to_bob = service.claim_refund("bob", second.ticket_key, event.event_id)

        assert to_carol.amount == 100 * USDC
        assert to_bob.amount == 100 * USDC
        assert service.get_escrow(event.event_id).balance == 0
        assert custody.vault_balance(event.escrow_id) == 0
        assert custody.balance_of("carol") == 1_100 * USDC
        assert custody.balance_of("bob") == 1_000 * USDC

    def test_discounted_resale_refunds_resale_price(self, service, event, ticket):
        service.transfer_ticket("alice", "bob", ticket.ticket_key, event.event_id, 80 * USDC)
        self.protect(service, event, pct=100)
        service.record_market_resolution(RESOLVER, event.event_id, True)

        receipt = service.claim_refund("bob", ticket.ticket_key, event.event_id)
        assert receipt.amount == 80 * USDC
        assert receipt.escrow_balance_after == 20 * USDC

    def test_unknown_condition_rejected(self, service, metrics, event):
        with pytest.raises(InvalidConfig):
            service.attach_polymarket_protection(ORGANIZER, event.event_id, "m", "maybe", 50)

        assert not service.get_event(event.event_id).protection_enabled
        assert metrics.get_summary()["rule_violations"] == {"INVALID_CONFIG": 1}

    def test_custody_outage_on_refund(self, service, custody, event, ticket):
        self.protect(service, event)
        service.record_market_resolution(RESOLVER, event.event_id, True)
        custody.available = False

        with pytest.raises(CustodyUnavailableError):
            service.claim_refund("alice", ticket.ticket_key, event.event_id)

        assert not service.get_ticket(ticket.ticket_key).refunded
        assert service.get_escrow(event.event_id).balance == 100 * USDC

    def test_concurrent_refunds_pay_once(self, service, custody, event, ticket):
        self.protect(service, event)
        service.record_market_resolution(RESOLVER, event.event_id, True)
        barrier = threading.Barrier(8)

        def attempt(_):
            barrier.wait()
            try:
                service.claim_refund("alice", ticket.ticket_key, event.event_id)
                return "paid"
            except AlreadyRefunded:
                return "refused"

        with ThreadPoolExecutor(max_workers=8) as pool:
            results = list(pool.map(attempt, range(8)))

        assert results.count("paid") == 1
        assert service.get_escrow(event.event_id).balance == 50_000000
        assert custody.balance_of("alice") == 950 * USDC


class TestJournalAndMetrics(TicketingFixtures):

    def test_full_lifecycle_journal(self, service, event):
        ticket = service.buy_ticket("alice", event.event_id)
        service.attach_polymarket_protection(ORGANIZER, event.event_id, "m1", RefundCondition.ON_YES, 50)
        service.transfer_ticket("alice", "bob", ticket.ticket_key, event.event_id)
        service.check_in_ticket("bob", ticket.ticket_key, EventCategory.FESTIVAL)
        service.record_market_resolution(RESOLVER, event.event_id, True)
        service.claim_refund("bob", ticket.ticket_key, event.event_id)

        types = [e.entry_type for e in service.get_journal()]
        assert types == [
            JournalEntryType.EVENT_CREATED,
            JournalEntryType.TICKET_SOLD,
            JournalEntryType.PROTECTION_ATTACHED,
            JournalEntryType.TICKET_TRANSFERRED,
            JournalEntryType.TICKET_CHECKED_IN,
            JournalEntryType.BADGE_ISSUED,
            JournalEntryType.RESOLUTION_RECORDED,
            JournalEntryType.REFUND_PAID,
        ]
        assert service.verify_journal_integrity()
        assert len(service.get_journal_for_entity(ticket.ticket_key)) == 4

    def test_rejections_append_nothing(self, service, event):
        before = service.journal_length
        with pytest.raises(Unauthorized):
            service.record_market_resolution("mallory", event.event_id, True)
        assert service.journal_length == before

    def test_metrics_count_operations_and_violations(self, service, metrics):
        event = service.create_event(ORGANIZER, festival_config(name="Metered", total_tickets=1))
        service.buy_ticket("alice", event.event_id)
        with pytest.raises(SoldOut):
            service.buy_ticket("bob", event.event_id)

        summary = metrics.get_summary()
        assert summary["events_created"] == 1
        assert summary["tickets_sold"] == 1
        assert summary["rule_violations"] == {"SOLD_OUT": 1}


class TestDemoLifecycle:

    def test_demo_runs_and_verifies(self):
        from examples.demo_lifecycle import run_demo

        service = run_demo(verbose=False)
        assert service.verify_journal_integrity()
        refunds = [
            e for e in service.get_journal()
            if e.entry_type == JournalEntryType.REFUND_PAID
        ]
        assert [e.payload["amount"] for e in refunds] == [50 * USDC, 50 * USDC]
