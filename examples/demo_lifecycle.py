"""
Demonstration: Complete Ticket Lifecycle

A festival sells protected tickets, one is resold within the markup cap,
the buyer checks in and receives a badge, the market resolves YES and
every holder claims a 50% refund.

Run with: python -m examples.demo_lifecycle
"""

from eventguard.config import Settings
from eventguard.core import (
    InMemoryTokenCustody,
    ManualClock,
    PriceCapExceeded,
    ResolutionGateway,
    ResolutionRelay,
    Signer,
    TicketingService,
)
from eventguard.schemas import (
    EventCategory,
    EventConfig,
    MarketOutcome,
    MarketResolution,
    RefundCondition,
    ResaleRules,
)

DAY = 24 * 60 * 60
USDC = 1_000000


def run_demo(verbose: bool = True) -> TicketingService:
    """Run the lifecycle against in-memory collaborators and return the service."""
    def say(line: str = "") -> None:
        if verbose:
            print(line)

    def step(title: str) -> None:
        say("=" * 60)
        say(title)
        say("=" * 60)

    settings = Settings()
    clock = ManualClock(start=1_750_000_000)
    custody = InMemoryTokenCustody()
    resolver_private, resolver_public = Signer.generate_keypair()

    service = TicketingService(
        custody=custody,
        trusted_resolvers=[resolver_public],
        clock=clock,
    )
    gateway = ResolutionGateway(service)
    relay = ResolutionRelay(gateway, resolver_private, clock=clock)

    organizer, alice, bob = "organizer-wallet", "alice-wallet", "bob-wallet"
    custody.fund(alice, 500 * USDC)
    custody.fund(bob, 500 * USDC)

    step("STEP 1: CREATE EVENT")
    event = service.create_event(organizer, EventConfig(
        name="Harbour Lights Festival",
        date=clock() + 30 * DAY,
        venue="Pier 9",
        total_tickets=100,
        base_price=100 * USDC,
        rules=ResaleRules(
            max_resale_markup_bps=1000,
            transfer_lock_start=DAY,
            max_tickets_per_wallet=4,
        ),
    ))
    say(f"Event: {event.event_id}")
    say(f"Price: {settings.format_amount(event.config.base_price)}")
    say()

    step("STEP 2: ATTACH PROTECTION")
    event = service.attach_polymarket_protection(
        organizer=organizer,
        event_id=event.event_id,
        market_id="harbour-lights-headliner-cancels",
        refund_condition=RefundCondition.ON_YES,
        refund_percentage=50,
    )
    say(f"Market: {event.market_id} ({event.refund_condition.value}, {event.refund_percentage}%)")
    say()

    step("STEP 3: SELL TICKETS")
    first = service.buy_ticket(alice, event.event_id)
    second = service.buy_ticket(alice, event.event_id)
    say(f"Alice bought tickets #{first.ticket_id} and #{second.ticket_id}")
    say(f"Escrow: {settings.format_amount(service.get_escrow(event.event_id).balance)}")
    say()

    step("STEP 4: RESALE")
    try:
        service.transfer_ticket(alice, bob, second.ticket_key, event.event_id, proposed_price=120 * USDC)
    except PriceCapExceeded as e:
        say(f"Rejected: {e.message}")
    resold = service.transfer_ticket(alice, bob, second.ticket_key, event.event_id, proposed_price=110 * USDC)
    say(f"Bob now holds #{resold.ticket_id} at {settings.format_amount(resold.purchase_price)}")
    say()

    step("STEP 5: CHECK-IN")
    _, badge = service.check_in_ticket(bob, resold.ticket_key, EventCategory.FESTIVAL, seat_info="GA")
    say(f"Badge {badge.badge_id} issued to {badge.owner} for {badge.event_name}")
    say()

    step("STEP 6: RESOLUTION")
    event = relay.relay(event.event_id, MarketResolution(
        market_id="harbour-lights-headliner-cancels",
        resolved=True,
        outcome=MarketOutcome.YES,
    ))
    say(f"Resolved: outcome={event.outcome}")
    say()

    step("STEP 7: REFUNDS")
    for holder, ticket in ((alice, first), (bob, resold)):
        receipt = service.claim_refund(holder, ticket.ticket_key, event.event_id)
        say(f"{holder}: {settings.format_amount(receipt.amount)} "
            f"(escrow left {settings.format_amount(receipt.escrow_balance_after)})")
    say()

    step("STEP 8: VERIFY JOURNAL")
    say(f"Journal entries: {service.journal_length}")
    say(f"Chain valid: {service.verify_journal_integrity()}")

    return service


def main():
    run_demo(verbose=True)


if __name__ == "__main__":
    main()
