"""
Rule Evaluator

Pure functions that decide whether a requested transition is legal.
No I/O. No mutation. Each check returns None on success and raises
the specific TicketingError subclass on failure.

The state machine calls these while holding the record locks, before
staging any write. A rule that raises therefore leaves no trace.
"""

from typing import Iterable, Optional

from ..schemas import Event, EventCategory, EventConfig, RefundCondition, Ticket
from .errors import (
    AlreadyCheckedIn,
    AlreadyRefunded,
    AlreadyResolved,
    ConditionNotMet,
    InvalidConfig,
    PriceCapExceeded,
    ProtectionAlreadyAttached,
    SoldOut,
    TransferLocked,
    TransfersDisabled,
    Unauthorized,
    WalletLimitExceeded,
)

BPS_DENOMINATOR = 10_000
PERCENT_DENOMINATOR = 100


# ============================================================
# ARITHMETIC
# ============================================================

def compute_max_resale_price(purchase_price: int, max_resale_markup_bps: int) -> int:
    """Highest legal resale price. Integer floor division."""
    return purchase_price * (BPS_DENOMINATOR + max_resale_markup_bps) // BPS_DENOMINATOR


def compute_refund_amount(purchase_price: int, refund_percentage: int) -> int:
    """Refund owed for a ticket. Integer floor division."""
    return purchase_price * refund_percentage // PERCENT_DENOMINATOR


def refund_basis(ticket: Ticket) -> int:
    """
    Price a refund is computed from.

    Escrow only ever received the primary sale price, so a marked-up
    resale cannot raise it; a discounted resale lowers it.
    """
    return min(ticket.purchase_price, ticket.deposited_price)


def transfer_lock_begins_at(event: Event) -> int:
    """Epoch second from which transfers are locked."""
    return event.config.date - event.rules.transfer_lock_start


# ============================================================
# INPUT PARSING
# ============================================================

def parse_event_category(value) -> EventCategory:
    try:
        return EventCategory(value)
    except ValueError:
        allowed = ", ".join(c.value for c in EventCategory)
        raise InvalidConfig(
            f"Unknown event type {value!r} (expected one of: {allowed})",
            event_type=str(value),
        ) from None


def parse_refund_condition(value) -> RefundCondition:
    try:
        return RefundCondition(value)
    except ValueError:
        allowed = ", ".join(c.value for c in RefundCondition)
        raise InvalidConfig(
            f"Unknown refund condition {value!r} (expected one of: {allowed})",
            refund_condition=str(value),
        ) from None


# ============================================================
# CONFIGURATION
# ============================================================

def validate_event_config(
    config: EventConfig,
    now: int,
    require_future_date: bool = True,
) -> None:
    """Validate organizer configuration before an event is created."""
    if not config.name or not config.name.strip():
        raise InvalidConfig("Event name must not be empty")

    if config.total_tickets <= 0:
        raise InvalidConfig(
            f"total_tickets must be positive, got {config.total_tickets}",
            total_tickets=config.total_tickets,
        )

    if config.base_price < 0:
        raise InvalidConfig(
            f"base_price must be non-negative, got {config.base_price}",
            base_price=config.base_price,
        )

    if not config.settlement_unit:
        raise InvalidConfig("settlement_unit must not be empty")

    if require_future_date and config.date <= now:
        raise InvalidConfig(
            f"Event date {config.date} is not in the future (now={now})",
            date=config.date,
        )


# ============================================================
# TRANSITION RULES
# ============================================================

def can_buy(event: Event) -> None:
    if event.tickets_sold >= event.config.total_tickets:
        raise SoldOut(
            f"Event {event.event_id} has sold all {event.config.total_tickets} tickets",
            event_id=str(event.event_id),
        )


def can_check_in(ticket: Ticket) -> None:
    if ticket.checked_in:
        raise AlreadyCheckedIn(
            f"Ticket {ticket.ticket_key} is already checked in",
            ticket_key=str(ticket.ticket_key),
        )


def can_open_transfer(event: Event, now: int) -> None:
    """Transfers enabled and the lock window not yet reached."""
    if not event.rules.transfers_enabled:
        raise TransfersDisabled(f"Transfers are disabled for event {event.event_id}")

    lock_at = transfer_lock_begins_at(event)
    if now >= lock_at:
        raise TransferLocked(
            f"Transfer window closed at {lock_at} (now={now})",
            locked_at=lock_at,
        )


def can_transfer(
    event: Event,
    ticket: Ticket,
    now: int,
    proposed_price: Optional[int],
    recipient_current_count: int,
) -> None:
    """
    Resale controls, evaluated in order:

    1. transfers enabled
    2. outside the lock window (now < date - transfer_lock_start)
    3. proposed price within the markup cap (None = gift, price unchanged)
    4. recipient below the per-wallet limit
    """
    rules = event.rules

    can_open_transfer(event, now)

    if proposed_price is not None:
        if proposed_price < 0:
            raise InvalidConfig(f"Resale price must be non-negative, got {proposed_price}")
        max_price = compute_max_resale_price(
            ticket.purchase_price, rules.max_resale_markup_bps
        )
        if proposed_price > max_price:
            raise PriceCapExceeded(
                f"Resale price {proposed_price} exceeds cap {max_price}",
                proposed_price=proposed_price,
                max_price=max_price,
            )

    if recipient_current_count >= rules.max_tickets_per_wallet:
        raise WalletLimitExceeded(
            f"Recipient already holds {recipient_current_count} tickets "
            f"(limit {rules.max_tickets_per_wallet})",
            held=recipient_current_count,
            limit=rules.max_tickets_per_wallet,
        )


def can_attach_protection(
    event: Event,
    caller: str,
    market_id: str,
    refund_condition,
    refund_percentage: int,
) -> None:
    if caller != event.organizer:
        raise Unauthorized("Only the event organizer can attach protection")

    if event.resolved:
        raise AlreadyResolved(
            f"Event {event.event_id} is already resolved; protection can no longer be attached"
        )

    if event.protection_enabled:
        raise ProtectionAlreadyAttached(
            f"Event {event.event_id} already has protection on market {event.market_id}"
        )

    if not market_id or not market_id.strip():
        raise InvalidConfig("market_id must not be empty")

    parse_refund_condition(refund_condition)

    if not 0 <= refund_percentage <= PERCENT_DENOMINATOR:
        raise InvalidConfig(
            f"refund_percentage must be within 0..100, got {refund_percentage}",
            refund_percentage=refund_percentage,
        )


def can_record_resolution(
    caller: str,
    trusted_resolvers: Iterable[str],
    event: Event,
) -> None:
    if caller not in trusted_resolvers:
        raise Unauthorized("Caller is not a trusted resolver")

    if event.resolved:
        raise AlreadyResolved(
            f"Event {event.event_id} was already resolved with outcome={event.outcome}"
        )


def can_claim_refund(event: Event, ticket: Ticket) -> None:
    if not event.protection_enabled:
        raise ConditionNotMet(f"Event {event.event_id} has no refund protection")

    if not event.resolved:
        raise ConditionNotMet(f"Event {event.event_id} has not been resolved yet")

    condition = RefundCondition(event.refund_condition)
    if not condition.matches(bool(event.outcome)):
        raise ConditionNotMet(
            f"Refund condition {condition.value} does not match outcome={event.outcome}"
        )

    if ticket.refunded:
        raise AlreadyRefunded(
            f"Ticket {ticket.ticket_key} has already been refunded",
            ticket_key=str(ticket.ticket_key),
        )
