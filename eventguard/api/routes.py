"""
API Routes for the Ticketing Core

Command endpoints:
- POST /events                        - Create an event
- POST /events/{id}/tickets           - Buy the next ticket
- POST /events/{id}/protection        - Attach refund protection
- POST /resolutions                   - Submit a signed resolution report
- POST /tickets/{key}/check-in        - Check in and mint a badge
- POST /tickets/{key}/transfer        - Transfer under resale rules
- POST /tickets/{key}/refund          - Claim a protection refund

Query endpoints:
- GET /events, /events/{id}, /events/{id}/escrow
- GET /tickets/{key}
- GET /holders/{holder}/tickets, /holders/{holder}/badges
- GET /journal/integrity

Caller identity (organizer, buyer, owner, ...) is carried in the request
body. Authenticating it is the job of whatever sits in front of this API.
"""

from contextlib import contextmanager
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Request, status
from pydantic import BaseModel, Field

from ..config import Settings
from ..core.errors import (
    AlreadyCheckedIn,
    AlreadyExists,
    AlreadyRefunded,
    AlreadyResolved,
    InfrastructureError,
    NotFound,
    ProtectionAlreadyAttached,
    SoldOut,
    TicketingError,
    Unauthorized,
)
from ..core.gateway import ResolutionGateway
from ..core.ticketing import TicketingService
from ..schemas import (
    CultureBadge,
    EscrowAccount,
    Event,
    EventCategory,
    EventConfig,
    RefundCondition,
    RefundReceipt,
    ResaleRules,
    ResolutionReport,
    Ticket,
)


router = APIRouter()

# ============================================================
# Dependency Injection
# ============================================================

def get_service(request: Request) -> TicketingService:
    return request.app.state.service


def get_gateway(request: Request) -> ResolutionGateway:
    return request.app.state.gateway


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


# ============================================================
# Error Translation
# ============================================================

class APIError(HTTPException):
    """HTTPException that also carries the machine-readable error code."""

    def __init__(self, status_code: int, detail: str, code: str):
        super().__init__(status_code=status_code, detail=detail)
        self.code = code


CONFLICT_ERRORS = (
    AlreadyExists,
    AlreadyCheckedIn,
    AlreadyRefunded,
    AlreadyResolved,
    ProtectionAlreadyAttached,
    SoldOut,
)


def status_for(error: Exception) -> int:
    if isinstance(error, NotFound):
        return status.HTTP_404_NOT_FOUND
    if isinstance(error, Unauthorized):
        return status.HTTP_403_FORBIDDEN
    if isinstance(error, CONFLICT_ERRORS):
        return status.HTTP_409_CONFLICT
    if isinstance(error, InfrastructureError):
        return status.HTTP_503_SERVICE_UNAVAILABLE
    return status.HTTP_400_BAD_REQUEST


@contextmanager
def translate_errors():
    try:
        yield
    except (TicketingError, InfrastructureError) as e:
        raise APIError(status_for(e), e.message, e.code) from e


# ============================================================
# Request/Response Models
# ============================================================

class CreateEventRequest(BaseModel):
    """Request to create an event."""
    organizer: str = Field(..., min_length=1)
    name: str
    date: int = Field(..., description="Event start, epoch seconds")
    venue: str = ""
    total_tickets: int
    base_price: int = Field(..., description="Minor units of the settlement unit")
    settlement_unit: Optional[str] = None
    rules: ResaleRules = Field(default_factory=ResaleRules)


class BuyTicketRequest(BaseModel):
    buyer: str = Field(..., min_length=1)


class AttachProtectionRequest(BaseModel):
    """Request to tie refunds to a prediction market outcome."""
    organizer: str
    market_id: str
    refund_condition: RefundCondition
    refund_percentage: int


class CheckInRequest(BaseModel):
    authority: str = Field(..., description="Ticket owner or event organizer")
    event_type: EventCategory = EventCategory.OTHER
    seat_info: str = ""


class TransferRequest(BaseModel):
    """Request to transfer a ticket."""
    current_owner: str
    new_owner: str = Field(..., min_length=1)
    event_id: UUID
    proposed_price: Optional[int] = Field(
        default=None,
        description="Resale price in minor units; omit for a gift at unchanged price",
    )
    recipient_holdings: list[UUID] = Field(
        default_factory=list,
        description="Every ticket of this event the recipient currently holds",
    )


class RefundRequest(BaseModel):
    claimer: str
    event_id: UUID


class CheckInResponse(BaseModel):
    ticket: Ticket
    badge: CultureBadge


class JournalIntegrityResponse(BaseModel):
    valid: bool
    journal_length: int
    last_hash: Optional[str] = None


# ============================================================
# Command Endpoints
# ============================================================

@router.post(
    "/events",
    response_model=Event,
    status_code=status.HTTP_201_CREATED,
    tags=["Events"],
    summary="Create an event",
)
async def create_event(
    request: CreateEventRequest,
    service: TicketingService = Depends(get_service),
    settings: Settings = Depends(get_settings),
):
    """
    Create an event and open its escrow account.

    The event id is derived from (organizer, name): the same organizer
    cannot create two events with the same name.
    """
    config = EventConfig(
        name=request.name,
        date=request.date,
        venue=request.venue,
        total_tickets=request.total_tickets,
        base_price=request.base_price,
        settlement_unit=request.settlement_unit or settings.settlement_unit,
        rules=request.rules,
    )
    with translate_errors():
        return service.create_event(request.organizer, config)


@router.post(
    "/events/{event_id}/tickets",
    response_model=Ticket,
    status_code=status.HTTP_201_CREATED,
    tags=["Tickets"],
    summary="Buy the next ticket",
)
async def buy_ticket(
    event_id: UUID,
    request: BuyTicketRequest,
    service: TicketingService = Depends(get_service),
):
    with translate_errors():
        return service.buy_ticket(request.buyer, event_id)


@router.post(
    "/events/{event_id}/protection",
    response_model=Event,
    tags=["Protection"],
    summary="Attach refund protection",
)
async def attach_protection(
    event_id: UUID,
    request: AttachProtectionRequest,
    service: TicketingService = Depends(get_service),
):
    """
    Tie ticket refunds to a prediction market outcome.

    Organizer only. Once per event, and only before resolution.
    """
    with translate_errors():
        return service.attach_polymarket_protection(
            organizer=request.organizer,
            event_id=event_id,
            market_id=request.market_id,
            refund_condition=request.refund_condition,
            refund_percentage=request.refund_percentage,
        )


@router.post(
    "/resolutions",
    response_model=Event,
    tags=["Protection"],
    summary="Submit a signed resolution report",
)
async def submit_resolution(
    report: ResolutionReport,
    gateway: ResolutionGateway = Depends(get_gateway),
):
    """
    Record a market outcome.

    The report must be signed by a trusted resolver key over the
    canonical {event_id, market_id, outcome, reported_at}.
    """
    with translate_errors():
        return gateway.submit(report)


@router.post(
    "/tickets/{ticket_key}/check-in",
    response_model=CheckInResponse,
    tags=["Tickets"],
    summary="Check in a ticket",
)
async def check_in(
    ticket_key: UUID,
    request: CheckInRequest,
    service: TicketingService = Depends(get_service),
):
    with translate_errors():
        ticket, badge = service.check_in_ticket(
            authority=request.authority,
            ticket_key=ticket_key,
            event_type=request.event_type,
            seat_info=request.seat_info,
        )
    return CheckInResponse(ticket=ticket, badge=badge)


@router.post(
    "/tickets/{ticket_key}/transfer",
    response_model=Ticket,
    tags=["Tickets"],
    summary="Transfer a ticket",
)
async def transfer(
    ticket_key: UUID,
    request: TransferRequest,
    service: TicketingService = Depends(get_service),
):
    """
    Transfer a ticket under the event's resale rules.

    The recipient's holdings must be listed in full. An incomplete list
    is rejected rather than trusted.
    """
    with translate_errors():
        return service.transfer_ticket(
            current_owner=request.current_owner,
            new_owner=request.new_owner,
            ticket_key=ticket_key,
            event_id=request.event_id,
            proposed_price=request.proposed_price,
            recipient_holdings=request.recipient_holdings,
        )


@router.post(
    "/tickets/{ticket_key}/refund",
    response_model=RefundReceipt,
    tags=["Protection"],
    summary="Claim a protection refund",
)
async def refund(
    ticket_key: UUID,
    request: RefundRequest,
    service: TicketingService = Depends(get_service),
):
    with translate_errors():
        return service.claim_refund(request.claimer, ticket_key, request.event_id)


# ============================================================
# Query Endpoints
# ============================================================

@router.get("/events", response_model=list[Event], tags=["Events"])
async def list_events(service: TicketingService = Depends(get_service)):
    return service.list_events()


@router.get("/events/{event_id}", response_model=Event, tags=["Events"])
async def get_event(event_id: UUID, service: TicketingService = Depends(get_service)):
    with translate_errors():
        return service.get_event(event_id)


@router.get("/events/{event_id}/escrow", response_model=EscrowAccount, tags=["Events"])
async def get_escrow(event_id: UUID, service: TicketingService = Depends(get_service)):
    with translate_errors():
        return service.get_escrow(event_id)


@router.get("/tickets/{ticket_key}", response_model=Ticket, tags=["Tickets"])
async def get_ticket(ticket_key: UUID, service: TicketingService = Depends(get_service)):
    with translate_errors():
        return service.get_ticket(ticket_key)


@router.get("/holders/{holder}/tickets", response_model=list[Ticket], tags=["Holders"])
async def holder_tickets(
    holder: str,
    event_id: Optional[UUID] = None,
    service: TicketingService = Depends(get_service),
):
    return service.list_tickets(event_id=event_id, owner=holder)


@router.get("/holders/{holder}/badges", response_model=list[CultureBadge], tags=["Holders"])
async def holder_badges(holder: str, service: TicketingService = Depends(get_service)):
    return service.list_badges(owner=holder)


@router.get(
    "/journal/integrity",
    response_model=JournalIntegrityResponse,
    tags=["Journal"],
)
async def journal_integrity(service: TicketingService = Depends(get_service)):
    """Re-verify the whole transition journal chain."""
    head = service.store.get_head()
    return JournalIntegrityResponse(
        valid=service.verify_journal_integrity(),
        journal_length=head.next_sequence,
        last_hash=head.last_entry_hash,
    )
