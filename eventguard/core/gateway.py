"""
Resolution Gateway

The only path by which a market outcome reaches the ticketing core
from outside. A report is accepted when:

1. its resolver key is in the trusted set
2. its Ed25519 signature verifies over the canonical
   {event_id, market_id, outcome, reported_at}
3. it names the market the event's protection is tied to (if any)

The relay side turns a feed MarketResolution into a signed report.
Unresolved and INVALID markets are never reported.
"""

from typing import Iterable, Optional
from uuid import UUID

from ..observability import get_logger
from ..schemas import Event, MarketOutcome, MarketResolution, ResolutionReport
from .clock import Clock, system_clock
from .errors import Unauthorized
from .signer import Signer
from .ticketing import TicketingService

logger = get_logger(__name__)


def sign_resolution_report(
    event_id: UUID,
    market_id: str,
    outcome: bool,
    private_key_b64: str,
    reported_at: int,
) -> ResolutionReport:
    """Build and sign a resolution report with a resolver's private key."""
    unsigned = {
        "event_id": event_id,
        "market_id": market_id,
        "outcome": outcome,
        "reported_at": reported_at,
    }
    return ResolutionReport(
        **unsigned,
        resolver_public_key=Signer.public_key_of(private_key_b64),
        signature=Signer.sign_payload(unsigned, private_key_b64),
    )


class ResolutionGateway:
    """
    Verifies signed resolution reports and forwards them to the core.

    The trusted key set defaults to the service's trusted resolvers.
    """

    def __init__(
        self,
        service: TicketingService,
        trusted_keys: Optional[Iterable[str]] = None,
    ):
        self._service = service
        self._trusted_keys = (
            frozenset(trusted_keys) if trusted_keys is not None else service.trusted_resolvers
        )

    @property
    def trusted_keys(self) -> frozenset:
        return self._trusted_keys

    def verify(self, report: ResolutionReport) -> None:
        """Raises Unauthorized unless the report comes from a trusted, verified key."""
        if report.resolver_public_key not in self._trusted_keys:
            logger.warning(
                "Resolution report from untrusted key",
                event_id=str(report.event_id),
                resolver=report.resolver_public_key[:16],
            )
            raise Unauthorized("Resolver key is not trusted")

        if not Signer.verify_payload(
            report.signed_fields(),
            report.signature,
            report.resolver_public_key,
        ):
            logger.warning(
                "Resolution report signature invalid",
                event_id=str(report.event_id),
                resolver=report.resolver_public_key[:16],
            )
            raise Unauthorized("Resolution report signature is invalid")

    def submit(self, report: ResolutionReport) -> Event:
        """Verify a report and record its outcome."""
        self.verify(report)
        return self._service.record_market_resolution(
            resolver=report.resolver_public_key,
            event_id=report.event_id,
            outcome=report.outcome,
            market_id=report.market_id,
        )


class ResolutionRelay:
    """
    Signs feed resolutions with a resolver key and submits them.

    Usage:
        relay = ResolutionRelay(gateway, private_key_b64)
        relay.relay(event_id, MarketResolution(market_id="m1", resolved=True,
                                               outcome=MarketOutcome.YES))
    """

    def __init__(
        self,
        gateway: ResolutionGateway,
        private_key_b64: str,
        clock: Optional[Clock] = None,
    ):
        self._gateway = gateway
        self._private_key = private_key_b64
        self._clock = clock or system_clock

    def relay(self, event_id: UUID, resolution: MarketResolution) -> Optional[Event]:
        """
        Report a market's outcome for an event.

        Returns the updated event, or None when the market is not
        resolved yet or resolved INVALID (nothing is submitted).
        """
        if not resolution.resolved:
            logger.info("Market not resolved yet", market_id=resolution.market_id)
            return None

        if resolution.outcome == MarketOutcome.INVALID:
            logger.warning("Market resolved INVALID, not reporting", market_id=resolution.market_id)
            return None

        report = sign_resolution_report(
            event_id=event_id,
            market_id=resolution.market_id,
            outcome=resolution.outcome == MarketOutcome.YES,
            private_key_b64=self._private_key,
            reported_at=self._clock(),
        )
        return self._gateway.submit(report)
