"""
EventGuard - Ticketing Core

Main application entry point.

    uvicorn eventguard.main:app
"""

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .api.routes import APIError, router
from .config import Settings
from .core.custody import TokenCustody
from .core.gateway import ResolutionGateway
from .core.ticketing import TicketingService
from .db.store import InMemoryEventStore
from .observability import (
    RequestContextMiddleware,
    check_health,
    get_logger,
    get_metrics,
    setup_logging,
)

setup_logging()
logger = get_logger(__name__)

API_VERSION = "0.1.0"


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Verify the journal before serving and log the wiring."""
    service: TicketingService = app.state.service

    if service.journal_length > 0:
        if service.verify_journal_integrity():
            logger.info("Journal integrity verified OK", journal_length=service.journal_length)
        else:
            logger.error("Journal integrity check FAILED!")

    logger.info(
        "Application startup complete",
        store_type=type(service.store).__name__,
        trusted_resolvers=len(service.trusted_resolvers),
        custody=type(service.custody).__name__ if service.custody else None,
    )

    yield

    logger.info("Application shutdown complete")


def create_app(
    settings: Optional[Settings] = None,
    service: Optional[TicketingService] = None,
    custody: Optional[TokenCustody] = None,
) -> FastAPI:
    """
    Build the application.

    Args:
        settings: Runtime settings (default: Settings.from_env())
        service: Pre-built TicketingService (tests inject one with a fixed clock)
        custody: TokenCustody for the default service. None means payments
                 are settled off-ledger.
    """
    settings = settings or Settings.from_env()
    if service is None:
        service = TicketingService(
            store=InMemoryEventStore(lock_timeout=settings.lock_timeout_seconds),
            custody=custody,
            trusted_resolvers=settings.trusted_resolvers,
            require_future_date=settings.require_future_date,
            metrics=get_metrics(),
        )

    app = FastAPI(
        title="EventGuard",
        description="""
## Ticketing Core

Event ticketing with anti-scalping resale rules, attendance badges and
prediction-market refund protection.

### Lifecycles

```
Ticket: Sold -> (CheckedIn)? -> (Refunded)?
Event:  Created -> (ProtectionAttached)? -> (Resolved)?
```

### Guarantees

- Every transition is atomic: fully applied or not at all
- Every committed transition is appended to a hash-chained journal
- Outcomes are recorded only from signed reports of trusted resolvers
        """,
        version=API_VERSION,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.service = service
    app.state.gateway = ResolutionGateway(service)

    app.add_middleware(RequestContextMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(APIError)
    async def api_error_handler(request: Request, exc: APIError):
        return JSONResponse(
            status_code=exc.status_code,
            content={"detail": exc.detail, "code": exc.code},
        )

    app.include_router(router, prefix="/api/v1")

    @app.get("/health", tags=["System"])
    async def health():
        """Liveness probe. Does not touch the store."""
        return {"status": "healthy", "service": "eventguard"}

    @app.get("/health/detailed", tags=["System"])
    async def health_detailed(request: Request):
        """Store reachability and journal chain verification; 503 when any check fails."""
        svc = request.app.state.service
        health_status = check_health(service=svc, store=svc.store)

        return JSONResponse(
            status_code=200 if health_status.healthy else 503,
            content={
                "status": "healthy" if health_status.healthy else "unhealthy",
                "checks": health_status.checks,
                "duration_ms": health_status.duration_ms,
            },
        )

    @app.get("/metrics", tags=["System"])
    async def metrics():
        """Counters, rule violations by code, and latency percentiles."""
        return get_metrics().get_summary()

    return app


app = create_app()
