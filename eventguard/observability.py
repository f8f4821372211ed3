"""
Observability - Logging, Metrics, and Health

- Structured logging: keyword fields on every call, JSON or text output
- Request middleware: request ids, timing, request counters
- In-process metrics for the ticketing operations
- Health checks over the record store and the journal chain

Configuration:
- EVENTGUARD_LOG_LEVEL: DEBUG, INFO, WARNING, ERROR (default: INFO)
- EVENTGUARD_LOG_FORMAT: json, text (default: json in production)
- EVENTGUARD_PRODUCTION: Enable production mode

Usage:
    from eventguard.observability import get_logger

    logger = get_logger(__name__)
    logger.info("Ticket sold", event_id=str(event_id), ticket_id=3)
"""

import json
import logging
import os
import sys
import time
import uuid
from collections import deque
from contextvars import ContextVar
from dataclasses import dataclass, field
from datetime import datetime, timezone
from threading import Lock
from typing import Any, Deque, Dict, Optional

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

# Request id of the HTTP request being served, "" outside requests
request_id_var: ContextVar[str] = ContextVar("request_id", default="")

# Attributes every LogRecord carries; anything else came in as a field
_RESERVED_ATTRS = frozenset(vars(logging.LogRecord("", 0, "", 0, "", (), None))) | {
    "message",
    "asctime",
}

_NOISY_LOGGERS = ("uvicorn.access", "httpx")


# ============================================================
# CONFIGURATION
# ============================================================

@dataclass
class LogSettings:
    level: int = logging.INFO
    json_output: bool = False

    @classmethod
    def from_env(cls) -> "LogSettings":
        production = os.environ.get("EVENTGUARD_PRODUCTION", "").lower() in ("1", "true", "yes")
        fmt = os.environ.get("EVENTGUARD_LOG_FORMAT", "").lower()
        level = logging.getLevelName(os.environ.get("EVENTGUARD_LOG_LEVEL", "INFO").upper())
        return cls(
            level=level if isinstance(level, int) else logging.INFO,
            json_output=production if fmt not in ("json", "text") else fmt == "json",
        )


# ============================================================
# STRUCTURED LOGGING
# ============================================================

def _record_fields(record: logging.LogRecord) -> Dict[str, Any]:
    return {
        key: value
        for key, value in vars(record).items()
        if key not in _RESERVED_ATTRS and not key.startswith("_")
    }


class StructuredFormatter(logging.Formatter):
    """
    One JSON object per line:

        {"timestamp": "...", "level": "INFO", "logger": "eventguard.core.ticketing",
         "message": "Refund paid", "request_id": "3f2a9c1e", "amount": 50000000}

    Field values that are not JSON types are rendered with str().
    """

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        request_id = request_id_var.get()
        if request_id:
            entry["request_id"] = request_id
        entry.update(_record_fields(record))
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


class TextFormatter(logging.Formatter):
    """Single-line development output with fields appended as key=value."""

    def format(self, record: logging.LogRecord) -> str:
        stamp = datetime.fromtimestamp(record.created, timezone.utc).strftime("%H:%M:%S")
        request_id = request_id_var.get()
        context = f" [{request_id}]" if request_id else ""
        fields = " ".join(f"{k}={v}" for k, v in _record_fields(record).items())

        line = f"{stamp} {record.levelname:<7}{context} {record.name}: {record.getMessage()}"
        if fields:
            line = f"{line} | {fields}"
        if record.exc_info:
            line = f"{line}\n{self.formatException(record.exc_info)}"
        return line


class ContextLogger(logging.LoggerAdapter):
    """
    Logger adapter taking structured fields as keyword arguments.

        logger.info("Refund paid", ticket_key=str(key), amount=50_000000)
    """

    _PASSTHROUGH = ("exc_info", "stack_info", "stacklevel", "extra")

    def process(self, msg: str, kwargs: Dict[str, Any]) -> tuple:
        fields = {k: kwargs.pop(k) for k in list(kwargs) if k not in self._PASSTHROUGH}
        kwargs["extra"] = {**kwargs.get("extra", {}), **fields}
        return msg, kwargs


def get_logger(name: str) -> ContextLogger:
    return ContextLogger(logging.getLogger(name), {})


def setup_logging(settings: Optional[LogSettings] = None) -> None:
    """Install a single stdout handler on the root logger. Safe to call again."""
    settings = settings or LogSettings.from_env()

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(StructuredFormatter() if settings.json_output else TextFormatter())

    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(settings.level)

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(settings.level, logging.WARNING))


# ============================================================
# REQUEST CONTEXT MIDDLEWARE
# ============================================================

class RequestContextMiddleware(BaseHTTPMiddleware):
    """
    Tags each request with an id (the caller's X-Request-ID or a fresh
    one), logs its outcome and latency, and echoes the id back.
    """

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex[:8]
        token = request_id_var.set(request_id)
        logger = get_logger("eventguard.request")
        route = f"{request.method} {request.url.path}"
        started = time.perf_counter()

        try:
            response = await call_next(request)
        except Exception as e:
            elapsed = (time.perf_counter() - started) * 1000
            get_metrics().record_request(elapsed, success=False)
            logger.exception(f"{route} -> 500", duration_ms=round(elapsed, 2), error=str(e))
            raise
        finally:
            request_id_var.reset(token)

        elapsed = (time.perf_counter() - started) * 1000
        get_metrics().record_request(elapsed, success=response.status_code < 500)
        logger.log(
            logging.INFO if response.status_code < 400 else logging.WARNING,
            f"{route} -> {response.status_code}",
            request_id=request_id,
            status_code=response.status_code,
            duration_ms=round(elapsed, 2),
        )
        response.headers["X-Request-ID"] = request_id
        return response


# ============================================================
# METRICS
# ============================================================

MAX_SAMPLES = 1000

# Committed operation -> counter it increments
_OPERATION_COUNTERS = {
    "create_event": "events_created",
    "buy_ticket": "tickets_sold",
    "check_in_ticket": "check_ins",
    "transfer_ticket": "transfers",
    "record_market_resolution": "resolutions",
    "claim_refund": "refunds_paid",
}


def _percentile(samples, p: float) -> Optional[float]:
    if not samples:
        return None
    ordered = sorted(samples)
    return ordered[min(int(len(ordered) * p), len(ordered) - 1)]


def _samples() -> Deque[float]:
    return deque(maxlen=MAX_SAMPLES)


@dataclass
class MetricsCollector:
    """
    In-process counters and latency samples.

    Latencies keep the last MAX_SAMPLES observations per series.
    """

    events_created: int = 0
    tickets_sold: int = 0
    check_ins: int = 0
    badges_issued: int = 0
    transfers: int = 0
    resolutions: int = 0
    refunds_paid: int = 0
    refund_volume: int = 0
    requests_total: int = 0
    requests_failed: int = 0
    rule_violations: Dict[str, int] = field(default_factory=dict)

    operation_latencies_ms: Dict[str, Deque[float]] = field(default_factory=dict)
    request_latencies_ms: Deque[float] = field(default_factory=_samples)

    _lock: Lock = field(default_factory=Lock, repr=False, compare=False)

    def record_operation(self, operation: str, latency_ms: float) -> None:
        with self._lock:
            counter = _OPERATION_COUNTERS.get(operation)
            if counter:
                setattr(self, counter, getattr(self, counter) + 1)
            self.operation_latencies_ms.setdefault(operation, _samples()).append(latency_ms)

    def record_badge(self) -> None:
        with self._lock:
            self.badges_issued += 1

    def record_refund_volume(self, amount: int) -> None:
        with self._lock:
            self.refund_volume += amount

    def record_violation(self, code: str) -> None:
        """Count a rejected operation under its error code."""
        with self._lock:
            self.rule_violations[code] = self.rule_violations.get(code, 0) + 1

    def record_request(self, latency_ms: float, success: bool) -> None:
        with self._lock:
            self.requests_total += 1
            self.requests_failed += 0 if success else 1
            self.request_latencies_ms.append(latency_ms)

    def get_summary(self) -> Dict[str, Any]:
        with self._lock:
            summary: Dict[str, Any] = {
                counter: getattr(self, counter) for counter in _OPERATION_COUNTERS.values()
            }
            summary.update(
                badges_issued=self.badges_issued,
                refund_volume=self.refund_volume,
                rule_violations=dict(self.rule_violations),
                requests_total=self.requests_total,
                requests_failed=self.requests_failed,
                request_latency_p50_ms=_percentile(self.request_latencies_ms, 0.5),
                request_latency_p95_ms=_percentile(self.request_latencies_ms, 0.95),
            )
            for p, label in ((0.5, "p50"), (0.95, "p95")):
                summary[f"operation_latency_{label}_ms"] = {
                    op: _percentile(samples, p)
                    for op, samples in self.operation_latencies_ms.items()
                }
            return summary


_metrics = MetricsCollector()


def get_metrics() -> MetricsCollector:
    """Process-wide collector, shared by the HTTP layer and default services."""
    return _metrics


# ============================================================
# HEALTH CHECKS
# ============================================================

@dataclass
class HealthStatus:
    healthy: bool
    checks: Dict[str, Dict[str, Any]]
    duration_ms: float


def _check_store(store) -> Dict[str, Any]:
    head = store.get_head()
    return {
        "status": "healthy",
        "journal_length": head.next_sequence,
        "last_hash": f"{head.last_entry_hash[:16]}..." if head.last_entry_hash else None,
    }


def _check_journal(service) -> Dict[str, Any]:
    valid = service.verify_journal_integrity()
    return {
        "status": "healthy" if valid else "unhealthy",
        "valid": valid,
        "journal_length": service.journal_length,
    }


def check_health(service=None, store=None) -> HealthStatus:
    """
    Run the health checks that apply to what was passed in.

    Args:
        service: TicketingService (journal chain re-verification)
        store: EventStore (reachability and journal head)
    """
    started = time.perf_counter()
    checks: Dict[str, Dict[str, Any]] = {"liveness": {"status": "healthy"}}

    probes = []
    if store is not None:
        probes.append(("event_store", _check_store, store))
    if service is not None and service.journal_length > 0:
        probes.append(("journal_integrity", _check_journal, service))

    for name, probe, target in probes:
        try:
            checks[name] = probe(target)
        except Exception as e:
            get_logger(__name__).error("Health check failed", check=name, error=str(e))
            checks[name] = {"status": "unhealthy", "error": str(e)}

    return HealthStatus(
        healthy=all(c["status"] == "healthy" for c in checks.values()),
        checks=checks,
        duration_ms=round((time.perf_counter() - started) * 1000, 2),
    )
