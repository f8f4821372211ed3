"""
Service Configuration

Environment Variables:
    EVENTGUARD_TRUSTED_RESOLVERS: Comma-separated base64 Ed25519 public keys
        of the resolvers allowed to record market outcomes
    EVENTGUARD_SETTLEMENT_UNIT: Default settlement unit (default USDC)
    EVENTGUARD_SETTLEMENT_DECIMALS: Decimals of the settlement unit (default 6)
    EVENTGUARD_REQUIRE_FUTURE_DATE: Reject events dated in the past (default true)
    EVENTGUARD_LOCK_TIMEOUT_SECONDS: Record lock wait before STORE_BUSY (default 10)
    EVENTGUARD_CORS_ORIGINS: Comma-separated allowed origins
    EVENTGUARD_PRODUCTION: Enable production mode

Logging is configured separately (see observability.py).
"""

import base64
import binascii
import os
from dataclasses import dataclass, field
from typing import Optional

DEFAULT_CORS_ORIGINS = (
    "http://localhost:5173",
    "http://127.0.0.1:5173",
    "http://localhost:3000",
    "http://127.0.0.1:3000",
)

ED25519_PUBLIC_KEY_BYTES = 32


class ConfigError(Exception):
    """Raised when the environment describes an unusable configuration."""
    pass


def _flag(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None or raw == "":
        return default
    return raw.lower() in ("1", "true", "yes")


def _csv(raw: Optional[str]) -> list[str]:
    if not raw:
        return []
    return [part.strip() for part in raw.split(",") if part.strip()]


@dataclass
class Settings:
    """Runtime settings for the ticketing service."""
    trusted_resolvers: list[str] = field(default_factory=list)
    settlement_unit: str = "USDC"
    settlement_decimals: int = 6
    require_future_date: bool = True
    lock_timeout_seconds: float = 10.0
    cors_origins: list[str] = field(default_factory=lambda: list(DEFAULT_CORS_ORIGINS))
    production: bool = False

    @classmethod
    def from_env(cls) -> "Settings":
        """Load settings from environment variables."""
        settings = cls(
            trusted_resolvers=_csv(os.environ.get("EVENTGUARD_TRUSTED_RESOLVERS")),
            settlement_unit=os.environ.get("EVENTGUARD_SETTLEMENT_UNIT", "USDC"),
            settlement_decimals=int(os.environ.get("EVENTGUARD_SETTLEMENT_DECIMALS", "6")),
            require_future_date=_flag("EVENTGUARD_REQUIRE_FUTURE_DATE", True),
            lock_timeout_seconds=float(os.environ.get("EVENTGUARD_LOCK_TIMEOUT_SECONDS", "10")),
            cors_origins=_csv(os.environ.get("EVENTGUARD_CORS_ORIGINS")) or list(DEFAULT_CORS_ORIGINS),
            production=_flag("EVENTGUARD_PRODUCTION", False),
        )
        settings.validate()
        return settings

    def validate(self) -> None:
        """Raises ConfigError for settings the service cannot run with."""
        if self.settlement_decimals < 0:
            raise ConfigError(
                f"EVENTGUARD_SETTLEMENT_DECIMALS must be non-negative, got {self.settlement_decimals}"
            )
        if self.lock_timeout_seconds <= 0:
            raise ConfigError("EVENTGUARD_LOCK_TIMEOUT_SECONDS must be positive")

        for key in self.trusted_resolvers:
            try:
                raw = base64.b64decode(key, validate=True)
            except binascii.Error as e:
                raise ConfigError(f"Trusted resolver key is not valid base64: {key}") from e
            if len(raw) != ED25519_PUBLIC_KEY_BYTES:
                raise ConfigError(
                    f"Trusted resolver key must decode to {ED25519_PUBLIC_KEY_BYTES} bytes: {key}"
                )

        if self.production and not self.trusted_resolvers:
            raise ConfigError(
                "Production mode requires at least one key in EVENTGUARD_TRUSTED_RESOLVERS"
            )

    def format_amount(self, minor_units: int) -> str:
        """Render minor units in the settlement unit, e.g. 50000000 -> '50.000000 USDC'."""
        if self.settlement_decimals == 0:
            return f"{minor_units} {self.settlement_unit}"
        sign = "-" if minor_units < 0 else ""
        whole, frac = divmod(abs(minor_units), 10 ** self.settlement_decimals)
        return f"{sign}{whole}.{frac:0{self.settlement_decimals}d} {self.settlement_unit}"
