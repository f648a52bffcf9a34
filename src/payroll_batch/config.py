"""Configuration management for the payroll batch core.

Two layers:
- Explicit, frozen config objects (FXConfig, ReconciliationConfig,
  CoreConfig) that services receive as constructor arguments.
- Settings, loaded from the environment (and a .env file) for the HTTP
  service and CLI, which builds a CoreConfig.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from decimal import Decimal
from functools import lru_cache

from dotenv import load_dotenv

from payroll_batch.money import validate_currency


@dataclass(frozen=True)
class FXConfig:
    """
    FX snapshot behaviour.

    Attributes:
        base_currency: Currency the quotes are expressed against. Default USD.
        default_lock_ttl_seconds: Lock duration used when the caller does not
            pass one. Default 900 (15 minutes).
        max_lock_ttl_seconds: Upper bound for any requested lock. Default 3600.
        providers: Provider names in switch order. The first is primary.
    """

    base_currency: str = "USD"
    default_lock_ttl_seconds: int = 900
    max_lock_ttl_seconds: int = 3600
    providers: tuple[str, ...] = ("primary", "alternate")

    def __post_init__(self) -> None:
        """Validate configuration."""
        validate_currency(self.base_currency)
        if self.default_lock_ttl_seconds < 1:
            raise ValueError("default_lock_ttl_seconds must be at least 1")
        if self.max_lock_ttl_seconds < self.default_lock_ttl_seconds:
            raise ValueError("max_lock_ttl_seconds cannot be below default_lock_ttl_seconds")
        if len(set(self.providers)) != len(self.providers):
            raise ValueError("Provider names must be unique")


@dataclass(frozen=True)
class ReconciliationConfig:
    """
    Reconciliation configuration.

    Attributes:
        amount_tolerance: Allowed absolute difference between the dispatched
            amount and a receipt's amount before an AmountMismatch warning is
            recorded. Default 0 (exact match required).
    """

    amount_tolerance: Decimal = Decimal("0.00")

    def __post_init__(self) -> None:
        if self.amount_tolerance < 0:
            raise ValueError("amount_tolerance cannot be negative")


@dataclass(frozen=True)
class CoreConfig:
    """Complete core configuration passed to BatchService."""

    fx: FXConfig = field(default_factory=FXConfig)
    reconciliation: ReconciliationConfig = field(default_factory=ReconciliationConfig)


@dataclass(frozen=True)
class Settings:
    """Application settings loaded from environment."""

    database_url: str
    host: str
    port: int
    debug: bool
    log_level: str
    fx_base_currency: str
    fx_lock_ttl_seconds: int
    recon_amount_tolerance: Decimal

    @property
    def HOST(self) -> str:
        """Alias for host."""
        return self.host

    @property
    def PORT(self) -> int:
        """Alias for port."""
        return self.port

    @property
    def DEBUG(self) -> bool:
        """Alias for debug."""
        return self.debug

    @classmethod
    def from_env(cls) -> Settings:
        """Load settings from environment variables."""
        load_dotenv()

        return cls(
            database_url=os.getenv("DATABASE_URL", "sqlite:///./payroll_batch.db"),
            host=os.getenv("HOST", "0.0.0.0"),
            port=int(os.getenv("PORT", "8000")),
            debug=os.getenv("DEBUG", "false").lower() == "true",
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
            fx_base_currency=os.getenv("FX_BASE_CURRENCY", "USD"),
            fx_lock_ttl_seconds=int(os.getenv("FX_LOCK_TTL_SECONDS", "900")),
            recon_amount_tolerance=Decimal(os.getenv("RECON_AMOUNT_TOLERANCE", "0.00")),
        )

    def core_config(self) -> CoreConfig:
        """Build the explicit core configuration from these settings."""
        ttl = self.fx_lock_ttl_seconds
        return CoreConfig(
            fx=FXConfig(
                base_currency=self.fx_base_currency,
                default_lock_ttl_seconds=ttl,
                max_lock_ttl_seconds=max(ttl, 3600),
            ),
            reconciliation=ReconciliationConfig(
                amount_tolerance=self.recon_amount_tolerance,
            ),
        )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings.from_env()
