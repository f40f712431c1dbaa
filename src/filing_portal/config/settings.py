"""Application settings using Pydantic Settings.

Centralized configuration for the filing portal. Every group can be
overridden through environment variables using its own prefix
(``PORTAL_``, ``PRICING_``, ``WIZARD_``, ``RESILIENCE_``, ``DB_``).
"""

import logging
from decimal import Decimal
from functools import lru_cache
from typing import Dict, List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)


class PricingSettings(BaseSettings):
    """Flat-fee pricing used when a schema carries no pricing block."""

    model_config = SettingsConfigDict(
        env_prefix="PRICING_",
        extra="ignore",
    )

    individual_base_fee: Decimal = Field(default=Decimal("149.99"), description="Base fee for an individual filing")
    corporate_base_fee: Decimal = Field(default=Decimal("149.99"), description="Base fee for a corporate filing")
    trust_base_fee: Decimal = Field(default=Decimal("149.99"), description="Base fee for a trust filing")
    spouse_fee: Decimal = Field(default=Decimal("49.99"), description="Fee added for a spouse return")
    dependent_fee: Decimal = Field(default=Decimal("29.99"), description="Fee added per dependent return")
    currency: str = Field(default="CAD", description="ISO currency code")

    # Sales tax by jurisdiction
    tax_rates: Dict[str, Decimal] = Field(
        default_factory=lambda: {
            "ON": Decimal("0.13"),
            "NS": Decimal("0.15"),
            "NB": Decimal("0.15"),
            "NL": Decimal("0.15"),
            "PE": Decimal("0.15"),
            "QC": Decimal("0.14975"),
            "BC": Decimal("0.12"),
            "MB": Decimal("0.12"),
            "SK": Decimal("0.11"),
            "AB": Decimal("0.05"),
        },
        description="Tax rate applied to the subtotal, keyed by jurisdiction",
    )
    default_jurisdiction: str = Field(default="ON", description="Jurisdiction used when none is given")

    def base_fee_for(self, kind: str) -> Decimal:
        """Get the flat base fee for a filing kind."""
        return {
            "CORPORATE": self.corporate_base_fee,
            "TRUST": self.trust_base_fee,
        }.get(str(kind).upper(), self.individual_base_fee)

    def tax_rate_for(self, jurisdiction: Optional[str] = None) -> Decimal:
        """Get the tax rate for a jurisdiction, falling back to the default one."""
        code = (jurisdiction or self.default_jurisdiction).upper()
        if code not in self.tax_rates:
            logger.warning(f"No tax rate for jurisdiction {code}, using {self.default_jurisdiction}")
            code = self.default_jurisdiction
        return self.tax_rates.get(code, Decimal("0"))


class WizardSettings(BaseSettings):
    """Wizard behaviour knobs."""

    model_config = SettingsConfigDict(
        env_prefix="WIZARD_",
        extra="ignore",
    )

    save_debounce_seconds: float = Field(default=1.0, ge=0, description="Delay before staged answers are written")
    eligible_marital_statuses: List[str] = Field(
        default=["MARRIED", "COMMON_LAW"],
        description="Marital status answers that make a spouse return possible",
    )
    marital_status_key: str = Field(default="maritalStatus.status", description="Answer key holding marital status")
    dependents_list_key: str = Field(default="dependants.list", description="Answer key holding the dependents repeater")
    reference_prefix: str = Field(default="JJ", description="Prefix for generated reference numbers")
    default_tax_year: int = Field(default=2025, description="Schema year used when a year has no definition")
    max_sessions: int = Field(default=1000, ge=1, description="Wizard sessions kept in memory before the least recently used is closed")


class ResilienceSettings(BaseSettings):
    """Retry configuration for submission transport failures."""

    model_config = SettingsConfigDict(
        env_prefix="RESILIENCE_",
        extra="ignore",
    )

    retry_max_attempts: int = Field(default=3, ge=1, description="Max submission attempts")
    retry_initial_delay: float = Field(default=1.0, ge=0, description="Initial delay in seconds")
    retry_backoff_multiplier: float = Field(default=2.0, ge=1, description="Backoff multiplier")
    retry_max_delay: float = Field(default=30.0, ge=0, description="Max delay between retries")
    retry_jitter: float = Field(default=0.1, ge=0, le=1, description="Jitter as fraction of the delay")


class DatabaseSettings(BaseSettings):
    """
    Database configuration settings.

    Example environment variables:
        DB_URL=sqlite+aiosqlite:///data/filings.db
        DB_ECHO=true
    """

    model_config = SettingsConfigDict(
        env_prefix="DB_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    url: str = Field(
        default="sqlite+aiosqlite:///data/filings.db",
        description="Async SQLAlchemy database URL",
    )
    echo: bool = Field(default=False, description="Log SQL statements")

    @property
    def is_sqlite(self) -> bool:
        """Check if using SQLite."""
        return self.url.startswith("sqlite")


class PortalSettings(BaseSettings):
    """Main application settings."""

    model_config = SettingsConfigDict(
        env_prefix="PORTAL_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    name: str = Field(default="Filing Portal", description="Application name")
    version: str = Field(default="1.0.0", description="Application version")
    debug: bool = Field(default=False, description="Debug mode")
    environment: str = Field(default="development", description="Environment name")

    log_level: str = Field(default="INFO", description="Root log level")
    log_json: bool = Field(default=False, description="Emit JSON formatted logs")

    pricing: PricingSettings = Field(default_factory=PricingSettings)
    wizard: WizardSettings = Field(default_factory=WizardSettings)
    resilience: ResilienceSettings = Field(default_factory=ResilienceSettings)
    database: DatabaseSettings = Field(default_factory=DatabaseSettings)

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"log_level must be one of {valid_levels}")
        return v.upper()

    @property
    def is_production(self) -> bool:
        """Check if running in production."""
        return self.environment.lower() == "production"


@lru_cache()
def get_settings() -> PortalSettings:
    """
    Get cached application settings.

    Returns:
        PortalSettings instance (cached).
    """
    return PortalSettings()
