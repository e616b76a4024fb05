"""
Configuration Management Module

Provides centralized configuration using pydantic-settings for environment-based configuration.
The configuration value is built explicitly and handed to each component;
reloading is the caller's job (see ``BursarySystem.reload_config``).
"""

from typing import List

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .currency import Currency


class BursaryConfig(BaseSettings):
    """School finance ledger configuration"""

    model_config = SettingsConfigDict(
        env_prefix="BURSARY_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore"
    )

    # Database configuration
    database_url: str = "sqlite:///bursary.db"  # memory://, sqlite:///path, postgresql://...

    # Logging configuration
    log_level: str = "INFO"
    log_format: str = "json"  # json or text

    # Ledger configuration
    ledger_currency: str = "KES"

    # Reconciliation tolerances, in minor units of the ledger currency
    amount_tolerance_minor_units: int = 100
    date_tolerance_days: int = 7
    closing_balance_tolerance_minor_units: int = 1

    # Payment methods whose entries must name the bank account they went through
    bank_payment_methods: List[str] = ["BANK_TRANSFER", "CHEQUE"]

    # "first": first approval posts; "all": every pending request must approve
    approval_policy: str = "first"

    # Startup
    seed_on_startup: bool = True

    # API configuration
    api_host: str = "0.0.0.0"
    api_port: int = 8090

    @field_validator("ledger_currency")
    @classmethod
    def _known_currency(cls, value: str) -> str:
        value = value.upper()
        if value not in Currency.__members__:
            raise ValueError(f"Unsupported ledger currency: {value}")
        return value

    @field_validator("approval_policy")
    @classmethod
    def _known_policy(cls, value: str) -> str:
        value = value.lower()
        if value not in ("first", "all"):
            raise ValueError("approval_policy must be 'first' or 'all'")
        return value

    @field_validator("amount_tolerance_minor_units", "date_tolerance_days",
                     "closing_balance_tolerance_minor_units")
    @classmethod
    def _non_negative(cls, value: int) -> int:
        if value < 0:
            raise ValueError("Tolerances cannot be negative")
        return value

    @property
    def currency(self) -> Currency:
        return Currency[self.ledger_currency]


def load_config(**overrides) -> BursaryConfig:
    """Build a fresh configuration from the environment plus explicit overrides"""
    return BursaryConfig(**overrides)
