"""
Configuration Management for the Finance Ledger

Uses pydantic-settings for type-safe configuration from environment variables.

DESIGN DECISION: All configuration is centralized here.
The engine itself is pure computation over stored data, so the only knobs
are where data lives, the investment accrual constants and a few
validation thresholds. Everything has a working default so the ledger
runs with zero configuration.
"""

from decimal import Decimal
from functools import lru_cache
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class StorageSettings(BaseSettings):
    """Key-value storage backend configuration."""

    model_config = SettingsConfigDict(
        env_prefix="LEDGER_STORAGE_",
        extra="ignore"
    )

    backend: str = Field(
        default="json_file",
        pattern="^(memory|json_file)$",
        description="Storage backend to use"
    )
    data_dir: Path = Field(
        default=Path("data"),
        description="Directory holding one JSON file per storage key"
    )
    key_prefix: str = Field(
        default="financas_pro_",
        description="Prefix applied to every persisted key"
    )


class InvestmentSettings(BaseSettings):
    """Constants for the daily yield accrual simulation."""

    model_config = SettingsConfigDict(
        env_prefix="LEDGER_INVESTMENT_",
        extra="ignore"
    )

    default_yield_rate: Decimal = Field(
        default=Decimal("6.5"),
        ge=0,
        description="Annual yield rate (%) used when none is supplied"
    )
    tax_rate: Decimal = Field(
        default=Decimal("0.20"),
        ge=0,
        le=1,
        description="Share of gross yield withheld as tax"
    )
    days_per_year: int = Field(
        default=365,
        ge=360,
        le=366,
        description="Day count used to prorate the annual rate"
    )


class RecurrenceSettings(BaseSettings):
    """Expansion horizon for open-ended recurrences."""

    model_config = SettingsConfigDict(
        env_prefix="LEDGER_RECURRENCE_",
        extra="ignore"
    )

    open_ended_horizon_months: int = Field(
        default=12,
        ge=1,
        le=120,
        description="How many months ahead an open-ended recurrence is materialized"
    )
    max_instances: int = Field(
        default=1000,
        ge=1,
        description="Hard cap on instances generated for one recurrence"
    )


class AppSettings(BaseSettings):
    """
    Main application settings.

    Loads configuration from environment variables and .env file.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    # Environment
    app_environment: str = Field(
        default="development",
        description="Application environment"
    )
    debug_mode: bool = Field(
        default=False,
        description="Enable debug mode"
    )
    log_level: str = Field(
        default="INFO",
        description="Minimum level for local structured logs"
    )

    # Defaults for persisted user preferences
    default_currency: str = Field(default="BRL", min_length=3, max_length=3)
    default_currency_symbol: str = Field(default="R$")
    default_locale: str = Field(default="pt-BR")

    # Validation thresholds
    max_transaction_amount: Decimal = Field(
        default=Decimal("1000000"),
        description="Amounts above this are flagged for review (warning only)"
    )
    future_date_tolerance_days: int = Field(
        default=3650,
        description="Dates further ahead than this are flagged (warning only)"
    )

    # Audit trail
    audit_log_max_events: int = Field(
        default=1000,
        ge=10,
        description="Oldest audit events are dropped beyond this count"
    )

    @field_validator("log_level")
    @classmethod
    def normalize_log_level(cls, v: str) -> str:
        """Accept any casing for the level name."""
        level = v.strip().upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Unknown log level: {v}")
        return level


class Settings(BaseSettings):
    """
    Root settings container.

    Aggregates all sub-settings for easy access.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    @property
    def storage(self) -> StorageSettings:
        return StorageSettings()

    @property
    def investment(self) -> InvestmentSettings:
        return InvestmentSettings()

    @property
    def recurrence(self) -> RecurrenceSettings:
        return RecurrenceSettings()

    @property
    def app(self) -> AppSettings:
        return AppSettings()


@lru_cache()
def get_settings() -> Settings:
    """
    Get application settings (cached).

    Uses LRU cache to ensure settings are only loaded once.
    Call get_settings.cache_clear() to reload if needed.
    """
    return Settings()


def validate_all_settings() -> dict[str, bool]:
    """
    Validate all settings are properly configured.

    Returns a dict of {setting_name: is_valid}.
    Useful for startup checks.
    """
    results = {}

    settings = get_settings()

    for name in ("storage", "investment", "recurrence", "app"):
        try:
            _ = getattr(settings, name)
            results[name] = True
        except Exception as e:
            results[name] = False
            results[f"{name}_error"] = str(e)

    return results
