"""Configuration package."""

from src.config.settings import (
    AppSettings,
    InvestmentSettings,
    RecurrenceSettings,
    Settings,
    StorageSettings,
    get_settings,
    validate_all_settings,
)

__all__ = [
    "AppSettings",
    "InvestmentSettings",
    "RecurrenceSettings",
    "Settings",
    "StorageSettings",
    "get_settings",
    "validate_all_settings",
]
