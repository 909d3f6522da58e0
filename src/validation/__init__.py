"""Validation of user input before it reaches storage."""

from src.validation.validator import (
    CardValidator,
    LedgerValidationError,
    TransactionValidator,
    get_user_friendly_summary,
    raise_for_errors,
)

__all__ = [
    "CardValidator",
    "LedgerValidationError",
    "TransactionValidator",
    "get_user_friendly_summary",
    "raise_for_errors",
]
