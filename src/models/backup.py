"""
Backup File Model

The versioned JSON document produced by export and accepted by import.
Every collection is optional so older backups (which only carried
transactions, cards and settings) still load.
"""

from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import Field

from src.models.investment import Investment, YieldHistory
from src.models.ledger import AppPreferences, CreditCard, LedgerModel, Transaction


BACKUP_VERSION = 3


class BackupFile(LedgerModel):
    """A full export of the ledger."""

    version: int = Field(default=BACKUP_VERSION, ge=1)
    exported_at: datetime = Field(default_factory=datetime.utcnow)
    transactions: Optional[list[Transaction]] = None
    credit_cards: Optional[list[CreditCard]] = None
    settings: Optional[AppPreferences] = None
    investments: Optional[list[Investment]] = None
    yield_history: Optional[list[YieldHistory]] = None
    default_yield_rate: Optional[Decimal] = Field(default=None, ge=0)
    original_card_limits: Optional[dict[str, Decimal]] = None
