"""
Ledger Repository

Typed access to the key-value store. Every collection is read whole,
converted to pydantic models, and written back whole.

DESIGN DECISION: Reads are fail-open. A missing key yields an empty
collection, and a record that no longer validates is skipped with an error
log instead of making the whole collection unreadable. Saving a collection
writes such records back exactly as they were stored, so they stay
available for repair and are reported by the integrity check. Writes
propagate StorageWriteError to the caller.
"""

from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Any, Optional, TypeVar

import structlog
from pydantic import BaseModel, ValidationError

from src.config import get_settings
from src.models.investment import (
    CoverageRecord,
    Investment,
    PendingTransfer,
    TransferHistory,
    YieldHistory,
)
from src.models.ledger import AppPreferences, CreditCard, Transaction
from src.services.storage.interface import KeyValueStorage


logger = structlog.get_logger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)


class StorageKeys:
    """Logical keys of every persisted collection."""
    TRANSACTIONS = "transactions"
    CREDIT_CARDS = "creditCards"
    INVESTMENTS = "investments"
    YIELD_HISTORY = "yield_history"
    DEFAULT_YIELD_RATE = "default_yield_rate"
    ORIGINAL_CARD_LIMITS = "original_card_limits"
    PENDING_TRANSFER = "pending_balance_transfer"
    TRANSFER_HISTORY = "balance_transfer_history"
    COVERAGE_RECORDS = "investment_coverage_records"
    APP_SETTINGS = "app_settings"
    SCHEMA_VERSION = "schema_version"
    YIELD_WATERMARK = "yield_process_watermark"
    RECURRENCE_WATERMARKS = "recurrence_watermarks"
    AUDIT_LOG = "audit_log"


def _parse(model: type[ModelT], raw: Any, key: str) -> Optional[ModelT]:
    try:
        return model.model_validate(raw)
    except ValidationError as e:
        logger.error(
            "stored_record_invalid",
            key=key,
            model=model.__name__,
            errors=e.error_count(),
            detail=str(e).splitlines()[0],
        )
        return None


def _with_id(entry: Any, item_id: str) -> Any:
    if isinstance(entry, dict) and not entry.get("id"):
        return {**entry, "id": item_id}
    return entry


def _is_valid(model: type[BaseModel], raw: Any) -> bool:
    try:
        model.model_validate(raw)
    except ValidationError:
        return False
    return True


_MAP_COLLECTIONS = (
    (StorageKeys.TRANSACTIONS, Transaction),
    (StorageKeys.INVESTMENTS, Investment),
)

_LIST_COLLECTIONS = (
    (StorageKeys.CREDIT_CARDS, CreditCard),
    (StorageKeys.YIELD_HISTORY, YieldHistory),
    (StorageKeys.COVERAGE_RECORDS, CoverageRecord),
    (StorageKeys.TRANSFER_HISTORY, TransferHistory),
)


class LedgerRepository:
    """Typed accessors over a KeyValueStorage."""

    def __init__(self, storage: KeyValueStorage):
        self._storage = storage

    @property
    def storage(self) -> KeyValueStorage:
        return self._storage

    # -------------------------------------------------------------------------
    # Generic helpers
    # -------------------------------------------------------------------------

    async def _load_list(self, key: str, model: type[ModelT]) -> list[ModelT]:
        raw = await self._storage.get(key, [])
        if not isinstance(raw, list):
            logger.warning("stored_collection_wrong_shape", key=key, expected="list")
            return []
        items = []
        for entry in raw:
            item = _parse(model, entry, key)
            if item is not None:
                items.append(item)
        return items

    async def _load_map(self, key: str, model: type[ModelT]) -> dict[str, ModelT]:
        raw = await self._storage.get(key, {})
        if not isinstance(raw, dict):
            logger.warning("stored_collection_wrong_shape", key=key, expected="map")
            return {}
        items = {}
        for item_id, entry in raw.items():
            item = _parse(model, _with_id(entry, item_id), key)
            if item is not None:
                items[item.id] = item
        return items

    async def _unreadable_list(self, key: str, model: type[ModelT]) -> list:
        raw = await self._storage.get(key, [])
        if not isinstance(raw, list):
            return []
        return [entry for entry in raw if not _is_valid(model, entry)]

    async def _unreadable_map(self, key: str, model: type[ModelT]) -> dict[str, Any]:
        raw = await self._storage.get(key, {})
        if not isinstance(raw, dict):
            return {}
        return {
            item_id: entry
            for item_id, entry in raw.items()
            if not _is_valid(model, _with_id(entry, item_id))
        }

    async def _save_list(self, key: str, model: type[ModelT], items: list) -> None:
        kept = await self._unreadable_list(key, model)
        await self._storage.set(key, [item.to_storage() for item in items] + kept)

    async def _save_map(self, key: str, model: type[ModelT], items: dict) -> None:
        raw = {item_id: item.to_storage() for item_id, item in items.items()}
        for item_id, entry in (await self._unreadable_map(key, model)).items():
            raw.setdefault(item_id, entry)
        await self._storage.set(key, raw)

    async def count_unreadable_records(self) -> dict[str, int]:
        """Stored records per collection that no longer validate (kept as stored)."""
        counts = {}
        for key, model in _MAP_COLLECTIONS:
            counts[key] = len(await self._unreadable_map(key, model))
        for key, model in _LIST_COLLECTIONS:
            counts[key] = len(await self._unreadable_list(key, model))
        return {key: count for key, count in counts.items() if count}

    # -------------------------------------------------------------------------
    # Transactions
    # -------------------------------------------------------------------------

    async def get_transactions(self) -> dict[str, Transaction]:
        return await self._load_map(StorageKeys.TRANSACTIONS, Transaction)

    async def save_transactions(self, transactions: dict[str, Transaction]) -> None:
        await self._save_map(StorageKeys.TRANSACTIONS, Transaction, transactions)

    async def get_recurrence_watermarks(self) -> dict[str, date]:
        """Last materialized date per open recurrence id."""
        raw = await self._storage.get(StorageKeys.RECURRENCE_WATERMARKS, {})
        watermarks = {}
        if isinstance(raw, dict):
            for recurrence_id, value in raw.items():
                try:
                    watermarks[recurrence_id] = date.fromisoformat(value)
                except (TypeError, ValueError):
                    logger.warning("stored_watermark_invalid", recurrence_id=recurrence_id, value=value)
        return watermarks

    async def save_recurrence_watermarks(self, watermarks: dict[str, date]) -> None:
        await self._storage.set(
            StorageKeys.RECURRENCE_WATERMARKS,
            {recurrence_id: day.isoformat() for recurrence_id, day in watermarks.items()},
        )

    # -------------------------------------------------------------------------
    # Credit cards
    # -------------------------------------------------------------------------

    async def get_cards(self) -> list[CreditCard]:
        return await self._load_list(StorageKeys.CREDIT_CARDS, CreditCard)

    async def get_card(self, card_id: str) -> Optional[CreditCard]:
        for card in await self.get_cards():
            if card.id == card_id:
                return card
        return None

    async def save_cards(self, cards: list[CreditCard]) -> None:
        await self._save_list(StorageKeys.CREDIT_CARDS, CreditCard, cards)

    async def get_original_limits(self) -> dict[str, Decimal]:
        raw = await self._storage.get(StorageKeys.ORIGINAL_CARD_LIMITS, {})
        limits = {}
        if isinstance(raw, dict):
            for card_id, value in raw.items():
                try:
                    limits[card_id] = Decimal(str(value))
                except InvalidOperation:
                    logger.error("stored_limit_invalid", card_id=card_id, value=value)
        return limits

    async def save_original_limits(self, limits: dict[str, Decimal]) -> None:
        await self._storage.set(
            StorageKeys.ORIGINAL_CARD_LIMITS,
            {card_id: str(value) for card_id, value in limits.items()},
        )

    # -------------------------------------------------------------------------
    # Investments
    # -------------------------------------------------------------------------

    async def get_investments(self) -> dict[str, Investment]:
        return await self._load_map(StorageKeys.INVESTMENTS, Investment)

    async def save_investments(self, investments: dict[str, Investment]) -> None:
        await self._save_map(StorageKeys.INVESTMENTS, Investment, investments)

    async def get_yield_history(self) -> list[YieldHistory]:
        return await self._load_list(StorageKeys.YIELD_HISTORY, YieldHistory)

    async def save_yield_history(self, history: list[YieldHistory]) -> None:
        await self._save_list(StorageKeys.YIELD_HISTORY, YieldHistory, history)

    async def get_default_yield_rate(self) -> Decimal:
        raw = await self._storage.get(StorageKeys.DEFAULT_YIELD_RATE)
        if raw is not None:
            try:
                return Decimal(str(raw))
            except InvalidOperation:
                logger.error("stored_yield_rate_invalid", value=raw)
        return get_settings().investment.default_yield_rate

    async def set_default_yield_rate(self, rate: Decimal) -> None:
        await self._storage.set(StorageKeys.DEFAULT_YIELD_RATE, str(rate))

    async def get_yield_watermark(self) -> Optional[date]:
        raw = await self._storage.get(StorageKeys.YIELD_WATERMARK)
        if not raw:
            return None
        try:
            return date.fromisoformat(raw)
        except (TypeError, ValueError):
            logger.warning("stored_watermark_invalid", value=raw)
            return None

    async def set_yield_watermark(self, day: date) -> None:
        await self._storage.set(StorageKeys.YIELD_WATERMARK, day.isoformat())

    # -------------------------------------------------------------------------
    # Coverage and transfers
    # -------------------------------------------------------------------------

    async def get_coverage_records(self) -> list[CoverageRecord]:
        return await self._load_list(StorageKeys.COVERAGE_RECORDS, CoverageRecord)

    async def save_coverage_records(self, records: list[CoverageRecord]) -> None:
        await self._save_list(StorageKeys.COVERAGE_RECORDS, CoverageRecord, records)

    async def get_pending_transfer(self) -> Optional[PendingTransfer]:
        raw = await self._storage.get(StorageKeys.PENDING_TRANSFER)
        if raw is None:
            return None
        return _parse(PendingTransfer, raw, StorageKeys.PENDING_TRANSFER)

    async def save_pending_transfer(self, transfer: Optional[PendingTransfer]) -> None:
        if transfer is None:
            await self._storage.remove(StorageKeys.PENDING_TRANSFER)
        else:
            await self._storage.set(StorageKeys.PENDING_TRANSFER, transfer.to_storage())

    async def get_transfer_history(self) -> list[TransferHistory]:
        return await self._load_list(StorageKeys.TRANSFER_HISTORY, TransferHistory)

    async def save_transfer_history(self, history: list[TransferHistory]) -> None:
        await self._save_list(StorageKeys.TRANSFER_HISTORY, TransferHistory, history)

    # -------------------------------------------------------------------------
    # Preferences and bookkeeping
    # -------------------------------------------------------------------------

    async def get_preferences(self) -> AppPreferences:
        raw = await self._storage.get(StorageKeys.APP_SETTINGS)
        if raw is not None:
            preferences = _parse(AppPreferences, raw, StorageKeys.APP_SETTINGS)
            if preferences is not None:
                return preferences
        app = get_settings().app
        return AppPreferences(
            currency=app.default_currency,
            currency_symbol=app.default_currency_symbol,
            locale=app.default_locale,
        )

    async def save_preferences(self, preferences: AppPreferences) -> None:
        await self._storage.set(StorageKeys.APP_SETTINGS, preferences.to_storage())

    async def get_schema_version(self) -> int:
        raw = await self._storage.get(StorageKeys.SCHEMA_VERSION, 0)
        try:
            return int(raw)
        except (TypeError, ValueError):
            return 0

    async def set_schema_version(self, version: int) -> None:
        await self._storage.set(StorageKeys.SCHEMA_VERSION, version)

    async def clear(self) -> None:
        await self._storage.clear()
