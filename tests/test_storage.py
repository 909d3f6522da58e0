"""Tests for the storage adapters, the repository and the audit trail."""

import json
from datetime import date
from decimal import Decimal

import pytest

from src.audit import AuditLogger, create_correlation_id
from src.models.audit import AuditEventBuilder, AuditEventType
from src.models.investment import PendingTransfer
from src.models.ledger import AppPreferences, Transaction, TransactionType
from src.services.storage import (
    InMemoryStorage,
    JsonFileStorage,
    KeyValueAuditStorage,
    StorageKeys,
    StorageWriteError,
)

from conftest import make_card


class TestInMemoryStorage:
    """Tests for the dict-backed store."""

    async def test_get_returns_default_for_missing_key(self):
        """Test the default on a missing key."""
        storage = InMemoryStorage()
        assert await storage.get("nothing", []) == []

    async def test_values_are_isolated(self):
        """Test that mutating a read value does not change what is stored."""
        storage = InMemoryStorage()
        await storage.set("key", {"a": 1})
        value = await storage.get("key")
        value["a"] = 2
        assert await storage.get("key") == {"a": 1}

    async def test_corrupt_value_reads_as_default(self):
        """Test that undecodable data falls back to the default."""
        storage = InMemoryStorage()
        storage.put_raw("key", "{not json")
        assert await storage.get("key", "fallback") == "fallback"

    async def test_unserializable_value_raises(self):
        """Test that write failures propagate."""
        with pytest.raises(StorageWriteError):
            await InMemoryStorage().set("key", {"when": object()})

    async def test_remove_list_and_clear(self):
        """Test key management."""
        storage = InMemoryStorage({"a": 1, "b": 2})
        await storage.remove("a")
        await storage.remove("missing")
        assert await storage.list_keys() == ["b"]
        await storage.clear()
        assert await storage.list_keys() == []


class TestJsonFileStorage:
    """Tests for the file-backed store."""

    async def test_round_trip_with_prefix(self, tmp_path):
        """Test that each key lives in its own prefixed file."""
        storage = JsonFileStorage(tmp_path, "test_")
        await storage.set("transactions", {"t1": {"amount": "-10"}})

        path = tmp_path / "test_transactions.json"
        assert path.exists()
        assert json.loads(path.read_text(encoding="utf-8")) == {"t1": {"amount": "-10"}}
        assert await storage.get("transactions") == {"t1": {"amount": "-10"}}
        assert await storage.list_keys() == ["transactions"]

    async def test_corrupt_file_reads_as_default(self, tmp_path):
        """Test fail-open reads."""
        (tmp_path / "test_creditCards.json").write_text("[{", encoding="utf-8")
        storage = JsonFileStorage(tmp_path, "test_")
        assert await storage.get("creditCards", []) == []

    async def test_remove_and_clear(self, tmp_path):
        """Test that removing a missing key is fine and clear empties the directory."""
        storage = JsonFileStorage(tmp_path, "test_")
        await storage.set("a", 1)
        await storage.set("b", 2)
        await storage.remove("a")
        await storage.remove("a")
        assert await storage.list_keys() == ["b"]
        await storage.clear()
        assert await storage.list_keys() == []

    async def test_missing_directory_has_no_keys(self, tmp_path):
        """Test a store that was never written."""
        assert await JsonFileStorage(tmp_path / "nowhere", "x_").list_keys() == []


class TestLedgerRepository:
    """Tests for typed collection access."""

    async def test_transactions_round_trip(self, repository):
        """Test that transactions come back identical."""
        tx = Transaction(
            amount=Decimal("19.90"),
            date=date(2024, 3, 2),
            type=TransactionType.EXPENSE,
            category="food",
        )
        await repository.save_transactions({tx.id: tx})
        assert await repository.get_transactions() == {tx.id: tx}

    async def test_invalid_record_is_skipped(self, storage, repository):
        """Test that one bad record does not hide the rest."""
        good = Transaction(amount=Decimal("5"), date=date(2024, 3, 2), type=TransactionType.INCOME)
        await storage.set(StorageKeys.TRANSACTIONS, {
            good.id: good.to_storage(),
            "bad": {"amount": "x", "date": "2024-03-02", "type": "expense"},
        })
        assert list(await repository.get_transactions()) == [good.id]

    async def test_unreadable_records_survive_saves(self, storage, repository):
        """Test that saving a collection writes unreadable records back untouched."""
        bad = {"amount": "x", "date": "2024-03-02", "type": "expense"}
        await storage.set(StorageKeys.TRANSACTIONS, {"bad": bad})
        tx = Transaction(amount=Decimal("5"), date=date(2024, 3, 2), type=TransactionType.INCOME)

        await repository.save_transactions({tx.id: tx})

        assert (await storage.get(StorageKeys.TRANSACTIONS))["bad"] == bad
        assert list(await repository.get_transactions()) == [tx.id]
        assert await repository.count_unreadable_records() == {StorageKeys.TRANSACTIONS: 1}

    async def test_unreadable_list_entries_survive_saves(self, storage, repository):
        """Test the same for list collections."""
        bad = {"id": "old", "name": "Old card", "closingDay": 40}
        await storage.set(StorageKeys.CREDIT_CARDS, [bad])
        card = make_card()

        await repository.save_cards([card])

        assert await storage.get(StorageKeys.CREDIT_CARDS) == [card.to_storage(), bad]
        assert await repository.get_cards() == [card]
        assert await repository.count_unreadable_records() == {StorageKeys.CREDIT_CARDS: 1}

    async def test_recurrence_watermarks_round_trip(self, storage, repository):
        """Test ISO persistence and that bad entries are dropped on read."""
        await repository.save_recurrence_watermarks({"r1": date(2024, 4, 10)})
        assert await storage.get(StorageKeys.RECURRENCE_WATERMARKS) == {"r1": "2024-04-10"}

        await storage.set(StorageKeys.RECURRENCE_WATERMARKS, {"r1": "2024-04-10", "r2": "soon"})
        assert await repository.get_recurrence_watermarks() == {"r1": date(2024, 4, 10)}

    async def test_map_key_fills_missing_id(self, storage, repository):
        """Test that records stored without an id take their key."""
        await storage.set(StorageKeys.TRANSACTIONS, {
            "legacy": {"amount": "5", "date": "2024-03-02", "type": "income"},
        })
        assert (await repository.get_transactions())["legacy"].id == "legacy"

    async def test_wrong_shape_reads_empty(self, storage, repository):
        """Test that a collection of the wrong JSON type reads as empty."""
        await storage.set(StorageKeys.CREDIT_CARDS, {"not": "a list"})
        assert await repository.get_cards() == []

    async def test_cards_and_original_limits(self, repository):
        """Test card lookups and the original-limit side table."""
        card = make_card()
        await repository.save_cards([card])
        await repository.save_original_limits({card.id: Decimal("5000.00")})

        assert (await repository.get_card(card.id)).name == "Nubank"
        assert await repository.get_card("missing") is None
        assert await repository.get_original_limits() == {card.id: Decimal("5000.00")}

    async def test_defaults_when_empty(self, repository):
        """Test the values read from an empty store."""
        assert await repository.get_default_yield_rate() == Decimal("6.5")
        assert await repository.get_yield_watermark() is None
        assert await repository.get_pending_transfer() is None
        assert await repository.get_schema_version() == 0
        preferences = await repository.get_preferences()
        assert preferences.currency == "BRL"
        assert preferences.currency_symbol == "R$"

    async def test_pending_transfer_singleton(self, storage, repository):
        """Test that saving None removes the pending record."""
        await repository.save_pending_transfer(PendingTransfer(month="2024-02", amount=Decimal("10")))
        assert (await repository.get_pending_transfer()).month == "2024-02"
        await repository.save_pending_transfer(None)
        assert StorageKeys.PENDING_TRANSFER not in await storage.list_keys()

    async def test_preferences_round_trip(self, storage, repository):
        """Test camelCase persistence of preferences."""
        await repository.save_preferences(AppPreferences(theme="dark", currency="USD", currency_symbol="$"))
        assert (await storage.get(StorageKeys.APP_SETTINGS))["currencySymbol"] == "$"
        assert (await repository.get_preferences()).theme == "dark"


class TestAuditTrail:
    """Tests for the audit logger and its key-value storage."""

    async def test_events_are_persisted(self, storage):
        """Test that logged events can be read back by correlation id."""
        audit = AuditLogger(KeyValueAuditStorage(storage, max_events=50))
        correlation_id = create_correlation_id()

        assert await audit.log(AuditEventBuilder.card_created(
            card_id="c1", name="Card", limit="1000", correlation_id=correlation_id,
        )) is True
        await audit.log(AuditEventBuilder.card_deleted(card_id="c1", name="Card"))

        related = await audit.storage.get_events_by_correlation_id(correlation_id)
        assert [event.event_type for event in related] == [AuditEventType.CARD_CREATED]
        assert len(await audit.storage.get_events_by_entity("card", "c1")) == 2
        recent = await audit.recent_events(limit=5)
        assert {event.event_type for event in recent} == {
            AuditEventType.CARD_CREATED, AuditEventType.CARD_DELETED,
        }
        assert len(await audit.recent_events(limit=1)) == 1

    async def test_log_is_capped(self, storage):
        """Test that the oldest events are dropped beyond the cap."""
        audit_storage = KeyValueAuditStorage(storage, max_events=10)
        audit = AuditLogger(audit_storage)
        for index in range(15):
            await audit.log(AuditEventBuilder.migration_applied(version=index))

        assert len(await storage.get(StorageKeys.AUDIT_LOG)) == 10

    async def test_local_only_logger(self):
        """Test that a logger without storage still succeeds."""
        audit = AuditLogger()
        assert await audit.log(AuditEventBuilder.data_cleared()) is True
        assert await audit.recent_events() == []

    async def test_storage_failure_is_not_raised(self):
        """Test that a failing audit store never breaks the caller."""

        class BrokenStorage(KeyValueAuditStorage):
            async def append_event(self, event):
                raise RuntimeError("disk full")

        audit = AuditLogger(BrokenStorage(InMemoryStorage()))
        assert await audit.log(AuditEventBuilder.data_cleared()) is False
