"""
Shared fixtures.

Every test runs against an in-memory store and a frozen "today" so date
logic (invoice months, coverage, month-end checks) is deterministic.
"""

from datetime import date
from decimal import Decimal

import pytest

from src.audit import AuditLogger
from src.models.ledger import CreditCard
from src.orchestrator import Ledger
from src.services.storage import InMemoryStorage, KeyValueAuditStorage, LedgerRepository


TODAY = date(2024, 3, 15)


class FrozenClock:
    """Callable clock whose date tests can move."""

    def __init__(self, today: date = TODAY):
        self.today = today

    def __call__(self) -> date:
        return self.today


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock()


@pytest.fixture
def storage() -> InMemoryStorage:
    return InMemoryStorage()


@pytest.fixture
def repository(storage) -> LedgerRepository:
    return LedgerRepository(storage)


@pytest.fixture
def audit_logger(storage) -> AuditLogger:
    return AuditLogger(KeyValueAuditStorage(storage, max_events=100))


@pytest.fixture
def ledger(storage, clock, audit_logger) -> Ledger:
    return Ledger(storage, clock=clock, audit_logger=audit_logger)


def make_card(**overrides) -> CreditCard:
    values = {
        "name": "Nubank",
        "limit": Decimal("5000"),
        "closing_day": 25,
        "due_day": 5,
    }
    values.update(overrides)
    return CreditCard(**values)


async def store_card(repository: LedgerRepository, card: CreditCard) -> CreditCard:
    """Persist a card together with its original limit."""
    cards = await repository.get_cards()
    cards.append(card)
    await repository.save_cards(cards)
    limits = await repository.get_original_limits()
    limits[card.id] = card.limit
    await repository.save_original_limits(limits)
    return card
