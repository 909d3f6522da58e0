"""
Schema Migrations

One-shot upgrades of the stored JSON, run at startup before anything reads
the data through the models. Each migration works on raw dicts and is
tied to a schema version; `schema_version` records the last one applied.

Versions:
- 1: transactions get an `id` (from their key), a `createdAt` and a
  numeric amount
- 2: card purchases get their `invoiceMonth`, every transaction gets its
  `kind`, investments get coverage and rate history defaults

DESIGN DECISION: A failing migration is logged as a warning and the run
stops there. The app keeps working on the pre-migration data and the
migration is retried on the next startup.
"""

from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Awaitable, Callable, Optional
from uuid import UUID

import structlog

from src.audit import AuditLogger
from src.billing.dates import parse_date
from src.billing.invoices import invoice_month_of
from src.models.audit import AuditEventBuilder
from src.models.ledger import infer_kind
from src.services.storage import KeyValueStorage, StorageKeys


logger = structlog.get_logger(__name__)

Migration = Callable[[KeyValueStorage], Awaitable[None]]


def _as_decimal_string(value: Any) -> str:
    try:
        return str(Decimal(str(value)))
    except (InvalidOperation, ValueError):
        return "0"


async def migrate_to_v1(storage: KeyValueStorage) -> None:
    """Normalize transaction ids, timestamps and amounts."""
    transactions = await storage.get(StorageKeys.TRANSACTIONS, {}) or {}
    migrated = {}
    for key, tx in transactions.items():
        migrated[key] = {
            **tx,
            "id": tx.get("id") or key,
            "createdAt": tx.get("createdAt") or datetime.utcnow().isoformat(),
            "amount": _as_decimal_string(tx.get("amount")),
        }
    await storage.set(StorageKeys.TRANSACTIONS, migrated)


async def migrate_to_v2(storage: KeyValueStorage) -> None:
    """Backfill invoice months, transaction kinds and investment defaults."""
    cards = await storage.get(StorageKeys.CREDIT_CARDS, []) or []
    closing_days = {card["id"]: int(card["closingDay"]) for card in cards if "closingDay" in card}

    transactions = await storage.get(StorageKeys.TRANSACTIONS, {}) or {}
    for tx in transactions.values():
        if tx.get("isCardPayment") and not tx.get("invoiceMonth"):
            closing_day = closing_days.get(tx.get("cardId"))
            if closing_day is not None and tx.get("date"):
                tx["invoiceMonth"] = invoice_month_of(parse_date(tx["date"]), closing_day)
        if not tx.get("kind"):
            tx["kind"] = infer_kind(tx).value
    await storage.set(StorageKeys.TRANSACTIONS, transactions)

    investments = await storage.get(StorageKeys.INVESTMENTS, {}) or {}
    for investment in investments.values():
        investment.setdefault("yieldRateHistory", [])
        investment.setdefault("canCoverNegativeBalance", False)
        investment.setdefault("isActive", True)
    await storage.set(StorageKeys.INVESTMENTS, investments)


MIGRATIONS: list[tuple[int, Migration]] = [
    (1, migrate_to_v1),
    (2, migrate_to_v2),
]

CURRENT_VERSION = MIGRATIONS[-1][0]


class SchemaMigrator:
    """Applies pending migrations in order."""

    def __init__(
        self,
        storage: KeyValueStorage,
        audit_logger: Optional[AuditLogger] = None,
        migrations: Optional[list[tuple[int, Migration]]] = None,
    ):
        self._storage = storage
        self._audit = audit_logger
        self._migrations = migrations or MIGRATIONS

    async def current_version(self) -> int:
        raw = await self._storage.get(StorageKeys.SCHEMA_VERSION, 0)
        try:
            return int(raw)
        except (TypeError, ValueError):
            return 0

    async def run(self, correlation_id: Optional[UUID] = None) -> int:
        """
        Apply every migration newer than the stored version.

        Returns:
            The schema version after the run
        """
        version = await self.current_version()
        for target, migration in self._migrations:
            if version >= target:
                continue
            try:
                await migration(self._storage)
                await self._storage.set(StorageKeys.SCHEMA_VERSION, target)
            except Exception as e:
                logger.warning(
                    "migration_failed",
                    version=target,
                    error=str(e),
                    error_type=type(e).__name__,
                )
                if self._audit:
                    await self._audit.log(AuditEventBuilder.migration_failed(
                        version=target,
                        error_message=str(e),
                        correlation_id=correlation_id,
                    ))
                break

            version = target
            logger.info("migration_applied", version=target)
            if self._audit:
                await self._audit.log(AuditEventBuilder.migration_applied(
                    version=target,
                    correlation_id=correlation_id,
                ))
        return version
