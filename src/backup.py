"""
Backup Export and Import

Export writes every persisted collection into one versioned JSON document.
Import validates the whole document first and then replaces each
collection it carries, wholesale. There is no merging: a collection absent
from the file is left untouched, a collection present in it overwrites
what is stored.
"""

from datetime import datetime
from typing import Optional
from uuid import UUID

import structlog
from pydantic import ValidationError

from src.audit import AuditLogger
from src.models.audit import AuditEventBuilder
from src.models.backup import BACKUP_VERSION, BackupFile
from src.services.storage import LedgerRepository


logger = structlog.get_logger(__name__)


class BackupFormatError(Exception):
    """The backup document is not valid JSON or does not match the format."""
    pass


def backup_counts(backup: BackupFile) -> dict[str, int]:
    return {
        "transactions": len(backup.transactions or []),
        "credit_cards": len(backup.credit_cards or []),
        "investments": len(backup.investments or []),
        "yield_history": len(backup.yield_history or []),
    }


class BackupService:
    """Exports and imports the whole ledger."""

    def __init__(
        self,
        repository: LedgerRepository,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._repo = repository
        self._audit = audit_logger

    async def build_backup(self) -> BackupFile:
        """Snapshot of every persisted collection."""
        transactions = await self._repo.get_transactions()
        investments = await self._repo.get_investments()
        return BackupFile(
            version=BACKUP_VERSION,
            exported_at=datetime.utcnow(),
            transactions=list(transactions.values()),
            credit_cards=await self._repo.get_cards(),
            settings=await self._repo.get_preferences(),
            investments=list(investments.values()),
            yield_history=await self._repo.get_yield_history(),
            default_yield_rate=await self._repo.get_default_yield_rate(),
            original_card_limits=await self._repo.get_original_limits(),
        )

    async def export_all_data(self, correlation_id: Optional[UUID] = None) -> str:
        """Serialize the ledger to a JSON string."""
        backup = await self.build_backup()
        payload = backup.model_dump_json(by_alias=True, exclude_none=True, indent=2)

        counts = backup_counts(backup)
        logger.info("backup_exported", **counts)
        if self._audit:
            await self._audit.log(AuditEventBuilder.backup_exported(
                counts=counts,
                correlation_id=correlation_id,
            ))
        return payload

    async def import_all_data(
        self,
        payload: str,
        correlation_id: Optional[UUID] = None,
    ) -> BackupFile:
        """
        Replace stored collections with the ones in a backup.

        Raises:
            BackupFormatError: If the document is invalid; nothing is written
        """
        try:
            backup = BackupFile.model_validate_json(payload)
        except ValidationError as e:
            logger.warning("backup_rejected", errors=e.error_count())
            raise BackupFormatError(f"Invalid backup file: {e.error_count()} problem(s)") from e
        if backup.version > BACKUP_VERSION:
            raise BackupFormatError(f"Backup version {backup.version} is newer than supported ({BACKUP_VERSION})")

        if backup.transactions is not None:
            await self._repo.save_transactions({tx.id: tx for tx in backup.transactions})
        if backup.credit_cards is not None:
            await self._repo.save_cards(backup.credit_cards)
        if backup.settings is not None:
            await self._repo.save_preferences(backup.settings)
        if backup.investments is not None:
            await self._repo.save_investments({inv.id: inv for inv in backup.investments})
        if backup.yield_history is not None:
            await self._repo.save_yield_history(backup.yield_history)
        if backup.default_yield_rate is not None:
            await self._repo.set_default_yield_rate(backup.default_yield_rate)
        if backup.original_card_limits is not None:
            await self._repo.save_original_limits(backup.original_card_limits)

        counts = backup_counts(backup)
        logger.info("backup_imported", version=backup.version, **counts)
        if self._audit:
            await self._audit.log(AuditEventBuilder.backup_imported(
                counts=counts,
                correlation_id=correlation_id,
            ))
        return backup
