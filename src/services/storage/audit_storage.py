"""
Key-Value Audit Storage

Keeps the audit trail as a list under the `audit_log` key of the same
key-value store the ledger uses. The list is capped: once it exceeds the
configured maximum the oldest events are dropped.
"""

from typing import Optional
from uuid import UUID

import structlog
from pydantic import ValidationError

from src.config import get_settings
from src.models.audit import AuditEvent
from src.services.storage.interface import AuditStorageInterface, KeyValueStorage
from src.services.storage.repository import StorageKeys


logger = structlog.get_logger(__name__)


class KeyValueAuditStorage(AuditStorageInterface):
    """Append-only audit log on top of a KeyValueStorage."""

    def __init__(
        self,
        storage: KeyValueStorage,
        max_events: Optional[int] = None,
    ):
        self._storage = storage
        self._max_events = max_events or get_settings().app.audit_log_max_events

    async def _load(self) -> list[AuditEvent]:
        raw = await self._storage.get(StorageKeys.AUDIT_LOG, [])
        events = []
        for entry in raw if isinstance(raw, list) else []:
            try:
                events.append(AuditEvent.model_validate(entry))
            except ValidationError:
                # Unreadable entries are dropped rather than blocking the log
                logger.warning("audit_entry_invalid")
        return events

    async def append_event(self, event: AuditEvent) -> bool:
        raw = await self._storage.get(StorageKeys.AUDIT_LOG, [])
        if not isinstance(raw, list):
            raw = []
        raw.append(event.to_storage_dict())
        if len(raw) > self._max_events:
            raw = raw[-self._max_events:]
        await self._storage.set(StorageKeys.AUDIT_LOG, raw)
        return True

    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        events = await self._load()
        return [e for e in events if e.correlation_id == correlation_id]

    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: str,
    ) -> list[AuditEvent]:
        events = await self._load()
        return [
            e for e in events
            if e.entity_type == entity_type and e.entity_id == entity_id
        ]

    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        events = await self._load()
        events.sort(key=lambda e: e.timestamp, reverse=True)
        return events[:limit]
