"""
Abstract Storage Interface

DESIGN DECISION: We define an abstract interface for storage operations.
This allows us to:
1. Keep data in plain JSON files on a single device
2. Use in-memory storage for testing
3. Swap in a real database later without touching the engine

The interface is intentionally tiny: a key-value store whose values are
JSON documents. The engine reads a whole collection, modifies it and
writes it back. There is no per-record API and no locking.
"""

from abc import ABC, abstractmethod
from typing import Any

from src.models.audit import AuditEvent


class KeyValueStorage(ABC):
    """
    Abstract async key-value store.

    Values are JSON-compatible Python objects (dicts, lists, strings,
    numbers, booleans, None).
    """

    @abstractmethod
    async def get(self, key: str, default: Any = None) -> Any:
        """
        Read the value stored under a key.

        Args:
            key: Logical key (e.g. 'transactions')
            default: Returned when the key is missing or unreadable

        Returns:
            The stored value, or `default`
        """
        pass

    @abstractmethod
    async def set(self, key: str, value: Any) -> None:
        """
        Replace the value stored under a key.

        Raises:
            StorageWriteError: If the value could not be written
        """
        pass

    @abstractmethod
    async def remove(self, key: str) -> None:
        """Delete a key. Removing a missing key is not an error."""
        pass

    @abstractmethod
    async def list_keys(self) -> list[str]:
        """List every stored key."""
        pass

    @abstractmethod
    async def clear(self) -> None:
        """Delete every stored key."""
        pass


class AuditStorageInterface(ABC):
    """
    Abstract interface for audit log storage.

    Audit logs are append-only - we never delete or modify them.
    """

    @abstractmethod
    async def append_event(self, event: AuditEvent) -> bool:
        """
        Append an audit event to the log.

        Args:
            event: The audit event to log

        Returns:
            True if logged successfully
        """
        pass

    @abstractmethod
    async def get_events_by_correlation_id(
        self,
        correlation_id,
    ) -> list[AuditEvent]:
        """
        Get all events for a correlation ID (e.g., one user action and its side effects).

        Returns:
            List of related events in chronological order
        """
        pass

    @abstractmethod
    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: str,
    ) -> list[AuditEvent]:
        """
        Get all events for a specific entity.

        Args:
            entity_type: Type of entity (e.g., 'transaction', 'card')
            entity_id: The entity's ID

        Returns:
            List of events in chronological order
        """
        pass

    @abstractmethod
    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        """
        Get the most recent audit events.

        Returns:
            List of recent events (newest first)
        """
        pass


class StorageError(Exception):
    """Base exception for storage operations."""
    pass


class NotFoundError(StorageError):
    """Entity not found in storage."""
    pass


class DuplicateError(StorageError):
    """Attempted to insert a duplicate entity."""
    pass


class StorageWriteError(StorageError):
    """A value could not be written (disk full, not serializable, ...)."""
    pass


class CorruptDataError(StorageError):
    """A stored value exists but cannot be decoded."""
    pass
