"""Services package."""

from src.services.storage import (
    AuditStorageInterface,
    CorruptDataError,
    DuplicateError,
    InMemoryStorage,
    JsonFileStorage,
    KeyValueAuditStorage,
    KeyValueStorage,
    LedgerRepository,
    NotFoundError,
    StorageError,
    StorageKeys,
    StorageWriteError,
)

__all__ = [
    # Storage services
    "AuditStorageInterface",
    "CorruptDataError",
    "DuplicateError",
    "InMemoryStorage",
    "JsonFileStorage",
    "KeyValueAuditStorage",
    "KeyValueStorage",
    "LedgerRepository",
    "NotFoundError",
    "StorageError",
    "StorageKeys",
    "StorageWriteError",
]
