"""
Storage Services Package

Provides the abstract key-value interface and its implementations.
Data lives in JSON files by default; tests use the in-memory backend.
"""

from src.services.storage.interface import (
    AuditStorageInterface,
    CorruptDataError,
    DuplicateError,
    KeyValueStorage,
    NotFoundError,
    StorageError,
    StorageWriteError,
)
from src.services.storage.memory import InMemoryStorage
from src.services.storage.json_file import JsonFileStorage
from src.services.storage.repository import LedgerRepository, StorageKeys
from src.services.storage.audit_storage import KeyValueAuditStorage

__all__ = [
    # Interfaces
    "AuditStorageInterface",
    "KeyValueStorage",
    # Exceptions
    "CorruptDataError",
    "DuplicateError",
    "NotFoundError",
    "StorageError",
    "StorageWriteError",
    # Implementations
    "InMemoryStorage",
    "JsonFileStorage",
    "KeyValueAuditStorage",
    "LedgerRepository",
    "StorageKeys",
]
