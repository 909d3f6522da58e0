"""
In-Memory Storage

Key-value storage held in a dict. Values are kept JSON-encoded so that
callers get the same isolation (and the same serialization failures) they
would get from a persistent backend: mutating a value after `get` never
changes what is stored.

Used by the test suite and for throwaway sessions.
"""

import json
from typing import Any, Optional

import structlog

from src.services.storage.interface import (
    CorruptDataError,
    KeyValueStorage,
    StorageWriteError,
)


logger = structlog.get_logger(__name__)


class InMemoryStorage(KeyValueStorage):
    """Dict-backed implementation of the key-value contract."""

    def __init__(self, initial: Optional[dict[str, Any]] = None):
        self._data: dict[str, str] = {}
        for key, value in (initial or {}).items():
            self._data[key] = json.dumps(value)

    def _decode(self, key: str) -> Any:
        try:
            return json.loads(self._data[key])
        except json.JSONDecodeError as e:
            raise CorruptDataError(f"Stored value for '{key}' is not valid JSON: {e}")

    async def get(self, key: str, default: Any = None) -> Any:
        if key not in self._data:
            return default
        try:
            return self._decode(key)
        except CorruptDataError as e:
            logger.warning("storage_read_failed", key=key, error=str(e))
            return default

    async def set(self, key: str, value: Any) -> None:
        try:
            self._data[key] = json.dumps(value)
        except (TypeError, ValueError) as e:
            raise StorageWriteError(f"Failed to write '{key}': {e}")

    async def remove(self, key: str) -> None:
        self._data.pop(key, None)

    async def list_keys(self) -> list[str]:
        return list(self._data.keys())

    async def clear(self) -> None:
        self._data.clear()

    def put_raw(self, key: str, raw: str) -> None:
        """Store an undecoded string as-is (lets tests simulate corrupt data)."""
        self._data[key] = raw
