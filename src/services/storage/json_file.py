"""
JSON File Storage Implementation

DESIGN DECISION: One JSON file per key inside a data directory.
1. Each collection is a human-readable file the user can inspect or back up
2. No database setup required
3. A write replaces a single file atomically (write to a temp file, then
   rename), so a crash never leaves a half-written collection

TRADEOFFS:
- Whole-collection rewrites on every change (fine for personal volumes)
- No locking: a single active writer is assumed
"""

import json
import os
import tempfile
from pathlib import Path
from typing import Any, Optional

import structlog

from src.config import get_settings
from src.services.storage.interface import (
    CorruptDataError,
    KeyValueStorage,
    StorageWriteError,
)


logger = structlog.get_logger(__name__)


class JsonFileStorage(KeyValueStorage):
    """
    File-backed implementation of the key-value contract.

    Keys map to `<data_dir>/<key_prefix><key>.json`.
    """

    def __init__(
        self,
        data_dir: Optional[Path] = None,
        key_prefix: Optional[str] = None,
    ):
        settings = get_settings().storage
        self._data_dir = Path(data_dir if data_dir is not None else settings.data_dir)
        self._prefix = settings.key_prefix if key_prefix is None else key_prefix

    @property
    def data_dir(self) -> Path:
        return self._data_dir

    def _path_for(self, key: str) -> Path:
        return self._data_dir / f"{self._prefix}{key}.json"

    def _read(self, path: Path) -> Any:
        try:
            with path.open("r", encoding="utf-8") as f:
                return json.load(f)
        except json.JSONDecodeError as e:
            raise CorruptDataError(f"{path.name} is not valid JSON: {e}")

    async def get(self, key: str, default: Any = None) -> Any:
        path = self._path_for(key)
        if not path.exists():
            return default
        try:
            return self._read(path)
        except (CorruptDataError, OSError) as e:
            logger.warning("storage_read_failed", key=key, path=str(path), error=str(e))
            return default

    async def set(self, key: str, value: Any) -> None:
        path = self._path_for(key)
        tmp_name = None
        try:
            payload = json.dumps(value, ensure_ascii=False, indent=2)
            self._data_dir.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                dir=self._data_dir, prefix=f".{path.stem}.", suffix=".tmp"
            )
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(payload)
            os.replace(tmp_name, path)
        except (TypeError, ValueError, OSError) as e:
            if tmp_name and os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise StorageWriteError(f"Failed to write '{key}': {e}")

    async def remove(self, key: str) -> None:
        try:
            self._path_for(key).unlink()
        except FileNotFoundError:
            pass
        except OSError as e:
            raise StorageWriteError(f"Failed to remove '{key}': {e}")

    async def list_keys(self) -> list[str]:
        if not self._data_dir.exists():
            return []
        keys = []
        for path in sorted(self._data_dir.glob(f"{self._prefix}*.json")):
            keys.append(path.stem[len(self._prefix):])
        return keys

    async def clear(self) -> None:
        for key in await self.list_keys():
            await self.remove(key)
