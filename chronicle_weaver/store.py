"""JSON file key-value store.

All durable state (API keys, save slots, preferences) lives in one flat
JSON object under the data directory. Values are strings, the way a
browser's local storage holds them; callers serialize their own payloads.

Directory layout:

    {base}/
      local-store.json     ← {"<key>": "<string value>", ...}

The store has a finite byte capacity measured on the serialized file.
A write that would exceed it raises StorageCapacityError and leaves the
file untouched. Every successful write hits disk immediately; there is
no locking, the last writer wins.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path

from chronicle_weaver.errors import StorageCapacityError

logger = logging.getLogger(__name__)

DEFAULT_CAPACITY = 5_000_000  # bytes
STORE_FILENAME = "local-store.json"


class LocalStore:
    def __init__(self, base_path: Path, capacity: int = DEFAULT_CAPACITY) -> None:
        self._base = base_path
        self._base.mkdir(parents=True, exist_ok=True)
        self._path = base_path / STORE_FILENAME
        self.capacity = capacity

    @property
    def path(self) -> Path:
        return self._path

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _read_all(self) -> dict[str, str]:
        if not self._path.is_file():
            return {}
        try:
            data = json.loads(self._path.read_text())
        except json.JSONDecodeError:
            logger.warning("local store at %s is corrupt; starting empty", self._path)
            return {}
        return data if isinstance(data, dict) else {}

    def _write_all(self, data: dict[str, str]) -> None:
        encoded = json.dumps(data)
        size = len(encoded.encode("utf-8"))
        if size > self.capacity:
            raise StorageCapacityError(size, self.capacity)
        self._path.write_text(encoded)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def get_item(self, key: str) -> str | None:
        return self._read_all().get(key)

    def set_item(self, key: str, value: str) -> None:
        data = self._read_all()
        data[key] = value
        self._write_all(data)

    def remove_item(self, key: str) -> None:
        data = self._read_all()
        if data.pop(key, None) is not None:
            self._write_all(data)

    def keys(self) -> list[str]:
        return list(self._read_all())

    def size(self) -> int:
        """Bytes currently used by the serialized store."""
        return len(json.dumps(self._read_all()).encode("utf-8"))
