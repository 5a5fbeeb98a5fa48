"""Local draft cache backed by a single JSON keyspace on disk."""

from __future__ import annotations

import copy
import json
import logging
import os
import tempfile
import threading
from pathlib import Path
from typing import TYPE_CHECKING, Any

from tourneydraft.core.constants import LOCAL_DRAFTS_KEY
from tourneydraft.errors import LocalStorageError

if TYPE_CHECKING:
    from .models import Draft

logger = logging.getLogger(__name__)


class JsonKeyValueStore:
    """Durable single-keyspace key-value store.

    The whole keyspace is one JSON object in one file. Writes land in a
    temporary file next to it and replace the original in one rename.
    """

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        self._lock = threading.Lock()

    def _load(self) -> dict[str, Any]:
        if not self.path.exists():
            return {}
        try:
            with open(self.path, encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            raise LocalStorageError(f"Could not read local store: {e}") from e
        if not isinstance(data, dict):
            raise LocalStorageError("Local store is corrupt.")
        return data

    def _dump(self, data: dict[str, Any]) -> None:
        try:
            payload = json.dumps(data, ensure_ascii=False)
        except (TypeError, ValueError) as e:
            raise LocalStorageError(f"Draft data is not serialisable: {e}") from e

        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                dir=self.path.parent, prefix=f".{self.path.name}.", suffix=".tmp"
            )
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    f.write(payload)
                    f.flush()
                    os.fsync(f.fileno())
                os.replace(tmp_name, self.path)
            except BaseException:
                if os.path.exists(tmp_name):
                    os.unlink(tmp_name)
                raise
        except OSError as e:
            raise LocalStorageError(f"Could not write local store: {e}") from e

    def read(self, key: str) -> Any:
        """Return the value stored under ``key`` or None."""
        with self._lock:
            return self._load().get(key)

    def write(self, key: str, value: Any) -> None:
        with self._lock:
            data = self._load()
            data[key] = value
            self._dump(data)

    def delete(self, key: str) -> None:
        with self._lock:
            data = self._load()
            if key in data:
                del data[key]
                self._dump(data)


class LocalDraftStore:
    """The draft collection, stored as one value under a fixed key."""

    def __init__(self, kv: JsonKeyValueStore, key: str = LOCAL_DRAFTS_KEY) -> None:
        self.kv = kv
        self.key = key

    def read(self) -> list[Draft]:
        """Return every cached draft; an absent key is an empty collection."""
        value = self.kv.read(self.key)
        if value is None:
            return []
        if not isinstance(value, list):
            raise LocalStorageError("Local draft collection is corrupt.")
        return copy.deepcopy([d for d in value if isinstance(d, dict)])

    def write(self, drafts: list[Draft]) -> None:
        """Replace the whole cached collection."""
        self.kv.write(self.key, copy.deepcopy(list(drafts)))
        logger.debug("Wrote %d drafts to local store", len(drafts))

    def clear(self) -> None:
        self.kv.delete(self.key)
