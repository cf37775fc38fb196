"""
Persistence Delegates

Durable storage for patterns is an external collaborator. The store talks
to it through PersistenceDelegate and keeps its in-memory tiers as the
source of truth for the process lifetime.

Implementations:
- NullPersistence: no-op (in-memory-only mode, the default)
- InMemoryPersistence: dict-backed, useful for tests and embedding hosts
- JsonFilePersistence: one JSON file on disk (~/.guidebank/patterns.json)
"""

import asyncio
import json
import logging
import os
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, List, Optional

from .config import PATTERNS_PATH
from .schemas import StorageEntry

logger = logging.getLogger("guidebank.common.persistence")


class PersistenceDelegate(ABC):
    """Async storage contract keyed by pattern id"""

    async def initialize(self) -> None:
        """Connect/prepare the backend. Raising here means 'unavailable'."""

    @abstractmethod
    async def store(self, entry: StorageEntry) -> None:
        """Insert or replace an entry"""

    @abstractmethod
    async def query(self, namespace: str, limit: int) -> List[StorageEntry]:
        """Return up to `limit` entries of a namespace"""

    @abstractmethod
    async def update(self, key: str, partial: Dict[str, Any]) -> None:
        """Merge a partial update (its "metadata" dict is merged key-wise)"""

    @abstractmethod
    async def delete(self, key: str) -> None:
        """Remove an entry; unknown keys are ignored"""

    async def close(self) -> None:
        """Release backend resources"""


class NullPersistence(PersistenceDelegate):
    """Discards everything. Used when no backend is configured or reachable."""

    async def store(self, entry: StorageEntry) -> None:
        return None

    async def query(self, namespace: str, limit: int) -> List[StorageEntry]:
        return []

    async def update(self, key: str, partial: Dict[str, Any]) -> None:
        return None

    async def delete(self, key: str) -> None:
        return None


def _merge_partial(entry: StorageEntry, partial: Dict[str, Any]) -> StorageEntry:
    data = entry.model_dump()
    for field_name, value in partial.items():
        if field_name == "metadata" and isinstance(value, dict):
            data["metadata"] = {**data.get("metadata", {}), **value}
        elif field_name in data and field_name != "key":
            data[field_name] = value
    return StorageEntry.model_validate(data)


class InMemoryPersistence(PersistenceDelegate):
    """Dict-backed delegate; insertion order is preserved per key"""

    def __init__(self):
        self._entries: Dict[str, StorageEntry] = {}

    @property
    def entries(self) -> Dict[str, StorageEntry]:
        return self._entries

    async def store(self, entry: StorageEntry) -> None:
        self._entries[entry.key] = entry.model_copy(deep=True)

    async def query(self, namespace: str, limit: int) -> List[StorageEntry]:
        matching = [e for e in self._entries.values() if e.namespace == namespace]
        return [e.model_copy(deep=True) for e in matching[:max(limit, 0)]]

    async def update(self, key: str, partial: Dict[str, Any]) -> None:
        entry = self._entries.get(key)
        if entry is None:
            logger.debug("Update for unknown key %s ignored", key)
            return
        self._entries[key] = _merge_partial(entry, partial)

    async def delete(self, key: str) -> None:
        self._entries.pop(key, None)


class JsonFilePersistence(InMemoryPersistence):
    """
    Persists entries to a single JSON file.

    The file is read on initialize() and rewritten after every mutation
    (write to a temp file, then rename) in a worker thread. Permissions are
    set to 0o600. A failed write restores the affected entry and re-raises,
    so the in-memory view always matches the last successful write.
    """

    def __init__(self, path: Optional[Path] = None):
        """
        Initialize JSON file persistence.

        Args:
            path: Path to the patterns file (default: ~/.guidebank/patterns.json)
        """
        super().__init__()
        self._path = Path(path).expanduser() if path else PATTERNS_PATH

    @property
    def path(self) -> Path:
        return self._path

    async def initialize(self) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        if not self._path.exists():
            self._entries = {}
            return

        # Corrupt files surface as errors so the caller can degrade
        with open(self._path) as f:
            data = json.load(f)

        self._entries = {}
        for item in data.get("entries", []):
            entry = StorageEntry.model_validate(item)
            self._entries[entry.key] = entry
        logger.info("Loaded %d pattern entries from %s", len(self._entries), self._path)

    async def store(self, entry: StorageEntry) -> None:
        previous = self._entries.get(entry.key)
        await super().store(entry)
        await self._save_or_restore(entry.key, previous)

    async def update(self, key: str, partial: Dict[str, Any]) -> None:
        previous = self._entries.get(key)
        await super().update(key, partial)
        await self._save_or_restore(key, previous)

    async def delete(self, key: str) -> None:
        previous = self._entries.get(key)
        if previous is not None:
            await super().delete(key)
            await self._save_or_restore(key, previous)

    async def _save_or_restore(self, key: str, previous: Optional[StorageEntry]) -> None:
        """Write the file; on failure put the entry for key back as it was, then re-raise"""
        try:
            data = self._snapshot()
            await asyncio.to_thread(self._write, data)
        except Exception:
            if previous is None:
                self._entries.pop(key, None)
            else:
                self._entries[key] = previous
            raise

    def _snapshot(self) -> Dict[str, Any]:
        # Serialized on the loop so the worker thread never sees a mutating dict
        return {"entries": [e.model_dump(mode="json") for e in self._entries.values()]}

    def _write(self, data: Dict[str, Any]) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self._path.with_suffix(self._path.suffix + ".tmp")
        with open(tmp_path, "w") as f:
            json.dump(data, f, indent=2)
        tmp_path.chmod(0o600)
        os.replace(tmp_path, self._path)
