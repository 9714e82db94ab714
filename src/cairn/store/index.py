"""index.json: flat metadata mirror of every record in a scope directory."""

from __future__ import annotations

import json
import logging
from pathlib import Path

from cairn.store.records import preserve_corrupt, relative_path_for, write_atomic
from cairn.store.validation import now_iso
from cairn.types import IndexEntry, Memory, Scope

logger = logging.getLogger(__name__)

INDEX_FILENAME = "index.json"
INDEX_VERSION = "1.0.0"


class MemoryIndex:
    """Ordered id → IndexEntry mapping, fully rewritten on every save."""

    def __init__(self, entries: list[IndexEntry] | None = None) -> None:
        self._entries: dict[str, IndexEntry] = {e.id: e for e in entries or []}
        # Entries dropped on load because they could not be parsed.
        self.skipped: list[str] = []
        self.unreadable = False

    @classmethod
    def load(cls, base: Path) -> MemoryIndex:
        path = base / INDEX_FILENAME
        if not path.exists():
            return cls()
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
            items = data["memories"]
            if not isinstance(items, list):
                raise TypeError("memories must be a list")
        except (OSError, ValueError, KeyError, TypeError) as e:
            logger.warning("Corrupt index %s, treating as empty: %s", path, e)
            preserve_corrupt(path)
            index = cls()
            index.unreadable = True
            return index

        index = cls()
        for item in items:
            try:
                index.upsert(IndexEntry.from_dict(item))
            except (KeyError, ValueError, TypeError, AttributeError) as e:
                label = item.get("id", "?") if isinstance(item, dict) else "?"
                logger.warning("Skipping malformed index entry %s in %s: %s", label, path, e)
                index.skipped.append(str(label))
        return index

    def save(self, base: Path) -> None:
        data = {
            "version": INDEX_VERSION,
            "lastUpdated": now_iso(),
            "memories": [e.to_dict() for e in self._entries.values()],
        }
        write_atomic(base / INDEX_FILENAME, json.dumps(data, indent=2) + "\n")

    def __contains__(self, memory_id: object) -> bool:
        return memory_id in self._entries

    def __iter__(self):
        return iter(self._entries.values())

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, memory_id: str) -> IndexEntry | None:
        return self._entries.get(memory_id)

    def ids(self) -> list[str]:
        return list(self._entries)

    def upsert(self, entry: IndexEntry) -> None:
        """Replace in place when the id exists, otherwise append."""
        self._entries[entry.id] = entry

    def remove(self, memory_id: str) -> IndexEntry | None:
        return self._entries.pop(memory_id, None)


def entry_for(memory: Memory, scope: Scope) -> IndexEntry:
    return IndexEntry(
        id=memory.id,
        type=memory.type,
        title=memory.title,
        tags=list(memory.tags),
        created=memory.created or "",
        updated=memory.updated or "",
        scope=memory.scope or scope,
        relative_path=relative_path_for(memory.id, memory.type),
        severity=memory.severity,
    )
