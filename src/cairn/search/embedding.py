"""Embedding provider protocol and the per-scope embedding cache."""

from __future__ import annotations

import json
import logging
import math
from dataclasses import dataclass
from datetime import datetime, timezone
from hashlib import sha256
from pathlib import Path
from typing import Protocol, runtime_checkable

from cairn.errors import ValidationFailure
from cairn.store.records import preserve_corrupt, write_atomic

logger = logging.getLogger(__name__)

CACHE_FILENAME = "embeddings.json"
CACHE_VERSION = 1


@runtime_checkable
class EmbeddingProvider(Protocol):
    """Anything that can turn text into a vector."""

    @property
    def name(self) -> str: ...

    async def generate(self, text: str) -> list[float]:
        """Return an embedding for text. May raise."""
        ...


def content_hash(text: str) -> str:
    return sha256(text.encode("utf-8")).hexdigest()[:16]


def normalise(vector: list[float]) -> list[float]:
    """Scale to unit length. A zero vector is returned unchanged."""
    magnitude = math.sqrt(sum(v * v for v in vector))
    if magnitude == 0:
        return list(vector)
    return [v / magnitude for v in vector]


async def generate_embedding(text: str, provider: EmbeddingProvider) -> list[float]:
    if not text or not text.strip():
        raise ValidationFailure("Text to embed cannot be empty")
    return normalise([float(v) for v in await provider.generate(text)])


@dataclass
class CacheEntry:
    embedding: list[float]
    hash: str
    timestamp: str


class EmbeddingCache:
    """id → (vector, content hash, timestamp), persisted as embeddings.json.

    An entry is only trusted while its hash matches the record's current
    embedding text; anything else is a miss.
    """

    def __init__(self, path: Path) -> None:
        self.path = path
        self._entries: dict[str, CacheEntry] = {}
        self.dirty = False

    @classmethod
    def for_scope(cls, base: Path) -> EmbeddingCache:
        cache = cls(base / CACHE_FILENAME)
        cache.load()
        return cache

    def load(self) -> None:
        self._entries = {}
        self.dirty = False
        if not self.path.exists():
            return
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
            items = data.get("memories", {}).items()
        except (OSError, ValueError, TypeError, AttributeError) as e:
            logger.warning("Corrupt embedding cache %s, starting fresh: %s", self.path, e)
            preserve_corrupt(self.path)
            return
        for memory_id, item in items:
            try:
                self._entries[memory_id] = CacheEntry(
                    embedding=[float(v) for v in item["embedding"]],
                    hash=str(item["hash"]),
                    timestamp=item.get("timestamp", ""),
                )
            except (KeyError, ValueError, TypeError, AttributeError) as e:
                # Vectors are regenerated on demand.
                logger.warning("Dropping malformed cached embedding %s: %s", memory_id, e)
                self.dirty = True

    def save(self) -> None:
        data = {
            "version": CACHE_VERSION,
            "memories": {
                memory_id: {"embedding": e.embedding, "hash": e.hash, "timestamp": e.timestamp}
                for memory_id, e in self._entries.items()
            },
        }
        write_atomic(self.path, json.dumps(data) + "\n")
        self.dirty = False
        logger.debug("Saved embedding cache %s (%d entries)", self.path, len(self._entries))

    def save_if_dirty(self) -> None:
        if self.dirty:
            self.save()

    def __contains__(self, memory_id: object) -> bool:
        return memory_id in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def ids(self) -> list[str]:
        return list(self._entries)

    def get(self, memory_id: str, expected_hash: str | None = None) -> list[float] | None:
        """Cached vector, or None on a miss or a stale hash."""
        entry = self._entries.get(memory_id)
        if entry is None:
            return None
        if expected_hash is not None and entry.hash != expected_hash:
            return None
        return entry.embedding

    def put(self, memory_id: str, vector: list[float], hash_: str) -> None:
        self._entries[memory_id] = CacheEntry(
            embedding=list(vector),
            hash=hash_,
            timestamp=datetime.now(timezone.utc).isoformat(timespec="seconds"),
        )
        self.dirty = True

    def pop(self, memory_id: str) -> CacheEntry | None:
        entry = self._entries.pop(memory_id, None)
        if entry is not None:
            self.dirty = True
        return entry

    def adopt(self, memory_id: str, entry: CacheEntry) -> None:
        """Take over an entry popped from another scope's cache."""
        self._entries[memory_id] = entry
        self.dirty = True

    def rename(self, old_id: str, new_id: str) -> None:
        entry = self._entries.pop(old_id, None)
        if entry is not None:
            self._entries[new_id] = entry
            self.dirty = True

    def vectors(self) -> dict[str, list[float]]:
        return {memory_id: e.embedding for memory_id, e in self._entries.items()}

    async def embedding_for(
        self, memory_id: str, text: str, provider: EmbeddingProvider
    ) -> list[float]:
        """Cached vector for text, regenerated through provider when stale."""
        hash_ = content_hash(text)
        cached = self.get(memory_id, hash_)
        if cached is not None:
            logger.debug("Embedding cache hit: %s", memory_id)
            return cached
        logger.debug("Generating embedding: %s", memory_id)
        vector = await generate_embedding(text, provider)
        self.put(memory_id, vector, hash_)
        return vector
