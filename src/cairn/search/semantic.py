"""Semantic search over one scope directory."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from cairn.errors import ValidationFailure, VectorSizeMismatch
from cairn.search.embedding import (
    EmbeddingCache,
    EmbeddingProvider,
    content_hash,
    generate_embedding,
)
from cairn.search.similarity import cosine_similarity
from cairn.store import records
from cairn.store.index import MemoryIndex
from cairn.types import IndexEntry, MemoryType, Scope

logger = logging.getLogger(__name__)

DEFAULT_THRESHOLD = 0.5
DEFAULT_LIMIT = 20
SIMILAR_THRESHOLD = 0.85
SIMILAR_LIMIT = 5


@dataclass
class SearchHit:
    id: str
    type: MemoryType
    title: str
    tags: list[str] = field(default_factory=list)
    scope: Scope | None = None
    score: float = 0.0

    @classmethod
    def from_entry(cls, entry: IndexEntry, score: float) -> SearchHit:
        return cls(entry.id, entry.type, entry.title, list(entry.tags), entry.scope, score)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type.value,
            "title": self.title,
            "tags": list(self.tags),
            "scope": self.scope.value if self.scope else None,
            "score": self.score,
        }


class SemanticSearch:
    """Ranks Index entries by cosine similarity against a query embedding.

    The embedding cache is passed in (or loaded from the scope directory)
    and saved once at the end of a call when anything was regenerated.
    """

    def __init__(
        self,
        base_path: Path,
        provider: EmbeddingProvider | None = None,
        cache: EmbeddingCache | None = None,
    ) -> None:
        self.base_path = Path(base_path)
        self.provider = provider
        self.cache = cache if cache is not None else EmbeddingCache.for_scope(self.base_path)

    async def search(
        self,
        query: str,
        type: MemoryType | None = None,
        scope: Scope | None = None,
        threshold: float = DEFAULT_THRESHOLD,
        limit: int = DEFAULT_LIMIT,
    ) -> list[SearchHit]:
        if not query or not query.strip():
            raise ValidationFailure("query is required and cannot be empty")
        if self.provider is None:
            raise ValidationFailure("Embedding provider is required")

        query_vector = await generate_embedding(query.strip(), self.provider)
        hits = await self.search_vector(query_vector, type=type, scope=scope, threshold=threshold, limit=limit)
        logger.debug("Semantic search %r: %d hits", query[:50], len(hits))
        return hits

    async def search_vector(
        self,
        query_vector: list[float],
        type: MemoryType | None = None,
        scope: Scope | None = None,
        threshold: float = DEFAULT_THRESHOLD,
        limit: int = DEFAULT_LIMIT,
    ) -> list[SearchHit]:
        """Rank against an already-embedded query."""
        try:
            hits = [
                hit
                async for hit in self._score(query_vector, type=type, scope=scope)
                if hit.score >= threshold
            ]
        finally:
            self.cache.save_if_dirty()
        hits.sort(key=lambda h: h.score, reverse=True)
        return hits[:limit]

    async def find_similar_to_memory(
        self,
        memory_id: str,
        threshold: float = SIMILAR_THRESHOLD,
        limit: int = SIMILAR_LIMIT,
    ) -> list[SearchHit]:
        """Records close to memory_id's own cached embedding, excluding itself.

        Returns [] when the target has no valid cached embedding.
        """
        target = self._target_vector(memory_id)
        if target is None:
            logger.debug("No cached embedding for %s, nothing to compare", memory_id)
            return []
        try:
            hits = [
                hit
                async for hit in self._score(target, exclude_id=memory_id)
                if hit.score >= threshold
            ]
        finally:
            self.cache.save_if_dirty()
        hits.sort(key=lambda h: h.score, reverse=True)
        return hits[:limit]

    def _target_vector(self, memory_id: str) -> list[float] | None:
        index = MemoryIndex.load(self.base_path)
        entry = index.get(memory_id)
        if entry is None:
            return None
        memory = records.try_load(self.base_path / entry.relative_path)
        if memory is None:
            return None
        return self.cache.get(memory_id, content_hash(memory.embedding_text))

    async def _score(
        self,
        query_vector: list[float],
        type: MemoryType | None = None,
        scope: Scope | None = None,
        exclude_id: str | None = None,
    ) -> AsyncIterator[SearchHit]:
        index = MemoryIndex.load(self.base_path)
        for entry in index:
            if entry.id == exclude_id:
                continue
            if type is not None and entry.type is not type:
                continue
            if scope is not None and entry.scope is not scope:
                continue
            vector = await self._vector_for(entry)
            if vector is None:
                continue
            try:
                score = cosine_similarity(query_vector, vector)
            except VectorSizeMismatch as e:
                logger.warning("Skipping %s in search: %s", entry.id, e)
                continue
            yield SearchHit.from_entry(entry, score)

    async def _vector_for(self, entry: IndexEntry) -> list[float] | None:
        memory = records.try_load(self.base_path / entry.relative_path)
        if memory is None:
            return None
        if self.provider is None:
            return self.cache.get(entry.id, content_hash(memory.embedding_text))
        return await self.cache.embedding_for(entry.id, memory.embedding_text, self.provider)


class MultiScopeSearch:
    """Searches several scope directories with a single query embedding.

    Results are merged by score; ties keep tier order.
    """

    def __init__(self, searchers: list[SemanticSearch], provider: EmbeddingProvider | None) -> None:
        self.searchers = searchers
        self.provider = provider

    async def search(
        self,
        query: str,
        type: MemoryType | None = None,
        scope: Scope | None = None,
        threshold: float = DEFAULT_THRESHOLD,
        limit: int = DEFAULT_LIMIT,
    ) -> list[SearchHit]:
        if not query or not query.strip():
            raise ValidationFailure("query is required and cannot be empty")
        if self.provider is None:
            raise ValidationFailure("Embedding provider is required")

        query_vector = await generate_embedding(query.strip(), self.provider)
        hits: list[SearchHit] = []
        for searcher in self.searchers:
            hits.extend(
                await searcher.search_vector(
                    query_vector, type=type, scope=scope, threshold=threshold, limit=limit
                )
            )
        hits.sort(key=lambda h: h.score, reverse=True)
        return hits[:limit]
