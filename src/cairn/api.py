"""Request surface: plain data in, {status, data, error} envelopes out.

This is the only layer that turns failures into envelopes. Everything
below it raises.
"""

from __future__ import annotations

import inspect
import logging
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Literal

from cairn.config import CairnConfig, load_config
from cairn.errors import CairnError, NotFoundFailure
from cairn.injection.relevance import (
    ActionKind,
    InjectionSession,
    RelevanceEngine,
    TriggerContext,
    format_reminder,
    parse_action,
)
from cairn.quality.health import check_health, format_health_report
from cairn.scope.resolver import ScopeContext, ScopeResolver, scope_warnings
from cairn.search.embedding import EmbeddingProvider
from cairn.search.semantic import MultiScopeSearch, SemanticSearch
from cairn.store.store import MemoryStore
from cairn.store.validation import build_memory, parse_memory_type
from cairn.types import MemoryType, Scope

logger = logging.getLogger(__name__)


@dataclass
class Response:
    status: Literal["success", "error"]
    data: Any = None
    error: str | None = None

    @classmethod
    def ok(cls, data: Any = None) -> Response:
        return cls("success", data=data)

    @classmethod
    def fail(cls, error: str) -> Response:
        return cls("error", error=error)

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"status": self.status}
        if self.data is not None:
            result["data"] = self.data
        if self.error is not None:
            result["error"] = self.error
        return result


def _memory_type(value: MemoryType | str | None) -> MemoryType | None:
    return parse_memory_type(value) if value is not None else None


class MemoryService:
    """Entry point for the orchestration layer (CLI, hooks)."""

    def __init__(
        self,
        config: CairnConfig | None = None,
        cwd: Path | None = None,
        provider: EmbeddingProvider | None = None,
    ) -> None:
        self.config = config or load_config()
        self.resolver = ScopeResolver(ScopeContext.from_config(self.config, cwd))
        self.provider = provider
        self.session = InjectionSession()

    # ── Plumbing ───────────────────────────────────────────────

    async def _wrap(self, operation: str, fn: Callable[[], Any]) -> Response:
        try:
            result = fn()
            if inspect.isawaitable(result):
                result = await result
        except CairnError as e:
            logger.info("%s rejected: %s", operation, e)
            return Response.fail(str(e))
        except Exception as e:
            logger.exception("%s failed", operation)
            return Response.fail(f"{operation} failed: {e}")
        return Response.ok(result)

    def store_for(self, scope: Scope | str | None = None) -> MemoryStore:
        resolution = self.resolver.resolve(scope)
        return MemoryStore(
            resolution.path,
            resolution.scope,
            auto_link_threshold=self.config.search.auto_link_threshold,
            auto_link_limit=self.config.search.auto_link_limit,
        )

    def stores(self, scope: Scope | str | None = None) -> list[MemoryStore]:
        """The requested tier, or every accessible tier in precedence order."""
        if scope is not None:
            return [self.store_for(scope)]
        return [self.store_for(s) for s in self.resolver.get_all_accessible_scopes()]

    def _locate(self, memory_id: str, scope: Scope | str | None = None) -> MemoryStore:
        for store in self.stores(scope):
            if store.exists(memory_id):
                return store
        raise NotFoundFailure(memory_id)

    def _searcher(self, scope: Scope | str | None = None) -> MultiScopeSearch:
        return MultiScopeSearch(
            [SemanticSearch(s.base_path, self.provider) for s in self.stores(scope)],
            self.provider,
        )

    # ── Records ────────────────────────────────────────────────

    async def write(self, request: dict[str, Any], auto_link: bool = False) -> Response:
        async def run():
            memory = build_memory(request)
            store = self.store_for(memory.scope)
            result = await store.write(memory, auto_link=auto_link, provider=self.provider)
            data = result.to_dict()
            data["scope"] = store.scope.value
            data["warnings"] = scope_warnings(store.scope, memory.type, memory.content) + data["warnings"]
            return data

        return await self._wrap("write", run)

    async def read(self, memory_id: str, scope: Scope | str | None = None) -> Response:
        def run():
            return self._locate(memory_id, scope).read(memory_id).to_dict()

        return await self._wrap("read", run)

    async def list(
        self,
        type: MemoryType | str | None = None,
        tags: list[str] | None = None,
        scope: Scope | str | None = None,
        sort_by: Literal["created", "updated", "title"] = "created",
        descending: bool = True,
        limit: int | None = None,
    ) -> Response:
        def run():
            memory_type = _memory_type(type)
            entries = []
            for store in self.stores(scope):
                entries.extend(store.list(type=memory_type, tags=tags, sort_by=sort_by, descending=descending))
            total = len(entries)
            if limit:
                entries = entries[:limit]
            return {"memories": [e.to_dict() for e in entries], "count": total}

        return await self._wrap("list", run)

    async def delete(self, memory_id: str, scope: Scope | str | None = None) -> Response:
        def run():
            store = self._locate(memory_id, scope)
            edges_removed = store.delete(memory_id)
            return {"id": memory_id, "scope": store.scope.value, "edges_removed": edges_removed}

        return await self._wrap("delete", run)

    async def move(self, memory_id: str, to_scope: Scope | str, scope: Scope | str | None = None) -> Response:
        """Relocate a record to another tier."""

        def run():
            source = self._locate(memory_id, scope)
            return source.move_to(memory_id, self.store_for(to_scope)).to_dict()

        return await self._wrap("move", run)

    async def tag(self, memory_id: str, tags: list[str], scope: Scope | str | None = None) -> Response:
        return await self._wrap(
            "tag", lambda: {"id": memory_id, "tags": self._locate(memory_id, scope).tag(memory_id, tags)}
        )

    async def untag(self, memory_id: str, tags: list[str], scope: Scope | str | None = None) -> Response:
        return await self._wrap(
            "untag", lambda: {"id": memory_id, "tags": self._locate(memory_id, scope).untag(memory_id, tags)}
        )

    async def promote(
        self, memory_id: str, new_type: MemoryType | str, scope: Scope | str | None = None
    ) -> Response:
        def run():
            new_id = self._locate(memory_id, scope).promote(memory_id, new_type)
            return {"old_id": memory_id, "new_id": new_id}

        return await self._wrap("promote", run)

    # ── Graph ──────────────────────────────────────────────────

    async def link(
        self,
        source: str,
        target: str,
        relation: str = "relates-to",
        scope: Scope | str | None = None,
    ) -> Response:
        def run():
            result = self._locate(source, scope).link(source, target, relation)
            return {
                "source": result.source,
                "target": result.target,
                "relation": result.label,
                "created": result.created,
                "message": result.message,
            }

        return await self._wrap("link", run)

    async def unlink(
        self,
        source: str,
        target: str,
        relation: str | None = None,
        scope: Scope | str | None = None,
    ) -> Response:
        def run():
            removed = self._locate(source, scope).unlink(source, target, relation)
            return {"source": source, "target": target, "removed": removed}

        return await self._wrap("unlink", run)

    async def traverse(
        self, memory_id: str, max_depth: int | None = None, scope: Scope | str | None = None
    ) -> Response:
        def run():
            store = self._locate(memory_id, scope)
            depths = store.traverse(memory_id, max_depth)
            return {
                "start": memory_id,
                "scope": store.scope.value,
                "visited": [{"id": node_id, "depth": depth} for node_id, depth in depths.items()],
            }

        return await self._wrap("traverse", run)

    async def path(self, source: str, target: str, scope: Scope | str | None = None) -> Response:
        def run():
            found = self._locate(source, scope).shortest_path(source, target)
            return {"source": source, "target": target, "path": found, "hops": len(found) - 1 if found else None}

        return await self._wrap("path", run)

    async def impact(self, memory_id: str, scope: Scope | str | None = None) -> Response:
        def run():
            return self._locate(memory_id, scope).impact(memory_id).to_dict()

        return await self._wrap("impact", run)

    async def components(self, scope: Scope | str | None = None) -> Response:
        def run():
            groups = self.store_for(scope).components()
            return {"count": len(groups), "components": groups}

        return await self._wrap("components", run)

    # ── Search ─────────────────────────────────────────────────

    async def search(
        self,
        query: str,
        type: MemoryType | str | None = None,
        scope: Scope | str | None = None,
        limit: int = 20,
    ) -> Response:
        def run():
            memory_type = _memory_type(type)
            hits = []
            for store in self.stores(scope):
                hits.extend(store.search(query, type=memory_type, limit=limit))
            hits.sort(key=lambda h: h.score, reverse=True)
            return {"results": [h.to_dict() for h in hits[:limit]]}

        return await self._wrap("search", run)

    async def semantic_search(
        self,
        query: str,
        type: MemoryType | str | None = None,
        scope: Scope | str | None = None,
        threshold: float | None = None,
        limit: int | None = None,
    ) -> Response:
        async def run():
            hits = await self._searcher(scope).search(
                query,
                type=_memory_type(type),
                threshold=self.config.search.threshold if threshold is None else threshold,
                limit=limit or self.config.search.limit,
            )
            return {"results": [h.to_dict() for h in hits]}

        return await self._wrap("semantic_search", run)

    async def find_similar(
        self,
        memory_id: str,
        threshold: float | None = None,
        limit: int | None = None,
        scope: Scope | str | None = None,
    ) -> Response:
        async def run():
            store = self._locate(memory_id, scope)
            hits = await SemanticSearch(store.base_path, self.provider).find_similar_to_memory(
                memory_id,
                threshold=self.config.search.auto_link_threshold if threshold is None else threshold,
                limit=limit or self.config.search.auto_link_limit,
            )
            return {"results": [h.to_dict() for h in hits]}

        return await self._wrap("find_similar", run)

    async def find_duplicates(self, threshold: float | None = None, scope: Scope | str | None = None) -> Response:
        def run():
            pairs = []
            for store in self.stores(scope):
                found = store.find_duplicates() if threshold is None else store.find_duplicates(threshold)
                pairs.extend({"id1": a, "id2": b, "similarity": s} for a, b, s in found)
            return {"duplicates": pairs}

        return await self._wrap("find_duplicates", run)

    async def relevant(self, content: str, action: ActionKind | str = ActionKind.READ) -> Response:
        """Records worth surfacing for content, never repeating within this service's session."""

        async def run():
            engine = RelevanceEngine(self._searcher(), self.config.injection)
            hits = await engine.select(TriggerContext(content, parse_action(action)), self.session)
            return {"memories": [h.to_dict() for h in hits], "reminder": format_reminder(hits)}

        return await self._wrap("relevant", run)

    def reset_session(self) -> None:
        self.session.clear()

    # ── Maintenance ────────────────────────────────────────────

    async def rebuild_index(self, scope: Scope | str | None = None) -> Response:
        def run():
            store = self.store_for(scope)
            result = store.rebuild_index()
            return {
                "scope": store.scope.value,
                "total": result.total,
                "orphans_removed": result.orphans_removed,
                "discovered": result.discovered,
            }

        return await self._wrap("rebuild_index", run)

    async def check_health(self, scope: Scope | str | None = None) -> Response:
        def run():
            store = self.store_for(scope)
            report = check_health(store.base_path)
            data = report.to_dict()
            data["scope"] = store.scope.value
            data["summary"] = format_health_report(report)
            return data

        return await self._wrap("check_health", run)

    async def sync(self, scope: Scope | str | None = None, dry_run: bool = False) -> Response:
        def run():
            store = self.store_for(scope)
            report = store.sync(dry_run=dry_run)
            return {
                "scope": store.scope.value,
                "dry_run": report.dry_run,
                "added_to_graph": report.added_to_graph,
                "added_to_index": report.added_to_index,
                "removed_ghost_nodes": report.removed_ghost_nodes,
                "removed_dangling_edges": report.removed_dangling_edges,
                "removed_from_index": report.removed_from_index,
                "removed_orphan_embeddings": report.removed_orphan_embeddings,
            }

        return await self._wrap("sync", run)

