"""MemoryStore: keeps record files, index.json and graph.json in step.

Record files are the source of truth. Every mutation validates first, then
writes the file, then the Index and the Graph. State files are reloaded per
call; a single writer per scope directory is assumed.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Literal

from cairn.errors import FieldError, NotFoundFailure, ValidationFailure
from cairn.search.embedding import EmbeddingCache, EmbeddingProvider
from cairn.search.semantic import SemanticSearch
from cairn.search.similarity import DUPLICATE_THRESHOLD, find_potential_duplicates
from cairn.store import records
from cairn.store.graph import Impact, MemoryGraph
from cairn.store.ids import generate_id, resolve_collision, with_type
from cairn.store.index import MemoryIndex, entry_for
from cairn.store.validation import now_iso, parse_memory_type, validate_memory
from cairn.types import GraphEdge, IndexEntry, Memory, MemoryType, Relation, Scope

logger = logging.getLogger(__name__)

AUTO_LINK_THRESHOLD = 0.85
AUTO_LINK_FLOOR = 0.8
AUTO_LINK_LIMIT = 5

SortKey = Literal["created", "updated", "title"]


@dataclass
class WriteResult:
    id: str
    path: Path
    created: bool
    auto_linked: int = 0
    similar_titles: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "path": str(self.path),
            "created": self.created,
            "auto_linked": self.auto_linked,
            "similar_titles": list(self.similar_titles),
            "warnings": list(self.warnings),
        }


@dataclass
class LinkResult:
    source: str
    target: str
    label: str
    created: bool

    @property
    def message(self) -> str:
        if self.created:
            return f"Linked {self.source} -[{self.label}]-> {self.target}"
        return f"Link already exists: {self.source} -[{self.label}]-> {self.target}"


@dataclass
class RebuildResult:
    total: int
    orphans_removed: int
    discovered: int


@dataclass
class KeywordHit:
    id: str
    type: MemoryType
    title: str
    tags: list[str]
    scope: Scope
    score: float
    snippet: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type.value,
            "title": self.title,
            "tags": list(self.tags),
            "scope": self.scope.value,
            "score": self.score,
            "snippet": self.snippet,
        }


@dataclass
class SyncReport:
    dry_run: bool
    added_to_graph: list[str] = field(default_factory=list)
    added_to_index: list[str] = field(default_factory=list)
    removed_ghost_nodes: list[str] = field(default_factory=list)
    removed_dangling_edges: int = 0
    removed_from_index: list[str] = field(default_factory=list)
    removed_orphan_embeddings: list[str] = field(default_factory=list)

    @property
    def changed(self) -> bool:
        return bool(
            self.added_to_graph
            or self.added_to_index
            or self.removed_ghost_nodes
            or self.removed_dangling_edges
            or self.removed_from_index
            or self.removed_orphan_embeddings
        )


@dataclass
class MoveResult:
    id: str
    from_scope: Scope
    to_scope: Scope
    path: Path
    edges_removed: int
    embedding_moved: bool

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "from_scope": self.from_scope.value,
            "to_scope": self.to_scope.value,
            "path": str(self.path),
            "edges_removed": self.edges_removed,
            "embedding_moved": self.embedding_moved,
        }


def _parse_relation(relation: Relation | str) -> Relation:
    try:
        return Relation(relation)
    except ValueError:
        allowed = ", ".join(r.value for r in Relation)
        raise ValidationFailure(
            errors=[FieldError("relation", f"relation must be one of: {allowed} (got {relation!r})")]
        ) from None


def _clean_tags(tags: list[str]) -> list[str]:
    if not isinstance(tags, (list, tuple)) or not all(isinstance(t, str) and t.strip() for t in tags):
        raise ValidationFailure(errors=[FieldError("tags", "tags must be an array of non-empty strings")])
    return [t.strip() for t in tags]


def keyword_score(query: str, title: str, content: str, tags: list[str]) -> float:
    """Score a keyword match: title 0.5 (+0.3 exact), tag 0.3, body 0.2 (+ repeats)."""
    q = query.lower()
    score = 0.0
    if q in title.lower():
        score += 0.5
        if title.lower() == q:
            score += 0.3
    if any(q in tag.lower() for tag in tags):
        score += 0.3
    body = content.lower()
    if q in body:
        score += 0.2
        score += min(body.count(q) * 0.02, 0.1)
    return min(score, 1.0)


def extract_snippet(content: str, query: str, max_length: int = 150) -> str | None:
    match = content.lower().find(query.lower())
    if match == -1:
        return None
    start = max(0, match - 50)
    end = min(len(content), match + len(query) + 100)
    snippet = content[start:end].strip()
    if start > 0:
        snippet = "..." + snippet
    if end < len(content):
        snippet += "..."
    if len(snippet) > max_length:
        snippet = snippet[: max_length - 3] + "..."
    return snippet


class MemoryStore:
    """Read/write access to one scope directory."""

    def __init__(
        self,
        base_path: Path,
        scope: Scope,
        auto_link_threshold: float = AUTO_LINK_THRESHOLD,
        auto_link_limit: int = AUTO_LINK_LIMIT,
    ) -> None:
        self.base_path = Path(base_path)
        self.scope = scope
        self.auto_link_threshold = auto_link_threshold
        self.auto_link_limit = auto_link_limit

    def __repr__(self) -> str:
        return f"MemoryStore({self.scope.value}: {self.base_path})"

    # ── State files ────────────────────────────────────────────

    def load_index(self) -> MemoryIndex:
        return MemoryIndex.load(self.base_path)

    def load_graph(self) -> MemoryGraph:
        return MemoryGraph.load(self.base_path)

    def load_cache(self) -> EmbeddingCache:
        return EmbeddingCache.for_scope(self.base_path)

    def _require(self, index: MemoryIndex, memory_id: str) -> IndexEntry:
        entry = index.get(memory_id)
        if entry is None:
            raise NotFoundFailure(memory_id)
        return entry

    def _taken_ids(self, index: MemoryIndex) -> set[str]:
        return set(index.ids()) | {p.stem for p in records.iter_record_files(self.base_path)}

    # ── Write ──────────────────────────────────────────────────

    async def write(
        self,
        memory: Memory,
        auto_link: bool = False,
        provider: EmbeddingProvider | None = None,
    ) -> WriteResult:
        """Insert or update a record.

        An existing id keeps its ``created`` timestamp. ``links`` naming
        records already in the Index become relates-to edges. With auto_link
        and a provider, records at or above the auto-link threshold are
        linked from the new record; a failure there is reported as a
        warning and does not undo the write.
        """
        validate_memory(memory)
        index = self.load_index()
        graph = self.load_graph()

        if memory.id is None:
            memory.id = resolve_collision(generate_id(memory.type, memory.title), self._taken_ids(index))

        existing = index.get(memory.id)
        now = now_iso()
        memory.scope = self.scope
        memory.content = memory.content.strip()
        memory.created = existing.created if existing and existing.created else (memory.created or now)
        memory.updated = now

        path = records.save(self.base_path, memory)
        # A rebuilt Index may point at a record filed under the wrong subdirectory.
        if existing and existing.relative_path != records.relative_path_for(memory.id, memory.type):
            (self.base_path / existing.relative_path).unlink(missing_ok=True)

        index.upsert(entry_for(memory, self.scope))
        graph.upsert_node(memory.id, memory.title)
        for target in memory.links:
            if target != memory.id and target in index:
                graph.add_edge(GraphEdge(memory.id, target, Relation.RELATES_TO.value))
        index.save(self.base_path)
        graph.save(self.base_path)

        result = WriteResult(id=memory.id, path=path, created=existing is None)
        logger.info("%s memory %s in %s", "Created" if result.created else "Updated", memory.id, self)

        if auto_link and provider is not None:
            await self._auto_link(memory, provider, result)
        return result

    async def _auto_link(self, memory: Memory, provider: EmbeddingProvider, result: WriteResult) -> None:
        cache = self.load_cache()
        threshold = max(self.auto_link_threshold, AUTO_LINK_FLOOR)
        try:
            await cache.embedding_for(memory.id, memory.embedding_text, provider)
            cache.save_if_dirty()
            searcher = SemanticSearch(self.base_path, provider, cache)
            hits = await searcher.find_similar_to_memory(
                memory.id, threshold=threshold, limit=self.auto_link_limit
            )
        except Exception as e:
            logger.warning("Auto-link failed for %s: %s", memory.id, e)
            result.warnings.append(f"Auto-link failed: {e}")
            return

        graph = self.load_graph()
        for hit in hits:
            if graph.add_edge(GraphEdge(memory.id, hit.id, Relation.RELATES_TO.value)):
                result.auto_linked += 1
        if result.auto_linked:
            graph.save(self.base_path)
        result.similar_titles = [hit.title for hit in hits]
        if hits:
            result.warnings.append(
                "Highly similar memories exist (possible duplicates): " + ", ".join(result.similar_titles)
            )
        logger.info("Auto-linked %s to %d memories", memory.id, result.auto_linked)

    # ── Read / list / delete ───────────────────────────────────

    def read(self, memory_id: str) -> Memory:
        entry = self._require(self.load_index(), memory_id)
        path = self.base_path / entry.relative_path
        try:
            return records.load(path)
        except FileNotFoundError:
            raise NotFoundFailure(memory_id, what="Memory file") from None

    def exists(self, memory_id: str) -> bool:
        return memory_id in self.load_index()

    def list(
        self,
        type: MemoryType | None = None,
        tags: list[str] | None = None,
        sort_by: SortKey = "created",
        descending: bool = True,
        limit: int | None = None,
    ) -> list[IndexEntry]:
        """Index entries matching every filter. Tags use AND semantics."""
        entries = list(self.load_index())
        if type is not None:
            entries = [e for e in entries if e.type is type]
        if tags:
            entries = [e for e in entries if all(t in e.tags for t in tags)]
        if sort_by == "title":
            entries.sort(key=lambda e: e.title.casefold(), reverse=descending)
        else:
            entries.sort(key=lambda e: getattr(e, sort_by) or "", reverse=descending)
        return entries[:limit] if limit else entries

    def delete(self, memory_id: str) -> int:
        """Remove file, Index entry, Graph node, incident edges and cached embedding.

        Returns the number of edges removed.
        """
        index = self.load_index()
        entry = self._require(index, memory_id)
        graph = self.load_graph()
        cache = self.load_cache()

        (self.base_path / entry.relative_path).unlink(missing_ok=True)
        index.remove(memory_id)
        edges_removed = graph.remove_node(memory_id)
        cache.pop(memory_id)

        index.save(self.base_path)
        graph.save(self.base_path)
        cache.save_if_dirty()
        logger.info("Deleted memory %s (%d edges)", memory_id, edges_removed)
        return edges_removed

    # ── Graph ──────────────────────────────────────────────────

    def link(self, source: str, target: str, relation: Relation | str = Relation.RELATES_TO) -> LinkResult:
        """Add a directed edge. Linking an existing triple is a no-op."""
        label = _parse_relation(relation)
        if source == target:
            raise ValidationFailure(errors=[FieldError("target", "cannot link a memory to itself")])
        index = self.load_index()
        source_entry = self._require(index, source)
        target_entry = self._require(index, target)

        graph = self.load_graph()
        for entry in (source_entry, target_entry):
            if entry.id not in graph.nodes:
                graph.upsert_node(entry.id, entry.title)
        created = graph.add_edge(GraphEdge(source, target, label.value))
        graph.save(self.base_path)
        result = LinkResult(source, target, label.value, created)
        logger.info(result.message)
        return result

    def unlink(self, source: str, target: str, relation: Relation | str | None = None) -> int:
        """Remove edges source → target (all labels when relation is None)."""
        label = _parse_relation(relation).value if relation is not None else None
        index = self.load_index()
        self._require(index, source)
        self._require(index, target)
        graph = self.load_graph()
        removed = graph.remove_edges(source, target, label)
        if removed:
            graph.save(self.base_path)
        logger.info("Unlinked %s -> %s (%d edges)", source, target, removed)
        return removed

    def edges(self, memory_id: str) -> list[GraphEdge]:
        self._require(self.load_index(), memory_id)
        return self.load_graph().neighbours(memory_id)

    def traverse(self, memory_id: str, max_depth: int | None = None) -> dict[str, int]:
        """Records reachable from memory_id along outbound edges, with their depth."""
        self._require(self.load_index(), memory_id)
        return self.load_graph().traverse(memory_id, max_depth)

    def predecessors(self, memory_id: str) -> list[str]:
        self._require(self.load_index(), memory_id)
        return self.load_graph().predecessors(memory_id)

    def shortest_path(self, source: str, target: str) -> list[str] | None:
        index = self.load_index()
        self._require(index, source)
        self._require(index, target)
        return self.load_graph().shortest_path(source, target)

    def components(self) -> list[list[str]]:
        return self.load_graph().connected_components()

    def impact(self, memory_id: str) -> Impact:
        self._require(self.load_index(), memory_id)
        return self.load_graph().impact(memory_id)

    # ── Tiers ──────────────────────────────────────────────────

    def move_to(self, memory_id: str, target: MemoryStore) -> MoveResult:
        """Relocate a record into another scope directory.

        The file keeps its subdirectory and ``updated`` timestamp, and its
        frontmatter scope is rewritten. The node joins the target Graph
        without edges; incident edges stay behind and are removed. A cached
        embedding travels with the record.
        """
        if target.base_path.resolve() == self.base_path.resolve():
            raise ValidationFailure(
                errors=[FieldError("scope", "source and target scopes are the same")]
            )
        index = self.load_index()
        entry = self._require(index, memory_id)
        memory = self.read(memory_id)

        target_index = target.load_index()
        relative = records.relative_path_for(memory_id, memory.type)
        if memory_id in target_index or (target.base_path / relative).exists():
            raise ValidationFailure(
                errors=[FieldError("id", f"{memory_id} already exists in {target.scope.value} scope")]
            )

        memory.scope = target.scope
        path = records.save(target.base_path, memory)
        target_index.upsert(entry_for(memory, target.scope))
        target_index.save(target.base_path)
        target_graph = target.load_graph()
        target_graph.upsert_node(memory_id, memory.title)
        target_graph.save(target.base_path)

        (self.base_path / entry.relative_path).unlink(missing_ok=True)
        index.remove(memory_id)
        index.save(self.base_path)
        graph = self.load_graph()
        edges_removed = graph.remove_node(memory_id)
        graph.save(self.base_path)

        cache = self.load_cache()
        cached = cache.pop(memory_id)
        if cached is not None:
            target_cache = target.load_cache()
            target_cache.adopt(memory_id, cached)
            target_cache.save()
            cache.save()

        result = MoveResult(memory_id, self.scope, target.scope, path, edges_removed, cached is not None)
        logger.info("Moved %s from %s to %s (%d edges dropped)", memory_id, self, target, edges_removed)
        return result

    # ── Tags / promotion ───────────────────────────────────────

    def _rewrite(self, memory: Memory) -> None:
        index = self.load_index()
        memory.updated = now_iso()
        records.save(self.base_path, memory)
        index.upsert(entry_for(memory, self.scope))
        index.save(self.base_path)

    def tag(self, memory_id: str, tags: list[str]) -> list[str]:
        """Add tags to a record. Returns the resulting tag list."""
        new_tags = _clean_tags(tags)
        memory = self.read(memory_id)
        added = [t for t in dict.fromkeys(new_tags) if t not in memory.tags]
        if added:
            memory.tags.extend(added)
            self._rewrite(memory)
        return memory.tags

    def untag(self, memory_id: str, tags: list[str]) -> list[str]:
        """Remove tags from a record. Returns the resulting tag list."""
        drop = set(_clean_tags(tags))
        memory = self.read(memory_id)
        kept = [t for t in memory.tags if t not in drop]
        if len(kept) != len(memory.tags):
            memory.tags = kept
            self._rewrite(memory)
        return memory.tags

    def promote(self, memory_id: str, new_type: MemoryType | str) -> str:
        """Change a record's type. The id prefix, file location, Index entry,
        Graph node and edges, and cached embedding all follow. Returns the new id.
        """
        target_type = parse_memory_type(new_type)
        index = self.load_index()
        entry = self._require(index, memory_id)
        if entry.type is target_type:
            raise ValidationFailure(
                errors=[FieldError("type", f"{memory_id} is already a {target_type.value}")]
            )

        memory = self.read(memory_id)
        taken = self._taken_ids(index) - {memory_id}
        new_id = resolve_collision(with_type(memory_id, target_type), taken)
        memory.id = new_id
        memory.type = target_type
        memory.updated = now_iso()

        records.save(self.base_path, memory)
        (self.base_path / entry.relative_path).unlink(missing_ok=True)

        rebuilt = MemoryIndex()
        for existing in index:
            rebuilt.upsert(entry_for(memory, self.scope) if existing.id == memory_id else existing)
        rebuilt.save(self.base_path)

        graph = self.load_graph()
        graph.rename_node(memory_id, new_id, memory.title)
        graph.save(self.base_path)

        cache = self.load_cache()
        cache.rename(memory_id, new_id)
        cache.save_if_dirty()
        logger.info("Promoted %s to %s", memory_id, new_id)
        return new_id

    # ── Keyword search ─────────────────────────────────────────

    def search(self, query: str, type: MemoryType | None = None, limit: int = 20) -> list[KeywordHit]:
        if not query or not query.strip():
            raise ValidationFailure("query is required and cannot be empty")
        q = query.strip()
        hits = []
        for entry in self.load_index():
            if type is not None and entry.type is not type:
                continue
            memory = records.try_load(self.base_path / entry.relative_path)
            content = memory.content if memory else ""
            score = keyword_score(q, entry.title, content, entry.tags)
            if score <= 0:
                continue
            hits.append(
                KeywordHit(
                    entry.id, entry.type, entry.title, list(entry.tags), entry.scope,
                    round(score, 4), extract_snippet(content, q),
                )
            )
        hits.sort(key=lambda h: h.score, reverse=True)
        return hits[:limit]

    def find_duplicates(self, threshold: float = DUPLICATE_THRESHOLD) -> list[tuple[str, str, float]]:
        """Pairs of indexed records whose cached embeddings are near-identical."""
        index = self.load_index()
        vectors = {k: v for k, v in self.load_cache().vectors().items() if k in index}
        return find_potential_duplicates(vectors, threshold)

    # ── Maintenance ────────────────────────────────────────────

    def _scan(self) -> dict[str, tuple[Path, Memory]]:
        found = {}
        for path in records.iter_record_files(self.base_path):
            memory = records.try_load(path)
            if memory is None:
                continue
            memory.id = path.stem
            found[path.stem] = (path, memory)
        return found

    def _entry_from_disk(self, path: Path, memory: Memory) -> IndexEntry:
        entry = entry_for(memory, self.scope)
        entry.relative_path = f"{path.parent.name}/{path.name}"
        return entry

    def rebuild_index(self) -> RebuildResult:
        """Re-derive index.json from the record files on disk."""
        old = self.load_index()
        on_disk = self._scan()

        rebuilt = MemoryIndex()
        for entry in old:
            if entry.id in on_disk:
                rebuilt.upsert(self._entry_from_disk(*on_disk[entry.id]))
        discovered = 0
        for memory_id, (path, memory) in on_disk.items():
            if memory_id not in rebuilt:
                rebuilt.upsert(self._entry_from_disk(path, memory))
                discovered += 1
        rebuilt.save(self.base_path)

        result = RebuildResult(
            total=len(rebuilt),
            orphans_removed=sum(1 for e in old if e.id not in on_disk),
            discovered=discovered,
        )
        logger.info(
            "Rebuilt index for %s: %d entries, %d orphans removed, %d discovered",
            self, result.total, result.orphans_removed, result.discovered,
        )
        return result

    def sync(self, dry_run: bool = False) -> SyncReport:
        """Reconcile record files, Index, Graph and embedding cache.

        Files win: missing Index entries and Graph nodes are added, ghost
        nodes, dangling edges, stale Index entries and orphan embeddings are
        removed. With dry_run nothing is written.
        """
        on_disk = self._scan()
        index = self.load_index()
        graph = self.load_graph()
        cache = self.load_cache()
        report = SyncReport(dry_run=dry_run)

        for memory_id, (path, memory) in on_disk.items():
            node = graph.nodes.get(memory_id)
            if node is None:
                report.added_to_graph.append(memory_id)
                graph.upsert_node(memory_id, memory.title)
            elif not node.title:
                graph.upsert_node(memory_id, memory.title)
            if memory_id not in index:
                report.added_to_index.append(memory_id)
                index.upsert(self._entry_from_disk(path, memory))

        for node_id in list(graph.nodes):
            if node_id not in on_disk:
                report.removed_ghost_nodes.append(node_id)
                graph.nodes.pop(node_id)
        report.removed_dangling_edges = graph.remove_dangling_edges()

        for entry in list(index):
            if entry.id not in on_disk:
                report.removed_from_index.append(entry.id)
                index.remove(entry.id)

        for memory_id in cache.ids():
            if memory_id not in on_disk:
                report.removed_orphan_embeddings.append(memory_id)
                cache.pop(memory_id)

        if not dry_run:
            index.save(self.base_path)
            graph.save(self.base_path)
            cache.save_if_dirty()
            logger.info("Synced %s: %s", self, "changes applied" if report.changed else "already consistent")
        return report
