"""graph.json: nodes keyed by record id, directed labelled edges between them."""

from __future__ import annotations

import json
import logging
from collections import deque
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from cairn.store.records import preserve_corrupt, write_atomic
from cairn.types import GraphEdge, GraphNode

logger = logging.getLogger(__name__)

GRAPH_FILENAME = "graph.json"
GRAPH_VERSION = 1


@dataclass
class Impact:
    """What removing a node would disturb."""

    node: str
    dependents: list[str] = field(default_factory=list)
    orphaned: list[str] = field(default_factory=list)
    broken_edges: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "node": self.node,
            "dependents": list(self.dependents),
            "orphaned": list(self.orphaned),
            "broken_edges": self.broken_edges,
        }


class MemoryGraph:
    """Adjacency structure. Edges are unique per (source, target, label)."""

    def __init__(
        self,
        nodes: list[GraphNode] | None = None,
        edges: list[GraphEdge] | None = None,
    ) -> None:
        self.nodes: dict[str, GraphNode] = {n.id: n for n in nodes or []}
        self.edges: list[GraphEdge] = []
        for edge in edges or []:
            self.add_edge(edge)
        # Nodes or edges dropped on load because they could not be parsed.
        self.skipped: list[str] = []
        self.unreadable = False

    @classmethod
    def load(cls, base: Path) -> MemoryGraph:
        path = base / GRAPH_FILENAME
        if not path.exists():
            return cls()
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
            raw_nodes = data.get("nodes", [])
            raw_edges = data.get("edges", [])
            if not isinstance(raw_nodes, list) or not isinstance(raw_edges, list):
                raise TypeError("nodes and edges must be lists")
        except (OSError, ValueError, TypeError, AttributeError) as e:
            logger.warning("Corrupt graph %s, treating as empty: %s", path, e)
            preserve_corrupt(path)
            graph = cls()
            graph.unreadable = True
            return graph

        graph = cls()
        for item in raw_nodes:
            try:
                graph.upsert_node(str(item["id"]), str(item.get("title", "")))
            except (KeyError, TypeError, AttributeError) as e:
                logger.warning("Skipping malformed graph node in %s: %r (%s)", path, item, e)
                graph.skipped.append(f"node {item!r}")
        for item in raw_edges:
            try:
                graph.add_edge(
                    GraphEdge(str(item["source"]), str(item["target"]), str(item.get("label", "relates-to")))
                )
            except (KeyError, TypeError, AttributeError) as e:
                logger.warning("Skipping malformed graph edge in %s: %r (%s)", path, item, e)
                graph.skipped.append(f"edge {item!r}")
        return graph

    def save(self, base: Path) -> None:
        data = {
            "version": GRAPH_VERSION,
            "nodes": [{"id": n.id, "title": n.title} for n in self.nodes.values()],
            "edges": [
                {"source": e.source, "target": e.target, "label": e.label} for e in self.edges
            ],
        }
        write_atomic(base / GRAPH_FILENAME, json.dumps(data, indent=2) + "\n")

    # ── Nodes ──────────────────────────────────────────────────

    def upsert_node(self, node_id: str, title: str) -> None:
        self.nodes[node_id] = GraphNode(node_id, title)

    def remove_node(self, node_id: str) -> int:
        """Drop a node and every edge touching it. Returns edges removed."""
        self.nodes.pop(node_id, None)
        before = len(self.edges)
        self.edges = [e for e in self.edges if node_id not in (e.source, e.target)]
        return before - len(self.edges)

    def rename_node(self, old_id: str, new_id: str, title: str) -> None:
        self.nodes.pop(old_id, None)
        self.nodes[new_id] = GraphNode(new_id, title)
        renamed = []
        for e in self.edges:
            renamed.append(
                GraphEdge(
                    new_id if e.source == old_id else e.source,
                    new_id if e.target == old_id else e.target,
                    e.label,
                )
            )
        self.edges = []
        for edge in renamed:
            self.add_edge(edge)

    # ── Edges ──────────────────────────────────────────────────

    def has_edge(self, edge: GraphEdge) -> bool:
        return edge in self.edges

    def add_edge(self, edge: GraphEdge) -> bool:
        """Append the edge. False when an identical edge already exists."""
        if edge in self.edges:
            return False
        self.edges.append(edge)
        return True

    def remove_edges(self, source: str, target: str, label: str | None = None) -> int:
        before = len(self.edges)
        self.edges = [
            e
            for e in self.edges
            if not (e.source == source and e.target == target and (label is None or e.label == label))
        ]
        return before - len(self.edges)

    def remove_dangling_edges(self) -> int:
        before = len(self.edges)
        self.edges = [e for e in self.edges if e.source in self.nodes and e.target in self.nodes]
        return before - len(self.edges)

    def degree(self) -> dict[str, int]:
        counts = {node_id: 0 for node_id in self.nodes}
        for e in self.edges:
            if e.source in counts:
                counts[e.source] += 1
            if e.target in counts:
                counts[e.target] += 1
        return counts

    def orphans(self) -> list[str]:
        return [node_id for node_id, n in self.degree().items() if n == 0]

    def neighbours(self, node_id: str) -> list[GraphEdge]:
        return [e for e in self.edges if node_id in (e.source, e.target)]

    # ── Traversal ──────────────────────────────────────────────

    def _adjacency(self, reverse: bool = False) -> dict[str, list[str]]:
        adjacency: dict[str, list[str]] = {}
        for e in self.edges:
            source, target = (e.target, e.source) if reverse else (e.source, e.target)
            targets = adjacency.setdefault(source, [])
            if target not in targets:
                targets.append(target)
        return adjacency

    def _bfs(self, start: str, max_depth: int | None, reverse: bool = False) -> dict[str, int]:
        adjacency = self._adjacency(reverse)
        depths = {start: 0}
        queue = deque([start])
        while queue:
            current = queue.popleft()
            depth = depths[current]
            if max_depth is not None and depth >= max_depth:
                continue
            for nxt in adjacency.get(current, []):
                if nxt not in depths:
                    depths[nxt] = depth + 1
                    queue.append(nxt)
        return depths

    def traverse(self, start: str, max_depth: int | None = None) -> dict[str, int]:
        """Breadth-first walk along outbound edges.

        Maps each visited id to its distance from start, in visit order.
        The start itself is always included at depth 0.
        """
        return self._bfs(start, max_depth)

    def reachable(self, start: str) -> list[str]:
        return [node_id for node_id in self._bfs(start, None) if node_id != start]

    def predecessors(self, target: str) -> list[str]:
        """Every node with a directed path to target."""
        return [node_id for node_id in self._bfs(target, None, reverse=True) if node_id != target]

    def shortest_path(self, source: str, target: str) -> list[str] | None:
        """Fewest-hop path along outbound edges, or None when target is unreachable."""
        if source == target:
            return [source]
        adjacency = self._adjacency()
        parents: dict[str, str | None] = {source: None}
        queue = deque([source])
        while queue:
            current = queue.popleft()
            for nxt in adjacency.get(current, []):
                if nxt in parents:
                    continue
                parents[nxt] = current
                if nxt == target:
                    path = [nxt]
                    while parents[path[-1]] is not None:
                        path.append(parents[path[-1]])
                    return path[::-1]
                queue.append(nxt)
        return None

    def subgraph(self, start: str, max_depth: int | None = None) -> MemoryGraph:
        """Nodes within max_depth of start and the edges among them."""
        keep = self._bfs(start, max_depth)
        return MemoryGraph(
            nodes=[self.nodes.get(node_id, GraphNode(node_id)) for node_id in keep],
            edges=[e for e in self.edges if e.source in keep and e.target in keep],
        )

    def connected_components(self) -> list[list[str]]:
        """Groups of nodes joined by edges in either direction, in node order."""
        undirected: dict[str, set[str]] = {node_id: set() for node_id in self.nodes}
        for e in self.edges:
            undirected.setdefault(e.source, set()).add(e.target)
            undirected.setdefault(e.target, set()).add(e.source)

        seen: set[str] = set()
        components = []
        for node_id in undirected:
            if node_id in seen:
                continue
            component = []
            queue = deque([node_id])
            seen.add(node_id)
            while queue:
                current = queue.popleft()
                component.append(current)
                for nxt in sorted(undirected[current]):
                    if nxt not in seen:
                        seen.add(nxt)
                        queue.append(nxt)
            components.append(component)
        return components

    def impact(self, node_id: str) -> Impact:
        """Dependents of node_id and which of them only it points at."""
        dependents = self.reachable(node_id)
        inbound = self._adjacency(reverse=True)
        orphaned = [
            dependent
            for dependent in dependents
            if inbound.get(dependent) and all(src == node_id for src in inbound[dependent])
        ]
        return Impact(
            node=node_id,
            dependents=dependents,
            orphaned=orphaned,
            broken_edges=len(self.neighbours(node_id)),
        )
