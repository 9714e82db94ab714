"""Structural health check for one scope directory.

Reads index.json, graph.json and the record files directly and reports
divergence as data. Nothing here raises on inconsistency.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Literal

from cairn.store import records
from cairn.store.graph import GRAPH_FILENAME, MemoryGraph
from cairn.store.index import INDEX_FILENAME, MemoryIndex

logger = logging.getLogger(__name__)

IssueSeverity = Literal["info", "warning", "error"]
HealthStatus = Literal["healthy", "warning", "critical"]

ISSUE_PENALTIES: dict[str, int] = {
    "missing_index": 30,
    "missing_graph": 30,
    "orphaned_nodes": 3,
    "sync_mismatch": 10,
    "ghost_nodes": 5,
    "missing_files": 10,
    "stale_metadata": 5,
    "low_connectivity": 10,
    "corrupt_state": 10,
}
SEVERITY_PENALTIES: dict[str, int] = {"error": 10, "warning": 5, "info": 1}
ORPHAN_PENALTY_CAP = 30
DETAIL_LIMIT = 10


@dataclass
class HealthIssue:
    type: str
    severity: IssueSeverity
    count: int = 1
    details: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type,
            "severity": self.severity,
            "count": self.count,
            "details": list(self.details),
        }


@dataclass
class HealthReport:
    status: HealthStatus
    score: int
    issues: list[HealthIssue]
    stats: dict[str, Any]
    timestamp: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status,
            "score": self.score,
            "issues": [i.to_dict() for i in self.issues],
            "stats": dict(self.stats),
            "timestamp": self.timestamp,
        }


def calculate_health_score(issues: list[HealthIssue]) -> int:
    """100 minus per-issue penalties, clamped to [0, 100]."""
    score = 100
    for issue in issues:
        penalty = ISSUE_PENALTIES.get(issue.type, SEVERITY_PENALTIES.get(issue.severity, 5))
        if issue.type == "orphaned_nodes":
            score -= min(issue.count * penalty, ORPHAN_PENALTY_CAP)
        else:
            score -= penalty * max(issue.count, 1)
    return max(0, min(100, score))


def status_for(score: int) -> HealthStatus:
    if score >= 90:
        return "healthy"
    if score >= 70:
        return "warning"
    return "critical"


def _issue(kind: str, severity: IssueSeverity, ids: list[str]) -> HealthIssue:
    return HealthIssue(kind, severity, len(ids), ids[:DETAIL_LIMIT])


def check_health(base_path: Path) -> HealthReport:
    base_path = Path(base_path)
    issues: list[HealthIssue] = []

    has_index = (base_path / INDEX_FILENAME).exists()
    has_graph = (base_path / GRAPH_FILENAME).exists()
    if not has_index:
        issues.append(HealthIssue("missing_index", "error"))
    if not has_graph:
        issues.append(HealthIssue("missing_graph", "error"))

    index = MemoryIndex.load(base_path) if has_index else MemoryIndex()
    graph = MemoryGraph.load(base_path) if has_graph else MemoryGraph()

    corrupt = [
        f"{name}: unreadable"
        for name, state in ((INDEX_FILENAME, index), (GRAPH_FILENAME, graph))
        if state.unreadable
    ]
    corrupt += [f"{INDEX_FILENAME}: entry {label}" for label in index.skipped]
    corrupt += [f"{GRAPH_FILENAME}: {label}" for label in graph.skipped]
    if corrupt:
        issues.append(_issue("corrupt_state", "error", corrupt))

    orphans = graph.orphans()
    if orphans:
        issues.append(_issue("orphaned_nodes", "warning", orphans))

    unmatched = [e.id for e in index if e.id not in graph.nodes]
    if unmatched:
        issues.append(_issue("sync_mismatch", "warning", unmatched))

    ghosts = [node_id for node_id in graph.nodes if node_id not in index]
    if ghosts:
        issues.append(_issue("ghost_nodes", "warning", ghosts))

    missing, stale = [], []
    for entry in index:
        path = base_path / entry.relative_path
        if not path.exists():
            missing.append(entry.id)
            continue
        memory = records.try_load(path)
        if (
            memory is None
            or memory.title != entry.title
            or memory.type is not entry.type
            or list(memory.tags) != list(entry.tags)
        ):
            stale.append(entry.id)
    if missing:
        issues.append(_issue("missing_files", "error", missing))
    if stale:
        issues.append(_issue("stale_metadata", "warning", stale))

    total_nodes = len(graph.nodes)
    connectivity = (total_nodes - len(orphans)) / total_nodes if total_nodes else 1.0
    if total_nodes > 5 and connectivity < 0.5:
        issues.append(HealthIssue("low_connectivity", "warning"))

    score = calculate_health_score(issues)
    report = HealthReport(
        status=status_for(score),
        score=score,
        issues=issues,
        stats={
            "total_memories": len(index),
            "total_nodes": total_nodes,
            "total_edges": len(graph.edges),
            "orphaned_nodes": len(orphans),
            "connectivity_ratio": connectivity,
        },
        timestamp=datetime.now(timezone.utc).isoformat(timespec="seconds"),
    )
    logger.debug("Health check for %s: %d (%s)", base_path, score, report.status)
    return report


_STATUS_MARK = {"healthy": "✓", "warning": "⚠", "critical": "✗"}
_SEVERITY_MARK = {"info": "ℹ", "warning": "⚠", "error": "✗"}


def format_health_report(report: HealthReport) -> str:
    stats = report.stats
    lines = [
        f"{_STATUS_MARK[report.status]} Health: {report.status.upper()} (Score: {report.score}/100)",
        "",
        "Statistics:",
        f"  Memories: {stats['total_memories']}",
        f"  Nodes: {stats['total_nodes']}",
        f"  Edges: {stats['total_edges']}",
        f"  Connectivity: {stats['connectivity_ratio'] * 100:.1f}%",
    ]
    if report.issues:
        lines += ["", "Issues:"]
        for issue in report.issues:
            lines.append(f"  {_SEVERITY_MARK[issue.severity]} {issue.type}: {issue.count}")
            lines.extend(f"    - {detail}" for detail in issue.details[:5])
            if issue.count > 5:
                lines.append(f"    ... and {issue.count - 5} more")
    return "\n".join(lines)
