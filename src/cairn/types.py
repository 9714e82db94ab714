"""Record kinds, storage tiers and the shared record/index/graph types."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class MemoryType(str, Enum):
    """Kinds of record. The id of every record starts with one of these."""

    DECISION = "decision"
    LEARNING = "learning"
    ARTIFACT = "artifact"
    GOTCHA = "gotcha"
    BREADCRUMB = "breadcrumb"
    HUB = "hub"


class Scope(str, Enum):
    """Storage tiers, listed in precedence order."""

    ENTERPRISE = "enterprise"
    LOCAL = "local"
    PROJECT = "project"
    GLOBAL = "global"


class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class Relation(str, Enum):
    """Edge labels allowed in the graph."""

    RELATES_TO = "relates-to"
    IMPLEMENTS = "implements"
    SUPERSEDES = "supersedes"
    BLOCKED_BY = "blocked-by"
    INFORMS = "informs"
    EXEMPLIFIES = "exemplifies"
    RELATED_CONTEXT = "related-context"


SCOPE_PRECEDENCE: tuple[Scope, ...] = (
    Scope.ENTERPRISE,
    Scope.LOCAL,
    Scope.PROJECT,
    Scope.GLOBAL,
)

# Subdirectory of a scope root that holds each kind of record file.
STORAGE_SUBDIR: dict[MemoryType, str] = {
    MemoryType.DECISION: "permanent",
    MemoryType.LEARNING: "permanent",
    MemoryType.ARTIFACT: "permanent",
    MemoryType.GOTCHA: "permanent",
    MemoryType.HUB: "permanent",
    MemoryType.BREADCRUMB: "temporary",
}


@dataclass
class Memory:
    """A single stored record: frontmatter metadata plus a Markdown body."""

    type: MemoryType
    title: str
    content: str
    id: str | None = None
    tags: list[str] = field(default_factory=list)
    scope: Scope | None = None
    severity: Severity | None = None
    links: list[str] = field(default_factory=list)
    source: str | None = None
    created: str | None = None
    updated: str | None = None

    @property
    def embedding_text(self) -> str:
        """Text that is embedded and hashed for the embedding cache."""
        return f"{self.title}\n\n{self.content}"

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type.value,
            "title": self.title,
            "content": self.content,
            "tags": list(self.tags),
            "scope": self.scope.value if self.scope else None,
            "severity": self.severity.value if self.severity else None,
            "links": list(self.links),
            "source": self.source,
            "created": self.created,
            "updated": self.updated,
        }


@dataclass
class IndexEntry:
    """Lightweight metadata mirror of one record, as kept in index.json."""

    id: str
    type: MemoryType
    title: str
    tags: list[str]
    created: str
    updated: str
    scope: Scope
    relative_path: str
    severity: Severity | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": self.id,
            "type": self.type.value,
            "title": self.title,
            "tags": list(self.tags),
            "created": self.created,
            "updated": self.updated,
            "scope": self.scope.value,
            "relative_path": self.relative_path,
        }
        if self.severity:
            data["severity"] = self.severity.value
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> IndexEntry:
        severity = data.get("severity")
        return cls(
            id=data["id"],
            type=MemoryType(data["type"]),
            title=data.get("title", ""),
            tags=list(data.get("tags") or []),
            created=data.get("created", ""),
            updated=data.get("updated", ""),
            scope=Scope(data.get("scope", Scope.GLOBAL.value)),
            relative_path=data.get("relative_path") or f"permanent/{data['id']}.md",
            severity=Severity(severity) if severity else None,
        )


@dataclass
class GraphNode:
    id: str
    title: str = ""


@dataclass(frozen=True)
class GraphEdge:
    source: str
    target: str
    label: str = Relation.RELATES_TO.value
