"""Pick a bounded, de-duplicated set of records relevant to what is happening now.

One semantic search per trigger; per-type thresholds and limits are applied
to that single result set.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Protocol

from cairn.config import InjectionConfig
from cairn.errors import FieldError, ValidationFailure
from cairn.search.semantic import SearchHit
from cairn.types import MemoryType, Scope

logger = logging.getLogger(__name__)

TOTAL_LIMIT = 10
CANDIDATE_POOL = 50

TYPE_PRIORITY: dict[MemoryType, int] = {
    MemoryType.GOTCHA: 0,
    MemoryType.DECISION: 1,
    MemoryType.LEARNING: 2,
    MemoryType.ARTIFACT: 3,
    MemoryType.HUB: 4,
    MemoryType.BREADCRUMB: 5,
}

TYPE_LABELS: dict[MemoryType, str] = {
    MemoryType.GOTCHA: "🚨 Gotchas",
    MemoryType.DECISION: "📋 Decisions",
    MemoryType.LEARNING: "💡 Learnings",
    MemoryType.ARTIFACT: "📦 Artifacts",
    MemoryType.HUB: "🗂 Hubs",
    MemoryType.BREADCRUMB: "👣 Breadcrumbs",
}


class ActionKind(str, Enum):
    """What the consumer was doing when the trigger fired."""

    READ = "read"
    EDIT = "edit"
    WRITE = "write"
    EXECUTE = "execute"


def parse_action(value: ActionKind | str) -> ActionKind:
    try:
        return ActionKind(value)
    except ValueError:
        allowed = ", ".join(a.value for a in ActionKind)
        raise ValidationFailure(
            errors=[FieldError("action", f"action must be one of: {allowed} (got {value!r})")]
        ) from None


class Searcher(Protocol):
    async def search(
        self,
        query: str,
        type: MemoryType | None = None,
        scope: Scope | None = None,
        threshold: float = 0.5,
        limit: int = 20,
    ) -> list[SearchHit]: ...


@dataclass
class TriggerContext:
    content: str
    action: ActionKind = ActionKind.READ


@dataclass
class InjectionSession:
    """Records already shown in this session, keyed by (id, type)."""

    seen: set[tuple[str, MemoryType]] = field(default_factory=set)

    def __len__(self) -> int:
        return len(self.seen)

    def has(self, hit: SearchHit) -> bool:
        return (hit.id, hit.type) in self.seen

    def mark(self, hits: list[SearchHit]) -> None:
        self.seen.update((h.id, h.type) for h in hits)

    def clear(self) -> None:
        self.seen.clear()


def effective_threshold(
    base: float, action: ActionKind, multipliers: dict[str, float]
) -> float | None:
    """base × action multiplier, or None when the product exceeds 1.0."""
    threshold = base * multipliers.get(action.value, 1.0)
    if threshold > 1.0:
        return None
    return threshold


def prioritise(hits: list[SearchHit]) -> list[SearchHit]:
    """Type priority first, then score descending."""
    return sorted(hits, key=lambda h: (TYPE_PRIORITY[h.type], -h.score))


class RelevanceEngine:
    def __init__(
        self,
        searcher: Searcher,
        config: InjectionConfig | None = None,
        total_limit: int = TOTAL_LIMIT,
    ) -> None:
        self.searcher = searcher
        self.config = config or InjectionConfig()
        self.total_limit = total_limit

    def thresholds(self, action: ActionKind) -> dict[MemoryType, float]:
        """Effective threshold for every type that can contribute."""
        result = {}
        for memory_type, type_config in self.config.types.items():
            if not type_config.enabled:
                continue
            threshold = effective_threshold(
                type_config.threshold, action, self.config.action_multipliers
            )
            if threshold is not None:
                result[memory_type] = threshold
        return result

    async def select(self, trigger: TriggerContext, session: InjectionSession) -> list[SearchHit]:
        """Records to surface for trigger. Marks them as seen in session."""
        if not self.config.enabled or not trigger.content.strip():
            return []
        thresholds = self.thresholds(trigger.action)
        if not thresholds:
            return []

        hits = await self.searcher.search(
            trigger.content,
            threshold=min(thresholds.values()),
            # Seen records still come back from the search; widen the pool past them.
            limit=CANDIDATE_POOL + len(session),
        )

        per_type: dict[MemoryType, list[SearchHit]] = {}
        for hit in sorted(hits, key=lambda h: h.score, reverse=True):
            threshold = thresholds.get(hit.type)
            if threshold is None or hit.score < threshold or session.has(hit):
                continue
            bucket = per_type.setdefault(hit.type, [])
            if len(bucket) < self.config.types[hit.type].limit:
                bucket.append(hit)

        candidates = [hit for bucket in per_type.values() for hit in bucket]
        selected = prioritise(candidates)[: self.total_limit]
        session.mark(selected)
        logger.debug(
            "Selected %d of %d hits for %s trigger", len(selected), len(hits), trigger.action.value
        )
        return selected


def format_reminder(hits: list[SearchHit]) -> str:
    """Render a selection grouped by type, most urgent type first."""
    if not hits:
        return ""
    grouped: dict[MemoryType, list[SearchHit]] = {}
    for hit in hits:
        grouped.setdefault(hit.type, []).append(hit)

    lines = []
    for memory_type in sorted(grouped, key=TYPE_PRIORITY.__getitem__):
        lines.append(f"{TYPE_LABELS[memory_type]}:")
        lines.extend(f"  • {hit.title} ({hit.id})" for hit in grouped[memory_type])
    return "\n".join(lines)
