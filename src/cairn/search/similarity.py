"""Cosine similarity and nearest-neighbour helpers over plain float lists."""

from __future__ import annotations

import math
from dataclasses import dataclass

from cairn.errors import VectorSizeMismatch

DUPLICATE_THRESHOLD = 0.92


@dataclass
class SimilarityResult:
    id: str
    similarity: float


def cosine_similarity(a: list[float], b: list[float]) -> float:
    """Cosine of the angle between a and b; 0.0 when either is a zero vector."""
    if not a or not b:
        raise VectorSizeMismatch("Vectors cannot be empty")
    if len(a) != len(b):
        raise VectorSizeMismatch(f"Vectors must have same length ({len(a)} != {len(b)})")

    dot = sum(x * y for x, y in zip(a, b))
    mag_a = math.sqrt(sum(x * x for x in a))
    mag_b = math.sqrt(sum(y * y for y in b))
    if mag_a == 0 or mag_b == 0:
        return 0.0
    # Float noise can push parallel vectors just past 1.0.
    return max(-1.0, min(1.0, dot / (mag_a * mag_b)))


def find_similar(
    query: list[float],
    embeddings: dict[str, list[float]],
    threshold: float = 0.5,
    limit: int | None = None,
    exclude_id: str | None = None,
) -> list[SimilarityResult]:
    """Entries at or above threshold, best first. Ties keep insertion order."""
    results = [
        SimilarityResult(memory_id, cosine_similarity(query, vector))
        for memory_id, vector in embeddings.items()
        if memory_id != exclude_id
    ]
    results = [r for r in results if r.similarity >= threshold]
    results.sort(key=lambda r: r.similarity, reverse=True)
    return results[:limit] if limit is not None else results


def find_potential_duplicates(
    embeddings: dict[str, list[float]],
    threshold: float = DUPLICATE_THRESHOLD,
    limit: int | None = None,
) -> list[tuple[str, str, float]]:
    """Pairs (id1, id2, similarity) at or above threshold, most similar first."""
    ids = list(embeddings)
    pairs = []
    for i, first in enumerate(ids):
        for second in ids[i + 1:]:
            score = cosine_similarity(embeddings[first], embeddings[second])
            if score >= threshold:
                pairs.append((first, second, score))
    pairs.sort(key=lambda p: p[2], reverse=True)
    return pairs[:limit] if limit is not None else pairs
