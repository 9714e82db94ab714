"""Record ids: ``{type}-{slug}``."""

from __future__ import annotations

import re
import unicodedata
from collections.abc import Container

from cairn.types import MemoryType

MAX_SLUG_LENGTH = 80

SLUG_RE = re.compile(r"^[a-z0-9]+(?:-[a-z0-9]+)*$")


def slugify(title: str) -> str:
    """Lower-case, strip diacritics, keep [a-z0-9] runs joined by single hyphens."""
    text = unicodedata.normalize("NFD", title.strip().lower())
    text = "".join(ch for ch in text if not unicodedata.combining(ch))
    text = re.sub(r"[^a-z0-9\s-]", "", text)
    text = re.sub(r"[\s-]+", "-", text).strip("-")
    if len(text) > MAX_SLUG_LENGTH:
        text = text[:MAX_SLUG_LENGTH].rstrip("-")
    return text or "untitled"


def generate_id(memory_type: MemoryType, title: str) -> str:
    return f"{memory_type.value}-{slugify(title)}"


def resolve_collision(base_id: str, taken: Container[str]) -> str:
    """Return base_id, or the first of base_id-1, base_id-2, ... not taken."""
    if base_id not in taken:
        return base_id
    suffix = 1
    while f"{base_id}-{suffix}" in taken:
        suffix += 1
    return f"{base_id}-{suffix}"


def parse_id(memory_id: str) -> tuple[MemoryType, str] | None:
    """Split an id into its type prefix and slug, or None when malformed."""
    # Longest prefix first so no type name shadows another.
    for memory_type in sorted(MemoryType, key=lambda t: len(t.value), reverse=True):
        prefix = f"{memory_type.value}-"
        if memory_id.startswith(prefix):
            slug = memory_id[len(prefix):]
            if SLUG_RE.match(slug):
                return memory_type, slug
            return None
    return None


def is_valid_id(memory_id: str) -> bool:
    return parse_id(memory_id) is not None


def with_type(memory_id: str, new_type: MemoryType) -> str:
    """Swap the type prefix of a well-formed id."""
    parsed = parse_id(memory_id)
    if parsed is None:
        raise ValueError(f"malformed id: {memory_id}")
    return f"{new_type.value}-{parsed[1]}"
