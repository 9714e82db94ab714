"""Record files: YAML frontmatter plus a Markdown body, one file per id."""

from __future__ import annotations

import logging
import os
import shutil
from datetime import date, datetime
from pathlib import Path
from typing import Any

import frontmatter

from cairn.errors import CairnError
from cairn.types import STORAGE_SUBDIR, Memory, MemoryType, Scope, Severity

logger = logging.getLogger(__name__)

_FIELD_ORDER = ("id", "type", "title", "tags", "scope", "severity", "links", "source", "created", "updated")


class RecordParseError(CairnError):
    """A record file exists but its frontmatter cannot be turned into a Memory."""


def relative_path_for(memory_id: str, memory_type: MemoryType) -> str:
    return f"{STORAGE_SUBDIR[memory_type]}/{memory_id}.md"


def _normalise(value: Any) -> Any:
    # YAML turns unquoted timestamps into datetime objects.
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return value


def serialise(memory: Memory) -> str:
    """Render a record as frontmatter text. Enums are stored by value."""
    values = {
        "id": memory.id,
        "type": memory.type.value,
        "title": memory.title,
        "tags": list(memory.tags),
        "scope": memory.scope.value if memory.scope else None,
        "severity": memory.severity.value if memory.severity else None,
        "links": list(memory.links),
        "source": memory.source,
        "created": memory.created,
        "updated": memory.updated,
    }
    metadata = {}
    for key in _FIELD_ORDER:
        value = values[key]
        if value is None or (key == "links" and not value):
            continue
        metadata[key] = value
    post = frontmatter.Post(memory.content.strip(), **metadata)
    return frontmatter.dumps(post, sort_keys=False) + "\n"


def parse(text: str, fallback_id: str | None = None) -> Memory:
    """Parse frontmatter text into a Memory. Raises RecordParseError."""
    try:
        post = frontmatter.loads(text)
    except Exception as e:
        raise RecordParseError(f"invalid frontmatter: {e}") from e
    meta = {k: _normalise(v) for k, v in post.metadata.items()}

    try:
        memory_type = MemoryType(meta.get("type"))
    except ValueError as e:
        raise RecordParseError(f"unknown type: {meta.get('type')!r}") from e
    title = meta.get("title")
    if not isinstance(title, str) or not title.strip():
        raise RecordParseError("missing title")

    try:
        scope = Scope(meta["scope"]) if meta.get("scope") else None
        severity = Severity(meta["severity"]) if meta.get("severity") else None
    except ValueError as e:
        raise RecordParseError(str(e)) from e

    return Memory(
        type=memory_type,
        title=title,
        content=post.content.strip(),
        id=meta.get("id") or fallback_id,
        tags=[str(t) for t in meta.get("tags") or []],
        scope=scope,
        severity=severity,
        links=[str(link) for link in meta.get("links") or []],
        source=meta.get("source"),
        created=meta.get("created"),
        updated=meta.get("updated"),
    )


def load(path: Path) -> Memory:
    """Read one record file. Raises OSError or RecordParseError."""
    return parse(path.read_text(encoding="utf-8"), fallback_id=path.stem)


def try_load(path: Path) -> Memory | None:
    """Best-effort load: None (logged) when the file is missing or unparseable."""
    try:
        return load(path)
    except FileNotFoundError:
        return None
    except (OSError, RecordParseError) as e:
        logger.warning("Skipping unreadable record %s: %s", path, e)
        return None


def save(base: Path, memory: Memory) -> Path:
    """Write a record under base, creating its storage subdirectory."""
    path = base / relative_path_for(memory.id, memory.type)
    write_atomic(path, serialise(memory))
    return path


def write_atomic(path: Path, text: str) -> None:
    """Write text to path through a sibling temp file and os.replace."""
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_name(f".{path.name}.{os.getpid()}.tmp")
    try:
        tmp.write_text(text, encoding="utf-8")
        os.replace(tmp, path)
    finally:
        tmp.unlink(missing_ok=True)


def preserve_corrupt(path: Path) -> Path | None:
    """Copy an unreadable state file aside as <name>.corrupt before it is rewritten."""
    backup = path.with_name(path.name + ".corrupt")
    try:
        shutil.copyfile(path, backup)
    except OSError as e:
        logger.warning("Could not preserve %s: %s", path, e)
        return None
    logger.warning("Preserved unreadable %s as %s", path.name, backup)
    return backup


def iter_record_files(base: Path):
    """Yield every record file below the storage subdirectories of base."""
    for subdir in sorted(set(STORAGE_SUBDIR.values())):
        directory = base / subdir
        if directory.is_dir():
            yield from sorted(directory.glob("*.md"))
