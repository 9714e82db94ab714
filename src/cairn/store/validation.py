"""Write-request validation. Everything is checked before anything touches disk."""

from __future__ import annotations

from collections.abc import Mapping
from datetime import datetime, timezone
from typing import Any

from cairn.errors import FieldError, ValidationFailure
from cairn.store.ids import parse_id
from cairn.types import Memory, MemoryType, Scope, Severity


def _choices(enum_cls) -> str:
    return ", ".join(member.value for member in enum_cls)


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds")


def is_valid_timestamp(value: object) -> bool:
    if not isinstance(value, str) or not value.strip():
        return False
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        datetime.fromisoformat(text)
    except ValueError:
        return False
    return True


def _is_string_list(value: object) -> bool:
    return isinstance(value, (list, tuple)) and all(
        isinstance(item, str) and item.strip() for item in value
    )


def _enum_value(enum_cls, value: object):
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(value)
    except ValueError:
        return None


def build_memory(data: Mapping[str, Any]) -> Memory:
    """Turn plain request data into a Memory, collecting every field error.

    Raises ValidationFailure listing all rejected fields at once.
    """
    errors: list[FieldError] = []

    title = data.get("title")
    if not isinstance(title, str) or not title.strip():
        errors.append(FieldError("title", "title is required and must be a non-empty string"))

    memory_type = _enum_value(MemoryType, data.get("type"))
    if memory_type is None:
        errors.append(FieldError("type", f"type must be one of: {_choices(MemoryType)}"))

    content = data.get("content")
    if not isinstance(content, str) or not content.strip():
        errors.append(FieldError("content", "content is required and must be a non-empty string"))

    tags = data.get("tags", [])
    if not _is_string_list(tags):
        errors.append(FieldError("tags", "tags must be an array of non-empty strings"))

    scope = None
    if data.get("scope") is not None:
        scope = _enum_value(Scope, data["scope"])
        if scope is None:
            errors.append(FieldError("scope", f"scope must be one of: {_choices(Scope)}"))

    severity = None
    if data.get("severity") is not None:
        severity = _enum_value(Severity, data["severity"])
        if severity is None:
            errors.append(FieldError("severity", f"severity must be one of: {_choices(Severity)}"))

    links = data.get("links", [])
    if not _is_string_list(links):
        errors.append(FieldError("links", "links must be an array of non-empty strings"))

    source = data.get("source")
    if source is not None and not isinstance(source, str):
        errors.append(FieldError("source", "source must be a string"))

    if errors:
        raise ValidationFailure(errors=errors)

    memory = Memory(
        type=memory_type,
        title=title.strip(),
        content=content,
        id=data.get("id"),
        tags=[t.strip() for t in tags],
        scope=scope,
        severity=severity,
        links=[link.strip() for link in links],
        source=source,
        created=data.get("created"),
        updated=data.get("updated"),
    )
    validate_memory(memory)
    return memory


def validate_memory(memory: Memory) -> None:
    """Check a typed record before it is persisted."""
    errors: list[FieldError] = []

    if not isinstance(memory.type, MemoryType):
        errors.append(FieldError("type", f"type must be one of: {_choices(MemoryType)}"))
    if not memory.title or not memory.title.strip():
        errors.append(FieldError("title", "title is required and must be a non-empty string"))
    if not memory.content or not memory.content.strip():
        errors.append(FieldError("content", "content is required and must be a non-empty string"))
    if not _is_string_list(memory.tags):
        errors.append(FieldError("tags", "tags must be an array of non-empty strings"))
    if not _is_string_list(memory.links):
        errors.append(FieldError("links", "links must be an array of non-empty strings"))
    if memory.scope is not None and not isinstance(memory.scope, Scope):
        errors.append(FieldError("scope", f"scope must be one of: {_choices(Scope)}"))
    if memory.severity is not None and not isinstance(memory.severity, Severity):
        errors.append(FieldError("severity", f"severity must be one of: {_choices(Severity)}"))

    if memory.id is not None:
        parsed = parse_id(memory.id) if isinstance(memory.id, str) else None
        if parsed is None:
            errors.append(FieldError("id", f"id must match {{type}}-{{slug}} (got {memory.id!r})"))
        elif isinstance(memory.type, MemoryType) and parsed[0] is not memory.type:
            errors.append(
                FieldError(
                    "id",
                    f"id prefix {parsed[0].value!r} does not match type {memory.type.value!r}",
                )
            )

    for name in ("created", "updated"):
        value = getattr(memory, name)
        if value is not None and not is_valid_timestamp(value):
            errors.append(FieldError(name, f"{name} must be a valid ISO 8601 timestamp"))

    if errors:
        raise ValidationFailure(errors=errors)


def parse_memory_type(value: MemoryType | str) -> MemoryType:
    memory_type = _enum_value(MemoryType, value)
    if memory_type is None:
        raise ValidationFailure(
            errors=[FieldError("type", f"type must be one of: {_choices(MemoryType)} (got {value!r})")]
        )
    return memory_type
