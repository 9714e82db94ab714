"""Failure types raised by the storage, search and scope layers."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass
class FieldError:
    """A single rejected field and why."""

    field: str
    message: str

    def __str__(self) -> str:
        return f"{self.field}: {self.message}"


class CairnError(Exception):
    """Base class for every failure the engine raises on purpose."""


class ValidationFailure(CairnError):
    """Malformed input. Raised before anything is written."""

    def __init__(self, message: str | None = None, errors: list[FieldError] | None = None) -> None:
        self.errors = errors or []
        if message is None:
            message = "; ".join(str(e) for e in self.errors) or "validation failed"
        super().__init__(message)


class VectorSizeMismatch(ValidationFailure):
    """Two vectors of different (or zero) length were compared."""


class NotFoundFailure(CairnError):
    """An id was referenced that has no Index entry."""

    def __init__(self, memory_id: str, what: str = "Memory") -> None:
        self.memory_id = memory_id
        super().__init__(f"{what} not found: {memory_id}")


class ScopeUnavailable(CairnError):
    """A storage tier cannot be resolved to a directory."""
