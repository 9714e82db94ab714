"""Tests for ids, validation and the record file format."""

from __future__ import annotations

from pathlib import Path

import frontmatter
import pytest

from cairn.errors import ValidationFailure
from cairn.store import records
from cairn.store.ids import generate_id, parse_id, resolve_collision, slugify, with_type
from cairn.store.validation import build_memory, is_valid_timestamp, validate_memory
from cairn.types import Memory, MemoryType, Scope, Severity


class TestSlugify:
    def test_basic(self):
        assert slugify("Use Postgres for Sessions") == "use-postgres-for-sessions"

    def test_strips_diacritics_and_punctuation(self):
        assert slugify("Café: naïve résumé!") == "cafe-naive-resume"

    def test_collapses_hyphens(self):
        assert slugify("a -- b   c") == "a-b-c"

    def test_truncates(self):
        slug = slugify("word " * 40)
        assert len(slug) <= 80
        assert not slug.endswith("-")

    def test_empty(self):
        assert slugify("!!!") == "untitled"

    def test_generate_id(self):
        assert generate_id(MemoryType.GOTCHA, "Async Timeouts") == "gotcha-async-timeouts"


class TestIds:
    def test_collision_suffixes(self):
        taken = {"decision-x", "decision-x-1"}
        assert resolve_collision("decision-x", taken) == "decision-x-2"
        assert resolve_collision("decision-y", taken) == "decision-y"

    def test_parse_id(self):
        assert parse_id("learning-retry-with-backoff") == (MemoryType.LEARNING, "retry-with-backoff")
        assert parse_id("note-whatever") is None
        assert parse_id("gotcha-Bad_Slug") is None
        assert parse_id("gotcha-") is None

    def test_with_type(self):
        assert with_type("breadcrumb-fix-login", MemoryType.LEARNING) == "learning-fix-login"


class TestValidation:
    def test_build_memory(self):
        memory = build_memory({
            "type": "gotcha",
            "title": "  Mutable default args ",
            "content": "def f(x=[]) shares x",
            "tags": ["python"],
            "severity": "high",
            "scope": "project",
        })
        assert memory.type is MemoryType.GOTCHA
        assert memory.title == "Mutable default args"
        assert memory.severity is Severity.HIGH
        assert memory.scope is Scope.PROJECT

    def test_collects_every_error(self):
        with pytest.raises(ValidationFailure) as exc:
            build_memory({"type": "note", "title": " ", "content": "", "tags": [""], "severity": "meh"})
        fields = {e.field for e in exc.value.errors}
        assert fields == {"type", "title", "content", "tags", "severity"}

    def test_id_prefix_must_match_type(self):
        memory = Memory(type=MemoryType.DECISION, title="T", content="c", id="learning-t")
        with pytest.raises(ValidationFailure, match="does not match"):
            validate_memory(memory)

    def test_malformed_id(self):
        memory = Memory(type=MemoryType.DECISION, title="T", content="c", id="decision-Not Valid")
        with pytest.raises(ValidationFailure, match="id"):
            validate_memory(memory)

    def test_timestamps(self):
        assert is_valid_timestamp("2026-01-02T03:04:05Z")
        assert is_valid_timestamp("2026-01-02T03:04:05+00:00")
        assert not is_valid_timestamp("yesterday")
        memory = Memory(type=MemoryType.HUB, title="T", content="c", created="soon")
        with pytest.raises(ValidationFailure, match="created"):
            validate_memory(memory)


class TestRecordFiles:
    def test_serialise_uses_plain_values(self):
        memory = Memory(
            type=MemoryType.GOTCHA,
            title="Flaky clock",
            content="\nUse monotonic time.\n",
            id="gotcha-flaky-clock",
            tags=["time"],
            scope=Scope.PROJECT,
            severity=Severity.CRITICAL,
            created="2026-01-01T00:00:00+00:00",
            updated="2026-01-01T00:00:00+00:00",
        )
        post = frontmatter.loads(records.serialise(memory))
        assert post["type"] == "gotcha"
        assert post["severity"] == "critical"
        assert post["scope"] == "project"
        assert post.content == "Use monotonic time."
        assert "links" not in post.metadata

    def test_parse_normalises_yaml_timestamps(self):
        text = "---\ntype: learning\ntitle: Dates\ncreated: 2026-01-01 10:00:00\n---\nbody\n"
        memory = records.parse(text, fallback_id="learning-dates")
        assert isinstance(memory.created, str)
        assert memory.created.startswith("2026-01-01")
        assert memory.id == "learning-dates"

    def test_parse_rejects_unknown_type(self):
        with pytest.raises(records.RecordParseError):
            records.parse("---\ntype: note\ntitle: x\n---\nbody")

    def test_breadcrumbs_are_temporary(self, tmp_path: Path):
        memory = Memory(type=MemoryType.BREADCRUMB, title="B", content="trail", id="breadcrumb-b")
        path = records.save(tmp_path, memory)
        assert path == tmp_path / "temporary" / "breadcrumb-b.md"
        assert records.load(path).content == "trail"

    def test_try_load_skips_garbage(self, tmp_path: Path):
        bad = tmp_path / "permanent" / "gotcha-bad.md"
        bad.parent.mkdir()
        bad.write_text("---\ntitle: [unclosed\n---\n")
        assert records.try_load(bad) is None
        assert records.try_load(tmp_path / "permanent" / "missing.md") is None
