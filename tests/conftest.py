"""Shared fixtures: deterministic embedding providers and scope directories."""

from __future__ import annotations

import re
from pathlib import Path

import pytest

from cairn.config import CairnConfig
from cairn.store.store import MemoryStore
from cairn.types import Memory, MemoryType, Scope


class KeywordProvider:
    """Bag-of-words embedding over a fixed vocabulary. Counts every call."""

    VOCAB = (
        "python", "async", "database", "cache", "deploy",
        "migration", "test", "auth", "token", "timeout",
    )

    def __init__(self) -> None:
        self.calls: list[str] = []

    @property
    def name(self) -> str:
        return "keyword"

    async def generate(self, text: str) -> list[float]:
        self.calls.append(text)
        words = re.findall(r"[a-z]+", text.lower())
        return [float(words.count(w)) for w in self.VOCAB]


class FailingProvider:
    def __init__(self) -> None:
        self.calls = 0

    @property
    def name(self) -> str:
        return "fail"

    async def generate(self, text: str) -> list[float]:
        self.calls += 1
        raise RuntimeError("embedding backend unavailable")


def make_memory(type: MemoryType, title: str, content: str, **kwargs) -> Memory:
    return Memory(type=type, title=title, content=content, **kwargs)


@pytest.fixture
def provider() -> KeywordProvider:
    return KeywordProvider()


@pytest.fixture
def scope_dir(tmp_path: Path) -> Path:
    return tmp_path / "memory"


@pytest.fixture
def store(scope_dir: Path) -> MemoryStore:
    return MemoryStore(scope_dir, Scope.GLOBAL)


@pytest.fixture
def git_project(tmp_path: Path) -> Path:
    root = tmp_path / "repo"
    (root / ".git").mkdir(parents=True)
    return root


@pytest.fixture
def config(tmp_path: Path) -> CairnConfig:
    return CairnConfig(memory_dir=tmp_path / "global")
