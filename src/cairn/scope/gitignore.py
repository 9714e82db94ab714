"""Git detection and .gitignore upkeep for the local tier."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger(__name__)

MEMORY_LOCAL_PATTERN = ".cairn/memory/local/"
GITIGNORE_HEADER = "# Generated by cairn\n"
SECTION_COMMENT = "cairn local memories"


def find_git_root(start: Path) -> Path | None:
    """Walk up from start, return the nearest directory containing .git."""
    p = Path(start).resolve()
    for candidate in (p, *p.parents):
        if (candidate / ".git").exists():
            return candidate
    return None


def is_in_git_repository(path: Path) -> bool:
    return find_git_root(path) is not None


@dataclass
class GitignoreResult:
    created: bool = False
    modified: bool = False
    already_present: bool = False
    skipped: bool = False
    reason: str | None = None


def _patterns(text: str) -> list[str]:
    lines = (line.strip() for line in text.splitlines())
    return [line for line in lines if line and not line.startswith("#")]


def is_path_gitignored(project_root: Path, pattern: str = MEMORY_LOCAL_PATTERN) -> bool:
    """Check whether pattern appears verbatim as a line in .gitignore."""
    gitignore = project_root / ".gitignore"
    if not gitignore.exists():
        return False
    return pattern.strip() in _patterns(gitignore.read_text(encoding="utf-8"))


def add_to_gitignore(project_root: Path, pattern: str, comment: str | None = None) -> None:
    """Append pattern (optionally under a comment) to .gitignore."""
    gitignore = project_root / ".gitignore"
    existing = gitignore.read_text(encoding="utf-8") if gitignore.exists() else ""
    block = ""
    if existing and not existing.endswith("\n"):
        block += "\n"
    if comment:
        block += f"\n# {comment}\n"
    block += f"{pattern}\n"
    with gitignore.open("a", encoding="utf-8") as f:
        f.write(block)


def ensure_local_scope_gitignored(project_root: Path) -> GitignoreResult:
    """Make sure the local memory directory is never committed.

    Creates .gitignore when absent, appends the pattern when missing and
    leaves the file untouched when the pattern is already there. Directories
    that are not git repositories are skipped.
    """
    if not (project_root / ".git").exists():
        return GitignoreResult(skipped=True, reason="Not a git repository")

    gitignore = project_root / ".gitignore"
    result = GitignoreResult()
    if not gitignore.exists():
        gitignore.write_text(GITIGNORE_HEADER, encoding="utf-8")
        result.created = True

    if is_path_gitignored(project_root):
        result.already_present = True
        return result

    add_to_gitignore(project_root, MEMORY_LOCAL_PATTERN, SECTION_COMMENT)
    result.modified = True
    logger.info("Added %s to %s", MEMORY_LOCAL_PATTERN, gitignore)
    return result
