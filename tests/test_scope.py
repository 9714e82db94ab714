"""Tests for storage tier resolution and local-tier .gitignore upkeep."""

from __future__ import annotations

from pathlib import Path

import pytest

from cairn.config import CairnConfig, ScopeConfig
from cairn.errors import ScopeUnavailable, ValidationFailure
from cairn.scope.gitignore import (
    MEMORY_LOCAL_PATTERN,
    ensure_local_scope_gitignored,
    find_git_root,
    is_path_gitignored,
)
from cairn.scope.resolver import (
    ScopeContext,
    ScopeResolver,
    scope_warnings,
    select_default_scope,
)
from cairn.types import MemoryType, Scope


def resolver_for(cwd: Path, tmp_path: Path, **kwargs) -> ScopeResolver:
    return ScopeResolver(ScopeContext(cwd=cwd, global_dir=tmp_path / "global", **kwargs))


class TestDefaultScope:
    def test_git_repo_defaults_to_project(self, git_project: Path, tmp_path: Path):
        resolution = resolver_for(git_project, tmp_path).resolve()
        assert resolution.scope is Scope.PROJECT
        assert resolution.path == git_project.resolve() / ".cairn" / "memory"

    def test_nested_directory_finds_repo_root(self, git_project: Path, tmp_path: Path):
        nested = git_project / "src" / "pkg"
        nested.mkdir(parents=True)
        resolution = resolver_for(nested, tmp_path).resolve()
        assert resolution.path == git_project.resolve() / ".cairn" / "memory"

    def test_outside_repo_defaults_to_global(self, tmp_path: Path):
        plain = tmp_path / "plain"
        plain.mkdir()
        resolution = resolver_for(plain, tmp_path).resolve()
        assert resolution.scope is Scope.GLOBAL
        assert resolution.path == tmp_path / "global"

    def test_precedence_forced_then_config_then_git(self, git_project: Path):
        assert select_default_scope(git_project).source == "git-detection"
        configured = select_default_scope(git_project, configured=Scope.GLOBAL)
        assert (configured.scope, configured.source) == (Scope.GLOBAL, "config")
        forced = select_default_scope(git_project, configured=Scope.GLOBAL, force_default=Scope.LOCAL)
        assert (forced.scope, forced.source) == (Scope.LOCAL, "forced")

    def test_fallback_source(self, tmp_path: Path):
        assert select_default_scope(tmp_path).source == "fallback"

    def test_configured_default_used_by_resolver(self, git_project: Path, tmp_path: Path):
        resolver = resolver_for(git_project, tmp_path, configured_default=Scope.GLOBAL)
        assert resolver.resolve().scope is Scope.GLOBAL

    def test_explicit_request_wins_over_defaults(self, git_project: Path, tmp_path: Path):
        resolver = resolver_for(git_project, tmp_path, configured_default=Scope.PROJECT)
        assert resolver.resolve("global").scope is Scope.GLOBAL


class TestTierPaths:
    def test_local_tier_lives_under_project_tier(self, git_project: Path, tmp_path: Path):
        resolution = resolver_for(git_project, tmp_path).resolve(Scope.LOCAL)
        assert resolution.path == git_project.resolve() / ".cairn" / "memory" / "local"

    def test_project_tier_without_repo_uses_cwd(self, tmp_path: Path):
        plain = tmp_path / "plain"
        plain.mkdir()
        resolution = resolver_for(plain, tmp_path).resolve(Scope.PROJECT)
        assert resolution.path == plain.resolve() / ".cairn" / "memory"

    def test_unknown_tier_is_validation_failure(self, tmp_path: Path):
        with pytest.raises(ValidationFailure):
            resolver_for(tmp_path, tmp_path).resolve("planet")

    def test_from_config(self, tmp_path: Path):
        config = CairnConfig(
            memory_dir=tmp_path / "g",
            scopes=ScopeConfig(enterprise_enabled=True, enterprise_path=tmp_path / "corp"),
        )
        ctx = ScopeContext.from_config(config, tmp_path)
        assert ctx.global_dir == tmp_path / "g"
        assert ctx.enterprise_enabled is True
        assert ctx.enterprise_path == tmp_path / "corp"


class TestEnterpriseGate:
    def test_disabled(self, tmp_path: Path):
        with pytest.raises(ScopeUnavailable, match="disabled"):
            resolver_for(tmp_path, tmp_path).resolve(Scope.ENTERPRISE)

    def test_enabled_without_path(self, tmp_path: Path):
        resolver = resolver_for(tmp_path, tmp_path, enterprise_enabled=True)
        with pytest.raises(ScopeUnavailable, match="path"):
            resolver.resolve(Scope.ENTERPRISE)

    def test_path_must_exist(self, tmp_path: Path):
        missing = tmp_path / "corp"
        resolver = resolver_for(tmp_path, tmp_path, enterprise_enabled=True, enterprise_path=missing)
        with pytest.raises(ScopeUnavailable, match="does not exist"):
            resolver.resolve(Scope.ENTERPRISE)

    def test_configured_path_used_verbatim(self, tmp_path: Path):
        corp = tmp_path / "corp"
        corp.mkdir()
        resolver = resolver_for(tmp_path, tmp_path, enterprise_enabled=True, enterprise_path=corp)
        assert resolver.resolve(Scope.ENTERPRISE).path == corp


class TestAccessibleScopes:
    def test_without_enterprise(self, tmp_path: Path):
        scopes = resolver_for(tmp_path, tmp_path).get_all_accessible_scopes()
        assert scopes == [Scope.LOCAL, Scope.PROJECT, Scope.GLOBAL]

    def test_with_enterprise(self, tmp_path: Path):
        corp = tmp_path / "corp"
        corp.mkdir()
        resolver = resolver_for(tmp_path, tmp_path, enterprise_enabled=True, enterprise_path=corp)
        assert resolver.get_all_accessible_scopes() == [
            Scope.ENTERPRISE, Scope.LOCAL, Scope.PROJECT, Scope.GLOBAL,
        ]

    def test_enterprise_enabled_but_missing_is_skipped(self, tmp_path: Path):
        resolver = resolver_for(
            tmp_path, tmp_path, enterprise_enabled=True, enterprise_path=tmp_path / "nope"
        )
        assert Scope.ENTERPRISE not in resolver.get_all_accessible_scopes()


class TestGitignore:
    def test_find_git_root(self, git_project: Path, tmp_path: Path):
        assert find_git_root(git_project) == git_project.resolve()
        assert find_git_root(tmp_path) is None

    def test_skips_non_repo(self, tmp_path: Path):
        result = ensure_local_scope_gitignored(tmp_path)
        assert result.skipped is True
        assert not (tmp_path / ".gitignore").exists()

    def test_creates_gitignore(self, git_project: Path):
        result = ensure_local_scope_gitignored(git_project)
        assert result.created is True
        assert result.modified is True
        assert MEMORY_LOCAL_PATTERN in (git_project / ".gitignore").read_text()

    def test_appends_to_existing(self, git_project: Path):
        (git_project / ".gitignore").write_text("node_modules/")
        result = ensure_local_scope_gitignored(git_project)
        assert result.created is False
        assert result.modified is True
        lines = (git_project / ".gitignore").read_text().splitlines()
        assert lines[0] == "node_modules/"
        assert MEMORY_LOCAL_PATTERN in lines

    def test_noop_when_present(self, git_project: Path):
        gitignore = git_project / ".gitignore"
        gitignore.write_text(f"{MEMORY_LOCAL_PATTERN}  \r\nbuild/\r\n")
        before = gitignore.read_text()
        result = ensure_local_scope_gitignored(git_project)
        assert result.already_present is True
        assert result.modified is False
        assert gitignore.read_text() == before

    def test_commented_pattern_does_not_count(self, git_project: Path):
        (git_project / ".gitignore").write_text(f"# {MEMORY_LOCAL_PATTERN}\n")
        assert is_path_gitignored(git_project) is False

    def test_local_resolution_updates_gitignore_once(self, git_project: Path, tmp_path: Path):
        resolver = resolver_for(git_project, tmp_path)
        resolver.resolve(Scope.LOCAL)
        gitignore = git_project / ".gitignore"
        assert is_path_gitignored(git_project.resolve())
        gitignore.unlink()
        resolver.resolve(Scope.LOCAL)
        assert not gitignore.exists()

    def test_project_resolution_leaves_gitignore_alone(self, git_project: Path, tmp_path: Path):
        resolver_for(git_project, tmp_path).resolve(Scope.PROJECT)
        assert not (git_project / ".gitignore").exists()


class TestScopeWarnings:
    def test_personal_content_in_shared_tier(self):
        warnings = scope_warnings(Scope.PROJECT, MemoryType.LEARNING, "My personal API notes")
        assert any("personal" in w for w in warnings)

    def test_breadcrumb_outside_local(self):
        assert scope_warnings(Scope.GLOBAL, MemoryType.BREADCRUMB, "was here")

    def test_artifact_in_local(self):
        assert scope_warnings(Scope.LOCAL, MemoryType.ARTIFACT, "snippet")

    def test_no_warnings_for_ordinary_record(self):
        assert scope_warnings(Scope.PROJECT, MemoryType.DECISION, "Use Postgres") == []
