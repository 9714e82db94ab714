"""Resolve a storage tier to a concrete directory.

Four tiers, in precedence order: enterprise > local > project > global.
An explicitly requested tier is honoured outright if it is legal; otherwise
the default is chosen as forced > configured > inferred from git.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Literal

from cairn.errors import FieldError, ScopeUnavailable, ValidationFailure
from cairn.scope.gitignore import ensure_local_scope_gitignored, find_git_root
from cairn.types import SCOPE_PRECEDENCE, MemoryType, Scope

if TYPE_CHECKING:
    from cairn.config import CairnConfig

logger = logging.getLogger(__name__)

PROJECT_SUBDIR = Path(".cairn") / "memory"
LOCAL_SUBDIR = "local"

_PERSONAL_MARKERS = ("my personal", "private", "do not share", "confidential")


@dataclass
class ScopeContext:
    """Everything tier resolution depends on."""

    cwd: Path
    global_dir: Path
    enterprise_enabled: bool = False
    enterprise_path: Path | None = None
    configured_default: Scope | None = None

    @classmethod
    def from_config(cls, config: CairnConfig, cwd: Path | None = None) -> ScopeContext:
        return cls(
            cwd=Path(cwd or Path.cwd()),
            global_dir=config.memory_dir,
            enterprise_enabled=config.scopes.enterprise_enabled,
            enterprise_path=config.scopes.enterprise_path,
            configured_default=config.scopes.default,
        )


@dataclass
class ScopeResolution:
    scope: Scope
    path: Path
    reason: str = ""


@dataclass
class DefaultScope:
    scope: Scope
    source: Literal["forced", "config", "git-detection", "fallback"]
    reason: str


def parse_scope(value: Scope | str) -> Scope:
    """Convert user input to a Scope, rejecting unknown tiers."""
    if isinstance(value, Scope):
        return value
    try:
        return Scope(str(value).strip().lower())
    except ValueError:
        allowed = ", ".join(s.value for s in Scope)
        raise ValidationFailure(
            errors=[FieldError("scope", f"scope must be one of: {allowed} (got {value!r})")]
        ) from None


def project_root(cwd: Path) -> Path:
    """Git root above cwd, or cwd itself outside a repository."""
    return find_git_root(cwd) or Path(cwd).resolve()


def select_default_scope(
    cwd: Path,
    configured: Scope | None = None,
    force_default: Scope | None = None,
) -> DefaultScope:
    """Pick the tier used when the caller did not ask for one."""
    if force_default:
        return DefaultScope(force_default, "forced", "Forced default scope")
    if configured:
        return DefaultScope(configured, "config", f"Configured default scope: {configured.value}")
    if find_git_root(cwd) is not None:
        return DefaultScope(
            Scope.PROJECT, "git-detection", "In git repository, defaulting to project scope"
        )
    return DefaultScope(
        Scope.GLOBAL, "fallback", "Not in git repository, defaulting to global scope"
    )


class ScopeResolver:
    """Maps tiers to directories for one working context."""

    def __init__(self, context: ScopeContext) -> None:
        self.context = context
        self._gitignore_checked: set[Path] = set()

    def default_scope(self, force_default: Scope | str | None = None) -> DefaultScope:
        forced = parse_scope(force_default) if force_default else None
        return select_default_scope(self.context.cwd, self.context.configured_default, forced)

    def resolve(
        self,
        requested: Scope | str | None = None,
        force_default: Scope | str | None = None,
    ) -> ScopeResolution:
        """Resolve a tier to an absolute directory or raise ScopeUnavailable."""
        if requested is None:
            default = self.default_scope(force_default)
            logger.debug("Default scope %s (%s)", default.scope.value, default.source)
            resolution = self.resolve(default.scope)
            resolution.reason = default.reason
            return resolution

        scope = parse_scope(requested)
        if scope is Scope.ENTERPRISE:
            return ScopeResolution(scope, self._enterprise_path(), "Requested enterprise scope")
        if scope is Scope.LOCAL:
            root = project_root(self.context.cwd)
            self._ensure_gitignored(root)
            return ScopeResolution(scope, root / PROJECT_SUBDIR / LOCAL_SUBDIR, "Requested local scope")
        if scope is Scope.PROJECT:
            root = project_root(self.context.cwd)
            return ScopeResolution(scope, root / PROJECT_SUBDIR, "Requested project scope")
        return ScopeResolution(scope, Path(self.context.global_dir), "Requested global scope")

    def get_all_accessible_scopes(self) -> list[Scope]:
        """Tiers usable in this context, enterprise first, global last."""
        scopes = []
        for scope in SCOPE_PRECEDENCE:
            if scope is Scope.ENTERPRISE:
                try:
                    self._enterprise_path()
                except ScopeUnavailable:
                    continue
            scopes.append(scope)
        return scopes

    def _enterprise_path(self) -> Path:
        ctx = self.context
        if not ctx.enterprise_enabled:
            raise ScopeUnavailable(
                "Enterprise scope is disabled. Enable it with "
                "CAIRN_ENTERPRISE_ENABLED=1 or [scopes] enterprise_enabled = true"
            )
        if not ctx.enterprise_path:
            raise ScopeUnavailable(
                "Enterprise scope is enabled but no path is configured. "
                "Set CAIRN_ENTERPRISE_PATH or [scopes] enterprise_path"
            )
        path = Path(ctx.enterprise_path)
        if not path.exists():
            raise ScopeUnavailable(f"Enterprise path does not exist: {path}")
        if not path.is_dir():
            raise ScopeUnavailable(f"Enterprise path is not a directory: {path}")
        return path

    def _ensure_gitignored(self, root: Path) -> None:
        if root in self._gitignore_checked:
            return
        self._gitignore_checked.add(root)
        result = ensure_local_scope_gitignored(root)
        if result.skipped:
            logger.debug("Skipped .gitignore update for %s: %s", root, result.reason)


def scope_warnings(scope: Scope, memory_type: MemoryType, content: str) -> list[str]:
    """Advisory notes when a record looks misplaced in its tier."""
    warnings = []
    lowered = content.lower()
    if any(marker in lowered for marker in _PERSONAL_MARKERS) and scope in (
        Scope.PROJECT,
        Scope.ENTERPRISE,
    ):
        warnings.append(
            "Content appears to be personal but scope is shared. Consider using local scope."
        )
    if memory_type is MemoryType.BREADCRUMB and scope is not Scope.LOCAL:
        warnings.append("Breadcrumbs are typically stored in local scope for privacy.")
    if memory_type is MemoryType.ARTIFACT and scope is Scope.LOCAL:
        warnings.append("Artifacts in local scope won't be shared. Consider project or global scope.")
    return warnings
