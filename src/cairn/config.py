"""Configuration loading from environment variables and cairn.toml."""

from __future__ import annotations

import logging
import os
import sys
from dataclasses import dataclass, field

if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib
from pathlib import Path

from cairn.types import MemoryType, Scope

logger = logging.getLogger(__name__)

_DEFAULT_MEMORY_DIR = Path.home() / ".cairn" / "memory"
_CONFIG_FILENAME = "cairn.toml"


@dataclass
class ScopeConfig:
    """Storage tier enablement and defaults."""

    enterprise_enabled: bool = False
    enterprise_path: Path | None = None
    default: Scope | None = None


@dataclass
class SearchConfig:
    """Semantic search thresholds."""

    threshold: float = 0.5
    limit: int = 20
    auto_link_threshold: float = 0.85
    auto_link_limit: int = 5


@dataclass
class TypeInjectionConfig:
    """Relevance policy for one record type."""

    enabled: bool
    threshold: float
    limit: int


def _default_types() -> dict[MemoryType, TypeInjectionConfig]:
    return {
        MemoryType.GOTCHA: TypeInjectionConfig(enabled=True, threshold=0.2, limit=5),
        MemoryType.DECISION: TypeInjectionConfig(enabled=False, threshold=0.35, limit=3),
        MemoryType.LEARNING: TypeInjectionConfig(enabled=False, threshold=0.4, limit=2),
    }


def _default_multipliers() -> dict[str, float]:
    return {"read": 1.0, "edit": 0.8, "write": 0.8, "execute": 1.2}


@dataclass
class InjectionConfig:
    """Contextual relevance engine configuration."""

    enabled: bool = True
    types: dict[MemoryType, TypeInjectionConfig] = field(default_factory=_default_types)
    action_multipliers: dict[str, float] = field(default_factory=_default_multipliers)


@dataclass
class CairnConfig:
    """Top-level Cairn configuration."""

    memory_dir: Path = _DEFAULT_MEMORY_DIR
    log_level: str = "INFO"
    scopes: ScopeConfig = field(default_factory=ScopeConfig)
    search: SearchConfig = field(default_factory=SearchConfig)
    injection: InjectionConfig = field(default_factory=InjectionConfig)


def _as_bool(value: object, default: bool) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in ("1", "true", "yes", "on"):
            return True
        if lowered in ("0", "false", "no", "off"):
            return False
    return default


def _as_number(value: object, default: float) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float, str)):
        return default
    try:
        return float(value)
    except ValueError:
        return default


def _threshold(value: object, default: float) -> float:
    return max(0.0, min(1.0, _as_number(value, default)))


def _limit(value: object, default: int) -> int:
    return max(1, int(_as_number(value, default)))


def _parse_scope(value: object) -> Scope | None:
    if not value:
        return None
    try:
        return Scope(str(value).strip().lower())
    except ValueError:
        logger.warning("Ignoring invalid default scope in config: %r", value)
        return None


def _parse_injection(data: dict) -> InjectionConfig:
    defaults = InjectionConfig()
    types_data = data.get("types", {})
    types: dict[MemoryType, TypeInjectionConfig] = {}

    for type_name, type_data in types_data.items():
        try:
            memory_type = MemoryType(type_name)
        except ValueError:
            logger.warning("Ignoring injection config for unknown type: %s", type_name)
            continue
        base = defaults.types.get(
            memory_type, TypeInjectionConfig(enabled=False, threshold=0.5, limit=3)
        )
        types[memory_type] = TypeInjectionConfig(
            enabled=_as_bool(type_data.get("enabled"), base.enabled),
            threshold=_threshold(type_data.get("threshold"), base.threshold),
            limit=_limit(type_data.get("limit"), base.limit),
        )
    for memory_type, base in defaults.types.items():
        types.setdefault(memory_type, base)

    multipliers = dict(defaults.action_multipliers)
    for action, value in data.get("multipliers", {}).items():
        multipliers[action.lower()] = _as_number(value, multipliers.get(action.lower(), 1.0))

    return InjectionConfig(
        enabled=_as_bool(data.get("enabled"), defaults.enabled),
        types=types,
        action_multipliers=multipliers,
    )


def load_config(config_path: Path | None = None) -> CairnConfig:
    """Load configuration from environment variables and optional cairn.toml.

    Priority: environment variables > cairn.toml > defaults.
    """
    file_data: dict = {}
    if config_path and config_path.exists():
        file_data = tomllib.loads(config_path.read_text())
    else:
        # Search current dir and ~/.cairn/
        for candidate in [Path.cwd() / _CONFIG_FILENAME, Path.home() / ".cairn" / _CONFIG_FILENAME]:
            if candidate.exists():
                file_data = tomllib.loads(candidate.read_text())
                break

    scopes_data = file_data.get("scopes", {})
    search_data = file_data.get("search", {})
    defaults = SearchConfig()

    enterprise_path = os.getenv("CAIRN_ENTERPRISE_PATH", scopes_data.get("enterprise_path"))

    config = CairnConfig(
        memory_dir=Path(
            os.getenv("CAIRN_MEMORY_DIR", file_data.get("memory_dir", str(_DEFAULT_MEMORY_DIR)))
        ).expanduser(),
        log_level=os.getenv("CAIRN_LOG_LEVEL", file_data.get("log_level", "INFO")),
        scopes=ScopeConfig(
            enterprise_enabled=_as_bool(
                os.getenv("CAIRN_ENTERPRISE_ENABLED", scopes_data.get("enterprise_enabled")),
                False,
            ),
            enterprise_path=Path(enterprise_path).expanduser() if enterprise_path else None,
            default=_parse_scope(os.getenv("CAIRN_DEFAULT_SCOPE", scopes_data.get("default"))),
        ),
        search=SearchConfig(
            threshold=_threshold(search_data.get("threshold"), defaults.threshold),
            limit=_limit(search_data.get("limit"), defaults.limit),
            auto_link_threshold=_threshold(
                search_data.get("auto_link_threshold"), defaults.auto_link_threshold
            ),
            auto_link_limit=_limit(search_data.get("auto_link_limit"), defaults.auto_link_limit),
        ),
        injection=_parse_injection(file_data.get("injection", {})),
    )
    return config
