"""Run configuration.

Layering: built-in defaults < ``[repair]`` table of a TOML file (``--config``)
< explicit command line flags.
"""

from __future__ import annotations

import re
import tomllib
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any

from ostree_repair.core.errors import ConfigError


DEFAULT_REMOTE = "eos"
DEFAULT_PARTIAL_REF_PATTERNS = (r"\.Locale/",)


@dataclass(frozen=True)
class RepairConfig:
    default_remote: str = DEFAULT_REMOTE
    lock_timeout_seconds: float = 600.0
    lock_retry_seconds: float = 1.0
    lock_progress_seconds: float = 60.0
    eviction_grace_seconds: float = 5.0
    cache_marker: Path | None = None  # None -> <store>/tmp/cache
    partial_ref_patterns: tuple[str, ...] = DEFAULT_PARTIAL_REF_PATTERNS

    def __post_init__(self) -> None:
        if not isinstance(self.default_remote, str) or not self.default_remote.strip():
            raise ConfigError("default_remote must be a non-empty string")
        if ":" in self.default_remote:
            raise ConfigError("default_remote must not contain ':'")
        for name in ("lock_timeout_seconds", "lock_retry_seconds", "lock_progress_seconds", "eviction_grace_seconds"):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, (int, float)) or value < 0:
                raise ConfigError(f"{name} must be a non-negative number")
        if self.lock_retry_seconds <= 0:
            raise ConfigError("lock_retry_seconds must be > 0")
        for pattern in self.partial_ref_patterns:
            try:
                re.compile(pattern)
            except re.error as e:
                raise ConfigError(f"invalid partial_ref_patterns entry {pattern!r}: {e}") from e

    def compiled_partial_patterns(self) -> list[re.Pattern[str]]:
        return [re.compile(p) for p in self.partial_ref_patterns]

    def with_overrides(self, **overrides: Any) -> "RepairConfig":
        """Return a copy with every non-None override applied."""
        changes = {k: v for k, v in overrides.items() if v is not None}
        return replace(self, **changes)


_FIELD_NAMES = frozenset(f.name for f in fields(RepairConfig))


def _coerce(key: str, value: Any) -> Any:
    if key == "cache_marker":
        if not isinstance(value, str) or not value:
            raise ConfigError("cache_marker must be a non-empty path string")
        return Path(value)
    if key == "partial_ref_patterns":
        if not isinstance(value, list) or not all(isinstance(x, str) for x in value):
            raise ConfigError("partial_ref_patterns must be a list of strings")
        return tuple(value)
    return value


def load_config(path: Path | None) -> RepairConfig:
    if path is None:
        return RepairConfig()
    try:
        raw = tomllib.loads(path.read_text(encoding="utf-8", errors="strict"))
    except FileNotFoundError as e:
        raise ConfigError(f"config file not found: {path}") from e
    except (OSError, UnicodeDecodeError, tomllib.TOMLDecodeError) as e:
        raise ConfigError(f"cannot read config file {path}: {e}") from e

    table = raw.get("repair", {})
    if not isinstance(table, dict):
        raise ConfigError("[repair] must be a table")
    unknown = sorted(set(table) - _FIELD_NAMES)
    if unknown:
        raise ConfigError(f"unknown [repair] keys: {', '.join(unknown)}")

    values = {k: _coerce(k, v) for k, v in table.items()}
    try:
        return RepairConfig(**values)
    except TypeError as e:
        raise ConfigError(str(e)) from e
