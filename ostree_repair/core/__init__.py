"""Lowest-level ostree_repair utilities.

Dependency direction rules:
- ostree_repair.core must not import ostree_repair.store, .repair or .commands
"""

from ostree_repair.core.checksum import is_checksum, normalize_checksum, sha256_bytes
from ostree_repair.core.model import (
	ActionKind,
	CommitInfo,
	DirTree,
	ObjectKind,
	ObjectName,
	RefSpec,
	RepairAction,
	RepairResult,
	Store,
	StoreMode,
)
from ostree_repair.core.paths import ensure_within_root, is_within, safe_relpath
from ostree_repair.core.report import encode_report

__all__ = [
	"ActionKind",
	"CommitInfo",
	"DirTree",
	"ObjectKind",
	"ObjectName",
	"RefSpec",
	"RepairAction",
	"RepairResult",
	"Store",
	"StoreMode",
	"encode_report",
	"ensure_within_root",
	"is_checksum",
	"is_within",
	"normalize_checksum",
	"safe_relpath",
	"sha256_bytes",
]
