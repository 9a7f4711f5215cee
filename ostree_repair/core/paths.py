from __future__ import annotations

from pathlib import Path


def is_within(root: Path, target: Path) -> bool:
    """True iff target resolves to root or to something nested under it."""

    root_resolved = root.resolve()
    try:
        target_resolved = target.resolve()
    except (OSError, RuntimeError):
        return False
    return target_resolved == root_resolved or root_resolved in target_resolved.parents


def ensure_within_root(root: Path, target: Path) -> None:
    if not is_within(root, target):
        raise ValueError(f"resolved path escapes store root: {target}")


def safe_relpath(root: Path, p: Path) -> str:
    try:
        return p.resolve().relative_to(root.resolve()).as_posix()
    except ValueError:
        return p.as_posix()
