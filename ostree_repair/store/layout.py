from __future__ import annotations

import configparser
import os
from pathlib import Path

from ostree_repair.core.errors import StoreLayoutError
from ostree_repair.core.model import Store, StoreMode
from ostree_repair.core.paths import ensure_within_root


REPO_CONFIG_FILENAME = "config"
REPO_LOCK_FILENAME = ".lock"
SYSROOT_REPO_RELPATH = Path("ostree") / "repo"
SYSROOT_LOCK_RELPATH = Path("ostree") / "lock"
DEFAULT_MODE = StoreMode.BARE


def read_store_mode(repo_path: Path) -> StoreMode:
    """Read ``[core] mode`` from the repository config (OSTree defaults to bare)."""

    config_path = repo_path / REPO_CONFIG_FILENAME
    parser = configparser.ConfigParser(interpolation=None)
    try:
        with config_path.open("r", encoding="utf-8") as f:
            parser.read_file(f)
    except FileNotFoundError as e:
        raise StoreLayoutError(f"not an OSTree repository (no {REPO_CONFIG_FILENAME}): {repo_path}") from e
    except (OSError, UnicodeDecodeError, configparser.Error) as e:
        raise StoreLayoutError(f"unreadable repository config {config_path}: {e}") from e

    raw = parser.get("core", "mode", fallback=DEFAULT_MODE.value)
    try:
        return StoreMode.parse(raw)
    except ValueError as e:
        raise StoreLayoutError(str(e)) from e


def open_store(*, repo: Path | None = None, sysroot: Path | None = None) -> Store:
    """Resolve the target store, either directly or from the sysroot that owns it."""

    if (repo is None) == (sysroot is None):
        raise StoreLayoutError("exactly one of repo or sysroot must be given")

    root: Path | None = None
    if sysroot is not None:
        try:
            root = sysroot.resolve(strict=True)
        except OSError as e:
            raise StoreLayoutError(f"sysroot does not exist: {sysroot}") from e
        candidate = root / SYSROOT_REPO_RELPATH
        lock_path = root / SYSROOT_LOCK_RELPATH
    else:
        assert repo is not None
        candidate = repo

    try:
        path = candidate.resolve(strict=True)
    except OSError as e:
        raise StoreLayoutError(f"repository does not exist: {candidate}") from e
    if not path.is_dir():
        raise StoreLayoutError(f"repository is not a directory: {path}")

    if root is not None:
        try:
            ensure_within_root(root, path)
        except ValueError as e:
            raise StoreLayoutError(str(e)) from e
    else:
        lock_path = path / REPO_LOCK_FILENAME

    mode = read_store_mode(path)
    return Store(
        path=path,
        mode=mode,
        owner_uid=os.stat(path).st_uid,
        lock_path=lock_path,
        sysroot=root,
    )
