"""Eviction of processes that hold the store open.

The process table is a point-in-time snapshot: every call re-enumerates it.
Processes that exit while being inspected or signalled are skipped.

Holders are found by reading every descriptor link under ``/proc/<pid>/fd``.
``psutil.Process.open_files()`` lists regular files only, and libostree users
mostly keep directory descriptors on the repository and ``objects/``.
"""

from __future__ import annotations

import os
import signal
from dataclasses import dataclass
from pathlib import Path

import psutil

from ostree_repair.core import console
from ostree_repair.core.paths import is_within


PHASE = "evict"
PROC_ROOT = Path("/proc")
_DELETED_SUFFIX = " (deleted)"


@dataclass(frozen=True)
class StoreHolder:
    pid: int
    name: str
    paths: tuple[str, ...]


def held_paths(pid: int, *, proc_root: Path | None = None) -> list[str]:
    """Targets of every descriptor pid holds that names a filesystem path.

    Raises psutil.NoSuchProcess if the process went away and
    psutil.AccessDenied if its descriptor table is not readable.
    """

    fd_dir = (proc_root or PROC_ROOT) / str(pid) / "fd"
    targets: list[str] = []
    try:
        with os.scandir(fd_dir) as it:
            for entry in it:
                try:
                    target = os.readlink(entry.path)
                except FileNotFoundError:
                    # descriptor closed since the listing
                    continue
                if not target.startswith("/"):
                    # pipe:[...], socket:[...], anon_inode:...
                    continue
                if target.endswith(_DELETED_SUFFIX):
                    target = target[: -len(_DELETED_SUFFIX)]
                targets.append(target)
    except FileNotFoundError:
        raise psutil.NoSuchProcess(pid) from None
    except PermissionError:
        raise psutil.AccessDenied(pid) from None
    return targets


def _scan(store_path: Path, me: int) -> list[tuple[psutil.Process, StoreHolder]]:
    root = store_path.resolve()
    found: list[tuple[psutil.Process, StoreHolder]] = []
    for proc in psutil.process_iter():
        if proc.pid == me:
            continue
        try:
            paths = sorted({p for p in held_paths(proc.pid) if is_within(root, Path(p))})
            if not paths:
                continue
            found.append((proc, StoreHolder(pid=proc.pid, name=proc.name(), paths=tuple(paths))))
        except (psutil.NoSuchProcess, psutil.ZombieProcess):
            continue
        except psutil.AccessDenied:
            console.warn(PHASE, f"cannot inspect open descriptors of pid {proc.pid} (access denied)")
    found.sort(key=lambda item: item[1].pid)
    return found


def find_holders(store_path: Path, *, self_pid: int | None = None) -> list[StoreHolder]:
    """Processes other than ourselves with a descriptor on store_path or anything under it."""

    me = os.getpid() if self_pid is None else self_pid
    return [holder for _, holder in _scan(store_path, me)]


def evict(store_path: Path, sig: int, *, self_pid: int | None = None) -> list[int]:
    """Send sig to every process holding store_path open; return the pids signalled."""

    me = os.getpid() if self_pid is None else self_pid
    signalled: list[int] = []
    for proc, holder in _scan(store_path, me):
        try:
            # psutil refuses to signal a pid that was reused since enumeration.
            proc.send_signal(sig)
        except (psutil.NoSuchProcess, psutil.ZombieProcess):
            continue
        except psutil.AccessDenied:
            console.warn(PHASE, f"not permitted to signal pid {holder.pid} ({holder.name})")
            continue
        console.info(PHASE, f"sent {signal.Signals(sig).name} to pid {holder.pid} ({holder.name})")
        signalled.append(holder.pid)
    return signalled
