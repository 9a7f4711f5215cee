"""Sequencing of a full repair run.

States advance strictly in order::

    IDLE -> EVICTING -> LOCKING -> INDEXING -> REPAIRING_REFS
         -> MARKING_PARTIAL -> HEALING -> DONE

and any failure moves the run to FAILED. Ownership is verified before the
first destructive step (eviction); the lock is held from LOCKING until the
end of HEALING and released on every exit path.
"""

from __future__ import annotations

import enum
import os
import signal
import sys
import time
from pathlib import Path
from typing import Callable

from ostree_repair.config import RepairConfig
from ostree_repair.core import console
from ostree_repair.core.errors import (
    IllegalTransition,
    LivenessMarkerMissing,
    OwnershipMismatch,
    PrivilegeError,
    StoreWriteError,
)
from ostree_repair.core.model import ActionKind, ObjectKind, ObjectName, RepairResult, Store
from ostree_repair.core.report import build_report_payload, render_summary, write_report
from ostree_repair.repair.dangling import repair_dangling_refs
from ostree_repair.repair.evict import evict
from ostree_repair.repair.heal import heal_partial_refs
from ostree_repair.repair.index import ObjectIndex
from ostree_repair.repair.lock import RepoLock
from ostree_repair.repair.partial import mark_partial_commits
from ostree_repair.store.backend import StoreBackend


CACHE_MARKER_RELPATH = Path("tmp") / "cache"


class RepairState(enum.Enum):
    IDLE = "idle"
    EVICTING = "evicting"
    LOCKING = "locking"
    INDEXING = "indexing"
    REPAIRING_REFS = "repairing-refs"
    MARKING_PARTIAL = "marking-partial"
    HEALING = "healing"
    DONE = "done"
    FAILED = "failed"


_SEQUENCE = [
    RepairState.IDLE,
    RepairState.EVICTING,
    RepairState.LOCKING,
    RepairState.INDEXING,
    RepairState.REPAIRING_REFS,
    RepairState.MARKING_PARTIAL,
    RepairState.HEALING,
    RepairState.DONE,
]


def check_superuser(*, euid: int | None = None) -> None:
    uid = os.geteuid() if euid is None else euid
    if uid != 0:
        raise PrivilegeError("this tool must be run as root")


def check_ownership(store: Store, *, euid: int | None = None) -> None:
    uid = os.geteuid() if euid is None else euid
    if uid != store.owner_uid:
        raise OwnershipMismatch(
            f"repository {store.path} is owned by uid {store.owner_uid}, but running as uid {uid}"
        )


def cache_marker_path(store: Store, config: RepairConfig) -> Path:
    if config.cache_marker is not None:
        return config.cache_marker
    return store.path / CACHE_MARKER_RELPATH


def refresh_liveness_marker(marker: Path) -> None:
    """Bump the marker's mtime so the cache janitor leaves the store alone.

    A missing marker is never recreated: its absence may mean an unexpected layout.
    """

    try:
        os.utime(marker)
    except FileNotFoundError as e:
        raise LivenessMarkerMissing(f"cache liveness marker is missing: {marker}") from e
    except OSError as e:
        raise StoreWriteError(f"cannot refresh cache liveness marker {marker}: {e}") from e


class RepairOrchestrator:
    def __init__(
        self,
        store: Store,
        backend: StoreBackend,
        config: RepairConfig,
        *,
        evictor: Callable[[Path, int], list[int]] | None = None,
        sleep: Callable[[float], None] | None = None,
        euid: int | None = None,
    ) -> None:
        self.store = store
        self.backend = backend
        self.config = config
        self.evictor = evictor or evict
        self.sleep = sleep or time.sleep
        self.euid = euid
        self.index: ObjectIndex | None = None
        self._state = RepairState.IDLE

    @property
    def state(self) -> RepairState:
        return self._state

    def _advance(self, new_state: RepairState) -> None:
        if self._state is RepairState.FAILED:
            raise IllegalTransition(f"run already failed, cannot enter {new_state.value}")
        current = _SEQUENCE.index(self._state)
        if _SEQUENCE.index(new_state) != current + 1:
            raise IllegalTransition(f"cannot go from {self._state.value} to {new_state.value}")
        self._state = new_state
        console.info(None, f"phase: {new_state.value}")

    def _preflight(self) -> None:
        check_superuser(euid=self.euid)
        check_ownership(self.store, euid=self.euid)

    def _evict(self) -> None:
        if self.evictor(self.store.path, signal.SIGTERM):
            self.sleep(self.config.eviction_grace_seconds)
        self.evictor(self.store.path, signal.SIGKILL)

    def run(self) -> RepairResult:
        try:
            return self._run()
        except BaseException:
            self._state = RepairState.FAILED
            raise

    def _run(self) -> RepairResult:
        self._preflight()
        result = RepairResult(state=self._state.value)

        self._advance(RepairState.EVICTING)
        self._evict()

        self._advance(RepairState.LOCKING)
        lock = RepoLock(
            self.store.lock_path,
            ofd=self.store.sysroot is not None,
            retry_interval=self.config.lock_retry_seconds,
            progress_interval=self.config.lock_progress_seconds,
        )
        with lock.hold(self.config.lock_timeout_seconds):
            refresh_liveness_marker(cache_marker_path(self.store, self.config))

            self._advance(RepairState.INDEXING)
            index = ObjectIndex.build(self.store)

            self._advance(RepairState.REPAIRING_REFS)
            result.dangling = repair_dangling_refs(self.backend, self.config.default_remote)
            restored = [
                ObjectName(a.commit, ObjectKind.COMMIT)
                for a in result.dangling
                if a.kind is ActionKind.METADATA_FETCH
            ]
            self.index = index.with_objects(restored)
            result.index_size = len(self.index)

            self._advance(RepairState.MARKING_PARTIAL)
            result.partial_marked = mark_partial_commits(self.backend, self.index)

            self._advance(RepairState.HEALING)
            result.healing = heal_partial_refs(self.backend, self.config.compiled_partial_patterns())

        self._advance(RepairState.DONE)
        result.state = self._state.value
        return result


def run_repair(
    *,
    store: Store,
    backend: StoreBackend,
    config: RepairConfig,
    report_path: Path | None = None,
    deterministic: bool = False,
    orchestrator: RepairOrchestrator | None = None,
) -> int:
    """Run a full repair, print the per-ref summary and optionally write a JSON report.

    Unhealed refs are reported but do not change the exit code; fatal errors propagate.
    """

    orch = orchestrator or RepairOrchestrator(store, backend, config)
    result = orch.run()

    for line in render_summary(result):
        print(line, file=sys.stdout)

    if report_path is not None:
        counts = orch.index.counts() if orch.index is not None else {}
        payload = build_report_payload(
            report_type="repair",
            store=store,
            result=result,
            index_counts=counts,
            deterministic=deterministic,
        )
        write_report(report_path, payload)
        console.info("report", f"wrote: {report_path}")
    return 0
