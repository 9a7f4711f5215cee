"""End-to-end repair runs against a fake store backend.

These tests verify:
- The documented repair scenarios (dangling ref, missing blob, locale ref, foreign owner)
- Phase ordering and the FAILED state
- A second run over a repaired store changes nothing
"""

from __future__ import annotations

import fcntl
import json
import os
import signal
import struct
import sys
from dataclasses import replace
from pathlib import Path

import pytest
from filelock import FileLock

pytestmark = pytest.mark.repo_local


REPO_ROOT = Path(__file__).resolve().parents[1]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from ostree_repair.config import RepairConfig
from ostree_repair.core.errors import (
    IllegalTransition,
    LivenessMarkerMissing,
    LoadError,
    LockTimeout,
    OwnershipMismatch,
    PrivilegeError,
)
from ostree_repair.core.model import ActionKind, ObjectKind, ObjectName
from ostree_repair.commands.repair import (
    RepairOrchestrator,
    RepairState,
    cache_marker_path,
    refresh_liveness_marker,
    run_repair,
)
from ostree_repair.repair.traverse import reachable
from ostree_repair.store.backend import FetchDepth

from fakes import FakeBackend, make_snapshot


class Evictor:
    def __init__(self, holders: list[int] | None = None) -> None:
        self.holders = list(holders or [])
        self.calls: list[int] = []

    def __call__(self, store_path: Path, sig: int) -> list[int]:
        self.calls.append(sig)
        signalled, self.holders = self.holders, []
        return signalled


CONFIG = RepairConfig(lock_timeout_seconds=1, lock_retry_seconds=0.01, eviction_grace_seconds=2)


def _orchestrator(backend: FakeBackend, *, euid: int = 0, config: RepairConfig = CONFIG, evictor=None, sleeps=None):
    return RepairOrchestrator(
        backend.store,
        backend,
        config,
        evictor=evictor or Evictor(),
        sleep=(sleeps.append if sleeps is not None else (lambda s: None)),
        euid=euid,
    )


# ---------------------------------------------------------------------------
# Scenarios
# ---------------------------------------------------------------------------

def test_dangling_local_ref_is_restored_and_marked_partial(root_backend: FakeBackend) -> None:
    x = make_snapshot("X", {"usr": {"bin": {"sh": "sh"}}})
    root_backend.publish("eos", x)
    ref = root_backend.set_ref("heads/eos", x.checksum)
    # The remote store does not record partial state for us.
    root_backend.marks_partial_on_commit_only = False

    result = _orchestrator(root_backend).run()

    assert result.state == "done"
    assert root_backend.load_commit(x.checksum).checksum == x.checksum
    assert root_backend.is_partial(x.checksum)
    assert root_backend.refs[ref] == x.checksum
    assert root_backend.fetches == [("eos", x.checksum, FetchDepth.METADATA_ONLY)]
    assert [a.kind for a in result.dangling] == [ActionKind.METADATA_FETCH]
    assert result.partial_marked == 1
    # Local refs are never fully pulled.
    assert [a.kind for a in result.healing] == [ActionKind.SKIPPED_LOCAL]


def test_missing_nested_blob(root_backend: FakeBackend, root_store) -> None:
    y = root_backend.install(make_snapshot("Y", {"usr": {"share": {"doc": {"README": "readme"}}}}))
    blob = y.files["/usr/share/doc/README"]
    root_backend.delete_object(blob, ObjectKind.FILE)

    orch = _orchestrator(root_backend)
    result = orch.run()

    assert result.partial_marked == 1
    assert root_store.partial_marker_path(y.checksum).exists()
    assert ObjectName(blob, ObjectKind.FILE) in reachable(root_backend, y.checksum)
    assert orch.index is not None
    assert ObjectName(blob, ObjectKind.FILE) not in orch.index


def test_locale_ref_is_skipped(root_backend: FakeBackend) -> None:
    z = root_backend.install(make_snapshot("Z", {"share": {"locale": {"xx": "strings"}}}))
    root_backend.delete_object(z.files["/share/locale/xx"], ObjectKind.FILE)
    root_backend.publish("eos", z)
    root_backend.set_ref("eos:apps/Foo.Locale/xx/1", z.checksum)

    result = _orchestrator(root_backend).run()

    assert [a.kind for a in result.healing] == [ActionKind.SKIPPED_INTENTIONALLY_PARTIAL]
    assert root_backend.fetches == []
    assert root_backend.is_partial(z.checksum)


def test_foreign_owner_fails_before_eviction(backend: FakeBackend, store) -> None:
    other_owner = replace(store, owner_uid=store.owner_uid + 1000)
    evictor = Evictor([1234])
    orch = RepairOrchestrator(other_owner, backend, CONFIG, evictor=evictor, sleep=lambda s: None, euid=0)

    with pytest.raises(OwnershipMismatch):
        orch.run()
    assert evictor.calls == []
    assert orch.state is RepairState.FAILED


def test_remote_partial_ref_is_healed(root_backend: FakeBackend) -> None:
    w = make_snapshot("W", {"bin": {"tool": "tool"}})
    root_backend.install(w)
    root_backend.delete_object(w.files["/bin/tool"], ObjectKind.FILE)
    root_backend.publish("eos", w)
    root_backend.set_ref("eos:os/eos/amd64/stable", w.checksum)

    result = _orchestrator(root_backend).run()

    assert result.partial_marked == 1
    assert [a.kind for a in result.healing] == [ActionKind.FULL_FETCH]
    assert not root_backend.is_partial(w.checksum)
    assert result.unhealed == []


def test_dangling_remote_ref_is_restored_then_healed(root_backend: FakeBackend) -> None:
    v = make_snapshot("V", {"bin": {"app": "app"}})
    root_backend.publish("flathub", v)
    root_backend.set_ref("flathub:app/org.example.App/x86_64/stable", v.checksum)

    result = _orchestrator(root_backend).run()

    assert [f[2] for f in root_backend.fetches] == [FetchDepth.METADATA_ONLY, FetchDepth.FULL]
    assert [a.kind for a in result.actions] == [ActionKind.METADATA_FETCH, ActionKind.FULL_FETCH]
    assert root_backend.load_dirtree(v.commit.root_tree).checksum == v.commit.root_tree


def test_second_run_is_a_noop(root_backend: FakeBackend) -> None:
    y = root_backend.install(make_snapshot("Y2", {"a": {"b": "c"}}))
    root_backend.delete_object(y.files["/a/b"], ObjectKind.FILE)
    root_backend.set_ref("local/y", y.checksum)
    x = make_snapshot("X2", {"d": "e"})
    root_backend.publish("eos", x)
    root_backend.set_ref("heads/x", x.checksum)

    first = _orchestrator(root_backend).run()
    fetches_after_first = list(root_backend.fetches)
    markers = sorted(p.name for p in root_backend.store.state_dir.iterdir())

    second = _orchestrator(root_backend).run()

    assert first.partial_marked == 1
    assert second.dangling == []
    assert second.partial_marked == 0
    assert root_backend.fetches == fetches_after_first
    assert sorted(p.name for p in root_backend.store.state_dir.iterdir()) == markers


def test_unhealed_refs_do_not_fail_the_run(root_backend: FakeBackend) -> None:
    u = make_snapshot("U", {"f": "u"})
    root_backend.failing_remotes.add("eos")
    root_backend.set_ref("eos:u", u.checksum)

    result = _orchestrator(root_backend).run()

    assert result.state == "done"
    assert [str(a.refspec) for a in result.unhealed] == ["eos:u"]


# ---------------------------------------------------------------------------
# Preconditions and failures
# ---------------------------------------------------------------------------

def test_requires_root(root_backend: FakeBackend) -> None:
    evictor = Evictor()
    orch = _orchestrator(root_backend, euid=1000, evictor=evictor)
    with pytest.raises(PrivilegeError):
        orch.run()
    assert evictor.calls == []


def test_missing_liveness_marker_is_fatal(root_backend: FakeBackend, root_store) -> None:
    (root_store.path / "tmp" / "cache").rmdir()
    orch = _orchestrator(root_backend)
    with pytest.raises(LivenessMarkerMissing):
        orch.run()
    assert orch.state is RepairState.FAILED
    assert not (root_store.path / "tmp" / "cache").exists()
    other = FileLock(str(root_store.lock_path))
    other.acquire(timeout=0)
    other.release()


def test_cache_marker_is_configurable(root_backend: FakeBackend, root_store, tmp_path: Path) -> None:
    marker = tmp_path / "custom-marker"
    marker.write_text("", encoding="utf-8")
    config = replace(CONFIG, cache_marker=marker)
    assert cache_marker_path(root_store, config) == marker
    assert cache_marker_path(root_store, CONFIG) == root_store.path / "tmp" / "cache"
    (root_store.path / "tmp" / "cache").rmdir()

    assert _orchestrator(root_backend, config=config).run().state == "done"


def test_refresh_liveness_marker_bumps_mtime(tmp_path: Path) -> None:
    marker = tmp_path / "cache"
    marker.mkdir()

    os.utime(marker, (0, 0))
    refresh_liveness_marker(marker)
    assert marker.stat().st_mtime > 0


def test_load_error_fails_the_run(root_backend: FakeBackend) -> None:
    c = root_backend.install(make_snapshot("C", {"f": "c"}))
    root_backend.corrupt.add(c.checksum)
    root_backend.set_ref("eos:c", c.checksum)
    orch = _orchestrator(root_backend)
    with pytest.raises(LoadError):
        orch.run()
    assert orch.state is RepairState.FAILED


def test_lock_timeout_fails_the_run(root_backend: FakeBackend, root_store) -> None:

    holder = FileLock(str(root_store.lock_path))
    holder.acquire()
    try:
        orch = _orchestrator(root_backend, config=replace(CONFIG, lock_timeout_seconds=0.1))
        with pytest.raises(LockTimeout):
            orch.run()
    finally:
        holder.release()
    assert orch.state is RepairState.FAILED


def test_sysroot_lock_held_through_libostree_blocks_the_run(root_store, tmp_path: Path) -> None:
    sysroot = tmp_path / "sysroot"
    lock_path = sysroot / "ostree" / "lock"
    lock_path.parent.mkdir(parents=True)
    backend = FakeBackend(replace(root_store, sysroot=sysroot, lock_path=lock_path))

    holder = os.open(lock_path, os.O_RDWR | os.O_CREAT, 0o600)
    try:
        fcntl.fcntl(holder, fcntl.F_OFD_SETLK, struct.pack("hhqqi4x", fcntl.F_WRLCK, os.SEEK_SET, 0, 0, 0))
        orch = _orchestrator(backend, config=replace(CONFIG, lock_timeout_seconds=0.1))
        with pytest.raises(LockTimeout):
            orch.run()
    finally:
        os.close(holder)
    assert orch.state is RepairState.FAILED


def test_eviction_sends_term_waits_then_kills(root_backend: FakeBackend) -> None:
    evictor = Evictor([4242])
    sleeps: list[float] = []
    _orchestrator(root_backend, evictor=evictor, sleeps=sleeps).run()
    assert evictor.calls == [signal.SIGTERM, signal.SIGKILL]
    assert sleeps == [CONFIG.eviction_grace_seconds]


def test_no_grace_wait_without_holders(root_backend: FakeBackend) -> None:
    evictor = Evictor()
    sleeps: list[float] = []
    _orchestrator(root_backend, evictor=evictor, sleeps=sleeps).run()
    assert evictor.calls == [signal.SIGTERM, signal.SIGKILL]
    assert sleeps == []


def test_states_advance_in_order(root_backend: FakeBackend, capsys) -> None:
    orch = _orchestrator(root_backend)
    assert orch.state is RepairState.IDLE
    orch.run()
    assert orch.state is RepairState.DONE
    err = capsys.readouterr().err
    phases = [line.split("phase: ", 1)[1] for line in err.splitlines() if "phase: " in line]
    assert phases == [
        "evicting",
        "locking",
        "indexing",
        "repairing-refs",
        "marking-partial",
        "healing",
        "done",
    ]


def test_illegal_transitions(root_backend: FakeBackend) -> None:
    orch = _orchestrator(root_backend)
    with pytest.raises(IllegalTransition):
        orch._advance(RepairState.INDEXING)
    orch._advance(RepairState.EVICTING)
    with pytest.raises(IllegalTransition):
        orch._advance(RepairState.EVICTING)


def test_failed_run_cannot_resume(root_backend: FakeBackend) -> None:
    orch = _orchestrator(root_backend, euid=1000)
    with pytest.raises(PrivilegeError):
        orch.run()
    with pytest.raises(IllegalTransition):
        orch._advance(RepairState.EVICTING)


# ---------------------------------------------------------------------------
# run_repair
# ---------------------------------------------------------------------------

def test_run_repair_prints_summary_and_writes_report(root_backend: FakeBackend, root_store, tmp_path, capsys) -> None:
    x = make_snapshot("R", {"f": "r"})
    root_backend.publish("eos", x)
    root_backend.set_ref("eos:os/stable", x.checksum)
    out = tmp_path / "out" / "report.json"

    rc = run_repair(
        store=root_store,
        backend=root_backend,
        config=CONFIG,
        report_path=out,
        deterministic=True,
        orchestrator=_orchestrator(root_backend),
    )

    assert rc == 0
    stdout = capsys.readouterr().out
    assert "state: done" in stdout
    assert "dangling refs restored: 1" in stdout
    assert f"  healed    eos:os/stable -> {x.checksum}" in stdout

    data = out.read_bytes()
    assert data.endswith(b"\n")
    report = json.loads(data)
    assert report["generated_at"] == "1970-01-01T00:00:00Z"
    assert report["report_type"] == "repair"
    assert report["state"] == "done"
    assert report["mode"] == "bare"
    assert [a["action"] for a in report["actions"]] == ["metadata-fetch", "full-fetch"]
    assert report["unhealed"] == []
    assert report["index"]["commit"] == 1
