"""CLI wiring: subcommands, exit codes and error rendering.

The libostree backend is replaced with the fake one and the store is
presented as root-owned.
"""

from __future__ import annotations

import argparse
import json
import os
import sys
from pathlib import Path

import pytest

pytestmark = pytest.mark.repo_local


REPO_ROOT = Path(__file__).resolve().parents[1]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from ostree_repair import cli
from ostree_repair.commands import check as check_mod
from ostree_repair.commands import repair as repair_mod
from ostree_repair.core.errors import BackendUnavailable, StoreLayoutError
from ostree_repair.core.model import ObjectKind

from fakes import FakeBackend, make_snapshot


@pytest.fixture()
def env(monkeypatch, root_store):
    backend = FakeBackend(root_store)
    seen: dict[str, object] = {}

    def open_target(args):
        seen["repo"] = args.repo
        seen["sysroot"] = args.sysroot
        return root_store

    monkeypatch.setattr(os, "geteuid", lambda: 0)
    monkeypatch.setattr(cli, "_open_target_store", open_target)
    monkeypatch.setattr(cli, "_make_backend", lambda store: backend)
    monkeypatch.setattr(repair_mod, "evict", lambda store_path, sig: [])
    monkeypatch.setattr(check_mod, "find_holders", lambda store_path: [])
    backend.seen = seen  # type: ignore[attr-defined]
    return backend


def test_no_command_prints_help(capsys) -> None:
    assert cli.main([]) == cli.EXIT_USAGE
    assert "usage" in capsys.readouterr().out


def test_about(capsys) -> None:
    assert cli.main(["about"]) == cli.EXIT_OK
    out = capsys.readouterr().out
    assert out.startswith("ostree-repair ")
    assert "libostree bindings: " in out


def test_repair_success(env: FakeBackend, root_store, tmp_path, capsys) -> None:
    snap = env.install(make_snapshot("cli", {"bin": {"x": "x"}}))
    env.delete_object(snap.files["/bin/x"], ObjectKind.FILE)
    env.publish("eos", snap)
    env.set_ref("eos:os/eos/amd64/stable", snap.checksum)
    report = tmp_path / "report.json"

    rc = cli.main(["repair", "--repo", str(root_store.path), "--report", str(report), "--deterministic"])

    assert rc == cli.EXIT_OK
    assert env.seen["repo"] == str(root_store.path)
    out = capsys.readouterr().out
    assert "refs healed: 1" in out
    payload = json.loads(report.read_text(encoding="utf-8"))
    assert payload["generated_at"] == "1970-01-01T00:00:00Z"
    assert payload["partial_marked"] == 1


def test_repair_flags_reach_the_run(env: FakeBackend, capsys) -> None:
    snap = make_snapshot("flags", {"f": "flags"})
    env.publish("origin", snap)
    env.set_ref("heads/main", snap.checksum)

    rc = cli.main(["repair", "--default-remote", "origin", "--partial-pattern", "nothing-matches"])

    assert rc == cli.EXIT_OK
    assert env.fetches[0][0] == "origin"
    assert env.seen["repo"] is None


def test_repair_requires_root(env: FakeBackend, monkeypatch, capsys) -> None:
    monkeypatch.setattr(os, "geteuid", lambda: 1000)
    assert cli.main(["repair"]) == cli.EXIT_USAGE
    err = capsys.readouterr().err
    assert "[ostree-repair repair] ERROR: this tool must be run as root" in err
    assert "Remediation:" in err


def test_repair_bad_config_is_usage_error(env: FakeBackend, tmp_path, capsys) -> None:
    cfg = tmp_path / "bad.toml"
    cfg.write_text("[repair]\nbogus = 1\n", encoding="utf-8")
    assert cli.main(["repair", "--config", str(cfg)]) == cli.EXIT_USAGE
    assert "unknown [repair] keys: bogus" in capsys.readouterr().err


def test_repair_runtime_failure(env: FakeBackend, root_store, capsys) -> None:
    (root_store.path / "tmp" / "cache").rmdir()
    assert cli.main(["repair"]) == cli.EXIT_FAILED
    assert "cache liveness marker is missing" in capsys.readouterr().err


def test_backend_unavailable(env: FakeBackend, monkeypatch, capsys) -> None:
    def unavailable(store):
        raise BackendUnavailable("OSTree bindings unavailable: No module named 'gi'")

    monkeypatch.setattr(cli, "_make_backend", unavailable)
    assert cli.main(["check"]) == cli.EXIT_USAGE
    assert "gir1.2-ostree-1.0" in capsys.readouterr().err


def test_check_exit_codes(env: FakeBackend) -> None:
    assert cli.main(["check"]) == cli.EXIT_OK
    gone = make_snapshot("gone", {"f": "gone"})
    env.set_ref("eos:gone", gone.checksum)
    assert cli.main(["check", "--sysroot", "/"]) == cli.EXIT_CHECK_PROBLEMS
    assert env.seen["sysroot"] == "/"


def test_repo_and_sysroot_are_exclusive(capsys) -> None:
    with pytest.raises(SystemExit) as ei:
        cli.main(["check", "--repo", "a", "--sysroot", "b"])
    assert ei.value.code == 2


def test_open_target_store_uses_real_layout(tmp_path: Path) -> None:
    with pytest.raises(StoreLayoutError, match="does not exist"):
        cli._open_target_store(argparse.Namespace(repo=str(tmp_path / "missing"), sysroot=None))


def test_repair_unwritable_marker_is_reported_not_raised(env: FakeBackend, tmp_path, capsys) -> None:
    blocker = tmp_path / "plain-file"
    blocker.write_text("", encoding="utf-8")
    assert cli.main(["repair", "--cache-marker", str(blocker / "cache")]) == cli.EXIT_FAILED
    err = capsys.readouterr().err
    assert "[ostree-repair repair] ERROR: cannot refresh cache liveness marker" in err
    assert "[ostree-repair repair] Remediation: Do check that the repository is writable" in err
