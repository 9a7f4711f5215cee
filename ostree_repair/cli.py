#!/usr/bin/env python3
"""ostree-repair CLI: detect and heal corruption in an OSTree repository.

This is the installable CLI entrypoint (console_scripts).

Subcommands:
- ostree-repair repair   → Evict holders, lock, restore dangling refs, mark and heal partial commits
- ostree-repair check    → Read-only diagnosis of what a repair would change
- ostree-repair about    → Print package identity info

Exit codes:
- 0: success (a repair with unhealed refs still succeeds; they are listed)
- 1: repair failed (lock timeout, load error, missing liveness marker, ownership mismatch, ...)
- 2: check found problems
- 3: usage/precondition error (not root, bad store location, bad config)
"""

from __future__ import annotations

import argparse
import sys
from importlib.metadata import PackageNotFoundError, metadata
from pathlib import Path

from ostree_repair.config import RepairConfig, load_config
from ostree_repair.core import console
from ostree_repair.core.errors import (
    BackendUnavailable,
    ConfigError,
    PrivilegeError,
    RepairError,
    StoreLayoutError,
)
from ostree_repair.core.model import Store
from ostree_repair.store.backend import StoreBackend
from ostree_repair.store.layout import open_store


DEFAULT_SYSROOT = "/"

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_CHECK_PROBLEMS = 2
EXIT_USAGE = 3

# Errors that mean the tool could not even start working on the store.
_PRECONDITION_ERRORS = (PrivilegeError, StoreLayoutError, ConfigError, BackendUnavailable)


def _make_backend(store: Store) -> StoreBackend:
    from ostree_repair.store.ostree_gi import OstreeBackend

    return OstreeBackend(store)


def _open_target_store(args: argparse.Namespace) -> Store:
    if args.repo:
        return open_store(repo=Path(args.repo))
    return open_store(sysroot=Path(args.sysroot or DEFAULT_SYSROOT))


def _report_error(phase: str, e: RepairError) -> int:
    console.error(phase, str(e), remediation=e.remediation)
    if isinstance(e, _PRECONDITION_ERRORS):
        return EXIT_USAGE
    return EXIT_FAILED


def _build_config(args: argparse.Namespace) -> RepairConfig:
    config = load_config(Path(args.config) if args.config else None)
    patterns = tuple(args.partial_pattern) if args.partial_pattern else None
    return config.with_overrides(
        default_remote=args.default_remote,
        lock_timeout_seconds=args.lock_timeout,
        eviction_grace_seconds=args.grace_seconds,
        cache_marker=Path(args.cache_marker) if args.cache_marker else None,
        partial_ref_patterns=patterns,
    )


# ---------------------------------------------------------------------------
# repair subcommand
# ---------------------------------------------------------------------------

def cmd_repair(args: argparse.Namespace) -> int:
    from ostree_repair.commands.repair import check_superuser, run_repair

    try:
        # Privilege is checked before anything else touches the system.
        check_superuser()
        config = _build_config(args)
        store = _open_target_store(args)
        backend = _make_backend(store)
        return run_repair(
            store=store,
            backend=backend,
            config=config,
            report_path=Path(args.report) if args.report else None,
            deterministic=bool(args.deterministic),
        )
    except RepairError as e:
        return _report_error("repair", e)


# ---------------------------------------------------------------------------
# check subcommand
# ---------------------------------------------------------------------------

def cmd_check(args: argparse.Namespace) -> int:
    from ostree_repair.commands.check import run_check

    try:
        store = _open_target_store(args)
        backend = _make_backend(store)
        return run_check(
            store=store,
            backend=backend,
            report_path=Path(args.report) if args.report else None,
            deterministic=bool(args.deterministic),
        )
    except RepairError as e:
        return _report_error("check", e)


# ---------------------------------------------------------------------------
# about subcommand
# ---------------------------------------------------------------------------

def cmd_about(_: argparse.Namespace) -> int:
    """Print package identity and whether the libostree bindings load."""

    import ostree_repair
    from ostree_repair.store.ostree_gi import load_bindings

    summary = ""
    try:
        summary = str(metadata(console.PROG).get("Summary") or "")
    except PackageNotFoundError:
        pass

    print(f"{console.PROG} {ostree_repair.__version__}")
    if summary:
        print(summary)
    try:
        load_bindings()
        bindings = "available"
    except BackendUnavailable as e:
        bindings = f"unavailable ({e})"
    print(f"libostree bindings: {bindings}")
    return EXIT_OK


def _add_store_args(p: argparse.ArgumentParser) -> None:
    target = p.add_mutually_exclusive_group()
    target.add_argument("--repo", help="Path to the OSTree repository to repair")
    target.add_argument(
        "--sysroot",
        help=f"Sysroot owning the repository at <sysroot>/ostree/repo (default: {DEFAULT_SYSROOT})",
    )
    p.add_argument("--report", help="Write a JSON report to this path")
    p.add_argument("--deterministic", action="store_true", help="Use a fixed timestamp in the JSON report")


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        prog="ostree-repair",
        description="Detect and heal corruption in an OSTree repository.",
    )
    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    # about
    p_about = subparsers.add_parser("about", help="Print package identity info")
    p_about.set_defaults(func=cmd_about)

    # repair
    p_repair = subparsers.add_parser("repair", help="Repair the repository (requires root)")
    _add_store_args(p_repair)
    p_repair.add_argument("--config", help="TOML configuration file with a [repair] table")
    p_repair.add_argument("--default-remote", help="Remote used to restore commits of purely local refs")
    p_repair.add_argument("--lock-timeout", type=float, help="Seconds to wait for the repository lock")
    p_repair.add_argument(
        "--grace-seconds",
        type=float,
        help="Seconds between SIGTERM and SIGKILL when evicting processes",
    )
    p_repair.add_argument("--cache-marker", help="Cache liveness marker path (default: <repo>/tmp/cache)")
    p_repair.add_argument(
        "--partial-pattern",
        action="append",
        help="Regex of refs that are intentionally partial and never re-pulled (repeatable)",
    )
    p_repair.set_defaults(func=cmd_repair)

    # check
    p_check = subparsers.add_parser("check", help="Report problems without changing anything")
    _add_store_args(p_check)
    p_check.set_defaults(func=cmd_check)

    args = parser.parse_args(argv)

    if not getattr(args, "func", None):
        parser.print_help()
        return EXIT_USAGE
    return int(args.func(args))


if __name__ == "__main__":
    sys.exit(main())
