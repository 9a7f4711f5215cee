from __future__ import annotations

import sys


PROG = "ostree-repair"


def _prefix(phase: str | None) -> str:
    return f"[{PROG} {phase}]" if phase else f"[{PROG}]"


def info(phase: str | None, message: str) -> None:
    print(f"{_prefix(phase)} {message}", file=sys.stderr)


def warn(phase: str | None, message: str) -> None:
    print(f"{_prefix(phase)} WARNING: {message}", file=sys.stderr)


def error(phase: str | None, message: str, *, remediation: str | None = None) -> None:
    print(f"{_prefix(phase)} ERROR: {message}", file=sys.stderr)
    if remediation:
        print(f"{_prefix(phase)} Remediation: {remediation}", file=sys.stderr)
