"""Read-only diagnosis of a store.

Reports what a repair run would act on (dangling refs, incomplete commits not
yet marked, processes holding the store) without evicting, locking, fetching
or writing markers.
"""

from __future__ import annotations

import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable

from ostree_repair.core import console
from ostree_repair.core.errors import ObjectNotFound
from ostree_repair.core.model import RefSpec, RepairResult, Store
from ostree_repair.core.paths import safe_relpath
from ostree_repair.core.report import build_report_payload, write_report
from ostree_repair.repair.evict import StoreHolder, find_holders
from ostree_repair.repair.index import ObjectIndex
from ostree_repair.repair.partial import Incomplete, find_incomplete
from ostree_repair.store.backend import StoreBackend


@dataclass
class CheckFindings:
    dangling: list[tuple[RefSpec, str]] = field(default_factory=list)
    incomplete: list[Incomplete] = field(default_factory=list)
    already_partial: list[str] = field(default_factory=list)
    holders: list[StoreHolder] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.dangling and not self.incomplete


def diagnose(
    store: Store,
    backend: StoreBackend,
    *,
    holders_finder: Callable[[Path], list[StoreHolder]] | None = None,
) -> tuple[CheckFindings, ObjectIndex]:
    index = ObjectIndex.build(store)
    findings = CheckFindings(holders=(holders_finder or find_holders)(store.path))

    refs = backend.list_refs()
    for refspec in sorted(refs, key=str):
        checksum = refs[refspec]
        try:
            backend.load_commit(checksum)
        except ObjectNotFound:
            findings.dangling.append((refspec, checksum))

    for checksum in index.commits():
        if backend.is_partial(checksum):
            findings.already_partial.append(checksum)
            continue
        incomplete = find_incomplete(backend, index, checksum)
        if incomplete is not None:
            findings.incomplete.append(incomplete)
    return findings, index


def _findings_to_dict(store: Store, findings: CheckFindings) -> dict[str, Any]:
    return {
        "dangling_refs": [{"refspec": str(r), "commit": c} for r, c in findings.dangling],
        "incomplete_commits": [
            {"commit": i.checksum, "reason": i.describe()} for i in findings.incomplete
        ],
        "already_partial": list(findings.already_partial),
        "holders": [
            {"pid": h.pid, "name": h.name, "paths": [safe_relpath(store.path, Path(p)) for p in h.paths]}
            for h in findings.holders
        ],
    }


def run_check(
    *,
    store: Store,
    backend: StoreBackend,
    report_path: Path | None = None,
    deterministic: bool = False,
) -> int:
    """Return 0 when the store is consistent, 2 when a repair would change something."""

    findings, index = diagnose(store, backend)

    out = sys.stdout
    print(f"objects indexed: {len(index)}", file=out)
    print(f"dangling refs: {len(findings.dangling)}", file=out)
    for refspec, checksum in findings.dangling:
        print(f"  {refspec} -> {checksum}", file=out)
    print(f"incomplete commits not marked partial: {len(findings.incomplete)}", file=out)
    for inc in findings.incomplete:
        print(f"  {inc.checksum}: {inc.describe()}", file=out)
    print(f"commits already marked partial: {len(findings.already_partial)}", file=out)
    for holder in findings.holders:
        print(f"  held open by pid {holder.pid} ({holder.name})", file=out)

    if report_path is not None:
        payload = build_report_payload(
            report_type="check",
            store=store,
            result=RepairResult(state="checked", index_size=len(index)),
            index_counts=index.counts(),
            deterministic=deterministic,
            extra={"findings": _findings_to_dict(store, findings)},
        )
        write_report(report_path, payload)
        console.info("report", f"wrote: {report_path}")

    return 0 if findings.ok else 2
