from __future__ import annotations

import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from ostree_repair.core.errors import ReportWriteError
from ostree_repair.core.model import ActionKind, ObjectKind, RepairResult, Store


REPORT_SCHEMA_VERSION = "1.0.0"
EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def report_timestamp(*, deterministic: bool) -> str:
    """Whole-second UTC time with a Z suffix; the epoch when reports must be reproducible."""

    moment = EPOCH if deterministic else datetime.now(timezone.utc)
    return moment.isoformat(timespec="seconds").replace("+00:00", "Z")


def encode_report(payload: dict[str, Any]) -> bytes:
    # Sorted keys and fixed separators: equal payloads give equal bytes.
    body = json.dumps(payload, ensure_ascii=False, sort_keys=True, separators=(",", ":"))
    return body.encode("utf-8") + b"\n"


def build_report_payload(
    *,
    report_type: str,
    store: Store,
    result: RepairResult,
    index_counts: dict[ObjectKind, int],
    deterministic: bool,
    extra: dict[str, Any] | None = None,
) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "schema_version": REPORT_SCHEMA_VERSION,
        "report_type": report_type,
        "generated_at": report_timestamp(deterministic=deterministic),
        "store": str(store.path),
        "mode": store.mode.value,
        "state": result.state,
        "index": {kind.value: int(index_counts.get(kind, 0)) for kind in ObjectKind},
        "partial_marked": result.partial_marked,
        "actions": [a.to_dict() for a in result.actions],
        "unhealed": sorted(str(a.refspec) for a in result.unhealed),
    }
    if extra:
        payload.update(extra)
    return payload


def write_report(out_path: Path, payload: dict[str, Any]) -> bytes:
    data = encode_report(payload)
    try:
        out_path.parent.mkdir(parents=True, exist_ok=True)
        out_path.write_bytes(data)
    except OSError as e:
        raise ReportWriteError(f"cannot write report {out_path}: {e}") from e
    return data


def render_summary(result: RepairResult) -> list[str]:
    """Human-readable end-of-run summary, one ref per line."""

    restored = [a for a in result.dangling if a.kind is ActionKind.METADATA_FETCH]
    healed = [a for a in result.healing if a.kind is ActionKind.FULL_FETCH]
    skipped = [a for a in result.healing if a.ok and a.kind is not ActionKind.FULL_FETCH]
    lines = [
        f"state: {result.state}",
        f"objects indexed: {result.index_size}",
        f"dangling refs restored: {len(restored)}",
        f"commits newly marked partial: {result.partial_marked}",
        f"refs healed: {len(healed)}",
        f"refs still partial: {len(result.unhealed) + len(skipped)}",
    ]
    for a in restored:
        lines.append(f"  restored  {a.refspec} -> {a.commit} (metadata from {a.remote})")
    for a in healed:
        lines.append(f"  healed    {a.refspec} -> {a.commit}")
    for a in skipped:
        lines.append(f"  partial   {a.refspec} -> {a.commit} ({a.kind.value})")
    for a in result.unhealed:
        lines.append(f"  UNHEALED  {a.refspec} -> {a.commit}: {a.message or 'fetch failed'}")
    return lines
