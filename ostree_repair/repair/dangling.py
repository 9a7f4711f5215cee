from __future__ import annotations

from ostree_repair.core import console
from ostree_repair.core.errors import FetchError, ObjectNotFound
from ostree_repair.core.model import ActionKind, RefSpec, RepairAction
from ostree_repair.store.backend import FetchDepth, StoreBackend


PHASE = "refs"


def resolve_remote(refspec: RefSpec, default_remote: str) -> str:
    """The remote a ref tracks; purely local refs fall back to default_remote."""
    return refspec.remote if refspec.remote is not None else default_remote


def repair_dangling_refs(backend: StoreBackend, default_remote: str) -> list[RepairAction]:
    """Restore the commit object of every ref whose target commit is absent.

    Only the commit object is pulled (metadata only); the ref itself is never
    retargeted. Load errors other than absence are fatal and propagate. A
    failed fetch is reported for that ref and the remaining refs still run.
    """

    actions: list[RepairAction] = []
    refs = backend.list_refs()
    for refspec in sorted(refs, key=str):
        checksum = refs[refspec]
        try:
            backend.load_commit(checksum)
            continue
        except ObjectNotFound:
            pass

        remote = resolve_remote(refspec, default_remote)
        console.info(PHASE, f"{refspec}: commit {checksum} missing, fetching metadata from {remote}")
        try:
            backend.fetch(remote, checksum, FetchDepth.METADATA_ONLY)
        except FetchError as e:
            console.warn(PHASE, f"{refspec}: {e}")
            actions.append(
                RepairAction(refspec=refspec, commit=checksum, kind=ActionKind.FETCH_FAILED, remote=remote, message=str(e))
            )
            continue
        actions.append(RepairAction(refspec=refspec, commit=checksum, kind=ActionKind.METADATA_FETCH, remote=remote))
    return actions
