from __future__ import annotations

import re
from typing import Iterable

from ostree_repair.core import console
from ostree_repair.core.errors import FetchError
from ostree_repair.core.model import ActionKind, RefSpec, RepairAction
from ostree_repair.store.backend import FetchDepth, StoreBackend


PHASE = "heal"


def is_intentionally_partial(refspec: RefSpec, patterns: Iterable[re.Pattern[str]]) -> bool:
    """Refs such as locale extensions are only ever pulled with a subpath."""
    name = str(refspec)
    return any(p.search(name) for p in patterns)


def heal_partial_refs(backend: StoreBackend, partial_patterns: Iterable[re.Pattern[str]]) -> list[RepairAction]:
    """Fully re-pull every remote-backed ref whose commit is marked partial.

    Purely local refs are never re-pulled. Fetch failures are reported for
    the ref and do not stop the remaining refs.
    """

    patterns = list(partial_patterns)
    actions: list[RepairAction] = []
    refs = backend.list_refs()
    for refspec in sorted(refs, key=str):
        checksum = refs[refspec]

        if refspec.is_local:
            if backend.is_partial(checksum):
                actions.append(RepairAction(refspec=refspec, commit=checksum, kind=ActionKind.SKIPPED_LOCAL))
            continue

        remote = refspec.remote
        if is_intentionally_partial(refspec, patterns):
            if backend.is_partial(checksum):
                console.info(PHASE, f"{refspec}: intentionally partial, not fetching")
                actions.append(
                    RepairAction(
                        refspec=refspec,
                        commit=checksum,
                        kind=ActionKind.SKIPPED_INTENTIONALLY_PARTIAL,
                        remote=remote,
                    )
                )
            continue

        if not backend.is_partial(checksum):
            continue

        console.info(PHASE, f"{refspec}: commit {checksum} is partial, pulling from {remote}")
        try:
            backend.fetch(remote, checksum, FetchDepth.FULL)
        except FetchError as e:
            console.warn(PHASE, f"{refspec}: {e}")
            actions.append(
                RepairAction(
                    refspec=refspec,
                    commit=checksum,
                    kind=ActionKind.FETCH_FAILED,
                    remote=remote,
                    message=str(e),
                )
            )
            continue
        actions.append(RepairAction(refspec=refspec, commit=checksum, kind=ActionKind.FULL_FETCH, remote=remote))
    return actions
