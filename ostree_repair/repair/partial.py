from __future__ import annotations

from dataclasses import dataclass

from ostree_repair.core import console
from ostree_repair.core.errors import MissingObject
from ostree_repair.core.model import ObjectName
from ostree_repair.repair.index import ObjectIndex
from ostree_repair.repair.traverse import reachable
from ostree_repair.store.backend import StoreBackend


PHASE = "partial"


@dataclass(frozen=True)
class Incomplete:
    """Why a commit is incomplete: a failed traversal or absent closure members."""

    checksum: str
    missing_structural: MissingObject | None = None
    missing_leaves: tuple[ObjectName, ...] = ()

    def describe(self) -> str:
        if self.missing_structural is not None:
            return str(self.missing_structural)
        first = self.missing_leaves[0]
        more = len(self.missing_leaves) - 1
        return f"missing {first}" + (f" and {more} more" if more else "")


def find_incomplete(backend: StoreBackend, index: ObjectIndex, checksum: str) -> Incomplete | None:
    """Return why checksum is incomplete, or None if its whole closure is present."""

    try:
        closure = reachable(backend, checksum)
    except MissingObject as e:
        return Incomplete(checksum=checksum, missing_structural=e)
    absent = index.missing(closure)
    if absent:
        return Incomplete(checksum=checksum, missing_leaves=tuple(absent))
    return None


def mark_partial_commits(backend: StoreBackend, index: ObjectIndex) -> int:
    """Write a partial marker for every indexed commit whose closure is incomplete.

    Commits already marked are skipped, so re-running is a no-op once the
    markers are correct.
    """

    marked = 0
    for checksum in index.commits():
        if backend.is_partial(checksum):
            continue
        incomplete = find_incomplete(backend, index, checksum)
        if incomplete is None:
            continue
        backend.mark_partial(checksum)
        console.info(PHASE, f"marked {checksum} partial: {incomplete.describe()}")
        marked += 1
    return marked
