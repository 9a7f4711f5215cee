"""Collaborator boundary to the underlying object store.

The repair engine never decodes objects or talks to the network itself; it
calls a ``StoreBackend``. Absence is signalled with ``ObjectNotFound`` so no
caller needs to inspect library error codes.
"""

from __future__ import annotations

import enum
import os
from typing import Protocol

from ostree_repair.core.errors import StoreWriteError
from ostree_repair.core.model import CommitInfo, DirTree, RefSpec, Store


class FetchDepth(enum.Enum):
    METADATA_ONLY = "metadata-only"  # the commit object alone
    FULL = "full"  # commit plus every dirtree, dirmeta and file it reaches


class StoreBackend(Protocol):
    store: Store

    def list_refs(self) -> dict[RefSpec, str]:
        """Every ref (local and remote-tracking) mapped to its target checksum."""
        ...

    def load_commit(self, checksum: str) -> CommitInfo:
        """Raises ObjectNotFound when absent, LoadError on any other failure."""
        ...

    def load_dirtree(self, checksum: str) -> DirTree:
        """Raises ObjectNotFound when absent, LoadError on any other failure."""
        ...

    def is_partial(self, checksum: str) -> bool:
        ...

    def mark_partial(self, checksum: str) -> None:
        ...

    def fetch(self, remote: str, checksum: str, depth: FetchDepth) -> None:
        """Raises FetchError."""
        ...


class PartialStateMixin:
    """Partial markers are empty files whose existence is the whole contract."""

    store: Store

    def is_partial(self, checksum: str) -> bool:
        return self.store.partial_marker_path(checksum).exists()

    def mark_partial(self, checksum: str) -> None:
        marker = self.store.partial_marker_path(checksum)
        try:
            marker.parent.mkdir(parents=True, exist_ok=True)
            fd = os.open(marker, os.O_WRONLY | os.O_CREAT, 0o644)
        except OSError as e:
            raise StoreWriteError(f"cannot write partial marker {marker}: {e}") from e
        os.close(fd)
