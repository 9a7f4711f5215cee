"""Access to the object store being repaired.

``backend`` defines the collaborator contract; ``ostree_gi`` implements it over
libostree; ``layout`` resolves which store a run targets.
"""

from __future__ import annotations

from ostree_repair.store.backend import FetchDepth, PartialStateMixin, StoreBackend
from ostree_repair.store.layout import open_store, read_store_mode

__all__ = [
    "FetchDepth",
    "PartialStateMixin",
    "StoreBackend",
    "open_store",
    "read_store_mode",
]
