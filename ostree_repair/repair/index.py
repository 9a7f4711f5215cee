"""Enumeration of the objects physically present in a store.

Objects live at ``objects/<first 2 hex>/<remaining 62 hex>.<ext>``. The scan
reads the directory tree directly instead of asking the store library, which
cannot list objects reliably in every version.
"""

from __future__ import annotations

import os
from collections import Counter
from typing import Iterable, Iterator

from ostree_repair.core.checksum import is_checksum
from ostree_repair.core.errors import ObjectIndexError
from ostree_repair.core.model import ObjectKind, ObjectName, Store, extension_table


def _sort_key(name: ObjectName) -> tuple[str, str]:
    return (name.checksum, name.kind.value)


class ObjectIndex:
    def __init__(self, names: frozenset[ObjectName]) -> None:
        self._names = names

    @classmethod
    def build(cls, store: Store) -> "ObjectIndex":
        return cls(frozenset(_scan_objects(store)))

    def with_objects(self, names: Iterable[ObjectName]) -> "ObjectIndex":
        """A copy that also records objects known to have been written since the scan."""
        return ObjectIndex(self._names | frozenset(names))

    def __contains__(self, name: object) -> bool:
        return name in self._names

    def __iter__(self) -> Iterator[ObjectName]:
        return iter(sorted(self._names, key=_sort_key))

    def __len__(self) -> int:
        return len(self._names)

    def has(self, checksum: str, kind: ObjectKind) -> bool:
        return ObjectName(checksum, kind) in self._names

    def commits(self) -> list[str]:
        return sorted(n.checksum for n in self._names if n.kind is ObjectKind.COMMIT)

    def counts(self) -> dict[ObjectKind, int]:
        c = Counter(n.kind for n in self._names)
        return {kind: c.get(kind, 0) for kind in ObjectKind}

    def missing(self, names: Iterable[ObjectName]) -> list[ObjectName]:
        return sorted((n for n in names if n not in self._names), key=_sort_key)


def _scan_objects(store: Store) -> Iterator[ObjectName]:
    kinds_by_ext = extension_table(store.mode)
    try:
        with os.scandir(store.objects_dir) as it:
            fanouts = sorted(it, key=lambda e: e.name)
    except OSError as e:
        raise ObjectIndexError(f"cannot list objects directory {store.objects_dir}: {e}") from e

    for fanout in fanouts:
        if len(fanout.name) != 2 or not fanout.is_dir(follow_symlinks=False):
            continue
        try:
            with os.scandir(fanout.path) as it:
                entries = [e.name for e in it]
        except OSError as e:
            raise ObjectIndexError(f"cannot list objects directory {fanout.path}: {e}") from e
        for entry_name in entries:
            stem, dot, ext = entry_name.partition(".")
            if not dot:
                continue
            kind = kinds_by_ext.get("." + ext)
            if kind is None:
                continue
            checksum = fanout.name + stem
            if is_checksum(checksum):
                yield ObjectName(checksum, kind)
