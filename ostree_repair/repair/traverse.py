"""Reachability closure of a commit.

Only structural nodes (the commit and its dirtrees) are loaded. Dirmeta and
file objects are leaves: they are named in the closure but never opened, so a
successful traversal says nothing about their presence. Callers must check
the closure against an ``ObjectIndex``.
"""

from __future__ import annotations

from ostree_repair.core.errors import MissingObject, ObjectNotFound
from ostree_repair.core.model import ObjectKind, ObjectName
from ostree_repair.store.backend import StoreBackend


def reachable(backend: StoreBackend, commit_checksum: str) -> set[ObjectName]:
    """Return every object reachable from commit_checksum, the commit included.

    Raises MissingObject if the commit or any dirtree is absent. Any other
    LoadError propagates.
    """

    try:
        commit = backend.load_commit(commit_checksum)
    except ObjectNotFound as e:
        raise MissingObject(commit_checksum, ObjectKind.COMMIT.value) from e

    closure: set[ObjectName] = {
        ObjectName(commit.checksum, ObjectKind.COMMIT),
        ObjectName(commit.root_meta, ObjectKind.DIR_META),
    }
    pending = [commit.root_tree]
    while pending:
        tree_checksum = pending.pop()
        name = ObjectName(tree_checksum, ObjectKind.DIR_TREE)
        if name in closure:
            continue
        closure.add(name)
        try:
            tree = backend.load_dirtree(tree_checksum)
        except ObjectNotFound as e:
            raise MissingObject(tree_checksum, ObjectKind.DIR_TREE.value) from e

        for _, file_checksum in tree.files:
            closure.add(ObjectName(file_checksum, ObjectKind.FILE))
        for _, subtree, submeta in tree.dirs:
            closure.add(ObjectName(submeta, ObjectKind.DIR_META))
            pending.append(subtree)
    return closure
