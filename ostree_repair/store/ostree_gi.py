"""StoreBackend over libostree through PyGObject (``gi.repository.OSTree``).

The bindings are imported lazily so the rest of the package (and its tests)
work on machines without the OSTree typelib.
"""

from __future__ import annotations

from typing import Any

from ostree_repair.core.errors import BackendUnavailable, FetchError, LoadError, ObjectNotFound, StoreLayoutError
from ostree_repair.core.model import CommitInfo, DirTree, RefSpec, Store
from ostree_repair.store.backend import FetchDepth, PartialStateMixin


# Child indices of the commit variant (a{sv}aya(say)sstayay).
_COMMIT_ROOT_TREE = 6
_COMMIT_ROOT_META = 7


def load_bindings() -> tuple[Any, Any, Any]:
    try:
        import gi

        gi.require_version("OSTree", "1.0")
        from gi.repository import Gio, GLib, OSTree
    except (ImportError, ValueError) as e:
        raise BackendUnavailable(f"OSTree bindings unavailable: {e}") from e
    return Gio, GLib, OSTree


class OstreeBackend(PartialStateMixin):
    def __init__(self, store: Store) -> None:
        self.store = store
        self._Gio, self._GLib, self._OSTree = load_bindings()
        repo = self._OSTree.Repo.new(self._Gio.File.new_for_path(str(store.path)))
        try:
            repo.open(None)
        except self._GLib.Error as e:
            raise StoreLayoutError(f"cannot open repository {store.path}: {e.message}") from e
        self._repo = repo

    def _is_not_found(self, e: Any) -> bool:
        return bool(e.matches(self._Gio.io_error_quark(), self._Gio.IOErrorEnum.NOT_FOUND))

    def _load_variant(self, object_type: Any, checksum: str) -> Any:
        try:
            _, variant = self._repo.load_variant(object_type, checksum)
        except self._GLib.Error as e:
            if self._is_not_found(e):
                raise ObjectNotFound(checksum, e.message) from e
            raise LoadError(checksum, e.message) from e
        return variant

    def list_refs(self) -> dict[RefSpec, str]:
        try:
            _, refs = self._repo.list_refs(None, None)
        except self._GLib.Error as e:
            raise LoadError("refs", e.message) from e
        return {RefSpec.parse(name): checksum for name, checksum in refs.items()}

    def load_commit(self, checksum: str) -> CommitInfo:
        variant = self._load_variant(self._OSTree.ObjectType.COMMIT, checksum)
        try:
            return CommitInfo(
                checksum=checksum,
                root_tree=self._OSTree.checksum_from_bytes_v(variant.get_child_value(_COMMIT_ROOT_TREE)),
                root_meta=self._OSTree.checksum_from_bytes_v(variant.get_child_value(_COMMIT_ROOT_META)),
                parent=self._OSTree.commit_get_parent(variant),
            )
        except ValueError as e:
            raise LoadError(checksum, f"malformed commit object: {e}") from e

    def load_dirtree(self, checksum: str) -> DirTree:
        variant = self._load_variant(self._OSTree.ObjectType.DIR_TREE, checksum)
        checksum_of = self._OSTree.checksum_from_bytes_v

        files_v = variant.get_child_value(0)
        files = []
        for i in range(files_v.n_children()):
            entry = files_v.get_child_value(i)
            files.append((entry.get_child_value(0).get_string(), checksum_of(entry.get_child_value(1))))

        dirs_v = variant.get_child_value(1)
        dirs = []
        for i in range(dirs_v.n_children()):
            entry = dirs_v.get_child_value(i)
            dirs.append(
                (
                    entry.get_child_value(0).get_string(),
                    checksum_of(entry.get_child_value(1)),
                    checksum_of(entry.get_child_value(2)),
                )
            )
        return DirTree(checksum=checksum, files=tuple(files), dirs=tuple(dirs))

    def fetch(self, remote: str, checksum: str, depth: FetchDepth) -> None:
        flags = self._OSTree.RepoPullFlags.NONE
        if depth is FetchDepth.METADATA_ONLY:
            flags = self._OSTree.RepoPullFlags.COMMIT_ONLY
        try:
            self._repo.pull(remote, [checksum], flags, None, None)
        except self._GLib.Error as e:
            raise FetchError(remote, checksum, e.message) from e
