from __future__ import annotations

import enum
from dataclasses import dataclass, field
from pathlib import Path
from typing import NamedTuple

from ostree_repair.core.checksum import normalize_checksum


OBJECTS_DIRNAME = "objects"
STATE_DIRNAME = "state"
PARTIAL_MARKER_SUFFIX = ".commitpartial"


class StoreMode(enum.Enum):
    BARE = "bare"
    BARE_USER = "bare-user"
    BARE_USER_ONLY = "bare-user-only"
    BARE_SPLIT_XATTRS = "bare-split-xattrs"
    ARCHIVE = "archive"

    @classmethod
    def parse(cls, raw: str) -> "StoreMode":
        s = str(raw or "").strip()
        if s == "archive-z2":
            return cls.ARCHIVE
        for mode in cls:
            if mode.value == s:
                return mode
        raise ValueError(f"unknown repository mode: {raw!r}")

    @property
    def is_archive(self) -> bool:
        return self is StoreMode.ARCHIVE


class ObjectKind(enum.Enum):
    COMMIT = "commit"
    DIR_TREE = "dirtree"
    DIR_META = "dirmeta"
    FILE = "file"


# Metadata kinds have one fixed extension; file blobs depend on the store mode.
_METADATA_EXTENSIONS = {
    ObjectKind.COMMIT: ".commit",
    ObjectKind.DIR_TREE: ".dirtree",
    ObjectKind.DIR_META: ".dirmeta",
}


def object_extension(kind: ObjectKind, mode: StoreMode) -> str:
    if kind is ObjectKind.FILE:
        return ".filez" if mode.is_archive else ".file"
    return _METADATA_EXTENSIONS[kind]


def extension_table(mode: StoreMode) -> dict[str, ObjectKind]:
    """Map on-disk extension -> kind for a store of the given mode."""
    return {object_extension(kind, mode): kind for kind in ObjectKind}


class ObjectName(NamedTuple):
    checksum: str
    kind: ObjectKind

    def __str__(self) -> str:
        return f"{self.checksum}.{self.kind.value}"


@dataclass(frozen=True)
class Store:
    """The single repository a repair run targets.

    ``path`` is always the resolved real path; ``lock_path`` is the repo's own
    lock file, or the enclosing sysroot's lock when the repo belongs to one.
    """

    path: Path
    mode: StoreMode
    owner_uid: int
    lock_path: Path
    sysroot: Path | None = None

    @property
    def objects_dir(self) -> Path:
        return self.path / OBJECTS_DIRNAME

    @property
    def state_dir(self) -> Path:
        return self.path / STATE_DIRNAME

    def object_path(self, name: ObjectName) -> Path:
        ext = object_extension(name.kind, self.mode)
        return self.objects_dir / name.checksum[:2] / f"{name.checksum[2:]}{ext}"

    def partial_marker_path(self, checksum: str) -> Path:
        return self.state_dir / f"{checksum}{PARTIAL_MARKER_SUFFIX}"


@dataclass(frozen=True)
class RefSpec:
    """A ref name, optionally qualified by the remote it tracks (``remote:ref``)."""

    remote: str | None
    ref: str

    @classmethod
    def parse(cls, refspec: str) -> "RefSpec":
        s = str(refspec or "").strip()
        if not s:
            raise ValueError("refspec missing/empty")
        remote, sep, ref = s.partition(":")
        if not sep:
            return cls(remote=None, ref=s)
        if not remote or not ref:
            raise ValueError(f"invalid refspec: {refspec!r}")
        return cls(remote=remote, ref=ref)

    @property
    def is_local(self) -> bool:
        return self.remote is None

    def __str__(self) -> str:
        if self.remote is None:
            return self.ref
        return f"{self.remote}:{self.ref}"


@dataclass(frozen=True)
class CommitInfo:
    checksum: str
    root_tree: str
    root_meta: str
    parent: str | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "checksum", normalize_checksum(self.checksum))
        object.__setattr__(self, "root_tree", normalize_checksum(self.root_tree))
        object.__setattr__(self, "root_meta", normalize_checksum(self.root_meta))
        if self.parent is not None:
            object.__setattr__(self, "parent", normalize_checksum(self.parent))


@dataclass(frozen=True)
class DirTree:
    checksum: str
    files: tuple[tuple[str, str], ...] = ()  # (name, file checksum)
    dirs: tuple[tuple[str, str, str], ...] = ()  # (name, dirtree checksum, dirmeta checksum)


class ActionKind(enum.Enum):
    METADATA_FETCH = "metadata-fetch"
    FULL_FETCH = "full-fetch"
    SKIPPED_LOCAL = "skipped-local"
    SKIPPED_INTENTIONALLY_PARTIAL = "skipped-intentionally-partial"
    FETCH_FAILED = "fetch-failed"


@dataclass(frozen=True)
class RepairAction:
    refspec: RefSpec
    commit: str
    kind: ActionKind
    remote: str | None = None
    message: str | None = None

    @property
    def ok(self) -> bool:
        return self.kind is not ActionKind.FETCH_FAILED

    def to_dict(self) -> dict[str, object]:
        out: dict[str, object] = {
            "refspec": str(self.refspec),
            "commit": self.commit,
            "action": self.kind.value,
            "ok": self.ok,
        }
        if self.remote is not None:
            out["remote"] = self.remote
        if self.message:
            out["message"] = self.message
        return out


@dataclass
class RepairResult:
    state: str
    index_size: int = 0
    partial_marked: int = 0
    dangling: list[RepairAction] = field(default_factory=list)
    healing: list[RepairAction] = field(default_factory=list)

    @property
    def actions(self) -> list[RepairAction]:
        return [*self.dangling, *self.healing]

    @property
    def unhealed(self) -> list[RepairAction]:
        return [a for a in self.actions if not a.ok]
