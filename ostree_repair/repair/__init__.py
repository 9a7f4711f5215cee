"""Repair phases, leaf-first: index, evict, lock, traverse, dangling refs,
partial marking and healing. ``ostree_repair.commands.repair`` sequences them.
"""

from __future__ import annotations

from ostree_repair.repair.dangling import repair_dangling_refs, resolve_remote
from ostree_repair.repair.evict import StoreHolder, evict, find_holders
from ostree_repair.repair.heal import heal_partial_refs, is_intentionally_partial
from ostree_repair.repair.index import ObjectIndex
from ostree_repair.repair.lock import RepoLock
from ostree_repair.repair.partial import Incomplete, find_incomplete, mark_partial_commits
from ostree_repair.repair.traverse import reachable

__all__ = [
    "Incomplete",
    "ObjectIndex",
    "RepoLock",
    "StoreHolder",
    "evict",
    "find_holders",
    "find_incomplete",
    "heal_partial_refs",
    "is_intentionally_partial",
    "mark_partial_commits",
    "reachable",
    "repair_dangling_refs",
    "resolve_remote",
]
