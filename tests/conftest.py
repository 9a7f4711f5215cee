from __future__ import annotations

import sys
from dataclasses import replace
from pathlib import Path

import pytest


REPO_ROOT = Path(__file__).resolve().parents[1]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))
TESTS_DIR = Path(__file__).resolve().parent
if str(TESTS_DIR) not in sys.path:
    sys.path.insert(0, str(TESTS_DIR))

from ostree_repair.core.model import StoreMode

from fakes import FakeBackend, make_store


@pytest.fixture()
def store(tmp_path: Path):
    return make_store(tmp_path)


@pytest.fixture()
def archive_store(tmp_path: Path):
    return make_store(tmp_path, mode=StoreMode.ARCHIVE, name="archive-repo")


@pytest.fixture()
def root_store(store):
    """The store as seen by a root invocation on a root-owned repository."""
    return replace(store, owner_uid=0)


@pytest.fixture()
def backend(store) -> FakeBackend:
    return FakeBackend(store)


@pytest.fixture()
def root_backend(root_store) -> FakeBackend:
    return FakeBackend(root_store)
