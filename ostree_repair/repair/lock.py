"""Exclusive store lock with bounded, reported waiting.

A repository's own ``.lock`` is an ``flock`` lock, taken with
``filelock.FileLock``. A sysroot's ``ostree/lock`` is held by libostree as an
open-file-description (OFD) ``fcntl`` lock, which never conflicts with
``flock``; sysroot runs therefore lock it the same way (``OfdFileLock``).
"""

from __future__ import annotations

import errno
import fcntl
import os
import struct
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

from filelock import FileLock, Timeout

from ostree_repair.core import console
from ostree_repair.core.errors import LockError, LockTimeout


PHASE = "lock"

# struct flock on LP64 Linux: l_type, l_whence, l_start, l_len, l_pid (must be 0 for OFD locks).
_FLOCK_FORMAT = "hhqqi4x"


def _whole_file(lock_type: int) -> bytes:
    return struct.pack(_FLOCK_FORMAT, lock_type, os.SEEK_SET, 0, 0, 0)


class OfdFileLock:
    """Exclusive whole-file ``F_OFD_SETLK`` write lock.

    Offers the part of the ``filelock.FileLock`` interface ``RepoLock`` uses,
    including raising ``filelock.Timeout`` when the wait runs out.
    """

    def __init__(self, lock_file: str) -> None:
        self.lock_file = lock_file
        self._fd: int | None = None

    @property
    def is_locked(self) -> bool:
        return self._fd is not None

    def _try_lock(self) -> bool:
        fd = os.open(self.lock_file, os.O_RDWR | os.O_CREAT | os.O_CLOEXEC, 0o600)
        try:
            fcntl.fcntl(fd, fcntl.F_OFD_SETLK, _whole_file(fcntl.F_WRLCK))
        except OSError as e:
            os.close(fd)
            if e.errno in (errno.EAGAIN, errno.EACCES):
                return False
            raise
        self._fd = fd
        return True

    def acquire(self, timeout: float, poll_interval: float) -> None:
        if self._fd is not None:
            return
        deadline = time.monotonic() + timeout
        while not self._try_lock():
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise Timeout(self.lock_file)
            time.sleep(min(poll_interval, remaining))

    def release(self) -> None:
        if self._fd is None:
            return
        fd, self._fd = self._fd, None
        # Closing the only descriptor on the description drops the lock.
        os.close(fd)


class RepoLock:
    """Exclusive hold on the store's coordination lock, with bounded wait.

    Attempts are retried every ``retry_interval`` seconds; a progress line is
    printed every ``progress_interval`` seconds of waiting. ``ofd=True`` selects
    the OFD lock libostree uses for sysroot locks.
    """

    def __init__(
        self,
        lock_path: Path,
        *,
        ofd: bool = False,
        retry_interval: float = 1.0,
        progress_interval: float = 60.0,
    ) -> None:
        self.lock_path = lock_path
        self.retry_interval = retry_interval
        self.progress_interval = progress_interval
        self._lock: FileLock | OfdFileLock = OfdFileLock(str(lock_path)) if ofd else FileLock(str(lock_path))

    @property
    def is_locked(self) -> bool:
        return self._lock.is_locked

    def acquire(self, timeout: float) -> "RepoLock":
        started = time.monotonic()
        deadline = started + timeout
        while True:
            remaining = deadline - time.monotonic()
            wait = max(0.0, min(self.progress_interval, remaining))
            try:
                self._lock.acquire(timeout=wait, poll_interval=self.retry_interval)
                return self
            except Timeout:
                waited = time.monotonic() - started
                if time.monotonic() >= deadline:
                    raise LockTimeout(f"could not lock {self.lock_path} within {timeout:g}s") from None
                console.info(PHASE, f"still waiting for {self.lock_path} ({int(waited)}s so far)")
            except OSError as e:
                raise LockError(f"cannot open lock file {self.lock_path}: {e}") from e

    def release(self) -> None:
        if self._lock.is_locked:
            self._lock.release()

    @contextmanager
    def hold(self, timeout: float) -> Iterator["RepoLock"]:
        self.acquire(timeout)
        try:
            yield self
        finally:
            self.release()
