"""
Lock management for the file store.

Uses flock on lock files under <store>/locks/. Lock files are never
deleted: removing one while another process waits on it lets two
processes hold "exclusive" locks on different inodes with the same path.
"""

import fcntl
import os
import time
from contextlib import contextmanager
from pathlib import Path

from worktrack.lib.errors import StorageError

POLL_INTERVAL = 0.05


class LockTimeout(StorageError):
    """Lock acquisition timed out."""
    pass


@contextmanager
def _acquire_lock(lock_file: Path, timeout: float, lock_name: str):
    """
    Internal helper to acquire a file lock.

    Args:
        lock_file: Path to the lock file
        timeout: Seconds to wait for lock
        lock_name: Human-readable name for error messages
    """
    lock_file.parent.mkdir(parents=True, exist_ok=True)

    fd = open(lock_file, 'w')
    start = time.monotonic()

    while True:
        try:
            fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
            break
        except BlockingIOError:
            if time.monotonic() - start > timeout:
                fd.close()
                raise LockTimeout(f"Could not acquire {lock_name} within {timeout}s")
            time.sleep(POLL_INTERVAL)

    try:
        fd.write(f"{os.getpid()}\n")
        fd.flush()
        yield
    finally:
        fcntl.flock(fd, fcntl.LOCK_UN)
        fd.close()


@contextmanager
def store_lock(store_dir: Path, timeout: float = 30):
    """
    Acquire the store-wide write lock, yield, release on exit.

    Held only for the duration of one commit, so commits against
    different issues serialize briefly but never wait on each other's work.
    """
    lock_file = store_dir / "locks" / "store.lock"
    with _acquire_lock(lock_file, timeout, "store lock"):
        yield


@contextmanager
def counter_lock(store_dir: Path, project_id: str, timeout: float = 30):
    """Acquire the per-project issue number lock."""
    lock_file = store_dir / "locks" / "counters" / f"{project_id}.lock"
    with _acquire_lock(lock_file, timeout, f"counter lock for {project_id}"):
        yield
