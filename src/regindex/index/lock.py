"""Per-package exclusive locks.

Each record file gets its own lock file under `<root>/.index-lock/`, so
writers of different packages never contend. Locks are advisory
`fcntl.flock` locks held on an open file description: they are released
when the context exits, on every path, and by the kernel if the process
dies.
"""

from __future__ import annotations

import fcntl
import os
from contextlib import contextmanager
from enum import Enum
from typing import TYPE_CHECKING

from regindex.errors import IoFailure, Locked
from regindex.logging_config import get_logger

if TYPE_CHECKING:
    from collections.abc import Iterator
    from pathlib import Path

logger = get_logger(__name__)

LOCK_DIR_NAME = ".index-lock"


class LockPolicy(str, Enum):
    """What a writer does when another writer holds the same package."""

    WAIT = "wait"
    FAIL_FAST = "fail_fast"


def lock_path(root: Path, name: str) -> Path:
    return root / LOCK_DIR_NAME / f"{name.lower()}.lock"


@contextmanager
def package_lock(root: Path, name: str, policy: LockPolicy = LockPolicy.WAIT) -> Iterator[None]:
    """Hold the exclusive lock for one package name.

    Args:
        root: Index root directory.
        name: Package name (case-insensitive).
        policy: WAIT blocks until the lock is free; FAIL_FAST raises Locked.

    Raises:
        Locked: If the lock is held elsewhere and policy is FAIL_FAST.
        IoFailure: If the lock file cannot be created.
    """
    path = lock_path(root, name)
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(path, os.O_RDWR | os.O_CREAT, 0o644)
    except OSError as e:
        msg = f"Failed to open lock file `{path}`: {e}"
        raise IoFailure(msg, package=name) from e

    try:
        try:
            fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
        except BlockingIOError:
            if policy is LockPolicy.FAIL_FAST:
                msg = f"Package `{name}` is locked by another writer"
                raise Locked(msg, package=name) from None
            logger.debug("Waiting for lock", extra={"package": name})
            fcntl.flock(fd, fcntl.LOCK_EX)
        try:
            yield
        finally:
            fcntl.flock(fd, fcntl.LOCK_UN)
    finally:
        os.close(fd)
