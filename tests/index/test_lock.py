"""Tests for per-package locks."""

from __future__ import annotations

import threading
from typing import TYPE_CHECKING

import pytest

from regindex.errors import Locked
from regindex.index.lock import LOCK_DIR_NAME, LockPolicy, lock_path, package_lock

if TYPE_CHECKING:
    from pathlib import Path


class TestPackageLock:
    """Tests for package_lock context manager."""

    def test_lock_file_location(self, tmp_path: Path) -> None:
        """Lock files live under the lock directory, keyed by lowercased name."""
        assert lock_path(tmp_path, "Serde") == tmp_path / LOCK_DIR_NAME / "serde.lock"

    def test_released_on_exit(self, tmp_path: Path) -> None:
        """The lock can be re-taken after the context exits."""
        with package_lock(tmp_path, "foo", LockPolicy.FAIL_FAST):
            pass
        with package_lock(tmp_path, "foo", LockPolicy.FAIL_FAST):
            pass

    def test_released_on_error(self, tmp_path: Path) -> None:
        """An exception inside the context still releases the lock."""
        with pytest.raises(RuntimeError), package_lock(tmp_path, "foo"):
            raise RuntimeError("boom")

        with package_lock(tmp_path, "foo", LockPolicy.FAIL_FAST):
            pass

    def test_fail_fast_raises(self, tmp_path: Path) -> None:
        """A second holder with FAIL_FAST gets Locked."""
        with package_lock(tmp_path, "foo"):
            with pytest.raises(Locked) as exc_info, package_lock(
                tmp_path, "FOO", LockPolicy.FAIL_FAST
            ):
                pass
        assert exc_info.value.package == "FOO"

    def test_wait_blocks_until_released(self, tmp_path: Path) -> None:
        """With WAIT a second writer proceeds once the first releases."""
        order: list[str] = []
        holding = threading.Event()
        release = threading.Event()

        def holder() -> None:
            with package_lock(tmp_path, "foo"):
                order.append("first")
                holding.set()
                release.wait(timeout=5)
                order.append("first-done")

        thread = threading.Thread(target=holder)
        thread.start()
        assert holding.wait(timeout=5)

        timer = threading.Timer(0.2, release.set)
        timer.start()
        with package_lock(tmp_path, "foo", LockPolicy.WAIT):
            order.append("second")
        thread.join(timeout=5)
        timer.cancel()

        assert order == ["first", "first-done", "second"]
