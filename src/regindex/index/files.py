"""Filesystem helpers shared by the config store, record store and validator."""

from __future__ import annotations

import hashlib
import os
import tempfile
from contextlib import contextmanager
from pathlib import Path
from typing import TYPE_CHECKING

from regindex.errors import IoFailure

if TYPE_CHECKING:
    from collections.abc import Iterator

CONFIG_FILE_NAME = "config.json"


def _target_mode(path: Path) -> int:
    """Mode the written file should end up with.

    An existing file keeps its mode; a new one gets 0o666 minus the umask,
    like a plain open() would.
    """
    try:
        return os.stat(path).st_mode & 0o7777
    except FileNotFoundError:
        umask = os.umask(0)
        os.umask(umask)
        return 0o666 & ~umask


def _write_temp(path: Path, data: bytes) -> str:
    """Write data to a fsynced temp file next to `path` and return its name."""
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
    except OSError as e:
        msg = f"Failed to create directory or temp file for `{path}`: {e}"
        raise IoFailure(msg) from e
    try:
        with os.fdopen(fd, "wb") as handle:
            handle.write(data)
            handle.flush()
            os.fchmod(handle.fileno(), _target_mode(path))
            os.fsync(handle.fileno())
    except OSError as e:
        _discard(tmp_name)
        msg = f"Failed to write `{path}`: {e}"
        raise IoFailure(msg) from e
    return tmp_name


def _discard(tmp_name: str) -> None:
    if os.path.exists(tmp_name):
        os.unlink(tmp_name)


def _commit(tmp_name: str, path: Path) -> None:
    try:
        os.replace(tmp_name, path)
    except OSError as e:
        _discard(tmp_name)
        msg = f"Failed to write `{path}`: {e}"
        raise IoFailure(msg) from e


def atomic_write_bytes(path: Path, data: bytes) -> None:
    """Replace `path` with `data` so readers see the old or new file, never a mix.

    The temp file lives in the target directory so `os.replace` stays on one
    filesystem. An existing target keeps its permission bits.

    Raises:
        IoFailure: If any step of the write fails. The target is untouched.
    """
    _commit(_write_temp(path, data), path)


@contextmanager
def staged_write(path: Path, data: bytes) -> Iterator[None]:
    """Write `data` for `path` up front and move it into place when the block succeeds.

    Directory and write errors surface before the block runs. If the block
    raises, the staged file is removed and `path` is left as it was.

    Raises:
        IoFailure: If the staged file cannot be written or moved into place.
    """
    tmp_name = _write_temp(path, data)
    try:
        yield
    except BaseException:
        _discard(tmp_name)
        raise
    _commit(tmp_name, path)


def read_bytes(path: Path) -> bytes:
    try:
        return path.read_bytes()
    except OSError as e:
        msg = f"Failed to read `{path}`: {e}"
        raise IoFailure(msg) from e


def iter_record_files(root: Path) -> Iterator[Path]:
    """Yield every record file under the index root, in sorted order.

    Skips config.json, dot-entries (.git, lock directory, temp files) and
    anything that is not a regular file.
    """
    for dirpath, dirnames, filenames in os.walk(root):
        dirnames[:] = sorted(d for d in dirnames if not d.startswith("."))
        for filename in sorted(filenames):
            if filename.startswith("."):
                continue
            if filename == CONFIG_FILE_NAME and os.path.samefile(dirpath, root):
                continue
            full = os.path.join(dirpath, filename)
            if os.path.isfile(full) and not os.path.islink(full):
                yield Path(full)


def archive_path(template: str, name: str, version: str) -> Path:
    """Location of `<name>-<version>.crate` under a directory template.

    The template may contain `{crate}` and `{version}` markers, e.g.
    `crates/{crate}/{version}`.
    """
    directory = template.replace("{crate}", name).replace("{version}", version)
    return Path(directory) / f"{name}-{version}.crate"


def compute_file_sha256(filepath: Path) -> str:
    """Compute SHA256 hash of a file.

    Args:
        filepath: Path to file.

    Returns:
        Hex-encoded SHA256 hash (64 chars).

    Raises:
        IoFailure: If the file cannot be read.
    """
    hasher = hashlib.sha256()
    try:
        with filepath.open("rb") as f:
            for chunk in iter(lambda: f.read(8192), b""):
                hasher.update(chunk)
    except OSError as e:
        msg = f"Failed to read `{filepath}`: {e}"
        raise IoFailure(msg) from e
    return hasher.hexdigest()
