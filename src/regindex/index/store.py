"""Record store: reads and mutates record files.

A record file is the publication history of one package, one JSON record
per line. Mutations only ever append a line or replace a single line; every
other line is carried over byte for byte. Each mutation runs under the
package's exclusive lock and lands with an atomic rename.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from regindex.errors import DuplicateVersion, MalformedRecord, VersionNotFound
from regindex.index.config import IndexRoot
from regindex.index.files import atomic_write_bytes, iter_record_files, read_bytes
from regindex.index.layout import bucket_for
from regindex.index.lock import package_lock
from regindex.index.record import PackageRecord, check_record, parse_record
from regindex.index.version import Version, parse_version
from regindex.logging_config import get_logger

if TYPE_CHECKING:
    from collections.abc import Iterator
    from pathlib import Path

logger = get_logger(__name__)


def split_lines(data: bytes) -> list[bytes]:
    """Split file content into lines without their terminators.

    A trailing newline does not produce an empty final line.
    """
    if not data:
        return []
    lines = data.split(b"\n")
    if lines[-1] == b"":
        lines.pop()
    return lines


def join_lines(lines: list[bytes]) -> bytes:
    return b"".join(line + b"\n" for line in lines)


class RecordStore:
    """Record files of one index.

    Args:
        root: Index root handle or path.
    """

    def __init__(self, root: IndexRoot | Path | str) -> None:
        self.root = IndexRoot.of(root)

    def locate(self, name: str) -> Path:
        """Path of the record file for `name`.

        Lookup is case-insensitive: an existing file whose name differs only
        in case is returned. Otherwise this is where a new file would go.
        """
        bucket = self.root.path / bucket_for(name)
        exact = bucket / name
        if exact.is_file():
            return exact
        if bucket.is_dir():
            lowered = name.lower()
            for entry in sorted(bucket.iterdir()):
                if entry.name.lower() == lowered and entry.is_file():
                    return entry
        return exact

    def _relative(self, path: Path) -> str:
        return path.relative_to(self.root.path).as_posix()

    def read_lines(self, name: str) -> list[bytes]:
        """Raw record lines for `name` (empty if the package is not indexed)."""
        path = self.locate(name)
        if not path.exists():
            return []
        return split_lines(read_bytes(path))

    def _parse_lines(self, path: Path, lines: list[bytes]) -> list[PackageRecord]:
        records: list[PackageRecord] = []
        for lineno, line in enumerate(lines, start=1):
            try:
                records.append(parse_record(line))
            except MalformedRecord as e:
                msg = f"{self._relative(path)}:{lineno}: {e}"
                raise MalformedRecord(
                    msg, package=e.package or path.name, version=e.version, field=e.field
                ) from e
        return records

    def read(self, name: str) -> list[PackageRecord]:
        """All records for `name` in publication order.

        Returns:
            Records, or an empty list if the package is not indexed.

        Raises:
            MalformedRecord: If a line does not parse.
            IoFailure: If the file cannot be read.
        """
        path = self.locate(name)
        if not path.exists():
            return []
        return self._parse_lines(path, split_lines(read_bytes(path)))

    def names(self) -> Iterator[str]:
        """Every package name with a record file, in path order."""
        for path in iter_record_files(self.root.path):
            yield path.name

    def iter_records(self) -> Iterator[PackageRecord]:
        """Every record in the index, file by file."""
        for path in iter_record_files(self.root.path):
            yield from self._parse_lines(path, split_lines(read_bytes(path)))

    def append(self, name: str, record: PackageRecord, *, replace: bool = False) -> None:
        """Append a record to the package's file.

        Args:
            name: Package name (must match record.name, ignoring case).
            record: Record to add.
            replace: Substitute the existing line for the same version
                instead of failing.

        Raises:
            MalformedRecord: If the record breaks a semantic rule, or the
                existing file does not parse.
            DuplicateVersion: If the version is already present and
                replace is False. The file is left unchanged.
            Locked: If the package is locked and the policy is fail-fast.
            IoFailure: If the file cannot be read or written.
        """
        if record.name.lower() != name.lower():
            msg = f"Record name `{record.name}` does not match package `{name}`"
            raise MalformedRecord(msg, package=name, version=record.vers, field="name")
        problems = check_record(record)
        if problems:
            first = problems[0]
            raise MalformedRecord(
                first.message, package=record.name, version=record.vers, field=first.field
            )
        version = record.version

        with package_lock(self.root.path, name, self.root.lock_policy):
            path = self.locate(name)
            data = read_bytes(path) if path.exists() else b""
            lines = split_lines(data)
            existing = self._parse_lines(path, lines)
            matches = [i for i, r in enumerate(existing) if r.same_version(version)]

            if matches and not replace:
                msg = f"Package `{name}` version `{record.vers}` is already in the index."
                raise DuplicateVersion(msg, package=name, version=record.vers, field="vers")

            if matches:
                for i in matches:
                    lines[i] = record.to_json()
                new_data = join_lines(lines)
            else:
                if data and not data.endswith(b"\n"):
                    data += b"\n"
                new_data = data + record.to_line()

            atomic_write_bytes(path, new_data)

        logger.debug(
            "Replaced record" if matches else "Appended record",
            extra={"package": record.name, "version": record.vers, "path": self._relative(path)},
        )

    def set_yank(self, name: str, version: str | Version, yanked: bool) -> bool:
        """Set the `yanked` flag of one version.

        Only the targeted line is re-serialized; all other lines stay byte
        identical.

        Returns:
            True if the file changed, False if the version was already in
            the requested state (nothing is written).

        Raises:
            InvalidVersion: If `version` is not a semantic version.
            VersionNotFound: If the package or version is not indexed.
            MalformedRecord: If the file does not parse, or holds the
                version more than once.
        """
        if not isinstance(version, Version):
            version = parse_version(version)

        with package_lock(self.root.path, name, self.root.lock_policy):
            path = self.locate(name)
            if not path.exists():
                msg = f"Package `{name}` is not in the index."
                raise VersionNotFound(msg, package=name, version=str(version))
            lines = split_lines(read_bytes(path))
            records = self._parse_lines(path, lines)
            matches = [i for i, r in enumerate(records) if r.same_version(version)]

            if not matches:
                msg = f"Version `{version}` for package `{name}` not found."
                raise VersionNotFound(msg, package=name, version=str(version))
            if len(matches) > 1:
                msg = (
                    f"Version `{version}` for package `{name}` found multiple times, "
                    f"is the index corrupt?"
                )
                raise MalformedRecord(msg, package=name, version=str(version), field="vers")

            index = matches[0]
            current = records[index]
            if current.yanked == yanked:
                return False
            lines[index] = current.with_yanked(yanked).to_json()
            atomic_write_bytes(path, join_lines(lines))

        logger.debug(
            "Yanked version" if yanked else "Unyanked version",
            extra={"package": current.name, "version": current.vers},
        )
        return True
