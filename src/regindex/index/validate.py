"""Whole-index integrity checks.

validate() walks the tree read-only and collects every problem it finds
instead of stopping at the first one. Writers replace files atomically, so
the walk never sees a half-written record file.
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from typing import TYPE_CHECKING

from regindex.errors import InvalidConfig, IoFailure, MalformedRecord, MissingConfig
from regindex.index.config import IndexRoot, load_config
from regindex.index.files import (
    archive_path,
    compute_file_sha256,
    iter_record_files,
    read_bytes,
)
from regindex.index.layout import name_for_path, path_for
from regindex.index.record import (
    ViolationKind,
    check_record,
    name_problem,
    parse_record,
)
from regindex.index.store import split_lines
from regindex.index.version import Version, is_valid_version
from regindex.logging_config import get_logger

if TYPE_CHECKING:
    from pathlib import Path

__all__ = ["Violation", "ViolationKind", "validate"]

logger = get_logger(__name__)


@dataclass(frozen=True)
class Violation:
    """One integrity problem.

    Attributes:
        kind: Problem category.
        path: File path relative to the index root.
        line: 1-based line number, when the problem is in one line.
        field: Record field involved, when known.
        message: Human-readable description.
    """

    kind: ViolationKind
    path: str
    line: int | None
    field: str | None
    message: str

    def __str__(self) -> str:
        location = self.path if self.line is None else f"{self.path}:{self.line}"
        return f"{location}: [{self.kind.value}] {self.message}"


def _check_config(root: IndexRoot) -> list[Violation]:
    try:
        load_config(root.path)
    except InvalidConfig as e:
        return [Violation(ViolationKind.INVALID_CONFIG, "config.json", None, "dl", str(e))]
    except MissingConfig as e:
        kind = (
            ViolationKind.INVALID_CONFIG
            if root.config_path.exists()
            else ViolationKind.MISSING_CONFIG
        )
        return [Violation(kind, "config.json", None, None, str(e))]
    return []


def _check_file(path: Path, rel: str, archives: str | None) -> list[Violation]:
    found: list[Violation] = []
    try:
        data = read_bytes(path)
    except IoFailure as e:
        return [Violation(ViolationKind.UNREADABLE_FILE, rel, None, None, str(e))]
    lines = split_lines(data)

    if not lines:
        found.append(Violation(ViolationKind.FORMAT, rel, None, None, "Empty record file"))
        return found
    if not data.endswith(b"\n"):
        found.append(
            Violation(ViolationKind.FORMAT, rel, len(lines), None, "Missing final newline")
        )

    seen: dict[Version, int] = {}
    for lineno, line in enumerate(lines, start=1):
        if not line.strip():
            found.append(Violation(ViolationKind.FORMAT, rel, lineno, None, "Blank line"))
            continue
        try:
            record = parse_record(line)
        except MalformedRecord as e:
            found.append(Violation(ViolationKind.MALFORMED_RECORD, rel, lineno, e.field, str(e)))
            continue

        if record.name.lower() != path.name.lower():
            found.append(
                Violation(
                    ViolationKind.NAME_MISMATCH,
                    rel,
                    lineno,
                    "name",
                    f"Package `{record.name}:{record.vers}` does not match file name `{rel}`",
                )
            )

        for problem in check_record(record):
            found.append(Violation(problem.kind, rel, lineno, problem.field, problem.message))

        if not is_valid_version(record.vers):
            continue
        version = record.version
        if version in seen:
            found.append(
                Violation(
                    ViolationKind.DUPLICATE_VERSION,
                    rel,
                    lineno,
                    "vers",
                    f"Version `{record.vers}` appears multiple times in `{record.name}` "
                    f"(first on line {seen[version]})",
                )
            )
        else:
            seen[version] = lineno

        if archives is not None and name_problem(record.name, "package name") is None:
            found.extend(
                _check_archive(record.name, record.vers, record.cksum, rel, lineno, archives)
            )

    return found


def _check_archive(
    name: str, vers: str, cksum: str, rel: str, lineno: int, archives: str
) -> list[Violation]:
    crate_path = archive_path(archives, name, vers)
    if not crate_path.is_file():
        return [
            Violation(
                ViolationKind.MISSING_ARCHIVE,
                rel,
                lineno,
                None,
                f"Could not find archive for `{name}:{vers}` at `{crate_path}`",
            )
        ]
    try:
        actual = compute_file_sha256(crate_path)
    except IoFailure as e:
        return [Violation(ViolationKind.MISSING_ARCHIVE, rel, lineno, None, str(e))]
    if actual != cksum:
        return [
            Violation(
                ViolationKind.CHECKSUM_MISMATCH,
                rel,
                lineno,
                "cksum",
                f"Checksum did not match for package `{name}:{vers}`: "
                f"index {cksum}, archive {actual}",
            )
        ]
    return []


def validate(root: IndexRoot | Path | str, *, archives: str | None = None) -> list[Violation]:
    """Check the whole index.

    Args:
        root: Index root handle or path.
        archives: Optional directory template (`{crate}`, `{version}`
            markers) holding `<name>-<version>.crate` files whose SHA-256
            must equal each record's cksum.

    Returns:
        Every violation found, in tree order (empty if the index is clean).

    Raises:
        IoFailure: If a record file cannot be read.
    """
    root = IndexRoot.of(root)
    violations = _check_config(root)
    buckets: dict[tuple[str, str], list[str]] = defaultdict(list)
    files = 0

    for path in iter_record_files(root.path):
        files += 1
        rel = path.relative_to(root.path).as_posix()
        if name_for_path(rel) is None:
            violations.append(
                Violation(
                    ViolationKind.MISPLACED_FILE,
                    rel,
                    None,
                    None,
                    f"File `{rel}` is not in the correct location "
                    f"(expected `{path_for(path.name)}`)",
                )
            )
        parent = path.parent.relative_to(root.path).as_posix()
        buckets[(parent, path.name.lower())].append(rel)
        violations.extend(_check_file(path, rel, archives))

    for paths in buckets.values():
        for rel in paths[1:]:
            violations.append(
                Violation(
                    ViolationKind.NAME_COLLISION,
                    rel,
                    None,
                    "name",
                    f"File `{rel}` differs only in case from `{paths[0]}`",
                )
            )

    logger.info(
        "Validated index",
        extra={"root": str(root.path), "files": files, "violations": len(violations)},
    )
    return violations
