"""Index layout: where a package's record file lives in the index tree.

Bucketing rule (directories from the lowercased name, file keeps its case):
    1 char      1/<name>
    2 chars     2/<name>
    3 chars     3/<c0>/<name>
    4+ chars    <c0c1>/<c2c3>/<name>

Pure functions only; nothing here touches the filesystem.
"""

from __future__ import annotations

from pathlib import PurePosixPath


def _bucket_parts(name: str) -> tuple[str, ...]:
    if len(name) == 1:
        return ("1",)
    if len(name) == 2:
        return ("2",)
    if len(name) == 3:
        return ("3", name[0])
    return (name[0:2], name[2:4])


def bucket_for(name: str) -> PurePosixPath:
    """Directory (relative to the index root) that holds `name`."""
    return PurePosixPath(*_bucket_parts(name.lower()))


def path_for(name: str) -> PurePosixPath:
    """Relative path of the record file for `name`.

    Example:
        path_for("Serde") -> PurePosixPath("se/rd/Serde")
    """
    return bucket_for(name) / name


def prefix_for(name: str) -> str:
    """`{prefix}` value of a download URL template (original case)."""
    return "/".join(_bucket_parts(name))


def lower_prefix_for(name: str) -> str:
    """`{lowerprefix}` value of a download URL template."""
    return prefix_for(name.lower())


def name_for_path(rel_path: str | PurePosixPath) -> str | None:
    """Inverse of path_for.

    Args:
        rel_path: Path relative to the index root.

    Returns:
        The package name the path may hold (its final segment), or None if
        the bucketing rule would not put that name at this path.
    """
    path = PurePosixPath(rel_path)
    if not path.parts:
        return None
    name = path.name
    if path.parent != bucket_for(name):
        return None
    return name
