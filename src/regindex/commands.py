"""Index operations: init, add, list, metadata, yank, unyank, validate.

Each operation is fail-fast and leaves the index unchanged on error.
Mutations log one INFO line each.

Usage:
    from regindex import commands

    index = commands.init("/srv/index", "https://example.com/dl/{crate}/{version}")
    commands.add(index, Path("foo-0.1.0.crate"), "https://example.com/index")
    commands.yank(index, "foo", "0.1.0")
"""

from __future__ import annotations

from contextlib import nullcontext
from pathlib import Path
from typing import TYPE_CHECKING

from regindex.errors import (
    AlreadyExists,
    InvalidConfig,
    InvalidManifest,
    IoFailure,
    MissingConfig,
    YankStateError,
)
from regindex.index.config import (
    IndexConfig,
    IndexOptions,
    IndexRoot,
    dl_template_problem,
    load_config,
    render_dl,
    save_config,
)
from regindex.index.files import CONFIG_FILE_NAME, archive_path, read_bytes, staged_write
from regindex.index.store import RecordStore
from regindex.index.validate import Violation
from regindex.index.validate import validate as validate_index
from regindex.index.version import VersionReq, parse_requirement
from regindex.logging_config import get_logger
from regindex.metadata.builder import build_record
from regindex.metadata.manifest import read_archive_manifest

if TYPE_CHECKING:
    from collections.abc import Iterable, Iterator

    from regindex.index.record import PackageRecord
    from regindex.index.version import Version

logger = get_logger(__name__)


def _read_archive(package_archive: bytes | Path | str) -> bytes:
    if isinstance(package_archive, bytes):
        return package_archive
    path = Path(package_archive)
    if not path.is_file():
        msg = f"Package archive not found at `{path}`"
        raise IoFailure(msg)
    return read_bytes(path)


def _filter(records: Iterable[PackageRecord], req: VersionReq | None) -> Iterator[PackageRecord]:
    for record in records:
        if req is None:
            yield record
            continue
        try:
            version = record.version
        except ValueError:
            continue
        if req.matches(version):
            yield record


def _as_requirement(version_req: str | VersionReq | None) -> VersionReq | None:
    if version_req is None or isinstance(version_req, VersionReq):
        return version_req
    return parse_requirement(version_req)


def init(
    root: Path | str,
    dl: str,
    api: str | None = None,
    *,
    auth_required: bool = False,
    allowed_registries: list[str] | None = None,
    options: IndexOptions | None = None,
) -> IndexRoot:
    """Create a new index.

    The target may be absent, an empty directory, or an index that has a
    valid config but no packages yet (its config is overwritten).

    Args:
        root: Directory for the index.
        dl: Download URL template.
        api: Web API base URL; a trailing `/` is trimmed.
        auth_required: Whether clients must authenticate.
        allowed_registries: Index URLs dependencies may come from.
        options: Runtime options for the returned handle.

    Returns:
        Handle to the new index.

    Raises:
        AlreadyExists: If the path holds anything else, or a config.json
            that does not load.
        InvalidConfig: If `dl` uses an unrecognized placeholder.
        IoFailure: If the directory or config cannot be written.
    """
    path = Path(root)
    if path.exists():
        if not path.is_dir():
            msg = f"Path `{path}` already exists and is not a directory"
            raise AlreadyExists(msg)
        contents = sorted(e.name for e in path.iterdir() if not e.name.startswith("."))
        if contents not in ([], [CONFIG_FILE_NAME]):
            msg = (
                f"Path `{path}` already exists and is not an empty index "
                f"(found {', '.join(contents)})"
            )
            raise AlreadyExists(msg)
        if contents:
            try:
                load_config(path)
            except MissingConfig as e:
                msg = f"Path `{path}` holds a config.json that does not load: {e}"
                raise AlreadyExists(msg) from e

    problem = dl_template_problem(dl)
    if problem:
        raise InvalidConfig(problem, field="dl")

    config = IndexConfig(
        dl=dl,
        api=api.rstrip("/") if api is not None else None,
        auth_required=auth_required,
        allowed_registries=allowed_registries,
    )
    try:
        path.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        msg = f"Failed to create index directory `{path}`: {e}"
        raise IoFailure(msg) from e
    save_config(path, config)

    logger.info("Initialized index", extra={"root": str(path), "dl": dl})
    return IndexRoot.of(path, options)


def metadata(package_archive: bytes | Path | str, index_url: str | None = None) -> PackageRecord:
    """Compute the record a package archive would get, without touching any index.

    Raises:
        InvalidManifest: If the archive or its manifest is invalid.
        IoFailure: If the archive path cannot be read.
    """
    archive = _read_archive(package_archive)
    return build_record(read_archive_manifest(archive), archive, index_url=index_url)


def add(
    root: IndexRoot | Path | str,
    package_archive: bytes | Path | str,
    index_url: str,
    *,
    replace: bool = False,
    upload: str | None = None,
    expected_cksum: str | None = None,
) -> PackageRecord:
    """Add a package version to the index.

    Args:
        root: Index root handle or path.
        package_archive: .crate archive bytes, or a path to one.
        index_url: Public URL of this index; dependencies from it get no
            `registry` field.
        replace: Substitute an existing entry for the same version.
        upload: Directory template (`{crate}`, `{version}` markers) the
            archive is copied into as `<name>-<version>.crate`. A failed
            copy leaves the index unchanged.
        expected_cksum: Digest the caller expects the archive to have.

    Returns:
        The record that was written.

    Raises:
        MissingConfig: If the index has no config.
        InvalidManifest: If the archive is invalid or a dependency comes
            from a registry the config does not allow.
        ChecksumMismatch: If expected_cksum disagrees with the archive.
        DuplicateVersion: If the version exists and replace is False.
        Locked: If the package is locked and the policy is fail-fast.
        IoFailure: On filesystem errors.
    """
    index = IndexRoot.of(root)
    config = load_config(index.path)
    archive = _read_archive(package_archive)
    record = build_record(
        read_archive_manifest(archive),
        archive,
        index_url=index_url,
        expected_cksum=expected_cksum,
    )

    if config.allowed_registries is not None:
        allowed = {r.rstrip("/") for r in config.allowed_registries}
        for dep in record.deps:
            if dep.registry is not None and dep.registry.rstrip("/") not in allowed:
                msg = (
                    f"Package `{record.name}:{record.vers}` dependency `{dep.name}` "
                    f"comes from `{dep.registry}`, which this index does not allow"
                )
                raise InvalidManifest(
                    msg, package=record.name, version=record.vers, field="registry"
                )

    # upload copy is written before the append and moved into place after it
    staging = (
        staged_write(archive_path(upload, record.name, record.vers), archive)
        if upload is not None
        else nullcontext()
    )
    with staging:
        RecordStore(index).append(record.name, record, replace=replace)

    logger.info(
        "Added package",
        extra={
            "package": record.name,
            "version": record.vers,
            "replace": replace,
            "dl": render_dl(config, record),
        },
    )
    return record


def list_versions(
    root: IndexRoot | Path | str,
    name: str,
    version_req: str | VersionReq | None = None,
) -> list[PackageRecord]:
    """Records for one package, in publication order.

    Args:
        root: Index root handle or path.
        name: Package name (case-insensitive).
        version_req: Only return versions matching this requirement.

    Returns:
        Matching records (empty if the package is not indexed).

    Raises:
        InvalidVersion: If version_req does not parse.
        MalformedRecord: If the record file does not parse.
    """
    req = _as_requirement(version_req)
    return [*_filter(RecordStore(root).read(name), req)]


def list_all(
    root: IndexRoot | Path | str,
    version_req: str | VersionReq | None = None,
) -> Iterator[PackageRecord]:
    """Every record in the index, package by package in path order."""
    req = _as_requirement(version_req)
    yield from _filter(RecordStore(root).iter_records(), req)


def _set_yank(
    root: IndexRoot | Path | str, name: str, version: str | Version, yanked: bool
) -> None:
    if not RecordStore(root).set_yank(name, version, yanked):
        state = "already yanked" if yanked else "not yanked"
        msg = f"`{name}:{version}` is {state}!"
        raise YankStateError(msg, package=name, version=str(version), field="yanked")
    logger.info(
        "Yanked package" if yanked else "Unyanked package",
        extra={"package": name, "version": str(version)},
    )


def yank(root: IndexRoot | Path | str, name: str, version: str | Version) -> None:
    """Mark a version as yanked.

    Raises:
        VersionNotFound: If the package or version is not indexed.
        YankStateError: If the version is already yanked.
    """
    _set_yank(root, name, version, True)


def unyank(root: IndexRoot | Path | str, name: str, version: str | Version) -> None:
    """Clear the yanked flag of a version.

    Raises:
        VersionNotFound: If the package or version is not indexed.
        YankStateError: If the version is not yanked.
    """
    _set_yank(root, name, version, False)


def validate(root: IndexRoot | Path | str, archives: str | None = None) -> list[Violation]:
    """Check the whole index; see regindex.index.validate."""
    return validate_index(root, archives=archives)


# `list` shadows the builtin inside this module; nothing below may call it
list = list_versions  # noqa: A001
