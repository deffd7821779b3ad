"""Package manifest (Cargo.toml) parsing and .crate archive reading.

A .crate archive is a gzip-compressed tar whose entries all live under one
`<name>-<version>/` directory:

    foo-0.1.0/Cargo.toml
    foo-0.1.0/src/lib.rs

Only the manifest is read; nothing is extracted to disk.
"""

from __future__ import annotations

import io
import tarfile
import tomllib
import zlib
from dataclasses import dataclass, field
from pathlib import PurePosixPath
from typing import Any

from regindex.errors import InvalidManifest
from regindex.index.record import DependencyKind, name_problem
from regindex.index.version import is_valid_version

MANIFEST_FILE_NAME = "Cargo.toml"
EDITIONS = frozenset({"2015", "2018", "2021", "2024"})
DEFAULT_EDITION = "2015"

# Hyphen and underscore spellings are both accepted
_DEPENDENCY_TABLES: tuple[tuple[str, DependencyKind], ...] = (
    ("dependencies", DependencyKind.NORMAL),
    ("dev-dependencies", DependencyKind.DEV),
    ("dev_dependencies", DependencyKind.DEV),
    ("build-dependencies", DependencyKind.BUILD),
    ("build_dependencies", DependencyKind.BUILD),
)


@dataclass
class ManifestDependency:
    """One dependency as declared in the manifest.

    Attributes:
        name: Key in the dependency table (the rename, if renamed).
        req: Version requirement, or None when only path/git is given.
        kind: normal, dev or build.
        features: Features enabled on the dependency.
        optional: Whether the dependency is optional.
        default_features: Whether default features are enabled.
        target: cfg expression from a `[target.<cfg>]` table.
        package: Original package name when renamed.
        registry_index: Index URL of the registry it comes from, if not the default.
        path: Local path source, if any.
        git: Git source, if any.
    """

    name: str
    req: str | None
    kind: DependencyKind = DependencyKind.NORMAL
    features: list[str] = field(default_factory=list)
    optional: bool = False
    default_features: bool = True
    target: str | None = None
    package: str | None = None
    registry_index: str | None = None
    path: str | None = None
    git: str | None = None


@dataclass
class PackageManifest:
    """The parts of a manifest that go into an index record."""

    name: str
    version: str
    edition: str = DEFAULT_EDITION
    links: str | None = None
    dependencies: list[ManifestDependency] = field(default_factory=list)
    features: dict[str, list[str]] = field(default_factory=dict)

    @property
    def label(self) -> str:
        return f"{self.name}:{self.version}"


def _expect(value: Any, kind: type | tuple[type, ...], what: str, manifest: str) -> Any:
    if not isinstance(value, kind):
        msg = f"{manifest}: `{what}` has the wrong type ({type(value).__name__})"
        raise InvalidManifest(msg, field=what)
    return value


def _string_list(value: Any, what: str, manifest: str) -> list[str]:
    items = _expect(value, list, what, manifest)
    for item in items:
        _expect(item, str, what, manifest)
    return list(items)


def _parse_dependency(
    name: str,
    value: Any,
    kind: DependencyKind,
    target: str | None,
    label: str,
) -> ManifestDependency:
    what = f"dependency `{name}` of `{label}`"
    if isinstance(value, str):
        return ManifestDependency(name=name, req=value, kind=kind, target=target)
    if not isinstance(value, dict):
        msg = f"Invalid {what}: expected a version string or a table"
        raise InvalidManifest(msg, field=f"dependencies.{name}")

    def opt_str(key: str) -> str | None:
        if key not in value:
            return None
        return _expect(value[key], str, f"dependencies.{name}.{key}", label)

    def opt_bool(key: str, default: bool) -> bool:
        if key not in value:
            return default
        return _expect(value[key], bool, f"dependencies.{name}.{key}", label)

    default_features = opt_bool("default-features", opt_bool("default_features", True))
    return ManifestDependency(
        name=name,
        req=opt_str("version"),
        kind=kind,
        features=_string_list(value.get("features", []), f"dependencies.{name}.features", label),
        optional=opt_bool("optional", False),
        default_features=default_features,
        target=target,
        package=opt_str("package"),
        registry_index=opt_str("registry-index"),
        path=opt_str("path"),
        git=opt_str("git"),
    )


def _parse_dependency_tables(
    tables: dict[str, Any], target: str | None, label: str
) -> list[ManifestDependency]:
    deps: list[ManifestDependency] = []
    for key, kind in _DEPENDENCY_TABLES:
        if key not in tables:
            continue
        table = _expect(tables[key], dict, key, label)
        for name, value in table.items():
            deps.append(_parse_dependency(name, value, kind, target, label))
    return deps


def parse_manifest(source: str | dict[str, Any]) -> PackageManifest:
    """Parse a manifest from TOML text or an already-decoded table.

    Args:
        source: Cargo.toml contents, or the dict tomllib would produce.

    Returns:
        Parsed manifest.

    Raises:
        InvalidManifest: If the TOML does not parse, [package] is missing,
            or a field has the wrong type or an invalid value.
    """
    if isinstance(source, str):
        try:
            data = tomllib.loads(source)
        except tomllib.TOMLDecodeError as e:
            msg = f"Failed to parse {MANIFEST_FILE_NAME}: {e}"
            raise InvalidManifest(msg) from e
    else:
        data = source

    package = data.get("package")
    if not isinstance(package, dict):
        msg = f"{MANIFEST_FILE_NAME} has no [package] table"
        raise InvalidManifest(msg, field="package")

    name = _expect(package.get("name"), str, "package.name", MANIFEST_FILE_NAME)
    version = _expect(package.get("version"), str, "package.version", MANIFEST_FILE_NAME)
    problem = name_problem(name, "package name")
    if problem:
        raise InvalidManifest(problem, package=name, version=version, field="name")
    if not is_valid_version(version):
        msg = f"Package `{name}` has invalid version `{version}`"
        raise InvalidManifest(msg, package=name, version=version, field="version")
    label = f"{name}:{version}"

    edition = _expect(package.get("edition", DEFAULT_EDITION), str, "package.edition", label)
    if edition not in EDITIONS:
        msg = (
            f"Package `{label}` has unsupported edition `{edition}`; "
            f"expected one of {', '.join(sorted(EDITIONS))}"
        )
        raise InvalidManifest(msg, package=name, version=version, field="edition")

    links = package.get("links")
    if links is not None:
        _expect(links, str, "package.links", label)

    dependencies = _parse_dependency_tables(data, None, label)
    targets = _expect(data.get("target", {}), dict, "target", label)
    for cfg, tables in targets.items():
        _expect(tables, dict, f"target.{cfg}", label)
        dependencies.extend(_parse_dependency_tables(tables, cfg, label))

    features: dict[str, list[str]] = {}
    for feature, values in _expect(data.get("features", {}), dict, "features", label).items():
        features[feature] = _string_list(values, f"features.{feature}", label)

    return PackageManifest(
        name=name,
        version=version,
        edition=edition,
        links=links,
        dependencies=dependencies,
        features=features,
    )


def read_archive_manifest(archive: bytes) -> PackageManifest:
    """Read and parse the manifest of a .crate archive.

    Raises:
        InvalidManifest: If the archive is not a gzip tar, has an entry with
            an absolute path or `..` component, does not have exactly one
            top-level `<name>-<version>` directory, lacks a manifest there,
            or the manifest's name/version do not match the directory.
    """
    try:
        with tarfile.open(fileobj=io.BytesIO(archive), mode="r:gz") as tar:
            members = tar.getmembers()
            roots: set[str] = set()
            for member in members:
                path = PurePosixPath(member.name)
                if path.is_absolute() or ".." in path.parts:
                    msg = f"Archive entry `{member.name}` escapes the package directory"
                    raise InvalidManifest(msg)
                if path.parts:
                    roots.add(path.parts[0])
            if len(roots) != 1:
                msg = (
                    f"Archive must contain exactly one top-level directory, "
                    f"found {len(roots)}: {sorted(roots)}"
                )
                raise InvalidManifest(msg)
            root = roots.pop()

            handle = None
            manifest_name = f"{root}/{MANIFEST_FILE_NAME}"
            for member in members:
                if PurePosixPath(member.name) == PurePosixPath(manifest_name) and member.isfile():
                    handle = tar.extractfile(member)
                    break
            if handle is None:
                msg = f"Archive has no `{manifest_name}`"
                raise InvalidManifest(msg)
            raw = handle.read()
    except (tarfile.TarError, EOFError, OSError, zlib.error) as e:
        msg = f"Failed to read package archive: {e}"
        raise InvalidManifest(msg) from e

    try:
        text = raw.decode("utf-8")
    except UnicodeDecodeError as e:
        msg = f"`{manifest_name}` is not valid UTF-8"
        raise InvalidManifest(msg) from e

    manifest = parse_manifest(text)
    expected = f"{manifest.name}-{manifest.version}"
    if root != expected:
        msg = f"Archive directory `{root}` does not match package `{manifest.label}`"
        raise InvalidManifest(msg, package=manifest.name, version=manifest.version)
    return manifest
