"""Build index records from a package manifest and its archive.

Pure: no filesystem writes, no index access. Dependencies are soft
references; whether they exist in any index is never checked here.
"""

from __future__ import annotations

import hashlib
import re
from typing import TYPE_CHECKING

from regindex.errors import ChecksumMismatch, InvalidManifest, InvalidVersion
from regindex.index.record import (
    Dependency,
    DependencyKind,
    PackageRecord,
    PackageRecordV1,
    PackageRecordV2,
    name_problem,
)
from regindex.index.version import normalize_requirement
from regindex.logging_config import get_logger

if TYPE_CHECKING:
    from regindex.metadata.manifest import ManifestDependency, PackageManifest

logger = get_logger(__name__)

CRATES_IO_INDEX = "https://github.com/rust-lang/crates.io-index"
FEATURE_NAME_PATTERN = re.compile(r"^[A-Za-z0-9_+.-]+$")
ANY_VERSION = "*"


def compute_cksum(archive: bytes) -> str:
    """SHA-256 of the exact archive bytes, as 64 lowercase hex characters."""
    return hashlib.sha256(archive).hexdigest()


def _is_v2_value(value: str) -> bool:
    return value.startswith("dep:") or "?/" in value


def _fail(manifest: PackageManifest, message: str, field: str) -> InvalidManifest:
    return InvalidManifest(
        f"Package `{manifest.label}`: {message}",
        package=manifest.name,
        version=manifest.version,
        field=field,
    )


def _check_features(manifest: PackageManifest) -> None:
    """Apply the feature rules.

    Raises:
        InvalidManifest: On the first rule a feature breaks.
    """
    dep_names = {d.name for d in manifest.dependencies}
    optional = {d.name for d in manifest.dependencies if d.optional}
    namespaced = {
        value[len("dep:") :]
        for values in manifest.features.values()
        for value in values
        if value.startswith("dep:")
    }
    # optional deps referenced with dep: lose their implicit feature
    implicit = optional - namespaced

    for feature, values in manifest.features.items():
        field = f"features.{feature}"
        if not FEATURE_NAME_PATTERN.match(feature):
            raise _fail(manifest, f"invalid feature name `{feature}`", field)
        if feature in optional and feature not in namespaced:
            raise _fail(
                manifest,
                f"feature `{feature}` has the same name as optional dependency `{feature}`; "
                f"reference the dependency as `dep:{feature}` to define the feature explicitly",
                field,
            )
        for value in values:
            if value.startswith("dep:"):
                target = value[len("dep:") :]
                if target not in optional:
                    raise _fail(
                        manifest,
                        f"feature `{feature}` includes `{value}`, "
                        f"but `{target}` is not an optional dependency",
                        field,
                    )
            elif "/" in value:
                dep_part, dep_feature = value.split("/", 1)
                dep_name = dep_part.removesuffix("?")
                if dep_name not in dep_names:
                    raise _fail(
                        manifest,
                        f"feature `{feature}` includes `{value}`, "
                        f"but `{dep_name}` is not a dependency",
                        field,
                    )
                if not FEATURE_NAME_PATTERN.match(dep_feature):
                    raise _fail(
                        manifest, f"feature `{feature}` includes invalid value `{value}`", field
                    )
            elif value not in manifest.features and value not in implicit:
                raise _fail(
                    manifest,
                    f"feature `{feature}` includes `{value}` which is neither "
                    f"a feature nor an optional dependency",
                    field,
                )


def _build_dependency(
    manifest: PackageManifest, dep: ManifestDependency, index_url: str | None
) -> Dependency:
    field = f"dependencies.{dep.name}"
    for name in (dep.name, dep.package):
        problem = name_problem(name, "dependency name") if name is not None else None
        if problem:
            raise _fail(manifest, problem, field)
    if dep.kind is DependencyKind.DEV and dep.optional:
        raise _fail(manifest, f"dev-dependency `{dep.name}` cannot be optional", field)

    if dep.req is None:
        if dep.kind is not DependencyKind.DEV:
            raise _fail(
                manifest,
                f"dependency `{dep.name}` has no version requirement "
                f"(path and git sources need a `version` to be published)",
                field,
            )
        req = ANY_VERSION
    else:
        try:
            req = normalize_requirement(dep.req)
        except InvalidVersion as e:
            raise _fail(
                manifest, f"dependency `{dep.name}` has invalid requirement: {e}", field
            ) from e

    registry: str | None = dep.registry_index or CRATES_IO_INDEX
    if index_url is not None and registry.rstrip("/") == index_url.rstrip("/"):
        registry = None

    return Dependency(
        name=dep.name,
        req=req,
        features=list(dep.features),
        optional=dep.optional,
        default_features=dep.default_features,
        target=dep.target,
        kind=dep.kind,
        registry=registry,
        package=dep.package,
    )


def build_record(
    manifest: PackageManifest,
    archive: bytes,
    *,
    index_url: str | None = None,
    expected_cksum: str | None = None,
) -> PackageRecord:
    """Build the index record for one package version.

    Args:
        manifest: Parsed manifest of the package.
        archive: Exact bytes of the .crate archive.
        index_url: Public URL of the index the record is for. Dependencies
            from this index get no `registry` field.
        expected_cksum: Digest the caller expects; checked against the archive.

    Returns:
        A v1 record, or a v2 record when any feature uses `dep:` or `?/`
        syntax (those features are moved to `features2`).

    Raises:
        InvalidManifest: If a dependency or feature breaks a rule.
        ChecksumMismatch: If expected_cksum disagrees with the archive.
    """
    cksum = compute_cksum(archive)
    if expected_cksum is not None and expected_cksum.lower() != cksum:
        msg = (
            f"Checksum mismatch for `{manifest.label}`: "
            f"expected {expected_cksum}, archive is {cksum}"
        )
        raise ChecksumMismatch(msg, package=manifest.name, version=manifest.version, field="cksum")

    _check_features(manifest)
    deps = [_build_dependency(manifest, dep, index_url) for dep in manifest.dependencies]

    features: dict[str, list[str]] = {}
    features2: dict[str, list[str]] = {}
    for feature in sorted(manifest.features):
        values = list(manifest.features[feature])
        if any(_is_v2_value(v) for v in values):
            features2[feature] = values
        else:
            features[feature] = values

    common = {
        "name": manifest.name,
        "vers": manifest.version,
        "deps": deps,
        "cksum": cksum,
        "features": features,
        "yanked": False,
        "links": manifest.links,
    }
    record: PackageRecord
    if features2:
        record = PackageRecordV2(**common, features2=features2)
    else:
        record = PackageRecordV1(**common)

    logger.debug(
        "Built record",
        extra={"package": record.name, "version": record.vers, "schema": record.v},
    )
    return record
