"""Index record schema.

One record is one JSON line in a record file:

    {"name":"foo","vers":"0.1.0","deps":[...],"cksum":"<64 hex>","features":{},"yanked":false}

Records are a tagged variant on `v`:
- v1 (default): `v` is never written, `features2` is not allowed.
- v2: `"v":2` is written, followed by `features2` holding the features that
  use namespaced (`dep:x`) or weak (`x?/feat`) syntax.

Key order on output is fixed (name, vers, deps, cksum, features, yanked,
links, v, features2) and optional keys are omitted at their default, so a
re-serialized line diffs cleanly against the rest of the file.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, Literal

import orjson
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from regindex.errors import InvalidVersion, MalformedRecord
from regindex.index.version import Version, is_valid_version, parse_requirement, parse_version

NAME_PATTERN = re.compile(r"^[A-Za-z0-9_-]+$")
MAX_NAME_LENGTH = 64
CKSUM_PATTERN = re.compile(r"^[0-9a-f]{64}$")


class DependencyKind(str, Enum):
    """Dependency kind."""

    NORMAL = "normal"
    DEV = "dev"
    BUILD = "build"


class ViolationKind(str, Enum):
    """Category of an index integrity problem."""

    MISSING_CONFIG = "missing_config"
    INVALID_CONFIG = "invalid_config"
    MISPLACED_FILE = "misplaced_file"
    NAME_COLLISION = "name_collision"
    FORMAT = "format"
    MALFORMED_RECORD = "malformed_record"
    NAME_MISMATCH = "name_mismatch"
    INVALID_NAME = "invalid_name"
    INVALID_VERSION = "invalid_version"
    DUPLICATE_VERSION = "duplicate_version"
    INVALID_CHECKSUM = "invalid_checksum"
    INVALID_REQUIREMENT = "invalid_requirement"
    MISSING_ARCHIVE = "missing_archive"
    CHECKSUM_MISMATCH = "checksum_mismatch"
    UNREADABLE_FILE = "unreadable_file"


@dataclass(frozen=True)
class RecordProblem:
    """Semantic problem found in an otherwise well-formed record."""

    kind: ViolationKind
    field: str
    message: str


def name_problem(name: str, what: str) -> str | None:
    """Check package name syntax.

    Args:
        name: Name to check.
        what: Description used in the message ("package name", "dependency of `foo:1.0.0`").

    Returns:
        Error message, or None if the name is valid.
    """
    if not name:
        return f"Empty {what}"
    if len(name) > MAX_NAME_LENGTH:
        return f"{what.capitalize()} `{name}` is longer than {MAX_NAME_LENGTH} characters"
    if NAME_PATTERN.match(name) is None:
        bad = next(ch for ch in name if not (ch.isascii() and (ch.isalnum() or ch in "-_")))
        return f"Invalid character `{bad}` in {what}: `{name}`"
    return None


class Dependency(BaseModel):
    """A dependency of one package version.

    Attributes:
        name: Dependency name as used by the dependent (the rename, if renamed).
        req: Normalized version requirement.
        features: Features enabled on the dependency.
        optional: Whether the dependency is optional.
        default_features: Whether the dependency's default features are enabled.
        target: Target/cfg expression the dependency is limited to.
        kind: normal, dev or build.
        registry: Index URL of another registry; None means the same registry.
        package: Original package name when renamed.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    name: str
    req: str
    features: list[str] = Field(default_factory=list)
    optional: bool = False
    default_features: bool = True
    target: str | None = None
    kind: DependencyKind = DependencyKind.NORMAL
    registry: str | None = None
    package: str | None = None

    @field_validator("kind", mode="before")
    @classmethod
    def default_kind(cls, v: Any) -> Any:
        """Older entries carry `"kind": null`; read it as normal."""
        return DependencyKind.NORMAL if v is None else v

    @property
    def package_name(self) -> str:
        """Name of the package the dependency resolves to."""
        return self.package or self.name

    def to_dict(self) -> dict[str, Any]:
        """Convert to an ordered dictionary for JSON serialization."""
        data: dict[str, Any] = {
            "name": self.name,
            "req": self.req,
            "features": list(self.features),
            "optional": self.optional,
            "default_features": self.default_features,
        }
        if self.target is not None:
            data["target"] = self.target
        data["kind"] = self.kind.value
        if self.registry is not None:
            data["registry"] = self.registry
        if self.package is not None:
            data["package"] = self.package
        return data


class _RecordBase(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    name: str = Field(..., min_length=1)
    vers: str = Field(..., min_length=1)
    deps: list[Dependency]
    cksum: str
    features: dict[str, list[str]]
    yanked: bool
    links: str | None = None

    @property
    def version(self) -> Version:
        """Parsed `vers`.

        Raises:
            InvalidVersion: If `vers` is not a strict semantic version.
        """
        return parse_version(self.vers)

    def same_version(self, version: Version) -> bool:
        try:
            return self.version == version
        except InvalidVersion:
            return False

    def with_yanked(self, yanked: bool) -> PackageRecord:
        return self.model_copy(update={"yanked": yanked})  # type: ignore[return-value]

    def to_dict(self) -> dict[str, Any]:
        """Convert to an ordered dictionary for JSON serialization."""
        data: dict[str, Any] = {
            "name": self.name,
            "vers": self.vers,
            "deps": [d.to_dict() for d in self.deps],
            "cksum": self.cksum,
            "features": {k: list(v) for k, v in self.features.items()},
            "yanked": self.yanked,
        }
        if self.links is not None:
            data["links"] = self.links
        return data

    def to_json(self) -> bytes:
        """Serialize to compact JSON bytes (no trailing newline)."""
        return orjson.dumps(self.to_dict())

    def to_line(self) -> bytes:
        """Serialize to one newline-terminated record line."""
        return self.to_json() + b"\n"


class PackageRecordV1(_RecordBase):
    """Schema version 1 record."""

    v: Literal[1] = 1


class PackageRecordV2(_RecordBase):
    """Schema version 2 record with namespaced/weak dependency features."""

    v: Literal[2] = 2
    features2: dict[str, list[str]]

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["v"] = self.v
        data["features2"] = {k: list(v) for k, v in self.features2.items()}
        return data


PackageRecord = PackageRecordV1 | PackageRecordV2


def parse_record(line: bytes | str) -> PackageRecord:
    """Parse one record line.

    Raises:
        MalformedRecord: If the line is not JSON or does not match the
            schema for its `v`. The `field` attribute names the first
            offending field when pydantic reports one.
    """
    try:
        data = orjson.loads(line)
    except orjson.JSONDecodeError as e:
        msg = f"Invalid JSON: {e}"
        raise MalformedRecord(msg) from e
    if not isinstance(data, dict):
        msg = f"Expected a JSON object, got {type(data).__name__}"
        raise MalformedRecord(msg)

    schema = data.get("v", 1)
    name = data.get("name") if isinstance(data.get("name"), str) else None
    vers = data.get("vers") if isinstance(data.get("vers"), str) else None
    if isinstance(schema, bool) or schema not in (1, 2):
        msg = f"Unsupported schema version `v`: {schema!r}"
        raise MalformedRecord(msg, package=name, version=vers, field="v")

    model = PackageRecordV1 if schema == 1 else PackageRecordV2
    try:
        return model.model_validate(data)
    except ValidationError as e:
        first = e.errors()[0]
        field = ".".join(str(p) for p in first["loc"]) or None
        msg = f"Record does not match schema v{schema}: {field}: {first['msg']}"
        raise MalformedRecord(msg, package=name, version=vers, field=field) from e


def check_record(record: PackageRecord) -> list[RecordProblem]:
    """Check the semantic rules a schema-valid record must also satisfy.

    Returns:
        List of problems (empty if the record is valid).
    """
    problems: list[RecordProblem] = []
    label = f"{record.name}:{record.vers}"

    msg = name_problem(record.name, "package name")
    if msg:
        problems.append(RecordProblem(ViolationKind.INVALID_NAME, "name", msg))

    if not is_valid_version(record.vers):
        problems.append(
            RecordProblem(
                ViolationKind.INVALID_VERSION,
                "vers",
                f"Package `{record.name}` has invalid version `{record.vers}`",
            )
        )

    if CKSUM_PATTERN.match(record.cksum) is None:
        problems.append(
            RecordProblem(
                ViolationKind.INVALID_CHECKSUM,
                "cksum",
                f"Package `{label}` checksum must be 64 lowercase hex characters, "
                f"got {len(record.cksum)} characters: `{record.cksum}`",
            )
        )

    for i, dep in enumerate(record.deps):
        msg = name_problem(dep.name, f"dependency of `{label}`")
        if msg:
            problems.append(RecordProblem(ViolationKind.INVALID_NAME, f"deps.{i}.name", msg))
        if dep.package is not None:
            msg = name_problem(dep.package, f"renamed dependency of `{label}`")
            if msg:
                problems.append(
                    RecordProblem(ViolationKind.INVALID_NAME, f"deps.{i}.package", msg)
                )
        try:
            parse_requirement(dep.req)
        except InvalidVersion as e:
            problems.append(
                RecordProblem(
                    ViolationKind.INVALID_REQUIREMENT,
                    f"deps.{i}.req",
                    f"Dependency `{dep.name}` of `{label}`: {e}",
                )
            )

    return problems
