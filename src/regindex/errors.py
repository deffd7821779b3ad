"""Error taxonomy for index operations.

Every mutating operation is fail-fast: the first error aborts it and the
index is left as it was. The validator never raises these for content
problems; it collects `Violation`s instead.
"""

from __future__ import annotations


class RegistryIndexError(Exception):
    """Base exception for all index operations.

    Attributes:
        package: Offending package name, when known.
        version: Offending version string, when known.
        field: Record or manifest field that broke a rule, when known.
    """

    def __init__(
        self,
        message: str,
        *,
        package: str | None = None,
        version: str | None = None,
        field: str | None = None,
    ) -> None:
        super().__init__(message)
        self.package = package
        self.version = version
        self.field = field


class InvalidManifest(RegistryIndexError):
    """Raised when a package manifest or archive cannot produce a valid record."""


class DuplicateVersion(RegistryIndexError):
    """Raised when a name+version pair is already present in the index."""


class VersionNotFound(RegistryIndexError):
    """Raised when a package or one of its versions is not in the index."""


class MalformedRecord(RegistryIndexError):
    """Raised when a record line is not valid JSON or violates the record schema."""


class MissingConfig(RegistryIndexError):
    """Raised when the index root has no readable config.json."""


class InvalidConfig(MissingConfig):
    """Raised when config.json exists but its contents break a rule."""


class AlreadyExists(RegistryIndexError):
    """Raised by init when the target path already holds something else."""


class Locked(RegistryIndexError):
    """Raised when a record file is locked and the lock policy is fail-fast."""


class IoFailure(RegistryIndexError):
    """Raised when the filesystem refuses a read or write."""


class ChecksumMismatch(RegistryIndexError):
    """Raised when a supplied checksum disagrees with the archive contents."""


class YankStateError(RegistryIndexError):
    """Raised when yanking a yanked version or unyanking a live one."""


class InvalidVersion(RegistryIndexError, ValueError):
    """Raised when a version or version requirement string does not parse."""
