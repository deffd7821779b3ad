"""Package metadata: read a .crate archive's manifest and build its index record."""

from regindex.index.files import compute_file_sha256
from regindex.metadata.builder import CRATES_IO_INDEX, build_record, compute_cksum
from regindex.metadata.manifest import (
    ManifestDependency,
    PackageManifest,
    parse_manifest,
    read_archive_manifest,
)

__all__ = [
    "CRATES_IO_INDEX",
    "ManifestDependency",
    "PackageManifest",
    "build_record",
    "compute_cksum",
    "compute_file_sha256",
    "parse_manifest",
    "read_archive_manifest",
]
