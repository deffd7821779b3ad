"""Registry index: tree layout, record schema, record files and validation.

- layout: where a package's record file lives
- record: one JSON line per published version (v1/v2 schema)
- store: append and single-line rewrite under a per-package lock
- validate: read-only whole-tree integrity check
"""

from regindex.index.layout import bucket_for, name_for_path, path_for
from regindex.index.version import (
    Version,
    VersionReq,
    normalize_requirement,
    parse_requirement,
    parse_version,
)
from regindex.index.record import (
    Dependency,
    DependencyKind,
    PackageRecord,
    PackageRecordV1,
    PackageRecordV2,
    ViolationKind,
    check_record,
    parse_record,
)
from regindex.index.lock import LockPolicy, package_lock
from regindex.index.config import (
    IndexConfig,
    IndexOptions,
    IndexRoot,
    load_config,
    render_dl,
    save_config,
)
from regindex.index.store import RecordStore
from regindex.index.validate import Violation, validate

__all__ = [
    "Dependency",
    "DependencyKind",
    "IndexConfig",
    "IndexOptions",
    "IndexRoot",
    "LockPolicy",
    "PackageRecord",
    "PackageRecordV1",
    "PackageRecordV2",
    "RecordStore",
    "Version",
    "VersionReq",
    "Violation",
    "ViolationKind",
    "bucket_for",
    "check_record",
    "load_config",
    "name_for_path",
    "normalize_requirement",
    "package_lock",
    "parse_record",
    "parse_requirement",
    "parse_version",
    "path_for",
    "render_dl",
    "save_config",
    "validate",
]
