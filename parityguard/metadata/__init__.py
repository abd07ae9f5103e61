"""File metadata capture and restore."""

from .filesystem import iter_files, permission_string, read_file_metadata
from .manager import (
    PARTIAL_RESTORE,
    RESTORED,
    MetadataManager,
    MetadataVerifyResult,
    RestoreResult,
    data_size,
    par2_size,
)

__all__ = [
    "iter_files",
    "permission_string",
    "read_file_metadata",
    "PARTIAL_RESTORE",
    "RESTORED",
    "MetadataManager",
    "MetadataVerifyResult",
    "RestoreResult",
    "data_size",
    "par2_size",
]
