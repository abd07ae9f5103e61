"""Database module for parityguard."""

from .connection import Database, is_lock_error
from .models import (
    FileMetadataRecord,
    ModeKind,
    Operation,
    OperationStatus,
    OperationType,
    ProtectedItem,
    ProtectionMode,
    ProtectionStatus,
    VerificationHistoryEntry,
)
from .schema import create_schema

__all__ = [
    "Database",
    "is_lock_error",
    "create_schema",
    "FileMetadataRecord",
    "ModeKind",
    "Operation",
    "OperationStatus",
    "OperationType",
    "ProtectedItem",
    "ProtectionMode",
    "ProtectionStatus",
    "VerificationHistoryEntry",
]
