"""Data models for the database."""

import json
import sqlite3
from dataclasses import dataclass
from enum import Enum
from typing import Any, Self


class ProtectionStatus(Enum):
    """Outcome of the last protect, verify or repair of an item."""

    PROTECTED = "PROTECTED"
    VERIFIED = "VERIFIED"
    DAMAGED = "DAMAGED"
    MISSING = "MISSING"
    REPAIRED = "REPAIRED"
    REPAIR_FAILED = "REPAIR_FAILED"
    METADATA_ISSUES = "METADATA_ISSUES"
    ERROR = "ERROR"
    NO_METADATA = "NO_METADATA"
    UNKNOWN = "UNKNOWN"


class OperationStatus(Enum):
    """Status of a queued operation."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self not in (OperationStatus.PENDING, OperationStatus.PROCESSING)


class OperationType(Enum):
    """Kinds of work the queue processor knows how to dispatch."""

    PROTECT = "protect"
    VERIFY = "verify"
    REPAIR = "repair"
    REMOVE = "remove"


class ModeKind(Enum):
    FILE = "file"
    DIRECTORY = "directory"
    INDIVIDUAL_FILES = "individual-files"


@dataclass(frozen=True)
class ProtectionMode:
    """How a protected item was protected.

    Individual-files protection carries the category name of the selection,
    e.g. ``individual-files:images``.
    """

    kind: ModeKind
    category: str | None = None

    @classmethod
    def file(cls) -> Self:
        return cls(ModeKind.FILE)

    @classmethod
    def directory(cls) -> Self:
        return cls(ModeKind.DIRECTORY)

    @classmethod
    def individual_files(cls, category: str) -> Self:
        return cls(ModeKind.INDIVIDUAL_FILES, category)

    @classmethod
    def parse(cls, value: str) -> Self:
        kind, _, category = value.partition(":")
        try:
            mode_kind = ModeKind(kind)
        except ValueError as e:
            raise ValueError(f"Unknown protection mode: {value}") from e
        if mode_kind is ModeKind.INDIVIDUAL_FILES:
            return cls(mode_kind, category or "all")
        return cls(mode_kind)

    @property
    def is_individual(self) -> bool:
        return self.kind is ModeKind.INDIVIDUAL_FILES

    def __str__(self) -> str:
        if self.category:
            return f"{self.kind.value}:{self.category}"
        return self.kind.value


def _load_json(value: str | None) -> Any:
    if not value:
        return None
    return json.loads(value)


@dataclass
class ProtectedItem:
    """Represents a protected_items record."""

    id: int | None
    path: str
    mode: ProtectionMode
    redundancy: int
    protected_date: str
    last_verified: str | None
    last_status: ProtectionStatus | None
    last_details: str | None
    size: int
    par2_size: int
    data_size: int
    par2_path: str
    file_types: list[str] | None
    parent_dir: str | None
    protected_files: list[str] | None

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> Self:
        return cls(
            id=row["id"],
            path=row["path"],
            mode=ProtectionMode.parse(row["mode"]),
            redundancy=row["redundancy"],
            protected_date=row["protected_date"],
            last_verified=row["last_verified"],
            last_status=ProtectionStatus(row["last_status"]) if row["last_status"] else None,
            last_details=row["last_details"],
            size=row["size"] or 0,
            par2_size=row["par2_size"] or 0,
            data_size=row["data_size"] or 0,
            par2_path=row["par2_path"],
            file_types=_load_json(row["file_types"]),
            parent_dir=row["parent_dir"],
            protected_files=_load_json(row["protected_files"]),
        )


@dataclass
class VerificationHistoryEntry:
    """Represents a verification_history record."""

    id: int | None
    protected_item_id: int
    verification_date: str
    status: ProtectionStatus
    details: str | None

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> Self:
        return cls(
            id=row["id"],
            protected_item_id=row["protected_item_id"],
            verification_date=row["verification_date"],
            status=ProtectionStatus(row["status"]),
            details=row["details"],
        )


@dataclass
class FileMetadataRecord:
    """Represents a file_metadata record."""

    id: int | None
    protected_item_id: int
    file_path: str
    owner: str | None
    group_name: str | None
    permissions: str | None
    mtime: float | None
    extended_attributes: dict[str, str]

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> Self:
        return cls(
            id=row["id"],
            protected_item_id=row["protected_item_id"],
            file_path=row["file_path"],
            owner=row["owner"],
            group_name=row["group_name"],
            permissions=row["permissions"],
            mtime=row["mtime"],
            extended_attributes=_load_json(row["extended_attributes"]) or {},
        )


@dataclass
class Operation:
    """Represents an operation_queue record."""

    id: int
    operation_type: OperationType
    parameters: dict[str, Any]
    status: OperationStatus
    created_at: float
    started_at: float | None
    completed_at: float | None
    updated_at: float
    result: dict[str, Any] | None
    pid: int | None

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> Self:
        return cls(
            id=row["id"],
            operation_type=OperationType(row["operation_type"]),
            parameters=_load_json(row["parameters"]) or {},
            status=OperationStatus(row["status"]),
            created_at=row["created_at"],
            started_at=row["started_at"],
            completed_at=row["completed_at"],
            updated_at=row["updated_at"],
            result=_load_json(row["result"]),
            pid=row["pid"],
        )

    @property
    def path(self) -> str | None:
        return self.parameters.get("path")

    @property
    def item_id(self) -> int | None:
        return self.parameters.get("id")
