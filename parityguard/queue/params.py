"""Typed, validated parameter payloads for each operation type."""

import json
from collections.abc import Mapping
from dataclasses import asdict, dataclass
from typing import Any, ClassVar

from parityguard.database import OperationType
from parityguard.errors import UserInputError
from parityguard.protection import AdvancedSettings

ADVANCED_KEYS = ("block_count", "block_size", "target_size", "recovery_files")

# Accepted spellings from API clients that send camelCase keys.
ALIASES = {
    "fileTypes": "file_types",
    "fileCategories": "file_categories",
    "advancedSettings": "advanced_settings",
    "verifyMetadata": "verify_metadata",
    "autoRestoreMetadata": "auto_restore_metadata",
    "restoreMetadata": "restore_metadata",
    "item_id": "id",
}


@dataclass
class ProtectParams:
    operation_type: ClassVar[OperationType] = OperationType.PROTECT

    path: str
    redundancy: int | None = None
    file_types: list[str] | None = None
    file_categories: list[str] | None = None
    advanced_settings: AdvancedSettings | None = None


@dataclass
class VerifyParams:
    operation_type: ClassVar[OperationType] = OperationType.VERIFY

    path: str | None = None
    id: int | None = None
    force: bool = False
    verify_metadata: bool = False
    auto_restore_metadata: bool = False


@dataclass
class RepairParams:
    operation_type: ClassVar[OperationType] = OperationType.REPAIR

    path: str | None = None
    id: int | None = None
    restore_metadata: bool = True


@dataclass
class RemoveParams:
    operation_type: ClassVar[OperationType] = OperationType.REMOVE

    path: str | None = None
    id: int | None = None


OperationParams = ProtectParams | VerifyParams | RepairParams | RemoveParams


class _Reader:
    def __init__(self, data: dict[str, Any]):
        self.data = data

    def get(self, key: str) -> Any:
        value = self.data.get(key)
        return None if value == "" else value

    def as_bool(self, key: str, default: bool) -> bool:
        value = self.get(key)
        if value is None:
            return default
        if isinstance(value, bool):
            return value
        if isinstance(value, (int, float)):
            return bool(value)
        if isinstance(value, str) and value.lower() in ("1", "true", "yes", "on"):
            return True
        if isinstance(value, str) and value.lower() in ("0", "false", "no", "off"):
            return False
        raise UserInputError(f"Parameter {key} must be a boolean, got {value!r}")

    def as_int(self, key: str) -> int | None:
        value = self.get(key)
        if value is None:
            return None
        try:
            return int(value)
        except (TypeError, ValueError) as e:
            raise UserInputError(f"Parameter {key} must be an integer, got {value!r}") from e

    def as_list(self, key: str) -> list[str] | None:
        value = self.get(key)
        if value is None:
            return None
        if isinstance(value, str):
            value = [part for part in value.split(",") if part.strip()]
        if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
            raise UserInputError(f"Parameter {key} must be a list of strings")
        return [v.strip() for v in value] or None

    def as_path(self, key: str = "path") -> str | None:
        value = self.get(key)
        if value is None:
            return None
        if not isinstance(value, str):
            raise UserInputError(f"Parameter {key} must be a string")
        return value


def _normalize(data: Mapping[str, Any]) -> dict[str, Any]:
    return {ALIASES.get(key, key): value for key, value in data.items()}


def _advanced_settings(reader: _Reader) -> AdvancedSettings | None:
    raw = reader.get("advanced_settings")
    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except json.JSONDecodeError as e:
            raise UserInputError(f"advanced_settings is not valid JSON: {e}") from e
    if raw is None:
        raw = {key: reader.data[key] for key in ADVANCED_KEYS if key in reader.data}
    if not isinstance(raw, Mapping):
        raise UserInputError("advanced_settings must be an object")

    sub = _Reader(dict(raw))
    settings = AdvancedSettings(**{key: sub.as_int(key) for key in ADVANCED_KEYS})
    if all(getattr(settings, key) is None for key in ADVANCED_KEYS):
        return None
    return settings


def _target(reader: _Reader, operation_type: OperationType) -> tuple[str | None, int | None]:
    path = reader.as_path()
    item_id = reader.as_int("id")
    if path is None and item_id is None:
        raise UserInputError(f"{operation_type.value} requires a path or an id")
    return path, item_id


def parse_parameters(operation_type: OperationType | str, data: Mapping[str, Any]) -> OperationParams:
    """Validate a raw payload into the parameter type for ``operation_type``."""
    try:
        op_type = OperationType(operation_type)
    except ValueError as e:
        raise UserInputError(f"Invalid operation type: {operation_type}") from e

    reader = _Reader(_normalize(data))

    if op_type is OperationType.PROTECT:
        path = reader.as_path()
        if path is None:
            raise UserInputError("protect requires a path")
        redundancy = reader.as_int("redundancy")
        if redundancy is not None and not 1 <= redundancy <= 100:
            raise UserInputError(f"Redundancy must be between 1 and 100, got {redundancy}")
        return ProtectParams(
            path=path,
            redundancy=redundancy,
            file_types=reader.as_list("file_types"),
            file_categories=reader.as_list("file_categories"),
            advanced_settings=_advanced_settings(reader),
        )

    path, item_id = _target(reader, op_type)
    if op_type is OperationType.VERIFY:
        return VerifyParams(
            path=path,
            id=item_id,
            force=reader.as_bool("force", False),
            verify_metadata=reader.as_bool("verify_metadata", False),
            auto_restore_metadata=reader.as_bool("auto_restore_metadata", False),
        )
    if op_type is OperationType.REPAIR:
        return RepairParams(
            path=path,
            id=item_id,
            restore_metadata=reader.as_bool("restore_metadata", True),
        )
    return RemoveParams(path=path, id=item_id)


def to_payload(params: OperationParams) -> dict[str, Any]:
    """Serialisable form stored in operation_queue.parameters."""
    return {key: value for key, value in asdict(params).items() if value is not None}
